# common/builder.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from PIL import Image

from common.artifacts import ArtifactHandle, ArtifactManager
from common.encoder import (
    ENCODE_TIMEOUT_SEC, EncodeOptions, EncodeResult, Errored, GifEncoder, Success, encode, validate_sequence,
)
from common.logging import get_logger
from common.schemas import ArtifactEvent

log = get_logger("builder")

@dataclass
class BuildOutcome:
    result: EncodeResult
    handle: Optional[ArtifactHandle] = None
    superseded: bool = False

class GifBuilder:
    """
    Frames in, live GIF out:
      validate -> revoke previous artifact -> encode race -> install -> report.
    A build that a newer build overtook never installs its result.
    """

    def __init__(self, artifacts: ArtifactManager, reporter=None, encoder_factory=GifEncoder,
                 timeout: float = ENCODE_TIMEOUT_SEC, encoder_options: Optional[Dict[str, Any]] = None):
        self.artifacts = artifacts
        self.reporter = reporter
        self.encoder_factory = encoder_factory
        self.timeout = timeout
        self.encoder_options = dict(encoder_options or {})
        self._generation = 0

    def _status(self, text: str, hint: Optional[str] = None):
        if self.reporter is not None:
            self.reporter.status(text, hint=hint)

    def _progress(self, fraction: float):
        if self.reporter is not None:
            self.reporter.progress(fraction)

    async def build(self, frames: Sequence[Image.Image], delay_ms: int = 120,
                    loop_count: int = 0, size: int = 320) -> BuildOutcome:
        # raises before anything is touched
        validate_sequence(frames)

        self._generation += 1
        generation = self._generation
        self.artifacts.revoke()
        self._progress(0.0)
        self._status("Encoding…")

        def progress(fraction: float):
            # once a newer build started, this one no longer owns the bar
            if generation == self._generation:
                self._progress(fraction)

        result = await encode(
            frames,
            EncodeOptions(delay_ms=delay_ms, loop_count=loop_count, size=size),
            encoder_factory=self.encoder_factory,
            on_progress=progress,
            timeout=self.timeout,
            **self.encoder_options,
        )

        if generation != self._generation:
            log.info(f"[build] generation {generation} superseded by {self._generation}; result dropped")
            return BuildOutcome(result=result, superseded=True)

        if not isinstance(result, Success):
            self._progress(0.0)
            self._status(f"Failed to encode GIF. {result.message}", hint=result.hint)
            return BuildOutcome(result=result)

        try:
            handle = await self.artifacts.install(result.artifact)
        except OSError as e:
            log.error(f"[build] could not store artifact: {e}")
            failed = Errored(message=f"Could not save GIF: {e}")
            self._progress(0.0)
            self._status(f"Failed to encode GIF. {failed.message}", hint=failed.hint)
            return BuildOutcome(result=failed)
        self._progress(1.0)
        self._status("Done!")
        if self.reporter is not None:
            art = result.artifact
            self.reporter.artifact(ArtifactEvent(
                source=self.reporter.source, token=handle.token, path=str(handle.path),
                content_type=art.content_type, byte_length=art.byte_length,
                width=art.width, height=art.height, frame_count=art.frame_count,
            ))
        return BuildOutcome(result=result, handle=handle)
