# common/artifacts.py
from __future__ import annotations
import os, uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import aiofiles

from common.encoder import Artifact
from common.logging import get_logger

log = get_logger("artifacts")

@dataclass
class ArtifactHandle:
    token: str
    path: Path
    artifact: Artifact
    revoked: bool = False

class ArtifactManager:
    """
    Owns the single live artifact. A handle is a file under outputs_dir plus a
    token; revoking deletes the file. install() always revokes the previous
    handle before the new file appears, so two live handles never coexist.
    """

    def __init__(self, outputs_dir: Path | str = "outputs", prefix: str = "pixel-gif-booth"):
        self.outputs_dir = Path(outputs_dir)
        self.prefix = prefix
        self._current: Optional[ArtifactHandle] = None

    @property
    def current(self) -> Optional[ArtifactHandle]:
        return self._current

    def is_live(self, handle: Optional[ArtifactHandle]) -> bool:
        return handle is not None and not handle.revoked and handle is self._current

    def revoke(self):
        handle, self._current = self._current, None
        if handle is None:
            return
        handle.revoked = True
        try:
            handle.path.unlink()
        except FileNotFoundError:
            pass
        log.info(f"[artifact] revoked token={handle.token}")

    async def install(self, artifact: Artifact) -> ArtifactHandle:
        self.revoke()
        self.outputs_dir.mkdir(parents=True, exist_ok=True)
        token = uuid.uuid4().hex[:12]
        path = self.outputs_dir / f"{self.prefix}-{token}.gif"
        tmp = path.with_suffix(".gif.part")
        try:
            async with aiofiles.open(tmp, "wb") as f:
                await f.write(artifact.data)
            os.replace(tmp, path)
        except Exception:
            try:
                tmp.unlink()
            except FileNotFoundError:
                pass
            raise
        handle = ArtifactHandle(token=token, path=path, artifact=artifact)
        self._current = handle
        log.info(f"[artifact] installed token={token} path={path} bytes={artifact.byte_length}")
        return handle
