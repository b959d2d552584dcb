# common/sequencer.py
from __future__ import annotations
import asyncio, math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from PIL import Image

from common.compositor import composite
from common.errors import SessionActiveError, SourceUnavailableError
from common.logging import get_logger
from common.sources import MAX_FRAMES, MIN_FRAMES

log = get_logger("sequencer")

SETTLE_MS = 120          # pause after the final tick so the subject is not mid-motion
FINAL_GLYPH = "★"

DEFAULT_SHOTS = 20
DEFAULT_GAP_S = 2
DEFAULT_PRECOUNT_S = 3
DEFAULT_DELAY_MS = 120
DEFAULT_SIZE = 320
MIN_DELAY_MS = 20

class CaptureState(str, Enum):
    IDLE = "idle"
    COUNTDOWN = "countdown"
    CAPTURE = "capture"
    COMPLETE = "complete"
    CANCELLED = "cancelled"

@dataclass(frozen=True)
class CaptureSettings:
    shot_count: int = DEFAULT_SHOTS
    gap_ms: int = DEFAULT_GAP_S * 1000
    precount: int = DEFAULT_PRECOUNT_S
    delay_ms: int = DEFAULT_DELAY_MS
    size: int = DEFAULT_SIZE
    overlay_id: str = "none"

@dataclass
class SessionContext:
    """What every frame of one session is composited with."""
    size: int
    overlay: Optional[Image.Image] = None

@dataclass
class CaptureOutcome:
    state: CaptureState
    frames: List[Image.Image] = field(default_factory=list)
    target: int = 0
    cancelled: bool = False
    status: str = ""
    handoff_result: Any = None

# ---------------- settings ----------------

def _number(value: Any, default: float) -> float:
    # blank, junk, infinities and 0 all mean "use the default"
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(v) or v == 0:
        return default
    return v

def _clamp(v: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, v))

def clamp_delay(value: Any, default: int = DEFAULT_DELAY_MS) -> int:
    return int(max(MIN_DELAY_MS, _number(value, default)))

def clamp_size(value: Any, default: int = DEFAULT_SIZE) -> int:
    size = int(_number(value, default))
    return size if size > 0 else default

def clamp_settings(raw: Optional[Dict[str, Any]] = None) -> CaptureSettings:
    """
    raw keys (config `capture` section): shot_count, interval_secs, precount_secs,
    delay_ms, size, overlay. Every value is clamped on its own.
    """
    raw = raw or {}
    shots = int(_clamp(_number(raw.get("shot_count"), DEFAULT_SHOTS), MIN_FRAMES, MAX_FRAMES))
    gap_s = _clamp(_number(raw.get("interval_secs"), DEFAULT_GAP_S), 1, 5)
    precount = int(_clamp(_number(raw.get("precount_secs"), DEFAULT_PRECOUNT_S), 1, 3))
    size = clamp_size(raw.get("size"))
    overlay = str(raw.get("overlay") or "none")
    return CaptureSettings(
        shot_count=shots,
        gap_ms=int(gap_s * 1000),
        precount=precount,
        delay_ms=clamp_delay(raw.get("delay_ms")),
        size=size,
        overlay_id=overlay,
    )

def pacing_wait_ms(gap_ms: int) -> int:
    return max(0, gap_ms - SETTLE_MS)

# ---------------- state machine ----------------

Handoff = Callable[[List[Image.Image], CaptureSettings], Awaitable[Any]]

class CaptureSequencer:
    """
    Timed burst capture over a live source:
      IDLE -> COUNTDOWN -> CAPTURE -> ... (N times) -> COMPLETE | CANCELLED

    Cancellation is cooperative: cancel() only raises a flag, which the loop
    reads between phases. A capture that has started always finishes.
    """

    def __init__(self, source, overlays=None, cue=None, reporter=None,
                 handoff: Optional[Handoff] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.source = source
        self.overlays = overlays
        self.cue = cue
        self.reporter = reporter
        self.handoff = handoff
        self._sleep = sleep
        self._cancel = asyncio.Event()
        self.state = CaptureState.IDLE
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self):
        if not self._active:
            return
        log.info(f"[cancel] requested during state={self.state.value}")
        self._cancel.set()
        self._countdown("")

    # ---------- reporting ----------
    def _status(self, text: str):
        if self.reporter is not None:
            self.reporter.status(text, state=self.state.value)

    def _countdown(self, glyph: str):
        if self.reporter is not None:
            self.reporter.countdown(glyph)

    def _set_state(self, state: CaptureState):
        log.debug(f"[state] {self.state.value} -> {state.value}")
        self.state = state

    # ---------- phases ----------
    async def _do_countdown(self, seconds: int) -> bool:
        """Returns False when cancelled between ticks."""
        self._set_state(CaptureState.COUNTDOWN)
        for remaining in range(seconds, 0, -1):
            self._countdown(str(remaining))
            if self.cue is not None:
                self.cue.tick(remaining, seconds)
            await self._sleep(1.0)
            if self._cancel.is_set():
                return False
        self._countdown(FINAL_GLYPH)
        if self.cue is not None:
            self.cue.final()
        await self._sleep(SETTLE_MS / 1000)
        self._countdown("")
        return not self._cancel.is_set()

    def _capture_one(self, ctx: SessionContext, frames: List[Image.Image], target: int):
        self._set_state(CaptureState.CAPTURE)
        frames.append(composite(self.source, ctx.size, ctx.overlay))
        self._status(f"Captured {len(frames)}/{target}")

    # ---------- session ----------
    async def run(self, settings: CaptureSettings) -> CaptureOutcome:
        if self._active:
            raise SessionActiveError("a capture session is already running")
        self._active = True
        self._cancel.clear()
        self.state = CaptureState.IDLE
        try:
            return await self._run(settings)
        finally:
            self._active = False

    async def _run(self, s: CaptureSettings) -> CaptureOutcome:
        self._status("")
        try:
            opener = getattr(self.source, "open", None)
            if callable(opener):
                opener()
        except SourceUnavailableError as e:
            msg = f"Camera error: {e}"
            log.error(f"[start] {msg}")
            self._status(msg)
            return CaptureOutcome(state=CaptureState.IDLE, target=s.shot_count, status=msg)

        overlay = self.overlays.get(s.overlay_id) if self.overlays is not None else None
        ctx = SessionContext(size=s.size, overlay=overlay)
        log.info(f"[start] shots={s.shot_count} gap_ms={s.gap_ms} precount={s.precount} "
                 f"size={s.size} overlay={s.overlay_id if overlay is not None else 'none'}")

        frames: List[Image.Image] = []
        for i in range(s.shot_count):
            if self._cancel.is_set():
                break
            if not await self._do_countdown(s.precount):
                break
            try:
                self._capture_one(ctx, frames, s.shot_count)
            except SourceUnavailableError as e:
                log.warning(f"[capture] source dropped after {len(frames)} frames: {e}")
                break
            log.info(f"[capture] frame {len(frames)}/{s.shot_count}")
            if i < s.shot_count - 1:
                await self._sleep(pacing_wait_ms(s.gap_ms) / 1000)

        cancelled = self._cancel.is_set()
        if len(frames) >= MIN_FRAMES:
            self._set_state(CaptureState.COMPLETE)
            outcome = CaptureOutcome(state=CaptureState.COMPLETE, frames=frames,
                                     target=s.shot_count, cancelled=cancelled,
                                     status=f"Captured {len(frames)}/{s.shot_count}")
            log.info(f"[complete] {len(frames)} frames, handing off")
            if self.handoff is not None:
                outcome.handoff_result = await self.handoff(list(frames), s)
            return outcome

        self._set_state(CaptureState.CANCELLED)
        msg = f"Capture cancelled (only {len(frames)}/{s.shot_count})."
        self._countdown("")
        self._status(msg)
        log.info(f"[cancelled] {len(frames)}/{s.shot_count} frames, nothing to encode")
        return CaptureOutcome(state=CaptureState.CANCELLED, frames=frames,
                              target=s.shot_count, cancelled=cancelled, status=msg)
