# common/encoder.py
from __future__ import annotations
import asyncio, io
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from PIL import Image

from common.errors import SequenceValidationError
from common.logging import get_logger
from common.sources import MAX_FRAMES, MIN_FRAMES

log = get_logger("encoder")

ENCODE_TIMEOUT_SEC = 30.0
GIF_CONTENT_TYPE = "image/gif"
MIN_DELAY_MS = 20

RETRY_HINT = "Tip: the encoder runs on a worker pool; make sure encoder.workers is at least 1 and try again."

# ----------------- Models -----------------
@dataclass(frozen=True)
class EncodeOptions:
    delay_ms: int = 120
    loop_count: int = 0     # 0 = loop forever
    size: int = 320

@dataclass(frozen=True)
class Artifact:
    data: bytes
    width: int
    height: int
    frame_count: int
    content_type: str = GIF_CONTENT_TYPE

    @property
    def byte_length(self) -> int:
        return len(self.data)

@dataclass(frozen=True)
class Success:
    artifact: Artifact
    ok = True

@dataclass(frozen=True)
class Aborted:
    message: str = "Encoding aborted"
    hint: str = RETRY_HINT
    ok = False

@dataclass(frozen=True)
class Errored:
    message: str = "Encoding error"
    hint: str = RETRY_HINT
    ok = False

@dataclass(frozen=True)
class TimedOut:
    message: str = "Encoding timed out"
    hint: str = RETRY_HINT
    ok = False

EncodeResult = Union[Success, Aborted, Errored, TimedOut]

# ----------------- Validation -----------------
def validate_sequence(frames: Sequence[Image.Image]) -> int:
    """Returns the common square size; raises SequenceValidationError otherwise."""
    n = len(frames)
    if n < MIN_FRAMES or n > MAX_FRAMES:
        raise SequenceValidationError(f"Need {MIN_FRAMES}–{MAX_FRAMES} frames (got {n})", count=n)
    sizes = {f.size for f in frames}
    if len(sizes) != 1:
        raise SequenceValidationError(f"Frames differ in size: {sorted(sizes)}", count=n)
    w, h = sizes.pop()
    if w != h:
        raise SequenceValidationError(f"Frames are not square: {w}x{h}", count=n)
    return w

# ----------------- Pillow GIF worker -----------------
def _quantize(frame: Image.Image, colors: int) -> Image.Image:
    return frame.convert("RGB").quantize(colors=colors, method=Image.Quantize.MEDIANCUT,
                                         dither=Image.Dither.NONE)

def _write_gif(frames: List[Image.Image], delays: List[int], repeat: int) -> Tuple[bytes, int]:
    """Returns the GIF bytes and the number of frames it really holds."""
    buf = io.BytesIO()
    params: Dict[str, Any] = {"duration": delays, "optimize": False}
    if repeat >= 0:
        params["loop"] = repeat
    frames[0].save(buf, format="GIF", save_all=True, append_images=frames[1:], **params)
    data = buf.getvalue()
    # Pillow folds an identical neighbour into the previous frame, summing durations
    with Image.open(io.BytesIO(data)) as gif:
        written = gif.n_frames
    return data, written

class GifEncoder:
    """
    Animated GIF encoder with an event interface:
      on("progress", fn(fraction)) / on("finished", fn(bytes, frame_count))
      on("aborted", fn()) / on("error", fn(reason))

    add_frame() registers frames, render() starts the work on a thread pool and
    returns immediately. Events are emitted on the event loop thread.
    """

    def __init__(self, width: int, height: int, repeat: int = 0, workers: int = 2,
                 colors: int = 256, executor: Optional[ThreadPoolExecutor] = None):
        self.width = width
        self.height = height
        self.repeat = repeat
        self.workers = max(1, int(workers))
        self.colors = max(2, min(256, int(colors)))
        self._executor = executor
        self._own_executor = executor is None
        self._frames: List[Image.Image] = []
        self._delays: List[int] = []
        self._handlers: Dict[str, List[Callable[..., Any]]] = {}
        self._task: Optional[asyncio.Task] = None
        self.running = False

    def on(self, event: str, handler: Callable[..., Any]):
        self._handlers.setdefault(event, []).append(handler)
        return self

    def _emit(self, event: str, *args: Any):
        for fn in self._handlers.get(event, []):
            try:
                fn(*args)
            except Exception as e:
                log.error(f"[gif] '{event}' handler failed: {e}")

    def add_frame(self, frame: Image.Image, delay: int):
        if self.running:
            raise RuntimeError("cannot add frames while rendering")
        if frame.size != (self.width, self.height):
            raise ValueError(f"frame is {frame.size[0]}x{frame.size[1]}, encoder is {self.width}x{self.height}")
        # copy so later edits to the caller's raster cannot leak into the GIF
        self._frames.append(frame.copy())
        self._delays.append(max(MIN_DELAY_MS, int(delay)))

    def render(self):
        if self.running:
            raise RuntimeError("already rendering")
        if not self._frames:
            raise RuntimeError("no frames registered")
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="gif")
        self.running = True
        self._task = asyncio.get_running_loop().create_task(self._render())
        self._task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        # cancelled before _render got to run: its except/finally never fired
        if task.cancelled() and self.running:
            self.running = False
            if self._own_executor and self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None
            log.info("[gif] render aborted before start")
            self._emit("aborted")

    def abort(self):
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def _render(self):
        loop = asyncio.get_running_loop()
        total = len(self._frames) + 1  # +1 for the final write
        done = 0
        try:
            jobs = [loop.run_in_executor(self._executor, _quantize, f, self.colors) for f in self._frames]
            for fut in asyncio.as_completed(jobs):
                await fut
                done += 1
                self._emit("progress", done / total)
            quantized = [j.result() for j in jobs]
            data, written = await loop.run_in_executor(self._executor, _write_gif, quantized, self._delays, self.repeat)
            self._emit("progress", 1.0)
            if written != len(quantized):
                log.warning(f"[gif] {len(quantized) - written} identical neighbour frame(s) merged: {len(quantized)} -> {written}")
            log.info(f"[gif] rendered {written} frames {self.width}x{self.height} bytes={len(data)}")
            self._emit("finished", data, written)
        except asyncio.CancelledError:
            log.info("[gif] render aborted")
            self._emit("aborted")
        except Exception as e:
            log.error(f"[gif] render failed: {e}")
            self._emit("error", str(e) or type(e).__name__)
        finally:
            self.running = False
            if self._own_executor and self._executor is not None:
                self._executor.shutdown(wait=False)
                self._executor = None

# ----------------- Orchestration -----------------
EncoderFactory = Callable[..., Any]

async def encode(frames: Sequence[Image.Image], options: EncodeOptions,
                 encoder_factory: EncoderFactory = GifEncoder,
                 on_progress: Optional[Callable[[float], None]] = None,
                 timeout: float = ENCODE_TIMEOUT_SEC,
                 **encoder_kwargs: Any) -> EncodeResult:
    """
    Drive one encoder through register -> render -> first settled event.
    The first of finished / aborted / error / timeout decides the result;
    anything the encoder says afterwards is ignored. Only a bad sequence raises.
    """
    size = validate_sequence(frames)
    if size != options.size:
        raise SequenceValidationError(f"Frames are {size}px, request says {options.size}px", count=len(frames))
    delay = max(MIN_DELAY_MS, int(options.delay_ms))

    loop = asyncio.get_running_loop()
    settled: asyncio.Future = loop.create_future()

    def settle(result: EncodeResult):
        if settled.done():
            log.debug(f"[encode] ignoring late {type(result).__name__}")
            return
        settled.set_result(result)

    def progress(fraction: float):
        if settled.done() or on_progress is None:
            return
        on_progress(min(1.0, max(0.0, float(fraction))))

    def finished(data: bytes, frame_count: Optional[int] = None):
        # encoders that don't report a count are taken to keep every registered frame
        count = len(frames) if frame_count is None else int(frame_count)
        settle(Success(Artifact(data=bytes(data), width=size, height=size, frame_count=count)))

    def errored(reason: Any = None):
        text = str(reason) if reason else ""
        settle(Errored(message=text or "Encoding error"))

    log.info(f"[encode] frames={len(frames)} size={size} delay_ms={delay} loop={options.loop_count}")
    try:
        enc = encoder_factory(width=size, height=size, repeat=options.loop_count, **encoder_kwargs)
        enc.on("progress", progress)
        enc.on("finished", finished)
        enc.on("aborted", lambda *_: settle(Aborted()))
        enc.on("error", errored)
        for frame in frames:
            enc.add_frame(frame, delay)
        enc.render()
    except Exception as e:
        log.error(f"[encode] encoder refused the job: {e}")
        settle(Errored(message=str(e) or "Encoding error"))

    try:
        result = await asyncio.wait_for(asyncio.shield(settled), timeout)
    except asyncio.TimeoutError:
        settle(TimedOut())
        result = settled.result()
        log.warning(f"[encode] no result after {timeout:.0f}s; later events will be ignored")

    log.info(f"[encode] result={type(result).__name__}")
    return result
