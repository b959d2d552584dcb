# common/bus.py
from __future__ import annotations
import asyncio, json, math
from typing import Any, Dict, Optional, Tuple
from redis import asyncio as aioredis
from common.logging import get_logger
from common.schemas import ArtifactEvent, ProgressEvent, StatusEvent

log = get_logger("bus")

class EventBus:
    def __init__(self, redis_url: str):
        self._redis_url = redis_url
        self._redis = None

    async def connect(self):
        if self._redis is None:
            log.info(f"Connecting to Redis: {self._redis_url}")
            self._redis = aioredis.from_url(self._redis_url, encoding="utf-8", decode_responses=True)
            # quick ping
            try:
                pong = await self._redis.ping()
                log.info(f"Redis ping: {pong}")
            except Exception as e:
                log.error(f"Redis connection failed: {e}")
                raise
        return self

    async def close(self):
        if self._redis is not None:
            log.info("Closing Redis connection")
            await self._redis.close()
            self._redis = None

    async def xadd_json(self, stream: str, payload: Dict[str, Any]) -> str:
        assert self._redis is not None, "Call connect() first"
        data = {"json": json.dumps(payload, separators=(",", ":"))}
        msg_id = await self._redis.xadd(stream, data, maxlen=10000, approximate=True)
        log.debug(f"XADD stream={stream} id={msg_id}")
        return msg_id


class BoothReporter:
    """
    Sink for everything the booth shows a user: status text, the countdown glyph,
    encode progress and finished artifacts.

    The capture loop and the encode race call these methods synchronously; when a
    bus is attached the events are queued and published by a background task so a
    slow Redis never stalls a countdown. Without a bus the reporter only logs and
    keeps the latest values for in-process observers.
    """

    def __init__(self, source: str, bus: Optional[EventBus] = None,
                 stream_status: str = "booth.status",
                 stream_progress: str = "booth.progress",
                 stream_artifacts: str = "booth.artifacts"):
        self.source = source
        self._bus = bus
        self._streams = {
            "status": stream_status,
            "progress": stream_progress,
            "artifact": stream_artifacts,
        }
        self._queue: asyncio.Queue[Tuple[str, Dict[str, Any]]] | None = None
        self._task: asyncio.Task | None = None

        self.status_text = ""
        self.hint: Optional[str] = None
        self.countdown_glyph = ""
        self.fraction = 0.0
        self.last_artifact: Optional[ArtifactEvent] = None

    # ---------- lifecycle ----------
    async def start(self):
        if self._bus is None or self._task is not None:
            return self
        self._queue = asyncio.Queue()
        self._task = asyncio.create_task(self._publish_loop(), name=f"reporter-{self.source}")
        return self

    async def aclose(self):
        """Flush queued events, stop the publisher and close the bus."""
        if self._task is not None:
            assert self._queue is not None
            await self._queue.join()
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
            self._queue = None
        if self._bus is not None:
            await self._bus.close()

    async def _publish_loop(self):
        assert self._queue is not None and self._bus is not None
        while True:
            kind, payload = await self._queue.get()
            try:
                await self._bus.xadd_json(self._streams[kind], payload)
            except Exception as e:
                log.error(f"[publish] {kind} event dropped: {e}")
            finally:
                self._queue.task_done()

    def _enqueue(self, kind: str, payload: Dict[str, Any]):
        if self._queue is not None:
            self._queue.put_nowait((kind, payload))

    # ---------- sinks ----------
    def status(self, text: str, hint: Optional[str] = None, state: Optional[str] = None):
        self.status_text = text
        self.hint = hint
        if text:
            log.info(f"[status] source={self.source} {text}" + (f" hint={hint}" if hint else ""))
        self._enqueue("status", StatusEvent(source=self.source, text=text, hint=hint, state=state).model_dump())

    def countdown(self, glyph: str):
        self.countdown_glyph = glyph
        log.debug(f"[countdown] source={self.source} glyph={glyph!r}")
        self._enqueue("status", StatusEvent(source=self.source, text=self.status_text,
                                            countdown=glyph).model_dump())

    def progress(self, fraction: float):
        fraction = min(1.0, max(0.0, float(fraction)))
        self.fraction = fraction
        percent = int(math.floor(fraction * 100))
        log.debug(f"[progress] source={self.source} {percent}%")
        self._enqueue("progress", ProgressEvent(source=self.source, fraction=fraction,
                                                percent=percent).model_dump())

    def artifact(self, event: ArtifactEvent):
        self.last_artifact = event
        log.info(f"[artifact] source={self.source} path={event.path} bytes={event.byte_length}")
        self._enqueue("artifact", event.model_dump())
