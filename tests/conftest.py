"""Shared pytest configuration and fixtures for the booth test suite."""

import asyncio
import os
import sys
import tempfile
from pathlib import Path

import pytest
from PIL import Image

# Loggers write files on creation; keep them out of the working tree
os.environ.setdefault("BOOTH_LOG_DIR", tempfile.mkdtemp(prefix="booth-logs-"))

# Ensure the project root is in the path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))


# =============================================================================
# Helpers
# =============================================================================

def solid(color, size=(320, 320), mode="RGB"):
    return Image.new(mode, size, color)


def distinct_colors(n):
    """n visibly different RGB colours (consecutive ones never equal)."""
    return [((i * 37) % 256, (255 - i * 23) % 256, (i * 71 + 40) % 256) for i in range(n)]


def solid_frames(n, size=320):
    return [solid(c, (size, size)) for c in distinct_colors(n)]


class FakeSleep:
    """Records requested waits instead of sleeping; on_call may react to the n-th wait."""

    def __init__(self, on_call=None):
        self.calls = []
        self.on_call = on_call

    async def __call__(self, seconds):
        self.calls.append(round(seconds, 3))
        if self.on_call is not None:
            self.on_call(len(self.calls), seconds)
        await asyncio.sleep(0)


class FakeLiveSource:
    """Live source stand-in: each snapshot is a new solid-colour frame."""

    def __init__(self, size=(640, 480), fail_open=False, drop_after=None):
        self.size = size
        self.fail_open = fail_open
        self.drop_after = drop_after
        self.opened = 0
        self.snapshots = 0

    def open(self):
        from common.errors import SourceUnavailableError
        if self.fail_open:
            raise SourceUnavailableError("no camera attached")
        self.opened += 1
        return self

    def snapshot(self):
        from common.errors import SourceUnavailableError
        if self.drop_after is not None and self.snapshots >= self.drop_after:
            raise SourceUnavailableError("camera unplugged")
        color = distinct_colors(self.snapshots + 1)[-1]
        self.snapshots += 1
        return Image.new("RGB", self.size, color)


class FakeEncoder:
    """
    Scriptable encoder with the same event interface as GifEncoder.
    behaviour: finish | abort | error | silent | raise
    """

    instances = []

    def __init__(self, width, height, repeat=0, behaviour="finish", payload=b"GIF89a-fake", **_):
        self.width = width
        self.height = height
        self.repeat = repeat
        self.behaviour = behaviour
        self.payload = payload
        self.frames = []
        self.delays = []
        self.handlers = {}
        self.render_calls = 0
        FakeEncoder.instances.append(self)

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)
        return self

    def emit(self, event, *args):
        for fn in self.handlers.get(event, []):
            fn(*args)

    def add_frame(self, frame, delay):
        self.frames.append(frame)
        self.delays.append(delay)

    def render(self):
        self.render_calls += 1
        if self.behaviour == "raise":
            raise RuntimeError("worker script failed to load")
        loop = asyncio.get_running_loop()
        if self.behaviour == "finish":
            loop.call_soon(self.emit, "progress", 0.5)
            loop.call_soon(self.emit, "progress", 1.0)
            loop.call_soon(self.emit, "finished", self.payload)
        elif self.behaviour == "abort":
            loop.call_soon(self.emit, "aborted")
        elif self.behaviour == "error":
            loop.call_soon(self.emit, "error", "palette overflow")


def encoder_factory(behaviour="finish", **extra):
    def factory(**kwargs):
        return FakeEncoder(behaviour=behaviour, **extra, **kwargs)
    return factory


class RecordingReporter:
    """BoothReporter-compatible sink that remembers everything it was told."""

    def __init__(self, source="test"):
        self.source = source
        self.statuses = []
        self.hints = []
        self.glyphs = []
        self.fractions = []
        self.artifacts = []
        self.closed = False

    def status(self, text, hint=None, state=None):
        self.statuses.append(text)
        self.hints.append(hint)

    def countdown(self, glyph):
        self.glyphs.append(glyph)

    def progress(self, fraction):
        self.fractions.append(fraction)

    def artifact(self, event):
        self.artifacts.append(event)

    async def aclose(self):
        self.closed = True


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture
def project_root() -> Path:
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture(autouse=True)
def _reset_fake_encoders():
    FakeEncoder.instances.clear()
    yield
    FakeEncoder.instances.clear()


@pytest.fixture
def reporter():
    return RecordingReporter()
