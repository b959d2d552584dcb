import asyncio
import io

import pytest
from PIL import Image

from common.compositor import composite
from common.encoder import (
    Aborted, EncodeOptions, Errored, GifEncoder, Success, TimedOut, encode, validate_sequence,
)
from common.errors import SequenceValidationError

from conftest import FakeEncoder, distinct_colors, encoder_factory, solid, solid_frames


# ---------------- validation ----------------

@pytest.mark.asyncio
@pytest.mark.parametrize("n", list(range(10, 21)))
async def test_sequences_of_10_to_20_frames_are_accepted(n):
    result = await encode(solid_frames(n, 32), EncodeOptions(size=32), encoder_factory=encoder_factory())
    assert isinstance(result, Success)
    assert len(FakeEncoder.instances[0].frames) == n


@pytest.mark.asyncio
@pytest.mark.parametrize("n", [0, 1, 9, 21, 30])
async def test_out_of_range_sequences_are_rejected_before_encoding(n):
    with pytest.raises(SequenceValidationError) as exc:
        await encode(solid_frames(n, 32), EncodeOptions(size=32), encoder_factory=encoder_factory())
    assert exc.value.count == n
    assert FakeEncoder.instances == []


def test_mixed_sizes_are_rejected():
    frames = solid_frames(10, 32)
    frames[4] = solid((0, 0, 0), (16, 16))
    with pytest.raises(SequenceValidationError):
        validate_sequence(frames)


def test_non_square_frames_are_rejected():
    with pytest.raises(SequenceValidationError):
        validate_sequence([solid((0, 0, 0), (32, 16))] * 10)


@pytest.mark.asyncio
async def test_request_size_must_match_frames():
    with pytest.raises(SequenceValidationError):
        await encode(solid_frames(10, 32), EncodeOptions(size=64), encoder_factory=encoder_factory())


# ---------------- protocol ----------------

@pytest.mark.asyncio
async def test_frames_registered_in_order_with_delay_then_rendered_once():
    frames = solid_frames(12, 32)
    fractions = []
    result = await encode(frames, EncodeOptions(delay_ms=150, loop_count=0, size=32),
                          encoder_factory=encoder_factory(), on_progress=fractions.append)
    enc = FakeEncoder.instances[0]
    assert enc.frames == frames
    assert enc.delays == [150] * 12
    assert enc.render_calls == 1
    assert (enc.width, enc.height, enc.repeat) == (32, 32, 0)
    assert fractions == [0.5, 1.0]

    assert isinstance(result, Success)
    art = result.artifact
    assert art.data == b"GIF89a-fake"
    assert (art.width, art.height, art.frame_count) == (32, 32, 12)
    assert art.content_type == "image/gif"
    assert art.byte_length == len(b"GIF89a-fake")


@pytest.mark.asyncio
async def test_delay_is_floored_at_20ms():
    await encode(solid_frames(10, 16), EncodeOptions(delay_ms=5, size=16), encoder_factory=encoder_factory())
    assert FakeEncoder.instances[0].delays == [20] * 10


@pytest.mark.asyncio
async def test_abort_maps_to_aborted():
    result = await encode(solid_frames(10, 16), EncodeOptions(size=16), encoder_factory=encoder_factory("abort"))
    assert isinstance(result, Aborted)
    assert result.message == "Encoding aborted"
    assert result.hint


@pytest.mark.asyncio
async def test_error_maps_to_errored_with_reason():
    result = await encode(solid_frames(10, 16), EncodeOptions(size=16), encoder_factory=encoder_factory("error"))
    assert isinstance(result, Errored)
    assert result.message == "palette overflow"


@pytest.mark.asyncio
async def test_encoder_blowing_up_on_render_is_contained():
    result = await encode(solid_frames(10, 16), EncodeOptions(size=16), encoder_factory=encoder_factory("raise"))
    assert isinstance(result, Errored)
    assert "worker script" in result.message


@pytest.mark.asyncio
async def test_silence_times_out_and_late_finish_is_ignored():
    fractions = []
    result = await encode(solid_frames(10, 16), EncodeOptions(size=16),
                          encoder_factory=encoder_factory("silent"),
                          on_progress=fractions.append, timeout=0.05)
    assert isinstance(result, TimedOut)
    assert result.message == "Encoding timed out"

    # the worker finishes after all; nobody listens any more
    enc = FakeEncoder.instances[0]
    enc.emit("progress", 0.9)
    enc.emit("finished", b"too late")
    assert fractions == []


@pytest.mark.asyncio
async def test_first_settled_event_wins():
    class DoubleTalk(FakeEncoder):
        def render(self):
            loop = asyncio.get_running_loop()
            loop.call_soon(self.emit, "error", "first")
            loop.call_soon(self.emit, "finished", b"second")
            loop.call_soon(self.emit, "aborted")

    result = await encode(solid_frames(10, 16), EncodeOptions(size=16),
                          encoder_factory=lambda **kw: DoubleTalk(**kw))
    await asyncio.sleep(0)
    assert isinstance(result, Errored)
    assert result.message == "first"


# ---------------- real GIF encoder ----------------

@pytest.mark.asyncio
async def test_twelve_mixed_aspect_uploads_encode_to_a_320_gif_in_order():
    shapes = [(640, 480), (480, 640), (300, 300), (1024, 256), (200, 800), (512, 512),
              (800, 600), (600, 800), (333, 777), (90, 60), (60, 90), (400, 401)]
    colours = distinct_colors(12)
    uploads = [solid(c, s) for c, s in zip(colours, shapes)]
    frames = [composite(img, 320) for img in uploads]

    result = await encode(frames, EncodeOptions(delay_ms=150, loop_count=0, size=320), workers=2)

    assert isinstance(result, Success)
    art = result.artifact
    assert (art.width, art.height, art.frame_count) == (320, 320, 12)
    assert art.data[:6] == b"GIF89a"

    gif = Image.open(io.BytesIO(art.data))
    assert gif.size == (320, 320)
    assert gif.n_frames == 12
    assert gif.info.get("loop") == 0
    for i, colour in enumerate(colours):
        gif.seek(i)
        assert gif.info.get("duration") == 150
        assert gif.convert("RGB").getpixel((160, 160)) == colour


@pytest.mark.asyncio
async def test_gif_encoder_reports_progress_up_to_one():
    fractions = []
    result = await encode(solid_frames(10, 32), EncodeOptions(size=32), on_progress=fractions.append)
    assert isinstance(result, Success)
    assert fractions[-1] == 1.0
    assert fractions == sorted(fractions)
    assert len(fractions) == 11


@pytest.mark.asyncio
async def test_gif_encoder_abort_emits_aborted():
    enc = GifEncoder(32, 32)
    events = []
    enc.on("aborted", lambda: events.append("aborted"))
    enc.on("finished", lambda *_: events.append("finished"))
    for f in solid_frames(10, 32):
        enc.add_frame(f, 100)
    enc.render()
    enc.abort()
    for _ in range(5):
        await asyncio.sleep(0)
    assert events == ["aborted"]
    assert not enc.running


def test_gif_encoder_rejects_wrong_frame_size():
    enc = GifEncoder(32, 32)
    with pytest.raises(ValueError):
        enc.add_frame(solid((0, 0, 0), (16, 16)), 100)


@pytest.mark.asyncio
async def test_gif_encoder_plays_once_when_loop_count_is_one():
    result = await encode(solid_frames(10, 16), EncodeOptions(size=16, loop_count=1))
    gif = Image.open(io.BytesIO(result.artifact.data))
    assert gif.info.get("loop") == 1


@pytest.mark.asyncio
async def test_identical_neighbours_are_counted_as_the_gif_holds_them():
    colours = distinct_colors(10)
    # 0/1 and 2/3 are the same picture
    sequence = [colours[0], colours[0], colours[1], colours[1]] + colours[2:10]
    frames = [solid(c, (64, 64)) for c in sequence]

    result = await encode(frames, EncodeOptions(delay_ms=150, size=64), workers=1)

    assert isinstance(result, Success)
    gif = Image.open(io.BytesIO(result.artifact.data))
    assert gif.n_frames == 10
    assert result.artifact.frame_count == gif.n_frames
    # merged frames keep the time of both; order is unchanged
    assert gif.info.get("duration") == 300
    shown = []
    for i in range(gif.n_frames):
        gif.seek(i)
        shown.append(gif.convert("RGB").getpixel((32, 32)))
    assert shown == colours


@pytest.mark.asyncio
async def test_frame_count_reported_by_the_encoder_wins():
    class Merging(FakeEncoder):
        def render(self):
            asyncio.get_running_loop().call_soon(self.emit, "finished", b"GIF89a-fake", 9)

    result = await encode(solid_frames(12, 16), EncodeOptions(size=16),
                          encoder_factory=lambda **kw: Merging(**kw))
    assert result.artifact.frame_count == 9
