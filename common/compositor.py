# common/compositor.py
from __future__ import annotations
import math
from typing import Any, Optional, Tuple

from PIL import Image

from common.logging import get_logger

log = get_logger("compositor")

OVERSCALE = 1.01          # scaled source spills 1% past the canvas on its long side
BACKGROUND = (0, 0, 0)    # letterbox fill

# ---------------- source helpers ----------------

def source_image(source: Any) -> Image.Image:
    """
    Resolve a visual source to a Pillow image.
    Live sources expose snapshot() (current frame); static sources are images already.
    """
    snapshot = getattr(source, "snapshot", None)
    if callable(snapshot):
        return snapshot()
    if isinstance(source, Image.Image):
        return source
    raise TypeError(f"Unsupported visual source: {type(source).__name__}")

def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))

def contain_box(src_w: int, src_h: int, size: int) -> Tuple[int, int, int, int]:
    """Return (x, y, w, h) of the scaled source on a size x size canvas."""
    if src_w <= 0 or src_h <= 0:
        raise ValueError(f"Source has no area: {src_w}x{src_h}")
    scale = min(size / src_w, size / src_h) * OVERSCALE
    nw = _round_half_up(src_w * scale)
    nh = _round_half_up(src_h * scale)
    x = (size - nw) // 2
    y = (size - nh) // 2
    return x, y, nw, nh

# ---------------- compositing ----------------

def square_contain(source: Any, size: int) -> Image.Image:
    img = source_image(source)
    x, y, nw, nh = contain_box(img.width, img.height, size)
    canvas = Image.new("RGB", (size, size), BACKGROUND)
    # convert() hands back a copy, so the source is never touched
    scaled = img.convert("RGB").resize((nw, nh), Image.Resampling.NEAREST)
    canvas.paste(scaled, (x, y))
    return canvas

def apply_overlay(frame: Image.Image, overlay: Optional[Image.Image]) -> Image.Image:
    """Stamp a transparent overlay stretched over the whole frame; best effort."""
    out = frame.copy()
    if overlay is None:
        return out
    try:
        ov = overlay.convert("RGBA")
        if ov.size != out.size:
            ov = ov.resize(out.size, Image.Resampling.NEAREST)
        out.paste(ov, (0, 0), ov)
    except Exception as e:
        # overlay not loadable yet (missing/truncated asset): keep the base frame
        log.debug(f"[overlay] draw skipped: {e}")
        return frame.copy()
    return out

def composite(source: Any, size: int, overlay: Optional[Image.Image] = None) -> Image.Image:
    base = square_contain(source, size)
    if overlay is None:
        return base
    return apply_overlay(base, overlay)
