# common/sources.py
from __future__ import annotations
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

import cv2
from PIL import Image, UnidentifiedImageError

from common.errors import SourceUnavailableError
from common.logging import get_logger

log = get_logger("sources")

MIN_FRAMES = 10
MAX_FRAMES = 20

# ---------------- live camera ----------------

class CameraSource:
    """
    OpenCV webcam wrapper. snapshot() returns the current frame as an RGB image,
    size reports the intrinsic (width, height) of the stream.
    """

    def __init__(self, index: int = 0, width: Optional[int] = None, height: Optional[int] = None):
        self.index = index
        self._req_w = width
        self._req_h = height
        self._cap = None

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    def open(self):
        if self._cap is not None:
            return self
        cap = cv2.VideoCapture(self.index)
        if not cap.isOpened():
            cap.release()
            raise SourceUnavailableError(f"camera {self.index} could not be opened")
        if self._req_w:
            cap.set(cv2.CAP_PROP_FRAME_WIDTH, int(self._req_w))
        if self._req_h:
            cap.set(cv2.CAP_PROP_FRAME_HEIGHT, int(self._req_h))
        ok, _ = cap.read()
        if not ok:
            cap.release()
            raise SourceUnavailableError(f"camera {self.index} opened but delivered no frame")
        self._cap = cap
        log.info(f"[camera] opened index={self.index} size={self.size}")
        return self

    @property
    def size(self) -> Tuple[int, int]:
        if self._cap is None:
            return (0, 0)
        return (int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)), int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)))

    def snapshot(self) -> Image.Image:
        if self._cap is None:
            raise SourceUnavailableError("camera is not open")
        ok, frame = self._cap.read()
        if not ok or frame is None:
            raise SourceUnavailableError(f"camera {self.index} stopped delivering frames")
        rgb = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return Image.fromarray(rgb)

    def close(self):
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            log.info(f"[camera] released index={self.index}")

# ---------------- static uploads ----------------

def _is_image(path: Path) -> bool:
    try:
        with Image.open(path) as im:
            im.verify()
        return True
    except (UnidentifiedImageError, OSError, SyntaxError):
        return False

def load_static_images(paths: Iterable[Path], limit: int = MAX_FRAMES,
                       already: int = 0) -> List[Image.Image]:
    """
    Keep only real image files, in the given order, up to `limit` total
    (counting `already` accepted images). Images are fully loaded so the
    file handles are released.
    """
    room = max(0, limit - already)
    out: List[Image.Image] = []
    for p in paths:
        p = Path(p)
        if not p.is_file() or not _is_image(p):
            log.debug(f"[ingest] skipping non-image {p}")
            continue
        if len(out) >= room:
            log.info(f"[ingest] limit {limit} reached, ignoring {p.name} and the rest")
            break
        with Image.open(p) as im:
            im.load()
            out.append(im.copy())
    return out

def upload_status(n: int) -> str:
    if not n:
        return ""
    if MIN_FRAMES <= n <= MAX_FRAMES:
        return f"Ready: {n} images"
    return f"Need {MIN_FRAMES}–{MAX_FRAMES} images (currently {n})"

def list_image_dir(folder: Path) -> List[Path]:
    return sorted(p for p in Path(folder).iterdir() if p.is_file())

# ---------------- overlay catalog ----------------

NONE_ID = "none"

DEFAULT_OVERLAYS: List[Dict[str, Any]] = [
    {"id": "none",    "name": "None",          "src": None},
    {"id": "hearts",  "name": "Golden Hearts", "src": "borders/apples_and_hearts.png"},
    {"id": "pearls",  "name": "Pearls",        "src": "borders/watermelon_frame.png"},
    {"id": "retro",   "name": "Retro TV",      "src": "borders/piano_cutesy.png"},
    {"id": "sparkle", "name": "Sparkle",       "src": "frames/sparkle.png"},
]

class OverlayCatalog:
    """id -> transparent overlay image; unknown ids and 'none' resolve to None."""

    def __init__(self, entries: Optional[List[Dict[str, Any]]] = None, base_dir: Path | str = "."):
        self.entries = list(entries if entries is not None else DEFAULT_OVERLAYS)
        self.base_dir = Path(base_dir)
        self._loaded: Dict[str, Image.Image] = {}

    def ids(self) -> List[str]:
        return [str(e.get("id")) for e in self.entries]

    def preload(self) -> "OverlayCatalog":
        for entry in self.entries:
            oid, src = str(entry.get("id")), entry.get("src")
            if not src or oid == NONE_ID:
                continue
            path = self.base_dir / src
            try:
                # lazy open: pixel data is decoded on first draw
                self._loaded[oid] = Image.open(path)
            except (FileNotFoundError, UnidentifiedImageError, OSError) as e:
                log.warning(f"[overlay] '{oid}' unavailable ({path}): {e}")
        log.info(f"[overlay] preloaded {sorted(self._loaded)}")
        return self

    def add(self, oid: str, image: Image.Image):
        self._loaded[oid] = image

    def get(self, oid: Optional[str]) -> Optional[Image.Image]:
        if not oid or oid == NONE_ID:
            return None
        return self._loaded.get(oid)
