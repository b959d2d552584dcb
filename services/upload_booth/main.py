# services/upload_booth/main.py
from __future__ import annotations
import argparse, asyncio
from pathlib import Path
from typing import Any, Dict, List, Optional

from PIL import Image

from common.builder import BuildOutcome
from common.compositor import composite
from common.errors import SequenceValidationError
from common.logging import get_logger
from common.runtime import DEFAULT_CONFIG, REPO_ROOT, load_config, make_builder, make_overlays, make_reporter
from common.sequencer import clamp_delay, clamp_size
from common.sources import MAX_FRAMES, MIN_FRAMES, list_image_dir, load_static_images, upload_status

log = get_logger("upload_booth")

# ---------- Options ----------
def upload_options(up_cfg: Dict[str, Any]) -> Dict[str, Any]:
    size = clamp_size(up_cfg.get("size"))
    return {
        "size": size,
        "delay_ms": clamp_delay(up_cfg.get("delay_ms")),
        "loop_count": 0 if bool(up_cfg.get("repeat_infinite", True)) else 1,
        "overlay": str(up_cfg.get("overlay") or "none"),
    }

def compose_uploads(images: List[Image.Image], size: int, overlay: Optional[Image.Image]) -> List[Image.Image]:
    return [composite(img, size, overlay) for img in images]

# ---------- Core processing ----------
async def build_from_folder(cfg: Dict[str, Any], input_dir: Path) -> Optional[BuildOutcome]:
    up_cfg = cfg.get("upload", {}) or {}
    opts = upload_options(up_cfg)

    files = list_image_dir(input_dir)
    images = load_static_images(files, limit=MAX_FRAMES)
    status = upload_status(len(images)) or f"No images found in {input_dir}"
    log.info(f"[ingest] dir={input_dir} files={len(files)} images={len(images)} {status}")

    reporter = await make_reporter(cfg, "upload_booth")
    try:
        reporter.status(status)
        if not (MIN_FRAMES <= len(images) <= MAX_FRAMES):
            log.error(status)
            return None
        builder = make_builder(cfg, reporter)
        overlay = make_overlays(cfg).get(opts["overlay"])
        frames = compose_uploads(images, opts["size"], overlay)
        try:
            built = await builder.build(frames, delay_ms=opts["delay_ms"],
                                        loop_count=opts["loop_count"], size=opts["size"])
        except SequenceValidationError as e:
            log.error(f"[build] rejected: {e}")
            return None
    finally:
        await reporter.aclose()

    if built.handle is not None:
        log.info(f"GIF ready: {built.handle.path} ({built.handle.artifact.byte_length} bytes)")
    else:
        log.error(f"GIF not produced: {built.result.message} {built.result.hint}")
    return built

# ---------- Main ----------
async def main(config_path: str = str(DEFAULT_CONFIG), input_dir: Optional[str] = None):
    log.info("upload_booth starting…")
    cfg = load_config(config_path)
    up_cfg = cfg.get("upload", {}) or {}
    folder = Path(input_dir or up_cfg.get("input_dir", "uploads"))
    if not folder.is_absolute() and not folder.exists():
        folder = REPO_ROOT / folder
    if not folder.is_dir():
        log.error(f"Input folder not found: {folder}")
        return None
    return await build_from_folder(cfg, folder)

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Folder of 10–20 images → looping pixel GIF")
    parser.add_argument("input_dir", nargs="?", default=None, help="Folder with the images, in name order")
    parser.add_argument("--config", default=str(DEFAULT_CONFIG), help="Path to config.yaml")
    args = parser.parse_args()
    asyncio.run(main(args.config, args.input_dir))
