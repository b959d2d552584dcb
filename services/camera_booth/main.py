# services/camera_booth/main.py
from __future__ import annotations
import argparse, asyncio, signal
from typing import Any, Dict, List

from PIL import Image

from common.builder import BuildOutcome, GifBuilder
from common.cues import ToneCue
from common.logging import get_logger
from common.runtime import DEFAULT_CONFIG, load_config, make_builder, make_overlays, make_reporter
from common.sequencer import CaptureSequencer, CaptureSettings, CaptureState, clamp_settings
from common.sources import CameraSource

log = get_logger("camera_booth")

# ---------------- wiring ----------------

def _handoff(builder: GifBuilder):
    async def to_encoder(frames: List[Image.Image], s: CaptureSettings) -> BuildOutcome:
        # camera GIFs always loop forever
        return await builder.build(frames, delay_ms=s.delay_ms, loop_count=0, size=s.size)
    return to_encoder

def _install_stop_signal(sequencer: CaptureSequencer):
    """Ctrl-C acts like the Stop button: the session winds down at the next phase boundary."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, sequencer.cancel)
        loop.add_signal_handler(signal.SIGTERM, sequencer.cancel)
    except NotImplementedError:
        log.warning("Signal handlers not supported here; Ctrl-C will abort immediately")

# ---------------- main ----------------

async def run_session(cfg: Dict[str, Any]):
    cap_cfg = cfg.get("capture", {}) or {}
    settings = clamp_settings(cap_cfg)

    reporter = await make_reporter(cfg, "camera_booth")
    builder = make_builder(cfg, reporter)
    camera = CameraSource(
        index=int(cap_cfg.get("camera_index", 0)),
        width=cap_cfg.get("camera_width"),
        height=cap_cfg.get("camera_height"),
    )
    sequencer = CaptureSequencer(
        camera,
        overlays=make_overlays(cfg),
        cue=ToneCue(enabled=bool(cap_cfg.get("sound", True))),
        reporter=reporter,
        handoff=_handoff(builder),
    )
    _install_stop_signal(sequencer)

    try:
        outcome = await sequencer.run(settings)
    finally:
        camera.close()
        await reporter.aclose()

    if outcome.state is CaptureState.COMPLETE and isinstance(outcome.handoff_result, BuildOutcome):
        built = outcome.handoff_result
        if built.handle is not None:
            log.info(f"GIF ready: {built.handle.path} ({built.handle.artifact.byte_length} bytes)")
        else:
            log.error(f"GIF not produced: {reporter.status_text}")
    else:
        log.info(f"Session ended: {outcome.status or outcome.state.value}")
    return outcome

async def main(config_path: str = str(DEFAULT_CONFIG)):
    log.info("camera_booth starting…")
    cfg = load_config(config_path)
    await run_session(cfg)

if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Timed camera burst → looping pixel GIF")
    parser.add_argument("--config", default=str(DEFAULT_CONFIG), help="Path to config.yaml")
    args = parser.parse_args()
    asyncio.run(main(args.config))
