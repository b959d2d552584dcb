# common/runtime.py
from __future__ import annotations
import os
from pathlib import Path
from typing import Any, Dict

import yaml

from common.artifacts import ArtifactManager
from common.builder import GifBuilder
from common.bus import BoothReporter, EventBus
from common.encoder import ENCODE_TIMEOUT_SEC
from common.logging import get_logger, set_level
from common.sources import DEFAULT_OVERLAYS, OverlayCatalog

log = get_logger("runtime")

REPO_ROOT = Path(__file__).resolve().parents[1]
DEFAULT_CONFIG = REPO_ROOT / "config" / "config.yaml"

def load_config(config_path: str | Path = DEFAULT_CONFIG) -> Dict[str, Any]:
    path = Path(config_path)
    if not path.exists():
        log.warning(f"Config {path} not found; using built-in defaults")
        return {}
    with path.open("r", encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}
    rt = cfg.get("runtime", {}) or {}
    if rt.get("log_level"):
        set_level(rt["log_level"])
    return cfg

def _resolve(p: str | Path) -> Path:
    p = Path(p)
    return p if p.is_absolute() else (REPO_ROOT / p)

async def make_reporter(cfg: Dict[str, Any], source: str) -> BoothReporter:
    """Reporter publishing to Redis when runtime.publish_events is on and Redis answers."""
    rt = cfg.get("runtime", {}) or {}
    redis_url = os.getenv("BOOTH_REDIS_URL", rt.get("redis_url", "redis://127.0.0.1:6379/0"))
    bus = None
    if bool(rt.get("publish_events", True)):
        try:
            bus = await EventBus(redis_url).connect()
        except Exception as e:
            log.warning(f"Redis unavailable ({e}); events will only be logged")
            bus = None
    reporter = BoothReporter(
        source,
        bus=bus,
        stream_status=rt.get("stream_status", "booth.status"),
        stream_progress=rt.get("stream_progress", "booth.progress"),
        stream_artifacts=rt.get("stream_artifacts", "booth.artifacts"),
    )
    return await reporter.start()

def make_overlays(cfg: Dict[str, Any]) -> OverlayCatalog:
    ov = cfg.get("overlays", {}) or {}
    items = ov.get("items") or DEFAULT_OVERLAYS
    return OverlayCatalog(items, base_dir=_resolve(ov.get("base_dir", "assets"))).preload()

def make_builder(cfg: Dict[str, Any], reporter: BoothReporter) -> GifBuilder:
    rt = cfg.get("runtime", {}) or {}
    enc = cfg.get("encoder", {}) or {}
    outputs = _resolve(os.getenv("BOOTH_OUTPUTS_DIR", rt.get("outputs_dir", "outputs")))
    return GifBuilder(
        ArtifactManager(outputs),
        reporter=reporter,
        timeout=float(enc.get("timeout_sec", ENCODE_TIMEOUT_SEC)),
        encoder_options={
            "workers": int(enc.get("workers", 2)),
            "colors": int(enc.get("colors", 256)),
        },
    )
