# services/booth_dashboard/main.py
from __future__ import annotations
import json, os
from pathlib import Path
from typing import Dict, Any, List, Optional

import uvicorn
from fastapi import FastAPI, Query
from fastapi.responses import HTMLResponse, JSONResponse
from redis import asyncio as aioredis

from common.logging import get_logger
from common.runtime import DEFAULT_CONFIG, load_config

# ----------------------- config & logging -----------------------
cfg: Dict[str, Any] = load_config(os.getenv("BOOTH_CONFIG", str(DEFAULT_CONFIG)))

rt = cfg.get("runtime", {}) or {}
streams = {
    "status":    rt.get("stream_status",    "booth.status"),
    "progress":  rt.get("stream_progress",  "booth.progress"),
    "artifacts": rt.get("stream_artifacts", "booth.artifacts"),
}

REDIS_URL = os.getenv("BOOTH_REDIS_URL", rt.get("redis_url", "redis://127.0.0.1:6379/0"))
LOG_LEVEL = rt.get("log_level", "INFO")
LOG_DIR   = Path(os.getenv("BOOTH_LOG_DIR", rt.get("log_dir", "logs"))).resolve()

DASH_HOST = (cfg.get("booth_dashboard", {}) or {}).get("host", "0.0.0.0")
DASH_PORT = int((cfg.get("booth_dashboard", {}) or {}).get("port", 9090))
REFRESH_MS = int((cfg.get("booth_dashboard", {}) or {}).get("refresh_ms", 1000))

log = get_logger("booth_dashboard", log_dir=str(LOG_DIR), level=LOG_LEVEL)

app = FastAPI(title="Pixel GIF Booth Dashboard")
redis: aioredis.Redis | None = None

# Map service → logfile (names follow get_logger(<name>))
LOG_FILES = {
    "camera_booth": LOG_DIR / "camera_booth.log",
    "upload_booth": LOG_DIR / "upload_booth.log",
    "sequencer":    LOG_DIR / "sequencer.log",
    "encoder":      LOG_DIR / "encoder.log",
    "builder":      LOG_DIR / "builder.log",
    "compositor":   LOG_DIR / "compositor.log",
    "sources":      LOG_DIR / "sources.log",
    "artifacts":    LOG_DIR / "artifacts.log",
    "bus":          LOG_DIR / "bus.log",
    "cues":         LOG_DIR / "cues.log",
    "runtime":      LOG_DIR / "runtime.log",
}

# ----------------------- helpers -----------------------
async def get_redis() -> aioredis.Redis:
    global redis
    if redis is None:
        redis = aioredis.from_url(REDIS_URL, decode_responses=True)
    return redis

def decode_entry(entry) -> Optional[Dict[str, Any]]:
    """(msg_id, {"json": "..."}) → payload dict with the stream id attached."""
    if not entry:
        return None
    msg_id, kv = entry
    try:
        payload = json.loads(kv.get("json", "{}"))
    except Exception:
        return {"id": msg_id, "error": "bad_json"}
    payload["id"] = msg_id
    return payload

async def latest(r: aioredis.Redis, stream_name: str) -> Optional[Dict[str, Any]]:
    try:
        entries = await r.xrevrange(stream_name, count=1)
    except Exception as e:
        return {"stream": stream_name, "error": str(e)}
    return decode_entry(entries[0]) if entries else None

async def booth_state() -> Dict[str, Any]:
    r = await get_redis()
    out: Dict[str, Any] = {}
    for label, stream_name in streams.items():
        out[label] = await latest(r, stream_name)
    return out

def tail_last_lines(path: Path, max_lines: int = 200, max_bytes: int = 64_000) -> List[str]:
    """
    Efficiently read up to the last `max_lines` lines of a file, up to `max_bytes`.
    Handles missing files gracefully.
    """
    try:
        if not path.exists() or not path.is_file():
            return [f"[{path.name}] (no file)"]
        size = path.stat().st_size
        with path.open("rb") as f:
            if size <= max_bytes:
                data = f.read()
            else:
                f.seek(-max_bytes, os.SEEK_END)
                data = f.read()
        text = data.decode("utf-8", errors="replace")
        lines = text.splitlines()
        return lines[-max_lines:] if len(lines) > max_lines else lines
    except Exception as e:
        return [f"[{path.name}] error: {e}"]

# ----------------------- BOOTH page -----------------------
@app.get("/", response_class=HTMLResponse)
async def home():
    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8"/>
  <title>Pixel GIF Booth</title>
  <style>
    body {{ background-color: #111; color: #eee; font-family: -apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif; margin: 24px; }}
    nav a {{ color: #66ccff; margin-right: 16px; text-decoration: none; }}
    h1 {{ color: #00c6ff; margin-bottom: 4px; }}
    .meta {{ color: #aaa; font-size: 0.9rem; margin-bottom: 20px; }}
    .card {{ background:#1a1a1a; border:1px solid #262626; border-radius:10px; padding:16px; margin-bottom:16px; }}
    .countdown {{ font-size: 4rem; color:#ffb300; min-height: 4.5rem; }}
    .bar {{ background:#222; border-radius:999px; height:14px; overflow:hidden; }}
    .bar > div {{ background:#00c6ff; height:100%; width:0%; transition: width .2s; }}
    .hint {{ color:#ffb300; }}
    .mono {{ font-family: ui-monospace, SFMono-Regular, Menlo, Consolas, monospace; }}
  </style>
</head>
<body>
  <nav>
    <a href="/">Booth</a>
    <a href="/logs">Live Logs</a>
  </nav>
  <h1>Pixel GIF Booth</h1>
  <div class="meta">Redis URL: <span class="mono">{REDIS_URL}</span> · Auto refresh: {REFRESH_MS} ms</div>
  <section class="card"><div id="countdown" class="countdown"></div><div id="status"></div><div id="hint" class="hint"></div></section>
  <section class="card"><div class="bar"><div id="bar"></div></div><div id="pct" class="mono"></div></section>
  <section class="card"><div id="artifact" class="mono">(no GIF yet)</div></section>
<script>
async function refresh() {{
  try {{
    const res = await fetch('/state');
    const s = await res.json();
    const st = s.status || {{}};
    document.getElementById('countdown').textContent = st.countdown || '';
    document.getElementById('status').textContent = st.text || '';
    document.getElementById('hint').textContent = st.hint || '';
    const p = (s.progress && s.progress.percent) || 0;
    document.getElementById('bar').style.width = p + '%';
    document.getElementById('pct').textContent = p + '%';
    const a = s.artifacts;
    if (a && a.path) {{
      document.getElementById('artifact').textContent =
        `${{a.path}} · ${{a.width}}x${{a.height}} · ${{a.frame_count}} frames · ${{a.byte_length}} bytes`;
    }}
  }} catch (e) {{
    document.getElementById('status').textContent = 'Error loading state: ' + e;
  }}
}}
setInterval(refresh, {REFRESH_MS});
refresh();
</script>
</body>
</html>"""

@app.get("/state", response_class=JSONResponse)
async def state():
    try:
        data = await booth_state()
        return JSONResponse(data)
    except Exception as e:
        log.error("state error: %s", e)
        return JSONResponse({"error": str(e)}, status_code=500)

# ----------------------- LOGS page -----------------------
@app.get("/logs", response_class=HTMLResponse)
async def logs_page():
    service_cards = "".join([
        f"""
        <section class="card">
          <h2>{name.replace('_',' ').title()}</h2>
          <pre id="log_{name}" class="logbox">(loading...)</pre>
        </section>
        """
        for name in LOG_FILES
    ])
    return f"""<!doctype html>
<html>
<head>
  <meta charset="utf-8"/>
  <title>Pixel GIF Booth · Live Logs</title>
  <style>
    body {{ background:#111; color:#eee; font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif; margin:24px; }}
    nav a {{ color:#66ccff; margin-right:16px; text-decoration:none; }}
    h1 {{ color:#00c6ff; margin-bottom:8px; }}
    .meta {{ color:#aaa; margin-bottom:16px; }}
    .grid {{ display:flex; flex-direction:column; gap:16px; }}
    .card {{ background:#1a1a1a; border:1px solid #262626; border-radius:10px; padding:12px; }}
    h2 {{ margin:0 0 8px 0; color:#66ccff; font-size:1.0rem; }}
    .logbox {{
      background:#0e0e0e; border:1px solid #222; border-radius:8px; padding:8px;
      height:190px; overflow:auto; white-space:pre-wrap; font-family:ui-monospace,Menlo,Consolas,monospace; font-size:12.5px; line-height:1.35;
    }}
  </style>
</head>
<body>
  <nav>
    <a href="/">Booth</a>
    <a href="/logs">Live Logs</a>
  </nav>
  <h1>Live Logs</h1>
  <div class="meta">Log dir: {LOG_DIR} · Updating every 1000 ms</div>
  <div class="grid">
    {service_cards}
  </div>
<script>
async function tick() {{
  try {{
    const res = await fetch('/logz?lines=200');
    const data = await res.json();
    for (const k of Object.keys(data)) {{
      const el = document.getElementById('log_' + k);
      if (!el) continue;
      const atBottom = (el.scrollTop + el.clientHeight + 10) >= el.scrollHeight;
      el.textContent = (data[k] || []).join('\\n') || '(no data)';
      if (atBottom) el.scrollTop = el.scrollHeight;
    }}
  }} catch (e) {{
    console.error(e);
  }}
}}
setInterval(tick, 1000);
tick();
</script>
</body>
</html>"""

@app.get("/logz", response_class=JSONResponse)
async def log_feed(lines: int = Query(200, ge=10, le=2000)):
    """Last N lines per booth log; polled by /logs every ~1s."""
    out: Dict[str, List[str]] = {}
    for name, path in LOG_FILES.items():
        out[name] = tail_last_lines(path, max_lines=lines)
    return JSONResponse(out)

# ----------------------- main -----------------------
if __name__ == "__main__":
    log.info("Pixel GIF Booth dashboard starting on %s:%d (redis=%s)", DASH_HOST, DASH_PORT, REDIS_URL)
    uvicorn.run("services.booth_dashboard.main:app",
                host=DASH_HOST, port=DASH_PORT,
                reload=False, log_level=LOG_LEVEL.lower())
