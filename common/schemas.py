from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

class StatusEvent(BaseModel):
    event: str = "booth.status"
    source: str           # camera_booth | upload_booth
    text: str             # "Captured 3/20", "Encoding…", "Done!"
    hint: Optional[str] = None
    state: Optional[str] = None   # capture state when known
    countdown: Optional[str] = None  # "3", "2", "1", "★" or "" (cleared)
    ts: str = Field(default_factory=_now_iso)  # ISO8601 UTC

class ProgressEvent(BaseModel):
    event: str = "booth.progress"
    source: str
    fraction: float = Field(ge=0.0, le=1.0)
    percent: int          # floor(fraction * 100), what a progress bar shows
    ts: str = Field(default_factory=_now_iso)

class ArtifactEvent(BaseModel):
    event: str = "booth.artifact"
    source: str
    token: str
    path: str             # file path to the GIF
    content_type: str = "image/gif"
    byte_length: int
    width: int
    height: int
    frame_count: int
    ts: str = Field(default_factory=_now_iso)
