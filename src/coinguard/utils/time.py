from __future__ import annotations

import time
from datetime import datetime, timezone

# --- epoch-second helpers; all persisted timestamps are float epoch seconds ---

def utc_now_s() -> float:
    """Wall-clock now as epoch seconds; every stored timestamp uses this unit."""
    return time.time()

def utc_now_ms() -> int:
    """Unix epoch milliseconds (int)."""
    return time.time_ns() // 1_000_000

def utc_dt(ts: float | int) -> datetime:
    """Aware UTC datetime for an epoch-seconds timestamp."""
    return datetime.fromtimestamp(float(ts), tz=timezone.utc)

def iso_utc(ts: float | int) -> str:
    """Epoch seconds -> ISO-8601 string with a trailing Z."""
    return utc_dt(ts).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def parse_iso_s(value: str) -> float:
    """ISO-8601 string (Z or offset) -> epoch seconds."""
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.timestamp()

def seconds_since(ts_past: float, now: float | None = None) -> float:
    """Seconds elapsed since ts_past; a future timestamp counts as 0."""
    if now is None:
        now = utc_now_s()
    return max(0.0, now - ts_past)
