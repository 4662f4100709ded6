from __future__ import annotations

from datetime import datetime, timezone


def format_duration(duration_ms: int) -> str:
    """
    Format a track duration as HH:MM:SS, e.g. 215000 -> "00:03:35".
    """
    duration_ms = max(0, int(duration_ms))
    hours = duration_ms // 3600000
    minutes = (duration_ms // 60000) % 60
    seconds = (duration_ms // 1000) % 60
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def now_utc_iso() -> str:
    """Return current UTC time as ISO8601 string."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
