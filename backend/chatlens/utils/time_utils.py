from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

# Epoch values above this are millisecond-based (10^11 s is roughly year 5138).
MILLISECOND_EPOCH_THRESHOLD = 100_000_000_000


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def to_epoch_seconds(value: Union[int, float]) -> int:
    """Convert a second- or millisecond-based epoch timestamp to whole seconds."""

    numeric = float(value)
    if abs(numeric) >= MILLISECOND_EPOCH_THRESHOLD:
        numeric = numeric / 1000.0
    return int(numeric)


def parse_iso_timestamp(raw: Optional[str]) -> Optional[float]:
    """Parse an ISO-8601 string into epoch seconds, or None when unparseable."""

    if not raw or not isinstance(raw, str):
        return None
    text = raw.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def format_ts(ts: Union[int, float], fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    """Render epoch seconds as a UTC timestamp string."""

    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime(fmt)
