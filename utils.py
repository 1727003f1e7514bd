import time
from datetime import datetime, timezone


def now_ts() -> int:
    """Current time in whole epoch seconds."""
    return int(time.time())


def to_iso_z(ts):
    """Convert epoch seconds to an RFC3339-like ISO string with trailing Z for UTC"""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat().replace('+00:00', 'Z')


def format_remaining(expires_at: int, now: int) -> str:
    remaining = expires_at - now
    if remaining <= 0:
        return "expired"
    units = [(86400, 'day'), (3600, 'hour'), (60, 'minute'), (1, 'second')]
    for sec, name in units:
        n = remaining // sec
        if n > 0:
            plural = '' if n == 1 else 's'
            return f"in {n} {name}{plural}"
    return ""
