"""
utils/time_utils.py

Purpose: Time helpers

- ISO timestamps for API payloads
- Process uptime for health checks
"""

import time
from datetime import datetime, timezone

_STARTED_AT = time.monotonic()


def utc_now_iso() -> str:
    """
    Current UTC time as ISO-8601 with milliseconds and a trailing Z.
    """
    now = datetime.now(timezone.utc)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def uptime_seconds() -> float:
    """
    Seconds since this module was first imported (process start, in practice).
    """
    return time.monotonic() - _STARTED_AT
