# src/mindflow_console/formatting.py

import re
from datetime import datetime, timezone, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

PLACEHOLDER = "—"

REPEAT_LABELS = {0: "Never", 1: "Daily", 2: "Weekly", 3: "Monthly"}
STATUS_LABELS = {0: "Pending", 1: "In Progress", 2: "Completed", 3: "Skipped"}

# .NET serializes up to 7 fractional digits; datetime accepts at most 6
_FRACTION = re.compile(r"(\.\d{6})\d+")


def to_utc(value: Optional[str]) -> Optional[datetime]:
    """
    Parses an ISO-8601 instant. Values without an offset are UTC.
    Returns None for empty input and raises ValueError for anything unparseable.
    """
    if not value:
        return None
    normalized = _FRACTION.sub(r"\1", value.strip())
    if normalized.endswith(("Z", "z")):
        normalized = normalized[:-1] + "+00:00"
    parsed = datetime.fromisoformat(normalized)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def resolve_timezone(timezone_id: Optional[str], default: str = "UTC") -> tzinfo:
    for candidate in (timezone_id, default):
        if not candidate:
            continue
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError, OSError):
            # Directory names like "America" or overlong IDs fail at the file lookup
            continue
    return timezone.utc


def _clock(moment: datetime) -> str:
    hour = moment.hour % 12 or 12
    suffix = "AM" if moment.hour < 12 else "PM"
    return f"{hour}:{moment.minute:02d} {suffix}"


def format_local_time(value: Optional[str], timezone_id: Optional[str] = None, default_timezone: str = "UTC") -> str:
    try:
        moment = to_utc(value)
    except ValueError:
        return value or PLACEHOLDER
    if moment is None:
        return PLACEHOLDER
    return _clock(moment.astimezone(resolve_timezone(timezone_id, default_timezone)))


def format_local_datetime(value: Optional[str], timezone_id: Optional[str] = None, default_timezone: str = "UTC") -> str:
    try:
        moment = to_utc(value)
    except ValueError:
        return value or ""
    if moment is None:
        return ""
    local = moment.astimezone(resolve_timezone(timezone_id, default_timezone))
    return f"{local:%Y-%m-%d} {_clock(local)}"


def format_utc(value: Optional[str]) -> str:
    try:
        moment = to_utc(value)
    except ValueError:
        return value or PLACEHOLDER
    if moment is None:
        return PLACEHOLDER
    return f"{moment:%H:%M} UTC"


def repeat_label(repeat_type: Optional[int], fallback: str = "n/a") -> str:
    return REPEAT_LABELS.get(repeat_type, fallback)


def status_label(status: Optional[int]) -> str:
    return STATUS_LABELS.get(status, "Status n/a")
