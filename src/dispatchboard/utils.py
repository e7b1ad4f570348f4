from __future__ import annotations

from datetime import UTC, date, datetime, time
import re
from typing import Any

NUMERIC_ID_REGEX = re.compile(r"\d+")
FALLBACK_USER_NAME = "System"


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def numeric_id(value: object) -> str:
    """Return the first run of digits in an id (``"admin-22"`` -> ``"22"``), or the id itself."""
    text = str(value)
    match = NUMERIC_ID_REGEX.search(text)
    return match.group(0) if match else text


def ids_match(left: object, right: object) -> bool:
    left_text = str(left)
    right_text = str(right)
    if left_text == right_text:
        return True
    return numeric_id(left_text) == numeric_id(right_text)


def parse_int_id(value: object) -> int | None:
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def parse_datetime(value: Any) -> datetime | None:
    """Parse a remote ISO timestamp into naive wall-clock time."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def parse_time_of_day(value: str | None) -> time | None:
    if not value:
        return None
    parts = str(value).split(":")
    try:
        hour = int(parts[0])
        minute = int(parts[1]) if len(parts) > 1 else 0
        return time(hour, minute)
    except (ValueError, IndexError):
        return None


def format_time_of_day(moment: datetime) -> str:
    return f"{moment.hour:02d}:{moment.minute:02d}:00"


def format_clock(moment: datetime) -> str:
    return moment.strftime("%H:%M")


def day_key(technician_id: str, day: date | datetime) -> str:
    if isinstance(day, datetime):
        day = day.date()
    return f"{technician_id}-{day.isoformat()}"


def minutes_between(start: datetime, end: datetime) -> int:
    return round((end - start).total_seconds() / 60)


def display_name(user: dict[str, Any] | None) -> str:
    if not user:
        return FALLBACK_USER_NAME
    first = user.get("firstName") or user.get("first_name") or ""
    last = user.get("lastName") or user.get("last_name") or ""
    full = f"{first} {last}".strip()
    if full:
        return full
    if user.get("email"):
        return str(user["email"])
    return FALLBACK_USER_NAME
