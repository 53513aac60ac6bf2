"""
Input rules shared by task and user operations.
"""
import math
import re
from datetime import date, datetime, time, timezone
from typing import Optional

import pytz

from ..config import settings


_PHONE_STRIP = re.compile(r"[\s\-()]")
# Mobile: 07XXXXXXXX / +947XXXXXXXX
_MOBILE_RE = re.compile(r"^(?:\+94|0)?7[0-9]{8}$")
# Landline: area codes 01-06, 08, 09
_LANDLINE_RE = re.compile(r"^(?:\+94|0)?[1-68-9][0-9]{8}$")


def is_sri_lankan_phone(value: Optional[str]) -> bool:
    """Accept Sri Lankan mobile or landline numbers, ignoring spaces, dashes and parentheses."""
    if not value:
        return False
    clean = _PHONE_STRIP.sub("", value)
    return bool(_MOBILE_RE.match(clean) or _LANDLINE_RE.match(clean))


def is_valid_full_name(value: Optional[str]) -> bool:
    if not value or not value.strip():
        return False
    name = value.strip()
    if len(name) < 2 or name.isdigit():
        return False
    letters = name.replace(" ", "")
    digits = sum(1 for ch in letters if ch.isdigit())
    # Reject names that are mostly digits
    return not (letters and digits / len(letters) > 0.7)


def hours_between(start: time, end: time) -> float:
    start_minutes = start.hour * 60 + start.minute
    end_minutes = end.hour * 60 + end.minute
    return (end_minutes - start_minutes) / 60


def estimate_hours(start: time, end: time) -> float:
    """Length of the time window rounded up to the nearest half hour."""
    return math.ceil(hours_between(start, end) * 2) / 2


def estimated_hours_in_range(hours: float) -> bool:
    return settings.min_estimated_hours <= hours <= settings.max_estimated_hours


def local_tz():
    return pytz.timezone(settings.tz_default)


def local_now() -> datetime:
    return datetime.now(local_tz())


def local_today() -> date:
    return local_now().date()


def local_day_bounds_utc(day: date) -> tuple[datetime, datetime]:
    """First and last UTC instants of the local calendar ``day``."""
    tz = local_tz()
    start = tz.localize(datetime.combine(day, time.min))
    end = tz.localize(datetime.combine(day, time.max))
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def split_list(value: Optional[str]) -> list[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def join_list(values: Optional[list[str]]) -> Optional[str]:
    if values is None:
        return None
    return ",".join(v.strip() for v in values if v and v.strip())
