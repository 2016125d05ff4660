from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import APP_TZ
from errors import InvalidInput

YMD_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
HHMM_RE = re.compile(r"^(\d{2}):(\d{2})$")
HHMMSS_RE = re.compile(r"^(\d{2}):(\d{2}):(\d{2})$")

END_OF_DAY = time(23, 59, 59)


# ======================================================
# CLOCK
# ======================================================
def local_now() -> datetime:
    """Naive wall-clock time in APP_TZ, whole seconds."""
    return datetime.now(ZoneInfo(APP_TZ)).replace(tzinfo=None, microsecond=0)


# ======================================================
# PARSING
# ======================================================
def parse_ymd(s: str) -> date:
    if not isinstance(s, str) or not YMD_RE.match(s):
        raise InvalidInput("Dates must be YYYY-MM-DD")
    y, m, d = s.split("-")
    try:
        return date(int(y), int(m), int(d))
    except ValueError:
        raise InvalidInput(f"Invalid date: {s}")


def parse_hhmm(s: str) -> time:
    """Accepts HH:MM (form input) or HH:MM:SS (stored values)."""
    m = HHMM_RE.match(s or "") or HHMMSS_RE.match(s or "")
    if not m:
        raise InvalidInput("Times must be HH:MM")
    parts = [int(x) for x in m.groups()]
    hh, mm = parts[0], parts[1]
    ss = parts[2] if len(parts) == 3 else 0
    if hh > 23 or mm > 59 or ss > 59:
        raise InvalidInput(f"Invalid time value: {s}")
    return time(hh, mm, ss)


def hms(t: Optional[time]) -> Optional[str]:
    return t.strftime("%H:%M:%S") if t is not None else None


def hhmm(t: Optional[time]) -> Optional[str]:
    return t.strftime("%H:%M") if t is not None else None


def min_to_hhmm(m: int) -> str:
    sign = "-" if m < 0 else ""
    m = abs(int(m or 0))
    return f"{sign}{m//60:02d}:{m%60:02d}"


# ======================================================
# ARITHMETIC
# ======================================================
def seconds_between(start: time, end: time) -> int:
    """Signed seconds from ``start`` to ``end`` on the same day."""
    return (end.hour * 3600 + end.minute * 60 + end.second) - (
        start.hour * 3600 + start.minute * 60 + start.second
    )


def add_one_second(t: time) -> Optional[time]:
    """``t`` + 1s, or None if that would roll past midnight."""
    moved = datetime.combine(date.min, t) + timedelta(seconds=1)
    if moved.date() != date.min:
        return None
    return moved.time()


def week_start(d: date) -> date:
    """Monday of the calendar week containing ``d``."""
    return d - timedelta(days=d.weekday())
