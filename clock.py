# clock.py — business-timezone "today" with a deterministic test override

from __future__ import annotations
import re
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")


def parse_calendar_date(value: str) -> date:
    """
    Parse "YYYY-MM-DD" into a plain calendar date.
    Components are read as-is; nothing goes through a UTC-aware parser, so the
    day never shifts with the host timezone. Raises ValueError when malformed.
    """
    m = _DATE_RE.match((value or "").strip())
    if not m:
        raise ValueError(f"expected YYYY-MM-DD, got {value!r}")
    year, month, day = (int(x) for x in m.groups())
    return date(year, month, day)


class BusinessClock:
    def __init__(self, tz_name: str = "Europe/Berlin", override: Optional[date] = None):
        try:
            self.tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone {tz_name!r}") from e
        self.tz_name = tz_name
        self.override = override

    def today(self) -> date:
        if self.override is not None:
            return self.override
        return datetime.now(self.tz).date()

    def now_iso(self) -> str:
        return datetime.now(self.tz).isoformat()

    def describe(self) -> str:
        if self.override is not None:
            return f"{self.override.isoformat()} (simulated, {self.tz_name})"
        return f"{self.today().isoformat()} ({self.tz_name})"
