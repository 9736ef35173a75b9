# timectx.py
"""Resolve the requested search window from explicit dates or a relative timeframe."""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from utils.date_parser import parse_iso

TIMEFRAMES = {
    "next_7": 7,
    "next_30": 30,
    "next_90": 90,
}

DEFAULT_WINDOW_DAYS = 30


class TimeWindowError(ValueError):
    """Bad window input; `code` is the stable error code surfaced to clients"""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code


@dataclass
class SearchWindow:
    date_from: Optional[str]
    date_to: Optional[str]
    source: str                 # "explicit" | "timeframe" | "default" | "open"

    @property
    def is_open(self) -> bool:
        return not self.date_from and not self.date_to

    def as_dates(self):
        return parse_iso(self.date_from), parse_iso(self.date_to)


def resolve_window(date_from: Optional[str] = None,
                   date_to: Optional[str] = None,
                   timeframe: Optional[str] = None,
                   country: Optional[str] = None,
                   today: Optional[date] = None,
                   require_range: bool = False) -> SearchWindow:
    """
    Explicit dates win over a timeframe. With neither, a single-country search
    defaults to the next 30 days while an EU-wide search stays open (unless
    require_range is set, in which case it is an error).
    """
    today = today or date.today()

    if timeframe and timeframe not in TIMEFRAMES:
        raise TimeWindowError("invalid_date_range", f"unknown timeframe '{timeframe}'")

    if date_from or date_to:
        start, end = parse_iso(date_from), parse_iso(date_to)
        if (date_from and not start) or (date_to and not end):
            raise TimeWindowError("invalid_date_range", "dates must be ISO YYYY-MM-DD")
        if start and end and start > end:
            raise TimeWindowError("invalid_date_range", "dateFrom is after dateTo")
        return SearchWindow(start.isoformat() if start else None,
                            end.isoformat() if end else None, "explicit")

    if timeframe:
        days = TIMEFRAMES[timeframe]
        return SearchWindow(today.isoformat(), (today + timedelta(days=days)).isoformat(), "timeframe")

    if require_range:
        raise TimeWindowError("date_range_required", "dateFrom/dateTo or timeframe required")

    if country and country.upper() != "EU":
        return SearchWindow(today.isoformat(), (today + timedelta(days=DEFAULT_WINDOW_DAYS)).isoformat(), "default")

    return SearchWindow(None, None, "open")
