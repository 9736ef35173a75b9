# date_parser.py
"""
Multilingual (de/en/fr/nl) event date extraction.

Patterns are tried most-specific first so that ranges win over the single
dates they contain. Every candidate date must be a real calendar date and
fall inside the plausibility window (1 year back, 2 years ahead).
"""
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Callable, List, Optional, Tuple

MONTHS = {
    "jan": 1, "januar": 1, "january": 1, "janvier": 1, "jänner": 1, "januari": 1,
    "feb": 2, "februar": 2, "february": 2, "février": 2, "fevrier": 2, "februari": 2,
    "mär": 3, "märz": 3, "maerz": 3, "mar": 3, "march": 3, "mars": 3, "maart": 3,
    "apr": 4, "april": 4, "avril": 4,
    "mai": 5, "may": 5, "mei": 5,
    "jun": 6, "juni": 6, "june": 6, "juin": 6,
    "jul": 7, "juli": 7, "july": 7, "juillet": 7,
    "aug": 8, "august": 8, "août": 8, "aout": 8, "augustus": 8,
    "sep": 9, "sept": 9, "september": 9, "septembre": 9,
    "okt": 10, "oct": 10, "oktober": 10, "october": 10, "octobre": 10,
    "nov": 11, "november": 11, "novembre": 11,
    "dez": 12, "dec": 12, "dezember": 12, "december": 12, "décembre": 12, "decembre": 12,
}

PAST_WINDOW_DAYS = 365
FUTURE_WINDOW_DAYS = 730

_MON = r"([A-Za-zÄÖÜäöüßéû\.]{3,12})"
_DASH = r"\s*(?:[–—-]|to|bis|au|tot)\s*"


@dataclass
class DateMatch:
    starts_at: Optional[str]
    ends_at: Optional[str]
    snippet: str
    pattern: str


def month_number(name: str) -> Optional[int]:
    return MONTHS.get((name or "").lower().rstrip("."))


def _year(y: str) -> int:
    return int(y) + 2000 if len(y) == 2 else int(y)


def _safe_date(y: int, m: int, d: int) -> Optional[date]:
    try:
        return date(y, m, d)
    except (ValueError, TypeError):
        return None


def parse_iso(value: Optional[str]) -> Optional[date]:
    if not value or not isinstance(value, str):
        return None
    m = re.match(r"^\s*(\d{4})-(\d{2})-(\d{2})", value)
    if not m:
        return None
    return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))


def is_plausible(d: Optional[date], today: Optional[date] = None) -> bool:
    if d is None:
        return False
    today = today or date.today()
    return today - timedelta(days=PAST_WINDOW_DAYS) <= d <= today + timedelta(days=FUTURE_WINDOW_DAYS)


# --- pattern handlers: regex match -> (start, end) dates --------------------

def _iso_range(m) -> Tuple[Optional[date], Optional[date]]:
    return parse_iso(m.group(1)), parse_iso(m.group(2))


def _numeric_day_range(m):
    y, mo = _year(m.group(4)), int(m.group(3))
    return _safe_date(y, mo, int(m.group(1))), _safe_date(y, mo, int(m.group(2)))


def _named_day_range(m):
    mo = month_number(m.group(3))
    if not mo:
        return None, None
    y = int(m.group(4))
    return _safe_date(y, mo, int(m.group(1))), _safe_date(y, mo, int(m.group(2)))


def _english_day_range(m):
    mo = month_number(m.group(1))
    if not mo:
        return None, None
    y = int(m.group(4))
    return _safe_date(y, mo, int(m.group(2))), _safe_date(y, mo, int(m.group(3)))


def _day_month_year(m):
    mo = month_number(m.group(2))
    if not mo:
        return None, None
    return _safe_date(int(m.group(3)), mo, int(m.group(1))), None


def _month_day_year(m):
    mo = month_number(m.group(1))
    if not mo:
        return None, None
    return _safe_date(int(m.group(3)), mo, int(m.group(2))), None


def _numeric_date(m):
    return _safe_date(_year(m.group(3)), int(m.group(2)), int(m.group(1))), None


def _iso_single(m):
    return parse_iso(m.group(1)), None


PATTERNS: List[Tuple[str, "re.Pattern", Callable]] = [
    # 2025-09-18 to 2025-09-19
    ("iso_range", re.compile(r"\b(\d{4}-\d{2}-\d{2})" + _DASH + r"(\d{4}-\d{2}-\d{2})\b"), _iso_range),
    # 18.–19.09.2025 / 18-19.09.2025
    ("numeric_day_range", re.compile(r"\b(\d{1,2})\.?\s*[–—-]\s*(\d{1,2})\.(\d{1,2})\.(\d{4})\b"), _numeric_day_range),
    # 18./19.09.2025
    ("slash_day_range", re.compile(r"\b(\d{1,2})\.\s*/\s*(\d{1,2})\.(\d{1,2})\.(\d{4})\b"), _numeric_day_range),
    # 18. bis 19. September 2025
    ("bis_range", re.compile(r"\b(\d{1,2})\.\s*bis\s*(\d{1,2})\.\s*" + _MON + r"\s+(\d{4})\b", re.I), _named_day_range),
    # 18.–19. September 2025 / 18-19 Sep 2025
    ("named_day_range", re.compile(r"\b(\d{1,2})\.?\s*[–—-]\s*(\d{1,2})\.?\s+" + _MON + r"\s+(\d{4})\b", re.I), _named_day_range),
    # September 18-19, 2025
    ("english_day_range", re.compile(r"\b" + _MON + r"\s+(\d{1,2})\s*[–—-]\s*(\d{1,2}),?\s+(\d{4})\b", re.I), _english_day_range),
    # 25. September 2025 / 25 Sep 2025 / 25 septembre 2025
    ("day_month_year", re.compile(r"\b(\d{1,2})\.?\s+" + _MON + r"\s+(\d{4})\b", re.I), _day_month_year),
    # September 25, 2025
    ("month_day_year", re.compile(r"\b" + _MON + r"\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\b", re.I), _month_day_year),
    # 25.09.2025 / 25/09/2025 / 25-09-2025
    ("numeric_date", re.compile(r"\b(\d{1,2})[./-](\d{1,2})[./-](\d{4}|\d{2})\b"), _numeric_date),
    # 2025-09-25
    ("iso_date", re.compile(r"\b(\d{4}-\d{2}-\d{2})\b"), _iso_single),
]

_YEARLESS_RE = re.compile(r"\b(\d{1,2})\.\s*" + _MON + r"\b(?!\s*\d)", re.I)


def _yearless_future(text: str, today: date) -> Optional[DateMatch]:
    """'25. September' with no year: this year if still ahead, else next year"""
    for m in _YEARLESS_RE.finditer(text):
        mo = month_number(m.group(2))
        if not mo:
            continue
        day = int(m.group(1))
        for year in (today.year, today.year + 1):
            d = _safe_date(year, mo, day)
            if d and d >= today:
                return DateMatch(d.isoformat(), None, m.group(0), "yearless")
        return None
    return None


def parse_dates(text: Optional[str], today: Optional[date] = None) -> DateMatch:
    """First plausible start/end date pair found in text"""
    today = today or date.today()
    if not text:
        return DateMatch(None, None, "", "none")

    for name, regex, handler in PATTERNS:
        for m in regex.finditer(text):
            start, end = handler(m)
            if not start or not is_plausible(start, today):
                continue
            if end and (end < start or (end - start).days > 60):
                end = None
            return DateMatch(start.isoformat(), end.isoformat() if end else None, m.group(0), name)

    yearless = _yearless_future(text, today)
    if yearless:
        return yearless
    return DateMatch(None, None, "", "none")


def build_date_filter(date_from: Optional[str], date_to: Optional[str]) -> Optional[str]:
    """Google 'tbs' custom date range: cdr:1,cd_min:M/D/YYYY,cd_max:M/D/YYYY"""
    start, end = parse_iso(date_from), parse_iso(date_to)
    if not start and not end:
        return None
    parts = ["cdr:1"]
    if start:
        parts.append(f"cd_min:{start.month}/{start.day}/{start.year}")
    if end:
        parts.append(f"cd_max:{end.month}/{end.day}/{end.year}")
    return ",".join(parts)
