# text_cleaner.py
"""
Text normalization for extracted event fields: entity decoding, tag stripping,
venue/city cleanup with allow/deny lists, URL and title canonical keys.
"""
import html
import re
from typing import Optional
from urllib.parse import urlparse, unquote

from utils.country import COUNTRY_BY_CODE

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")

VALID_CITIES = {c.lower() for c in [
    # DE
    "berlin", "hamburg", "münchen", "munich", "köln", "cologne", "frankfurt", "stuttgart",
    "düsseldorf", "dortmund", "essen", "leipzig", "bremen", "dresden", "hannover",
    "nürnberg", "nuremberg", "duisburg", "bochum", "wuppertal", "bonn", "bielefeld",
    "mannheim", "karlsruhe", "münster", "wiesbaden", "augsburg", "aachen", "freiburg",
    "krefeld", "lübeck", "oberhausen", "erfurt", "mainz", "rostock", "kiel", "halle",
    "magdeburg", "braunschweig", "chemnitz", "mönchengladbach", "gelsenkirchen", "heidelberg",
    # FR
    "paris", "lyon", "marseille", "toulouse", "nice", "nantes", "strasbourg", "montpellier",
    "bordeaux", "lille", "rennes", "reims", "saint-étienne", "toulon", "grenoble",
    # NL
    "amsterdam", "rotterdam", "the hague", "den haag", "utrecht", "eindhoven", "groningen",
    "tilburg", "almere", "breda", "nijmegen", "enschede", "haarlem", "arnhem",
    # UK
    "london", "birmingham", "manchester", "glasgow", "liverpool", "leeds", "sheffield",
    "edinburgh", "bristol", "cardiff", "belfast", "newcastle", "nottingham", "leicester",
    # other EU
    "vienna", "wien", "zurich", "zürich", "brussels", "brussel", "copenhagen", "stockholm", "oslo",
    "helsinki", "dublin", "madrid", "barcelona", "rome", "milan", "warsaw", "prague",
    # ascii spellings
    "muenchen", "koeln", "duesseldorf", "nuernberg", "moenchengladbach",
]}

INVALID_CITY_TERMS = {t.lower() for t in [
    "praxisnah", "whistleblowing", "politik", "forschung", "innovation", "entwicklung",
    "compliance", "legal", "investigation", "ediscovery", "audit", "risk", "governance",
    "regulation", "policy", "framework", "standard", "procedure", "process",
    "management", "strategy", "implementation", "monitoring", "reporting",
    "training", "education", "certification", "accreditation", "assessment",
    "online", "virtual", "hybrid", "webinar", "conference", "summit", "workshop",
    "seminar", "event", "meeting", "session", "track", "agenda", "program",
]}

GENERIC_TITLES = {"event", "events", "untitled event", "untitled", "home", "homepage", "startseite",
                  "veranstaltungen", "termine", "agenda", "news", "page not found"}

_ERROR_TITLE_RE = re.compile(r"\b(404|not found|error|seite nicht gefunden|access denied|forbidden)\b", re.I)

_VENUE_PREFIX_RE = re.compile(r"^(venue|location|address|adresse|ort|veranstaltungsort)\s*:?\s*", re.I)
_CITY_PREFIX_RE = re.compile(r"^(city|stadt|ort|location)\s*:?\s*", re.I)
_NON_PLACE_WORDS_RE = re.compile(r"\b(Vorständ\w*|Mitarbeiter|Studenten|Teilnehmer|Personen|up to|bis zu|maximal|maximum)\b", re.I)
_JOB_WORDS_RE = re.compile(r"\b(Compliance|Officer|Manager|Director|Lead|Head|Chief)\b.*$", re.I)
_CITY_CHARS_RE = re.compile(r"^[A-Za-zÀ-ÿäöüÄÖÜß\s\-]+$")


def clean_text(s: Optional[str]) -> Optional[str]:
    """Decode entities, strip tags, collapse whitespace and trim list/label debris"""
    if not s or not isinstance(s, str):
        return None
    cleaned = html.unescape(s)
    cleaned = _TAG_RE.sub(" ", cleaned)
    cleaned = _WS_RE.sub(" ", cleaned).strip()

    cleaned = re.sub(r"^\d+\s*-\s*", "", cleaned)
    cleaned = re.sub(r"^[•\-\*]\s*", "", cleaned)
    cleaned = re.sub(r"\s*[•\-\*]\s*$", "", cleaned)
    cleaned = re.sub(r"^[:\-]\s*", "", cleaned)
    cleaned = re.sub(r"\s*[:\-]\s*$", "", cleaned)
    return cleaned.strip() or None


def clean_venue(s: Optional[str]) -> Optional[str]:
    cleaned = clean_text(s)
    if not cleaned:
        return None
    cleaned = _VENUE_PREFIX_RE.sub("", cleaned)
    cleaned = re.sub(r"\s+(Erlangung|Aufrechterhaltung|Sachkunde|Mitarbeiter|Studenten|Teilnehmer).*$", "", cleaned, flags=re.I)
    cleaned = re.sub(r"\s+(up to|bis zu|maximal|maximum)\b.*$", "", cleaned, flags=re.I)
    cleaned = cleaned.strip(" ,;")
    if len(cleaned) > 80:
        return None
    if _NON_PLACE_WORDS_RE.search(cleaned):
        return None
    return cleaned or None


def clean_city(s: Optional[str]) -> Optional[str]:
    """City names only: deny-list first, then allow-list, then a strict shape check"""
    cleaned = clean_text(s)
    if not cleaned:
        return None
    cleaned = _CITY_PREFIX_RE.sub("", cleaned)
    cleaned = _NON_PLACE_WORDS_RE.sub("", cleaned)
    cleaned = _JOB_WORDS_RE.sub("", cleaned).strip(" ,;")
    if not cleaned or len(cleaned) > 50:
        return None

    lowered = cleaned.lower()
    words = set(re.split(r"[\s\-]+", lowered))
    if lowered in INVALID_CITY_TERMS or words & INVALID_CITY_TERMS:
        return None
    if lowered in VALID_CITIES:
        return cleaned
    if len(cleaned) < 3 or not _CITY_CHARS_RE.match(cleaned):
        return None
    return cleaned


def normalize_country(val: Optional[str]) -> Optional[str]:
    """ISO-ish codes become full names; anything else is kept as written"""
    cleaned = clean_text(val)
    if not cleaned:
        return None
    return COUNTRY_BY_CODE.get(cleaned.lower(), cleaned) if len(cleaned) == 2 else cleaned


def normalize_iso_date(val: Optional[str]) -> Optional[str]:
    """Trim datetimes to YYYY-MM-DD; non-ISO strings are dropped"""
    if not val or not isinstance(val, str):
        return None
    m = re.match(r"^\s*(\d{4}-\d{2}-\d{2})", val)
    return m.group(1) if m else None


def normalize_url(u: str) -> str:
    """Canonical cache/dedup key: lowercase host + path, no query, no fragment, no trailing slash"""
    raw = (u or "").strip()
    try:
        parsed = urlparse(raw if "://" in raw else f"http://{raw}")
    except ValueError:
        return raw.lower()
    host = (parsed.hostname or "").lower()
    if not host:
        return raw.lower()
    if host.startswith("www."):
        host = host[4:]
    path = re.sub(r"/+$", "", parsed.path or "") or "/"
    return f"{host}{path}"


def hostname_of(u: str) -> str:
    try:
        return (urlparse(u).hostname or "").lower()
    except ValueError:
        return ""


def normalize_title_key(title: Optional[str]) -> str:
    if not title:
        return ""
    t = (clean_text(title) or "").lower()
    t = re.sub(r"[^\w\s]", " ", t)
    return _WS_RE.sub(" ", t).strip()


def is_generic_title(title: Optional[str]) -> bool:
    return normalize_title_key(title) in GENERIC_TITLES


def is_error_title(title: Optional[str]) -> bool:
    return bool(title) and bool(_ERROR_TITLE_RE.search(title))


def title_from_url(url: str) -> Optional[str]:
    """Readable title from the last path segment: 'legal-tech_summit-2026.html' -> 'Legal tech summit 2026'"""
    try:
        path = urlparse(url).path or ""
    except ValueError:
        return None
    segments = [s for s in path.split("/") if s]
    if not segments:
        return None
    last = unquote(segments[-1])
    last = re.sub(r"\.[a-z0-9]{2,5}$", "", last, flags=re.I)
    last = _WS_RE.sub(" ", re.sub(r"[-_]+", " ", last)).strip()
    if len(last) < 3 or last.isdigit():
        return None
    return last[0].upper() + last[1:]


def truncate(s: Optional[str], limit: int) -> str:
    s = s or ""
    return s if len(s) <= limit else s[: limit - 1].rstrip() + "…"
