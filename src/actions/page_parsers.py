# page_parsers.py
"""
Deterministic page parsers used by the extraction strategies:

- parse_json_ld: first schema.org Event node in <script type="application/ld+json">
- regex_extract / regex_extract_text: title, dates, city, venue, organizer heuristics
- stub_result: last-resort record (country from the TLD only)

Every field a parser fills carries an EvidenceTag pointing at the text it came from.
"""
import json
import logging
import re
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from artifacts import EvidenceTag, JsonLdResult, RegexResult, SearchResultItem, StubResult
from utils.country import country_from_tld
from utils.date_parser import parse_dates
from utils.text_cleaner import VALID_CITIES, clean_text, truncate

logger = logging.getLogger(__name__)

JSONLD_CONFIDENCE = 0.9
REGEX_CONFIDENCE = 0.6
CITY_LIST_CONFIDENCE = 0.5
TLD_CONFIDENCE = 0.2
MAX_TEXT_CHARS = 50000
SNIPPET_CHARS = 200

DE_CITIES = ["Berlin", "München", "Munich", "Hamburg", "Köln", "Cologne", "Frankfurt", "Stuttgart",
             "Düsseldorf", "Leipzig", "Bremen", "Dresden", "Hannover", "Nürnberg", "Nuremberg",
             "Heidelberg", "Freiburg", "Aachen", "Bonn", "Münster", "Mainz", "Wiesbaden"]

_DE_CITY_RE = re.compile(r"\b(" + "|".join(re.escape(c) for c in DE_CITIES) + r")\b", re.I)
_ANY_CITY_RE = re.compile(
    r"\b(" + "|".join(re.escape(c) for c in sorted(VALID_CITIES, key=len, reverse=True)) + r")\b", re.I)

_AT_PLACE_RE = re.compile(r"\bat\s+(?:the\s+)?([A-ZÄÖÜ][^,.\n]{2,60}),\s*([A-ZÄÖÜ][A-Za-zÀ-ÿäöüß\- ]{2,40})")
_IN_PLACE_RE = re.compile(r"\bin\s+([A-ZÄÖÜ][A-Za-zÀ-ÿäöüß\-]{2,40}),\s*([A-ZÄÖÜ][A-Za-zÀ-ÿäöüß\- ]{2,40})")
_VENUE_LABEL_RE = re.compile(r"\b(?:Venue|Veranstaltungsort|Tagungsort|Location|Lieu)\s*:\s*([^\n|;]{3,80})", re.I)
_ORGANIZER_RES = [
    re.compile(r"\borgani[sz]ed by\s+([^,.\n]{2,80})", re.I),
    re.compile(r"\bhosted by\s+([^,.\n]{2,80})", re.I),
    re.compile(r"\bpresented by\s+([^,.\n]{2,80})", re.I),
    re.compile(r"\bsponsored by\s+([^,.\n]{2,80})", re.I),
    re.compile(r"\bVeranstalter\s*:\s*([^,.\n]{2,80})", re.I),
]

_COUNTRY_WORDS = {"germany": "Germany", "deutschland": "Germany", "france": "France", "netherlands": "Netherlands",
                  "nederland": "Netherlands", "united kingdom": "United Kingdom", "uk": "United Kingdom",
                  "austria": "Austria", "österreich": "Austria", "switzerland": "Switzerland",
                  "schweiz": "Switzerland", "spain": "Spain", "españa": "Spain", "italy": "Italy",
                  "italia": "Italy", "belgium": "Belgium"}


def _tag(field: str, snippet: Any, confidence: float, url: str, section: str) -> EvidenceTag:
    text = snippet if isinstance(snippet, str) else json.dumps(snippet, ensure_ascii=False, default=str)
    return EvidenceTag(field=field, snippet=truncate(text, SNIPPET_CHARS), confidence=confidence,
                       source_url=url, source_section=section)


def _context(text: str, start: int, end: int, pad: int = 40) -> str:
    return text[max(0, start - pad): min(len(text), end + pad)].strip()


# ----------------------------------------------------------------------------
# JSON-LD
# ----------------------------------------------------------------------------

def _iter_nodes(data: Any) -> Iterable[Dict[str, Any]]:
    if isinstance(data, list):
        for item in data:
            yield from _iter_nodes(item)
    elif isinstance(data, dict):
        yield data
        if isinstance(data.get("@graph"), list):
            yield from _iter_nodes(data["@graph"])


def _is_event_node(node: Dict[str, Any]) -> bool:
    raw = node.get("@type") or node.get("type") or ""
    types = raw if isinstance(raw, list) else [raw]
    return any("event" in str(t).lower() for t in types)


def _name_of(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        name = value.get("name")
        return name.strip() if isinstance(name, str) and name.strip() else None
    if isinstance(value, list) and value:
        return _name_of(value[0])
    return None


def _first_dict(value: Any) -> Dict[str, Any]:
    if isinstance(value, list):
        value = next((v for v in value if isinstance(v, dict)), {})
    return value if isinstance(value, dict) else {}


def parse_json_ld(html: Optional[str], url: str) -> Optional[JsonLdResult]:
    """First node whose @type contains 'Event' (lists and @graph are walked); None if absent"""
    if not html or "ld+json" not in html:
        return None
    soup = BeautifulSoup(html, "html.parser")
    for script in soup.find_all("script", attrs={"type": re.compile(r"application/ld\+json", re.I)}):
        raw = script.string or script.get_text() or ""
        try:
            data = json.loads(raw)
        except ValueError:
            logger.debug(f"[PARSE][JSONLD] bad JSON-LD block on {url}")
            continue
        for node in _iter_nodes(data):
            if _is_event_node(node):
                return _json_ld_result(node, url)
    return None


def _json_ld_result(node: Dict[str, Any], url: str) -> JsonLdResult:
    location = _first_dict(node.get("location"))
    if not location and isinstance(node.get("location"), str):
        location = {"name": node["location"]}
    address = location.get("address") if isinstance(location.get("address"), dict) else {}

    fields: Dict[str, Any] = {
        "title": _name_of(node.get("name")),
        "starts_at": node.get("startDate") if isinstance(node.get("startDate"), str) else None,
        "ends_at": node.get("endDate") if isinstance(node.get("endDate"), str) else None,
        "city": address.get("addressLocality") if isinstance(address.get("addressLocality"), str) else None,
        "country": _name_of(address.get("addressCountry") or address.get("country")),
        "venue": location.get("name") if isinstance(location.get("name"), str) else address.get("streetAddress"),
        "organizer": _name_of(node.get("organizer")),
        "description": node.get("description") if isinstance(node.get("description"), str) else None,
    }
    performers = node.get("performer") or []
    if isinstance(performers, dict):
        performers = [performers]
    speakers = [{"name": n} for n in (_name_of(p) for p in performers if isinstance(performers, list)) if n]
    if speakers:
        fields["speakers"] = speakers

    source_keys = {"title": "name", "starts_at": "startDate", "ends_at": "endDate",
                   "city": "location.address.addressLocality", "country": "location.address.addressCountry",
                   "venue": "location.name", "organizer": "organizer", "speakers": "performer"}
    evidence = [
        _tag(name, f"{key}: {fields[name] if isinstance(fields[name], str) else json.dumps(fields[name], ensure_ascii=False)}",
             JSONLD_CONFIDENCE, url, "jsonld")
        for name, key in source_keys.items() if fields.get(name)
    ]
    print(f"[PARSE][JSONLD] {url}: {sorted(k for k, v in fields.items() if v)}")
    return JsonLdResult(url=url, fields={k: v for k, v in fields.items() if v}, evidence=evidence)


# ----------------------------------------------------------------------------
# Regex heuristics
# ----------------------------------------------------------------------------

def html_to_text(html: Optional[str]) -> str:
    if not html:
        return ""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return re.sub(r"\s+", " ", soup.get_text(" ")).strip()[:MAX_TEXT_CHARS]


def _html_title(html: str) -> Optional[str]:
    soup = BeautifulSoup(html, "html.parser")
    title_tag = soup.find("title")
    if title_tag and title_tag.get_text().strip():
        return title_tag.get_text().strip()
    h1 = soup.find("h1")
    return h1.get_text().strip() if h1 and h1.get_text().strip() else None


def _find_location(text: str, url: str, evidence: List[EvidenceTag]) -> Dict[str, Optional[str]]:
    found: Dict[str, Optional[str]] = {"venue": None, "city": None, "country": None}

    m = _AT_PLACE_RE.search(text)
    if m:
        found["venue"], found["city"] = m.group(1).strip(), m.group(2).strip()
        snippet = _context(text, m.start(), m.end(), pad=0)
        evidence.append(_tag("venue", snippet, REGEX_CONFIDENCE, url, "body"))
        evidence.append(_tag("city", snippet, REGEX_CONFIDENCE, url, "body"))
    else:
        m = _IN_PLACE_RE.search(text)
        if m and (m.group(1).lower() in VALID_CITIES or m.group(2).strip().lower() in _COUNTRY_WORDS):
            found["city"] = m.group(1).strip()
            evidence.append(_tag("city", _context(text, m.start(), m.end(), pad=0), REGEX_CONFIDENCE, url, "body"))
            country = _COUNTRY_WORDS.get(m.group(2).strip().lower())
            if country:
                found["country"] = country
                evidence.append(_tag("country", m.group(0), REGEX_CONFIDENCE, url, "body"))

    if not found["venue"]:
        m = _VENUE_LABEL_RE.search(text)
        if m:
            found["venue"] = m.group(1).strip()
            evidence.append(_tag("venue", m.group(0), REGEX_CONFIDENCE, url, "body"))

    if not found["city"]:
        m = _DE_CITY_RE.search(text) or _ANY_CITY_RE.search(text)
        if m:
            found["city"] = m.group(1)
            evidence.append(_tag("city", _context(text, m.start(), m.end()), CITY_LIST_CONFIDENCE, url, "body"))
    return found


def regex_extract_text(text: str, url: str, title: Optional[str] = None,
                       today: Optional[date] = None, title_section: str = "title") -> RegexResult:
    """Heuristic fields from plain text or markdown; title is taken as given"""
    text = (text or "")[:MAX_TEXT_CHARS]
    evidence: List[EvidenceTag] = []
    fields: Dict[str, Any] = {}

    title = clean_text(title)
    if title:
        fields["title"] = title
        evidence.append(_tag("title", title, REGEX_CONFIDENCE, url, title_section))

    dates = parse_dates(text, today)
    if dates.starts_at:
        fields["starts_at"] = dates.starts_at
        evidence.append(_tag("starts_at", dates.snippet, REGEX_CONFIDENCE, url, f"body:{dates.pattern}"))
        if dates.ends_at:
            fields["ends_at"] = dates.ends_at
            evidence.append(_tag("ends_at", dates.snippet, REGEX_CONFIDENCE, url, f"body:{dates.pattern}"))

    location = _find_location(text, url, evidence)
    fields.update({k: v for k, v in location.items() if v})

    if not fields.get("country"):
        host_country = country_from_tld(url)
        if host_country:
            fields["country"] = host_country
            evidence.append(_tag("country", url, TLD_CONFIDENCE, url, "tld"))
        elif fields.get("city") and _DE_CITY_RE.fullmatch(fields["city"]):
            fields["country"] = "Germany"
            evidence.append(_tag("country", fields["city"], CITY_LIST_CONFIDENCE, url, "city"))

    for pattern in _ORGANIZER_RES:
        m = pattern.search(text)
        if m:
            fields["organizer"] = m.group(1).strip()
            evidence.append(_tag("organizer", m.group(0), REGEX_CONFIDENCE, url, "body"))
            break

    return RegexResult(url=url, fields=fields, evidence=evidence)


def regex_extract(html: Optional[str], url: str, today: Optional[date] = None) -> RegexResult:
    """Regex fallback over fetched raw HTML"""
    html = html or ""
    return regex_extract_text(html_to_text(html), url, title=_html_title(html) if html else None, today=today)


def search_item_result(item: SearchResultItem, today: Optional[date] = None) -> RegexResult:
    """Regex fields from a search hit's markdown (or snippet when no markdown came back)"""
    text = item.markdown or item.snippet or ""
    result = regex_extract_text(text, item.url, title=item.title or None, today=today, title_section="search_title")
    if item.snippet:
        result.fields.setdefault("description", item.snippet)
    return result


def stub_result(url: str) -> StubResult:
    """Minimal record: only the TLD-derived country is known"""
    country = country_from_tld(url)
    if not country:
        return StubResult(url=url)
    return StubResult(url=url, fields={"country": country},
                      evidence=[_tag("country", url, TLD_CONFIDENCE, url, "tld")])
