# artifacts.py
"""
Data models shared across the pipeline: event candidates, evidence, traces,
search items and the per-strategy extraction results.
"""
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

SCALAR_FIELDS = ["title", "starts_at", "ends_at", "city", "country", "venue", "organizer"]
LIST_FIELDS = ["topics", "speakers", "sponsors", "participating_organizations", "partners", "competitors"]
DATA_FIELDS = SCALAR_FIELDS + LIST_FIELDS

TRACE_STEPS = ("cache", "jsonld", "aiExtract", "regex", "stub", "exception")


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


@dataclass
class Speaker:
    name: str
    org: Optional[str] = None
    title: Optional[str] = None
    speech_title: Optional[str] = None
    session: Optional[str] = None
    bio: Optional[str] = None


@dataclass
class Sponsor:
    name: str
    level: Optional[str] = None
    description: Optional[str] = None


@dataclass
class EvidenceTag:
    """Provenance for a single field: where the value was read from"""
    field: str
    snippet: str
    confidence: float
    source_url: Optional[str] = None
    source_section: Optional[str] = None
    extracted_at: str = field(default_factory=utc_now_iso)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any], source_url: Optional[str] = None) -> Optional["EvidenceTag"]:
        if not isinstance(raw, dict) or not raw.get("field"):
            return None
        try:
            confidence = float(raw.get("confidence", 0.5))
        except (TypeError, ValueError):
            return None
        return cls(
            field=str(raw["field"]),
            snippet=str(raw.get("snippet") or ""),
            confidence=confidence,
            source_url=raw.get("source_url") or source_url,
            source_section=raw.get("source_section"),
            extracted_at=raw.get("extracted_at") or utc_now_iso(),
        )


@dataclass
class EventCandidate:
    """One normalized event record; keyed by source_url"""
    source_url: str
    title: Optional[str] = None
    starts_at: Optional[str] = None
    ends_at: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    venue: Optional[str] = None
    organizer: Optional[str] = None
    topics: List[str] = field(default_factory=list)
    speakers: List[Speaker] = field(default_factory=list)
    sponsors: List[Sponsor] = field(default_factory=list)
    participating_organizations: List[str] = field(default_factory=list)
    partners: List[str] = field(default_factory=list)
    competitors: List[str] = field(default_factory=list)
    confidence: Optional[float] = None
    confidence_reason: Optional[str] = None
    evidence: List[EvidenceTag] = field(default_factory=list)
    description: Optional[str] = None
    related_urls: List[str] = field(default_factory=list)
    source: str = "extract"
    accepted_by_country_gate: bool = False
    undated_candidate: bool = False

    def is_rich(self) -> bool:
        """Rich = has a start date, a city or a country"""
        return bool(self.starts_at or self.city or self.country)

    def has_date(self) -> bool:
        return bool(self.starts_at or self.ends_at)

    def evidence_fields(self) -> set:
        return {tag.field for tag in self.evidence}

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "EventCandidate":
        """Rebuild a candidate from to_dict() output (cache / event store payloads)"""
        data = dict(raw)
        data["speakers"] = [s if isinstance(s, Speaker) else Speaker(**s) for s in data.get("speakers") or []]
        data["sponsors"] = [s if isinstance(s, Sponsor) else Sponsor(**s) for s in data.get("sponsors") or []]
        data["evidence"] = [
            e if isinstance(e, EvidenceTag) else EvidenceTag(**e) for e in data.get("evidence") or []
        ]
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class TraceStep:
    url: str
    step: str                      # one of TRACE_STEPS
    rich: bool = False
    note: Optional[str] = None
    fell_through: bool = False     # ran but did not produce the URL's record

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SearchResultItem:
    url: str
    title: str = ""
    snippet: str = ""
    provider: str = "live"         # live | cache | demo
    markdown: Optional[str] = None


def tag_reused(items: List[SearchResultItem]) -> List[SearchResultItem]:
    """Copies of a shared search result marked as served from an in-flight request"""
    return [replace(item, provider="cache") for item in items]


# ---------------------------------------------------------------------------
# Strategy results
# ---------------------------------------------------------------------------

@dataclass
class JsonLdResult:
    url: str
    fields: Dict[str, Any]
    evidence: List[EvidenceTag] = field(default_factory=list)
    kind: str = "jsonld"


@dataclass
class AiExtractResult:
    url: str
    fields: Dict[str, Any]
    evidence: List[EvidenceTag] = field(default_factory=list)
    kind: str = "aiExtract"


@dataclass
class RegexResult:
    url: str
    fields: Dict[str, Any]
    evidence: List[EvidenceTag] = field(default_factory=list)
    kind: str = "regex"


@dataclass
class StubResult:
    url: str
    fields: Dict[str, Any] = field(default_factory=dict)
    evidence: List[EvidenceTag] = field(default_factory=list)
    kind: str = "stub"


ExtractionResultVariant = Union[JsonLdResult, AiExtractResult, RegexResult, StubResult]


def _as_str_list(value: Any) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    out = []
    for item in value:
        if isinstance(item, str) and item.strip():
            out.append(item.strip())
        elif isinstance(item, dict) and item.get("name"):
            out.append(str(item["name"]).strip())
    return out


def _as_speakers(value: Any) -> List[Speaker]:
    out = []
    for item in value or []:
        if isinstance(item, Speaker):
            out.append(item)
        elif isinstance(item, dict) and item.get("name"):
            out.append(Speaker(
                name=str(item["name"]),
                org=item.get("org"),
                title=item.get("title"),
                speech_title=item.get("speech_title"),
                session=item.get("session"),
                bio=item.get("bio"),
            ))
        elif isinstance(item, str) and item.strip():
            out.append(Speaker(name=item.strip()))
    return out


def _as_sponsors(value: Any) -> List[Sponsor]:
    out = []
    for item in value or []:
        if isinstance(item, Sponsor):
            out.append(item)
        elif isinstance(item, dict) and item.get("name"):
            out.append(Sponsor(name=str(item["name"]), level=item.get("level"), description=item.get("description")))
        elif isinstance(item, str) and item.strip():
            out.append(Sponsor(name=item.strip()))
    return out


def _as_scalar(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return value.strip() or None
    return None


def candidate_from_result(result: ExtractionResultVariant, source: str = "extract") -> EventCandidate:
    """Map any strategy result into one EventCandidate (no cleaning, no scoring)"""
    f = result.fields or {}
    return EventCandidate(
        source_url=result.url,
        title=_as_scalar(f.get("title")),
        starts_at=_as_scalar(f.get("starts_at")),
        ends_at=_as_scalar(f.get("ends_at")),
        city=_as_scalar(f.get("city")),
        country=_as_scalar(f.get("country")),
        venue=_as_scalar(f.get("venue")),
        organizer=_as_scalar(f.get("organizer")),
        topics=_as_str_list(f.get("topics")),
        speakers=_as_speakers(f.get("speakers")),
        sponsors=_as_sponsors(f.get("sponsors")),
        participating_organizations=_as_str_list(f.get("participating_organizations")),
        partners=_as_str_list(f.get("partners")),
        competitors=_as_str_list(f.get("competitors")),
        evidence=list(result.evidence),
        description=_as_scalar(f.get("description")),
        related_urls=_as_str_list(f.get("related_urls")),
        source=source,
    )
