"""
Confidence & Evidence Validator

Pure functions: given a candidate and its evidence, drop every claimed field
without supporting evidence (hallucination guard) and compute a bounded,
deterministic confidence score.
"""

import logging
from dataclasses import replace
from datetime import date
from typing import List, Optional, Tuple

from artifacts import (
    DATA_FIELDS, LIST_FIELDS, SCALAR_FIELDS,
    EventCandidate, EvidenceTag, ExtractionResultVariant, candidate_from_result,
)
from utils.date_parser import is_plausible, parse_iso
from utils.text_cleaner import (
    clean_city, clean_text, clean_venue, is_error_title, is_generic_title,
    normalize_country, normalize_iso_date, title_from_url,
)

logger = logging.getLogger(__name__)

MAX_SNIPPET_LENGTH = 500
KEY_FIELDS = ("title", "starts_at", "city", "venue")
ERROR_TITLE_FLOOR = 0.1
URL_TITLE_CONFIDENCE = 0.3


def validate_evidence_tag(tag: EvidenceTag) -> bool:
    """Snippet at most 500 chars, confidence within [0, 1], known field"""
    if not isinstance(tag, EvidenceTag) or not tag.field:
        return False
    if tag.field not in DATA_FIELDS:
        return False
    if len(tag.snippet or "") > MAX_SNIPPET_LENGTH:
        return False
    return 0.0 <= tag.confidence <= 1.0


def _is_set(candidate: EventCandidate, name: str) -> bool:
    value = getattr(candidate, name)
    if name in LIST_FIELDS:
        return bool(value)
    return value is not None and value != ""


def apply_hallucination_guard(candidate: EventCandidate) -> EventCandidate:
    """Null scalar fields / clear list fields that have no evidence tag; returns a new candidate"""
    backed = candidate.evidence_fields()
    changes = {}
    for name in SCALAR_FIELDS:
        if name not in backed and getattr(candidate, name) is not None:
            changes[name] = None
    for name in LIST_FIELDS:
        if name not in backed and getattr(candidate, name):
            changes[name] = []
    if changes:
        logger.debug(f"[VALIDATOR][GUARD] {candidate.source_url}: dropped {sorted(changes)}")
        return replace(candidate, **changes)
    return candidate


def calculate_evidence_confidence(candidate: EventCandidate) -> float:
    if not candidate.evidence:
        return 0.3
    avg = sum(t.confidence for t in candidate.evidence) / len(candidate.evidence)
    backed = candidate.evidence_fields()
    score = avg
    score += 0.1 * sum(1 for f in KEY_FIELDS if f in backed)
    score -= 0.05 * sum(1 for f in DATA_FIELDS if _is_set(candidate, f) and f not in backed)
    return round(max(0.0, min(1.0, score)), 2)


def calculate_event_confidence(candidate: EventCandidate, today: Optional[date] = None) -> Tuple[float, List[str]]:
    """Field-completeness heuristic; returns (score, reasons)"""
    today = today or date.today()
    title = candidate.title or ""
    reasons = []
    score = 0.3

    if len(title) >= 10:
        score += 0.1
    if len(title) >= 20:
        score += 0.1
    lowered = title.lower()
    if title and "untitled" not in lowered and "event" not in lowered:
        score += 0.1
    if is_generic_title(title):
        score -= 0.2
        reasons.append("generic title")

    if candidate.starts_at:
        score += 0.2
        if is_plausible(parse_iso(candidate.starts_at), today):
            score += 0.1
        else:
            score -= 0.2
            reasons.append("implausible date")

    for name in ("city", "country", "venue", "organizer", "topics", "speakers"):
        if _is_set(candidate, name):
            score += 0.1
            reasons.append(name)

    if is_error_title(title) or len(title) < 3:
        reasons.append("error/placeholder title")
        return ERROR_TITLE_FLOOR, reasons

    return max(0.0, min(1.0, score)), reasons


def score_candidate(candidate: EventCandidate, today: Optional[date] = None) -> EventCandidate:
    """Blend the heuristic with the evidence score; error titles stay at the floor"""
    heuristic, reasons = calculate_event_confidence(candidate, today)
    if candidate.evidence:
        evidence_score = calculate_evidence_confidence(candidate)
        final = (heuristic + evidence_score) / 2
        reason = f"heuristic={heuristic:.2f} evidence={evidence_score:.2f}"
    else:
        final = heuristic
        reason = f"heuristic={heuristic:.2f}"
    if is_error_title(candidate.title) or len(candidate.title or "") < 3:
        final = min(final, ERROR_TITLE_FLOOR)
    final = round(max(0.0, min(1.0, final)), 2)
    if reasons:
        reason += "; " + ", ".join(reasons)
    return replace(candidate, confidence=final, confidence_reason=reason)


def _normalize_fields(candidate: EventCandidate) -> EventCandidate:
    starts_at = normalize_iso_date(candidate.starts_at)
    ends_at = normalize_iso_date(candidate.ends_at)
    if starts_at and ends_at and ends_at < starts_at:
        ends_at = None
    return replace(
        candidate,
        title=clean_text(candidate.title),
        starts_at=starts_at,
        ends_at=ends_at,
        city=clean_city(candidate.city),
        country=normalize_country(candidate.country),
        venue=clean_venue(candidate.venue),
        organizer=clean_text(candidate.organizer),
        topics=[t for t in (clean_text(x) for x in candidate.topics) if t],
        description=clean_text(candidate.description),
    )


def _drop_orphan_evidence(candidate: EventCandidate) -> EventCandidate:
    """Evidence for fields that cleaning removed no longer supports anything"""
    kept = [t for t in candidate.evidence if _is_set(candidate, t.field)]
    if len(kept) != len(candidate.evidence):
        return replace(candidate, evidence=kept)
    return candidate


def _title_from_url(candidate: EventCandidate) -> EventCandidate:
    derived = title_from_url(candidate.source_url) or "Event"
    tag = EvidenceTag(field="title", snippet=candidate.source_url[:MAX_SNIPPET_LENGTH],
                      confidence=URL_TITLE_CONFIDENCE, source_url=candidate.source_url,
                      source_section="url_path")
    return replace(candidate, title=derived,
                   evidence=[t for t in candidate.evidence if t.field != "title"] + [tag])


def shape(result: ExtractionResultVariant, source: str = "extract", today: Optional[date] = None) -> EventCandidate:
    """
    Map a strategy result into a validated, scored candidate:
    union mapping -> evidence validation -> guard -> cleanup -> title fallback -> score.
    """
    candidate = candidate_from_result(result, source=source)
    candidate = replace(candidate, evidence=[t for t in candidate.evidence if validate_evidence_tag(t)])
    candidate = apply_hallucination_guard(candidate)
    candidate = _normalize_fields(candidate)
    if not candidate.title:
        candidate = _title_from_url(candidate)
    candidate = _drop_orphan_evidence(candidate)
    return score_candidate(candidate, today)
