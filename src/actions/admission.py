"""
Country/Date Admission Filter
Decides which extracted candidates belong to the requested country and date
window. Country matching walks four tiers (explicit country, EU membership,
textual mention, TLD) with a confidence-weighted override; dates are checked
against the requested range widened by a tolerance.
"""

import re
import hashlib
import logging
from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from config_manager import get_config
from artifacts import EventCandidate
from memory.cache_memory import LocationHintCache
from utils.country import (
    COUNTRY_CONFIG, EU_COUNTRIES, EUROPE_KEYWORDS,
    country_display_name, iso2_from_tld, to_iso2,
)
from utils.date_parser import parse_iso
from utils.text_cleaner import normalize_title_key, normalize_url, is_generic_title

# Setup logging
logger = logging.getLogger(__name__)


@dataclass
class AdmissionResult:
    events: List[EventCandidate] = field(default_factory=list)
    rejected: List[EventCandidate] = field(default_factory=list)
    undated: List[EventCandidate] = field(default_factory=list)
    degraded: bool = False
    reasons: Dict[str, int] = field(default_factory=dict)

    def summary(self) -> Dict[str, object]:
        return {
            "admitted": len(self.events),
            "rejected": len(self.rejected),
            "undated": len(self.undated),
            "degraded": self.degraded,
            "reasons": dict(self.reasons),
        }


class AdmissionFilter:
    """Country tiers + date tolerance over a list of candidates"""

    def __init__(self,
                 country: str,
                 date_from: Optional[str] = None,
                 date_to: Optional[str] = None,
                 allow_undated: bool = False,
                 tolerance_days: Optional[int] = None,
                 override_confidence: Optional[float] = None,
                 undated_fallback_limit: Optional[int] = None,
                 hints: Optional[LocationHintCache] = None):
        cfg = get_config()
        self.target = to_iso2(country)
        if not self.target:
            raise ValueError(f"unknown country '{country}'")
        self.allow_undated = allow_undated
        self.tolerance_days = cfg.get('admission.tolerance_days', 7) if tolerance_days is None else tolerance_days
        self.override_confidence = (cfg.get('admission.override_confidence', 0.75)
                                    if override_confidence is None else override_confidence)
        self.undated_fallback_limit = (cfg.get('admission.undated_fallback_limit', 5)
                                       if undated_fallback_limit is None else undated_fallback_limit)
        self.hints = hints if hints is not None else LocationHintCache()

        tolerance = timedelta(days=self.tolerance_days)
        start, end = parse_iso(date_from), parse_iso(date_to)
        self.window_start: Optional[date] = start - tolerance if start else None
        self.window_end: Optional[date] = end + tolerance if end else None

        self._mention_re = self._build_mention_re()

    def _build_mention_re(self) -> Optional["re.Pattern"]:
        if self.target == "EU":
            terms = list(EUROPE_KEYWORDS)
        elif self.target in COUNTRY_CONFIG:
            terms = COUNTRY_CONFIG[self.target].mention_terms()
        else:
            terms = [country_display_name(self.target)]
        terms = [t for t in terms if t and len(t) > 2]
        if not terms:
            return None
        return re.compile(r"\b(" + "|".join(re.escape(t) for t in terms) + r")\b", re.I)

    # ------------------------------------------------------------------
    # Country
    # ------------------------------------------------------------------

    def _in_target(self, iso: Optional[str]) -> bool:
        if not iso:
            return False
        if self.target == "EU":
            return iso == "EU" or iso in EU_COUNTRIES
        return iso == self.target

    def _is_contradicting(self, candidate: EventCandidate) -> bool:
        iso = to_iso2(candidate.country)
        return bool(iso) and not self._in_target(iso)

    @staticmethod
    def _location_text(candidate: EventCandidate) -> str:
        parts = [candidate.title, candidate.description, candidate.city, candidate.venue]
        parts.extend(candidate.related_urls)
        return " ".join(p for p in parts if p)

    def _mentions_target(self, candidate: EventCandidate) -> bool:
        """Tier 3, memoized per (target, url, location text)"""
        text = self._location_text(candidate)
        digest = hashlib.sha1(text.encode("utf-8")).hexdigest()[:16]
        key = f"mention|{self.target}|{normalize_url(candidate.source_url)}|{digest}"
        cached = self.hints.get(key)
        if cached is not None:
            return cached
        found = bool(self._mention_re and self._mention_re.search(text))
        self.hints.put(key, found)
        return found

    def _tld_matches(self, candidate: EventCandidate) -> bool:
        """Tier 4, memoized per url"""
        key = f"tld|{normalize_url(candidate.source_url)}"
        iso = self.hints.get(key)
        if iso is None:
            iso = iso2_from_tld(candidate.source_url) or ""
            self.hints.put(key, iso)
        return self._in_target(iso)

    def _europe_keyword(self, candidate: EventCandidate) -> bool:
        text = " ".join(p for p in [candidate.country, candidate.city, candidate.venue] if p).lower()
        return any(k in text for k in EUROPE_KEYWORDS)

    def match_country(self, candidate: EventCandidate) -> Tuple[bool, str]:
        """(admitted, tier or reason)"""
        iso = to_iso2(candidate.country)

        if self.target != "EU" and iso == self.target:
            return True, "exact"
        if self.target == "EU" and (self._in_target(iso) or self._europe_keyword(candidate)):
            return True, "eu_member"

        contradicting = self._is_contradicting(candidate)
        if not contradicting:
            if self._mentions_target(candidate):
                return True, "mention"
            if self._tld_matches(candidate):
                return True, "tld"

        if candidate.accepted_by_country_gate and not contradicting:
            return True, "gate_override"
        if (candidate.confidence or 0.0) >= self.override_confidence and self._mentions_target(candidate):
            return True, "confidence_override"
        return False, "country_contradiction" if contradicting else "country_unmatched"

    # ------------------------------------------------------------------
    # Dates
    # ------------------------------------------------------------------

    def match_dates(self, candidate: EventCandidate) -> Optional[bool]:
        """True/False for dated candidates; None when the candidate has no usable date"""
        start, end = parse_iso(candidate.starts_at), parse_iso(candidate.ends_at)
        if not start and not end:
            return None
        lo, hi = self.window_start, self.window_end
        if start and end:
            if end < start:
                start, end = end, start
            return (hi is None or start <= hi) and (lo is None or end >= lo)
        single = start or end
        return (lo is None or single >= lo) and (hi is None or single <= hi)

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def undated_fallback(self, undated: List[EventCandidate]) -> List[EventCandidate]:
        """Best undated candidates, used only when nothing dated was admitted"""
        return rank_events(undated)[: self.undated_fallback_limit]

    def apply(self, candidates: List[EventCandidate], fallback: bool = True) -> AdmissionResult:
        """fallback=False leaves undated candidates in result.undated for the caller to hold"""
        result = AdmissionResult()

        def reject(candidate: EventCandidate, reason: str):
            result.rejected.append(candidate)
            result.reasons[reason] = result.reasons.get(reason, 0) + 1

        for candidate in candidates:
            ok, tier = self.match_country(candidate)
            if not ok:
                reject(candidate, tier)
                continue

            in_range = self.match_dates(candidate)
            if in_range is None:
                undated = replace(candidate, undated_candidate=True)
                if self.allow_undated:
                    result.events.append(undated)
                else:
                    result.undated.append(undated)
                continue
            if not in_range:
                reject(candidate, "date_out_of_range")
                continue
            result.events.append(candidate)

        if fallback and not result.events and result.undated:
            result.events = self.undated_fallback(result.undated)
            result.degraded = True
            print(f"[ADMISSION][DEGRADED] no dated matches, returning {len(result.events)} undated candidates")

        print(f"[ADMISSION] target={self.target} in={len(candidates)} admitted={len(result.events)} "
              f"rejected={len(result.rejected)} undated={len(result.undated)}")
        return result


def rank_events(events: List[EventCandidate]) -> List[EventCandidate]:
    """Confidence desc, dated before undated; stable for ties"""
    return sorted(events, key=lambda e: (-(e.confidence or 0.0), 0 if e.starts_at else 1))


def dedupe_events(events: List[EventCandidate]) -> List[EventCandidate]:
    """Drop repeats by canonical URL and by normalized (non-generic) title; first occurrence wins"""
    seen_urls, seen_titles = set(), set()
    out: List[EventCandidate] = []
    for event in events:
        url_key = normalize_url(event.source_url)
        title_key = normalize_title_key(event.title)
        if url_key in seen_urls:
            continue
        if title_key and not is_generic_title(event.title) and title_key in seen_titles:
            continue
        seen_urls.add(url_key)
        if title_key:
            seen_titles.add(title_key)
        out.append(event)
    if len(out) != len(events):
        logger.debug(f"[ADMISSION][DEDUP] {len(events)} -> {len(out)}")
    return out
