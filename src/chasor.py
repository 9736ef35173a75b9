# EventChasor finds industry events on the open web. The search orchestrator collects candidates
# (local database, primary and fallback search), the extraction engine turns candidate URLs into
# evidence-backed records, and the admission filter keeps what matches the requested country and dates.

# Architecture: query builder → orchestrator → extractor → admission → ranked, deduplicated events

import logging
from dataclasses import dataclass, field, replace
from typing import Any, AsyncGenerator, Dict, List, Optional

from artifacts import EventCandidate, TraceStep
from streaming import ProgressFrame
from actions.admission import AdmissionFilter, AdmissionResult, dedupe_events, rank_events
from actions.search_orchestrator import SearchRequest
from utils.text_cleaner import normalize_url

# Setup logging
logger = logging.getLogger(__name__)


@dataclass
class PipelineResult:
    """Final output of one synchronous run"""
    events: List[EventCandidate] = field(default_factory=list)
    queries: List[str] = field(default_factory=list)
    providers: Dict[str, int] = field(default_factory=dict)
    admission: Dict[str, Any] = field(default_factory=dict)
    trace: List[TraceStep] = field(default_factory=list)
    quality_stats: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "events": [e.to_dict() for e in self.events],
            "count": len(self.events),
            "queries": self.queries,
            "providers": self.providers,
            "admission": self.admission,
            "trace": [t.to_dict() for t in self.trace],
            "qualityStats": self.quality_stats,
        }
        if self.error:
            payload["error"] = self.error
        return payload


def merge_extracted(candidates: List[EventCandidate], extracted: List[EventCandidate]) -> List[EventCandidate]:
    """
    Replace search candidates with their extracted record when extraction scored
    at least as high; the search snippet survives as description.
    """
    by_url = {normalize_url(e.source_url): e for e in extracted}
    merged = []
    for candidate in candidates:
        record = by_url.get(normalize_url(candidate.source_url))
        if record is None or (record.confidence or 0.0) < (candidate.confidence or 0.0):
            merged.append(candidate)
            continue
        merged.append(replace(record,
                              source=candidate.source,
                              description=record.description or candidate.description))
    return merged


class EventChasor:
    """
    Runs the whole event pipeline over a Toolset.
    """

    def __init__(self, toolset):
        """
        Args:
            toolset: Toolset with query builder, orchestrator, extractor, event store and hint cache
        """
        self.toolset = toolset
        logger.info("EventChasor initialized")

    def _admission(self, request: SearchRequest, allow_undated: bool) -> AdmissionFilter:
        return AdmissionFilter(request.country, request.date_from, request.date_to,
                               allow_undated=allow_undated, hints=self.toolset.hints)

    async def run(self, request: SearchRequest, allow_undated: bool = False,
                  locale: Optional[str] = None, crawl: Optional[Dict[str, Any]] = None) -> PipelineResult:
        queries = self.toolset.query_builder.build(request.base_query, request.country, request.date_from,
                                                   request.date_to, request.user_intent, request.terms)
        outcome = await self.toolset.orchestrator.run(request, queries)

        stored = [c for c in outcome.candidates if c.source == "database"]
        found = [c for c in outcome.candidates if c.source != "database"]

        trace: List[TraceStep] = []
        quality_stats: Dict[str, Any] = {}
        if found:
            extraction = await self.toolset.extractor.extract([c.source_url for c in found], locale, crawl)
            found = merge_extracted(found, extraction.events)
            trace, quality_stats = extraction.trace, extraction.quality_stats

        admitted: AdmissionResult = self._admission(request, allow_undated).apply(stored + found)
        events = dedupe_events(rank_events(admitted.events))

        new_events = [e for e in events if e.source != "database"]
        if new_events and not admitted.degraded and self.toolset.event_store is not None:
            self.toolset.event_store.upsert(new_events)

        print(f"[CHASOR][DONE] {len(events)} events (stored={len(stored)}, found={len(found)})")
        return PipelineResult(
            events=events,
            queries=[q.query for q in queries],
            providers=outcome.providers,
            admission=admitted.summary(),
            trace=trace,
            quality_stats=quality_stats,
            error=outcome.error,
        )

    async def run_progressive(self, request: SearchRequest,
                              allow_undated: bool = False) -> AsyncGenerator[ProgressFrame, None]:
        """
        Search frames with each stage's events passed through admission. Undated
        candidates are held back; the complete frame carries the undated fallback
        only when no stage admitted anything.
        """
        admission = self._admission(request, allow_undated)
        total = 0
        held: List[EventCandidate] = []
        async for frame in self.toolset.orchestrator.run_progressive(request):
            if frame.events:
                admitted = admission.apply(frame.events, fallback=False)
                held.extend(admitted.undated)
                frame.events = dedupe_events(rank_events(admitted.events))
            if frame.stage == "complete" and total == 0 and held:
                frame.events = dedupe_events(admission.undated_fallback(held))
                frame.message = f"degraded: no dated matches, {len(frame.events)} undated candidates"
                print(f"[CHASOR][DEGRADED] {len(frame.events)} undated candidates in complete frame")
            total += len(frame.events)
            frame.total_so_far = total
            yield frame
