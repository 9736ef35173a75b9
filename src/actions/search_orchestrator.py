"""
Search Orchestrator
Cascading search across the local event database, the primary provider
(Firecrawl search) and the fallback provider (Google CSE). Each stage is
isolated: a failing stage is logged and counts as zero results.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, AsyncGenerator, Dict, List, Optional, Set

from config_manager import get_config
from artifacts import EventCandidate, EvidenceTag, SearchResultItem
from streaming import ProgressFrame
from actions.page_parsers import search_item_result
from actions.querymaker import BuiltQuery, QueryBuilder
from actions.validator import shape
from utils.country import to_iso2
from utils.date_parser import build_date_filter
from utils.text_cleaner import hostname_of, normalize_url

# Setup logging
logger = logging.getLogger(__name__)

SKIP_DOMAINS = ["linkedin.com", "facebook.com", "twitter.com", "x.com", "instagram.com", "youtube.com", "tiktok.com"]


# ============================================================================
# Data Models
# ============================================================================

@dataclass
class SearchConfig:
    min_results_threshold: int = 5
    stop_at_sufficiency: bool = False
    database_limit: int = 50
    max_queries: int = 6               # counted in tiers; chunk parts of a kept tier all go out
    fallback_confidence: float = 0.6
    skip_domains: List[str] = field(default_factory=lambda: list(SKIP_DOMAINS))


@dataclass
class SearchRequest:
    base_query: str
    country: str
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    user_intent: Optional[str] = None
    terms: Optional[Dict[str, List[str]]] = None


@dataclass
class SearchOutcome:
    """Batch-mode result: every candidate plus the frames that produced them"""
    candidates: List[EventCandidate] = field(default_factory=list)
    frames: List[ProgressFrame] = field(default_factory=list)
    queries: List[BuiltQuery] = field(default_factory=list)

    @property
    def providers(self) -> Dict[str, int]:
        return {f.stage: len(f.events) for f in self.frames if f.stage not in ("complete", "error")}

    @property
    def error(self) -> Optional[str]:
        return next((f.error for f in self.frames if f.error), None)


def cap_by_tier(queries: List[BuiltQuery], max_tiers: int) -> List[str]:
    """Query strings of the first `max_tiers` tiers, each tier with every chunk part"""
    tiers: List[str] = []
    out: List[str] = []
    for q in queries:
        tier = q.tier or q.name
        if tier not in tiers:
            if len(tiers) >= max_tiers:
                continue
            tiers.append(tier)
        out.append(q.query)
    if len(out) < len(queries):
        logger.info(f"[ORCH][CAP] kept {len(out)}/{len(queries)} queries from {len(tiers)} tiers")
    return out


# ============================================================================
# SearchOrchestrator Class
# ============================================================================

class SearchOrchestrator:
    """database -> firecrawl (P1) -> cse (P2, only when P1 is insufficient)"""

    def __init__(self, event_store=None, primary=None, fallback=None,
                 query_builder: Optional[QueryBuilder] = None,
                 config: Optional[SearchConfig] = None,
                 today: Optional[date] = None):
        self.config = config or self._load_config_from_yaml()
        self.event_store = event_store
        self.primary = primary
        self.fallback = fallback
        self.query_builder = query_builder or QueryBuilder()
        self.today = today
        logger.info(f"SearchOrchestrator initialized: threshold={self.config.min_results_threshold}, "
                    f"primary={primary is not None}, fallback={fallback is not None}")

    def _load_config_from_yaml(self) -> SearchConfig:
        """Load configuration from YAML config file"""
        cfg = get_config()
        return SearchConfig(
            min_results_threshold=cfg.get('search.min_results_threshold', 5),
            stop_at_sufficiency=cfg.get('search.stop_at_sufficiency', False),
            database_limit=cfg.get('search.database_limit', 50),
            max_queries=cfg.get('search.max_queries', 6),
            fallback_confidence=cfg.get('search.fallback_confidence', 0.6),
            skip_domains=cfg.get('search.skip_domains', list(SKIP_DOMAINS)),
        )

    # ------------------------------------------------------------------
    # Progressive mode
    # ------------------------------------------------------------------

    async def run_progressive(self, request: SearchRequest,
                              queries: Optional[List[BuiltQuery]] = None) -> AsyncGenerator[ProgressFrame, None]:
        """Yield one frame per stage (database, firecrawl, cse, complete); an error frame ends a failed run"""
        seen: Set[str] = set()
        total = 0
        try:
            if queries is None:
                queries = self.query_builder.build(request.base_query, request.country, request.date_from,
                                                   request.date_to, request.user_intent, request.terms)
            query_strings = cap_by_tier(queries, self.config.max_queries)

            # Stage 1: local database
            events = self._keep_new(await self._database_stage(request), seen)
            total += len(events)
            yield ProgressFrame(stage="database", events=events, total_so_far=total)

            # Stage 2: primary provider
            primary_items = await self._primary_stage(request, query_strings)
            events = self._keep_new(
                [shape(search_item_result(item, self.today), source="firecrawl", today=self.today)
                 for item in self._usable(primary_items or [])],
                seen,
            )
            total += len(events)
            yield ProgressFrame(stage="firecrawl", events=events, total_so_far=total)

            # Stage 3: fallback provider, only when the primary failed or came back thin
            primary_count = len(primary_items) if primary_items is not None else 0
            if primary_items is None or primary_count < self.config.min_results_threshold:
                print(f"[ORCH][FALLBACK] primary returned {primary_count} < {self.config.min_results_threshold}, running cse")
                fallback_items = await self._fallback_stage(request, query_strings)
                events = self._keep_new(
                    [self._fallback_candidate(item, request.country) for item in self._usable(fallback_items)],
                    seen,
                )
                total += len(events)
                yield ProgressFrame(stage="cse", events=events, total_so_far=total)
            else:
                yield ProgressFrame(stage="cse", total_so_far=total,
                                    message=f"skipped: primary returned {primary_count} results")

            yield ProgressFrame(stage="complete", total_so_far=total, is_complete=True)
        except Exception as e:
            logger.exception(f"[ORCH][ERROR] {e}")
            yield ProgressFrame(stage="error", total_so_far=total, is_complete=True, error=str(e))

    # ------------------------------------------------------------------
    # Batch mode
    # ------------------------------------------------------------------

    async def run(self, request: SearchRequest, queries: Optional[List[BuiltQuery]] = None) -> SearchOutcome:
        """Collect frames; with stop_at_sufficiency, stop after the first stage that reaches the threshold"""
        outcome = SearchOutcome(queries=list(queries or []))
        stream = self.run_progressive(request, queries)
        try:
            async for frame in stream:
                outcome.frames.append(frame)
                outcome.candidates.extend(frame.events)
                if (self.config.stop_at_sufficiency and not frame.is_complete
                        and frame.total_so_far >= self.config.min_results_threshold):
                    print(f"[ORCH][SUFFICIENT] {frame.total_so_far} results after {frame.stage}, stopping")
                    break
        finally:
            await stream.aclose()
        print(f"[ORCH][DONE] {len(outcome.candidates)} candidates from {outcome.providers}")
        return outcome

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _database_stage(self, request: SearchRequest) -> List[EventCandidate]:
        if self.event_store is None:
            return []
        try:
            return self.event_store.search(request.base_query, request.country, request.date_from,
                                           request.date_to, limit=self.config.database_limit)
        except Exception as e:
            logger.warning(f"[ORCH][DATABASE] stage failed: {e}")
            return []

    async def _primary_stage(self, request: SearchRequest, queries: List[str]) -> Optional[List[SearchResultItem]]:
        """Items from the primary provider, or None when it is missing or failed"""
        if self.primary is None:
            return None
        try:
            tbs = build_date_filter(request.date_from, request.date_to)
            items = await self.primary.search(queries, request.country, tbs)
            print(f"[ORCH][FIRECRAWL] {len(items)} items for {len(queries)} queries")
            return items
        except Exception as e:
            logger.warning(f"[ORCH][FIRECRAWL] stage failed: {e}")
            return None

    async def _fallback_stage(self, request: SearchRequest, queries: List[str]) -> List[SearchResultItem]:
        if self.fallback is None:
            return []
        try:
            items = await self.fallback.search(queries, request.country)
            print(f"[ORCH][CSE] {len(items)} items for {len(queries)} queries")
            return items
        except Exception as e:
            logger.warning(f"[ORCH][CSE] stage failed: {e}")
            return []

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _usable(self, items: List[SearchResultItem]) -> List[SearchResultItem]:
        out = []
        for item in items:
            host = hostname_of(item.url)
            if not host:
                continue
            if any(host == d or host.endswith("." + d) for d in self.config.skip_domains):
                continue
            out.append(item)
        return out

    @staticmethod
    def _keep_new(events: List[EventCandidate], seen: Set[str]) -> List[EventCandidate]:
        out = []
        for event in events:
            key = normalize_url(event.source_url)
            if key in seen:
                continue
            seen.add(key)
            out.append(event)
        return out

    def _fallback_candidate(self, item: SearchResultItem, country: str) -> EventCandidate:
        """Thin candidate from a CSE hit: target country, fixed confidence, title defaults to 'Event'"""
        conf = self.config.fallback_confidence
        target = to_iso2(country) or country
        title = (item.title or "").strip() or "Event"
        evidence = [EvidenceTag(field="country", snippet=f"search target {target}", confidence=conf,
                                source_url=item.url, source_section="cse")]
        if item.title:
            evidence.append(EvidenceTag(field="title", snippet=item.title[:500], confidence=conf,
                                        source_url=item.url, source_section="cse"))
        return EventCandidate(
            source_url=item.url,
            title=title,
            country=target,
            description=item.snippet or None,
            confidence=conf,
            confidence_reason="fallback search hit",
            evidence=evidence,
            source="cse",
        )
