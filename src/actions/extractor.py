"""
Event Extraction Engine
Turns a list of URLs into validated, scored event candidates. Each URL walks an
ordered strategy list (cache -> jsonld -> aiExtract -> regex -> stub) and the
first strategy that yields an acceptable candidate wins. Never raises for a
non-empty URL list: the stub strategy always produces a record.
"""

import asyncio
import logging
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from config_manager import get_config
from artifacts import AiExtractResult, EventCandidate, EvidenceTag, TraceStep
from actions.firecrawl_extract import batch_items, pick_data
from actions.page_parsers import parse_json_ld, regex_extract, stub_result
from actions.validator import shape
from actions.visitor import WebPage, WebVisitor
from memory.cache_memory import ExtractionCache
from utils.lang_detect import resolve_locale
from utils.text_cleaner import hostname_of, is_generic_title, normalize_title_key, normalize_url

# Setup logging
logger = logging.getLogger(__name__)

LOW_QUALITY_TITLES = {"event", "untitled event"}

# Evidence field aliases the extraction model tends to emit
EVIDENCE_FIELD_ALIASES = {
    "dates": ["starts_at", "ends_at"],
    "date": ["starts_at", "ends_at"],
    "start_date": ["starts_at"],
    "end_date": ["ends_at"],
    "location": ["city", "venue"],
    "speaker": ["speakers"],
    "sponsor": ["sponsors"],
    "topic": ["topics"],
    "organization": ["participating_organizations"],
    "organizations": ["participating_organizations"],
}
AI_EVIDENCE_DEFAULT_CONFIDENCE = 0.7


# ============================================================================
# Data Models
# ============================================================================

@dataclass
class ExtractionConfig:
    """Configuration for ExtractionEngine"""
    max_urls: int = 20
    batch_threshold: int = 10
    concurrency: int = 12
    per_host_gap_ms: int = 250
    poll_timeout_s: float = 15.0
    poll_step_ms: int = 800
    min_confidence: float = 0.3


@dataclass
class ExtractionResult:
    """events: every target URL's record; accepted: the quality-gated, ranked subset"""
    events: List[EventCandidate] = field(default_factory=list)
    accepted: List[EventCandidate] = field(default_factory=list)
    trace: List[TraceStep] = field(default_factory=list)
    quality_stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.accepted],
            "trace": [t.to_dict() for t in self.trace],
            "qualityStats": self.quality_stats,
        }


@dataclass
class _UrlState:
    """Per-URL working state shared by the strategies; the page is fetched at most once"""
    url: str
    locale: Optional[str]
    crawl: Optional[Dict[str, Any]]
    trace: List[TraceStep]
    page: Optional[WebPage] = None
    fetched: bool = False


def ai_result_from_payload(url: str, payload: Dict[str, Any]) -> AiExtractResult:
    """Schema payload -> AiExtractResult; evidence aliases ('dates', 'location') fan out to real fields"""
    fields = {k: v for k, v in payload.items() if k not in ("evidence", "confidence")}
    evidence: List[EvidenceTag] = []
    for raw in payload.get("evidence") or []:
        if not isinstance(raw, dict) or not raw.get("field"):
            continue
        raw = dict(raw)
        raw.setdefault("confidence", AI_EVIDENCE_DEFAULT_CONFIDENCE)
        raw.setdefault("source_section", "aiExtract")
        for name in EVIDENCE_FIELD_ALIASES.get(str(raw["field"]).lower(), [raw["field"]]):
            tag = EvidenceTag.from_dict({**raw, "field": name}, source_url=url)
            if tag:
                evidence.append(tag)
    return AiExtractResult(url=url, fields=fields, evidence=evidence)


class HostThrottle:
    """Minimum gap between dispatches to the same hostname (slot reservation on the loop clock)"""

    def __init__(self, gap_seconds: float):
        self.gap = max(0.0, gap_seconds)
        self._next_slot: Dict[str, float] = {}

    async def wait(self, host: str):
        if not self.gap:
            return
        now = asyncio.get_running_loop().time()
        slot = max(now, self._next_slot.get(host, 0.0))
        self._next_slot[host] = slot + self.gap
        if slot > now:
            await asyncio.sleep(slot - now)


# ============================================================================
# ExtractionEngine Class
# ============================================================================

class ExtractionEngine:
    """Bounded-concurrency, multi-strategy event extraction"""

    def __init__(self,
                 cache: Optional[ExtractionCache] = None,
                 visitor: Optional[WebVisitor] = None,
                 provider=None,
                 config: Optional[ExtractionConfig] = None,
                 today: Optional[date] = None):
        """
        Args:
            cache: durable URL cache (created from YAML settings when omitted)
            visitor: page fetcher
            provider: AI extraction job client (submit/status); None disables aiExtract and batching
            config: ExtractionConfig; read from YAML when omitted
            today: fixed reference date for date plausibility (tests)
        """
        self.config = config or self._load_config_from_yaml()
        self.cache = cache if cache is not None else ExtractionCache()
        self.visitor = visitor or WebVisitor()
        self.provider = provider
        self.today = today

        self.strategies: List[Tuple[str, Callable[[_UrlState], Awaitable[Optional[EventCandidate]]]]] = [
            ("cache", self._from_cache),
            ("jsonld", self._from_jsonld),
            ("aiExtract", self._from_ai),
            ("regex", self._from_regex),
            ("stub", self._from_stub),
        ]
        logger.info(f"ExtractionEngine initialized: provider={getattr(provider, 'name', None)}, "
                    f"concurrency={self.config.concurrency}")

    def _load_config_from_yaml(self) -> ExtractionConfig:
        """Load configuration from YAML config file"""
        cfg = get_config()
        return ExtractionConfig(
            max_urls=cfg.get('extraction.max_urls', 20),
            batch_threshold=cfg.get('extraction.batch_threshold', 10),
            concurrency=cfg.get('extraction.concurrency', 12),
            per_host_gap_ms=cfg.get('extraction.per_host_gap_ms', 250),
            poll_timeout_s=cfg.get('extraction.poll_timeout_s', 15),
            poll_step_ms=cfg.get('extraction.poll_step_ms', 800),
            min_confidence=cfg.get('extraction.min_confidence', 0.3),
        )

    @property
    def _provider_ready(self) -> bool:
        return self.provider is not None and getattr(self.provider, "configured", True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def extract(self, urls: List[str], locale: Optional[str] = None,
                      crawl_options: Optional[Dict[str, Any]] = None) -> ExtractionResult:
        targets = self._targets(urls)
        if not targets:
            logger.warning("[EXTRACT] called with no usable URLs")
            return ExtractionResult(quality_stats=self._quality_stats([], [], []))

        locale = resolve_locale(locale, url=targets[0]) if locale else None
        trace: List[TraceStep] = []
        resolved: Dict[str, EventCandidate] = {}

        print(f"[EXTRACT][START] {len(targets)} urls (provider={getattr(self.provider, 'name', None)})")

        if self._provider_ready and len(targets) >= self.config.batch_threshold:
            resolved = await self._run_batch(targets, locale, crawl_options, trace)

        remainder = [u for u in targets if normalize_url(u) not in resolved]
        if remainder:
            print(f"[EXTRACT][INDIVIDUAL] {len(remainder)} urls")
            individual = await self._run_individual(remainder, locale, crawl_options, trace)
            resolved.update(individual)

        events = [resolved[normalize_url(u)] for u in targets if normalize_url(u) in resolved]
        accepted = self._quality_gate(events)
        stats = self._quality_stats(events, accepted, trace)
        print(f"[EXTRACT][DONE] events={len(events)} accepted={len(accepted)} avg={stats['avg_confidence']}")
        return ExtractionResult(events=events, accepted=accepted, trace=trace, quality_stats=stats)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _targets(self, urls: List[str]) -> List[str]:
        """Dedupe by canonical URL (first spelling wins), then cap"""
        seen, out = set(), []
        for u in urls or []:
            u = (u or "").strip()
            if not u:
                continue
            key = normalize_url(u)
            if key in seen:
                continue
            seen.add(key)
            out.append(u)
        if len(out) > self.config.max_urls:
            logger.info(f"[EXTRACT][CAP] {len(out)} urls capped to {self.config.max_urls}")
        return out[: self.config.max_urls]

    # ------------------------------------------------------------------
    # Batch path
    # ------------------------------------------------------------------

    async def _run_batch(self, targets: List[str], locale: Optional[str],
                         crawl: Optional[Dict[str, Any]], trace: List[TraceStep]) -> Dict[str, EventCandidate]:
        """One provider job for every uncached URL; whatever it resolves is shaped and cached"""
        uncached = [u for u in targets if not self.cache.contains(u)]
        if len(uncached) < self.config.batch_threshold:
            return {}

        by_key = {normalize_url(u): u for u in uncached}
        try:
            job_id = await self.provider.submit(uncached, locale, crawl)
            data, _ = await self._await_job(job_id) if job_id else (None, "no job id")
        except Exception as e:
            logger.warning(f"[EXTRACT][BATCH] failed, falling back to individual: {e}")
            return {}
        if data is None:
            print("[EXTRACT][BATCH] no data, falling back to individual extraction")
            return {}

        resolved: Dict[str, EventCandidate] = {}
        for item_url, payload in batch_items(data, uncached):
            key = normalize_url(item_url)
            url = by_key.get(key)
            if url is None or key in resolved:
                continue
            candidate = shape(ai_result_from_payload(url, payload), today=self.today)
            self.cache.put(url, candidate, "aiExtract")
            resolved[key] = candidate
            trace.append(TraceStep(url=url, step="aiExtract", rich=candidate.is_rich(), note="batch"))
        print(f"[EXTRACT][BATCH] resolved {len(resolved)}/{len(uncached)} urls")
        return resolved

    # ------------------------------------------------------------------
    # Individual path
    # ------------------------------------------------------------------

    async def _run_individual(self, urls: List[str], locale: Optional[str],
                              crawl: Optional[Dict[str, Any]], trace: List[TraceStep]) -> Dict[str, EventCandidate]:
        semaphore = asyncio.Semaphore(max(1, self.config.concurrency))
        throttle = HostThrottle(self.config.per_host_gap_ms / 1000.0)

        async def process_url(url: str) -> Tuple[str, EventCandidate]:
            async with semaphore:
                await throttle.wait(hostname_of(url))
                state = _UrlState(url=url, locale=locale, crawl=crawl, trace=trace)
                return normalize_url(url), await self._extract_one(state)

        results = await asyncio.gather(*[process_url(u) for u in urls])
        return dict(results)

    async def _extract_one(self, state: _UrlState) -> EventCandidate:
        try:
            for name, strategy in self.strategies:
                candidate = await strategy(state)
                if candidate is not None:
                    logger.debug(f"[EXTRACT][{name.upper()}] {state.url} conf={candidate.confidence}")
                    return candidate
        except Exception as e:
            logger.exception(f"[EXTRACT][EXCEPTION] {state.url}: {e}")
            state.trace.append(TraceStep(url=state.url, step="exception", rich=False, note=str(e)[:200]))
        return shape(stub_result(state.url), today=self.today)

    async def _page(self, state: _UrlState) -> Optional[WebPage]:
        if not state.fetched:
            state.fetched = True
            state.page = await self.visitor.fetch(state.url)
            if not state.page.success:
                print(f"[EXTRACT][FETCH] {state.url} failed: {state.page.error}")
        return state.page if state.page is not None and state.page.success else None

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    async def _from_cache(self, state: _UrlState) -> Optional[EventCandidate]:
        cached = self.cache.get(state.url)
        if cached is None:
            return None
        state.trace.append(TraceStep(url=state.url, step="cache", rich=cached.is_rich()))
        return cached

    async def _from_jsonld(self, state: _UrlState) -> Optional[EventCandidate]:
        page = await self._page(state)
        if page is None:
            return None
        result = parse_json_ld(page.html, state.url)
        if result is None:
            return None
        candidate = shape(result, today=self.today)
        self.cache.put(state.url, candidate, "jsonld")
        if not candidate.is_rich():
            self._fell_through(state, "jsonld", "not rich")
            return None
        print(f"[EXTRACT][JSONLD] {state.url} conf={candidate.confidence}")
        state.trace.append(TraceStep(url=state.url, step="jsonld", rich=True))
        return candidate

    async def _from_ai(self, state: _UrlState) -> Optional[EventCandidate]:
        if not self._provider_ready:
            return None
        job_id = await self.provider.submit([state.url], state.locale, state.crawl)
        if not job_id:
            self._fell_through(state, "aiExtract", "no job id")
            return None
        data, outcome = await self._await_job(job_id)
        if outcome != "completed":
            self._fell_through(state, "aiExtract", outcome)
            return None
        payload = pick_data(data)
        if not isinstance(payload, dict):
            self._fell_through(state, "aiExtract", "no data")
            return None
        candidate = shape(ai_result_from_payload(state.url, payload), today=self.today)
        self.cache.put(state.url, candidate, "aiExtract")
        if not candidate.is_rich():
            self._fell_through(state, "aiExtract", "not rich")
            return None
        print(f"[EXTRACT][AI] {state.url} conf={candidate.confidence}")
        state.trace.append(TraceStep(url=state.url, step="aiExtract", rich=True))
        return candidate

    async def _from_regex(self, state: _UrlState) -> Optional[EventCandidate]:
        page = await self._page(state)
        if page is None or not page.html:
            return None
        candidate = shape(regex_extract(page.html, state.url, self.today), today=self.today)
        self.cache.put(state.url, candidate, "regex")
        rich = candidate.is_rich()
        if not rich and is_generic_title(candidate.title):
            self._fell_through(state, "regex", "generic title")
            return None
        state.trace.append(TraceStep(url=state.url, step="regex", rich=rich))
        return candidate

    async def _from_stub(self, state: _UrlState) -> Optional[EventCandidate]:
        candidate = shape(stub_result(state.url), today=self.today)
        self.cache.put(state.url, candidate, "stub")
        state.trace.append(TraceStep(url=state.url, step="stub", rich=candidate.is_rich()))
        return candidate

    @staticmethod
    def _fell_through(state: _UrlState, step: str, note: str):
        state.trace.append(TraceStep(url=state.url, step=step, rich=False, note=note, fell_through=True))

    # ------------------------------------------------------------------
    # Job polling
    # ------------------------------------------------------------------

    async def _await_job(self, job_id: str) -> Tuple[Any, str]:
        """Poll until completed/failed or the deadline.

        Returns (data, outcome) with outcome one of completed, failed, timeout.
        A timed-out job is handed back to the provider via abandon() when it has one.
        """
        step = self.config.poll_step_ms / 1000.0

        async def poll():
            while True:
                job = await self.provider.status(job_id)
                if job.status == "completed":
                    return job.data, "completed"
                if job.status in ("failed", "cancelled"):
                    logger.info(f"[EXTRACT][POLL] job {job_id} {job.status}: {job.error}")
                    return None, "failed"
                await asyncio.sleep(step)

        try:
            return await asyncio.wait_for(poll(), timeout=self.config.poll_timeout_s)
        except asyncio.TimeoutError:
            print(f"[EXTRACT][POLL] job {job_id} timed out after {self.config.poll_timeout_s}s")
            abandon = getattr(self.provider, "abandon", None)
            if abandon is not None:
                abandon(job_id)
            return None, "timeout"

    # ------------------------------------------------------------------
    # Quality gate
    # ------------------------------------------------------------------

    def _quality_gate(self, events: List[EventCandidate]) -> List[EventCandidate]:
        kept = [
            e for e in events
            if (e.confidence or 0.0) >= self.config.min_confidence
            and normalize_title_key(e.title) not in LOW_QUALITY_TITLES
        ]
        kept.sort(key=lambda e: (-(e.confidence or 0.0), 0 if e.starts_at else 1))
        return kept

    def _quality_stats(self, events: List[EventCandidate], accepted: List[EventCandidate],
                       trace: List[TraceStep]) -> Dict[str, Any]:
        confidences = [e.confidence or 0.0 for e in events]
        by_step: Dict[str, int] = {}
        for t in trace:
            if t.fell_through:
                continue
            by_step[t.step] = by_step.get(t.step, 0) + 1
        return {
            "total": len(events),
            "accepted": len(accepted),
            "high_confidence": sum(1 for c in confidences if c >= 0.7),
            "medium_confidence": sum(1 for c in confidences if 0.4 <= c < 0.7),
            "low_confidence": sum(1 for c in confidences if c < 0.4),
            "by_step": by_step,
            "fell_through": sum(1 for t in trace if t.fell_through),
            "avg_confidence": round(sum(confidences) / len(confidences), 2) if confidences else 0.0,
        }
