# src/toolsets.py
import os
from dataclasses import dataclass
from typing import Any, Optional

from actions.dedup import RequestDeduplicator, get_request_deduplicator
from actions.extractor import ExtractionEngine
from actions.firecrawl_extract import FirecrawlExtractClient
from actions.firecrawl_search import FirecrawlSearch
from actions.google_search import GoogleCustomSearch
from actions.llm_extract import LlmExtractClient, create_llm_client
from actions.querymaker import QueryBuilder
from actions.search_orchestrator import SearchOrchestrator
from actions.visitor import WebVisitor
from memory.cache_memory import ExtractionCache, LocationHintCache
from memory.event_store import EventStore


@dataclass
class Toolset:
    query_builder: QueryBuilder
    orchestrator: SearchOrchestrator
    extractor: ExtractionEngine
    event_store: Optional[EventStore] = None
    cache: Optional[ExtractionCache] = None
    hints: Optional[LocationHintCache] = None
    visitor: Optional[WebVisitor] = None
    deduplicator: Optional[RequestDeduplicator] = None
    primary: Any = None
    fallback: Any = None
    ai_provider: Any = None

    def provider_names(self) -> dict:
        return {
            "search": [p.name for p in (self.primary, self.fallback) if p is not None and getattr(p, "configured", True)],
            "extract": getattr(self.ai_provider, "name", None),
        }


def select_ai_provider(visitor: Optional[WebVisitor] = None):
    """Firecrawl extract when FIRECRAWL_KEY is set, else the OpenAI-backed runner, else None"""
    if os.getenv("FIRECRAWL_KEY"):
        return FirecrawlExtractClient()
    llm_client = create_llm_client()
    if llm_client is not None:
        return LlmExtractClient(llm_client=llm_client, visitor=visitor)
    return None


def build_toolset(persist: bool = True) -> Toolset:
    """Wire every component from config + environment"""
    deduplicator = get_request_deduplicator()
    visitor = WebVisitor()
    cache = ExtractionCache(persist=persist)
    event_store = EventStore(persist=persist)
    primary = FirecrawlSearch(deduplicator=deduplicator)
    fallback = GoogleCustomSearch(deduplicator=deduplicator)
    ai_provider = select_ai_provider(visitor)
    query_builder = QueryBuilder()

    return Toolset(
        query_builder=query_builder,
        orchestrator=SearchOrchestrator(event_store=event_store, primary=primary, fallback=fallback,
                                        query_builder=query_builder),
        extractor=ExtractionEngine(cache=cache, visitor=visitor, provider=ai_provider),
        event_store=event_store,
        cache=cache,
        hints=LocationHintCache(),
        visitor=visitor,
        deduplicator=deduplicator,
        primary=primary,
        fallback=fallback,
        ai_provider=ai_provider,
    )
