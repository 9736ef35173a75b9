"""
Search Orchestrator Test Script
Stage order, P1 -> P2 fallback rule, skip domains, cross-stage dedup, SSE encoding
"""

import asyncio
import json
import sys
from datetime import date
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from artifacts import EventCandidate, SearchResultItem
from actions.querymaker import BuiltQuery, QueryBuilder, QueryBuilderConfig
from actions.search_orchestrator import SearchConfig, SearchOrchestrator, SearchRequest, cap_by_tier
from memory.event_store import EventStore
from streaming import STAGES, ProgressFrame, format_sse, stream_frames

TODAY = date(2026, 1, 10)
QUERIES = [BuiltQuery(name="A", query='"compliance" Germany', description="base")]
REQUEST = SearchRequest(base_query="compliance", country="Germany",
                        date_from="2026-03-01", date_to="2026-03-31")


class FakeProvider:
    def __init__(self, items=None, error=None):
        self.items = items or []
        self.error = error
        self.calls = []

    async def search(self, queries, country, tbs=None):
        self.calls.append({"queries": queries, "country": country, "tbs": tbs})
        if self.error:
            raise self.error
        return list(self.items)


def items(n, host="events.example.com"):
    return [SearchResultItem(url=f"https://{host}/compliance-{i}", title=f"Compliance Forum {i}",
                             snippet="2026-03-12, Berlin") for i in range(n)]


def make_orchestrator(primary=None, fallback=None, store=None, **config) -> SearchOrchestrator:
    return SearchOrchestrator(event_store=store, primary=primary, fallback=fallback,
                              config=SearchConfig(**config), today=TODAY)


async def collect(orchestrator, request=REQUEST):
    return [f async for f in orchestrator.run_progressive(request, QUERIES)]


# ============================================================================
# Progressive mode
# ============================================================================

def test_thin_primary_triggers_fallback():
    primary = FakeProvider(items(3))
    fallback = FakeProvider(items(2, host="cse.example.org"))
    frames = asyncio.run(collect(make_orchestrator(primary, fallback)))
    print(f"[TEST][Orchestrator] stages={[f.stage for f in frames]}")

    assert [f.stage for f in frames] == ["database", "firecrawl", "cse", "complete"]
    assert all(f.stage in STAGES for f in frames)
    assert len(fallback.calls) == 1
    assert primary.calls[0]["tbs"] == "cdr:1,cd_min:3/1/2026,cd_max:3/31/2026"
    assert [f.total_so_far for f in frames] == [0, 3, 5, 5]
    assert frames[-1].is_complete
    assert all(e.source == "firecrawl" for e in frames[1].events)


def test_sufficient_primary_skips_fallback():
    fallback = FakeProvider(items(2, host="cse.example.org"))
    frames = asyncio.run(collect(make_orchestrator(FakeProvider(items(10)), fallback)))
    assert fallback.calls == []
    cse = frames[2]
    assert cse.stage == "cse" and cse.events == []
    assert cse.message.startswith("skipped")


def test_fallback_candidates_are_thin_and_targeted():
    fallback = FakeProvider([SearchResultItem(url="https://cse.example.org/a", title="", snippet="Register now")])
    frames = asyncio.run(collect(make_orchestrator(FakeProvider([]), fallback)))
    event = frames[2].events[0]
    assert event.title == "Event"
    assert event.country == "DE"
    assert event.confidence == 0.6
    assert event.source == "cse"
    assert event.description == "Register now"
    assert event.evidence_fields() == {"country"}


def test_failing_primary_counts_as_zero():
    fallback = FakeProvider(items(1, host="cse.example.org"))
    frames = asyncio.run(collect(make_orchestrator(FakeProvider(error=RuntimeError("429")), fallback)))
    assert [f.stage for f in frames] == ["database", "firecrawl", "cse", "complete"]
    assert frames[1].events == []
    assert len(frames[2].events) == 1


def test_skip_domains_and_cross_stage_dedup(tmp_path):
    store = EventStore(path=str(tmp_path / "events.json"), persist=False)
    store.upsert([EventCandidate(source_url="https://events.example.com/compliance-0",
                                 title="Compliance Forum 0", country="Germany", starts_at="2026-03-12")])
    primary = FakeProvider(items(2) + [SearchResultItem(url="https://www.linkedin.com/events/123", title="x")])
    frames = asyncio.run(collect(make_orchestrator(primary, FakeProvider(), store=store)))

    assert [e.source_url for e in frames[0].events] == ["https://events.example.com/compliance-0"]
    assert frames[0].events[0].source == "database"
    # compliance-0 already came from the database, linkedin is skipped
    assert [e.source_url for e in frames[1].events] == ["https://events.example.com/compliance-1"]
    assert frames[-1].total_so_far == 2


def test_query_builder_failure_yields_error_frame():
    class BrokenBuilder:
        def build(self, *args, **kwargs):
            raise ValueError("base query must not be empty")

    orchestrator = SearchOrchestrator(query_builder=BrokenBuilder(), config=SearchConfig(), today=TODAY)

    async def run():
        return [f async for f in orchestrator.run_progressive(REQUEST)]

    frames = asyncio.run(run())
    assert len(frames) == 1
    assert frames[0].stage == "error" and frames[0].is_complete
    assert "empty" in frames[0].error


def test_query_cap_keeps_every_chunk_of_a_tier():
    config = QueryBuilderConfig(event_terms=[f"Fachkonferenz Nummer {i}" for i in range(1, 25)],
                                domains=["juve.de", "eventbrite.de", "legal-tech.de", "euroforum.de"])
    queries = QueryBuilder(config).build("Compliance", country="DE")
    wanted = [q.query for q in queries if q.tier in ("tier_a_precise", "tier_b_roles")]
    assert len(wanted) > 2
    primary = FakeProvider(items(10))
    orchestrator = make_orchestrator(primary, FakeProvider(), max_queries=2)

    async def run():
        return [f async for f in orchestrator.run_progressive(REQUEST, queries)]

    asyncio.run(run())
    assert primary.calls[0]["queries"] == wanted


def test_cap_by_tier_without_tier_names():
    queries = [BuiltQuery(name=n, query=n, description="") for n in ("a", "b", "c")]
    assert cap_by_tier(queries, 2) == ["a", "b"]


# ============================================================================
# Batch mode
# ============================================================================

def test_run_collects_candidates_and_provider_counts():
    orchestrator = make_orchestrator(FakeProvider(items(3)), FakeProvider(items(1, host="cse.example.org")))
    outcome = asyncio.run(orchestrator.run(REQUEST, QUERIES))
    assert len(outcome.candidates) == 4
    assert outcome.providers == {"database": 0, "firecrawl": 3, "cse": 1}
    assert outcome.error is None


def test_stop_at_sufficiency():
    fallback = FakeProvider(items(2, host="cse.example.org"))
    orchestrator = make_orchestrator(FakeProvider(items(6)), fallback, stop_at_sufficiency=True)
    outcome = asyncio.run(orchestrator.run(REQUEST, QUERIES))
    assert [f.stage for f in outcome.frames] == ["database", "firecrawl"]
    assert len(outcome.candidates) == 6
    assert fallback.calls == []


# ============================================================================
# SSE encoding
# ============================================================================

def test_frame_serialization():
    frame = ProgressFrame(stage="firecrawl", events=[EventCandidate(source_url="https://a.de/x", title="Tagung")],
                          total_so_far=1)
    chunk = format_sse(frame.to_dict())
    assert chunk.startswith("data: ") and chunk.endswith("\n\n")
    payload = json.loads(chunk[len("data: "):])
    assert payload["totalSoFar"] == 1
    assert payload["isComplete"] is False
    assert payload["events"][0]["title"] == "Tagung"
    assert "error" not in payload


def test_stream_frames_ends_with_error_frame_on_failure():
    async def producer():
        yield ProgressFrame(stage="database")
        raise RuntimeError("store offline")

    async def run():
        return [chunk async for chunk in stream_frames(producer())]

    chunks = asyncio.run(run())
    assert len(chunks) == 2
    last = json.loads(chunks[-1][len("data: "):])
    assert last["stage"] == "error" and last["isComplete"] is True
    assert last["error"] == "store offline"


def main():
    import tempfile
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            if "tmp_path" in fn.__code__.co_varnames[:fn.__code__.co_argcount]:
                with tempfile.TemporaryDirectory() as d:
                    fn(Path(d))
            else:
                fn()
            print(f"[TEST][Orchestrator] {name} OK")


if __name__ == "__main__":
    main()
