"""
API Server Test Script
Request validation codes, crash payloads, SSE responses and health, over an offline toolset
"""

import json
import sys
from datetime import date
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

import pytest
from fastapi.testclient import TestClient

from artifacts import SearchResultItem
from actions.extractor import ExtractionConfig, ExtractionEngine
from actions.querymaker import QueryBuilder
from actions.search_orchestrator import SearchConfig, SearchOrchestrator
from actions.visitor import WebPage
from api.api_server import app, eventchasor_service
from memory.cache_memory import ExtractionCache, LocationHintCache
from memory.event_store import EventStore
from toolsets import Toolset

TODAY = date(2026, 1, 10)
RUN_BODY = {"baseQuery": "compliance", "country": "Germany", "dateFrom": "2026-03-01", "dateTo": "2026-03-31"}


class FakeSearch:
    configured = True

    def __init__(self, name, items):
        self.name = name
        self.items = items

    async def search(self, queries, country, tbs=None):
        return list(self.items)


class OfflineVisitor:
    async def fetch(self, url):
        return WebPage(url=url, title="", content="", success=False, error="offline")


def offline_toolset() -> Toolset:
    items = [SearchResultItem(url=f"https://events.example.com/compliance-{i}", title=f"Compliance Forum {i}",
                              snippet="2026-03-12 in Berlin, Germany") for i in range(3)]
    primary = FakeSearch("firecrawl", items)
    fallback = FakeSearch("cse", [])
    store = EventStore(path="unused-events.json", persist=False)
    cache = ExtractionCache(path="unused-cache.json", persist=False)
    builder = QueryBuilder()
    return Toolset(
        query_builder=builder,
        orchestrator=SearchOrchestrator(event_store=store, primary=primary, fallback=fallback,
                                        query_builder=builder, config=SearchConfig(), today=TODAY),
        extractor=ExtractionEngine(cache=cache, visitor=OfflineVisitor(),
                                   config=ExtractionConfig(per_host_gap_ms=0), today=TODAY),
        event_store=store,
        cache=cache,
        hints=LocationHintCache(),
        primary=primary,
        fallback=fallback,
    )


@pytest.fixture
def client():
    eventchasor_service.initialized = False
    eventchasor_service.toolset = offline_toolset()
    eventchasor_service.chasor = None
    with TestClient(app) as test_client:
        yield test_client
    eventchasor_service.initialized = False
    eventchasor_service.toolset = None


def assert_rejected(response, code):
    assert response.status_code == 400, response.text
    body = response.json()
    assert body["code"] == code
    assert body["error"]


# ============================================================================
# Validation
# ============================================================================

def test_missing_base_query_is_malformed(client):
    assert_rejected(client.post("/events/run", json={"country": "DE"}), "malformed_request")
    assert_rejected(client.post("/events/run", json={"baseQuery": "   ", "country": "DE"}), "malformed_request")


def test_country_required_and_validated(client):
    assert_rejected(client.post("/events/run", json={"baseQuery": "compliance"}), "country_required")
    assert_rejected(client.post("/events/run", json={"baseQuery": "compliance", "country": "Atlantis"}),
                    "invalid_country")


def test_eu_requires_date_range(client):
    assert_rejected(client.post("/events/run", json={"baseQuery": "compliance", "country": "EU"}),
                    "date_range_required")
    assert_rejected(client.post("/events/run", json={"baseQuery": "compliance", "country": "EU",
                                                     "timeframe": "next_month"}), "invalid_date_range")
    ok = client.post("/events/run", json={"baseQuery": "compliance", "country": "EU", "timeframe": "next_90"})
    assert ok.status_code == 200


def test_inverted_dates_rejected(client):
    body = dict(RUN_BODY, dateFrom="2026-05-01", dateTo="2026-04-01")
    assert_rejected(client.post("/events/run", json=body), "invalid_date_range")
    assert_rejected(client.post("/events/run-progressive", json=body), "invalid_date_range")


def test_extract_requires_urls(client):
    assert_rejected(client.post("/events/extract", json={"urls": []}), "urls_required")
    assert_rejected(client.post("/events/extract", json={"urls": ["  "]}), "urls_required")


# ============================================================================
# Runs
# ============================================================================

def test_run_returns_pipeline_payload(client):
    response = client.post("/events/run", json=RUN_BODY)
    assert response.status_code == 200
    body = response.json()
    print(f"[TEST][API] run count={body['count']} providers={body['providers']}")
    assert body["count"] == len(body["events"])
    assert body["providers"] == {"database": 0, "firecrawl": 3, "cse": 0}
    assert body["queries"]
    assert "admission" in body and "qualityStats" in body


def test_run_crash_returns_crash_payload(client, monkeypatch):
    class CrashingChasor:
        async def run(self, *args, **kwargs):
            raise RuntimeError("orchestrator exploded")

    monkeypatch.setattr(eventchasor_service, "chasor", CrashingChasor())
    response = client.post("/events/run", json=RUN_BODY)
    assert response.status_code == 200
    assert response.json() == {"error": "orchestrator exploded", "events": [], "debug": {"crashed": True}}


def test_run_progressive_streams_sse(client):
    response = client.post("/events/run-progressive", json=RUN_BODY)
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache, no-transform"

    frames = [json.loads(line[len("data: "):]) for line in response.text.splitlines() if line.startswith("data: ")]
    assert [f["stage"] for f in frames] == ["database", "firecrawl", "cse", "complete"]
    assert frames[-1]["isComplete"] is True
    assert frames[-1]["totalSoFar"] == sum(len(f["events"]) for f in frames)


def test_extract_endpoint_runs_engine(client):
    response = client.post("/events/extract", json={"urls": ["https://kongress.de/programm"]})
    assert response.status_code == 200
    body = response.json()
    assert body["trace"][-1]["step"] == "stub"
    assert body["qualityStats"]["total"] == 1


# ============================================================================
# Health
# ============================================================================

def test_health_and_root(client):
    health = client.get("/health").json()
    assert health["status"] == "healthy"
    assert health["initialized"] is True
    assert health["providers"]["search"] == ["firecrawl", "cse"]
    assert client.get("/").json()["endpoints"]["run"] == "/events/run"
