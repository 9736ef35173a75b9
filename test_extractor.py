"""
Extraction Engine Test Script
Strategy order, batch + individual split, polling deadline, stub fallback, quality gate.
Network-free: visitor and AI provider are fakes.
"""

import asyncio
import sys
import time
from datetime import date
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from artifacts import EventCandidate, EvidenceTag
from actions.extractor import ExtractionConfig, ExtractionEngine, HostThrottle, ai_result_from_payload
from actions.firecrawl_extract import ExtractJob
from actions.llm_extract import LlmExtractClient
from actions.visitor import WebPage
from memory.cache_memory import ExtractionCache
from utils.text_cleaner import normalize_url

TODAY = date(2026, 1, 10)

JSONLD_HTML = """<html><head><title>Compliance Summit</title>
<script type="application/ld+json">
{"@context": "https://schema.org", "@type": "Event", "name": "Compliance Summit Berlin 2026",
 "startDate": "2026-03-12", "endDate": "2026-03-13",
 "location": {"@type": "Place", "name": "Hotel Adlon",
              "address": {"addressLocality": "Berlin", "addressCountry": "DE"}}}
</script></head><body>Compliance Summit</body></html>"""


def regex_html(title: str) -> str:
    return (f"<html><head><title>{title}</title></head>"
            f"<body><p>2026-03-12 in Hamburg, Germany</p></body></html>")


# ============================================================================
# Fakes
# ============================================================================

class FakeVisitor:
    def __init__(self, pages=None, fail=(), raise_for=()):
        self.pages = pages or {}
        self.fail = set(fail)
        self.raise_for = set(raise_for)
        self.calls = []

    async def fetch(self, url):
        self.calls.append(url)
        if url in self.raise_for:
            raise RuntimeError("parser exploded")
        if url in self.fail or url not in self.pages:
            return WebPage(url=url, title="", content="", success=False, error="connection refused")
        html = self.pages[url]
        return WebPage(url=url, title="", content=html, html=html, status=200)


class FakeProvider:
    """Job API fake: multi-URL submits are batch jobs, single-URL submits use `single`"""
    name = "fake"
    configured = True

    def __init__(self, batch_results=None, single=None, polls_before_done=0, never_finish=False):
        self.batch_results = batch_results or []
        self.single = single or {}
        self.polls_before_done = polls_before_done
        self.never_finish = never_finish
        self.submits = []
        self.polls = {}

    async def submit(self, urls, locale=None, crawl=None):
        self.submits.append(list(urls))
        if len(urls) > 1:
            return "batch-job"
        if urls[0] in self.single or self.never_finish:
            return f"job:{urls[0]}"
        return None

    async def status(self, job_id):
        self.polls[job_id] = self.polls.get(job_id, 0) + 1
        if self.never_finish or self.polls[job_id] <= self.polls_before_done:
            return ExtractJob(job_id=job_id, status="processing")
        if job_id == "batch-job":
            return ExtractJob(job_id=job_id, status="completed", data={"results": self.batch_results})
        url = job_id.split(":", 1)[1]
        return ExtractJob(job_id=job_id, status="completed", data=[self.single[url]])


def ai_payload(i: int) -> dict:
    return {
        "title": f"Legal Operations Forum {i}",
        "starts_at": "2026-03-12",
        "ends_at": "2026-03-13",
        "city": "Berlin",
        "evidence": [
            {"field": "title", "snippet": f"Legal Operations Forum {i}", "confidence": 0.9},
            {"field": "dates", "snippet": "12-13 March 2026"},
            {"field": "location", "snippet": "Berlin", "confidence": 0.8},
        ],
    }


def make_engine(visitor, provider=None, **config) -> ExtractionEngine:
    config.setdefault("per_host_gap_ms", 0)
    config.setdefault("poll_timeout_s", 1.0)
    config.setdefault("poll_step_ms", 10)
    cache = ExtractionCache(path="unused.json", persist=False, refetch_stubs=True)
    return ExtractionEngine(cache=cache, visitor=visitor, provider=provider,
                            config=ExtractionConfig(**config), today=TODAY)


# ============================================================================
# Strategies
# ============================================================================

def test_json_ld_page_wins_first():
    url = "https://summit.example.com/compliance-2026"
    engine = make_engine(FakeVisitor({url: JSONLD_HTML}))
    result = asyncio.run(engine.extract([url]))
    print(f"[TEST][Extractor] jsonld trace={[t.step for t in result.trace]} conf={result.events[0].confidence}")
    assert result.trace[0].step == "jsonld"
    assert result.events[0].confidence > 0
    assert result.events[0].city == "Berlin"
    assert engine.cache.get_entry(url).step == "jsonld"


def test_unreachable_host_yields_tld_stub():
    url = "https://kongress-unreachable.de/programm"
    visitor = FakeVisitor(fail=[url])
    result = asyncio.run(make_engine(visitor).extract([url]))
    assert len(result.events) == 1
    stub = result.events[0]
    assert stub.country == "Germany"
    assert result.trace[-1].step == "stub"
    # page fetched once for jsonld + regex
    assert visitor.calls == [url]


def test_cache_hit_skips_fetch():
    url = "https://tagung.de/compliance"
    visitor = FakeVisitor()
    engine = make_engine(visitor)
    engine.cache.put(url, EventCandidate(source_url=url, title="Compliance Tagung", city="Köln", confidence=0.7,
                                         evidence=[EvidenceTag(field="title", snippet="t", confidence=0.7),
                                                   EvidenceTag(field="city", snippet="Köln", confidence=0.7)]),
                     "jsonld")
    result = asyncio.run(engine.extract([url]))
    assert [t.step for t in result.trace] == ["cache"]
    assert result.events[0].city == "Köln"
    assert visitor.calls == []


def test_ai_extract_polls_until_complete():
    url = "https://forum.example.org/legal-ops"
    provider = FakeProvider(single={url: ai_payload(1)}, polls_before_done=2)
    engine = make_engine(FakeVisitor({url: "<html><body>nothing structured</body></html>"}), provider)
    result = asyncio.run(engine.extract([url]))
    assert result.trace[0].step == "aiExtract"
    assert provider.polls[f"job:{url}"] == 3
    event = result.events[0]
    assert event.starts_at == "2026-03-12" and event.ends_at == "2026-03-13"
    assert {"starts_at", "ends_at", "city"} <= event.evidence_fields()


def test_ai_poll_deadline_falls_through_to_regex():
    url = "https://forum.example.org/slow"
    provider = FakeProvider(never_finish=True)
    engine = make_engine(FakeVisitor({url: regex_html("Compliance Roundtable Hamburg")}), provider,
                         poll_timeout_s=0.05)
    started = time.monotonic()
    result = asyncio.run(engine.extract([url]))
    assert time.monotonic() - started < 2
    ai_steps = [t for t in result.trace if t.step == "aiExtract"]
    assert len(ai_steps) == 1
    assert ai_steps[0].fell_through and ai_steps[0].note == "timeout" and not ai_steps[0].rich
    assert result.trace[-1].step == "regex"
    assert result.events[0].city == "Hamburg"
    assert result.quality_stats["by_step"] == {"regex": 1}
    assert result.quality_stats["fell_through"] == 1


def test_exception_recorded_and_stubbed():
    url = "https://broken.de/event"
    result = asyncio.run(make_engine(FakeVisitor(raise_for=[url])).extract([url]))
    assert [t.step for t in result.trace] == ["exception"]
    assert "parser exploded" in result.trace[0].note
    assert result.events[0].country == "Germany"


def test_fall_through_steps_are_traced():
    url = "https://forum.example.org/placeholder"
    # json-ld without dates or location, then no job id, then a generic regex title
    thin_ld = ('<html><head><title>Home</title><script type="application/ld+json">'
               '{"@type": "Event", "name": "Home"}</script></head><body>welcome</body></html>')
    engine = make_engine(FakeVisitor({url: thin_ld}), FakeProvider())
    result = asyncio.run(engine.extract([url]))
    print(f"[TEST][Extractor] fall-through trace={[(t.step, t.note) for t in result.trace]}")
    assert [(t.step, t.note) for t in result.trace] == [
        ("jsonld", "not rich"), ("aiExtract", "no job id"), ("regex", "generic title"), ("stub", None)]
    assert [t.fell_through for t in result.trace] == [True, True, True, False]
    assert result.quality_stats["by_step"] == {"stub": 1}


# ============================================================================
# LLM job client
# ============================================================================

class SlowVisitor:
    def __init__(self, delay):
        self.delay = delay

    async def fetch(self, url):
        await asyncio.sleep(self.delay)
        return WebPage(url=url, title="", content="", success=False, error="too slow")


def test_timed_out_llm_jobs_are_released():
    urls = [f"https://slow{i}.example.com/e" for i in range(5)]
    client = LlmExtractClient(llm_client=object(), visitor=SlowVisitor(1.0), model_name="test-model")
    engine = make_engine(FakeVisitor({u: regex_html("Compliance Roundtable Hamburg") for u in urls}), client,
                         poll_timeout_s=0.05)
    result = asyncio.run(engine.extract(urls))
    assert len(result.events) == 5
    assert client._jobs == {}


def test_finished_unpolled_llm_job_is_evicted():
    client = LlmExtractClient(llm_client=object(), visitor=SlowVisitor(0), model_name="test-model",
                              retention_s=0.01)

    async def run():
        job_id = await client.submit(["https://quick.example.com/e"])
        await client._jobs[job_id]
        tracked_after_finish = job_id in client._jobs
        await asyncio.sleep(0.05)
        return tracked_after_finish, job_id in client._jobs

    assert asyncio.run(run()) == (True, False)


# ============================================================================
# Batch / planning
# ============================================================================

def test_batch_resolves_most_and_rest_go_individual():
    urls = [f"https://host{i}.example.com/event-{i}" for i in range(15)]
    batch = [{"url": u, "data": ai_payload(i)} for i, u in enumerate(urls[:12])]
    pages = {u: regex_html(f"Compliance Day {i}") for i, u in enumerate(urls[12:], 12)}
    visitor = FakeVisitor(pages)
    provider = FakeProvider(batch_results=batch)

    engine = make_engine(visitor, provider)
    result = asyncio.run(engine.extract(urls))
    print(f"[TEST][Extractor] batch stats={result.quality_stats}")

    assert provider.submits[0] == urls
    assert [len(s) for s in provider.submits[1:]] == [1, 1, 1]
    assert sorted(visitor.calls) == sorted(urls[12:])
    assert len([t for t in result.trace if t.note == "batch"]) == 12
    keys = [normalize_url(e.source_url) for e in result.events]
    assert len(keys) == len(set(keys)) == 15
    assert result.quality_stats["by_step"] == {"aiExtract": 12, "regex": 3}
    # batch planning checks the cache without counting; only the 3 individual lookups miss
    assert engine.cache.stats()["misses"] == 3


def test_below_threshold_skips_batch():
    urls = [f"https://host{i}.example.com/e" for i in range(3)]
    provider = FakeProvider()
    asyncio.run(make_engine(FakeVisitor(), provider).extract(urls))
    assert all(len(s) == 1 for s in provider.submits)


def test_targets_deduped_and_capped():
    urls = ["https://a.de/x", "https://www.a.de/x/", "http://a.de/x?ref=1"] + \
           [f"https://b{i}.de/e" for i in range(30)]
    visitor = FakeVisitor()
    result = asyncio.run(make_engine(visitor, max_urls=20).extract(urls))
    assert len(result.events) == 20
    assert result.events[0].source_url == "https://a.de/x"
    assert len(visitor.calls) == 20


def test_empty_input_returns_empty_result():
    result = asyncio.run(make_engine(FakeVisitor()).extract([]))
    assert result.events == [] and result.accepted == [] and result.trace == []
    assert result.quality_stats["total"] == 0


def test_quality_gate_drops_placeholders():
    good = "https://summit.example.com/compliance-2026"
    bare = "https://nothing.example.com/"
    result = asyncio.run(make_engine(FakeVisitor({good: JSONLD_HTML}, fail=[bare])).extract([bare, good]))
    assert len(result.events) == 2
    assert [e.source_url for e in result.accepted] == [good]
    assert result.to_dict()["events"][0]["source_url"] == good


# ============================================================================
# Helpers
# ============================================================================

def test_ai_payload_evidence_aliases():
    result = ai_result_from_payload("https://x.de/e", ai_payload(3))
    fields = sorted(t.field for t in result.evidence)
    assert fields == ["city", "ends_at", "starts_at", "title", "venue"]
    assert "evidence" not in result.fields
    dates_tag = next(t for t in result.evidence if t.field == "starts_at")
    assert dates_tag.confidence == 0.7


def test_host_throttle_spaces_same_host():
    async def run():
        throttle = HostThrottle(0.05)
        start = asyncio.get_running_loop().time()
        await throttle.wait("a.de")
        await throttle.wait("b.de")
        await throttle.wait("a.de")
        return asyncio.get_running_loop().time() - start

    assert asyncio.run(run()) >= 0.045


def main():
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"[TEST][Extractor] {name} OK")


if __name__ == "__main__":
    main()
