"""
Cache / Event Store Test Script
Durable URL cache snapshots, stub handling, TTL, location hints and the local event database
"""

import json
import sys
import threading
import time
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from artifacts import EventCandidate, EvidenceTag
from memory.cache_memory import ExtractionCache, LocationHintCache
from memory.event_store import EventStore


def candidate(url="https://tagung.de/compliance-2026", **kwargs) -> EventCandidate:
    kwargs.setdefault("title", "Compliance Tagung 2026")
    kwargs.setdefault("confidence", 0.7)
    kwargs.setdefault("evidence", [EvidenceTag(field="title", snippet="Compliance Tagung 2026", confidence=0.6)])
    return EventCandidate(source_url=url, **kwargs)


# ============================================================================
# ExtractionCache
# ============================================================================

def test_put_get_by_canonical_url(tmp_path):
    cache = ExtractionCache(path=str(tmp_path / "url_extractions.json"), ttl_days=14, save_every_ops=100)
    cache.put("https://www.tagung.de/compliance-2026/", candidate(), "jsonld")
    hit = cache.get("http://tagung.de/compliance-2026?utm=x")
    assert hit is not None
    assert hit.title == "Compliance Tagung 2026"
    assert hit.evidence[0].field == "title"
    assert cache.get_entry("https://tagung.de/compliance-2026").step == "jsonld"
    assert cache.stats()["hits"] == 1


def test_snapshot_roundtrip_and_backup(tmp_path):
    path = tmp_path / "url_extractions.json"
    cache = ExtractionCache(path=str(path), save_every_ops=1)
    cache.put("https://tagung.de/a", candidate("https://tagung.de/a"), "regex")
    cache.put("https://tagung.de/b", candidate("https://tagung.de/b"), "regex")

    snapshot = json.loads(path.read_text(encoding="utf-8"))
    assert snapshot["version"] == 1
    assert set(snapshot["items"]) == {"tagung.de/a", "tagung.de/b"}
    assert (tmp_path / "url_extractions.json.bak").exists()

    reloaded = ExtractionCache(path=str(path))
    assert len(reloaded) == 2
    assert reloaded.get("https://tagung.de/b").source_url == "https://tagung.de/b"


def test_corrupt_snapshot_falls_back_to_backup(tmp_path):
    path = tmp_path / "url_extractions.json"
    cache = ExtractionCache(path=str(path), save_every_ops=1)
    cache.put("https://tagung.de/a", candidate("https://tagung.de/a"), "regex")
    cache.put("https://tagung.de/b", candidate("https://tagung.de/b"), "regex")
    path.write_text("{not json", encoding="utf-8")

    reloaded = ExtractionCache(path=str(path))
    # .bak holds the snapshot taken before the second write
    assert reloaded.get("https://tagung.de/a") is not None


def test_stub_entries_are_not_served(tmp_path):
    cache = ExtractionCache(path=str(tmp_path / "c.json"), refetch_stubs=True, persist=False)
    cache.put("https://tagung.de/x", candidate("https://tagung.de/x", title=None), "stub")
    assert cache.get("https://tagung.de/x") is None
    assert cache.get_entry("https://tagung.de/x").step == "stub"

    keep = ExtractionCache(path=str(tmp_path / "c2.json"), refetch_stubs=False, persist=False)
    keep.put("https://tagung.de/x", candidate("https://tagung.de/x"), "stub")
    assert keep.get("https://tagung.de/x") is not None


def test_ttl_and_invalidate(tmp_path):
    cache = ExtractionCache(path=str(tmp_path / "c.json"), ttl_days=1, persist=False)
    cache.put("https://tagung.de/x", candidate("https://tagung.de/x"), "regex")
    assert cache.invalidate("https://tagung.de/x")
    assert not cache.invalidate("https://tagung.de/x")

    cache.put("https://tagung.de/y", candidate("https://tagung.de/y"), "regex")
    cache._store["tagung.de/y"]["expire_at"] = time.time() - 1
    assert cache.get("https://tagung.de/y") is None
    assert len(cache) == 0


def test_contains_leaves_counters_alone(tmp_path):
    cache = ExtractionCache(path=str(tmp_path / "c.json"), refetch_stubs=True, persist=False)
    cache.put("https://tagung.de/a", candidate("https://tagung.de/a"), "regex")
    cache.put("https://tagung.de/s", candidate("https://tagung.de/s"), "stub")
    assert cache.contains("https://www.tagung.de/a/")
    assert not cache.contains("https://tagung.de/s")
    assert not cache.contains("https://tagung.de/missing")
    assert cache.stats() == {"entries": 2, "hits": 0, "misses": 0}


def test_counters_consistent_across_threads(tmp_path):
    cache = ExtractionCache(path=str(tmp_path / "c.json"), persist=False)
    cache.put("https://tagung.de/a", candidate("https://tagung.de/a"), "regex")

    def worker():
        for i in range(200):
            cache.get("https://tagung.de/a" if i % 2 else "https://tagung.de/missing")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert cache.stats()["hits"] == 800
    assert cache.stats()["misses"] == 800


# ============================================================================
# LocationHintCache
# ============================================================================

def test_location_hints_lru_eviction():
    hints = LocationHintCache(max_entries=2, ttl_seconds=60)
    hints.put("a", True)
    hints.put("b", False)
    assert hints.get("a") is True      # a becomes most recent
    hints.put("c", "DE")
    assert hints.get("b") is None
    assert hints.get("a") is True
    assert hints.get("c") == "DE"
    assert len(hints) == 2


def test_location_hints_expire():
    hints = LocationHintCache(max_entries=8, ttl_seconds=0.01)
    hints.put("a", True)
    time.sleep(0.03)
    assert hints.get("a") is None


# ============================================================================
# EventStore
# ============================================================================

def test_event_store_search(tmp_path):
    store = EventStore(path=str(tmp_path / "collected_events.json"))
    store.upsert([
        candidate("https://tagung.de/1", title="Compliance Tagung Berlin", country="Germany",
                  starts_at="2026-03-12"),
        candidate("https://forum.fr/2", title="Forum Compliance Paris", country="France",
                  starts_at="2026-03-14"),
        candidate("https://tagung.de/3", title="Datenschutz Kongress", country="Germany",
                  starts_at="2026-09-01"),
        candidate("https://tagung.de/4", title="Compliance ohne Datum", country="Germany"),
    ])
    hits = store.search("compliance", "DE", "2026-03-01", "2026-03-31")
    assert [e.source_url for e in hits] == ["https://tagung.de/1"]
    assert hits[0].source == "database"

    eu = store.search("compliance", "EU", "2026-03-01", "2026-03-31")
    assert {e.source_url for e in eu} == {"https://tagung.de/1", "https://forum.fr/2"}

    undated_ok = store.search("compliance", "DE")
    assert {e.source_url for e in undated_ok} == {"https://tagung.de/1", "https://tagung.de/4"}

    reloaded = EventStore(path=str(tmp_path / "collected_events.json"))
    assert len(reloaded) == 4


def test_event_store_upsert_replaces_by_url(tmp_path):
    store = EventStore(path=str(tmp_path / "e.json"), persist=False)
    store.upsert([candidate("https://tagung.de/1", title="Old Title")])
    store.upsert([candidate("https://www.tagung.de/1/", title="New Title")])
    assert len(store) == 1
    assert store.search("title")[0].title == "New Title"


def main():
    import tempfile
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            if "tmp_path" in fn.__code__.co_varnames[:fn.__code__.co_argcount]:
                with tempfile.TemporaryDirectory() as d:
                    fn(Path(d))
            else:
                fn()
            print(f"[TEST][Cache] {name} OK")


if __name__ == "__main__":
    main()
