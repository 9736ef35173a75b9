"""
Request Deduplicator Test Script
Concurrent identical requests share one in-flight call
"""

import asyncio
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

import pytest

from artifacts import SearchResultItem, tag_reused
from actions.dedup import (
    RequestDeduplicator, api_request_fingerprint, http_request_fingerprint, normalize_params,
)


def test_fingerprint_normalization():
    a = http_request_fingerprint("cse", "https://x/search", "get",
                                 params={"q": ["b", "a"], "gl": None, "opts": {"z": 1, "a": 2}},
                                 headers={"Authorization": "k", "X-Trace": "1"})
    b = http_request_fingerprint("cse", "https://x/search", "GET",
                                 params={"opts": {"a": 2, "z": 1}, "q": ["a", "b"]},
                                 headers={"authorization": "k"})
    assert a.key() == b.key()
    assert normalize_params({"a": None, "b": [3, 1, 2]}) == {"b": [1, 2, 3]}

    c = api_request_fingerprint("firecrawl", "/v2/search", "POST", body={"queries": ["x"]})
    d = api_request_fingerprint("firecrawl", "/v2/search", "POST", body={"queries": ["y"]})
    assert c.key() != d.key()


def test_concurrent_identical_requests_share_one_call():
    dedup = RequestDeduplicator(timeout_seconds=300, cleanup_interval_seconds=60)
    calls = []

    async def factory():
        calls.append(1)
        await asyncio.sleep(0.05)
        return ["result"]

    async def run():
        fp = http_request_fingerprint("cse", "https://x/search", params={"q": "legal"})
        return await asyncio.gather(*[dedup.execute(fp, factory) for _ in range(5)])

    results = asyncio.run(run())
    print(f"[TEST][Dedup] stats={dedup.get_stats()}")
    assert results == [["result"]] * 5
    assert len(calls) == 1
    stats = dedup.get_stats()
    assert stats["started"] == 1 and stats["reused"] == 4
    # entry removed once settled
    assert stats["ongoing_requests"] == 0


def test_reused_search_results_tagged_cache():
    dedup = RequestDeduplicator()

    async def factory():
        await asyncio.sleep(0.02)
        return [SearchResultItem(url="https://tagung.de/a", title="Tagung")]

    async def run():
        return await asyncio.gather(dedup.execute("q", factory, on_reuse=tag_reused),
                                    dedup.execute("q", factory, on_reuse=tag_reused))

    first, second = asyncio.run(run())
    assert first[0].provider == "live"
    assert second[0].provider == "cache"
    assert second[0].url == first[0].url


def test_sequential_requests_run_again():
    dedup = RequestDeduplicator()
    calls = []

    async def factory():
        calls.append(1)
        return len(calls)

    async def run():
        first = await dedup.execute("same-key", factory)
        second = await dedup.execute("same-key", factory)
        return first, second

    assert asyncio.run(run()) == (1, 2)


def test_failure_propagates_to_every_waiter_and_clears_entry():
    dedup = RequestDeduplicator()

    async def factory():
        await asyncio.sleep(0.01)
        raise RuntimeError("provider down")

    async def run():
        return await asyncio.gather(dedup.execute("k", factory), dedup.execute("k", factory),
                                    return_exceptions=True)

    results = asyncio.run(run())
    assert all(isinstance(r, RuntimeError) for r in results)
    assert dedup.get_stats()["ongoing_requests"] == 0


def test_stale_entries_swept():
    dedup = RequestDeduplicator(timeout_seconds=0.01, cleanup_interval_seconds=0)

    async def run():
        never = asyncio.get_running_loop().create_future()

        async def factory():
            return await never

        task = asyncio.ensure_future(dedup.execute("slow", factory))
        await asyncio.sleep(0.05)
        assert dedup.get_stats()["ongoing_requests"] == 1
        removed = dedup.cleanup_stale()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return removed

    assert asyncio.run(run()) == 1


def test_clear_all():
    dedup = RequestDeduplicator()

    async def run():
        gate = asyncio.Event()

        async def factory():
            await gate.wait()
            return "ok"

        task = asyncio.ensure_future(dedup.execute("k", factory))
        await asyncio.sleep(0)
        dedup.clear_all()
        assert dedup.get_stats()["ongoing_requests"] == 0
        gate.set()
        return await task

    assert asyncio.run(run()) == "ok"


def main():
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"[TEST][Dedup] {name} OK")


if __name__ == "__main__":
    main()
