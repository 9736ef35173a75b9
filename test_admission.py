"""
Admission Filter Test Script
Country tiers, override rules, date tolerance and the undated fallback
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent / "src"))

from artifacts import EventCandidate
from actions.admission import AdmissionFilter, dedupe_events, rank_events
from memory.cache_memory import LocationHintCache


def event(url="https://summit.com/e", **kwargs) -> EventCandidate:
    kwargs.setdefault("title", "Compliance Summit")
    kwargs.setdefault("confidence", 0.5)
    return EventCandidate(source_url=url, **kwargs)


def make_filter(country="DE", date_from="2026-03-10", date_to="2026-03-20", **kwargs) -> AdmissionFilter:
    return AdmissionFilter(country, date_from, date_to, hints=LocationHintCache(max_entries=64, ttl_seconds=60),
                           **kwargs)


# ============================================================================
# Country tiers
# ============================================================================

def test_exact_country_by_code_or_name():
    f = make_filter()
    assert f.match_country(event(country="DE")) == (True, "exact")
    assert f.match_country(event(country="Germany")) == (True, "exact")
    assert f.match_country(event(country="Deutschland"))[0]


def test_city_mention_without_country():
    berlin = event(city="Berlin", starts_at="2026-03-12")
    assert make_filter("DE").match_country(berlin) == (True, "mention")
    assert make_filter("FR").match_country(berlin)[0] is False


def test_contradicting_country_skips_mention_and_tld():
    candidate = event(url="https://konferenz.de/x", country="France", title="Berlin meets Paris")
    ok, reason = make_filter("DE").match_country(candidate)
    assert not ok
    assert reason == "country_contradiction"


def test_tld_tier():
    assert make_filter("DE").match_country(event(url="https://tagung.de/programm")) == (True, "tld")
    assert make_filter("FR").match_country(event(url="https://tagung.de/programm"))[0] is False


def test_eu_target():
    f = make_filter("EU")
    assert f.match_country(event(country="Netherlands"))[0]
    assert f.match_country(event(country="Europe-wide"))[0]
    assert f.match_country(event(country="United States"))[0] is False


def test_gate_override_requires_no_contradiction():
    f = make_filter("DE")
    assert f.match_country(event(accepted_by_country_gate=True)) == (True, "gate_override")
    assert f.match_country(event(country="FR", accepted_by_country_gate=True))[0] is False


def test_confidence_override_needs_mention():
    f = make_filter("DE")
    strong = event(url="https://summit.com/1", country="Austria", title="DACH Compliance Days Berlin", confidence=0.8)
    weak = event(url="https://summit.com/2", country="Austria", title="DACH Compliance Days Berlin", confidence=0.6)
    silent = event(url="https://summit.com/3", country="Austria", title="DACH Compliance Days", confidence=0.9)
    assert f.match_country(strong) == (True, "confidence_override")
    assert f.match_country(weak)[0] is False
    assert f.match_country(silent)[0] is False


def test_location_hints_are_memoized():
    hints = LocationHintCache(max_entries=8, ttl_seconds=60)
    f = AdmissionFilter("DE", hints=hints)
    f.match_country(event(url="https://tagung.de/a"))
    assert len(hints) >= 1


def test_mention_memo_follows_text_not_just_url():
    hints = LocationHintCache(max_entries=64, ttl_seconds=60)
    url = "https://events.example.com/summit"
    first = AdmissionFilter("DE", hints=hints).match_country(event(url=url, description="held in Berlin"))
    second = AdmissionFilter("DE", hints=hints).match_country(event(url=url, description="held in Lyon"))
    assert first == (True, "mention")
    assert second == (False, "country_unmatched")


# ============================================================================
# Dates
# ============================================================================

def test_date_tolerance_boundaries():
    f = make_filter("DE", "2026-03-10", "2026-03-20")
    assert f.match_dates(event(starts_at="2026-03-04")) is True      # from - 6 days
    assert f.match_dates(event(starts_at="2026-03-02")) is False     # from - 8 days
    assert f.match_dates(event(starts_at="2026-03-27")) is True      # to + 7 days
    assert f.match_dates(event(starts_at="2026-03-28")) is False


def test_date_interval_overlap():
    f = make_filter("DE", "2026-03-10", "2026-03-20")
    assert f.match_dates(event(starts_at="2026-02-20", ends_at="2026-03-05")) is True
    assert f.match_dates(event(starts_at="2026-02-01", ends_at="2026-02-20")) is False
    assert f.match_dates(event(ends_at="2026-03-15")) is True


def test_invalid_date_counts_as_undated():
    f = make_filter("DE")
    assert f.match_dates(event(starts_at="sometime in spring")) is None


def test_apply_sorts_into_buckets():
    f = make_filter("DE")
    candidates = [
        event(url="https://a.de/1", starts_at="2026-03-12"),
        event(url="https://a.de/2", starts_at="2026-01-01"),
        event(url="https://a.de/3"),
        event(url="https://a.fr/4", country="France", starts_at="2026-03-12"),
    ]
    result = f.apply(candidates)
    print(f"[TEST][Admission] {result.summary()}")
    assert [e.source_url for e in result.events] == ["https://a.de/1"]
    assert len(result.rejected) == 2
    assert [e.source_url for e in result.undated] == ["https://a.de/3"]
    assert result.undated[0].undated_candidate is True
    assert not result.degraded
    assert result.reasons == {"date_out_of_range": 1, "country_contradiction": 1}


def test_allow_undated_keeps_undated():
    result = make_filter("DE", allow_undated=True).apply([event(url="https://a.de/3")])
    assert len(result.events) == 1
    assert result.events[0].undated_candidate


def test_degraded_fallback_limited_to_five():
    undated = [event(url=f"https://a.de/{i}", confidence=i / 10) for i in range(8)]
    result = make_filter("DE").apply(undated)
    assert result.degraded
    assert len(result.events) == 5
    assert result.events[0].confidence == 0.7


# ============================================================================
# Dedup / rank
# ============================================================================

def test_dedupe_by_url_and_title():
    events = [
        event(url="https://www.a.de/x/", title="Legal Tech Day"),
        event(url="http://a.de/x", title="Other"),
        event(url="https://b.de/y", title="legal tech day!"),
        event(url="https://c.de/z", title="Event"),
        event(url="https://d.de/z", title="Event"),
    ]
    kept = dedupe_events(events)
    assert [e.source_url for e in kept] == ["https://www.a.de/x/", "https://c.de/z", "https://d.de/z"]


def test_rank_prefers_confidence_then_dates():
    ranked = rank_events([
        event(url="https://a.de/1", confidence=0.5),
        event(url="https://a.de/2", confidence=0.5, starts_at="2026-03-12"),
        event(url="https://a.de/3", confidence=0.9),
    ])
    assert [e.source_url for e in ranked] == ["https://a.de/3", "https://a.de/2", "https://a.de/1"]


def main():
    for name, fn in list(globals().items()):
        if name.startswith("test_") and callable(fn):
            fn()
            print(f"[TEST][Admission] {name} OK")


if __name__ == "__main__":
    main()
