# main.py
import argparse
import asyncio
import json
import logging
import os
import sys

from dotenv import load_dotenv

# Add the project root to Python path
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from chasor import EventChasor
from toolsets import build_toolset
from config_manager import get_config, get_log_level
from actions.search_orchestrator import SearchRequest
from utils.country import to_iso2
from utils.timectx import resolve_window


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="EventChasor demo: search and extract industry events")
    parser.add_argument("query", nargs="?", default="Legal Tech Compliance")
    parser.add_argument("--country", default="DE")
    parser.add_argument("--from", dest="date_from")
    parser.add_argument("--to", dest="date_to")
    parser.add_argument("--timeframe", choices=["next_7", "next_30", "next_90"])
    parser.add_argument("--allow-undated", action="store_true")
    parser.add_argument("--extract", nargs="+", metavar="URL", help="extract these URLs instead of searching")
    parser.add_argument("--json", action="store_true", help="print the full JSON payload")
    return parser.parse_args(argv)


async def run_demo(args):
    cfg = get_config()
    print(f"[CONFIG][LOADED] {cfg}")

    toolset = build_toolset()
    print(f"[DEMO][PROVIDERS] {toolset.provider_names()}")
    print("=" * 60)

    if args.extract:
        result = await toolset.extractor.extract(args.extract)
        payload = result.to_dict()
    else:
        iso = to_iso2(args.country)
        window = resolve_window(args.date_from, args.date_to, args.timeframe, country=iso)
        print(f"[DEMO][QUERY] '{args.query}' country={iso} window={window.date_from}..{window.date_to} ({window.source})")
        request = SearchRequest(base_query=args.query, country=iso,
                                date_from=window.date_from, date_to=window.date_to)
        result = await EventChasor(toolset).run(request, allow_undated=args.allow_undated)
        payload = result.to_dict()

    if args.json:
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        for i, event in enumerate(payload["events"], 1):
            print(f"[DEMO][EVENT_{i}] {event['title']} | {event['starts_at'] or '-'} | "
                  f"{event['city'] or '-'}, {event['country'] or '-'} | conf={event['confidence']}")
            print(f"    {event['source_url']}")
        print(f"[DEMO][STATS] {payload.get('qualityStats')}")

    toolset.cache.save()
    print("=" * 60)


if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=get_log_level(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    asyncio.run(run_demo(parse_args()))
