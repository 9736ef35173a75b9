"""
Firecrawl Search API Tool for EventChasor (primary provider, P1)
Web search that returns page markdown alongside each hit.
"""

import os
import json
import asyncio
import requests
from typing import List, Dict, Any, Optional
import time
import threading
import random
from concurrent.futures import ThreadPoolExecutor, as_completed

from artifacts import SearchResultItem, tag_reused
from config_manager import get_config
from actions.dedup import RequestDeduplicator, api_request_fingerprint, get_request_deduplicator
from utils.country import country_display_name, to_iso2


class FirecrawlSearch:
    """Firecrawl v2 /search client with QPS limiting, retries and batch fan-out"""

    name = "firecrawl_search"
    description = "Search the web with Firecrawl and scrape each hit to markdown"

    def __init__(self, deduplicator: Optional[RequestDeduplicator] = None, session: Optional[requests.Session] = None):
        # API credentials from environment (sensitive credentials)
        self.api_key = os.getenv('FIRECRAWL_KEY', '')
        if not self.api_key:
            print("Warning: FIRECRAWL_KEY environment variable not set")

        cfg = get_config()
        self.base_url = cfg.get('external_services.firecrawl.api_base', 'https://api.firecrawl.dev/v2').rstrip('/') + '/search'
        self.limit = min(20, cfg.get('search.firecrawl.limit', 20))
        self.timeout_s = cfg.get('search.firecrawl.timeout', 15)
        self.qps = cfg.get('search.firecrawl.qps', 5)
        self.concurrent = cfg.get('search.firecrawl.concurrent', 4)
        self.retries = cfg.get('search.firecrawl.retries', 2)

        self.deduplicator = deduplicator or get_request_deduplicator()
        self.session = session or requests.Session()

        # Shared state for simple client-side rate limiting across threads
        self._rl_lock = threading.Lock()
        self._last_call_ts = 0.0
        self._min_interval = 1.0 / max(1, self.qps)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _rate_limit(self):
        """Ensures at most `self.qps` requests per second across threads"""
        with self._rl_lock:
            now = time.monotonic()
            wait = (self._last_call_ts + self._min_interval) - now
            if wait > 0:
                time.sleep(wait)
            self._last_call_ts = time.monotonic()

    def _headers(self) -> Dict[str, str]:
        return {'Authorization': f'Bearer {self.api_key}', 'Content-Type': 'application/json'}

    def _body(self, query: str, country: Optional[str], tbs: Optional[str], limit: Optional[int]) -> Dict[str, Any]:
        iso = to_iso2(country)
        body: Dict[str, Any] = {
            'query': query,
            'limit': min(limit or self.limit, 20),
            'sources': ['web'],
            'scrapeOptions': {'formats': ['markdown'], 'onlyMainContent': True},
        }
        if iso and iso != 'EU':
            body['country'] = iso
            body['location'] = country_display_name(iso)
        if tbs:
            body['tbs'] = tbs
        return body

    def get_structured_results(self, query: str, country: Optional[str] = None, tbs: Optional[str] = None,
                               limit: Optional[int] = None) -> List[SearchResultItem]:
        """Single query; provider errors come back as an empty list"""
        if not self.api_key:
            print("Error: FIRECRAWL_KEY not configured")
            return []
        return self._execute_with_retry(query, country, tbs, limit)

    def _execute_search(self, query: str, country: Optional[str], tbs: Optional[str],
                        limit: Optional[int]) -> List[SearchResultItem]:
        body = self._body(query, country, tbs, limit)
        print(f"[Firecrawl] Searching: '{query}' (country: {body.get('country', '-')}, limit: {body['limit']})")

        response = self.session.post(self.base_url, headers=self._headers(), json=body, timeout=self.timeout_s)
        response.raise_for_status()
        data = response.json()

        if data.get('success') is False:
            print(f"[Firecrawl][ERROR] API Error: {data.get('error', 'unknown error')}")
            return []

        payload = data.get('data') or {}
        hits = payload.get('web', []) if isinstance(payload, dict) else payload
        results = []
        for hit in hits or []:
            url = hit.get('url') or (hit.get('metadata') or {}).get('sourceURL')
            if not url:
                continue
            results.append(SearchResultItem(
                url=url,
                title=hit.get('title') or (hit.get('metadata') or {}).get('title') or '',
                snippet=hit.get('description') or '',
                provider='live',
                markdown=hit.get('markdown'),
            ))
        print(f"[Firecrawl] Returned {len(results)} results")
        return results

    def _execute_with_retry(self, query: str, country: Optional[str], tbs: Optional[str],
                            limit: Optional[int]) -> List[SearchResultItem]:
        """Retries with exponential backoff; 4xx other than 429 gives up at once"""
        attempt = 0
        backoff = 0.6
        while True:
            try:
                self._rate_limit()
                return self._execute_search(query, country, tbs, limit)
            except requests.HTTPError as e:
                status = getattr(e.response, 'status_code', 0) or 0
                if (400 <= status < 500 and status != 429) or attempt >= self.retries:
                    print(f"[Firecrawl] Giving up on query='{query}' ({status}): {e}")
                    return []
            except (requests.RequestException, json.JSONDecodeError, ValueError) as e:
                if attempt >= self.retries:
                    print(f"[Firecrawl] Retry exhausted for query='{query}': {e}")
                    return []
            sleep_s = backoff * (1.0 + random.random() * 0.25)
            time.sleep(sleep_s)
            backoff *= 2
            attempt += 1

    def batch_call(self, queries: List[str], country: Optional[str] = None, tbs: Optional[str] = None,
                   limit: Optional[int] = None) -> Dict[str, List[SearchResultItem]]:
        """Returns a mapping: { query: [SearchResultItem, ...] }"""
        if not isinstance(queries, list) or not queries:
            return {}

        out: Dict[str, List[SearchResultItem]] = {}

        def worker(q: str) -> None:
            out[q] = self.get_structured_results(q, country, tbs, limit)

        with ThreadPoolExecutor(max_workers=max(1, self.concurrent)) as ex:
            futs = {ex.submit(worker, q): q for q in queries}
            for fut in as_completed(futs):
                try:
                    fut.result()
                except Exception as e:
                    q = futs[fut]
                    print(f"[Firecrawl] Future error for '{q}': {e}")
                    out[q] = out.get(q, [])
        return out

    def batch_call_flat(self, queries: List[str], country: Optional[str] = None, tbs: Optional[str] = None,
                        limit: Optional[int] = None) -> List[SearchResultItem]:
        """Batch search flattened in query order"""
        mapping = self.batch_call(queries, country, tbs, limit)
        flat: List[SearchResultItem] = []
        for q in queries:
            flat.extend(mapping.get(q, []))
        return flat

    async def search(self, queries: List[str], country: Optional[str] = None,
                     tbs: Optional[str] = None) -> List[SearchResultItem]:
        """Async entry point used by the orchestrator; identical concurrent searches share one call"""
        fingerprint = api_request_fingerprint(
            'firecrawl', '/v2/search', 'POST',
            body={'queries': list(queries), 'country': to_iso2(country), 'tbs': tbs},
            headers={'Authorization': f'Bearer {self.api_key}'},
        )
        return await self.deduplicator.execute(
            fingerprint, lambda: asyncio.to_thread(self.batch_call_flat, list(queries), country, tbs),
            on_reuse=tag_reused)
