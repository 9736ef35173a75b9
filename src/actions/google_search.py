"""
Google Custom Search API Tool for EventChasor (fallback provider, P2)
Only consulted when the primary provider fails or comes back thin.
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
from actions.dedup import RequestDeduplicator, http_request_fingerprint, get_request_deduplicator
from utils.country import to_iso2


class GoogleCustomSearch:
    """Google Custom Search API client"""

    name = "google_custom_search"
    description = "Search using Google Custom Search API (Official Google API)"

    def __init__(self, deduplicator: Optional[RequestDeduplicator] = None, session: Optional[requests.Session] = None):
        # API credentials from environment (sensitive credentials)
        self.api_key = os.getenv('GOOGLE_SEARCH_KEY', '')
        self.cse_id = os.getenv('GOOGLE_CSE_ID', '')

        if not self.api_key:
            print("Warning: GOOGLE_SEARCH_KEY environment variable not set")
        if not self.cse_id:
            print("Warning: GOOGLE_CSE_ID environment variable not set")

        cfg = get_config()
        self.base_url = cfg.get('external_services.google_cse.api_base', 'https://www.googleapis.com/customsearch/v1')
        self.num_results = min(10, cfg.get('search.cse.num_results', 10))
        self.qps = cfg.get('search.cse.qps', 1)
        self.concurrent = cfg.get('search.cse.concurrent', 2)
        self.retries = cfg.get('search.cse.retries', 2)
        self.timeout_s = cfg.get('search.cse.timeout', 15)

        self.deduplicator = deduplicator or get_request_deduplicator()
        self.session = session or requests.Session()

        # Shared state for simple client-side rate limiting across threads
        self._rl_lock = threading.Lock()
        self._last_call_ts = 0.0
        self._min_interval = 1.0 / max(1, self.qps)

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.cse_id)

    def _rate_limit(self):
        """
        Simple client-side QPS limiter shared across threads.
        Ensures at most `self.qps` requests per second.
        """
        with self._rl_lock:
            now = time.monotonic()
            wait = (self._last_call_ts + self._min_interval) - now
            if wait > 0:
                time.sleep(wait)
            self._last_call_ts = time.monotonic()

    def _params(self, query: str, country: Optional[str], num_results: Optional[int]) -> Dict[str, Any]:
        params = {
            'q': query,
            'key': self.api_key,
            'cx': self.cse_id,
            'num': min(num_results or self.num_results, 10),
            'safe': 'off',
            'hl': 'en',
        }
        iso = to_iso2(country)
        if iso and iso != 'EU':
            params['gl'] = iso.lower()
            params['cr'] = f'country{iso}'
        return params

    def get_structured_results(self, query: str, country: Optional[str] = None,
                               num_results: Optional[int] = None) -> List[SearchResultItem]:
        """Get structured search results; errors come back as an empty list"""
        if not self.configured:
            print("Error: GOOGLE_SEARCH_KEY or GOOGLE_CSE_ID not configured")
            return []
        return self._execute_with_retry(query, country, num_results)

    def _execute_search(self, query: str, country: Optional[str], num_results: Optional[int]) -> List[SearchResultItem]:
        """Execute the actual Google Custom Search API search"""
        params = self._params(query, country, num_results)
        print(f"[GoogleSearch] Searching: '{query}' (gl: {params.get('gl', '-')}, results: {params['num']})")

        response = self.session.get(self.base_url, params=params, timeout=self.timeout_s)
        response.raise_for_status()
        data = response.json()

        if 'error' in data:
            error_msg = data['error'].get('message', 'Unknown error')
            error_code = data['error'].get('code', '')
            print(f"[GoogleSearch][ERROR] API Error ({error_code}): {error_msg}")
            if error_code in (403, 429) or 'quota' in error_msg.lower():
                print("[GoogleSearch][HINT] Google Custom Search has strict rate limits (1 QPS, 100/day free).")
            return []

        items = data.get('items', [])
        total_results = data.get('searchInformation', {}).get('totalResults', '0')
        if not items and str(total_results) not in ('0', ''):
            print(f"[GoogleSearch][WARNING] Search found {total_results} results but returned 0 items!")
            print("[GoogleSearch][HINT] Enable 'Search the entire web' in the Programmable Search Engine settings.")

        results = [
            SearchResultItem(url=item.get('link', ''), title=item.get('title', ''),
                             snippet=item.get('snippet', ''), provider='live')
            for item in items if item.get('link')
        ]
        print(f"[GoogleSearch] Returned {len(results)} results")
        return results

    def _execute_with_retry(self, query: str, country: Optional[str], num_results: Optional[int]) -> List[SearchResultItem]:
        """
        Execute a single search with retries, backoff, and client-side rate limiting.
        """
        attempt = 0
        backoff = 2.0  # Google CSE rate limits are strict
        while True:
            try:
                self._rate_limit()
                return self._execute_search(query, country, num_results)
            except requests.HTTPError as e:
                status = getattr(e.response, 'status_code', 0) or 0
                if attempt >= self.retries or (400 <= status < 500 and status != 429):
                    print(f"[GoogleSearch] Giving up on query='{query}' ({status}): {e}")
                    return []
                # Longer backoff for rate limit errors
                factor = 2 if status == 429 else 1
                sleep_s = backoff * factor * (1.0 + random.random() * 0.5)
                print(f"[GoogleSearch] HTTP {status}, waiting {sleep_s:.1f}s before retry {attempt + 1}/{self.retries}")
            except (requests.RequestException, json.JSONDecodeError, ValueError) as e:
                if attempt >= self.retries:
                    print(f"[GoogleSearch] Retry exhausted for query='{query}': {e}")
                    return []
                sleep_s = backoff * (1.0 + random.random() * 0.25)
            time.sleep(sleep_s)
            backoff *= 2
            attempt += 1

    def batch_call(self, queries: List[str], country: Optional[str] = None,
                   num_results: Optional[int] = None) -> Dict[str, List[SearchResultItem]]:
        """
        Batch search for multiple queries with bounded concurrency.
        Returns a mapping: { query: [SearchResultItem, ...] }
        """
        if not isinstance(queries, list) or not queries:
            return {}

        out: Dict[str, List[SearchResultItem]] = {}

        def worker(q: str) -> None:
            out[q] = self.get_structured_results(q, country, num_results)

        with ThreadPoolExecutor(max_workers=max(1, self.concurrent)) as ex:
            futs = {ex.submit(worker, q): q for q in queries}
            for fut in as_completed(futs):
                try:
                    fut.result()
                except Exception as e:
                    q = futs[fut]
                    print(f"[GoogleSearch] Future error for '{q}': {e}")
                    out[q] = out.get(q, [])
        return out

    def batch_call_flat(self, queries: List[str], country: Optional[str] = None,
                        num_results: Optional[int] = None) -> List[SearchResultItem]:
        mapping = self.batch_call(queries, country, num_results)
        flat: List[SearchResultItem] = []
        for q in queries:
            flat.extend(mapping.get(q, []))
        return flat

    async def search(self, queries: List[str], country: Optional[str] = None) -> List[SearchResultItem]:
        fingerprint = http_request_fingerprint(
            'google_cse', self.base_url, 'GET',
            params={'q': list(queries), 'cx': self.cse_id, 'country': to_iso2(country)},
        )
        return await self.deduplicator.execute(
            fingerprint, lambda: asyncio.to_thread(self.batch_call_flat, list(queries), country),
            on_reuse=tag_reused)
