"""
Firecrawl Extract Client
Schema-driven AI extraction as an asynchronous job: submit -> job id -> poll status.
"""

import os
import json
import asyncio
import logging
import requests
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from config_manager import get_config
from prompt import EVENT_SCHEMA, build_extraction_prompt
from utils.country import iso2_from_tld

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("completed", "failed", "cancelled")
SCRAPE_LANGUAGES = ["de-DE", "en-GB", "fr-FR", "it-IT", "es-ES", "nl-NL", "pt-PT", "pl-PL"]
CRAWL_PROMPT = ("Crawl pages related to event details, speakers, presenters, agenda, program, schedule, "
                "registration, tickets, and venue information.")


@dataclass
class ExtractJob:
    """Snapshot of a remote job: status is queued | processing | completed | failed | cancelled"""
    job_id: str
    status: str
    data: Any = None
    error: Optional[str] = None

    @property
    def done(self) -> bool:
        return self.status in TERMINAL_STATUSES


def pick_data(data: Any) -> Any:
    """Single-URL payload: first list element, first batch result, or the dict itself"""
    if not data:
        return None
    if isinstance(data, list):
        return data[0] if data else None
    if isinstance(data, dict) and isinstance(data.get("results"), list) and data["results"]:
        first = data["results"][0]
        return first.get("data", first) if isinstance(first, dict) else first
    return data


def batch_items(data: Any, urls: List[str]) -> List[Tuple[str, Dict[str, Any]]]:
    """(url, payload) pairs from a batch job; a bare single payload is attributed to urls[0]"""
    out: List[Tuple[str, Dict[str, Any]]] = []
    if isinstance(data, dict) and isinstance(data.get("results"), list):
        for result in data["results"]:
            if isinstance(result, dict) and result.get("url") and isinstance(result.get("data"), dict):
                out.append((result["url"], result["data"]))
    elif isinstance(data, dict) and isinstance(data.get("data"), dict) and urls:
        out.append((urls[0], data["data"]))
    return out


class FirecrawlExtractClient:
    """Firecrawl v2 /extract job API"""

    name = "firecrawl"

    def __init__(self, api_key: Optional[str] = None, session: Optional[requests.Session] = None):
        self.api_key = api_key if api_key is not None else os.getenv('FIRECRAWL_KEY', '')
        cfg = get_config()
        self.base_url = cfg.get('external_services.firecrawl.api_base', 'https://api.firecrawl.dev/v2').rstrip('/') + '/extract'
        self.timeout_s = cfg.get('extraction.fetch.timeout', 8) + 2
        self.session = session or requests.Session()

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {'Authorization': f'Bearer {self.api_key}', 'Content-Type': 'application/json'}

    def _body(self, urls: List[str], locale: Optional[str], crawl: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        country = (iso2_from_tld(urls[0]) if urls else None) or "DE"
        scrape_options: Dict[str, Any] = {
            'onlyMainContent': True,
            'formats': ['markdown', 'html'],
            'parsers': ['pdf'],
            'waitFor': 1200,
            'location': {'country': country, 'languages': SCRAPE_LANGUAGES},
            'blockAds': True,
            'removeBase64Images': True,
        }
        if crawl:
            scrape_options['crawlerOptions'] = {
                'maxDepth': min(3, int(crawl.get('depth', 3) or 3)),
                'maxPagesToCrawl': 12,
                'allowSubdomains': True,
                'prompt': CRAWL_PROMPT,
            }
        return {
            'urls': urls,
            'schema': EVENT_SCHEMA,
            'prompt': build_extraction_prompt(locale),
            'showSources': False,
            'scrapeOptions': scrape_options,
            'ignoreInvalidURLs': True,
        }

    def _submit_sync(self, urls: List[str], locale: Optional[str], crawl: Optional[Dict[str, Any]]) -> Optional[str]:
        try:
            response = self.session.post(self.base_url, headers=self._headers(),
                                         json=self._body(urls, locale, crawl), timeout=self.timeout_s)
            response.raise_for_status()
            job_id = (response.json() or {}).get('id')
        except (requests.RequestException, json.JSONDecodeError, ValueError) as e:
            logger.warning(f"[FIRECRAWL][EXTRACT] submit failed for {len(urls)} urls: {e}")
            return None
        if not job_id:
            logger.warning("[FIRECRAWL][EXTRACT] no job id returned")
        return job_id

    def _status_sync(self, job_id: str) -> ExtractJob:
        try:
            response = self.session.get(f"{self.base_url}/{job_id}", headers=self._headers(), timeout=self.timeout_s)
            response.raise_for_status()
            payload = response.json() or {}
        except (requests.RequestException, json.JSONDecodeError, ValueError) as e:
            # transient; the poll loop asks again on the next step
            logger.debug(f"[FIRECRAWL][EXTRACT] status check failed for {job_id}: {e}")
            return ExtractJob(job_id=job_id, status="unknown", error=str(e))
        return ExtractJob(job_id=job_id, status=str(payload.get('status') or 'unknown'),
                          data=payload.get('data'), error=payload.get('error'))

    async def submit(self, urls: List[str], locale: Optional[str] = None,
                     crawl: Optional[Dict[str, Any]] = None) -> Optional[str]:
        if not self.configured or not urls:
            return None
        return await asyncio.to_thread(self._submit_sync, list(urls), locale, crawl)

    async def status(self, job_id: str) -> ExtractJob:
        return await asyncio.to_thread(self._status_sync, job_id)
