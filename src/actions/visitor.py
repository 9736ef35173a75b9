"""
Web Visitor Module
Fetches event pages once per URL and keeps both the raw HTML (for JSON-LD and
regex parsing) and a cleaned text rendering (for page language / AI prompts).
"""

import re
import time
import random
import asyncio
import logging
import requests
from typing import List
from urllib.parse import urlparse
from bs4 import BeautifulSoup
from dataclasses import dataclass, field
from typing import Dict, Any, Optional

from config_manager import get_config

# Setup logging
logger = logging.getLogger(__name__)

USER_AGENT = ('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
              '(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36')


# ============================================================================
# Data Models
# ============================================================================

@dataclass
class WebPage:
    """Fetched web page: raw HTML plus cleaned text"""
    url: str
    title: str
    content: str
    html: str = ""
    headings: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: Optional[int] = None
    fetch_time: float = 0.0
    success: bool = True
    error: Optional[str] = None


@dataclass
class FetchConfig:
    timeout: float = 8.0
    retries: int = 2
    backoff: float = 0.6


# ============================================================================
# WebVisitor Class
# ============================================================================

class WebVisitor:
    """Component for fetching and cleaning event pages"""

    def __init__(self, config: Optional[FetchConfig] = None, session: Optional[requests.Session] = None):
        """
        Args:
            config: FetchConfig with timeout / retries / backoff; read from YAML when omitted
            session: optional requests.Session (tests inject a fake one)
        """
        self.config = config or self._load_config_from_yaml()
        self.session = session or requests.Session()

    def _load_config_from_yaml(self) -> FetchConfig:
        cfg = get_config()
        return FetchConfig(
            timeout=cfg.get('extraction.fetch.timeout', 8),
            retries=cfg.get('extraction.fetch.retries', 2),
            backoff=cfg.get('extraction.fetch.backoff', 0.6),
        )

    async def fetch(self, url: str) -> WebPage:
        """Fetch one page without blocking the event loop"""
        return await asyncio.to_thread(self._fetch_single, url)

    async def fetch_many(self, urls: List[str]) -> List[WebPage]:
        """Fetch multiple URLs in parallel; only successful pages are returned"""
        print(f"[VISITOR] Fetching {len(urls)} pages...")
        pages = await asyncio.gather(*[self.fetch(u) for u in urls], return_exceptions=True)
        ok = [p for p in pages if isinstance(p, WebPage) and p.success]
        print(f"[VISITOR] Successfully fetched {len(ok)}/{len(urls)} pages")
        return ok

    def _fetch_single(self, url: str) -> WebPage:
        start_time = time.time()

        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            return WebPage(url=url, title="", content="", success=False,
                           error="Invalid URL", fetch_time=time.time() - start_time)

        try:
            response = self._get_with_retry(url)
        except requests.RequestException as e:
            logger.warning(f"[VISITOR][FAIL] {url}: {e}")
            status = getattr(getattr(e, "response", None), "status_code", None)
            return WebPage(url=url, title="", content="", status=status, success=False,
                           error=str(e), fetch_time=time.time() - start_time)

        content_type = response.headers.get('content-type', '').lower()
        if 'html' not in content_type and 'xml' not in content_type and content_type:
            logger.info(f"[VISITOR][SKIP] {url}: unsupported content-type {content_type}")
            return WebPage(url=url, title="", content="", status=response.status_code, success=False,
                           error=f"unsupported content-type {content_type}",
                           fetch_time=time.time() - start_time)

        return self._extract_html(url, response, start_time)

    def _get_with_retry(self, url: str) -> requests.Response:
        """GET with exponential backoff (base * 2^n, plus jitter); 4xx is not retried"""
        headers = {
            'User-Agent': USER_AGENT,
            'Accept': 'text/html,application/xhtml+xml;q=0.9,*/*;q=0.8',
            'Accept-Language': 'de-DE,de;q=0.9,en;q=0.8',
        }
        attempts = max(0, int(self.config.retries)) + 1
        last_error: Optional[Exception] = None
        for attempt in range(attempts):
            try:
                response = self.session.get(url, headers=headers, timeout=self.config.timeout)
                response.raise_for_status()
                return response
            except requests.HTTPError as e:
                status = getattr(e.response, "status_code", 0) or 0
                if 400 <= status < 500 and status != 429:
                    raise
                last_error = e
            except requests.RequestException as e:
                last_error = e
            if attempt < attempts - 1:
                sleep_s = self.config.backoff * (2 ** attempt) * (1 + random.random() * 0.25)
                logger.debug(f"[VISITOR][RETRY] {url} attempt {attempt + 1}/{attempts}, sleeping {sleep_s:.2f}s")
                time.sleep(sleep_s)
        raise last_error

    def _extract_html(self, url: str, response, start_time: float) -> WebPage:
        html = response.text or ""
        soup = BeautifulSoup(html, 'html.parser')

        title_tag = soup.find('title')
        title = title_tag.get_text().strip() if title_tag else ""

        headings = []
        for heading in soup.find_all(['h1', 'h2', 'h3']):
            heading_text = heading.get_text().strip()
            if heading_text:
                headings.append(heading_text)

        for tag in soup(["script", "style", "nav", "header", "footer", "aside", "noscript"]):
            tag.decompose()

        main_content = soup.find('main') or soup.find('article') or soup.find('div', class_=re.compile(r'content|main|article|event'))
        if not main_content:
            main_content = soup.find('body') or soup

        content = self._clean_content(main_content.get_text(separator='\n', strip=True))

        return WebPage(
            url=url,
            title=title,
            content=content,
            html=html,
            headings=headings,
            metadata={'content_type': response.headers.get('content-type', '')},
            status=response.status_code,
            fetch_time=time.time() - start_time,
            success=True,
        )

    def _clean_content(self, content: str) -> str:
        """Clean and normalize content"""
        content = re.sub(r'\n\s*\n', '\n\n', content)
        content = re.sub(r' +', ' ', content)

        patterns_to_remove = [
            r'Cookie Policy.*?Accept',
            r'Cookie-Einstellungen.*?(Akzeptieren|Zustimmen)',
            r'Subscribe to.*?newsletter',
            r'Newsletter abonnieren.*?\n',
            r'Follow us on.*?social media',
            r'Advertisement\s*',
        ]
        for pattern in patterns_to_remove:
            content = re.sub(pattern, '', content, flags=re.IGNORECASE | re.DOTALL)

        return content.strip()
