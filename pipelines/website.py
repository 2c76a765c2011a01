"""Website page fetching, sitemap parsing and link extraction."""

import asyncio
import logging
import random
import re
from typing import List, Optional
from urllib.parse import urlparse

import aiohttp
from bs4 import BeautifulSoup

from config import Settings
from .errors import SourceLevelError
from .security import SSRFError, check_url_ssrf
from .utils import unique

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}

_SITEMAP_PATH_RE = re.compile(r'sitemap[\w\-]*\.xml$', re.IGNORECASE)


def is_sitemap_url(url: str) -> bool:
    try:
        path = urlparse(url).path
    except ValueError:
        return False
    return bool(_SITEMAP_PATH_RE.search(path))


def extract_links_from_html(html: str) -> List[str]:
    """Return the raw hrefs of all anchors, fragments removed."""
    soup = BeautifulSoup(html, 'html.parser')
    links = []
    for anchor in soup.find_all('a', href=True):
        href = anchor['href'].strip().split('#')[0]
        if href:
            links.append(href)
    return unique(links)


def parse_sitemap(xml: str) -> List[str]:
    """Page URLs listed in a sitemap document, in document order."""
    soup = BeautifulSoup(xml, 'html.parser')
    urls = [loc.get_text(strip=True) for loc in soup.find_all('loc')]
    return unique([url for url in urls if url])


class PageFetcher:
    """Asynchronous page fetcher with retries.

    Pages are fetched either directly, or through a high fidelity
    renderer service (for client-side rendered sites) when the team is
    entitled to it.
    """

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)
            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers={'User-Agent': self.settings.user_agent}
            )
            self._owns_session = True
        return self.session

    async def close(self):
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter."""
        base_delay = self.settings.retry_delay * (2 ** attempt)
        return base_delay + random.uniform(0.1, 0.3) * base_delay

    async def _is_url_allowed(self, url: str) -> bool:
        if not self.settings.block_private_addresses:
            return True
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, check_url_ssrf, url)
        except SSRFError:
            return False
        return True

    async def fetch_page(self, url: str, use_high_fidelity: bool = False) -> Optional[str]:
        """Fetch the raw HTML of a page.

        Returns None when the page cannot be fetched; a missing page is
        treated as having no content.
        """
        if not await self._is_url_allowed(url):
            return None

        if use_high_fidelity and self.settings.renderer_url:
            return await self._fetch_rendered(url)
        return await self._fetch_direct(url)

    async def _fetch_direct(self, url: str) -> Optional[str]:
        session = await self._ensure_session()
        max_retries = self.settings.max_retries

        for attempt in range(max_retries + 1):
            try:
                async with session.get(url, allow_redirects=True) as response:
                    if response.status in RETRYABLE_STATUS_CODES and attempt < max_retries:
                        delay = self._calculate_retry_delay(attempt)
                        logger.warning(f"Retryable status {response.status} for {url}, retrying in {delay:.2f}s")
                        await asyncio.sleep(delay)
                        continue

                    if response.status >= 400:
                        logger.warning(f"Failed to fetch {url}: HTTP {response.status}")
                        return None

                    content_type = response.headers.get('content-type', '')
                    if content_type and not (content_type.startswith('text/') or 'xml' in content_type):
                        logger.info(f"Skipping {url}: non-text content type {content_type}")
                        return None

                    return await response.text()

            except (asyncio.TimeoutError, aiohttp.ClientConnectionError) as e:
                if attempt < max_retries:
                    delay = self._calculate_retry_delay(attempt)
                    logger.warning(f"Error fetching {url}: {e!r}, retrying in {delay:.2f}s")
                    await asyncio.sleep(delay)
                    continue
                logger.warning(f"Giving up on {url} after {attempt + 1} attempts: {e!r}")
                return None
            except aiohttp.ClientError as e:
                logger.warning(f"Client error fetching {url}: {e}")
                return None

        return None

    async def _fetch_rendered(self, url: str) -> Optional[str]:
        session = await self._ensure_session()
        try:
            async with session.post(self.settings.renderer_url, json={'url': url}) as response:
                if response.status >= 400:
                    logger.warning(f"Renderer failed for {url}: HTTP {response.status}")
                    return None
                return await response.text()
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            logger.warning(f"Renderer error for {url}: {e!r}")
            return None

    async def fetch_sitemap_urls(self, url: str, use_high_fidelity: bool = False) -> List[str]:
        """Page URLs listed in the sitemap at ``url``."""
        xml = await self.fetch_page(url, use_high_fidelity)
        if xml is None:
            raise SourceLevelError(f"Unable to fetch sitemap {url}")
        urls = parse_sitemap(xml)
        logger.info(f"Found {len(urls)} URLs in sitemap {url}")
        return urls
