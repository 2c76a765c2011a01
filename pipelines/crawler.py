"""Website crawler.

Enumerates the pages of a website source and feeds them to the ingestion
pipeline, either from a sitemap or by breadth-first link discovery.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, List, Optional, Set

from config import Settings
from sources.models import SourceType
from .errors import CrawlRoundError, QuotaExceededError
from .website import PageFetcher, extract_links_from_html, is_sitemap_url
from .utils import (
    complete_href_with_base_url,
    get_name_from_url_or_path,
    is_href_from_base_url,
    to_normalized_url,
    unique,
)

if TYPE_CHECKING:
    from .ingest import IngestionPipeline

logger = logging.getLogger(__name__)


@dataclass
class CrawlStats:
    """Statistics for a crawl session."""
    rounds: int = 0
    pages_fetched: int = 0
    links_discovered: int = 0
    stopped_early: bool = False
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    def __post_init__(self):
        if self.start_time is None:
            self.start_time = datetime.utcnow()

    @property
    def duration(self) -> Optional[timedelta]:
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        return None

    def finish(self):
        """Mark crawl as finished."""
        self.end_time = datetime.utcnow()


@dataclass
class CrawlFrontier:
    """Visited set and next round of links of one website sync."""
    processed_links: Set[str] = field(default_factory=set)
    links_to_process: List[str] = field(default_factory=list)

    def start_round(self) -> List[str]:
        """Take the current frontier, marking all of its links processed."""
        links = self.links_to_process
        self.processed_links.update(links)
        self.links_to_process = []
        return links

    def enqueue(self, links: List[str]):
        self.links_to_process = [
            link for link in unique(links) if link not in self.processed_links
        ]

    def __bool__(self):
        return bool(self.links_to_process)


class WebsiteCrawler:
    """Crawls one website source through the ingestion pipeline."""

    def __init__(self,
                 pipeline: 'IngestionPipeline',
                 fetcher: PageFetcher,
                 settings: Settings,
                 use_high_fidelity: bool = False):
        self.pipeline = pipeline
        self.fetcher = fetcher
        self.settings = settings
        self.use_high_fidelity = use_high_fidelity

    async def crawl(self, source_id: str, url: str,
                    on_file_processed: Optional[Callable[[], None]] = None) -> CrawlStats:
        if is_sitemap_url(url):
            return await self.crawl_sitemap(source_id, url, on_file_processed)
        return await self.crawl_links(source_id, url, on_file_processed)

    async def _run_round(self, source_id: str, links: List[str], pages: List[str],
                         on_file_processed) -> None:
        async def get_file_name_content(index: int):
            page_url = links[index]
            content = await self.fetcher.fetch_page(page_url, self.use_high_fidelity)
            if content is None:
                return None
            pages.append(content)
            return get_name_from_url_or_path(page_url), content

        await self.pipeline.generate_embeddings(
            source_id,
            SourceType.WEBSITE,
            len(links),
            lambda index: links[index],
            get_file_name_content,
            on_file_processed
        )

    async def crawl_sitemap(self, source_id: str, url: str,
                            on_file_processed=None) -> CrawlStats:
        """Ingest the first ``sitemap_max_urls`` pages listed in a sitemap."""
        stats = CrawlStats()
        urls = await self.fetcher.fetch_sitemap_urls(url, self.use_high_fidelity)
        links = urls[:self.settings.sitemap_max_urls]
        stats.links_discovered = len(urls)

        logger.info(f"Sitemap {url}: ingesting {len(links)} of {len(urls)} pages")
        pages: List[str] = []
        await self._run_round(source_id, links, pages, on_file_processed)
        stats.rounds = 1
        stats.pages_fetched = len(pages)
        stats.finish()
        return stats

    async def crawl_links(self, source_id: str, url: str,
                          on_file_processed=None) -> CrawlStats:
        """Breadth-first crawl of the pages under ``url``.

        Each round ingests the whole frontier as one batch. A round that
        fails ends the crawl, keeping what was ingested so far.
        """
        stats = CrawlStats()
        base_url = to_normalized_url(url)
        frontier = CrawlFrontier(links_to_process=[base_url])

        while frontier:
            if self.pipeline.context.token.cancelled:
                logger.info(f"Crawl of {base_url} cancelled after {stats.rounds} rounds")
                stats.stopped_early = True
                break

            links = frontier.start_round()
            pages: List[str] = []
            stats.rounds += 1
            logger.info(f"Crawling round {stats.rounds} of {base_url}: {len(links)} links")

            try:
                discovered = await self._crawl_round(
                    source_id, base_url, stats.rounds, links, pages, on_file_processed
                )
            except CrawlRoundError as e:
                logger.warning(str(e))
                stats.stopped_early = True
                break

            stats.pages_fetched += len(pages)
            stats.links_discovered += len(discovered)
            frontier.enqueue(discovered)

        stats.finish()
        logger.info(f"Crawl of {base_url} completed: {stats.pages_fetched} pages in "
                    f"{stats.rounds} rounds")
        return stats

    async def _crawl_round(self, source_id: str, base_url: str, round_number: int,
                           links: List[str], pages: List[str], on_file_processed) -> List[str]:
        """Ingest one frontier and return the links found on its pages.

        Raises:
            QuotaExceededError: the processor quota was hit
            CrawlRoundError: any other failure of the round
        """
        try:
            await self._run_round(source_id, links, pages, on_file_processed)
            return self._discover_links(base_url, pages)
        except QuotaExceededError:
            raise
        except Exception as e:
            raise CrawlRoundError(f"Round {round_number} of {base_url} failed: {e}") from e

    @staticmethod
    def _discover_links(base_url: str, pages: List[str]) -> List[str]:
        hrefs = unique([href for html in pages for href in extract_links_from_html(html)])
        return [
            to_normalized_url(complete_href_with_base_url(base_url, href))
            for href in hrefs
            if is_href_from_base_url(base_url, href)
        ]
