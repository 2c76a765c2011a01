"""Source adapters.

One adapter per source type enumerates the candidate items of a source
and resolves their content lazily for the ingestion pipeline. Dispatch
goes through a closed registry keyed by ``SourceType``.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence, Tuple, Type

from config import Settings
from sources.models import FileData, Source, SourceType
from .crawler import WebsiteCrawler
from .design_tool import MotifClient, MotifFileMetadata
from .github import GitHubClient
from .utils import get_github_owner_repo_string, get_path_from_github_archive_path, to_normalized_origin
from .website import PageFetcher

if TYPE_CHECKING:
    from .ingest import IngestionPipeline

logger = logging.getLogger(__name__)


@dataclass
class SourceClients:
    """External clients shared by the adapters of one sync."""
    settings: Settings
    github: GitHubClient
    motif: MotifClient
    page_fetcher: PageFetcher
    use_custom_page_fetcher: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> 'SourceClients':
        return cls(
            settings=settings,
            github=GitHubClient(settings),
            motif=MotifClient(settings),
            page_fetcher=PageFetcher(settings)
        )

    async def close(self):
        await self.page_fetcher.close()


def get_label_for_source(source: Source) -> str:
    """Short display label of a source."""
    if source.type == SourceType.GITHUB:
        return get_github_owner_repo_string(source.data.url) or source.data.url
    elif source.type == SourceType.MOTIF:
        return source.data.project_domain
    elif source.type == SourceType.WEBSITE:
        return source.data.url
    elif source.type == SourceType.API_UPLOAD:
        return 'API uploads'
    return 'File uploads'


class SourceAdapter:
    """Enumerates the items of a source.

    ``prepare`` does the source-level work (archive download, metadata
    listing) and returns the number of candidates. ``get_path`` must be
    cheap; ``get_name_content`` is the deferred, possibly expensive fetch.
    """

    def __init__(self, source: Source, clients: SourceClients):
        self.source = source
        self.clients = clients

    @property
    def label(self) -> str:
        return get_label_for_source(self.source)

    async def prepare(self, include_globs: Sequence[str], exclude_globs: Sequence[str]) -> int:
        raise NotImplementedError

    def get_path(self, index: int) -> str:
        raise NotImplementedError

    async def get_name_content(self, index: int) -> Optional[Tuple[str, str]]:
        raise NotImplementedError

    async def ingest(self, pipeline: 'IngestionPipeline', on_file_processed=None):
        num_files = await self.prepare(pipeline.include_globs, pipeline.exclude_globs)
        await pipeline.generate_embeddings(
            self.source.id,
            self.source.type,
            num_files,
            self.get_path,
            self.get_name_content,
            on_file_processed
        )

    def describe_failure(self, error: Exception) -> str:
        return f"Error processing {self.label}: {error}"


class GitHubAdapter(SourceAdapter):
    """Repository archive; all content is in memory once downloaded."""

    def __init__(self, source: Source, clients: SourceClients):
        super().__init__(source, clients)
        self.files: List[FileData] = []

    @property
    def label(self) -> str:
        return f"repo {super().label}"

    async def prepare(self, include_globs, exclude_globs) -> int:
        self.files = await self.clients.github.fetch_archive(
            self.source.data.url,
            self.source.data.branch,
            include_globs,
            exclude_globs
        )
        return len(self.files)

    def get_path(self, index: int) -> str:
        return get_path_from_github_archive_path(self.files[index].path)

    async def get_name_content(self, index: int):
        file = self.files[index]
        return file.name, file.content


class MotifAdapter(SourceAdapter):
    """Public files of a Motif project, fetched one at a time."""

    def __init__(self, source: Source, clients: SourceClients):
        super().__init__(source, clients)
        self.files: List[MotifFileMetadata] = []

    @property
    def label(self) -> str:
        return f"Motif project {super().label}"

    async def prepare(self, include_globs, exclude_globs) -> int:
        self.files = await self.clients.motif.fetch_file_metadata(
            self.source.data.project_domain,
            include_globs,
            exclude_globs
        )
        return len(self.files)

    def get_path(self, index: int) -> str:
        return self.files[index].path

    async def get_name_content(self, index: int):
        metadata = self.files[index]
        content = await self.clients.motif.fetch_file_content(metadata.id)
        return metadata.name, content


class WebsiteAdapter(SourceAdapter):
    """Pages of a website, enumerated by the crawler round by round."""

    @property
    def label(self) -> str:
        return f"website {to_normalized_origin(self.source.data.url)}"

    async def ingest(self, pipeline: 'IngestionPipeline', on_file_processed=None):
        crawler = WebsiteCrawler(
            pipeline,
            self.clients.page_fetcher,
            self.clients.settings,
            use_high_fidelity=self.clients.use_custom_page_fetcher
        )
        await crawler.crawl(self.source.id, self.source.data.url, on_file_processed)


class UploadAdapter(SourceAdapter):
    """Uploaded content is ingested at upload time and not retained."""

    async def prepare(self, include_globs, exclude_globs) -> int:
        return 0

    def get_path(self, index: int) -> str:
        raise IndexError(index)

    async def get_name_content(self, index: int):
        return None


ADAPTERS: Dict[SourceType, Type[SourceAdapter]] = {
    SourceType.GITHUB: GitHubAdapter,
    SourceType.MOTIF: MotifAdapter,
    SourceType.WEBSITE: WebsiteAdapter,
    SourceType.FILE_UPLOAD: UploadAdapter,
    SourceType.API_UPLOAD: UploadAdapter,
}

_missing = [source_type.value for source_type in SourceType if source_type not in ADAPTERS]
if _missing:
    raise ImportError(f"No source adapter registered for: {', '.join(_missing)}")


def get_adapter(source: Source, clients: SourceClients) -> SourceAdapter:
    return ADAPTERS[source.type](source, clients)
