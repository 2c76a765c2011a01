"""Error taxonomy for the ingestion pipeline and search service."""

from typing import Optional

# Error name returned by the embedding processor when the content quota
# of the account is exhausted.
CONTENT_TOKEN_QUOTA_EXCEEDED = "ContentTokenQuotaExceeded"


class IngestionError(Exception):
    """Base class for ingestion and search errors."""
    pass


class QuotaExceededError(IngestionError):
    """Raised when the embedding processor refuses content over quota.

    Aborts the remaining submissions of the sync pass and all further
    sources.
    """

    def __init__(self, message: str = "Content token quota exceeded", status: int = 403):
        super().__init__(message)
        self.status = status
        self.name = CONTENT_TOKEN_QUOTA_EXCEEDED


class FileProcessingError(IngestionError):
    """Raised by an embedding processor for a single file."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class SourceLevelError(IngestionError):
    """The whole source is unusable (archive not found, bad domain...)."""
    pass


class CrawlRoundError(IngestionError):
    """A crawl round failed; crawling stops, ingested pages are kept."""
    pass


class SearchBackendError(IngestionError):
    """The full-text backend failed to return matches."""
    pass


class SyncInProgressError(IngestionError):
    """A sync is already running for the project."""
    pass
