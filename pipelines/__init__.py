"""Pipelines package.

Provides source adapters, website crawling, incremental ingestion and
sync orchestration.
"""

from .errors import (
    IngestionError,
    QuotaExceededError,
    FileProcessingError,
    SourceLevelError,
    CrawlRoundError,
    SearchBackendError,
    SyncInProgressError
)
from .state import (
    TrainingStatus,
    TrainingState,
    CancellationToken,
    SyncContext,
    get_training_state_message
)
from .utils import create_checksum, should_include_file_with_path

__all__ = [
    # Errors
    'IngestionError',
    'QuotaExceededError',
    'FileProcessingError',
    'SourceLevelError',
    'CrawlRoundError',
    'SearchBackendError',
    'SyncInProgressError',

    # State
    'TrainingStatus',
    'TrainingState',
    'CancellationToken',
    'SyncContext',
    'get_training_state_message',

    # Utils
    'create_checksum',
    'should_include_file_with_path'
]
