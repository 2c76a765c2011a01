"""Ingestion pipeline.

Diffs candidate files of a source against the checksums stored by the
previous sync, and submits changed files to the embedding processor with
bounded concurrency.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from sources.models import FileData, Source, SourceType
from .errors import QuotaExceededError, SourceLevelError
from .processor import EmbeddingProcessor
from .state import SyncContext, TrainingState
from .utils import create_checksum, get_name_from_path, should_include_file_with_path

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY_LIMIT = 5

GetFilePath = Callable[[int], str]
GetFileNameContent = Callable[[int], Awaitable[Optional[Tuple[str, str]]]]
OnFileProcessed = Optional[Callable[[], None]]


class ItemOutcome(str, Enum):
    """What happened to one candidate item."""
    CANCELLED = "cancelled"
    FILTERED = "filtered"
    DUPLICATE = "duplicate"
    NO_CONTENT = "no_content"
    UNCHANGED = "unchanged"
    PROCESSED = "processed"
    FAILED = "failed"
    QUOTA_EXCEEDED = "quota_exceeded"


@dataclass
class ItemResult:
    index: int
    outcome: ItemOutcome
    path: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BatchReport:
    """Outcome of one bounded-concurrency batch, in item index order."""
    results: List[ItemResult] = field(default_factory=list)

    def count(self, outcome: ItemOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def errors(self) -> List[str]:
        return [r.error for r in self.results if r.error]


class _Batch:
    """Mutable state shared by the items of one batch."""

    def __init__(self):
        self.claimed_paths = set()
        self.quota_error: Optional[QuotaExceededError] = None


class IngestionPipeline:
    """Incremental, concurrency-limited ingestion of source files."""

    def __init__(self,
                 processor: EmbeddingProcessor,
                 context: SyncContext,
                 load_checksums: Callable[[str], Awaitable[List[Dict[str, str]]]],
                 include_globs: Sequence[str] = ('**',),
                 exclude_globs: Sequence[str] = (),
                 concurrency_limit: int = DEFAULT_CONCURRENCY_LIMIT,
                 adapter_factory=None):
        """Initialize the pipeline.

        Args:
            processor: Embedding processor receiving changed files
            context: Context of the sync this pipeline runs in
            load_checksums: Bulk ``source_id -> [{path, checksum}]`` lookup
            include_globs: A path must match one of these globs
            exclude_globs: A path must match none of these globs
            concurrency_limit: Maximum number of items processed at once
            adapter_factory: ``Source -> SourceAdapter``, used by ``sync``
        """
        self.processor = processor
        self.context = context
        self.load_checksums = load_checksums
        self.include_globs = list(include_globs)
        self.exclude_globs = list(exclude_globs)
        self.concurrency_limit = concurrency_limit
        self.adapter_factory = adapter_factory
        self._checksums: Dict[str, Dict[str, str]] = {}

    async def _get_checksums(self, source_id: str) -> Dict[str, str]:
        if source_id not in self._checksums:
            rows = await self.load_checksums(source_id)
            self._checksums[source_id] = {row['path']: row['checksum'] for row in rows or []}
        return self._checksums[source_id]

    async def sync(self, source: Source, concurrency_limit: Optional[int] = None,
                   on_file_processed: OnFileProcessed = None) -> None:
        """Ingest one source through its adapter.

        Raises:
            QuotaExceededError: the processor quota was hit; nothing more
                should be submitted in this sync pass
            SourceLevelError: the source as a whole could not be read
        """
        if self.adapter_factory is None:
            raise RuntimeError("No adapter factory configured")
        adapter = self.adapter_factory(source)

        previous_limit = self.concurrency_limit
        if concurrency_limit is not None:
            self.concurrency_limit = concurrency_limit
        # Checksums are read once per source and sync, before any item runs.
        self._checksums.pop(source.id, None)
        try:
            await self._get_checksums(source.id)
            await adapter.ingest(self, on_file_processed)
        except QuotaExceededError:
            raise
        except SourceLevelError as e:
            logger.error(f"Source {source.id} failed: {e}")
            raise SourceLevelError(adapter.describe_failure(e)) from e
        except Exception as e:
            logger.exception(f"Source {source.id} failed")
            raise SourceLevelError(adapter.describe_failure(e)) from e
        finally:
            self.concurrency_limit = previous_limit
            self._checksums.pop(source.id, None)

    async def generate_embeddings(self,
                                  source_id: str,
                                  source_type: SourceType,
                                  num_files: int,
                                  get_file_path: GetFilePath,
                                  get_file_name_content: GetFileNameContent,
                                  on_file_processed: OnFileProcessed = None,
                                  concurrency_limit: Optional[int] = None) -> BatchReport:
        """Run one batch of ``num_files`` candidate items.

        Items are scheduled with at most ``concurrency_limit`` in flight.
        Per-item errors are appended to the context error list in item
        order once the whole batch has completed.

        Raises:
            QuotaExceededError: after in-flight items have completed
        """
        checksums = await self._get_checksums(source_id)
        semaphore = asyncio.Semaphore(concurrency_limit or self.concurrency_limit)
        batch = _Batch()

        async def run(index: int) -> ItemResult:
            async with semaphore:
                try:
                    return await self._process_item(
                        index, batch, checksums, source_id, source_type, num_files,
                        get_file_path, get_file_name_content, on_file_processed
                    )
                except Exception as e:
                    # Items always settle inside the batch.
                    logger.exception(f"Unexpected error processing item {index} of source {source_id}")
                    return ItemResult(index, ItemOutcome.FAILED, error=f"Error processing item {index}: {e}")

        results = await asyncio.gather(*(run(i) for i in range(num_files)))
        report = BatchReport(results=list(results))

        for error in report.errors:
            self.context.add_error(error)

        logger.info(
            f"Source {source_id}: {report.count(ItemOutcome.PROCESSED)} processed, "
            f"{report.count(ItemOutcome.UNCHANGED)} unchanged, "
            f"{report.count(ItemOutcome.FAILED)} failed out of {num_files} candidates"
        )

        if batch.quota_error is not None:
            self.context.set_state(TrainingState.idle())
            raise batch.quota_error

        return report

    async def _process_item(self,
                            index: int,
                            batch: _Batch,
                            checksums: Dict[str, str],
                            source_id: str,
                            source_type: SourceType,
                            num_files: int,
                            get_file_path: GetFilePath,
                            get_file_name_content: GetFileNameContent,
                            on_file_processed: OnFileProcessed) -> ItemResult:
        if self.context.token.cancelled or batch.quota_error is not None:
            return ItemResult(index, ItemOutcome.CANCELLED)

        # Only resolve the path here; fetching content can be expensive
        # and is not needed when the checksums match.
        try:
            path = get_file_path(index)
        except Exception as e:
            logger.error(f"Error resolving path of item {index}: {e}")
            return ItemResult(index, ItemOutcome.FAILED, error=f"Error processing item {index}: {e}")

        if not should_include_file_with_path(path, self.include_globs, self.exclude_globs,
                                             source_type == SourceType.WEBSITE):
            return ItemResult(index, ItemOutcome.FILTERED, path)

        if path in batch.claimed_paths:
            return ItemResult(index, ItemOutcome.DUPLICATE, path)
        batch.claimed_paths.add(path)

        self.context.set_state(TrainingState.loading(
            progress=index + 1,
            total=num_files,
            filename=get_name_from_path(path)
        ))

        previous_checksum = checksums.get(path)

        try:
            name_and_content = await get_file_name_content(index)
        except Exception as e:
            logger.error(f"Error fetching {path}: {e}")
            self._notify(on_file_processed)
            return ItemResult(index, ItemOutcome.FAILED, path, f"Error processing {path}: {e}")

        if name_and_content is None:
            return ItemResult(index, ItemOutcome.NO_CONTENT, path)
        name, content = name_and_content

        if create_checksum(content) == previous_checksum:
            logger.info(f"Skipping {path} (already processed)")
            return ItemResult(index, ItemOutcome.UNCHANGED, path)

        if batch.quota_error is not None:
            return ItemResult(index, ItemOutcome.CANCELLED, path)

        logger.info(f"Processing {path}")
        try:
            await self.processor.submit(source_id, FileData(path=path, name=name, content=content))
        except QuotaExceededError as e:
            logger.warning(f"Quota exceeded while processing {path}: {e}")
            batch.quota_error = batch.quota_error or e
            self._notify(on_file_processed)
            return ItemResult(index, ItemOutcome.QUOTA_EXCEEDED, path)
        except Exception as e:
            logger.error(f"Error processing {name}: {e}")
            self._notify(on_file_processed)
            return ItemResult(index, ItemOutcome.FAILED, path, f"Error processing {name}: {e}")

        self._notify(on_file_processed)
        return ItemResult(index, ItemOutcome.PROCESSED, path)

    @staticmethod
    def _notify(on_file_processed: OnFileProcessed):
        if on_file_processed is not None:
            on_file_processed()
