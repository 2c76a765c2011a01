"""Tests for the incremental ingestion pipeline."""

from unittest.mock import AsyncMock

import pytest

from pipelines.errors import QuotaExceededError
from pipelines.ingest import IngestionPipeline, ItemOutcome
from pipelines.state import TrainingStatus
from pipelines.utils import create_checksum
from sources.models import SourceType

from conftest import RecordingProcessor, make_files, no_checksums


def getters(files):
    def get_path(index):
        return files[index].path

    async def get_name_content(index):
        return files[index].name, files[index].content

    return get_path, get_name_content


class Counter:
    def __init__(self):
        self.count = 0

    def __call__(self):
        self.count += 1


class TestIncrementalSync:
    """Checksum based skipping of unchanged content."""

    @pytest.mark.asyncio
    async def test_unchanged_file_is_not_submitted(self, context, processor):
        files = make_files(["docs/a.md", "docs/b.md"])
        load_checksums = AsyncMock(return_value=[
            {'path': 'docs/a.md', 'checksum': create_checksum(files[0].content)}
        ])
        pipeline = IngestionPipeline(processor, context, load_checksums)
        on_file_processed = Counter()

        report = await pipeline.generate_embeddings(
            "src-1", SourceType.GITHUB, len(files), *getters(files), on_file_processed
        )

        assert processor.submitted_paths == ["docs/b.md"]
        assert context.errors == []
        assert on_file_processed.count == 1
        assert report.count(ItemOutcome.UNCHANGED) == 1
        load_checksums.assert_awaited_once_with("src-1")

    @pytest.mark.asyncio
    async def test_changed_content_triggers_one_submission(self, context, processor):
        files = make_files(["docs/a.md"])
        load_checksums = AsyncMock(return_value=[
            {'path': 'docs/a.md', 'checksum': create_checksum("previous content")}
        ])
        pipeline = IngestionPipeline(processor, context, load_checksums)

        await pipeline.generate_embeddings("src-1", SourceType.GITHUB, 1, *getters(files))

        assert processor.attempts == ["docs/a.md"]

    @pytest.mark.asyncio
    async def test_checksums_loaded_once_per_sync(self, context, processor):
        files = make_files(["a.md", "b.md", "c.md"])
        load_checksums = no_checksums()
        pipeline = IngestionPipeline(processor, context, load_checksums)

        await pipeline.generate_embeddings("src-1", SourceType.GITHUB, 3, *getters(files))
        await pipeline.generate_embeddings("src-1", SourceType.GITHUB, 3, *getters(files))

        assert load_checksums.await_count == 1


class TestFiltering:
    """Path filtering happens before any fetch."""

    @pytest.mark.asyncio
    async def test_filtered_items_are_not_fetched(self, context, processor):
        files = make_files([".git/config", "readme.xyz", "docs/a.md", "blog/b.md"])
        get_path, _ = getters(files)
        fetch = AsyncMock(side_effect=lambda i: (files[i].name, files[i].content))
        pipeline = IngestionPipeline(processor, context, no_checksums(),
                                     include_globs=["docs/**"])
        on_file_processed = Counter()

        report = await pipeline.generate_embeddings(
            "src-1", SourceType.GITHUB, len(files), get_path, fetch, on_file_processed
        )

        assert processor.submitted_paths == ["docs/a.md"]
        fetch.assert_awaited_once_with(2)
        assert report.count(ItemOutcome.FILTERED) == 3
        assert on_file_processed.count == 1

    @pytest.mark.asyncio
    async def test_excluded_paths_are_skipped(self, context, processor):
        files = make_files(["docs/a.md", "docs/internal/b.md"])
        pipeline = IngestionPipeline(processor, context, no_checksums(),
                                     include_globs=["docs/**"],
                                     exclude_globs=["docs/internal/**"])

        await pipeline.generate_embeddings("src-1", SourceType.GITHUB, 2, *getters(files))

        assert processor.submitted_paths == ["docs/a.md"]

    @pytest.mark.asyncio
    async def test_duplicate_paths_are_submitted_once(self, context, processor):
        files = make_files(["docs/a.md", "docs/a.md"])
        pipeline = IngestionPipeline(processor, context, no_checksums())

        report = await pipeline.generate_embeddings("src-1", SourceType.GITHUB, 2, *getters(files))

        assert processor.attempts == ["docs/a.md"]
        assert report.count(ItemOutcome.DUPLICATE) == 1


class TestConcurrency:
    """Bounded concurrency of submissions."""

    @pytest.mark.asyncio
    async def test_peak_concurrency_never_exceeds_limit(self, context):
        processor = RecordingProcessor(delay=0.02)
        files = make_files([f"docs/page-{i}.md" for i in range(30)])
        pipeline = IngestionPipeline(processor, context, no_checksums(), concurrency_limit=5)

        await pipeline.generate_embeddings("src-1", SourceType.GITHUB, len(files), *getters(files))

        assert len(processor.submitted) == 30
        assert processor.peak_in_flight <= 5

    @pytest.mark.asyncio
    async def test_concurrency_limit_override(self, context):
        processor = RecordingProcessor(delay=0.02)
        files = make_files([f"docs/page-{i}.md" for i in range(10)])
        pipeline = IngestionPipeline(processor, context, no_checksums())

        await pipeline.generate_embeddings("src-1", SourceType.GITHUB, len(files), *getters(files),
                                           concurrency_limit=2)

        assert processor.peak_in_flight <= 2

    @pytest.mark.asyncio
    async def test_loading_state_reports_progress(self, context, processor):
        states = []
        context.subscribe(states.append)
        files = make_files(["docs/a.md", "docs/b.md"])
        pipeline = IngestionPipeline(processor, context, no_checksums())

        await pipeline.generate_embeddings("src-1", SourceType.GITHUB, 2, *getters(files))

        loading = [s for s in states if s.status == TrainingStatus.LOADING]
        assert [s.progress for s in loading] == [1, 2]
        assert all(s.total == 2 for s in loading)
        assert loading[0].filename == "a.md"


class TestErrors:
    """Per-file errors and quota handling."""

    @pytest.mark.asyncio
    async def test_errors_recorded_in_item_order(self, context):
        # The later item fails first.
        processor = RecordingProcessor(
            delays={"docs/a.md": 0.05, "docs/c.md": 0.0},
            fail_paths=["docs/a.md", "docs/c.md"]
        )
        files = make_files(["docs/a.md", "docs/b.md", "docs/c.md"])
        pipeline = IngestionPipeline(processor, context, no_checksums())
        on_file_processed = Counter()

        report = await pipeline.generate_embeddings(
            "src-1", SourceType.GITHUB, 3, *getters(files), on_file_processed
        )

        assert context.errors == ["Error processing a.md: boom", "Error processing c.md: boom"]
        assert processor.submitted_paths == ["docs/b.md"]
        assert on_file_processed.count == 3
        assert report.count(ItemOutcome.FAILED) == 2

    @pytest.mark.asyncio
    async def test_fetch_failure_is_recorded_and_counted(self, context, processor):
        files = make_files(["docs/a.md", "docs/b.md"])
        get_path, get_name_content = getters(files)

        async def flaky_fetch(index):
            if index == 0:
                raise ConnectionError("reset by peer")
            return await get_name_content(index)

        pipeline = IngestionPipeline(processor, context, no_checksums())
        on_file_processed = Counter()

        await pipeline.generate_embeddings("src-1", SourceType.GITHUB, 2, get_path, flaky_fetch,
                                           on_file_processed)

        assert context.errors == ["Error processing docs/a.md: reset by peer"]
        assert processor.submitted_paths == ["docs/b.md"]
        assert on_file_processed.count == 2

    @pytest.mark.asyncio
    async def test_path_failure_settles_the_whole_batch(self, context, processor):
        files = make_files([f"docs/page-{i}.md" for i in range(6)])
        get_path, get_name_content = getters(files)

        def broken_path(index):
            if index == 0:
                raise KeyError(index)
            return get_path(index)

        pipeline = IngestionPipeline(processor, context, no_checksums())

        report = await pipeline.generate_embeddings("src-1", SourceType.GITHUB, 6, broken_path, get_name_content)

        # Nothing is left in flight once the batch returns.
        assert processor.in_flight == 0
        assert len(processor.submitted) == 5
        assert report.count(ItemOutcome.FAILED) == 1
        assert context.errors == ["Error processing item 0: 0"]

    @pytest.mark.asyncio
    async def test_callback_failure_settles_the_whole_batch(self, context, processor):
        files = make_files([f"docs/page-{i}.md" for i in range(6)])
        calls = []

        def failing_callback():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("callback broke")

        pipeline = IngestionPipeline(processor, context, no_checksums())

        report = await pipeline.generate_embeddings(
            "src-1", SourceType.GITHUB, 6, *getters(files), failing_callback
        )

        assert processor.in_flight == 0
        assert len(processor.submitted) == 6
        assert len(calls) == 6
        assert report.count(ItemOutcome.FAILED) == 1
        assert len(context.errors) == 1
        assert context.errors[0].endswith("callback broke")

    @pytest.mark.asyncio
    async def test_missing_content_is_not_an_error(self, context, processor):
        files = make_files(["https://example.com/docs"])
        pipeline = IngestionPipeline(processor, context, no_checksums())

        report = await pipeline.generate_embeddings(
            "src-1", SourceType.WEBSITE, 1, lambda i: files[i].path, AsyncMock(return_value=None)
        )

        assert processor.attempts == []
        assert context.errors == []
        assert report.count(ItemOutcome.NO_CONTENT) == 1

    @pytest.mark.asyncio
    async def test_quota_exceeded_halts_new_submissions(self, context):
        processor = RecordingProcessor(quota_after=2)
        files = make_files([f"docs/page-{i}.md" for i in range(20)])
        pipeline = IngestionPipeline(processor, context, no_checksums(), concurrency_limit=5)

        with pytest.raises(QuotaExceededError):
            await pipeline.generate_embeddings("src-1", SourceType.GITHUB, len(files), *getters(files))

        assert processor.attempts_after_quota == 0
        assert len(processor.attempts) < len(files)
        assert context.state.status == TrainingStatus.IDLE
        assert context.errors == []


class TestCancellation:
    """Cooperative cancellation at item dispatch."""

    @pytest.mark.asyncio
    async def test_cancel_stops_undispatched_items(self, context):
        def cancel_on_third(attempt):
            if attempt == 3:
                context.cancel()

        processor = RecordingProcessor(on_attempt=cancel_on_third)
        files = make_files([f"docs/page-{i}.md" for i in range(20)])
        pipeline = IngestionPipeline(processor, context, no_checksums(), concurrency_limit=5)
        on_file_processed = Counter()

        report = await pipeline.generate_embeddings(
            "src-1", SourceType.GITHUB, len(files), *getters(files), on_file_processed
        )

        # Items already dispatched run to completion.
        assert len(processor.submitted) == 3
        assert on_file_processed.count == 3
        assert report.count(ItemOutcome.CANCELLED) == 17
        assert context.state.status == TrainingStatus.CANCEL_REQUESTED

    @pytest.mark.asyncio
    async def test_cancelled_before_start_does_nothing(self, context, processor):
        context.cancel()
        files = make_files(["docs/a.md"])
        fetch = AsyncMock()
        pipeline = IngestionPipeline(processor, context, no_checksums())

        await pipeline.generate_embeddings("src-1", SourceType.GITHUB, 1, lambda i: files[i].path, fetch)

        fetch.assert_not_awaited()
        assert processor.attempts == []
