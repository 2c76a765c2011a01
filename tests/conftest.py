import asyncio
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Settings
from indexer.sqlite_adapter import SQLiteAdapter
from pipelines.adapters import SourceClients
from pipelines.errors import FileProcessingError, QuotaExceededError
from pipelines.processor import EmbeddingProcessor
from pipelines.state import SyncContext
from sources.models import FileData


class RecordingProcessor(EmbeddingProcessor):
    """Embedding processor double tracking submissions and concurrency."""

    def __init__(self,
                 delay: float = 0.01,
                 delays: Optional[Dict[str, float]] = None,
                 fail_paths: Sequence[str] = (),
                 quota_after: Optional[int] = None,
                 on_attempt=None):
        self.delay = delay
        self.delays = delays or {}
        self.fail_paths = set(fail_paths)
        self.quota_after = quota_after
        self.on_attempt = on_attempt
        self.attempts: List[str] = []
        self.submitted: List[FileData] = []
        self.in_flight = 0
        self.peak_in_flight = 0
        self.quota_raised = False
        self.attempts_after_quota = 0

    async def submit(self, source_id: str, file: FileData) -> None:
        if self.quota_raised:
            self.attempts_after_quota += 1
        self.attempts.append(file.path)
        if self.on_attempt is not None:
            self.on_attempt(len(self.attempts))

        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(file.path, self.delay))
            if self.quota_after is not None and len(self.submitted) >= self.quota_after:
                self.quota_raised = True
                raise QuotaExceededError("Content token quota exceeded")
            if file.path in self.fail_paths:
                raise FileProcessingError("boom")
            self.submitted.append(file)
        finally:
            self.in_flight -= 1

    @property
    def submitted_paths(self) -> List[str]:
        return [file.path for file in self.submitted]


def make_files(paths: Sequence[str], content: str = "# Title\n\nSome content") -> List[FileData]:
    return [FileData(path=path, name=path.split('/')[-1], content=f"{content} {path}")
            for path in paths]


def no_checksums():
    return AsyncMock(return_value=[])


@pytest.fixture
def settings(tmp_path):
    return Settings(
        db_path=str(tmp_path / "corpus.db"),
        projects_dir=str(tmp_path / "projects"),
        block_private_addresses=False
    )


@pytest.fixture
def context():
    return SyncContext("test-project")


@pytest.fixture
def processor():
    return RecordingProcessor()


@pytest.fixture
def clients(settings):
    page_fetcher = MagicMock()
    page_fetcher.close = AsyncMock()
    return SourceClients(
        settings=settings,
        github=MagicMock(),
        motif=MagicMock(),
        page_fetcher=page_fetcher
    )


@pytest_asyncio.fixture
async def store(tmp_path):
    adapter = SQLiteAdapter(str(tmp_path / "store.db"))
    await adapter.initialize()
    yield adapter
    await adapter.close()
