"""Tests for the embedding processor clients."""

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from config import Settings
from pipelines.errors import FileProcessingError, QuotaExceededError
from pipelines.processor import HttpEmbeddingProcessor
from pipelines.utils import create_checksum
from sources.models import FileData, GitHubSourceData, Source, SourceType

FILE = FileData("docs/a.md", "a.md", "# A")


def processor_with_response(status, body=None, error=None):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=body)

    session = MagicMock()
    if error is not None:
        session.post.return_value.__aenter__.side_effect = error
    else:
        session.post.return_value.__aenter__.return_value = response

    settings = Settings(processor_url="https://processor.example.com/")
    return HttpEmbeddingProcessor(settings, session=session), session


@pytest.mark.asyncio
async def test_submit_posts_file():
    processor, session = processor_with_response(200)

    await processor.submit("gh-1", FILE)

    session.post.assert_called_once_with(
        "https://processor.example.com/v1/sources/gh-1/files",
        json={'path': "docs/a.md", 'name': "a.md", 'content': "# A"}
    )


@pytest.mark.asyncio
async def test_quota_response_raises_quota_error():
    processor, _ = processor_with_response(
        403, {'error': "Quota exceeded", 'name': "ContentTokenQuotaExceeded"}
    )

    with pytest.raises(QuotaExceededError) as exc_info:
        await processor.submit("gh-1", FILE)

    assert exc_info.value.status == 403
    assert exc_info.value.name == "ContentTokenQuotaExceeded"


@pytest.mark.asyncio
async def test_other_forbidden_response_is_a_file_error():
    processor, _ = processor_with_response(403, {'error': "Forbidden"})

    with pytest.raises(FileProcessingError, match="Forbidden"):
        await processor.submit("gh-1", FILE)


@pytest.mark.asyncio
async def test_server_error_is_a_file_error():
    processor, _ = processor_with_response(500)

    with pytest.raises(FileProcessingError, match="HTTP 500") as exc_info:
        await processor.submit("gh-1", FILE)

    assert exc_info.value.status == 500


@pytest.mark.asyncio
async def test_connection_error_is_a_file_error():
    processor, _ = processor_with_response(200, error=aiohttp.ClientConnectionError("refused"))

    with pytest.raises(FileProcessingError, match="Request failed"):
        await processor.submit("gh-1", FILE)


def test_requires_processor_url():
    with pytest.raises(ValueError):
        HttpEmbeddingProcessor(Settings())


@pytest.mark.asyncio
async def test_accepted_file_checksum_is_recorded(store):
    await store.upsert_source("acme", Source("gh-1", SourceType.GITHUB, GitHubSourceData("https://github.com/acme/docs")))
    processor, _ = processor_with_response(200)
    processor.store = store

    await processor.submit("gh-1", FILE)

    assert await store.load_checksums("gh-1") == [{'path': "docs/a.md", 'checksum': create_checksum("# A")}]


@pytest.mark.asyncio
async def test_rejected_file_is_not_recorded():
    processor, _ = processor_with_response(500)
    processor.store = MagicMock()
    processor.store.record_file = AsyncMock()

    with pytest.raises(FileProcessingError):
        await processor.submit("gh-1", FILE)

    processor.store.record_file.assert_not_awaited()
