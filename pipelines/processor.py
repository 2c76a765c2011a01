"""Embedding processor clients.

The pipeline hands every changed file to an embedding processor. Two
implementations are provided: ``HttpEmbeddingProcessor`` talks to the
remote processing service and records the checksum of each accepted
file in the local store, ``StoreProcessor`` writes files and their
sections straight into the local store (no embeddings) and enforces the
project's content quota the same way the service does.
"""

import asyncio
import logging
from typing import Optional

import aiohttp

from config import Settings
from indexer.sections import split_file
from indexer.sqlite_adapter import SQLiteAdapter
from sources.models import FileData, FileRecord
from .errors import CONTENT_TOKEN_QUOTA_EXCEEDED, FileProcessingError, QuotaExceededError
from .utils import create_checksum, get_file_type

logger = logging.getLogger(__name__)


class EmbeddingProcessor:
    """Interface of the embedding processor."""

    async def submit(self, source_id: str, file: FileData) -> None:
        """Process one file.

        Raises:
            QuotaExceededError: the content quota of the account is exhausted
            FileProcessingError: any other failure for this file
        """
        raise NotImplementedError

    async def close(self):
        pass


class HttpEmbeddingProcessor(EmbeddingProcessor):
    """Submits files to the remote processing service."""

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None,
                 store: Optional[SQLiteAdapter] = None):
        if not settings.processor_url:
            raise ValueError("processor_url is required for the HTTP embedding processor")
        self.settings = settings
        self.session = session
        self._owns_session = session is None
        # Checksums of accepted files are kept locally so the next sync can
        # skip unchanged files.
        self.store = store

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=max(self.settings.request_timeout, 120))
            headers = {'User-Agent': self.settings.user_agent}
            if self.settings.processor_api_key:
                headers['Authorization'] = f"Bearer {self.settings.processor_api_key}"
            self.session = aiohttp.ClientSession(timeout=timeout, headers=headers)
            self._owns_session = True
        return self.session

    async def close(self):
        if self.session and self._owns_session:
            await self.session.close()
        self.session = None

    async def submit(self, source_id: str, file: FileData) -> None:
        session = await self._ensure_session()
        url = f"{self.settings.processor_url.rstrip('/')}/v1/sources/{source_id}/files"
        payload = {'path': file.path, 'name': file.name, 'content': file.content}

        try:
            async with session.post(url, json=payload) as response:
                status = response.status
                body = None
                if status >= 400:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = None
        except (asyncio.TimeoutError, aiohttp.ClientError) as e:
            raise FileProcessingError(f"Request failed: {e!r}") from e

        if status < 400:
            if self.store is not None:
                await self.store.record_file(FileRecord(
                    source_id=source_id,
                    path=file.path,
                    name=file.name,
                    content=file.content,
                    checksum=create_checksum(file.content)
                ))
            return

        error = body.get('error') if isinstance(body, dict) else None
        name = body.get('name') if isinstance(body, dict) else None
        if status == 403 and name == CONTENT_TOKEN_QUOTA_EXCEEDED:
            raise QuotaExceededError(error or "Content token quota exceeded", status=403)
        raise FileProcessingError(error or f"HTTP {status}", status=status)


class StoreProcessor(EmbeddingProcessor):
    """Writes files into the local store, section by section."""

    def __init__(self, store: SQLiteAdapter, token_quota: Optional[int] = None):
        self.store = store
        self.token_quota = token_quota

    async def submit(self, source_id: str, file: FileData) -> None:
        sections = split_file(file.name, file.content)
        token_count = sum(section.token_count for section in sections)

        if self.token_quota is not None:
            project_id = await self.store.get_source_project(source_id)
            if project_id is None:
                raise FileProcessingError(f"Unknown source {source_id}")
            used = await self.store.get_project_token_count(project_id)
            # A re-ingested file replaces its previous version.
            used -= await self.store.get_file_token_count(source_id, file.path)
            if used + token_count > self.token_quota:
                raise QuotaExceededError(
                    f"Project {project_id} exceeded its quota of {self.token_quota} tokens"
                )

        record = FileRecord(
            source_id=source_id,
            path=file.path,
            name=file.name,
            content=file.content,
            checksum=create_checksum(file.content)
        )
        meta = {'title': sections[0].meta['leadHeading']['value']} \
            if sections and sections[0].meta else None
        await self.store.upsert_file(record, sections, meta=meta)
        logger.debug(f"Stored {file.path} ({get_file_type(file.name)}, {len(sections)} sections)")
