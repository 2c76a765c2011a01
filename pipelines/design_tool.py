"""Motif design-tool project client."""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import aiohttp

from config import Settings
from .errors import SourceLevelError
from .utils import is_valid_domain, should_include_file_with_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MotifFileMetadata:
    id: str
    path: str
    name: str


class MotifClient:
    """Reads public file metadata and content of a Motif project."""

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.session = session

    async def _get(self, path: str):
        url = f"{self.settings.motif_api_url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.settings.request_timeout)
        if self.session is not None:
            return await self._request(self.session, url)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            return await self._request(session, url)

    async def _request(self, session: aiohttp.ClientSession, url: str):
        async with session.get(url) as response:
            if response.status == 404:
                raise SourceLevelError("Project not found")
            response.raise_for_status()
            if response.content_type == 'application/json':
                return await response.json()
            return await response.text()

    async def fetch_file_metadata(self, project_domain: str,
                                  include_globs: Sequence[str],
                                  exclude_globs: Sequence[str]) -> List[MotifFileMetadata]:
        """List the public files of a project, filtered by globs."""
        if not is_valid_domain(project_domain):
            raise SourceLevelError(f"Invalid project domain: {project_domain}")

        payload = await self._get(f"/v1/projects/{project_domain}/files")
        entries = payload.get('data', []) if isinstance(payload, dict) else payload

        files = []
        for entry in entries or []:
            path = entry.get('path') or ''
            if not should_include_file_with_path(path, include_globs, exclude_globs):
                continue
            files.append(MotifFileMetadata(
                id=str(entry['id']),
                path=path,
                name=entry.get('name') or path.split('/')[-1]
            ))

        logger.info(f"Found {len(files)} public files in Motif project {project_domain}")
        return files

    async def fetch_file_content(self, file_id: str) -> str:
        content = await self._get(f"/v1/files/{file_id}/content")
        if isinstance(content, dict):
            return content.get('content', '')
        return content
