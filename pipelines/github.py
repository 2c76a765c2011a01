"""GitHub repository archive download."""

import io
import logging
import zipfile
from typing import List, Optional, Sequence

import aiohttp

from config import Settings
from sources.models import FileData
from .errors import SourceLevelError
from .utils import (
    get_name_from_path,
    get_path_from_github_archive_path,
    parse_github_url,
    should_include_file_with_path,
)

logger = logging.getLogger(__name__)


def read_archive(data: bytes,
                 include_globs: Sequence[str],
                 exclude_globs: Sequence[str]) -> List[FileData]:
    """Decompress a repository zip archive into in-memory files.

    Entry paths are kept as they appear in the archive (prefixed with the
    archive root folder). Entries rejected by the include/exclude globs,
    and entries that are not UTF-8 text, are dropped.
    """
    files = []
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        for info in archive.infolist():
            if info.is_dir():
                continue
            path = get_path_from_github_archive_path(info.filename)
            if not should_include_file_with_path(path, include_globs, exclude_globs):
                continue
            try:
                content = archive.read(info).decode('utf-8')
            except UnicodeDecodeError:
                logger.debug(f"Skipping binary archive entry {info.filename}")
                continue
            files.append(FileData(
                path=info.filename,
                name=get_name_from_path(info.filename),
                content=content
            ))
    return files


class GitHubClient:
    """Downloads repository archives through the GitHub API."""

    def __init__(self, settings: Settings, session: Optional[aiohttp.ClientSession] = None):
        self.settings = settings
        self.session = session

    def _headers(self):
        headers = {
            'Accept': 'application/vnd.github+json',
            'User-Agent': self.settings.user_agent
        }
        if self.settings.github_token:
            headers['Authorization'] = f"Bearer {self.settings.github_token}"
        return headers

    async def _download(self, url: str) -> bytes:
        timeout = aiohttp.ClientTimeout(total=max(self.settings.request_timeout, 120))
        if self.session is not None:
            return await self._read(self.session, url)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            return await self._read(session, url)

    async def _read(self, session: aiohttp.ClientSession, url: str) -> bytes:
        async with session.get(url, headers=self._headers(), allow_redirects=True) as response:
            if response.status == 404:
                raise SourceLevelError("Repository or branch not found")
            if response.status >= 400:
                raise SourceLevelError(f"Archive download failed with HTTP {response.status}")
            return await response.read()

    async def fetch_archive(self, url: str, branch: Optional[str],
                            include_globs: Sequence[str],
                            exclude_globs: Sequence[str]) -> List[FileData]:
        """Download and decompress the archive of ``url`` at ``branch``."""
        info = parse_github_url(url)
        if not info:
            raise SourceLevelError(f"Invalid GitHub repository URL: {url}")

        archive_url = f"{self.settings.github_api_url}/repos/{info['owner']}/{info['repo']}/zipball"
        if branch:
            archive_url += f"/{branch}"

        logger.info(f"Fetching GitHub archive for {info['owner']}/{info['repo']}"
                    f"{'#' + branch if branch else ''}")
        data = await self._download(archive_url)

        try:
            files = read_archive(data, include_globs, exclude_globs)
        except zipfile.BadZipFile as e:
            raise SourceLevelError(f"Invalid repository archive: {e}") from e

        logger.info(f"Done fetching GitHub archive: {len(files)} files")
        return files
