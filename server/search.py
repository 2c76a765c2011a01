"""Full-text search over ingested sections.

Matches come ranked from the store's FTS index; they are joined with
their file and source metadata, grouped per file, and each section is
reduced to a keyword-in-context snippet for display.
"""

import logging
import math
import re
import time
from typing import Any, Dict, List, Optional, Tuple

from pipelines.errors import SearchBackendError

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 20
DEFAULT_SEARCH_LIMIT = 10

_HEADING_RE = re.compile(r'^[ \t]{0,3}#{1,6}([ \t].*)?$', re.MULTILINE)
_SETEXT_UNDERLINE_RE = re.compile(r'^[ \t]{0,3}(=+|-+)[ \t]*$', re.MULTILINE)
_FENCE_RE = re.compile(r'^[ \t]*(```|~~~).*$', re.MULTILINE)
_INLINE_CODE_RE = re.compile(r'`[^`\n]*`')
_IMAGE_RE = re.compile(r'!\[([^\]]*)\]\([^)]*\)')
_LINK_RE = re.compile(r'\[([^\]]*)\]\([^)]*\)')
_REFERENCE_LINK_RE = re.compile(r'\[([^\]]*)\]\[[^\]]*\]')
_EMPHASIS_RE = re.compile(r'(\*\*|\*|~~)(?=\S)(.+?)(?<=\S)\1')
_UNDERSCORE_EMPHASIS_RE = re.compile(r'\b(__|_)(?=\S)(.+?)(?<=\S)\1\b')
_LIST_MARKER_RE = re.compile(r'^[ \t]*([-*+]|\d+[.)])[ \t]+', re.MULTILINE)
_BLOCKQUOTE_RE = re.compile(r'^[ \t]*>[ \t]?', re.MULTILINE)
_HTML_TAG_RE = re.compile(r'<[^>]+>')
_WHITESPACE_RE = re.compile(r'\s+')


def strip_markdown(content: str) -> str:
    """Plain text of a Markdown section, without headings or inline code."""
    text = content.strip()
    text = _HEADING_RE.sub('', text)
    text = _SETEXT_UNDERLINE_RE.sub('', text)
    text = _FENCE_RE.sub('', text)
    text = _INLINE_CODE_RE.sub('', text)
    text = _IMAGE_RE.sub(r'\1', text)
    text = _LINK_RE.sub(r'\1', text)
    text = _REFERENCE_LINK_RE.sub(r'\1', text)
    text = _EMPHASIS_RE.sub(r'\2', text)
    text = _UNDERSCORE_EMPHASIS_RE.sub(r'\2', text)
    text = _LIST_MARKER_RE.sub('', text)
    text = _BLOCKQUOTE_RE.sub('', text)
    text = _HTML_TAG_RE.sub('', text)
    text = text.replace('\\n', ' ')
    return _WHITESPACE_RE.sub(' ', text).strip()


def create_kwic_snippet(content: str, search_term: str, max_length: int = 200) -> str:
    """Keyword-in-context snippet of ``content`` around ``search_term``.

    The window is centered on the first case-sensitive occurrence of the
    term. Its first and last words are dropped since they are likely cut.
    Without an occurrence, the start of the text is returned.
    """
    plain_text = strip_markdown(content)

    index = plain_text.find(search_term)
    if index == -1:
        return plain_text[:max_length]

    half = math.floor(max_length / 2 + 0.5)
    raw_snippet = plain_text[max(0, index - half):index + half]

    words = raw_snippet.split()
    if len(words) > 3:
        return ' '.join(words[1:-1])
    return ' '.join(words)


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        return DEFAULT_SEARCH_LIMIT
    return max(1, min(MAX_SEARCH_RESULTS, limit))


class SearchService:
    """Search over the sections of one project."""

    def __init__(self, store):
        self.store = store

    async def search(self, query: str, project_id: str,
                     limit: Optional[int] = DEFAULT_SEARCH_LIMIT) -> List[Dict[str, Any]]:
        results, _ = await self.search_with_debug(query, project_id, limit)
        return results

    async def search_with_debug(self, query: str, project_id: str,
                                limit: Optional[int] = DEFAULT_SEARCH_LIMIT
                                ) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
        """Search and report the time spent in each store call, in ms.

        Raises:
            SearchBackendError: the full-text query failed
        """
        if not query or not query.strip():
            return [], {}

        limit = clamp_limit(limit)

        fts_start = time.perf_counter()
        try:
            matches = await self.store.search_fulltext(query, project_id, limit)
        except Exception as e:
            logger.error(f"Full-text search failed for project {project_id}: {e}")
            raise SearchBackendError(str(e) or "Error retrieving sections") from e
        fts_ms = int((time.perf_counter() - fts_start) * 1000)

        if matches is None:
            raise SearchBackendError("Error retrieving sections")

        metadata_start = time.perf_counter()
        file_ids = sorted({match['file_id'] for match in matches})
        try:
            file_rows = await self.store.join_file_metadata(file_ids) if file_ids else []
        except Exception as e:
            logger.warning(f"File metadata lookup failed: {e}")
            file_rows = []
        metadata_ms = int((time.perf_counter() - metadata_start) * 1000)

        files_by_id = {row['id']: row for row in file_rows}
        results_by_file: Dict[Any, Dict[str, Any]] = {}

        for match in matches:
            file_id = match['file_id']
            file_row = files_by_id.get(file_id)
            if file_row is None:
                continue

            if file_id not in results_by_file:
                source = file_row.get('source') or {}
                results_by_file[file_id] = {
                    'path': file_row['path'],
                    'meta': file_row.get('meta'),
                    'source': {'type': source.get('type'), 'data': source.get('data')},
                    # Ranking scores are not exposed
                    'score': 0,
                    'sections': []
                }

            section = {'meta': match['meta']} if match.get('meta') else {}
            section['content'] = create_kwic_snippet(match.get('content') or '', query)
            results_by_file[file_id]['sections'].append(section)

        logger.debug(f"Search '{query}' in {project_id}: {len(matches)} matches, "
                     f"{len(results_by_file)} files")
        return list(results_by_file.values()), {'fts': fts_ms, 'metadata': metadata_ms}
