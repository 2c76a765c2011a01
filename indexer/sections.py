"""Split file content into searchable sections."""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup
from trafilatura import extract

from pipelines.utils import approximated_token_count, get_file_type

MAX_SECTION_CHARS = 1000


@dataclass
class Section:
    content: str
    meta: Optional[Dict[str, Any]] = None
    token_count: int = 0


def html_to_markdown(html: str) -> str:
    md = extract(html, output_format="markdown", include_links=True, include_tables=True)
    if not md or len(md.strip()) < 40:
        soup = BeautifulSoup(html, "html.parser")
        md = soup.get_text("\n")
    return md


def _slugify(heading: str) -> str:
    return re.sub(r'[^a-z0-9]+', '-', heading.lower()).strip('-')


def _chunk_paragraphs(block: str) -> List[str]:
    chunks = []
    cur = ""
    for para in re.split(r"\n\s*\n", block):
        if len(cur) + len(para) > MAX_SECTION_CHARS and cur.strip():
            chunks.append(cur.strip())
            cur = ""
        cur += ("\n\n" if cur else "") + para
    if cur.strip():
        chunks.append(cur.strip())
    return chunks


def split_markdown(md: str) -> List[Section]:
    """Split Markdown on headings, then on paragraphs past the size limit.

    Each section keeps its heading line so that full-text matches on the
    heading still land in the section; its lead heading is recorded in
    the section meta.
    """
    parts = re.split(r"(?m)^(#{1,6})\s+(.*)$", md)
    sections = []

    preamble = parts[0].strip()
    if preamble:
        sections.extend(Section(content=chunk) for chunk in _chunk_paragraphs(preamble))

    for i in range(1, len(parts), 3):
        marker, heading, block = parts[i], parts[i + 1].strip(), parts[i + 2].strip()
        meta = {'leadHeading': {'value': heading, 'depth': len(marker), 'slug': _slugify(heading)}}
        chunks = _chunk_paragraphs(block) or [""]
        for j, chunk in enumerate(chunks):
            content = f"{marker} {heading}\n\n{chunk}" if j == 0 else chunk
            sections.append(Section(content=content.strip(), meta=meta))

    for section in sections:
        section.token_count = approximated_token_count(section.content)
    return [s for s in sections if s.content]


def split_file(name: str, content: str) -> List[Section]:
    """Sections of a file, converting HTML pages to Markdown first."""
    if get_file_type(name) == 'html':
        content = html_to_markdown(content)
    return split_markdown(content)
