"""Tests for the SQLite store."""

import pytest

from indexer.sections import Section, split_file, split_markdown
from indexer.sqlite_adapter import to_fts_query
from pipelines.errors import QuotaExceededError
from pipelines.processor import StoreProcessor
from pipelines.utils import create_checksum
from sources.models import FileData, FileRecord, Source, SourceType, WebsiteSourceData

SOURCE = Source("web-1", SourceType.WEBSITE, WebsiteSourceData("https://docs.acme.com"))


def record(path, content):
    return FileRecord("web-1", path, path.split('/')[-1], content, create_checksum(content))


class TestStore:
    @pytest.mark.asyncio
    async def test_upsert_replaces_sections(self, store):
        await store.upsert_source("acme", SOURCE)

        await store.upsert_file(record("a.md", "old"), [Section("old walrus", token_count=3)])
        file_id = await store.upsert_file(record("a.md", "new"), [Section("new narwhal", token_count=4)])

        assert await store.search_fulltext("walrus", "acme") == []
        matches = await store.search_fulltext("narwhal", "acme")
        assert [m['file_id'] for m in matches] == [file_id]
        assert await store.load_checksums("web-1") == [{'path': 'a.md', 'checksum': create_checksum("new")}]
        assert await store.get_project_token_count("acme") == 4

    @pytest.mark.asyncio
    async def test_join_file_metadata(self, store):
        await store.upsert_source("acme", SOURCE)
        file_id = await store.upsert_file(record("docs/a.md", "x"), [Section("x")], meta={'title': 'A'})

        rows = await store.join_file_metadata([file_id, 999])

        assert rows == [{
            'id': file_id,
            'path': 'docs/a.md',
            'meta': {'title': 'A'},
            'source': {'type': 'website', 'data': {'url': 'https://docs.acme.com'}}
        }]

    @pytest.mark.asyncio
    async def test_stats(self, store):
        await store.upsert_source("acme", SOURCE)
        stats = await store.get_database_stats()
        assert stats['projects_count'] == 1
        assert stats['sources_count'] == 1
        assert stats['files_count'] == 0

    def test_to_fts_query(self):
        assert to_fts_query('fox AND "dog') == '"fox" "AND" "dog"'
        assert to_fts_query("  ?! ") is None


class TestSections:
    def test_split_markdown_on_headings(self):
        sections = split_markdown("Intro text\n\n# One\n\nFirst\n\n## Two\n\nSecond")

        assert [s.content for s in sections] == ["Intro text", "# One\n\nFirst", "## Two\n\nSecond"]
        assert sections[0].meta is None
        assert sections[2].meta == {'leadHeading': {'value': 'Two', 'depth': 2, 'slug': 'two'}}
        assert all(s.token_count > 0 for s in sections)

    def test_long_sections_are_chunked(self):
        paragraphs = "\n\n".join("p" * 400 for _ in range(5))
        sections = split_markdown(f"# Long\n\n{paragraphs}")

        assert len(sections) > 1
        assert sections[0].content.startswith("# Long")

    def test_html_is_converted(self):
        html = "<html><body><h1>Hello</h1><p>" + "Plain words here. " * 10 + "</p></body></html>"
        sections = split_file("page.html", html)

        assert sections
        assert "<p>" not in "".join(s.content for s in sections)


class TestStoreProcessor:
    @pytest.mark.asyncio
    async def test_quota_exceeded(self, store):
        await store.upsert_source("acme", SOURCE)
        processor = StoreProcessor(store, token_quota=20)

        await processor.submit("web-1", FileData("a.md", "a.md", "# A\n\n" + "x" * 40))
        # Re-ingesting a file replaces its previous tokens.
        await processor.submit("web-1", FileData("a.md", "a.md", "# A\n\n" + "y" * 40))

        with pytest.raises(QuotaExceededError):
            await processor.submit("web-1", FileData("b.md", "b.md", "# B\n\n" + "z" * 200))
