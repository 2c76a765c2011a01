"""SQLite store for the ingested corpus.

Implements the store contracts consumed by the pipeline and the search
service: bulk checksum lookup per source, file upserts with their
sections, FTS5 section ranking and the file metadata join.
"""

import sqlite3
import logging
import json
import re
from typing import List, Dict, Any, Optional, Sequence
from datetime import datetime
from pathlib import Path

from sources.models import FileRecord, Source
from .sections import Section

logger = logging.getLogger(__name__)

_FTS_TOKEN_RE = re.compile(r'\w+', re.UNICODE)


def to_fts_query(query: str) -> Optional[str]:
    """Turn free text into an FTS5 query matching all of its terms."""
    tokens = _FTS_TOKEN_RE.findall(query)
    if not tokens:
        return None
    return ' '.join(f'"{token}"' for token in tokens)


def _loads(value: Optional[str]) -> Any:
    return json.loads(value) if value else None


class SQLiteAdapter:
    """SQLite database adapter."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None

    async def initialize(self):
        """Open the connection and ensure the schema exists."""
        if self.db_path != ':memory:':
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")

            schema_path = Path(__file__).parent / "schema.sql"
            with open(schema_path, 'r', encoding='utf-8') as f:
                self.conn.executescript(f.read())
            self.conn.commit()

            logger.info(f"SQLite adapter initialized: {self.db_path}")

        except sqlite3.Error as e:
            logger.error(f"Failed to initialize SQLite: {e}")
            raise

    async def close(self):
        """Close SQLite connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("SQLite connection closed")

    def _cursor(self) -> sqlite3.Cursor:
        if self.conn is None:
            raise RuntimeError("SQLite adapter not initialized. Call initialize() first.")
        return self.conn.cursor()

    async def upsert_project(self, project_id: str):
        cursor = self._cursor()
        cursor.execute("INSERT OR IGNORE INTO projects (id) VALUES (?)", (project_id,))
        self.conn.commit()

    async def upsert_source(self, project_id: str, source: Source):
        """Register a source under a project; existing sources are left as is."""
        await self.upsert_project(project_id)
        cursor = self._cursor()
        cursor.execute(
            "INSERT OR IGNORE INTO sources (id, project_id, type, data) VALUES (?, ?, ?, ?)",
            (source.id, project_id, source.type.value, json.dumps(source.data.to_dict()))
        )
        self.conn.commit()

    async def get_source_project(self, source_id: str) -> Optional[str]:
        cursor = self._cursor()
        cursor.execute("SELECT project_id FROM sources WHERE id = ?", (source_id,))
        row = cursor.fetchone()
        return row['project_id'] if row else None

    async def load_checksums(self, source_id: str) -> List[Dict[str, str]]:
        """All ``{path, checksum}`` pairs of a source, in one read."""
        cursor = self._cursor()
        cursor.execute("SELECT path, checksum FROM files WHERE source_id = ?", (source_id,))
        return [dict(row) for row in cursor.fetchall()]

    async def upsert_file(self, record: FileRecord, sections: Sequence[Section],
                          meta: Optional[Dict[str, Any]] = None) -> int:
        """Store a file and replace its sections. Returns the file id."""
        token_count = sum(section.token_count for section in sections)
        cursor = self._cursor()
        try:
            cursor.execute(
                """
                INSERT INTO files (source_id, path, name, meta, checksum, token_count, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (source_id, path) DO UPDATE SET
                    name = excluded.name,
                    meta = excluded.meta,
                    checksum = excluded.checksum,
                    token_count = excluded.token_count,
                    updated_at = excluded.updated_at
                """,
                (record.source_id, record.path, record.name,
                 json.dumps(meta) if meta is not None else None,
                 record.checksum, token_count, datetime.now().isoformat())
            )
            cursor.execute(
                "SELECT id FROM files WHERE source_id = ? AND path = ?",
                (record.source_id, record.path)
            )
            file_id = cursor.fetchone()['id']

            cursor.execute("DELETE FROM file_sections WHERE file_id = ?", (file_id,))
            cursor.executemany(
                "INSERT INTO file_sections (file_id, content, meta, token_count) VALUES (?, ?, ?, ?)",
                [(file_id, s.content, json.dumps(s.meta) if s.meta is not None else None, s.token_count)
                 for s in sections]
            )
            self.conn.commit()
        except sqlite3.Error:
            self.conn.rollback()
            raise
        return file_id

    async def record_file(self, record: FileRecord):
        """Store the checksum of a file processed elsewhere; sections are untouched."""
        cursor = self._cursor()
        cursor.execute(
            """
            INSERT INTO files (source_id, path, name, checksum, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT (source_id, path) DO UPDATE SET
                name = excluded.name,
                checksum = excluded.checksum,
                updated_at = excluded.updated_at
            """,
            (record.source_id, record.path, record.name, record.checksum,
             datetime.now().isoformat())
        )
        self.conn.commit()

    async def get_project_token_count(self, project_id: str) -> int:
        cursor = self._cursor()
        cursor.execute(
            """
            SELECT COALESCE(SUM(f.token_count), 0) AS total
            FROM files f JOIN sources s ON f.source_id = s.id
            WHERE s.project_id = ?
            """,
            (project_id,)
        )
        return cursor.fetchone()['total']

    async def get_file_token_count(self, source_id: str, path: str) -> int:
        cursor = self._cursor()
        cursor.execute(
            "SELECT token_count FROM files WHERE source_id = ? AND path = ?",
            (source_id, path)
        )
        row = cursor.fetchone()
        return row['token_count'] if row else 0

    async def search_fulltext(self, query: str, project_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        """Rank sections of a project against ``query``.

        Returns ``{file_id, content, meta}`` rows, best match first.
        """
        fts_query = to_fts_query(query)
        if fts_query is None:
            return []

        cursor = self._cursor()
        cursor.execute(
            """
            SELECT fs.file_id, fs.content, fs.meta
            FROM file_sections_fts
            JOIN file_sections fs ON fs.id = file_sections_fts.rowid
            JOIN files f ON f.id = fs.file_id
            JOIN sources s ON s.id = f.source_id
            WHERE file_sections_fts MATCH ? AND s.project_id = ?
            ORDER BY file_sections_fts.rank
            LIMIT ?
            """,
            (fts_query, project_id, limit)
        )
        return [
            {'file_id': row['file_id'], 'content': row['content'], 'meta': _loads(row['meta'])}
            for row in cursor.fetchall()
        ]

    async def join_file_metadata(self, file_ids: Sequence[int]) -> List[Dict[str, Any]]:
        """``{id, path, meta, source: {type, data}}`` for each known file id."""
        if not file_ids:
            return []
        placeholders = ', '.join('?' for _ in file_ids)
        cursor = self._cursor()
        cursor.execute(
            f"""
            SELECT f.id, f.path, f.meta, s.type, s.data
            FROM files f JOIN sources s ON s.id = f.source_id
            WHERE f.id IN ({placeholders})
            """,
            list(file_ids)
        )
        return [
            {
                'id': row['id'],
                'path': row['path'],
                'meta': _loads(row['meta']),
                'source': {'type': row['type'], 'data': _loads(row['data'])}
            }
            for row in cursor.fetchall()
        ]

    async def get_database_stats(self) -> Dict[str, Any]:
        """Basic counts for monitoring."""
        cursor = self._cursor()
        stats = {}
        for table in ('projects', 'sources', 'files', 'file_sections'):
            cursor.execute(f"SELECT COUNT(*) FROM {table}")
            stats[f"{table}_count"] = cursor.fetchone()[0]
        return stats
