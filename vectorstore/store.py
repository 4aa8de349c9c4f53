"""Read-only access to library records and pre-computed PDF chunk embeddings.

The ingestion pipeline owns these tables; the insights chat only reads them.

Two implementations share the ``ChunkStore`` protocol:
  - InMemoryChunkStore: dict-backed, loadable from a JSON fixture file.
  - PostgresChunkStore: psycopg 3 async connection pool over the
    ``user_library`` / ``library_pdf_*`` tables.
"""

import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Optional, Protocol

import orjson
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from schemas.insights import ChunkEmbeddingRow, ChunkRow, DocumentRecord, SectionRow

logger = logging.getLogger(__name__)


class ChunkStore(Protocol):
    async def get_document_record(
        self, document_id: str, requester_id: str
    ) -> Optional[DocumentRecord]: ...

    async def list_chunk_embeddings(self, document_id: str) -> list[ChunkEmbeddingRow]: ...

    async def get_chunks(self, chunk_ids: list[str]) -> list[ChunkRow]: ...

    async def get_sections(self, section_ids: list[str]) -> list[SectionRow]: ...


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------

class InMemoryChunkStore:
    """Dict-backed store for tests and local fixtures."""

    def __init__(self):
        self.records: dict[tuple[str, str], DocumentRecord] = {}
        self.embeddings: dict[str, list[ChunkEmbeddingRow]] = {}
        self.chunks: dict[str, ChunkRow] = {}
        self.sections: dict[str, SectionRow] = {}

    def add_record(self, document_id: str, requester_id: str, record: DocumentRecord) -> None:
        self.records[(document_id, requester_id)] = record

    def add_chunk(
        self,
        document_id: str,
        chunk: ChunkRow,
        embedding: Optional[list[float]] = None,
    ) -> None:
        """Register a chunk; chunks added without an embedding are not retrievable."""
        self.chunks[chunk.id] = chunk
        if embedding is not None:
            self.embeddings.setdefault(document_id, []).append(
                ChunkEmbeddingRow(chunk_id=chunk.id, embedding=embedding)
            )

    def add_section(self, section: SectionRow) -> None:
        self.sections[section.id] = section

    async def get_document_record(
        self, document_id: str, requester_id: str
    ) -> Optional[DocumentRecord]:
        return self.records.get((document_id, requester_id))

    async def list_chunk_embeddings(self, document_id: str) -> list[ChunkEmbeddingRow]:
        return list(self.embeddings.get(document_id, []))

    async def get_chunks(self, chunk_ids: list[str]) -> list[ChunkRow]:
        found = [self.chunks[cid] for cid in chunk_ids if cid in self.chunks]
        return sorted(found, key=lambda chunk: chunk.order_index)

    async def get_sections(self, section_ids: list[str]) -> list[SectionRow]:
        return [self.sections[sid] for sid in section_ids if sid in self.sections]

    @classmethod
    def from_json(cls, path: str) -> "InMemoryChunkStore":
        """Load a fixture file.

        Expected shape::

            {
              "records": [{"documentId": ..., "requesterId": ..., "title": ..., "htmlUrl": ...}],
              "sections": [{"id": ..., "title": ...}],
              "chunks": [{"documentId": ..., "id": ..., "text": ..., "pageNumber": 3,
                          "sectionId": ..., "chunkType": "pdf_text", "embedding": [...]}]
            }
        """
        data = orjson.loads(Path(path).read_bytes())
        store = cls()
        for item in data.get("records", []):
            store.add_record(
                item["documentId"],
                item["requesterId"],
                DocumentRecord.model_validate(item),
            )
        for item in data.get("sections", []):
            store.add_section(SectionRow.model_validate(item))
        for index, item in enumerate(data.get("chunks", [])):
            chunk = ChunkRow.model_validate({"orderIndex": index, **item})
            store.add_chunk(item["documentId"], chunk, item.get("embedding"))
        logger.info(
            "Loaded %d records, %d sections, %d chunks from %s",
            len(store.records), len(store.sections), len(store.chunks), path,
        )
        return store


# ---------------------------------------------------------------------------
# Postgres store
# ---------------------------------------------------------------------------

def _parse_vector(value) -> list[float]:
    """Decode a pgvector text literal ("[0.1,0.2]") or a float array."""
    if value is None:
        return []
    if isinstance(value, (bytes, str)):
        return [float(x) for x in orjson.loads(value)] if len(value) else []
    if isinstance(value, Iterable):
        return [float(x) for x in value]
    return []


class PostgresChunkStore:
    """Chunk store backed by Postgres through a psycopg async connection pool."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    @classmethod
    def from_url(cls, database_url: str, max_size: int = 10) -> "PostgresChunkStore":
        pool = AsyncConnectionPool(
            conninfo=database_url,
            min_size=1,
            max_size=max_size,
            timeout=30,
            open=False,
        )
        return cls(pool)

    async def open(self) -> None:
        await self.pool.open()
        logger.info("Database connection pool opened")

    async def close(self) -> None:
        await self.pool.close()
        logger.info("Database connection pool closed")

    async def _fetch_all(self, query: str, params: tuple) -> list[dict]:
        async with self.pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

    async def get_document_record(
        self, document_id: str, requester_id: str
    ) -> Optional[DocumentRecord]:
        rows = await self._fetch_all(
            "SELECT title, authors, url, html_url, pdf_url FROM user_library "
            "WHERE paper_id = %s AND user_id = %s LIMIT 1",
            (document_id, requester_id),
        )
        return DocumentRecord.model_validate(rows[0]) if rows else None

    async def list_chunk_embeddings(self, document_id: str) -> list[ChunkEmbeddingRow]:
        rows = await self._fetch_all(
            "SELECT chunk_id, embedding::text AS embedding FROM library_pdf_embeddings "
            "WHERE paper_id = %s",
            (document_id,),
        )
        return [
            ChunkEmbeddingRow(chunk_id=str(row["chunk_id"]), embedding=_parse_vector(row["embedding"]))
            for row in rows
        ]

    async def get_chunks(self, chunk_ids: list[str]) -> list[ChunkRow]:
        if not chunk_ids:
            return []
        rows = await self._fetch_all(
            "SELECT id, chunk_text, page_number, section_id, chunk_type, order_index "
            "FROM library_pdf_chunks WHERE id::text = ANY(%s) ORDER BY order_index ASC",
            (chunk_ids,),
        )
        return [
            ChunkRow(
                id=str(row["id"]),
                text=row["chunk_text"] or "",
                page_number=row["page_number"],
                section_id=str(row["section_id"]) if row["section_id"] is not None else None,
                chunk_type=row["chunk_type"],
                order_index=row["order_index"] or 0,
            )
            for row in rows
        ]

    async def get_sections(self, section_ids: list[str]) -> list[SectionRow]:
        if not section_ids:
            return []
        rows = await self._fetch_all(
            "SELECT id, section_title FROM library_pdf_sections WHERE id::text = ANY(%s)",
            (section_ids,),
        )
        return [SectionRow(id=str(row["id"]), title=row["section_title"]) for row in rows]
