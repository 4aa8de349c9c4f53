"""Shared fakes for the insights chat pipeline."""

import math
from typing import Optional

import pytest

from schemas.insights import ChunkRow, RelatedPaper, SectionRow
from vectorstore.store import InMemoryChunkStore
from webapp.rag.query_engine import InsightsChatEngine
from webapp.rag.retriever import ContextRetriever

QUESTION = "What does the main figure show?"
QUESTION_VECTOR = [1.0, 0.0]


def vector_with_similarity(similarity: float) -> list[float]:
    """A unit vector whose cosine with QUESTION_VECTOR equals ``similarity``."""
    return [similarity, math.sqrt(max(0.0, 1.0 - similarity * similarity))]


class FakeEmbedder:
    def __init__(self, vectors: Optional[dict] = None, failing: Optional[set] = None):
        self.vectors = {QUESTION: QUESTION_VECTOR, **(vectors or {})}
        self.failing = failing or set()
        self.calls: list[str] = []

    async def embed_single(self, text: str) -> list[float]:
        self.calls.append(text)
        if text in self.failing:
            raise RuntimeError(f"embedding failed for {text!r}")
        return self.vectors.get(text, [0.0, 1.0])


class FakeLLM:
    def __init__(self, reply: str = '{"paragraphs": [{"content": "Answer.", "contextIds": []}]}'):
        self.reply = reply
        self.prompts: list[str] = []

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        return self.reply


class FakeLiterature:
    def __init__(self, papers: Optional[list[RelatedPaper]] = None, error: Optional[Exception] = None):
        self.papers = papers or []
        self.error = error
        self.queries: list[tuple[str, int]] = []

    async def search(self, query: str, limit: int) -> list[RelatedPaper]:
        self.queries.append((query, limit))
        if self.error:
            raise self.error
        return self.papers


class FakeIngestion:
    """Records calls; optionally runs ``on_call`` to simulate chunks appearing."""

    def __init__(self, on_call=None):
        self.calls: list[tuple] = []
        self.on_call = on_call

    async def ensure_embeddings(self, document_id, html_url, pdf_url, force=False):
        self.calls.append((document_id, html_url, pdf_url, force))
        if self.on_call:
            self.on_call()


class FakePageLoader:
    def __init__(self, pages: Optional[dict] = None):
        self.pages = pages or {}
        self.urls: list[str] = []

    async def __call__(self, url: str) -> Optional[str]:
        self.urls.append(url)
        return self.pages.get(url)


def add_pdf_chunk(
    store: InMemoryChunkStore,
    document_id: str,
    chunk_id: str,
    text: str,
    similarity: float,
    chunk_type: Optional[str] = "pdf_text",
    page_number: Optional[int] = 1,
    section_id: Optional[str] = None,
    order_index: int = 0,
) -> None:
    store.add_chunk(
        document_id,
        ChunkRow(
            id=chunk_id,
            text=text,
            page_number=page_number,
            section_id=section_id,
            chunk_type=chunk_type,
            order_index=order_index,
        ),
        vector_with_similarity(similarity),
    )


@pytest.fixture
def store():
    store = InMemoryChunkStore()
    store.add_section(SectionRow(id="sec-results", title="Results"))
    return store


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def page_loader():
    return FakePageLoader()


@pytest.fixture
def retriever(embedder, store, page_loader):
    return ContextRetriever(embedder, store, page_loader, max_concurrency=4)


@pytest.fixture
def make_engine(embedder, store, retriever):
    def _make(llm=None, literature=None, ingestion=None, max_references=8):
        return InsightsChatEngine(
            embedder=embedder,
            retriever=retriever,
            store=store,
            llm=llm or FakeLLM(),
            literature=literature or FakeLiterature(),
            ingestion=ingestion or FakeIngestion(),
            max_references=max_references,
        )
    return _make
