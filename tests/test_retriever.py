import asyncio

import pytest

from schemas.insights import ChunkRow, ContextSource, RankedContext
from webapp.rag.retriever import ContextRetriever, effective_score, manual_contexts, rank_contexts

from conftest import (
    QUESTION_VECTOR,
    FakeEmbedder,
    FakePageLoader,
    add_pdf_chunk,
    vector_with_similarity,
)

DOC = "paper-1"
PAGE_URL = "https://papers.example.org/paper-1"


def ctx(id, similarity, chunk_type=None):
    return RankedContext.from_text(
        id=id, text=f"text of {id}", source=ContextSource.STRUCTURED,
        similarity=similarity, chunk_type=chunk_type,
    )


# ---------------------------------------------------------------------------
# Ranking
# ---------------------------------------------------------------------------

def test_rank_keeps_top_scores_with_stable_ties():
    contexts = [ctx("a", 0.2), ctx("b", 0.5), ctx("c", 0.5), ctx("d", 0.9), ctx("e", 0.5)]
    ranked = rank_contexts(contexts, 3)
    assert [c.id for c in ranked] == ["d", "b", "c"]


def test_figure_bonus_breaks_equal_similarity():
    plain = ctx("plain", 0.6, "pdf_text")
    figure = ctx("figure", 0.6, "figure_pdf")
    assert effective_score(figure) == pytest.approx(0.7)
    assert [c.id for c in rank_contexts([plain, figure], 2)] == ["figure", "plain"]


def test_manual_contexts_keep_input_positions():
    contexts = manual_contexts(["first note", "   ", "third note"])
    assert [c.id for c in contexts] == ["manual-0", "manual-2"]
    assert all(c.similarity == 0 for c in contexts)
    assert all(c.source == ContextSource.WEB for c in contexts)
    assert all(c.chunk_type is None for c in contexts)


# ---------------------------------------------------------------------------
# Structured source
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_structured_chunks_are_scored_and_labelled(retriever, store):
    add_pdf_chunk(store, DOC, "c1", "Chunk one", 0.3, section_id="sec-results", page_number=4)
    add_pdf_chunk(store, DOC, "c2", "Chunk two", 0.8, chunk_type=None, section_id="sec-missing")
    # Chunk row without an embedding is never retrieved
    store.add_chunk(DOC, ChunkRow(id="c3", text="No vector"))

    contexts = await retriever.retrieve(DOC, QUESTION_VECTOR, max_references=8)

    assert [c.id for c in contexts] == ["c2", "c1"]
    c2, c1 = contexts
    assert c2.similarity == pytest.approx(0.8)
    assert c2.chunk_type == "pdf_text"
    assert c2.section_title is None
    assert c1.section_title == "Results"
    assert c1.page_number == 4
    assert c1.source == ContextSource.STRUCTURED


@pytest.mark.asyncio
async def test_embedding_without_chunk_row_is_skipped(retriever, store):
    add_pdf_chunk(store, DOC, "c1", "Chunk one", 0.5)
    del store.chunks["c1"]
    assert await retriever.retrieve(DOC, QUESTION_VECTOR) == []


class BrokenStore:
    async def list_chunk_embeddings(self, document_id):
        raise ConnectionError("database unavailable")


@pytest.mark.asyncio
async def test_store_failure_leaves_other_sources_intact():
    page = "Relevant paragraph about accuracy."
    embedder = FakeEmbedder({page: vector_with_similarity(0.5)})
    retriever = ContextRetriever(embedder, BrokenStore(), FakePageLoader({PAGE_URL: page}))

    contexts = await retriever.retrieve(DOC, QUESTION_VECTOR, html_url=PAGE_URL)

    assert [c.id for c in contexts] == ["html-1"]


# ---------------------------------------------------------------------------
# Web source
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_web_paragraphs_are_embedded_and_failures_dropped(store):
    page = (
        "METHODS\n\n"
        "We train on abstracts.\n\n"
        "This paragraph breaks the embedder.\n\n"
        "Figure 1: Overall architecture of the system."
    )
    embedder = FakeEmbedder(
        {
            "We train on abstracts.": vector_with_similarity(0.4),
            "Figure 1: Overall architecture of the system.": vector_with_similarity(0.35),
        },
        failing={"This paragraph breaks the embedder."},
    )
    loader = FakePageLoader({PAGE_URL: page})
    retriever = ContextRetriever(embedder, store, loader, max_concurrency=2)

    contexts = await retriever.retrieve(DOC, QUESTION_VECTOR, html_url=PAGE_URL)

    assert loader.urls == [PAGE_URL]
    assert [c.id for c in contexts] == ["html-3", "html-1"]
    figure, text = contexts
    assert figure.chunk_type == "figure_html"
    assert text.chunk_type == "html_text"
    assert text.section_title == "METHODS"
    assert text.source == ContextSource.WEB
    assert len(embedder.calls) == 3


@pytest.mark.asyncio
async def test_web_source_respects_paragraph_limit(store):
    page = "\n\n".join(f"Paragraph number {i}." for i in range(10))
    embedder = FakeEmbedder()
    retriever = ContextRetriever(embedder, store, FakePageLoader({PAGE_URL: page}), max_html_contexts=4)

    await retriever.retrieve(DOC, QUESTION_VECTOR, html_url=PAGE_URL)

    assert len(embedder.calls) == 4


@pytest.mark.asyncio
async def test_missing_page_yields_no_web_contexts(retriever, page_loader):
    assert await retriever.retrieve(DOC, QUESTION_VECTOR, html_url=PAGE_URL) == []
    assert page_loader.urls == [PAGE_URL]


class SlowEmbedder(FakeEmbedder):
    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.peak = 0

    async def embed_single(self, text):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            return await super().embed_single(text)
        finally:
            self.in_flight -= 1


@pytest.mark.asyncio
async def test_paragraph_embeddings_are_bounded_by_max_concurrency(store):
    page = "\n\n".join(f"Paragraph number {i}." for i in range(20))
    embedder = SlowEmbedder()
    retriever = ContextRetriever(embedder, store, FakePageLoader({PAGE_URL: page}), max_concurrency=3)

    contexts = await retriever.retrieve(DOC, QUESTION_VECTOR, html_url=PAGE_URL, max_references=20)

    assert len(embedder.calls) == 20
    assert len(contexts) == 20
    assert embedder.peak == 3


@pytest.mark.asyncio
async def test_structured_source_runs_while_web_page_loads(store):
    add_pdf_chunk(store, DOC, "c1", "Chunk one", 0.5)
    store_reached = asyncio.Event()
    list_embeddings = store.list_chunk_embeddings

    async def signalling_list(document_id):
        store_reached.set()
        return await list_embeddings(document_id)

    store.list_chunk_embeddings = signalling_list

    async def gated_loader(url):
        # Returns only once the structured source has started
        await asyncio.wait_for(store_reached.wait(), timeout=1)
        return "Paragraph from the page."

    retriever = ContextRetriever(FakeEmbedder(), store, gated_loader)

    contexts = await retriever.retrieve(DOC, QUESTION_VECTOR, html_url=PAGE_URL)

    assert {c.id for c in contexts} == {"c1", "html-1"}


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_merge_truncates_to_max_references(retriever, store):
    for i, similarity in enumerate([0.1, 0.9, 0.5, 0.7, 0.3]):
        add_pdf_chunk(store, DOC, f"c{i}", f"Chunk {i}", similarity, order_index=i)

    contexts = await retriever.retrieve(DOC, QUESTION_VECTOR, max_references=2)

    assert [c.id for c in contexts] == ["c1", "c3"]


@pytest.mark.asyncio
async def test_manual_contexts_rank_ahead_of_equal_scores(retriever, store):
    add_pdf_chunk(store, DOC, "c1", "Orthogonal chunk", 0.0)

    contexts = await retriever.retrieve(
        DOC, QUESTION_VECTOR, manual_texts=["user supplied text"], max_references=2
    )

    assert [c.id for c in contexts] == ["manual-0", "c1"]
    assert contexts[0].excerpt == "user supplied text"
