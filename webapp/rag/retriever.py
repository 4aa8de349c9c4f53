"""Context aggregation for insights chat.

Gathers candidate contexts for one question from three places:
  - manual text supplied by the caller (unscored, kept in input order)
  - the document's web page, segmented into paragraphs and embedded on the fly
  - pre-embedded PDF chunks in the chunk store

Each source step returns a ``SourceResult`` rather than raising, so a broken
web page or store outage only empties that source. Ranking is by cosine
similarity to the question, with a fixed bonus for figure chunks.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from processors.segmenter import (
    MAX_CHAT_HTML_CONTEXTS,
    HtmlContext,
    extract_html_contexts,
    is_figure_caption,
)
from schemas.insights import ContextSource, RankedContext
from vectorstore.embedder import Embedder
from vectorstore.store import ChunkStore
from webapp.rag.similarity import cosine_similarity

logger = logging.getLogger(__name__)

FIGURE_BONUS = 0.1
DEFAULT_MAX_REFERENCES = 8
DEFAULT_MAX_CONCURRENCY = 8

HTML_CHUNK_TYPE = "html_text"
HTML_FIGURE_CHUNK_TYPE = "figure_html"
PDF_CHUNK_TYPE = "pdf_text"

PageLoader = Callable[[str], Awaitable[Optional[str]]]


@dataclass
class SourceResult:
    """Outcome of one retrieval source."""
    source: str  # manual | web | structured
    contexts: list[RankedContext]
    reason: Optional[str] = None  # why the source came back empty or short
    dropped: int = 0


def effective_score(context: RankedContext) -> float:
    bonus = FIGURE_BONUS if context.is_figure else 0.0
    return context.similarity + bonus


def rank_contexts(contexts: list[RankedContext], limit: int) -> list[RankedContext]:
    """Sort by effective score, highest first, and keep the top ``limit``.

    ``sorted`` is stable, so contexts with equal scores keep their input order.
    """
    return sorted(contexts, key=effective_score, reverse=True)[:max(limit, 0)]


def manual_contexts(texts: Optional[list[str]]) -> list[RankedContext]:
    contexts = []
    for index, text in enumerate(texts or []):
        if not isinstance(text, str) or not text.strip():
            continue
        contexts.append(RankedContext.from_text(
            id=f"manual-{index}",
            text=text,
            source=ContextSource.WEB,
        ))
    return contexts


class ContextRetriever:
    """Collect and rank contexts from the web page, the chunk store and manual text."""

    def __init__(
        self,
        embedder: Embedder,
        store: ChunkStore,
        page_loader: PageLoader,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        max_html_contexts: int = MAX_CHAT_HTML_CONTEXTS,
    ):
        self.embedder = embedder
        self.store = store
        self.page_loader = page_loader
        self.max_concurrency = max(1, max_concurrency)
        self.max_html_contexts = max_html_contexts

    async def retrieve(
        self,
        document_id: str,
        question_embedding: list[float],
        html_url: Optional[str] = None,
        manual_texts: Optional[list[str]] = None,
        max_references: int = DEFAULT_MAX_REFERENCES,
    ) -> list[RankedContext]:
        """Return up to ``max_references`` contexts ranked by effective score.

        Each source is ranked and capped at ``2 * max_references`` before the
        merge; the merged list keeps manual, web, structured order among ties.
        """
        start = time.time()
        per_source_cap = 2 * max_references

        manual = SourceResult(source="manual", contexts=manual_contexts(manual_texts))
        web, structured = await asyncio.gather(
            self._web_contexts(html_url, question_embedding),
            self._structured_contexts(document_id, question_embedding),
        )

        merged: list[RankedContext] = []
        for result in (manual, web, structured):
            if result.reason:
                logger.warning(
                    "Source %s for document %s: %s", result.source, document_id, result.reason
                )
            if result.dropped:
                logger.info("Source %s dropped %d contexts", result.source, result.dropped)
            merged.extend(rank_contexts(result.contexts, per_source_cap))

        ranked = rank_contexts(merged, max_references)
        logger.info(
            "Retrieved %d contexts for %s (manual=%d, web=%d, structured=%d) in %.2fs",
            len(ranked), document_id,
            len(manual.contexts), len(web.contexts), len(structured.contexts),
            time.time() - start,
        )
        return ranked

    # ------------------------------------------------------------------
    # Web page
    # ------------------------------------------------------------------

    async def _web_contexts(
        self, html_url: Optional[str], question_embedding: list[float]
    ) -> SourceResult:
        if not html_url:
            return SourceResult(source="web", contexts=[], reason="no HTML locator")

        try:
            plain_text = await self.page_loader(html_url)
        except Exception as e:
            return SourceResult(source="web", contexts=[], reason=f"page load failed: {e}")
        if not plain_text:
            return SourceResult(source="web", contexts=[], reason=f"no text from {html_url}")

        paragraphs = extract_html_contexts(plain_text, max_contexts=self.max_html_contexts)
        if not paragraphs:
            return SourceResult(source="web", contexts=[], reason="no paragraphs in page text")

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def score(paragraph: HtmlContext) -> Optional[RankedContext]:
            async with semaphore:
                try:
                    embedding = await self.embedder.embed_single(paragraph.text)
                except Exception as e:
                    logger.warning("Embedding failed for %s: %s", paragraph.id, e)
                    return None
            chunk_type = HTML_FIGURE_CHUNK_TYPE if is_figure_caption(paragraph.text) else HTML_CHUNK_TYPE
            return RankedContext.from_text(
                id=paragraph.id,
                text=paragraph.text,
                source=ContextSource.WEB,
                similarity=cosine_similarity(question_embedding, embedding),
                section_title=paragraph.section_title,
                chunk_type=chunk_type,
            )

        scored = await asyncio.gather(*(score(p) for p in paragraphs))
        contexts = [c for c in scored if c is not None]
        dropped = len(paragraphs) - len(contexts)
        reason = "all paragraph embeddings failed" if not contexts else None
        return SourceResult(source="web", contexts=contexts, reason=reason, dropped=dropped)

    # ------------------------------------------------------------------
    # Chunk store
    # ------------------------------------------------------------------

    async def _structured_contexts(
        self, document_id: str, question_embedding: list[float]
    ) -> SourceResult:
        try:
            embeddings = await self.store.list_chunk_embeddings(document_id)
            if not embeddings:
                return SourceResult(source="structured", contexts=[], reason="no chunk embeddings")

            chunk_ids = [row.chunk_id for row in embeddings]
            chunks = await self.store.get_chunks(chunk_ids)
            section_ids = sorted({c.section_id for c in chunks if c.section_id})
            sections = await self.store.get_sections(section_ids) if section_ids else []
        except Exception as e:
            return SourceResult(source="structured", contexts=[], reason=f"store error: {e}")

        vectors = {row.chunk_id: row.embedding for row in embeddings if row.embedding}
        section_titles = {s.id: s.title for s in sections}

        contexts = []
        for chunk in chunks:
            vector = vectors.get(chunk.id)
            if not vector:
                continue
            contexts.append(RankedContext.from_text(
                id=chunk.id,
                text=chunk.text,
                source=ContextSource.STRUCTURED,
                similarity=cosine_similarity(question_embedding, vector),
                section_title=section_titles.get(chunk.section_id) if chunk.section_id else None,
                page_number=chunk.page_number,
                chunk_type=chunk.chunk_type or PDF_CHUNK_TYPE,
            ))

        dropped = len(embeddings) - len(contexts)
        reason = "no chunk rows matched the embeddings" if not contexts else None
        return SourceResult(source="structured", contexts=contexts, reason=reason, dropped=dropped)
