"""Insights chat engine: retrieval, grounded generation and answer assembly.

One request flows through:
  1. question embedding and library-record lookup (concurrently), with the
     related-literature search running in the background
  2. context aggregation over manual text, the web page and PDF chunks
  3. one ingestion attempt and one re-aggregation if nothing was found
  4. prompt composition, one model call, and parsing into the answer contract
"""

import asyncio
import functools
import logging
import time
from typing import Optional

import httpx

from schemas.insights import (
    DocumentRecord,
    InsightsChatRequest,
    InsightsChatResponse,
    RankedContext,
)
from scrapers.utils import fetch_html_plain_text
from vectorstore.embedder import Embedder
from vectorstore.store import ChunkStore
from webapp.config import Settings
from webapp.rag.answer_parser import parse_model_output
from webapp.rag.ingestion import (
    IngestionClient,
    IngestionPipeline,
    NoopIngestion,
    trigger_ingestion,
)
from webapp.rag.literature import LiteratureSearch, SemanticScholarClient, fetch_related_papers
from webapp.rag.llm import LanguageModel, LLMClient
from webapp.rag.prompts import build_prompt
from webapp.rag.retriever import DEFAULT_MAX_REFERENCES, ContextRetriever

logger = logging.getLogger(__name__)


class InsufficientContextError(Exception):
    """No context could be retrieved for the document, even after ingestion."""

    def __init__(self, document_id: str):
        super().__init__(f"No context available for document {document_id}")
        self.document_id = document_id


class EmptyModelOutputError(Exception):
    """The language model returned no text, so there is nothing to parse."""

    def __init__(self, document_id: str):
        super().__init__(f"Language model returned an empty answer for document {document_id}")
        self.document_id = document_id


class InsightsChatEngine:
    """Answers questions about one library document with cited contexts."""

    def __init__(
        self,
        embedder: Embedder,
        retriever: ContextRetriever,
        store: ChunkStore,
        llm: LanguageModel,
        literature: LiteratureSearch,
        ingestion: IngestionPipeline,
        max_references: int = DEFAULT_MAX_REFERENCES,
        related_papers_limit: int = 3,
    ):
        self.embedder = embedder
        self.retriever = retriever
        self.store = store
        self.llm = llm
        self.literature = literature
        self.ingestion = ingestion
        self.max_references = max_references
        self.related_papers_limit = related_papers_limit

    async def answer(self, request: InsightsChatRequest) -> InsightsChatResponse:
        """Run the full pipeline for one request.

        Raises:
            InsufficientContextError: if no context exists after one ingestion retry.
            EmptyModelOutputError: if the model call returns blank text.
        """
        start = time.time()
        max_references = request.max_references or self.max_references

        related_task = asyncio.create_task(fetch_related_papers(
            self.literature, request.question, self.related_papers_limit
        ))
        try:
            question_embedding, record = await asyncio.gather(
                self.embedder.embed_single(request.question),
                self._lookup_record(request.document_id, request.requester_id),
            )
            contexts = await self._collect_contexts(
                request, record, question_embedding, max_references
            )
            related = await related_task
        except BaseException:
            related_task.cancel()
            raise

        prompt = build_prompt(
            request.question,
            contexts,
            related,
            title=record.title if record else None,
            authors=record.authors if record else None,
        )
        raw = await self.llm.complete(prompt)
        if not raw or not raw.strip():
            raise EmptyModelOutputError(request.document_id)
        parsed = parse_model_output(raw)

        logger.info(
            "Answered %s with %d paragraphs, %d references, %d related papers in %.2fs",
            request.document_id, len(parsed.paragraphs), len(contexts),
            len(related), time.time() - start,
        )
        return InsightsChatResponse(
            document_id=request.document_id,
            requester_id=request.requester_id,
            question=request.question,
            paragraphs=parsed.paragraphs,
            references=[c.to_reference() for c in contexts],
            external_references=parsed.external_references,
            followups=parsed.followups,
            related_papers=related,
        )

    async def _collect_contexts(
        self,
        request: InsightsChatRequest,
        record: Optional[DocumentRecord],
        question_embedding: list[float],
        max_references: int,
    ) -> list[RankedContext]:
        html_url = request.html_locator
        if not html_url and record:
            html_url = record.html_url or record.url

        retrieve = functools.partial(
            self.retriever.retrieve,
            request.document_id,
            question_embedding,
            html_url=html_url,
            manual_texts=request.raw_text_contexts,
            max_references=max_references,
        )

        contexts = await retrieve()
        if contexts:
            return contexts

        logger.warning("No contexts for %s; requesting ingestion", request.document_id)
        await trigger_ingestion(
            self.ingestion,
            request.document_id,
            html_url,
            record.pdf_url if record else None,
        )
        contexts = await retrieve()
        if not contexts:
            raise InsufficientContextError(request.document_id)
        return contexts

    async def _lookup_record(
        self, document_id: str, requester_id: str
    ) -> Optional[DocumentRecord]:
        try:
            return await self.store.get_document_record(document_id, requester_id)
        except Exception as e:
            logger.warning("Library record lookup failed for %s: %s", document_id, e)
            return None


def build_engine(
    settings: Settings,
    http_client: httpx.AsyncClient,
    store: ChunkStore,
) -> InsightsChatEngine:
    """Wire the engine and its collaborators from ``settings``."""
    embedder = Embedder(model=settings.embedding_model, api_key=settings.openai_api_key)
    page_loader = functools.partial(
        fetch_html_plain_text, http_client, retry_delay=settings.html_retry_delay
    )
    retriever = ContextRetriever(
        embedder,
        store,
        page_loader,
        max_concurrency=settings.embedding_concurrency,
        max_html_contexts=settings.max_html_contexts,
    )

    if settings.llm_provider == "anthropic":
        llm_api_key = settings.anthropic_api_key
    else:
        llm_api_key = settings.openai_api_key
    llm = LLMClient(
        provider=settings.llm_provider,
        model=settings.llm_model,
        api_key=llm_api_key,
        temperature=settings.llm_temperature,
    )

    if settings.ingestion_url:
        ingestion: IngestionPipeline = IngestionClient(http_client, settings.ingestion_url)
    else:
        ingestion = NoopIngestion()

    return InsightsChatEngine(
        embedder=embedder,
        retriever=retriever,
        store=store,
        llm=llm,
        literature=SemanticScholarClient(http_client, settings.semantic_scholar_api_key),
        ingestion=ingestion,
        max_references=settings.max_references,
        related_papers_limit=settings.related_papers_limit,
    )
