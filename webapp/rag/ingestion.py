"""Client for the external ingestion service that chunks and embeds PDFs.

Insights chat only asks for ingestion when a document has no retrievable
context at all, and never lets an ingestion failure fail the request.
"""

import logging
from typing import Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class IngestionPipeline(Protocol):
    async def ensure_embeddings(
        self,
        document_id: str,
        html_url: Optional[str],
        pdf_url: Optional[str],
        force: bool = False,
    ) -> None: ...


class IngestionClient:
    """POSTs ingestion requests to the service at ``base_url``."""

    def __init__(self, client: httpx.AsyncClient, base_url: str):
        self.client = client
        self.base_url = base_url

    async def ensure_embeddings(
        self,
        document_id: str,
        html_url: Optional[str],
        pdf_url: Optional[str],
        force: bool = False,
    ) -> None:
        payload = {
            "paperId": document_id,
            "htmlUrl": html_url,
            "pdfUrl": pdf_url,
            "force": force,
        }
        response = await self.client.post(self.base_url, json=payload)
        response.raise_for_status()


class NoopIngestion:
    """Used when no ingestion service is configured."""

    async def ensure_embeddings(
        self,
        document_id: str,
        html_url: Optional[str],
        pdf_url: Optional[str],
        force: bool = False,
    ) -> None:
        logger.info("No ingestion service configured; skipping ingestion for %s", document_id)


async def trigger_ingestion(
    pipeline: IngestionPipeline,
    document_id: str,
    html_url: Optional[str],
    pdf_url: Optional[str],
) -> bool:
    """Ask ``pipeline`` to (re)build embeddings for a document.

    Returns True on success. Every failure is logged and reported as False.
    """
    logger.info(
        "Triggering ingestion for %s (html=%s, pdf=%s)", document_id, html_url, pdf_url
    )
    try:
        await pipeline.ensure_embeddings(document_id, html_url, pdf_url, force=False)
    except Exception as e:
        logger.warning("Ingestion failed for %s: %s", document_id, e)
        return False
    return True
