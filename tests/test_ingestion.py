import json

import httpx
import pytest
import respx

from webapp.rag.ingestion import IngestionClient, NoopIngestion, trigger_ingestion

INGEST_URL = "https://ingest.example.org/api/pdf-ingest"


@pytest.mark.asyncio
async def test_client_posts_ingestion_payload():
    with respx.mock() as mock:
        route = mock.post(INGEST_URL).mock(return_value=httpx.Response(202, json={"queued": True}))
        async with httpx.AsyncClient() as client:
            ok = await trigger_ingestion(
                IngestionClient(client, INGEST_URL), "paper-1", "https://html", None
            )

    assert ok is True
    assert json.loads(route.calls.last.request.content) == {
        "paperId": "paper-1",
        "htmlUrl": "https://html",
        "pdfUrl": None,
        "force": False,
    }


@pytest.mark.asyncio
async def test_service_error_is_swallowed():
    with respx.mock() as mock:
        mock.post(INGEST_URL).mock(return_value=httpx.Response(503))
        async with httpx.AsyncClient() as client:
            ok = await trigger_ingestion(IngestionClient(client, INGEST_URL), "paper-1", None, None)

    assert ok is False


@pytest.mark.asyncio
async def test_transport_error_is_swallowed():
    with respx.mock() as mock:
        mock.post(INGEST_URL).mock(side_effect=httpx.ConnectTimeout("timed out"))
        async with httpx.AsyncClient() as client:
            ok = await trigger_ingestion(IngestionClient(client, INGEST_URL), "paper-1", None, None)

    assert ok is False


@pytest.mark.asyncio
async def test_noop_pipeline_succeeds():
    assert await trigger_ingestion(NoopIngestion(), "paper-1", None, None) is True
