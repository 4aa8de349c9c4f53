import httpx
import pytest
import respx

from schemas.insights import RelatedPaper
from webapp.rag.literature import SemanticScholarClient, fetch_related_papers

SEARCH_HOST = "api.semanticscholar.org"
SEARCH_PATH = "/graph/v1/paper/search"

SEARCH_PAYLOAD = {
    "total": 2,
    "data": [
        {
            "paperId": "abc123",
            "title": "Dense Passage Retrieval for Open-Domain QA",
            "authors": [{"authorId": "1", "name": "V. Karpukhin"}, {"authorId": "2", "name": "B. Oguz"}],
            "venue": "EMNLP",
            "year": 2020,
            "url": "https://www.semanticscholar.org/paper/abc123",
            "abstract": "Open-domain question answering relies on retrieval.",
            "citationCount": 2500,
        },
        {"paperId": "def456", "title": "Untitled venue paper", "authors": [], "venue": None, "year": None},
    ],
}


@pytest.mark.asyncio
async def test_search_maps_papers_and_sends_fields():
    with respx.mock() as mock:
        route = mock.get(host=SEARCH_HOST, path=SEARCH_PATH).mock(
            return_value=httpx.Response(200, json=SEARCH_PAYLOAD)
        )
        async with httpx.AsyncClient() as client:
            papers = await SemanticScholarClient(client, api_key="secret").search("dense retrieval", 3)

    request = route.calls.last.request
    assert request.url.params["query"] == "dense retrieval"
    assert request.url.params["limit"] == "3"
    assert "citationCount" in request.url.params["fields"]
    assert request.headers["x-api-key"] == "secret"

    first, second = papers
    assert first.paper_id == "abc123"
    assert first.authors == "V. Karpukhin, B. Oguz"
    assert first.citation_count == 2500
    assert first.year == 2020
    assert second.venue == ""
    assert second.authors == ""


@pytest.mark.asyncio
async def test_search_without_api_key_sends_no_key_header():
    with respx.mock() as mock:
        route = mock.get(host=SEARCH_HOST, path=SEARCH_PATH).mock(
            return_value=httpx.Response(200, json={"data": []})
        )
        async with httpx.AsyncClient() as client:
            assert await SemanticScholarClient(client).search("q", 3) == []

    assert "x-api-key" not in route.calls.last.request.headers


@pytest.mark.asyncio
async def test_http_error_becomes_empty_related_list():
    with respx.mock() as mock:
        mock.get(host=SEARCH_HOST, path=SEARCH_PATH).mock(return_value=httpx.Response(429))
        async with httpx.AsyncClient() as client:
            related = await fetch_related_papers(SemanticScholarClient(client), "q")

    assert related == []


@pytest.mark.asyncio
async def test_fetch_related_papers_caps_results():
    class ManyResults:
        async def search(self, query, limit):
            return [RelatedPaper(title=f"Paper {i}") for i in range(10)]

    related = await fetch_related_papers(ManyResults(), "q", limit=3)
    assert [p.title for p in related] == ["Paper 0", "Paper 1", "Paper 2"]
