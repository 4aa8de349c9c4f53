"""Related-literature search through the Semantic Scholar Graph API."""

import logging
from typing import Optional, Protocol

import httpx

from schemas.insights import RelatedPaper

logger = logging.getLogger(__name__)

SEARCH_URL = "https://api.semanticscholar.org/graph/v1/paper/search"
SEARCH_FIELDS = "paperId,title,authors,venue,year,url,abstract,citationCount"
RELATED_PAPERS_LIMIT = 3


class LiteratureSearch(Protocol):
    async def search(self, query: str, limit: int) -> list[RelatedPaper]: ...


class SemanticScholarClient:
    """Keyword search over Semantic Scholar papers."""

    def __init__(self, client: httpx.AsyncClient, api_key: Optional[str] = None):
        self.client = client
        self.api_key = api_key

    async def search(self, query: str, limit: int = RELATED_PAPERS_LIMIT) -> list[RelatedPaper]:
        headers = {"x-api-key": self.api_key} if self.api_key else {}
        response = await self.client.get(
            SEARCH_URL,
            params={"query": query, "limit": limit, "fields": SEARCH_FIELDS},
            headers=headers,
        )
        response.raise_for_status()
        items = response.json().get("data") or []
        return [self._to_paper(item) for item in items if item.get("title")][:limit]

    @staticmethod
    def _to_paper(item: dict) -> RelatedPaper:
        authors = ", ".join(
            a["name"] for a in item.get("authors") or [] if a.get("name")
        )
        return RelatedPaper(
            paper_id=item.get("paperId") or "",
            title=item["title"],
            authors=authors,
            venue=item.get("venue") or "",
            year=item.get("year"),
            url=item.get("url") or "",
            abstract=item.get("abstract") or "",
            citation_count=item.get("citationCount") or 0,
        )


async def fetch_related_papers(
    search: LiteratureSearch,
    question: str,
    limit: int = RELATED_PAPERS_LIMIT,
) -> list[RelatedPaper]:
    """Search for papers related to ``question``; any failure yields []."""
    try:
        papers = await search.search(question, limit)
    except Exception as e:
        logger.warning("Related literature search failed: %s", e)
        return []
    logger.info("Found %d related papers", len(papers[:limit]))
    return papers[:limit]
