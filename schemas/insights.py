"""Pydantic models for insights-chat requests, retrieved contexts and responses."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from schemas.answer import AnswerParagraph, ExternalReference

EXCERPT_CHARS = 240
FIGURE_CHUNK_PREFIX = "figure_"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ContextSource(str, Enum):
    WEB = "web"
    STRUCTURED = "structured"


class InsightsChatReference(CamelModel):
    """A retrieved context as returned to the caller (no full text)."""

    id: str
    source: ContextSource
    section_title: Optional[str] = None
    page_number: Optional[int] = None
    similarity: float = Field(ge=-1.0, le=1.0)
    excerpt: str
    chunk_type: Optional[str] = None

    @property
    def is_figure(self) -> bool:
        return bool(self.chunk_type and self.chunk_type.startswith(FIGURE_CHUNK_PREFIX))


class RankedContext(InsightsChatReference):
    """A scored unit of evidence. ``text`` is only used to build the prompt."""

    text: str = Field(exclude=True)

    @classmethod
    def from_text(
        cls,
        id: str,
        text: str,
        source: ContextSource,
        similarity: float = 0.0,
        section_title: Optional[str] = None,
        page_number: Optional[int] = None,
        chunk_type: Optional[str] = None,
    ) -> "RankedContext":
        return cls(
            id=id,
            source=source,
            section_title=section_title,
            page_number=page_number,
            similarity=similarity,
            excerpt=text[:EXCERPT_CHARS],
            text=text,
            chunk_type=chunk_type,
        )

    def to_reference(self) -> InsightsChatReference:
        return InsightsChatReference(**self.model_dump(exclude={"text"}))


class RelatedPaper(CamelModel):
    """Candidate paper returned by the literature search service."""

    paper_id: str = ""
    title: str
    authors: str = ""
    venue: str = ""
    year: Optional[int] = None
    url: str = ""
    abstract: str = ""
    citation_count: int = 0


class DocumentRecord(CamelModel):
    """The requester's library entry for a document."""

    title: Optional[str] = None
    authors: Optional[str] = None
    url: Optional[str] = None
    html_url: Optional[str] = None
    pdf_url: Optional[str] = None


class ChunkEmbeddingRow(CamelModel):
    chunk_id: str
    embedding: list[float] = Field(default_factory=list)


class ChunkRow(CamelModel):
    id: str
    text: str
    page_number: Optional[int] = None
    section_id: Optional[str] = None
    chunk_type: Optional[str] = None
    order_index: int = 0


class SectionRow(CamelModel):
    id: str
    title: Optional[str] = None


class InsightsChatRequest(CamelModel):
    document_id: str
    requester_id: str
    question: str
    html_locator: Optional[str] = None
    raw_text_contexts: Optional[list[str]] = None
    max_references: Optional[int] = Field(None, ge=1, le=50)

    @field_validator("document_id", "requester_id", "question")
    @classmethod
    def _required_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be blank")
        return value

    @field_validator("html_locator")
    @classmethod
    def _blank_locator_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class InsightsChatResponse(CamelModel):
    document_id: str
    requester_id: str
    question: str
    paragraphs: list[AnswerParagraph] = Field(default_factory=list)
    references: list[InsightsChatReference] = Field(default_factory=list)
    external_references: list[ExternalReference] = Field(default_factory=list)
    followups: list[str] = Field(default_factory=list)
    related_papers: list[RelatedPaper] = Field(default_factory=list)
