from schemas.answer import (
    AnswerParagraph,
    ExternalReference,
    ModelAnswer,
)
from schemas.insights import (
    ChunkEmbeddingRow,
    ChunkRow,
    ContextSource,
    DocumentRecord,
    InsightsChatReference,
    InsightsChatRequest,
    InsightsChatResponse,
    RankedContext,
    RelatedPaper,
    SectionRow,
)
