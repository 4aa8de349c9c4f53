"""Prompt templates for citation-grounded insights chat.

The model sees every retrieved context under its id, a short list of related
papers it may cite as external references, and a JSON example rendered from
the answer contract in ``schemas.answer``.
"""

from typing import Optional

import orjson

from schemas.answer import ModelAnswer, example_for
from schemas.insights import ContextSource, RankedContext, RelatedPaper

CONTEXT_PROMPT_CHARS = 500
UNKNOWN = "unknown"

# ---------------------------------------------------------------------------
# Insights chat: grounded answer about one document
# ---------------------------------------------------------------------------

INSIGHTS_CHAT_PROMPT = """\
You are a research partner helping a reader understand a research paper. Answer the \
question below in detail using the provided contexts from the paper and the related \
paper candidates. Return your answer as JSON.

Prefer contexts that describe figures or tables when they are relevant, and name the \
page or section they come from. If the evidence is ambiguous or insufficient, say so \
explicitly instead of filling the gap with guesses.

--- Document details ---
{document}

--- Contexts ---
{contexts}

--- Related paper candidates ---
{related}

--- Instructions ---
1. Answer in the same language as the question, split into natural paragraphs. Attach \
the ids of the contexts each paragraph relies on as contextIds.
2. Cite only context ids listed above. Where a citation is needed, refer to the content \
naturally and add the context ids in parentheses.
3. If you draw on a related paper, list it in externalReferences and mention its title \
in the answer text.
4. Claims about figures or tables must be grounded in FIGURE contexts; give the context \
id and page.
5. If the contexts do not contain enough evidence to answer, state that clearly.
6. Finish with followups: points worth investigating next, if any.

--- Output format (a single JSON object, no other text) ---
{format_example}

--- Question ---
{question}"""


# ---------------------------------------------------------------------------
# Block rendering
# ---------------------------------------------------------------------------

def context_label(context: RankedContext) -> str:
    if context.is_figure:
        return "FIGURE"
    return "WEB" if context.source == ContextSource.WEB else "STRUCTURED"


def context_location(context: RankedContext) -> str:
    parts = [context.section_title or UNKNOWN]
    if context.page_number is not None:
        parts.append(f"p.{context.page_number}")
    return " / ".join(parts)


def render_contexts(contexts: list[RankedContext]) -> str:
    blocks = [
        f"Context {ctx.id} [{context_label(ctx)}] (location: {context_location(ctx)})\n"
        f"Excerpt: {ctx.text[:CONTEXT_PROMPT_CHARS]}"
        for ctx in contexts
    ]
    return "\n\n".join(blocks) or "(no contexts)"


def render_related(related: list[RelatedPaper]) -> str:
    blocks = []
    for index, paper in enumerate(related, start=1):
        blocks.append(
            f"Reference ref{index}\n"
            f"Title: {paper.title or UNKNOWN}\n"
            f"Authors: {paper.authors or UNKNOWN}\n"
            f"Venue: {paper.venue or UNKNOWN}\n"
            f"Year: {paper.year or UNKNOWN}\n"
            f"URL: {paper.url or UNKNOWN}"
        )
    return "\n\n".join(blocks) or "(no candidates)"


def render_document(title: Optional[str], authors: Optional[str]) -> str:
    lines = []
    if title:
        lines.append(f"Title: {title}")
    if authors:
        lines.append(f"Authors: {authors}")
    return "\n".join(lines) or "(no document details)"


def format_example() -> str:
    return orjson.dumps(example_for(ModelAnswer), option=orjson.OPT_INDENT_2).decode()


def build_prompt(
    question: str,
    contexts: list[RankedContext],
    related: list[RelatedPaper],
    title: Optional[str] = None,
    authors: Optional[str] = None,
) -> str:
    return INSIGHTS_CHAT_PROMPT.format(
        document=render_document(title, authors),
        contexts=render_contexts(contexts),
        related=render_related(related),
        format_example=format_example(),
        question=question,
    )
