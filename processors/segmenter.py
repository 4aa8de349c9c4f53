"""Paragraph segmentation of flattened web-page text into citable contexts.

Paragraphs are separated by blank lines. Short numbered ("2.1 Methods") or
all-caps ("RESULTS") paragraphs are treated as headings: they are not emitted
but label the paragraphs that follow them.
"""

import re
from dataclasses import dataclass

DEFAULT_MAX_CONTEXTS = 120
MAX_CHAT_HTML_CONTEXTS = 60
DEFAULT_SECTION = "body"
MAX_HEADING_CHARS = 80

NUMERIC_HEADING = re.compile(r"^(?:[0-9]+(?:\.[0-9]+)*)\s+")
PARAGRAPH_BREAK = re.compile(r"\n{2,}")
FIGURE_CAPTION = re.compile(
    r"^(?:figure|fig\.|supplementary\s+figure|図)\s*[0-9a-z\-:]",
    re.IGNORECASE,
)


@dataclass
class HtmlContext:
    """A paragraph of web-page text with the heading it appeared under."""
    id: str
    section_title: str
    text: str
    order: int


def extract_html_contexts(
    plain_text: str,
    max_contexts: int = DEFAULT_MAX_CONTEXTS,
    default_section: str = DEFAULT_SECTION,
) -> list[HtmlContext]:
    """Split plain text into paragraph contexts tagged with their section.

    Args:
        plain_text: Flattened page text with blank lines between blocks.
        max_contexts: Stop after this many contexts have been emitted.
        default_section: Section label used before the first heading.

    Returns:
        Contexts in document order with ids ``html-1``, ``html-2``, ...
    """
    contexts: list[HtmlContext] = []
    current_section = default_section

    for paragraph in split_into_paragraphs(plain_text):
        if len(contexts) >= max_contexts:
            break
        if looks_like_heading(paragraph):
            current_section = clean_heading(paragraph)
            continue

        order = len(contexts)
        contexts.append(HtmlContext(
            id=f"html-{order + 1}",
            section_title=current_section,
            text=paragraph,
            order=order,
        ))

    return contexts


def split_into_paragraphs(text: str) -> list[str]:
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    paragraphs = (p.strip() for p in PARAGRAPH_BREAK.split(normalized))
    return [p for p in paragraphs if p]


def looks_like_heading(paragraph: str) -> bool:
    trimmed = paragraph.strip()
    if not trimmed or len(trimmed) > MAX_HEADING_CHARS:
        return False
    if NUMERIC_HEADING.match(trimmed):
        return True
    return trimmed == trimmed.upper() and any(c.isupper() for c in trimmed)


def clean_heading(heading: str) -> str:
    return re.sub(r"\s+", " ", NUMERIC_HEADING.sub("", heading.strip())).strip()


def is_figure_caption(text: str) -> bool:
    """True when ``text`` opens with a figure label such as "Figure 2:" or "Fig. 3a"."""
    return bool(FIGURE_CAPTION.match(re.sub(r"\s+", " ", text.strip())))
