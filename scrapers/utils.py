"""Shared utilities for fetching document web pages: retry, text extraction, captions."""

import logging
import re
from typing import Optional

import httpx
from bs4 import BeautifulSoup
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9,ja;q=0.8",
    "DNT": "1",
    "Upgrade-Insecure-Requests": "1",
}

MAX_FETCH_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0

# Removed together with their contents
STRIP_TAGS = ["script", "style", "svg", "noscript"]

# Elements that end a paragraph in the flattened text
BLOCK_TAGS = [
    "address", "article", "aside", "blockquote", "caption", "dd", "div", "dl",
    "dt", "figcaption", "figure", "footer", "form", "h1", "h2", "h3", "h4",
    "h5", "h6", "header", "hr", "li", "main", "nav", "ol", "p", "pre",
    "section", "table", "td", "th", "title", "tr", "ul",
]

CAPTION_SELECTORS = [
    "figcaption",
    "[data-test='figure-caption']",
    "p[class*='caption']",
    "p[class*='Caption']",
    "div[class*='figure'] p",
]

FIGURE_LABEL = re.compile(r"^(?:Figure|Fig\.|図)\s*[0-9a-z\-:]+", re.IGNORECASE)


class RetryableFetchError(Exception):
    """Raised for responses that are worth another attempt (HTTP 409)."""

    def __init__(self, status_code: int, url: str):
        super().__init__(f"HTTP {status_code} for {url}")
        self.status_code = status_code


async def fetch_url(
    client: httpx.AsyncClient,
    url: str,
    headers: Optional[dict] = None,
    retry_delay: float = DEFAULT_RETRY_DELAY,
    max_attempts: int = MAX_FETCH_ATTEMPTS,
) -> Optional[str]:
    """Fetch a page body with retry on 409 and transport errors.

    Attempt ``n`` waits ``n * retry_delay`` seconds before the next try.
    Returns None on any other non-2xx status or once retries are exhausted.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_incrementing(start=retry_delay, increment=retry_delay),
        retry=retry_if_exception_type((RetryableFetchError, httpx.TransportError)),
        before_sleep=lambda retry_state: logger.warning(
            "Fetch attempt %d failed, retrying: %s",
            retry_state.attempt_number,
            retry_state.outcome.exception() if retry_state.outcome else "unknown",
        ),
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                body = await _fetch_once(client, url, headers)
        return body
    except (RetryableFetchError, httpx.TransportError) as e:
        logger.error("All %d attempts failed for %s: %s", max_attempts, url, e)
        return None


async def _fetch_once(
    client: httpx.AsyncClient,
    url: str,
    headers: Optional[dict],
) -> Optional[str]:
    merged_headers = {**DEFAULT_HEADERS, **(headers or {})}
    response = await client.get(url, headers=merged_headers, follow_redirects=True)
    if response.status_code == 409:
        raise RetryableFetchError(response.status_code, url)
    if not response.is_success:
        logger.warning("Fetch failed with HTTP %d: %s", response.status_code, url)
        return None
    return response.text


async def fetch_html_plain_text(
    client: httpx.AsyncClient,
    url: Optional[str],
    retry_delay: float = DEFAULT_RETRY_DELAY,
    max_attempts: int = MAX_FETCH_ATTEMPTS,
) -> Optional[str]:
    """Fetch a web page and return its flattened text, or None."""
    if not url:
        return None

    html = await fetch_url(client, url, retry_delay=retry_delay, max_attempts=max_attempts)
    if not html:
        return None

    text = flatten_html(html)
    if not text:
        logger.warning("No text extracted from %s", url)
        return None

    logger.info("Fetched %d chars of text from %s", len(text), url)
    return text


def flatten_html(html: str) -> str:
    """Convert HTML to plain text with one blank line between blocks.

    Scripts, styles and inline SVG are dropped, ``img[alt]`` becomes its alt
    text, and whitespace inside each block collapses to single spaces.
    """
    soup = BeautifulSoup(html, "lxml")

    for tag_name in STRIP_TAGS:
        for tag in soup.find_all(tag_name):
            tag.decompose()

    for img in soup.find_all("img", alt=True):
        alt = img["alt"].strip()
        img.replace_with(f" {alt} " if alt else " ")

    for br in soup.find_all("br"):
        br.replace_with(" ")

    for tag in soup.find_all(BLOCK_TAGS):
        tag.insert_before("\n\n")
        tag.insert_after("\n\n")

    return _collapse_blocks(soup.get_text())


def _collapse_blocks(text: str) -> str:
    blocks = re.split(r"\n[ \t\r\f\v]*\n", text)
    cleaned = (re.sub(r"\s+", " ", block).strip() for block in blocks)
    return "\n\n".join(block for block in cleaned if block)


def extract_figure_captions(html: str) -> list[str]:
    """Collect likely figure captions from a page, without duplicates."""
    soup = BeautifulSoup(html, "lxml")
    for tag_name in STRIP_TAGS:
        for tag in soup.find_all(tag_name):
            tag.decompose()

    candidates = []
    for selector in CAPTION_SELECTORS:
        candidates.extend(soup.select(selector))
    for paragraph in soup.find_all("p"):
        if FIGURE_LABEL.match(paragraph.get_text(" ", strip=True)):
            candidates.append(paragraph)

    captions: list[str] = []
    seen: set[str] = set()
    for element in candidates:
        caption = re.sub(r"\s+", " ", element.get_text(" ", strip=True)).strip()
        if 10 < len(caption) < 1000 and caption not in seen:
            seen.add(caption)
            captions.append(caption)
    return captions
