"""OpenAI embedding client with token truncation and retry logic.

Uses text-embedding-3-small by default. Each call embeds one text; callers
that need many embeddings fan out with their own concurrency limit so a
single failing text never takes down a whole batch.
"""

import logging
import os
from typing import Optional

import tiktoken
from openai import AsyncOpenAI, BadRequestError
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "text-embedding-3-small"
MAX_TOKENS_PER_TEXT = 8000  # model limit is 8192; leave margin


class EmbeddingError(Exception):
    """The embedding service returned no usable vector."""


class Embedder:
    """Generate embeddings using OpenAI's embedding models."""

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.model = model
        self.client = client or AsyncOpenAI(api_key=api_key or os.getenv("OPENAI_API_KEY"))
        try:
            self._encoder = tiktoken.encoding_for_model(model)
        except KeyError:
            self._encoder = tiktoken.get_encoding("cl100k_base")

    def _truncate_text(self, text: str) -> str:
        """Truncate text to fit within the embedding model's token limit."""
        tokens = self._encoder.encode(text)
        if len(tokens) <= MAX_TOKENS_PER_TEXT:
            return text
        logger.warning(
            "Truncating text from %d to %d tokens (first 60 chars: '%.60s')",
            len(tokens), MAX_TOKENS_PER_TEXT, text,
        )
        return self._encoder.decode(tokens[:MAX_TOKENS_PER_TEXT])

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_not_exception_type((BadRequestError, EmbeddingError)),
        before_sleep=lambda retry_state: logger.warning(
            "Embedding API retry %d after error: %s",
            retry_state.attempt_number,
            retry_state.outcome.exception() if retry_state.outcome else "unknown",
        ),
        reraise=True,
    )
    async def _embed(self, text: str) -> list[float]:
        response = await self.client.embeddings.create(model=self.model, input=text)
        if not response.data or not response.data[0].embedding:
            raise EmbeddingError("Embedding response was empty")
        return list(response.data[0].embedding)

    async def embed_single(self, text: str) -> list[float]:
        """Embed a single text string.

        Raises:
            EmbeddingError: if the service returned an empty vector.
            openai.OpenAIError: if the service call failed after retries.
        """
        if not text.strip():
            raise EmbeddingError("Cannot embed blank text")
        return await self._embed(self._truncate_text(text))
