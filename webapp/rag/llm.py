"""Async language-model client for Anthropic and OpenAI."""

import logging
import os
import time
from typing import Optional, Protocol

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-6",
    "openai": "gpt-4o",
}


class LanguageModel(Protocol):
    async def complete(self, prompt: str) -> str: ...


class LLMClient:
    """Single-turn completions against Anthropic or OpenAI."""

    def __init__(
        self,
        provider: str = "anthropic",
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        temperature: float = 0.2,
        max_tokens: int = 4096,
        client=None,
    ):
        if provider not in DEFAULT_MODELS:
            raise ValueError(f"Unsupported provider: {provider}")
        self.provider = provider
        self.model = model or DEFAULT_MODELS[provider]
        self.temperature = temperature
        self.max_tokens = max_tokens

        if client is not None:
            self.client = client
        elif provider == "anthropic":
            import anthropic
            self.client = anthropic.AsyncAnthropic(
                api_key=api_key or os.getenv("ANTHROPIC_API_KEY")
            )
        else:
            from openai import AsyncOpenAI
            self.client = AsyncOpenAI(
                api_key=api_key or os.getenv("OPENAI_API_KEY")
            )

    async def complete(self, prompt: str) -> str:
        """Send ``prompt`` as one user message and return the text reply."""
        start = time.time()
        if self.provider == "anthropic":
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
            text = "".join(
                block.text for block in response.content if getattr(block, "type", "") == "text"
            )
        else:
            response = await self.client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                messages=[{"role": "user", "content": prompt}],
            )
            text = response.choices[0].message.content or ""

        logger.info(
            "%s/%s returned %d chars in %.2fs",
            self.provider, self.model, len(text), time.time() - start,
        )
        return text
