"""Runtime settings for insights chat, read from the environment (and .env)."""

import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).parent.parent

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic")


@dataclass
class Settings:
    """Application settings.

    Attributes:
        openai_api_key: Key for the embedding service (and the LLM when provider is openai).
        anthropic_api_key: Key for the LLM when provider is anthropic.
        llm_provider: ``anthropic`` or ``openai``.
        llm_model: Model name; None uses the provider default.
        embedding_model: OpenAI embedding model.
        database_url: Postgres DSN for the chunk store.
        ingestion_url: Ingestion service endpoint; None disables ingestion.
        semantic_scholar_api_key: Optional Semantic Scholar API key.
        max_references: Default number of contexts per answer.
        max_html_contexts: Web-page paragraphs considered per request.
        embedding_concurrency: Concurrent paragraph embedding calls.
        related_papers_limit: Literature candidates per request.
        html_retry_delay: Base delay in seconds between page fetch retries.
        http_timeout: Timeout in seconds for outbound HTTP calls.
        llm_temperature: Sampling temperature for the answer.
        log_level: Root logging level.
    """

    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    llm_provider: str = "anthropic"
    llm_model: Optional[str] = None
    embedding_model: str = "text-embedding-3-small"
    database_url: Optional[str] = None
    ingestion_url: Optional[str] = None
    semantic_scholar_api_key: Optional[str] = None
    max_references: int = 8
    max_html_contexts: int = 60
    embedding_concurrency: int = 8
    related_papers_limit: int = 3
    html_retry_delay: float = 1.0
    http_timeout: float = 30.0
    llm_temperature: float = 0.2
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "Settings":
        """Load settings from environment variables, after reading ``.env``."""
        load_dotenv(env_file or PROJECT_ROOT / ".env")
        return cls(
            openai_api_key=_get_str("OPENAI_API_KEY"),
            anthropic_api_key=_get_str("ANTHROPIC_API_KEY"),
            llm_provider=(_get_str("LLM_PROVIDER") or "anthropic").lower(),
            llm_model=_get_str("LLM_MODEL"),
            embedding_model=_get_str("EMBEDDING_MODEL") or "text-embedding-3-small",
            database_url=_get_str("DATABASE_URL"),
            ingestion_url=_get_str("INGESTION_URL"),
            semantic_scholar_api_key=_get_str("SEMANTIC_SCHOLAR_API_KEY"),
            max_references=int(os.getenv("MAX_REFERENCES", "8")),
            max_html_contexts=int(os.getenv("MAX_HTML_CONTEXTS", "60")),
            embedding_concurrency=int(os.getenv("EMBEDDING_CONCURRENCY", "8")),
            related_papers_limit=int(os.getenv("RELATED_PAPERS_LIMIT", "3")),
            html_retry_delay=float(os.getenv("HTML_RETRY_DELAY", "1.0")),
            http_timeout=float(os.getenv("HTTP_TIMEOUT", "30")),
            llm_temperature=float(os.getenv("LLM_TEMPERATURE", "0.2")),
            log_level=(_get_str("LOG_LEVEL") or "INFO").upper(),
        )


def _get_str(name: str) -> Optional[str]:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    return value.strip()


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
