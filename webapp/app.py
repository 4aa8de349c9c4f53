"""FastAPI application for library insights chat.

Launch:
    python -m uvicorn webapp.app:app --port 8501

Or via pipeline:
    python pipeline.py serve --port 8501
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware

from schemas.insights import InsightsChatRequest, InsightsChatResponse
from vectorstore.store import ChunkStore, InMemoryChunkStore, PostgresChunkStore
from webapp.config import Settings, configure_logging
from webapp.rag.query_engine import InsightsChatEngine, InsufficientContextError, build_engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def _open_store(settings: Settings) -> ChunkStore:
    if settings.database_url:
        return PostgresChunkStore.from_url(settings.database_url)
    logger.warning("DATABASE_URL is not set; using an empty in-memory chunk store")
    return InMemoryChunkStore()


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings or Settings.from_env()
    configure_logging(settings.log_level)

    store = _open_store(settings)
    if isinstance(store, PostgresChunkStore):
        await store.open()

    async with httpx.AsyncClient(timeout=settings.http_timeout) as http_client:
        app.state.engine = build_engine(settings, http_client, store)
        logger.info(
            "Insights chat ready (llm=%s, embeddings=%s)",
            settings.llm_provider, settings.embedding_model,
        )
        try:
            yield
        finally:
            if isinstance(store, PostgresChunkStore):
                await store.close()


def get_engine(request: Request) -> InsightsChatEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Insights chat engine is not initialized")
    return engine


# ---------------------------------------------------------------------------
# App setup
# ---------------------------------------------------------------------------

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    app = FastAPI(
        title="Paper Insights",
        description="Citation-grounded Q&A over papers in a user's library",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.engine = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/api/library/insights-chat", response_model=InsightsChatResponse)
    async def insights_chat(
        req: InsightsChatRequest,
        engine: InsightsChatEngine = Depends(get_engine),
    ):
        try:
            return await engine.answer(req)
        except InsufficientContextError as e:
            logger.warning("Insufficient context: %s", e)
            raise HTTPException(status_code=404, detail=str(e))
        except Exception as e:
            logger.error("Insights chat failed for %s: %s", req.document_id, e, exc_info=True)
            raise HTTPException(status_code=500, detail=str(e))

    return app


app = create_app()
