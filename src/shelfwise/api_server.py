"""
FastAPI service layer for Shelfwise book chat.

Exposes POST /chat, POST /upload, GET /documents, GET /metrics and GET /.
Every failure leaves the API as a classified ``{"error": ...}`` body; raw
provider text is logged, never returned.

Run with:
    uvicorn shelfwise.api_server:app --host 0.0.0.0 --port 5000
"""
from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from functools import partial
from pathlib import Path
from typing import Callable, Literal

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from .chat_service import BookChatService
from .config import (
    CATALOG_PATH,
    CHUNK_OVERLAP,
    CHUNK_SIZE,
    GOOGLE_API_KEY,
    GROQ_API_KEY,
    INDEX_CACHE_MAX_ENTRIES,
)
from .document_registry import DocumentRegistry
from .embeddings import build_embedding_backend
from .error_classifier import ErrorKind, classify, http_status, user_message
from .exceptions import ConfigurationError, ShelfwiseError
from .extraction import SUPPORTED_SUFFIXES
from .index_cache import IndexCache
from .metrics import MetricsCollector
from .models import ConversationTurn
from .observability import get_logger
from .providers import ModelInvoker
from .segmenter import Segmenter

logger = get_logger(__name__)

LIVENESS_TEXT = "Shelfwise book chat server is running. Use POST /chat for interaction."
UPLOAD_REJECTED_MESSAGE = "Please upload a non-empty PDF or text file (.pdf, .txt, .md)."


# ---------------------------------------------------------------------------
# Pydantic request models
# ---------------------------------------------------------------------------

class HistoryTurn(BaseModel):
    role: Literal["user", "assistant"]
    text: str = ""


class ChatRequest(BaseModel):
    # bookId/message are the storefront client's field names.
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(default="", validation_alias=AliasChoices("documentId", "bookId", "document_id"))
    question: str = Field(default="", validation_alias=AliasChoices("question", "message"))
    history: list[HistoryTurn] = Field(default_factory=list)

    def turns(self) -> list[ConversationTurn]:
        return [ConversationTurn(role=turn.role, text=turn.text) for turn in self.history]


# ---------------------------------------------------------------------------
# Service wiring
# ---------------------------------------------------------------------------

def build_default_service() -> BookChatService:
    """Builds the process-wide service from environment configuration."""
    segmenter = Segmenter(CHUNK_SIZE, CHUNK_OVERLAP)
    registry = DocumentRegistry()
    if CATALOG_PATH:
        registry.load_catalog(CATALOG_PATH)

    logger.info(
        "provider_keys_checked",
        groq_configured=bool(GROQ_API_KEY),
        gemini_configured=bool(GOOGLE_API_KEY),
    )
    try:
        invoker: ModelInvoker | None = ModelInvoker()
    except ConfigurationError as exc:
        # Uploads and listing still work; /chat answers with AuthFailure.
        logger.error("model_provider_missing", error=str(exc))
        invoker = None

    backend = build_embedding_backend()
    return BookChatService(
        registry,
        backend.embeddings,
        invoker,
        segmenter=segmenter,
        cache=IndexCache(max_entries=INDEX_CACHE_MAX_ENTRIES),
        signature=backend.signature,
    )


def _error_response(kind: ErrorKind) -> JSONResponse:
    return JSONResponse(status_code=http_status(kind), content={"error": user_message(kind)})


def _upload_rejected(filename: str, reason: str) -> JSONResponse:
    logger.warning("upload_rejected", filename=filename, reason=reason)
    return JSONResponse(
        status_code=http_status(ErrorKind.INVALID_REQUEST),
        content={"error": UPLOAD_REJECTED_MESSAGE},
    )


async def _record(metrics: MetricsCollector, latency_ms: float, **fields) -> None:
    # The JSONL append and the metrics lock stay off the event loop.
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, partial(metrics.record_request, latency_ms, **fields))


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    service_factory: Callable[[], BookChatService] | None = None,
    metrics_factory: Callable[[], MetricsCollector] | None = None,
) -> FastAPI:
    factory = service_factory or build_default_service

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Build the service once at startup; close the cache and registry on shutdown."""
        service = factory()
        app.state.service = service
        app.state.metrics = (metrics_factory or MetricsCollector)()
        logger.info("server_started", documents=len(service.registry.list_documents()))

        yield

        await service.aclose()
        service.registry.close()
        logger.info("server_stopped")

    app = FastAPI(
        title="Shelfwise API",
        description="Per-book conversational retrieval over uploaded and catalog books",
        version="1.0.0",
        lifespan=lifespan,
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.warning("request_rejected", path=request.url.path, errors=len(exc.errors()))
        return _error_response(ErrorKind.INVALID_REQUEST)

    @app.exception_handler(ShelfwiseError)
    async def shelfwise_error_handler(request: Request, exc: ShelfwiseError):
        kind = classify(exc)
        logger.warning("request_failed", path=request.url.path, kind=kind.value, error=exc.message)
        return _error_response(kind)

    @app.get("/", response_class=PlainTextResponse)
    async def root_endpoint():
        return LIVENESS_TEXT

    @app.post("/chat")
    @app.post("/api/chat", include_in_schema=False)
    async def chat_endpoint(body: ChatRequest, request: Request):
        """Answer one question about one book."""
        service: BookChatService = request.app.state.service
        metrics: MetricsCollector = request.app.state.metrics
        start = time.perf_counter()

        try:
            answer = await service.answer(body.document_id, body.question, body.turns())
        except Exception as exc:
            kind = classify(exc)
            latency_ms = (time.perf_counter() - start) * 1000.0
            logger.error(
                "chat_failed",
                document_id=body.document_id,
                kind=kind.value,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            await _record(metrics, latency_ms, success=False, error_kind=kind.value, document_id=body.document_id)
            return _error_response(kind)

        latency_ms = (time.perf_counter() - start) * 1000.0
        await _record(metrics, latency_ms, success=True, model=answer.model, document_id=body.document_id)
        logger.info(
            "chat_answered",
            document_id=body.document_id,
            model=answer.model,
            latency_ms=round(latency_ms, 1),
        )
        return {"response": answer.response}

    @app.post("/upload", status_code=201)
    async def upload_endpoint(
        request: Request,
        file: UploadFile = File(...),
        title: str | None = Form(None),
        author: str = Form(""),
    ):
        """Store a book, register it, and start indexing it in the background."""
        service: BookChatService = request.app.state.service
        filename = file.filename or ""
        suffix = Path(filename).suffix.lower()
        if suffix not in SUPPORTED_SUFFIXES:
            return _upload_rejected(filename, f"unsupported file type '{suffix}'")
        payload = await file.read()
        if not payload:
            return _upload_rejected(filename, "uploaded file is empty")

        loop = asyncio.get_running_loop()
        metadata = await loop.run_in_executor(
            None,
            service.registry.register_upload,
            payload,
            filename,
            (title or "").strip() or None,
            author.strip(),
        )
        service.schedule_warm(metadata.document_id)
        return {"documentId": metadata.document_id, "title": metadata.title, "author": metadata.author}

    @app.get("/documents")
    async def documents_endpoint(request: Request):
        service: BookChatService = request.app.state.service
        loop = asyncio.get_running_loop()
        documents = await loop.run_in_executor(None, service.registry.list_documents)
        return {"documents": [doc.to_dict() for doc in documents]}

    @app.get("/metrics")
    async def metrics_endpoint(request: Request):
        """Return request metrics plus index cache statistics."""
        summary = request.app.state.metrics.get_summary()
        summary["index_cache"] = request.app.state.service.cache.stats()
        return summary

    return app


app = create_app()
