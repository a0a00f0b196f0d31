"""
Request flow for book chat: registry lookup, index build-or-reuse, retrieval,
prompt assembly and a single model call.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from langchain_core.embeddings import Embeddings

from .config import HISTORY_TURN_LIMIT, RETRIEVAL_K
from .context_assembler import PromptPayload, assemble
from .embedding_index import EmbeddingIndex, embedder_signature
from .error_classifier import classify
from .exceptions import ConfigurationError, DocumentNotFoundError, InvalidRequestError
from .extraction import aextract_text
from .document_registry import DocumentRegistry
from .index_cache import IndexCache, IndexKey
from .models import ConversationTurn, DocumentMetadata, RetrievalResult
from .observability import get_logger
from .providers import ModelInvoker
from .retriever import retrieve
from .segmenter import Segmenter

logger = get_logger(__name__)

TextExtractor = Callable[[str, str], Awaitable[str]]


@dataclass(frozen=True)
class ChatAnswer:
    response: str
    retrieved: RetrievalResult
    payload: PromptPayload
    model: str


class BookChatService:
    """Owns the index cache and wires the pipeline stages together.

    Constructed once per process (see the API lifespan) and closed on
    shutdown; every collaborator is injected so tests can substitute fakes.
    Without an invoker the service still indexes uploads, but /chat fails
    with a configuration error before any embedding or model call.
    """

    def __init__(
        self,
        registry: DocumentRegistry,
        embeddings: Embeddings,
        invoker: ModelInvoker | None,
        *,
        segmenter: Segmenter | None = None,
        cache: IndexCache | None = None,
        extractor: TextExtractor = aextract_text,
        retrieval_k: int = RETRIEVAL_K,
        history_limit: int = HISTORY_TURN_LIMIT,
        signature: str | None = None,
    ):
        if int(retrieval_k) < 1:
            raise ValueError(f"retrieval_k must be a positive integer, got {retrieval_k!r}")
        self.registry = registry
        self.embeddings = embeddings
        self.invoker = invoker
        self.segmenter = segmenter or Segmenter()
        self.cache = cache or IndexCache()
        self.extractor = extractor
        self.retrieval_k = int(retrieval_k)
        self.history_limit = int(history_limit)
        self.signature = signature or embedder_signature(embeddings)
        self._background: set[asyncio.Task] = set()

    def index_key(self, document_id: str) -> IndexKey:
        return IndexKey(document_id=str(document_id), embedder_signature=self.signature)

    async def _build_index(self, metadata: DocumentMetadata) -> EmbeddingIndex:
        if not metadata.source_path or not Path(metadata.source_path).is_file():
            raise DocumentNotFoundError(metadata.document_id, details={"source": metadata.source_path})

        start = time.perf_counter()
        text = await self.extractor(metadata.source_path, metadata.document_id)
        loop = asyncio.get_running_loop()
        chunks = await loop.run_in_executor(None, self.segmenter.segment, text)
        logger.info(
            "document_segmented",
            document_id=metadata.document_id,
            characters=len(text),
            chunks=len(chunks),
        )
        index = await EmbeddingIndex.build(metadata.document_id, chunks, self.embeddings, signature=self.signature)
        await loop.run_in_executor(None, self.registry.mark_indexed, metadata.document_id)
        logger.info(
            "document_indexed",
            document_id=metadata.document_id,
            total_ms=round((time.perf_counter() - start) * 1000.0, 1),
        )
        return index

    async def _lookup(self, document_id: str) -> DocumentMetadata:
        # sqlite and the registry lock stay off the event loop.
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.registry.get, document_id)

    async def get_index(self, document_id: str) -> EmbeddingIndex:
        metadata = await self._lookup(document_id)
        return await self.cache.get_or_build(
            self.index_key(metadata.document_id),
            lambda: self._build_index(metadata),
        )

    async def answer(
        self,
        document_id: str,
        question: str,
        history: Sequence[ConversationTurn] | None = None,
    ) -> ChatAnswer:
        document_id = str(document_id or "").strip()
        question = str(question or "").strip()
        if not document_id:
            raise InvalidRequestError("document id is required", field="documentId")
        if not question:
            raise InvalidRequestError("question is required", field="question")
        if self.invoker is None:
            raise ConfigurationError("no language-model provider is configured")

        metadata = await self._lookup(document_id)
        index = await self.cache.get_or_build(
            self.index_key(document_id),
            lambda: self._build_index(metadata),
        )

        retrieved = await retrieve(index, question, self.retrieval_k)
        logger.info(
            "chunks_retrieved",
            document_id=document_id,
            hits=len(retrieved),
            chunk_indices=retrieved.indices,
        )
        payload = assemble(retrieved, history, metadata, question, history_limit=self.history_limit)
        response = await self.invoker.invoke(payload)
        return ChatAnswer(response=response, retrieved=retrieved, payload=payload, model=self.invoker.model_name)

    def schedule_warm(self, document_id: str) -> asyncio.Task:
        """Builds a document's index in the background through the shared cache."""
        task = asyncio.create_task(self._warm(document_id), name=f"index-warm:{document_id}")
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _warm(self, document_id: str) -> bool:
        try:
            await self.get_index(document_id)
        except Exception as exc:
            logger.error(
                "index_warm_failed",
                document_id=str(document_id),
                kind=classify(exc).value,
                error=str(exc),
            )
            return False
        return True

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        await self.cache.close()
