"""
In-memory vector index for a single book.
"""
from __future__ import annotations

import time
from typing import Sequence

import numpy as np
from langchain_core.embeddings import Embeddings

from .models import Chunk
from .observability import get_logger

logger = get_logger(__name__)


def embedder_signature(embeddings: Embeddings) -> str:
    """Identifies an embedding space by client class and model name."""
    model = getattr(embeddings, "model", None) or getattr(embeddings, "model_name", None) or ""
    return f"{type(embeddings).__name__}:{model}"


class EmbeddingIndex:
    """(Chunk, vector) pairs for one document plus the embedder that produced them.

    Vectors are stored L2-normalised, so a dot product with a normalised query
    vector is the cosine similarity. Zero vectors score 0 against everything.
    """

    def __init__(
        self,
        document_id: str,
        chunks: Sequence[Chunk],
        vectors: Sequence[Sequence[float]] | np.ndarray,
        embeddings: Embeddings,
        signature: str | None = None,
    ):
        if len(chunks) != len(vectors):
            raise ValueError(
                f"chunk/vector count mismatch for {document_id}: {len(chunks)} != {len(vectors)}"
            )
        self.document_id = str(document_id)
        self.chunks: tuple[Chunk, ...] = tuple(chunks)
        self.embeddings = embeddings
        self.signature = signature or embedder_signature(embeddings)
        if self.chunks:
            matrix = np.asarray(vectors, dtype=np.float32)
            if matrix.ndim != 2:
                raise ValueError(f"embedding vectors for {document_id} have inconsistent dimensions")
        else:
            matrix = np.zeros((0, 0), dtype=np.float32)
        self._matrix = _normalise_rows(matrix)

    @classmethod
    async def build(
        cls,
        document_id: str,
        chunks: Sequence[Chunk],
        embeddings: Embeddings,
        signature: str | None = None,
    ) -> "EmbeddingIndex":
        """Embeds every chunk once and wraps the result in a new index."""
        start = time.perf_counter()
        texts = [chunk.text for chunk in chunks]
        vectors = await embeddings.aembed_documents(texts) if texts else []
        index = cls(document_id, chunks, vectors, embeddings, signature=signature)
        logger.info(
            "embedding_index_built",
            document_id=str(document_id),
            chunks=len(chunks),
            dimension=index.dimension,
            elapsed_ms=round((time.perf_counter() - start) * 1000.0, 1),
        )
        return index

    def __len__(self) -> int:
        return len(self.chunks)

    @property
    def is_empty(self) -> bool:
        return not self.chunks

    @property
    def dimension(self) -> int:
        return int(self._matrix.shape[1]) if self._matrix.size else 0

    def similarities(self, query_vector: Sequence[float]) -> np.ndarray:
        """Cosine similarity of ``query_vector`` against every chunk, in chunk order."""
        if self.is_empty:
            return np.zeros(0, dtype=np.float32)
        query = np.asarray(query_vector, dtype=np.float32).reshape(-1)
        if query.shape[0] != self.dimension:
            raise ValueError(
                f"query vector has dimension {query.shape[0]}, index {self.document_id} expects {self.dimension}"
            )
        norm = float(np.linalg.norm(query))
        if norm == 0.0:
            return np.zeros(len(self.chunks), dtype=np.float32)
        return self._matrix @ (query / norm)


def _normalise_rows(matrix: np.ndarray) -> np.ndarray:
    if matrix.size == 0:
        return matrix
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    safe = np.where(norms == 0.0, 1.0, norms)
    return matrix / safe
