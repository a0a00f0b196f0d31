"""
Top-K similarity retrieval over a built EmbeddingIndex.
"""
from __future__ import annotations

from typing import Sequence

import numpy as np

from .config import RETRIEVAL_K
from .embedding_index import EmbeddingIndex
from .models import RetrievalResult, ScoredChunk


def rank(index: EmbeddingIndex, query_vector: Sequence[float], k: int = RETRIEVAL_K) -> RetrievalResult:
    """Orders chunks by cosine similarity, ties going to the earlier chunk."""
    if int(k) < 1:
        raise ValueError(f"k must be a positive integer, got {k!r}")
    if index.is_empty:
        return RetrievalResult()

    scores = index.similarities(query_vector)
    positions = np.arange(len(scores))
    # lexsort uses the last key as primary: descending score, then ascending position.
    order = np.lexsort((positions, -scores))[: int(k)]
    return RetrievalResult(
        hits=tuple(ScoredChunk(chunk=index.chunks[i], score=float(scores[i])) for i in order)
    )


async def retrieve(index: EmbeddingIndex, query_text: str, k: int = RETRIEVAL_K) -> RetrievalResult:
    """Embeds the query with the index's own embedder and returns the top ``k`` chunks."""
    if int(k) < 1:
        raise ValueError(f"k must be a positive integer, got {k!r}")
    if index.is_empty:
        return RetrievalResult()
    query_vector = await index.embeddings.aembed_query(query_text)
    return rank(index, query_vector, k)
