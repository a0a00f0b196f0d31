"""
Embedder selection.

Hosted Gemini embeddings are used when a Google key is configured; otherwise a
local sentence-transformers model keeps the service usable offline. Every
index records the signature of the embedder that built it.
"""
from __future__ import annotations

from dataclasses import dataclass

from langchain_core.embeddings import Embeddings
from langchain_google_genai import GoogleGenerativeAIEmbeddings
from langchain_huggingface import HuggingFaceEmbeddings

from .config import (
    EMBEDDING_DEVICE,
    EMBEDDING_MODEL_NAME,
    GEMINI_EMBEDDING_MODEL,
    GOOGLE_API_KEY,
)
from .embedding_index import embedder_signature
from .observability import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class EmbeddingBackend:
    embeddings: Embeddings
    signature: str


def build_embedding_backend(google_api_key: str = GOOGLE_API_KEY) -> EmbeddingBackend:
    if google_api_key:
        embeddings: Embeddings = GoogleGenerativeAIEmbeddings(
            model=GEMINI_EMBEDDING_MODEL,
            google_api_key=google_api_key,
        )
    else:
        embeddings = HuggingFaceEmbeddings(
            model_name=EMBEDDING_MODEL_NAME,
            model_kwargs={"device": EMBEDDING_DEVICE},
        )
    backend = EmbeddingBackend(embeddings=embeddings, signature=embedder_signature(embeddings))
    logger.info("embedding_backend_selected", signature=backend.signature)
    return backend
