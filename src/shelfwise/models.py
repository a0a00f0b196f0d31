"""
Core data types shared by the indexing and query pipeline.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Literal

Role = Literal["user", "assistant"]


@dataclass(frozen=True)
class Chunk:
    """A contiguous span of a document's text.

    ``start``/``end`` are character offsets into the extracted text, so
    ``source_text[chunk.start:chunk.end] == chunk.text``.
    """

    index: int
    text: str
    start: int
    end: int

    @property
    def length(self) -> int:
        return len(self.text)


@dataclass(frozen=True)
class ScoredChunk:
    chunk: Chunk
    score: float


@dataclass(frozen=True)
class RetrievalResult:
    """Chunks for one query, most relevant first."""

    hits: tuple[ScoredChunk, ...] = ()

    def __len__(self) -> int:
        return len(self.hits)

    def __iter__(self) -> Iterator[ScoredChunk]:
        return iter(self.hits)

    @property
    def chunks(self) -> list[Chunk]:
        return [hit.chunk for hit in self.hits]

    @property
    def indices(self) -> list[int]:
        return [hit.chunk.index for hit in self.hits]


@dataclass(frozen=True)
class ConversationTurn:
    role: Role
    text: str

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ConversationTurn":
        role = str(raw.get("role", "")).strip().lower()
        if role not in {"user", "assistant"}:
            raise ValueError(f"unsupported conversation role: {role!r}")
        return cls(role=role, text=str(raw.get("text", "")))


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


@dataclass(frozen=True)
class DocumentMetadata:
    """Descriptive fields for a registered book."""

    document_id: str
    title: str
    author: str = ""
    year: str = ""
    genre: str = ""
    source_path: str = ""
    is_indexed: bool = False
    registered_at: str = field(default_factory=_utcnow_iso)

    def to_dict(self) -> dict[str, Any]:
        return {
            "documentId": self.document_id,
            "title": self.title,
            "author": self.author,
            "year": self.year,
            "genre": self.genre,
            "isIndexed": self.is_indexed,
            "registeredAt": self.registered_at,
        }
