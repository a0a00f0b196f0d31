"""
Splits extracted book text into overlapping chunks for embedding.

Splitting walks a separator ladder (paragraph, line, sentence, word) and only
falls back to hard character cuts when a span has no usable boundary. Chunks
keep their exact whitespace so they remain substrings of the source text.
"""
from __future__ import annotations

from typing import Sequence

from langchain_text_splitters import RecursiveCharacterTextSplitter

from .config import CHUNK_OVERLAP, CHUNK_SIZE, validate_chunking
from .models import Chunk

BOUNDARY_SEPARATORS = ["\n\n", "\n", ". ", "? ", "! ", "; ", " ", ""]


class Segmenter:
    """Chunking settings validated once, reused for every document."""

    def __init__(self, chunk_size: int = CHUNK_SIZE, chunk_overlap: int = CHUNK_OVERLAP):
        validate_chunking(chunk_size, chunk_overlap)
        self.chunk_size = int(chunk_size)
        self.chunk_overlap = int(chunk_overlap)
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
            length_function=len,
            separators=BOUNDARY_SEPARATORS,
            keep_separator="end",
            strip_whitespace=False,
            add_start_index=True,
        )

    def segment(self, text: str) -> list[Chunk]:
        if not text or not text.strip():
            return []

        # start_index is searched from (previous end - overlap), so repeated runs
        # earlier in the text cannot capture a later chunk.
        chunks: list[Chunk] = []
        for doc in self._splitter.create_documents([text]):
            piece = doc.page_content
            if not piece.strip():
                continue
            start = int(doc.metadata["start_index"])
            chunks.append(Chunk(index=len(chunks), text=piece, start=start, end=start + len(piece)))
        return chunks


def segment(text: str, max_chunk_size: int, overlap: int) -> list[Chunk]:
    """Splits ``text`` into document-ordered chunks of at most ``max_chunk_size`` characters."""
    return Segmenter(max_chunk_size, overlap).segment(text)


def reconstruct(chunks: Sequence[Chunk]) -> str:
    """Stitches chunks back into the source text, dropping the overlapping prefixes."""
    parts: list[str] = []
    covered = 0
    for chunk in sorted(chunks, key=lambda c: c.start):
        if chunk.end <= covered:
            continue
        parts.append(chunk.text[max(0, covered - chunk.start):])
        covered = chunk.end
    return "".join(parts)
