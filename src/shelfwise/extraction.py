"""
Raw text extraction for stored books.
PDFs go through PyMuPDF; plain-text formats through LangChain's TextLoader.
"""
from __future__ import annotations

import asyncio
from pathlib import Path

import fitz
from langchain_community.document_loaders import TextLoader

from .exceptions import DocumentNotFoundError, ExtractionError
from .observability import get_logger

TEXT_SUFFIXES = {".txt", ".md", ".text"}
SUPPORTED_SUFFIXES = TEXT_SUFFIXES | {".pdf"}
logger = get_logger(__name__)


def _extract_pdf(path: Path) -> str:
    with fitz.open(str(path)) as pdf:
        pages = [page.get_text("text") for page in pdf]
    return "\n\n".join(page.strip("\n") for page in pages if page.strip())


def _extract_plain(path: Path) -> str:
    docs = TextLoader(str(path), encoding="utf-8").load()
    return "\n\n".join(doc.page_content for doc in docs)


def extract_text(path: str | Path, document_id: str = "") -> str:
    """Returns the full text of a stored book."""
    source = Path(path)
    if not source.is_file():
        raise DocumentNotFoundError(document_id or str(source), details={"source": str(source)})

    suffix = source.suffix.lower()
    if suffix not in SUPPORTED_SUFFIXES:
        raise ExtractionError(str(source), f"unsupported file type '{suffix}'")
    try:
        text = _extract_pdf(source) if suffix == ".pdf" else _extract_plain(source)
    except Exception as exc:
        raise ExtractionError(str(source), str(exc)) from exc

    logger.info("text_extracted", source=str(source), characters=len(text))
    return text


async def aextract_text(path: str | Path, document_id: str = "") -> str:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, extract_text, path, document_id)
