"""
Builds the structured prompt payload from retrieved chunks, bounded
conversation history and book metadata.

The answer policy below is an instruction to the model, not something this
module verifies. Chapter scoping and verbatim paragraph reproduction depend
on the model following it.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Sequence

from langchain_core.prompts import ChatPromptTemplate

from .config import HISTORY_TURN_LIMIT
from .models import ConversationTurn, DocumentMetadata, RetrievalResult

CHUNK_SEPARATOR = "\n---\n"
NOT_FOUND_ANSWER = "I'm sorry, I couldn't find specific information about that in this part of the book."
NO_CONTEXT_TEXT = "No content from this book was found for this question."
NO_HISTORY_TEXT = "(no previous conversation)"

ANSWER_POLICY = f"""Answer ONLY using the provided context from the book. Do not use outside knowledge about the book or its author.
If the question names a chapter, use only context that belongs to that chapter and disregard retrieved text from other chapters.
If the question asks for the next or previous paragraph (or another passage identified by its position), reproduce that passage verbatim from the context instead of summarizing it.
If the requested information is not in the context, reply exactly: "{NOT_FOUND_ANSWER}"
"""

BOOK_QA_PROMPT = ChatPromptTemplate.from_template(
    """You are a professional book assistant for the book "{title}" by {author}.
You have access to snippets from the book being read by the user.

{policy}
Conversation so far:
{history}

Context:
{context}

User Question: {question}
"""
)


@dataclass(frozen=True)
class PromptPayload:
    title: str
    author: str
    history: str
    context: str
    question: str

    def as_prompt_vars(self) -> dict[str, str]:
        return {**asdict(self), "policy": ANSWER_POLICY}


def bound_history(
    history: Sequence[ConversationTurn] | None,
    limit: int = HISTORY_TURN_LIMIT,
) -> list[ConversationTurn]:
    """Keeps the ``limit`` most recent turns, oldest first."""
    turns = list(history or [])
    if limit <= 0:
        return []
    return turns[-limit:]


def format_history(turns: Sequence[ConversationTurn]) -> str:
    if not turns:
        return NO_HISTORY_TEXT
    lines = []
    for turn in turns:
        speaker = "User" if turn.role == "user" else "Assistant"
        lines.append(f"{speaker}: {turn.text.strip()}")
    return "\n".join(lines)


def format_context(retrieved: RetrievalResult) -> str:
    if not len(retrieved):
        return NO_CONTEXT_TEXT
    return CHUNK_SEPARATOR.join(hit.chunk.text.strip() for hit in retrieved)


def assemble(
    retrieved: RetrievalResult,
    history: Sequence[ConversationTurn] | None,
    metadata: DocumentMetadata,
    question: str,
    *,
    history_limit: int = HISTORY_TURN_LIMIT,
) -> PromptPayload:
    return PromptPayload(
        title=metadata.title or "Untitled",
        author=metadata.author or "an unknown author",
        history=format_history(bound_history(history, history_limit)),
        context=format_context(retrieved),
        question=question.strip(),
    )
