"""
Language-model providers, selection policy and response normalization.

Selection happens once, when the invoker is constructed: the first provider
whose credential is present wins (Groq, then Gemini, then a local Ollama model
when explicitly enabled). A request makes exactly one completion call; there
is no retry and no per-request fallback to another provider.
"""
from __future__ import annotations

import re
import time
from typing import Any, Protocol, Sequence, runtime_checkable

from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_groq import ChatGroq
from langchain_ollama import OllamaLLM

from .config import (
    GEMINI_MODEL_NAME,
    GOOGLE_API_KEY,
    GROQ_API_KEY,
    GROQ_MODEL_NAME,
    LLM_TEMPERATURE,
    LOCAL_MODEL_NAME,
    USE_LOCAL_LLM,
)
from .context_assembler import BOOK_QA_PROMPT, PromptPayload
from .exceptions import ConfigurationError, EmptyResponseError
from .observability import get_logger

_THINK_RE = re.compile(r"<think>.*?</think>", flags=re.DOTALL)
logger = get_logger(__name__)


@runtime_checkable
class CompletionProvider(Protocol):
    name: str
    model_name: str

    @property
    def configured(self) -> bool:
        ...

    async def complete(self, payload: PromptPayload) -> Any:
        ...


class _LangChainProvider:
    """Renders BOOK_QA_PROMPT and pipes it into a lazily created LangChain model."""

    name = "base"

    def __init__(self, model_name: str, api_key: str = "", temperature: float = LLM_TEMPERATURE):
        self.model_name = model_name
        self.api_key = (api_key or "").strip()
        self.temperature = float(temperature)
        self._llm = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _build_llm(self):
        raise NotImplementedError

    @property
    def llm(self):
        if self._llm is None:
            self._llm = self._build_llm()
        return self._llm

    async def complete(self, payload: PromptPayload) -> Any:
        chain = BOOK_QA_PROMPT | self.llm
        return await chain.ainvoke(payload.as_prompt_vars())

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model_name={self.model_name!r}, configured={self.configured})"


class GroqProvider(_LangChainProvider):
    name = "groq"

    def __init__(self, api_key: str = GROQ_API_KEY, model_name: str = GROQ_MODEL_NAME, **kwargs):
        super().__init__(model_name=model_name, api_key=api_key, **kwargs)

    def _build_llm(self):
        return ChatGroq(
            model=self.model_name,
            api_key=self.api_key,
            temperature=self.temperature,
            max_retries=0,
        )


class GeminiProvider(_LangChainProvider):
    name = "gemini"

    def __init__(self, api_key: str = GOOGLE_API_KEY, model_name: str = GEMINI_MODEL_NAME, **kwargs):
        super().__init__(model_name=model_name, api_key=api_key, **kwargs)

    def _build_llm(self):
        return ChatGoogleGenerativeAI(
            model=self.model_name,
            google_api_key=self.api_key,
            temperature=self.temperature,
            max_retries=0,
        )


class OllamaProvider(_LangChainProvider):
    """Local model; needs no credential, so it must be switched on explicitly."""

    name = "ollama"

    def __init__(self, enabled: bool = USE_LOCAL_LLM, model_name: str = LOCAL_MODEL_NAME, **kwargs):
        super().__init__(model_name=model_name, **kwargs)
        self.enabled = bool(enabled)

    @property
    def configured(self) -> bool:
        return self.enabled

    def _build_llm(self):
        return OllamaLLM(model=self.model_name, temperature=self.temperature)


def default_providers() -> list[CompletionProvider]:
    return [GroqProvider(), GeminiProvider(), OllamaProvider()]


def select_provider(providers: Sequence[CompletionProvider]) -> CompletionProvider:
    """Returns the first configured provider; fails before any network call if none is."""
    for provider in providers:
        if provider.configured:
            return provider
    raise ConfigurationError(
        "no language-model provider is configured",
        details={"checked": [getattr(p, "name", type(p).__name__) for p in providers]},
    )


def _content_to_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for part in content:
            if isinstance(part, str):
                parts.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                parts.append(str(part.get("text", "")))
        return "".join(parts)
    if content is None:
        return ""
    return str(content)


def normalize_response(raw: Any) -> str:
    """Reduces chat messages, plain strings and multi-part content to clean answer text."""
    content = getattr(raw, "content", raw)
    text = _THINK_RE.sub("", _content_to_text(content)).strip()
    if not text:
        raise EmptyResponseError("model returned an empty response")
    return text


class ModelInvoker:
    def __init__(self, providers: Sequence[CompletionProvider] | None = None):
        self.provider = select_provider(list(providers) if providers is not None else default_providers())
        logger.info("model_provider_selected", provider=self.provider.name, model=self.provider.model_name)

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    async def invoke(self, payload: PromptPayload) -> str:
        start = time.perf_counter()
        raw = await self.provider.complete(payload)
        answer = normalize_response(raw)
        logger.info(
            "model_invoked",
            provider=self.provider.name,
            model=self.provider.model_name,
            elapsed_ms=round((time.perf_counter() - start) * 1000.0, 1),
            answer_chars=len(answer),
        )
        return answer
