"""
Maps any failure on the chat path to a small, stable taxonomy.

Typed service exceptions map directly. Provider and transport errors are
matched on status-code attributes first, then on their lower-cased text.
Callers only ever see the fixed message for the resulting kind.
"""
from __future__ import annotations

import enum
import json

from .exceptions import (
    ConfigurationError,
    DocumentNotFoundError,
    ExtractionError,
    InvalidRequestError,
)


class ErrorKind(str, enum.Enum):
    INVALID_REQUEST = "InvalidRequest"
    NOT_FOUND = "NotFound"
    RATE_LIMITED = "RateLimited"
    AUTH_FAILURE = "AuthFailure"
    UNKNOWN = "Unknown"


USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.INVALID_REQUEST: "A document id and a question are required.",
    ErrorKind.NOT_FOUND: "The requested book could not be found.",
    ErrorKind.RATE_LIMITED: "API Rate Limit reached. Please wait 1 minute and try again.",
    ErrorKind.AUTH_FAILURE: "Invalid API Key. Please check your .env file for Gemini and Groq keys.",
    ErrorKind.UNKNOWN: "Failed to process request.",
}

HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.INVALID_REQUEST: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.RATE_LIMITED: 503,
    ErrorKind.AUTH_FAILURE: 500,
    ErrorKind.UNKNOWN: 500,
}

RATE_LIMIT_MARKERS = ("429", "quota", "rate limit", "rate_limit", "ratelimit", "resource_exhausted", "too many requests")
AUTH_MARKERS = (
    "unauthorized",
    "unauthenticated",
    "api_key",
    "api key",
    "apikey",
    "permission_denied",
    "authentication",
    "forbidden",
    "invalid_api_key",
)

_RATE_LIMIT_STATUS = {429}
_AUTH_STATUS = {401, 403}


def _status_code(error: BaseException) -> int | None:
    candidates = (
        getattr(error, "status_code", None),
        getattr(error, "code", None),
        getattr(getattr(error, "response", None), "status_code", None),
    )
    for value in candidates:
        try:
            if value is not None:
                return int(value)
        except (TypeError, ValueError):
            continue
    return None


def _error_text(error: BaseException) -> str:
    parts = [type(error).__name__, str(error)]
    body = getattr(error, "body", None)
    if body is not None:
        try:
            parts.append(json.dumps(body, default=str))
        except (TypeError, ValueError):
            parts.append(str(body))
    cause = error.__cause__ or error.__context__
    if cause is not None and cause is not error:
        parts.append(str(cause))
    return " ".join(parts).lower()


def classify(error: BaseException) -> ErrorKind:
    if isinstance(error, InvalidRequestError):
        return ErrorKind.INVALID_REQUEST
    if isinstance(error, (DocumentNotFoundError, ExtractionError, FileNotFoundError)):
        return ErrorKind.NOT_FOUND
    if isinstance(error, ConfigurationError):
        return ErrorKind.AUTH_FAILURE

    status = _status_code(error)
    if status in _RATE_LIMIT_STATUS:
        return ErrorKind.RATE_LIMITED
    if status in _AUTH_STATUS:
        return ErrorKind.AUTH_FAILURE

    text = _error_text(error)
    if any(marker in text for marker in RATE_LIMIT_MARKERS):
        return ErrorKind.RATE_LIMITED
    if any(marker in text for marker in AUTH_MARKERS):
        return ErrorKind.AUTH_FAILURE
    return ErrorKind.UNKNOWN


def user_message(kind: ErrorKind) -> str:
    return USER_MESSAGES[kind]


def http_status(kind: ErrorKind) -> int:
    return HTTP_STATUS[kind]
