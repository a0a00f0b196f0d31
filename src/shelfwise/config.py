# /shelfwise/config.py
"""
Centralized configuration for the book Q&A service.
Includes chunking and retrieval knobs, provider credentials, model names and paths.
"""
import os
from pathlib import Path
from dotenv import load_dotenv
from rich.console import Console

from .exceptions import ConfigurationError
from .observability import configure_logging

# ==============================================================================
# CONSOLE & ENVIRONMENT
# ==============================================================================
console = Console()
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return bool(default)
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int, minimum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None:
        return int(default)
    try:
        value = int(raw)
    except ValueError:
        return int(default)
    if minimum is not None:
        value = max(minimum, value)
    return value


def _env_float(name: str, default: float, minimum: float = 0.0) -> float:
    raw = os.getenv(name)
    if raw is None:
        return float(default)
    try:
        value = float(raw)
    except ValueError:
        return float(default)
    return max(float(minimum), value)


def _env_secret(name: str) -> str:
    """Returns a stripped credential, treating template placeholders as unset."""
    value = (os.getenv(name) or "").strip()
    if value in {"", "YOUR_API_KEY_HERE"}:
        return ""
    return value


# ==============================================================================
# GLOBAL CONFIGURATION
# ==============================================================================
# --- Chunking Configuration ---
# Not clamped here: validate_chunking() rejects bad pairs at startup.
CHUNK_SIZE = _env_int("CHUNK_SIZE", 3000)
CHUNK_OVERLAP = _env_int("CHUNK_OVERLAP", 500)

# --- Retrieval / Prompt Tuning ---
RETRIEVAL_K = _env_int("RETRIEVAL_K", 4, minimum=1)
HISTORY_TURN_LIMIT = _env_int("HISTORY_TURN_LIMIT", 10, minimum=0)
INDEX_CACHE_MAX_ENTRIES = _env_int("INDEX_CACHE_MAX_ENTRIES", 0, minimum=0)  # 0 keeps every index

# --- Provider Credentials ---
GROQ_API_KEY = _env_secret("GROQ_API_KEY")
GOOGLE_API_KEY = _env_secret("GOOGLE_API_KEY")
USE_LOCAL_LLM = _env_bool("USE_LOCAL_LLM", False)   # Ollama, only when no hosted key is present

# --- Model Names ---
GROQ_MODEL_NAME = os.getenv("GROQ_MODEL_NAME", "llama-3.3-70b-versatile")
GEMINI_MODEL_NAME = os.getenv("GEMINI_MODEL_NAME", "gemini-2.0-flash")
LOCAL_MODEL_NAME = os.getenv("LOCAL_MODEL_NAME", "granite3.3:2b")
GEMINI_EMBEDDING_MODEL = os.getenv("GEMINI_EMBEDDING_MODEL", "models/gemini-embedding-001")
EMBEDDING_MODEL_NAME = os.getenv("EMBEDDING_MODEL_NAME", "sentence-transformers/all-MiniLM-L6-v2")
EMBEDDING_DEVICE = os.getenv("EMBEDDING_DEVICE", "cpu")
LLM_TEMPERATURE = _env_float("LLM_TEMPERATURE", 0.3)

# --- Path Configuration ---
# Data directory is at ../../data relative to this file (src/shelfwise/config.py)
_BASE_DIR = Path(__file__).resolve().parent.parent.parent
_DATA_DIR = _BASE_DIR / "data"

STORAGE_DIR = Path(os.getenv("STORAGE_DIR", str(_DATA_DIR / "books")))
CACHE_DIR = Path(os.getenv("CACHE_DIR", str(_DATA_DIR / "runtime_cache")))
REGISTRY_DB_PATH = Path(os.getenv("REGISTRY_DB_PATH", str(CACHE_DIR / "documents.sqlite")))
CATALOG_PATH = os.getenv("CATALOG_PATH", "")
METRICS_DIR = Path(os.getenv("METRICS_DIR", str(CACHE_DIR / "logs")))

# --- Server ---
HOST = os.getenv("HOST", "0.0.0.0")
PORT = _env_int("PORT", 5000, minimum=1)

# --- Create necessary directories ---
CACHE_DIR.mkdir(parents=True, exist_ok=True)
LOG_PATH = Path(os.getenv("LOG_PATH", str(CACHE_DIR / "app.log")))
LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
configure_logging(LOG_PATH)


def validate_chunking(chunk_size: int, chunk_overlap: int) -> None:
    """Rejects chunking settings that cannot produce bounded, overlapping chunks."""
    if int(chunk_size) <= 0:
        raise ConfigurationError(
            "chunk size must be a positive integer",
            details={"chunk_size": chunk_size},
        )
    if int(chunk_overlap) <= 0:
        raise ConfigurationError(
            "chunk overlap must be a positive integer",
            details={"chunk_overlap": chunk_overlap},
        )
    if int(chunk_overlap) >= int(chunk_size):
        raise ConfigurationError(
            "chunk overlap must be smaller than chunk size",
            details={"chunk_size": chunk_size, "chunk_overlap": chunk_overlap},
        )
