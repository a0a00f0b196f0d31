# /shelfwise/document_registry.py
"""
Registry of known books: identity, descriptive metadata and the stored file
the text is extracted from. Uploads and catalog entries both land here, and
any id registered here is a valid Index Cache key.
"""
import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .config import REGISTRY_DB_PATH, STORAGE_DIR
from .db_migrations import SqliteMigration, apply_sqlite_migrations
from .exceptions import DocumentNotFoundError, InvalidRequestError
from .models import DocumentMetadata, _utcnow_iso
from .observability import get_logger
from .storage_provider import FileStorageProvider, LocalFileStorageProvider, safe_file_name

logger = get_logger(__name__)
IN_MEMORY = ":memory:"


def new_document_id() -> str:
    return f"doc_{uuid.uuid4().hex[:12]}"


class DocumentRegistry:
    """SQLite-backed DocumentMetadata store."""

    def __init__(
        self,
        db_path: str | Path | None = None,
        storage_provider: FileStorageProvider | None = None,
        storage_dir: Path = STORAGE_DIR,
    ):
        self.storage: FileStorageProvider = storage_provider or LocalFileStorageProvider(Path(storage_dir))
        raw_path = str(db_path) if db_path is not None else str(REGISTRY_DB_PATH)
        self.db_path = raw_path
        if raw_path != IN_MEMORY:
            Path(raw_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = self._connect()
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30.0)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _connection(self):
        with self._lock:
            if self._conn is None:
                raise RuntimeError("document registry connection is closed")
            try:
                yield self._conn
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def close(self):
        with self._lock:
            if self._conn is None:
                return
            self._conn.commit()
            self._conn.close()
            self._conn = None

    def _ensure_schema(self):
        migrations = [
            SqliteMigration(
                version=1,
                name="create_documents_table",
                statements=(
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        document_id TEXT PRIMARY KEY,
                        title TEXT NOT NULL,
                        author TEXT NOT NULL DEFAULT '',
                        year TEXT NOT NULL DEFAULT '',
                        genre TEXT NOT NULL DEFAULT '',
                        source_path TEXT NOT NULL DEFAULT '',
                        is_indexed INTEGER NOT NULL DEFAULT 0,
                        registered_at TEXT NOT NULL
                    )
                    """,
                    "CREATE INDEX IF NOT EXISTS idx_documents_title ON documents(title)",
                ),
            ),
        ]
        with self._connection() as conn:
            apply_sqlite_migrations(conn, component="document_registry", migrations=migrations)

    @staticmethod
    def _row_to_metadata(row: sqlite3.Row) -> DocumentMetadata:
        return DocumentMetadata(
            document_id=str(row["document_id"]),
            title=str(row["title"]),
            author=str(row["author"] or ""),
            year=str(row["year"] or ""),
            genre=str(row["genre"] or ""),
            source_path=str(row["source_path"] or ""),
            is_indexed=bool(int(row["is_indexed"] or 0)),
            registered_at=str(row["registered_at"]),
        )

    def register(self, metadata: DocumentMetadata) -> DocumentMetadata:
        """Inserts or replaces a document's metadata."""
        if not metadata.document_id.strip():
            raise InvalidRequestError("document id must not be empty", field="documentId")
        with self._connection() as conn:
            conn.execute(
                """
                INSERT INTO documents (document_id, title, author, year, genre, source_path, is_indexed, registered_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(document_id) DO UPDATE SET
                    title = excluded.title,
                    author = excluded.author,
                    year = excluded.year,
                    genre = excluded.genre,
                    source_path = excluded.source_path,
                    registered_at = excluded.registered_at
                """,
                (
                    metadata.document_id,
                    metadata.title,
                    metadata.author,
                    metadata.year,
                    metadata.genre,
                    metadata.source_path,
                    1 if metadata.is_indexed else 0,
                    metadata.registered_at,
                ),
            )
        logger.info("document_registered", document_id=metadata.document_id, title=metadata.title)
        return self.get(metadata.document_id)

    def register_file(
        self,
        source_path: str | Path,
        title: str | None = None,
        author: str = "",
        document_id: str | None = None,
    ) -> DocumentMetadata:
        """Copies a local file into storage and registers it."""
        source = Path(source_path)
        if not source.is_file():
            raise DocumentNotFoundError(str(source), details={"source": str(source)})
        doc_id = document_id or new_document_id()
        stored = self.storage.save_file(source, f"{doc_id}{source.suffix.lower()}")
        return self.register(
            DocumentMetadata(
                document_id=doc_id,
                title=title or source.stem,
                author=author,
                source_path=str(stored),
            )
        )

    def register_upload(
        self,
        payload: bytes,
        filename: str,
        title: str | None = None,
        author: str = "",
    ) -> DocumentMetadata:
        """Stores uploaded bytes under a freshly assigned identity."""
        doc_id = new_document_id()
        suffix = Path(safe_file_name(filename)).suffix.lower()
        stored = self.storage.save_bytes(payload, f"{doc_id}{suffix}")
        logger.info("document_uploaded", document_id=doc_id, bytes=len(payload), stored_file=str(stored))
        return self.register(
            DocumentMetadata(
                document_id=doc_id,
                title=title or Path(filename).stem or doc_id,
                author=author,
                source_path=str(stored),
            )
        )

    def get(self, document_id: str) -> DocumentMetadata:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM documents WHERE document_id = ?",
                (str(document_id),),
            ).fetchone()
        if row is None:
            raise DocumentNotFoundError(str(document_id))
        return self._row_to_metadata(row)

    def list_documents(self) -> list[DocumentMetadata]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT * FROM documents ORDER BY registered_at ASC, document_id ASC"
            ).fetchall()
        return [self._row_to_metadata(row) for row in rows]

    def mark_indexed(self, document_id: str):
        with self._connection() as conn:
            conn.execute(
                "UPDATE documents SET is_indexed = 1 WHERE document_id = ?",
                (str(document_id),),
            )
        logger.info("document_marked_indexed", document_id=str(document_id))

    def load_catalog(self, catalog_path: str | Path) -> int:
        """Registers books from a JSON catalog list; returns how many were registered.

        Entries are keyed by ``documentId`` or ``isbn``. Relative ``path`` values
        resolve against the catalog file's directory. Entries without a usable
        identity are skipped.
        """
        path = Path(catalog_path)
        with open(path, "r", encoding="utf-8") as handle:
            entries: list[dict[str, Any]] = json.load(handle) or []

        registered = 0
        for entry in entries:
            doc_id = str(entry.get("documentId") or entry.get("isbn") or "").strip()
            if not doc_id:
                logger.warning("catalog_entry_skipped", reason="missing_identity", title=entry.get("title"))
                continue
            source = str(entry.get("path") or "").strip()
            if source and not Path(source).is_absolute():
                source = str((path.parent / source).resolve())
            self.register(
                DocumentMetadata(
                    document_id=doc_id,
                    title=str(entry.get("title") or doc_id),
                    author=str(entry.get("author") or ""),
                    year=str(entry.get("year") or ""),
                    genre=str(entry.get("genre") or ""),
                    source_path=source,
                    registered_at=_utcnow_iso(),
                )
            )
            registered += 1
        logger.info("catalog_loaded", path=str(path), registered=registered)
        return registered
