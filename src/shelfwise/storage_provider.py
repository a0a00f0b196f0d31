"""
File storage abstraction for uploaded books.
Default implementation uses the local filesystem; the protocol leaves room for object storage.
"""
from __future__ import annotations

import re
import shutil
from pathlib import Path
from typing import Protocol

_UNSAFE_NAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def safe_file_name(name: str) -> str:
    cleaned = _UNSAFE_NAME_RE.sub("_", Path(str(name or "")).name).strip("._")
    return cleaned or "document"


class FileStorageProvider(Protocol):
    @property
    def root(self) -> Path:
        ...

    def ensure_ready(self):
        ...

    def save_file(self, source_path: Path, destination_name: str) -> Path:
        ...

    def save_bytes(self, payload: bytes, destination_name: str) -> Path:
        ...


class LocalFileStorageProvider:
    def __init__(self, root: Path):
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def ensure_ready(self):
        self._root.mkdir(parents=True, exist_ok=True)

    def save_file(self, source_path: Path, destination_name: str) -> Path:
        self.ensure_ready()
        destination = self._root / safe_file_name(destination_name)
        shutil.copy2(source_path, destination)
        return destination

    def save_bytes(self, payload: bytes, destination_name: str) -> Path:
        self.ensure_ready()
        destination = self._root / safe_file_name(destination_name)
        destination.write_bytes(payload)
        return destination
