import json
import tempfile
import unittest
from pathlib import Path

from shelfwise.document_registry import DocumentRegistry
from shelfwise.exceptions import DocumentNotFoundError, InvalidRequestError
from shelfwise.models import DocumentMetadata
from shelfwise.storage_provider import safe_file_name


class TestDocumentRegistry(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.db_path = self.root / "registry.sqlite"
        self.registry = DocumentRegistry(self.db_path, storage_dir=self.root / "books")

    def tearDown(self):
        self.registry.close()
        self.tmp.cleanup()

    def _write_book(self, name="book.txt", text="Chapter 1. Alpha."):
        path = self.root / name
        path.write_text(text, encoding="utf-8")
        return path

    def test_register_file_copies_into_storage(self):
        metadata = self.registry.register_file(self._write_book(), title="Alpha Book", author="A. Writer")
        self.assertTrue(metadata.document_id.startswith("doc_"))
        stored = Path(metadata.source_path)
        self.assertEqual(stored.parent, self.root / "books")
        self.assertEqual(stored.read_text(encoding="utf-8"), "Chapter 1. Alpha.")
        self.assertEqual(self.registry.get(metadata.document_id), metadata)

    def test_register_file_defaults_title_to_stem(self):
        metadata = self.registry.register_file(self._write_book("moby_dick.txt"), document_id="isbn-42")
        self.assertEqual(metadata.document_id, "isbn-42")
        self.assertEqual(metadata.title, "moby_dick")

    def test_missing_source_file(self):
        with self.assertRaises(DocumentNotFoundError):
            self.registry.register_file(self.root / "absent.pdf")

    def test_unknown_id_raises_not_found(self):
        with self.assertRaises(DocumentNotFoundError) as ctx:
            self.registry.get("isbn-unknown")
        self.assertEqual(ctx.exception.document_id, "isbn-unknown")

    def test_empty_id_rejected(self):
        with self.assertRaises(InvalidRequestError):
            self.registry.register(DocumentMetadata(document_id="  ", title="Nothing"))

    def test_reregistering_keeps_indexed_flag(self):
        metadata = self.registry.register(DocumentMetadata(document_id="isbn-1", title="Old"))
        self.registry.mark_indexed(metadata.document_id)
        updated = self.registry.register(DocumentMetadata(document_id="isbn-1", title="New"))
        self.assertEqual(updated.title, "New")
        self.assertTrue(updated.is_indexed)

    def test_upload_assigns_fresh_identity(self):
        first = self.registry.register_upload(b"Chapter 1. Alpha.", "../My Book.txt", author="Someone")
        second = self.registry.register_upload(b"Chapter 1. Alpha.", "../My Book.txt")
        self.assertNotEqual(first.document_id, second.document_id)
        self.assertEqual(first.title, "My Book")
        self.assertEqual(Path(first.source_path).parent, self.root / "books")
        self.assertTrue(first.source_path.endswith(".txt"))

    def test_list_documents_and_to_dict(self):
        self.registry.register(DocumentMetadata(document_id="b", title="B", registered_at="2024-01-02T00:00:00+00:00"))
        self.registry.register(DocumentMetadata(document_id="a", title="A", registered_at="2024-01-01T00:00:00+00:00"))
        docs = self.registry.list_documents()
        self.assertEqual([d.document_id for d in docs], ["a", "b"])
        self.assertEqual(
            set(docs[0].to_dict()),
            {"documentId", "title", "author", "year", "genre", "isIndexed", "registeredAt"},
        )

    def test_catalog_entries_keyed_by_isbn(self):
        self._write_book("river.txt", "Chapter 1. The river.")
        catalog = self.root / "catalog.json"
        catalog.write_text(
            json.dumps(
                [
                    {"isbn": "9780000000001", "title": "The River", "author": "A. Writer", "year": 1999, "path": "river.txt"},
                    {"documentId": "custom-id", "title": "Untracked"},
                    {"title": "No identity"},
                ]
            ),
            encoding="utf-8",
        )
        self.assertEqual(self.registry.load_catalog(catalog), 2)
        river = self.registry.get("9780000000001")
        self.assertEqual(river.year, "1999")
        self.assertEqual(Path(river.source_path), (self.root / "river.txt").resolve())
        self.assertEqual(self.registry.get("custom-id").source_path, "")

    def test_schema_survives_reopen(self):
        self.registry.register(DocumentMetadata(document_id="isbn-1", title="Kept"))
        self.registry.close()
        self.registry = DocumentRegistry(self.db_path, storage_dir=self.root / "books")
        self.assertEqual(self.registry.get("isbn-1").title, "Kept")

    def test_safe_file_name(self):
        self.assertEqual(safe_file_name("../../etc/passwd"), "passwd")
        self.assertEqual(safe_file_name("my book (1).pdf"), "my_book_1_.pdf")
        self.assertEqual(safe_file_name(""), "document")


if __name__ == "__main__":
    unittest.main()
