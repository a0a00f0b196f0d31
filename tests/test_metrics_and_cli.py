import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from shelfwise import cli
from shelfwise.document_registry import DocumentRegistry
from shelfwise.metrics import MetricsCollector


class TestMetricsCollector(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.collector = MetricsCollector(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_empty_summary(self):
        summary = self.collector.get_summary()
        self.assertEqual(summary["throughput"]["total_requests"], 0)
        self.assertEqual(summary["latency"]["min_ms"], 0.0)
        self.assertEqual(summary["errors"]["rate_percent"], 0.0)
        self.assertGreater(summary["memory"]["rss_mb"], 0)

    def test_latency_and_error_breakdown(self):
        self.collector.record_request(100.0, success=True, model="llama", document_id="isbn-1")
        self.collector.record_request(300.0, success=False, error_kind="RateLimited", document_id="isbn-1")
        self.collector.record_request(200.0, success=False, error_kind="NotFound")
        summary = self.collector.get_summary()
        self.assertEqual(summary["latency"], {"avg_ms": 200.0, "min_ms": 100.0, "max_ms": 300.0})
        self.assertEqual(summary["errors"]["by_kind"], {"RateLimited": 1, "NotFound": 1})
        self.assertEqual(summary["errors"]["rate_percent"], 66.67)
        self.assertEqual(summary["models"], {"llama": 1})

    def test_requests_appended_to_jsonl(self):
        self.collector.record_request(12.5, success=False, error_kind="AuthFailure")
        lines = (Path(self.tmp.name) / "metrics.jsonl").read_text(encoding="utf-8").splitlines()
        self.assertEqual(len(lines), 1)
        entry = json.loads(lines[0])
        self.assertEqual((entry["success"], entry["error_kind"]), (False, "AuthFailure"))


class TestCli(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        db_path = self.root / "registry.sqlite"
        books = self.root / "books"
        self.registry_patch = patch.object(
            cli,
            "DocumentRegistry",
            side_effect=lambda: DocumentRegistry(db_path, storage_dir=books),
        )
        self.registry_patch.start()
        self.db_path, self.books = db_path, books

    def tearDown(self):
        self.registry_patch.stop()
        self.tmp.cleanup()

    def test_register_then_list(self):
        book = self.root / "river.txt"
        book.write_text("Chapter 1. The river.", encoding="utf-8")
        self.assertEqual(cli.main(["register", str(book), "--title", "The River", "--document-id", "isbn-7"]), 0)

        registry = DocumentRegistry(self.db_path, storage_dir=self.books)
        try:
            self.assertEqual(registry.get("isbn-7").title, "The River")
        finally:
            registry.close()
        with patch.object(cli.console, "print") as printed:
            self.assertEqual(cli.main(["documents"]), 0)
        self.assertTrue(printed.called)

    def test_register_missing_file_fails(self):
        with patch.object(cli.console, "print"):
            self.assertEqual(cli.main(["register", str(self.root / "absent.pdf")]), 1)

    def test_parser_requires_command(self):
        with self.assertRaises(SystemExit):
            cli.build_parser().parse_args([])


if __name__ == "__main__":
    unittest.main()
