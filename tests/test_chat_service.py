import asyncio
import tempfile
import unittest
from pathlib import Path

from helpers import CHAPTER_TEXT, BagOfWordsEmbeddings, FakeProvider

from shelfwise.chat_service import BookChatService
from shelfwise.document_registry import DocumentRegistry
from shelfwise.exceptions import ConfigurationError, DocumentNotFoundError, InvalidRequestError
from shelfwise.extraction import aextract_text
from shelfwise.index_cache import IndexCache
from shelfwise.models import ConversationTurn
from shelfwise.providers import ModelInvoker
from shelfwise.segmenter import Segmenter


def _on_event_loop():
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return False
    return True


class _LoopCheckingRegistry(DocumentRegistry):
    """Records whether each lookup or index update ran on the event loop thread."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls_on_loop = []

    def get(self, document_id):
        self.calls_on_loop.append(("get", _on_event_loop()))
        return super().get(document_id)

    def mark_indexed(self, document_id):
        self.calls_on_loop.append(("mark_indexed", _on_event_loop()))
        return super().mark_indexed(document_id)


class _CountingExtractor:
    def __init__(self):
        self.calls = 0

    async def __call__(self, path, document_id):
        self.calls += 1
        await asyncio.sleep(0.01)
        return await aextract_text(path, document_id)


class TestBookChatService(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name)
        self.registry = DocumentRegistry(self.root / "registry.sqlite", storage_dir=self.root / "books")
        book = self.root / "two_chapters.txt"
        book.write_text(CHAPTER_TEXT, encoding="utf-8")
        self.metadata = self.registry.register_file(book, title="Two Chapters", author="A. Writer", document_id="isbn-2")
        self.provider = FakeProvider(response="Chapter 2 is about Beta.")
        self.extractor = _CountingExtractor()
        self.service = self._service()

    def _service(self, invoker="default", retrieval_k=1):
        if invoker == "default":
            invoker = ModelInvoker([self.provider])
        return BookChatService(
            self.registry,
            BagOfWordsEmbeddings(),
            invoker,
            segmenter=Segmenter(20, 5),
            extractor=self.extractor,
            retrieval_k=retrieval_k,
        )

    async def asyncTearDown(self):
        await self.service.aclose()

    def tearDown(self):
        self.registry.close()
        self.tmp.cleanup()

    async def test_chapter_question_retrieves_matching_chunk(self):
        answer = await self.service.answer("isbn-2", "What happens in Chapter 2?")
        self.assertEqual(answer.response, "Chapter 2 is about Beta.")
        self.assertEqual(len(answer.retrieved), 1)
        self.assertIn("Chapter 2", answer.retrieved.chunks[0].text)
        self.assertIn("Beta", answer.payload.context)
        self.assertEqual(answer.payload.title, "Two Chapters")
        self.assertEqual(answer.model, "fake-model")
        self.assertTrue(self.registry.get("isbn-2").is_indexed)

    async def test_book_segments_into_multiple_chunks(self):
        index = await self.service.get_index("isbn-2")
        self.assertGreaterEqual(len(index), 2)

    async def test_repeated_requests_are_idempotent(self):
        first = await self.service.answer("isbn-2", "chapter beta")
        second = await self.service.answer("isbn-2", "chapter beta")
        self.assertEqual(first.retrieved.indices, second.retrieved.indices)
        self.assertEqual(first.payload, second.payload)
        self.assertEqual(self.extractor.calls, 1)

    async def test_concurrent_first_requests_build_once(self):
        answers = await asyncio.gather(*(self.service.answer("isbn-2", "Chapter 2?") for _ in range(6)))
        self.assertEqual(self.extractor.calls, 1)
        self.assertEqual(len({tuple(a.retrieved.indices) for a in answers}), 1)
        self.assertEqual(self.service.cache.stats()["builds"], 1)

    async def test_history_is_forwarded_and_bounded(self):
        service = BookChatService(
            self.registry,
            BagOfWordsEmbeddings(),
            ModelInvoker([self.provider]),
            segmenter=Segmenter(20, 5),
            extractor=self.extractor,
            history_limit=2,
        )
        history = [
            ConversationTurn("user", "Hi"),
            ConversationTurn("assistant", "Hello"),
            ConversationTurn("user", "Tell me about chapter 1"),
            ConversationTurn("assistant", "Alpha."),
        ]
        answer = await service.answer("isbn-2", "And chapter 2?", history)
        self.assertEqual(answer.payload.history, "User: Tell me about chapter 1\nAssistant: Alpha.")
        await service.aclose()

    async def test_unregistered_document(self):
        with self.assertRaises(DocumentNotFoundError):
            await self.service.answer("isbn-unknown", "Chapter 2?")
        self.assertEqual(self.provider.payloads, [])

    async def test_missing_stored_file_is_not_found_and_not_cached(self):
        Path(self.metadata.source_path).unlink()
        with self.assertRaises(DocumentNotFoundError):
            await self.service.answer("isbn-2", "Chapter 2?")
        self.assertNotIn(self.service.index_key("isbn-2"), self.service.cache)

    async def test_blank_inputs_rejected(self):
        with self.assertRaises(InvalidRequestError):
            await self.service.answer("", "Chapter 2?")
        with self.assertRaises(InvalidRequestError):
            await self.service.answer("isbn-2", "   ")

    async def test_no_provider_fails_before_indexing(self):
        service = self._service(invoker=None)
        with self.assertRaises(ConfigurationError):
            await service.answer("isbn-2", "Chapter 2?")
        self.assertEqual(self.extractor.calls, 0)
        await service.aclose()

    async def test_provider_failure_keeps_index(self):
        self.provider.error = RuntimeError("429 quota exceeded")
        with self.assertRaises(RuntimeError):
            await self.service.answer("isbn-2", "Chapter 2?")
        self.assertIn(self.service.index_key("isbn-2"), self.service.cache)

    async def test_background_warm_builds_through_cache(self):
        warmed = await self.service.schedule_warm("isbn-2")
        self.assertTrue(warmed)
        await self.service.answer("isbn-2", "Chapter 2?")
        self.assertEqual(self.extractor.calls, 1)

    async def test_background_warm_failure_is_reported(self):
        self.assertFalse(await self.service.schedule_warm("isbn-unknown"))

    async def test_shared_cache_keeps_embedding_spaces_apart(self):
        other_embeddings = BagOfWordsEmbeddings()
        other_embeddings.model = "bag-of-words-alt"
        other = BookChatService(
            self.registry,
            other_embeddings,
            ModelInvoker([self.provider]),
            segmenter=Segmenter(20, 5),
            cache=self.service.cache,
            extractor=self.extractor,
            retrieval_k=1,
        )
        first = await self.service.get_index("isbn-2")
        second = await other.get_index("isbn-2")
        self.assertIsNot(first, second)
        self.assertIs(second.embeddings, other_embeddings)
        self.assertEqual(self.extractor.calls, 2)
        self.assertEqual(self.service.cache.stats()["builds"], 2)
        self.assertNotEqual(self.service.index_key("isbn-2"), other.index_key("isbn-2"))

        self.assertIs(await self.service.get_index("isbn-2"), first)
        self.assertIs(await other.get_index("isbn-2"), second)
        self.assertEqual(self.extractor.calls, 2)

    async def test_registry_access_runs_off_the_event_loop(self):
        registry = _LoopCheckingRegistry(self.root / "registry.sqlite", storage_dir=self.root / "books")
        service = BookChatService(
            registry,
            BagOfWordsEmbeddings(),
            ModelInvoker([self.provider]),
            segmenter=Segmenter(20, 5),
            cache=IndexCache(),
            extractor=self.extractor,
            retrieval_k=1,
        )
        try:
            await service.answer("isbn-2", "Chapter 2?")
        finally:
            await service.aclose()
            registry.close()
        self.assertEqual([name for name, _ in registry.calls_on_loop], ["get", "mark_indexed"])
        self.assertFalse(any(on_loop for _, on_loop in registry.calls_on_loop))

    def test_invalid_retrieval_k(self):
        with self.assertRaises(ValueError):
            self._service(retrieval_k=0)


if __name__ == "__main__":
    unittest.main()
