import asyncio
import re

from langchain_core.embeddings import Embeddings
from langchain_core.messages import AIMessage

from shelfwise.embedding_index import EmbeddingIndex
from shelfwise.models import Chunk

CHAPTER_TEXT = "Chapter 1. Alpha. Chapter 2. Beta."
DEFAULT_VOCABULARY = ("chapter", "1", "2", "3", "alpha", "beta", "gamma", "dragon", "castle", "river")
_TOKEN_RE = re.compile(r"[a-z0-9]+")


class BagOfWordsEmbeddings(Embeddings):
    """Deterministic embedder: one dimension per vocabulary word, value = word count."""

    model = "bag-of-words-test"

    def __init__(self, vocabulary=DEFAULT_VOCABULARY):
        self.vocabulary = list(vocabulary)
        self.document_calls = 0

    def _vector(self, text):
        tokens = _TOKEN_RE.findall(text.lower())
        return [float(tokens.count(word)) for word in self.vocabulary]

    def embed_documents(self, texts):
        self.document_calls += 1
        return [self._vector(text) for text in texts]

    def embed_query(self, text):
        return self._vector(text)


class FakeProvider:
    """Completion provider that records payloads and returns canned output."""

    def __init__(self, name="fake", model_name="fake-model", configured=True, response="Canned answer.", error=None):
        self.name = name
        self.model_name = model_name
        self._configured = configured
        self.response = response
        self.error = error
        self.payloads = []

    @property
    def configured(self):
        return self._configured

    async def complete(self, payload):
        self.payloads.append(payload)
        if self.error is not None:
            raise self.error
        return AIMessage(content=self.response)


class CountingBuilder:
    """Index builder that counts invocations and can be held open or made to fail."""

    def __init__(self, index=None, error=None, delay=0.01):
        self.index = index if index is not None else make_index()
        self.error = error
        self.delay = delay
        self.calls = 0
        self.started = asyncio.Event()
        self.release = None

    async def __call__(self):
        self.calls += 1
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        else:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.index


def make_chunks(texts):
    chunks = []
    cursor = 0
    for i, text in enumerate(texts):
        chunks.append(Chunk(index=i, text=text, start=cursor, end=cursor + len(text)))
        cursor += len(text)
    return chunks


def make_index(texts=(), document_id="doc-test", embeddings=None):
    embeddings = embeddings or BagOfWordsEmbeddings()
    chunks = make_chunks(texts)
    vectors = embeddings.embed_documents([c.text for c in chunks]) if chunks else []
    return EmbeddingIndex(document_id, chunks, vectors, embeddings)
