"""Common test fixtures."""

import hashlib
import itertools
import math
import re
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from docqa.dependencies import get_embedder, get_llm, get_parser, get_repository
from docqa.exceptions import ExtractionFailure
from docqa.main import app
from docqa.services.embeddings import EmbeddingService
from docqa.services.pdf_parser import PageText
from docqa.services.repository import DocumentInfo, ScoredChunk, StoredMessage


DIMENSION = 64


class FakeVector(list):
    def tolist(self):
        return list(self)


class FakeEmbeddingModel:
    """Hashed bag-of-words vectors, so texts sharing words are similar."""

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.calls: list[str] = []

    def get_sentence_embedding_dimension(self) -> int:
        return self.dimension

    def encode(self, text, convert_to_numpy=True):
        self.calls.append(text)
        vector = [0.0] * self.dimension
        for word in re.findall(r"\w+", text.lower()):
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
            vector[bucket] += 1.0
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return FakeVector(v / norm for v in vector)


class FlakyEmbeddingModel(FakeEmbeddingModel):
    """Fails the first ``failures`` calls for texts containing ``trigger``."""

    def __init__(self, failures: int, trigger: str = ""):
        super().__init__()
        self.failures = failures
        self.trigger = trigger
        self.attempts = 0

    def encode(self, text, convert_to_numpy=True):
        if self.trigger in text:
            self.attempts += 1
            if self.attempts <= self.failures:
                raise RuntimeError("embedding backend unavailable")
        return super().encode(text, convert_to_numpy)


class FakeSleep:
    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeRepository:
    """In-memory stand-in for Repository with the same async API."""

    def __init__(self):
        self.sessions: dict[str, bool] = {}
        self.documents: dict[int, dict] = {}
        self.chunks: dict[int, list[dict]] = {}
        self.conversations: dict[str, list[StoredMessage]] = {}
        self._ids = itertools.count(1)
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    async def create_session(self) -> str:
        session_id = f"session-{next(self._ids)}"
        self.sessions[session_id] = False
        return session_id

    async def session_exists(self, session_id: str) -> bool:
        return session_id in self.sessions

    async def has_uploaded(self, session_id: str) -> bool:
        return self.sessions.get(session_id, False)

    async def delete_session(self, session_id: str) -> None:
        self.sessions.pop(session_id, None)
        self.conversations.pop(session_id, None)
        for doc_id in [d for d, doc in self.documents.items() if doc["session_id"] == session_id]:
            self.documents.pop(doc_id)
            self.chunks.pop(doc_id, None)

    async def list_documents(self, session_id: str) -> list[DocumentInfo]:
        return [
            DocumentInfo(filename=doc["filename"], pages=doc["page_count"])
            for doc in self.documents.values()
            if doc["session_id"] == session_id
        ]

    async def count_documents(self, session_id: str) -> int:
        return len(await self.list_documents(session_id))

    async def store_document(self, session_id, filename, chunks, embeddings) -> int:
        await self.delete_document(session_id, filename)
        doc_id = next(self._ids)
        self.documents[doc_id] = {
            "session_id": session_id,
            "filename": filename,
            "page_count": len(chunks),
        }
        self.chunks[doc_id] = [
            {
                "chunk_index": chunk.chunk_index,
                "content": chunk.content,
                "embedding": embedding,
                "metadata": chunk.metadata,
            }
            for chunk, embedding in zip(chunks, embeddings)
        ]
        self.sessions[session_id] = True
        return doc_id

    async def delete_document(self, session_id: str, filename: str) -> bool:
        for doc_id, doc in list(self.documents.items()):
            if doc["session_id"] == session_id and doc["filename"] == filename:
                self.documents.pop(doc_id)
                self.chunks.pop(doc_id, None)
                return True
        return False

    async def search_chunks(self, session_id, query_embedding, threshold, limit) -> list[ScoredChunk]:
        results = []
        for doc_id, doc in self.documents.items():
            if doc["session_id"] != session_id:
                continue
            for chunk in self.chunks.get(doc_id, []):
                similarity = _cosine(query_embedding, chunk["embedding"])
                if similarity >= threshold:
                    results.append(ScoredChunk(
                        document_id=doc_id,
                        filename=doc["filename"],
                        chunk_index=chunk["chunk_index"],
                        content=chunk["content"],
                        similarity=similarity,
                        metadata=chunk["metadata"],
                    ))
        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:limit]

    async def ensure_conversation(self, session_id: str) -> int:
        self.conversations.setdefault(session_id, [])
        return 1

    async def add_message(self, session_id: str, role: str, content: str) -> StoredMessage:
        self._clock += timedelta(seconds=1)
        message = StoredMessage(role=role, content=content, created_at=self._clock)
        self.conversations.setdefault(session_id, []).append(message)
        return message

    async def recent_messages(self, session_id: str, limit: int) -> list[StoredMessage]:
        if limit <= 0:
            return []
        return list(self.conversations.get(session_id, [])[-limit:])


class FakeLLM:
    """Records prompts and streams canned fragments."""

    def __init__(self, fragments=("This ", "is ", "an ", "answer."), fail_after=None, fallback="Fallback answer."):
        self.fragments = list(fragments)
        self.fail_after = fail_after
        self.fallback = fallback
        self.prompts: list[str] = []
        self.generate_calls = 0

    async def generate_stream(self, prompt: str):
        self.prompts.append(prompt)
        for i, fragment in enumerate(self.fragments):
            if self.fail_after is not None and i >= self.fail_after:
                raise RuntimeError("model stream broke")
            yield fragment
        if self.fail_after is not None and self.fail_after >= len(self.fragments):
            raise RuntimeError("model stream broke")

    async def generate(self, prompt: str) -> str:
        self.generate_calls += 1
        if isinstance(self.fallback, Exception):
            raise self.fallback
        return self.fallback


class FakeParser:
    """Treats uploaded bytes as UTF-8 text with pages separated by form feeds."""

    def extract_pages(self, pdf_path: str) -> list[PageText]:
        with open(pdf_path, "rb") as f:
            raw = f.read().decode("utf-8", errors="ignore")
        pages = [
            PageText(page_number=i, text=text)
            for i, text in enumerate(raw.split("\f"), start=1)
            if text.strip()
        ]
        if not pages:
            raise ExtractionFailure("No content extracted from PDF")
        return pages


@pytest.fixture
def fake_sleep() -> FakeSleep:
    return FakeSleep()


@pytest.fixture
def embedder(fake_sleep) -> EmbeddingService:
    return EmbeddingService(model=FakeEmbeddingModel(), batch_size=3, sleep=fake_sleep)


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM()


@pytest.fixture
def client(repository, embedder, fake_llm, tmp_path, monkeypatch):
    """API client wired to in-memory fakes; lifespan (database setup) is not run."""
    from docqa.config import settings

    monkeypatch.setattr(settings, "upload_dir", str(tmp_path / "uploads"))
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_embedder] = lambda: embedder
    app.dependency_overrides[get_llm] = lambda: fake_llm
    app.dependency_overrides[get_parser] = FakeParser
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


def paragraph(word: str, count: int = 100) -> str:
    """About 800 characters of distinct words sharing a stem."""
    return " ".join(f"{word}{i}" for i in range(count))
