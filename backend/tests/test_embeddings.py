"""Tests for the embedding service."""

import asyncio

import pytest

from docqa.exceptions import EmbeddingFailure
from docqa.services.embeddings import EmbeddingService
from conftest import DIMENSION, FakeEmbeddingModel, FakeSleep, FlakyEmbeddingModel


class TestPreprocess:
    """Test cases for input preprocessing."""

    def test_newlines_collapse_and_trim(self):
        service = EmbeddingService(model=FakeEmbeddingModel())

        assert service.preprocess("  first line\nsecond\r\nthird  ") == "first line second third"

    def test_long_input_is_truncated(self):
        service = EmbeddingService(model=FakeEmbeddingModel(), max_input_chars=2048)

        assert len(service.preprocess("a" * 5000)) == 2048


class TestEmbedOne:
    """Test cases for single embeddings with retry."""

    @pytest.mark.asyncio
    async def test_same_text_same_dimension(self, embedder):
        first = await embedder.embed_one("What is a vector?")
        second = await embedder.embed_one("What is a vector?")

        assert len(first) == len(second) == DIMENSION
        assert first == second

    @pytest.mark.asyncio
    async def test_model_receives_truncated_text(self):
        model = FakeEmbeddingModel()
        service = EmbeddingService(model=model, max_input_chars=10)

        await service.embed_one("line one\nline two")

        assert model.calls == ["line one l"]

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        model = FlakyEmbeddingModel(failures=2)
        sleep = FakeSleep()
        service = EmbeddingService(model=model, max_attempts=3, retry_delay=1.0, sleep=sleep)

        vector = await service.embed_one("recovering text")

        assert len(vector) == DIMENSION
        assert model.attempts == 3
        assert sleep.delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_gives_up_after_bounded_attempts(self):
        model = FlakyEmbeddingModel(failures=10)
        sleep = FakeSleep()
        service = EmbeddingService(model=model, max_attempts=3, retry_delay=0.5, sleep=sleep)

        with pytest.raises(EmbeddingFailure) as exc_info:
            await service.embed_one("never works")

        assert model.attempts == 3
        assert sleep.delays == [0.5, 0.5]
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert exc_info.value.__cause__ is exc_info.value.cause


class TestEmbedMany:
    """Test cases for batched embeddings."""

    @pytest.mark.asyncio
    async def test_preserves_order_across_batches(self, embedder):
        texts = [f"document number {i}" for i in range(7)]

        vectors = await embedder.embed_many(texts)

        expected = [await embedder.embed_one(t) for t in texts]
        assert vectors == expected

    @pytest.mark.asyncio
    async def test_empty_input(self, embedder):
        assert await embedder.embed_many([]) == []

    @pytest.mark.asyncio
    async def test_one_failing_item_fails_the_call(self):
        model = FlakyEmbeddingModel(failures=10, trigger="poison")
        service = EmbeddingService(model=model, batch_size=2, max_attempts=2, sleep=FakeSleep())

        with pytest.raises(EmbeddingFailure):
            await service.embed_many(["fine", "also fine", "poison pill", "other", "never reached"])

        assert "never reached" not in model.calls

    @pytest.mark.asyncio
    async def test_failed_item_cancels_its_batch_siblings(self, embedder, monkeypatch):
        cancelled = []

        async def embed_one(text):
            if text == "poison":
                raise EmbeddingFailure("bad input")
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                cancelled.append(text)
                raise

        monkeypatch.setattr(embedder, "embed_one", embed_one)

        with pytest.raises(EmbeddingFailure):
            await embedder.embed_many(["slow", "poison", "stuck"])

        assert sorted(cancelled) == ["slow", "stuck"]


class TestDimension:
    """Test cases for the model dimension check."""

    def test_matching_dimension_passes(self):
        service = EmbeddingService(model=FakeEmbeddingModel(dimension=DIMENSION))

        assert service.dimension == DIMENSION
        service.verify_dimension(DIMENSION)

    def test_mismatch_fails_fast(self):
        service = EmbeddingService(model=FakeEmbeddingModel(dimension=DIMENSION))

        with pytest.raises(ValueError):
            service.verify_dimension(DIMENSION * 2)
