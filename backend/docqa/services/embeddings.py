import asyncio
import logging
from typing import Optional

from fastapi.concurrency import run_in_threadpool
from sentence_transformers import SentenceTransformer

from docqa.config import settings
from docqa.exceptions import EmbeddingFailure
from docqa.services.retry import Sleep, fixed_retrying


logger = logging.getLogger(__name__)


class EmbeddingService:
    """Turns text into fixed-length vectors with a local SentenceTransformer model.

    Each call runs in the thread pool; ``embed_many`` submits one batch at a
    time and embeds the items of a batch concurrently.
    """

    _shared_model: Optional[SentenceTransformer] = None

    def __init__(
        self,
        model: Optional[SentenceTransformer] = None,
        batch_size: int = None,
        max_attempts: int = None,
        retry_delay: float = None,
        max_input_chars: int = None,
        sleep: Sleep = asyncio.sleep
    ):
        self._model = model
        self.batch_size = batch_size or settings.embedding_batch_size
        self.max_attempts = max_attempts or settings.retry_attempts
        self.retry_delay = settings.retry_delay if retry_delay is None else retry_delay
        self.max_input_chars = max_input_chars or settings.embedding_max_chars
        self._sleep = sleep

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            if EmbeddingService._shared_model is None:
                logger.info(f"Loading embedding model: {settings.embedding_model}")
                EmbeddingService._shared_model = SentenceTransformer(settings.embedding_model)
            self._model = EmbeddingService._shared_model
        return self._model

    @property
    def dimension(self) -> int:
        return self.model.get_sentence_embedding_dimension()

    def verify_dimension(self, expected: int = None) -> None:
        """Fails fast when the model does not match the vector column width."""
        expected = expected or settings.embedding_dimension
        if self.dimension != expected:
            raise ValueError(
                f"Embedding model {settings.embedding_model} produces {self.dimension}-d vectors, "
                f"but the store expects {expected}"
            )

    def preprocess(self, text: str) -> str:
        text = text.replace("\r\n", " ").replace("\n", " ").strip()
        return text[:self.max_input_chars]

    def _encode(self, text: str) -> list[float]:
        embedding = self.model.encode(text, convert_to_numpy=True)
        return embedding.tolist()

    async def embed_one(self, text: str) -> list[float]:
        prepared = self.preprocess(text)

        retrying = fixed_retrying(self.max_attempts, self.retry_delay, self._sleep)
        try:
            return await retrying(run_in_threadpool, self._encode, prepared)
        except Exception as e:
            raise EmbeddingFailure(f"Embedding failed: {e}", cause=e) from e

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            tasks = [asyncio.ensure_future(self.embed_one(t)) for t in batch]
            try:
                vectors.extend(await asyncio.gather(*tasks))
            except BaseException:
                # Siblings of a failed item stop retrying
                for task in tasks:
                    task.cancel()
                await asyncio.gather(*tasks, return_exceptions=True)
                raise
            logger.debug(f"Embedded {len(vectors)}/{len(texts)} texts")
        return vectors


embedding_service = EmbeddingService()
