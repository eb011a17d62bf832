import logging
from typing import Optional

from docqa.config import settings
from docqa.services.embeddings import EmbeddingService
from docqa.services.repository import Repository, ScoredChunk


logger = logging.getLogger(__name__)


def group_by_document(results: list[ScoredChunk], k: int) -> list[ScoredChunk]:
    """Regroup ranked results per document, in reading order, and keep ``k``.

    Documents keep the position of their best-ranked chunk; inside a document
    chunks are ordered by chunk index.
    """
    groups: dict[int, list[ScoredChunk]] = {}
    for result in results:
        groups.setdefault(result.document_id, []).append(result)

    ordered: list[ScoredChunk] = []
    for chunks in groups.values():
        ordered.extend(sorted(chunks, key=lambda c: c.chunk_index))

    return ordered[:max(k, 0)]


class RetrievalService:
    def __init__(
        self,
        repository: Repository,
        embedder: EmbeddingService,
        threshold: Optional[float] = None,
        overfetch: Optional[int] = None
    ):
        self.repository = repository
        self.embedder = embedder
        self.threshold = settings.similarity_threshold if threshold is None else threshold
        self.overfetch = settings.retrieval_overfetch if overfetch is None else overfetch

    async def search(self, session_id: str, query: str, top_k: int = None) -> list[ScoredChunk]:
        """Similarity search restricted to the documents of one session."""
        if top_k is None:
            top_k = settings.retrieval_top_k
        if top_k <= 0:
            return []

        query_embedding = await self.embedder.embed_one(query)

        candidates = await self.repository.search_chunks(
            session_id,
            query_embedding,
            threshold=self.threshold,
            limit=top_k + self.overfetch
        )

        results = group_by_document(candidates, top_k)
        logger.info(
            f"Retrieved {len(results)} chunks for session {session_id} "
            f"({len(candidates)} above threshold {self.threshold})"
        )
        return results
