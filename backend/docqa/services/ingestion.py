import logging
import os
from dataclasses import dataclass, field

from fastapi.concurrency import run_in_threadpool

from docqa.exceptions import ExtractionFailure
from docqa.services.chunker import TextChunker
from docqa.services.embeddings import EmbeddingService
from docqa.services.pdf_parser import PDFParser
from docqa.services.repository import DocumentInfo, Repository


logger = logging.getLogger(__name__)


@dataclass
class UploadedFile:
    filename: str
    path: str


@dataclass
class IngestionResult:
    files: list[DocumentInfo] = field(default_factory=list)
    is_first_upload: bool = False

    @property
    def pages(self) -> int:
        return sum(f.pages for f in self.files)


class IngestionService:
    def __init__(
        self,
        repository: Repository,
        embedder: EmbeddingService,
        parser: PDFParser,
        chunker: TextChunker
    ):
        self.repository = repository
        self.embedder = embedder
        self.parser = parser
        self.chunker = chunker

    async def ingest(self, session_id: str, files: list[UploadedFile]) -> IngestionResult:
        """Extract, chunk, embed and store each file in submission order.

        Temporary files are removed whatever happens; the first failing file
        aborts the whole upload.
        """
        try:
            existing = await self.repository.count_documents(session_id)
            result = IngestionResult(is_first_upload=existing == 0)

            for uploaded in files:
                logger.info(f"Processing PDF: {uploaded.filename}")

                # CPU-bound parsing runs in the threadpool
                pages = await run_in_threadpool(self.parser.extract_pages, uploaded.path)
                chunks = self.chunker.split_pages(pages, filename=uploaded.filename)
                if not chunks:
                    raise ExtractionFailure(f"No content extracted from PDF: {uploaded.filename}")

                embeddings = await self.embedder.embed_many([chunk.content for chunk in chunks])

                await self.repository.store_document(
                    session_id, uploaded.filename, chunks, embeddings
                )
                result.files.append(DocumentInfo(filename=uploaded.filename, pages=len(chunks)))

            await self.repository.ensure_conversation(session_id)
            return result
        finally:
            for uploaded in files:
                self._remove(uploaded.path)

    @staticmethod
    def _remove(path: str) -> None:
        try:
            if os.path.exists(path):
                os.remove(path)
        except OSError as e:
            logger.warning(f"Could not remove temporary file {path}: {e}")
