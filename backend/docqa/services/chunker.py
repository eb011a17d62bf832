import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional, Sequence

from langchain_text_splitters import RecursiveCharacterTextSplitter

from docqa.services.pdf_parser import PageText

logger = logging.getLogger(__name__)


@dataclass
class Chunk:
    content: str
    chunk_index: int
    total_chunks: int
    page_number: int
    metadata: dict[str, Any] = field(default_factory=dict)


class TextChunker:
    # Paragraph breaks, then line breaks, then spaces, then raw characters
    DEFAULT_SEPARATORS = ("\n\n", "\n", " ", "")

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        separators: Sequence[str] = DEFAULT_SEPARATORS
    ):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be in [0, chunk_size ({chunk_size}))"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.separators = list(separators)
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=self.separators,
            length_function=len,
        )

    def split_pages(self, pages: Iterable[PageText], filename: Optional[str] = None) -> List[Chunk]:
        """
        Splits every page on its own, then numbers the chunks across the
        whole document so ordinals stay contiguous.
        """
        pieces: List[tuple[int, str]] = []
        for page in pages:
            for text in self.split_text(page.text):
                pieces.append((page.page_number, text))

        total = len(pieces)
        chunks = []
        for index, (page_number, text) in enumerate(pieces):
            metadata: dict[str, Any] = {
                "page": page_number,
                "chunk_index": index,
                "total_chunks": total,
            }
            if filename:
                metadata["filename"] = filename
            chunks.append(Chunk(
                content=text,
                chunk_index=index,
                total_chunks=total,
                page_number=page_number,
                metadata=metadata
            ))

        logger.debug(f"Split {filename or 'document'} into {total} chunks")
        return chunks

    def split_text(self, text: str) -> List[str]:
        return self._splitter.split_text(text)
