import functools
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docqa.database import ChatSession, Conversation, Document, DocumentChunk, Message
from docqa.exceptions import StorageFailure
from docqa.services.chunker import Chunk


logger = logging.getLogger(__name__)

# Similarity is 1 - cosine distance; the join keeps results inside the session
SEARCH_CHUNKS_SQL = text("""
    SELECT c.document_id, d.filename, c.chunk_index, c.content, c.metadata AS chunk_metadata,
           1 - (c.embedding <=> CAST(:query_embedding AS vector)) AS similarity
    FROM document_chunks c
    JOIN documents d ON d.id = c.document_id
    WHERE d.session_id = :session_id
      AND 1 - (c.embedding <=> CAST(:query_embedding AS vector)) >= :threshold
    ORDER BY c.embedding <=> CAST(:query_embedding AS vector)
    LIMIT :limit
""")


@dataclass
class DocumentInfo:
    filename: str
    pages: int


@dataclass
class ScoredChunk:
    document_id: int
    filename: str
    chunk_index: int
    content: str
    similarity: float
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoredMessage:
    role: str
    content: str
    created_at: Optional[datetime] = None


def _storage_call(func_):
    """Wraps SQLAlchemy errors into StorageFailure and rolls back the session."""

    @functools.wraps(func_)
    async def wrapper(self, *args, **kwargs):
        try:
            return await func_(self, *args, **kwargs)
        except SQLAlchemyError as e:
            logger.error(f"Storage call {func_.__name__} failed: {e}")
            await self.session.rollback()
            raise StorageFailure(f"Storage error during {func_.__name__}", cause=e) from e

    return wrapper


class Repository:
    """All reads and writes of sessions, documents, chunks and messages."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Sessions

    @_storage_call
    async def create_session(self) -> str:
        session_id = uuid.uuid4().hex
        self.session.add(ChatSession(id=session_id, has_uploaded=False))
        await self.session.commit()
        logger.info(f"Created session {session_id}")
        return session_id

    @_storage_call
    async def session_exists(self, session_id: str) -> bool:
        result = await self.session.execute(
            select(ChatSession.id).where(ChatSession.id == session_id)
        )
        return result.scalar() is not None

    @_storage_call
    async def has_uploaded(self, session_id: str) -> bool:
        result = await self.session.execute(
            select(ChatSession.has_uploaded).where(ChatSession.id == session_id)
        )
        return bool(result.scalar())

    @_storage_call
    async def delete_session(self, session_id: str) -> None:
        await self.session.execute(delete(ChatSession).where(ChatSession.id == session_id))
        await self.session.commit()
        logger.info(f"Deleted session {session_id}")

    # Documents

    @_storage_call
    async def list_documents(self, session_id: str) -> list[DocumentInfo]:
        result = await self.session.execute(
            select(Document.filename, Document.page_count)
            .where(Document.session_id == session_id)
            .order_by(Document.id)
        )
        return [DocumentInfo(filename=row.filename, pages=row.page_count) for row in result]

    @_storage_call
    async def count_documents(self, session_id: str) -> int:
        result = await self.session.execute(
            select(func.count(Document.id)).where(Document.session_id == session_id)
        )
        return result.scalar() or 0

    @_storage_call
    async def store_document(
        self,
        session_id: str,
        filename: str,
        chunks: list[Chunk],
        embeddings: list[list[float]]
    ) -> int:
        """Stores a document with its chunks, replacing a same-named one."""
        await self.session.execute(
            delete(Document).where(
                Document.session_id == session_id,
                Document.filename == filename
            )
        )

        doc = Document(session_id=session_id, filename=filename, page_count=len(chunks))
        self.session.add(doc)
        await self.session.flush()

        for chunk, embedding in zip(chunks, embeddings):
            self.session.add(DocumentChunk(
                document_id=doc.id,
                chunk_index=chunk.chunk_index,
                content=chunk.content,
                embedding=embedding,
                chunk_metadata=chunk.metadata
            ))

        await self.session.execute(
            update(ChatSession).where(ChatSession.id == session_id).values(has_uploaded=True)
        )
        await self.session.commit()
        logger.info(f"Stored {len(chunks)} chunks for document {doc.id} ({filename})")
        return doc.id

    @_storage_call
    async def delete_document(self, session_id: str, filename: str) -> bool:
        result = await self.session.execute(
            delete(Document).where(
                Document.session_id == session_id,
                Document.filename == filename
            )
        )
        await self.session.commit()
        return result.rowcount > 0

    # Chunks

    @_storage_call
    async def search_chunks(
        self,
        session_id: str,
        query_embedding: list[float],
        threshold: float,
        limit: int
    ) -> list[ScoredChunk]:
        """Session-scoped cosine similarity search, best match first."""
        result = await self.session.execute(
            SEARCH_CHUNKS_SQL,
            {
                "query_embedding": str(query_embedding),
                "session_id": session_id,
                "threshold": threshold,
                "limit": limit,
            }
        )

        return [
            ScoredChunk(
                document_id=row.document_id,
                filename=row.filename,
                chunk_index=row.chunk_index,
                content=row.content,
                similarity=float(row.similarity),
                metadata=row.chunk_metadata or {}
            )
            for row in result.fetchall()
        ]

    # Conversation

    async def _conversation_id(self, session_id: str, create: bool) -> Optional[int]:
        result = await self.session.execute(
            select(Conversation.id).where(Conversation.session_id == session_id)
        )
        conversation_id = result.scalar()
        if conversation_id is None and create:
            conversation = Conversation(session_id=session_id)
            self.session.add(conversation)
            await self.session.flush()
            conversation_id = conversation.id
        return conversation_id

    @_storage_call
    async def ensure_conversation(self, session_id: str) -> int:
        conversation_id = await self._conversation_id(session_id, create=True)
        await self.session.commit()
        return conversation_id

    @_storage_call
    async def add_message(self, session_id: str, role: str, content: str) -> StoredMessage:
        conversation_id = await self._conversation_id(session_id, create=True)
        message = Message(conversation_id=conversation_id, role=role, content=content)
        self.session.add(message)
        await self.session.flush()
        await self.session.refresh(message)
        await self.session.commit()
        return StoredMessage(role=message.role, content=message.content, created_at=message.created_at)

    @_storage_call
    async def recent_messages(self, session_id: str, limit: int) -> list[StoredMessage]:
        conversation_id = await self._conversation_id(session_id, create=False)
        if conversation_id is None or limit <= 0:
            return []

        result = await self.session.execute(
            select(Message.role, Message.content, Message.created_at)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit)
        )
        rows = result.fetchall()
        return [
            StoredMessage(role=row.role, content=row.content, created_at=row.created_at)
            for row in reversed(rows)
        ]
