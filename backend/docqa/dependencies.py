import logging

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from docqa.config import settings
from docqa.database import get_session
from docqa.services.chunker import TextChunker
from docqa.services.conversation import ConversationStore
from docqa.services.embeddings import EmbeddingService, embedding_service
from docqa.services.generator import ResponseGenerator
from docqa.services.ingestion import IngestionService
from docqa.services.llm import LLMService, llm_service
from docqa.services.pdf_parser import PDFParser
from docqa.services.repository import Repository
from docqa.services.retrieval import RetrievalService


logger = logging.getLogger(__name__)


def get_repository(session: AsyncSession = Depends(get_session)) -> Repository:
    return Repository(session)


def get_embedder() -> EmbeddingService:
    return embedding_service


def get_llm() -> LLMService:
    return llm_service


def get_parser() -> PDFParser:
    return PDFParser()


def get_ingestion_service(
    repository: Repository = Depends(get_repository),
    embedder: EmbeddingService = Depends(get_embedder),
    parser: PDFParser = Depends(get_parser)
) -> IngestionService:
    chunker = TextChunker(chunk_size=settings.chunk_size, chunk_overlap=settings.chunk_overlap)
    return IngestionService(repository, embedder, parser, chunker)


def get_conversation_store(repository: Repository = Depends(get_repository)) -> ConversationStore:
    return ConversationStore(repository)


def get_response_generator(
    repository: Repository = Depends(get_repository),
    embedder: EmbeddingService = Depends(get_embedder),
    llm: LLMService = Depends(get_llm),
    conversations: ConversationStore = Depends(get_conversation_store)
) -> ResponseGenerator:
    retriever = RetrievalService(repository, embedder)
    return ResponseGenerator(retriever, conversations, llm)


def requested_session_id(request: Request) -> str | None:
    session_id = request.headers.get(settings.session_header)
    if not session_id and settings.session_transport == "cookie":
        session_id = request.cookies.get(settings.session_cookie)
    return session_id or None


def attach_session(response: Response, session_id: str) -> None:
    response.headers[settings.session_header] = session_id
    if settings.session_transport == "cookie":
        response.set_cookie(settings.session_cookie, session_id, httponly=True, samesite="lax")


async def resolve_session(
    request: Request,
    response: Response,
    repository: Repository = Depends(get_repository)
) -> str:
    """Returns the caller's session id, minting a new one when it is missing or unknown."""
    session_id = requested_session_id(request)
    if session_id and await repository.session_exists(session_id):
        attach_session(response, session_id)
        return session_id

    if session_id:
        logger.info(f"Unknown session {session_id}, creating a new one")
    session_id = await repository.create_session()
    attach_session(response, session_id)
    return session_id
