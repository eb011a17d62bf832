import json
import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from docqa.dependencies import (
    attach_session, get_conversation_store, get_repository, get_response_generator, resolve_session,
)
from docqa.exceptions import ValidationFailure
from docqa.models import AskRequest, HistoryMessage, HistoryResponse
from docqa.services.conversation import ConversationStore
from docqa.services.generator import ResponseGenerator
from docqa.services.repository import Repository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


@router.post("/ask")
async def ask(
    request: AskRequest,
    session_id: str = Depends(resolve_session),
    repository: Repository = Depends(get_repository),
    generator: ResponseGenerator = Depends(get_response_generator)
):
    question = (request.question or "").strip()
    if not question:
        raise ValidationFailure("Question is required")
    logger.info(f"Session {session_id}: question received ({len(question)} chars)")

    # A session that had documents and lost them all cannot be asked about;
    # a session that never uploaded gets a general-knowledge answer
    if await repository.has_uploaded(session_id) and await repository.count_documents(session_id) == 0:
        raise ValidationFailure("No documents available. Please upload a PDF first")

    prepared = await generator.prepare(session_id, question)
    fragments = generator.stream(prepared)

    # Pull the first fragment before the status line goes out, so a model
    # that never answers still gets an error response
    try:
        first = await anext(fragments)
    except StopAsyncIteration:
        first = None

    async def ndjson():
        if first is not None:
            yield json.dumps({"chunk": first}) + "\n"
        async for fragment in fragments:
            yield json.dumps({"chunk": fragment}) + "\n"

    response = StreamingResponse(ndjson(), media_type="application/x-ndjson")
    attach_session(response, session_id)
    return response


@router.get("/history", response_model=HistoryResponse)
async def history(
    limit: int = Query(default=20, ge=1, le=200),
    session_id: str = Depends(resolve_session),
    conversations: ConversationStore = Depends(get_conversation_store)
):
    messages = await conversations.recent(session_id, limit)
    return HistoryResponse(
        session_id=session_id,
        messages=[
            HistoryMessage(role=m.role, content=m.content, created_at=m.created_at)
            for m in messages
        ]
    )
