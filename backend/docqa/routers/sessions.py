import logging

from fastapi import APIRouter, Depends, Request, Response

from docqa.dependencies import attach_session, get_repository, requested_session_id
from docqa.models import ResetResponse
from docqa.services.repository import Repository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["sessions"])


@router.post("/reset-session", response_model=ResetResponse)
async def reset_session(
    request: Request,
    response: Response,
    repository: Repository = Depends(get_repository)
):
    """Drops the caller's session with its documents and history, then mints a new one."""
    old_session_id = requested_session_id(request)
    if old_session_id and await repository.session_exists(old_session_id):
        await repository.delete_session(old_session_id)

    session_id = await repository.create_session()
    attach_session(response, session_id)
    logger.info(f"Session reset: {old_session_id} -> {session_id}")

    return ResetResponse(message="Session reset successfully", session_id=session_id)
