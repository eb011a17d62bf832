import logging
import os
import shutil
import uuid

from fastapi import APIRouter, Depends, File, UploadFile
from fastapi.concurrency import run_in_threadpool

from docqa.config import settings
from docqa.dependencies import get_ingestion_service, get_repository, resolve_session
from docqa.exceptions import NotFoundFailure, ValidationFailure
from docqa.models import (
    DeleteRequest, DocumentsResponse, FileSummary, MessageResponse, UploadResponse,
)
from docqa.services.ingestion import IngestionService, UploadedFile
from docqa.services.repository import Repository

logger = logging.getLogger(__name__)

router = APIRouter(tags=["documents"])


def _save_upload(upload: UploadFile) -> UploadedFile:
    os.makedirs(settings.upload_dir, exist_ok=True)
    filename = os.path.basename(upload.filename or "document.pdf")
    # Unique on disk so concurrent uploads of the same name never collide
    path = os.path.join(settings.upload_dir, f"{uuid.uuid4().hex}_{filename}")
    with open(path, "wb") as out:
        shutil.copyfileobj(upload.file, out)
    return UploadedFile(filename=filename, path=path)


@router.post("/upload", response_model=UploadResponse)
async def upload_documents(
    pdf: list[UploadFile] = File(default=None),
    session_id: str = Depends(resolve_session),
    ingestion: IngestionService = Depends(get_ingestion_service)
):
    if not pdf:
        raise ValidationFailure("No PDF files uploaded")
    if len(pdf) > settings.max_upload_files:
        raise ValidationFailure(f"At most {settings.max_upload_files} files can be uploaded at once")

    saved: list[UploadedFile] = []
    try:
        for upload in pdf:
            saved.append(await run_in_threadpool(_save_upload, upload))
    except Exception:
        for uploaded in saved:
            if os.path.exists(uploaded.path):
                os.remove(uploaded.path)
        raise

    result = await ingestion.ingest(session_id, saved)
    logger.info(f"Session {session_id}: stored {len(result.files)} files, {result.pages} chunks")

    return UploadResponse(
        message="PDFs processed successfully",
        pages=result.pages,
        session_id=session_id,
        is_first_upload=result.is_first_upload,
        files=[FileSummary(filename=f.filename, pages=f.pages) for f in result.files]
    )


@router.delete("/delete", response_model=MessageResponse)
async def delete_document(
    request: DeleteRequest,
    session_id: str = Depends(resolve_session),
    repository: Repository = Depends(get_repository)
):
    filename = (request.filename or "").strip()
    if not filename:
        raise ValidationFailure("Filename is required")

    deleted = await repository.delete_document(session_id, filename)
    if not deleted:
        raise NotFoundFailure("File not found")

    return MessageResponse(message=f"{filename} deleted successfully")


@router.get("/documents", response_model=DocumentsResponse)
async def list_documents(
    session_id: str = Depends(resolve_session),
    repository: Repository = Depends(get_repository)
):
    documents = await repository.list_documents(session_id)
    return DocumentsResponse(
        session_id=session_id,
        documents=[FileSummary(filename=d.filename, pages=d.pages) for d in documents]
    )
