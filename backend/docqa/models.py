from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class FileSummary(BaseModel):
    filename: str
    pages: int


class UploadResponse(CamelModel):
    message: str
    pages: int
    session_id: str = Field(alias="sessionId")
    is_first_upload: bool = Field(alias="isFirstUpload")
    files: list[FileSummary]


class DeleteRequest(BaseModel):
    filename: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class AskRequest(BaseModel):
    question: Optional[str] = None


class ResetResponse(CamelModel):
    message: str
    session_id: str = Field(alias="sessionId")


class DocumentsResponse(CamelModel):
    session_id: str = Field(alias="sessionId")
    documents: list[FileSummary]


class HistoryMessage(CamelModel):
    role: str
    content: str
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class HistoryResponse(CamelModel):
    session_id: str = Field(alias="sessionId")
    messages: list[HistoryMessage]


class HealthResponse(BaseModel):
    status: str
    database: str
    embedding_model: str
    llm_model: str
