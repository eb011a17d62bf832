import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from docqa.routers import chat, documents, sessions
from docqa.models import HealthResponse
from docqa.config import settings
from docqa.database import engine, init_models
from docqa.exceptions import DocQAError
from docqa.services.embeddings import embedding_service

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_models()
    logger.info("Database schema ready")
    await run_in_threadpool(embedding_service.verify_dimension)
    yield
    await engine.dispose()


app = FastAPI(
    title="Document QA API",
    description="Upload PDFs and ask questions about them with retrieval-augmented generation",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[settings.session_header],
)


@app.exception_handler(DocQAError)
async def docqa_error_handler(request: Request, exc: DocQAError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


app.include_router(documents.router)
app.include_router(chat.router)
app.include_router(sessions.router)


@app.get("/health", response_model=HealthResponse)
async def health_check():
    return HealthResponse(
        status="healthy",
        database="postgresql",
        embedding_model=settings.embedding_model,
        llm_model=settings.llm_model
    )


@app.get("/")
async def root():
    return {
        "service": "Document QA API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health"
    }
