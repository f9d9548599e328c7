"""FastAPI application entrypoint and routes.

Exposes /health, /search, /validate and /documents, configures CORS, and loads the
markdown files of settings.DOCS_DIR into the in-memory store at startup. The
/search endpoint runs query understanding, hybrid retrieval, reranking and chunk
hydration through a shared RetrievalPipeline.
"""
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from netdoc_rag.config import settings
from netdoc_rag.errors import EmptyDocument, RetrievalFailed, ValidationError
from netdoc_rag.grounding import validate
from netdoc_rag.ingestion.ingest_markdown import ingest_directory
from netdoc_rag.pipeline import RetrievalPipeline, build_pipeline
from netdoc_rag.schemas import (
    IngestRequest,
    IngestResponse,
    SearchRequest,
    SearchResponse,
    ValidateRequest,
    ValidationResult,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="NetDoc RAG API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # keep simple for demo; tighten for prod
    allow_methods=["*"],
    allow_credentials=True,
    allow_headers=["*"],
)

_pipeline: Optional[RetrievalPipeline] = None


def get_pipeline() -> RetrievalPipeline:
    """Return the process-wide pipeline, creating it on first use."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_pipeline()
    return _pipeline


@app.on_event("startup")
def on_startup() -> None:
    """Load the configured documentation directory into the chunk store."""
    if settings.DOCS_DIR:
        stats = ingest_directory(get_pipeline(), settings.DOCS_DIR)
        logger.info("Startup ingestion from %s: %s", settings.DOCS_DIR, stats)


@app.exception_handler(RetrievalFailed)
async def _retrieval_failed(request: Request, exc: RetrievalFailed) -> JSONResponse:
    logger.error("Retrieval failed for %s: %s", request.url.path, exc)
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def _invalid_parameters(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": str(exc)})


@app.exception_handler(EmptyDocument)
async def _empty_document(request: Request, exc: EmptyDocument) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.get("/health")
def health(pipeline: RetrievalPipeline = Depends(get_pipeline)):
    """Liveness probe endpoint.

    Returns:
        dict: {"status": "ok", "chunks": <stored chunk count>} when the service is running.
    """
    return {"status": "ok", "chunks": len(pipeline.store)}


@app.post("/search", response_model=SearchResponse)
async def search(req: SearchRequest, pipeline: RetrievalPipeline = Depends(get_pipeline)) -> SearchResponse:
    """Retrieve ranked documentation chunks for a query.

    Workflow:
    - Classify intent (with recent history for short follow-ups) and extract entities
    - Expand the query and search the keyword and vector channels concurrently
    - Fuse with RRF, apply the intent's score floor, rerank, hydrate chunks

    Returns:
        SearchResponse: Chunks with score and debug evidence; `degraded` is true when
            a channel or the reranker fell back.
    """
    return await pipeline.search(req.query, limit=req.limit, history=req.history)


@app.post("/validate", response_model=ValidationResult)
def validate_answer(req: ValidateRequest) -> ValidationResult:
    """Check the commands of a generated answer against its reference texts."""
    return validate(req.answer, req.references)


@app.post("/documents", response_model=IngestResponse, status_code=201)
def add_document(req: IngestRequest, pipeline: RetrievalPipeline = Depends(get_pipeline)) -> IngestResponse:
    """Chunk a markdown document and add it to the searchable store."""
    return pipeline.ingest(req.document, doc_id=req.doc_id)
