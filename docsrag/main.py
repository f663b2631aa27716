"""FastAPI application entrypoint and routes.

Exposes:
- GET /health
- POST /rag/find-similar: documents ranked by distance to the query
- POST /rag/answer: grounded answer, as JSON or as a server-sent event stream
- POST /admin/parse-docs: ingestion trigger guarded by the X-Admin-Secret header

At startup the database schema is created, the configured embedding models are
registered, and model pulls are optionally started in the background.
"""
import json
import logging
from typing import Dict, Iterator, List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from sqlalchemy.orm import Session

from docsrag import rag
from docsrag.backend import get_backend
from docsrag.bootstrap import pull_models_in_background, register_models
from docsrag.config import configure_logging, settings
from docsrag.db import SessionLocal, get_db, init_db, session_scope
from docsrag.errors import RagError
from docsrag.ingestion.orchestrator import IngestionConfig, collect_embeddings
from docsrag.schemas import (
    AskRequest,
    AskResponse,
    FindSimilarRequest,
    IngestResult,
    ParseDocsRequest,
    ParseDocsResponse,
    SimilarDocument,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="Docs RAG API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_credentials=True,
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup() -> None:
    """Initialize logging, schema, model registry and optional model pulls."""
    configure_logging()
    init_db()
    models = register_models(settings.EMBEDDING_MODELS)
    if settings.PULL_MODELS_ON_STARTUP:
        names = [m.name for m in models] + [settings.LLM_MODEL, settings.TRANSLATION_MODEL]
        pull_models_in_background(get_backend(), names)


@app.exception_handler(RagError)
def handle_rag_error(request: Request, exc: RagError) -> JSONResponse:
    """Render pipeline errors as ``{"detail", "stage"}`` with the error's status."""
    logger.error("%s %s failed at %s: %s", request.method, request.url.path, exc.stage, exc.message)
    return JSONResponse(status_code=exc.http_status, content={"detail": exc.message, "stage": exc.stage})


def get_session_factory():
    """Dependency returning the session factory used outside request scope."""
    return SessionLocal


def require_admin_secret(x_admin_secret: Optional[str] = Header(default=None)) -> None:
    """Reject requests whose X-Admin-Secret header does not match ADMIN_SECRET."""
    if not settings.ADMIN_SECRET:
        raise HTTPException(status_code=401, detail="ADMIN_SECRET not configured")
    if x_admin_secret != settings.ADMIN_SECRET:
        raise HTTPException(status_code=401, detail="Invalid admin secret")


def _sse(event: Dict) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


@app.get("/health")
def health():
    """Liveness probe endpoint.

    Returns:
        dict: {"status": "ok"} when the service is running.
    """
    return {"status": "ok"}


@app.post("/rag/find-similar", response_model=List[SimilarDocument])
def find_similar(req: FindSimilarRequest, db: Session = Depends(get_db)) -> List[SimilarDocument]:
    """Return documents ranked by their closest chunk to the input."""
    config = rag.QueryConfig(metric=req.metric, limit=req.limit, model_name=req.model_name)
    hits = rag.find_similar(db, req.input, config)
    return [SimilarDocument(title=h.title, link=h.link, distance=h.distance) for h in hits]


@app.post("/rag/answer", response_model=AskResponse)
def answer(
    req: AskRequest,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory),
):
    """Answer a question from the ingested documentation.

    With ``stream=true`` the response is ``text/event-stream`` carrying
    ``{"token"}`` events followed by ``{"done": true}`` or ``{"error"}``.
    If the client disconnects, the generator is closed and the upstream chat
    connection released.
    """
    config = rag.QueryConfig(
        metric=req.metric,
        top_chunks=req.top_chunks,
        top_documents=req.top_documents,
        model_name=req.model_name,
    )
    if not req.stream:
        return AskResponse(answer=rag.answer(db, req.input, config))

    def events() -> Iterator[str]:
        with session_scope(session_factory) as stream_db:
            for event in rag.answer_stream(stream_db, req.input, config):
                yield _sse(event)

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


def run_ingestion(config: IngestionConfig) -> None:
    """Fire-and-forget ingestion; failures end up in the log."""
    try:
        collect_embeddings(config)
    except RagError as exc:
        logger.error("Background ingestion rejected: %s", exc.message)
    except Exception:
        logger.exception("Background ingestion failed")


@app.post(
    "/admin/parse-docs",
    response_model=ParseDocsResponse,
    dependencies=[Depends(require_admin_secret)],
)
def parse_docs(req: ParseDocsRequest, background_tasks: BackgroundTasks) -> ParseDocsResponse:
    """Start ingestion of the documentation site.

    With ``wait=false`` the run is scheduled after the response and only an
    acknowledgement is returned; with ``wait=true`` the summary is returned.
    """
    config = IngestionConfig(
        delay_ms=req.delay_ms,
        chunk_size=req.chunk_size,
        chunk_overlap=req.chunk_overlap,
        batch_size=req.batch_size,
        model_names=tuple(req.model_names) if req.model_names is not None else None,
        limit=req.limit,
        translate_titles=req.translate_titles,
        summarize_chunks=req.summarize_chunks,
        concurrency=settings.INGEST_CONCURRENCY,
        encoding=settings.TOKENIZER_ENCODING,
    )
    logger.info("Starting document parsing with options: %s", config)
    if not req.wait:
        background_tasks.add_task(run_ingestion, config)
        return ParseDocsResponse(message="Parsing started")

    summary = collect_embeddings(config)
    return ParseDocsResponse(
        message="Parsing completed successfully", result=IngestResult(**summary.to_dict())
    )
