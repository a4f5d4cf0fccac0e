# digpaper/main.py
import logging
import os
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, Response, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from digpaper import projects, storage, workflow
from digpaper.config import settings
from digpaper.db import close_engine, get_async_session, init_models, ping
from digpaper.errors import DigPaperError, PayloadTooLarge
from digpaper.intake import ingest_upload
from digpaper.schemas import (
    AssignRequest,
    BatchAssignRequest,
    DocumentOut,
    ErrorOut,
    ProjectCreate,
    ProjectOut,
    ProjectStatusUpdate,
)

logger = logging.getLogger("uvicorn.error")

app = FastAPI(title="DigPaper Intake", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Prometheus counters
uploads_total = Counter("digpaper_uploads_total", "Documents created by /upload")
upload_replays_total = Counter("digpaper_upload_replays_total", "Idempotent upload replays")
upload_failures_total = Counter("digpaper_upload_failures_total", "Failed uploads", ["reason"])
upload_bytes_total = Counter("digpaper_upload_bytes_total", "Bytes written to the file store")
assignments_total = Counter("digpaper_assignments_total", "Document assignment changes")


@app.on_event("startup")
async def startup():
    await init_models()
    storage.upload_root()
    logger.info("DigPaper intake ready (uploads in %s)", settings.upload_dir)


@app.on_event("shutdown")
async def shutdown():
    await close_engine()


@app.exception_handler(DigPaperError)
async def digpaper_error_handler(request: Request, exc: DigPaperError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.warning("%s %s rejected (%s): %s", request.method, request.url.path, exc.code, exc)
    return JSONResponse({"error": exc.code, "detail": exc.detail}, status_code=exc.status_code)


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse({"detail": exc.detail}, status_code=exc.status_code)


@app.middleware("http")
async def reject_oversized_uploads(request: Request, call_next):
    # runs before the multipart body is read and spooled
    if request.method == "POST" and request.url.path == "/upload":
        try:
            declared = int(request.headers.get("content-length", ""))
        except ValueError:
            declared = None
        limit = settings.max_upload_size + settings.upload_form_overhead
        if declared is not None and declared > limit:
            err = PayloadTooLarge(f"Upload exceeds {settings.max_upload_size} bytes")
            upload_failures_total.labels(reason=err.code).inc()
            logger.warning("POST /upload rejected before reading body: Content-Length %d > %d", declared, limit)
            return JSONResponse({"error": err.code, "detail": err.detail}, status_code=err.status_code)
    return await call_next(request)


@app.get("/healthz")
async def healthz():
    ok = {"database": False, "file_store": False}
    try:
        ok["database"] = await ping()
    except Exception:
        logger.exception("Database ping failed")
    try:
        root = storage.upload_root()
        ok["file_store"] = os.access(root, os.W_OK)
    except OSError:
        logger.exception("File store check failed")
    status = 200 if all(ok.values()) else 503
    return JSONResponse(ok, status_code=status)


@app.get("/metrics")
def metrics():
    if not settings.prometheus_enabled:
        raise HTTPException(status_code=404, detail="Metrics disabled")
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ---------- intake ----------

_UPLOAD_ERRORS = {code: {"model": ErrorOut} for code in (400, 413, 415, 500)}


@app.post("/upload", status_code=201, response_model=DocumentOut, responses=_UPLOAD_ERRORS)
async def upload(
    response: Response,
    file: Optional[UploadFile] = File(None),
    project_id: Optional[str] = Form(None),
    author_name: Optional[str] = Form(None),
    client_upload_id: Optional[str] = Form(None),
    session: AsyncSession = Depends(get_async_session),
):
    try:
        doc, created = await ingest_upload(
            session,
            file,
            project_id=project_id,
            author_name=author_name,
            client_upload_id=client_upload_id,
        )
    except DigPaperError as e:
        upload_failures_total.labels(reason=e.code).inc()
        raise
    if created:
        uploads_total.inc()
        upload_bytes_total.inc(doc.size)
    else:
        upload_replays_total.inc()
        response.status_code = 200
    return DocumentOut.from_document(doc)


@app.get("/files/{filename}")
async def get_file(filename: str):
    path = storage.resolve_stored_path(filename)
    return FileResponse(path, media_type=storage.served_content_type(filename))


# ---------- documents ----------

@app.get("/documents/inbox", response_model=List[DocumentOut])
async def list_inbox(session: AsyncSession = Depends(get_async_session)):
    docs = await workflow.list_inbox(session)
    return [DocumentOut.from_document(d) for d in docs]


@app.patch("/documents/batch-assign", response_model=List[DocumentOut])
async def batch_assign(body: BatchAssignRequest, session: AsyncSession = Depends(get_async_session)):
    docs = await workflow.batch_assign(session, body.document_ids, body.project_id)
    assignments_total.inc(len(docs))
    return [DocumentOut.from_document(d) for d in docs]


@app.get("/documents/{document_id}", response_model=DocumentOut)
async def get_document(document_id: str, session: AsyncSession = Depends(get_async_session)):
    doc = await workflow.get_document(session, document_id)
    return DocumentOut.from_document(doc)


@app.patch("/documents/{document_id}/assign", response_model=DocumentOut)
async def assign_document(document_id: str, body: AssignRequest,
                          session: AsyncSession = Depends(get_async_session)):
    if body.project_id is None:
        doc = await workflow.unassign(session, document_id)
    else:
        doc = await workflow.assign(session, document_id, body.project_id)
    assignments_total.inc()
    return DocumentOut.from_document(doc)


# ---------- projects ----------

@app.post("/projects", status_code=201, response_model=ProjectOut)
async def create_project(body: ProjectCreate, session: AsyncSession = Depends(get_async_session)):
    project = await projects.create_project(session, body.name, body.address, body.client_phone)
    return ProjectOut.from_project(project)


@app.get("/projects", response_model=List[ProjectOut])
async def list_projects(status: Optional[str] = None, session: AsyncSession = Depends(get_async_session)):
    items = await projects.list_projects(session, status)
    counts = await projects.document_counts(session, [p.id for p in items])
    return [ProjectOut.from_project(p, counts.get(p.id, 0)) for p in items]


@app.get("/projects/{project_id}", response_model=ProjectOut)
async def get_project(project_id: str, session: AsyncSession = Depends(get_async_session)):
    project = await projects.get_project(session, project_id)
    counts = await projects.document_counts(session, [project.id])
    return ProjectOut.from_project(project, counts.get(project.id, 0))


@app.patch("/projects/{project_id}/status", response_model=ProjectOut)
async def update_project_status(project_id: str, body: ProjectStatusUpdate,
                                session: AsyncSession = Depends(get_async_session)):
    project = await projects.update_project_status(session, project_id, body.status)
    counts = await projects.document_counts(session, [project.id])
    return ProjectOut.from_project(project, counts.get(project.id, 0))


@app.get("/projects/{project_id}/documents", response_model=List[DocumentOut])
async def list_project_documents(project_id: str, session: AsyncSession = Depends(get_async_session)):
    docs = await workflow.list_project_documents(session, project_id)
    return [DocumentOut.from_document(d) for d in docs]


def run():
    import uvicorn

    logging.basicConfig(level=settings.log_level.upper())
    uvicorn.run("digpaper.main:app", host=settings.host, port=settings.port, log_level=settings.log_level)


if __name__ == "__main__":
    run()
