import logging
import uuid

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from septo_worker.core.config import settings
from septo_worker.core.database import get_db
from septo_worker.dtos.job_dto import JobCreate, JobRead
from septo_worker.services.job_service import JobService

logger = logging.getLogger(__name__)

app = FastAPI(title="septo-worker", version="0.1.0")

# ---------------------------------------------------------------------------
# Middleware: request-id injection
# ---------------------------------------------------------------------------


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ---------------------------------------------------------------------------
# Global exception handlers
# ---------------------------------------------------------------------------


def _request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "unknown")


def _validation_response(request: Request, errors: list) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "detail": errors,
            "request_id": _request_id(request),
        },
    )


@app.exception_handler(RequestValidationError)
async def request_validation_error_handler(request: Request, exc: RequestValidationError):
    # ctx may carry the raw ValueError, which is not JSON serializable
    errors = [{k: v for k, v in err.items() if k != "ctx"} for err in exc.errors()]
    return _validation_response(request, errors)


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return _validation_response(request, exc.errors(include_context=False))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "http_error",
            "message": str(exc.detail),
            "detail": None,
            "request_id": _request_id(request),
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled exception", extra={"request_id": _request_id(request)})
    return JSONResponse(
        status_code=500,
        content={
            "error": "internal_error",
            "message": "An unexpected error occurred",
            "detail": str(exc) if settings.DEBUG else None,
            "request_id": _request_id(request),
        },
    )


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "septo-worker", "version": "0.1.0"}


@app.post("/api/jobs", status_code=201)
def create_job(dto: JobCreate, db: Session = Depends(get_db)):
    job = JobService(db).create_job(dto)
    return {
        "success": True,
        "jobId": job.id,
        "status": job.status,
        "message": "Scraping job queued successfully",
    }


@app.get("/api/jobs")
def list_jobs(
    status: str | None = None,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    try:
        jobs = JobService(db).list_jobs(status=status, limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [job.model_dump(mode="json", by_alias=True) for job in jobs]


@app.get("/api/jobs/{job_id}")
def get_job(job_id: str, db: Session = Depends(get_db)):
    job: JobRead | None = JobService(db).get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
    return job.model_dump(mode="json", by_alias=True)
