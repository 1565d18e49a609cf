"""
Import router - analyze takeoff files and commit import payloads.

Two separate endpoints back the two phases of an import:

- POST /import/analyze  parses and validates a file; never writes
- POST /import/commit   sends the reviewed payload to the commit task and
                        waits for its result
"""

import json
import logging
import uuid
from typing import Any, Dict, Optional

import redis
from celery.exceptions import TimeoutError as CeleryTimeoutError
from fastapi import APIRouter, UploadFile, File, Form, Depends, HTTPException, Request, status, Query
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from api.config import settings
from api.dependencies import (
    get_db, get_current_user, verify_file_extension, verify_file_size, verify_payload_size
)
from api.schemas.import_schema import AnalyzeResponse, CommitRequest, CommitResponse
from api.schemas.job_schema import JobStatusResponse, JobProgressResponse, JobListResponse, JobListItem
from backend.models.import_types import ErrorDetail, ImportErrorCode, ImportResult
from backend.models.job import JobRun, JobType, JobStatus
from backend.models.schema import Project
from services.preview_service import PreviewService
from services.row_validation_service import ValidationRules
from services.tabular_reader import TabularReadError, read_tabular_bytes
from tasks.import_tasks import commit_import_payload, payload_structure_errors

logger = logging.getLogger(__name__)

# Create router
router = APIRouter(prefix='/import', tags=['import'])

# Redis client for progress tracking
redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)

# HTTP status per failed commit classification
FAILURE_STATUS = {
    ImportErrorCode.CONFLICT: status.HTTP_409_CONFLICT,
    ImportErrorCode.PROJECT_NOT_FOUND: status.HTTP_404_NOT_FOUND,
}


def validation_rules() -> ValidationRules:
    """Validation rules with ceilings from settings."""
    return ValidationRules(
        max_rows=settings.MAX_IMPORT_ROWS,
        max_components=settings.MAX_IMPORT_COMPONENTS,
        max_file_size=int(settings.MAX_FILE_SIZE_MB * 1024 * 1024)
    )


def _require_project(db: Session, project_id: int) -> Project:
    project = db.get(Project, project_id)
    if project is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Project {project_id} not found"
        )
    return project


def _commit_response(result: ImportResult, job_id: Optional[str]) -> JSONResponse:
    if result.success:
        status_code = status.HTTP_200_OK
    else:
        status_code = FAILURE_STATUS.get(result.error_code, status.HTTP_400_BAD_REQUEST)
    body = CommitResponse(**result.model_dump(), job_id=job_id)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode='json'))


def _dispatch_commit(payload: Dict[str, Any], job_id: str) -> Dict[str, Any]:
    """Send the payload to the commit task and block until it finishes."""
    async_result = commit_import_payload.apply_async(args=[payload], task_id=job_id)
    return async_result.get(timeout=settings.COMMIT_TIMEOUT_SECONDS)


@router.post('/analyze', response_model=AnalyzeResponse)
async def analyze_file(
    file: UploadFile = File(..., description="Takeoff file (.csv, .xlsx or .xlsm)"),
    project_id: Optional[int] = Form(None, ge=1, description="Target project; omit for a new project"),
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Analyze a takeoff file and return its preview.

    Detects column meanings, classifies every row as valid, skipped or
    error, and reports which areas, systems and test packages already
    exist. Nothing is written; discarding the preview costs nothing.

    **Returns:**
    - 200 with the preview (`can_commit` tells whether commit is allowed)
    - 400 for unsupported, empty or unreadable files
    - 404 if project_id does not exist
    - 413 if the file exceeds the upload limit
    """
    logger.info(f"Analyze request from {current_user}: {file.filename} (project {project_id})")

    verify_file_extension(file.filename)
    content = await file.read()
    verify_file_size(len(content))

    if project_id is not None:
        _require_project(db, project_id)

    try:
        headers, rows = read_tabular_bytes(file.filename, content)
    except TabularReadError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    service = PreviewService(
        db_session=db,
        rules=validation_rules(),
        sample_size=settings.PREVIEW_SAMPLE_SIZE
    )
    preview = service.analyze(file.filename, headers, rows, project_id, file_size=len(content))

    return AnalyzeResponse.model_validate(preview.model_dump())


@router.post('/commit', response_model=CommitResponse)
async def commit_payload(
    request: Request,
    db: Session = Depends(get_db),
    current_user: str = Depends(get_current_user)
):
    """
    Commit a reviewed import payload.

    The payload (valid rows, column mappings, metadata to create) runs in
    a single database transaction on the commit worker. The request blocks
    until the transaction commits or rolls back.

    **Returns:**
    - 200 with created counts on success
    - 409 if components already exist (nothing was imported)
    - 400 for any other failed result (nothing was imported)
    - 413 if the body exceeds the transport limit
    - 504 if the commit did not finish in time (check the job status)
    """
    body = await request.body()
    verify_payload_size(len(body))

    try:
        payload = CommitRequest.model_validate_json(body)
    except ValidationError as e:
        logger.warning(f"Rejected malformed commit payload from {current_user}")
        result = ImportResult.failure('Invalid payload structure', payload_structure_errors(e),
                                      error_code=ImportErrorCode.INVALID_PAYLOAD)
        return _commit_response(result, None)

    _require_project(db, payload.project_id)

    job_id = str(uuid.uuid4())
    job_run = JobRun(
        job_id=job_id,
        job_type=JobType.COMMIT.value,
        status=JobStatus.PENDING.value,
        params={
            'project_id': payload.project_id,
            'row_count': len(payload.rows),
            'payload_bytes': len(body),
            'metadata_to_create': {
                'areas': len(payload.metadata_to_create.areas),
                'systems': len(payload.metadata_to_create.systems),
                'test_packages': len(payload.metadata_to_create.test_packages)
            }
        },
        project_id=payload.project_id,
        created_by=current_user
    )
    db.add(job_run)
    db.commit()

    logger.info(f"Dispatching commit job {job_id}: {len(payload.rows)} rows into project {payload.project_id}")

    try:
        result_dict = await run_in_threadpool(_dispatch_commit, payload.model_dump(mode='json'), job_id)
    except CeleryTimeoutError:
        logger.error(f"Commit job {job_id} did not finish within {settings.COMMIT_TIMEOUT_SECONDS}s")
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=f"Commit did not finish within {settings.COMMIT_TIMEOUT_SECONDS}s. "
                   f"It either completes or rolls back; check /api/import/job/{job_id}"
        )
    except Exception as e:
        logger.error(f"Commit job {job_id} failed: {e}", exc_info=True)
        result = ImportResult.failure(f"Commit failed; nothing was imported: {e}",
                                      [ErrorDetail(row=0, issue=str(e))])
        body = CommitResponse(**result.model_dump(), job_id=job_id)
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                            content=body.model_dump(mode='json'))

    return _commit_response(ImportResult.model_validate(result_dict), job_id)


@router.get('/job/{job_id}', response_model=JobStatusResponse)
async def get_job_status(
    job_id: str,
    db: Session = Depends(get_db)
):
    """
    Get current status of a commit job.

    **Usage:**
    ```bash
    curl http://localhost:8000/api/import/job/abc-123-def-456
    ```

    **Status Values:**
    - `pending`: Job is queued, waiting for worker
    - `processing`: Transaction is running
    - `success`: Transaction committed
    - `failed`: Transaction rolled back; nothing was imported
    """
    # Query job from database
    job_run = db.query(JobRun).filter_by(job_id=job_id).first()

    if not job_run:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job {job_id} not found"
        )

    # Get latest progress from Redis (real-time)
    progress = None
    try:
        progress_data = redis_client.get(f'job_progress:{job_id}')
        if progress_data:
            progress = JobProgressResponse(**json.loads(progress_data))
    except Exception as e:
        logger.warning(f"Could not fetch progress from Redis for {job_id}: {e}")

    # If no Redis progress, try getting latest from database
    if not progress and job_run.progress:
        latest_progress = job_run.progress[-1]
        progress = JobProgressResponse(
            stage=latest_progress.stage,
            percent=float(latest_progress.percent),
            message=latest_progress.message or "",
            timestamp=latest_progress.timestamp
        )

    return JobStatusResponse(
        job_id=job_run.job_id,
        job_type=job_run.job_type,
        status=job_run.status,
        created_at=job_run.created_at,
        started_at=job_run.started_at,
        completed_at=job_run.completed_at,
        duration_seconds=job_run.duration_seconds(),
        progress=progress,
        result=job_run.result,
        error=job_run.error,
        project_id=job_run.project_id,
        created_by=job_run.created_by
    )


@router.get('/jobs', response_model=JobListResponse)
async def list_jobs(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    project_id: Optional[int] = Query(None, description="Filter by project"),
    status: Optional[str] = Query(None, description="Filter by status"),
    db: Session = Depends(get_db)
):
    """
    List commit jobs with pagination and filtering.

    **Example:**
    ```bash
    curl "http://localhost:8000/api/import/jobs?project_id=1&status=failed&page=1"
    ```
    """
    # Build query
    query = db.query(JobRun)

    if project_id is not None:
        query = query.filter_by(project_id=project_id)

    if status:
        query = query.filter_by(status=status)

    # Get total count
    total = query.count()

    # Get page of results
    jobs = query.order_by(JobRun.created_at.desc())\
        .offset((page - 1) * page_size)\
        .limit(page_size)\
        .all()

    # Calculate total pages
    total_pages = (total + page_size - 1) // page_size

    return JobListResponse(
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
        items=[JobListItem.model_validate(job) for job in jobs]
    )
