"""Jobs API — inspection and maintenance of the job queue.

Implements:
  GET  /api/jobs/{job_id}   — job plus its step runs (admin / chief_architect)
  POST /api/jobs/reclaim    — return stale ``processing`` jobs to the queue (admin)
"""

import logging
from datetime import datetime, timedelta
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from app.config import settings
from app.database import get_db
from app.deps import require_roles
from app.models.user import ROLE_ADMIN, ROLE_CHIEF_ARCHITECT, User
from app.services.job_service import JobService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])
_job_service = JobService()


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class JobRunResponse(BaseModel):
    step: str
    input_snippet: str | None
    output_snippet: str | None
    success: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class JobDetailResponse(BaseModel):
    id: str
    type: str
    payload_json: Any
    status: str
    degraded: bool
    error_message: str | None
    claimed_at: datetime | None
    created_at: datetime
    runs: list[JobRunResponse]


class ReclaimRequest(BaseModel):
    # Defaults to CLAIM_TIMEOUT_SECONDS
    older_than_seconds: int | None = None


class ReclaimResponse(BaseModel):
    reclaimed: int


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("/reclaim", response_model=ReclaimResponse)
def reclaim_jobs(
    current_user: Annotated[User, Depends(require_roles(ROLE_ADMIN))],
    body: ReclaimRequest | None = None,
) -> ReclaimResponse:
    """Requeue jobs stuck in ``processing`` past the claim timeout."""
    seconds = (body.older_than_seconds if body else None) or settings.claim_timeout_seconds
    db = get_db()
    try:
        count = _job_service.reclaim_stale(db, timedelta(seconds=seconds))
    finally:
        db.close()
    logger.info("Reclaim sweep", extra={"user_id": current_user.id, "reclaimed": count})
    return ReclaimResponse(reclaimed=count)


@router.get("/{job_id}", response_model=JobDetailResponse)
def get_job(
    job_id: str,
    current_user: Annotated[User, Depends(require_roles(ROLE_ADMIN, ROLE_CHIEF_ARCHITECT))],
) -> JobDetailResponse:
    """Return a job with the audit trail of its pipeline steps."""
    db = get_db()
    try:
        job = _job_service.get_job(db, job_id)
        if not job:
            raise HTTPException(status_code=404, detail="Job not found")
        runs = _job_service.list_runs(db, job_id)
        return JobDetailResponse(
            id=job.id,
            type=job.type,
            payload_json=job.payload_json,
            status=job.status,
            degraded=job.degraded,
            error_message=job.error_message,
            claimed_at=job.claimed_at,
            created_at=job.created_at,
            runs=[JobRunResponse.model_validate(r) for r in runs],
        )
    finally:
        db.close()
