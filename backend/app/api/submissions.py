"""Submissions API — prompt intake for members.

POST /api/submissions  — store a raw prompt and queue it for packaging
GET  /api/submissions  — the caller's submissions, newest first
"""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.database import get_db
from app.deps import require_active_member
from app.models.prompt_submission import PromptSubmission
from app.models.user import User
from app.services.job_service import JobService
from app.services.submission_service import SubmissionService
from prompt_packager.state import JOB_TYPE_PACKAGE_PROMPT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/submissions", tags=["submissions"])
_job_service = JobService()
_submission_service = SubmissionService()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class CreateSubmissionRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    raw_prompt: str = Field(..., min_length=1)
    problem: str | None = None
    scope: str | None = Field(default=None, max_length=255)
    target_user: str | None = Field(default=None, max_length=255)
    integrations: list[str] = Field(default_factory=list)


class SubmissionResponse(BaseModel):
    id: str
    title: str
    status: str
    raw_prompt: str
    problem: str | None
    scope: str | None
    target_user: str | None
    integrations: list[str] | None
    packaged_prompt: str | None
    packaged_summary: str | None
    packaged_tags: list[str] | None
    packaged_complexity: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class SubmissionCreatedResponse(BaseModel):
    submission: SubmissionResponse
    job_id: str


class SubmissionListResponse(BaseModel):
    submissions: list[SubmissionResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


def _job_payload(submission: PromptSubmission) -> dict:
    """payload_json for the package_prompt job created with a submission."""
    return {
        "submission_id": submission.id,
        "title": submission.title,
        "raw_prompt": submission.raw_prompt,
        "problem": submission.problem or "",
        "scope": submission.scope or "",
        "integrations": list(submission.integrations or []),
    }


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post("", response_model=SubmissionCreatedResponse, status_code=201)
def create_submission(
    body: CreateSubmissionRequest,
    current_user: Annotated[User, Depends(require_active_member)],
) -> SubmissionCreatedResponse:
    """Store the submission (``pending``) and queue its packaging job."""
    integrations = [i.strip() for i in body.integrations if i and i.strip()]
    db = get_db()
    try:
        submission = _submission_service.create_submission(
            db,
            current_user.id,
            title=body.title,
            raw_prompt=body.raw_prompt,
            problem=body.problem,
            scope=body.scope,
            target_user=body.target_user,
            integrations=integrations,
        )
        job = _job_service.create_job(db, JOB_TYPE_PACKAGE_PROMPT, _job_payload(submission))
        return SubmissionCreatedResponse(
            submission=SubmissionResponse.model_validate(submission),
            job_id=job.id,
        )
    finally:
        db.close()


@router.get("", response_model=SubmissionListResponse)
def list_submissions(
    current_user: Annotated[User, Depends(require_active_member)],
    page: int = Query(default=1, ge=1, description="Page number (1-based)"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
) -> SubmissionListResponse:
    db = get_db()
    try:
        rows, total = _submission_service.list_for_user(
            db, current_user.id, page=page, page_size=page_size
        )
        items = [SubmissionResponse.model_validate(r) for r in rows]
    finally:
        db.close()

    total_pages = max(1, (total + page_size - 1) // page_size)
    return SubmissionListResponse(
        submissions=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )
