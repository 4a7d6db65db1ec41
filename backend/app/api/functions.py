"""Function endpoints — stateless handlers under ``/functions/v1``.

Implements:
  POST /functions/v1/process-jobs     — claim + package one queued job
  POST /functions/v1/jobs-create      — queue a job (active members)
  POST /functions/v1/jobs-claim       — hand the next job to a remote worker
  POST /functions/v1/jobs-report      — accept a remote worker's result
  POST /functions/v1/generate-prompt  — single system/message model call
  OPTIONS /functions/v1/{name}        — empty 200 (preflight)

Errors use the ``{"error": <message>}`` body (see ``app.main``).
"""

import logging
from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from app.config import settings
from app.database import get_db
from app.deps import require_active_member, verify_worker_key
from app.models.job import Job
from app.models.user import User
from app.services.job_processor import (
    OUTCOME_ALREADY_CLAIMED,
    OUTCOME_NO_JOBS,
    OUTCOME_REJECTED,
    finish_job,
    process_next_job,
)
from app.services.job_service import JobService
from prompt_packager.client import GatewayError, call_ai
from prompt_packager.state import (
    InvalidPayloadError,
    PackagedResult,
    StepRecord,
    UnknownJobTypeError,
    parse_payload,
)

logger = logging.getLogger(__name__)

FUNCTIONS_PREFIX = "/functions/v1"

router = APIRouter(prefix=FUNCTIONS_PREFIX, tags=["functions"])
_job_service = JobService()


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class JobOut(BaseModel):
    """Public representation of a Job record."""

    id: str
    type: str
    payload_json: Any
    status: str
    degraded: bool
    error_message: str | None
    claimed_at: datetime | None
    created_at: datetime
    updated_at: datetime | None

    model_config = {"from_attributes": True}


class CreateJobRequest(BaseModel):
    type: str | None = None
    payload: dict[str, Any] | None = None


class ReportStep(BaseModel):
    step: str
    input_snippet: str | None = None
    output_snippet: str | None = None
    success: bool = True


class ReportRequest(BaseModel):
    """Result posted by a remote worker.

    ``error`` marks a job the worker refused to run (e.g. unknown type).
    """

    job_id: str | None = None
    standardized_prompt_text: str | None = None
    summary: str | None = None
    tags: list[str] | None = None
    complexity: str | None = None
    steps: list[ReportStep] = Field(default_factory=list)
    error: str | None = None


class GeneratePromptRequest(BaseModel):
    system: str = ""
    message: str = ""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _maybe_verify_worker_key(
    x_worker_key: Annotated[str | None, Header()] = None,
) -> None:
    if settings.process_jobs_require_worker_key:
        verify_worker_key(x_worker_key)


def _job_out(job: Job) -> dict:
    return JobOut.model_validate(job).model_dump(mode="json")


def _submission_id_of(job: Job) -> str | None:
    payload = job.payload_json if isinstance(job.payload_json, dict) else {}
    return payload.get("submission_id")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.options("/{function_name}")
def preflight(function_name: str) -> Response:
    return Response(status_code=200)


@router.post("/process-jobs", dependencies=[Depends(_maybe_verify_worker_key)])
async def process_jobs() -> JSONResponse:
    """Drain at most one job from the queue."""
    try:
        outcome = await process_next_job()
    except Exception as exc:
        logger.exception("process-jobs error")
        return JSONResponse({"error": str(exc)}, status_code=500)

    if outcome.outcome == OUTCOME_NO_JOBS:
        return JSONResponse({"message": "No jobs in queue"})
    if outcome.outcome == OUTCOME_ALREADY_CLAIMED:
        return JSONResponse({"message": "Job already claimed"})
    if outcome.outcome == OUTCOME_REJECTED:
        return JSONResponse({"success": False, "job_id": outcome.job_id, "error": outcome.error})
    return JSONResponse({"success": True, "job_id": outcome.job_id})


@router.post("/jobs-create")
def jobs_create(
    body: CreateJobRequest,
    user: Annotated[User, Depends(require_active_member)],
) -> dict:
    """Queue a job for an active member."""
    if not body.type or body.payload is None:
        raise HTTPException(status_code=400, detail="type and payload required")
    try:
        parse_payload(body.type, body.payload)
    except (UnknownJobTypeError, InvalidPayloadError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    db = get_db()
    try:
        job = _job_service.create_job(db, body.type, body.payload)
        logger.info("jobs-create", extra={"job_id": job.id, "user_id": user.id})
        return {"job": _job_out(job)}
    finally:
        db.close()


@router.post("/jobs-claim", dependencies=[Depends(verify_worker_key)])
def jobs_claim() -> dict:
    """Claim the next queued job for a remote worker.

    ``{"job": null}`` when the queue is empty or the race was lost.
    """
    db = get_db()
    try:
        job, claimed = _job_service.claim_next(db)
        if job is None or not claimed:
            return {"job": None}
        return {"job": _job_out(job)}
    finally:
        db.close()


@router.post("/jobs-report", dependencies=[Depends(verify_worker_key)])
def jobs_report(body: ReportRequest) -> dict:
    """Persist a remote worker's steps and complete (or fail) the job.

    Only a ``processing`` job accepts a report; anything else is 409.
    """
    if not body.job_id:
        raise HTTPException(status_code=400, detail="job_id required")

    db = get_db()
    try:
        job = _job_service.get_job(db, body.job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")

        steps = [
            StepRecord(
                step=s.step,
                input_snippet=s.input_snippet or "",
                output_snippet=s.output_snippet or "",
                success=s.success,
            )
            for s in body.steps
        ]

        if body.error:
            if not _job_service.mark_failed(db, job.id, body.error):
                raise HTTPException(status_code=409, detail="Job not in processing")
            _job_service.record_runs(db, job.id, steps)
            return {"success": True}

        result = PackagedResult(
            job_id=job.id,
            submission_id=_submission_id_of(job),
            standardized_prompt_text=body.standardized_prompt_text or "",
            summary=body.summary or "",
            tags=body.tags or [],
            complexity=body.complexity or "",
            steps=steps,
        )
        if not finish_job(db, job.id, result):
            raise HTTPException(status_code=409, detail="Job not in processing")
        return {"success": True}
    finally:
        db.close()


@router.post("/generate-prompt")
async def generate_prompt(body: GeneratePromptRequest) -> dict:
    """One model call with caller-supplied system prompt and message."""
    if not settings.ai_gateway_api_key:
        raise HTTPException(status_code=500, detail="AI not configured")
    try:
        text = await call_ai(
            settings.gateway_config(),
            body.system,
            body.message,
            max_tokens=settings.ai_generate_max_tokens,
        )
    except GatewayError as e:
        logger.error("Generate prompt error: %s", e)
        raise HTTPException(status_code=500, detail=f"AI gateway error: {e}")
    return {"text": text or "No output generated."}
