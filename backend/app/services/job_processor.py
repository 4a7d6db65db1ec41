"""Job processor — drains one job per invocation (``process-jobs``).

Flow:
    1. Select the oldest ``queued`` job (none → NO_JOBS, nothing written).
    2. Claim it with the conditional update (lost race → ALREADY_CLAIMED).
    3. Resolve the typed payload; unknown or invalid → job ``failed``.
    4. Run standardize → classify against the AI gateway.
    5. Mark the job ``completed`` (``degraded`` when a stage fell back); a job
       no longer ``processing`` (reclaimed meanwhile) → ALREADY_CLAIMED.
    6. Record every step as a JobRun.
    7. Write the packaged fields onto the originating submission, if any.

Steps 5-7 are shared with ``jobs-report`` via ``finish_job``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from app.config import Settings, settings as default_settings
from app.database import get_db
from app.logging_config import job_context
from app.services.job_service import JobService
from app.services.submission_service import SubmissionService
from prompt_packager.client import ChatFn, make_chat_fn
from prompt_packager.pipeline import package_prompt
from prompt_packager.state import (
    InvalidPayloadError,
    PackagedResult,
    UnknownJobTypeError,
    parse_payload,
)

logger = logging.getLogger(__name__)

_job_service = JobService()
_submission_service = SubmissionService()

OUTCOME_NO_JOBS = "no_jobs"
OUTCOME_ALREADY_CLAIMED = "already_claimed"
OUTCOME_COMPLETED = "completed"
OUTCOME_REJECTED = "rejected"


@dataclass
class ProcessOutcome:
    """Result of one process-jobs invocation."""

    outcome: str
    job_id: Optional[str] = None
    error: Optional[str] = None
    degraded: bool = False


def finish_job(db: Session, job_id: str, result: PackagedResult) -> bool:
    """Complete a processing job, persist its runs and update its submission.

    Returns False (and writes nothing) when the job is not ``processing``.
    """
    if not _job_service.mark_completed(db, job_id, degraded=result.degraded):
        return False
    _job_service.record_runs(db, job_id, result.steps)
    if result.submission_id:
        _submission_service.apply_packaged(db, result.submission_id, result)
    return True


async def process_next_job(
    config: Settings | None = None,
    llm: ChatFn | None = None,
) -> ProcessOutcome:
    """Claim and process at most one queued job.

    Args:
        config: Settings to build the gateway client from (module settings by default).
        llm: Override for the model call; defaults to the configured gateway.

    Stage failures are absorbed by the pipeline. Anything else (database
    errors, for instance) propagates to the caller.
    """
    config = config or default_settings
    db = get_db()
    try:
        job, claimed = _job_service.claim_next(db)
        if job is None:
            return ProcessOutcome(OUTCOME_NO_JOBS)
        if not claimed:
            return ProcessOutcome(OUTCOME_ALREADY_CLAIMED, job_id=job.id)

        job_id = job.id
        with job_context(job_id):
            logger.info("Processing job %s (type: %s)", job_id, job.type)

            try:
                payload = parse_payload(job.type, job.payload_json)
            except (UnknownJobTypeError, InvalidPayloadError) as e:
                _job_service.mark_failed(db, job_id, str(e))
                return ProcessOutcome(OUTCOME_REJECTED, job_id=job_id, error=str(e))

            result = await package_prompt(
                payload,
                llm or make_chat_fn(config.gateway_config()),
                job_id=job_id,
            )
            if not finish_job(db, job_id, result):
                # Reclaimed and picked up by another processor meanwhile
                return ProcessOutcome(OUTCOME_ALREADY_CLAIMED, job_id=job_id)

            logger.info("Completed job %s", job_id, extra={"degraded": result.degraded})
            return ProcessOutcome(OUTCOME_COMPLETED, job_id=job_id, degraded=result.degraded)
    finally:
        db.close()
