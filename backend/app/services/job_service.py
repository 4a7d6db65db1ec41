"""Job service — creates, claims, updates and queries Job records.

Keeps DB operations isolated from the API layer so the logic is
easily testable and reusable.

The claim is a conditional UPDATE (``WHERE id = :id AND status = 'queued'``);
whichever caller sees an affected-row count of one owns the job. Completion
and failure are conditional the same way (``WHERE status = 'processing'``), so a
late or repeated result cannot finish a job twice.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.models.job import (
    Job,
    JobRun,
    JOB_STATUS_QUEUED,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
    utcnow,
)
from prompt_packager.state import StepRecord

logger = logging.getLogger(__name__)


class JobService:
    """CRUD, claim and status helpers for Job records."""

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_job(self, db: Session, job_type: str, payload: dict[str, Any]) -> Job:
        """Create a new Job in QUEUED state and return it."""
        job = Job(type=job_type, payload_json=payload, status=JOB_STATUS_QUEUED)
        db.add(job)
        db.commit()
        db.refresh(job)
        logger.info("Created job %s (type: %s)", job.id, job_type, extra={"job_id": job.id})
        return job

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def next_queued(self, db: Session) -> Job | None:
        """Oldest queued job by creation time, or None."""
        return (
            db.query(Job)
            .filter(Job.status == JOB_STATUS_QUEUED)
            .order_by(Job.created_at.asc())
            .limit(1)
            .first()
        )

    def claim(self, db: Session, job_id: str) -> bool:
        """Flip one job queued → processing. False if another caller got there first."""
        result = db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JOB_STATUS_QUEUED)
            .values(status=JOB_STATUS_PROCESSING, claimed_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        db.commit()
        claimed = result.rowcount == 1
        if claimed:
            logger.info("Claimed job %s", job_id, extra={"job_id": job_id})
        else:
            logger.info("Job %s already claimed", job_id, extra={"job_id": job_id})
        return claimed

    def claim_next(self, db: Session) -> tuple[Job | None, bool]:
        """Select + claim. Returns (candidate, claimed); (None, False) when empty."""
        job = self.next_queued(db)
        if job is None:
            return None, False
        claimed = self.claim(db, job.id)
        if claimed:
            db.refresh(job)
        return job, claimed

    def reclaim_stale(self, db: Session, older_than: timedelta) -> int:
        """Return processing jobs claimed before ``now - older_than`` to the queue."""
        cutoff: datetime = utcnow() - older_than
        result = db.execute(
            update(Job)
            .where(
                Job.status == JOB_STATUS_PROCESSING,
                Job.claimed_at.is_not(None),
                Job.claimed_at < cutoff,
            )
            .values(status=JOB_STATUS_QUEUED, claimed_at=None)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        count = result.rowcount or 0
        if count:
            logger.warning("Reclaimed %d stale job(s)", count, extra={"cutoff": cutoff.isoformat()})
        return count

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def record_runs(self, db: Session, job_id: str, steps: Iterable[StepRecord]) -> list[JobRun]:
        """Append one JobRun per pipeline step."""
        runs = [
            JobRun(
                job_id=job_id,
                step=s.step,
                input_snippet=s.input_snippet or None,
                output_snippet=s.output_snippet or None,
                success=s.success is not False,
            )
            for s in steps
        ]
        if runs:
            db.add_all(runs)
            db.commit()
        return runs

    def _finish(self, db: Session, job_id: str, **values: Any) -> bool:
        """processing → terminal status. False if the job is not processing."""
        result = db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JOB_STATUS_PROCESSING)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        return result.rowcount == 1

    def mark_completed(self, db: Session, job_id: str, *, degraded: bool = False) -> bool:
        """Transition a processing job to COMPLETED."""
        done = self._finish(db, job_id, status=JOB_STATUS_COMPLETED, degraded=degraded)
        if done:
            logger.info("Job %s completed", job_id, extra={"job_id": job_id, "degraded": degraded})
        else:
            logger.warning("mark_completed: job %s is not processing", job_id, extra={"job_id": job_id})
        return done

    def mark_failed(self, db: Session, job_id: str, error_message: str) -> bool:
        """Transition a processing job to FAILED and record the error."""
        done = self._finish(db, job_id, status=JOB_STATUS_FAILED, error_message=error_message)
        if done:
            logger.warning("Job %s failed: %s", job_id, error_message, extra={"job_id": job_id})
        else:
            logger.warning("mark_failed: job %s is not processing", job_id, extra={"job_id": job_id})
        return done

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_job(self, db: Session, job_id: str) -> Job | None:
        return db.query(Job).filter(Job.id == job_id).first()

    def list_runs(self, db: Session, job_id: str) -> list[JobRun]:
        """Runs for a job in the order they were recorded."""
        return db.query(JobRun).filter(JobRun.job_id == job_id).order_by(JobRun.id.asc()).all()
