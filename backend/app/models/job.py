"""Job queue models.

Status lifecycle:
    queued → processing → completed
                        ↘ failed   (payload rejected before the pipeline ran)

A ``completed`` job with ``degraded = True`` finished with at least one
stage falling back to default values.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base

JOB_STATUS_QUEUED = "queued"
JOB_STATUS_PROCESSING = "processing"
JOB_STATUS_COMPLETED = "completed"
JOB_STATUS_FAILED = "failed"

VALID_JOB_STATUSES: list[str] = [
    JOB_STATUS_QUEUED,
    JOB_STATUS_PROCESSING,
    JOB_STATUS_COMPLETED,
    JOB_STATUS_FAILED,
]


def utcnow() -> datetime:
    """Naive UTC timestamp with microseconds (keeps FIFO order stable on SQLite)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid() -> str:
    return str(uuid.uuid4())


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (Index("idx_jobs_status_created_at", "status", "created_at"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    type: Mapped[str] = mapped_column(String(50))
    # Interpreted per ``type``; see prompt_packager.state.PAYLOAD_MODELS
    payload_json: Mapped[dict] = mapped_column(JSON, default=dict)

    status: Mapped[str] = mapped_column(String(20), default=JOB_STATUS_QUEUED, index=True)
    degraded: Mapped[bool] = mapped_column(Boolean, default=False)
    # Set when status == "failed"
    error_message: Mapped[str | None] = mapped_column(Text, default=None)
    # Stamped by the claim; drives the reclaim sweep
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime, default=None)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<Job(id='{self.id}', type='{self.type}', status='{self.status}')>"


class JobRun(Base):
    """One AI call made while processing a job. Insert-only."""

    __tablename__ = "job_runs"

    id: Mapped[int] = mapped_column(primary_key=True)
    job_id: Mapped[str] = mapped_column(ForeignKey("jobs.id"), index=True)
    step: Mapped[str] = mapped_column(String(50))
    input_snippet: Mapped[str | None] = mapped_column(Text, default=None)
    output_snippet: Mapped[str | None] = mapped_column(Text, default=None)
    success: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
