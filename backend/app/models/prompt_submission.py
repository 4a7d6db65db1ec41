from datetime import datetime

from sqlalchemy import JSON, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.models import Base
from app.models.job import new_uuid, utcnow

SUBMISSION_STATUS_PENDING = "pending"
SUBMISSION_STATUS_PACKAGED = "packaged"


class PromptSubmission(Base):
    __tablename__ = "prompt_submissions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_uuid)
    submitted_by: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)

    # --- Submitted fields ---
    title: Mapped[str] = mapped_column(String(255))
    raw_prompt: Mapped[str] = mapped_column(Text)
    problem: Mapped[str | None] = mapped_column(Text, default=None)
    scope: Mapped[str | None] = mapped_column(String(255), default=None)
    target_user: Mapped[str | None] = mapped_column(String(255), default=None)
    integrations: Mapped[list | None] = mapped_column(JSON, default=list)

    status: Mapped[str] = mapped_column(String(20), default=SUBMISSION_STATUS_PENDING, index=True)

    # --- Written by the packaging pipeline ---
    packaged_prompt: Mapped[str | None] = mapped_column(Text, default=None)
    packaged_summary: Mapped[str | None] = mapped_column(Text, default=None)
    packaged_tags: Mapped[list | None] = mapped_column(JSON, default=None)
    packaged_complexity: Mapped[str | None] = mapped_column(String(20), default=None)

    admin_notes: Mapped[str | None] = mapped_column(Text, default=None)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now()
    )
