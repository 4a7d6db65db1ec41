"""Prompt submission service — intake and packaged-output write-back."""

import logging

from sqlalchemy.orm import Session

from app.models.prompt_submission import (
    PromptSubmission,
    SUBMISSION_STATUS_PACKAGED,
    SUBMISSION_STATUS_PENDING,
)
from prompt_packager.state import PackagedResult

logger = logging.getLogger(__name__)


class SubmissionService:
    def create_submission(
        self,
        db: Session,
        user_id: int,
        *,
        title: str,
        raw_prompt: str,
        problem: str | None = None,
        scope: str | None = None,
        target_user: str | None = None,
        integrations: list[str] | None = None,
    ) -> PromptSubmission:
        submission = PromptSubmission(
            submitted_by=user_id,
            title=title,
            raw_prompt=raw_prompt,
            problem=problem,
            scope=scope,
            target_user=target_user,
            integrations=integrations or [],
            status=SUBMISSION_STATUS_PENDING,
        )
        db.add(submission)
        db.commit()
        db.refresh(submission)
        logger.info("Created submission %s", submission.id, extra={"user_id": user_id})
        return submission

    def apply_packaged(self, db: Session, submission_id: str, result: PackagedResult) -> bool:
        """Write the pipeline output onto a submission and mark it packaged.

        Returns False when the submission does not exist.
        """
        submission = self.get(db, submission_id)
        if submission is None:
            logger.warning("apply_packaged: submission %s not found", submission_id)
            return False
        submission.packaged_prompt = result.standardized_prompt_text or None
        submission.packaged_summary = result.summary or None
        submission.packaged_tags = list(result.tags or [])
        submission.packaged_complexity = result.complexity or None
        submission.status = SUBMISSION_STATUS_PACKAGED
        db.commit()
        logger.info("Submission %s packaged", submission_id, extra={"job_id": result.job_id})
        return True

    def get(self, db: Session, submission_id: str) -> PromptSubmission | None:
        return db.query(PromptSubmission).filter(PromptSubmission.id == submission_id).first()

    def list_for_user(
        self,
        db: Session,
        user_id: int,
        *,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[PromptSubmission], int]:
        """Return a page of a user's submissions (newest first) plus the total count."""
        q = db.query(PromptSubmission).filter(PromptSubmission.submitted_by == user_id)
        total = q.count()
        offset = (page - 1) * page_size
        rows = q.order_by(PromptSubmission.created_at.desc()).offset(offset).limit(page_size).all()
        return rows, total
