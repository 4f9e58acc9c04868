"""
Submission lifecycle:

    submitted -> in_review -> approved | needs_revision
    needs_revision -> submitted   (same submission id)

Each transition is a compare-and-set on the status column, so two
reviewers racing to claim a submission get exactly one winner.
"""
from __future__ import annotations

from typing import Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from common.errors import ReviewClaimConflict, ReviewStateError
from common.logger import get_logger
from ingestion.document_models import CorpusDocument, SubmissionInput, SubmissionStatus
from storage import repository as repo
from storage.db import session_scope
from storage.models import LessonSubmission, utcnow

log = get_logger(__name__)

Publisher = Callable[[Session, LessonSubmission], None]


def publish_to_catalog(session: Session, row: LessonSubmission) -> None:
    """Publish an approved submission as a live lesson (or update the lesson it targets)."""
    data = repo.to_submission_input(row)
    repo.upsert_lesson(
        session,
        CorpusDocument(
            lesson_id=row.updates_lesson_id or row.id,
            title=data.title,
            content_text=data.content_text,
            summary=data.summary,
            content_hash=row.content_hash,
            embedding=data.embedding,
            tags=data.tags,
        ),
    )


class ReviewWorkflow:
    def __init__(self, session_factory: sessionmaker, publisher: Optional[Publisher] = None):
        self.session_factory = session_factory
        self.publisher = publisher

    def submit(
        self, submitter_id: str, data: SubmissionInput, updates_lesson_id: Optional[str] = None
    ) -> str:
        with session_scope(self.session_factory) as session:
            row = repo.add_submission(session, submitter_id, data, updates_lesson_id)
            submission_id = row.id
        log.info("Submission %s received from %s", submission_id, submitter_id)
        return submission_id

    def status(self, submission_id: str) -> str:
        with session_scope(self.session_factory) as session:
            row = self._require(session, submission_id)
            return row.status

    def start_review(self, submission_id: str, reviewer_id: str) -> None:
        """Atomically claim a submitted submission for one reviewer."""
        with session_scope(self.session_factory) as session:
            claimed = repo.transition_submission(
                session,
                submission_id,
                SubmissionStatus.SUBMITTED.value,
                SubmissionStatus.IN_REVIEW.value,
                reviewer_id=reviewer_id,
                review_started_at=utcnow(),
            )
            if not claimed:
                row = self._require(session, submission_id)
                if row.status == SubmissionStatus.IN_REVIEW.value:
                    raise ReviewClaimConflict(
                        f"Submission {submission_id} is already in review by {row.reviewer_id}"
                    )
                raise ReviewStateError(f"Cannot start review of a {row.status} submission")
        log.info("Submission %s claimed by %s", submission_id, reviewer_id)

    def approve(self, submission_id: str, reviewer_id: str, notes: Optional[str] = None) -> None:
        with session_scope(self.session_factory) as session:
            self._finish_review(session, submission_id, reviewer_id, SubmissionStatus.APPROVED, notes)
            if self.publisher is not None:
                self.publisher(session, self._require(session, submission_id))
        log.info("Submission %s approved by %s", submission_id, reviewer_id)

    def request_revision(self, submission_id: str, reviewer_id: str, notes: str) -> None:
        with session_scope(self.session_factory) as session:
            self._finish_review(
                session, submission_id, reviewer_id, SubmissionStatus.NEEDS_REVISION, notes
            )
        log.info("Submission %s sent back for revision by %s", submission_id, reviewer_id)

    def resubmit(self, submission_id: str, submitter_id: str, data: SubmissionInput) -> None:
        """Replace the content of a needs_revision submission and put it back in the queue."""
        with session_scope(self.session_factory) as session:
            row = self._require(session, submission_id)
            if row.submitter_id != submitter_id:
                raise ReviewStateError(f"Submission {submission_id} belongs to another submitter")
            reopened = repo.transition_submission(
                session,
                submission_id,
                SubmissionStatus.NEEDS_REVISION.value,
                SubmissionStatus.SUBMITTED.value,
                reviewer_id=None,
                review_started_at=None,
                revision_count=row.revision_count + 1,
            )
            if not reopened:
                raise ReviewStateError(f"Cannot resubmit a {row.status} submission")
            session.refresh(row)
            repo.apply_submission_content(row, data)
        log.info("Submission %s resubmitted (revision %d)", submission_id, row.revision_count)

    def _finish_review(
        self,
        session: Session,
        submission_id: str,
        reviewer_id: str,
        to_status: SubmissionStatus,
        notes: Optional[str],
    ) -> None:
        done = repo.transition_submission(
            session,
            submission_id,
            SubmissionStatus.IN_REVIEW.value,
            to_status.value,
            held_by=reviewer_id,
            review_notes=notes,
        )
        if not done:
            row = self._require(session, submission_id)
            if row.status == SubmissionStatus.IN_REVIEW.value:
                raise ReviewClaimConflict(
                    f"Submission {submission_id} is held by {row.reviewer_id}, not {reviewer_id}"
                )
            raise ReviewStateError(f"Cannot move a {row.status} submission to {to_status.value}")

    @staticmethod
    def _require(session: Session, submission_id: str) -> LessonSubmission:
        row = repo.get_submission(session, submission_id)
        if row is None:
            raise ReviewStateError(f"Submission not found: {submission_id}")
        return row
