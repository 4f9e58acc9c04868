"""
Query helpers over the ORM tables. Every function takes the caller's
session so it runs inside the caller's transaction.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from common.config import METADATA_FIELDS
from ingestion.document_models import (
    CorpusDocument,
    LessonTags,
    ScoredCandidate,
    SubmissionInput,
)
from ingestion.hash_utils import content_hash
from storage.models import (
    DuplicateGroupDismissal,
    DuplicateResolution,
    Lesson,
    LessonSubmission,
    SubmissionSimilarity,
)


def _tags_of(row) -> LessonTags:
    return LessonTags(**{name: list(getattr(row, name) or []) for name in METADATA_FIELDS})


def to_corpus_document(row: Lesson) -> CorpusDocument:
    return CorpusDocument(
        lesson_id=row.lesson_id,
        title=row.title,
        content_text=row.content_text,
        summary=row.summary,
        content_hash=row.content_hash,
        embedding=row.embedding,
        tags=_tags_of(row),
        canonical_id=row.canonical_id,
    )


def to_submission_input(row: LessonSubmission) -> SubmissionInput:
    return SubmissionInput(
        submission_id=row.id,
        title=row.title,
        content_text=row.content_text,
        summary=row.summary,
        embedding=row.embedding,
        tags=_tags_of(row),
        content_hash=row.content_hash,
    )


# --- Live catalog ---


def list_documents(session: Session) -> List[CorpusDocument]:
    rows = session.scalars(select(Lesson).order_by(Lesson.lesson_id))
    return [to_corpus_document(r) for r in rows]


def catalog_fingerprint(session: Session) -> Tuple[int, Optional[datetime]]:
    """(lesson count, latest update); changes whenever a lesson is added, edited or removed."""
    count, latest = session.execute(
        select(func.count(Lesson.lesson_id), func.max(Lesson.updated_at))
    ).one()
    return count, latest


def last_modified(session: Session, ids: Optional[Iterable[str]] = None) -> Dict[str, datetime]:
    """lesson_id -> updated_at, for every live lesson unless ids narrows it."""
    stmt = select(Lesson.lesson_id, Lesson.updated_at)
    if ids is not None:
        ids = list(ids)
        if not ids:
            return {}
        stmt = stmt.where(Lesson.lesson_id.in_(ids))
    return {lesson_id: updated for lesson_id, updated in session.execute(stmt)}


def find_by_hash(session: Session, digest: str) -> List[CorpusDocument]:
    if not digest:
        return []
    rows = session.scalars(
        select(Lesson).where(Lesson.content_hash == digest).order_by(Lesson.lesson_id)
    )
    return [to_corpus_document(r) for r in rows]


def get_lessons(session: Session, ids: Iterable[str], for_update: bool = False) -> Dict[str, Lesson]:
    ids = list(ids)
    if not ids:
        return {}
    stmt = select(Lesson).where(Lesson.lesson_id.in_(ids))
    if for_update:
        stmt = stmt.with_for_update()
    return {r.lesson_id: r for r in session.scalars(stmt)}


def upsert_lesson(session: Session, doc: CorpusDocument) -> Lesson:
    row = session.get(Lesson, doc.lesson_id) or Lesson(lesson_id=doc.lesson_id)
    row.title = doc.title
    row.summary = doc.summary
    row.content_text = doc.content_text
    row.embedding = doc.embedding
    row.canonical_id = doc.canonical_id
    for name in METADATA_FIELDS:
        setattr(row, name, list(getattr(doc.tags, name)))
    row.content_hash = doc.content_hash or content_hash(
        doc.content_text, doc.title, doc.summary, doc.tags.grade_levels
    )
    session.add(row)
    return row


# --- Submissions ---


def add_submission(session: Session, submitter_id: str, data: SubmissionInput,
                   updates_lesson_id: Optional[str] = None) -> LessonSubmission:
    row = LessonSubmission(submitter_id=submitter_id, status="submitted",
                           updates_lesson_id=updates_lesson_id)
    if data.submission_id:
        row.id = data.submission_id
    apply_submission_content(row, data)
    session.add(row)
    session.flush()
    return row


def apply_submission_content(row: LessonSubmission, data: SubmissionInput) -> None:
    row.title = data.title
    row.summary = data.summary
    row.content_text = data.content_text
    row.embedding = data.embedding
    for name in METADATA_FIELDS:
        setattr(row, name, list(getattr(data.tags, name)))
    row.content_hash = content_hash(
        data.content_text, data.title, data.summary, data.tags.grade_levels
    )


def get_submission(session: Session, submission_id: str) -> Optional[LessonSubmission]:
    return session.get(LessonSubmission, submission_id)


def list_submission_ids(session: Session, statuses: Iterable[str]) -> List[str]:
    stmt = (
        select(LessonSubmission.id)
        .where(LessonSubmission.status.in_(list(statuses)))
        .order_by(LessonSubmission.created_at, LessonSubmission.id)
    )
    return list(session.scalars(stmt))


def transition_submission(
    session: Session,
    submission_id: str,
    from_status: str,
    to_status: str,
    held_by: Optional[str] = None,
    **values,
) -> bool:
    """
    Compare-and-set status change. Returns False when the row was not in
    ``from_status`` (or, with ``held_by``, not held by that reviewer).
    """
    stmt = (
        update(LessonSubmission)
        .where(LessonSubmission.id == submission_id)
        .where(LessonSubmission.status == from_status)
    )
    if held_by is not None:
        stmt = stmt.where(LessonSubmission.reviewer_id == held_by)
    result = session.execute(
        stmt.values(status=to_status, **values).execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# --- Evidence ---


def replace_evidence(
    session: Session, submission_id: str, run_id: str, candidates: List[ScoredCandidate]
) -> int:
    """The latest run's evidence supersedes anything stored for the submission."""
    session.execute(
        delete(SubmissionSimilarity).where(SubmissionSimilarity.submission_id == submission_id)
    )
    for c in candidates:
        session.add(
            SubmissionSimilarity(
                submission_id=submission_id,
                lesson_id=c.lesson_id,
                detection_run_id=run_id,
                title_similarity=c.title_similarity,
                content_similarity=c.content_similarity,
                metadata_overlap_score=c.metadata_overlap,
                combined_score=c.combined_score,
                match_type=c.tier.value,
                match_details=c.match_details,
            )
        )
    session.flush()
    return len(candidates)


def list_evidence(session: Session, submission_id: str) -> List[SubmissionSimilarity]:
    stmt = (
        select(SubmissionSimilarity)
        .where(SubmissionSimilarity.submission_id == submission_id)
        .order_by(SubmissionSimilarity.combined_score.desc(), SubmissionSimilarity.lesson_id)
    )
    return list(session.scalars(stmt))


def delete_evidence_for_lessons(session: Session, lesson_ids: Iterable[str]) -> int:
    ids = list(lesson_ids)
    if not ids:
        return 0
    result = session.execute(
        delete(SubmissionSimilarity).where(SubmissionSimilarity.lesson_id.in_(ids))
    )
    return result.rowcount or 0


# --- Resolutions & dismissals ---


def group_key(lesson_ids: Iterable[str]) -> str:
    return ",".join(sorted(set(lesson_ids)))


def dismissed_group_keys(session: Session) -> Set[str]:
    return set(session.scalars(select(DuplicateGroupDismissal.group_key)))


def latest_resolution_for(session: Session, lesson_ids: Iterable[str]) -> Optional[datetime]:
    ids = list(lesson_ids)
    stmt = (
        select(DuplicateResolution.resolved_at)
        .where(DuplicateResolution.canonical_lesson_id.in_(ids))
        .where(DuplicateResolution.resolution_mode != "keep_all")
        .order_by(DuplicateResolution.resolved_at.desc())
        .limit(1)
    )
    return session.scalars(stmt).first()


def dismissal_for(session: Session, key: str) -> Optional[DuplicateGroupDismissal]:
    return session.scalars(
        select(DuplicateGroupDismissal).where(DuplicateGroupDismissal.group_key == key)
    ).first()
