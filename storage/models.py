"""
SQLAlchemy tables for the live catalog, submissions, evidence and the
append-only resolution audit trail.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class LessonFieldsMixin:
    """Content, embedding and tag-set columns shared by lessons, submissions and the archive."""

    title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    summary: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content_hash: Mapped[str] = mapped_column(String(80), nullable=False, default="", index=True)
    embedding: Mapped[Optional[List[float]]] = mapped_column(JSON, nullable=True)

    grade_levels: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    thematic_categories: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    activity_type: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    cultural_heritage: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    season_timing: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    main_ingredients: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    cooking_methods: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)


class Lesson(LessonFieldsMixin, Base):
    __tablename__ = "lessons"

    lesson_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    canonical_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    processing_notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class LessonSubmission(LessonFieldsMixin, Base):
    __tablename__ = "lesson_submissions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    submitter_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="submitted", index=True)
    reviewer_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    review_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    review_notes: Mapped[Optional[str]] = mapped_column(Text)
    updates_lesson_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    revision_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class SubmissionSimilarity(Base):
    __tablename__ = "submission_similarities"
    __table_args__ = (
        UniqueConstraint("submission_id", "lesson_id", name="uq_submission_lesson"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    submission_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    lesson_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    detection_run_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title_similarity: Mapped[float] = mapped_column(Float, nullable=False)
    content_similarity: Mapped[float] = mapped_column(Float, nullable=False)
    metadata_overlap_score: Mapped[float] = mapped_column(Float, nullable=False)
    combined_score: Mapped[float] = mapped_column(Float, nullable=False)
    match_type: Mapped[str] = mapped_column(String(10), nullable=False)
    match_details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class DuplicateResolution(Base):
    __tablename__ = "duplicate_resolutions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    group_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    canonical_lesson_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    retired_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    resolution_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="single")
    action_taken: Mapped[str] = mapped_column(String(32), nullable=False)
    lessons_in_group: Mapped[int] = mapped_column(Integer, nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    title_updates: Mapped[List[dict]] = mapped_column(JSON, nullable=False, default=list)
    sub_group_name: Mapped[Optional[str]] = mapped_column(String(255))
    parent_group_id: Mapped[Optional[str]] = mapped_column(String(128))
    resolved_by: Mapped[str] = mapped_column(String(64), nullable=False)
    resolved_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class LessonArchive(LessonFieldsMixin, Base):
    __tablename__ = "lesson_archive"
    __table_args__ = (
        Index("idx_lesson_archive_canonical", "canonical_id"),
        Index("idx_lesson_archive_archived_at", "archived_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    lesson_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    processing_notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    lesson_created_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    lesson_updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    previous_canonical_id: Mapped[Optional[str]] = mapped_column(String(64))
    canonical_id: Mapped[str] = mapped_column(String(64), nullable=False)
    archive_reason: Mapped[str] = mapped_column(Text, nullable=False)
    archived_by: Mapped[str] = mapped_column(String(64), nullable=False)
    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    resolution_id: Mapped[Optional[str]] = mapped_column(String(64))


class DuplicateGroupDismissal(Base):
    __tablename__ = "duplicate_group_dismissals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    group_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    lesson_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False)
    dismissed_by: Mapped[str] = mapped_column(String(64), nullable=False)
    dismissed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    detection_method: Mapped[Optional[str]] = mapped_column(String(20))
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
