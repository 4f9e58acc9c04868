"""
Resolution of a reviewed duplicate group: archive the retired lessons under
one canonical survivor, or dismiss the group (keep all), as one transaction.
"""
from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session, sessionmaker

from common.config import METADATA_FIELDS, GlobalYAMLConfig
from common.errors import ResolutionErrorCode, ResolutionFailed, StorageError
from common.logger import get_logger
from ingestion.document_models import ResolutionMode, ResolutionResult
from storage import repository as repo
from storage.db import session_scope
from storage.models import (
    DuplicateGroupDismissal,
    DuplicateResolution,
    Lesson,
    LessonArchive,
    new_id,
    utcnow,
)

log = get_logger(__name__)

Authorizer = Callable[[str, str], bool]

REVIEW_ROLES = frozenset({"admin", "reviewer", "super_admin"})

_ACTIONS = {
    ResolutionMode.SINGLE: "archive_only",
    ResolutionMode.SPLIT: "split_group",
    ResolutionMode.KEEP_ALL: "keep_all",
}


def role_authorizer(roles: Mapping[str, str], allowed: Iterable[str] = REVIEW_ROLES) -> Authorizer:
    """Authorizer backed by an actor -> role mapping supplied by the auth layer."""
    allowed = frozenset(allowed)

    def _authorize(actor: str, action: str) -> bool:
        return roles.get(actor) in allowed

    return _authorize


def _snapshot(row: Lesson, **extra) -> LessonArchive:
    archive = LessonArchive(
        lesson_id=row.lesson_id,
        title=row.title,
        summary=row.summary,
        content_text=row.content_text,
        content_hash=row.content_hash,
        embedding=row.embedding,
        processing_notes=row.processing_notes,
        lesson_created_at=row.created_at,
        lesson_updated_at=row.updated_at,
        previous_canonical_id=row.canonical_id,
        **extra,
    )
    for name in METADATA_FIELDS:
        setattr(archive, name, list(getattr(row, name) or []))
    return archive


class ResolutionEngine:
    def __init__(self, session_factory: sessionmaker, config: GlobalYAMLConfig, authorizer: Authorizer):
        self.session_factory = session_factory
        self.config = config
        self.authorizer = authorizer

    def resolve_group(
        self,
        group_id: str,
        canonical_id: str,
        retired_ids: Iterable[str],
        mode: str = "single",
        notes: str = "",
        actor: str = "",
        title_updates: Optional[Mapping[str, str]] = None,
        sub_group_name: Optional[str] = None,
        parent_group_id: Optional[str] = None,
    ) -> ResolutionResult:
        """
        Validate, archive and record in one transaction. Never raises for
        validation or storage failures; they come back as a structured result.
        """
        retired = list(dict.fromkeys(retired_ids or []))
        title_updates = dict(title_updates or {})
        try:
            mode_ = ResolutionMode(mode)
        except ValueError:
            return self._failure(
                ResolutionErrorCode.INVALID_REQUEST, f"Unknown resolution mode: {mode}", canonical_id
            )

        try:
            if not self.authorizer(actor, "resolve_group"):
                raise ResolutionFailed(
                    ResolutionErrorCode.NOT_AUTHORIZED,
                    f"{actor or 'anonymous'} may not resolve duplicates",
                )
            self._validate_request(canonical_id, retired, mode_, title_updates)
            with session_scope(self.session_factory) as session:
                result = self._apply(
                    session, group_id, canonical_id, retired, mode_, notes, actor,
                    title_updates, sub_group_name, parent_group_id,
                )
        except ResolutionFailed as e:
            return self._failure(e.code, e.message, canonical_id)
        except StorageError as e:
            log.error("Resolution of group %s rolled back: %s", group_id, e.__cause__ or e)
            return self._failure(
                ResolutionErrorCode.GENERIC_FAILURE, f"Resolution failed: {e}", canonical_id
            )
        except Exception as e:
            log.exception("Resolution of group %s failed unexpectedly", group_id)
            return self._failure(
                ResolutionErrorCode.GENERIC_FAILURE, f"Resolution failed: {e}", canonical_id
            )

        log.info(
            "Resolved group %s: canonical=%s mode=%s archived=%d by %s",
            group_id, result.canonical_id, mode_.value, result.archived_count, actor,
        )
        return result

    def _failure(self, code: ResolutionErrorCode, message: str, canonical_id: str) -> ResolutionResult:
        log.warning("Resolution rejected (%s): %s", code.value, message)
        return ResolutionResult(
            success=False, canonical_id=canonical_id, error_code=code.value, error=message
        )

    def _validate_request(
        self,
        canonical_id: str,
        retired: List[str],
        mode: ResolutionMode,
        title_updates: Dict[str, str],
    ) -> None:
        if not canonical_id:
            raise ResolutionFailed(ResolutionErrorCode.INVALID_REQUEST, "A canonical lesson is required")
        if canonical_id in retired:
            raise ResolutionFailed(
                ResolutionErrorCode.INVALID_REQUEST,
                f"Cannot archive a lesson as a duplicate of itself: {canonical_id}",
            )
        if mode != ResolutionMode.KEEP_ALL and not retired:
            raise ResolutionFailed(ResolutionErrorCode.INVALID_REQUEST, "No lessons to archive")

        max_len = self.config.resolution.max_title_length
        for lesson_id, title in title_updates.items():
            if title is None or not str(title).strip():
                raise ResolutionFailed(
                    ResolutionErrorCode.INVALID_TITLE,
                    f"Invalid title for lesson {lesson_id}: Title cannot be empty",
                )
            if len(title) > max_len:
                raise ResolutionFailed(
                    ResolutionErrorCode.INVALID_TITLE,
                    f"Invalid title for lesson {lesson_id}: Title exceeds {max_len} characters",
                )
            if mode != ResolutionMode.KEEP_ALL and lesson_id in retired:
                raise ResolutionFailed(
                    ResolutionErrorCode.INVALID_TITLE,
                    f"Invalid title for lesson {lesson_id}: lesson is being archived",
                )

    def _resolve_canonical(self, session: Session, canonical: Lesson, retired: List[str]) -> str:
        # Single-hop collapse: a superseded canonical resolves to its own target
        target = canonical.canonical_id
        if not target or target == canonical.lesson_id:
            return canonical.lesson_id
        hop = session.get(Lesson, target)
        if hop is None:
            raise ResolutionFailed(
                ResolutionErrorCode.CANONICAL_NOT_FOUND, f"Canonical lesson not found: {target}"
            )
        if hop.canonical_id and hop.canonical_id != hop.lesson_id:
            raise ResolutionFailed(
                ResolutionErrorCode.INVALID_REQUEST,
                f"Canonical chain longer than one hop: "
                f"{canonical.lesson_id} -> {target} -> {hop.canonical_id}",
            )
        if target in retired:
            raise ResolutionFailed(
                ResolutionErrorCode.INVALID_REQUEST,
                f"Canonical lesson {canonical.lesson_id} resolves to {target}, which is being archived",
            )
        return target

    def _apply(
        self,
        session: Session,
        group_id: str,
        canonical_id: str,
        retired: List[str],
        mode: ResolutionMode,
        notes: str,
        actor: str,
        title_updates: Dict[str, str],
        sub_group_name: Optional[str],
        parent_group_id: Optional[str],
    ) -> ResolutionResult:
        lessons = repo.get_lessons(session, [canonical_id, *retired], for_update=True)
        canonical = lessons.get(canonical_id)
        if canonical is None:
            raise ResolutionFailed(
                ResolutionErrorCode.CANONICAL_NOT_FOUND, f"Canonical lesson not found: {canonical_id}"
            )
        target_id = self._resolve_canonical(session, canonical, retired)

        missing = [i for i in retired if i not in lessons]
        if missing:
            already = set(
                session.scalars(
                    select(LessonArchive.lesson_id).where(LessonArchive.lesson_id.in_(missing))
                )
            )
            if already:
                raise ResolutionFailed(
                    ResolutionErrorCode.CONFLICT,
                    f"Lesson already archived: {', '.join(sorted(already))}",
                )
            raise ResolutionFailed(
                ResolutionErrorCode.RETIRED_ID_NOT_FOUND,
                f"Duplicate lesson not found: {', '.join(missing)}",
            )

        members = list(dict.fromkeys([target_id, canonical_id, *retired]))
        resolution_id = new_id()
        applied_titles = self._apply_titles(session, members, title_updates, actor)

        archived = 0
        if mode == ResolutionMode.KEEP_ALL:
            key = repo.group_key(members)
            if repo.dismissal_for(session, key) is not None:
                raise ResolutionFailed(
                    ResolutionErrorCode.CONFLICT, f"Group already dismissed: {group_id}"
                )
            session.add(
                DuplicateGroupDismissal(
                    group_key=key,
                    lesson_ids=sorted(members),
                    dismissed_by=actor,
                    notes=notes or "",
                )
            )
            retired_record: List[str] = []
        else:
            reason = f"Archived as duplicate of {target_id} (group {group_id})"
            for lesson_id in retired:
                session.add(
                    _snapshot(
                        lessons[lesson_id],
                        canonical_id=target_id,
                        archive_reason=reason,
                        archived_by=actor,
                        resolution_id=resolution_id,
                    )
                )
            session.flush()

            # Keep every pointer one hop from a live canonical
            session.execute(
                update(LessonArchive)
                .where(LessonArchive.canonical_id.in_(retired))
                .values(canonical_id=target_id)
                .execution_options(synchronize_session=False)
            )
            session.execute(
                update(Lesson)
                .where(Lesson.canonical_id.in_(retired))
                .values(canonical_id=target_id)
                .execution_options(synchronize_session=False)
            )
            repo.delete_evidence_for_lessons(session, retired)
            deleted = session.execute(
                delete(Lesson)
                .where(Lesson.lesson_id.in_(retired))
                .execution_options(synchronize_session=False)
            )
            if deleted.rowcount != len(retired):
                raise ResolutionFailed(
                    ResolutionErrorCode.CONFLICT,
                    "A concurrent resolution archived part of this group first",
                )
            archived = len(retired)
            retired_record = retired

        session.add(
            DuplicateResolution(
                id=resolution_id,
                group_id=group_id,
                canonical_lesson_id=target_id,
                retired_ids=retired_record,
                resolution_mode=mode.value,
                action_taken=_ACTIONS[mode],
                lessons_in_group=len(members),
                notes=notes or "",
                title_updates=applied_titles,
                sub_group_name=sub_group_name,
                parent_group_id=parent_group_id,
                resolved_by=actor,
            )
        )
        session.flush()
        return ResolutionResult(
            success=True,
            canonical_id=target_id,
            archived_count=archived,
            resolution_id=resolution_id,
        )

    def _apply_titles(
        self, session: Session, members: List[str], title_updates: Dict[str, str], actor: str
    ) -> List[dict]:
        applied: List[dict] = []
        for lesson_id, new_title in title_updates.items():
            if lesson_id not in members:
                raise ResolutionFailed(
                    ResolutionErrorCode.INVALID_TITLE,
                    f"Invalid title for lesson {lesson_id}: lesson is not part of this group",
                )
            row = session.get(Lesson, lesson_id)
            old_title = row.title
            row.title = new_title.strip()
            row.processing_notes = (
                (row.processing_notes or "")
                + f"\n[{utcnow().isoformat()}] Title updated during duplicate resolution by {actor}."
                + f' Original title: "{old_title}"'
            )
            applied.append({"lesson_id": lesson_id, "old_title": old_title, "new_title": row.title})
        return applied
