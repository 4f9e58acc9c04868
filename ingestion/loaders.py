"""
JSON loaders for catalog documents and incoming submissions.

Files hold either a list of objects or an object wrapping one under
``lessons`` / ``submissions``. Both snake_case and camelCase keys are
accepted, and tag fields may be a single string or a list.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, List, Optional

import orjson
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from common.config import METADATA_FIELDS, yaml_config
from common.logger import get_logger
from ingestion.document_models import CorpusDocument, LessonTags, SubmissionInput
from vectorstore.faiss_index import prepare_vector

log = get_logger(__name__)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.title() for p in rest)


def _aliases(*names: str) -> AliasChoices:
    choices = [n for name in names for n in (name, _camel(name))]
    return AliasChoices(*dict.fromkeys(choices))


class LessonPayload(BaseModel):
    """Fields shared by catalog documents and submissions."""

    model_config = ConfigDict(extra="ignore")

    title: str = ""
    summary: str = ""
    content_text: str = Field(default="", validation_alias=_aliases("content_text", "content"))
    content_hash: str = Field(default="", validation_alias=_aliases("content_hash"))
    embedding: Optional[List[float]] = None

    grade_levels: List[str] = Field(default_factory=list, validation_alias=_aliases("grade_levels"))
    thematic_categories: List[str] = Field(
        default_factory=list, validation_alias=_aliases("thematic_categories")
    )
    activity_type: List[str] = Field(default_factory=list, validation_alias=_aliases("activity_type"))
    cultural_heritage: List[str] = Field(
        default_factory=list, validation_alias=_aliases("cultural_heritage")
    )
    season_timing: List[str] = Field(default_factory=list, validation_alias=_aliases("season_timing"))
    main_ingredients: List[str] = Field(
        default_factory=list, validation_alias=_aliases("main_ingredients")
    )
    cooking_methods: List[str] = Field(
        default_factory=list, validation_alias=_aliases("cooking_methods")
    )

    @field_validator("title", "summary", "content_text", "content_hash", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator(*METADATA_FIELDS, mode="before")
    @classmethod
    def _as_list(cls, v: Any) -> List[str]:
        if v is None:
            return []
        if isinstance(v, (list, tuple, set)):
            return [str(x) for x in v if x is not None]
        return [str(v)]

    @field_validator("embedding", mode="before")
    @classmethod
    def _keep_malformed(cls, v: Any) -> Any:
        # Unparseable vectors become [] so detection reports them as malformed, not missing
        if v is None:
            return None
        if not isinstance(v, (list, tuple)):
            return []
        try:
            return [float(x) for x in v]
        except (TypeError, ValueError):
            return []

    def tags(self) -> LessonTags:
        return LessonTags(**{name: list(getattr(self, name)) for name in METADATA_FIELDS})


class CatalogPayload(LessonPayload):
    lesson_id: str = Field(validation_alias=_aliases("lesson_id", "id"))
    canonical_id: Optional[str] = Field(default=None, validation_alias=_aliases("canonical_id"))

    def to_document(self) -> CorpusDocument:
        return CorpusDocument(
            lesson_id=self.lesson_id,
            title=self.title,
            content_text=self.content_text,
            summary=self.summary,
            content_hash=self.content_hash,
            embedding=self.embedding,
            tags=self.tags(),
            canonical_id=self.canonical_id,
        )


class SubmissionPayload(LessonPayload):
    submission_id: str = Field(default="", validation_alias=_aliases("submission_id", "id"))
    submitter_id: str = Field(default="", validation_alias=_aliases("submitter_id", "teacher_id"))
    updates_lesson_id: Optional[str] = Field(
        default=None, validation_alias=_aliases("updates_lesson_id", "original_lesson_id")
    )

    def to_input(self) -> SubmissionInput:
        return SubmissionInput(
            submission_id=self.submission_id,
            title=self.title,
            content_text=self.content_text,
            summary=self.summary,
            embedding=self.embedding,
            tags=self.tags(),
            content_hash=self.content_hash,
        )


def read_json(path: Path) -> Any:
    return orjson.loads(Path(path).read_bytes())


def _records(data: Any, key: str) -> List[dict]:
    if isinstance(data, dict) and key in data:
        data = data[key]
    if isinstance(data, dict):
        return [data]
    if not isinstance(data, list):
        raise ValueError(f"Expected a list of objects or an object with '{key}'")
    return data


def _flag_embeddings(payloads: Iterable[LessonPayload], label: str, dim: int) -> None:
    malformed = [
        p for p in payloads
        if p.embedding is not None and prepare_vector(p.embedding, dim) is None
    ]
    if malformed:
        log.warning(
            "%d %s have malformed embeddings (expected dimension %d); they will be scored without them",
            len(malformed), label, dim,
        )


def parse_catalog(data: Any, dim: int | None = None) -> List[CatalogPayload]:
    payloads = [CatalogPayload.model_validate(r) for r in _records(data, "lessons")]
    _flag_embeddings(payloads, "lessons", dim or yaml_config.detection.embedding_dim)
    return payloads


def parse_submissions(data: Any, dim: int | None = None) -> List[SubmissionPayload]:
    payloads = [SubmissionPayload.model_validate(r) for r in _records(data, "submissions")]
    _flag_embeddings(payloads, "submissions", dim or yaml_config.detection.embedding_dim)
    return payloads


def load_catalog(path: Path, dim: int | None = None) -> List[CatalogPayload]:
    payloads = parse_catalog(read_json(path), dim)
    log.info("Loaded %d catalog lessons from %s", len(payloads), path)
    return payloads


def load_submissions(path: Path, dim: int | None = None) -> List[SubmissionPayload]:
    payloads = parse_submissions(read_json(path), dim)
    log.info("Loaded %d submissions from %s", len(payloads), path)
    return payloads
