from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from common.config import DetectionConfig, GlobalYAMLConfig
from ingestion.document_models import CorpusDocument, LessonTags, SubmissionInput
from storage import repository as repo
from storage.db import build_engine, create_schema, make_session_factory, session_scope

DIM = 4


def make_doc(
    lesson_id: str,
    title: str,
    content: str = "",
    embedding: Optional[List[float]] = None,
    **tags,
) -> CorpusDocument:
    return CorpusDocument(
        lesson_id=lesson_id,
        title=title,
        content_text=content,
        embedding=embedding,
        tags=LessonTags(**tags),
    )


def make_submission(
    title: str,
    content: str = "",
    embedding: Optional[List[float]] = None,
    submission_id: str = "sub-1",
    **tags,
) -> SubmissionInput:
    return SubmissionInput(
        submission_id=submission_id,
        title=title,
        content_text=content,
        embedding=embedding,
        tags=LessonTags(**tags),
    )


def seed(factory, docs: List[CorpusDocument]) -> None:
    with session_scope(factory) as session:
        for doc in docs:
            repo.upsert_lesson(session, doc)


@pytest.fixture
def config() -> GlobalYAMLConfig:
    return GlobalYAMLConfig(detection=DetectionConfig(embedding_dim=DIM))


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'lessons.db'}")
    create_schema(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def catalog(session_factory) -> Dict[str, CorpusDocument]:
    docs = [
        make_doc(
            "L-pizza",
            "Pizza Workshop Basics",
            "Students knead dough and learn how yeast makes bread rise.",
            [0.8, 0.6, 0.0, 0.0],
            grade_levels=["3", "4", "5"],
            thematic_categories=["Science"],
        ),
        make_doc(
            "L-bread",
            "Bread Baking Basics",
            "Bake a simple loaf and compare flours.",
            [0.6, 0.8, 0.0, 0.0],
            grade_levels=["6"],
        ),
        make_doc(
            "L-garden",
            "Garden Salad Harvest",
            "Harvest lettuce, then wash it!",
            [0.0, 0.0, 1.0, 0.0],
            grade_levels=["K", "1"],
            thematic_categories=["Garden"],
            season_timing=["Fall"],
        ),
        make_doc(
            "L-soup",
            "Three Sisters Soup",
            "Cook corn, beans and squash together.",
            [0.0, 0.0, 0.0, 1.0],
            grade_levels=["2"],
            cultural_heritage=["Native American"],
        ),
    ]
    seed(session_factory, docs)
    return {d.lesson_id: d for d in docs}


@pytest.fixture
def allow_all():
    return lambda actor, action: True
