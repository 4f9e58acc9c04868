import pytest

from common.config import MetadataWeights
from ingestion.document_models import LessonTags
from scoring.metadata import metadata_overlap, metadata_overlap_breakdown, tag_jaccard

FULL = dict(
    grade_levels=["3"],
    thematic_categories=["Science"],
    activity_type=["cooking"],
    cultural_heritage=["Italian"],
    season_timing=["Fall"],
    main_ingredients=["flour"],
    cooking_methods=["bake"],
)


def test_identical_tags_score_one():
    weights = MetadataWeights()
    assert metadata_overlap(LessonTags(**FULL), LessonTags(**FULL), weights) == pytest.approx(1.0)


def test_only_grade_levels_shared():
    a = LessonTags(grade_levels=["3", "4", "5"], thematic_categories=["Math"])
    b = LessonTags(grade_levels=["3", "4", "5"], thematic_categories=["Science"])
    score, per_field, overlapping = metadata_overlap_breakdown(a, b, MetadataWeights())
    assert score == pytest.approx(0.2)
    assert overlapping == ["grade_levels"]
    assert per_field["thematic_categories"] == 0.0


def test_partial_overlap_is_weighted_jaccard():
    a = LessonTags(grade_levels=["3", "4"])
    b = LessonTags(grade_levels=["4", "5"])
    assert metadata_overlap(a, b, MetadataWeights()) == pytest.approx(0.2 / 3)


def test_tags_compare_case_insensitively():
    assert tag_jaccard(["Italian "], ["italian"]) == 1.0


def test_field_missing_on_one_side_contributes_nothing():
    a = LessonTags(cultural_heritage=["Italian"])
    b = LessonTags()
    assert metadata_overlap(a, b, MetadataWeights()) == 0.0
    assert tag_jaccard([], []) == 0.0


def test_custom_weight_table():
    weights = MetadataWeights(version="test", weights={"grade_levels": 1})
    a = LessonTags(grade_levels=["3"], cooking_methods=["bake"])
    b = LessonTags(grade_levels=["3"], cooking_methods=["fry"])
    assert metadata_overlap(a, b, weights) == pytest.approx(1.0)
