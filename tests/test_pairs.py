import hashlib
import sys
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_doc, seed
from detection.pairs import (
    UnionFind,
    canonical_score,
    find_duplicate_pairs,
    group_id_for,
    group_pairs,
    list_duplicate_groups,
    recommend_canonical,
)
from ingestion.document_models import DuplicatePair
from resolution import cli_resolve
from resolution.engine import ResolutionEngine
from storage.db import build_engine, create_schema, make_session_factory

E1 = [1.0, 0.0, 0.0, 0.0]
E2 = [0.0, 1.0, 0.0, 0.0]
E3 = [0.0, 0.0, 1.0, 0.0]

DOCS = [
    make_doc("A", "Pizza Workshop", embedding=E1),
    make_doc("B", " pizza workshop ", embedding=E1),
    make_doc("C", "Dough Science", embedding=E1),
    make_doc("D", "Unknown", embedding=E2),
    make_doc("E", "Unknown", embedding=E2),
    make_doc("F", "Salad", embedding=E2),
    make_doc("G", "salad", embedding=E3),
    make_doc("H", "", embedding=None),
    make_doc("I", "", embedding=None),
]


def test_pairs_by_method(config):
    pairs = find_duplicate_pairs(DOCS, config)
    found = {(p.id1, p.id2): p.detection_method for p in pairs}
    assert found == {
        ("A", "B"): "both",
        ("A", "C"): "embedding",
        ("B", "C"): "embedding",
        ("F", "G"): "same_title",
    }
    # both first, then same_title, then embedding
    assert [p.detection_method for p in pairs] == ["both", "same_title", "embedding", "embedding"]
    same_title = next(p for p in pairs if p.detection_method == "same_title")
    assert same_title.similarity is None


def test_grouping_is_transitive_and_ordered(config):
    groups = group_pairs(find_duplicate_pairs(DOCS, config))

    assert [g.lesson_ids for g in groups] == [["A", "B", "C"], ["F", "G"]]
    abc, fg = groups
    assert abc.detection_method == "both"
    assert abc.confidence == "high"
    assert abc.pair_count == 3
    assert abc.group_key == "A,B,C"
    assert abc.group_id == "grp_" + hashlib.sha1(b"A,B,C").hexdigest()[:12]
    assert fg.detection_method == "same_title"
    assert fg.confidence == "medium"
    assert fg.avg_similarity is None


def test_mixed_group_without_both_is_high_confidence():
    pairs = [
        DuplicatePair("a", "b", "x", "x", "same_title", None),
        DuplicatePair("b", "c", "x", "y", "embedding", 0.97),
    ]
    (group,) = group_pairs(pairs)
    assert group.detection_method == "mixed"
    assert group.confidence == "high"
    assert group.avg_similarity == 0.97


def test_dismissed_groups_are_hidden(config):
    pairs = find_duplicate_pairs(DOCS, config)
    groups = group_pairs(pairs, dismissed_keys={"F,G"})
    assert [g.group_key for g in groups] == ["A,B,C"]


def test_group_id_is_stable():
    assert group_id_for("A,B") == group_id_for("A,B")
    assert group_id_for("A,B") != group_id_for("A,C")


def test_union_find():
    uf = UnionFind()
    uf.union("a", "b")
    uf.union("c", "d")
    uf.union("b", "d")
    assert uf.find("a") == uf.find("c")
    assert uf.find("e") == "e"


def test_list_groups_hides_keep_all_resolutions(session_factory, config, allow_all):
    seed(session_factory, DOCS)
    assert len(list_duplicate_groups(session_factory, config)) == 2

    resolver = ResolutionEngine(session_factory, config, allow_all)
    assert resolver.resolve_group("grp_x", "F", ["G"], mode="keep_all", actor="rev-1").success

    assert [g.group_key for g in list_duplicate_groups(session_factory, config)] == ["A,B,C"]
    assert len(list_duplicate_groups(session_factory, config, include_resolved=True)) == 2


NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


def test_canonical_score_weights():
    full = make_doc(
        "A", "Pizza",
        grade_levels=[str(g) for g in range(11)],
        thematic_categories=["Math"],
        activity_type=["cooking"],
        cultural_heritage=["Italian"],
        season_timing=["Fall"],
        main_ingredients=["flour"],
        cooking_methods=["bake"],
    )
    assert canonical_score(full, NOW, NOW) == pytest.approx(0.3)
    assert canonical_score(make_doc("B", "Pizza"), None, NOW) == 0.0
    # Naive timestamps are read as UTC; ten years old means no recency credit
    assert canonical_score(make_doc("C", "Pizza"), datetime(2016, 1, 1), NOW) == 0.0
    assert canonical_score(make_doc("D", "Pizza"), NOW - timedelta(days=365 * 5), NOW) == pytest.approx(0.05)


def test_recommend_canonical_prefers_complete_then_recent_then_lowest_id():
    bare = make_doc("A", "Pizza")
    rich = make_doc("B", "Pizza", grade_levels=["3", "4"], thematic_categories=["Math"])
    assert recommend_canonical([bare, rich], {}, NOW) == "B"

    old, new = make_doc("X", "Pizza"), make_doc("Y", "Pizza")
    modified = {"X": NOW - timedelta(days=2000), "Y": NOW - timedelta(days=1)}
    assert recommend_canonical([old, new], modified, NOW) == "Y"

    assert recommend_canonical([make_doc("Q", "Pizza"), make_doc("P", "Pizza")], {}, NOW) == "P"
    assert recommend_canonical([], {}, NOW) is None


def test_recommend_canonical_skips_superseded_lessons():
    bare = make_doc("A", "Pizza")
    rich = make_doc("B", "Pizza", grade_levels=["3", "4"], thematic_categories=["Math"])
    rich.canonical_id = "Z"
    assert recommend_canonical([bare, rich], {}, NOW) == "A"


def _seed_pizza_pair(factory):
    seed(
        factory,
        [
            make_doc("A", "Pizza Workshop", embedding=E1),
            make_doc("B", "Pizza Workshop", embedding=E1, grade_levels=["3", "4"], thematic_categories=["Math"]),
        ],
    )


def test_listed_groups_carry_a_suggested_canonical(session_factory, config):
    _seed_pizza_pair(session_factory)
    groups = list_duplicate_groups(session_factory, config)
    assert [(g.lesson_ids, g.recommended_canonical) for g in groups] == [(["A", "B"], "B")]


def test_list_groups_cli_prints_suggested_canonical(tmp_path, monkeypatch, capsys):
    url = f"sqlite:///{tmp_path / 'cli.db'}"
    engine = build_engine(url)
    create_schema(engine)
    _seed_pizza_pair(make_session_factory(engine))
    engine.dispose()
    cfg = tmp_path / "config.yaml"
    cfg.write_text("detection:\n  embedding_dim: 4\n")

    monkeypatch.setattr(
        sys, "argv", ["cli_resolve", "--list-groups", "--config", str(cfg), "--database_url", url]
    )
    cli_resolve.main()

    out = capsys.readouterr().out
    assert "DUPLICATE GROUPS (1)" in out
    assert "suggested canonical: B" in out
