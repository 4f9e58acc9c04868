import pytest

from scoring.title import title_similarity


def test_identical_titles_score_one():
    assert title_similarity("Pizza Workshop", "pizza workshop!") == 1.0


def test_symmetric():
    a, b = "Pizza Making Workshop", "Pizza Workshop Basics"
    assert title_similarity(a, b) == title_similarity(b, a)


def test_token_jaccard_with_length_ratio():
    # {pizza, making, workshop} vs {pizza, workshop, basics}: 2/4, equal lengths
    assert title_similarity("Pizza Making Workshop", "Pizza Workshop Basics") == pytest.approx(0.5)
    # {pizza} vs {pizza, making, workshop}: 1/3 * 1/3
    assert title_similarity("Pizza", "Pizza Making Workshop") == pytest.approx(1 / 9)


def test_stop_words_do_not_count():
    assert title_similarity("The Pizza", "Pizza") == 1.0


def test_empty_titles_score_zero():
    assert title_similarity("", "") == 0.0
    assert title_similarity("the of and", "pizza") == 0.0


def test_no_overlap_scores_zero():
    assert title_similarity("Volcano Chemistry", "Garden Salad") == 0.0


def test_non_latin_titles():
    assert title_similarity("Урок о пицце", "урок о пицце!") == 1.0
    assert title_similarity("Μάθημα πίτσας", "μάθημα πίτσας") == 1.0
    assert title_similarity("Урок о пицце", "Урок о супе") == pytest.approx(0.5)
    assert title_similarity("饺子", "月饼") == 0.0
