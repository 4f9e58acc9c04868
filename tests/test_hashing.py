import hashlib

from ingestion.hash_utils import METADATA_HASH_PREFIX, content_hash, is_metadata_hash, sha1_text


def test_content_hash_ignores_case_whitespace_and_punctuation():
    assert content_hash("Harvest lettuce, then wash it!") == content_hash("harvest LETTUCE   then wash it")
    expected = hashlib.sha256("harvest lettuce then wash it".encode("utf-8")).hexdigest()
    assert content_hash("Harvest lettuce, then wash it!") == expected


def test_content_hash_differs_for_different_content():
    assert content_hash("knead the dough") != content_hash("knead the bread")


def test_missing_content_falls_back_to_metadata_hash():
    digest = content_hash("", title="Pizza Day", summary="Fractions", grade_levels=["3", "K"])
    assert digest.startswith(METADATA_HASH_PREFIX)
    assert is_metadata_hash(digest)
    # Grade order and case do not matter
    assert digest == content_hash("   ", title="pizza day", summary="fractions", grade_levels=["k", "3"])
    assert digest != content_hash("", title="Pizza Night", summary="Fractions", grade_levels=["3", "K"])


def test_real_content_hash_is_not_a_metadata_hash():
    assert not is_metadata_hash(content_hash("some text"))
    assert not is_metadata_hash("")
    assert not is_metadata_hash(None)


def test_sha1_text():
    assert sha1_text("a,b") == hashlib.sha1(b"a,b").hexdigest()


def test_non_latin_content_gets_a_real_content_hash():
    a = content_hash("我们一起包饺子", title="Dumplings", summary="", grade_levels=["3"])
    b = content_hash("我们一起做月饼", title="Dumplings", summary="", grade_levels=["3"])
    assert not is_metadata_hash(a)
    assert not is_metadata_hash(b)
    assert a != b
    assert content_hash("Урок о пицце!") == content_hash("урок   о ПИЦЦЕ")
    assert content_hash("Урок о пицце") != content_hash("Урок о супе")
