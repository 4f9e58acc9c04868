from ingestion.cleaners import hashable_text, normalize_tag, normalize_text, tokenize


def test_normalize_text_folds_accents_case_and_punctuation():
    assert normalize_text("  Café  Crème-Brûlée! ") == "cafe creme brulee"
    assert normalize_text("") == ""
    assert normalize_text(None) == ""


def test_tokenize_drops_stop_words_by_default():
    assert tokenize("The Art of Pizza") == ["art", "pizza"]
    assert tokenize("The Art of Pizza", drop_stop_words=False) == ["the", "art", "of", "pizza"]


def test_hashable_text_is_deterministic_and_keeps_stop_words():
    a = hashable_text("Hello,   World! This is   a test.")
    b = hashable_text("hello world this is a TEST")
    assert a == b == "hello world this is a test"


def test_normalize_tag():
    assert normalize_tag("  Italian ") == "italian"
    assert normalize_tag(3) == "3"


def test_normalize_text_keeps_non_latin_scripts():
    assert normalize_text("Пицца: урок!") == "пицца урок"
    assert normalize_text("我们一起包饺子。") == "我们一起包饺子"
    assert normalize_text("Straße_Fest") == "strasse fest"


def test_non_latin_marks_are_not_folded_away():
    # が and か differ only by a combining voicing mark
    assert normalize_text("が") != normalize_text("か")
    assert normalize_text("Ñandú") == "nandu"


def test_tokenize_non_latin_words():
    assert tokenize("Урок о пицце") == ["урок", "о", "пицце"]
    assert tokenize("Μάθημα για την πίτσα") == ["μάθημα", "για", "την", "πίτσα"]
