from __future__ import annotations

import re
import unicodedata
from typing import List

from nltk.tokenize import RegexpTokenizer

# Common English stop words dropped before title comparison
STOP_WORDS = frozenset(
    {
        "a", "an", "and", "are", "as", "at", "be", "by", "for", "from",
        "has", "he", "in", "is", "it", "its", "of", "on", "that", "the",
        "to", "was", "will", "with", "this", "these", "those", "what",
        "when", "where", "which", "who", "why", "how",
    }
)

_TOKENIZER = RegexpTokenizer(r"\w+")

# Above this code point a base character is outside the Latin blocks
_LATIN_END = "\u0250"


def _fold_accents(s: str) -> str:
    # Latin diacritics fold away; marks on other scripts (kana voicing, Devanagari) carry meaning
    out: List[str] = []
    for ch in unicodedata.normalize("NFKD", s):
        if unicodedata.combining(ch) and out and out[-1] < _LATIN_END:
            continue
        out.append(ch)
    return unicodedata.normalize("NFC", "".join(out))


def normalize_text(s: str) -> str:
    """
    Fold Latin accents, case-fold, replace punctuation with spaces and collapse
    whitespace. Letters and digits of every script are kept.
    """
    if not s:
        return ""
    s = _fold_accents(s).casefold()
    s = re.sub(r"[^\w\s]|_", " ", s)
    s = re.sub(r"\s+", " ", s)
    return s.strip()


def tokenize(s: str, drop_stop_words: bool = True) -> List[str]:
    tokens = _TOKENIZER.tokenize(normalize_text(s))
    if drop_stop_words:
        tokens = [t for t in tokens if t not in STOP_WORDS]
    return tokens


def hashable_text(s: str) -> str:
    """Fully-joined normalized string fed to the content hash (stop words kept)."""
    return " ".join(tokenize(s, drop_stop_words=False))


def normalize_tag(tag: object) -> str:
    return str(tag).strip().lower()
