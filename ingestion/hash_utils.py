from __future__ import annotations

import hashlib
from typing import Iterable

from ingestion.cleaners import hashable_text, normalize_tag, normalize_text

METADATA_HASH_PREFIX = "META_"


def sha256_text(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def sha1_text(s: str) -> str:
    return hashlib.sha1(s.encode("utf-8")).hexdigest()


def content_hash(
    content: str | None,
    title: str = "",
    summary: str = "",
    grade_levels: Iterable[str] = (),
) -> str:
    """
    SHA-256 over the normalized full text. Without content, fall back to a
    pipe-joined digest of title, summary and sorted grade levels, prefixed
    with META_ so consumers can tell it apart from a real content hash.
    """
    normalized = hashable_text(content or "")
    if normalized:
        return sha256_text(normalized)

    grades = ",".join(sorted({normalize_tag(g) for g in grade_levels if normalize_tag(g)}))
    parts = [normalize_text(title), normalize_text(summary), grades]
    return METADATA_HASH_PREFIX + sha256_text("|".join(parts))


def is_metadata_hash(digest: str | None) -> bool:
    return bool(digest) and digest.startswith(METADATA_HASH_PREFIX)
