from __future__ import annotations

from typing import Dict, Iterable, List, Tuple

from common.config import METADATA_FIELDS, MetadataWeights
from ingestion.cleaners import normalize_tag
from ingestion.document_models import LessonTags


def tag_jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    """Jaccard of lower-cased, trimmed tag sets. Empty on either side scores 0."""
    set_a = {normalize_tag(t) for t in a if normalize_tag(t)}
    set_b = {normalize_tag(t) for t in b if normalize_tag(t)}
    if not set_a or not set_b:
        return 0.0
    return len(set_a & set_b) / len(set_a | set_b)


def metadata_overlap_breakdown(
    a: LessonTags, b: LessonTags, weights: MetadataWeights
) -> Tuple[float, Dict[str, float], List[str]]:
    """
    Weighted sum of per-field Jaccard. Fields missing on either side still
    count in the denominator, so sparse metadata is penalised.

    Returns (score, per-field jaccard, fields that overlapped).
    """
    normalized = weights.normalized()
    per_field: Dict[str, float] = {}
    overlapping: List[str] = []
    score = 0.0
    for name in METADATA_FIELDS:
        sim = tag_jaccard(getattr(a, name), getattr(b, name))
        per_field[name] = sim
        if sim > 0:
            overlapping.append(name)
        score += sim * normalized[name]
    return min(score, 1.0), per_field, overlapping


def metadata_overlap(a: LessonTags, b: LessonTags, weights: MetadataWeights) -> float:
    return metadata_overlap_breakdown(a, b, weights)[0]
