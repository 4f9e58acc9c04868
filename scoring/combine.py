from __future__ import annotations

from typing import Optional, Tuple

from common.config import CombineWeights, TierThresholds
from ingestion.document_models import MatchTier

# Rounding keeps weighted sums such as 0.3 + 0.5 + 0.2 from landing a hair under 1.0
SCORE_PRECISION = 6


def _clamp(x: float) -> float:
    return max(0.0, min(1.0, float(x)))


def combine_score(title: float, content: float, metadata: float, weights: CombineWeights) -> float:
    score = (
        _clamp(title) * weights.title
        + _clamp(content) * weights.content
        + _clamp(metadata) * weights.metadata
    )
    return round(_clamp(score), SCORE_PRECISION)


def fallback_score(title: float, metadata: float, weights: CombineWeights) -> float:
    """Title + metadata only, used when the submission has no usable embedding."""
    fb = weights.fallback
    score = _clamp(title) * fb.title + _clamp(metadata) * fb.metadata
    return round(_clamp(score), SCORE_PRECISION)


def classify(
    score: float,
    tiers: TierThresholds,
    floor: Optional[float] = None,
    hash_match: bool = False,
) -> Optional[MatchTier]:
    """
    Map a combined score to a tier. Returns None below the floor (discarded).
    """
    if hash_match or score >= 1.0:
        return MatchTier.EXACT
    if score >= tiers.high:
        return MatchTier.HIGH
    if score >= tiers.medium:
        return MatchTier.MEDIUM
    if score >= (tiers.low if floor is None else floor):
        return MatchTier.LOW
    return None


def combine(
    title: float,
    content: float,
    metadata: float,
    weights: CombineWeights,
    tiers: TierThresholds,
    floor: Optional[float] = None,
    hash_match: bool = False,
) -> Tuple[float, Optional[MatchTier]]:
    if hash_match:
        return 1.0, MatchTier.EXACT
    score = combine_score(title, content, metadata, weights)
    return score, classify(score, tiers, floor)
