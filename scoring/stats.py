from __future__ import annotations

from collections import Counter
from typing import Dict, Iterable, Optional, Sequence

import numpy as np

from ingestion.document_models import MatchTier, ScoredCandidate


def score_distribution(scores: Sequence[float]) -> Optional[Dict[str, float]]:
    """min / max / mean / median / p90 of a score list, or None when empty."""
    if not scores:
        return None
    arr = np.asarray(scores, dtype=float)
    return {
        "min": float(arr.min()),
        "max": float(arr.max()),
        "mean": float(arr.mean()),
        "median": float(np.median(arr)),
        "p90": float(np.percentile(arr, 90)),
    }


def tier_counts(candidates: Iterable[ScoredCandidate]) -> Dict[str, int]:
    counts = Counter(c.tier.value for c in candidates)
    return {tier.value: counts.get(tier.value, 0) for tier in MatchTier}
