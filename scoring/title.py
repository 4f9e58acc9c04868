from __future__ import annotations

from ingestion.cleaners import tokenize


def title_similarity(a: str, b: str) -> float:
    """
    Token-set Jaccard of the normalized titles, multiplied by the token
    length ratio so a short fragment of a long title scores low.
    Empty titles (after stop-word removal) score 0.
    """
    tokens_a = tokenize(a)
    tokens_b = tokenize(b)
    if not tokens_a or not tokens_b:
        return 0.0

    set_a, set_b = set(tokens_a), set(tokens_b)
    jaccard = len(set_a & set_b) / len(set_a | set_b)
    length_ratio = min(len(tokens_a), len(tokens_b)) / max(len(tokens_a), len(tokens_b))
    return jaccard * length_ratio
