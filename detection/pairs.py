"""
Catalog-wide duplicate scan: find suspicious lesson pairs, then collapse
them into transitive groups for review.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import sessionmaker

from common.config import METADATA_FIELDS, GlobalYAMLConfig
from common.logger import get_logger
from ingestion.document_models import CorpusDocument, DuplicateGroup, DuplicatePair
from ingestion.hash_utils import sha1_text
from storage import repository as repo
from storage.db import session_scope
from storage.models import utcnow
from vectorstore.faiss_index import EmbeddingIndex

log = get_logger(__name__)

_METHOD_RANK = {"both": 1, "same_title": 2, "embedding": 3}
_CONFIDENCE_RANK = {"high": 0, "medium": 1, "low": 2}
_CANONICAL_WEIGHTS = {"recency": 0.1, "completeness": 0.15, "grades": 0.05}
_MAX_GRADES = 11


class UnionFind:
    def __init__(self):
        self.parent: Dict[str, str] = {}
        self.rank: Dict[str, int] = {}

    def make_set(self, x: str) -> None:
        if x not in self.parent:
            self.parent[x] = x
            self.rank[x] = 0

    def find(self, x: str) -> str:
        self.make_set(x)
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, x: str, y: str) -> None:
        rx, ry = self.find(x), self.find(y)
        if rx == ry:
            return
        if self.rank[rx] < self.rank[ry]:
            rx, ry = ry, rx
        self.parent[ry] = rx
        if self.rank[rx] == self.rank[ry]:
            self.rank[rx] += 1


def group_id_for(key: str) -> str:
    return "grp_" + sha1_text(key)[:12]


def _aware(ts: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive timestamps; they are stored as UTC
    if ts is not None and ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def metadata_completeness(doc: CorpusDocument) -> float:
    filled = sum(1 for name in METADATA_FIELDS if getattr(doc.tags, name))
    return filled / len(METADATA_FIELDS)


def canonical_score(
    doc: CorpusDocument, modified: Optional[datetime] = None, now: Optional[datetime] = None
) -> float:
    """
    Weighted survivor score in [0, 0.3]. Recency decays linearly to zero
    over ten years and grade coverage saturates at eleven tagged levels.
    """
    now = now or utcnow()
    modified = _aware(modified)
    recency = 0.0
    if modified is not None:
        age_years = (now - modified).total_seconds() / (365 * 24 * 3600)
        recency = max(0.0, min(1.0, 1 - age_years / 10))
    grades = min(len(doc.tags.grade_levels), _MAX_GRADES) / _MAX_GRADES
    return (
        _CANONICAL_WEIGHTS["recency"] * recency
        + _CANONICAL_WEIGHTS["completeness"] * metadata_completeness(doc)
        + _CANONICAL_WEIGHTS["grades"] * grades
    )


def recommend_canonical(
    documents: Iterable[CorpusDocument],
    modified: Optional[Dict[str, datetime]] = None,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """
    Suggested survivor of a group. Lessons already pointing at another
    canonical come last; then highest canonical score, most complete
    metadata, most recently modified, lowest id.
    """
    documents = list(documents)
    if not documents:
        return None
    modified = modified or {}
    now = now or utcnow()

    def rank(doc: CorpusDocument):
        ts = _aware(modified.get(doc.lesson_id))
        superseded = bool(doc.canonical_id) and doc.canonical_id != doc.lesson_id
        return (
            superseded,
            -round(canonical_score(doc, ts, now), 9),
            -metadata_completeness(doc),
            -(ts.timestamp() if ts is not None else 0.0),
            doc.lesson_id,
        )

    return min(documents, key=rank).lesson_id


def find_duplicate_pairs(
    documents: List[CorpusDocument], config: GlobalYAMLConfig
) -> List[DuplicatePair]:
    """
    Pairs with the same normalized title and/or embedding similarity at or
    above ``pairs.embedding_threshold``. Ordered by method (both, same_title,
    embedding) then similarity descending.
    """
    ignored = {t.strip().lower() for t in config.pairs.ignored_titles}
    docs = [d for d in documents if d.title.strip().lower() not in ignored]
    by_id = {d.lesson_id: d for d in docs}

    index = EmbeddingIndex.from_documents(
        docs,
        dim=config.detection.embedding_dim,
        ann_min_corpus_size=config.detection.ann_min_corpus_size,
    )
    similar = {(a, b): s for a, b, s in index.pairs_above(config.pairs.embedding_threshold)}

    by_title: Dict[str, List[str]] = {}
    for d in docs:
        if not d.title.strip():
            continue
        by_title.setdefault(d.title.strip().lower(), []).append(d.lesson_id)
    same_title = set()
    for ids in by_title.values():
        ids = sorted(ids)
        for i, a in enumerate(ids):
            for b in ids[i + 1:]:
                same_title.add((a, b))

    pairs: List[DuplicatePair] = []
    for a, b in same_title | set(similar):
        d1, d2 = by_id[a], by_id[b]
        titled = (a, b) in same_title
        embedded = (a, b) in similar
        method = "both" if titled and embedded else ("same_title" if titled else "embedding")
        pairs.append(
            DuplicatePair(
                id1=a,
                id2=b,
                title1=d1.title,
                title2=d2.title,
                detection_method=method,
                similarity=similar.get((a, b)),
            )
        )

    pairs.sort(
        key=lambda p: (
            _METHOD_RANK[p.detection_method],
            -(p.similarity if p.similarity is not None else -1.0),
            p.id1,
            p.id2,
        )
    )
    return pairs


def _analyze(pairs: List[DuplicatePair]):
    methods = {p.detection_method for p in pairs}
    if len(methods) == 1:
        method = pairs[0].detection_method
    elif "both" in methods:
        method = "both"
    else:
        method = "mixed"

    if "both" in methods or {"same_title", "embedding"} <= methods:
        confidence = "high"
    elif methods & {"same_title", "embedding"}:
        confidence = "medium"
    else:
        confidence = "low"

    sims = [p.similarity for p in pairs if p.similarity is not None]
    avg = sum(sims) / len(sims) if sims else None
    return method, confidence, avg


def group_pairs(
    pairs: Iterable[DuplicatePair], dismissed_keys: Optional[set] = None
) -> List[DuplicateGroup]:
    """Union-find the pairs into transitive groups, skipping dismissed ones."""
    pairs = list(pairs)
    uf = UnionFind()
    for p in pairs:
        uf.union(p.id1, p.id2)

    grouped: Dict[str, List[DuplicatePair]] = {}
    for p in pairs:
        grouped.setdefault(uf.find(p.id1), []).append(p)

    groups: List[DuplicateGroup] = []
    for members in grouped.values():
        ids = sorted({p.id1 for p in members} | {p.id2 for p in members})
        key = repo.group_key(ids)
        if dismissed_keys and key in dismissed_keys:
            continue
        method, confidence, avg = _analyze(members)
        groups.append(
            DuplicateGroup(
                group_id=group_id_for(key),
                group_key=key,
                lesson_ids=ids,
                detection_method=method,
                confidence=confidence,
                avg_similarity=avg,
                pair_count=len(members),
            )
        )

    groups.sort(key=lambda g: (_CONFIDENCE_RANK[g.confidence], -len(g.lesson_ids), g.group_key))
    return groups


def list_duplicate_groups(
    session_factory: sessionmaker, config: GlobalYAMLConfig, include_resolved: bool = False
) -> List[DuplicateGroup]:
    with session_scope(session_factory) as session:
        documents = repo.list_documents(session)
        dismissed = set() if include_resolved else repo.dismissed_group_keys(session)
        modified = repo.last_modified(session)
    pairs = find_duplicate_pairs(documents, config)
    groups = group_pairs(pairs, dismissed)

    by_id = {d.lesson_id: d for d in documents}
    now = utcnow()
    for g in groups:
        g.recommended_canonical = recommend_canonical(
            (by_id[i] for i in g.lesson_ids), modified, now
        )
    log.info("Found %d duplicate pairs in %d groups", len(pairs), len(groups))
    return groups


def check_group_resolved(session_factory: sessionmaker, lesson_ids: Iterable[str]) -> Dict:
    """Whether a set of lessons was already resolved (archival) or dismissed (keep-all)."""
    ids = list(lesson_ids)
    with session_scope(session_factory) as session:
        resolved_at = repo.latest_resolution_for(session, ids)
        if resolved_at is not None:
            return {"is_resolved": True, "resolution_type": "resolution", "resolved_at": resolved_at}
        dismissal = repo.dismissal_for(session, repo.group_key(ids))
        if dismissal is not None:
            return {
                "is_resolved": True,
                "resolution_type": "dismissal",
                "resolved_at": dismissal.dismissed_at,
            }
    return {"is_resolved": False, "resolution_type": None, "resolved_at": None}
