"""FAISS-backed cosine similarity search over catalog embeddings."""
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple

import faiss
import numpy as np

from common.logger import get_logger
from ingestion.document_models import CorpusDocument

log = get_logger(__name__)

HNSW_NEIGHBORS = 32


def prepare_vector(vector: Sequence[float] | None, dim: int) -> Optional[np.ndarray]:
    """Return a unit-length float32 copy of ``vector``, or None if it is unusable.

    Unusable means missing, the wrong dimensionality, non-finite, or zero-norm.
    """
    if vector is None:
        return None
    arr = np.asarray(vector, dtype="float32").reshape(-1)
    if arr.shape[0] != dim or not np.all(np.isfinite(arr)):
        return None
    norm = float(np.linalg.norm(arr))
    if norm == 0.0:
        return None
    return arr / norm


class EmbeddingIndex:
    def __init__(self, dim: int, ann_min_corpus_size: int = 5000):
        """
        Inner-product index over L2-normalized vectors, so scores are cosine
        similarity. A flat (exact) index is used until the corpus reaches
        ``ann_min_corpus_size``, after which an HNSW graph is built instead.
        """
        self.dim = dim
        self.ann_min_corpus_size = ann_min_corpus_size
        self._ids: List[str] = []
        self._docs: List[CorpusDocument] = []
        self._matrix = np.zeros((0, dim), dtype="float32")
        self._index: faiss.Index = faiss.IndexFlatIP(dim)
        self.skipped = 0

    @classmethod
    def from_documents(
        cls,
        documents: Iterable[CorpusDocument],
        *,
        dim: int,
        ann_min_corpus_size: int = 5000,
    ) -> "EmbeddingIndex":
        """Build an index from catalog documents.

        Args:
            documents: Catalog documents; those without a usable embedding are skipped.
            dim: Expected embedding dimensionality.
            ann_min_corpus_size: Corpus size at which to switch to HNSW.

        Returns:
            A populated ``EmbeddingIndex``.
        """
        index = cls(dim, ann_min_corpus_size)
        index.add_documents(documents)
        return index

    @property
    def size(self) -> int:
        return len(self._ids)

    @property
    def approximate(self) -> bool:
        return isinstance(self._index, faiss.IndexHNSWFlat)

    def add_documents(self, documents: Iterable[CorpusDocument]) -> int:
        vectors: List[np.ndarray] = []
        for doc in documents:
            vec = prepare_vector(doc.embedding, self.dim)
            if vec is None:
                # Documents with no embedding are excluded, not scored as 0
                self.skipped += 1
                continue
            self._ids.append(doc.lesson_id)
            self._docs.append(doc)
            vectors.append(vec)

        if vectors:
            self._matrix = np.vstack([self._matrix, np.stack(vectors)]).astype("float32")
            self._rebuild()
        log.debug("Indexed %d embeddings (%d skipped)", len(vectors), self.skipped)
        return len(vectors)

    def _rebuild(self) -> None:
        if self.size >= self.ann_min_corpus_size:
            index = faiss.IndexHNSWFlat(self.dim, HNSW_NEIGHBORS, faiss.METRIC_INNER_PRODUCT)
        else:
            index = faiss.IndexFlatIP(self.dim)
        index.add(np.ascontiguousarray(self._matrix))
        self._index = index

    def find_similar(
        self,
        vector: Sequence[float],
        threshold: float = 0.5,
        limit: int = 10,
    ) -> List[Tuple[CorpusDocument, float]]:
        """Nearest catalog documents by cosine similarity.

        Candidates below ``threshold`` are dropped before ``limit`` is applied.
        Results are ordered by similarity descending, then lesson id.

        Raises:
            ValueError: if ``vector`` is not a usable embedding of this index's dimension.
        """
        query = prepare_vector(vector, self.dim)
        if query is None:
            raise ValueError("query embedding is missing, malformed or zero-norm")
        if self.size == 0 or limit <= 0:
            return []

        # The HNSW graph is approximate; over-fetch so the threshold/limit cut is stable
        k = self.size if not self.approximate else min(self.size, max(limit * 4, 64))
        scores, positions = self._index.search(query.reshape(1, -1), k)

        hits: List[Tuple[CorpusDocument, float]] = []
        for score, pos in zip(scores[0], positions[0]):
            if pos < 0:
                continue
            similarity = max(0.0, min(1.0, float(score)))
            if similarity < threshold:
                continue
            hits.append((self._docs[pos], similarity))

        hits.sort(key=lambda h: (-h[1], h[0].lesson_id))
        return hits[:limit]

    def pairs_above(self, threshold: float) -> List[Tuple[str, str, float]]:
        """All unordered (id1, id2, similarity) pairs with similarity >= threshold, id1 < id2."""
        if self.size < 2:
            return []
        sims = self._matrix @ self._matrix.T
        rows, cols = np.where(np.triu(sims >= threshold, k=1))
        out: List[Tuple[str, str, float]] = []
        for r, c in zip(rows.tolist(), cols.tolist()):
            a, b = self._ids[r], self._ids[c]
            sim = max(0.0, min(1.0, float(sims[r, c])))
            out.append((a, b, sim) if a < b else (b, a, sim))
        return out
