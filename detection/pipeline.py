from __future__ import annotations

import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential
from tqdm import tqdm

from common.config import GlobalYAMLConfig
from common.errors import DetectionRunError, StorageError
from common.logger import get_logger
from ingestion.document_models import (
    CorpusDocument,
    DetectionReport,
    MatchTier,
    ScoredCandidate,
    SubmissionInput,
)
from ingestion.hash_utils import content_hash, is_metadata_hash
from scoring.combine import classify, combine, fallback_score
from scoring.metadata import metadata_overlap_breakdown
from scoring.stats import score_distribution, tier_counts
from scoring.title import title_similarity
from storage import repository as repo
from storage.db import session_scope
from vectorstore.faiss_index import EmbeddingIndex, prepare_vector

log = get_logger(__name__)

IndexFactory = Callable[[List[CorpusDocument]], EmbeddingIndex]


def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, StorageError) and isinstance(exc.__cause__, OperationalError)


def score_candidate(
    submission: SubmissionInput,
    doc: CorpusDocument,
    content_similarity: Optional[float],
    config: GlobalYAMLConfig,
    hash_match: bool = False,
) -> Tuple[ScoredCandidate, Optional[MatchTier]]:
    """
    Score one (submission, catalog document) pair. ``content_similarity=None``
    selects the degraded title + metadata formula.
    """
    title_sim = title_similarity(submission.title, doc.title)
    meta_score, per_field, overlapping = metadata_overlap_breakdown(
        submission.tags, doc.tags, config.metadata_weights
    )
    floor = config.detection.combined_floor

    if hash_match:
        score, tier = 1.0, MatchTier.EXACT
        content_sim = 1.0
    elif content_similarity is None:
        score = fallback_score(title_sim, meta_score, config.combine)
        tier = classify(score, config.tiers, floor)
        content_sim = 0.0
    else:
        content_sim = content_similarity
        score, tier = combine(title_sim, content_sim, meta_score, config.combine, config.tiers, floor)

    details = {
        "hashMatch": hash_match,
        "metadataDerivedHash": hash_match and is_metadata_hash(doc.content_hash),
        "degraded": content_similarity is None and not hash_match,
        "overlappingFields": overlapping,
        "fieldSimilarity": per_field,
        "metadataWeightsVersion": config.metadata_weights.version,
        "raw": {
            "titleSimilarity": title_sim,
            "contentSimilarity": content_sim,
            "metadataOverlap": meta_score,
        },
    }
    candidate = ScoredCandidate(
        lesson_id=doc.lesson_id,
        title=doc.title,
        title_similarity=round(title_sim, 6),
        content_similarity=round(content_sim, 6),
        metadata_overlap=round(meta_score, 6),
        combined_score=score,
        tier=tier or MatchTier.LOW,
        match_details=details,
    )
    return candidate, tier


def _summarize(report: DetectionReport) -> None:
    report.match_counts = {
        **tier_counts(report.candidates),
        "total": report.total,
        "preFilterTotal": report.pre_filter_total,
        "filtered": report.pre_filter_total - report.total,
    }
    report.score_stats = score_distribution([c.combined_score for c in report.candidates])


class CatalogSnapshot:
    """Catalog documents as of one fingerprint, with the index built from them on first use."""

    def __init__(self, fingerprint: Tuple[Any, ...], documents: List[CorpusDocument]):
        self.fingerprint = fingerprint
        self.documents = documents
        self.index: Optional[EmbeddingIndex] = None


class DuplicateDetector:
    def __init__(
        self,
        session_factory: sessionmaker,
        config: GlobalYAMLConfig,
        index_factory: IndexFactory | None = None,
    ):
        """
        Turns one submission into a ranked, floor-filtered, bounded evidence set.
        ``index_factory`` builds the embedding index from the catalog snapshot;
        tests swap it to simulate an unavailable search backend. The index is
        reused across runs until the catalog fingerprint changes.
        """
        self.session_factory = session_factory
        self.config = config
        self.index_factory = index_factory or self._default_index
        self._snapshot: Optional[CatalogSnapshot] = None
        self._snapshot_lock = threading.Lock()

    def _default_index(self, documents: List[CorpusDocument]) -> EmbeddingIndex:
        return EmbeddingIndex.from_documents(
            documents,
            dim=self.config.detection.embedding_dim,
            ann_min_corpus_size=self.config.detection.ann_min_corpus_size,
        )

    def _catalog_snapshot(self, session: Session) -> CatalogSnapshot:
        # Called inside the reading transaction so the fingerprint matches the documents
        fingerprint = repo.catalog_fingerprint(session)
        with self._snapshot_lock:
            snapshot = self._snapshot
            if snapshot is None or snapshot.fingerprint != fingerprint:
                snapshot = CatalogSnapshot(fingerprint, repo.list_documents(session))
                self._snapshot = snapshot
                log.debug("Catalog snapshot refreshed: %d lessons", len(snapshot.documents))
            return snapshot

    def _index_for(self, catalog: List[CorpusDocument]) -> EmbeddingIndex:
        with self._snapshot_lock:
            snapshot = self._snapshot
            if snapshot is not None and snapshot.documents is catalog:
                if snapshot.index is None:
                    snapshot.index = self.index_factory(catalog)
                    log.info("Built embedding index over %d lessons", len(catalog))
                return snapshot.index
        return self.index_factory(catalog)

    def _thresholds(self) -> Dict[str, float]:
        d = self.config.detection
        return {
            "semantic": d.semantic_threshold,
            "semanticLimit": d.semantic_limit,
            "combinedFloor": d.combined_floor,
            "maxResults": d.max_results_per_submission,
            "high": self.config.tiers.high,
            "medium": self.config.tiers.medium,
        }

    def score_submission(
        self, submission: SubmissionInput, catalog: List[CorpusDocument], exact: List[CorpusDocument]
    ) -> DetectionReport:
        """Pure scoring stage: no storage access."""
        cfg = self.config.detection
        run_id = str(uuid.uuid4())
        digest = submission.content_hash or content_hash(
            submission.content_text, submission.title, submission.summary,
            submission.tags.grade_levels,
        )
        report = DetectionReport(
            submission_id=submission.submission_id,
            run_id=run_id,
            content_hash=digest,
            thresholds=self._thresholds(),
        )

        scored: List[Tuple[ScoredCandidate, Optional[MatchTier]]] = []
        seen = set()

        # 1) Exact hash matches
        for doc in exact:
            scored.append(score_candidate(submission, doc, None, self.config, hash_match=True))
            seen.add(doc.lesson_id)

        # 2) Embedding candidates, or the explicit degraded path
        query = prepare_vector(submission.embedding, cfg.embedding_dim)
        if query is not None:
            try:
                index = self._index_for(catalog)
                hits = index.find_similar(query, cfg.semantic_threshold, cfg.semantic_limit)
            except Exception as e:
                raise DetectionRunError(
                    submission.submission_id, f"similarity search failed: {e}"
                ) from e
            for doc, similarity in hits:
                if doc.lesson_id in seen:
                    continue
                seen.add(doc.lesson_id)
                scored.append(score_candidate(submission, doc, similarity, self.config))
        else:
            report.degraded = True
            report.degraded_reason = (
                "missing embedding" if submission.embedding is None else "malformed embedding"
            )
            log.warning(
                "Submission %s has %s; scoring on title + metadata only",
                submission.submission_id,
                report.degraded_reason,
            )
            pool = catalog
            if cfg.fallback_scan_limit > 0:
                pool = catalog[: cfg.fallback_scan_limit]
            for doc in pool:
                if doc.lesson_id in seen:
                    continue
                scored.append(score_candidate(submission, doc, None, self.config))

        # 3) Floor, deterministic order, top-N
        report.pre_filter_total = len(scored)
        kept = [c for c, tier in scored if tier is not None]
        kept.sort(key=ScoredCandidate.sort_key)
        report.candidates = kept[: cfg.max_results_per_submission]
        _summarize(report)
        return report

    def detect(self, submission: SubmissionInput) -> DetectionReport:
        """
        Full run: read the catalog, score, persist the evidence slice.
        Raises DetectionRunError when anything fails; nothing is persisted then.
        """
        try:
            with session_scope(self.session_factory) as session:
                catalog = self._catalog_snapshot(session).documents
                digest = submission.content_hash or content_hash(
                    submission.content_text, submission.title, submission.summary,
                    submission.tags.grade_levels,
                )
                has_identity = any(
                    s.strip() for s in (submission.content_text, submission.title, submission.summary)
                )
                exact = repo.find_by_hash(session, digest) if has_identity else []
        except StorageError as e:
            raise DetectionRunError(submission.submission_id, f"catalog unavailable: {e}") from e

        submission.content_hash = digest
        report = self.score_submission(submission, catalog, exact)

        try:
            self._persist(report)
        except StorageError as e:
            raise DetectionRunError(submission.submission_id, f"evidence not persisted: {e}") from e

        log.info(
            "Duplicate detection metrics: %s",
            {
                "submissionId": report.submission_id,
                "matchCounts": report.match_counts,
                "scoreStats": report.score_stats,
                "thresholds": report.thresholds,
                "degraded": report.degraded,
            },
        )
        return report

    @retry(
        retry=retry_if_exception(_is_transient),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _persist(self, report: DetectionReport) -> int:
        """
        Retry wrapper around the evidence write with exponential backoff.
        Candidates archived since the catalog was read are dropped first.
        """
        with session_scope(self.session_factory) as session:
            live = repo.get_lessons(
                session, [c.lesson_id for c in report.candidates], for_update=True
            )
            gone = [c.lesson_id for c in report.candidates if c.lesson_id not in live]
            if gone:
                log.info(
                    "Submission %s: dropping %d candidate(s) no longer in the catalog: %s",
                    report.submission_id, len(gone), ", ".join(gone),
                )
                report.candidates = [c for c in report.candidates if c.lesson_id in live]
                _summarize(report)
            return repo.replace_evidence(
                session, report.submission_id, report.run_id, report.candidates
            )

    def detect_submission(self, submission_id: str) -> DetectionReport:
        with session_scope(self.session_factory) as session:
            row = repo.get_submission(session, submission_id)
            if row is None:
                raise DetectionRunError(submission_id, "submission not found")
            submission = repo.to_submission_input(row)
        return self.detect(submission)

    def detect_many(
        self, submissions: Iterable[SubmissionInput], max_workers: int | None = None
    ) -> List[DetectionReport]:
        """
        Fan detection out across submissions. A failed run is reported as
        not completed; it never turns into an empty "no duplicates" result.
        """
        submissions = list(submissions)
        workers = max_workers or self.config.detection.max_workers
        reports: Dict[str, DetectionReport] = {}
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(self.detect, s): s for s in submissions}
            for fut in tqdm(as_completed(futures), total=len(futures), desc="Detecting duplicates"):
                sub = futures[fut]
                try:
                    reports[sub.submission_id] = fut.result()
                except DetectionRunError as e:
                    log.error("%s", e)
                    reports[sub.submission_id] = DetectionReport(
                        submission_id=sub.submission_id,
                        run_id="",
                        content_hash=sub.content_hash,
                        completed=False,
                        error=str(e),
                    )
        return [reports[s.submission_id] for s in submissions]
