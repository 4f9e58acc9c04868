from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from common.config import METADATA_FIELDS


class MatchTier(str, Enum):
    EXACT = "exact"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    IN_REVIEW = "in_review"
    APPROVED = "approved"
    NEEDS_REVISION = "needs_revision"


class ResolutionMode(str, Enum):
    SINGLE = "single"
    SPLIT = "split"
    KEEP_ALL = "keep_all"


@dataclass
class LessonTags:
    """The fixed categorical fields; each is a list of string tags."""

    grade_levels: List[str] = field(default_factory=list)
    thematic_categories: List[str] = field(default_factory=list)
    activity_type: List[str] = field(default_factory=list)
    cultural_heritage: List[str] = field(default_factory=list)
    season_timing: List[str] = field(default_factory=list)
    main_ingredients: List[str] = field(default_factory=list)
    cooking_methods: List[str] = field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "LessonTags":
        data = data or {}
        values = {}
        for name in METADATA_FIELDS:
            raw = data.get(name)
            if raw is None:
                values[name] = []
            elif isinstance(raw, (list, tuple, set, frozenset)):
                values[name] = [str(v) for v in raw]
            else:
                values[name] = [str(raw)]
        return cls(**values)

    def as_dict(self) -> Dict[str, List[str]]:
        return asdict(self)


@dataclass
class CorpusDocument:
    lesson_id: str
    title: str
    content_text: str = ""
    summary: str = ""
    content_hash: str = ""
    embedding: Optional[List[float]] = None
    tags: LessonTags = field(default_factory=LessonTags)
    canonical_id: Optional[str] = None


@dataclass
class SubmissionInput:
    """What a detection run consumes for one submission."""

    submission_id: str
    title: str
    content_text: str = ""
    summary: str = ""
    embedding: Optional[List[float]] = None
    tags: LessonTags = field(default_factory=LessonTags)
    content_hash: str = ""


@dataclass
class ScoredCandidate:
    lesson_id: str
    title: str
    title_similarity: float
    content_similarity: float
    metadata_overlap: float
    combined_score: float
    tier: MatchTier
    match_details: Dict[str, Any] = field(default_factory=dict)

    def sort_key(self):
        return (-self.combined_score, self.title, self.lesson_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lessonId": self.lesson_id,
            "title": self.title,
            "matchType": self.tier.value,
            "combinedScore": self.combined_score,
            "titleSimilarity": self.title_similarity,
            "contentSimilarity": self.content_similarity,
            "metadataOverlapScore": self.metadata_overlap,
            "matchDetails": self.match_details,
        }


@dataclass
class DetectionReport:
    submission_id: str
    run_id: str
    content_hash: str
    candidates: List[ScoredCandidate] = field(default_factory=list)
    match_counts: Dict[str, int] = field(default_factory=dict)
    pre_filter_total: int = 0
    score_stats: Optional[Dict[str, float]] = None
    thresholds: Dict[str, Any] = field(default_factory=dict)
    degraded: bool = False
    degraded_reason: Optional[str] = None
    completed: bool = True
    error: Optional[str] = None

    @property
    def total(self) -> int:
        return len(self.candidates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submissionId": self.submission_id,
            "runId": self.run_id,
            "completed": self.completed,
            "error": self.error,
            "contentHash": self.content_hash,
            "degraded": self.degraded,
            "degradedReason": self.degraded_reason,
            "duplicatesFound": self.total,
            "matchCounts": self.match_counts,
            "preFilterTotal": self.pre_filter_total,
            "scoreStats": self.score_stats,
            "thresholds": self.thresholds,
            "duplicates": [c.to_dict() for c in self.candidates],
        }


@dataclass
class ResolutionResult:
    success: bool
    canonical_id: Optional[str] = None
    archived_count: int = 0
    resolution_id: Optional[str] = None
    error_code: Optional[str] = None
    error: Optional[str] = None


@dataclass
class DuplicatePair:
    id1: str
    id2: str
    title1: str
    title2: str
    detection_method: str  # "both" | "same_title" | "embedding"
    similarity: Optional[float]


@dataclass
class DuplicateGroup:
    group_id: str
    group_key: str
    lesson_ids: List[str]
    detection_method: str  # "both" | "same_title" | "embedding" | "mixed"
    confidence: str  # "high" | "medium" | "low"
    avg_similarity: Optional[float]
    pair_count: int
    recommended_canonical: Optional[str] = None
