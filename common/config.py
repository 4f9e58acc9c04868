from __future__ import annotations

from pathlib import Path
from typing import Dict, List

import yaml
from pydantic import BaseModel, Field, model_validator

from common.settings import settings

METADATA_FIELDS = (
    "grade_levels",
    "thematic_categories",
    "activity_type",
    "cultural_heritage",
    "season_timing",
    "main_ingredients",
    "cooking_methods",
)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "config.yaml"


class AppConfig(BaseModel):
    cache_dir: Path = Path("data/cache")


class DetectionConfig(BaseModel):
    semantic_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    semantic_limit: int = Field(default=10, ge=1)
    combined_floor: float = Field(default=0.45, ge=0.0, le=1.0)
    max_results_per_submission: int = Field(default=10, ge=1)
    embedding_dim: int = Field(default=1536, ge=1)
    ann_min_corpus_size: int = 5000
    fallback_scan_limit: int = 0  # 0 = whole catalog
    max_workers: int = Field(default=4, ge=1)


class FallbackWeights(BaseModel):
    title: float = 0.7
    metadata: float = 0.3

    @model_validator(mode="after")
    def _sum_to_one(self) -> "FallbackWeights":
        if abs(self.title + self.metadata - 1.0) > 1e-6:
            raise ValueError("fallback weights must sum to 1.0")
        return self


class CombineWeights(BaseModel):
    title: float = 0.3
    content: float = 0.5
    metadata: float = 0.2
    fallback: FallbackWeights = FallbackWeights()

    @model_validator(mode="after")
    def _sum_to_one(self) -> "CombineWeights":
        if abs(self.title + self.content + self.metadata - 1.0) > 1e-6:
            raise ValueError("combine weights must sum to 1.0")
        return self


class TierThresholds(BaseModel):
    high: float = 0.85
    medium: float = 0.70
    low: float = 0.45

    @model_validator(mode="after")
    def _descending(self) -> "TierThresholds":
        if not (1.0 >= self.high > self.medium > self.low >= 0.0):
            raise ValueError("tier thresholds must satisfy 1 >= high > medium > low >= 0")
        return self


class MetadataWeights(BaseModel):
    """Versioned per-field weight table for metadata overlap."""

    version: str = "2025-12-v1"
    weights: Dict[str, float] = Field(
        default_factory=lambda: {
            "grade_levels": 20,
            "thematic_categories": 20,
            "activity_type": 15,
            "cultural_heritage": 15,
            "season_timing": 10,
            "main_ingredients": 10,
            "cooking_methods": 10,
        }
    )

    @model_validator(mode="after")
    def _known_fields(self) -> "MetadataWeights":
        unknown = set(self.weights) - set(METADATA_FIELDS)
        if unknown:
            raise ValueError(f"unknown metadata fields: {sorted(unknown)}")
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("metadata weights must be non-negative")
        if sum(self.weights.values()) <= 0:
            raise ValueError("metadata weights must not all be zero")
        return self

    def normalized(self) -> Dict[str, float]:
        total = sum(self.weights.values())
        return {f: self.weights.get(f, 0.0) / total for f in METADATA_FIELDS}


class PairScanConfig(BaseModel):
    embedding_threshold: float = Field(default=0.95, ge=0.0, le=1.0)
    ignored_titles: List[str] = Field(default_factory=lambda: ["unknown"])


class ResolutionConfig(BaseModel):
    max_title_length: int = Field(default=500, ge=1)


class GlobalYAMLConfig(BaseModel):
    app: AppConfig = AppConfig()
    detection: DetectionConfig = DetectionConfig()
    combine: CombineWeights = CombineWeights()
    tiers: TierThresholds = TierThresholds()
    metadata_weights: MetadataWeights = MetadataWeights()
    pairs: PairScanConfig = PairScanConfig()
    resolution: ResolutionConfig = ResolutionConfig()


def load_yaml_config(path: Path | None = None) -> GlobalYAMLConfig:
    """
    Load config/config.yaml (or DEDUP_CONFIG_PATH). A missing file yields defaults.
    """
    path = Path(path or settings.config_path or DEFAULT_CONFIG_PATH)
    if not path.exists():
        return GlobalYAMLConfig()
    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    return GlobalYAMLConfig(**raw)


yaml_config = load_yaml_config()
