import pytest
import yaml
from pydantic import ValidationError

from common.config import (
    DEFAULT_CONFIG_PATH,
    CombineWeights,
    GlobalYAMLConfig,
    MetadataWeights,
    TierThresholds,
    load_yaml_config,
)


def test_shipped_config_matches_defaults():
    cfg = load_yaml_config(DEFAULT_CONFIG_PATH)
    assert cfg.detection.combined_floor == 0.45
    assert cfg.detection.max_results_per_submission == 10
    assert (cfg.combine.title, cfg.combine.content, cfg.combine.metadata) == (0.3, 0.5, 0.2)
    assert (cfg.tiers.high, cfg.tiers.medium) == (0.85, 0.70)
    assert cfg.metadata_weights == GlobalYAMLConfig().metadata_weights


def test_missing_file_yields_defaults(tmp_path):
    assert load_yaml_config(tmp_path / "nope.yaml") == GlobalYAMLConfig()


def test_overrides_from_yaml(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump({"detection": {"combined_floor": 0.5, "embedding_dim": 8}, "tiers": {"high": 0.9}})
    )
    cfg = load_yaml_config(path)
    assert cfg.detection.combined_floor == 0.5
    assert cfg.detection.embedding_dim == 8
    assert cfg.tiers.high == 0.9
    assert cfg.tiers.medium == 0.70


def test_combine_weights_must_sum_to_one():
    with pytest.raises(ValidationError):
        CombineWeights(title=0.5, content=0.5, metadata=0.5)


def test_tiers_must_descend():
    with pytest.raises(ValidationError):
        TierThresholds(high=0.7, medium=0.85)


def test_metadata_weights_validation():
    with pytest.raises(ValidationError):
        MetadataWeights(weights={"colour": 10})
    with pytest.raises(ValidationError):
        MetadataWeights(weights={"grade_levels": 0})
    normalized = MetadataWeights().normalized()
    assert sum(normalized.values()) == pytest.approx(1.0)
    assert normalized["grade_levels"] == pytest.approx(0.2)
