import pytest

from fasi.config import AnalysisConfig, load_config
from fasi.constants import DEFAULT_PERMUTATIONS, DEFAULT_SEED


def test_defaults():
    config = AnalysisConfig()
    assert config.seed == DEFAULT_SEED
    assert config.permutations == DEFAULT_PERMUTATIONS
    assert load_config(None) == config


def test_seed_for_is_stable_and_distinct():
    config = AnalysisConfig(seed=1)
    assert config.seed_for("fa~phylum") == config.seed_for("fa~phylum")
    assert config.seed_for("fa~phylum") != config.seed_for("fa~order")
    assert AnalysisConfig(seed=2).seed_for("fa~phylum") != config.seed_for("fa~phylum")


def test_overrides_skip_none():
    config = AnalysisConfig().with_overrides(seed=5, permutations=None)
    assert config.seed == 5
    assert config.permutations == DEFAULT_PERMUTATIONS


def test_invalid_values():
    with pytest.raises(ValueError):
        AnalysisConfig(permutations=-1)
    with pytest.raises(ValueError):
        AnalysisConfig(simper_cutoff=1.5)
    with pytest.raises(ValueError):
        AnalysisConfig().with_overrides(cluster_count=0)


def test_load_yaml(tmp_path):
    path = tmp_path / "analysis.yaml"
    path.write_text("seed: 42\npermutations: 99\nsimper_cutoff: 0.7\n")
    config = load_config(path)
    assert (config.seed, config.permutations, config.simper_cutoff) == (42, 99, 0.7)


def test_unknown_yaml_key(tmp_path):
    path = tmp_path / "analysis.yaml"
    path.write_text("seeds: 42\n")
    with pytest.raises(ValueError, match="seeds"):
        load_config(path)
