"""Tests for YAML configuration loading."""

from __future__ import annotations

import pytest

from rnarank.config import AnalysisConfig, get_default_config, load_config, save_config
from rnarank.core import ConfigurationError
from rnarank.diff_expr import Contrast


class TestLoadConfig:
    def test_missing_file_gives_defaults(self, tmp_path):
        config = load_config(tmp_path / "absent.yaml")
        assert config.filter.cpm_threshold == 1.0
        assert config.filter.min_samples == 50
        assert config.normalization.method == "tmm"
        assert config.dispersion.prior_df == 10.0
        assert config.testing.method == "glm"
        assert config.testing.fdr_threshold == 0.05
        assert not (tmp_path / "absent.yaml").exists()

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == get_default_config()

    def test_partial_sections(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "filter:\n"
            "  min_samples: 3\n"
            "testing:\n"
            "  method: exact\n"
            "  pair: [normal, tumor]\n"
            "dispersion:\n"
            "  prior_df: null\n"
        )
        config = load_config(path)
        assert config.filter.min_samples == 3
        assert config.filter.cpm_threshold == 1.0
        assert config.testing.method == "exact"
        assert config.testing.pair == ("normal", "tumor")
        assert config.dispersion.prior_df is None

    def test_contrasts(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "testing:\n"
            "  contrasts:\n"
            "    - name: basal_vs_luma\n"
            "      coefficients: {basal: 1, luma: -1}\n"
        )
        (contrast,) = load_config(path).testing.contrasts
        assert contrast == Contrast("basal_vs_luma", {"basal": 1.0, "luma": -1.0})

    def test_unbalanced_contrast(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "testing:\n"
            "  contrasts:\n"
            "    - name: bad\n"
            "      coefficients: {a: 1, b: -0.999}\n"
        )
        with pytest.raises(ConfigurationError, match="unbalanced") as exc_info:
            load_config(path)
        assert exc_info.value.config_path == path

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("filter: [unclosed\n")
        with pytest.raises(ConfigurationError, match="parse"):
            load_config(path)

    @pytest.mark.parametrize(
        "text",
        [
            "filter:\n  min_samples: 0\n",
            "normalization:\n  method: rle\n",
            "testing:\n  method: wald\n",
            "testing:\n  fdr_threshold: 2\n",
            "filter:\n  min_samples: many\n",
        ],
    )
    def test_invalid_values(self, tmp_path, text):
        path = tmp_path / "config.yaml"
        path.write_text(text)
        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError):
            load_config(path)


def test_save_and_reload(tmp_path):
    config = AnalysisConfig()
    config.filter.min_samples = 4
    config.testing.contrasts = [Contrast.pairwise("b", "a")]
    config.testing.pair = ("a", "b")
    path = tmp_path / "nested" / "config.yaml"
    save_config(config, path)
    assert load_config(path) == config
