"""Configuration file loader for analysis runs.

Provides YAML-based configuration loading with default value support
and type-safe configuration dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import yaml

from rnarank.core.exceptions import ConfigurationError, RnaRankError
from rnarank.diff_expr.contrast import Contrast
from rnarank.normalization.tmm import NORMALIZATION_METHODS

TEST_METHODS = ("glm", "exact")


@dataclass(slots=True)
class FilterConfig:
    """Configuration for the CPM expression filter.

    Attributes
    ----------
    cpm_threshold : float
        A gene is expressed in a sample when its CPM exceeds this value.
    min_samples : int
        Minimum number of samples in which a gene must be expressed.
    """

    cpm_threshold: float = 1.0
    min_samples: int = 50


@dataclass(slots=True)
class NormalizationConfig:
    """Configuration for normalization factors.

    Attributes
    ----------
    method : str
        One of "tmm", "upperquartile", "none".
    logratio_trim : float
        TMM: fraction of M values trimmed from each side.
    sum_trim : float
        TMM: fraction of A values trimmed from each side.
    do_weighting : bool
        TMM: precision-weight the trimmed mean.
    """

    method: str = "tmm"
    logratio_trim: float = 0.3
    sum_trim: float = 0.05
    do_weighting: bool = True


@dataclass(slots=True)
class DispersionConfig:
    """Configuration for dispersion estimation.

    Attributes
    ----------
    prior_df : float | None
        Prior degrees of freedom for tagwise shrinkage. None selects 10.
    grid_length : int
        Number of points on the dispersion grid.
    grid_range : tuple[float, float]
        Grid range in log2 units.
    adjust : bool
        Apply the Cox-Reid adjustment.
    """

    prior_df: float | None = 10.0
    grid_length: int = 21
    grid_range: tuple[float, float] = (-10.0, 10.0)
    adjust: bool = True


@dataclass(slots=True)
class TestingConfig:
    """Configuration for differential expression testing.

    Attributes
    ----------
    method : str
        "glm" (likelihood ratio test of each contrast) or "exact".
    contrasts : list[Contrast]
        Contrasts for the GLM test. Empty selects defaults from the class
        levels.
    pair : tuple[str, str] | None
        ``(reference, target)`` for the exact test.
    fdr_threshold : float
        Genes with FDR strictly below this value are significant.
    prior_count : float
        Prior count used for log fold changes.
    """

    __test__ = False

    method: str = "glm"
    contrasts: list[Contrast] = field(default_factory=list)
    pair: tuple[str, str] | None = None
    fdr_threshold: float = 0.05
    prior_count: float = 0.125


@dataclass(slots=True)
class OutputConfig:
    """Configuration for written artifacts.

    Attributes
    ----------
    directory : str
        Output directory.
    use_symbols : bool
        Write gene symbols instead of ids in rank files.
    gene_id_sep : str
        Separator of compound ``symbol|entrez`` gene ids.
    write_normalized : bool
        Write the log-CPM normalized expression table.
    log_prior_count : float
        Prior count of the log-CPM transform.
    """

    directory: str = "rnarank_results"
    use_symbols: bool = False
    gene_id_sep: str = "|"
    write_normalized: bool = True
    log_prior_count: float = 2.0


@dataclass(slots=True)
class AnalysisConfig:
    """Main configuration for an analysis run."""

    filter: FilterConfig = field(default_factory=FilterConfig)
    normalization: NormalizationConfig = field(default_factory=NormalizationConfig)
    dispersion: DispersionConfig = field(default_factory=DispersionConfig)
    testing: TestingConfig = field(default_factory=TestingConfig)
    output: OutputConfig = field(default_factory=OutputConfig)


def _parse_contrasts(data: list | None, path: Path | None) -> list[Contrast]:
    """Parse ``[{name: ..., coefficients: {class: coef}}]`` entries."""
    if not data:
        return []
    if not isinstance(data, list):
        raise ConfigurationError("testing.contrasts must be a list", config_path=path)

    contrasts = []
    for entry in data:
        if not isinstance(entry, dict) or "coefficients" not in entry:
            raise ConfigurationError(
                f"Contrast entry needs 'name' and 'coefficients': {entry!r}",
                config_path=path,
            )
        name = entry.get("name") or "_vs_".join(map(str, entry["coefficients"]))
        try:
            contrasts.append(Contrast(str(name), entry["coefficients"]))
        except (RnaRankError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid contrast '{name}': {e}", config_path=path) from e
    return contrasts


def _parse_config(data: dict, path: Path | None = None) -> AnalysisConfig:
    """Build an AnalysisConfig from parsed YAML data."""
    filt = data.get("filter") or {}
    norm = data.get("normalization") or {}
    disp = data.get("dispersion") or {}
    test = data.get("testing") or {}
    out = data.get("output") or {}

    try:
        pair = test.get("pair")
        prior_df = disp.get("prior_df", 10.0)
        config = AnalysisConfig(
            filter=FilterConfig(
                cpm_threshold=float(filt.get("cpm_threshold", 1.0)),
                min_samples=int(filt.get("min_samples", 50)),
            ),
            normalization=NormalizationConfig(
                method=str(norm.get("method", "tmm")),
                logratio_trim=float(norm.get("logratio_trim", 0.3)),
                sum_trim=float(norm.get("sum_trim", 0.05)),
                do_weighting=bool(norm.get("do_weighting", True)),
            ),
            dispersion=DispersionConfig(
                prior_df=None if prior_df is None else float(prior_df),
                grid_length=int(disp.get("grid_length", 21)),
                grid_range=tuple(float(v) for v in disp.get("grid_range", (-10.0, 10.0))),
                adjust=bool(disp.get("adjust", True)),
            ),
            testing=TestingConfig(
                method=str(test.get("method", "glm")),
                contrasts=_parse_contrasts(test.get("contrasts"), path),
                pair=tuple(str(p) for p in pair) if pair else None,
                fdr_threshold=float(test.get("fdr_threshold", 0.05)),
                prior_count=float(test.get("prior_count", 0.125)),
            ),
            output=OutputConfig(
                directory=str(out.get("directory", "rnarank_results")),
                use_symbols=bool(out.get("use_symbols", False)),
                gene_id_sep=str(out.get("gene_id_sep", "|")),
                write_normalized=bool(out.get("write_normalized", True)),
                log_prior_count=float(out.get("log_prior_count", 2.0)),
            ),
        )
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}", config_path=path) from e

    validate_config(config, path)
    return config


def validate_config(config: AnalysisConfig, config_path: Path | None = None) -> None:
    """Check value ranges.

    Raises
    ------
    ConfigurationError
        If any setting is out of range.
    """
    problems = []
    if config.filter.min_samples < 1:
        problems.append("filter.min_samples must be >= 1")
    if config.filter.cpm_threshold < 0:
        problems.append("filter.cpm_threshold must be >= 0")
    if config.normalization.method not in NORMALIZATION_METHODS:
        problems.append(f"normalization.method must be one of {list(NORMALIZATION_METHODS)}")
    if config.dispersion.prior_df is not None and config.dispersion.prior_df < 0:
        problems.append("dispersion.prior_df must be >= 0")
    if len(config.dispersion.grid_range) != 2:
        problems.append("dispersion.grid_range must have two values")
    if config.testing.method not in TEST_METHODS:
        problems.append(f"testing.method must be one of {list(TEST_METHODS)}")
    if config.testing.pair is not None and len(config.testing.pair) != 2:
        problems.append("testing.pair must name two classes")
    if not 0.0 <= config.testing.fdr_threshold <= 1.0:
        problems.append("testing.fdr_threshold must be in [0, 1]")
    if problems:
        raise ConfigurationError("; ".join(problems), config_path=config_path)


def load_config(config_path: str | Path) -> AnalysisConfig:
    """Load analysis configuration from a YAML file.

    If the file does not exist, the default configuration is returned.

    Parameters
    ----------
    config_path : str | Path
        Path to the configuration YAML file.

    Returns
    -------
    AnalysisConfig
        Loaded configuration.

    Raises
    ------
    ConfigurationError
        If YAML parsing fails, the file is unreadable, or a value is invalid.
    """
    path = Path(config_path)

    if not path.exists():
        return get_default_config()

    try:
        with path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigurationError(
            f"Failed to parse YAML config: {e}",
            config_path=path,
        ) from e
    except OSError as e:
        raise ConfigurationError(
            f"Failed to read config file: {e}",
            config_path=path,
        ) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigurationError("Config file must hold a mapping", config_path=path)

    return _parse_config(data, path)


def save_config(config: AnalysisConfig, config_path: str | Path) -> None:
    """Save configuration to YAML file.

    Raises
    ------
    ConfigurationError
        If file cannot be written.
    """
    path = Path(config_path)

    # Ensure parent directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    data = {
        "filter": {
            "cpm_threshold": config.filter.cpm_threshold,
            "min_samples": config.filter.min_samples,
        },
        "normalization": {
            "method": config.normalization.method,
            "logratio_trim": config.normalization.logratio_trim,
            "sum_trim": config.normalization.sum_trim,
            "do_weighting": config.normalization.do_weighting,
        },
        "dispersion": {
            "prior_df": config.dispersion.prior_df,
            "grid_length": config.dispersion.grid_length,
            "grid_range": list(config.dispersion.grid_range),
            "adjust": config.dispersion.adjust,
        },
        "testing": {
            "method": config.testing.method,
            "contrasts": [
                {"name": c.name, "coefficients": dict(c.coefficients)}
                for c in config.testing.contrasts
            ],
            "pair": list(config.testing.pair) if config.testing.pair else None,
            "fdr_threshold": config.testing.fdr_threshold,
            "prior_count": config.testing.prior_count,
        },
        "output": {
            "directory": config.output.directory,
            "use_symbols": config.output.use_symbols,
            "gene_id_sep": config.output.gene_id_sep,
            "write_normalized": config.output.write_normalized,
            "log_prior_count": config.output.log_prior_count,
        },
    }

    try:
        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(
            f"Failed to save config file: {e}",
            config_path=path,
        ) from e


def get_default_config() -> AnalysisConfig:
    """Get the default analysis configuration."""
    return AnalysisConfig()


__all__ = [
    "AnalysisConfig",
    "FilterConfig",
    "NormalizationConfig",
    "DispersionConfig",
    "TestingConfig",
    "OutputConfig",
    "TEST_METHODS",
    "load_config",
    "save_config",
    "validate_config",
    "get_default_config",
]
