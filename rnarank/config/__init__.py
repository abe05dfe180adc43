"""Configuration module for analysis runs.

Provides YAML-based configuration loading with type-safe dataclasses.
"""

from .loader import (
    TEST_METHODS,
    AnalysisConfig,
    DispersionConfig,
    FilterConfig,
    NormalizationConfig,
    OutputConfig,
    TestingConfig,
    get_default_config,
    load_config,
    save_config,
    validate_config,
)

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
