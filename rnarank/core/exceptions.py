"""Exception hierarchy for rnarank.

Every error raised by the analysis core derives from :class:`RnaRankError`,
so callers can catch the whole family at a stage boundary.
"""

from __future__ import annotations

from pathlib import Path


class RnaRankError(Exception):
    """Base class for exceptions in rnarank."""

    pass


class DataError(RnaRankError):
    """Malformed or degenerate input data.

    Raised for zero-count samples, negative or non-integral counts,
    duplicate identifiers, and sample sets that do not match between a
    count matrix and its class labels.

    Attributes
    ----------
    ids : tuple[str, ...]
        Sample or gene identifiers implicated in the failure.
    """

    def __init__(self, message: str, ids: list[str] | tuple[str, ...] | None = None) -> None:
        self.ids = tuple(ids) if ids is not None else ()
        if self.ids:
            shown = ", ".join(self.ids[:5])
            if len(self.ids) > 5:
                shown += f", ... ({len(self.ids)} total)"
            message = f"{message}: {shown}"
        super().__init__(message)


class DesignError(RnaRankError):
    """Statistically invalid experimental design."""

    pass


class UsageError(RnaRankError):
    """A test variant was invoked that is incompatible with the design."""

    pass


class ContrastError(RnaRankError):
    """Malformed contrast coefficients."""

    pass


class ValidationError(RnaRankError, ValueError):
    """Invalid parameter value.

    Attributes
    ----------
    field : str | None
        Name of the offending parameter.
    """

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class ConfigurationError(RnaRankError):
    """Exception raised for configuration-related errors.

    Attributes
    ----------
    config_path : Path | None
        Path to the configuration file that caused the error.
    """

    def __init__(self, message: str, config_path: Path | None = None) -> None:
        super().__init__(message)
        self.config_path = config_path
