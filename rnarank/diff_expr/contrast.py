"""Linear contrasts of class means."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType

import numpy as np

from rnarank.core.exceptions import ContrastError

__all__ = ["Contrast"]

_SUM_TOLERANCE = 1e-8


@dataclass(frozen=True)
class Contrast:
    """
    A named linear combination of class coefficients summing to zero.

    Parameters
    ----------
    name : str
        Contrast name, used to key result tables and output files.
    coefficients : Mapping[str, float]
        ``{class_name: coefficient}``. Classes not listed get 0.

    Raises
    ------
    ContrastError
        If the coefficients do not sum to zero, are all zero, or are not
        finite.

    Examples
    --------
    >>> Contrast("tumor_vs_normal", {"tumor": 1, "normal": -1})
    >>> Contrast.one_vs_rest("basal", ["basal", "her2", "luma", "lumb"])
    """

    name: str
    coefficients: Mapping[str, float]

    def __post_init__(self) -> None:
        coefs = {str(k): float(v) for k, v in dict(self.coefficients).items()}
        if not coefs:
            raise ContrastError(f"Contrast '{self.name}' has no coefficients")
        values = np.array(list(coefs.values()))
        if not np.all(np.isfinite(values)):
            raise ContrastError(f"Contrast '{self.name}' has non-finite coefficients")
        if np.all(values == 0):
            raise ContrastError(f"Contrast '{self.name}' has only zero coefficients")
        total = float(np.sum(values))
        if abs(total) > _SUM_TOLERANCE:
            raise ContrastError(
                f"unbalanced contrast: coefficients of '{self.name}' sum to {total:g}, not 0"
            )
        object.__setattr__(self, "coefficients", MappingProxyType(coefs))

    @classmethod
    def pairwise(cls, target: str, reference: str, name: str | None = None) -> Contrast:
        """``target - reference``."""
        return cls(name or f"{target}_vs_{reference}", {target: 1.0, reference: -1.0})

    @classmethod
    def one_vs_rest(
        cls,
        target: str,
        classes: Sequence[str],
        name: str | None = None,
    ) -> Contrast:
        """``target - mean(other classes)``."""
        others = [c for c in classes if c != target]
        if target not in classes or not others:
            raise ContrastError(
                f"one-vs-rest needs '{target}' and at least one other class, got {list(classes)}"
            )
        coefs = {c: -1.0 / len(others) for c in others}
        coefs[target] = 1.0
        return cls(name or f"{target}_vs_rest", coefs)

    def vector(self, levels: Sequence[str]) -> np.ndarray:
        """
        Coefficient vector aligned with the design levels.

        Raises
        ------
        ContrastError
            If the contrast names a class that is not a design level.
        """
        unknown = sorted(set(self.coefficients) - set(levels))
        if unknown:
            raise ContrastError(
                f"Contrast '{self.name}' refers to unknown classes {unknown}; "
                f"available: {list(levels)}"
            )
        return np.array([self.coefficients.get(lvl, 0.0) for lvl in levels])

    def __repr__(self) -> str:
        terms = " ".join(f"{v:+g}*{k}" for k, v in self.coefficients.items())
        return f"<Contrast {self.name}: {terms}>"
