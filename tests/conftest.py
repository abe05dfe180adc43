"""Shared pytest fixtures for rnarank tests.

Fixtures are organized by artifact: count matrices, class labels and the
small four-gene scenario used across modules.
"""

from collections.abc import Callable

import numpy as np
import pytest

from rnarank.core import ClassLabels, CountMatrix
from rnarank.diff_expr import dispersion, lrt
from rnarank.normalization import calc_norm_factors


def simulate_nb_counts(
    n_genes: int = 200,
    n_per_class: int = 4,
    n_classes: int = 2,
    n_de: int = 20,
    fold: float = 4.0,
    dispersion: float = 0.05,
    seed: int = 42,
) -> tuple[CountMatrix, ClassLabels]:
    """Negative binomial counts where the first ``n_de`` genes are up in the last class.

    Returns
    -------
    tuple
        (CountMatrix, ClassLabels) with classes "c0", "c1", ...
    """
    rng = np.random.default_rng(seed)
    n_samples = n_per_class * n_classes
    base = rng.lognormal(mean=5.0, sigma=1.0, size=n_genes)
    lib_scale = rng.uniform(0.7, 1.3, size=n_samples)
    classes = np.repeat(np.arange(n_classes), n_per_class)

    mu = base[:, np.newaxis] * lib_scale[np.newaxis, :]
    mu[:n_de, classes == n_classes - 1] *= fold

    size = 1.0 / dispersion
    counts = rng.negative_binomial(size, size / (size + mu))

    sample_ids = [f"S{i + 1}" for i in range(n_samples)]
    matrix = CountMatrix(
        counts=counts,
        gene_ids=tuple(f"G{i + 1}" for i in range(n_genes)),
        sample_ids=tuple(sample_ids),
    )
    labels = ClassLabels(
        sample_ids=tuple(sample_ids),
        labels=tuple(f"c{k}" for k in classes),
    )
    return matrix, labels


@pytest.fixture
def make_counts() -> Callable[..., tuple[CountMatrix, ClassLabels]]:
    """Factory for simulated NB count data; see ``simulate_nb_counts``."""
    return simulate_nb_counts


@pytest.fixture
def nb_data() -> tuple[CountMatrix, ClassLabels]:
    """200 genes x 8 samples, two classes, 20 genes up 4-fold in ``c1``."""
    return simulate_nb_counts()


@pytest.fixture
def nb_factors(nb_data):
    """TMM factors of ``nb_data``."""
    matrix, _ = nb_data
    return calc_norm_factors(matrix)


@pytest.fixture
def scenario_counts() -> CountMatrix:
    """Four genes x six samples: G1 strongly down in B, G2 flat."""
    return CountMatrix(
        counts=np.array(
            [
                [100, 110, 105, 10, 12, 11],
                [50, 50, 50, 50, 50, 50],
                [200, 210, 190, 205, 195, 200],
                [30, 28, 35, 32, 29, 31],
            ]
        ),
        gene_ids=("G1", "G2", "G3", "G4"),
        sample_ids=("S1", "S2", "S3", "S4", "S5", "S6"),
    )


@pytest.fixture
def scenario_labels() -> ClassLabels:
    """Samples S1-S3 in class A, S4-S6 in class B."""
    return ClassLabels(
        sample_ids=("S1", "S2", "S3", "S4", "S5", "S6"),
        labels=("A", "A", "A", "B", "B", "B"),
    )


@pytest.fixture
def three_class_labels() -> ClassLabels:
    """Six samples in three classes of two."""
    return ClassLabels(
        sample_ids=("S1", "S2", "S3", "S4", "S5", "S6"),
        labels=("A", "A", "B", "B", "C", "C"),
    )


@pytest.fixture
def failing_glm_fit(monkeypatch) -> int:
    """Null-model GLM fits report the first three genes as not converged.

    Returns the number of affected genes.
    """
    fit_null = lrt.glm_fit

    def fit(*args, **kwargs):
        res = fit_null(*args, **kwargs)
        converged = res.converged.copy()
        converged[:3] = False
        return res._replace(converged=converged)

    monkeypatch.setattr(lrt, "glm_fit", fit)
    return 3


@pytest.fixture
def non_finite_likelihood(monkeypatch) -> int:
    """Adjusted profile likelihoods of the first two genes are NaN.

    Returns the number of affected genes.
    """
    apl = dispersion.adjusted_profile_loglik

    def loglik(*args, **kwargs):
        out = np.array(apl(*args, **kwargs))
        out[:2] = np.nan
        return out

    monkeypatch.setattr(dispersion, "adjusted_profile_loglik", loglik)
    return 2
