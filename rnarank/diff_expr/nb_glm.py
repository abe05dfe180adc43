"""Negative binomial likelihood and GLM fitting.

All routines are vectorized across genes: counts are arrays of shape
(n_genes, n_samples) and dispersions hold one value per gene. The model is

    Y_gi ~ NB(mu_gi, phi_g),   Var(Y) = mu + phi * mu^2
    log(mu_gi) = x_i' beta_g + offset_i

with offsets equal to the log effective library sizes.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
from scipy.special import gammaln, xlogy

__all__ = [
    "GlmFit",
    "nb_log_likelihood",
    "nb_unit_deviance",
    "nb_deviance",
    "add_prior_count",
    "mglm_one_group",
    "mglm_one_way",
    "glm_fit",
]

# Below this dispersion the NB deviance is computed from its Taylor
# expansion around the Poisson.
_SMALL_DISPERSION = 1e-4
_MILDLY_LOW = 1e-8
_ETA_BOUND = 50.0


class GlmFit(NamedTuple):
    """Per-gene GLM fit."""

    beta: np.ndarray
    mu: np.ndarray
    deviance: np.ndarray
    converged: np.ndarray


def _as_gene_column(dispersion: np.ndarray | float, n_genes: int) -> np.ndarray:
    phi = np.asarray(dispersion, dtype=np.float64)
    if phi.ndim == 2:
        phi = phi[:, 0]
    return np.broadcast_to(phi, (n_genes,))[:, np.newaxis]


def nb_log_likelihood(
    y: np.ndarray,
    mu: np.ndarray,
    dispersion: np.ndarray,
) -> np.ndarray:
    """
    Elementwise NB log-probability of ``y`` given mean ``mu``.

    ``dispersion`` must broadcast against ``y``; zero dispersion gives the
    Poisson log-probability.
    """
    y = np.asarray(y, dtype=np.float64)
    mu = np.asarray(mu, dtype=np.float64)
    phi = np.broadcast_to(np.asarray(dispersion, dtype=np.float64), y.shape)

    poisson = phi <= 0
    phi_safe = np.where(poisson, 1.0, phi)
    size = 1.0 / phi_safe

    with np.errstate(divide="ignore", invalid="ignore"):
        nb = (
            gammaln(y + size)
            - gammaln(size)
            - gammaln(y + 1.0)
            - size * np.log1p(phi_safe * mu)
            + xlogy(y, mu)
            - xlogy(y, size + mu)
        )
        pois = xlogy(y, mu) - mu - gammaln(y + 1.0)

    return np.where(poisson, pois, nb)


def nb_unit_deviance(
    y: np.ndarray,
    mu: np.ndarray,
    dispersion: np.ndarray,
) -> np.ndarray:
    """Elementwise NB unit deviance (edgeR's formulation)."""
    y = np.asarray(y, dtype=np.float64) + _MILDLY_LOW
    mu = np.asarray(mu, dtype=np.float64) + _MILDLY_LOW
    phi = np.broadcast_to(np.asarray(dispersion, dtype=np.float64), y.shape)

    resid = y - mu
    log_ratio = np.log(y / mu)
    small = 2.0 * (
        y * log_ratio
        - resid
        - 0.5 * resid * resid * phi * (1.0 + phi * (2.0 / 3.0 * resid - y))
    )

    phi_safe = np.where(phi < _SMALL_DISPERSION, 1.0, phi)
    inv_phi = 1.0 / phi_safe
    product = mu * phi_safe
    huge = 2.0 * ((y - mu) / mu - log_ratio) * mu / (1.0 + product)
    regular = 2.0 * (y * log_ratio + (y + inv_phi) * np.log((mu + inv_phi) / (y + inv_phi)))

    return np.where(phi < _SMALL_DISPERSION, small, np.where(product > 1e6, huge, regular))


def nb_deviance(y: np.ndarray, mu: np.ndarray, dispersion: np.ndarray | float) -> np.ndarray:
    """Residual deviance per gene."""
    y = np.asarray(y, dtype=np.float64)
    phi = _as_gene_column(dispersion, y.shape[0])
    return np.sum(nb_unit_deviance(y, mu, phi), axis=1)


def add_prior_count(
    y: np.ndarray,
    lib_sizes: np.ndarray,
    prior_count: float = 0.125,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Add a library-size-scaled prior count to avoid infinite log fold changes.

    Returns
    -------
    tuple
        (augmented counts, log of augmented library sizes)
    """
    lib_sizes = np.asarray(lib_sizes, dtype=np.float64)
    prior = prior_count * lib_sizes / np.mean(lib_sizes)
    return y + prior[np.newaxis, :], np.log(lib_sizes + 2.0 * prior)


def mglm_one_group(
    y: np.ndarray,
    offset: np.ndarray,
    dispersion: np.ndarray | float,
    maxit: int = 50,
    tol: float = 1e-10,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Fit an intercept-only NB GLM for every gene by Fisher scoring.

    Parameters
    ----------
    y : np.ndarray
        Counts (n_genes, n_samples).
    offset : np.ndarray
        Log library sizes, (n_samples,) or (n_genes, n_samples).
    dispersion : np.ndarray or float
        One dispersion per gene.

    Returns
    -------
    tuple
        (beta, converged). Genes with all-zero counts get ``beta = -inf``
        and count as converged.
    """
    y = np.asarray(y, dtype=np.float64)
    n_genes = y.shape[0]
    offset = np.broadcast_to(np.asarray(offset, dtype=np.float64), y.shape)
    phi = _as_gene_column(dispersion, n_genes)

    total = y.sum(axis=1)
    zero = total <= 0
    beta = np.full(n_genes, -np.inf)
    with np.errstate(divide="ignore"):
        beta[~zero] = np.log(total[~zero] / np.exp(offset[~zero]).sum(axis=1))
    converged = zero.copy()

    for _ in range(maxit):
        active = ~converged
        if not np.any(active):
            break
        mu = np.exp(beta[active][:, np.newaxis] + offset[active])
        denom = 1.0 + phi[active] * mu
        score = np.sum((y[active] - mu) / denom, axis=1)
        info = np.sum(mu / denom, axis=1)
        step = score / info
        beta[active] += step
        done = np.abs(step) < tol
        idx = np.where(active)[0]
        converged[idx[done]] = True

    converged &= np.isfinite(beta) | zero
    return beta, converged


def mglm_one_way(
    y: np.ndarray,
    codes: np.ndarray,
    offset: np.ndarray,
    dispersion: np.ndarray | float,
    n_groups: int | None = None,
) -> GlmFit:
    """
    Fit the one-way NB model (one mean per group, no intercept).

    With an indicator design the likelihood separates by group, so each
    coefficient is an intercept-only fit on that group's samples.

    Parameters
    ----------
    codes : np.ndarray
        Integer group index of every sample.
    """
    y = np.asarray(y, dtype=np.float64)
    n_genes = y.shape[0]
    codes = np.asarray(codes, dtype=np.intp)
    n_groups = int(codes.max()) + 1 if n_groups is None else n_groups
    offset = np.broadcast_to(np.asarray(offset, dtype=np.float64), y.shape)
    phi = np.broadcast_to(np.asarray(dispersion, dtype=np.float64), (n_genes,))

    beta = np.empty((n_genes, n_groups))
    converged = np.ones(n_genes, dtype=bool)
    for g in range(n_groups):
        cols = codes == g
        beta[:, g], ok = mglm_one_group(y[:, cols], offset[:, cols], phi)
        converged &= ok

    mu = np.exp(beta[:, codes] + offset)
    return GlmFit(beta=beta, mu=mu, deviance=nb_deviance(y, mu, phi), converged=converged)


def glm_fit(
    y: np.ndarray,
    design: np.ndarray,
    offset: np.ndarray,
    dispersion: np.ndarray | float,
    maxit: int = 50,
    tol: float = 1e-8,
    max_halving: int = 30,
) -> GlmFit:
    """
    Fit an NB GLM with a general design matrix by IRLS with step halving.

    Parameters
    ----------
    y : np.ndarray
        Counts (n_genes, n_samples).
    design : np.ndarray
        Design matrix (n_samples, n_coefficients), full column rank.
    offset : np.ndarray
        Log library sizes, (n_samples,) or (n_genes, n_samples).
    dispersion : np.ndarray or float
        One dispersion per gene, held fixed.
    maxit : int, default=50
        Maximum number of scoring iterations.
    tol : float, default=1e-8
        Relative deviance change that counts as convergence.
    max_halving : int, default=30
        Maximum number of step halvings when a step increases the deviance.

    Returns
    -------
    GlmFit
        Coefficients, fitted means, deviances and per-gene convergence.

    Notes
    -----
    The Fisher scoring update is
        beta += (X' W X)^-1 X' (y - mu) / (1 + phi mu),   W = mu / (1 + phi mu)
    Steps are halved until the deviance does not increase.
    """
    y = np.asarray(y, dtype=np.float64)
    X = np.asarray(design, dtype=np.float64)
    n_genes, n_samples = y.shape
    n_coef = X.shape[1]
    offset = np.broadcast_to(np.asarray(offset, dtype=np.float64), y.shape)
    phi = _as_gene_column(dispersion, n_genes)

    def fitted(b: np.ndarray, off: np.ndarray) -> np.ndarray:
        return np.exp(np.clip(b @ X.T + off, -_ETA_BOUND, _ETA_BOUND))

    # Start from least squares on the log scale.
    z0 = np.log(y + 0.5) - offset
    beta = np.linalg.lstsq(X, z0.T, rcond=None)[0].T.copy()
    mu = fitted(beta, offset)
    dev = nb_deviance(y, mu, phi)

    converged = np.zeros(n_genes, dtype=bool)
    ridge = 1e-10 * np.eye(n_coef)

    for _ in range(maxit):
        active = np.where(~converged & np.isfinite(dev))[0]
        if active.size == 0:
            break

        mu_a = mu[active]
        denom = 1.0 + phi[active] * mu_a
        score = ((y[active] - mu_a) / denom) @ X
        info = np.einsum("gn,ni,nj->gij", mu_a / denom, X, X) + ridge
        try:
            delta = np.linalg.solve(info, score[..., np.newaxis])[..., 0]
        except np.linalg.LinAlgError:
            delta = np.stack([np.linalg.lstsq(m, s, rcond=None)[0] for m, s in zip(info, score)])

        dev_old = dev[active]
        lam = np.ones(active.size)
        beta_new = beta[active] + delta
        mu_new = fitted(beta_new, offset[active])
        dev_new = nb_deviance(y[active], mu_new, phi[active, 0])
        for _ in range(max_halving):
            worse = ~np.isfinite(dev_new) | (dev_new > dev_old * (1 + 1e-12) + 1e-12)
            if not np.any(worse):
                break
            lam[worse] /= 2.0
            beta_new[worse] = beta[active][worse] + lam[worse, np.newaxis] * delta[worse]
            mu_new[worse] = fitted(beta_new[worse], offset[active][worse])
            dev_new[worse] = nb_deviance(y[active][worse], mu_new[worse], phi[active][worse, 0])

        # A step that cannot reduce the deviance leaves the gene at its optimum.
        stalled = ~np.isfinite(dev_new) | (dev_new > dev_old * (1 + 1e-12) + 1e-12)
        accept = ~stalled
        beta[active[accept]] = beta_new[accept]
        mu[active[accept]] = mu_new[accept]
        dev[active[accept]] = dev_new[accept]

        change = np.abs(dev_old - dev[active])
        converged[active] = (change < tol * (np.abs(dev[active]) + 0.1)) | (
            stalled & np.isfinite(dev_old)
        )

    return GlmFit(beta=beta, mu=mu, deviance=dev, converged=converged & np.isfinite(dev))
