"""
Empirical Bayes shrinkage of contrast effects.

Entities with low counts have noisy, inflated log-effects. This module fits a
zero-centered scale mixture of normals to the effects of all entities in one
contrast and replaces each raw effect by its posterior mean, so that large but
uncertain effects are pulled toward zero in proportion to their standard error
and to how common large effects are across the whole contrast.

Model::

    beta_g ~ sum_k w_k N(0, sigma_k^2)         (prior, fixed grid sigma_k)
    hat(beta)_g | beta_g ~ N(beta_g, s_g^2)     (observation)

The weights ``w`` are fit by EM on the marginal likelihood. Every component
posterior mean is ``hat(beta)_g * sigma_k^2 / (sigma_k^2 + s_g^2)``, so the
posterior mean never exceeds the raw effect in magnitude.

Functions
---------
default_sigma_grid
    Geometric grid of prior scales spanning the observed effects.
fit_scale_mixture_prior
    EM fit of the mixture weights.
shrinkage_posterior
    Per-entity posterior mean and standard deviation under a fitted prior.
shrink_effects
    Fit the prior and compute shrunken effects, statistics and p-values.
"""
from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from typing import Optional, Tuple

import numpy as np
from scipy import stats
from scipy.special import logsumexp

from .combine import CombinedEffects
from .config import ShrinkageConfig
from .errors import ShrinkagePriorNonConvergent

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ScaleMixturePrior:
    """Fitted zero-centered scale mixture of normals."""

    weights: np.ndarray
    sigma_grid: np.ndarray
    #: Marginal log-likelihood at the fitted weights.
    log_likelihood: float
    #: Marginal log-likelihood at the uniform starting weights.
    initial_log_likelihood: float
    n_iter: int
    converged: bool

    @property
    def null_proportion(self) -> float:
        """Weight of the smallest scale, an estimate of the fraction of null entities."""
        return float(self.weights[0])


@dataclass(frozen=True, eq=False)
class ShrinkageResult:
    """Shrunken effects for every entity of one contrast, in input order."""

    raw_log_effect: np.ndarray
    raw_standard_error: np.ndarray
    shrunken_log_effect: np.ndarray
    posterior_sd: np.ndarray
    test_statistic: np.ndarray
    p_value: np.ndarray
    lfsr: np.ndarray
    #: Entities excluded from the prior fit (zero or non-finite se / effect).
    shrinkage_skipped: np.ndarray
    #: None when shrinkage was disabled or fell back to the null prior.
    prior: Optional[ScaleMixturePrior] = None
    #: False when EM ran out of budget and the null prior was used.
    prior_converged: bool = True
    notes: Tuple[str, ...] = field(default_factory=tuple)


def default_sigma_grid(
    effect: np.ndarray,
    std_error: np.ndarray,
    n_grid: int = 25,
    sigma_min: float = 1e-6,
    sigma_max_mult: float = 3.0,
) -> np.ndarray:
    """Build a geometric grid of prior scales.

    The grid runs from ``sigma_min`` (standing in for a point mass at zero)
    to ``sigma_max_mult`` times the larger of the largest absolute effect and
    the largest standard error, in ``n_grid + 1`` points.

    Parameters
    ----------
    effect : np.ndarray
        Observed effects of the entities used for fitting.
    std_error : np.ndarray
        Their standard errors.
    n_grid : int, default 25
        Number of non-null grid points.
    sigma_min : float, default 1e-6
        Smallest scale.
    sigma_max_mult : float, default 3.0
        Multiplier for the largest scale.

    Returns
    -------
    np.ndarray
        Grid of shape ``(n_grid + 1,)``.
    """
    top = max(float(np.max(np.abs(effect))), float(np.max(std_error)))
    sigma_max = max(sigma_max_mult * top, 10.0 * sigma_min)
    return np.geomspace(sigma_min, sigma_max, n_grid + 1)


def _log_marginal_densities(effect: np.ndarray, std_error: np.ndarray, sigma_grid: np.ndarray) -> np.ndarray:
    # log N(hat(beta)_g | 0, sigma_k^2 + s_g^2), shape (G, K+1); even in hat(beta)
    var = sigma_grid[None, :] ** 2 + std_error[:, None] ** 2
    return -0.5 * (np.log(2.0 * np.pi * var) + effect[:, None] ** 2 / var)


def fit_scale_mixture_prior(
    effect: np.ndarray,
    std_error: np.ndarray,
    sigma_grid: Optional[np.ndarray] = None,
    max_iter: int = 1000,
    tol: float = 1e-6,
) -> ScaleMixturePrior:
    """Estimate the mixture weights by EM.

    Parameters
    ----------
    effect : np.ndarray, shape (G,)
        Observed effects; all finite.
    std_error : np.ndarray, shape (G,)
        Standard errors; all finite and positive.
    sigma_grid : np.ndarray, optional
        Prior scales. Defaults to :func:`default_sigma_grid`.
    max_iter : int, default 1000
        EM iteration budget.
    tol : float, default 1e-6
        Convergence threshold on ``|ll - ll_prev| / (1 + |ll|)``.

    Returns
    -------
    ScaleMixturePrior
        ``converged`` is False if the budget ran out or the fit did not
        improve on the uniform starting weights.
    """
    effect = np.asarray(effect, dtype=float)
    std_error = np.asarray(std_error, dtype=float)
    if sigma_grid is None:
        sigma_grid = default_sigma_grid(effect, std_error)
    sigma_grid = np.asarray(sigma_grid, dtype=float)

    log_dens = _log_marginal_densities(effect, std_error, sigma_grid)
    k = sigma_grid.size

    weights = np.full(k, 1.0 / k)
    initial_ll = float(np.sum(logsumexp(np.log(weights)[None, :] + log_dens, axis=1)))
    prev_ll = -np.inf
    ll = initial_ll
    converged = False
    n_iter = 0

    for n_iter in range(1, max_iter + 1):
        # E-step
        log_num = np.log(weights)[None, :] + log_dens
        log_den = logsumexp(log_num, axis=1, keepdims=True)
        gamma = np.exp(log_num - log_den)

        ll = float(np.sum(log_den))
        if abs(ll - prev_ll) <= tol * (1.0 + abs(ll)):
            converged = True
            break
        prev_ll = ll

        # M-step
        weights = gamma.mean(axis=0)
        weights = np.maximum(weights, 1e-15)
        weights = weights / weights.sum()

    if not np.isfinite(ll) or ll < initial_ll - tol * (1.0 + abs(initial_ll)):
        converged = False

    return ScaleMixturePrior(
        weights=weights,
        sigma_grid=sigma_grid,
        log_likelihood=ll,
        initial_log_likelihood=initial_ll,
        n_iter=n_iter,
        converged=converged,
    )


def shrinkage_posterior(
    effect: np.ndarray,
    std_error: np.ndarray,
    prior: ScaleMixturePrior,
) -> dict:
    """Posterior of each entity's true effect under a fitted prior.

    Returns
    -------
    dict
        - **mean** : posterior mean (shrunken effect), shape (G,)
        - **sd** : posterior standard deviation, shape (G,)
        - **prob_positive** : P(beta_g > 0 | data), shape (G,)
        - **component_weights** : responsibilities, shape (G, K+1)
    """
    effect = np.asarray(effect, dtype=float)
    std_error = np.asarray(std_error, dtype=float)

    sigma_sq = prior.sigma_grid[None, :] ** 2
    s_sq = std_error[:, None] ** 2
    denom = sigma_sq + s_sq

    comp_mean = effect[:, None] * (sigma_sq / denom)
    comp_var = sigma_sq * s_sq / denom

    log_num = np.log(prior.weights)[None, :] + _log_marginal_densities(effect, std_error, prior.sigma_grid)
    gamma = np.exp(log_num - logsumexp(log_num, axis=1, keepdims=True))

    mean = np.sum(gamma * comp_mean, axis=1)
    # law of total variance
    var = np.sum(gamma * comp_var, axis=1) + np.sum(gamma * comp_mean**2, axis=1) - mean**2
    sd = np.sqrt(np.maximum(var, 0.0))

    prob_positive = np.sum(gamma * stats.norm.cdf(comp_mean / np.sqrt(np.maximum(comp_var, 1e-300))), axis=1)

    return {
        "mean": mean,
        "sd": sd,
        "prob_positive": prob_positive,
        "component_weights": gamma,
    }


def shrink_effects(
    combined: CombinedEffects,
    config: Optional[ShrinkageConfig] = None,
) -> ShrinkageResult:
    """Shrink one contrast's effects and derive test statistics.

    Parameters
    ----------
    combined : CombinedEffects
        Output of :func:`glm_contrasts.combine.combine_effects`.
    config : ShrinkageConfig, optional
        Prior grid and EM settings.

    Returns
    -------
    ShrinkageResult

    Notes
    -----
    The prior fit sees every usable entity before any posterior is computed.
    If EM does not converge within ``config.max_iter`` iterations, a
    :class:`ShrinkagePriorNonConvergent` warning is issued and the null
    prior is used: effects pass through unshrunken and the statistic is the
    Wald ``effect / se``.

    Entities whose standard error is zero or whose effect or standard error
    is not finite are excluded from the fit, keep their raw effect, and get
    NaN (undefined) statistic and p-value.
    """
    config = config or ShrinkageConfig()
    effect = np.asarray(combined.log_effect, dtype=float)
    se = np.asarray(combined.std_error, dtype=float)
    n = effect.size

    usable = np.isfinite(effect) & np.isfinite(se) & (se > 0)
    shrunk = effect.copy()
    post_sd = se.copy()
    stat = np.full(n, np.nan)
    pval = np.full(n, np.nan)
    lfsr = np.full(n, np.nan)
    notes = []
    prior = None
    converged = True

    n_skipped = int((~usable).sum())
    if n_skipped:
        logger.debug(f"{n_skipped} of {n} entities excluded from prior fit")

    if usable.any():
        e, s = effect[usable], se[usable]

        if config.enabled:
            grid = default_sigma_grid(
                e, s, n_grid=config.n_grid, sigma_min=config.sigma_min, sigma_max_mult=config.sigma_max_mult
            )
            fitted = fit_scale_mixture_prior(e, s, sigma_grid=grid, max_iter=config.max_iter, tol=config.tol)
            if fitted.converged:
                prior = fitted
                logger.debug(
                    f"Prior converged in {fitted.n_iter} iterations; "
                    f"null proportion {fitted.null_proportion:.3f}"
                )
            else:
                msg = (
                    f"Shrinkage prior did not converge after {fitted.n_iter} iterations; "
                    "using the null (unshrunken) prior"
                )
                warnings.warn(msg, ShrinkagePriorNonConvergent, stacklevel=2)
                logger.warning(msg)
                notes.append(msg)
                converged = False

        if prior is not None:
            post = shrinkage_posterior(e, s, prior)
            m, sd = post["mean"], post["sd"]
            pp = post["prob_positive"]
        else:
            m, sd = e, s
            pp = stats.norm.cdf(e / s)

        z = np.full(m.shape, np.nan)
        np.divide(m, sd, out=z, where=sd > 0)
        shrunk[usable] = m
        post_sd[usable] = sd
        stat[usable] = z
        pval[usable] = 2.0 * stats.norm.sf(np.abs(z))
        lfsr[usable] = np.minimum(pp, 1.0 - pp)

    return ShrinkageResult(
        raw_log_effect=effect,
        raw_standard_error=se,
        shrunken_log_effect=shrunk,
        posterior_sd=post_sd,
        test_statistic=stat,
        p_value=pval,
        lfsr=lfsr,
        shrinkage_skipped=~usable,
        prior=prior,
        prior_converged=converged,
        notes=tuple(notes),
    )
