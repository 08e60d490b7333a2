"""
Synthetic coefficient tables with known true effects.

Functions
---------
design_matrix
    Treatment-coded design for a balanced factorial experiment.
simulate_coefficient_table
    Draw per-entity coefficient estimates around known true effects.
"""
from __future__ import annotations

import itertools
from typing import Dict, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .model import CoefficientTable, FactorEncoding


def design_matrix(
    factors: Dict[str, Sequence[str]],
    interaction: Optional[Tuple[str, str]] = None,
    n_replicates: int = 3,
) -> Tuple[pd.DataFrame, Dict[str, FactorEncoding]]:
    """Build a treatment-coded design for every combination of factor levels.

    Parameters
    ----------
    factors : dict
        Factor column -> levels; the first level is the reference.
    interaction : tuple of str, optional
        Two factor columns whose non-reference levels get interaction columns
        named ``{A}_{a}:{B}_{b}``.
    n_replicates : int, default 3
        Samples per cell.

    Returns
    -------
    X : pd.DataFrame
        Design with an ``Intercept`` column, then ``{column}_{level}_vs_{reference}``
        columns, then interaction columns.
    encodings : dict
        Factor column -> FactorEncoding.

    Examples
    --------
    >>> X, enc = design_matrix({"genotype": ["wt", "kar4"], "treatment": ["none", "X"]})
    >>> list(X.columns)
    ['Intercept', 'genotype_kar4_vs_wt', 'treatment_X_vs_none']
    """
    columns = list(factors)
    cells = list(itertools.product(*[factors[c] for c in columns]))
    samples = pd.DataFrame(
        [cell for cell in cells for _ in range(n_replicates)], columns=columns
    )

    encodings = {
        c: FactorEncoding.from_levels(c, factors[c][0], factors[c]) for c in columns
    }

    X = pd.DataFrame({"Intercept": np.ones(len(samples))})
    for c in columns:
        for level, coef in encodings[c].coefficients.items():
            X[coef] = (samples[c] == level).astype(float)

    if interaction is not None:
        a, b = interaction
        for la in factors[a][1:]:
            for lb in factors[b][1:]:
                X[f"{a}_{la}:{b}_{lb}"] = ((samples[a] == la) & (samples[b] == lb)).astype(float)

    return X, encodings


def simulate_coefficient_table(
    n_entities: int = 500,
    factors: Optional[Dict[str, Sequence[str]]] = None,
    interaction: Optional[Tuple[str, str]] = None,
    n_replicates: int = 3,
    de_fraction: float = 0.1,
    effect_sd: float = 1.0,
    log_mean_count: float = 5.0,
    log_mean_count_sd: float = 1.5,
    dispersion: float = 0.1,
    with_covariance: bool = True,
    seed: int = 42,
) -> Tuple[CoefficientTable, Dict]:
    """Generate a fitted-looking coefficient table with known truth.

    Estimates are drawn as ``true + N(0, Sigma_g)`` with the NB-GLM
    large-sample covariance ``Sigma_g = (1/mu_g + dispersion) (X'X)^-1``,
    so low-count entities get wide, noisy estimates.

    Parameters
    ----------
    n_entities : int
        Number of entities (genes).
    factors : dict, optional
        Factor column -> levels (first is reference). Defaults to a
        three-level genotype crossed with a two-level treatment.
    interaction : tuple of str, optional
        Factor pair to include interaction coefficients for.
    n_replicates : int
        Samples per design cell.
    de_fraction : float
        Probability that a non-intercept true coefficient is non-zero.
    effect_sd : float
        SD of non-zero true effects (natural log scale).
    log_mean_count : float
        Mean of log mean counts across entities.
    log_mean_count_sd : float
        SD of log mean counts.
    dispersion : float
        NB2 dispersion (Var = mu + dispersion * mu^2).
    with_covariance : bool
        Attach the per-entity covariance to the table.
    seed : int
        Random seed.

    Returns
    -------
    model : CoefficientTable
        Simulated table.
    truth : dict
        Ground truth: ``effects`` (DataFrame of true coefficients),
        ``mean_count`` (Series), ``design`` (DataFrame).
    """
    rng = np.random.default_rng(seed)
    if factors is None:
        factors = {"genotype": ["wt", "kar4", "ste12"], "treatment": ["none", "X"]}

    X, encodings = design_matrix(factors, interaction=interaction, n_replicates=n_replicates)
    coef_names = list(X.columns)
    p = len(coef_names)
    xtx_inv = np.linalg.inv(X.to_numpy().T @ X.to_numpy())
    chol = np.linalg.cholesky(xtx_inv)

    entity_ids = [f"gene_{i:05d}" for i in range(n_entities)]
    mean_count = np.exp(rng.normal(log_mean_count, log_mean_count_sd, size=n_entities))

    true = np.zeros((n_entities, p))
    true[:, 0] = np.log(mean_count)
    active = rng.random((n_entities, p - 1)) < de_fraction
    true[:, 1:] = np.where(active, rng.normal(0.0, effect_sd, size=(n_entities, p - 1)), 0.0)

    scale = 1.0 / mean_count + dispersion
    noise = rng.standard_normal((n_entities, p)) @ chol.T
    est = true + np.sqrt(scale)[:, None] * noise

    se = np.sqrt(scale[:, None] * np.diag(xtx_inv)[None, :])
    cov = scale[:, None, None] * xtx_inv[None, :, :] if with_covariance else None

    model = CoefficientTable(
        coef_names=tuple(coef_names),
        entity_ids=tuple(entity_ids),
        estimates=est,
        std_errors=se,
        covariance=cov,
        factors=encodings,
    )
    truth = {
        "effects": pd.DataFrame(true, index=entity_ids, columns=coef_names),
        "mean_count": pd.Series(mean_count, index=entity_ids, name="mean_count"),
        "design": X,
    }
    return model, truth
