"""
Linear combination of per-entity coefficient estimates.

Functions
---------
combine_effects
    Apply a weight vector to every entity's coefficients.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np

from .errors import SingularCovariance
from .model import CoefficientTable

logger = logging.getLogger(__name__)

# Relative tolerance below which a negative w' Sigma w is treated as round-off.
_NEG_VAR_RTOL = 1e-10


@dataclass(frozen=True, eq=False)
class CombinedEffects:
    """Per-entity contrast estimates before shrinkage."""

    entity_ids: Tuple[str, ...]
    #: w . beta per entity (natural log scale).
    log_effect: np.ndarray
    #: sqrt(w' Sigma w), or sqrt(sum w_i^2 se_i^2) under independence.
    std_error: np.ndarray
    #: True when coefficient covariances were ignored.
    independence_assumed: bool


def combine_effects(
    model: CoefficientTable,
    weights: np.ndarray,
    *,
    assume_independence: bool = False,
) -> CombinedEffects:
    """Combine coefficients into one contrast estimate per entity.

    Parameters
    ----------
    model : CoefficientTable
        Fitted model.
    weights : np.ndarray
        Weight vector from :func:`glm_contrasts.contrasts.resolve_contrast`.
    assume_independence : bool, default False
        Ignore the model covariance even when present.

    Returns
    -------
    CombinedEffects

    Raises
    ------
    SingularCovariance
        If ``w' Sigma w`` is negative beyond round-off for any entity.

    Notes
    -----
    Only coefficients with non-zero weight take part, so a missing estimate
    for an uninvolved coefficient does not affect the result. Without
    covariance the variance is ``sum(w_i^2 * se_i^2)``, which understates
    the true variance when coefficients are correlated (e.g. level
    coefficients sharing the intercept); the result is flagged accordingly.
    """
    w = np.asarray(weights, dtype=float)
    if w.shape != (model.n_coefficients,):
        raise ValueError(f"weights has shape {w.shape}, expected ({model.n_coefficients},)")

    idx = np.flatnonzero(w)
    w_sub = w[idx]
    n = model.n_entities

    if idx.size == 0:
        return CombinedEffects(
            entity_ids=model.entity_ids,
            log_effect=np.zeros(n),
            std_error=np.zeros(n),
            independence_assumed=not model.has_covariance or assume_independence,
        )

    est = model.estimates[:, idx]
    effect = est @ w_sub

    independence = assume_independence or not model.has_covariance
    if independence:
        se = model.std_errors[:, idx]
        var = (se**2) @ (w_sub**2)
    else:
        cov = model.covariance[:, idx][:, :, idx]
        var = np.einsum("i,nij,j->n", w_sub, cov, w_sub)
        scale = np.einsum("i,nii->n", w_sub**2, np.abs(cov))
        bad = var < -_NEG_VAR_RTOL * np.maximum(scale, 1.0)
        if np.any(bad):
            raise SingularCovariance(np.asarray(model.entity_ids)[bad])
        var = np.where(var < 0, 0.0, var)

    if independence and model.has_covariance:
        logger.debug("Covariance available but independence forced for this contrast")

    return CombinedEffects(
        entity_ids=model.entity_ids,
        log_effect=effect,
        std_error=np.sqrt(var),
        independence_assumed=independence,
    )
