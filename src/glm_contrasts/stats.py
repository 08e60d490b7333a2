"""
Multiple testing correction and the per-contrast pipeline.

This module provides Benjamini-Hochberg FDR adjustment and the functions
that carry one or many contrasts from a fitted coefficient table to sorted
result tables.

Functions
---------
bh_fdr
    Benjamini-Hochberg FDR adjustment.
contrast_table
    Resolve, combine, shrink and adjust one contrast.
run_contrasts
    Process many contrasts, recording failures without aborting the batch.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Mapping, Optional, Tuple, Union

import numpy as np

from .combine import combine_effects
from .config import EngineConfig
from .contrasts import ContrastSpec, describe_contrast, resolve_contrast
from .errors import ContrastError
from .model import CoefficientTable
from .results import Annotation, FailedContrast, ResultCollection, ResultSet, assemble_result_set
from .shrinkage import shrink_effects

logger = logging.getLogger(__name__)


def bh_fdr(pvals: np.ndarray) -> np.ndarray:
    """Benjamini-Hochberg FDR adjustment.

    Adjusts p-values to control the false discovery rate using the
    Benjamini-Hochberg procedure.

    Parameters
    ----------
    pvals : array-like
        Raw p-values. NaN marks an entity without a defined p-value.

    Returns
    -------
    qvals : np.ndarray
        BH-adjusted q-values, same shape as pvals. NaN inputs stay NaN and
        do not count toward the number of tests.

    Notes
    -----
    The procedure ranks p-values and computes q_i = p_i * n / rank_i,
    then enforces monotonicity (q_i >= q_{i-1} for sorted p-values).

    Examples
    --------
    >>> pvals = np.array([0.001, 0.01, 0.05, 0.1])
    >>> qvals = bh_fdr(pvals)
    >>> qvals
    array([0.004     , 0.02      , 0.06666667, 0.1       ])
    """
    pvals = np.asarray(pvals, dtype=float)
    out = np.full(pvals.shape, np.nan, dtype=float)

    ok = np.isfinite(pvals)
    if ok.sum() == 0:
        return out

    p = pvals[ok]
    order = np.argsort(p, kind="mergesort")
    ranks = np.arange(1, p.size + 1)

    q = p[order] * p.size / ranks
    # enforce monotonicity
    q = np.minimum.accumulate(q[::-1])[::-1]
    q = np.clip(q, 0.0, 1.0)

    out_idx = np.where(ok)[0][order]
    out[out_idx] = q
    return out


def contrast_table(
    model: CoefficientTable,
    spec: ContrastSpec,
    *,
    contrast_id: Optional[str] = None,
    annotation: Optional[Annotation] = None,
    config: Optional[EngineConfig] = None,
) -> ResultSet:
    """Compute the shrunken, FDR-corrected effects of one contrast.

    Parameters
    ----------
    model : CoefficientTable
        Fitted model; never modified.
    spec : SingleCoefficient, FactorPair or LinearCombination
        Comparison of interest.
    contrast_id : str, optional
        Identifier stored on the result; defaults to the contrast's label.
    annotation : callable or mapping, optional
        ``entity_id -> display name`` lookup.
    config : EngineConfig, optional
        Shrinkage and combination settings.

    Returns
    -------
    ResultSet
        Table with columns entity_id, raw_log_effect, raw_standard_error,
        shrunken_log_effect, test_statistic, p_value, adjusted_p_value,
        display_name (plus posterior_sd, lfsr, shrinkage_skipped), sorted
        by adjusted_p_value with undefined values last.

    Raises
    ------
    UnknownCoefficient, UnknownFactorLevel, ContrastLengthMismatch
        The contrast cannot be resolved against this model.
    SingularCovariance
        The model covariance is not positive semi-definite along the contrast.

    Examples
    --------
    >>> res = contrast_table(model, FactorPair("genotype", "kar4", "wt"))
    >>> res.table[res.table["adjusted_p_value"] < 0.1]  # significant entities
    """
    config = config or EngineConfig()

    weights = resolve_contrast(spec, model)
    combined = combine_effects(model, weights, assume_independence=config.assume_independence)
    shrunk = shrink_effects(combined, config.shrinkage)
    qvals = bh_fdr(shrunk.p_value)

    if contrast_id is None:
        contrast_id = describe_contrast(spec, model.coef_names)

    return assemble_result_set(
        contrast_id,
        spec,
        weights,
        model.coef_names,
        combined,
        shrunk,
        qvals,
        annotation=annotation,
    )


ContrastRequests = Union[Mapping[str, ContrastSpec], Iterable[Tuple[str, ContrastSpec]]]


def run_contrasts(
    model: CoefficientTable,
    contrasts: ContrastRequests,
    *,
    annotation: Optional[Annotation] = None,
    config: Optional[EngineConfig] = None,
    collection: Optional[ResultCollection] = None,
    max_workers: Optional[int] = None,
) -> ResultCollection:
    """Compute many contrasts from one model.

    A contrast that fails to resolve or combine is stored as a
    :class:`FailedContrast` and the remaining contrasts are still computed.

    Parameters
    ----------
    model : CoefficientTable
        Fitted model shared read-only by all contrasts.
    contrasts : mapping or iterable of (id, spec) pairs
        Requested comparisons keyed by identifier. A repeated identifier
        overwrites the earlier entry.
    annotation : callable or mapping, optional
        ``entity_id -> display name`` lookup.
    config : EngineConfig, optional
        Settings applied to every contrast.
    collection : ResultCollection, optional
        Existing collection to insert into; a new one is created if None.
    max_workers : int, optional
        If > 1, contrasts are computed concurrently on a thread pool.
        Entries are inserted in request order either way.

    Returns
    -------
    ResultCollection
    """
    config = config or EngineConfig()
    collection = collection if collection is not None else ResultCollection()
    items = list(contrasts.items()) if isinstance(contrasts, Mapping) else list(contrasts)

    def _one(item):
        cid, spec = item
        try:
            res = contrast_table(model, spec, contrast_id=cid, annotation=annotation, config=config)
        except ContrastError as e:
            logger.error(f"Contrast '{cid}' failed: {type(e).__name__}: {e}")
            return FailedContrast.from_exception(cid, spec, e)
        logger.info(
            f"Contrast '{cid}': {len(res)} entities, "
            f"{int((res.table['adjusted_p_value'] < 0.1).sum())} with q < 0.1"
        )
        return res

    logger.info(f"Computing {len(items)} contrasts over {model.n_entities} entities")
    if max_workers is not None and max_workers > 1 and len(items) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            outcomes = list(pool.map(_one, items))
    else:
        outcomes = [_one(item) for item in items]

    for (cid, _), outcome in zip(items, outcomes):
        collection[cid] = outcome
    return collection
