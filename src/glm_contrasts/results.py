"""
Per-contrast result tables and the collection keyed by contrast identifier.

Classes
-------
ResultSet
    Sorted table of entity effects for one contrast.
FailedContrast
    Marker stored in place of a ResultSet when a contrast could not be computed.
ResultCollection
    Ordered mapping from contrast identifier to ResultSet or FailedContrast.

Functions
---------
assemble_result_set
    Join shrinkage output, adjusted p-values and display names into a ResultSet.
"""
from __future__ import annotations

import logging
import math
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Callable, Iterator, Mapping, Optional, Tuple, Union

import numpy as np
import pandas as pd

from .combine import CombinedEffects
from .contrasts import ContrastSpec, describe_contrast
from .shrinkage import ScaleMixturePrior, ShrinkageResult

logger = logging.getLogger(__name__)

#: Persisted column order.
RESULT_COLUMNS = [
    "entity_id",
    "raw_log_effect",
    "raw_standard_error",
    "shrunken_log_effect",
    "test_statistic",
    "p_value",
    "adjusted_p_value",
    "display_name",
]

#: In-memory diagnostics kept next to the persisted columns.
EXTRA_COLUMNS = ["posterior_sd", "lfsr", "shrinkage_skipped"]

Annotation = Union[Callable[[str], Optional[str]], Mapping[str, str], pd.Series]


@dataclass(frozen=True, eq=False)
class ResultSet:
    """Effects for every entity of one contrast.

    The table is sorted by ``adjusted_p_value`` ascending with undefined
    (NaN) values last, ties broken by ``entity_id``. Treat it as read-only;
    :meth:`to_frame` returns a copy.
    """

    contrast_id: str
    spec: ContrastSpec
    #: Resolved weight vector, aligned to ``coef_names``.
    weights: np.ndarray
    coef_names: Tuple[str, ...]
    table: pd.DataFrame
    #: True when coefficient covariances were not used for the standard errors.
    independence_assumed: bool
    prior: Optional[ScaleMixturePrior] = None
    prior_converged: bool = True
    warnings: Tuple[str, ...] = field(default_factory=tuple)

    ok = True

    def __len__(self) -> int:
        return len(self.table)

    @property
    def label(self) -> str:
        return describe_contrast(self.spec, self.coef_names)

    def to_frame(self, extended: bool = False) -> pd.DataFrame:
        cols = RESULT_COLUMNS + (EXTRA_COLUMNS if extended else [])
        return self.table[cols].copy()

    def log_fold_changes(self, base: float = 2.0, shrunken: bool = True) -> pd.Series:
        """Effects converted from natural log to ``log_base`` fold changes."""
        col = "shrunken_log_effect" if shrunken else "raw_log_effect"
        ln_base = math.log(float(base))
        out = self.table.set_index("entity_id")[col] / ln_base
        return out.rename(f"log{base:g}FC")

    def significant(self, alpha: float = 0.1) -> pd.DataFrame:
        q = self.table["adjusted_p_value"]
        return self.table[q.notna() & (q < alpha)].reset_index(drop=True)

    def summary(self, alpha: float = 0.1) -> str:
        """Multi-line summary of significant up and down entities."""
        n = len(self.table)
        sig = self.significant(alpha)
        up = int((sig["shrunken_log_effect"] > 0).sum())
        down = int((sig["shrunken_log_effect"] < 0).sum())
        na = int(self.table["p_value"].isna().sum())
        pct = (lambda k: 100.0 * k / n) if n else (lambda k: 0.0)

        res = f"\n{self.contrast_id}: {self.label}\n"
        res += f"out of {n} entities\n"
        res += f"adjusted p-value < {alpha}\n"
        res += f"LFC > 0 (up)   : {up}, {pct(up):.2f}%\n"
        res += f"LFC < 0 (down) : {down}, {pct(down):.2f}%\n"
        res += f"undefined      : {na}, {pct(na):.2f}%\n"
        if self.independence_assumed:
            res += "standard errors assume independent coefficients\n"
        for w in self.warnings:
            res += f"warning: {w}\n"
        return res


@dataclass(frozen=True)
class FailedContrast:
    """Marker for a contrast whose computation raised a ContrastError."""

    contrast_id: str
    spec: ContrastSpec
    error_type: str
    message: str

    ok = False

    @classmethod
    def from_exception(cls, contrast_id: str, spec: ContrastSpec, exc: Exception) -> "FailedContrast":
        return cls(contrast_id=contrast_id, spec=spec, error_type=type(exc).__name__, message=str(exc))


Entry = Union[ResultSet, FailedContrast]


class ResultCollection(MutableMapping):
    """Ordered mapping of contrast identifier -> ResultSet or FailedContrast.

    Iteration follows first insertion. Assigning to an existing identifier
    replaces its entry in place (last write wins).
    """

    def __init__(self, entries: Optional[Mapping[str, Entry]] = None):
        self._entries: dict[str, Entry] = {}
        if entries:
            for k, v in entries.items():
                self[k] = v

    def __getitem__(self, key: str) -> Entry:
        return self._entries[key]

    def __setitem__(self, key: str, value: Entry) -> None:
        if not isinstance(value, (ResultSet, FailedContrast)):
            raise TypeError(f"Expected ResultSet or FailedContrast, got {type(value).__name__}")
        if key in self._entries:
            logger.info(f"Overwriting results for contrast '{key}'")
        self._entries[str(key)] = value

    def __delitem__(self, key: str) -> None:
        del self._entries[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        n_fail = len(self.failed())
        return f"ResultCollection({len(self)} contrasts, {n_fail} failed: {list(self)})"

    def succeeded(self) -> dict[str, ResultSet]:
        return {k: v for k, v in self._entries.items() if isinstance(v, ResultSet)}

    def failed(self) -> dict[str, FailedContrast]:
        return {k: v for k, v in self._entries.items() if isinstance(v, FailedContrast)}

    def failure_table(self) -> pd.DataFrame:
        rows = [
            {"contrast_id": k, "error_type": v.error_type, "message": v.message}
            for k, v in self.failed().items()
        ]
        return pd.DataFrame(rows, columns=["contrast_id", "error_type", "message"])


def _display_names(entity_ids, annotation: Optional[Annotation]) -> list[str]:
    if annotation is None:
        return list(entity_ids)
    lookup = annotation.get if hasattr(annotation, "get") else annotation
    out = []
    for eid in entity_ids:
        name = lookup(eid)
        if name is None or pd.isna(name) or str(name) == "":
            name = eid
        out.append(str(name))
    return out


def assemble_result_set(
    contrast_id: str,
    spec: ContrastSpec,
    weights: np.ndarray,
    coef_names: Tuple[str, ...],
    combined: CombinedEffects,
    shrunk: ShrinkageResult,
    adjusted_p: np.ndarray,
    annotation: Optional[Annotation] = None,
) -> ResultSet:
    """Build the sorted ResultSet for one contrast.

    Parameters
    ----------
    contrast_id : str
        Caller-chosen identifier.
    spec : ContrastSpec
        The contrast as requested.
    weights : np.ndarray
        Resolved weight vector.
    coef_names : tuple of str
        Model coefficient order.
    combined : CombinedEffects
        Raw contrast estimates.
    shrunk : ShrinkageResult
        Shrunken effects and statistics, in entity order.
    adjusted_p : np.ndarray
        BH-adjusted p-values in entity order.
    annotation : callable or mapping, optional
        ``entity_id -> display name``; missing names fall back to the id.

    Returns
    -------
    ResultSet
    """
    df = pd.DataFrame(
        {
            "entity_id": list(combined.entity_ids),
            "raw_log_effect": shrunk.raw_log_effect,
            "raw_standard_error": shrunk.raw_standard_error,
            "shrunken_log_effect": shrunk.shrunken_log_effect,
            "test_statistic": shrunk.test_statistic,
            "p_value": shrunk.p_value,
            "adjusted_p_value": np.asarray(adjusted_p, dtype=float),
            "display_name": _display_names(combined.entity_ids, annotation),
            "posterior_sd": shrunk.posterior_sd,
            "lfsr": shrunk.lfsr,
            "shrinkage_skipped": shrunk.shrinkage_skipped,
        }
    )

    # Sort: most significant first, undefined last, entity id for ties
    df = df.sort_values(
        ["adjusted_p_value", "entity_id"], ascending=True, na_position="last", kind="mergesort"
    ).reset_index(drop=True)

    w = np.array(weights, dtype=float, copy=True)
    w.setflags(write=False)

    return ResultSet(
        contrast_id=str(contrast_id),
        spec=spec,
        weights=w,
        coef_names=tuple(coef_names),
        table=df,
        independence_assumed=combined.independence_assumed,
        prior=shrunk.prior,
        prior_converged=shrunk.prior_converged,
        warnings=shrunk.notes,
    )
