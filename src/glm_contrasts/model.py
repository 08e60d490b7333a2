"""
Coefficient table of a fitted per-entity negative binomial GLM.

This module holds the immutable model representation consumed by the
contrast engine: one row of coefficient estimates and standard errors per
entity, an optional per-entity covariance matrix, and the reference-level
encoding of each categorical factor.

Classes
-------
FactorEncoding
    Reference level and per-level coefficient names for one factor column.
CoefficientTable
    Ordered coefficients shared by every entity of a fitted model.

Functions
---------
factor_encodings_from_design_info
    Recover treatment-coded factor encodings from a patsy DesignInfo.
compare_coefficient
    Side-by-side estimates of one coefficient from two models.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import patsy

from .errors import EntityIndexMismatch, UnknownCoefficient, UnknownFactorLevel


@dataclass(frozen=True)
class FactorEncoding:
    """Treatment coding of one categorical column."""

    #: Name of the factor column in the sample metadata.
    column: str
    #: Level absorbed into the intercept (the denominator of every coefficient).
    reference: str
    #: Non-reference level -> coefficient name.
    coefficients: Mapping[str, str]

    @property
    def levels(self) -> list[str]:
        return [self.reference] + list(self.coefficients)

    def coefficient_for(self, level: str) -> Optional[str]:
        """Coefficient name for ``level``; None for the reference level."""
        if level == self.reference:
            return None
        try:
            return self.coefficients[level]
        except KeyError:
            raise UnknownFactorLevel(self.column, level) from None

    @classmethod
    def from_levels(cls, column: str, reference: str, levels: Sequence[str]) -> "FactorEncoding":
        """Encoding using the ``{column}_{level}_vs_{reference}`` naming convention."""
        coefs = {
            str(lv): f"{column}_{lv}_vs_{reference}" for lv in levels if str(lv) != str(reference)
        }
        return cls(column=column, reference=str(reference), coefficients=coefs)


@dataclass(frozen=True, eq=False)
class CoefficientTable:
    """Immutable coefficient table for one fitted model.

    Parameters
    ----------
    coef_names : sequence of str
        Coefficient names in design-matrix order. Numeric contrasts are
        interpreted positionally against this order.
    entity_ids : sequence of str
        Entity identifiers (e.g. genes), one per row.
    estimates : np.ndarray
        Point estimates, shape ``(n_entities, n_coefficients)``, natural log scale.
    std_errors : np.ndarray
        Standard errors, same shape as ``estimates``.
    covariance : np.ndarray, optional
        Per-entity coefficient covariance, shape
        ``(n_entities, n_coefficients, n_coefficients)``. When absent,
        contrasts are combined under an independence assumption.
    factors : mapping of str to FactorEncoding, optional
        Reference-level metadata per factor column.

    Notes
    -----
    All arrays are copied and marked read-only on construction.
    """

    coef_names: Tuple[str, ...]
    entity_ids: Tuple[str, ...]
    estimates: np.ndarray
    std_errors: np.ndarray
    covariance: Optional[np.ndarray] = None
    factors: Mapping[str, FactorEncoding] = field(default_factory=dict)

    def __post_init__(self):
        names = tuple(str(c) for c in self.coef_names)
        ids = tuple(str(e) for e in self.entity_ids)
        if len(set(names)) != len(names):
            dup = sorted({c for c in names if names.count(c) > 1})
            raise ValueError(f"Duplicate coefficient names: {dup}")
        if len(set(ids)) != len(ids):
            raise ValueError("Entity identifiers must be unique")

        est = _frozen_array(self.estimates, (len(ids), len(names)), "estimates")
        se = _frozen_array(self.std_errors, (len(ids), len(names)), "std_errors")
        cov = None
        if self.covariance is not None:
            cov = _frozen_array(
                self.covariance, (len(ids), len(names), len(names)), "covariance"
            )

        for col, enc in self.factors.items():
            unknown = [c for c in enc.coefficients.values() if c not in names]
            if unknown:
                raise UnknownCoefficient(unknown[0], names)

        object.__setattr__(self, "coef_names", names)
        object.__setattr__(self, "entity_ids", ids)
        object.__setattr__(self, "estimates", est)
        object.__setattr__(self, "std_errors", se)
        object.__setattr__(self, "covariance", cov)
        object.__setattr__(self, "factors", dict(self.factors))
        object.__setattr__(self, "_coef_pos", {c: i for i, c in enumerate(names)})
        object.__setattr__(self, "_entity_pos", {e: i for i, e in enumerate(ids)})

    @property
    def n_coefficients(self) -> int:
        return len(self.coef_names)

    @property
    def n_entities(self) -> int:
        return len(self.entity_ids)

    @property
    def has_covariance(self) -> bool:
        return self.covariance is not None

    def coef_index(self, name: str) -> int:
        """Position of coefficient ``name``; raises UnknownCoefficient."""
        try:
            return self._coef_pos[name]
        except KeyError:
            raise UnknownCoefficient(name, self.coef_names) from None

    def coefficient(self, coef: int | str, entity: str) -> Tuple[float, float]:
        """Return ``(estimate, standard_error)`` of one coefficient for one entity."""
        j = self.coef_index(coef) if isinstance(coef, str) else int(coef)
        if not 0 <= j < self.n_coefficients:
            raise IndexError(f"Coefficient index {j} out of range")
        try:
            i = self._entity_pos[str(entity)]
        except KeyError:
            raise KeyError(f"Unknown entity: {entity!r}") from None
        return float(self.estimates[i, j]), float(self.std_errors[i, j])

    def factor(self, column: str) -> FactorEncoding:
        try:
            return self.factors[column]
        except KeyError:
            raise UnknownFactorLevel(column) from None

    def estimates_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.estimates,
            index=pd.Index(self.entity_ids, name="entity_id"),
            columns=list(self.coef_names),
        )

    def std_errors_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            self.std_errors,
            index=pd.Index(self.entity_ids, name="entity_id"),
            columns=list(self.coef_names),
        )

    def require_same_entities(self, other: "CoefficientTable") -> None:
        """Raise EntityIndexMismatch unless both models share one entity index."""
        if self.entity_ids == other.entity_ids:
            return
        only_self = set(self.entity_ids) - set(other.entity_ids)
        only_other = set(other.entity_ids) - set(self.entity_ids)
        if not only_self and not only_other:
            raise EntityIndexMismatch("Models contain the same entities in a different order")
        raise EntityIndexMismatch(
            f"Entity indexes differ: {len(only_self)} only in first model, "
            f"{len(only_other)} only in second model"
        )

    @classmethod
    def from_frames(
        cls,
        estimates: pd.DataFrame,
        std_errors: pd.DataFrame,
        covariance: Optional[np.ndarray] = None,
        factors: Optional[Mapping[str, FactorEncoding]] = None,
    ) -> "CoefficientTable":
        """Build a table from wide entity x coefficient frames.

        ``std_errors`` is aligned to the row and column order of ``estimates``;
        both must carry the same labels.
        """
        if set(estimates.index) != set(std_errors.index):
            raise ValueError("estimates and std_errors have different entity indexes")
        if set(estimates.columns) != set(std_errors.columns):
            raise ValueError("estimates and std_errors have different coefficient columns")
        std_errors = std_errors.loc[estimates.index, estimates.columns]
        return cls(
            coef_names=tuple(str(c) for c in estimates.columns),
            entity_ids=tuple(str(e) for e in estimates.index),
            estimates=estimates.to_numpy(dtype=float),
            std_errors=std_errors.to_numpy(dtype=float),
            covariance=covariance,
            factors=factors or {},
        )

    @classmethod
    def from_glm_results(
        cls,
        results: Mapping[str, object],
        factors: Optional[Mapping[str, FactorEncoding]] = None,
        *,
        with_covariance: bool = True,
    ) -> "CoefficientTable":
        """Build a table from per-entity statsmodels GLM results.

        Parameters
        ----------
        results : mapping of str to GLMResults
            Entity identifier -> fitted results, all sharing one design.
        factors : mapping of str to FactorEncoding, optional
            Factor metadata. If None and the models were fit from a patsy
            formula, it is recovered from the design info.
        with_covariance : bool, default True
            Keep ``cov_params()`` per entity.

        Examples
        --------
        >>> fits = {g: smf.glm("count ~ C(genotype)", df_g, family=nb).fit()
        ...         for g, df_g in long_df.groupby("gene")}
        >>> model = CoefficientTable.from_glm_results(fits)
        """
        if not results:
            raise ValueError("No fitted results supplied")

        names = None
        est, se, cov = [], [], []
        design_info = None
        for eid, res in results.items():
            exog_names = [str(c) for c in res.model.exog_names]
            if names is None:
                names = exog_names
                design_info = getattr(res.model.data, "design_info", None)
            elif exog_names != names:
                raise ValueError(f"Entity {eid!r} was fit with a different design: {exog_names}")
            est.append(np.asarray(res.params, dtype=float))
            se.append(np.asarray(res.bse, dtype=float))
            if with_covariance:
                cov.append(np.asarray(res.cov_params(), dtype=float))

        if factors is None:
            factors = (
                factor_encodings_from_design_info(design_info)
                if isinstance(design_info, patsy.DesignInfo)
                else {}
            )

        return cls(
            coef_names=tuple(names),
            entity_ids=tuple(str(e) for e in results),
            estimates=np.vstack(est),
            std_errors=np.vstack(se),
            covariance=np.stack(cov) if with_covariance else None,
            factors=factors,
        )


def _frozen_array(values, shape: tuple, label: str) -> np.ndarray:
    arr = np.array(values, dtype=float, copy=True)
    if arr.shape != shape:
        raise ValueError(f"{label} has shape {arr.shape}, expected {shape}")
    arr.setflags(write=False)
    return arr


_C_WRAPPED = re.compile(r"^C\(\s*([^,\)]+?)\s*(?:,.*)?\)$")


def _factor_column(factor_name: str) -> str:
    # "C(genotype, Treatment('wt'))" -> "genotype"
    m = _C_WRAPPED.match(factor_name)
    return m.group(1) if m else factor_name


def factor_encodings_from_design_info(design_info: patsy.DesignInfo) -> dict[str, FactorEncoding]:
    """Recover treatment-coded factor encodings from a patsy design.

    For each categorical factor, the levels with a ``name[T.level]`` column
    are the non-reference levels and the single level without one is the
    reference. Factors not treatment coded against exactly one reference
    (e.g. cell-means coding with no intercept) are skipped.

    Parameters
    ----------
    design_info : patsy.DesignInfo
        Design info of the fitted model's exog matrix.

    Returns
    -------
    dict
        Factor column -> FactorEncoding.
    """
    cols = set(design_info.column_names)
    out: dict[str, FactorEncoding] = {}
    for factor, info in design_info.factor_infos.items():
        if info.type != "categorical":
            continue
        name = factor.name()
        coefs = {}
        missing = []
        for level in info.categories:
            coef = f"{name}[T.{level}]"
            if coef in cols:
                coefs[str(level)] = coef
            else:
                missing.append(str(level))
        if len(missing) != 1 or not coefs:
            continue
        column = _factor_column(name)
        out[column] = FactorEncoding(column=column, reference=missing[0], coefficients=coefs)
    return out


def compare_coefficient(
    model_a: CoefficientTable,
    model_b: CoefficientTable,
    name: str,
    name_b: Optional[str] = None,
) -> pd.DataFrame:
    """Compare one coefficient between two independently fitted models.

    Typical use is a main-effects fit against the same design refit with an
    interaction term. The models are never merged; they must share an
    identical entity index.

    Parameters
    ----------
    model_a, model_b : CoefficientTable
        The two fits.
    name : str
        Coefficient name in ``model_a``.
    name_b : str, optional
        Coefficient name in ``model_b``; defaults to ``name``.

    Returns
    -------
    pd.DataFrame
        Indexed by entity_id with columns estimate_a, se_a, estimate_b, se_b
        and difference (b - a).
    """
    model_a.require_same_entities(model_b)
    ja = model_a.coef_index(name)
    jb = model_b.coef_index(name_b or name)
    df = pd.DataFrame(
        {
            "estimate_a": model_a.estimates[:, ja],
            "se_a": model_a.std_errors[:, ja],
            "estimate_b": model_b.estimates[:, jb],
            "se_b": model_b.std_errors[:, jb],
        },
        index=pd.Index(model_a.entity_ids, name="entity_id"),
    )
    df["difference"] = df["estimate_b"] - df["estimate_a"]
    return df
