"""
Contrast specifications and their resolution to weight vectors.

Functions
---------
resolve_contrast
    Resolve a ContrastSpec against a model into a dense weight vector.
linear_combination_from_names
    Build a positional LinearCombination from named weights.
describe_contrast
    Human-readable label for a contrast.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from .errors import ContrastLengthMismatch
from .model import CoefficientTable


@dataclass(frozen=True)
class SingleCoefficient:
    """Select one coefficient unchanged."""

    name: str


@dataclass(frozen=True)
class FactorPair:
    """Compare two levels of a treatment-coded factor (numerator vs denominator)."""

    column: str
    numerator: str
    denominator: str

    def swapped(self) -> "FactorPair":
        return FactorPair(self.column, self.denominator, self.numerator)


@dataclass(frozen=True)
class LinearCombination:
    """Positional weights over the model's coefficients."""

    weights: Tuple[float, ...]

    def __post_init__(self):
        object.__setattr__(self, "weights", tuple(float(w) for w in self.weights))


ContrastSpec = Union[SingleCoefficient, FactorPair, LinearCombination]


def resolve_contrast(spec: ContrastSpec, model: CoefficientTable) -> np.ndarray:
    """Resolve a contrast specification to a weight vector.

    Parameters
    ----------
    spec : SingleCoefficient, FactorPair or LinearCombination
        The comparison of interest.
    model : CoefficientTable
        Model whose coefficient order the weights are aligned to.

    Returns
    -------
    np.ndarray
        Float weights of length ``model.n_coefficients``.

    Raises
    ------
    UnknownCoefficient
        A named coefficient is not in the model.
    UnknownFactorLevel
        The factor column or one of its levels was never fit.
    ContrastLengthMismatch
        A LinearCombination has the wrong number of weights.

    Examples
    --------
    >>> resolve_contrast(FactorPair("genotype", "kar4", "ste12"), model)
    array([ 0.,  1., -1.,  0.])
    """
    L = np.zeros(model.n_coefficients, dtype=float)

    if isinstance(spec, SingleCoefficient):
        L[model.coef_index(spec.name)] = 1.0
    elif isinstance(spec, FactorPair):
        enc = model.factor(spec.column)
        num = enc.coefficient_for(spec.numerator)
        den = enc.coefficient_for(spec.denominator)
        # coefficient_for returns None for the reference level
        if num is not None:
            L[model.coef_index(num)] += 1.0
        if den is not None:
            L[model.coef_index(den)] -= 1.0
    elif isinstance(spec, LinearCombination):
        if len(spec.weights) != model.n_coefficients:
            raise ContrastLengthMismatch(len(spec.weights), model.n_coefficients)
        L[:] = spec.weights
    else:
        raise TypeError(f"Unsupported contrast specification: {type(spec).__name__}")

    return L


def linear_combination_from_names(
    model: CoefficientTable,
    weights: Mapping[str, float],
) -> LinearCombination:
    """Convert ``{coefficient name: weight}`` into a positional LinearCombination.

    Coefficients not named get weight zero, so the result never depends on
    the caller knowing the model's coefficient order.

    Examples
    --------
    >>> linear_combination_from_names(model, {"genotype_ste12_vs_wt": 1, "genotype_kar4_vs_wt": -1})
    LinearCombination(weights=(0.0, -1.0, 1.0, 0.0))
    """
    L = np.zeros(model.n_coefficients, dtype=float)
    for name, w in weights.items():
        L[model.coef_index(name)] += float(w)
    return LinearCombination(tuple(L))


def describe_contrast(spec: ContrastSpec, coef_names: Sequence[str] = ()) -> str:
    if isinstance(spec, SingleCoefficient):
        return spec.name
    if isinstance(spec, FactorPair):
        return f"{spec.column}: {spec.numerator} vs {spec.denominator}"
    if isinstance(spec, LinearCombination):
        if len(coef_names) == len(spec.weights):
            terms = [
                f"{'+' if w > 0 else '-'}{'' if abs(w) == 1 else f'{abs(w):g}*'}{c}"
                for w, c in zip(spec.weights, coef_names)
                if w != 0
            ]
            return " ".join(terms).lstrip("+") or "0"
        return "[" + ", ".join(f"{w:g}" for w in spec.weights) + "]"
    raise TypeError(f"Unsupported contrast specification: {type(spec).__name__}")


def contrast_from_dict(d: Mapping, model: Optional[CoefficientTable] = None) -> ContrastSpec:
    """Parse a contrast definition as found in a contrast file.

    Accepted forms::

        {"type": "coefficient", "name": "treatment_X_vs_none"}
        {"type": "factor", "column": "genotype", "numerator": "kar4", "denominator": "wt"}
        {"type": "weights", "weights": [0, -1, 1, 0]}
        {"type": "weights", "named": {"genotype_kar4_vs_wt": -1, "genotype_ste12_vs_wt": 1}}

    The ``named`` form needs ``model`` to fix the coefficient positions and
    raises UnknownCoefficient for names the model lacks.
    """
    kind = str(d.get("type", "")).lower()
    if kind in {"coefficient", "name", "single"}:
        return SingleCoefficient(str(d["name"]))
    if kind in {"factor", "pair"}:
        return FactorPair(str(d["column"]), str(d["numerator"]), str(d["denominator"]))
    if kind in {"weights", "numeric", "linear"}:
        if "named" in d:
            if model is None:
                raise ValueError("Named weights need the model to resolve coefficient positions")
            return linear_combination_from_names(model, d["named"])
        if "weights" not in d:
            raise ValueError("Positional contrast requires a 'weights' list or a 'named' mapping")
        return LinearCombination(tuple(d["weights"]))
    raise ValueError(f"Unknown contrast type {d.get('type')!r}; use 'coefficient', 'factor' or 'weights'")

