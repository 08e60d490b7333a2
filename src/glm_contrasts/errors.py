"""
Exception and warning taxonomy for contrast resolution and effect estimation.

Classes
-------
ContrastEngineError
    Root of every error raised by the package.
ContrastError
    Errors that are fatal to a single contrast but not to a batch.
UnknownCoefficient
    A coefficient name is not present in the model.
UnknownFactorLevel
    A factor column or level was never fit.
ContrastLengthMismatch
    A numeric contrast does not match the model's coefficient count.
SingularCovariance
    The contrast variance is clearly negative (covariance not PSD).
EntityIndexMismatch
    Two models compared against each other have different entity indexes.
ShrinkagePriorNonConvergent
    Warning emitted when the empirical-Bayes prior fit falls back to the null prior.
"""
from __future__ import annotations


class ContrastEngineError(Exception):
    """Base class for all package errors."""
    pass


class ContrastError(ContrastEngineError):
    """Raised when a single contrast cannot be computed."""
    pass


class UnknownCoefficient(ContrastError, KeyError):
    """Raised when a coefficient name lookup misses."""

    def __init__(self, name: str, available=None):
        self.name = name
        self.available = list(available) if available is not None else None
        msg = f"Unknown coefficient: {name!r}"
        if self.available is not None:
            shown = self.available[:10]
            msg += f" (model has {shown}" + (" ..." if len(self.available) > 10 else "") + ")"
        super().__init__(msg)

    def __str__(self) -> str:
        # KeyError quotes its argument otherwise
        return self.args[0]


class UnknownFactorLevel(ContrastError, KeyError):
    """Raised when a factor column or level is not part of the model."""

    def __init__(self, column: str, level: str | None = None):
        self.column = column
        self.level = level
        if level is None:
            msg = f"No reference-level encoding for factor column {column!r}"
        else:
            msg = f"Level {level!r} of factor {column!r} was never fit"
        super().__init__(msg)

    def __str__(self) -> str:
        return self.args[0]


class ContrastLengthMismatch(ContrastError, ValueError):
    """Raised when a weight vector length differs from the coefficient count."""

    def __init__(self, n_weights: int, n_coefficients: int):
        self.n_weights = n_weights
        self.n_coefficients = n_coefficients
        super().__init__(
            f"Contrast has {n_weights} weights but the model has {n_coefficients} coefficients"
        )


class SingularCovariance(ContrastError, ValueError):
    """Raised when w' Sigma w is negative beyond round-off for some entity."""

    def __init__(self, entity_ids):
        self.entity_ids = list(entity_ids)
        shown = self.entity_ids[:5]
        super().__init__(
            f"Covariance is not positive semi-definite along the contrast for "
            f"{len(self.entity_ids)} entities: {shown}" + (" ..." if len(self.entity_ids) > 5 else "")
        )


class EntityIndexMismatch(ContrastEngineError, ValueError):
    """Raised when two models do not share an identical entity index."""
    pass


class ShrinkagePriorNonConvergent(UserWarning):
    """Prior fit did not converge; the null (unshrunken) prior was used instead."""
    pass
