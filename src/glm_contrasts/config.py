"""
Configuration containers for the contrast engine.

Classes
-------
ShrinkageConfig
    Settings for the empirical-Bayes prior fit.
EngineConfig
    Settings shared by every contrast in a run.
Paths
    Input and output locations used by the command-line entry point.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path


@dataclass(frozen=True)
class ShrinkageConfig:
    """Settings for :func:`glm_contrasts.shrinkage.shrink_effects`."""

    #: If False, effects are passed through unshrunken (null prior).
    enabled: bool = True
    #: Number of non-null grid points; the grid has ``n_grid + 1`` scales.
    n_grid: int = 25
    #: Smallest prior scale, approximating a point mass at zero.
    sigma_min: float = 1e-6
    #: Largest prior scale as a multiple of the largest observed |effect| or se.
    sigma_max_mult: float = 3.0
    #: EM iteration budget.
    max_iter: int = 1000
    #: Convergence tolerance on the relative change in marginal log-likelihood.
    tol: float = 1e-6

    def __post_init__(self):
        if self.n_grid < 1:
            raise ValueError(f"n_grid must be >= 1, got {self.n_grid}")
        if not self.sigma_min > 0:
            raise ValueError(f"sigma_min must be positive, got {self.sigma_min}")
        if self.max_iter < 1:
            raise ValueError(f"max_iter must be >= 1, got {self.max_iter}")


@dataclass(frozen=True)
class EngineConfig:
    """Settings applied to every contrast in a run."""

    shrinkage: ShrinkageConfig = field(default_factory=ShrinkageConfig)
    #: Ignore any covariance on the model and combine standard errors as independent.
    assume_independence: bool = False
    #: Literal written for tri-state (undefined) values.
    na_token: str = "NA"


@dataclass(frozen=True)
class Paths:
    data_path: Path
    results_path: Path
