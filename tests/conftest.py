"""
Shared test fixtures for glm-contrasts tests.
"""

import numpy as np
import pytest

from glm_contrasts import CoefficientTable, FactorEncoding, simulate_coefficient_table


@pytest.fixture
def main_effects_model():
    """Three-coefficient model: intercept, one genotype level, one treatment level.

    Entity ``E`` carries estimates ``[2.0, 0.5, 1.2]``; the others are noise
    around zero with a couple of larger effects.
    """
    rng = np.random.default_rng(0)
    n = 40
    ids = ["E"] + [f"g{i:03d}" for i in range(1, n)]
    est = np.column_stack(
        [
            rng.normal(5.0, 1.0, n),
            rng.normal(0.0, 0.3, n),
            rng.normal(0.0, 0.3, n),
        ]
    )
    est[0] = [2.0, 0.5, 1.2]
    est[1:4, 2] = [2.5, -3.0, 1.8]
    se = np.column_stack(
        [
            np.full(n, 0.1),
            rng.uniform(0.1, 0.5, n),
            rng.uniform(0.1, 0.5, n),
        ]
    )
    return CoefficientTable(
        coef_names=("Intercept", "genotype_B_vs_A", "treatment_X_vs_none"),
        entity_ids=tuple(ids),
        estimates=est,
        std_errors=se,
        factors={
            "genotype": FactorEncoding("genotype", "A", {"B": "genotype_B_vs_A"}),
            "treatment": FactorEncoding("treatment", "none", {"X": "treatment_X_vs_none"}),
        },
    )


INTERACTION_COEFS = (
    "Intercept",
    "genotype_kar4_vs_wt",
    "genotype_ste12_vs_wt",
    "treatment_vs_none",
    "kar4:treatment",
    "ste12:treatment",
)


@pytest.fixture
def interaction_model():
    """Six-coefficient genotype x treatment model with a full covariance.

    The first entity carries estimates ``[1, 0.3, 0.7, 0.4, 0.1, 0.6]``.
    """
    rng = np.random.default_rng(1)
    n = 30
    p = len(INTERACTION_COEFS)
    est = rng.normal(0.0, 0.5, size=(n, p))
    est[0] = [1.0, 0.3, 0.7, 0.4, 0.1, 0.6]
    se = rng.uniform(0.1, 0.4, size=(n, p))

    # diagonal plus a shared positive correlation, scaled per entity
    corr = np.full((p, p), 0.3) + 0.7 * np.eye(p)
    cov = se[:, :, None] * corr[None, :, :] * se[:, None, :]

    return CoefficientTable(
        coef_names=INTERACTION_COEFS,
        entity_ids=tuple(f"gene_{i:02d}" for i in range(n)),
        estimates=est,
        std_errors=se,
        covariance=cov,
        factors={
            "genotype": FactorEncoding.from_levels("genotype", "wt", ["wt", "kar4", "ste12"]),
            "treatment": FactorEncoding("treatment", "none", {"X": "treatment_vs_none"}),
        },
    )


@pytest.fixture(scope="session")
def simulated():
    """Simulated 3-genotype x 2-treatment model with known truth."""
    return simulate_coefficient_table(n_entities=400, seed=7)
