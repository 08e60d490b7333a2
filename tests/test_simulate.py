"""Tests for the synthetic coefficient-table generator."""

import numpy as np

from glm_contrasts import design_matrix, simulate_coefficient_table


def test_design_matrix_columns():
    X, enc = design_matrix(
        {"genotype": ["wt", "kar4", "ste12"], "treatment": ["none", "X"]},
        interaction=("genotype", "treatment"),
        n_replicates=2,
    )
    assert list(X.columns) == [
        "Intercept",
        "genotype_kar4_vs_wt",
        "genotype_ste12_vs_wt",
        "treatment_X_vs_none",
        "genotype_kar4:treatment_X",
        "genotype_ste12:treatment_X",
    ]
    assert len(X) == 3 * 2 * 2
    assert enc["genotype"].reference == "wt"
    # full column rank
    assert np.linalg.matrix_rank(X.to_numpy()) == X.shape[1]


def test_simulated_table_shapes(simulated):
    model, truth = simulated
    assert model.n_entities == 400
    assert model.coef_names[0] == "Intercept"
    assert model.has_covariance
    assert set(model.factors) == {"genotype", "treatment"}
    assert truth["effects"].shape == model.estimates.shape


def test_covariance_consistent_with_std_errors(simulated):
    model, _ = simulated
    diag = np.diagonal(model.covariance, axis1=1, axis2=2)
    np.testing.assert_allclose(np.sqrt(diag), model.std_errors)
    eig = np.linalg.eigvalsh(model.covariance)
    assert np.all(eig > 0)


def test_seed_reproducible():
    a, _ = simulate_coefficient_table(n_entities=20, seed=3)
    b, _ = simulate_coefficient_table(n_entities=20, seed=3)
    np.testing.assert_array_equal(a.estimates, b.estimates)


def test_without_covariance():
    model, _ = simulate_coefficient_table(n_entities=10, with_covariance=False)
    assert not model.has_covariance


def test_noise_scales_with_count(simulated):
    model, truth = simulated
    low = truth["mean_count"] < truth["mean_count"].median()
    se = model.std_errors[:, 1]
    assert se[low.to_numpy()].mean() > se[~low.to_numpy()].mean()
