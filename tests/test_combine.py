"""Tests for combining coefficients into per-entity contrast estimates."""

import numpy as np
import pytest

from glm_contrasts import (
    CoefficientTable,
    SingularCovariance,
    combine_effects,
)


def test_interaction_weights_combined_effect(interaction_model):
    w = np.array([0, -1, 1, 0, -1, 1], dtype=float)
    combined = combine_effects(interaction_model, w)
    assert combined.log_effect[0] == pytest.approx(0.9)
    assert combined.entity_ids == interaction_model.entity_ids


def test_covariance_variance(interaction_model):
    w = np.array([0, -1, 1, 0, -1, 1], dtype=float)
    combined = combine_effects(interaction_model, w)
    expected = np.array([w @ c @ w for c in interaction_model.covariance])
    np.testing.assert_allclose(combined.std_error, np.sqrt(expected))
    assert not combined.independence_assumed


def test_independence_fallback_without_covariance(main_effects_model):
    w = np.array([0.0, 1.0, -2.0])
    combined = combine_effects(main_effects_model, w)
    se = main_effects_model.std_errors
    np.testing.assert_allclose(combined.std_error, np.sqrt(se[:, 1] ** 2 + 4.0 * se[:, 2] ** 2))
    assert combined.independence_assumed


def test_forced_independence(interaction_model):
    w = np.array([0, -1, 1, 0, 0, 0], dtype=float)
    forced = combine_effects(interaction_model, w, assume_independence=True)
    full = combine_effects(interaction_model, w)
    assert forced.independence_assumed
    # positive correlation between the two level coefficients reduces the variance of their difference
    assert np.all(forced.std_error > full.std_error)
    np.testing.assert_array_equal(forced.log_effect, full.log_effect)


def test_single_coefficient_matches_table(main_effects_model):
    combined = combine_effects(main_effects_model, np.array([0.0, 0.0, 1.0]))
    np.testing.assert_array_equal(combined.log_effect, main_effects_model.estimates[:, 2])
    np.testing.assert_allclose(combined.std_error, main_effects_model.std_errors[:, 2])


def test_uninvolved_missing_estimate_ignored():
    est = np.array([[np.nan, 0.5, 1.0]])
    se = np.array([[np.nan, 0.1, 0.2]])
    m = CoefficientTable(("Intercept", "a", "b"), ("g",), est, se)
    combined = combine_effects(m, np.array([0.0, 1.0, 1.0]))
    assert combined.log_effect[0] == pytest.approx(1.5)
    assert np.isfinite(combined.std_error[0])


def test_zero_weights():
    m = CoefficientTable(("a", "b"), ("g1", "g2"), np.ones((2, 2)), np.ones((2, 2)))
    combined = combine_effects(m, np.zeros(2))
    np.testing.assert_array_equal(combined.log_effect, [0.0, 0.0])
    np.testing.assert_array_equal(combined.std_error, [0.0, 0.0])


def test_non_psd_covariance_raises():
    cov = np.array([[[1.0, 2.0], [2.0, 1.0]], [[1.0, 0.0], [0.0, 1.0]]])
    m = CoefficientTable(("a", "b"), ("bad", "ok"), np.zeros((2, 2)), np.ones((2, 2)), covariance=cov)
    with pytest.raises(SingularCovariance) as excinfo:
        combine_effects(m, np.array([1.0, -1.0]))
    assert excinfo.value.entity_ids == ["bad"]


def test_round_off_negative_variance_clipped():
    # w' S w is exactly zero in theory, tiny negative in floating point
    cov = np.array([[[1.0, 1.0 + 1e-15], [1.0 + 1e-15, 1.0]]])
    m = CoefficientTable(("a", "b"), ("g",), np.zeros((1, 2)), np.ones((1, 2)), covariance=cov)
    combined = combine_effects(m, np.array([1.0, -1.0]))
    assert combined.std_error[0] >= 0.0


def test_weight_shape_checked(main_effects_model):
    with pytest.raises(ValueError):
        combine_effects(main_effects_model, np.ones(2))
