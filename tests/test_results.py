"""Tests for ResultSet, FailedContrast and ResultCollection."""

import math

import numpy as np
import pandas as pd
import pytest

from glm_contrasts import (
    RESULT_COLUMNS,
    FactorPair,
    FailedContrast,
    ResultCollection,
    SingleCoefficient,
    UnknownCoefficient,
    contrast_table,
)


@pytest.fixture
def treated(main_effects_model):
    return contrast_table(main_effects_model, SingleCoefficient("treatment_X_vs_none"), contrast_id="treated")


class TestResultSet:

    def test_columns(self, treated):
        assert list(treated.to_frame().columns) == RESULT_COLUMNS
        extended = treated.to_frame(extended=True)
        assert list(extended.columns[-3:]) == ["posterior_sd", "lfsr", "shrinkage_skipped"]

    def test_to_frame_is_copy(self, treated):
        df = treated.to_frame()
        df.loc[0, "raw_log_effect"] = 1e6
        assert treated.table.loc[0, "raw_log_effect"] != 1e6

    def test_weights_read_only(self, treated):
        np.testing.assert_array_equal(treated.weights, [0.0, 0.0, 1.0])
        with pytest.raises(ValueError):
            treated.weights[0] = 1.0

    def test_display_name_defaults_to_id(self, treated):
        assert (treated.table["display_name"] == treated.table["entity_id"]).all()

    def test_log_fold_changes(self, treated):
        lfc = treated.log_fold_changes(shrunken=False)
        assert lfc.name == "log2FC"
        assert lfc.loc["E"] == pytest.approx(1.2 / math.log(2.0))
        assert treated.log_fold_changes(base=10).name == "log10FC"

    def test_significant(self, treated):
        sig = treated.significant(alpha=0.05)
        assert (sig["adjusted_p_value"] < 0.05).all()
        assert len(sig) <= len(treated)

    def test_summary(self, treated):
        text = treated.summary(alpha=0.1)
        assert "treated: treatment_X_vs_none" in text
        assert "out of 40 entities" in text
        assert "independent coefficients" in text

    def test_label(self, main_effects_model):
        res = contrast_table(main_effects_model, FactorPair("genotype", "B", "A"), contrast_id="g")
        assert res.label == "genotype: B vs A"


class TestAnnotation:

    def test_mapping(self, main_effects_model):
        res = contrast_table(
            main_effects_model,
            SingleCoefficient("genotype_B_vs_A"),
            annotation={"E": "KAR4", "g001": None, "g002": ""},
        )
        names = res.table.set_index("entity_id")["display_name"]
        assert names["E"] == "KAR4"
        assert names["g001"] == "g001"
        assert names["g002"] == "g002"
        assert names["g003"] == "g003"

    def test_series_with_missing(self, main_effects_model):
        ann = pd.Series({"E": "KAR4", "g001": np.nan})
        res = contrast_table(main_effects_model, SingleCoefficient("genotype_B_vs_A"), annotation=ann)
        names = res.table.set_index("entity_id")["display_name"]
        assert names["E"] == "KAR4"
        assert names["g001"] == "g001"

    def test_callable(self, main_effects_model):
        res = contrast_table(
            main_effects_model,
            SingleCoefficient("genotype_B_vs_A"),
            annotation=lambda eid: eid.upper() if eid.startswith("g00") else None,
        )
        names = res.table.set_index("entity_id")["display_name"]
        assert names["g005"] == "G005"
        assert names["g010"] == "g010"


class TestResultCollection:

    def test_rejects_other_values(self):
        with pytest.raises(TypeError):
            ResultCollection()["x"] = "not a result"

    def test_overwrite_keeps_position(self, treated):
        failed = FailedContrast("b", SingleCoefficient("nope"), "UnknownCoefficient", "msg")
        coll = ResultCollection({"a": treated, "b": failed})
        coll["a"] = failed
        assert list(coll) == ["a", "b"]
        assert coll["a"] is failed

    def test_succeeded_and_failed(self, treated):
        failed = FailedContrast.from_exception("bad", SingleCoefficient("nope"), UnknownCoefficient("nope"))
        coll = ResultCollection()
        coll["ok"] = treated
        coll["bad"] = failed
        assert list(coll.succeeded()) == ["ok"]
        assert list(coll.failed()) == ["bad"]
        table = coll.failure_table()
        assert list(table.columns) == ["contrast_id", "error_type", "message"]
        assert table.loc[0, "error_type"] == "UnknownCoefficient"
        assert table.loc[0, "message"] == "Unknown coefficient: 'nope'"
        assert "1 failed" in repr(coll)

    def test_empty_failure_table(self):
        assert ResultCollection().failure_table().empty

    def test_delete(self, treated):
        coll = ResultCollection({"a": treated})
        del coll["a"]
        assert len(coll) == 0
