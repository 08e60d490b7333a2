"""Tests for the command-line entry point."""

import json

import numpy as np
import pandas as pd
import pytest

from glm_contrasts import RESULT_COLUMNS, simulate_coefficient_table
from glm_contrasts.cli import build_parser, main


@pytest.fixture
def inputs(tmp_path):
    """Simulated coefficient tables, covariance, contrast file and annotation on disk."""
    model, _ = simulate_coefficient_table(n_entities=60, seed=11)

    est = model.estimates_frame().reset_index()
    se = model.std_errors_frame().reset_index()
    est.to_csv(tmp_path / "estimates.tsv", sep="\t", index=False)
    se.to_csv(tmp_path / "std_errors.tsv", sep="\t", index=False)
    np.save(tmp_path / "covariance.npy", model.covariance)

    contrasts = {
        "factors": {
            "genotype": {"reference": "wt", "levels": ["wt", "kar4", "ste12"]},
            "treatment": {"reference": "none", "levels": ["none", "X"]},
        },
        "contrasts": {
            "kar4_vs_wt": {"type": "factor", "column": "genotype", "numerator": "kar4", "denominator": "wt"},
            "unknown": {"type": "weights", "named": {"genotype_dig1_vs_wt": 1}},
            "treated": {"type": "coefficient", "name": "treatment_X_vs_none"},
            "ste12_vs_kar4": {"type": "weights", "weights": [0, -1, 1, 0]},
        },
    }
    (tmp_path / "contrasts.json").write_text(json.dumps(contrasts))

    pd.DataFrame(
        {"entity_id": ["gene_00000", "gene_00001"], "display_name": ["KAR4", "STE12"]}
    ).to_csv(tmp_path / "annotation.tsv", sep="\t", index=False)
    return tmp_path


def _args(d, *extra):
    return [
        "--estimates", str(d / "estimates.tsv"),
        "--std_errors", str(d / "std_errors.tsv"),
        "-c", str(d / "contrasts.json"),
        "--results_path", str(d / "results"),
        *extra,
    ]


def test_parser_defaults():
    args = build_parser().parse_args(
        ["--estimates", "e", "--std_errors", "s", "-c", "c.json", "--results_path", "out"]
    )
    assert args.format == "tsv"
    assert args.max_iter == 1000
    assert not args.no_shrinkage
    assert args.covariance is None


def test_main_writes_results_and_reports_failure(inputs):
    rc = main(
        _args(
            inputs,
            "--covariance", str(inputs / "covariance.npy"),
            "--annotation", str(inputs / "annotation.tsv"),
            "--num_workers", "2",
        )
    )
    assert rc == 1

    out = inputs / "results"
    for cid in ["kar4_vs_wt", "treated", "ste12_vs_kar4"]:
        df = pd.read_csv(out / f"{cid}.tsv", sep="\t", keep_default_na=False, na_values=["NA"])
        assert list(df.columns) == RESULT_COLUMNS
        assert len(df) == 60

    treated = pd.read_csv(out / "treated.tsv", sep="\t").set_index("entity_id")
    assert treated.loc["gene_00000", "display_name"] == "KAR4"
    assert treated.loc["gene_00005", "display_name"] == "gene_00005"

    failures = pd.read_csv(out / "failed_contrasts.tsv", sep="\t")
    assert list(failures["contrast_id"]) == ["unknown"]
    assert failures.loc[0, "error_type"] == "UnknownCoefficient"


def test_main_success_without_covariance(inputs, tmp_path):
    contrasts = json.loads((inputs / "contrasts.json").read_text())
    del contrasts["contrasts"]["unknown"]
    (inputs / "contrasts.json").write_text(json.dumps(contrasts))

    rc = main(_args(inputs, "--format", "csv", "--no_shrinkage", "--extended"))
    assert rc == 0
    df = pd.read_csv(inputs / "results" / "treated.csv")
    assert list(df.columns) == RESULT_COLUMNS + ["posterior_sd", "lfsr", "shrinkage_skipped"]
    np.testing.assert_array_equal(df["shrunken_log_effect"], df["raw_log_effect"])
    assert not (inputs / "results" / "failed_contrasts.csv").exists()
