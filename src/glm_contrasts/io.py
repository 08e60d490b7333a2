from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import numpy as np
import pandas as pd

from .model import CoefficientTable, FactorEncoding
from .results import EXTRA_COLUMNS, RESULT_COLUMNS, ResultCollection, ResultSet

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContrastFile:
    """Parsed contrast definition file."""

    factors: dict[str, FactorEncoding] = field(default_factory=dict)
    #: Contrast id -> raw definition, see :func:`glm_contrasts.contrasts.contrast_from_dict`.
    contrasts: dict[str, dict] = field(default_factory=dict)


def _read_table(path: Path, sheet_name: str | int = 0) -> pd.DataFrame:
    suffix = path.suffix.lower()
    if suffix in {".xlsx", ".xls"}:
        df = pd.read_excel(path, sheet_name=sheet_name)
    elif suffix in {".tsv", ".txt", ".tab"}:
        df = pd.read_csv(path, sep="\t")
    else:
        df = pd.read_csv(path)
    return _norm_cols(df)


def _norm_col(c: object) -> str:
    # strip whitespace; preserve internal chars
    return str(c).strip()


def _norm_cols(df: pd.DataFrame) -> pd.DataFrame:
    df = df.copy()
    df.columns = [_norm_col(c) for c in df.columns]
    return df


def _index_by(df: pd.DataFrame, id_col: Optional[str], source: Path) -> pd.DataFrame:
    if id_col is not None and id_col in df.columns:
        col = id_col
    elif id_col is None:
        col = df.columns[0]
    else:
        raise ValueError(f"{source} missing '{id_col}' column.")
    df[col] = df[col].astype(str)
    df = df.set_index(col)
    df.index.name = "entity_id"
    return df


def load_coefficient_tables(
    estimates_path: str | Path,
    std_errors_path: str | Path,
    *,
    entity_id_col: Optional[str] = None,
    covariance_path: Optional[str | Path] = None,
    factors: Optional[dict[str, FactorEncoding]] = None,
) -> CoefficientTable:
    """
    Reads wide estimate / standard-error tables written by the fitting step.

    Expected:
      - one column holding entity IDs (``entity_id_col``, default: first column).
      - remaining columns are coefficients in design-matrix order, values on
        the natural log scale.
      - both tables carry the same entities and coefficients.
    Optional covariance is a ``.npy`` array of shape (entities, coefs, coefs)
    in the row order of the estimates table.
    """
    estimates_path = Path(estimates_path)
    std_errors_path = Path(std_errors_path)

    est = _index_by(_read_table(estimates_path), entity_id_col, estimates_path)
    se = _index_by(_read_table(std_errors_path), entity_id_col, std_errors_path)

    est = est.apply(pd.to_numeric, errors="coerce")
    se = se.apply(pd.to_numeric, errors="coerce")

    cov = None
    if covariance_path is not None:
        cov = np.load(Path(covariance_path))

    model = CoefficientTable.from_frames(est, se, covariance=cov, factors=factors)
    logger.info(
        f"Loaded {model.n_entities} entities x {model.n_coefficients} coefficients"
        + (" with covariance" if cov is not None else "")
    )
    return model


def load_contrast_file(path: str | Path) -> ContrastFile:
    """
    Reads a JSON contrast file of the form::

        {
          "factors": {
            "genotype": {"reference": "wt",
                         "levels": {"kar4": "genotype_kar4_vs_wt", "ste12": "genotype_ste12_vs_wt"}}
          },
          "contrasts": {
            "kar4_vs_wt": {"type": "factor", "column": "genotype", "numerator": "kar4", "denominator": "wt"},
            "treatment": {"type": "coefficient", "name": "treatment_vs_none"},
            "ste12_vs_kar4_treated": {"type": "weights", "weights": [0, -1, 1, 0, -1, 1]}
          }
        }

    A factor given as a list of levels (``{"reference": "wt", "levels": ["kar4", "ste12"]}``)
    uses the ``{column}_{level}_vs_{reference}`` coefficient names.
    """
    path = Path(path)
    with open(path) as fh:
        doc = json.load(fh)

    if "contrasts" not in doc:
        raise ValueError(f"{path} missing 'contrasts' section.")

    factors = {}
    for column, spec in doc.get("factors", {}).items():
        if "reference" not in spec or "levels" not in spec:
            raise ValueError(f"{path}: factor '{column}' needs 'reference' and 'levels'.")
        levels = spec["levels"]
        if isinstance(levels, dict):
            factors[column] = FactorEncoding(
                column=column,
                reference=str(spec["reference"]),
                coefficients={str(k): str(v) for k, v in levels.items()},
            )
        else:
            factors[column] = FactorEncoding.from_levels(column, str(spec["reference"]), levels)

    contrasts = {str(k): dict(v) for k, v in doc["contrasts"].items()}
    return ContrastFile(factors=factors, contrasts=contrasts)


def load_annotation(
    path: str | Path,
    id_col: str = "entity_id",
    name_col: str = "display_name",
) -> pd.Series:
    """
    Reads an entity annotation table and returns ``entity_id -> display name``.

    Rows with an empty name are dropped so the lookup falls back to the id.
    """
    path = Path(path)
    df = _read_table(path)
    missing = [c for c in (id_col, name_col) if c not in df.columns]
    if missing:
        raise ValueError(f"{path} missing required columns: {missing}")
    s = df.set_index(df[id_col].astype(str))[name_col]
    s = s[s.notna() & (s.astype(str).str.strip() != "")]
    s = s[~s.index.duplicated(keep="first")]
    return s.astype(str)


def write_result_set(
    result: ResultSet,
    path: str | Path,
    *,
    sep: str = "\t",
    na_token: str = "NA",
    extended: bool = False,
) -> Path:
    """
    Writes one contrast's table.

    Column order is fixed (see ``RESULT_COLUMNS``); undefined values are
    written as ``na_token``. ``.xlsx`` paths are written with openpyxl.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    df = result.to_frame(extended=extended)
    if path.suffix.lower() == ".xlsx":
        df.to_excel(path, index=False, na_rep=na_token, sheet_name=_sheet_name(result.contrast_id))
    else:
        df.to_csv(path, sep=sep, index=False, na_rep=na_token)
    return path


def read_result_set(path: str | Path, *, sep: str = "\t", na_token: str = "NA") -> pd.DataFrame:
    path = Path(path)
    if path.suffix.lower() == ".xlsx":
        df = pd.read_excel(path, keep_default_na=False, na_values=[na_token], dtype={"entity_id": str})
    else:
        df = pd.read_csv(path, sep=sep, keep_default_na=False, na_values=[na_token], dtype={"entity_id": str})
    missing = [c for c in RESULT_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{path} missing required columns: {missing}")
    known = RESULT_COLUMNS + [c for c in EXTRA_COLUMNS if c in df.columns]
    df["display_name"] = df["display_name"].astype(str)
    return df[known]


_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


def _file_stem(contrast_id: str) -> str:
    stem = _UNSAFE.sub("_", contrast_id).strip("_")
    return stem or "contrast"


def _sheet_name(contrast_id: str) -> str:
    # Excel limits sheet names to 31 characters
    return _file_stem(contrast_id)[:31]


def write_result_collection(
    collection: ResultCollection,
    results_path: str | Path,
    *,
    format: str = "tsv",
    na_token: str = "NA",
    extended: bool = False,
) -> dict[str, Path]:
    """
    Writes every successful contrast to ``results_path/<contrast_id>.<ext>``.

    Failed contrasts are listed in ``failed_contrasts.<ext>``. Returns
    contrast id -> written path, in collection order.
    """
    results_path = Path(results_path)
    results_path.mkdir(parents=True, exist_ok=True)

    if format not in {"tsv", "csv", "excel"}:
        raise ValueError(f"Unknown format='{format}'. Use 'tsv', 'csv' or 'excel'.")
    ext = {"tsv": ".tsv", "csv": ".csv", "excel": ".xlsx"}[format]
    sep = "," if format == "csv" else "\t"

    written = {}
    used = set()
    for cid, res in collection.succeeded().items():
        stem = _file_stem(cid)
        n = 2
        while stem in used:
            stem = f"{_file_stem(cid)}_{n}"
            n += 1
        used.add(stem)
        written[cid] = write_result_set(
            res, results_path / f"{stem}{ext}", sep=sep, na_token=na_token, extended=extended
        )

    failures = collection.failure_table()
    if not failures.empty:
        fail_path = results_path / f"failed_contrasts{ext}"
        if format == "excel":
            failures.to_excel(fail_path, index=False)
        else:
            failures.to_csv(fail_path, sep=sep, index=False)
        logger.warning(f"{len(failures)} contrasts failed; see {fail_path}")

    logger.info(f"Results saved to {results_path}")
    return written
