"""
glm-contrasts: contrast resolution and shrunken effect sizes for per-entity NB-GLMs.

This package takes the coefficient table of an already fitted negative
binomial GLM (one row of coefficients per gene or other entity) and turns
named comparisons into per-entity shrunken effect sizes, test statistics,
and Benjamini-Hochberg adjusted p-values.

Modules
-------
model
    Immutable coefficient table and factor reference-level metadata.
contrasts
    Contrast specifications and their resolution to weight vectors.
combine
    Linear combination of coefficients and its standard error.
shrinkage
    Empirical Bayes scale-mixture shrinkage of contrast effects.
stats
    FDR correction and the per-contrast pipeline.
results
    Result tables and the collection keyed by contrast identifier.
io
    Loading coefficient tables, contrast files and annotation; writing results.
simulate
    Synthetic coefficient tables with known true effects.
errors
    Exception and warning taxonomy.

Example
-------
>>> import glm_contrasts as gc
>>> model, truth = gc.simulate_coefficient_table(n_entities=200)
>>> res = gc.run_contrasts(model, {
...     "kar4_vs_wt": gc.FactorPair("genotype", "kar4", "wt"),
...     "treated": gc.SingleCoefficient("treatment_X_vs_none"),
... })
>>> res["kar4_vs_wt"].table.head()
"""

__version__ = "0.1.0"

# combine
from .combine import (
    CombinedEffects,
    combine_effects,
)

# config
from .config import (
    EngineConfig,
    Paths,
    ShrinkageConfig,
)

# contrasts
from .contrasts import (
    ContrastSpec,
    FactorPair,
    LinearCombination,
    SingleCoefficient,
    contrast_from_dict,
    describe_contrast,
    linear_combination_from_names,
    resolve_contrast,
)

# errors
from .errors import (
    ContrastEngineError,
    ContrastError,
    ContrastLengthMismatch,
    EntityIndexMismatch,
    ShrinkagePriorNonConvergent,
    SingularCovariance,
    UnknownCoefficient,
    UnknownFactorLevel,
)

# io
from .io import (
    ContrastFile,
    load_annotation,
    load_coefficient_tables,
    load_contrast_file,
    read_result_set,
    write_result_collection,
    write_result_set,
)

# model
from .model import (
    CoefficientTable,
    FactorEncoding,
    compare_coefficient,
    factor_encodings_from_design_info,
)

# results
from .results import (
    RESULT_COLUMNS,
    FailedContrast,
    ResultCollection,
    ResultSet,
    assemble_result_set,
)

# shrinkage
from .shrinkage import (
    ScaleMixturePrior,
    ShrinkageResult,
    default_sigma_grid,
    fit_scale_mixture_prior,
    shrink_effects,
    shrinkage_posterior,
)

# simulate
from .simulate import (
    design_matrix,
    simulate_coefficient_table,
)

# stats
from .stats import (
    bh_fdr,
    contrast_table,
    run_contrasts,
)

__all__ = [
    # combine
    "CombinedEffects",
    "combine_effects",
    # config
    "EngineConfig",
    "Paths",
    "ShrinkageConfig",
    # contrasts
    "ContrastSpec",
    "FactorPair",
    "LinearCombination",
    "SingleCoefficient",
    "contrast_from_dict",
    "describe_contrast",
    "linear_combination_from_names",
    "resolve_contrast",
    # errors
    "ContrastEngineError",
    "ContrastError",
    "ContrastLengthMismatch",
    "EntityIndexMismatch",
    "ShrinkagePriorNonConvergent",
    "SingularCovariance",
    "UnknownCoefficient",
    "UnknownFactorLevel",
    # io
    "ContrastFile",
    "load_annotation",
    "load_coefficient_tables",
    "load_contrast_file",
    "read_result_set",
    "write_result_collection",
    "write_result_set",
    # model
    "CoefficientTable",
    "FactorEncoding",
    "compare_coefficient",
    "factor_encodings_from_design_info",
    # results
    "RESULT_COLUMNS",
    "FailedContrast",
    "ResultCollection",
    "ResultSet",
    "assemble_result_set",
    # shrinkage
    "ScaleMixturePrior",
    "ShrinkageResult",
    "default_sigma_grid",
    "fit_scale_mixture_prior",
    "shrink_effects",
    "shrinkage_posterior",
    # simulate
    "design_matrix",
    "simulate_coefficient_table",
    # stats
    "bh_fdr",
    "contrast_table",
    "run_contrasts",
]
