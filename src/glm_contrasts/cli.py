"""
Command-line entry point: run every contrast in a contrast file against a
fitted coefficient table and write one result table per contrast.
"""
import argparse
import logging
from pathlib import Path
from typing import Optional, Sequence

from .config import EngineConfig, Paths, ShrinkageConfig
from .contrasts import contrast_from_dict
from .errors import ContrastError
from .io import (
    load_annotation,
    load_coefficient_tables,
    load_contrast_file,
    write_result_collection,
)
from .model import CoefficientTable
from .results import FailedContrast, ResultCollection
from .stats import run_contrasts

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Shrunken, FDR-corrected contrast tables from a fitted NB-GLM coefficient table'
    )

    parser.add_argument(
        '--estimates',
        required=True,
        help='Wide table of coefficient estimates (entities x coefficients)',
    )
    parser.add_argument(
        '--std_errors',
        required=True,
        help='Wide table of coefficient standard errors, same layout as --estimates',
    )
    parser.add_argument(
        '--covariance',
        default=None,
        help='Optional .npy array of per-entity coefficient covariance',
    )
    parser.add_argument(
        '-c', '--contrasts',
        required=True,
        help='JSON file with factor metadata and contrast definitions',
    )
    parser.add_argument(
        '--annotation',
        default=None,
        help='Optional table mapping entity_id to display_name',
    )
    parser.add_argument(
        '--entity_id_col',
        default=None,
        help='Entity ID column in the coefficient tables (default: first column)',
    )
    parser.add_argument(
        '--results_path',
        required=True,
        help='Path to output directory',
    )
    parser.add_argument(
        '--format',
        choices=['tsv', 'csv', 'excel'],
        default='tsv',
        help='Output format',
    )
    parser.add_argument(
        '--no_shrinkage',
        action='store_true',
        help='Report unshrunken Wald statistics',
    )
    parser.add_argument(
        '--assume_independence',
        action='store_true',
        help='Ignore coefficient covariance even if supplied',
    )
    parser.add_argument(
        '--max_iter',
        type=int,
        default=ShrinkageConfig.max_iter,
        help='EM iteration budget for the shrinkage prior',
    )
    parser.add_argument(
        '--num_workers',
        type=int,
        default=None,
        help='Number of contrasts computed concurrently',
    )
    parser.add_argument(
        '--extended',
        action='store_true',
        help='Also write posterior_sd, lfsr and shrinkage_skipped columns',
    )
    parser.add_argument(
        '-d', '--debug',
        action='store_true',
        help='Enable debug logging',
    )
    return parser


def build_specs(model: CoefficientTable, definitions: dict, collection: ResultCollection) -> dict:
    """Parse contrast definitions; ones naming unknown coefficients are recorded as failed."""
    specs = {}
    for cid, d in definitions.items():
        try:
            specs[cid] = contrast_from_dict(d, model=model)
        except ContrastError as e:
            logger.error(f"Contrast '{cid}' failed: {type(e).__name__}: {e}")
            collection[cid] = FailedContrast(cid, None, type(e).__name__, str(e))
    return specs


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Command-line interface for the contrast engine."""
    args = build_parser().parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    paths = Paths(data_path=Path(args.estimates).parent, results_path=Path(args.results_path))
    config = EngineConfig(
        shrinkage=ShrinkageConfig(enabled=not args.no_shrinkage, max_iter=args.max_iter),
        assume_independence=args.assume_independence,
    )

    contrast_file = load_contrast_file(args.contrasts)
    model = load_coefficient_tables(
        args.estimates,
        args.std_errors,
        entity_id_col=args.entity_id_col,
        covariance_path=args.covariance,
        factors=contrast_file.factors,
    )
    annotation = load_annotation(args.annotation) if args.annotation else None

    collection = ResultCollection()
    specs = build_specs(model, contrast_file.contrasts, collection)
    run_contrasts(
        model,
        specs,
        annotation=annotation,
        config=config,
        collection=collection,
        max_workers=args.num_workers,
    )

    # keep file order for contrasts that failed while parsing
    ordered = ResultCollection({cid: collection[cid] for cid in contrast_file.contrasts})
    write_result_collection(
        ordered,
        paths.results_path,
        format=args.format,
        na_token=config.na_token,
        extended=args.extended,
    )

    for res in ordered.succeeded().values():
        logger.info(res.summary())
    return 1 if ordered.failed() else 0


if __name__ == '__main__':
    raise SystemExit(main())
