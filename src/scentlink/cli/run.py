"""
scentlink run command - peak-gene association testing.

Usage:
    scentlink run --rna rna.mtx.gz --atac atac.mtx.gz --metadata cells.tsv \\
        --pairs pairs.tsv --celltype Tcell --output results/Tcell.tsv
    scentlink run --config scent.yaml --n-batches 100 --batch-index 7 --cores 4
"""

import argparse
from pathlib import Path

from scentlink.cli._validators import _fraction, _positive_int


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the run subcommand."""
    parser = subparsers.add_parser(
        "run",
        help="Test candidate gene-peak pairs for association",
        description="Poisson/negative binomial association of peak accessibility with "
                    "gene expression, with adaptive bootstrap p-values",
    )

    # Inputs (may come from --config instead)
    parser.add_argument("--config", "-c", type=Path, default=None,
                        help="Path to YAML/JSON config file (optional, CLI args override config values)")
    parser.add_argument("--rna", type=Path, default=None,
                        help="RNA count matrix (genes x cells): .mtx[.gz] or CSV/TSV")
    parser.add_argument("--atac", type=Path, default=None,
                        help="ATAC count matrix (peaks x cells): .mtx[.gz] or CSV/TSV")
    parser.add_argument("--metadata", "-m", type=Path, default=None,
                        help="Cell metadata table (one row per cell)")
    parser.add_argument("--pairs", type=Path, default=None,
                        help="Candidate pairs table (gene, peak)")
    parser.add_argument("--output", "-o", type=Path, default=None,
                        help="Output TSV (rows are appended as they finish)")

    # Model
    parser.add_argument("--celltype", default=None,
                        help="Cell type to test within")
    parser.add_argument("--celltype-column", default="celltype",
                        help="Metadata column with cell-type labels (default: celltype)")
    parser.add_argument("--cell-column", default="cell",
                        help="Metadata column with cell identifiers (default: cell)")
    parser.add_argument("--covariates", nargs="*", default=[],
                        help="Metadata columns added to every model")
    parser.add_argument("--family", choices=["poisson", "negbin"], default="poisson",
                        help="Regression family (default: poisson)")
    parser.add_argument("--backend", choices=["irls", "fast"], default="irls",
                        help="Fitter backend: irls (statsmodels) or fast (weighted normal equations)")
    parser.add_argument("--no-binarize", action="store_false", dest="binarize",
                        help="Use raw accessibility counts instead of 0/1")

    # Bootstrap
    parser.add_argument("--escalation", choices=["sequential", "banded"], default="sequential",
                        help="Resample escalation policy (default: sequential)")
    parser.add_argument("--base-resamples", type=_positive_int, default=100,
                        help="Replicates in the first bootstrap round (default: 100)")
    parser.add_argument("--min-nonzero-fraction", type=_fraction, default=0.05,
                        help="Sparsity screen threshold (default: 0.05)")
    parser.add_argument("--seed", type=int, default=None,
                        help="Random seed for reproducible bootstrap draws")

    # Parallelism
    parser.add_argument("--cores", type=_positive_int, default=1,
                        help="Bootstrap workers; total budget when --workers > 1 (default: 1)")
    parser.add_argument("--workers", type=_positive_int, default=1,
                        help="Pair-level workers (default: 1)")
    parser.add_argument("--parallel-mode", choices=["threads", "processes"],
                        default="threads", help="Pair-level parallelism strategy")

    # Batching / resume
    parser.add_argument("--n-batches", type=_positive_int, default=None,
                        help="Split the pair list into this many batches (requires --batch-index)")
    parser.add_argument("--batch-index", type=_positive_int, default=None,
                        help="1-based batch to run (requires --n-batches)")
    parser.add_argument("--resume", action="store_true",
                        help="Skip pairs already present in --output and append the rest")
    parser.add_argument("--strict-pairs", action="store_true",
                        help="Fail validation when pairs name unknown genes or peaks")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Debug logging")

    parser.set_defaults(func=run_run)


def run_run(args: argparse.Namespace) -> int:
    """Execute the run command."""
    import logging
    import sys

    from scentlink.core.errors import ValidationError
    from scentlink.io.loaders import load_count_matrix, load_metadata, load_pairs
    from scentlink.io.pairs import batch_pairs
    from scentlink.io.writers import ResultSink
    from scentlink.stats.association import AssociationConfig, run_association

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )
    logger = logging.getLogger(__name__)

    # Load and merge config file if provided
    if args.config:
        from scentlink.cli.config import load_config, merge_config_with_args, validate_config

        logger.info(f"Loading configuration from: {args.config}")
        try:
            config = load_config(args.config)
            validate_config(config)
            cli_args = getattr(args, "_argv", None)
            if cli_args is None:
                cli_args = sys.argv[2:]  # Skip 'scentlink run'
            args = merge_config_with_args(config, args, cli_args)
        except (FileNotFoundError, ValueError) as e:
            logger.error(f"Config file error: {e}")
            return 1

    # Validate required arguments (after config merge)
    missing = [
        flag for flag, value in (
            ("--rna", args.rna), ("--atac", args.atac), ("--metadata", args.metadata),
            ("--pairs", args.pairs), ("--output", args.output), ("--celltype", args.celltype),
        ) if value is None
    ]
    if missing:
        logger.error(f"Required (via CLI or config file): {', '.join(missing)}")
        return 1
    if args.batch_index is not None and args.n_batches is None:
        logger.error("--batch-index requires --n-batches")
        return 1
    if args.n_batches is not None and args.batch_index is None:
        logger.error("--n-batches requires --batch-index")
        return 1

    output = Path(args.output)
    if output.exists() and output.stat().st_size > 0 and not args.resume:
        logger.error(f"{output} already exists; pass --resume to append to it")
        return 1

    try:
        assoc_config = AssociationConfig(
            celltype=str(args.celltype),
            celltype_column=args.celltype_column,
            covariates=list(args.covariates or []),
            family=args.family,
            backend=args.backend,
            binarize=args.binarize,
            n_cores=args.cores,
            n_workers=args.workers,
            parallel_mode=args.parallel_mode,
            escalation=args.escalation,
            base_resamples=args.base_resamples,
            min_nonzero_fraction=args.min_nonzero_fraction,
            seed=args.seed,
            cell_column=args.cell_column,
            strict_pairs=args.strict_pairs,
        )
    except ValueError as e:
        logger.error(f"Invalid settings: {e}")
        return 1

    logger.info(f"Loading RNA: {args.rna}")
    rna = load_count_matrix(args.rna)
    logger.info(f"Loading ATAC: {args.atac}")
    atac = load_count_matrix(args.atac)
    metadata = load_metadata(args.metadata, cell_column=args.cell_column)
    pairs = load_pairs(args.pairs)

    if args.n_batches is not None:
        batches = batch_pairs(pairs, args.n_batches)
        if args.batch_index > len(batches):
            logger.error(f"--batch-index {args.batch_index} > number of batches ({len(batches)})")
            return 1
        pairs = batches[args.batch_index - 1]
        logger.info(f"Running batch {args.batch_index}/{len(batches)}: {len(pairs)} pairs")

    dataset = assoc_config.build_dataset(rna, atac, metadata)
    logger.info(f"Dataset: {dataset}")

    try:
        with ResultSink(output) as sink:
            table = run_association(
                dataset, pairs, assoc_config, sink=sink, skip_completed=args.resume
            )
    except ValidationError as e:
        logger.error(str(e))
        return 1

    n_tested = int((table["status"] == "tested").sum())
    logger.info(f"Wrote {len(table)} rows ({n_tested} tested) to {output}")
    return 0
