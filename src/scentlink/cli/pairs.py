"""
scentlink pairs command - prepare candidate pair batches.

Two steps around an external interval intersection:

    # 1. Peak BED from the ATAC matrix row names
    scentlink pairs --atac atac.mtx.gz --peak-bed peaks.bed

    # 2. (outside) bedtools intersect -a genes_500kb.bed -b peaks.bed -wa -wb -loj > hits.bed

    # 3. Gene-peak pairs, restricted to genes in the RNA matrix, in 100 batches
    scentlink pairs --intersected hits.bed --rna rna.mtx.gz --n-batches 100 --output-dir pairs/
"""

import argparse
from pathlib import Path

from scentlink.cli._validators import _positive_int


def register_parser(subparsers: argparse._SubParsersAction) -> None:
    """Register the pairs subcommand."""
    parser = subparsers.add_parser(
        "pairs",
        help="Build candidate gene-peak pair batches",
        description="Write a peak BED for interval intersection, and turn the "
                    "intersection output into batched pair files",
    )

    parser.add_argument("--atac", type=Path, default=None,
                        help="ATAC count matrix whose row names are peaks")
    parser.add_argument("--peak-bed", type=Path, default=None,
                        help="Write the peak BED here (requires --atac)")
    parser.add_argument("--intersected", type=Path, default=None,
                        help="Output of 'bedtools intersect -wa -wb -loj' (gene BED4 + peak BED4)")
    parser.add_argument("--rna", type=Path, default=None,
                        help="RNA count matrix; keep only pairs whose gene is a row")
    parser.add_argument("--n-batches", type=_positive_int, default=1,
                        help="Number of pair batches to write (default: 1)")
    parser.add_argument("--output-dir", "-o", type=Path, default=Path("pairs"),
                        help="Directory for batch files (default: pairs)")
    parser.add_argument("--prefix", default="pairs_batch",
                        help="Batch file prefix (default: pairs_batch)")

    parser.set_defaults(func=run_pairs)


def run_pairs(args: argparse.Namespace) -> int:
    """Execute the pairs command."""
    import logging

    from scentlink.io.loaders import load_count_matrix
    from scentlink.io.pairs import (
        batch_pairs,
        filter_pairs_to_genes,
        peaks_to_bed,
        read_intersected_pairs,
        write_batches,
    )

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    logger = logging.getLogger(__name__)

    if args.peak_bed is None and args.intersected is None:
        logger.error("Nothing to do: pass --peak-bed and/or --intersected")
        return 1

    if args.peak_bed is not None:
        if args.atac is None:
            logger.error("--peak-bed requires --atac")
            return 1
        atac = load_count_matrix(args.atac)
        try:
            bed = peaks_to_bed(atac.feature_ids)
        except ValueError as e:
            logger.error(str(e))
            return 1
        args.peak_bed.parent.mkdir(parents=True, exist_ok=True)
        bed.to_csv(args.peak_bed, sep="\t", header=False, index=False)
        logger.info(f"Wrote {len(bed)} peaks to {args.peak_bed}")

    if args.intersected is not None:
        pairs = read_intersected_pairs(args.intersected)
        if args.rna is not None:
            rna = load_count_matrix(args.rna)
            pairs = filter_pairs_to_genes(pairs, rna.feature_ids)
        if pairs.empty:
            logger.error("No gene-peak pairs left to write")
            return 1
        batches = batch_pairs(pairs, args.n_batches)
        write_batches(batches, args.output_dir, prefix=args.prefix)

    return 0
