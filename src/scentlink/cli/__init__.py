"""
scentlink CLI - Command-line interface for peak-gene association testing.

Commands:
    scentlink run     - Test candidate gene-peak pairs within one cell type
    scentlink pairs   - Build candidate pair batches around an interval intersection
"""

import argparse
import sys
from typing import Optional, List


def main(args: Optional[List[str]] = None) -> int:
    """Main CLI dispatcher for scentlink."""
    parser = argparse.ArgumentParser(
        prog="scentlink",
        description="Single-cell peak-gene links from multiome counts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  run     Test candidate gene-peak pairs within one cell type
  pairs   Build candidate pair batches around an interval intersection

Examples:
  scentlink pairs --atac atac.mtx.gz --peak-bed peaks.bed
  scentlink pairs --intersected hits.bed --rna rna.mtx.gz --n-batches 100
  scentlink run --config scent.yaml --n-batches 100 --batch-index 1 --cores 8
        """
    )

    parser.add_argument(
        "--version", "-V",
        action="version",
        version="%(prog)s 0.1.0"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Import and register subcommands
    from scentlink.cli import pairs, run
    run.register_parser(subparsers)
    pairs.register_parser(subparsers)

    raw_args = sys.argv[1:] if args is None else list(args)
    parsed_args = parser.parse_args(raw_args)

    if parsed_args.command is None:
        parser.print_help()
        return 0

    # Raw flags after the subcommand, for config-file override detection
    parsed_args._argv = raw_args[raw_args.index(parsed_args.command) + 1:]

    # Dispatch to subcommand
    return parsed_args.func(parsed_args)


if __name__ == "__main__":
    sys.exit(main())
