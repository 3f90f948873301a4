#!/usr/bin/env python3
"""
Simulate methylomes and sequencing reads and save them to HDF5.

Usage:
    methsim-simulate --loci loci.tsv --output data/simulation.h5 --n_haplotypes 4
    methsim-simulate --n_loci 5000 --n_chrom 2 --output data/random.h5 --seed 1
    methsim-simulate --help

The locus table is tab separated with columns chrom, beta and lor; lor is the
base-2 log odds-ratio of the pair formed with the next locus on the same
chromosome and is left empty on the last locus of each chromosome.
"""

import argparse
import logging
import sys
from pathlib import Path

import numpy as np
import pandas as pd
import rich.console
import rich.logging

from .errors import DomainError, ValidationError
from .Simulation import (
    SimulationParams,
    annotation_from_table,
    read_annotation,
    read_simulation_results,
    simulate_methylomes,
)

logger = logging.getLogger(__name__)


def random_annotation(n_loci: int, n_chrom: int, rng: np.random.Generator):
    """Random locus annotation: Beta(0.5, 0.5) betas and Normal(1, 1) log odds-ratios."""
    if n_loci < 0 or n_chrom < 1:
        raise DomainError(f"need n_loci >= 0 and n_chrom >= 1, got {n_loci} and {n_chrom}")
    chrom = np.asarray(
        [f"chr{i + 1}" for i in np.sort(rng.integers(0, n_chrom, size=n_loci))],
        dtype=object,
    )
    beta = rng.beta(0.5, 0.5, size=n_loci)
    n_distinct = len(np.unique(chrom)) if n_loci else 0
    lor = rng.normal(1.0, 1.0, size=n_loci - n_distinct)
    return beta, lor, chrom


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Simulate haplotype methylomes and sequencing reads and save them to HDF5"
    )
    parser.add_argument("--loci", type=str, default=None, help="Tab separated locus table (chrom, beta, lor)")
    parser.add_argument("--n_loci", type=int, default=1000, help="Loci of the random genome used without --loci (default: 1000)")
    parser.add_argument("--n_chrom", type=int, default=1, help="Chromosomes of the random genome (default: 1)")
    parser.add_argument("--output", type=str, default="data/simulation.h5", help="Output HDF5 file path (default: data/simulation.h5)")
    parser.add_argument("--n_samples", type=int, default=1, help="Independent methylomes to simulate (default: 1)")
    parser.add_argument("--n_haplotypes", type=int, default=2, help="Haplotypes per methylome (default: 2)")
    parser.add_argument("--n_reads", type=int, default=1000, help="Reads per methylome (default: 1000)")
    parser.add_argument("--mean_run_length", type=float, default=4.0, help="Mean loci per read (default: 4)")
    parser.add_argument("--error_rate", type=float, default=0.0, help="Per-call error rate (default: 0)")
    parser.add_argument("--haplotype_weights", type=float, nargs="+", default=None, help="Relative haplotype abundances")
    parser.add_argument("--seed", type=int, default=None, help="Random seed")
    parser.add_argument("--force", action="store_true", help="Overwrite an existing output file")
    parser.add_argument("--append", action="store_true", help="Append samples to an existing output file, reusing its parameters and annotation")
    parser.add_argument("--no_progress", action="store_true", help="Hide progress bars")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages")
    return parser


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)
    if not any(isinstance(h, rich.logging.RichHandler) for h in root.handlers):
        root.addHandler(
            rich.logging.RichHandler(
                level=level,
                console=rich.console.Console(file=sys.stderr),
                show_time=False,
                markup=True,
                enable_link_path=False,
            )
        )


def load_annotation(args):
    """Locus annotation from the --loci table, or a random genome."""
    if args.loci is not None:
        table = pd.read_csv(args.loci, sep="\t")
        beta, lor, chrom = annotation_from_table(table)
        logger.info("Loaded %d loci from %s", beta.size, args.loci)
    else:
        beta, lor, chrom = random_annotation(
            args.n_loci, args.n_chrom, np.random.default_rng(args.seed)
        )
        logger.info("Generated random genome of %d loci on %d chromosomes", beta.size, args.n_chrom)
    return beta, lor, chrom


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)

    output_path = Path(args.output).with_suffix(".h5")
    exists = output_path.exists()
    if exists and not (args.force or args.append):
        existing = read_simulation_results(str(output_path))
        logger.error(
            "File exists with %d samples. Use --append to add samples or --force to overwrite.",
            existing.n_samples,
        )
        return 1

    try:
        if exists and not args.force:
            # appended samples continue the stored batch
            params = read_simulation_results(str(output_path))
            params.n_samples = args.n_samples
            beta, lor, chrom = read_annotation(str(output_path))
            logger.info(
                "Appending %d samples to %s with its stored parameters and annotation",
                args.n_samples,
                output_path,
            )
        else:
            params = SimulationParams(
                n_samples=args.n_samples,
                n_haplotypes=args.n_haplotypes,
                n_reads=args.n_reads,
                mean_run_length=args.mean_run_length,
                error_rate=args.error_rate,
                haplotype_weights=args.haplotype_weights,
                seed=args.seed,
            )
            beta, lor, chrom = load_annotation(args)
        params.validate()

        if exists and args.force:
            logger.info("Overwriting existing file %s", output_path)
            output_path.unlink()

        simulate_methylomes(
            beta, lor, chrom, params, str(output_path), progress=not args.no_progress
        )
    except ValidationError as e:
        logger.error("Invalid input: %s", e)
        return 2

    final_params = read_simulation_results(str(output_path))
    logger.info("Simulation complete: %d samples in %s", final_params.n_samples, output_path)
    for key, value in final_params.__dict__.items():
        logger.debug("  %s: %s", key, value)
    return 0


if __name__ == "__main__":
    sys.exit(main())
