"""
Methylome: simulation of per-locus methylation states along haplotypes.

Each haplotype is a first-order Markov chain over the loci of a genome. The
first locus of every chromosome is drawn from its marginal methylation level
(beta); every following locus is drawn conditionally on its left neighbour,
using a transition probability derived by iterative proportional fitting
from the two betas and the pair's base-2 log odds-ratio of co-methylation.

Main Functions:
    - simulate_haplotype: One haplotype from explicit uniform draws
    - simulate_z: Stack several haplotypes into a loci x haplotypes matrix
    - chromosome_ends: Last locus of the chromosome run each locus belongs to

Example:
    >>> beta = np.array([0.2, 0.8, 0.5])
    >>> lor = np.array([1.0])
    >>> chrom = ["chr1", "chr1", "chr2"]
    >>> z = simulate_z(beta, lor, chrom, n_haplotypes=4, rng=np.random.default_rng(1))
    >>> z.shape
    (3, 4)
"""

import logging

import numpy as np
import pandas as pd
from numba import njit
from tqdm import tqdm

from .errors import DomainError, ShapeMismatchError
from .ipf import MAX_ITER, TOL, ipf_2x2

logger = logging.getLogger(__name__)

UNSET = -1  # sentinel for loci the walk has not reached yet


def encode_chromosomes(chrom) -> tuple[np.ndarray, int]:
    """Map arbitrary chromosome ids to integer codes.

    Returns:
        Tuple of (codes, n_distinct). Equal ids share a code, so neighbour
        comparisons on codes match comparisons on the original ids. Missing
        ids (None, NaN) share one code of their own.
    """
    codes, uniques = pd.factorize(
        np.asarray(chrom, dtype=object), sort=False, use_na_sentinel=False
    )
    return codes.astype(np.int64), len(uniques)


@njit(cache=True)
def _simulate_haplotype_core(beta, lor, chrom_codes, u, max_iter, tol):
    n = beta.size
    z = np.full(n, UNSET, dtype=np.int8)
    if n == 0:
        return z

    seed = np.ones((2, 2), dtype=np.float64)
    row_margins = np.empty(2, dtype=np.float64)
    col_margins = np.empty(2, dtype=np.float64)

    # draw > mean => unmethylated
    z[0] = 0 if u[0] > beta[0] else 1

    j = 0
    for i in range(1, n):
        if chrom_codes[i] != chrom_codes[i - 1]:
            z[i] = 0 if u[i] > beta[i] else 1
            continue

        seed[0, 0] = 2.0 ** lor[j]
        col_margins[0] = 1.0 - beta[i - 1]
        col_margins[1] = beta[i - 1]
        row_margins[0] = 1.0 - beta[i]
        row_margins[1] = beta[i]
        joint, _ = ipf_2x2(seed, row_margins, col_margins, max_iter, tol)

        # Denominators are branch specific: 1 - beta[i-1] after a 0, beta[i]
        # after a 1. Outputs are compared against this exact rule.
        if z[i - 1] == 0:
            numerator = joint[0, 1]
            denominator = 1.0 - beta[i - 1]
        else:
            numerator = joint[1, 1]
            denominator = beta[i]
        if denominator > 0:
            p = numerator / denominator
        else:
            p = beta[i]

        z[i] = 0 if u[i] > p else 1
        j += 1

    return z


def _check_beta(beta: np.ndarray) -> None:
    if np.any(~np.isfinite(beta)) or np.any((beta < 0) | (beta > 1)):
        raise DomainError("beta values must lie in [0, 1]")


def _check_annotation(beta: np.ndarray, lor: np.ndarray, n_chrom: int, n_chrom_ids: int) -> None:
    if beta.size != n_chrom_ids:
        raise ShapeMismatchError(
            f"len(beta) != len(chrom): {beta.size} != {n_chrom_ids}"
        )
    if lor.size != beta.size - n_chrom:
        raise ShapeMismatchError(
            "len(lor) != len(beta) - len(unique(chrom)): "
            f"{lor.size} != {beta.size} - {n_chrom}"
        )
    _check_beta(beta)
    if not np.all(np.isfinite(lor)):
        raise DomainError("lor values must be finite")


def simulate_haplotype(beta, lor, chrom, random_uniforms) -> np.ndarray:
    """Simulate the methylation states of one haplotype.

    Walks the loci left to right. The first locus, and the first locus after
    every change of chromosome, is methylated when its draw is <= beta.
    Every other locus i is methylated when its draw is <= p, where p is the
    transition probability taken from the IPF joint table of loci (i-1, i)
    seeded with ``2**lor[j]``; ``j`` counts same-chromosome pairs only.

    Args:
        beta: Marginal methylation probability of each locus, in [0, 1].
        lor: Base-2 log odds-ratio of each adjacent same-chromosome pair;
            ``len(beta) - n_distinct(chrom)`` values.
        chrom: Chromosome id of each locus.
        random_uniforms: One Uniform(0, 1) draw per locus.

    Returns:
        int8 array of 0 (unmethylated) / 1 (methylated), one per locus.

    Raises:
        ShapeMismatchError: If the array lengths are inconsistent.
        DomainError: If a beta lies outside [0, 1] or a lor is not finite.
    """
    beta = np.asarray(beta, dtype=np.float64)
    lor = np.asarray(lor, dtype=np.float64)
    u = np.asarray(random_uniforms, dtype=np.float64)
    codes, n_chrom = encode_chromosomes(chrom)

    _check_annotation(beta, lor, n_chrom, codes.size)
    if u.size != beta.size:
        raise ShapeMismatchError(
            f"len(random_uniforms) != len(beta): {u.size} != {beta.size}"
        )

    return _simulate_haplotype_core(beta, lor, codes, u, MAX_ITER, TOL)


def simulate_z(
    beta,
    lor,
    chrom,
    n_haplotypes: int,
    rng: np.random.Generator | None = None,
    progress: bool = False,
) -> np.ndarray:
    """Simulate a loci x haplotypes state matrix.

    Column h is produced by :func:`simulate_haplotype` from
    ``rng.random(n_loci)``; columns are drawn in order, so a seeded generator
    gives a reproducible matrix.

    Args:
        beta: Marginal methylation probability of each locus.
        lor: Base-2 log odds-ratio of each adjacent same-chromosome pair.
        chrom: Chromosome id of each locus.
        n_haplotypes: Number of columns to simulate.
        rng: Source of uniform draws (a fresh default generator if None).
        progress: Show a tqdm progress bar over haplotypes.

    Returns:
        int8 array of shape (n_loci, n_haplotypes).
    """
    if n_haplotypes < 1:
        raise DomainError(f"n_haplotypes must be >= 1, got {n_haplotypes}")
    if rng is None:
        rng = np.random.default_rng()

    beta = np.asarray(beta, dtype=np.float64)
    lor = np.asarray(lor, dtype=np.float64)
    codes, n_chrom = encode_chromosomes(chrom)
    _check_annotation(beta, lor, n_chrom, codes.size)

    z = np.full((beta.size, n_haplotypes), UNSET, dtype=np.int8)
    for h in tqdm(range(n_haplotypes), desc="Simulating haplotypes", disable=not progress):
        u = rng.random(beta.size)
        z[:, h] = _simulate_haplotype_core(beta, lor, codes, u, MAX_ITER, TOL)

    logger.debug("Simulated %d haplotypes over %d loci", n_haplotypes, beta.size)
    return z


def chromosome_ends(chrom) -> np.ndarray:
    """0-based index of the last locus of each locus's chromosome run."""
    codes, _ = encode_chromosomes(chrom)
    n = codes.size
    ends = np.empty(n, dtype=np.int64)
    if n == 0:
        return ends
    last = n - 1
    for i in range(n - 1, -1, -1):
        if i < n - 1 and codes[i] != codes[i + 1]:
            last = i
        ends[i] = last
    return ends
