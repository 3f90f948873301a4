"""
comethylation: summaries of simulated methylomes and reads.

Checks a simulation against its annotation: the per-locus methylation level
should approach beta and the adjacent-pair log odds-ratio should approach lor.

Main Functions:
    - methylation_level: Fraction of methylated haplotypes per locus
    - pairwise_lor: Empirical base-2 log odds-ratio of adjacent loci in Z
    - read_pair_counts: 2x2 counts of adjacent calls within reads

Example:
    >>> z = simulate_z(beta, lor, chrom, n_haplotypes=500, rng=np.random.default_rng(1))
    >>> np.abs(methylation_level(z) - beta).max() < 0.1
    True
"""

import numpy as np
import pandas as pd
from numba import njit

from .errors import ShapeMismatchError
from .Methylome import encode_chromosomes
from .Reads import ReadSet, _read_offsets


def methylation_level(Z) -> np.ndarray:
    """Fraction of haplotypes methylated at each locus."""
    z = np.asarray(Z)
    if z.ndim != 2:
        raise ShapeMismatchError(f"Z must be a loci x haplotypes matrix, got {z.ndim} dims")
    return (z == 1).mean(axis=1)


@njit(cache=True)
def _adjacent_pair_counts(z, chrom_codes):
    """2x2 counts (previous state, current state) for every same-chromosome pair."""
    n_loci, n_haplotypes = z.shape
    n_pairs = 0
    for i in range(1, n_loci):
        if chrom_codes[i] == chrom_codes[i - 1]:
            n_pairs += 1

    counts = np.zeros((n_pairs, 2, 2), dtype=np.float64)
    k = 0
    for i in range(1, n_loci):
        if chrom_codes[i] != chrom_codes[i - 1]:
            continue
        for h in range(n_haplotypes):
            a = z[i - 1, h]
            b = z[i, h]
            if (a == 0 or a == 1) and (b == 0 or b == 1):
                counts[k, a, b] += 1.0
        k += 1
    return counts


def pairwise_lor(Z, chrom, pseudocount: float = 0.5) -> np.ndarray:
    """Empirical base-2 log odds-ratio of each adjacent same-chromosome pair.

    Counts are taken across the haplotypes of Z and the result is aligned
    with the ``lor`` array used to simulate Z. ``pseudocount`` is added to
    every cell so that pairs with an empty cell stay finite.
    """
    z = np.asarray(Z)
    if z.ndim != 2:
        raise ShapeMismatchError(f"Z must be a loci x haplotypes matrix, got {z.ndim} dims")
    codes, _ = encode_chromosomes(chrom)
    if codes.size != z.shape[0]:
        raise ShapeMismatchError(f"len(chrom) != nrow(Z): {codes.size} != {z.shape[0]}")

    counts = _adjacent_pair_counts(z.astype(np.int8, copy=False), codes) + pseudocount
    return np.log2(
        counts[:, 0, 0] * counts[:, 1, 1] / (counts[:, 0, 1] * counts[:, 1, 0])
    )


def read_pair_counts(read_set: ReadSet) -> pd.DataFrame:
    """Within-read co-methylation counts of adjacent loci.

    Every read covering loci (l, l + 1) contributes its observed calls at
    those loci to the row of ``locus`` l.

    Returns:
        DataFrame with columns locus (1-based), n00, n01, n10, n11, sorted by
        locus; loci never covered by a pair are absent.
    """
    columns = ["locus", "n00", "n01", "n10", "n11"]
    calls = np.asarray(read_set.calls, dtype=np.int64)
    run_length = np.asarray(read_set.run_length, dtype=np.int64)
    if calls.size == 0:
        return pd.DataFrame(columns=columns)

    # a call has a right neighbour within its read unless it ends the read
    is_last = np.zeros(calls.size, dtype=bool)
    is_last[_read_offsets(run_length) + run_length - 1] = True
    left = np.flatnonzero(~is_last)
    if left.size == 0:
        return pd.DataFrame(columns=columns)

    read_id = np.repeat(np.arange(run_length.size), run_length)
    offset_in_read = np.arange(calls.size) - np.repeat(_read_offsets(run_length), run_length)
    locus = read_set.first_locus[read_id[left]] + offset_in_read[left]

    df = pd.DataFrame(
        {"locus": locus, "pair": 2 * calls[left] + calls[left + 1]}
    )
    table = (
        df.groupby(["locus", "pair"]).size().unstack(fill_value=0)
        .reindex(columns=[0, 1, 2, 3], fill_value=0)
    )
    table.columns = columns[1:]
    return table.reset_index().sort_values("locus", ignore_index=True)
