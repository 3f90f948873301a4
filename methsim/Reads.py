"""
Reads: sequencing reads sampled from simulated haplotypes.

A read is a contiguous window of loci taken from one column of the state
matrix Z. Read descriptors are 1-based: ``haplotype_idx`` names a column of
Z and ``first_locus`` a row, both counted from 1.

Main Functions:
    - extract_reads / extract_reads_flat: Slice read windows out of Z
    - split_flat_reads: Recover per-read arrays from a flat extraction
    - sample_haplotype: Categorical choice of the source haplotype per read
    - inject_errors_in_place: Flip calls with a fixed per-call error rate
    - sample_read_windows / simulate_reads: The complete read pipeline

Example:
    >>> Z = np.array([[0, 1], [1, 0], [0, 0], [1, 1]])
    >>> extract_reads(Z, [1], [2], [2])
    [array([1, 0], dtype=int8)]
"""

import logging
from dataclasses import dataclass

import numpy as np
import pandas as pd
from numba import njit

from .errors import DomainError, ReadBoundsError, ShapeMismatchError
from .Methylome import chromosome_ends

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReadSet:
    """Container for a batch of simulated reads.

    Attributes:
        haplotype: 1-based haplotype (column of Z) each read was taken from.
        first_locus: 1-based first locus of each read.
        run_length: Number of loci each read covers.
        calls: Observed calls of all reads, concatenated in read order.
        truth: Error-free calls, aligned with ``calls``.
    """

    haplotype: np.ndarray
    first_locus: np.ndarray
    run_length: np.ndarray
    calls: np.ndarray
    truth: np.ndarray

    def __len__(self) -> int:
        return int(self.run_length.size)

    def reads(self) -> list[np.ndarray]:
        """Observed calls split per read."""
        return split_flat_reads(self.calls, self.run_length)

    def to_dataframe(self) -> pd.DataFrame:
        """One row per call: read_id, haplotype, locus (1-based), state, true_state."""
        read_id = np.repeat(np.arange(len(self)), self.run_length)
        offsets = np.arange(self.calls.size) - np.repeat(
            _read_offsets(self.run_length), self.run_length
        )
        locus = np.repeat(self.first_locus, self.run_length) + offsets
        return pd.DataFrame(
            {
                "read_id": read_id,
                "haplotype": np.repeat(self.haplotype, self.run_length),
                "locus": locus,
                "state": self.calls,
                "true_state": self.truth,
            }
        )


def _read_offsets(run_length: np.ndarray) -> np.ndarray:
    """Start of each read in a flat call array."""
    offsets = np.zeros(run_length.size, dtype=np.int64)
    if run_length.size > 1:
        offsets[1:] = np.cumsum(run_length[:-1])
    return offsets


def _as_index_array(values, name: str) -> np.ndarray:
    """1-D int64 view of read descriptors; non-integral values are rejected."""
    arr = np.asarray(values).ravel()
    if arr.size and not np.issubdtype(arr.dtype, np.integer):
        as_float = arr.astype(np.float64)
        if not np.all(np.isfinite(as_float)) or np.any(as_float != np.floor(as_float)):
            raise DomainError(f"{name} must hold integers")
    return arr.astype(np.int64)


def _validate_reads(
    z: np.ndarray, haplotype_idx, first_locus, run_length
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    if z.ndim != 2:
        raise ShapeMismatchError(f"Z must be a loci x haplotypes matrix, got {z.ndim} dims")

    haplotype_idx = _as_index_array(haplotype_idx, "haplotype_idx")
    first_locus = _as_index_array(first_locus, "first_locus")
    run_length = _as_index_array(run_length, "run_length")

    if not (haplotype_idx.size == first_locus.size == run_length.size):
        raise ShapeMismatchError(
            "length(haplotype_idx) != length(first_locus) != length(run_length): "
            f"{haplotype_idx.size}, {first_locus.size}, {run_length.size}"
        )
    if run_length.size == 0:
        return haplotype_idx, first_locus, run_length

    n_loci, n_haplotypes = z.shape
    if run_length.min() < 1:
        raise DomainError(f"min(run_length) < 1: {run_length.min()}")
    if first_locus.min() < 1:
        raise ReadBoundsError(f"min(first_locus) < 1: {first_locus.min()}")
    last_locus = int((first_locus + run_length - 1).max())
    if last_locus > n_loci:
        raise ReadBoundsError(
            f"max(first_locus + run_length - 1) = {last_locus} > n_loci = {n_loci}"
        )
    if haplotype_idx.min() < 1 or haplotype_idx.max() > n_haplotypes:
        raise ReadBoundsError(
            f"haplotype_idx must lie in [1, {n_haplotypes}], "
            f"got [{haplotype_idx.min()}, {haplotype_idx.max()}]"
        )
    return haplotype_idx, first_locus, run_length


@njit(cache=True)
def _extract_flat_core(z, haplotype_idx, first_locus, run_length, offsets, out):
    for r in range(run_length.size):
        col = haplotype_idx[r] - 1
        row = first_locus[r] - 1
        start = offsets[r]
        for k in range(run_length[r]):
            out[start + k] = z[row + k, col]


def extract_reads_flat(Z, haplotype_idx, first_locus, run_length) -> np.ndarray:
    """Extract the calls of all reads into one flat array.

    Same input contract as :func:`extract_reads`. The result has length
    ``sum(run_length)`` and carries no read boundaries; use
    :func:`split_flat_reads` with the same ``run_length`` to recover them.
    """
    z = np.asarray(Z)
    haplotype_idx, first_locus, run_length = _validate_reads(
        z, haplotype_idx, first_locus, run_length
    )
    out = np.empty(int(run_length.sum()), dtype=np.int8)
    if run_length.size:
        _extract_flat_core(
            z.astype(np.int8, copy=False),
            haplotype_idx,
            first_locus,
            run_length,
            _read_offsets(run_length),
            out,
        )
    return out


def extract_reads(Z, haplotype_idx, first_locus, run_length) -> list[np.ndarray]:
    """Extract the calls covered by each read.

    Read r covers rows ``first_locus[r] .. first_locus[r] + run_length[r] - 1``
    of column ``haplotype_idx[r]`` (all 1-based), read top to bottom.

    Args:
        Z: Loci x haplotypes matrix of 0/1 states.
        haplotype_idx: 1-based column of Z for each read.
        first_locus: 1-based first row of each read.
        run_length: Number of loci in each read (>= 1).

    Returns:
        List with one int8 array per read, in read order.

    Raises:
        ShapeMismatchError: If the three descriptor arrays differ in length.
        DomainError: If a run length is below 1.
        ReadBoundsError: If a window runs past the last locus or a
            haplotype index is not a column of Z.
    """
    flat = extract_reads_flat(Z, haplotype_idx, first_locus, run_length)
    return split_flat_reads(flat, run_length)


def split_flat_reads(flat, run_length) -> list[np.ndarray]:
    """Split a flat call array into per-read arrays using ``run_length``."""
    flat = np.asarray(flat)
    run_length = _as_index_array(run_length, "run_length")
    if int(run_length.sum()) != flat.size:
        raise ShapeMismatchError(
            f"sum(run_length) != len(flat): {int(run_length.sum())} != {flat.size}"
        )
    if run_length.size == 0:
        return []
    return np.split(flat, np.cumsum(run_length)[:-1])


def sample_haplotype(
    H,
    random_uniforms=None,
    rng: np.random.Generator | None = None,
) -> np.ndarray:
    """Choose a source haplotype for every read.

    Row r of ``H`` holds the relative likelihood that read r comes from each
    haplotype. Rows are normalized here; the chosen haplotype is the first
    whose cumulative normalized weight exceeds the read's uniform draw.

    Args:
        H: Reads x haplotypes matrix of non-negative weights.
        random_uniforms: One Uniform(0, 1) draw per row. Drawn from ``rng``
            when omitted.
        rng: Generator used when ``random_uniforms`` is None.

    Returns:
        int64 array of 1-based haplotype indices, one per row of ``H``.

    Raises:
        ShapeMismatchError: If ``H`` is not 2-D or the draws do not match its rows.
        DomainError: If a row has negative or non-finite entries or sums to zero.
    """
    h = np.asarray(H, dtype=np.float64)
    if h.ndim != 2:
        raise ShapeMismatchError(f"H must be a 2-D matrix, got {h.ndim} dims")
    n_rows = h.shape[0]
    if n_rows == 0:
        return np.empty(0, dtype=np.int64)
    if h.shape[1] == 0:
        raise ShapeMismatchError("H has no haplotype columns")
    if not np.all(np.isfinite(h)) or np.any(h < 0):
        raise DomainError("H entries must be finite and non-negative")
    row_max = h.max(axis=1)
    if np.any(row_max <= 0):
        bad = np.flatnonzero(row_max <= 0)
        raise DomainError(f"rows of H sum to zero: {bad[:10].tolist()}")
    # scaled rows sum to at most n_haplotypes, so huge weights cannot overflow
    h = h / row_max[:, None]
    totals = h.sum(axis=1)

    if random_uniforms is None:
        if rng is None:
            rng = np.random.default_rng()
        u = rng.random(n_rows)
    else:
        u = np.asarray(random_uniforms, dtype=np.float64).ravel()
        if u.size != n_rows:
            raise ShapeMismatchError(
                f"len(random_uniforms) != nrow(H): {u.size} != {n_rows}"
            )

    cumulative = np.cumsum(h, axis=1) / totals[:, None]
    chosen = np.argmax(cumulative > u[:, None], axis=1)
    # u can only reach the last cumulative weight through rounding
    exhausted = ~np.any(cumulative > u[:, None], axis=1)
    if np.any(exhausted):
        chosen[exhausted] = h.shape[1] - 1 - np.argmax(h[exhausted, ::-1] > 0, axis=1)
    return chosen.astype(np.int64) + 1


@njit(cache=True)
def _flip_core(states, u, error_rate):
    for k in range(states.size):
        if u[k] < error_rate:
            states[k] = 1 - states[k]


def inject_errors_in_place(read_states, random_uniforms, error_rate: float) -> None:
    """Flip calls of a read buffer in place.

    Call k is flipped (0 <-> 1) when ``random_uniforms[k] < error_rate``.
    The buffer is borrowed for the duration of the call only: it is written
    in place, no copy is made and nothing is returned.

    Args:
        read_states: Writable 1-D NumPy integer array or list of 0/1 calls.
        random_uniforms: One Uniform(0, 1) draw per call.
        error_rate: Per-call flip probability in [0, 1].

    Raises:
        ShapeMismatchError: If the draws do not match the buffer length.
        DomainError: If ``error_rate`` lies outside [0, 1].
    """
    if not 0.0 <= error_rate <= 1.0:
        raise DomainError(f"error_rate must lie in [0, 1], got {error_rate}")
    u = np.asarray(random_uniforms, dtype=np.float64).ravel()
    if len(read_states) != u.size:
        raise ShapeMismatchError(
            f"len(read_states) != len(random_uniforms): {len(read_states)} != {u.size}"
        )

    if isinstance(read_states, np.ndarray):
        if read_states.ndim != 1:
            raise ShapeMismatchError("read_states must be one-dimensional")
        _flip_core(read_states, u, float(error_rate))
        return

    for k in range(len(read_states)):
        if u[k] < error_rate:
            read_states[k] = 1 - read_states[k]


def sample_read_windows(
    chrom,
    n_reads: int,
    mean_run_length: float = 4.0,
    rng: np.random.Generator | None = None,
) -> tuple[np.ndarray, np.ndarray]:
    """Draw read windows that stay on one chromosome.

    The first locus is uniform over all loci. The run length is
    ``1 + Poisson(mean_run_length - 1)``, truncated at the last locus of the
    first locus's chromosome.

    Returns:
        Tuple of (first_locus, run_length), first_locus 1-based.
    """
    if n_reads < 0:
        raise DomainError(f"n_reads must be >= 0, got {n_reads}")
    if mean_run_length < 1:
        raise DomainError(f"mean_run_length must be >= 1, got {mean_run_length}")
    if rng is None:
        rng = np.random.default_rng()

    ends = chromosome_ends(chrom)
    if ends.size == 0:
        if n_reads:
            raise DomainError("cannot sample reads from a genome without loci")
        return np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64)

    start = rng.integers(0, ends.size, size=n_reads)
    run_length = 1 + rng.poisson(mean_run_length - 1.0, size=n_reads)
    run_length = np.minimum(run_length, ends[start] - start + 1)
    return start.astype(np.int64) + 1, run_length.astype(np.int64)


def simulate_reads(
    Z,
    chrom,
    n_reads: int,
    mean_run_length: float = 4.0,
    error_rate: float = 0.0,
    haplotype_weights=None,
    rng: np.random.Generator | None = None,
) -> ReadSet:
    """Simulate sequencing reads from a state matrix.

    Process:
        1. Draw read windows with :func:`sample_read_windows`
        2. Choose each read's haplotype with :func:`sample_haplotype`
        3. Extract the calls with :func:`extract_reads_flat`
        4. Flip calls with :func:`inject_errors_in_place`

    Args:
        Z: Loci x haplotypes matrix from :func:`methsim.Methylome.simulate_z`.
        chrom: Chromosome id of each locus (row of Z).
        n_reads: Number of reads.
        mean_run_length: Mean number of loci per read (>= 1).
        error_rate: Per-call flip probability.
        haplotype_weights: Relative abundance of each haplotype (uniform if None).
        rng: Source of all random draws.

    Returns:
        ReadSet with observed and error-free calls.
    """
    z = np.asarray(Z)
    if z.ndim != 2:
        raise ShapeMismatchError(f"Z must be a loci x haplotypes matrix, got {z.ndim} dims")
    if len(chrom) != z.shape[0]:
        raise ShapeMismatchError(f"len(chrom) != nrow(Z): {len(chrom)} != {z.shape[0]}")
    if not 0.0 <= error_rate <= 1.0:
        raise DomainError(f"error_rate must lie in [0, 1], got {error_rate}")
    if rng is None:
        rng = np.random.default_rng()

    n_haplotypes = z.shape[1]
    if haplotype_weights is None:
        weights = np.ones(n_haplotypes, dtype=np.float64)
    else:
        weights = np.asarray(haplotype_weights, dtype=np.float64).ravel()
        if weights.size != n_haplotypes:
            raise ShapeMismatchError(
                f"len(haplotype_weights) != ncol(Z): {weights.size} != {n_haplotypes}"
            )

    first_locus, run_length = sample_read_windows(chrom, n_reads, mean_run_length, rng)
    haplotype = sample_haplotype(np.tile(weights, (n_reads, 1)), rng=rng)

    truth = extract_reads_flat(z, haplotype, first_locus, run_length)
    calls = truth.copy()
    inject_errors_in_place(calls, rng.random(calls.size), error_rate)

    logger.debug(
        "Simulated %d reads (%d calls, %d flipped)",
        n_reads,
        calls.size,
        int(np.count_nonzero(calls != truth)),
    )
    return ReadSet(haplotype, first_locus, run_length, calls, truth)
