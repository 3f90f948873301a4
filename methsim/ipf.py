"""Iterative proportional fitting of 2x2 joint probability tables.

The kernel is numba-compiled because the haplotype simulator calls it once
for every adjacent pair of loci on a chromosome.
"""

import logging

import numpy as np
from numba import njit

from .errors import DomainError, ShapeMismatchError

logger = logging.getLogger(__name__)

MAX_ITER = 1000
TOL = 1e-10
MARGIN_TOL = 1e-8


@njit(cache=True)
def ipf_2x2(seed, row_margins, col_margins, max_iter, tol):
    """Fit a 2x2 table to the given margins. Returns (table, passes used)."""
    fit = np.empty((2, 2), dtype=np.float64)
    for r in range(2):
        for c in range(2):
            fit[r, c] = seed[r, c]

    n_pass = 0
    while n_pass < max_iter:
        n_pass += 1
        previous = fit.copy()

        for r in range(2):
            total = fit[r, 0] + fit[r, 1]
            if total > 0:
                factor = row_margins[r] / total
                fit[r, 0] *= factor
                fit[r, 1] *= factor

        for c in range(2):
            total = fit[0, c] + fit[1, c]
            if total > 0:
                factor = col_margins[c] / total
                fit[0, c] *= factor
                fit[1, c] *= factor

        if np.max(np.abs(fit - previous)) < tol:
            break

    return fit, n_pass


def lor_seed(lor: float) -> np.ndarray:
    """Seed table [[2**lor, 1], [1, 1]] for a base-2 log odds-ratio."""
    seed = np.ones((2, 2), dtype=np.float64)
    seed[0, 0] = 2.0**lor
    return seed


def ipf(
    seed,
    row_margins,
    col_margins,
    max_iter: int = MAX_ITER,
    tol: float = TOL,
) -> np.ndarray:
    """Reconstruct a 2x2 joint probability matrix from its margins.

    Rows are rescaled to ``row_margins``, then columns to ``col_margins``, and
    the pair of passes is repeated until no cell moves by ``tol`` or more, or
    ``max_iter`` passes have run. Running out of passes is not an error: the
    last table is returned and a debug message is logged.

    The cross-product ratio of ``seed`` is preserved, so a seed built by
    :func:`lor_seed` yields the joint table with that odds-ratio.

    Args:
        seed: 2x2 array of strictly positive starting values.
        row_margins: Target row sums, length 2, summing to 1.
        col_margins: Target column sums, length 2, summing to 1.
        max_iter: Maximum number of row+column passes.
        tol: Convergence threshold on the largest absolute cell change.

    Returns:
        2x2 float array whose rows sum to ``row_margins`` and columns to
        ``col_margins`` (within ``tol``).

    Raises:
        ShapeMismatchError: If the seed is not 2x2 or a margin is not length 2.
        DomainError: If a seed cell is not positive or a margin is not a
            probability vector.

    Example:
        >>> J = ipf(lor_seed(1.0), [0.2, 0.8], [0.8, 0.2])
        >>> np.allclose(J.sum(axis=1), [0.2, 0.8])
        True
    """
    seed = np.asarray(seed, dtype=np.float64)
    row_margins = np.asarray(row_margins, dtype=np.float64)
    col_margins = np.asarray(col_margins, dtype=np.float64)

    if seed.shape != (2, 2):
        raise ShapeMismatchError(f"seed must be 2x2, got shape {seed.shape}")
    if row_margins.shape != (2,) or col_margins.shape != (2,):
        raise ShapeMismatchError(
            f"margins must have length 2, got {row_margins.shape} and {col_margins.shape}"
        )
    if not np.all(np.isfinite(seed)) or np.any(seed <= 0):
        raise DomainError("seed cells must be finite and strictly positive")
    for name, margins in (("row_margins", row_margins), ("col_margins", col_margins)):
        if np.any(margins < 0) or abs(margins.sum() - 1.0) > MARGIN_TOL:
            raise DomainError(f"{name} must be non-negative and sum to 1, got {margins}")
    if max_iter < 1:
        raise DomainError(f"max_iter must be >= 1, got {max_iter}")

    fit, n_pass = ipf_2x2(seed, row_margins, col_margins, int(max_iter), float(tol))
    if n_pass >= max_iter:
        logger.debug("IPF stopped after %d passes without reaching tol=%g", n_pass, tol)
    return fit


def joint_from_lor(beta_prev: float, beta_curr: float, lor: float) -> np.ndarray:
    """Joint table of an adjacent locus pair.

    Rows follow the current locus (``1 - beta_curr, beta_curr``) and columns
    the previous one (``1 - beta_prev, beta_prev``).
    """
    return ipf(
        lor_seed(lor),
        [1.0 - beta_curr, beta_curr],
        [1.0 - beta_prev, beta_prev],
    )
