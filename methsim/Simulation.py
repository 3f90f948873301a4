"""
Simulation: batch methylome and read simulation with HDF5 output.

Main Classes:
    - SimulationParams: Configuration dataclass for batch simulations

Main Functions:
    - simulate_methylomes: Simulate haplotypes and reads, append to an HDF5 file
    - read_simulation_results: Load parameters or single samples back

Example:
    >>> params = SimulationParams(n_haplotypes=4, n_reads=500, error_rate=0.01, seed=1)
    >>> file = simulate_methylomes(beta, lor, chrom, params, "results/batch1")
    >>> Z, reads = read_simulation_results(file, 0)
"""

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

import h5py
import numpy as np
from tqdm import tqdm

from .errors import DomainError, ShapeMismatchError
from .Methylome import encode_chromosomes, simulate_z
from .Reads import ReadSet, simulate_reads

logger = logging.getLogger(__name__)


@dataclass
class SimulationParams:
    """Parameters for batch methylome simulation.

    Attributes:
        n_samples: Number of independent methylomes (Z matrix + reads).
        n_haplotypes: Number of haplotypes (columns of Z) per sample.
        n_reads: Number of reads per sample.
        mean_run_length: Mean number of loci covered by a read.
        error_rate: Probability that an observed call is flipped.
        haplotype_weights: Relative abundance of each haplotype, uniform if None.
        seed: Batch seed; sample k is drawn from ``sample_rng(seed, k)``.
    """

    n_samples: int = 1
    n_haplotypes: int = 2
    n_reads: int = 1000
    mean_run_length: float = 4.0
    error_rate: float = 0.0
    haplotype_weights: list | None = None
    seed: int | None = None

    def validate(self) -> None:
        """Raise DomainError for parameters no simulation can use."""
        if self.n_samples < 0:
            raise DomainError(f"n_samples must be >= 0, got {self.n_samples}")
        if self.n_haplotypes < 1:
            raise DomainError(f"n_haplotypes must be >= 1, got {self.n_haplotypes}")
        if self.n_reads < 0:
            raise DomainError(f"n_reads must be >= 0, got {self.n_reads}")
        if self.mean_run_length < 1:
            raise DomainError(f"mean_run_length must be >= 1, got {self.mean_run_length}")
        if not 0.0 <= self.error_rate <= 1.0:
            raise DomainError(f"error_rate must lie in [0, 1], got {self.error_rate}")
        if self.haplotype_weights is not None:
            weights = np.asarray(self.haplotype_weights, dtype=np.float64)
            if weights.size != self.n_haplotypes:
                raise DomainError(
                    f"len(haplotype_weights) != n_haplotypes: "
                    f"{weights.size} != {self.n_haplotypes}"
                )
            if np.any(weights < 0) or weights.sum() <= 0:
                raise DomainError("haplotype_weights must be non-negative with a positive sum")
        if self.seed is not None and self.seed < 0:
            raise DomainError(f"seed must be >= 0, got {self.seed}")


def sample_rng(seed: int | None, index: int) -> np.random.Generator:
    """Generator for the sample stored at 0-based position ``index`` of a file.

    Keyed on the batch seed and the sample's position, so samples appended
    later with the same seed continue the batch instead of repeating it.
    """
    if seed is None:
        return np.random.default_rng()
    return np.random.default_rng([seed, index])


def simulate_methylomes(
    beta,
    lor,
    chrom,
    params: SimulationParams,
    filename: str,
    progress: bool = True,
) -> str:
    """Simulate methylomes and reads, writing each sample to an HDF5 file.

    For every sample a state matrix is simulated with
    :func:`methsim.Methylome.simulate_z` and reads are drawn from it with
    :func:`methsim.Reads.simulate_reads`. Samples are appended, so calling
    this again on the same file adds samples to it.

    Args:
        beta: Marginal methylation probability of each locus.
        lor: Base-2 log odds-ratio of each adjacent same-chromosome pair.
        chrom: Chromosome id of each locus.
        params: Batch parameters.
        filename: Output file name; the suffix is replaced by ``.h5``.
        progress: Show a tqdm progress bar over samples.

    Returns:
        str: Path to the HDF5 file.

    HDF5 Structure:
        Datasets:
            - beta, lor, chrom: The locus annotation
            - z_flat / z_lengths: Flattened Z matrices (row major) per sample
            - read_counts: Number of reads per sample
            - read_haplotype, read_first_locus, read_run_length: Read descriptors
            - read_calls / read_truth: Observed and error-free calls
        Attributes:
            - n_samples: Samples written so far
            - n_loci, n_haplotypes and the remaining SimulationParams fields
    """
    params.validate()
    beta = np.asarray(beta, dtype=np.float64)
    lor = np.asarray(lor, dtype=np.float64)
    chrom_str = np.asarray([str(c) for c in chrom], dtype=object)

    writer = _H5Writer(filename, params, beta, lor, chrom_str)
    logger.info("Save methylomes in HDF5 file: %s", writer.filename)
    first_index = writer.n_samples
    try:
        for k in tqdm(range(params.n_samples), desc="Simulating methylomes", disable=not progress):
            rng = sample_rng(params.seed, first_index + k)
            z = simulate_z(beta, lor, chrom_str, params.n_haplotypes, rng=rng)
            read_set = simulate_reads(
                z,
                chrom_str,
                params.n_reads,
                mean_run_length=params.mean_run_length,
                error_rate=params.error_rate,
                haplotype_weights=params.haplotype_weights,
                rng=rng,
            )
            writer.write_sample(z, read_set)
    finally:
        file_out = writer.close()
    return str(file_out)


def _append(ds: h5py.Dataset, values: np.ndarray) -> None:
    old_size = ds.shape[0]
    ds.resize((old_size + len(values),))
    ds[old_size:] = values


class _H5Writer:
    """Incremental writer of simulated samples to an HDF5 file."""

    _GROWABLE = {
        "z_flat": "i1",
        "z_lengths": "i8",
        "read_counts": "i8",
        "read_haplotype": "i8",
        "read_first_locus": "i8",
        "read_run_length": "i8",
        "read_calls": "i1",
        "read_truth": "i1",
    }

    def __init__(
        self,
        filename: str,
        params: SimulationParams,
        beta: np.ndarray,
        lor: np.ndarray,
        chrom: np.ndarray,
    ):
        self.filename = Path(filename).with_suffix(".h5")
        self.filename.parent.mkdir(parents=True, exist_ok=True)

        mode = "a" if self.filename.exists() else "w"
        self.f = h5py.File(self.filename, mode)

        if "z_flat" in self.f:
            self._check_compatible(params, beta, lor, chrom)
            self.n_samples = int(self.f.attrs["n_samples"])
            return
        self.n_samples = 0

        for name, value in asdict(params).items():
            # h5py attributes cannot hold None
            if name in ("haplotype_weights", "seed"):
                value = json.dumps(value)
            self.f.attrs[name] = value
        self.f.attrs["n_loci"] = beta.size
        self.f.attrs["n_samples"] = 0

        self.f.create_dataset("beta", data=beta)
        self.f.create_dataset("lor", data=lor)
        self.f.create_dataset("chrom", data=chrom, dtype=h5py.string_dtype())
        for name, dtype in self._GROWABLE.items():
            compression = {"compression": "gzip", "compression_opts": 4} if dtype == "i1" else {}
            self.f.create_dataset(
                name, shape=(0,), maxshape=(None,), dtype=dtype, chunks=True, **compression
            )

    def _check_compatible(
        self,
        params: SimulationParams,
        beta: np.ndarray,
        lor: np.ndarray,
        chrom: np.ndarray,
    ) -> None:
        attrs = self.f.attrs
        n_loci = int(attrs["n_loci"])
        n_haplotypes = int(attrs["n_haplotypes"])
        stored = {
            "n_reads": int(attrs["n_reads"]),
            "mean_run_length": float(attrs["mean_run_length"]),
            "error_rate": float(attrs["error_rate"]),
            "haplotype_weights": json.loads(attrs["haplotype_weights"]),
            "seed": json.loads(attrs["seed"]),
        }
        same_annotation = (
            n_loci == beta.size
            and np.array_equal(self.f["beta"][:], beta)
            and np.array_equal(self.f["lor"][:], lor)
            and list(self.f["chrom"].asstr()[:]) == list(chrom)
        )
        requested = asdict(params)
        if requested["haplotype_weights"] is not None:
            requested["haplotype_weights"] = [float(w) for w in requested["haplotype_weights"]]
        changed = [name for name, value in stored.items() if requested[name] != value]

        if n_loci != beta.size:
            self.f.close()
            raise ShapeMismatchError(f"{self.filename} holds {n_loci} loci, got {beta.size}")
        if not same_annotation:
            self.f.close()
            raise ShapeMismatchError(f"{self.filename} holds a different beta/lor/chrom annotation")
        if n_haplotypes != params.n_haplotypes:
            self.f.close()
            raise ShapeMismatchError(
                f"{self.filename} holds {n_haplotypes} haplotypes, got {params.n_haplotypes}"
            )
        if changed:
            self.f.close()
            raise DomainError(
                f"{self.filename} was simulated with different parameters: {', '.join(changed)}"
            )

    def write_sample(self, z: np.ndarray, read_set: ReadSet) -> None:
        """Append one sample to the file."""
        _append(self.f["z_flat"], z.ravel())
        _append(self.f["z_lengths"], [z.size])
        _append(self.f["read_counts"], [len(read_set)])
        _append(self.f["read_haplotype"], read_set.haplotype)
        _append(self.f["read_first_locus"], read_set.first_locus)
        _append(self.f["read_run_length"], read_set.run_length)
        _append(self.f["read_calls"], read_set.calls)
        _append(self.f["read_truth"], read_set.truth)
        self.f.attrs["n_samples"] = int(self.f["z_lengths"].shape[0])

    def close(self) -> Path:
        """Close the HDF5 file and return its path."""
        n_samples = int(self.f.attrs["n_samples"])
        self.f.close()
        logger.info("Wrote %s (%d samples)", self.filename, n_samples)
        return self.filename


def read_simulation_results(filename: str, index: int | None = None):
    """Load simulation parameters or one simulated sample from HDF5.

    Args:
        filename: Path to the HDF5 file (with or without .h5 extension).
        index: None for the parameters, or the 0-based sample number.

    Returns:
        - None → SimulationParams (n_samples = samples in the file)
        - int → Tuple (Z, ReadSet)

    Raises:
        IndexError: If ``index`` is out of range.
        FileNotFoundError: If the file does not exist.
    """
    filename = Path(filename).with_suffix(".h5")
    if not filename.exists():
        raise FileNotFoundError(filename)

    with h5py.File(filename, "r") as f:
        if index is None:
            return SimulationParams(
                n_samples=int(f.attrs["n_samples"]),
                n_haplotypes=int(f.attrs["n_haplotypes"]),
                n_reads=int(f.attrs["n_reads"]),
                mean_run_length=float(f.attrs["mean_run_length"]),
                error_rate=float(f.attrs["error_rate"]),
                haplotype_weights=json.loads(f.attrs["haplotype_weights"]),
                seed=json.loads(f.attrs["seed"]),
            )

        n_samples = int(f.attrs["n_samples"])
        if index < 0 or index >= n_samples:
            raise IndexError(f"Index {index} out of range [0, {n_samples})")

        n_haplotypes = int(f.attrs["n_haplotypes"])
        z_lengths = f["z_lengths"][:]
        z_start = int(z_lengths[:index].sum())
        z = f["z_flat"][z_start : z_start + int(z_lengths[index])]
        z = z.reshape(-1, n_haplotypes)

        read_counts = f["read_counts"][:]
        read_start = int(read_counts[:index].sum())
        read_end = read_start + int(read_counts[index])
        run_lengths = f["read_run_length"][:]
        call_start = int(run_lengths[:read_start].sum())
        run_length = run_lengths[read_start:read_end]
        call_end = call_start + int(run_length.sum())

        read_set = ReadSet(
            haplotype=f["read_haplotype"][read_start:read_end],
            first_locus=f["read_first_locus"][read_start:read_end],
            run_length=run_length,
            calls=f["read_calls"][call_start:call_end],
            truth=f["read_truth"][call_start:call_end],
        )
        return z, read_set


def read_annotation(filename: str) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Load the (beta, lor, chrom) annotation stored in a simulation file."""
    filename = Path(filename).with_suffix(".h5")
    with h5py.File(filename, "r") as f:
        beta = f["beta"][:]
        lor = f["lor"][:]
        chrom = f["chrom"].asstr()[:]
    return beta, lor, np.asarray(chrom, dtype=object)


def annotation_from_table(table) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Convert a per-locus table (chrom, beta, lor) to simulator arrays.

    ``lor`` in the table belongs to the pair formed with the next locus on
    the same chromosome and is ignored on the last locus of a chromosome.
    """
    missing = {"chrom", "beta", "lor"} - set(table.columns)
    if missing:
        raise ShapeMismatchError(f"locus table lacks columns: {sorted(missing)}")
    chrom = table["chrom"].astype(str).to_numpy(dtype=object)
    beta = table["beta"].to_numpy(dtype=np.float64)
    codes, _ = encode_chromosomes(chrom)
    has_next = np.zeros(codes.size, dtype=bool)
    has_next[:-1] = codes[:-1] == codes[1:]
    lor = table["lor"].to_numpy(dtype=np.float64)[has_next]
    return beta, lor, chrom
