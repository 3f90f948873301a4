"""
methsim - Simulation of haplotype methylomes and methylation sequencing reads

Main modules:
    ipf - Iterative proportional fitting of 2x2 joint tables
    Methylome - Markov-chain simulation of methylation states per haplotype
    Reads - Read extraction, haplotype selection and error injection
    Simulation - Batch simulation with HDF5 output
    comethylation - Ground-truth summaries of simulated data
    Plotter - Figures of haplotypes and reads
"""

from .errors import (
    MethsimError,
    ValidationError,
    ShapeMismatchError,
    ReadBoundsError,
    DomainError,
)

from .ipf import ipf, lor_seed, joint_from_lor

from .Methylome import (
    simulate_haplotype,
    simulate_z,
    chromosome_ends,
)

from .Reads import (
    ReadSet,
    extract_reads,
    extract_reads_flat,
    split_flat_reads,
    sample_haplotype,
    inject_errors_in_place,
    sample_read_windows,
    simulate_reads,
)

from .Simulation import (
    SimulationParams,
    sample_rng,
    simulate_methylomes,
    read_simulation_results,
    read_annotation,
    annotation_from_table,
)

from .comethylation import methylation_level, pairwise_lor, read_pair_counts

__version__ = "0.1.0"

__all__ = [
    # errors
    "MethsimError",
    "ValidationError",
    "ShapeMismatchError",
    "ReadBoundsError",
    "DomainError",
    # ipf
    "ipf",
    "lor_seed",
    "joint_from_lor",
    # Methylome
    "simulate_haplotype",
    "simulate_z",
    "chromosome_ends",
    # Reads
    "ReadSet",
    "extract_reads",
    "extract_reads_flat",
    "split_flat_reads",
    "sample_haplotype",
    "inject_errors_in_place",
    "sample_read_windows",
    "simulate_reads",
    # Simulation
    "SimulationParams",
    "sample_rng",
    "simulate_methylomes",
    "read_simulation_results",
    "read_annotation",
    "annotation_from_table",
    # comethylation
    "methylation_level",
    "pairwise_lor",
    "read_pair_counts",
]
