import numpy as np
import pandas as pd
import pytest

from methsim.errors import DomainError, ShapeMismatchError
from methsim.Reads import ReadSet
from methsim.Simulation import (
    SimulationParams,
    annotation_from_table,
    read_annotation,
    read_simulation_results,
    simulate_methylomes,
)


def _genome(n_loci=40):
    rng = np.random.default_rng(3)
    beta = rng.random(n_loci)
    chrom = ["chrI"] * (n_loci // 2) + ["chrII"] * (n_loci - n_loci // 2)
    lor = rng.normal(1.0, 0.5, size=n_loci - 2)
    return beta, lor, chrom


def test_params_validation():
    SimulationParams().validate()
    with pytest.raises(DomainError):
        SimulationParams(n_haplotypes=0).validate()
    with pytest.raises(DomainError):
        SimulationParams(error_rate=1.2).validate()
    with pytest.raises(DomainError):
        SimulationParams(mean_run_length=0.5).validate()
    with pytest.raises(DomainError):
        SimulationParams(n_haplotypes=2, haplotype_weights=[1.0]).validate()
    with pytest.raises(DomainError):
        SimulationParams(n_haplotypes=2, haplotype_weights=[0.0, 0.0]).validate()


def test_simulate_and_read_back(tmp_path):
    beta, lor, chrom = _genome()
    params = SimulationParams(
        n_samples=3, n_haplotypes=4, n_reads=50, error_rate=0.05, seed=1
    )
    filename = simulate_methylomes(
        beta, lor, chrom, params, str(tmp_path / "batch"), progress=False
    )
    assert filename.endswith(".h5")

    loaded = read_simulation_results(filename)
    assert loaded == params

    for index in range(3):
        z, read_set = read_simulation_results(filename, index)
        assert z.shape == (40, 4)
        assert isinstance(read_set, ReadSet)
        assert len(read_set) == 50
        assert read_set.calls.size == read_set.run_length.sum()
        # error-free calls are exactly the windows of Z
        flat = np.concatenate(
            [
                z[f - 1 : f - 1 + n, h - 1]
                for h, f, n in zip(read_set.haplotype, read_set.first_locus, read_set.run_length)
            ]
        )
        assert np.array_equal(flat, read_set.truth)

    with pytest.raises(IndexError):
        read_simulation_results(filename, 3)

    beta_r, lor_r, chrom_r = read_annotation(filename)
    assert np.allclose(beta_r, beta)
    assert np.allclose(lor_r, lor)
    assert list(chrom_r) == chrom


def test_seeded_runs_are_reproducible(tmp_path):
    beta, lor, chrom = _genome()
    params = SimulationParams(n_samples=1, n_haplotypes=2, n_reads=20, seed=9)
    a = simulate_methylomes(beta, lor, chrom, params, str(tmp_path / "a"), progress=False)
    b = simulate_methylomes(beta, lor, chrom, params, str(tmp_path / "b"), progress=False)
    za, ra = read_simulation_results(a, 0)
    zb, rb = read_simulation_results(b, 0)
    assert np.array_equal(za, zb)
    assert np.array_equal(ra.calls, rb.calls)


def test_append_samples(tmp_path):
    beta, lor, chrom = _genome()
    filename = str(tmp_path / "append.h5")
    simulate_methylomes(
        beta, lor, chrom, SimulationParams(n_samples=2, n_reads=10), filename, progress=False
    )
    simulate_methylomes(
        beta, lor, chrom, SimulationParams(n_samples=1, n_reads=10), filename, progress=False
    )
    assert read_simulation_results(filename).n_samples == 3

    with pytest.raises(ShapeMismatchError):
        simulate_methylomes(
            beta[:-1], lor[:-1], chrom[:-1], SimulationParams(n_samples=1), filename, progress=False
        )


def test_append_with_same_seed_continues_batch(tmp_path):
    beta, lor, chrom = _genome()
    params = SimulationParams(n_samples=1, n_haplotypes=4, n_reads=30, seed=1)
    appended = str(tmp_path / "appended.h5")
    simulate_methylomes(beta, lor, chrom, params, appended, progress=False)
    simulate_methylomes(beta, lor, chrom, params, appended, progress=False)

    z0, r0 = read_simulation_results(appended, 0)
    z1, r1 = read_simulation_results(appended, 1)
    assert not np.array_equal(z0, z1)
    assert not np.array_equal(r0.first_locus, r1.first_locus)

    # the same two samples as a single run of two
    batch = SimulationParams(n_samples=2, n_haplotypes=4, n_reads=30, seed=1)
    whole = simulate_methylomes(beta, lor, chrom, batch, str(tmp_path / "whole"), progress=False)
    zw, rw = read_simulation_results(whole, 1)
    assert np.array_equal(zw, z1)
    assert np.array_equal(rw.calls, r1.calls)


def test_append_rejects_other_annotation_or_params(tmp_path):
    beta, lor, chrom = _genome()
    params = SimulationParams(n_samples=1, n_reads=10, error_rate=0.0, seed=2)
    filename = str(tmp_path / "batch.h5")
    simulate_methylomes(beta, lor, chrom, params, filename, progress=False)

    other_beta = beta.copy()
    other_beta[0] = 1.0 - other_beta[0]
    with pytest.raises(ShapeMismatchError):
        simulate_methylomes(other_beta, lor, chrom, params, filename, progress=False)
    with pytest.raises(ShapeMismatchError):
        simulate_methylomes(beta, lor + 1.0, chrom, params, filename, progress=False)
    other_chrom = ["chrA"] * 20 + ["chrII"] * 20
    with pytest.raises(ShapeMismatchError):
        simulate_methylomes(beta, lor, other_chrom, params, filename, progress=False)

    for changed in (
        SimulationParams(n_samples=1, n_reads=10, error_rate=0.1, seed=2),
        SimulationParams(n_samples=1, n_reads=20, seed=2),
        SimulationParams(n_samples=1, n_reads=10, mean_run_length=2.0, seed=2),
        SimulationParams(n_samples=1, n_reads=10, haplotype_weights=[1.0, 3.0], seed=2),
    ):
        with pytest.raises(DomainError):
            simulate_methylomes(beta, lor, chrom, changed, filename, progress=False)

    assert read_simulation_results(filename) == params


def test_negative_seed_is_rejected():
    with pytest.raises(DomainError):
        SimulationParams(seed=-1).validate()


def test_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_simulation_results(str(tmp_path / "missing.h5"))


def test_annotation_from_table():
    table = pd.DataFrame(
        {
            "chrom": ["chr1", "chr1", "chr1", "chr2", "chr2"],
            "beta": [0.1, 0.2, 0.3, 0.4, 0.5],
            "lor": [1.0, 2.0, np.nan, 3.0, np.nan],
        }
    )
    beta, lor, chrom = annotation_from_table(table)
    assert beta.tolist() == [0.1, 0.2, 0.3, 0.4, 0.5]
    assert lor.tolist() == [1.0, 2.0, 3.0]
    assert list(chrom) == ["chr1", "chr1", "chr1", "chr2", "chr2"]

    with pytest.raises(ShapeMismatchError):
        annotation_from_table(table.drop(columns=["lor"]))
