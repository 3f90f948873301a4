import numpy as np
import pandas as pd

from methsim.run_simulation import main
from methsim.Simulation import read_annotation, read_simulation_results


def test_random_genome(tmp_path):
    output = tmp_path / "random.h5"
    code = main(
        [
            "--n_loci", "200",
            "--n_chrom", "3",
            "--n_haplotypes", "3",
            "--n_reads", "100",
            "--error_rate", "0.01",
            "--seed", "4",
            "--no_progress",
            "--output", str(output),
        ]
    )
    assert code == 0
    params = read_simulation_results(str(output))
    assert params.n_samples == 1
    assert params.n_haplotypes == 3
    z, reads = read_simulation_results(str(output), 0)
    assert z.shape == (200, 3)
    assert len(reads) == 100


def test_existing_output(tmp_path):
    output = tmp_path / "sim.h5"
    args = ["--n_loci", "50", "--n_reads", "10", "--no_progress", "--output", str(output)]
    assert main(args) == 0
    assert main(args) == 1
    beta, lor, chrom = read_annotation(str(output))

    # appending reuses the stored random genome instead of drawing a new one
    assert main(args + ["--append"]) == 0
    assert read_simulation_results(str(output)).n_samples == 2
    beta_after, lor_after, chrom_after = read_annotation(str(output))
    assert np.array_equal(beta_after, beta)
    assert np.array_equal(lor_after, lor)
    assert list(chrom_after) == list(chrom)

    assert main(args + ["--force"]) == 0
    assert read_simulation_results(str(output)).n_samples == 1


def test_append_reuses_stored_parameters(tmp_path):
    output = tmp_path / "batch.h5"
    common = ["--no_progress", "--output", str(output)]
    assert main(["--n_loci", "50", "--n_reads", "20", "--seed", "5"] + common) == 0
    code = main(
        ["--append", "--n_loci", "30", "--n_reads", "5", "--error_rate", "0.5", "--n_samples", "2"]
        + common
    )
    assert code == 0

    params = read_simulation_results(str(output))
    assert params.n_samples == 3
    assert params.n_reads == 20
    assert params.error_rate == 0.0
    assert params.seed == 5
    z, reads = read_simulation_results(str(output), 2)
    assert z.shape == (50, 2)
    assert len(reads) == 20
    assert np.array_equal(reads.calls, reads.truth)


def test_force_validates_before_overwriting(tmp_path):
    output = tmp_path / "keep.h5"
    args = ["--n_loci", "50", "--n_reads", "10", "--no_progress", "--output", str(output)]
    assert main(args) == 0
    assert main(args + ["--force", "--error_rate", "2"]) == 2
    assert main(args + ["--force", "--n_chrom", "0"]) == 2
    assert output.exists()
    assert read_simulation_results(str(output)).n_samples == 1


def test_locus_table(tmp_path):
    loci = tmp_path / "loci.tsv"
    pd.DataFrame(
        {
            "chrom": ["chr1"] * 4 + ["chr2"] * 3,
            "beta": [0.1, 0.5, 0.9, 0.5, 0.2, 0.2, 0.8],
            "lor": [1.0, 1.0, 1.0, None, 0.5, 0.5, None],
        }
    ).to_csv(loci, sep="\t", index=False)

    output = tmp_path / "table.h5"
    code = main(["--loci", str(loci), "--n_reads", "20", "--no_progress", "--output", str(output)])
    assert code == 0
    z, _ = read_simulation_results(str(output), 0)
    assert z.shape == (7, 2)


def test_invalid_input(tmp_path):
    output = tmp_path / "bad.h5"
    assert main(["--error_rate", "2", "--no_progress", "--output", str(output)]) == 2
    assert main(["--n_chrom", "0", "--no_progress", "--output", str(output)]) == 2
    assert not output.exists()
