"""
Plotter module for figures of simulated methylomes and reads.

Key features:
- Consistent rcParams styling (serif fonts, inward ticks on all sides)
- Subplot creation with automatic panel labels (A, B, C, ...)
- Heat-map of the loci x haplotypes state matrix
- Pile-up of simulated reads with sequencing errors highlighted
"""

from pathlib import Path

import matplotlib.pyplot as plt
import numpy as np
from matplotlib.colors import ListedColormap

from .Reads import ReadSet

FIGSIZE = (13, 4)

# unset, unmethylated, methylated
STATE_CMAP = ListedColormap(["lightgrey", "white", "black"])
UNMETHYLATED_COLOR = "royalblue"
METHYLATED_COLOR = "crimson"


class Plotter:
    """
    Plotting utility for simulated methylation data.

    Typical workflow:
        plot = Plotter()
        plot.new(nrows=2, ncols=1)
        plot.plot_haplotypes(Z, ax=plot.axes[0])
        plot.plot_reads(read_set, ax=plot.axes[1])
        plot.label_subplots()
        plot.save_figure("methylome")
    """

    def __init__(self, fig_size: tuple = FIGSIZE) -> None:
        self.figure_number: int = 0
        self.fig_size: tuple[int, int] = fig_size
        self.font_size: int = 14
        self.fig = None
        self.axes = None

        plt.rcParams["font.family"] = "serif"
        plt.rcParams.update({"axes.titlesize": self.font_size})
        plt.rcParams.update({"axes.labelsize": self.font_size})
        plt.rcParams.update({"xtick.labelsize": self.font_size * 0.83})
        plt.rcParams.update({"ytick.labelsize": self.font_size * 0.83})
        plt.rcParams.update({"legend.fontsize": self.font_size * 0.83})

        plt.rcParams["xtick.direction"] = "in"
        plt.rcParams["ytick.direction"] = "in"
        plt.rcParams["xtick.top"] = True
        plt.rcParams["xtick.bottom"] = True
        plt.rcParams["ytick.left"] = True
        plt.rcParams["ytick.right"] = True

    @property
    def panels(self):
        """Flat iterable over the axes created by new()."""
        if self.axes is None:
            return None
        return np.atleast_1d(self.axes).flat

    def new(self, fig_size=None, constrained_layout=True, nrows=1, ncols=1, **kwargs):
        """
        Create a new figure with subplots and store it on the plotter.

        Args:
            fig_size: Figure size as (width, height) tuple. If None, uses default.
            constrained_layout: If True (default), adjust spacing automatically.
            nrows: Number of subplot rows.
            ncols: Number of subplot columns.
            **kwargs: Additional arguments passed to plt.subplots() (e.g., sharex)

        Returns:
            fig: The created matplotlib Figure object (also stored in self.fig)
        """
        if fig_size is not None:
            self.fig_size = fig_size
        self.figure_number += 1
        self.fig, self.axes = plt.subplots(
            nrows=nrows,
            ncols=ncols,
            figsize=self.fig_size,
            constrained_layout=constrained_layout,
            **kwargs,
        )
        return self.fig

    def label_subplots(self, labels=None, start="A"):
        """Add panel labels (A, B, C... or custom ones) to all subplots."""
        if self.axes is None:
            return

        axes_flat = np.atleast_1d(self.axes).flatten()
        if labels is None:
            labels = [chr(ord(start) + i) for i in range(len(axes_flat))]

        for ax, label in zip(axes_flat, labels):
            ax.text(
                -0.1,
                1.1,
                s=f"$\\bf{{{label})}}$",
                transform=ax.transAxes,
                fontsize=self.font_size * 1.2,
                fontweight="bold",
                va="top",
                ha="right",
            )

    def plot_haplotypes(self, Z, ax=None, first_locus: int = 1):
        """
        Show the loci x haplotypes state matrix as a heat-map.

        Haplotypes are drawn as rows and loci as columns; methylated calls are
        black, unmethylated white and unset cells grey.

        Args:
            Z: Loci x haplotypes matrix of 0/1 (or -1 unset) states.
            ax: Axes to draw on; the current axes if None.
            first_locus: 1-based locus number of the first row of Z.

        Returns:
            The matplotlib AxesImage.
        """
        z = np.asarray(Z)
        if ax is None:
            ax = plt.gca()
        n_loci, n_haplotypes = z.shape
        image = ax.imshow(
            z.T + 1,
            aspect="auto",
            interpolation="nearest",
            cmap=STATE_CMAP,
            vmin=0,
            vmax=2,
            extent=(first_locus - 0.5, first_locus + n_loci - 0.5, n_haplotypes + 0.5, 0.5),
        )
        ax.set_xlabel("locus")
        ax.set_ylabel("haplotype")
        ax.set_yticks(np.arange(1, n_haplotypes + 1))
        return image

    def plot_reads(self, read_set: ReadSet, ax=None, max_reads: int = 200, errors: bool = True):
        """
        Draw reads as rows of calls, stacked in order of their first locus.

        Args:
            read_set: Simulated reads.
            ax: Axes to draw on; the current axes if None.
            max_reads: Draw at most this many reads.
            errors: Circle calls that differ from the error-free truth.
        """
        if ax is None:
            ax = plt.gca()

        df = read_set.to_dataframe()
        order = np.argsort(read_set.first_locus, kind="stable")[:max_reads]
        row_of_read = {int(read_id): row for row, read_id in enumerate(order)}
        df = df[df["read_id"].isin(row_of_read)]
        rows = df["read_id"].map(row_of_read).to_numpy()

        for read_id, row in row_of_read.items():
            start = read_set.first_locus[read_id]
            end = start + read_set.run_length[read_id] - 1
            ax.plot([start, end], [row, row], color="grey", linewidth=0.5, zorder=1)

        colors = np.where(df["state"].to_numpy() == 1, METHYLATED_COLOR, UNMETHYLATED_COLOR)
        ax.scatter(df["locus"], rows, c=colors, s=8, zorder=2)
        if errors:
            wrong = (df["state"] != df["true_state"]).to_numpy()
            ax.scatter(
                df["locus"][wrong],
                rows[wrong],
                facecolors="none",
                edgecolors="orange",
                s=40,
                zorder=3,
                label="error",
            )
        ax.set_xlabel("locus")
        ax.set_ylabel("read")
        ax.invert_yaxis()

    def save_figure(self, filename: str = "figure", directory: str = "figures") -> Path:
        """
        Save the current figure as "{directory}/{filename}_{figure_number}.png".

        Returns:
            Path of the written file.
        """
        fileout = Path(directory) / f"{filename}_{self.figure_number}.png"
        fileout.parent.mkdir(parents=True, exist_ok=True)
        plt.savefig(fileout, dpi=300, bbox_inches="tight")
        return fileout
