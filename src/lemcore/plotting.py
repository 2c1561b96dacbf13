"""
Plotting utilities for model output.

Provides a time-series figure of a run report, an elevation frame with
hillshade, a slope-area plot, and a Nature-style matplotlib configuration
helper.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import matplotlib.pyplot as plt

from .analysis import fit_slope_area
from .reporting import read_report
from .utils import hillshade


# ---------------------------------------------------------------------------
# Style helper
# ---------------------------------------------------------------------------

def set_nature_style() -> None:
    """Apply Nature-style matplotlib defaults (300 dpi, Helvetica, 8 pt).

    Safe to call multiple times.
    """
    plt.rcParams.update({
        "figure.dpi": 300,
        "font.family": "sans-serif",
        "font.sans-serif": ["Helvetica", "Arial", "DejaVu Sans"],
        "font.size": 8,
        "axes.labelsize": 8,
        "axes.titlesize": 8,
        "axes.linewidth": 0.5,
        "xtick.direction": "in",
        "ytick.direction": "in",
        "xtick.labelsize": 7,
        "ytick.labelsize": 7,
        "savefig.bbox": "tight",
        "savefig.dpi": 300,
    })


# ---------------------------------------------------------------------------
# Public plotting functions
# ---------------------------------------------------------------------------

def plot_report(
    report_path: str | Path,
    save_path: str | Path | None = None,
    figsize: tuple[float, float] = (7, 5),
) -> plt.Figure:
    """Erosion rate, elevation and relief against time for one run.

    Parameters
    ----------
    report_path : str or Path
        Step report written by :class:`~lemcore.reporting.RunReporter`.
    save_path : str or Path or None
        If given, the figure is saved there.
    """
    data = read_report(report_path)
    time = data["Time"]

    fig, axes = plt.subplots(3, 1, figsize=figsize, sharex=True)
    axes[0].plot(time, data["Erosion"], color="firebrick", lw=0.8)
    axes[0].set_ylabel("Erosion rate")

    axes[1].plot(time, data["Max_height"], color="k", lw=0.8, label="max")
    axes[1].plot(time, data["Mean_height"], color="grey", lw=0.8, label="mean")
    axes[1].set_ylabel("Elevation")
    axes[1].legend(frameon=False)

    axes[2].plot(time, data["Relief_3px"], lw=0.8, label="3 px")
    axes[2].plot(time, data["Relief_10m"], lw=0.8, label="10 m")
    axes[2].set_ylabel("Mean relief")
    axes[2].set_xlabel("Time")
    axes[2].legend(frameon=False)

    if save_path is not None:
        fig.savefig(save_path)
    return fig


def plot_elevation_frame(
    elevation: np.ndarray,
    dx: float,
    title: str = "",
    save_path: str | Path | None = None,
    figsize: tuple[float, float] = (5, 4),
) -> plt.Figure:
    """Elevation map draped over its hillshade."""
    fig, ax = plt.subplots(figsize=figsize)
    nrows, ncols = elevation.shape
    extent = (0, ncols * dx, 0, nrows * dx)

    ax.imshow(hillshade(elevation, dx), cmap="gray", extent=extent, vmin=0, vmax=1)
    im = ax.imshow(elevation, cmap="terrain", alpha=0.6, extent=extent)
    fig.colorbar(im, ax=ax, label="Elevation")
    ax.set_title(title)
    ax.set_xlabel("x")
    ax.set_ylabel("y")

    if save_path is not None:
        fig.savefig(save_path)
    return fig


def plot_slope_area(
    A: np.ndarray,
    S: np.ndarray,
    save_path: str | Path | None = None,
    figsize: tuple[float, float] = (4, 4),
) -> plt.Figure:
    """Log-log slope-area scatter with the fitted power law."""
    fig, ax = plt.subplots(figsize=figsize)
    ax.loglog(A, S, ".", ms=2, color="k", alpha=0.4)

    fit = fit_slope_area(A, S)
    if fit["logS_pred"] is not None:
        order = np.argsort(fit["logA"])
        ax.loglog(
            10 ** fit["logA"][order], 10 ** fit["logS_pred"][order], "r-", lw=1,
            label=rf"$k_s$={fit['ks']:.3g}, $\theta$={fit['theta']:.2f}",
        )
        ax.legend(frameon=False)
    ax.set_xlabel("Drainage area")
    ax.set_ylabel("Slope")

    if save_path is not None:
        fig.savefig(save_path)
    return fig
