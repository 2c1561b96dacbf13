"""
Grid state and spatial source fields.

:class:`GridState` owns the elevation field, its previous-timestep snapshot,
the per-cell uplift rate and the isostatic root depth.  It carries no solving
logic; solvers mutate ``elevation`` in place and read ``previous``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum

import numpy as np

from .boundary import BoundaryConditions
from .flow import fill_depressions

logger = logging.getLogger(__name__)


class UpliftMode(IntEnum):
    """Spatial pattern of the uplift field."""

    BLOCK = 0
    TILT = 1
    GAUSSIAN = 2
    QUADRATIC = 3


@dataclass
class GridState:
    """Elevation field and the per-cell fields that travel with it.

    Attributes
    ----------
    elevation : np.ndarray
        Current elevation, shape ``(nrows, ncols)``.
    dx : float
        Cell size (square cells).
    xmin, ymin : float
        Lower-left origin of the grid.
    nodata : float
        No-data sentinel; cells holding it never evolve.
    previous : np.ndarray
        Elevation at the start of the current step.
    uplift_rate : np.ndarray
        Uplift rate per cell (length per unit time).
    root_depth : np.ndarray
        Isostatic root depth per cell.
    """

    elevation: np.ndarray
    dx: float = 10.0
    xmin: float = 0.0
    ymin: float = 0.0
    nodata: float = -99.0
    previous: np.ndarray = field(default=None)
    uplift_rate: np.ndarray = field(default=None)
    root_depth: np.ndarray = field(default=None)

    def __post_init__(self) -> None:
        self.elevation = np.asarray(self.elevation, dtype=float)
        if self.elevation.ndim != 2:
            raise ValueError("elevation must be a 2-D array")
        if self.previous is None:
            self.previous = self.elevation.copy()
        if self.uplift_rate is None:
            self.uplift_rate = np.zeros_like(self.elevation)
        if self.root_depth is None:
            self.root_depth = np.zeros_like(self.elevation)

    @classmethod
    def flat(cls, nrows: int, ncols: int, dx: float = 10.0, **kwargs) -> "GridState":
        """Zero-elevation grid of the given size."""
        return cls(np.zeros((nrows, ncols)), dx=dx, **kwargs)

    @property
    def shape(self) -> tuple[int, int]:
        return self.elevation.shape

    @property
    def nrows(self) -> int:
        return self.elevation.shape[0]

    @property
    def ncols(self) -> int:
        return self.elevation.shape[1]

    def valid_mask(self) -> np.ndarray:
        """Cells that hold data."""
        return np.isfinite(self.elevation) & (self.elevation != self.nodata)

    def snapshot(self) -> None:
        """Copy the current elevation into :attr:`previous`."""
        self.previous = self.elevation.copy()

    def copy(self) -> "GridState":
        return GridState(
            self.elevation.copy(), dx=self.dx, xmin=self.xmin, ymin=self.ymin,
            nodata=self.nodata, previous=self.previous.copy(),
            uplift_rate=self.uplift_rate.copy(),
            root_depth=self.root_depth.copy(),
        )

    def apply_uplift(self, dt: float, boundary: BoundaryConditions) -> None:
        """Add ``uplift_rate * dt`` on valid, non-base-level cells."""
        mask = self.valid_mask() & ~boundary.base_level_mask(self.shape)
        self.elevation[mask] += self.uplift_rate[mask] * dt

    def erosion_rate(self, dt: float) -> np.ndarray:
        """Erosion rate implied by the change since :meth:`snapshot`.

        ``(previous - elevation + uplift_rate * dt) / dt``; no-data cells
        are ``NaN``.
        """
        rate = (self.previous - self.elevation + self.uplift_rate * dt) / dt
        rate[~self.valid_mask()] = np.nan
        return rate


# ---------------------------------------------------------------------------
# Uplift field
# ---------------------------------------------------------------------------

def generate_uplift_field(
    mode: UpliftMode | int,
    max_uplift: float,
    shape: tuple[int, int],
    boundary: BoundaryConditions | None = None,
) -> np.ndarray:
    """Build the per-cell uplift rate for one of the :class:`UpliftMode` patterns.

    Parameters
    ----------
    mode : UpliftMode or int
        ``BLOCK`` (uniform), ``TILT`` (linear from south to north),
        ``GAUSSIAN`` (bell centred on the grid) or ``QUADRATIC`` (dome
        clipped at zero).
    max_uplift : float
        Peak uplift rate.
    shape : tuple of int
        Grid shape.
    boundary : BoundaryConditions or None
        When given, base-level cells receive zero uplift.

    Returns
    -------
    np.ndarray
        Uplift rate, same shape as the grid.
    """
    mode = UpliftMode(mode)
    nrows, ncols = shape
    ii, jj = np.indices(shape, dtype=float)

    if mode is UpliftMode.BLOCK:
        field_ = np.full(shape, float(max_uplift))
    elif mode is UpliftMode.TILT:
        field_ = (nrows - ii - 1) * max_uplift / max(nrows - 1, 1)
    elif mode is UpliftMode.GAUSSIAN:
        mu_i, mu_j = nrows // 2, ncols // 2
        sigma_i, sigma_j = max(nrows // 10, 1), max(ncols // 10, 1)
        exponent = ((ii - mu_i) ** 2 / (2 * sigma_i ** 2)
                    + (jj - mu_j) ** 2 / (2 * sigma_j ** 2))
        field_ = max_uplift * np.power(1.1, -exponent)
    else:
        x = 2.0 * ii / max(nrows - 1, 1) - 1.0
        y = 2.0 * jj / max(ncols - 1, 1) - 1.0
        field_ = np.clip(max_uplift * (1.0 - x ** 2 - y ** 2), 0.0, None)

    if boundary is not None:
        field_[boundary.base_level_mask(shape)] = 0.0
    return field_


# ---------------------------------------------------------------------------
# Initial surface
# ---------------------------------------------------------------------------

def add_surface_noise(
    grid: GridState,
    boundary: BoundaryConditions,
    amplitude: float,
    rng: np.random.Generator,
) -> None:
    """Add uniform noise in ``[0, amplitude)`` to valid, non-base-level cells."""
    mask = grid.valid_mask() & ~boundary.base_level_mask(grid.shape)
    grid.elevation[mask] += rng.uniform(0.0, amplitude, size=int(mask.sum()))


def create_initial_grid(
    nrows: int,
    ncols: int,
    dx: float,
    boundary: BoundaryConditions,
    noise: float = 0.1,
    rng: np.random.Generator | None = None,
    nodata: float = -99.0,
) -> GridState:
    """Synthesise a flat grid with a small random perturbation.

    The perturbed surface is filled so that every cell drains to base
    level before the first step.
    """
    rng = rng if rng is not None else np.random.default_rng()
    grid = GridState.flat(nrows, ncols, dx=dx, nodata=nodata)
    if noise > 0:
        add_surface_noise(grid, boundary, noise, rng)
        grid.elevation = fill_depressions(grid.elevation, boundary, dx=dx)
    grid.snapshot()
    logger.debug(
        "Initial grid %dx%d, dx=%.2f, noise=%.3g", nrows, ncols, dx, noise,
    )
    return grid
