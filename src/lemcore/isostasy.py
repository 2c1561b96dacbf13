r"""
Isostatic compensation of the evolving surface.

Two interchangeable policies:

- :class:`AiryIsostasy`: local compensation, cell by cell.
- :class:`FlexuralIsostasy`: regional compensation by an elastic plate,
  computed spectrally (Vening-Meinesz).  The root of a surface load
  :math:`h` is, in the wavenumber domain,

  .. math::

      \hat{w}(k) = \frac{\rho_c}{\rho_m - \rho_c}
                   \frac{\hat{h}(k)}{1 + D k^4 / ((\rho_m - \rho_c) g)}

  where :math:`D` is the flexural rigidity.
"""

from __future__ import annotations

import logging

import numpy as np

from .boundary import BoundaryConditions
from .grid import GridState

logger = logging.getLogger(__name__)

RHO_CRUST = 2650.0
RHO_MANTLE = 3300.0
GRAVITY = 9.81


class AiryIsostasy:
    """Local Airy compensation.

    ``load = z + root``; ``root = load / (1 + (rho_m - rho_c) / rho_c)``;
    ``z = load - root``.  The total ``z + root`` is conserved.
    """

    def __init__(
        self,
        rho_crust: float = RHO_CRUST,
        rho_mantle: float = RHO_MANTLE,
    ) -> None:
        self.rho_crust = rho_crust
        self.rho_mantle = rho_mantle

    def apply(self, grid: GridState, boundary: BoundaryConditions | None = None) -> None:
        valid = grid.valid_mask()
        load = grid.elevation[valid] + grid.root_depth[valid]
        root = load / (1.0 + (self.rho_mantle - self.rho_crust) / self.rho_crust)
        grid.root_depth[valid] = root
        grid.elevation[valid] = load - root


class FlexuralIsostasy:
    """Spectral flexural compensation of an elastic plate.

    A single application puts the root in equilibrium with the current
    load ``z + root``: per wavenumber the root is ``T / (1 + T)`` of the
    load, where ``T`` is :meth:`transfer_function`.  The iterated form
    reaches the same state by repeatedly compensating the surface with
    ``T`` and applying a relaxed fraction of the correction.

    Parameters
    ----------
    rigidity : float
        Flexural rigidity of the plate.
    iterate : bool
        Iterate the correction until the root change falls below
        *tolerance*; otherwise solve for the equilibrium root directly.
    relaxation : float or None
        Fraction of each iterated correction that is applied.  Defaults to
        ``1 / (1 + static_ratio)``, which damps the long-wavelength mode
        in one iteration.
    tolerance : float
        Convergence threshold on the largest root change.
    max_iterations : int
        Iteration cap when *iterate* is set.
    """

    def __init__(
        self,
        rigidity: float = 1e7,
        iterate: bool = False,
        relaxation: float | None = None,
        tolerance: float = 1e-4,
        max_iterations: int = 200,
        rho_crust: float = RHO_CRUST,
        rho_mantle: float = RHO_MANTLE,
        gravity: float = GRAVITY,
    ) -> None:
        self.rigidity = rigidity
        self.iterate = iterate
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.rho_crust = rho_crust
        self.rho_mantle = rho_mantle
        self.gravity = gravity
        self.relaxation = (
            1.0 / (1.0 + self.static_ratio) if relaxation is None else relaxation
        )

    @property
    def static_ratio(self) -> float:
        """Root per unit surface elevation at zero wavenumber, ``rho_c / (rho_m - rho_c)``."""
        return self.rho_crust / (self.rho_mantle - self.rho_crust)

    def transfer_function(self, shape: tuple[int, int], dx: float) -> np.ndarray:
        """Spectral root-per-surface-elevation response on an unshifted FFT grid."""
        ky = np.fft.fftfreq(shape[0], d=dx)
        kx = np.fft.fftfreq(shape[1], d=dx)
        k = 2.0 * np.pi * np.hypot(ky[:, None], kx[None, :])
        drho = self.rho_mantle - self.rho_crust
        return self.static_ratio / (1.0 + self.rigidity * k ** 4 / (drho * self.gravity))

    def _filter(
        self,
        field_: np.ndarray,
        valid: np.ndarray,
        dx: float,
        of_load: bool,
    ) -> np.ndarray:
        """Spectral response of *field_* (surface or load).

        The field is detrended by a least-squares plane and zero-padded to
        the next power of two in each dimension before transforming.  The
        plane itself is compensated with the zero-wavenumber response.
        """
        nrows, ncols = field_.shape
        values = np.where(valid, field_, 0.0)
        trend = _fit_plane(values, valid)
        detrended = np.where(valid, values - trend, 0.0)

        padded_shape = (_next_power_of_two(nrows), _next_power_of_two(ncols))
        padded = np.zeros(padded_shape)
        padded[:nrows, :ncols] = detrended

        response = self.transfer_function(padded_shape, dx)
        if of_load:
            response = response / (1.0 + response)
        root = np.real(np.fft.ifft2(np.fft.fft2(padded) * response))[:nrows, :ncols]
        return root + response[0, 0] * trend

    def _masked(
        self,
        root: np.ndarray,
        valid: np.ndarray,
        boundary: BoundaryConditions | None,
    ) -> np.ndarray:
        root[~valid] = 0.0
        if boundary is not None:
            root[boundary.base_level_mask(root.shape)] = 0.0
        return root

    def compute_root(
        self,
        grid: GridState,
        boundary: BoundaryConditions | None = None,
    ) -> np.ndarray:
        """Root depth in equilibrium with the load ``z + root``.

        Base-level and no-data cells get zero.
        """
        valid = grid.valid_mask()
        load = grid.elevation + grid.root_depth
        return self._masked(self._filter(load, valid, grid.dx, True), valid, boundary)

    def surface_root(
        self,
        grid: GridState,
        boundary: BoundaryConditions | None = None,
    ) -> np.ndarray:
        """Root depth that would support the current surface as it stands."""
        valid = grid.valid_mask()
        return self._masked(
            self._filter(grid.elevation, valid, grid.dx, False), valid, boundary,
        )

    def apply(self, grid: GridState, boundary: BoundaryConditions | None = None) -> int:
        """Move the surface by the change in root depth.

        Returns
        -------
        int
            Number of corrections applied.
        """
        valid = grid.valid_mask()
        if not self.iterate:
            diff = self.compute_root(grid, boundary) - grid.root_depth
            diff[~valid] = 0.0
            grid.elevation -= diff
            grid.root_depth += diff
            return 1

        for iteration in range(1, self.max_iterations + 1):
            diff = self.relaxation * (self.surface_root(grid, boundary) - grid.root_depth)
            diff[~valid] = 0.0
            grid.elevation -= diff
            grid.root_depth += diff
            max_change = float(np.max(np.abs(diff))) if diff.size else 0.0
            logger.debug("Flexure iteration %d: max root change %.3e", iteration, max_change)
            if max_change < self.tolerance:
                return iteration
        logger.warning(
            "Flexural isostasy did not converge in %d iterations", self.max_iterations,
        )
        return self.max_iterations


def _next_power_of_two(n: int) -> int:
    return 1 << max(int(n) - 1, 0).bit_length()


def _fit_plane(z: np.ndarray, valid: np.ndarray) -> np.ndarray:
    """Least-squares plane ``a + b*row + c*col`` through the valid cells."""
    ii, jj = np.indices(z.shape, dtype=float)
    design = np.column_stack([np.ones(int(valid.sum())), ii[valid], jj[valid]])
    if design.shape[0] < 3:
        return np.zeros_like(z)
    coeffs, *_ = np.linalg.lstsq(design, z[valid], rcond=None)
    return coeffs[0] + coeffs[1] * ii + coeffs[2] * jj
