r"""
Implicit stream-power incision on a topologically ordered drainage network.

Erosion follows

.. math::

    \frac{\partial z}{\partial t} = -K A^m S^n

and is solved implicitly in a single pass over the :class:`FlowNetwork`
stack (Braun & Willett, 2013): each cell is updated after its receiver, so
the receiver's new elevation is already known.  For ``n = 1`` the update is
closed-form; otherwise each cell solves a scalar implicit equation by
Newton's method.
"""

from __future__ import annotations

import logging

import numpy as np

from .boundary import BoundaryConditions
from .flow import FlowNetwork
from .grid import GridState

logger = logging.getLogger(__name__)


class FluvialSolver:
    """Stream-power incision with erodibility *K* and exponents *m*, *n*.

    Parameters
    ----------
    K : float
        Erodibility coefficient.
    m, n : float
        Drainage-area and slope exponents.
    threshold : float
        Erosion-rate threshold; rates at or below it produce no incision
        and larger rates are reduced by it.
    tolerance : float
        Absolute elevation tolerance of the per-cell Newton iteration.
    max_iterations : int
        Newton iteration cap per cell.
    """

    def __init__(
        self,
        K: float,
        m: float = 0.5,
        n: float = 1.0,
        threshold: float = 0.0,
        tolerance: float = 1e-3,
        max_iterations: int = 100,
    ) -> None:
        self.K = K
        self.m = m
        self.n = n
        self.threshold = threshold
        self.tolerance = tolerance
        self.max_iterations = max_iterations

    @property
    def linear(self) -> bool:
        return abs(self.n - 1.0) < 1e-4

    def incise(
        self,
        grid: GridState,
        network: FlowNetwork,
        dt: float,
        boundary: BoundaryConditions | None = None,
        K: float | None = None,
    ) -> int:
        """Incise ``grid.elevation`` in place over one time step.

        Parameters
        ----------
        grid : GridState
            Grid to update.
        network : FlowNetwork
            Flow network of the current surface.
        dt : float
            Time-step length.
        boundary : BoundaryConditions or None
            Base-level cells are never modified.
        K : float or None
            Erodibility for this step (defaults to :attr:`K`, e.g. when
            forced periodically).

        Returns
        -------
        int
            Number of cells whose Newton iteration did not converge.
        """
        K = self.K if K is None else K
        if K == 0:
            return 0

        z = grid.elevation.ravel()
        z_start = z.copy()
        area = network.drainage_area(grid.dx)
        dist = network.receiver_distance(grid.dx)
        receivers = network.receivers
        length_code = network.length_code

        skip = ~grid.valid_mask().ravel()
        if boundary is not None:
            skip |= boundary.base_level_mask(grid.shape).ravel()

        linear = self.linear
        failures = 0
        for k in network.stack:
            r = receivers[k]
            if r == k or length_code[k] == 0 or skip[k]:
                continue
            z_rcv = z[r]
            if z_start[k] <= z_rcv:
                continue

            if linear:
                F = K * area[k] ** self.m * dt / dist[k]
                z_new = (z_start[k] + F * z_rcv) / (1.0 + F)
            else:
                F = K * area[k] ** self.m * dt
                z_new, converged = self._newton(z_start[k], z_rcv, F, dist[k])
                if not converged:
                    failures += 1

            if self.threshold > 0:
                rate = (z_start[k] - z_new) / dt
                if rate <= self.threshold:
                    z_new = z_start[k]
                else:
                    z_new = z_start[k] - (rate - self.threshold) * dt
            z[k] = z_new

        grid.elevation = z.reshape(grid.shape)

        if failures:
            logger.warning(
                "Newton incision did not converge in %d iterations for %d cells",
                self.max_iterations, failures,
            )
        return failures

    def _newton(
        self,
        z_old: float,
        z_rcv: float,
        F: float,
        length: float,
    ) -> tuple[float, bool]:
        """Solve ``z - z_old + F * ((z - z_rcv) / length)**n = 0`` for *z*."""
        n = self.n
        z_new = z_old
        for _ in range(self.max_iterations):
            slope = (z_new - z_rcv) / length
            residual = z_new - z_old + F * slope ** n
            derivative = 1.0 + F * (n / length) * slope ** (n - 1.0)
            step = residual / derivative
            candidate = z_new - step
            # Keep the iterate above the receiver so the slope stays positive
            if candidate <= z_rcv:
                candidate = 0.5 * (z_new + z_rcv)
            z_new = candidate
            if abs(step) <= self.tolerance:
                return z_new, True
        return z_new, False

    def erosion_rate(
        self,
        grid: GridState,
        network: FlowNetwork,
        dt: float,
        boundary: BoundaryConditions | None = None,
        K: float | None = None,
    ) -> np.ndarray:
        """Fluvial erosion rate over one step, without modifying *grid*."""
        trial = grid.copy()
        self.incise(trial, network, dt, boundary=boundary, K=K)
        rate = (grid.elevation - trial.elevation) / dt
        rate[~grid.valid_mask()] = 0.0
        return rate


def wash_out(
    grid: GridState,
    network: FlowNetwork,
    threshold_area: float,
) -> int:
    """Restore the step-start elevation on cells above a drainage-area threshold.

    Sediment delivered by hillslope transport into channels is removed, so
    channel cells start the fluvial step at their previous elevation.

    Returns
    -------
    int
        Number of cells restored.
    """
    area = network.drainage_area(grid.dx).reshape(grid.shape)
    channel = (area > threshold_area) & grid.valid_mask()
    grid.elevation[channel] = grid.previous[channel]
    logger.debug("Wash-out restored %d channel cells", int(channel.sum()))
    return int(channel.sum())
