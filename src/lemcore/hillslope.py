r"""
Implicit hillslope sediment transport.

Three solvers share one sparse assembly (:class:`DiffusionSystem`) and one
ILU-preconditioned BiCGSTAB solve (:func:`solve_sparse`):

- :class:`LinearDiffusionSolver`: constant diffusivity, one solve per step.
- :class:`NonlinearDiffusionSolver`: critical-slope limited flux

  .. math::

      q_s = \frac{D \, \nabla z}{1 - (|\nabla z| / S_c)^2}

  re-linearised by Picard iteration within each step.
- :class:`AdaptiveCreepSolver`: the nonlinear scheme over the whole grid,
  with uplift and fluvial erosion as source terms and an adaptive time step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np
from scipy.sparse import coo_matrix, csr_matrix
from scipy.sparse.linalg import LinearOperator, bicgstab, spilu

from .boundary import BoundaryConditions
from .grid import GridState

logger = logging.getLogger(__name__)

CARDINAL_OFFSETS: tuple[tuple[int, int], ...] = ((-1, 0), (1, 0), (0, -1), (0, 1))
"""Face neighbours of the five-point stencil (north, south, west, east)."""

MAX_SLOPE_RATIO = 0.99
"""Upper bound on ``(S / S_c)**2`` so face conductances stay finite."""


class SolverDivergenceError(RuntimeError):
    """The adaptive time step shrank below its floor without converging."""


# ---------------------------------------------------------------------------
# Shared sparse machinery
# ---------------------------------------------------------------------------

def solve_sparse(
    matrix: csr_matrix,
    rhs: np.ndarray,
    x0: np.ndarray | None = None,
    rtol: float = 1e-6,
    maxiter: int = 200,
) -> tuple[np.ndarray, int]:
    """Solve ``matrix @ x = rhs`` with incomplete-LU preconditioned BiCGSTAB.

    Parameters
    ----------
    matrix : csr_matrix
        Square sparse system matrix.
    rhs : np.ndarray
        Right-hand side.
    x0 : np.ndarray or None
        Initial guess.
    rtol : float
        Relative residual tolerance.
    maxiter : int
        Iteration cap.

    Returns
    -------
    x : np.ndarray
        Solution (the last iterate when the cap is reached).
    info : int
        ``0`` on convergence, otherwise the number of iterations performed.

    Raises
    ------
    np.linalg.LinAlgError
        If BiCGSTAB breaks down.
    """
    A = matrix.tocsc()
    try:
        ilu = spilu(A, drop_tol=0.0, fill_factor=1.0)
        M = LinearOperator(A.shape, matvec=ilu.solve)
    except RuntimeError:
        logger.warning(
            "Incomplete LU factorisation failed; solving unpreconditioned",
            exc_info=True,
        )
        M = None

    x, info = bicgstab(A, rhs, x0=x0, rtol=rtol, atol=0.0, maxiter=maxiter, M=M)
    if info > 0:
        logger.warning(
            "BiCGSTAB did not reach rtol=%.1e within %d iterations", rtol, maxiter,
        )
    elif info < 0:
        raise np.linalg.LinAlgError(f"BiCGSTAB breakdown (info={info})")
    return x, info


class DiffusionSystem:
    r"""Index map and five-point assembly for an implicit diffusion step.

    Each unknown cell *c* contributes the row

    .. math::

        \Bigl(1 + \sum_f k_f\Bigr) z_c - \sum_f k_f z_f = b_c

    where *f* runs over the faces shared with valid neighbours and
    :math:`k_f` is the dimensionless face conductance.  Neighbours that are
    not unknowns (base level) are moved to the right-hand side; pinned
    unknowns get an identity row; missing neighbours (no-flux edges and
    no-data cells) drop their face.

    Parameters
    ----------
    shape : tuple of int
        Grid shape.
    boundary : BoundaryConditions
        Supplies the neighbour mapping (periodic wrap, edge omission).
    unknown : np.ndarray
        Boolean mask of cells solved for.
    pinned : np.ndarray or None
        Subset of *unknown* held at their right-hand-side value.
    valid : np.ndarray or None
        Cells holding data; defaults to all cells.
    """

    def __init__(
        self,
        shape: tuple[int, int],
        boundary: BoundaryConditions,
        unknown: np.ndarray,
        pinned: np.ndarray | None = None,
        valid: np.ndarray | None = None,
    ) -> None:
        self.shape = shape
        self.unknown = np.asarray(unknown, dtype=bool)
        self.valid = np.ones(shape, dtype=bool) if valid is None else valid
        self.pinned = (
            np.zeros(shape, dtype=bool) if pinned is None
            else np.asarray(pinned, dtype=bool) & self.unknown
        )
        self.size = int(self.unknown.sum())

        self.index = np.full(shape, -1, dtype=np.int64)
        self.index[self.unknown] = np.arange(self.size)

        self.neighbours = []
        for drow, dcol in CARDINAL_OFFSETS:
            rows, cols, ok = boundary.neighbour_indices(shape, drow, dcol)
            ok = ok & self.valid[rows, cols] & self.valid
            self.neighbours.append((rows, cols, ok))

    @classmethod
    def for_grid(
        cls,
        grid: GridState,
        boundary: BoundaryConditions,
    ) -> "DiffusionSystem":
        """Unknowns are the valid cells off the fixed-elevation edges."""
        valid = grid.valid_mask()
        unknown = valid & ~boundary.base_level_mask(grid.shape)
        return cls(grid.shape, boundary, unknown, valid=valid)

    def matches(self, grid: GridState) -> bool:
        return self.shape == grid.shape and np.array_equal(
            self.valid, grid.valid_mask(),
        )

    def face_conductances(
        self,
        z: np.ndarray,
        front: float,
        dx: float,
        S_c: float = np.inf,
    ) -> list[np.ndarray]:
        """Per-face conductances evaluated on the elevation iterate *z*.

        ``front / (1 - (dz / dx / S_c)**2)``, the ratio clipped at
        :data:`MAX_SLOPE_RATIO`.  An infinite *S_c* gives ``front``
        everywhere.
        """
        out = []
        for rows, cols, ok in self.neighbours:
            if np.isinf(S_c):
                out.append(np.full(self.shape, front))
                continue
            dz = np.where(ok, z[rows, cols] - z, 0.0)
            ratio = np.clip((dz / dx) ** 2 / S_c ** 2, 0.0, MAX_SLOPE_RATIO)
            out.append(front / (1.0 - ratio))
        return out

    def matrix(self, conductances: list[np.ndarray]) -> csr_matrix:
        """Sparse system matrix for one conductance per entry of
        :data:`CARDINAL_OFFSETS` (grid-shaped arrays)."""
        u = self.unknown
        free = ~self.pinned[u]
        k = self.index[u]
        diag = np.ones(self.size)

        row_parts, col_parts, val_parts = [k], [k], []
        for (rows, cols, ok), coeff in zip(self.neighbours, conductances):
            active = ok[u] & free
            c = coeff[u]
            nb = self.index[rows, cols][u]
            diag[active] += c[active]

            inner = active & (nb >= 0)
            row_parts.append(k[inner])
            col_parts.append(nb[inner])
            val_parts.append(-c[inner])

        val_parts.insert(0, diag)
        return coo_matrix(
            (np.concatenate(val_parts),
             (np.concatenate(row_parts), np.concatenate(col_parts))),
            shape=(self.size, self.size),
        ).tocsr()

    def rhs(
        self,
        conductances: list[np.ndarray],
        rhs_base: np.ndarray,
        fixed_values: np.ndarray,
    ) -> np.ndarray:
        """Right-hand side: *rhs_base* plus Dirichlet terms of fixed neighbours."""
        u = self.unknown
        free = ~self.pinned[u]
        b = np.asarray(rhs_base, dtype=float)[u].copy()
        for (rows, cols, ok), coeff in zip(self.neighbours, conductances):
            fixed = ok[u] & free & (self.index[rows, cols][u] < 0)
            b[fixed] += coeff[u][fixed] * fixed_values[rows, cols][u][fixed]
        return b

    def assemble(
        self,
        conductances: list[np.ndarray],
        rhs_base: np.ndarray,
        fixed_values: np.ndarray,
    ) -> tuple[csr_matrix, np.ndarray]:
        """Build the sparse matrix and right-hand side.

        Parameters
        ----------
        conductances : list of np.ndarray
            One grid-shaped array per entry of :data:`CARDINAL_OFFSETS`.
        rhs_base : np.ndarray
            Grid-shaped source term (step-start elevation plus any sources).
        fixed_values : np.ndarray
            Grid-shaped Dirichlet values for neighbours outside the system.

        Returns
        -------
        matrix : csr_matrix
        b : np.ndarray
        """
        return (
            self.matrix(conductances),
            self.rhs(conductances, rhs_base, fixed_values),
        )


# ---------------------------------------------------------------------------
# Linear diffusion
# ---------------------------------------------------------------------------

class LinearDiffusionSolver:
    r"""Backward-Euler linear diffusion, :math:`(I - \Delta t D \nabla^2) z = z_0`.

    The assembled matrix is cached and reused while the grid, *D* and the
    time step are unchanged.
    """

    def __init__(
        self,
        boundary: BoundaryConditions,
        rtol: float = 1e-6,
        maxiter: int = 200,
    ) -> None:
        self.boundary = boundary
        self.rtol = rtol
        self.maxiter = maxiter
        self._system: DiffusionSystem | None = None
        self._matrix_key: float | None = None
        self._matrix: csr_matrix | None = None

    def step(self, grid: GridState, dt: float, D: float) -> int:
        """Diffuse ``grid.elevation`` in place; returns the BiCGSTAB info code."""
        if self._system is None or not self._system.matches(grid):
            self._system = DiffusionSystem.for_grid(grid, self.boundary)
            self._matrix_key = None
        system = self._system
        if system.size == 0 or D == 0:
            return 0

        z0 = grid.elevation
        front = D * dt / grid.dx ** 2
        conductances = system.face_conductances(z0, front, grid.dx)
        if self._matrix_key != front:
            self._matrix = system.matrix(conductances)
            self._matrix_key = front
            logger.debug("Assembled linear diffusion matrix, n=%d", system.size)
        b = system.rhs(conductances, z0, z0)

        x, info = solve_sparse(
            self._matrix, b, x0=z0[system.unknown],
            rtol=self.rtol, maxiter=self.maxiter,
        )
        grid.elevation[system.unknown] = x
        return info


# ---------------------------------------------------------------------------
# Nonlinear (critical-slope) diffusion
# ---------------------------------------------------------------------------

class NonlinearDiffusionSolver:
    """Critical-slope diffusion solved by Picard iteration.

    Each iteration rebuilds the face conductances from the previous
    iterate and solves against the step-start elevation.  When the
    iteration cap is reached the convergence tolerance is relaxed tenfold
    and iteration resumes, at most *max_relaxations* times.

    Parameters
    ----------
    boundary : BoundaryConditions
    epsilon : float
        Convergence threshold on the largest elevation change between
        iterates.
    max_iterations : int
        Picard iterations allowed per tolerance level.
    max_relaxations : int
        Number of tenfold tolerance relaxations before the last iterate is
        accepted.
    rtol, maxiter : float, int
        Inner BiCGSTAB settings.
    """

    def __init__(
        self,
        boundary: BoundaryConditions,
        epsilon: float = 1e-5,
        max_iterations: int = 200,
        max_relaxations: int = 6,
        rtol: float = 1e-6,
        maxiter: int = 200,
    ) -> None:
        self.boundary = boundary
        self.epsilon = epsilon
        self.max_iterations = max_iterations
        self.max_relaxations = max_relaxations
        self.rtol = rtol
        self.maxiter = maxiter
        self._system: DiffusionSystem | None = None

    def step(self, grid: GridState, dt: float, D: float, S_c: float) -> int:
        """Diffuse ``grid.elevation`` in place; returns Picard iterations used."""
        if self._system is None or not self._system.matches(grid):
            self._system = DiffusionSystem.for_grid(grid, self.boundary)
        system = self._system
        if system.size == 0 or D == 0:
            return 0

        u = system.unknown
        z_start = grid.elevation.copy()
        z_iter = z_start.copy()
        front = D * dt / grid.dx ** 2
        tolerance = self.epsilon
        relaxations = 0
        iterations = 0
        total = 0

        while True:
            iterations += 1
            total += 1
            conductances = system.face_conductances(z_iter, front, grid.dx, S_c)
            matrix, b = system.assemble(conductances, z_start, z_start)
            x, _ = solve_sparse(
                matrix, b, x0=z_iter[u], rtol=self.rtol, maxiter=self.maxiter,
            )
            change = float(np.max(np.abs(x - z_iter[u])))
            z_iter[u] = x
            logger.debug("Picard iteration %d: max change %.3e", total, change)

            if change < tolerance:
                break
            if iterations >= self.max_iterations:
                if relaxations >= self.max_relaxations:
                    logger.warning(
                        "Nonlinear diffusion unconverged after %d iterations "
                        "(max change %.3e); accepting last iterate",
                        total, change,
                    )
                    break
                tolerance *= 10.0
                relaxations += 1
                iterations = 0
                logger.warning(
                    "Nonlinear diffusion did not converge in %d iterations; "
                    "relaxing tolerance to %.1e",
                    self.max_iterations, tolerance,
                )

        grid.elevation = z_iter
        return total


# ---------------------------------------------------------------------------
# Adaptive time-step creep
# ---------------------------------------------------------------------------

@dataclass
class AdaptiveStepResult:
    """Outcome of one :meth:`AdaptiveCreepSolver.step` call."""

    dt_used: float
    iterations: int
    retries: int
    next_dt: float


class AdaptiveCreepSolver:
    """Whole-grid nonlinear creep with uplift and fluvial erosion sources.

    Every valid cell is an unknown.  The first and last rows, and any other
    base-level cells, are identity rows held at their step-start values;
    lateral neighbours follow the boundary mapping.  The right-hand side is
    ``z_0 + dt * U - dt * E_fluvial``.

    Time-step policy: a step whose first iterate already meets the
    tolerance doubles :attr:`dt` for the next call (capped at *max_dt*); a
    step that exhausts *max_iterations* cuts :attr:`dt` tenfold and is
    retried from the step-start surface.
    """

    def __init__(
        self,
        boundary: BoundaryConditions,
        dt: float,
        tolerance: float = 1e-5,
        max_iterations: int = 10,
        max_dt: float | None = None,
        min_dt: float | None = None,
        rtol: float = 1e-8,
        maxiter: int = 500,
    ) -> None:
        self.boundary = boundary
        self.dt = dt
        self.tolerance = tolerance
        self.max_iterations = max_iterations
        self.max_dt = np.inf if max_dt is None else max_dt
        self.min_dt = dt * 1e-6 if min_dt is None else min_dt
        self.rtol = rtol
        self.maxiter = maxiter
        self._system: DiffusionSystem | None = None

    def _system_for(self, grid: GridState) -> DiffusionSystem:
        if self._system is None or not self._system.matches(grid):
            valid = grid.valid_mask()
            pinned = self.boundary.base_level_mask(grid.shape)
            pinned[0, :] = True
            pinned[-1, :] = True
            self._system = DiffusionSystem(
                grid.shape, self.boundary, valid, pinned=pinned, valid=valid,
            )
        return self._system

    def step(
        self,
        grid: GridState,
        D: float,
        S_c: float,
        uplift_rate: np.ndarray | None = None,
        fluvial_rate: np.ndarray | None = None,
    ) -> AdaptiveStepResult:
        """Advance ``grid.elevation`` by one adaptive step.

        Raises
        ------
        SolverDivergenceError
            If :attr:`dt` falls below *min_dt* while retrying.
        """
        system = self._system_for(grid)
        z_start = grid.elevation.copy()
        source = np.zeros(grid.shape)
        if uplift_rate is not None:
            source += uplift_rate
        if fluvial_rate is not None:
            source -= fluvial_rate
        source[system.pinned | ~system.unknown] = 0.0

        retries = 0
        while True:
            dt = self.dt
            z_new, iterations, converged = self._iterate(
                system, z_start, z_start + dt * source, dt, D, S_c, grid.dx,
            )
            if converged:
                break
            retries += 1
            self.dt = dt / 10.0
            logger.warning(
                "Adaptive creep unconverged after %d iterations; "
                "retrying with dt=%.4g", iterations, self.dt,
            )
            if self.dt < self.min_dt:
                raise SolverDivergenceError(
                    f"time step {self.dt:.3g} fell below the floor {self.min_dt:.3g}"
                )

        grid.elevation = z_new
        if iterations == 1:
            self.dt = min(dt * 2.0, self.max_dt)
            logger.debug("Adaptive creep converged in one iteration; dt -> %.4g", self.dt)
        return AdaptiveStepResult(
            dt_used=dt, iterations=iterations, retries=retries, next_dt=self.dt,
        )

    def _iterate(
        self,
        system: DiffusionSystem,
        z_start: np.ndarray,
        rhs: np.ndarray,
        dt: float,
        D: float,
        S_c: float,
        dx: float,
    ) -> tuple[np.ndarray, int, bool]:
        u = system.unknown
        z_iter = z_start.copy()
        front = D * dt / dx ** 2
        for iteration in range(1, self.max_iterations + 1):
            conductances = system.face_conductances(z_iter, front, dx, S_c)
            matrix, b = system.assemble(conductances, rhs, z_start)
            x, _ = solve_sparse(
                matrix, b, x0=z_iter[u], rtol=self.rtol, maxiter=self.maxiter,
            )
            residual = float(np.max(np.abs(x - z_iter[u])))
            z_iter[u] = x
            z_iter[system.pinned] = rhs[system.pinned]
            if residual <= self.tolerance:
                return z_iter, iteration, True
        return z_iter, self.max_iterations, False
