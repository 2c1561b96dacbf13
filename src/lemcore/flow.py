"""
D8 flow routing for the evolving surface.

Builds the :class:`FlowNetwork` consumed by the fluvial solver and the
wash-out step: a single steepest-descent receiver per cell, a stack order in
which every receiver precedes its donors, and the number of contributing
pixels per cell.  Also provides a priority-flood depression filler used when
synthesising initial surfaces.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque
from dataclasses import dataclass

import numpy as np

from .boundary import BoundaryConditions

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Module-level constants
# ---------------------------------------------------------------------------

D8_NEIGHBOURS: tuple[tuple[int, int, int], ...] = (
    (-1, 0, 1),
    (-1, 1, 2),
    (0, 1, 1),
    (1, 1, 2),
    (1, 0, 1),
    (1, -1, 2),
    (0, -1, 1),
    (-1, -1, 2),
)
"""(drow, dcol, length code) for the eight neighbours, clockwise from north.

Length code 1 is a cardinal step (distance ``dx``), 2 a diagonal step
(distance ``dx * sqrt(2)``).
"""

LENGTH_FACTOR: dict[int, float] = {1: 1.0, 2: np.sqrt(2.0)}


@dataclass
class FlowNetwork:
    """Steepest-descent drainage network for one elevation snapshot.

    Attributes
    ----------
    shape : tuple of int
        Grid shape the flat indices refer to.
    receivers : np.ndarray
        Flat index of each cell's receiver; outlets and sinks are their own
        receiver.
    stack : np.ndarray
        Permutation of flat indices; every receiver appears before its
        donors.
    contributing_pixels : np.ndarray
        Number of cells draining through each cell, itself included.
    length_code : np.ndarray
        ``0`` (no receiver), ``1`` (cardinal) or ``2`` (diagonal).
    """

    shape: tuple[int, int]
    receivers: np.ndarray
    stack: np.ndarray
    contributing_pixels: np.ndarray
    length_code: np.ndarray

    @property
    def size(self) -> int:
        return int(self.receivers.size)

    def drainage_area(self, dx: float) -> np.ndarray:
        """Flat array of drainage area, ``pixels * dx**2``."""
        return self.contributing_pixels * dx * dx

    def receiver_distance(self, dx: float) -> np.ndarray:
        """Flat array of distance to the receiver (``NaN`` where undefined)."""
        dist = np.full(self.size, np.nan)
        dist[self.length_code == 1] = dx
        dist[self.length_code == 2] = dx * np.sqrt(2.0)
        return dist


def build_flow_network(
    elevation: np.ndarray,
    boundary: BoundaryConditions,
    valid: np.ndarray | None = None,
) -> FlowNetwork:
    """Route flow by D8 steepest descent.

    Parameters
    ----------
    elevation : np.ndarray
        2-D elevation field.
    boundary : BoundaryConditions
        Periodic edges wrap; base-level cells are outlets.
    valid : np.ndarray or None
        Cells holding data.  Invalid cells are isolated outlets and never
        receive flow.

    Returns
    -------
    FlowNetwork
    """
    z = np.asarray(elevation, dtype=float)
    shape = z.shape
    n = z.size
    if valid is None:
        valid = np.isfinite(z)

    flat_index = np.arange(n).reshape(shape)
    receivers = flat_index.copy()
    length_code = np.zeros(shape, dtype=np.int8)
    best_slope = np.zeros(shape)

    for drow, dcol, code in D8_NEIGHBOURS:
        rows, cols, ok = boundary.neighbour_indices(shape, drow, dcol)
        ok &= valid[rows, cols] & valid
        drop = np.where(ok, z - np.where(ok, z[rows, cols], 0.0), 0.0)
        slope = drop / LENGTH_FACTOR[code]
        better = ok & (slope > best_slope)
        best_slope[better] = slope[better]
        receivers[better] = flat_index[rows, cols][better]
        length_code[better] = code

    outlets = boundary.base_level_mask(shape) | ~valid
    receivers[outlets] = flat_index[outlets]
    length_code[outlets] = 0

    receivers = receivers.ravel()
    length_code = length_code.ravel()
    stack = _build_stack(receivers)
    pixels = _accumulate(receivers, stack, valid.ravel())

    logger.debug(
        "Flow network: %d cells, %d outlets/sinks",
        n, int(np.sum(receivers == np.arange(n))),
    )
    return FlowNetwork(
        shape=shape, receivers=receivers, stack=stack,
        contributing_pixels=pixels, length_code=length_code,
    )


def _build_stack(receivers: np.ndarray) -> np.ndarray:
    """Breadth-first order upstream from every self-draining cell."""
    n = receivers.size
    nodes = np.arange(n)

    # Donor lists in CSR form
    is_donor = receivers != nodes
    donors = nodes[is_donor]
    order = np.argsort(receivers[is_donor], kind="stable")
    donors = donors[order]
    counts = np.bincount(receivers[is_donor], minlength=n)
    offsets = np.concatenate(([0], np.cumsum(counts)))

    stack = np.empty(n, dtype=np.int64)
    queue = deque(int(k) for k in nodes[~is_donor])
    pos = 0
    while queue:
        k = queue.popleft()
        stack[pos] = k
        pos += 1
        queue.extend(int(d) for d in donors[offsets[k]:offsets[k + 1]])

    if pos != n:
        raise RuntimeError(
            f"Flow network contains a cycle: ordered {pos} of {n} cells"
        )
    return stack


def _accumulate(
    receivers: np.ndarray,
    stack: np.ndarray,
    valid_flat: np.ndarray,
) -> np.ndarray:
    """Contributing-pixel count, summed from donors to receivers."""
    pixels = valid_flat.astype(float)
    for k in stack[::-1]:
        r = receivers[k]
        if r != k:
            pixels[r] += pixels[k]
    return pixels


# ---------------------------------------------------------------------------
# Depression filling
# ---------------------------------------------------------------------------

def fill_depressions(
    elevation: np.ndarray,
    boundary: BoundaryConditions,
    min_slope: float = 1e-5,
    dx: float = 1.0,
    valid: np.ndarray | None = None,
) -> np.ndarray:
    """Priority-flood fill that leaves a minimum gradient toward outlets.

    Flooding starts from base-level cells and from cells bordering no-data.
    A surface with neither is flooded from its lowest cell.

    Parameters
    ----------
    elevation : np.ndarray
        2-D elevation field (not modified).
    boundary : BoundaryConditions
        Edge codes; periodic edges are flooded across.
    min_slope : float
        Minimum gradient imposed on filled cells.
    dx : float
        Cell size used to convert *min_slope* to an elevation increment.
    valid : np.ndarray or None
        Cells holding data; defaults to finite cells.

    Returns
    -------
    np.ndarray
        Filled copy of *elevation*.
    """
    filled = np.array(elevation, dtype=float)
    nrows, ncols = filled.shape
    if valid is None:
        valid = np.isfinite(filled)

    seeds = boundary.base_level_mask(filled.shape) & valid
    for drow, dcol, _ in D8_NEIGHBOURS:
        rows, cols, ok = boundary.neighbour_indices(filled.shape, drow, dcol)
        seeds |= valid & ok & ~valid[rows, cols]
    if not seeds.any() and valid.any():
        masked = np.where(valid, filled, np.inf)
        seeds.flat[int(np.argmin(masked))] = True

    closed = ~valid | seeds
    heap = [(filled[i, j], i * ncols + j) for i, j in zip(*np.nonzero(seeds))]
    heapq.heapify(heap)

    wrap_r, wrap_c = boundary.wraps_rows, boundary.wraps_cols
    while heap:
        z_here, k = heapq.heappop(heap)
        i, j = divmod(k, ncols)
        for drow, dcol, code in D8_NEIGHBOURS:
            ni, nj = i + drow, j + dcol
            if wrap_r:
                ni %= nrows
            elif not 0 <= ni < nrows:
                continue
            if wrap_c:
                nj %= ncols
            elif not 0 <= nj < ncols:
                continue
            if closed[ni, nj]:
                continue
            closed[ni, nj] = True
            floor = z_here + min_slope * dx * LENGTH_FACTOR[code]
            if filled[ni, nj] < floor:
                filled[ni, nj] = floor
            heapq.heappush(heap, (filled[ni, nj], ni * ncols + nj))

    return filled
