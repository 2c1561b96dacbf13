"""
Boundary policy for rectangular model grids.

Interprets the four edge codes (north, east, south, west) into the index
mapping rules that every solver uses:

- ``b``: fixed elevation (base level); cells on the edge are pinned.
- ``p``: periodic; neighbour references wrap to the opposite edge.
- ``n``: no flux; the missing neighbour term is simply omitted.

Row 0 is the northern edge and column 0 the western edge.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

logger = logging.getLogger(__name__)


class EdgeCode(str, Enum):
    """Symbolic boundary condition for one grid edge."""

    FIXED = "b"
    PERIODIC = "p"
    NO_FLUX = "n"


EDGE_NAMES: tuple[str, str, str, str] = ("north", "east", "south", "west")
"""Edge order used by four-character boundary codes."""


@dataclass(frozen=True)
class BoundaryInterpretation:
    """Solve-axis summary of a boundary configuration.

    Attributes
    ----------
    axis : int
        ``0`` when the fixed edges are rows (north/south), ``1`` when they
        are columns (east/west).
    periodic : bool
        Whether the lateral pair of edges (perpendicular to *axis*) wraps.
    size : int
        Number of cells in the strip between the two fixed lines.
    """

    axis: int
    periodic: bool
    size: int


@dataclass
class BoundaryConditions:
    """Four edge codes plus the warnings raised while normalising them."""

    north: EdgeCode = EdgeCode.FIXED
    east: EdgeCode = EdgeCode.PERIODIC
    south: EdgeCode = EdgeCode.FIXED
    west: EdgeCode = EdgeCode.PERIODIC
    warnings: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.north = EdgeCode(self.north)
        self.east = EdgeCode(self.east)
        self.south = EdgeCode(self.south)
        self.west = EdgeCode(self.west)
        self._normalise_pair("north", "south")
        self._normalise_pair("east", "west")

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_code(cls, code: str) -> "BoundaryConditions":
        """Parse a four-character code such as ``"bpbp"`` (N, E, S, W).

        Raises
        ------
        ValueError
            If *code* is not four characters drawn from ``b``, ``p``, ``n``.
        """
        code = code.strip().lower()
        if len(code) != 4:
            raise ValueError(
                f"Boundary code must have four characters (N, E, S, W), got {code!r}"
            )
        try:
            edges = [EdgeCode(c) for c in code]
        except ValueError:
            raise ValueError(
                f"Boundary code {code!r} may only contain 'b', 'p' or 'n'"
            ) from None
        return cls(*edges)

    def _normalise_pair(self, first: str, second: str) -> None:
        a, b = getattr(self, first), getattr(self, second)
        if (a is EdgeCode.PERIODIC) != (b is EdgeCode.PERIODIC):
            msg = (
                f"Only one of the {first}/{second} edges is periodic; "
                "assuming both are periodic"
            )
            self.warnings.append(msg)
            logger.warning(msg)
            setattr(self, first, EdgeCode.PERIODIC)
            setattr(self, second, EdgeCode.PERIODIC)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def codes(self) -> tuple[EdgeCode, EdgeCode, EdgeCode, EdgeCode]:
        return (self.north, self.east, self.south, self.west)

    @property
    def code(self) -> str:
        return "".join(c.value for c in self.codes)

    @property
    def wraps_rows(self) -> bool:
        """``True`` when the north and south edges are periodic."""
        return self.north is EdgeCode.PERIODIC

    @property
    def wraps_cols(self) -> bool:
        """``True`` when the east and west edges are periodic."""
        return self.east is EdgeCode.PERIODIC

    def interpret(self, shape: tuple[int, int]) -> BoundaryInterpretation:
        """Summarise the boundary as a fixed axis and a lateral wrap flag.

        The axis is taken from the last fixed edge in N, E, S, W order.
        Without any fixed edge the north/south pair is used.
        """
        nrows, ncols = shape
        axis = 0
        for index, edge in enumerate(self.codes):
            if edge is EdgeCode.FIXED:
                axis = index % 2
        if axis == 0:
            periodic = self.wraps_cols
            size = (nrows - 2) * ncols
        else:
            periodic = self.wraps_rows
            size = nrows * (ncols - 2)
        return BoundaryInterpretation(axis=axis, periodic=periodic, size=size)

    def base_level_mask(self, shape: tuple[int, int]) -> np.ndarray:
        """Boolean mask of cells lying on a fixed-elevation edge."""
        mask = np.zeros(shape, dtype=bool)
        if self.north is EdgeCode.FIXED:
            mask[0, :] = True
        if self.south is EdgeCode.FIXED:
            mask[-1, :] = True
        if self.west is EdgeCode.FIXED:
            mask[:, 0] = True
        if self.east is EdgeCode.FIXED:
            mask[:, -1] = True
        return mask

    def neighbour_indices(
        self,
        shape: tuple[int, int],
        drow: int,
        dcol: int,
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Vectorised neighbour lookup for the offset ``(drow, dcol)``.

        Parameters
        ----------
        shape : tuple of int
            Grid shape ``(nrows, ncols)``.
        drow, dcol : int
            Offset of the neighbour, each in ``{-1, 0, 1}``.

        Returns
        -------
        rows, cols : np.ndarray
            Integer arrays of neighbour indices (clipped into the grid
            where the neighbour does not exist).
        valid : np.ndarray
            Boolean mask, ``False`` where the neighbour falls off a
            non-periodic edge.
        """
        nrows, ncols = shape
        ii, jj = np.indices(shape)
        rows = ii + drow
        cols = jj + dcol
        valid = np.ones(shape, dtype=bool)

        if self.wraps_rows:
            rows %= nrows
        else:
            valid &= (rows >= 0) & (rows < nrows)
            np.clip(rows, 0, nrows - 1, out=rows)

        if self.wraps_cols:
            cols %= ncols
        else:
            valid &= (cols >= 0) & (cols < ncols)
            np.clip(cols, 0, ncols - 1, out=cols)

        return rows, cols, valid
