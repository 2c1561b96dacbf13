"""Tests for src/lemcore/boundary.py."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Make src importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from lemcore.boundary import BoundaryConditions, EdgeCode


# ── parsing ─────────────────────────────────────────────────────────────────

class TestFromCode:

    def test_default_code(self):
        bc = BoundaryConditions.from_code("bpbp")
        assert bc.codes == (EdgeCode.FIXED, EdgeCode.PERIODIC,
                            EdgeCode.FIXED, EdgeCode.PERIODIC)
        assert bc.warnings == []

    def test_case_insensitive(self):
        assert BoundaryConditions.from_code(" BNBN ").code == "bnbn"

    def test_wrong_length_raises(self):
        with pytest.raises(ValueError, match="four characters"):
            BoundaryConditions.from_code("bpb")

    def test_unknown_letter_raises(self):
        with pytest.raises(ValueError, match="may only contain"):
            BoundaryConditions.from_code("bxbp")

    def test_single_periodic_edge_is_promoted(self):
        """One periodic edge of a pair forces both and records a warning."""
        bc = BoundaryConditions.from_code("bpbn")
        assert bc.east is EdgeCode.PERIODIC
        assert bc.west is EdgeCode.PERIODIC
        assert len(bc.warnings) == 1


# ── interpretation ──────────────────────────────────────────────────────────

class TestInterpret:

    def test_rows_fixed(self):
        info = BoundaryConditions.from_code("bpbp").interpret((10, 8))
        assert info.axis == 0
        assert info.periodic
        assert info.size == 8 * 8

    def test_columns_fixed(self):
        info = BoundaryConditions.from_code("pbpb").interpret((10, 8))
        assert info.axis == 1
        assert info.periodic
        assert info.size == 10 * 6

    def test_no_fixed_edge_defaults_to_rows(self):
        info = BoundaryConditions.from_code("nnnn").interpret((5, 5))
        assert info.axis == 0
        assert not info.periodic


class TestBaseLevelMask:

    def test_bpbp(self):
        mask = BoundaryConditions.from_code("bpbp").base_level_mask((4, 5))
        assert mask[0].all() and mask[-1].all()
        assert not mask[1:-1].any()

    def test_all_fixed(self):
        mask = BoundaryConditions.from_code("bbbb").base_level_mask((4, 5))
        assert mask.sum() == 4 * 5 - 2 * 3

    def test_no_flux_has_no_base_level(self):
        assert not BoundaryConditions.from_code("nnnn").base_level_mask((4, 4)).any()


class TestNeighbourIndices:

    def test_periodic_wrap_east(self):
        bc = BoundaryConditions.from_code("bpbp")
        rows, cols, valid = bc.neighbour_indices((3, 4), 0, 1)
        assert cols[1, 3] == 0
        assert valid[:, 3].all()

    def test_fixed_edge_invalid(self):
        bc = BoundaryConditions.from_code("bpbp")
        rows, cols, valid = bc.neighbour_indices((3, 4), -1, 0)
        assert not valid[0].any()
        assert valid[1:].all()
        # indices stay inside the grid
        assert rows.min() >= 0

    def test_diagonal_combines_rules(self):
        bc = BoundaryConditions.from_code("bpbp")
        rows, cols, valid = bc.neighbour_indices((3, 4), 1, -1)
        assert cols[1, 0] == 3
        assert not valid[2].any()
        np.testing.assert_array_equal(rows[:2], np.array([[1] * 4, [2] * 4]))
