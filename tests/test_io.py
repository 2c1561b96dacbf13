"""Tests for src/lemcore/io.py."""

import sys
from pathlib import Path

import numpy as np
import pytest

# Make src importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from lemcore.flow import build_flow_network
from lemcore.io import FrameWriter, RasterFormatError, read_ascii_grid, write_ascii_grid


# ── ASCII rasters ───────────────────────────────────────────────────────────

class TestAsciiGrid:

    def test_write_then_read(self, tmp_path, noisy_grid):
        path = write_ascii_grid(tmp_path / "z.asc", noisy_grid.elevation, dx=10.0,
                                xmin=500.0, ymin=1000.0)
        grid = read_ascii_grid(path)
        np.testing.assert_allclose(grid.elevation, noisy_grid.elevation, atol=1e-6)
        assert grid.dx == 10.0
        assert (grid.xmin, grid.ymin) == (500.0, 1000.0)
        assert grid.nodata == -99.0

    def test_nan_written_as_nodata(self, tmp_path):
        data = np.ones((3, 4))
        data[1, 2] = np.nan
        grid = read_ascii_grid(write_ascii_grid(tmp_path / "n.asc", data, dx=5.0))
        assert grid.elevation[1, 2] == -99.0
        assert not grid.valid_mask()[1, 2]
        assert grid.valid_mask().sum() == 11

    def test_header_first_row_is_north(self, tmp_path):
        path = tmp_path / "h.asc"
        path.write_text(
            "ncols 3\nnrows 2\nxllcorner 0\nyllcorner 0\ncellsize 2\n"
            "NODATA_value -9999\n1 2 3\n4 5 6\n"
        )
        grid = read_ascii_grid(path)
        assert grid.shape == (2, 3)
        assert grid.elevation[0, 2] == 3.0
        assert grid.nodata == -9999.0

    def test_cell_centre_origin(self, tmp_path):
        path = tmp_path / "c.asc"
        path.write_text(
            "ncols 3\nnrows 3\nxllcenter 5\nyllcenter 5\ncellsize 10\n"
            "NODATA_value -99\n1 2 3\n4 5 6\n7 8 9\n"
        )
        grid = read_ascii_grid(path)
        assert (grid.xmin, grid.ymin) == (0.0, 0.0)

    def test_missing_nodata_uses_default(self, tmp_path):
        path = tmp_path / "d.asc"
        path.write_text(
            "ncols 2\nnrows 2\nxllcorner 0\nyllcorner 0\ncellsize 5\n1 2\n3 4\n"
        )
        assert read_ascii_grid(path, nodata=-1.0).nodata == -1.0
        assert read_ascii_grid(path).valid_mask().all()

    def test_missing_file(self, tmp_path):
        with pytest.raises(RasterFormatError):
            read_ascii_grid(tmp_path / "none.asc")

    def test_shape_mismatch(self, tmp_path):
        path = tmp_path / "bad.asc"
        path.write_text(
            "ncols 3\nnrows 3\nxllcorner 0\nyllcorner 0\ncellsize 1\n"
            "NODATA_value -99\n1 2 3\n4 5 6\n"
        )
        with pytest.raises(RasterFormatError):
            read_ascii_grid(path)

    def test_missing_header_key(self, tmp_path):
        path = tmp_path / "bad.asc"
        path.write_text("ncols 3\nnrows 1\n1 2 3\n")
        with pytest.raises(RasterFormatError):
            read_ascii_grid(path)


# ── FrameWriter ─────────────────────────────────────────────────────────────

class TestFrameWriter:

    def test_elevation_only_by_default(self, tmp_path, ridge_grid):
        writer = FrameWriter(tmp_path / "out", "run")
        paths = writer.write_frame(3, ridge_grid, 100.0)
        assert [p.name for p in paths] == ["run3.asc"]
        assert paths[0].exists()

    def test_all_products(self, tmp_path, noisy_grid, boundary):
        writer = FrameWriter(tmp_path, "run", hillshade=True, erosion=True,
                             slope_area=True)
        network = build_flow_network(noisy_grid.elevation, boundary)
        paths = writer.write_frame(1, noisy_grid, 100.0, network)
        names = sorted(p.name for p in paths)
        assert names == ["run1.asc", "run1_erosion.asc", "run1_hillshade.asc", "run1_sa.txt"]
        shade = read_ascii_grid(tmp_path / "run1_hillshade.asc").elevation
        assert shade.min() >= 0.0 and shade.max() <= 1.0

    def test_slope_area_needs_network(self, tmp_path, ridge_grid):
        writer = FrameWriter(tmp_path, "run", elevation=False, slope_area=True)
        assert writer.write_frame(1, ridge_grid, 100.0) == []

    def test_cycle_erosion(self, tmp_path, ridge_grid):
        writer = FrameWriter(tmp_path, "run")
        path = writer.write_cycle_erosion(2, ridge_grid, np.full(ridge_grid.shape, 1e-4))
        assert path.name == "run2_cycle_erosion.asc"
        np.testing.assert_allclose(read_ascii_grid(path).elevation, 1e-4, atol=1e-6)
