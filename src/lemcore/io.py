"""
Raster input and output.

Grids are stored as ESRI ASCII rasters (``.asc``) through the GDAL
``AAIGrid`` driver of :mod:`rasterio`::

    ncols         4
    nrows         3
    xllcorner     0.0
    yllcorner     0.0
    cellsize      10.0
    NODATA_value  -99
    <nrows lines of ncols values, northern row first>

:class:`FrameWriter` persists the elevation field and its derived rasters
at print intervals.
"""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np
import rasterio
from rasterio.errors import RasterioError
from rasterio.transform import from_origin

from .analysis import slope_area_data
from .flow import FlowNetwork
from .grid import GridState
from .utils import hillshade

logger = logging.getLogger(__name__)


class RasterFormatError(ValueError):
    """Raster file that cannot be read as an ESRI ASCII grid."""


def read_ascii_grid(path: str | Path, nodata: float = -99.0) -> GridState:
    """Load an ESRI ASCII raster into a :class:`GridState`.

    Cell-centre origins (``xllcenter``) are accepted in place of corners.
    *nodata* is used when the header declares no ``NODATA_value``.

    Raises
    ------
    RasterFormatError
        If the file is missing, is not an ESRI ASCII grid, its cells are
        not square, or its data block is shorter than the header declares.
    """
    path = Path(path)
    try:
        with rasterio.open(path, driver="AAIGrid", DATATYPE="Float64") as src:
            data = src.read(1).astype(float)
            transform = src.transform
            declared = src.nodata
    except (RasterioError, OSError) as exc:
        raise RasterFormatError(f"cannot read raster {path}: {exc}") from exc

    dx, dy = transform.a, -transform.e
    if not np.isclose(dx, dy):
        raise RasterFormatError(f"{path}: cells are not square ({dx} x {dy})")

    nrows, ncols = data.shape
    logger.debug("Read %dx%d raster from %s", nrows, ncols, path)
    return GridState(
        data, dx=float(dx), xmin=float(transform.c),
        ymin=float(transform.f - nrows * dy),
        nodata=float(declared) if declared is not None else nodata,
    )


def write_ascii_grid(
    path: str | Path,
    data: np.ndarray,
    dx: float,
    xmin: float = 0.0,
    ymin: float = 0.0,
    nodata: float = -99.0,
) -> Path:
    """Write *data* as an ESRI ASCII raster; ``NaN`` becomes *nodata*."""
    path = Path(path)
    nrows, ncols = data.shape
    values = np.where(np.isfinite(data), data, nodata).astype("float64")
    profile = dict(
        driver="AAIGrid", height=nrows, width=ncols, count=1, dtype="float64",
        transform=from_origin(xmin, ymin + nrows * dx, dx, dx), nodata=nodata,
    )
    with rasterio.open(path, "w", **profile) as dst:
        dst.write(values, 1)
    return path


class FrameWriter:
    """Writes numbered raster frames for one run.

    Parameters
    ----------
    output_dir : str or Path
        Destination directory (created if needed).
    run_name : str
        Prefix of every file name.
    elevation, hillshade, erosion, slope_area : bool
        Which products to write per frame.
    """

    def __init__(
        self,
        output_dir: str | Path,
        run_name: str,
        elevation: bool = True,
        hillshade: bool = False,
        erosion: bool = False,
        slope_area: bool = False,
    ) -> None:
        self.output_dir = Path(output_dir)
        self.run_name = run_name
        self.elevation = elevation
        self.hillshade = hillshade
        self.erosion = erosion
        self.slope_area = slope_area

    def _path(self, suffix: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        return self.output_dir / f"{self.run_name}{suffix}"

    def write_frame(
        self,
        frame: int,
        grid: GridState,
        dt: float,
        network: FlowNetwork | None = None,
    ) -> list[Path]:
        """Write the enabled products for *frame*; returns the paths written."""
        written: list[Path] = []
        kwargs = dict(dx=grid.dx, xmin=grid.xmin, ymin=grid.ymin, nodata=grid.nodata)
        elevation = np.where(grid.valid_mask(), grid.elevation, np.nan)

        if self.elevation:
            written.append(write_ascii_grid(self._path(f"{frame}.asc"), elevation, **kwargs))
        if self.hillshade:
            shade = hillshade(elevation, grid.dx)
            written.append(write_ascii_grid(self._path(f"{frame}_hillshade.asc"), shade, **kwargs))
        if self.erosion:
            written.append(write_ascii_grid(
                self._path(f"{frame}_erosion.asc"), grid.erosion_rate(dt), **kwargs,
            ))
        if self.slope_area and network is not None:
            area, slope = slope_area_data(grid, network)
            path = self._path(f"{frame}_sa.txt")
            np.savetxt(path, np.column_stack([area, slope]), fmt="%.6g",
                       header="area\tslope", delimiter="\t")
            written.append(path)

        logger.info("Wrote frame %d (%d files)", frame, len(written))
        return written

    def write_cycle_erosion(self, cycle: int, grid: GridState, mean_erosion: np.ndarray) -> Path:
        """Write the mean erosion-rate raster of a completed forcing cycle."""
        return write_ascii_grid(
            self._path(f"{cycle}_cycle_erosion.asc"), mean_erosion,
            dx=grid.dx, xmin=grid.xmin, ymin=grid.ymin, nodata=grid.nodata,
        )
