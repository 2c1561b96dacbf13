"""
Raster derivatives used by reporting and output.

Provides hillshading and mean local relief of an elevation grid.
"""

from __future__ import annotations

import numpy as np
from scipy.ndimage import maximum_filter, minimum_filter


def hillshade(
    Z: np.ndarray,
    dx: float,
    azimuth: float = 315.0,
    altitude: float = 45.0,
    z_factor: float = 1.0,
) -> np.ndarray:
    """Lambertian hillshade in ``[0, 1]``.

    Parameters
    ----------
    Z : np.ndarray
        2-D elevation grid; ``NaN`` cells stay ``NaN``.
    dx : float
        Cell size.
    azimuth : float
        Sun azimuth in degrees clockwise from north.
    altitude : float
        Sun elevation above the horizon in degrees.
    z_factor : float
        Vertical exaggeration.
    """
    zenith = np.radians(90.0 - altitude)
    azimuth_math = np.radians(360.0 - azimuth + 90.0) % (2 * np.pi)

    # Row 0 is north, so the row gradient points south
    dz_drow, dz_dcol = np.gradient(np.asarray(Z, dtype=float) * z_factor, dx)
    slope = np.arctan(np.hypot(dz_dcol, dz_drow))
    aspect = np.arctan2(dz_drow, -dz_dcol)

    shade = (np.cos(zenith) * np.cos(slope)
             + np.sin(zenith) * np.sin(slope) * np.cos(azimuth_math - aspect))
    return np.clip(shade, 0.0, 1.0)


def mean_relief(
    Z: np.ndarray,
    dx: float,
    radius: float = 0.0,
    mask: np.ndarray | None = None,
) -> float:
    """Mean of the local max-minus-min elevation in a square window.

    A *radius* of zero (or smaller than a cell) uses a 3x3 window;
    otherwise the window spans ``2 * ceil(radius / dx) + 1`` cells.
    """
    half = max(int(np.ceil(radius / dx)), 1) if radius > 0 else 1
    size = 2 * half + 1
    Z = np.asarray(Z, dtype=float)
    valid = np.isfinite(Z) if mask is None else mask & np.isfinite(Z)
    if not valid.any():
        return float("nan")

    hi = maximum_filter(np.where(valid, Z, -np.inf), size=size, mode="nearest")
    lo = minimum_filter(np.where(valid, Z, np.inf), size=size, mode="nearest")
    return float(np.mean((hi - lo)[valid]))
