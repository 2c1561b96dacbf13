r"""
Slope-area analysis of modelled topography.

Extracts paired drainage area and channel slope along the steepest-descent
network and fits the power law

.. math::

    S = k_s \, A^{-\theta}

to quantify channel steepness :math:`k_s` and concavity :math:`\theta`.
"""

from __future__ import annotations

import numpy as np
from scipy.stats import linregress

from .flow import FlowNetwork
from .grid import GridState


def slope_area_data(
    grid: GridState,
    network: FlowNetwork,
) -> tuple[np.ndarray, np.ndarray]:
    """Drainage area and downstream slope of every draining cell.

    Parameters
    ----------
    grid : GridState
    network : FlowNetwork
        Network of ``grid.elevation``.

    Returns
    -------
    A, S : np.ndarray
        1-D arrays for cells with a receiver and a positive slope.
    """
    z = grid.elevation.ravel()
    valid = grid.valid_mask().ravel()
    has_receiver = (network.length_code > 0) & valid
    idx = np.nonzero(has_receiver)[0]

    dist = network.receiver_distance(grid.dx)[idx]
    S = (z[idx] - z[network.receivers[idx]]) / dist
    A = network.drainage_area(grid.dx)[idx]
    keep = S > 0
    return A[keep], S[keep]


def fit_slope_area(
    A_1d: np.ndarray,
    S_1d: np.ndarray,
    theta_fixed: float | None = None,
    min_points: int = 5,
) -> dict:
    r"""Log-log slope-area regression with fixed or free concavity.

    Parameters
    ----------
    A_1d, S_1d : np.ndarray
        1-D arrays of drainage area and slope.
    theta_fixed : float or None
        If given, fix concavity to this value; otherwise fit freely.
    min_points : int
        Minimum valid points required for regression.

    Returns
    -------
    dict
        Keys: ``ks``, ``theta``, ``r2``, ``n_good``, ``logA``, ``logS``,
        ``logS_pred``.  Values are ``NaN``/``None`` when fewer than
        *min_points* usable pairs exist.
    """
    used_mask = (
        np.isfinite(A_1d) & np.isfinite(S_1d) & (A_1d > 0) & (S_1d > 0)
    )
    n_good = int(used_mask.sum())

    out: dict = {
        "ks": np.nan, "theta": np.nan, "r2": np.nan, "n_good": n_good,
        "logA": None, "logS": None, "logS_pred": None,
    }

    if n_good < min_points:
        return out

    logA = np.log10(A_1d[used_mask])
    logS = np.log10(S_1d[used_mask])

    if theta_fixed is not None:
        b = float(np.mean(logS + theta_fixed * logA))
        logS_pred = b - theta_fixed * logA
        ss_res = float(np.sum((logS - logS_pred) ** 2))
        ss_tot = float(np.sum((logS - np.mean(logS)) ** 2))
        r2 = 1.0 - ss_res / ss_tot if ss_tot > 0 else np.nan
        out.update({
            "ks": float(10 ** b), "theta": float(theta_fixed), "r2": float(r2),
            "logA": logA, "logS": logS, "logS_pred": logS_pred,
        })
        return out

    if np.ptp(logA) == 0:
        return out

    # free-theta regression
    fit = linregress(logA, logS)
    out.update({
        "ks": float(10 ** fit.intercept),
        "theta": float(-fit.slope),
        "r2": float(fit.rvalue ** 2),
        "logA": logA, "logS": logS,
        "logS_pred": fit.intercept + fit.slope * logA,
    })
    return out
