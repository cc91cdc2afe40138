"""Potency metrics derived from fitted 4PL parameters.

EC10 and EC90 use the closed-form ratio inversion

    response_p = bottom + p * (top - bottom)
    ratio      = (top - response_p) / (response_p - bottom)
    EC_p       = EC50 * ratio ** (1 / hill_slope)

evaluated exactly as written, so reported values are reproducible across
implementations.  Note that this form ignores the ``2^(1/h) - 1`` factor
of the model, so ``four_pl(EC_p)`` is generally not ``response_p``; use
:func:`~dosecurve.doseresponse.inverse_four_pl` for the exact inverse.

AUC is the trapezoidal area under the sampled curve.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

EC_LOW = 0.10
EC_HIGH = 0.90

VALID_X_SCALES = ("linear", "log10")


def ec_from_fraction(
    p: float,
    top: float,
    bottom: float,
    ec50: float,
    hill_slope: float,
) -> float:
    """Closed-form EC at response fraction *p* of the ``bottom..top`` range."""
    top = np.float64(top)
    bottom = np.float64(bottom)
    with np.errstate(divide="ignore", invalid="ignore"):
        response_p = bottom + p * (top - bottom)
        ratio = (top - response_p) / (response_p - bottom)
        return float(ec50 * np.power(ratio, 1.0 / hill_slope))


def ec10(top: float, bottom: float, ec50: float, hill_slope: float) -> float:
    return ec_from_fraction(EC_LOW, top, bottom, ec50, hill_slope)


def ec90(top: float, bottom: float, ec50: float, hill_slope: float) -> float:
    return ec_from_fraction(EC_HIGH, top, bottom, ec50, hill_slope)


# ---------------------------------------------------------------------------
# Area under the curve
# ---------------------------------------------------------------------------

def _trapezoid_segment(x1: float, x2: float, y1: float, y2: float) -> float:
    """Linear trapezoidal area for a single interval."""
    return (x2 - x1) * (y1 + y2) / 2.0


def auc(
    points: NDArray[np.floating],
    *,
    x_scale: str = "linear",
) -> float:
    """Trapezoidal area under a sampled curve.

    Parameters
    ----------
    points : array, shape ``(n, 2)``
        ``(x, y)`` pairs in any order; they are sorted by x first.
    x_scale : str
        ``'linear'`` integrates over x itself.  ``'log10'`` integrates over
        ``log10(x)``, the axis the curve is usually plotted on.

    Returns
    -------
    float
        The summed area.  Intervals with a NaN endpoint contribute nothing;
        fewer than two points give 0.
    """
    if x_scale not in VALID_X_SCALES:
        raise ValueError(f"x_scale must be one of {VALID_X_SCALES}, got {x_scale!r}")

    points = np.asarray(points, dtype=np.float64)
    if points.size == 0:
        return 0.0
    if points.ndim != 2 or points.shape[1] != 2:
        raise ValueError(f"points must have shape (n, 2), got {points.shape}")
    if points.shape[0] < 2:
        return 0.0

    order = np.argsort(points[:, 0], kind="stable")
    x = points[order, 0]
    y = points[order, 1]
    if x_scale == "log10":
        with np.errstate(divide="ignore", invalid="ignore"):
            x = np.where(x > 0, np.log10(x), np.nan)

    total = 0.0
    for i in range(1, len(x)):
        x1, x2, y1, y2 = x[i - 1], x[i], y[i - 1], y[i]
        if np.isnan(x1) or np.isnan(y1) or np.isnan(x2) or np.isnan(y2):
            continue
        total += _trapezoid_segment(x1, x2, y1, y2)
    return float(total)
