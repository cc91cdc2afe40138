"""Four-parameter logistic (4PL) model.

Uses the midpoint-anchored parameterisation

.. math::
    f(x) = B + \\frac{T - B}{1 + (2^{1/h} - 1) \\cdot (EC_{50} / x)^h}

where ``T = top``, ``B = bottom``, ``h = hill_slope``.  Note the
``2^{1/h} - 1`` factor in place of the plain Hill denominator: at
``x = EC50`` the curve evaluates to ``B + (T - B) / 2^{1/h}``, which is
the midpoint ``(T + B) / 2`` when ``h = 1``.

With ``h > 0`` the response rises from ``bottom`` at low concentration
to ``top`` at high concentration.  ``x = 0`` is handled through IEEE 754
arithmetic: ``EC50 / 0 = inf`` and the curve evaluates to ``bottom``.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray


def four_pl(
    x: NDArray[np.floating] | float,
    top: float,
    bottom: float,
    ec50: float,
    hill_slope: float,
) -> NDArray[np.floating]:
    """Evaluate the 4PL curve.

    Parameters
    ----------
    x : array or float
        Concentration values.  May contain zeros.
    top : float
        Upper asymptote.
    bottom : float
        Lower asymptote.
    ec50 : float
        Concentration giving the half-maximal response.
    hill_slope : float
        Steepness.  Must be non-zero.

    Returns
    -------
    NDArray
        Predicted responses, same shape as *x*.
    """
    x = np.asarray(x, dtype=np.float64)
    with np.errstate(divide="ignore", over="ignore"):
        denominator = 1.0 + (2.0 ** (1.0 / hill_slope) - 1.0) * (ec50 / x) ** hill_slope
    return bottom + (top - bottom) / denominator


def inverse_four_pl(
    response: NDArray[np.floating] | float,
    top: float,
    bottom: float,
    ec50: float,
    hill_slope: float,
) -> NDArray[np.floating]:
    """Concentration at which the 4PL curve reaches *response*.

    Exact algebraic inverse of :func:`four_pl`:

    .. math::
        x = EC_{50} \\left(\\frac{(2^{1/h} - 1)\\,\\phi}{1 - \\phi}\\right)^{1/h},
        \\qquad \\phi = \\frac{y - B}{T - B}

    Responses outside the open interval between ``bottom`` and ``top`` have
    no finite solution and give NaN (or 0 / inf at the asymptotes).
    """
    response = np.asarray(response, dtype=np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        phi = (response - bottom) / (top - bottom)
        k = 2.0 ** (1.0 / hill_slope) - 1.0
        return ec50 * (k * phi / (1.0 - phi)) ** (1.0 / hill_slope)
