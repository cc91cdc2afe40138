"""Goodness of fit: coefficient of determination."""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray


def r_squared(
    actual: NDArray[np.floating],
    predicted: NDArray[np.floating],
) -> float:
    """Coefficient of determination, ``1 - SS_res / SS_tot``.

    Negative when the prediction is worse than the mean of *actual*.
    Returns NaN when *actual* is constant (``SS_tot == 0``); callers treat
    that as a degenerate fit rather than an error.
    """
    actual = np.asarray(actual, dtype=np.float64)
    predicted = np.asarray(predicted, dtype=np.float64)
    if actual.shape != predicted.shape:
        raise ValueError(
            f"actual and predicted must have same shape, got {actual.shape} and {predicted.shape}"
        )
    if actual.size == 0:
        raise ValueError("actual must not be empty")

    ss_res = float(np.sum((actual - predicted) ** 2))
    ss_tot = float(np.sum((actual - np.mean(actual)) ** 2))
    if ss_tot == 0.0:
        return float("nan")
    return 1.0 - ss_res / ss_tot
