"""Summary statistics for collapsing replicate measurements.

Missing measurements are NaN and are excluded before any statistic is
computed.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import stats


def _present(values: NDArray[np.floating]) -> NDArray[np.float64]:
    values = np.asarray(values, dtype=np.float64).ravel()
    return values[~np.isnan(values)]


def mean(values: NDArray[np.floating]) -> float:
    """Arithmetic mean of the non-missing values (NaN if none)."""
    present = _present(values)
    if present.size == 0:
        return float("nan")
    return float(np.mean(present))


def sem(values: NDArray[np.floating]) -> float:
    """Standard error of the mean of the non-missing values.

    Uses the sample standard deviation (``ddof=1``).  With zero or one
    value there is no spread to estimate and the result is 0.
    """
    present = _present(values)
    if present.size <= 1:
        return 0.0
    return float(stats.sem(present, ddof=1))


def replicate_stats(
    matrix: NDArray[np.floating],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Row-wise mean and SEM over a ``(n_rows, n_replicates)`` array.

    A row whose replicates are all missing has mean NaN and SEM 0.

    Returns
    -------
    means, sems : arrays of length ``n_rows``
    """
    matrix = np.asarray(matrix, dtype=np.float64)
    if matrix.ndim != 2:
        raise ValueError(f"matrix must be 2-D (n_rows, n_replicates), got shape {matrix.shape}")

    n_rows = matrix.shape[0]
    means = np.empty(n_rows, dtype=np.float64)
    sems = np.empty(n_rows, dtype=np.float64)
    for i in range(n_rows):
        means[i] = mean(matrix[i])
        sems[i] = sem(matrix[i])
    return means, sems
