"""Single-series 4PL fitting by exhaustive grid search.

Every (top, bottom, EC50, Hill slope) combination of a :class:`GridSpec`
with ``bottom < top`` is scored by R² against the observed responses, and
the best-scoring combination is kept.  There are no gradient steps and no
early termination, so the result is a deterministic function of the input.

Enumeration order is top (outermost), bottom, EC50, Hill slope
(innermost).  A candidate replaces the incumbent only if its R² is
strictly greater, so among tied candidates the earliest one wins.

**CPU path**: numpy, float64.  The ``(EC50, Hill)`` denominators are
computed once; each top value is then scored as one vectorised
``(bottom, EC50 x Hill, observation)`` block and reduced with a
first-occurrence argmax.  Comparing blocks with a strict ``>`` gives the
same winner as the sequential scan.

**GPU path**: the same blocks evaluated in PyTorch (CUDA, Apple MPS or
CPU-torch).  MPS has no float64, so scores there are float32 and near-ties
may resolve differently from the CPU path.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

import numpy as np
from numpy.typing import NDArray

from dosecurve.doseresponse._common import (
    DEFAULT_GRID,
    MIN_VALID_POINTS,
    VALID_BACKENDS,
    VALID_MISSING,
    FitCancelledError,
    FittedCurve,
    GridSpec,
)
from dosecurve.doseresponse._metrics import auc, ec10, ec90
from dosecurve.doseresponse._models import four_pl

logger = logging.getLogger(__name__)

_MIN_CURVE_CONCENTRATION = 1e-6

# (top, bottom, ec50, hill, r_squared)
_GridOptimum = tuple[float, float, float, float, float]


# ---------------------------------------------------------------------------
# Input handling
# ---------------------------------------------------------------------------

def _validate_series(
    concentrations: NDArray[np.floating],
    responses: NDArray[np.floating],
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    x = np.asarray(concentrations, dtype=np.float64)
    y = np.asarray(responses, dtype=np.float64)

    if x.ndim != 1 or y.ndim != 1:
        raise ValueError("concentrations and responses must be 1-D arrays")
    if x.shape != y.shape:
        raise ValueError(
            f"concentrations and responses must have same shape, got {x.shape} and {y.shape}"
        )
    if x.size == 0:
        raise ValueError("concentrations and responses must not be empty")
    if np.any(np.isnan(x)):
        raise ValueError("concentrations must not contain NaN")

    n_valid = int(np.sum(~np.isnan(y)))
    if n_valid < MIN_VALID_POINTS:
        raise ValueError(
            f"Need at least {MIN_VALID_POINTS} non-missing responses, got {n_valid}"
        )
    return x, y


def apply_missing_policy(
    concentrations: NDArray[np.floating],
    responses: NDArray[np.floating],
    missing: str = "zero",
) -> tuple[NDArray[np.float64], NDArray[np.float64]]:
    """Resolve missing (NaN) responses before fitting.

    ``'zero'`` replaces each missing response with 0 and keeps the row;
    this pulls the fit toward a zero baseline wherever data are missing.
    ``'drop'`` removes rows whose response is missing.
    """
    if missing not in VALID_MISSING:
        raise ValueError(f"missing must be one of {VALID_MISSING}, got {missing!r}")

    x = np.asarray(concentrations, dtype=np.float64)
    y = np.asarray(responses, dtype=np.float64)
    absent = np.isnan(y)
    if missing == "zero":
        return x.copy(), np.where(absent, 0.0, y)
    return x[~absent], y[~absent]


def _make_checkpoint(
    timeout: float | None,
    cancel: threading.Event | None,
) -> Callable[[], None]:
    """Return a callable that raises :class:`FitCancelledError` when due."""
    if timeout is not None and timeout <= 0:
        raise ValueError(f"timeout must be positive, got {timeout}")
    deadline = None if timeout is None else time.monotonic() + timeout

    def checkpoint() -> None:
        if cancel is not None and cancel.is_set():
            raise FitCancelledError("grid search cancelled")
        if deadline is not None and time.monotonic() > deadline:
            raise FitCancelledError(f"grid search exceeded timeout of {timeout} s")

    return checkpoint


# ---------------------------------------------------------------------------
# CPU grid search
# ---------------------------------------------------------------------------

def _denominators(
    x: NDArray[np.float64],
    ec50s: NDArray[np.float64],
    hills: NDArray[np.float64],
) -> NDArray[np.float64]:
    """4PL denominators for every (EC50, Hill) pair.

    Returns shape ``(n_ec50 * n_hill, n_obs)``; row ``k`` corresponds to
    ``ec50s[k // n_hill]`` and ``hills[k % n_hill]``.
    """
    e = ec50s[:, None, None]
    h = hills[None, :, None]
    with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
        denom = 1.0 + (2.0 ** (1.0 / h) - 1.0) * (e / x) ** h
    return denom.reshape(-1, x.size)


def _search_cpu(
    x: NDArray[np.float64],
    y: NDArray[np.float64],
    grid: GridSpec,
    checkpoint: Callable[[], None],
) -> _GridOptimum:
    tops = grid.top_values(float(np.max(y)))
    bottoms = grid.bottom_values(float(np.min(y)))
    ec50s = grid.ec50_values()
    hills = grid.hill_values()

    best_top = float(np.max(y))
    best_bottom = float(np.min(y))
    best_ec50 = 1.0
    best_hill = 1.0
    best_r2 = -np.inf

    ss_tot = float(np.sum((y - np.mean(y)) ** 2))
    denom = _denominators(x, ec50s, hills)
    n_shapes = denom.shape[0]

    for top in tops:
        checkpoint()
        admissible = bottoms[bottoms < top]
        if admissible.size == 0:
            continue

        with np.errstate(divide="ignore", over="ignore", invalid="ignore"):
            # same R² as _gof.r_squared, over a whole (bottom, shape) block
            pred = admissible[:, None, None] + (top - admissible)[:, None, None] / denom[None]
            ss_res = np.sum((y - pred) ** 2, axis=2)
            scores = 1.0 - ss_res / ss_tot
        scores = np.where(np.isnan(scores), -np.inf, scores)

        idx = int(np.argmax(scores))
        score = float(scores.flat[idx])
        if score > best_r2:
            i_bottom, k = divmod(idx, n_shapes)
            best_r2 = score
            best_top = float(top)
            best_bottom = float(admissible[i_bottom])
            best_ec50 = float(ec50s[k // grid.n_hill])
            best_hill = float(hills[k % grid.n_hill])

    return best_top, best_bottom, best_ec50, best_hill, best_r2


# ---------------------------------------------------------------------------
# GPU grid search
# ---------------------------------------------------------------------------

def _search_gpu(
    x: NDArray[np.float64],
    y: NDArray[np.float64],
    grid: GridSpec,
    checkpoint: Callable[[], None],
) -> _GridOptimum:
    """Grid search on GPU (CUDA / MPS / CPU-torch)."""
    import torch

    if torch.cuda.is_available():
        device = torch.device("cuda")
    elif hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        device = torch.device("mps")
    else:
        device = torch.device("cpu")

    # MPS (Apple Silicon) does not support float64
    dtype = torch.float32 if device.type == "mps" else torch.float64

    tops = grid.top_values(float(np.max(y)))
    bottoms = grid.bottom_values(float(np.min(y)))
    ec50s = grid.ec50_values()
    hills = grid.hill_values()

    best_top = float(np.max(y))
    best_bottom = float(np.min(y))
    best_ec50 = 1.0
    best_hill = 1.0
    best_r2 = -np.inf

    ss_tot = float(np.sum((y - np.mean(y)) ** 2))

    x_t = torch.from_numpy(x).to(device=device, dtype=dtype)
    y_t = torch.from_numpy(y).to(device=device, dtype=dtype)
    e_t = torch.from_numpy(ec50s).to(device=device, dtype=dtype).view(-1, 1, 1)
    h_t = torch.from_numpy(hills).to(device=device, dtype=dtype).view(1, -1, 1)

    denom = 1.0 + (2.0 ** (1.0 / h_t) - 1.0) * (e_t / x_t) ** h_t
    denom = denom.reshape(-1, x.size)
    n_shapes = denom.shape[0]
    neg_inf = torch.tensor(float("-inf"), device=device, dtype=dtype)

    for top in tops:
        checkpoint()
        admissible = bottoms[bottoms < top]
        if admissible.size == 0:
            continue

        b_t = torch.from_numpy(admissible).to(device=device, dtype=dtype).view(-1, 1, 1)
        pred = b_t + (float(top) - b_t) / denom.unsqueeze(0)
        ss_res = ((y_t - pred) ** 2).sum(dim=2)
        scores = 1.0 - ss_res / ss_tot
        scores = torch.where(torch.isnan(scores), neg_inf, scores)

        idx = int(torch.argmax(scores).item())
        score = float(scores.reshape(-1)[idx].item())
        if score > best_r2:
            i_bottom, k = divmod(idx, n_shapes)
            best_r2 = score
            best_top = float(top)
            best_bottom = float(admissible[i_bottom])
            best_ec50 = float(ec50s[k // grid.n_hill])
            best_hill = float(hills[k % grid.n_hill])

    return best_top, best_bottom, best_ec50, best_hill, best_r2


def _gpu_available() -> bool:
    try:
        import torch
    except ImportError:
        return False
    return torch.cuda.is_available() or (
        hasattr(torch.backends, "mps") and torch.backends.mps.is_available()
    )


# ---------------------------------------------------------------------------
# Curve sampling
# ---------------------------------------------------------------------------

def _fitted_points(
    x: NDArray[np.float64],
    top: float,
    bottom: float,
    ec50: float,
    hill: float,
    grid: GridSpec,
) -> NDArray[np.float64]:
    """Sample the fitted model evenly in log10 concentration.

    Spans ``min_pos / extension`` to ``max * extension``, where
    ``min_pos`` is the smallest positive concentration (floored at 1e-6);
    the upper end is never below it.
    """
    positive = x[x > 0]
    min_conc = _MIN_CURVE_CONCENTRATION
    if positive.size:
        min_conc = max(_MIN_CURVE_CONCENTRATION, float(np.min(positive)))
    max_conc = max(min_conc, float(np.max(x)))

    with np.errstate(divide="ignore", invalid="ignore"):
        log_min = np.log10(min_conc * (1.0 / grid.curve_extension))
        log_max = np.log10(max_conc * grid.curve_extension)

    n_steps = grid.n_curve_points - 1
    steps = np.arange(grid.n_curve_points)
    log_x = log_min + (steps / n_steps) * (log_max - log_min)
    xs = np.power(10.0, log_x)
    ys = four_pl(xs, top, bottom, ec50, hill)
    return np.column_stack([xs, ys])


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def fit_series(
    concentrations: NDArray[np.floating],
    responses: NDArray[np.floating],
    *,
    sample_name: str = "Sample",
    missing: str = "zero",
    grid: GridSpec = DEFAULT_GRID,
    backend: str = "cpu",
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> FittedCurve:
    """Fit a 4PL curve to one concentration/response series.

    Parameters
    ----------
    concentrations : array
        Concentration values.  May contain zeros; must not contain NaN.
    responses : array
        Response values, NaN where missing.  At least 3 must be present.
    sample_name : str
        Name recorded on the returned curve.
    missing : str
        How missing responses enter the fit, see :func:`apply_missing_policy`.
    grid : GridSpec
        Candidate grid.  The default is the canonical 41 x 41 x 61 x 36 grid.
    backend : str
        ``'cpu'`` (numpy, default), ``'gpu'`` (PyTorch) or ``'auto'``
        (GPU when one is available, else CPU).
    timeout : float or None
        Wall-clock limit in seconds for the search.
    cancel : threading.Event or None
        Cooperative cancellation flag, polled between top values.

    Returns
    -------
    FittedCurve
        ``original_points`` holds the series as fitted (after the missing
        policy).  ``r_squared`` is NaN if the fitted responses are constant,
        in which case the parameters are the search seeds
        (``top = max``, ``bottom = min``, ``ec50 = 1``, ``hill_slope = 1``).

    Raises
    ------
    ValueError
        Empty, mismatched or non-1-D input; NaN concentrations; fewer than
        3 non-missing responses; unknown option values.
    FitCancelledError
        *cancel* was set or *timeout* elapsed.

    Examples
    --------
    >>> import numpy as np
    >>> conc = np.array([10000, 3333, 1111, 370, 123, 41, 14])
    >>> resp = np.array([100, 95, 85, 70, 45, 20, 5])
    >>> curve = fit_series(conc, resp)
    >>> curve.r_squared > 0.9
    True
    """
    if backend not in VALID_BACKENDS:
        raise ValueError(f"backend must be one of {VALID_BACKENDS}, got {backend!r}")

    x, y = _validate_series(concentrations, responses)
    x, y = apply_missing_policy(x, y, missing)
    checkpoint = _make_checkpoint(timeout, cancel)

    if backend == "auto":
        backend = "gpu" if _gpu_available() else "cpu"

    started = time.perf_counter()
    if np.sum((y - np.mean(y)) ** 2) == 0.0:
        logger.debug("%s: constant responses, R-squared is undefined", sample_name)
        top, bottom, ec50_, hill = float(np.max(y)), float(np.min(y)), 1.0, 1.0
        r2 = float("nan")
    elif backend == "gpu":
        top, bottom, ec50_, hill, r2 = _search_gpu(x, y, grid, checkpoint)
    else:
        top, bottom, ec50_, hill, r2 = _search_cpu(x, y, grid, checkpoint)
    logger.debug(
        "%s: grid search over %d candidates on %s took %.3f s (R2=%.4f)",
        sample_name, grid.n_candidates, backend, time.perf_counter() - started, r2,
    )

    fitted = _fitted_points(x, top, bottom, ec50_, hill, grid)

    return FittedCurve(
        sample_name=sample_name,
        top=top,
        bottom=bottom,
        ec50=ec50_,
        hill_slope=hill,
        ec10=ec10(top, bottom, ec50_, hill),
        ec90=ec90(top, bottom, ec50_, hill),
        r_squared=r2,
        auc=auc(fitted),
        fitted_points=fitted,
        original_points=np.column_stack([x, y]),
    )
