"""Shared data types for dose-response curve fitting."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


MIN_VALID_POINTS = 3
"""Series with fewer finite responses than this are not fitted."""

VALID_MISSING = ("zero", "drop")
VALID_BACKENDS = ("cpu", "gpu", "auto")


class FitCancelledError(RuntimeError):
    """Raised when a grid search is cancelled or exceeds its timeout."""


# ---------------------------------------------------------------------------
# Search grid
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GridSpec:
    """Discretisation of the 4PL parameter search.

    Top and bottom candidates are centred on the observed extremes:
    ``anchor - span + i * step`` for ``i in range(n)``, where
    ``span = (n - 1) * step / 2``.  EC50 candidates are geometric,
    ``10 ** (ec50_log_start + i * ec50_log_step)``; Hill slope candidates
    are linear, ``hill_start + i * hill_step``.

    The defaults span EC50 from 1e-3 to 1e3 in steps of 10^0.1 and give
    41 x 41 x 61 x 36 candidates (about 3.7 million).
    """

    n_top: int = 41
    top_step: float = 0.5
    n_bottom: int = 41
    bottom_step: float = 0.5
    n_ec50: int = 61
    ec50_log_start: float = -3.0
    ec50_log_step: float = 0.1
    n_hill: int = 36
    hill_start: float = 0.5
    hill_step: float = 0.1
    n_curve_points: int = 101
    curve_extension: float = 10.0

    def __post_init__(self) -> None:
        for name in ("n_top", "n_bottom", "n_ec50", "n_hill"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.n_curve_points < 2:
            raise ValueError(f"n_curve_points must be >= 2, got {self.n_curve_points}")
        if self.curve_extension <= 0:
            raise ValueError(f"curve_extension must be positive, got {self.curve_extension}")

    def top_values(self, y_max: float) -> NDArray[np.float64]:
        span = (self.n_top - 1) * self.top_step / 2.0
        return (y_max - span) + np.arange(self.n_top) * self.top_step

    def bottom_values(self, y_min: float) -> NDArray[np.float64]:
        span = (self.n_bottom - 1) * self.bottom_step / 2.0
        return (y_min - span) + np.arange(self.n_bottom) * self.bottom_step

    def ec50_values(self) -> NDArray[np.float64]:
        return np.power(10.0, self.ec50_log_start + np.arange(self.n_ec50) * self.ec50_log_step)

    def hill_values(self) -> NDArray[np.float64]:
        return self.hill_start + np.arange(self.n_hill) * self.hill_step

    @property
    def n_candidates(self) -> int:
        """Total number of (top, bottom, ec50, hill) combinations enumerated."""
        return self.n_top * self.n_bottom * self.n_ec50 * self.n_hill


DEFAULT_GRID = GridSpec()


# ---------------------------------------------------------------------------
# Input rows
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DataPoint:
    """One row of a dose-response table.

    All rows of a table share the same ``sample_names`` (and
    ``replicate_groups``); only the first row's labels are consulted.
    Missing response cells are ``NaN`` (``None`` is accepted and read as NaN).
    """

    concentration: float
    responses: Sequence[float | None]
    sample_names: Sequence[str]
    replicate_groups: Sequence[str] | None = None


# ---------------------------------------------------------------------------
# Fit results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FittedCurve:
    """A fitted 4PL curve with derived potency metrics.

    ``fitted_points`` is a ``(n, 2)`` array of ``(x, y)`` sampled from the
    model in log-concentration space, for plotting.  ``original_points`` is
    a ``(n, 2)`` array of observed ``(x, y)``.  ``mean_points`` is a
    ``(n, 3)`` array of ``(x, mean, sem)`` and is present only for
    replicate-group curves.
    """

    sample_name: str
    top: float
    bottom: float
    ec50: float
    hill_slope: float
    ec10: float
    ec90: float
    r_squared: float
    auc: float
    fitted_points: NDArray[np.floating]
    original_points: NDArray[np.floating]
    mean_points: NDArray[np.floating] | None = None

    @property
    def is_group(self) -> bool:
        """True for a replicate-group (mean) curve."""
        return self.mean_points is not None

    def predict(self, concentration: NDArray[np.floating]) -> NDArray[np.floating]:
        """Evaluate the fitted model at *concentration*."""
        from dosecurve.doseresponse._models import four_pl

        return four_pl(concentration, self.top, self.bottom, self.ec50, self.hill_slope)

    def summary(self) -> str:
        """Human-readable parameter report."""
        kind = "replicate group" if self.is_group else "sample"
        lines = [
            f"4PL fit: {self.sample_name} ({kind})",
            "",
            f"  top        = {self.top:>12.4f}",
            f"  bottom     = {self.bottom:>12.4f}",
            f"  EC50       = {self.ec50:>12.4g}",
            f"  Hill slope = {self.hill_slope:>12.4f}",
            f"  EC10       = {self.ec10:>12.4g}",
            f"  EC90       = {self.ec90:>12.4g}",
            "",
            f"  R-squared  = {self.r_squared:.4f}",
            f"  AUC        = {self.auc:.4g}",
            f"  n          = {len(self.original_points)}",
        ]
        return "\n".join(lines)


@dataclass(frozen=True)
class SkippedSeries:
    """A group or sample that was not fitted."""

    sample_name: str
    kind: str  # 'group' or 'sample'
    n_valid: int
    reason: str


@dataclass(frozen=True)
class TableFitResult:
    """All curves fitted from one table, plus the series that were skipped."""

    curves: tuple[FittedCurve, ...]
    skipped: tuple[SkippedSeries, ...] = ()

    @property
    def n_curves(self) -> int:
        return len(self.curves)

    def summary(self) -> str:
        lines = [f"Fitted curves: {self.n_curves}", ""]
        lines.append(f"  {'name':<24s} {'EC50':>12s} {'Hill':>8s} {'R2':>8s}")
        for c in self.curves:
            lines.append(
                f"  {c.sample_name:<24s} {c.ec50:>12.4g} {c.hill_slope:>8.3f} {c.r_squared:>8.4f}"
            )
        if self.skipped:
            lines.append("")
            lines.append(f"Skipped: {len(self.skipped)}")
            for s in self.skipped:
                lines.append(f"  {s.sample_name} ({s.kind}): {s.reason}")
        return "\n".join(lines)
