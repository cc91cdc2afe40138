"""Quality summary over a collection of fitted curves."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

import numpy as np

from dosecurve.doseresponse._common import FittedCurve

DEFAULT_R2_THRESHOLD = 0.80


@dataclass(frozen=True)
class QualityMetrics:
    """Acceptance counts for a set of curves at an R² threshold.

    Curves whose R² is NaN or infinite count as degenerate and are left
    out of the average and of the accepted/rejected counts.
    """

    average_r_squared: float
    n_accepted: int
    n_rejected: int
    n_degenerate: int
    threshold: float
    n_curves: int

    def summary(self) -> str:
        lines = [
            f"Curves: {self.n_curves}",
            f"  mean R-squared = {self.average_r_squared:.4f}",
            f"  accepted (R2 >= {self.threshold:g}) = {self.n_accepted}",
            f"  rejected       = {self.n_rejected}",
            f"  degenerate     = {self.n_degenerate}",
        ]
        return "\n".join(lines)


CurveCollection = (
    Sequence[FittedCurve]
    | Sequence[Sequence[FittedCurve]]
    | Mapping[str, Sequence[FittedCurve]]
)


def _flatten(curves: CurveCollection) -> list[FittedCurve]:
    """Accept flat, nested or dataset-keyed curve collections."""
    groups: Iterable
    if isinstance(curves, Mapping):
        groups = curves.values()
    else:
        groups = curves
    flat: list[FittedCurve] = []
    for item in groups:
        if isinstance(item, FittedCurve):
            flat.append(item)
        else:
            flat.extend(item)
    return flat


def count_curves(curves: CurveCollection) -> int:
    """Total number of curves in a flat, nested or keyed collection."""
    return len(_flatten(curves))


def quality_metrics(
    curves: CurveCollection,
    *,
    threshold: float = DEFAULT_R2_THRESHOLD,
) -> QualityMetrics:
    """Average R² and accepted/rejected counts at *threshold*.

    Empty input gives an average of 0 and zero counts.
    """
    flat = _flatten(curves)
    r2 = np.array([c.r_squared for c in flat], dtype=np.float64)
    finite = r2[np.isfinite(r2)]

    average = float(np.mean(finite)) if finite.size else 0.0
    return QualityMetrics(
        average_r_squared=average,
        n_accepted=int(np.sum(finite >= threshold)),
        n_rejected=int(np.sum(finite < threshold)),
        n_degenerate=int(r2.size - finite.size),
        threshold=threshold,
        n_curves=len(flat),
    )
