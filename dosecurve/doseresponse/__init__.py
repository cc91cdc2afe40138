"""
Dose-response curve fitting for concentration/response tables.

Fits the midpoint-anchored four-parameter logistic (4PL) model to each
replicate group and each sample of a table by exhaustive grid search on
R², and derives EC10, EC90 and AUC from every fit.  Results are
deterministic: the same table always yields the same curves.

Backends: numpy (default) and optional PyTorch for GPU grid evaluation.
"""

from dosecurve.doseresponse._common import (
    DEFAULT_GRID,
    MIN_VALID_POINTS,
    DataPoint,
    FitCancelledError,
    FittedCurve,
    GridSpec,
    SkippedSeries,
    TableFitResult,
)
from dosecurve.doseresponse._models import four_pl, inverse_four_pl
from dosecurve.doseresponse._gof import r_squared
from dosecurve.doseresponse._stats import mean, sem, replicate_stats
from dosecurve.doseresponse._metrics import EC_HIGH, EC_LOW, auc, ec10, ec90, ec_from_fraction
from dosecurve.doseresponse._grid import apply_missing_policy, fit_series
from dosecurve.doseresponse._groups import (
    GroupLayout,
    fit_curves_for_table,
    fit_table,
    resolve_groups,
    table_from_arrays,
)
from dosecurve.doseresponse._batch import fit_all_tables, fit_all_tables_detailed
from dosecurve.doseresponse._quality import QualityMetrics, count_curves, quality_metrics

__all__ = [
    "DEFAULT_GRID",
    "MIN_VALID_POINTS",
    "EC_LOW",
    "EC_HIGH",
    "DataPoint",
    "FittedCurve",
    "GridSpec",
    "GroupLayout",
    "SkippedSeries",
    "TableFitResult",
    "QualityMetrics",
    "FitCancelledError",
    "four_pl",
    "inverse_four_pl",
    "r_squared",
    "mean",
    "sem",
    "replicate_stats",
    "ec_from_fraction",
    "ec10",
    "ec90",
    "auc",
    "apply_missing_policy",
    "fit_series",
    "resolve_groups",
    "table_from_arrays",
    "fit_table",
    "fit_curves_for_table",
    "fit_all_tables",
    "fit_all_tables_detailed",
    "quality_metrics",
    "count_curves",
]
