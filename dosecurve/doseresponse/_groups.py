"""Replicate-group resolution and table-level curve fitting.

A table is a list of :class:`DataPoint` rows sharing one set of sample
(column) names and, optionally, one replicate-group label per column.

When at least one group label is shared by two or more columns, the table
is in *replicate mode*: each group is fitted once on the row-wise mean of
its columns (with SEM recorded in ``mean_points``), and every column is
then fitted on its own as well.  Otherwise every column is fitted once,
under its sample name.

Rows whose concentration is NaN or infinite are dropped before fitting.
Series with fewer than 3 non-missing responses are skipped and reported
in :attr:`TableFitResult.skipped`; they never abort the table.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, replace

import numpy as np
from numpy.typing import NDArray

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
from dosecurve.doseresponse._grid import fit_series
from dosecurve.doseresponse._stats import replicate_stats

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GroupLayout:
    """How a table's columns map onto replicate groups.

    ``groups`` maps each label to its column indices, in first-seen order.
    ``replicate_mode`` is True when at least one group has two or more
    columns.
    """

    groups: dict[str, list[int]]
    replicate_mode: bool


def resolve_groups(
    sample_names: Sequence[str],
    replicate_groups: Sequence[str] | None = None,
) -> GroupLayout:
    """Decide which columns are averaged together.

    Replicate mode requires *replicate_groups* to be present, the same
    length as *sample_names*, and to have fewer distinct labels than
    columns.  Otherwise each column is its own group, labelled by its own
    entry of *replicate_groups* when that list has the right length, or
    ``"Group {i+1}"`` when it is absent or mismatched.
    """
    n_cols = len(sample_names)
    labels: Sequence[str] | None = replicate_groups
    replicate_mode = (
        labels is not None
        and len(labels) == n_cols
        and len(set(labels)) < len(labels)
    )
    if labels is None or len(labels) != n_cols:
        labels = [f"Group {i + 1}" for i in range(n_cols)]

    groups: dict[str, list[int]] = {}
    for i, label in enumerate(labels):
        groups.setdefault(label, []).append(i)

    if not groups:
        for i, name in enumerate(sample_names):
            groups[name] = [i]

    return GroupLayout(groups=groups, replicate_mode=replicate_mode)


# ---------------------------------------------------------------------------
# Table helpers
# ---------------------------------------------------------------------------

def table_from_arrays(
    concentrations: Sequence[float],
    responses: NDArray[np.floating],
    sample_names: Sequence[str],
    replicate_groups: Sequence[str] | None = None,
) -> list[DataPoint]:
    """Build table rows from a concentration vector and a response matrix.

    *responses* has shape ``(n_rows, n_samples)``.
    """
    responses = np.asarray(responses, dtype=np.float64)
    if responses.ndim != 2:
        raise ValueError(f"responses must be 2-D (n_rows, n_samples), got shape {responses.shape}")
    if responses.shape[0] != len(concentrations):
        raise ValueError(
            f"responses has {responses.shape[0]} rows but {len(concentrations)} concentrations given"
        )
    if responses.shape[1] != len(sample_names):
        raise ValueError(
            f"responses has {responses.shape[1]} columns but {len(sample_names)} sample names given"
        )

    names = tuple(sample_names)
    groups = None if replicate_groups is None else tuple(replicate_groups)
    return [
        DataPoint(
            concentration=float(c),
            responses=tuple(float(v) for v in row),
            sample_names=names,
            replicate_groups=groups,
        )
        for c, row in zip(concentrations, responses)
    ]


def _response_matrix(data: Sequence[DataPoint], n_cols: int) -> NDArray[np.float64]:
    """Rows x columns response array; short rows are padded with NaN."""
    matrix = np.full((len(data), n_cols), np.nan)
    for i, row in enumerate(data):
        values = np.asarray(list(row.responses)[:n_cols], dtype=np.float64)
        matrix[i, : values.size] = values
    return matrix


def _n_present(values: NDArray[np.float64]) -> int:
    return int(np.sum(~np.isnan(values)))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def fit_table(
    data: Sequence[DataPoint],
    *,
    missing: str = "zero",
    grid: GridSpec = DEFAULT_GRID,
    backend: str = "cpu",
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> TableFitResult:
    """Fit every replicate group and/or sample of one table.

    Parameters
    ----------
    data : sequence of DataPoint
        Table rows.  Sample names and replicate groups are read from the
        first row.
    missing, grid, backend, cancel :
        Passed through to :func:`fit_series`.
    timeout : float or None
        Wall-clock limit in seconds for the whole table.

    Returns
    -------
    TableFitResult
        In replicate mode, group curves come first (in group order),
        followed by one curve per column.  An empty ``curves`` tuple means
        nothing could be fitted.
    """
    if not data:
        return TableFitResult(curves=())

    deadline = None if timeout is None else time.monotonic() + timeout
    first = data[0]
    sample_names = list(first.sample_names)
    layout = resolve_groups(sample_names, first.replicate_groups)
    logger.debug("group names: %s (replicate mode: %s)", list(layout.groups), layout.replicate_mode)

    concentrations = np.array([row.concentration for row in data], dtype=np.float64)
    matrix = _response_matrix(data, len(sample_names))

    finite = np.isfinite(concentrations)
    if not np.all(finite):
        logger.info("dropping %d rows with non-finite concentration", int(np.sum(~finite)))
        concentrations = concentrations[finite]
        matrix = matrix[finite]

    curves: list[FittedCurve] = []
    skipped: list[SkippedSeries] = []

    def remaining() -> float | None:
        if deadline is None:
            return None
        left = deadline - time.monotonic()
        if left <= 0:
            raise FitCancelledError(f"table fit exceeded timeout of {timeout} s")
        return left

    def fit(values: NDArray[np.float64], name: str, kind: str) -> FittedCurve | None:
        n_valid = _n_present(values)
        if n_valid < MIN_VALID_POINTS:
            reason = f"only {n_valid} non-missing responses (need {MIN_VALID_POINTS})"
            logger.info("%s %r skipped: %s", kind, name, reason)
            skipped.append(SkippedSeries(sample_name=name, kind=kind, n_valid=n_valid, reason=reason))
            return None
        return fit_series(
            concentrations,
            values,
            sample_name=name,
            missing=missing,
            grid=grid,
            backend=backend,
            timeout=remaining(),
            cancel=cancel,
        )

    if layout.replicate_mode:
        for label, cols in layout.groups.items():
            means, sems = replicate_stats(matrix[:, cols])
            curve = fit(means, label, "group")
            if curve is not None:
                mean_points = np.column_stack([concentrations, means, sems])
                curves.append(replace(curve, mean_points=mean_points))

        for col, name in enumerate(sample_names):
            values = matrix[:, col]
            curve = fit(values, name, "sample")
            if curve is not None:
                raw = np.column_stack([concentrations, values])
                curves.append(replace(curve, original_points=raw))
    else:
        for cols in layout.groups.values():
            col = cols[0]
            values = matrix[:, col]
            curve = fit(values, sample_names[col], "sample")
            if curve is not None:
                raw = np.column_stack([concentrations, values])
                curves.append(replace(curve, original_points=raw))

    logger.debug("curve names: %s", [c.sample_name for c in curves])
    return TableFitResult(curves=tuple(curves), skipped=tuple(skipped))


def fit_curves_for_table(
    data: Sequence[DataPoint],
    **options,
) -> list[FittedCurve]:
    """Fit one table and return its curves.

    Keyword options are those of :func:`fit_table`.  Skipped series are
    simply absent from the result.
    """
    return list(fit_table(data, **options).curves)
