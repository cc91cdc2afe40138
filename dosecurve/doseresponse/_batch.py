"""Batch fitting across many tables (datasets).

Tables are independent: no state is shared between them, so they can be
fitted sequentially or on a thread pool.  Either way results come back in
input order, not completion order.

Progress is reported through an optional callback receiving the completed
fraction ``(n_done_before + 1) / n_tables`` after each table finishes.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor, as_completed

from dosecurve.doseresponse._common import (
    DEFAULT_GRID,
    DataPoint,
    FittedCurve,
    GridSpec,
    TableFitResult,
)
from dosecurve.doseresponse._groups import fit_table

logger = logging.getLogger(__name__)


def _batch_sequential(
    tables: Sequence[Sequence[DataPoint]],
    on_progress: Callable[[float], None] | None,
    options: dict,
) -> list[TableFitResult]:
    """Fit each table in turn."""
    total = len(tables)
    results = []
    for i, table in enumerate(tables):
        results.append(fit_table(table, **options))
        if on_progress is not None:
            on_progress((i + 1) / total)
    return results


def _batch_threaded(
    tables: Sequence[Sequence[DataPoint]],
    on_progress: Callable[[float], None] | None,
    options: dict,
    n_jobs: int,
) -> list[TableFitResult]:
    """Fit tables on a thread pool, re-sequencing results by input index.

    numpy releases the GIL inside the vectorised grid evaluation, so
    threads overlap the bulk of the work.  Progress callbacks run on the
    calling thread.
    """
    total = len(tables)
    results: list[TableFitResult | None] = [None] * total
    with ThreadPoolExecutor(max_workers=n_jobs) as ex:
        futures = {ex.submit(fit_table, table, **options): i for i, table in enumerate(tables)}
        for done, future in enumerate(as_completed(futures)):
            try:
                results[futures[future]] = future.result()
            except Exception:
                # tables not yet started are abandoned
                for pending in futures:
                    pending.cancel()
                raise
            if on_progress is not None:
                on_progress((done + 1) / total)
    return results


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def fit_all_tables_detailed(
    tables: Sequence[Sequence[DataPoint]],
    *,
    on_progress: Callable[[float], None] | None = None,
    n_jobs: int = 1,
    missing: str = "zero",
    grid: GridSpec = DEFAULT_GRID,
    backend: str = "cpu",
    timeout: float | None = None,
    cancel: threading.Event | None = None,
) -> list[TableFitResult]:
    """Fit every table, keeping the skipped-series report of each.

    Parameters
    ----------
    tables : sequence of tables
        Each table is a sequence of :class:`DataPoint` rows.
    on_progress : callable or None
        Called with the completed fraction after each table.
    n_jobs : int
        Number of worker threads.  ``1`` (default) fits sequentially.
    missing, grid, backend, cancel :
        Passed through to :func:`fit_series`.
    timeout : float or None
        Wall-clock limit in seconds per table.

    Returns
    -------
    list of TableFitResult
        One entry per table, in input order.

    Raises
    ------
    FitCancelledError
        A table was cancelled or timed out; the batch stops.
    """
    if n_jobs < 1:
        raise ValueError(f"n_jobs must be >= 1, got {n_jobs}")
    if not tables:
        return []

    options = dict(missing=missing, grid=grid, backend=backend, timeout=timeout, cancel=cancel)
    logger.debug("fitting %d tables with n_jobs=%d", len(tables), n_jobs)

    if n_jobs == 1 or len(tables) == 1:
        results = _batch_sequential(tables, on_progress, options)
    else:
        results = _batch_threaded(tables, on_progress, options, min(n_jobs, len(tables)))

    n_curves = sum(r.n_curves for r in results)
    n_skipped = sum(len(r.skipped) for r in results)
    logger.debug("batch finished: %d curves, %d skipped series", n_curves, n_skipped)
    return results


def fit_all_tables(
    tables: Sequence[Sequence[DataPoint]],
    *,
    on_progress: Callable[[float], None] | None = None,
    **options,
) -> list[list[FittedCurve]]:
    """Fit every table and return one curve list per table, in input order.

    Keyword options are those of :func:`fit_all_tables_detailed`.  With two
    tables, ``on_progress`` receives ``0.5`` and then ``1.0``.
    """
    results = fit_all_tables_detailed(tables, on_progress=on_progress, **options)
    return [list(r.curves) for r in results]
