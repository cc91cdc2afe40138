"""Tests for replicate-group resolution and table fitting."""

import threading

import numpy as np
import pytest

from dosecurve.doseresponse import (
    DataPoint,
    FitCancelledError,
    GridSpec,
    fit_all_tables,
    fit_curves_for_table,
    fit_table,
    resolve_groups,
    table_from_arrays,
)


SMALL_GRID = GridSpec(
    n_top=5, n_bottom=5,
    n_ec50=7, ec50_log_start=-1.0, ec50_log_step=0.5,
    n_hill=4, hill_start=0.5, hill_step=0.5,
)

CONC = [0.1, 0.3, 1.0, 3.0, 10.0, 30.0, 100.0]


# ---------------------------------------------------------------------------
# Resolver
# ---------------------------------------------------------------------------

class TestResolveGroups:
    """Column-to-group mapping."""

    def test_replicate_mode(self):
        layout = resolve_groups(["a1", "a2", "b1", "b2"], ["A", "A", "B", "B"])
        assert layout.replicate_mode
        assert layout.groups == {"A": [0, 1], "B": [2, 3]}

    def test_first_seen_order(self):
        layout = resolve_groups(["c1", "c2", "c3", "c4"], ["B", "A", "B", "A"])
        assert list(layout.groups) == ["B", "A"]
        assert layout.groups == {"B": [0, 2], "A": [1, 3]}

    def test_no_groups_defaults(self):
        layout = resolve_groups(["x", "y", "z"])
        assert not layout.replicate_mode
        assert layout.groups == {"Group 1": [0], "Group 2": [1], "Group 3": [2]}

    def test_one_to_one_labels_kept(self):
        layout = resolve_groups(["x", "y"], ["first", "second"])
        assert not layout.replicate_mode
        assert layout.groups == {"first": [0], "second": [1]}

    def test_length_mismatch_falls_back(self):
        layout = resolve_groups(["x", "y", "z"], ["A", "A"])
        assert not layout.replicate_mode
        assert layout.groups == {"Group 1": [0], "Group 2": [1], "Group 3": [2]}

    def test_empty(self):
        layout = resolve_groups([])
        assert layout.groups == {}
        assert not layout.replicate_mode

    def test_all_one_group(self):
        layout = resolve_groups(["r1", "r2", "r3"], ["T", "T", "T"])
        assert layout.replicate_mode
        assert layout.groups == {"T": [0, 1, 2]}

    @pytest.mark.parametrize("seed", range(5))
    def test_partition(self, seed):
        """k < n distinct labels give exactly k groups partitioning the columns."""
        rng = np.random.default_rng(seed)
        n = int(rng.integers(2, 12))
        k = int(rng.integers(1, n))
        labels = [f"g{i}" for i in range(k)]
        labels += [f"g{int(j)}" for j in rng.integers(0, k, size=n - k)]
        rng.shuffle(labels)
        names = [f"col{i}" for i in range(n)]

        layout = resolve_groups(names, labels)
        assert layout.replicate_mode
        assert len(layout.groups) == k
        flat = sorted(i for cols in layout.groups.values() for i in cols)
        assert flat == list(range(n))
        for label, cols in layout.groups.items():
            assert all(labels[i] == label for i in cols)


# ---------------------------------------------------------------------------
# Table fitting
# ---------------------------------------------------------------------------

@pytest.fixture
def replicate_table():
    """Two groups of two replicates, seven concentrations."""
    base = np.array([3, 8, 22, 51, 77, 90, 96], dtype=float)
    responses = np.column_stack([base, base + 2, base * 0.8, base * 0.8 + 1])
    return table_from_arrays(CONC, responses, ["a1", "a2", "b1", "b2"], ["A", "A", "B", "B"])


class TestScenarios:
    """End-to-end table scenarios on the default grid."""

    def test_replicate_averaging(self):
        """Two columns in group A: one group curve plus two individual curves."""
        data = [
            DataPoint(1000.0, (100.0, 98.0), ("rep1", "rep2"), ("A", "A")),
            DataPoint(100.0, (90.0, 88.0), ("rep1", "rep2"), ("A", "A")),
            DataPoint(10.0, (70.0, 68.0), ("rep1", "rep2"), ("A", "A")),
        ]
        curves = fit_curves_for_table(data)
        assert [c.sample_name for c in curves] == ["A", "rep1", "rep2"]

        group = curves[0]
        assert group.is_group
        assert group.mean_points.shape == (3, 3)
        np.testing.assert_allclose(group.mean_points[:, 0], [1000, 100, 10])
        np.testing.assert_allclose(group.mean_points[:, 1], [99, 89, 69])
        np.testing.assert_allclose(group.mean_points[:, 2], [1.0, 1.0, 1.0])

        for c in curves[1:]:
            assert c.mean_points is None

    def test_single_column_no_groups(self):
        conc = [10000, 3333, 1111, 370, 123, 41, 14]
        resp = [100, 95, 85, 70, 45, 20, 5]
        data = [DataPoint(c, (r,), ("Compound X",)) for c, r in zip(conc, resp)]
        curves = fit_curves_for_table(data)
        assert len(curves) == 1
        assert curves[0].sample_name == "Compound X"
        assert curves[0].mean_points is None
        assert curves[0].r_squared > 0.9


class TestFitTable:
    """Table-level behaviour on a small grid."""

    def test_replicate_curve_order(self, replicate_table):
        result = fit_table(replicate_table, grid=SMALL_GRID)
        assert [c.sample_name for c in result.curves] == ["A", "B", "a1", "a2", "b1", "b2"]
        assert result.skipped == ()

    def test_group_curve_fits_mean(self, replicate_table):
        result = fit_table(replicate_table, grid=SMALL_GRID)
        group_a = result.curves[0]
        expected = np.array([3, 8, 22, 51, 77, 90, 96], dtype=float) + 1
        np.testing.assert_allclose(group_a.original_points[:, 1], expected)
        np.testing.assert_allclose(group_a.mean_points[:, 1], expected)

    def test_non_replicate_names(self):
        responses = np.column_stack([
            [3, 8, 22, 51, 77, 90, 96],
            [1, 2, 6, 20, 55, 80, 92],
        ]).astype(float)
        data = table_from_arrays(CONC, responses, ["s1", "s2"], ["g1", "g2"])
        curves = fit_curves_for_table(data, grid=SMALL_GRID)
        assert [c.sample_name for c in curves] == ["s1", "s2"]
        assert all(c.mean_points is None for c in curves)

    def test_mismatched_groups_fit_individually(self):
        responses = np.column_stack([[3, 8, 22, 51, 77, 90, 96]] * 2).astype(float)
        data = table_from_arrays(CONC, responses, ["s1", "s2"], ["A", "A"])
        data = [DataPoint(d.concentration, d.responses, d.sample_names, ("A",)) for d in data]
        curves = fit_curves_for_table(data, grid=SMALL_GRID)
        assert [c.sample_name for c in curves] == ["s1", "s2"]

    def test_two_valid_points_skipped(self):
        nan = np.nan
        responses = np.array([
            [3, 10], [8, nan], [22, nan], [51, nan], [77, nan], [90, nan], [96, 95],
        ], dtype=float)
        data = table_from_arrays(CONC, responses, ["good", "sparse"])
        result = fit_table(data, grid=SMALL_GRID)
        assert [c.sample_name for c in result.curves] == ["good"]
        assert len(result.skipped) == 1
        skipped = result.skipped[0]
        assert skipped.sample_name == "sparse"
        assert skipped.kind == "sample"
        assert skipped.n_valid == 2

    def test_three_valid_points_fitted(self):
        nan = np.nan
        responses = np.array([[5], [nan], [30], [nan], [80], [nan], [nan]], dtype=float)
        data = table_from_arrays(CONC, responses, ["three"])
        curves = fit_curves_for_table(data, grid=SMALL_GRID)
        assert len(curves) == 1
        assert curves[0].sample_name == "three"

    def test_individual_curves_keep_raw_nan(self):
        base = np.array([3, 8, 22, 51, 77, 90, 96], dtype=float)
        second = base.copy()
        second[2] = np.nan
        data = table_from_arrays(CONC, np.column_stack([base, second]), ["r1", "r2"], ["G", "G"])
        result = fit_table(data, grid=SMALL_GRID)
        r2 = [c for c in result.curves if c.sample_name == "r2"][0]
        assert np.isnan(r2.original_points[2, 1])

    def test_all_missing_row_zero_filled_in_group(self):
        base = np.array([3, 8, 22, 51, 77, 90, 96], dtype=float)
        responses = np.column_stack([base, base])
        responses[4, :] = np.nan
        data = table_from_arrays(CONC, responses, ["r1", "r2"], ["G", "G"])
        group = fit_table(data, grid=SMALL_GRID).curves[0]
        assert np.isnan(group.mean_points[4, 1])
        assert group.mean_points[4, 2] == 0.0
        assert group.original_points[4, 1] == 0.0

    def test_drop_policy_in_group(self):
        base = np.array([3, 8, 22, 51, 77, 90, 96], dtype=float)
        responses = np.column_stack([base, base])
        responses[4, :] = np.nan
        data = table_from_arrays(CONC, responses, ["r1", "r2"], ["G", "G"])
        group = fit_table(data, grid=SMALL_GRID, missing="drop").curves[0]
        assert group.original_points.shape == (6, 2)
        assert group.mean_points.shape == (7, 3)

    def test_group_skipped_when_sparse(self):
        nan = np.nan
        responses = np.array([
            [1, 2], [nan, nan], [nan, nan], [nan, nan], [nan, nan], [nan, nan], [9, 8],
        ], dtype=float)
        data = table_from_arrays(CONC, responses, ["r1", "r2"], ["G", "G"])
        result = fit_table(data, grid=SMALL_GRID)
        assert result.curves == ()
        kinds = [(s.sample_name, s.kind) for s in result.skipped]
        assert kinds == [("G", "group"), ("r1", "sample"), ("r2", "sample")]

    def test_short_rows_padded(self):
        rows = [DataPoint(c, (v, v + 1), ("a", "b")) for c, v in zip(CONC, [3, 8, 22, 51, 77, 90, 96])]
        rows[0] = DataPoint(CONC[0], (3.0,), ("a", "b"))
        curves = fit_curves_for_table(rows, grid=SMALL_GRID)
        assert [c.sample_name for c in curves] == ["a", "b"]
        assert np.isnan(curves[1].original_points[0, 1])

    def test_none_response_is_missing(self):
        rows = [DataPoint(c, (v,), ("a",)) for c, v in zip(CONC, [3, None, 22, None, 77, None, None])]
        result = fit_table(rows, grid=SMALL_GRID)
        assert result.n_curves == 1

    def test_nan_concentration_row_dropped(self, replicate_table):
        rows = list(replicate_table)
        bad = rows[3]
        rows[3] = DataPoint(float("nan"), bad.responses, bad.sample_names, bad.replicate_groups)
        result = fit_table(rows, grid=SMALL_GRID)
        assert result.n_curves == 6
        for c in result.curves:
            assert c.original_points.shape[0] == 6
            assert np.all(np.isfinite(c.original_points[:, 0]))
        assert result.curves[0].mean_points.shape == (6, 3)

    def test_nan_concentration_does_not_abort_batch(self, replicate_table):
        conc = list(CONC)
        conc[3] = float("nan")
        responses = np.array([[3], [8], [22], [51], [77], [90], [96]], dtype=float)
        bad = table_from_arrays(conc, responses, ["partial"])
        result = fit_all_tables([replicate_table, bad], grid=SMALL_GRID)
        assert len(result) == 2
        assert len(result[0]) == 6
        assert [c.sample_name for c in result[1]] == ["partial"]

    def test_all_concentrations_missing(self):
        rows = [DataPoint(float("nan"), (1.0,), ("a",)) for _ in range(4)]
        result = fit_table(rows, grid=SMALL_GRID)
        assert result.n_curves == 0
        assert result.skipped[0].n_valid == 0

    def test_empty_table(self):
        assert fit_curves_for_table([]) == []
        assert fit_table([]).n_curves == 0

    def test_no_columns(self):
        rows = [DataPoint(c, (), ()) for c in CONC]
        assert fit_curves_for_table(rows) == []

    def test_summary(self, replicate_table):
        result = fit_table(replicate_table, grid=SMALL_GRID)
        s = result.summary()
        assert "Fitted curves: 6" in s
        assert "a1" in s

    def test_cancel(self, replicate_table):
        flag = threading.Event()
        flag.set()
        with pytest.raises(FitCancelledError):
            fit_table(replicate_table, grid=SMALL_GRID, cancel=flag)


class TestTableFromArrays:
    """Row construction helper."""

    def test_rows(self):
        rows = table_from_arrays([1.0, 2.0], [[1, 2], [3, 4]], ["a", "b"], ["G", "G"])
        assert len(rows) == 2
        assert rows[1].concentration == 2.0
        assert rows[1].responses == (3.0, 4.0)
        assert rows[0].sample_names == ("a", "b")
        assert rows[0].replicate_groups == ("G", "G")

    def test_wrong_row_count(self):
        with pytest.raises(ValueError, match="rows"):
            table_from_arrays([1.0], [[1, 2], [3, 4]], ["a", "b"])

    def test_wrong_column_count(self):
        with pytest.raises(ValueError, match="columns"):
            table_from_arrays([1.0, 2.0], [[1, 2], [3, 4]], ["a"])

    def test_not_2d(self):
        with pytest.raises(ValueError, match="2-D"):
            table_from_arrays([1.0, 2.0], [1, 2], ["a"])
