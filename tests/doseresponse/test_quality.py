"""Tests for the curve-collection quality summary."""

import numpy as np
import pytest

from dosecurve.doseresponse import FittedCurve, count_curves, quality_metrics


def _curve(name, r2):
    pts = np.zeros((3, 2))
    return FittedCurve(
        sample_name=name, top=100.0, bottom=0.0, ec50=1.0, hill_slope=1.0,
        ec10=1 / 9, ec90=9.0, r_squared=r2, auc=0.0,
        fitted_points=pts, original_points=pts,
    )


@pytest.fixture
def curves():
    return [_curve("a", 0.95), _curve("b", 0.85), _curve("c", 0.40)]


class TestQualityMetrics:
    """Average R² and acceptance counts."""

    def test_flat(self, curves):
        q = quality_metrics(curves)
        assert q.n_curves == 3
        assert q.average_r_squared == pytest.approx((0.95 + 0.85 + 0.40) / 3)
        assert q.n_accepted == 2
        assert q.n_rejected == 1
        assert q.n_degenerate == 0
        assert q.threshold == 0.80

    def test_threshold_inclusive(self):
        q = quality_metrics([_curve("x", 0.80)])
        assert q.n_accepted == 1
        assert q.n_rejected == 0

    def test_custom_threshold(self, curves):
        q = quality_metrics(curves, threshold=0.9)
        assert q.n_accepted == 1
        assert q.n_rejected == 2

    def test_nested(self, curves):
        q = quality_metrics([curves[:2], curves[2:]])
        assert q.n_curves == 3
        assert q.n_accepted == 2

    def test_mapping(self, curves):
        q = quality_metrics({"plate1": curves[:1], "plate2": curves[1:]})
        assert q.n_curves == 3
        assert q.n_rejected == 1

    def test_degenerate_excluded(self, curves):
        q = quality_metrics(curves + [_curve("flat", float("nan"))])
        assert q.n_curves == 4
        assert q.n_degenerate == 1
        assert q.n_accepted + q.n_rejected == 3
        assert np.isfinite(q.average_r_squared)

    def test_empty(self):
        q = quality_metrics([])
        assert q.n_curves == 0
        assert q.average_r_squared == 0.0
        assert q.n_accepted == 0

    def test_summary(self, curves):
        s = quality_metrics(curves).summary()
        assert "Curves: 3" in s
        assert "accepted" in s


class TestCountCurves:
    """Curve counting across collection shapes."""

    def test_flat(self, curves):
        assert count_curves(curves) == 3

    def test_nested(self, curves):
        assert count_curves([curves, [], curves[:1]]) == 4

    def test_mapping(self, curves):
        assert count_curves({"a": curves, "b": []}) == 3

    def test_empty(self):
        assert count_curves([]) == 0
