from __future__ import annotations

import numpy as np
import pytest

from codamort.errors import InvalidInputError
from codamort.forecasting.arima import (
    ArimaSpec,
    fit_arima,
    forecast_arima,
    ndiffs_kpss,
    normalize_levels,
    select_arima_order,
)


def _rw_with_drift(n: int = 40, seed: int = 7) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return np.cumsum(-0.5 + 0.3 * rng.normal(size=n))


def test_fit_and_forecast_rw_drift_shapes_and_bounds():
    y = _rw_with_drift()
    res = fit_arima(y, order=(0, 1, 0), include_drift=True, method="ML")
    fc = forecast_arima(res, steps=5, levels=(80, 95))
    assert fc.mean.shape == (5,)
    assert fc.lower.shape == (5, 2)
    assert fc.upper.shape == (5, 2)
    assert np.allclose(fc.levels, [80.0, 95.0])
    # nested intervals around the mean
    assert np.all(fc.lower[:, 1] <= fc.lower[:, 0])
    assert np.all(fc.lower[:, 0] <= fc.mean)
    assert np.all(fc.mean <= fc.upper[:, 0])
    assert np.all(fc.upper[:, 0] <= fc.upper[:, 1])
    # drift is negative, so is the forecast trend
    assert fc.mean[-1] < fc.mean[0]


@pytest.mark.parametrize("method", ["ML", "CSS-ML", "CSS"])
def test_fit_arima_methods_give_finite_forecasts(method):
    y = _rw_with_drift()
    res = fit_arima(y, order=(1, 1, 0), include_drift=True, method=method)
    fc = forecast_arima(res, steps=3, levels=[95])
    assert np.isfinite(fc.mean).all()
    assert fc.lower.shape == (3, 1)


def test_fit_arima_without_drift_is_flat():
    y = _rw_with_drift()
    res = fit_arima(y, order=(0, 1, 0), include_drift=False)
    fc = forecast_arima(res, steps=4)
    assert np.allclose(fc.mean, y[-1])


def test_fit_arima_invalid_inputs():
    y = _rw_with_drift()
    with pytest.raises(InvalidInputError):
        fit_arima(y, method="OLS")
    with pytest.raises(InvalidInputError):
        fit_arima(y, order=(0, -1, 0))
    with pytest.raises(InvalidInputError):
        fit_arima(np.array([1.0]))
    with pytest.raises(InvalidInputError):
        fit_arima(np.array([1.0, np.nan, 2.0]))
    res = fit_arima(y)
    with pytest.raises(InvalidInputError):
        forecast_arima(res, steps=0)


def test_normalize_levels():
    assert np.allclose(normalize_levels([0.8, 0.95]), [80.0, 95.0])
    assert np.allclose(normalize_levels(90), [90.0])
    with pytest.raises(InvalidInputError):
        normalize_levels([80, 120])
    with pytest.raises(InvalidInputError):
        normalize_levels([])


def test_ndiffs_kpss_detects_trend_and_stops_on_constant():
    y = _rw_with_drift(n=60)
    assert ndiffs_kpss(y) >= 1
    assert ndiffs_kpss(np.ones(10)) == 0
    assert ndiffs_kpss(np.array([1.0, 2.0, 3.0])) == 0


def test_select_arima_order_returns_valid_candidate():
    y = _rw_with_drift()
    chosen = select_arima_order(y, max_p=1, max_q=1)
    assert isinstance(chosen, ArimaSpec)
    p, d, q = chosen.order
    assert 0 <= p <= 1 and 0 <= q <= 1 and 0 <= d <= 2
    if d >= 2:
        assert chosen.include_drift is False
    assert str(chosen).startswith("ARIMA(")


def test_arima_spec_str():
    assert str(ArimaSpec((0, 1, 0), True)) == "ARIMA(0,1,0) with drift"
    assert str(ArimaSpec((1, 1, 1), False)) == "ARIMA(1,1,1)"


def _near_linear(n: int = 37, seed: int = 3) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return np.cumsum(-1.0 + 0.05 * rng.normal(size=n))


def test_random_walk_drift_is_mean_of_differences():
    y = _near_linear()
    for method in ("ML", "CSS-ML", "CSS"):
        res = fit_arima(y, order=(0, 1, 0), include_drift=True, method=method)
        params = dict(zip(res.model.param_names, np.asarray(res.params)))
        assert params["intercept"] == pytest.approx(np.diff(y).mean())
        assert params["sigma2"] == pytest.approx(np.diff(y).var())
    fc = forecast_arima(res, steps=3, levels=[95])
    assert np.allclose(np.diff(fc.mean), np.diff(y).mean())


def test_fit_arima_on_near_linear_series_with_ar_term():
    y = _near_linear()
    res = fit_arima(y, order=(1, 1, 0), include_drift=True)
    assert np.isfinite(res.llf)
    fc = forecast_arima(res, steps=5)
    assert np.isfinite(fc.mean).all()
    assert fc.mean[-1] < y[-1]


def test_select_arima_order_on_near_linear_series():
    chosen = select_arima_order(_near_linear(), max_p=1, max_q=1)
    assert isinstance(chosen, ArimaSpec)


def test_perfectly_linear_series_has_positive_variance():
    y = 5.0 - 0.4 * np.arange(20)
    res = fit_arima(y, order=(0, 1, 0), include_drift=True)
    params = dict(zip(res.model.param_names, np.asarray(res.params)))
    assert params["intercept"] == pytest.approx(-0.4)
    assert params["sigma2"] > 0
    fc = forecast_arima(res, steps=2)
    assert np.allclose(fc.mean, [5.0 - 0.4 * 20, 5.0 - 0.4 * 21])
