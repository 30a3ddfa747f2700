from __future__ import annotations

import numpy as np
import pytest

from codamort.analysis.validation import _mae, _rmse, time_split_backtest_oeppen
from codamort.errors import InvalidInputError


def _toy_dx(ages: np.ndarray, years: np.ndarray) -> np.ndarray:
    rng = np.random.default_rng(7)
    A = ages[:, None].astype(float)
    t = (years - years[0])[None, :].astype(float)
    dens = np.exp(-0.5 * ((A - (70.0 + 0.3 * t)) / 10.0) ** 2) + 1e-3
    return 1e4 * dens * rng.lognormal(0.0, 0.01, size=dens.shape)


def test_backtest_shapes_and_metrics():
    ages = np.arange(40, 101)
    years = np.arange(1990, 2011)
    dx = _toy_dx(ages, years)

    res = time_split_backtest_oeppen(dx, years, train_end=2006, ages=ages)
    assert np.array_equal(res["train_years"], np.arange(1990, 2007))
    assert np.array_equal(res["test_years"], np.arange(2007, 2011))
    assert res["dx_forecast"].shape == (ages.size, 4)
    assert np.allclose(res["dx_forecast"].sum(axis=0), 1.0)
    for key in ("rmse_in_sample", "rmse_forecast", "mae_forecast"):
        assert np.isfinite(res[key]) and res[key] >= 0.0
    assert res["rmse_forecast"] >= res["mae_forecast"]


def test_backtest_rejects_bad_split():
    years = np.arange(2000, 2010)
    dx = _toy_dx(np.arange(50, 60), years)
    with pytest.raises(InvalidInputError):
        time_split_backtest_oeppen(dx, years, train_end=2009)
    with pytest.raises(InvalidInputError):
        time_split_backtest_oeppen(dx, years, train_end=1995)
    with pytest.raises(InvalidInputError):
        time_split_backtest_oeppen(dx, years[:-1], train_end=2005)


def test_error_metrics():
    a = np.array([0.0, 1.0, 2.0])
    b = np.array([1.0, 1.0, 0.0])
    assert _rmse(a, b) == pytest.approx(np.sqrt(5.0 / 3.0))
    assert _mae(a, b) == pytest.approx(1.0)
    with pytest.raises(ValueError):
        _rmse(a, b[:2])
