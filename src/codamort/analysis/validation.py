from __future__ import annotations

from typing import Dict, Optional, Sequence, Tuple

import numpy as np

from codamort.analysis.projections import JumpChoice, forecast_oeppen
from codamort.errors import InvalidInputError
from codamort.forecasting.arima import FitMethod
from codamort.models.coda import close
from codamort.models.oeppen import fit_oeppen


def _time_split(
    years: np.ndarray, train_end: int
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    if years.ndim != 1:
        raise InvalidInputError("years must be 1D.")
    if train_end < years[0] or train_end >= years[-1]:
        raise InvalidInputError(f"train_end must be in [{years[0]}, {years[-1]-1}].")
    tr_mask = years <= train_end
    te_mask = years > train_end
    return tr_mask, te_mask, years[tr_mask], years[te_mask]


def _rmse(a: np.ndarray, b: np.ndarray) -> float:
    a = np.asarray(a)
    b = np.asarray(b)
    if a.shape != b.shape:
        raise ValueError(f"RMSE: shapes mismatch {a.shape} vs {b.shape}.")
    return float(np.sqrt(np.mean((a - b) ** 2)))


def _mae(a: np.ndarray, b: np.ndarray) -> float:
    a = np.asarray(a)
    b = np.asarray(b)
    if a.shape != b.shape:
        raise ValueError(f"MAE: shapes mismatch {a.shape} vs {b.shape}.")
    return float(np.mean(np.abs(a - b)))


def time_split_backtest_oeppen(
    dx: np.ndarray,
    years: np.ndarray,
    train_end: int,
    ages: Optional[np.ndarray] = None,
    order: Optional[Sequence[int]] = (0, 1, 0),
    include_drift: Optional[bool] = True,
    jump_choice: JumpChoice = "actual",
    method: FitMethod = "ML",
) -> Dict[str, np.ndarray | float]:
    """
    Backtest the Oeppen model with an explicit time split.

    Fits on years <= train_end, forecasts the remaining years and compares
    the forecast distributions with the observed (closed) ones:
      - in-sample RMSE on d[x],
      - out-of-sample RMSE and MAE on d[x] (forecast window).
    """
    dx = np.asarray(dx, dtype=float)
    years = np.asarray(years, dtype=int)
    if dx.ndim != 2 or years.shape[0] != dx.shape[1]:
        raise InvalidInputError("years must be 1D and match the columns of dx.")
    tr_mask, te_mask, yrs_tr, yrs_te = _time_split(years, train_end)

    fit = fit_oeppen(dx[:, tr_mask], x=ages, y=yrs_tr)
    fc = forecast_oeppen(
        fit,
        h=int(yrs_te.size),
        order=order,
        include_drift=include_drift,
        levels=(80, 95),
        jump_choice=jump_choice,
        method=method,
    )
    if not np.array_equal(fc.y, yrs_te):
        raise InvalidInputError("Test years must be contiguous after train_end.")

    dx_te = close(dx[:, te_mask], axis=0)
    return {
        "train_years": yrs_tr,
        "test_years": yrs_te,
        "dx_forecast": fc.predicted_values,
        "rmse_in_sample": _rmse(fit.observed_values, fit.fitted_values),
        "rmse_forecast": _rmse(dx_te, fc.predicted_values),
        "mae_forecast": _mae(dx_te, fc.predicted_values),
    }


__all__ = ["time_split_backtest_oeppen"]
