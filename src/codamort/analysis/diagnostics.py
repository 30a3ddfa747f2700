from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

import numpy as np
import pandas as pd

from codamort.analysis.projections import OeppenForecast
from codamort.models.base import ModelInfo
from codamort.models.oeppen import OeppenFit


@dataclass(frozen=True)
class OeppenSummary:
    A: pd.DataFrame  # ax, bx indexed by age
    K: pd.DataFrame  # kt indexed by year
    info: ModelInfo
    x: np.ndarray
    y: np.ndarray


def _surface_frame(mat: np.ndarray, ages: np.ndarray, years: np.ndarray) -> pd.DataFrame:
    return pd.DataFrame(
        mat,
        index=pd.Index(ages, name="age"),
        columns=pd.Index(years, name="year"),
    )


def residuals(fit: OeppenFit) -> pd.DataFrame:
    """Observed minus fitted d[x] (ages x years)."""
    return _surface_frame(fit.residuals, fit.x, fit.y)


def fitted_frame(fit: OeppenFit) -> pd.DataFrame:
    return _surface_frame(fit.fitted_values, fit.x, fit.y)


def observed_frame(fit: OeppenFit) -> pd.DataFrame:
    return _surface_frame(fit.observed_values, fit.x, fit.y)


def forecast_frame(fc: OeppenForecast, column: str = "mean") -> pd.DataFrame:
    """Forecast d[x] for one k_t column (``mean``, ``L80``, ``U95``, ...)."""
    if column == "mean":
        mat = fc.predicted_values
    elif column in fc.conf_intervals:
        mat = fc.conf_intervals[column]
    else:
        raise KeyError(
            f"Unknown forecast column {column!r}; "
            f"available: {['mean', *fc.conf_intervals]}."
        )
    return _surface_frame(mat, fc.x, fc.y)


def coefficients(fit: OeppenFit) -> Dict[str, np.ndarray]:
    return fit.coefficients


def summary(fit: OeppenFit) -> OeppenSummary:
    axbx = pd.DataFrame(
        {"ax": fit.params.ax, "bx": fit.params.bx},
        index=pd.Index(fit.x, name="age"),
    )
    kt = pd.DataFrame({"kt": fit.params.kt}, index=pd.Index(fit.y, name="year"))
    return OeppenSummary(A=axbx, K=kt, info=fit.info, x=fit.x, y=fit.y)


def goodness_of_fit(fit: OeppenFit) -> Dict[str, float]:
    """In-sample error of the fitted distributions and rank-1 variance share."""
    r = fit.residuals
    return {
        "rmse": float(np.sqrt(np.mean(r**2))),
        "mae": float(np.mean(np.abs(r))),
        "explained_variance_rank1": float(fit.params.explained_variance[0]),
    }


__all__ = [
    "OeppenSummary",
    "coefficients",
    "fitted_frame",
    "forecast_frame",
    "goodness_of_fit",
    "observed_frame",
    "residuals",
    "summary",
]
