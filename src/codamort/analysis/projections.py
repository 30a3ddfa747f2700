"""
projections.py — Forecast of the age-at-death distribution (Oeppen model)
=======================================================================

The only time-varying parameter of the Oeppen model is k_t. Forecasting
therefore consists of:

1) fitting an ARIMA model to k_t (``codamort.forecasting.arima``),
2) extrapolating k_t h+1 steps with prediction intervals,
3) mapping each k_t column (mean, L<level>, U<level>) back to d[x]:

       d[t, x] = C(clr^-1(k_t b_x) * a_x)

4) adjusting for the jump-off at the forecast origin and dropping the
   anchor row.

Jump-off
--------
The first extrapolated k_t value is used as an anchor (row labelled 0):

- ``"actual"`` : every row is perturbed by J = d_obs[T] / d_anchor so that the
  anchor coincides with the last observed distribution;
- ``"fit"``    : no adjustment; forecasts continue from the model's own fit.

The anchor is kept in ``OeppenForecast.jump_off`` for inspection, but it is
not part of the forecast years.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from codamort.errors import InvalidInputError
from codamort.forecasting.arima import (
    FIT_METHODS,
    ArimaSpec,
    FitMethod,
    _check_order,
    fit_arima,
    forecast_arima,
    normalize_levels,
    select_arima_order,
)
from codamort.models.base import ModelInfo
from codamort.models.coda import close
from codamort.models.oeppen import OeppenFit, OeppenParams, reconstruct_dx

logger = logging.getLogger(__name__)

JumpChoice = Literal["actual", "fit"]
JUMP_CHOICES: Tuple[str, ...] = ("actual", "fit")


@dataclass(frozen=True)
class ForecastSettings:
    h: int
    order: Optional[Tuple[int, int, int]]
    include_drift: Optional[bool]
    levels: Tuple[float, ...]
    jump_choice: str
    method: str


@dataclass(frozen=True)
class OeppenForecast:
    x: np.ndarray  # (A,) ages
    y: np.ndarray  # (h,) forecast years
    kt: pd.DataFrame  # index [0, *y], columns mean / L.. / U..
    predicted_values: np.ndarray  # (A, h) from the mean column
    conf_intervals: Dict[str, np.ndarray]  # bound column -> (A, h)
    jump_off: Dict[str, np.ndarray]  # column -> (A,) anchor composition
    kt_model: Any  # statsmodels results object
    arima: ArimaSpec
    info: ModelInfo
    settings: ForecastSettings


def _level_label(level: float) -> str:
    return f"{float(level):g}"


def kt_column_names(levels: Sequence[float]) -> List[str]:
    """Column names of the k_t table: mean, L<level>..., U<level>..."""
    labels = [_level_label(lv) for lv in levels]
    return ["mean"] + [f"L{s}" for s in labels] + [f"U{s}" for s in labels]


def _check_horizon(h: Any) -> int:
    try:
        h_int = int(h)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError("h must be a positive integer.") from exc
    if h_int != h or h_int <= 0:
        raise InvalidInputError("h must be a positive integer.")
    return h_int


def forecast_years(y: np.ndarray, h: int) -> np.ndarray:
    """Contiguous forecast years starting right after the last fitted year."""
    h = _check_horizon(h)
    bop = int(np.asarray(y)[-1]) + 1
    return np.arange(bop, bop + h, dtype=int)


def reconstruct_with_jump_off(
    kt: np.ndarray,
    params: OeppenParams,
    jump_choice: JumpChoice,
    last_observed: np.ndarray,
) -> np.ndarray:
    """
    Compositions for one k_t column, anchor row included: shape (len(kt), A).
    With ``"actual"`` the first row equals ``last_observed`` (closed).
    """
    if jump_choice not in JUMP_CHOICES:
        raise InvalidInputError(f"jump_choice must be one of {JUMP_CHOICES}, got {jump_choice!r}.")
    p = reconstruct_dx(params, kt)  # (n, A)
    if jump_choice == "actual":
        J = np.asarray(last_observed, dtype=float) / p[0]
        p = close(p * J)
    return p


def get_dx_values(
    fit: OeppenFit,
    kt: pd.DataFrame,
    jump_choice: JumpChoice,
) -> Tuple[Dict[str, np.ndarray], Dict[str, np.ndarray]]:
    """
    d[x] forecasts for every column of the k_t table.

    Returns (values, anchors): values[col] has shape (A, h) with the anchor
    row removed; anchors[col] is the (A,) composition at the forecast origin.
    """
    last_observed = fit.observed_values[:, -1]
    values: Dict[str, np.ndarray] = {}
    anchors: Dict[str, np.ndarray] = {}
    for col in kt.columns:
        p = reconstruct_with_jump_off(
            kt[col].to_numpy(dtype=float), fit.params, jump_choice, last_observed
        )
        anchors[col] = p[0].copy()
        values[col] = p[1:].T  # (A, h)
    return values, anchors


def forecast_oeppen(
    fit: OeppenFit,
    h: int,
    order: Optional[Sequence[int]] = (0, 1, 0),
    include_drift: Optional[bool] = True,
    levels: Sequence[float] = (80, 95),
    jump_choice: JumpChoice = "actual",
    method: FitMethod = "ML",
) -> OeppenForecast:
    """
    Forecast the age-at-death distribution ``h`` years ahead.

    ``order=None`` and/or ``include_drift=None`` let ``select_arima_order``
    choose them from k_t.
    """
    h = _check_horizon(h)
    if jump_choice not in JUMP_CHOICES:
        raise InvalidInputError(f"jump_choice must be one of {JUMP_CHOICES}, got {jump_choice!r}.")
    if method not in FIT_METHODS:
        raise InvalidInputError(f"method must be one of {FIT_METHODS}, got {method!r}.")
    lv = normalize_levels(levels)

    fcy = forecast_years(fit.y, h)
    kt_hist = fit.params.kt

    if order is None or include_drift is None:
        auto = select_arima_order(kt_hist, method=method)
        order = auto.order if order is None else order
        include_drift = auto.include_drift if include_drift is None else include_drift
    order = _check_order(order)
    if include_drift and order[1] >= 2:
        logger.warning("Drift is not identified for d=%d; it has been dropped.", order[1])
    kt_arima = ArimaSpec(order, bool(include_drift) and order[1] <= 1)

    kt_model = fit_arima(kt_hist, kt_arima.order, kt_arima.include_drift, method=method)
    tsf = forecast_arima(kt_model, steps=h + 1, levels=lv)

    kt_table = pd.DataFrame(
        np.column_stack([tsf.mean, tsf.lower, tsf.upper]),
        index=pd.Index(np.concatenate([[0], fcy]), name="year"),
        columns=kt_column_names(lv),
    )

    values, anchors = get_dx_values(fit, kt_table, jump_choice)
    logger.info(
        "Forecast %d years (%d-%d) with %s, jump-off '%s'",
        h,
        fcy[0],
        fcy[-1],
        kt_arima,
        jump_choice,
    )

    settings = ForecastSettings(
        h=h,
        order=kt_arima.order,
        include_drift=kt_arima.include_drift,
        levels=tuple(float(v) for v in lv),
        jump_choice=jump_choice,
        method=method,
    )
    return OeppenForecast(
        x=fit.x,
        y=fcy,
        kt=kt_table,
        predicted_values=values["mean"],
        conf_intervals={k: v for k, v in values.items() if k != "mean"},
        jump_off=anchors,
        kt_model=kt_model,
        arima=kt_arima,
        info=fit.info,
        settings=settings,
    )


__all__ = [
    "JUMP_CHOICES",
    "ForecastSettings",
    "OeppenForecast",
    "forecast_oeppen",
    "forecast_years",
    "get_dx_values",
    "kt_column_names",
    "reconstruct_with_jump_off",
]
