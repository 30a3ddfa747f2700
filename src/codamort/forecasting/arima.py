"""
arima.py — ARIMA engine for the time index k_t
=============================================

Thin adapter around the ``statsmodels`` state-space SARIMAX so the CoDa
models can treat time-series forecasting as a collaborator with three
operations:

- ``select_arima_order(series)``          -> ArimaSpec(order, include_drift)
- ``fit_arima(series, order, drift, method)`` -> statsmodels results object
- ``forecast_arima(results, steps, levels)``  -> ArimaForecast

Drift convention
----------------
``include_drift`` has the meaning used by R's ``forecast::Arima``: a linear
trend in the level of the series. For SARIMAX, whose trend polynomial acts on
the differenced series, this translates to:

    d = 0 : "c"  (mean)   or "ct" (mean + drift)
    d = 1 : "n"           or "c"  (constant on the differences)
    d >= 2: "n"  (drift is not identified and is dropped)

Fitting methods
---------------
- "ML"     : exact Gaussian likelihood via the Kalman filter.
- "CSS"    : conditional (differenced) ML. The series is differenced up
             front, so the first d observations are conditioned on, and the
             ARMA part is fitted by exact Gaussian ML on the differences. This
             is not a conditional sum of squares when p or q > 0. The
             estimates are then run through the full model with ``filter`` so
             forecasts are on the original scale.
- "CSS-ML" : conditional estimates used as starting values for exact ML.

ARIMA(0,1,0) is estimated in closed form for every method: the drift is the
mean of the first differences and sigma2 their variance.
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass
from typing import Literal, Optional, Sequence, Tuple

import numpy as np
from statsmodels.tools.sm_exceptions import ConvergenceWarning, InterpolationWarning
from statsmodels.tsa.statespace.sarimax import SARIMAX
from statsmodels.tsa.stattools import kpss

from codamort.errors import InvalidInputError, NumericalError

logger = logging.getLogger(__name__)

FitMethod = Literal["ML", "CSS-ML", "CSS"]
FIT_METHODS: Tuple[str, ...] = ("ML", "CSS-ML", "CSS")


@dataclass(frozen=True)
class ArimaSpec:
    order: Tuple[int, int, int]
    include_drift: bool

    def __str__(self) -> str:
        p, d, q = self.order
        drift = " with drift" if self.include_drift else ""
        return f"ARIMA({p},{d},{q}){drift}"


@dataclass(frozen=True)
class ArimaForecast:
    mean: np.ndarray  # (H,)
    lower: np.ndarray  # (H, L)
    upper: np.ndarray  # (H, L)
    levels: np.ndarray  # (L,) in percent


def _as_series(series: Sequence[float]) -> np.ndarray:
    y = np.asarray(series, dtype=float)
    if y.ndim != 1 or y.size < 2:
        raise InvalidInputError("series must be 1D with at least 2 points.")
    if not np.isfinite(y).all():
        raise InvalidInputError("series must contain finite values.")
    return y


def _check_order(order: Sequence[int]) -> Tuple[int, int, int]:
    try:
        p, d, q = (int(v) for v in order)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError("order must be a sequence of three integers (p, d, q).") from exc
    if min(p, d, q) < 0:
        raise InvalidInputError("ARIMA orders must be non-negative.")
    return p, d, q


def _trend_for(d: int, include_drift: bool) -> str:
    if d == 0:
        return "ct" if include_drift else "c"
    if d == 1:
        return "c" if include_drift else "n"
    if include_drift:
        logger.warning("Drift is not identified for d=%d; it has been dropped.", d)
    return "n"


def normalize_levels(levels: Sequence[float]) -> np.ndarray:
    """Confidence levels in percent; fractions in (0, 1) are scaled by 100."""
    lv = np.atleast_1d(np.asarray(levels, dtype=float))
    if lv.size == 0:
        raise InvalidInputError("At least one confidence level is required.")
    if np.all((lv > 0) & (lv < 1)):
        lv = 100.0 * lv
    if not np.all((lv > 0) & (lv < 100)):
        raise InvalidInputError("Confidence levels must lie in (0, 100).")
    return lv


def _check_results(res, label: str) -> None:
    params = np.asarray(res.params, dtype=float)
    if not np.isfinite(params).all():
        raise NumericalError(f"{label}: estimated parameters are not finite.")
    if not np.isfinite(res.llf):
        raise NumericalError(f"{label}: log-likelihood is not finite.")


def _converged(res) -> bool:
    retvals = getattr(res, "mle_retvals", None)
    return not (isinstance(retvals, dict) and retvals.get("converged") is False)


def _fit_mle(model, label: str, start_params=None):
    """
    L-BFGS fit; if the optimizer does not report convergence (line-search
    stops are common on near-linear k_t), Nelder-Mead is restarted from the
    L-BFGS estimates and the higher likelihood is kept.
    """
    res = model.fit(start_params=start_params, disp=False)
    if _converged(res):
        return res
    logger.debug("%s: L-BFGS did not report convergence, retrying with Nelder-Mead", label)
    alt = model.fit(start_params=res.params, method="nm", maxiter=5000, disp=False)
    if np.isfinite(alt.llf) and not (np.isfinite(res.llf) and res.llf >= alt.llf):
        return alt
    return res


def _random_walk_params(model, y: np.ndarray) -> np.ndarray:
    """
    Closed-form MLE of ARIMA(0,1,0): drift = mean of the first differences,
    sigma2 = their variance (about the drift, or about zero without drift).
    """
    dy = np.diff(y)
    mu = float(dy.mean()) if "intercept" in model.param_names else 0.0
    sigma2 = float(np.mean((dy - mu) ** 2))
    # perfectly linear series: keep the variance positive
    sigma2 = max(sigma2, 1e-12 * max(1.0, float(np.mean(dy**2))))
    return np.array([mu if name == "intercept" else sigma2 for name in model.param_names])


def fit_arima(
    series: Sequence[float],
    order: Sequence[int] = (0, 1, 0),
    include_drift: bool = True,
    method: FitMethod = "ML",
):
    """
    Fit an ARIMA(p,d,q) model (optionally with drift) to a 1D series.
    Returns the statsmodels ``SARIMAXResults`` object.

    ARIMA(0,1,0) is estimated in closed form (every method agrees on it) and
    run through the Kalman filter; other orders are optimized numerically.
    """
    y = _as_series(series)
    p, d, q = _check_order(order)
    if method not in FIT_METHODS:
        raise InvalidInputError(f"method must be one of {FIT_METHODS}, got {method!r}.")
    trend = _trend_for(d, bool(include_drift))
    label = str(ArimaSpec((p, d, q), bool(include_drift)))

    model = SARIMAX(y, order=(p, d, q), trend=trend)
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", ConvergenceWarning)
            if (p, d, q) == (0, 1, 0):
                res = model.filter(_random_walk_params(model, y))
            elif method == "ML":
                res = _fit_mle(model, label)
            else:
                css_model = SARIMAX(
                    y, order=(p, d, q), trend=trend, simple_differencing=True
                )
                css_res = _fit_mle(css_model, label + " [CSS]")
                _check_results(css_res, label + " [CSS]")
                if method == "CSS":
                    res = model.filter(css_res.params)
                else:
                    res = _fit_mle(model, label, start_params=css_res.params)
    except (np.linalg.LinAlgError, ValueError) as exc:
        raise NumericalError(f"{label}: fit failed ({exc}).") from exc

    _check_results(res, label)
    logger.debug("Fitted %s on %d points by %s; llf=%.4f", label, y.size, method, res.llf)
    return res


def forecast_arima(res, steps: int, levels: Sequence[float] = (80, 95)) -> ArimaForecast:
    """
    Point forecast and two-sided prediction intervals ``steps`` ahead.
    Bounds are stacked column-wise in the order of ``levels``.
    """
    steps = int(steps)
    if steps <= 0:
        raise InvalidInputError("steps must be > 0.")
    lv = normalize_levels(levels)

    fc = res.get_forecast(steps=steps)
    mean = np.asarray(fc.predicted_mean, dtype=float).reshape(-1)
    lower = np.empty((steps, lv.size), dtype=float)
    upper = np.empty((steps, lv.size), dtype=float)
    for j, level in enumerate(lv):
        ci = np.asarray(fc.conf_int(alpha=1.0 - level / 100.0), dtype=float)
        lower[:, j] = ci[:, 0]
        upper[:, j] = ci[:, 1]

    if not (np.isfinite(mean).all() and np.isfinite(lower).all() and np.isfinite(upper).all()):
        raise NumericalError("ARIMA forecast produced non-finite values.")
    return ArimaForecast(mean=mean, lower=lower, upper=upper, levels=lv)


def ndiffs_kpss(
    series: Sequence[float],
    alpha: float = 0.05,
    max_d: int = 2,
    min_obs: int = 5,
) -> int:
    """
    Number of differences required for level stationarity, by repeated
    KPSS tests (the rule used by ``forecast::ndiffs``).
    """
    x = _as_series(series)
    d = 0
    while d < max_d:
        if x.size < min_obs or np.ptp(x) == 0:
            break
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", InterpolationWarning)
            _stat, pvalue, _lags, _crit = kpss(x, regression="c", nlags="auto")
        if pvalue >= alpha:
            break
        x = np.diff(x)
        d += 1
    return d


def select_arima_order(
    series: Sequence[float],
    max_p: int = 2,
    max_q: int = 2,
    max_d: int = 2,
    alpha: float = 0.05,
    method: FitMethod = "ML",
) -> ArimaSpec:
    """
    Automatic ARIMA identification for k_t:
      1) d from repeated KPSS tests,
      2) (p, q, drift) minimising AICc over a small grid of fits.
    """
    y = _as_series(series)
    d = ndiffs_kpss(y, alpha=alpha, max_d=max_d)
    drift_grid = (True, False) if d <= 1 else (False,)

    best: Optional[ArimaSpec] = None
    best_aicc = np.inf
    for p in range(max_p + 1):
        for q in range(max_q + 1):
            for drift in drift_grid:
                cand = ArimaSpec((p, d, q), drift)
                try:
                    res = fit_arima(y, cand.order, drift, method=method)
                except NumericalError as exc:
                    logger.debug("Skipping %s: %s", cand, exc)
                    continue
                aicc = float(res.aicc)
                if np.isfinite(aicc) and aicc < best_aicc:
                    best, best_aicc = cand, aicc

    if best is None:
        raise NumericalError("No ARIMA candidate could be fitted to the series.")
    logger.info("Selected %s for k[t] (AICc=%.3f)", best, best_aicc)
    return best


__all__ = [
    "ArimaSpec",
    "ArimaForecast",
    "FIT_METHODS",
    "fit_arima",
    "forecast_arima",
    "ndiffs_kpss",
    "normalize_levels",
    "select_arima_order",
]
