"""
CODAMORT pipelines
==================

Declarative end-to-end workflow used by the CLI: optional zero replacement,
Oeppen fit, k_t forecast and diagnostics. It does not re-implement maths; it
only wires together:

- Data preparation: lifetables.py
- Model fitting: models.oeppen
- Forecasting: analysis.projections (ARIMA via forecasting.arima)
- Diagnostics: analysis.diagnostics
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

import numpy as np

from codamort.analysis.diagnostics import OeppenSummary, goodness_of_fit, summary
from codamort.analysis.projections import OeppenForecast
from codamort.errors import InvalidInputError
from codamort.lifetables import replace_zeros
from codamort.models.base import MortalityModel
from codamort.models.oeppen import Oeppen, OeppenFit

logger = logging.getLogger(__name__)

FORECAST_DEFAULTS: Dict[str, Any] = {
    "h": 20,
    "order": (0, 1, 0),
    "include_drift": True,
    "levels": (80, 95),
    "jump_choice": "actual",
    "method": "ML",
}

_FORECAST_ALIASES = {"horizon": "h", "jumpchoice": "jump_choice", "level": "levels"}


@dataclass
class OeppenPipelineResult:
    model: MortalityModel
    fit: OeppenFit
    forecast: OeppenForecast
    summary: OeppenSummary
    goodness_of_fit: Dict[str, float]


def forecast_kwargs_from_config(config: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """
    Merge a ``forecast`` config section with FORECAST_DEFAULTS.

    ``order: auto`` / ``include_drift: auto`` (or null) request automatic
    ARIMA identification.
    """
    out = dict(FORECAST_DEFAULTS)
    if not config:
        return out
    for key, value in config.items():
        k = _FORECAST_ALIASES.get(str(key).lower(), str(key).lower())
        if k not in FORECAST_DEFAULTS:
            raise InvalidInputError(f"Unknown forecast option '{key}'.")
        if k in ("order", "include_drift") and (value is None or value == "auto"):
            out[k] = None
        elif k == "order":
            out[k] = tuple(int(v) for v in value)
        elif k == "levels":
            out[k] = tuple(float(v) for v in np.atleast_1d(value))
        else:
            out[k] = value
    return out


def oeppen_pipeline(
    dx: np.ndarray,
    ages: Optional[np.ndarray] = None,
    years: Optional[np.ndarray] = None,
    forecast_config: Optional[Mapping[str, Any]] = None,
    zero_replacement: Optional[float] = None,
) -> OeppenPipelineResult:
    """
    Fit the Oeppen model and forecast d[x].

    If ``zero_replacement`` is given, zero/missing cells are replaced by that
    value before fitting; otherwise such cells raise InvalidInputError.
    """
    kwargs = forecast_kwargs_from_config(forecast_config)
    data = np.asarray(dx, dtype=float)
    if zero_replacement is not None:
        n_bad = int(((data == 0) | np.isnan(data)).sum())
        if n_bad:
            logger.info("Replacing %d zero/missing cells by %g", n_bad, zero_replacement)
        data = replace_zeros(data, zero_replacement)

    model = Oeppen().fit(data, x=ages, y=years)
    fit = model.fitted
    if fit is None:
        raise RuntimeError("Oeppen.fit() failed")

    h = kwargs.pop("h")
    fc = model.forecast(h, **kwargs)
    return OeppenPipelineResult(
        model=model,
        fit=fit,
        forecast=fc,
        summary=summary(fit),
        goodness_of_fit=goodness_of_fit(fit),
    )


__all__ = [
    "FORECAST_DEFAULTS",
    "OeppenPipelineResult",
    "forecast_kwargs_from_config",
    "oeppen_pipeline",
]
