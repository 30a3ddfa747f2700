from .diagnostics import (
    OeppenSummary,
    coefficients,
    fitted_frame,
    forecast_frame,
    goodness_of_fit,
    observed_frame,
    residuals,
    summary,
)
from .projections import (
    JUMP_CHOICES,
    ForecastSettings,
    OeppenForecast,
    forecast_oeppen,
    forecast_years,
    get_dx_values,
    kt_column_names,
    reconstruct_with_jump_off,
)
from .validation import _mae, _rmse, time_split_backtest_oeppen

__all__ = [
    "OeppenSummary",
    "coefficients",
    "fitted_frame",
    "forecast_frame",
    "goodness_of_fit",
    "observed_frame",
    "residuals",
    "summary",
    "JUMP_CHOICES",
    "ForecastSettings",
    "OeppenForecast",
    "forecast_oeppen",
    "forecast_years",
    "get_dx_values",
    "kt_column_names",
    "reconstruct_with_jump_off",
    "time_split_backtest_oeppen",
    "_rmse",
    "_mae",
]
