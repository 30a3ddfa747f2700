from .arima import (
    FIT_METHODS,
    ArimaForecast,
    ArimaSpec,
    fit_arima,
    forecast_arima,
    ndiffs_kpss,
    normalize_levels,
    select_arima_order,
)

__all__ = [
    "FIT_METHODS",
    "ArimaForecast",
    "ArimaSpec",
    "fit_arima",
    "forecast_arima",
    "ndiffs_kpss",
    "normalize_levels",
    "select_arima_order",
]
