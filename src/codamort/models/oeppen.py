from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import numpy as np

from codamort.errors import InvalidInputError
from codamort.models.base import ModelInfo, MortalityModel
from codamort.models.coda import close, clr, clr_inv, geometric_mean
from codamort.models.decomposition import rank1_svd

logger = logging.getLogger(__name__)

OEPPEN_INFO = ModelInfo(
    name="Compositional-Data Lee-Carter Mortality Model -- Oeppen",
    name_short="Oeppen",
    formula="clr d[x,t] = a[x] + b[x]k[t]",
)


@dataclass(frozen=True)
class OeppenInput:
    """Arguments passed to ``fit_oeppen``, stored as given."""

    data: np.ndarray  # (A, T)
    x: Optional[np.ndarray] = None
    y: Optional[np.ndarray] = None


@dataclass(frozen=True)
class OeppenParams:
    ax: np.ndarray  # (A,) sums to 1
    bx: np.ndarray  # (A,) unit norm
    kt: np.ndarray  # (T,)
    explained_variance: np.ndarray  # cumulative share of d^2


@dataclass(frozen=True)
class OeppenFit:
    """
    Fitted Oeppen (CoDa Lee-Carter) model.

    All matrices are laid out as (A, T): ages in rows, years in columns.
    """

    x: np.ndarray  # (A,)
    y: np.ndarray  # (T,)
    params: OeppenParams
    fitted_values: np.ndarray  # (A, T)
    observed_values: np.ndarray  # (A, T)
    residuals: np.ndarray  # (A, T)
    info: ModelInfo
    input: OeppenInput

    @property
    def coefficients(self) -> Dict[str, np.ndarray]:
        return {"ax": self.params.ax, "bx": self.params.bx, "kt": self.params.kt}


def validate_oeppen_input(
    data: np.ndarray,
    x: Optional[np.ndarray] = None,
    y: Optional[np.ndarray] = None,
) -> None:
    """
    Eager input checks; each failing condition raises InvalidInputError
    with its own message.
    """
    if data.ndim != 2:
        raise InvalidInputError("'data' must be a 2D array with shape (A, T).")
    if np.isnan(data).any():
        raise InvalidInputError(
            "'data' contains NA values. "
            "The function does not know how to deal with these yet."
        )
    if not np.isfinite(data).all():
        raise InvalidInputError("'data' contains infinite values.")
    if (data == 0).any():
        raise InvalidInputError(
            "'data' contains zero's. "
            "Please replace the values equal to zero from input."
        )
    if (data < 0).any():
        raise InvalidInputError(
            "'data' contains negative values. "
            "The compositions must always be positive."
        )
    if x is not None:
        if np.isnan(np.asarray(x, dtype=float)).any():
            raise InvalidInputError("'x' contains NA values.")
        if len(x) != data.shape[0]:
            raise InvalidInputError(
                "The length of 'x' is not equal to the number of rows in 'data'."
            )
    if y is not None:
        if np.isnan(np.asarray(y, dtype=float)).any():
            raise InvalidInputError("'y' contains NA values.")
        if len(y) != data.shape[1]:
            raise InvalidInputError(
                "The length of 'y' is not equal to the number of columns in 'data'."
            )


def fit_oeppen(
    data: np.ndarray,
    x: Optional[np.ndarray] = None,
    y: Optional[np.ndarray] = None,
) -> OeppenFit:
    """
    Fit the Oeppen model to a death distribution d[age, year].
    Steps:
      1) Close every year to a composition over ages,
      2) a_x = normalised geometric mean over years,
      3) Remove a_x (perturbation by 1/a_x) and re-close,
      4) clr-transform and take the rank-1 SVD -> b_x, k_t,
      5) Reconstruct fitted d[x] = C(clr^-1(k_t b_x) * a_x).
    Returns OeppenFit with fitted, observed and residual surfaces.
    """
    data = np.array(data, dtype=float)  # own copy
    x_in = None if x is None else np.asarray(x)
    y_in = None if y is None else np.asarray(y)
    validate_oeppen_input(data, x_in, y_in)

    A, T = data.shape
    ages = x_in if x_in is not None else np.arange(1, A + 1)
    years = y_in if y_in is not None else np.arange(1, T + 1)

    dx = close(data.T)  # (T, A)
    ax = geometric_mean(dx, axis=0)  # (A,)
    ax = ax / ax.sum()
    cdx = close(dx / ax)  # remove a_x
    ccdx = clr(cdx)  # (T, A)

    dec = rank1_svd(ccdx)
    kt, bx = dec.kt, dec.bx

    fv = clr_inv(np.outer(kt, bx)) * ax  # (T, A)
    fitted = close(fv).T  # (A, T)
    observed = close(data, axis=0)  # same scale as fitted
    resid = observed - fitted

    logger.debug(
        "Oeppen fit on %d ages x %d years; rank-1 explained variance %.4f",
        A,
        T,
        dec.explained_variance[0],
    )

    params = OeppenParams(
        ax=ax,
        bx=bx,
        kt=kt,
        explained_variance=dec.explained_variance,
    )
    return OeppenFit(
        x=ages,
        y=years,
        params=params,
        fitted_values=fitted,
        observed_values=observed,
        residuals=resid,
        info=OEPPEN_INFO,
        input=OeppenInput(data=data.copy(), x=x_in, y=y_in),
    )


def reconstruct_dx(params: OeppenParams, kt: Optional[np.ndarray] = None) -> np.ndarray:
    """
    Map a time index back to compositions:
        d[t, x] = C(clr^-1(k_t b_x) * a_x)
    Returns a matrix with shape (len(kt), A); rows sum to 1.
    """
    k = params.kt if kt is None else np.asarray(kt, dtype=float)
    p = clr_inv(np.outer(k, params.bx)) * params.ax
    return close(p)


class Oeppen(MortalityModel):
    info = OEPPEN_INFO

    def __init__(self):
        self.fitted: Optional[OeppenFit] = None

    def fit(
        self,
        data: np.ndarray,
        x: Optional[np.ndarray] = None,
        y: Optional[np.ndarray] = None,
    ) -> "Oeppen":
        self.fitted = fit_oeppen(data, x=x, y=y)
        return self

    def _require_fit(self) -> OeppenFit:
        if self.fitted is None:
            raise ValueError("Fit first.")
        return self.fitted

    def forecast(self, h: int, **kwargs: Any):
        """
        Forecast d[x] over ``h`` years; keyword arguments are passed to
        ``codamort.analysis.projections.forecast_oeppen``.
        """
        fit = self._require_fit()

        from codamort.analysis.projections import forecast_oeppen

        return forecast_oeppen(fit, h, **kwargs)

    def residuals(self):
        fit = self._require_fit()

        from codamort.analysis.diagnostics import residuals

        return residuals(fit)

    def coefficients(self) -> Dict[str, np.ndarray]:
        return self._require_fit().coefficients

    def summary(self):
        fit = self._require_fit()

        from codamort.analysis.diagnostics import summary

        return summary(fit)


__all__ = [
    "OEPPEN_INFO",
    "OeppenInput",
    "OeppenParams",
    "OeppenFit",
    "Oeppen",
    "fit_oeppen",
    "reconstruct_dx",
    "validate_oeppen_input",
]
