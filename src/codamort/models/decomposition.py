from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from codamort.errors import NumericalError


@dataclass(frozen=True)
class Rank1Decomposition:
    kt: np.ndarray  # (T,) time index d_1 * u_1
    bx: np.ndarray  # (A,) age loading v_1, unit norm
    singular_values: np.ndarray  # (min(T, A),)
    explained_variance: np.ndarray  # (min(T, A),) cumulative share of d^2


def explained_variance(d: np.ndarray) -> np.ndarray:
    """
    Cumulative share of the squared singular values:
        var_i = sum(d_1..d_i ^ 2) / sum(d ^ 2)
    """
    d2 = np.asarray(d, dtype=float) ** 2
    total = d2.sum()
    if total == 0:
        return np.ones_like(d2)
    return np.cumsum(d2) / total


def rank1_svd(M: np.ndarray) -> Rank1Decomposition:
    """
    Rank-1 SVD of a clr-transformed matrix M[year, age]:

        M = U diag(d) V^T,   kt = d_1 * U[:, 0],   bx = V[:, 0]

    This is the least-squares optimal rank-1 approximation (Eckart-Young).
    """
    M = np.asarray(M, dtype=float)
    if M.ndim != 2:
        raise ValueError("M must be a 2D array with shape (T, A).")
    if not np.isfinite(M).all():
        raise NumericalError("Cannot decompose a matrix with non-finite entries.")

    try:
        U, d, Vt = np.linalg.svd(M, full_matrices=False)
    except np.linalg.LinAlgError as exc:
        raise NumericalError(f"SVD did not converge: {exc}") from exc

    kt = d[0] * U[:, 0]  # (T,)
    bx = Vt[0, :]  # (A,)
    if not (np.isfinite(kt).all() and np.isfinite(bx).all()):
        raise NumericalError("SVD produced non-finite factors.")

    return Rank1Decomposition(
        kt=kt,
        bx=bx,
        singular_values=d,
        explained_variance=explained_variance(d),
    )


__all__ = ["Rank1Decomposition", "rank1_svd", "explained_variance"]
