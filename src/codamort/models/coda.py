from __future__ import annotations

"""
Compositional-data primitives (closure, centred log-ratio and its inverse).

A composition is a vector of positive parts that only carries relative
information. All functions operate along ``axis`` (default: last axis), so a
matrix with years in rows and ages in columns is transformed year by year.
"""

import numpy as np

from codamort.errors import InvalidInputError


def close(a: np.ndarray, axis: int = -1) -> np.ndarray:
    """
    Closure operation: divide every slice along ``axis`` by its sum so that
    parts add up to 1.
    """
    a = np.asarray(a, dtype=float)
    total = a.sum(axis=axis, keepdims=True)
    if np.any(total == 0):
        raise InvalidInputError("Cannot close a composition whose parts sum to zero.")
    return a / total


def geometric_mean(a: np.ndarray, axis: int = 0) -> np.ndarray:
    """Geometric mean exp(mean(log a)) along ``axis``; parts must be > 0."""
    a = np.asarray(a, dtype=float)
    if not np.isfinite(a).all() or (a <= 0).any():
        raise InvalidInputError("Geometric mean requires strictly positive, finite parts.")
    return np.exp(np.log(a).mean(axis=axis))


def clr(a: np.ndarray, axis: int = -1) -> np.ndarray:
    """
    Centred log-ratio transform:

        clr(p)_i = log p_i - mean_j log p_j

    Zeros must be replaced upstream (see ``codamort.lifetables.replace_zeros``).
    """
    a = np.asarray(a, dtype=float)
    if not np.isfinite(a).all() or (a <= 0).any():
        raise InvalidInputError("clr requires strictly positive, finite parts.")
    ln_a = np.log(a)
    return ln_a - ln_a.mean(axis=axis, keepdims=True)


def clr_inv(z: np.ndarray, axis: int = -1) -> np.ndarray:
    """
    Inverse clr: exponentiate and close. The max shift keeps ``exp`` finite
    and cancels out under closure.
    """
    z = np.asarray(z, dtype=float)
    if not np.isfinite(z).all():
        raise InvalidInputError("clr_inv requires finite coordinates.")
    e = np.exp(z - z.max(axis=axis, keepdims=True))
    return close(e, axis=axis)


__all__ = ["close", "geometric_mean", "clr", "clr_inv"]
