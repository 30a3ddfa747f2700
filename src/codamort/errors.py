"""
Exception hierarchy shared by all ``codamort`` modules.

Both concrete errors also derive from the matching builtin exception so that
callers catching ``ValueError`` / ``RuntimeError`` keep working.
"""

from __future__ import annotations


class CodamortError(Exception):
    """Base class for every error raised by codamort."""


class InvalidInputError(CodamortError, ValueError):
    """Input failed validation before any computation took place."""


class NumericalError(CodamortError, RuntimeError):
    """A decomposition or time-series fit did not converge or went non-finite."""


__all__ = ["CodamortError", "InvalidInputError", "NumericalError"]
