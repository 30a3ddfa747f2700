"""
lifetables.py — Death-distribution utilities for CODAMORT
=========================================================

This module prepares life-table death distributions *dₓ,ₜ* for the
compositional models. It provides:

    • loaders that turn HMD-style life tables or simple wide/long files into
      the canonical CODAMORT surface ``(ages, years, dx)`` with ages in rows
      and years in columns,
    • ``replace_zeros()``, since the clr transform is undefined at zero,
    • ``dx_to_radix()``, which rescales each year to a life-table radix.

Supported input format (HMD-like)
---------------------------------
``load_dx_from_excel()`` expects a sheet structured like the Human Mortality
Database period life tables (e.g. “bltper_1x1”):

    - one row per (Age, Year) pair,
    - columns including at least: Year, Age, dx,
    - an open age group such as “110+” (dropped).

Only the distribution of deaths is read; other life-table columns (mx, qx,
lx, ex ...) are ignored. Life-table reconstruction from forecast dₓ is left
to downstream tools.
"""

from __future__ import annotations

from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from codamort.errors import InvalidInputError


def _norm(s: str) -> str:
    """Normalize header tokens for robust matching."""
    return (
        str(s)
        .strip()
        .lower()
        .replace(" ", "")
        .replace("\t", "")
        .replace("\n", "")
        .replace("-", "")
        .replace("_", "")
    )


_CANON = {
    "year": "Year",
    "age": "Age",
    "dx": "dx",
}


def _find_header_and_map(
    sheet_df: pd.DataFrame, max_scan_rows: int = 50
) -> Tuple[Optional[int], Dict[str, int]]:
    """
    Scan top rows to find the header row and a mapping {CanonName -> column index}.
    Returns (header_row_index, mapping). If not found, (None, {}).
    """
    raw = sheet_df.copy()
    raw.columns = [f"col{j}" for j in range(raw.shape[1])]

    for r in range(min(max_scan_rows, len(raw))):
        normalized = [_norm(v) for v in raw.iloc[r].tolist()]
        colmap: Dict[str, int] = {}
        for j, key in enumerate(normalized):
            if key in _CANON:
                colmap.setdefault(_CANON[key], j)
        if {"Year", "Age", "dx"} <= set(colmap):
            return r, colmap

    return None, {}


def _read_table_with_header(
    sheet_df: pd.DataFrame, header_row: int, colmap: Dict[str, int]
) -> pd.DataFrame:
    """Tidy (Year, Age, dx) table from a raw sheet and its header mapping."""
    data = sheet_df.iloc[header_row + 1 :, [colmap[c] for c in ("Year", "Age", "dx")]]
    sub = data.copy()
    sub.columns = ["Year", "Age", "dx"]

    # open age group, e.g. "110+"
    age_txt = sub["Age"].astype(str).str.strip()
    sub = sub[~age_txt.str.endswith("+")].copy()

    for c in sub.columns:
        sub[c] = pd.to_numeric(sub[c], errors="coerce")
    sub = sub.dropna(subset=["Year", "Age"]).copy()
    sub["Year"] = sub["Year"].astype(int)
    sub["Age"] = sub["Age"].astype(int)
    return sub


def _pivot_long(
    df: pd.DataFrame, age_col: str, year_col: str, value_col: str
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    ages = np.sort(df[age_col].unique())
    years = np.sort(df[year_col].unique().astype(int))
    dx = (
        df.pivot_table(index=age_col, columns=year_col, values=value_col)
        .reindex(index=ages, columns=years)
        .to_numpy(dtype=float)
    )
    return ages, years, dx


def load_dx_from_excel(
    path: str,
    *,
    age_min: int = 0,
    age_max: int = 100,
    year_min: int | None = None,
    year_max: int | None = None,
    drop_years: Iterable[int] | None = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Load a death distribution d[age, year] from an HMD-style Excel life table.

    The first sheet containing 'Year', 'Age' and 'dx' headers is used. Zeros
    are kept as they are; call ``replace_zeros`` before fitting.
    """
    xls_dict = pd.read_excel(path, sheet_name=None, header=None, engine="openpyxl")
    table: Optional[pd.DataFrame] = None
    for _sheet_name, raw in xls_dict.items():
        hrow, cmap = _find_header_and_map(raw)
        if hrow is None:
            continue
        table = _read_table_with_header(raw, hrow, cmap)
        break

    if table is None:
        raise InvalidInputError(
            "Could not find a sheet with Year & Age & dx. "
            f"Scanned sheets: {list(xls_dict.keys())}."
        )

    df = table
    if year_min is not None:
        df = df[df["Year"] >= year_min]
    if year_max is not None:
        df = df[df["Year"] <= year_max]
    df = df[(df["Age"] >= age_min) & (df["Age"] <= age_max)]
    if drop_years is not None:
        df = df[~df["Year"].isin(list(drop_years))]
    if df.empty:
        raise InvalidInputError("No rows left after filtering age/year. Check filters.")

    return _pivot_long(df, "Age", "Year", "dx")


def load_dx_table(
    path: Path,
    ages: Optional[Sequence[float]] = None,
    years: Optional[Sequence[int]] = None,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Load d[age, year] from csv/parquet (wide or long) or npy/npz (wide).

    Wide tables have a first column 'Age' followed by one column per year.
    Long tables need 'Age', 'Year' and a 'dx' (or 'deaths') column. Bare
    arrays need explicit ``ages`` and ``years``.
    """
    path = Path(path)
    ext = path.suffix.lower()

    if ext in {".npy", ".npz"}:
        raw = np.load(path)
        if isinstance(raw, np.lib.npyio.NpzFile):
            if "dx" in raw.files:
                dx = np.asarray(raw["dx"], dtype=float)
                ages = raw["ages"] if ages is None and "ages" in raw.files else ages
                years = raw["years"] if years is None and "years" in raw.files else years
            else:
                dx = np.asarray(raw[list(raw.keys())[0]], dtype=float)
        else:
            dx = np.asarray(raw, dtype=float)
        if dx.ndim != 2:
            raise InvalidInputError("dx array must be 2D with shape (A, T).")
        if ages is None or years is None:
            raise InvalidInputError("Provide ages and years when loading bare arrays.")
        ages_arr = np.asarray(ages, dtype=float)
        years_arr = np.asarray(years, dtype=int)
        if dx.shape != (ages_arr.shape[0], years_arr.shape[0]):
            raise InvalidInputError(
                f"dx shape {dx.shape} incompatible with ages {ages_arr.shape} "
                f"and years {years_arr.shape}."
            )
        return ages_arr, years_arr, dx

    df = pd.read_parquet(path) if ext in {".parquet", ".pq"} else pd.read_csv(path)
    lower = {str(c).lower(): c for c in df.columns}
    if "age" in lower and "year" in lower:
        value_col = next((lower[k] for k in ("dx", "deaths") if k in lower), None)
        if value_col is None:
            raise InvalidInputError("Long format requires a column named 'dx' or 'deaths'.")
        return _pivot_long(df, lower["age"], lower["year"], value_col)

    first_col = df.columns[0]
    if str(first_col).lower() not in {"age", "ages"}:
        raise InvalidInputError(
            "Wide format expected first column 'Age' followed by year columns."
        )
    ages_arr = df[first_col].to_numpy(dtype=float)
    years_arr = np.asarray([int(c) for c in df.columns[1:]], dtype=int)
    dx = df.iloc[:, 1:].to_numpy(dtype=float)
    return ages_arr, years_arr, dx


def replace_zeros(dx: np.ndarray, replace_value: float = 1e-8) -> np.ndarray:
    """
    Replace zero and missing entries by a small positive value so that the
    clr transform is defined. Returns a new array.
    """
    if not replace_value > 0:
        raise InvalidInputError("replace_value must be strictly positive.")
    out = np.array(dx, dtype=float)
    out[(out == 0) | np.isnan(out)] = replace_value
    return out


def dx_to_radix(dx: np.ndarray, lx0: float = 1.0) -> np.ndarray:
    """
    Rescale every year (column) of d[age, year] so that deaths sum to ``lx0``.
    With lx0 = 1 this is the closure of each column.
    """
    dx = np.asarray(dx, dtype=float)
    if dx.ndim != 2:
        raise InvalidInputError(f"dx must be 2D (A, T), got shape {dx.shape}.")
    total = dx.sum(axis=0, keepdims=True)
    if np.any(total == 0):
        raise InvalidInputError("Cannot rescale a year whose deaths sum to zero.")
    return lx0 * dx / total


def validate_dx(dx: np.ndarray, atol: float = 1e-9) -> None:
    """
    Check that forecast/fitted distributions are valid compositions:
    non-negative, finite and each year summing to 1.
    """
    dx = np.asarray(dx, dtype=float)
    if not np.isfinite(dx).all():
        raise ValueError("dx must contain finite values.")
    if (dx < 0).any():
        raise AssertionError("dx must be non-negative.")
    if not np.allclose(dx.sum(axis=0), 1.0, atol=atol):
        raise AssertionError("Each year of dx must sum to 1.")


__all__ = [
    "dx_to_radix",
    "load_dx_from_excel",
    "load_dx_table",
    "replace_zeros",
    "validate_dx",
]
