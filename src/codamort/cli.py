from __future__ import annotations

import json
import logging
import pickle
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, NoReturn, Optional, cast

import numpy as np
import pandas as pd
import typer

from codamort.analysis.diagnostics import (
    fitted_frame,
    forecast_frame,
    goodness_of_fit,
    residuals,
    summary,
)
from codamort.analysis.validation import time_split_backtest_oeppen
from codamort.errors import CodamortError
from codamort.lifetables import load_dx_table, replace_zeros
from codamort.models.oeppen import fit_oeppen
from codamort.pipeline import forecast_kwargs_from_config, oeppen_pipeline

app = typer.Typer(help="CODAMORT – Compositional mortality forecasting (Oeppen model)")


# ---------------------------------------------------------------------------
# Helpers and shared options
# ---------------------------------------------------------------------------


def _setup_logging(level: str, verbose: bool, quiet: bool) -> None:
    log_level = level.upper()
    if verbose:
        log_level = "DEBUG"
    if quiet:
        log_level = "ERROR"
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(levelname)s | %(message)s",
    )


def _load_config(path: Optional[Path]) -> Dict[str, Any]:
    if path is None:
        return {}
    if not path.exists():
        raise typer.BadParameter(f"Config file {path} does not exist.")
    text = path.read_text()
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        import yaml

        try:
            return yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise typer.BadParameter(
                f"Could not parse config {path} as JSON or YAML."
            ) from exc


def _parse_number_list(spec: Optional[str]) -> Optional[np.ndarray]:
    if spec is None:
        return None
    if spec.strip() == "":
        return None
    items = [float(x) for x in spec.replace(" ", "").split(",") if x]
    return np.asarray(items, dtype=float)


def _parse_order(text: str) -> Any:
    if text.strip().lower() == "auto":
        return "auto"
    parts = [v for v in text.replace(" ", "").split(",") if v]
    try:
        order = [int(v) for v in parts]
    except ValueError as exc:
        raise typer.BadParameter(
            f"--order must be 'p,d,q' integers or 'auto', got {text!r}."
        ) from exc
    if len(order) != 3 or min(order) < 0:
        raise typer.BadParameter(
            f"--order must be three non-negative integers 'p,d,q', got {text!r}."
        )
    return order


def _parse_drift(text: str) -> Any:
    value = text.strip().lower()
    if value == "auto":
        return "auto"
    if value in {"true", "yes", "1"}:
        return True
    if value in {"false", "no", "0"}:
        return False
    raise typer.BadParameter(f"--drift must be 'true', 'false' or 'auto', got {text!r}.")


def _load_dx(
    dx_path: Path,
    ages_inline: Optional[str],
    years_inline: Optional[str],
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    ages = _parse_number_list(ages_inline)
    years = _parse_number_list(years_inline)
    try:
        return load_dx_table(
            dx_path,
            ages=ages,
            years=None if years is None else years.astype(int),
        )
    except CodamortError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _save_table(df: pd.DataFrame, path: Path, fmt: str) -> None:
    fmt_l = fmt.lower()
    if fmt_l == "json":
        df.to_json(path, orient="records", lines=True)
    elif fmt_l == "csv":
        df.to_csv(path, index=False)
    elif fmt_l == "parquet":
        df.to_parquet(path, index=False)
    else:
        raise typer.BadParameter(f"Unsupported format: {fmt}")


def _write(c: "CLIContext", df: pd.DataFrame, stem: str) -> Path:
    out = c.outdir / f"{stem}.{c.output_format.lower()}"
    flat = df.copy()
    flat.columns = [str(col) for col in flat.columns]
    _save_table(flat.reset_index(), out, c.output_format)
    return out


def _maybe_pickle(obj: Any, path: Optional[Path]) -> None:
    if path is None:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as f:
        pickle.dump(obj, f)


def _fail(exc: CodamortError) -> NoReturn:
    typer.echo(f"Error: {exc}", err=True)
    raise typer.Exit(code=1)


@dataclass
class CLIContext:
    outdir: Path
    output_format: str
    verbose: bool
    quiet: bool
    log_level: str
    config: Dict[str, Any]
    save_path: Optional[Path]


def _ctx(ctx: typer.Context) -> CLIContext:
    return cast(CLIContext, ctx.obj)


# ---------------------------------------------------------------------------
# Global options
# ---------------------------------------------------------------------------


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(
        None, "--config", "-c", help="YAML/JSON config file with defaults."
    ),
    outdir: Path = typer.Option(Path("outputs"), help="Output directory."),
    format: str = typer.Option("csv", "--format", help="Tabular output format."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging."),
    quiet: bool = typer.Option(False, "--quiet", help="Quiet logging."),
    log_level: str = typer.Option(
        "INFO", help="Log level (DEBUG, INFO, WARNING, ERROR)."
    ),
    save: Optional[Path] = typer.Option(
        None, help="Optional pickle path to save the fitted/forecast object."
    ),
) -> None:
    cfg = _load_config(config)
    _setup_logging(log_level, verbose, quiet)
    outdir.mkdir(parents=True, exist_ok=True)
    ctx.obj = CLIContext(
        outdir=outdir,
        output_format=format,
        verbose=verbose,
        quiet=quiet,
        log_level=log_level,
        config=cfg,
        save_path=save,
    )


# ---------------------------------------------------------------------------
# DATA subcommands
# ---------------------------------------------------------------------------

data_app = typer.Typer(help="Data utilities (validation, zero replacement).")


@data_app.command("validate-dx")
def data_validate_dx(
    ctx: typer.Context,
    dx_path: Path = typer.Option(..., help="Path to d[x] table (csv/parquet/npy/npz)."),
    ages: Optional[str] = typer.Option(None, help="Inline ages list, e.g. '0,1,2'."),
    years: Optional[str] = typer.Option(None, help="Inline years list, e.g. '2000,2001'."),
) -> None:
    c = _ctx(ctx)
    ages_arr, years_arr, dx = _load_dx(dx_path, ages, years)
    report = {
        "shape": list(dx.shape),
        "ages_min": float(np.min(ages_arr)),
        "ages_max": float(np.max(ages_arr)),
        "years_min": int(np.min(years_arr)),
        "years_max": int(np.max(years_arr)),
        "finite": bool(np.isfinite(dx).all()),
        "has_nan": bool(np.isnan(dx).any()),
        "n_zeros": int((dx == 0).sum()),
        "n_negative": int((dx < 0).sum()),
        "ready_to_fit": bool(np.isfinite(dx).all() and (dx > 0).all()),
    }
    out = c.outdir / "validation_dx.json"
    out.write_text(json.dumps(report, indent=2))
    typer.echo(f"Validation report saved to {out}")


@data_app.command("replace-zeros")
def data_replace_zeros(
    ctx: typer.Context,
    dx_path: Path = typer.Option(..., help="Path to d[x] table."),
    value: float = typer.Option(1e-8, help="Replacement for zero/missing cells."),
    ages: Optional[str] = typer.Option(None, help="Inline ages."),
    years: Optional[str] = typer.Option(None, help="Inline years."),
    output: Optional[Path] = typer.Option(None, help="Output path (.npz)."),
) -> None:
    c = _ctx(ctx)
    ages_arr, years_arr, dx = _load_dx(dx_path, ages, years)
    try:
        dx_clean = replace_zeros(dx, value)
    except CodamortError as exc:
        raise typer.BadParameter(str(exc)) from exc
    out = output or c.outdir / "dx_clean.npz"
    np.savez_compressed(out, dx=dx_clean, ages=ages_arr, years=years_arr)
    typer.echo(f"Cleaned d[x] saved to {out}")


app.add_typer(data_app, name="data")


# ---------------------------------------------------------------------------
# FIT / FORECAST / BACKTEST
# ---------------------------------------------------------------------------


@app.command("fit")
def fit_cmd(
    ctx: typer.Context,
    dx_path: Path = typer.Option(..., help="Path to d[x] table."),
    ages: Optional[str] = typer.Option(None, help="Inline ages."),
    years: Optional[str] = typer.Option(None, help="Inline years."),
) -> None:
    """Fit the Oeppen model and export coefficients, fitted values and residuals."""
    c = _ctx(ctx)
    ages_arr, years_arr, dx = _load_dx(dx_path, ages, years)
    try:
        fit = fit_oeppen(dx, x=ages_arr, y=years_arr)
    except CodamortError as exc:
        _fail(exc)

    s = summary(fit)
    _write(c, s.A, "coefficients_axbx")
    _write(c, s.K, "coefficients_kt")
    _write(c, fitted_frame(fit), "fitted_dx")
    _write(c, residuals(fit), "residuals_dx")
    gof = goodness_of_fit(fit)
    (c.outdir / "goodness_of_fit.json").write_text(json.dumps(gof, indent=2))
    _maybe_pickle(fit, c.save_path)
    typer.echo(
        f"{fit.info.name} fitted on {len(fit.x)} ages x {len(fit.y)} years "
        f"(rank-1 variance {gof['explained_variance_rank1']:.4f}); outputs in {c.outdir}"
    )


@app.command("forecast")
def forecast_cmd(
    ctx: typer.Context,
    dx_path: Path = typer.Option(..., help="Path to d[x] table."),
    ages: Optional[str] = typer.Option(None, help="Inline ages."),
    years: Optional[str] = typer.Option(None, help="Inline years."),
    horizon: Optional[int] = typer.Option(None, "--horizon", help="Years ahead."),
    order: Optional[str] = typer.Option(
        None, help="ARIMA order 'p,d,q' or 'auto' (default from config or 0,1,0)."
    ),
    drift: Optional[str] = typer.Option(
        None, help="Include drift: 'true', 'false' or 'auto'."
    ),
    levels: Optional[str] = typer.Option(None, help="Confidence levels, e.g. '80,95'."),
    jump_choice: Optional[str] = typer.Option(None, help="Jump-off: 'actual' or 'fit'."),
    method: Optional[str] = typer.Option(None, help="ARIMA method: ML, CSS-ML or CSS."),
    zero_replacement: Optional[float] = typer.Option(
        None, help="Replace zero/missing cells by this value before fitting."
    ),
) -> None:
    """Fit the Oeppen model and forecast the age-at-death distribution."""
    c = _ctx(ctx)
    ages_arr, years_arr, dx = _load_dx(dx_path, ages, years)

    fc_cfg: Dict[str, Any] = dict(c.config.get("forecast", {}))
    if horizon is not None:
        fc_cfg["h"] = horizon
    if order is not None:
        fc_cfg["order"] = _parse_order(order)
    if drift is not None:
        fc_cfg["include_drift"] = _parse_drift(drift)
    if levels is not None:
        fc_cfg["levels"] = _parse_number_list(levels).tolist()
    if jump_choice is not None:
        fc_cfg["jump_choice"] = jump_choice
    if method is not None:
        fc_cfg["method"] = method

    try:
        res = oeppen_pipeline(
            dx,
            ages=ages_arr,
            years=years_arr,
            forecast_config=fc_cfg,
            zero_replacement=zero_replacement,
        )
    except CodamortError as exc:
        _fail(exc)

    fc = res.forecast
    _write(c, fc.kt, "forecast_kt")
    _write(c, forecast_frame(fc, "mean"), "forecast_dx_mean")
    for col in fc.conf_intervals:
        _write(c, forecast_frame(fc, col), f"forecast_dx_{col}")
    _maybe_pickle(fc, c.save_path)
    typer.echo(
        f"Forecast {fc.y[0]}-{fc.y[-1]} with {fc.arima} "
        f"(jump-off '{fc.settings.jump_choice}'); outputs in {c.outdir}"
    )


@app.command("backtest")
def backtest_cmd(
    ctx: typer.Context,
    dx_path: Path = typer.Option(..., help="Path to d[x] table."),
    train_end: int = typer.Option(..., help="Last year of the training window."),
    ages: Optional[str] = typer.Option(None, help="Inline ages."),
    years: Optional[str] = typer.Option(None, help="Inline years."),
    jump_choice: str = typer.Option("actual", help="Jump-off: 'actual' or 'fit'."),
) -> None:
    """Out-of-sample accuracy of d[x] forecasts with a time split."""
    c = _ctx(ctx)
    ages_arr, years_arr, dx = _load_dx(dx_path, ages, years)
    kwargs = forecast_kwargs_from_config(c.config.get("forecast"))
    try:
        res = time_split_backtest_oeppen(
            dx,
            years_arr,
            train_end,
            ages=ages_arr,
            order=kwargs["order"],
            include_drift=kwargs["include_drift"],
            jump_choice=jump_choice,
            method=kwargs["method"],
        )
    except CodamortError as exc:
        _fail(exc)

    report = {
        "train_end": train_end,
        "n_test_years": int(len(res["test_years"])),
        "rmse_in_sample": res["rmse_in_sample"],
        "rmse_forecast": res["rmse_forecast"],
        "mae_forecast": res["mae_forecast"],
    }
    out = c.outdir / "backtest.json"
    out.write_text(json.dumps(report, indent=2))
    typer.echo(f"Backtest report saved to {out}")


# ---------------------------------------------------------------------------
# Version
# ---------------------------------------------------------------------------


@app.command("version")
def version_cmd() -> None:
    from codamort import __version__

    typer.echo(__version__)


if __name__ == "__main__":
    app()
