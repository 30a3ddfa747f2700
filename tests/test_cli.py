from __future__ import annotations

import json

import numpy as np
import pandas as pd
from typer.testing import CliRunner

from codamort import cli


def _write_wide_csv(path, ages, years, dx) -> None:
    df = pd.DataFrame(dx, columns=years)
    df.insert(0, "Age", ages)
    df.to_csv(path, index=False)


def _toy_surface():
    ages = np.arange(60, 81)
    years = np.arange(2000, 2015)
    A = ages[:, None].astype(float)
    t = (years - years[0])[None, :].astype(float)
    rng = np.random.default_rng(11)
    dens = np.exp(-0.5 * ((A - (72.0 + 0.2 * t)) / 6.0) ** 2) + 1e-3
    return ages, years, 1e4 * dens * rng.lognormal(0.0, 0.01, size=dens.shape)


def test_cli_version():
    runner = CliRunner()
    result = runner.invoke(cli.app, ["version"])
    assert result.exit_code == 0
    assert result.output.strip() != ""


def test_data_validate_and_replace_zeros(tmp_path):
    ages, years, dx = _toy_surface()
    dx[1, 2] = 0.0
    dx_path = tmp_path / "dx.csv"
    _write_wide_csv(dx_path, ages, years, dx)

    runner = CliRunner()
    res_val = runner.invoke(
        cli.app,
        ["--outdir", str(tmp_path), "data", "validate-dx", "--dx-path", str(dx_path)],
    )
    assert res_val.exit_code == 0
    report = json.loads((tmp_path / "validation_dx.json").read_text())
    assert report["shape"] == [ages.size, years.size]
    assert report["n_zeros"] == 1
    assert report["ready_to_fit"] is False

    res_rz = runner.invoke(
        cli.app,
        [
            "--outdir",
            str(tmp_path),
            "data",
            "replace-zeros",
            "--dx-path",
            str(dx_path),
            "--value",
            "0.5",
        ],
    )
    assert res_rz.exit_code == 0
    with np.load(tmp_path / "dx_clean.npz") as clean:
        assert clean["dx"][1, 2] == 0.5
        assert np.array_equal(clean["years"], years)


def test_fit_writes_outputs(tmp_path):
    ages, years, dx = _toy_surface()
    dx_path = tmp_path / "dx.csv"
    _write_wide_csv(dx_path, ages, years, dx)

    runner = CliRunner()
    res = runner.invoke(
        cli.app, ["--outdir", str(tmp_path), "fit", "--dx-path", str(dx_path)]
    )
    assert res.exit_code == 0, res.output
    for stem in ("coefficients_axbx", "coefficients_kt", "fitted_dx", "residuals_dx"):
        assert (tmp_path / f"{stem}.csv").exists()
    axbx = pd.read_csv(tmp_path / "coefficients_axbx.csv")
    assert list(axbx.columns) == ["age", "ax", "bx"]
    assert len(axbx) == ages.size
    gof = json.loads((tmp_path / "goodness_of_fit.json").read_text())
    assert 0.0 < gof["explained_variance_rank1"] <= 1.0


def test_fit_rejects_zero_cells(tmp_path):
    ages, years, dx = _toy_surface()
    dx[0, 0] = 0.0
    dx_path = tmp_path / "dx.csv"
    _write_wide_csv(dx_path, ages, years, dx)

    runner = CliRunner()
    res = runner.invoke(
        cli.app, ["--outdir", str(tmp_path), "fit", "--dx-path", str(dx_path)]
    )
    assert res.exit_code == 1


def test_forecast_with_config_file(tmp_path):
    ages, years, dx = _toy_surface()
    dx_path = tmp_path / "dx.csv"
    _write_wide_csv(dx_path, ages, years, dx)
    cfg = tmp_path / "config.json"
    cfg.write_text(json.dumps({"forecast": {"h": 4, "levels": [90]}}))

    runner = CliRunner()
    res = runner.invoke(
        cli.app,
        [
            "--config",
            str(cfg),
            "--outdir",
            str(tmp_path),
            "forecast",
            "--dx-path",
            str(dx_path),
            "--jump-choice",
            "fit",
        ],
    )
    assert res.exit_code == 0, res.output
    kt = pd.read_csv(tmp_path / "forecast_kt.csv")
    assert list(kt.columns) == ["year", "mean", "L90", "U90"]
    assert list(kt["year"]) == [0, 2015, 2016, 2017, 2018]
    mean = pd.read_csv(tmp_path / "forecast_dx_mean.csv")
    assert list(mean.columns) == ["age", "2015", "2016", "2017", "2018"]
    assert np.allclose(mean.iloc[:, 1:].sum(axis=0), 1.0)
    assert (tmp_path / "forecast_dx_L90.csv").exists()
    assert (tmp_path / "forecast_dx_U90.csv").exists()


def test_backtest_report(tmp_path):
    ages, years, dx = _toy_surface()
    dx_path = tmp_path / "dx.csv"
    _write_wide_csv(dx_path, ages, years, dx)

    runner = CliRunner()
    res = runner.invoke(
        cli.app,
        [
            "--outdir",
            str(tmp_path),
            "backtest",
            "--dx-path",
            str(dx_path),
            "--train-end",
            "2011",
        ],
    )
    assert res.exit_code == 0, res.output
    report = json.loads((tmp_path / "backtest.json").read_text())
    assert report["n_test_years"] == 3
    assert report["rmse_forecast"] >= report["mae_forecast"] >= 0.0


def test_forecast_rejects_malformed_order_and_drift(tmp_path):
    ages, years, dx = _toy_surface()
    dx_path = tmp_path / "dx.csv"
    _write_wide_csv(dx_path, ages, years, dx)
    base = ["--outdir", str(tmp_path), "forecast", "--dx-path", str(dx_path)]

    runner = CliRunner()
    for extra in (
        ["--order", "1,x"],
        ["--order", "1,1"],
        ["--order", "0,-1,0"],
        ["--drift", "maybe"],
    ):
        res = runner.invoke(cli.app, base + extra)
        assert res.exit_code == 2, extra
        assert not (tmp_path / "forecast_kt.csv").exists()


def test_forecast_accepts_drift_spellings(tmp_path):
    ages, years, dx = _toy_surface()
    dx_path = tmp_path / "dx.csv"
    _write_wide_csv(dx_path, ages, years, dx)

    runner = CliRunner()
    res = runner.invoke(
        cli.app,
        [
            "--outdir",
            str(tmp_path),
            "forecast",
            "--dx-path",
            str(dx_path),
            "--horizon",
            "3",
            "--order",
            "0, 1, 0",
            "--drift",
            "no",
        ],
    )
    assert res.exit_code == 0, res.output
    kt = pd.read_csv(tmp_path / "forecast_kt.csv")
    # random walk without drift: flat mean path
    assert np.allclose(kt["mean"], kt["mean"].iloc[0])
