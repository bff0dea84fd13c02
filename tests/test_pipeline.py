"""End-to-end workflow on a Mauna Loa-like synthetic series."""

import numpy as np
import pandas as pd
import pytest

from co2_sarima.config_utils import ConfigManager
from co2_sarima.main import main, run_analysis
from co2_sarima.model_spec import SarimaSpec

AIRLINE = SarimaSpec(1, 1, 1, 0, 1, 1, 12)
PURE_MA = SarimaSpec(0, 1, 1, 0, 1, 1, 12)


@pytest.fixture(scope="module")
def analysis(co2_like_store):
    return run_analysis(co2_like_store, candidates=[PURE_MA], override=AIRLINE)


def test_override_is_fitted_and_used(analysis):
    assert analysis.selected.spec == AIRLINE
    assert [m.spec for m in analysis.models] == [PURE_MA, AIRLINE]
    assert analysis.selected_report.model_label == AIRLINE.label
    assert analysis.failures == {}


def test_identification_candidates_are_reviewable(analysis):
    candidates = analysis.identification.candidates
    assert candidates
    assert all(sp.d == 1 and sp.D == 1 and sp.s == 12 for sp in candidates)


def test_tables(analysis):
    tables = analysis.tables()
    assert set(tables) == {
        "variance", "correlogram", "coefficients", "stationarity",
        "diagnostics", "comparison", "forecast",
    }
    variances = tables["variance"]["variance"].tolist()
    assert variances[2] < variances[1] < variances[0]
    assert len(tables["comparison"]) == 2
    assert tables["forecast"]["covered"].sum() >= 34
    assert all(isinstance(df, pd.DataFrame) for df in tables.values())


def test_shorter_horizon(co2_like_store):
    result = run_analysis(co2_like_store, candidates=[PURE_MA], override=PURE_MA, horizon=6,
                          config=ConfigManager({"forecast": {"interval_multiplier": 1.5}}))
    assert len(result.forecast) == 6
    assert "actual" not in result.tables()["forecast"].columns
    np.testing.assert_allclose(result.forecast.upper - result.forecast.mean, 1.5 * result.forecast.std_error)


def test_cli_writes_tables(tmp_path, co2_like_store):
    csv_path = tmp_path / "co2.csv"
    co2_like_store.series.to_series().rename_axis("date").reset_index().to_csv(csv_path, index=False)
    out_dir = tmp_path / "results"

    code = main([
        "--series-csv", str(csv_path),
        "--candidates", "0,1,1,0,1,1",
        "--order", "0,1,1,0,1,1",
        "--output-dir", str(out_dir),
        "--no-progress",
        "--log-level", "WARNING",
    ])

    assert code == 0
    for name in ("variance", "correlogram", "coefficients", "stationarity", "diagnostics", "comparison", "forecast"):
        assert (out_dir / f"{name}.csv").exists()
    forecast = pd.read_csv(out_dir / "forecast.csv")
    assert len(forecast) == 36


def test_cli_reports_failure(tmp_path):
    code = main(["--series-csv", str(tmp_path / "missing.csv"), "--output-dir", str(tmp_path), "--no-progress"])
    assert code == 1


def test_cli_reads_yaml_config(tmp_path, co2_like_store):
    csv_path = tmp_path / "co2.csv"
    co2_like_store.series.to_series().rename_axis("date").reset_index().to_csv(csv_path, index=False)
    config_path = tmp_path / "analysis.yaml"
    config_path.write_text(
        "data:\n"
        "  test_size: 24\n"
        "forecast:\n"
        "  interval_multiplier: 1.5\n"
    )
    out_dir = tmp_path / "results"

    code = main([
        "--series-csv", str(csv_path),
        "--config", str(config_path),
        "--candidates", "0,1,1,0,1,1",
        "--order", "0,1,1,0,1,1",
        "--output-dir", str(out_dir),
        "--no-progress",
        "--log-level", "WARNING",
    ])

    assert code == 0
    forecast = pd.read_csv(out_dir / "forecast.csv")
    assert len(forecast) == 24
    np.testing.assert_allclose(forecast["upper"] - forecast["forecast"], 1.5 * forecast["std_error"], rtol=1e-9)
