import numpy as np
import pandas as pd
import pytest

from co2_sarima.config_utils import ConfigManager
from co2_sarima.data_utils import SeriesStore, TimeSeries, load_co2_monthly, load_series_csv
from co2_sarima.exceptions import InsufficientDataError


def test_timeseries_is_read_only():
    ts = TimeSeries.from_values([1.0, 2.0, 3.0])
    with pytest.raises(ValueError):
        ts.values[0] = 5.0


def test_missing_values_rejected():
    with pytest.raises(ValueError):
        TimeSeries.from_values([1.0, np.nan, 3.0])


def test_gaps_rejected():
    idx = pd.DatetimeIndex(["2000-01-01", "2000-02-01", "2000-04-01"])
    with pytest.raises(ValueError):
        TimeSeries(np.array([1.0, 2.0, 3.0]), idx)


def test_from_series_round_trip():
    idx = pd.period_range("1990-01", periods=24, freq="M")
    s = pd.Series(np.arange(24.0), index=idx, name="co2")
    ts = TimeSeries.from_series(s)
    assert ts.index[0] == pd.Timestamp("1990-01-01")
    pd.testing.assert_series_equal(ts.to_series(), s.set_axis(idx.to_timestamp(how="start")), check_freq=False)


def test_store_holds_out_last_observations():
    ts = TimeSeries.from_values(np.arange(100.0))
    store = SeriesStore(ts)

    train, test = store.split()
    assert len(train) == 64 and len(test) == 36
    assert train.values[-1] == 63.0 and test.values[0] == 64.0
    assert test.index[0] == ts.index[64]


def test_store_rejects_oversized_test_set():
    with pytest.raises(InsufficientDataError):
        SeriesStore(TimeSeries.from_values(np.arange(36.0)), test_size=36)


def test_load_series_csv(tmp_path):
    path = tmp_path / "co2.csv"
    dates = pd.date_range("2000-01-15", periods=30, freq="MS") + pd.Timedelta(days=14)
    pd.DataFrame({"date": dates[::-1], "co2": np.linspace(370, 375, 30)[::-1]}).to_csv(path, index=False)

    ts = load_series_csv(path)

    assert len(ts) == 30
    assert ts.index[0] == pd.Timestamp("2000-02-01")
    assert ts.values[0] == pytest.approx(370.0)


def test_store_from_csv_uses_config(tmp_path):
    path = tmp_path / "co2.csv"
    pd.DataFrame({"date": pd.date_range("2000-01-01", periods=60, freq="MS"),
                  "ppm": np.arange(60.0)}).to_csv(path, index=False)

    store = SeriesStore.from_csv(path, value_col="ppm", config=ConfigManager({"data": {"test_size": 12}}))

    assert store.test_size == 12
    assert len(store.train) == 48


def test_missing_column(tmp_path):
    path = tmp_path / "bad.csv"
    pd.DataFrame({"date": ["2000-01-01"], "x": [1.0]}).to_csv(path, index=False)
    with pytest.raises(ValueError):
        load_series_csv(path)


def test_load_co2_monthly():
    ts = load_co2_monthly()
    assert len(ts) > 500
    assert ts.index[0] == pd.Timestamp("1958-03-01")
    assert ts.season == 12
    assert 310 < ts.values[0] < 320
