# co2_sarima/data_utils.py

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .config_utils import ConfigManager, get_config_value
from .exceptions import InsufficientDataError

logger = logging.getLogger(__name__)

DEFAULT_FREQ = "MS"


def _readonly(values) -> np.ndarray:
    arr = np.array(values, dtype=np.float64)
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True, eq=False)
class TimeSeries:
    """
    Evenly spaced monthly observations with a known seasonal period.

    Parameters
    ----------
    values : np.ndarray
        Observations in time order. Missing values are rejected.
    index : pd.DatetimeIndex
        Strictly increasing timestamps without gaps.
    season : int, default=12
        Seasonal period ``s``.
    name : str, default="co2"
        Label used in tables and logs.
    """

    values: np.ndarray
    index: pd.DatetimeIndex
    season: int = 12
    name: str = "co2"
    freq: str = field(default=DEFAULT_FREQ)

    def __post_init__(self):
        values = _readonly(self.values)
        if values.ndim != 1:
            raise ValueError("TimeSeries values must be one-dimensional")
        if not np.all(np.isfinite(values)):
            raise ValueError("TimeSeries values must be finite (no missing observations)")
        index = pd.DatetimeIndex(self.index)
        if len(index) != len(values):
            raise ValueError(
                f"Index length {len(index)} does not match number of values {len(values)}"
            )
        if int(self.season) < 1:
            raise ValueError("season must be >= 1")
        if len(index) > 1:
            if not index.is_monotonic_increasing or index.has_duplicates:
                raise ValueError("TimeSeries index must be strictly increasing")
            expected = pd.date_range(index[0], periods=len(index), freq=self.freq)
            if not expected.equals(index):
                raise ValueError(f"TimeSeries index has gaps or is not at frequency '{self.freq}'")
        object.__setattr__(self, "values", values)
        object.__setattr__(self, "index", index)
        object.__setattr__(self, "season", int(self.season))

    def __len__(self) -> int:
        return len(self.values)

    @classmethod
    def from_values(cls, values: Sequence[float], start: str = "1959-01-01",
                    season: int = 12, name: str = "co2", freq: str = DEFAULT_FREQ) -> "TimeSeries":
        index = pd.date_range(start, periods=len(values), freq=freq)
        return cls(np.asarray(values, dtype=np.float64), index, season=season, name=name, freq=freq)

    @classmethod
    def from_series(cls, series: pd.Series, season: int = 12, freq: Optional[str] = None) -> "TimeSeries":
        """Wrap a pandas Series with a DatetimeIndex (or monthly PeriodIndex)."""
        s = series
        if isinstance(s.index, pd.PeriodIndex):
            s = s.copy()
            s.index = s.index.to_timestamp(how="start")
        elif not isinstance(s.index, pd.DatetimeIndex):
            raise TypeError("from_series expects a Series with DatetimeIndex or PeriodIndex")
        if freq is None:
            freq = pd.infer_freq(s.index) if len(s) >= 3 else None
            freq = freq or DEFAULT_FREQ
        return cls(s.to_numpy(dtype=np.float64), s.index, season=season,
                   name=str(series.name or "co2"), freq=freq)

    def to_series(self) -> pd.Series:
        return pd.Series(np.array(self.values), index=self.index, name=self.name)

    def slice(self, start: int, stop: Optional[int] = None) -> "TimeSeries":
        return TimeSeries(self.values[start:stop], self.index[start:stop],
                          season=self.season, name=self.name, freq=self.freq)

    def future_index(self, horizon: int) -> pd.DatetimeIndex:
        """Timestamps of the ``horizon`` periods following the last observation."""
        return pd.date_range(self.index[-1], periods=horizon + 1, freq=self.freq)[1:]


@dataclass(frozen=True)
class SeriesStore:
    """
    Holds the full series and its train/test partition.

    The last ``test_size`` observations form the test set; everything before
    them is used for identification and estimation.
    """

    series: TimeSeries
    test_size: int = 36

    def __post_init__(self):
        test_size = int(self.test_size)
        if test_size < 0:
            raise ValueError("test_size must be >= 0")
        if test_size >= len(self.series):
            raise InsufficientDataError(
                f"test_size={test_size} leaves no training data (series length {len(self.series)})"
            )
        object.__setattr__(self, "test_size", test_size)

    @property
    def split_point(self) -> int:
        return len(self.series) - self.test_size

    @property
    def train(self) -> TimeSeries:
        return self.series.slice(0, self.split_point)

    @property
    def test(self) -> TimeSeries:
        return self.series.slice(self.split_point)

    def split(self) -> Tuple[TimeSeries, TimeSeries]:
        return self.train, self.test

    @classmethod
    def from_csv(cls, path: Union[str, Path], date_col: str = "date", value_col: str = "co2",
                 season: Optional[int] = None, test_size: Optional[int] = None,
                 config: Optional[ConfigManager] = None) -> "SeriesStore":
        if season is None:
            season = get_config_value("data.season", 12, config=config)
        series = load_series_csv(path, date_col=date_col, value_col=value_col, season=season)
        if test_size is None:
            test_size = get_config_value("data.test_size", 36, config=config)
        return cls(series, test_size)


def load_series_csv(path: Union[str, Path], date_col: str = "date", value_col: str = "co2",
                    season: int = 12) -> TimeSeries:
    """
    Load a monthly series from a CSV with a date column and a value column.

    Parameters
    ----------
    path : Union[str, Path]
        CSV file path
    date_col : str, default="date"
        Column parseable to datetime
    value_col : str, default="co2"
        Column holding the readings (ppm)
    season : int, default=12
        Seasonal period

    Returns
    -------
    TimeSeries
        Series sorted by date and aligned to month start

    Raises
    ------
    ValueError
        If a column is missing or the data contains missing readings
    """
    df = pd.read_csv(path)
    for col in (date_col, value_col):
        if col not in df.columns:
            raise ValueError(f"Column '{col}' not found in {path}; available: {list(df.columns)}")
    df[date_col] = pd.to_datetime(df[date_col])
    df = df.sort_values(date_col)
    index = pd.DatetimeIndex(df[date_col]).to_period("M").to_timestamp(how="start")
    values = pd.to_numeric(df[value_col], errors="coerce")
    if values.isna().any():
        raise ValueError(f"{int(values.isna().sum())} missing readings in '{value_col}'")
    logger.info("Loaded %d observations from %s", len(df), path)
    return TimeSeries(values.to_numpy(), index, season=season, name=value_col)


def load_co2_monthly(season: int = 12) -> TimeSeries:
    """
    Mauna Loa CO2 readings from ``statsmodels.datasets.co2`` as a monthly series.

    The bundled data are weekly with gaps; readings are averaged per month
    (month-start stamps) and the few empty months are interpolated linearly.
    """
    from statsmodels.datasets import co2

    weekly = co2.load_pandas().data["co2"]
    monthly = weekly.resample(DEFAULT_FREQ).mean()
    n_missing = int(monthly.isna().sum())
    if n_missing:
        logger.debug("Interpolating %d empty months in the CO2 record", n_missing)
    monthly = monthly.interpolate(method="linear").bfill()
    monthly.name = "co2"
    return TimeSeries.from_series(monthly, season=season, freq=DEFAULT_FREQ)
