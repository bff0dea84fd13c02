# co2_sarima/transform_utils.py

import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .data_utils import TimeSeries
from .exceptions import InsufficientDataError, InvalidOrderError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class DifferencedSeries:
    """
    Result of one or more differencing passes over a TimeSeries.

    ``lags`` records every lag applied, in order, so that the series is
    ``sum(lags)`` observations shorter than ``parent_length``.
    """

    values: np.ndarray
    index: pd.DatetimeIndex
    lags: Tuple[int, ...]
    parent_length: int
    season: int = 12
    name: str = "co2"

    def __len__(self) -> int:
        return len(self.values)

    @property
    def label(self) -> str:
        if not self.lags:
            return "original"
        parts = []
        for lag in sorted(set(self.lags)):
            count = self.lags.count(lag)
            parts.append(f"lag-{lag}" + (f" x{count}" if count > 1 else ""))
        return " + ".join(parts)

    def to_series(self) -> pd.Series:
        return pd.Series(np.array(self.values), index=self.index, name=self.name)


SeriesLike = Union[TimeSeries, DifferencedSeries]


def _as_differenced(series: SeriesLike) -> DifferencedSeries:
    if isinstance(series, DifferencedSeries):
        return series
    return DifferencedSeries(
        values=np.asarray(series.values, dtype=np.float64),
        index=series.index,
        lags=(),
        parent_length=len(series),
        season=series.season,
        name=series.name,
    )


def difference(series: SeriesLike, lag: int) -> DifferencedSeries:
    """
    Compute ``x[t] - x[t-lag]`` for every valid ``t``.

    Parameters
    ----------
    series : TimeSeries or DifferencedSeries
        Input series; it is not modified.
    lag : int
        Differencing lag (1 for ordinary, ``s`` for seasonal differencing)

    Returns
    -------
    DifferencedSeries
        Series shorter by ``lag``, indexed by the later timestamp of each pair

    Raises
    ------
    InvalidOrderError
        If ``lag`` is not a positive integer
    InsufficientDataError
        If the series has no more than ``lag`` observations
    """
    if isinstance(lag, bool) or not isinstance(lag, (int, np.integer)) or lag < 1:
        raise InvalidOrderError(f"Differencing lag must be a positive integer, got {lag!r}")
    base = _as_differenced(series)
    if len(base) <= lag:
        raise InsufficientDataError(
            f"Cannot difference {len(base)} observations at lag {lag}"
        )
    values = base.values[lag:] - base.values[:-lag]
    values.setflags(write=False)
    return DifferencedSeries(
        values=values,
        index=base.index[lag:],
        lags=base.lags + (int(lag),),
        parent_length=base.parent_length,
        season=base.season,
        name=base.name,
    )


def integrate(differenced: Union[DifferencedSeries, Sequence[float], np.ndarray],
              seeds: Sequence[float], lag: int) -> np.ndarray:
    """
    Invert one differencing pass by cumulative summation at ``lag``.

    ``seeds`` are the first ``lag`` values of the undifferenced series; the
    output is the full undifferenced series (seeds included).
    """
    w = np.asarray(getattr(differenced, "values", differenced), dtype=np.float64)
    seeds = np.asarray(seeds, dtype=np.float64)
    if len(seeds) != lag:
        raise ValueError(f"Expected {lag} seed values, got {len(seeds)}")
    out = np.empty(len(w) + lag)
    out[:lag] = seeds
    for t in range(lag, len(out)):
        out[t] = w[t - lag] + out[t - lag]
    return out


def apply_differencing(series: SeriesLike, d: int, D: int, s: int) -> DifferencedSeries:
    """Apply ``d`` lag-1 differences followed by ``D`` lag-``s`` differences."""
    if d < 0 or D < 0:
        raise InvalidOrderError(f"Differencing orders must be non-negative (d={d}, D={D})")
    if D > 0 and s < 2:
        raise InvalidOrderError(f"Seasonal differencing requires s >= 2, got s={s}")
    needed = d + D * s
    if len(series) < needed + 1:
        raise InsufficientDataError(
            f"Need at least {needed + 1} observations for d={d}, D={D}, s={s}; got {len(series)}"
        )
    out = _as_differenced(series)
    for _ in range(d):
        out = difference(out, 1)
    for _ in range(D):
        out = difference(out, s)
    return out


def safe_adf_pval(values: Union[np.ndarray, pd.Series]) -> float:
    """
    ADF unit-root test p-value, or NaN when the test cannot be performed.

    Requires at least 12 observations and a non-constant series.
    """
    from statsmodels.tsa.stattools import adfuller

    x = np.asarray(values, dtype=np.float64)
    if len(x) < 12 or np.ptp(x) == 0.0:
        return float("nan")
    try:
        return float(adfuller(x, result_object=False)[1])
    except (ValueError, np.linalg.LinAlgError) as e:
        logger.debug("ADF test skipped: %s", e)
        return float("nan")


@dataclass(frozen=True)
class VarianceStage:
    """Sample variance of the series after one differencing stage."""

    label: str
    lags: Tuple[int, ...]
    n_obs: int
    variance: float
    adf_pvalue: float


def variance_table(series: TimeSeries, d: int = 1, D: int = 1, s: int = 12,
                   with_adf: bool = True) -> List[VarianceStage]:
    """
    Track the sample variance before and after each differencing stage.

    Stages are the undifferenced series, then each lag-1 pass, then each
    seasonal pass. A steady fall in variance is the acceptance signal that
    differencing has removed trend and seasonality. This is a heuristic and
    not a formal unit-root test; the ADF p-value is reported alongside as a
    supplementary check.
    """
    stages: List[VarianceStage] = []
    current = _as_differenced(series)

    def _record(ds: DifferencedSeries) -> None:
        var = float(np.var(ds.values, ddof=1)) if len(ds) > 1 else float("nan")
        pval = safe_adf_pval(ds.values) if with_adf else float("nan")
        stages.append(VarianceStage(ds.label, ds.lags, len(ds), var, pval))
        logger.debug("Variance after %s: %.6g (n=%d)", ds.label, var, len(ds))

    _record(current)
    apply_differencing(series, d, D, s)  # validates orders and length up front
    for _ in range(d):
        current = difference(current, 1)
        _record(current)
    for _ in range(D):
        current = difference(current, s)
        _record(current)
    return stages


def variance_reduced(stages: Sequence[VarianceStage]) -> bool:
    """True when every stage has strictly lower variance than the one before."""
    variances = [st.variance for st in stages]
    return all(b < a for a, b in zip(variances, variances[1:]))


def variance_frame(stages: Sequence[VarianceStage]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "stage": [st.label for st in stages],
            "n_obs": [st.n_obs for st in stages],
            "variance": [st.variance for st in stages],
            "adf_pvalue": [st.adf_pvalue for st in stages],
        }
    )
