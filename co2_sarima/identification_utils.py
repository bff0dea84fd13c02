# co2_sarima/identification_utils.py

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .config_utils import ConfigManager, get_config_value
from .data_utils import TimeSeries
from .exceptions import InsufficientDataError
from .model_spec import SarimaSpec
from .transform_utils import DifferencedSeries

logger = logging.getLogger(__name__)

ArrayLike = Union[TimeSeries, DifferencedSeries, Sequence[float], np.ndarray, pd.Series]


@dataclass(frozen=True)
class CorrelogramEntry:
    """One lag of an ACF or PACF profile with its white-noise bound."""

    lag: int
    value: float
    bound: float

    @property
    def significant(self) -> bool:
        return abs(self.value) > self.bound


def _as_array(series: ArrayLike) -> np.ndarray:
    values = getattr(series, "values", series)
    return np.asarray(values, dtype=np.float64)


def _check_lags(x: np.ndarray, max_lag: int) -> None:
    if isinstance(max_lag, bool) or not isinstance(max_lag, (int, np.integer)) or max_lag < 0:
        raise ValueError(f"max_lag must be a non-negative integer, got {max_lag!r}")
    if len(x) <= max_lag:
        raise InsufficientDataError(f"max_lag={max_lag} requires more than {max_lag} observations, got {len(x)}")


def autocorrelations(x: np.ndarray, max_lag: int) -> np.ndarray:
    """
    Sample autocorrelations ``rho_0..rho_max_lag``.

    Uses the biased autocovariance (divisor ``n``), which keeps the implied
    Toeplitz matrix positive semi-definite and every value in [-1, 1].
    """
    x = np.asarray(x, dtype=np.float64)
    _check_lags(x, max_lag)
    n = len(x)
    xc = x - x.mean()
    gamma0 = np.dot(xc, xc) / n
    if not gamma0 > 0.0:
        raise ValueError("Autocorrelation is undefined for a series with zero variance")
    gamma = np.array([np.dot(xc[k:], xc[:n - k]) / n for k in range(max_lag + 1)])
    return gamma / gamma0


def durbin_levinson(rho: np.ndarray) -> np.ndarray:
    """
    Partial autocorrelations from autocorrelations via the Durbin-Levinson recursion.

    ``rho[0]`` must be 1; the result has the same length with ``pacf[0] = 1``.
    """
    max_lag = len(rho) - 1
    pacf = np.zeros(max_lag + 1)
    pacf[0] = 1.0
    if max_lag == 0:
        return pacf
    phi = np.zeros(max_lag + 1)
    phi[1] = rho[1]
    pacf[1] = rho[1]
    v = 1.0 - rho[1] ** 2
    for k in range(2, max_lag + 1):
        if v <= 0.0:
            # perfectly predictable: further partial correlations are zero
            break
        phi_kk = (rho[k] - np.dot(phi[1:k], rho[k - 1:0:-1])) / v
        phi_prev = phi[1:k].copy()
        phi[1:k] = phi_prev - phi_kk * phi_prev[::-1]
        phi[k] = phi_kk
        pacf[k] = phi_kk
        v *= 1.0 - phi_kk ** 2
    return pacf


def _entries(values: np.ndarray, bound: float) -> List[CorrelogramEntry]:
    return [CorrelogramEntry(int(k), float(v), bound) for k, v in enumerate(values)]


def compute_acf(series: ArrayLike, max_lag: int, z_value: float = 1.96) -> List[CorrelogramEntry]:
    """
    Autocorrelation function for lags ``0..max_lag``.

    Parameters
    ----------
    series : array-like
        Usually the differenced series
    max_lag : int
        Largest lag reported
    z_value : float, default=1.96
        Normal quantile for the white-noise bound ``z / sqrt(n)``

    Returns
    -------
    List[CorrelogramEntry]
        Entry 0 is always 1
    """
    x = _as_array(series)
    rho = autocorrelations(x, max_lag)
    return _entries(rho, z_value / np.sqrt(len(x)))


def compute_pacf(series: ArrayLike, max_lag: int, z_value: float = 1.96) -> List[CorrelogramEntry]:
    """Partial autocorrelation function for lags ``0..max_lag`` (Durbin-Levinson)."""
    x = _as_array(series)
    rho = autocorrelations(x, max_lag)
    return _entries(durbin_levinson(rho), z_value / np.sqrt(len(x)))


def significant_lags(entries: Sequence[CorrelogramEntry]) -> List[int]:
    return [e.lag for e in entries if e.lag > 0 and e.significant]


def _leading_run(entries: Sequence[CorrelogramEntry], lags: Sequence[int]) -> int:
    """Number of consecutive significant entries at ``lags``, starting with the first."""
    by_lag = {e.lag: e for e in entries}
    run = 0
    for lag in lags:
        entry = by_lag.get(lag)
        if entry is None or not entry.significant:
            break
        run += 1
    return run


def correlogram_frame(acf: Sequence[CorrelogramEntry], pacf: Sequence[CorrelogramEntry]) -> pd.DataFrame:
    """Side-by-side ACF/PACF table for the reporting layer."""
    pacf_by_lag = {e.lag: e for e in pacf}
    rows = []
    for e in acf:
        p = pacf_by_lag.get(e.lag)
        rows.append({
            "lag": e.lag,
            "acf": e.value,
            "acf_significant": e.lag > 0 and e.significant,
            "pacf": p.value if p is not None else np.nan,
            "pacf_significant": bool(p is not None and e.lag > 0 and p.significant),
            "bound": e.bound,
        })
    return pd.DataFrame(rows)


@dataclass(frozen=True)
class IdentificationResult:
    """
    Correlograms of the differenced series and the candidate orders they suggest.

    The candidates are a recommendation for review; the analyst confirms a
    final structure through :meth:`choose`.
    """

    acf: Tuple[CorrelogramEntry, ...]
    pacf: Tuple[CorrelogramEntry, ...]
    candidates: Tuple[SarimaSpec, ...]
    suggested_orders: Tuple[int, int, int, int]

    @property
    def significant_acf_lags(self) -> List[int]:
        return significant_lags(self.acf)

    @property
    def significant_pacf_lags(self) -> List[int]:
        return significant_lags(self.pacf)

    def choose(self, override: Optional[SarimaSpec] = None) -> SarimaSpec:
        """Return the analyst's override when given, otherwise the top-ranked candidate."""
        if override is not None:
            spec = SarimaSpec(*override).validate()
            if spec not in self.candidates:
                logger.info("Using analyst-supplied %s outside the proposed candidates", spec.label)
            return spec
        if not self.candidates:
            raise ValueError("No candidate specifications were proposed")
        return self.candidates[0]

    def to_frame(self) -> pd.DataFrame:
        return correlogram_frame(self.acf, self.pacf)


def propose_candidates(differenced: ArrayLike, d: int, D: int, s: int,
                       max_lag: Optional[int] = None,
                       max_order: Optional[int] = None,
                       max_seasonal_order: Optional[int] = None,
                       config: Optional[ConfigManager] = None) -> IdentificationResult:
    """
    Suggest SARIMA orders from the correlograms of an already differenced series.

    Non-seasonal orders come from the run of significant lags starting at lag 1:
    the ACF run sets ``q`` and the PACF run sets ``p``. Seasonal orders come from
    the run of significant lags at ``s, 2s, ...``: the ACF sets ``Q`` and the
    PACF sets ``P``. Runs are capped at ``max_order`` and ``max_seasonal_order``.

    The candidate set crosses the pure-MA, pure-AR and mixed signatures of the
    non-seasonal and seasonal parts. Candidates are ranked by number of
    coefficients, then lexicographically, so the most parsimonious structure
    comes first.
    """
    x = _as_array(differenced)
    max_order = int(get_config_value("identification.max_order", 2, config=config)
                    if max_order is None else max_order)
    max_seasonal_order = int(get_config_value("identification.max_seasonal_order", 1, config=config)
                             if max_seasonal_order is None else max_seasonal_order)
    z_value = float(get_config_value("identification.z_value", 1.96, config=config))
    if max_lag is None:
        max_lag = int(get_config_value("identification.max_lag", 48, config=config))
    # correlograms must reach the highest seasonal lag inspected
    max_lag = max(max_lag, max_order, max_seasonal_order * s)
    max_lag = min(max_lag, len(x) - 1)

    acf = compute_acf(x, max_lag, z_value)
    pacf = compute_pacf(x, max_lag, z_value)

    nonseasonal_lags = range(1, max_order + 1)
    seasonal_lags = [k * s for k in range(1, max_seasonal_order + 1)] if s > 1 else []
    q = _leading_run(acf, nonseasonal_lags)
    p = _leading_run(pacf, nonseasonal_lags)
    Q = _leading_run(acf, seasonal_lags)
    P = _leading_run(pacf, seasonal_lags)
    logger.info("Correlogram suggests p=%d q=%d P=%d Q=%d (s=%d)", p, q, P, Q, s)

    nonseasonal = {(0, q), (p, 0), (p, q)}
    seasonal = {(0, Q), (P, 0), (P, Q)}
    specs = {
        SarimaSpec(ar, d, ma, sar, D, sma, s).validate()
        for ar, ma in nonseasonal
        for sar, sma in seasonal
    }
    ranked = sorted(specs, key=lambda sp: (sp.n_coefficients, tuple(sp)))
    logger.debug("Proposed candidates: %s", [sp.label for sp in ranked])

    return IdentificationResult(
        acf=tuple(acf),
        pacf=tuple(pacf),
        candidates=tuple(ranked),
        suggested_orders=(p, q, P, Q),
    )
