# co2_sarima/forecasting_utils.py

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from numpy.polynomial import polynomial as npoly
from scipy import stats

from .config_utils import ConfigManager, get_config_value
from .data_utils import TimeSeries
from .estimation_utils import FittedModel
from .exceptions import InvalidHorizonError
from .statespace import arma_to_statespace, differencing_polynomial, psi_weights, sarima_polynomials

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class ForecastResult:
    """
    Point forecasts and standard errors for ``h`` periods beyond the training sample.

    The interval is ``mean +/- multiplier * std_error``. With the default
    multiplier of 2 this is an approximate 95% interval.
    """

    index: pd.DatetimeIndex
    mean: np.ndarray
    std_error: np.ndarray
    multiplier: float
    model_label: str = ""
    level: Optional[float] = None

    def __len__(self) -> int:
        return len(self.mean)

    @property
    def lower(self) -> np.ndarray:
        return self.mean - self.multiplier * self.std_error

    @property
    def upper(self) -> np.ndarray:
        return self.mean + self.multiplier * self.std_error

    def pairs(self) -> List[Tuple[float, float]]:
        """(point, standard error) for each period."""
        return [(float(m), float(se)) for m, se in zip(self.mean, self.std_error)]

    def covered(self, actual: Union[TimeSeries, Sequence[float], np.ndarray]) -> np.ndarray:
        values = np.asarray(getattr(actual, "values", actual), dtype=np.float64)
        if len(values) != len(self):
            raise ValueError(f"Expected {len(self)} actual values, got {len(values)}")
        return (values >= self.lower) & (values <= self.upper)

    def n_covered(self, actual) -> int:
        return int(np.sum(self.covered(actual)))

    def coverage(self, actual) -> float:
        """Fraction of actual values falling inside the interval."""
        return float(np.mean(self.covered(actual)))

    def to_frame(self, actual=None) -> pd.DataFrame:
        df = pd.DataFrame(
            {
                "forecast": self.mean,
                "std_error": self.std_error,
                "lower": self.lower,
                "upper": self.upper,
            },
            index=self.index,
        )
        if actual is not None:
            df["actual"] = np.asarray(getattr(actual, "values", actual), dtype=np.float64)
            df["covered"] = self.covered(actual)
        df.index.name = "date"
        return df


def _check_horizon(horizon) -> int:
    if isinstance(horizon, bool) or not isinstance(horizon, (int, np.integer)):
        raise InvalidHorizonError(f"Forecast horizon must be an integer, got {horizon!r}")
    if horizon <= 0:
        raise InvalidHorizonError(f"Forecast horizon must be positive, got {horizon}")
    return int(horizon)


def _interval_multiplier(multiplier: Optional[float], exact_quantile: Optional[bool],
                         level: Optional[float], config: Optional[ConfigManager]) -> Tuple[float, Optional[float]]:
    if exact_quantile is None:
        exact_quantile = bool(get_config_value("forecast.exact_quantile", False, config=config))
    if exact_quantile:
        if level is None:
            level = float(get_config_value("forecast.level", 0.95, config=config))
        if not 0.0 < level < 1.0:
            raise ValueError(f"level must lie in (0, 1), got {level}")
        return float(stats.norm.ppf(0.5 + level / 2.0)), level
    if multiplier is None:
        multiplier = float(get_config_value("forecast.interval_multiplier", 2.0, config=config))
    if not multiplier > 0.0:
        raise ValueError(f"Interval multiplier must be positive, got {multiplier}")
    return float(multiplier), None


def forecast(model: FittedModel, horizon: int,
             multiplier: Optional[float] = None,
             exact_quantile: Optional[bool] = None,
             level: Optional[float] = None,
             config: Optional[ConfigManager] = None) -> ForecastResult:
    """
    Forecast ``horizon`` periods ahead from a fitted model.

    Parameters
    ----------
    model : FittedModel
        Fit whose training series ends where the forecast starts
    horizon : int
        Number of periods, at least 1
    multiplier : float, optional
        Half-width of the interval in standard errors (default 2)
    exact_quantile : bool, optional
        Use the normal quantile for ``level`` instead of ``multiplier``
    level : float, optional
        Nominal coverage in exact-quantile mode (default 0.95)
    config : ConfigManager, optional
        Source of the ``forecast.*`` defaults

    Returns
    -------
    ForecastResult
        Point forecasts and non-decreasing standard errors

    Raises
    ------
    InvalidHorizonError
        If ``horizon`` is not a positive integer

    Notes
    -----
    The ARMA part of the differenced series is propagated from the filtered
    state at the end of the sample with future innovations at zero. The
    forecasts of the original series then follow from the differencing
    equation ``(1-B)^d (1-B^s)^D x_t = w_t``, seeded with the last observed
    values. The forecast error variance is ``sigma2 * sum(psi_j^2)`` where the
    psi weights are those of the full integrated model.
    """
    horizon = _check_horizon(horizon)
    mult, level = _interval_multiplier(multiplier, exact_quantile, level, config)

    spec = model.spec
    ar_poly, ma_poly = sarima_polynomials(spec, model.params)
    T, _ = arma_to_statespace(ar_poly, ma_poly)

    # differenced-scale forecasts from the state predicted for period n+1
    state = np.array(model.state, dtype=np.float64)
    w_hat = np.empty(horizon)
    for h in range(horizon):
        w_hat[h] = state[0]
        state = T @ state

    delta = differencing_polynomial(spec.d, spec.D, spec.s)
    order = len(delta) - 1
    history = np.asarray(model.series.values, dtype=np.float64)
    path = np.concatenate([history[len(history) - order:], np.empty(horizon)]) if order else np.empty(horizon)
    for h in range(horizon):
        t = order + h
        acc = w_hat[h]
        for i in range(1, order + 1):
            acc -= delta[i] * path[t - i]
        path[t] = acc
    mean = path[order:]

    psi = psi_weights(npoly.polymul(ar_poly, delta), ma_poly, horizon)
    std_error = np.sqrt(model.sigma2 * np.cumsum(psi ** 2))

    logger.debug("%s: %d-step forecast, final SE %.4g", model.label, horizon, std_error[-1])
    return ForecastResult(
        index=model.series.future_index(horizon),
        mean=mean,
        std_error=std_error,
        multiplier=mult,
        model_label=model.label,
        level=level,
    )
