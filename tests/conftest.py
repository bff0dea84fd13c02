"""Shared synthetic series and fitted models for the test suite."""

import numpy as np
import pytest

from co2_sarima.data_utils import SeriesStore, TimeSeries
from co2_sarima.estimation_utils import fit_sarima
from co2_sarima.model_spec import SarimaSpec

AIRLINE_SPEC = SarimaSpec(1, 1, 1, 0, 1, 1, 12)


def create_co2_like_series(n=480, seed=7, noise=0.45):
    """Linear trend plus annual cycle plus bounded uniform noise, in ppm."""
    rng = np.random.default_rng(seed)
    t = np.arange(n)
    values = (
        315.0
        + 0.12 * t
        + 3.0 * np.sin(2 * np.pi * t / 12)
        + 0.8 * np.cos(4 * np.pi * t / 12)
        + rng.uniform(-noise, noise, n)
    )
    return TimeSeries.from_values(values, start="1959-01-01", season=12)


def create_seasonal_gaussian_series(n=480, seed=11, sigma=0.3):
    """Trend plus 12-period seasonal component plus Gaussian noise."""
    rng = np.random.default_rng(seed)
    t = np.arange(n)
    values = 315.0 + 0.12 * t + 3.0 * np.sin(2 * np.pi * t / 12) + rng.normal(0.0, sigma, n)
    return TimeSeries.from_values(values, season=12)


def create_airline_noise(n=600, theta=-0.4, Theta=-0.86, seed=3):
    """``(1 + theta B)(1 + Theta B^12) e_t`` with standard normal ``e_t``."""
    rng = np.random.default_rng(seed)
    e = rng.normal(0.0, 1.0, n + 13)
    w = e[13:] + theta * e[12:-1] + Theta * e[1:-12] + theta * Theta * e[:-13]
    return w


@pytest.fixture(scope="session")
def co2_like_store():
    return SeriesStore(create_co2_like_series(), test_size=36)


@pytest.fixture(scope="session")
def airline_fit(co2_like_store):
    return fit_sarima(co2_like_store.train, AIRLINE_SPEC)


@pytest.fixture
def seasonal_gaussian_series():
    return create_seasonal_gaussian_series()


@pytest.fixture
def airline_noise():
    return create_airline_noise()
