import numpy as np
import pytest
from statsmodels.tsa.stattools import acf, pacf

from co2_sarima.config_utils import ConfigManager
from co2_sarima.exceptions import InsufficientDataError
from co2_sarima.identification_utils import (
    CorrelogramEntry,
    compute_acf,
    compute_pacf,
    durbin_levinson,
    propose_candidates,
    significant_lags,
)
from co2_sarima.model_spec import SarimaSpec


def test_acf_lag_zero_and_range(airline_noise):
    entries = compute_acf(airline_noise, 36)

    assert len(entries) == 37
    assert entries[0].lag == 0 and entries[0].value == pytest.approx(1.0)
    assert all(-1.0 <= e.value <= 1.0 for e in entries)
    assert entries[5].bound == pytest.approx(1.96 / np.sqrt(len(airline_noise)))


def test_pacf_range(airline_noise):
    entries = compute_pacf(airline_noise, 36)
    assert entries[0].value == 1.0
    assert all(-1.0 <= e.value <= 1.0 for e in entries)


def test_acf_matches_statsmodels(airline_noise):
    ours = np.array([e.value for e in compute_acf(airline_noise, 30)])
    expected = acf(airline_noise, nlags=30, fft=False)
    np.testing.assert_allclose(ours, expected, atol=1e-10)


def test_pacf_matches_statsmodels_levinson_durbin(airline_noise):
    ours = np.array([e.value for e in compute_pacf(airline_noise, 30)])
    expected = pacf(airline_noise, nlags=30, method="ldb")
    np.testing.assert_allclose(ours, expected, atol=1e-8)


def test_durbin_levinson_ar1_theoretical():
    phi = 0.7
    rho = phi ** np.arange(8)
    out = durbin_levinson(rho)
    np.testing.assert_allclose(out, [1.0, phi, 0, 0, 0, 0, 0, 0], atol=1e-12)


def test_zero_variance_rejected():
    with pytest.raises(ValueError):
        compute_acf(np.full(30, 2.0), 5)


def test_max_lag_longer_than_series():
    with pytest.raises(InsufficientDataError):
        compute_acf(np.arange(10.0), 10)


def test_significance_flag():
    assert CorrelogramEntry(3, -0.2, 0.1).significant
    assert not CorrelogramEntry(3, 0.05, 0.1).significant
    entries = [CorrelogramEntry(0, 1.0, 0.1), CorrelogramEntry(1, 0.5, 0.1), CorrelogramEntry(2, 0.01, 0.1)]
    assert significant_lags(entries) == [1]


def test_propose_candidates_for_airline_noise(airline_noise):
    result = propose_candidates(airline_noise, d=1, D=1, s=12, max_order=1, max_seasonal_order=1)

    assert result.suggested_orders == (1, 1, 1, 1)
    assert len(result.candidates) == 9
    assert result.candidates[0] == SarimaSpec(0, 1, 1, 0, 1, 1, 12)
    counts = [sp.n_coefficients for sp in result.candidates]
    assert counts == sorted(counts)
    assert all(sp.d == 1 and sp.D == 1 and sp.s == 12 for sp in result.candidates)
    assert 1 in result.significant_acf_lags and 12 in result.significant_acf_lags


def test_choose_prefers_analyst_override(airline_noise):
    result = propose_candidates(airline_noise, d=1, D=1, s=12, max_order=1)
    assert result.choose() == result.candidates[0]

    override = SarimaSpec(2, 1, 0, 0, 1, 1, 12)
    assert result.choose(override) == override


def test_correlogram_frame(airline_noise):
    result = propose_candidates(airline_noise, d=1, D=1, s=12, max_lag=24)
    df = result.to_frame()
    assert list(df.columns) == ["lag", "acf", "acf_significant", "pacf", "pacf_significant", "bound"]
    assert len(df) == 25
    assert not df.loc[0, "acf_significant"]


def test_config_controls_max_lag(airline_noise):
    config = ConfigManager({"identification": {"max_lag": 30}})
    result = propose_candidates(airline_noise, d=0, D=0, s=12, config=config)
    assert len(result.acf) == 31
