import logging

import numpy as np
import pytest
from statsmodels.tsa.statespace.sarimax import SARIMAX

from co2_sarima import estimation_utils
from co2_sarima.data_utils import TimeSeries
from co2_sarima.estimation_utils import (
    SarimaEstimator,
    coefficient_frame,
    compute_aic,
    fit_candidates,
    fit_sarima,
)
from co2_sarima.exceptions import EstimationError, InsufficientDataError, InvalidOrderError
from co2_sarima.model_spec import SarimaSpec
from co2_sarima.statespace import sarima_loglike


def create_ar1_series(phi=0.6, n=500, seed=5):
    rng = np.random.default_rng(seed)
    e = rng.normal(size=n + 100)
    x = np.zeros(n + 100)
    for t in range(1, n + 100):
        x[t] = phi * x[t - 1] + e[t]
    return TimeSeries.from_values(x[100:])


def create_arma11_series(phi=0.5, theta=0.3, n=400, seed=9):
    rng = np.random.default_rng(seed)
    e = rng.normal(size=n + 100)
    x = np.zeros(n + 100)
    for t in range(1, n + 100):
        x[t] = phi * x[t - 1] + e[t] + theta * e[t - 1]
    return TimeSeries.from_values(x[100:])


def test_aic_formula():
    assert compute_aic(-100.0, 3) == pytest.approx(206.0)


def test_ar1_estimate_and_aic():
    model = fit_sarima(create_ar1_series(), SarimaSpec(1, 0, 0))

    est = model.coefficients["ar1"]
    assert est.estimate == pytest.approx(0.6, abs=0.12)
    assert 0.0 < est.std_error < 0.1
    assert model.n_params == 2
    assert model.aic == 2 * 2 - 2 * model.loglik
    assert model.sigma2 == pytest.approx(1.0, rel=0.2)
    assert len(model.residuals) == 500
    assert model.constraint_violations == ()


def test_loglike_matches_statsmodels_exact_likelihood():
    series = create_arma11_series()
    spec = SarimaSpec(1, 0, 1)
    model = fit_sarima(series, spec)

    reference = SARIMAX(np.asarray(series.values), order=(1, 0, 1), trend="n")
    expected = reference.loglike(np.r_[model.params, model.sigma2])

    assert model.loglik == pytest.approx(expected, rel=1e-6)


def test_seasonal_loglike_matches_statsmodels(airline_noise):
    spec = SarimaSpec(0, 0, 1, 0, 0, 1, 12)
    params = np.array([-0.4, -0.86])
    loglik, sigma2, _ = sarima_loglike(airline_noise, spec, params)

    reference = SARIMAX(airline_noise, order=(0, 0, 1), seasonal_order=(0, 0, 1, 12), trend="n")
    expected = reference.loglike(np.r_[params, sigma2])

    assert loglik == pytest.approx(expected, rel=1e-6)


def test_near_unit_root_seasonal_ma(airline_noise):
    series = TimeSeries.from_values(airline_noise)
    model = fit_sarima(series, SarimaSpec(0, 0, 1, 0, 0, 1, 12))

    assert model.coefficients["ma1"].estimate == pytest.approx(-0.4, abs=0.15)
    assert model.coefficients["sma1"].estimate == pytest.approx(-0.86, abs=0.1)
    assert np.all(np.isfinite(model.std_errors))
    assert np.isfinite(model.loglik)


def test_coefficient_table(airline_fit):
    df = airline_fit.coefficient_table()
    assert df["coefficient"].tolist() == ["ar1", "ma1", "sma1"]
    assert (df["std_error"] > 0).all()
    assert coefficient_frame([airline_fit, airline_fit]).shape[0] == 6


def test_airline_fit_is_admissible(airline_fit):
    assert airline_fit.nobs == 444 - 13
    assert airline_fit.spec.label == "SARIMA(1,1,1)x(0,1,1)12"
    assert abs(airline_fit.coefficients["sma1"].estimate) < 1.0
    assert len(airline_fit.residual_series()) == airline_fit.nobs


def test_invalid_orders_rejected_before_fitting():
    series = create_ar1_series(n=100)
    with pytest.raises(InvalidOrderError):
        fit_sarima(series, SarimaSpec(-1, 0, 0))
    with pytest.raises(InvalidOrderError):
        fit_sarima(series, SarimaSpec(0, 0, 0, 1, 0, 0, 1))


def test_insufficient_data():
    series = TimeSeries.from_values(np.arange(10, dtype=float))
    with pytest.raises(InsufficientDataError):
        fit_sarima(series, SarimaSpec(0, 1, 1, 0, 1, 1, 12))


def test_non_convergence_retries_then_raises(caplog):
    series = create_arma11_series()
    estimator = SarimaEstimator(maxiter=1, max_retries=1)

    with caplog.at_level(logging.WARNING, logger="co2_sarima.estimation_utils"):
        with pytest.raises(EstimationError):
            estimator.fit(series, SarimaSpec(1, 0, 1))

    assert any("Retrying" in rec.getMessage() for rec in caplog.records)


def test_unknown_setting_rejected():
    with pytest.raises(TypeError):
        SarimaEstimator(max_iterations=10)


def test_fit_candidates_collects_failures():
    series = create_arma11_series()
    specs = [SarimaSpec(1, 0, 0), SarimaSpec(1, 0, 1)]
    models, failures = fit_candidates(series, specs, show_progress=False, maxiter=1, max_retries=0)
    assert models == []
    assert set(failures) == set(specs)


def test_std_error_matches_statsmodels_hessian():
    series = create_ar1_series()
    model = fit_sarima(series, SarimaSpec(1, 0, 0))

    reference = SARIMAX(np.asarray(series.values), order=(1, 0, 0), trend="n").fit(disp=False, cov_type="approx")

    assert model.coefficients["ar1"].std_error == pytest.approx(reference.bse[0], rel=0.05)


@pytest.mark.parametrize("seed", [0, 3])
def test_std_error_near_unit_root_stays_inside_region(seed):
    rng = np.random.default_rng(seed)
    values = 100.0 + np.cumsum(rng.normal(size=400))
    model = fit_sarima(TimeSeries.from_values(values), SarimaSpec(1, 0, 0))

    est = model.coefficients["ar1"]
    reference = SARIMAX(values, order=(1, 0, 0), trend="n").fit(disp=False)

    assert 0.99 < est.estimate < 1.0
    assert est.std_error > 1e-6
    assert 0.02 < est.std_error / reference.bse[0] < 50.0


def test_likelihood_undefined_next_to_estimate_raises():
    series = create_ar1_series(n=200)
    estimator = SarimaEstimator()
    with pytest.raises(EstimationError, match="not reportable"):
        estimator._standard_errors(np.asarray(series.values), SarimaSpec(1, 0, 0), np.array([1.0 - 1e-13]))


@pytest.mark.parametrize("hessian", [np.zeros((1, 1)), -np.eye(1)])
def test_unusable_information_matrix_raises(monkeypatch, hessian):
    monkeypatch.setattr(estimation_utils, "approx_hess3", lambda x, f, epsilon=None: hessian)
    with pytest.raises(EstimationError, match="singular or not positive definite"):
        fit_sarima(create_ar1_series(n=200), SarimaSpec(1, 0, 0))
