# co2_sarima/estimation_utils.py

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from scipy.linalg import cho_solve
from scipy.optimize import minimize
from statsmodels.tools.numdiff import approx_hess3
from statsmodels.tsa.statespace.tools import (
    constrain_stationary_univariate,
    unconstrain_stationary_univariate,
)
from tqdm.auto import tqdm

from .config_utils import ConfigManager
from .data_utils import TimeSeries
from .exceptions import (
    EstimationError,
    InsufficientDataError,
    NonInvertibleCoefficientError,
    NonStationaryCoefficientError,
)
from .model_spec import PARAM_BLOCKS, SarimaSpec
from .statespace import polynomial_is_stable, sarima_loglike
from .transform_utils import apply_differencing

logger = logging.getLogger(__name__)

# Objective value returned outside the stationary region during optimisation.
_PENALTY = 1e10

_EPS = np.finfo(float).eps

# Hessian step reduction near the admissible boundary.
_STEP_SHRINK = 100.0
_MAX_STEP_SHRINKS = 2
_STEP_MARGIN = 10.0

# Natural-scale starting points tried in order; the first is always zeros.
_ALTERNATE_STARTS = ((0.1, -0.3), (0.5, -0.6), (-0.3, 0.3))


@dataclass(frozen=True)
class CoefficientEstimate:
    """Point estimate and standard error of one coefficient."""

    estimate: float
    std_error: float

    @property
    def z_value(self) -> float:
        if not self.std_error > 0.0:
            return float("nan")
        return self.estimate / self.std_error


def compute_aic(loglik: float, n_params: int) -> float:
    """Akaike Information Criterion, ``2k - 2 loglik``."""
    return 2.0 * n_params - 2.0 * loglik


@dataclass(frozen=True, eq=False)
class FittedModel:
    """
    Maximum-likelihood SARIMA fit.

    ``loglik`` is the exact Gaussian log-likelihood of the differenced training
    series; ``n_params`` counts the ARMA coefficients plus the innovation
    variance. ``state`` is the predicted state vector for the first period
    after the training sample and seeds the forecaster.
    """

    spec: SarimaSpec
    coefficients: Mapping[str, CoefficientEstimate]
    sigma2: float
    loglik: float
    aic: float
    nobs: int
    residuals: np.ndarray
    series: TimeSeries
    state: np.ndarray
    n_iter: int = 0
    constraint_violations: Tuple[str, ...] = field(default=())

    @property
    def label(self) -> str:
        return self.spec.label

    @property
    def params(self) -> np.ndarray:
        return np.array([c.estimate for c in self.coefficients.values()], dtype=np.float64)

    @property
    def std_errors(self) -> np.ndarray:
        return np.array([c.std_error for c in self.coefficients.values()], dtype=np.float64)

    @property
    def n_params(self) -> int:
        return self.spec.n_coefficients + 1

    @property
    def bic(self) -> float:
        return self.n_params * np.log(self.nobs) - 2.0 * self.loglik

    def residual_series(self) -> pd.Series:
        index = self.series.index[self.spec.n_differenced:]
        return pd.Series(np.array(self.residuals), index=index, name=f"{self.label} residuals")

    def coefficient_table(self) -> pd.DataFrame:
        rows = [
            {
                "model": self.label,
                "coefficient": name,
                "estimate": est.estimate,
                "std_error": est.std_error,
                "z": est.z_value,
            }
            for name, est in self.coefficients.items()
        ]
        return pd.DataFrame(rows, columns=["model", "coefficient", "estimate", "std_error", "z"])


class SarimaEstimator:
    """
    Fit SARIMA models by exact maximum likelihood.

    The series is differenced ``d`` times at lag 1 and ``D`` times at lag
    ``s``; the remaining seasonal ARMA likelihood is evaluated with the
    Kalman filter in :mod:`co2_sarima.statespace` and maximised with
    L-BFGS-B.

    Parameters
    ----------
    config_manager : ConfigManager, optional
        Source of the ``estimation.*`` settings
    **overrides
        Keyword overrides for individual settings (``maxiter``, ``tol``,
        ``gtol``, ``max_retries``, ``enforce_stationarity``,
        ``enforce_invertibility``, ``raise_on_violation``)

    Notes
    -----
    Convergence: the optimizer stops when the relative reduction of the
    objective (the negative log-likelihood per observation) falls below
    ``tol`` or the projected gradient falls below ``gtol``, and never runs
    more than ``maxiter`` iterations. A failed attempt is retried from
    alternate starting values at most ``max_retries`` times, each retry being
    logged; after that ``EstimationError`` is raised.
    """

    def __init__(self, config_manager: Optional[ConfigManager] = None, **overrides):
        self.config_manager = config_manager or ConfigManager()
        self.settings = self._load_estimation_config(overrides)

    def _load_estimation_config(self, overrides: Dict) -> Dict:
        settings = self.config_manager.section("estimation")
        unknown = set(overrides) - set(settings)
        if unknown:
            raise TypeError(f"Unknown estimation settings: {sorted(unknown)}")
        settings.update(overrides)
        return settings

    # -- parameter transforms -------------------------------------------------

    def _transform(self, spec: SarimaSpec, unconstrained: np.ndarray) -> np.ndarray:
        """Map an unconstrained vector into the stationary/invertible region."""
        blocks = spec.split_params(unconstrained)
        out = []
        for (_, autoregressive, _), block in zip(PARAM_BLOCKS, blocks):
            if len(block) == 0:
                continue
            if autoregressive and self.settings["enforce_stationarity"]:
                out.append(constrain_stationary_univariate(block))
            elif not autoregressive and self.settings["enforce_invertibility"]:
                out.append(-constrain_stationary_univariate(-block))
            else:
                out.append(block)
        return np.concatenate(out) if out else np.zeros(0)

    def _untransform(self, spec: SarimaSpec, constrained: np.ndarray) -> np.ndarray:
        blocks = spec.split_params(constrained)
        out = []
        for (_, autoregressive, _), block in zip(PARAM_BLOCKS, blocks):
            if len(block) == 0:
                continue
            if autoregressive and self.settings["enforce_stationarity"]:
                out.append(unconstrain_stationary_univariate(block))
            elif not autoregressive and self.settings["enforce_invertibility"]:
                out.append(-unconstrain_stationary_univariate(-block))
            else:
                out.append(block)
        return np.concatenate(out) if out else np.zeros(0)

    def _starting_values(self, spec: SarimaSpec, attempt: int) -> np.ndarray:
        if attempt == 0:
            return np.zeros(spec.n_coefficients)
        ar_start, ma_start = _ALTERNATE_STARTS[(attempt - 1) % len(_ALTERNATE_STARTS)]
        blocks = []
        for (_, autoregressive, _), size in zip(PARAM_BLOCKS, spec.block_sizes):
            value = ar_start if autoregressive else ma_start
            # only the first lag of each block gets a nonzero start
            block = np.zeros(size)
            if size:
                block[0] = value
            blocks.append(block)
        return np.concatenate(blocks)

    # -- likelihood -----------------------------------------------------------

    @staticmethod
    def _neg_loglike(w: np.ndarray, spec: SarimaSpec, params: np.ndarray) -> float:
        try:
            loglik, _, _ = sarima_loglike(w, spec, params)
        except (ValueError, np.linalg.LinAlgError):
            return _PENALTY
        if not np.isfinite(loglik):
            return _PENALTY
        return -loglik

    def _optimize(self, w: np.ndarray, spec: SarimaSpec) -> Tuple[np.ndarray, int]:
        n = len(w)

        def objective(x):
            return self._neg_loglike(w, spec, self._transform(spec, x)) / n

        attempts = int(self.settings["max_retries"]) + 1
        last_message = ""
        for attempt in range(attempts):
            x0 = self._untransform(spec, self._starting_values(spec, attempt))
            if attempt > 0:
                logger.warning(
                    "Retrying %s from alternate starting values %s (attempt %d of %d)",
                    spec.label, np.round(self._transform(spec, x0), 3).tolist(), attempt + 1, attempts,
                )
            res = minimize(
                objective,
                x0,
                method="L-BFGS-B",
                options={
                    "maxiter": int(self.settings["maxiter"]),
                    "ftol": float(self.settings["tol"]),
                    "gtol": float(self.settings["gtol"]),
                },
            )
            last_message = str(res.message)
            if res.success and np.isfinite(res.fun) and res.fun < _PENALTY / n:
                logger.debug("%s converged in %d iterations: %s", spec.label, res.nit, last_message)
                return self._transform(spec, res.x), int(res.nit)
            logger.warning("%s did not converge (attempt %d): %s", spec.label, attempt + 1, last_message)

        raise EstimationError(
            f"{spec.label}: optimizer did not converge after {attempts} attempt(s) "
            f"(maxiter={self.settings['maxiter']}, tol={self.settings['tol']}): {last_message}"
        )

    def _information_matrix(self, w: np.ndarray, spec: SarimaSpec, params: np.ndarray) -> np.ndarray:
        """
        Numerical Hessian of the negative log-likelihood at ``params``.

        The finite-difference stencil must stay inside the region where the
        likelihood is defined. Near a unit root the default step crosses the
        boundary, so the step is shrunk until no perturbed evaluation fails,
        and once more to keep the stencil well clear of the boundary.
        """
        step = _EPS ** 0.25 * np.maximum(np.abs(params), 0.1)
        for shrink in range(_MAX_STEP_SHRINKS + 1):
            failed = []

            def objective(x):
                value = self._neg_loglike(w, spec, x)
                if value >= _PENALTY:
                    failed.append(x)
                return value

            hessian = approx_hess3(params, objective, epsilon=step)
            if not failed:
                if shrink == 0:
                    return hessian
                # first clean stencil can still sit next to the boundary
                return approx_hess3(params, lambda x: self._neg_loglike(w, spec, x), epsilon=step / _STEP_MARGIN)
            step = step / _STEP_SHRINK
            logger.debug("%s: Hessian stencil left the admissible region; step reduced to %s",
                         spec.label, step.tolist())

        raise EstimationError(
            f"{spec.label}: likelihood is undefined arbitrarily close to the estimate "
            f"{np.round(params, 6).tolist()}; standard errors are not reportable"
        )

    def _standard_errors(self, w: np.ndarray, spec: SarimaSpec, params: np.ndarray) -> np.ndarray:
        """Square roots of the diagonal of the inverse observed information."""
        hessian = self._information_matrix(w, spec, params)
        hessian = 0.5 * (hessian + hessian.T)
        if not np.all(np.isfinite(hessian)):
            raise EstimationError(f"{spec.label}: information matrix is not finite")
        try:
            chol = np.linalg.cholesky(hessian)
        except np.linalg.LinAlgError as e:
            raise EstimationError(
                f"{spec.label}: information matrix is singular or not positive definite; "
                "standard errors are not reportable"
            ) from e
        cov = cho_solve((chol, True), np.eye(len(params)))
        return np.sqrt(np.diag(cov))

    def _constraint_violations(self, spec: SarimaSpec, params: np.ndarray) -> Tuple[str, ...]:
        violations = []
        for (prefix, autoregressive, _), block in zip(PARAM_BLOCKS, spec.split_params(params)):
            if not polynomial_is_stable(block, autoregressive):
                violations.append(prefix)
        return tuple(violations)

    # -- public API -----------------------------------------------------------

    def fit(self, series: TimeSeries, spec: SarimaSpec) -> FittedModel:
        """
        Fit ``spec`` to ``series`` by exact maximum likelihood.

        Parameters
        ----------
        series : TimeSeries
            Training series (undifferenced)
        spec : SarimaSpec
            Model structure

        Returns
        -------
        FittedModel
            Immutable fit with coefficients, standard errors, log-likelihood,
            AIC and residuals

        Raises
        ------
        InvalidOrderError
            If the orders are negative or inconsistent
        InsufficientDataError
            If too few observations remain after differencing
        EstimationError
            If the optimizer does not converge or the information matrix is
            singular; ``NonStationaryCoefficientError`` or
            ``NonInvertibleCoefficientError`` when ``raise_on_violation`` is set
            and the unconstrained fit leaves the admissible region
        """
        spec = spec.validate()
        if spec.s != series.season:
            logger.warning("%s uses s=%d but the series season is %d", spec.label, spec.s, series.season)
        w = apply_differencing(series, spec.d, spec.D, spec.s).values
        if len(w) <= spec.n_coefficients + 1:
            raise InsufficientDataError(
                f"{spec.label}: {len(w)} differenced observations cannot identify "
                f"{spec.n_coefficients + 1} parameters"
            )

        logger.info("Fitting %s on %d differenced observations", spec.label, len(w))
        if spec.n_coefficients:
            params, n_iter = self._optimize(w, spec)
        else:
            params, n_iter = np.zeros(0), 0

        try:
            loglik, sigma2, out = sarima_loglike(w, spec, params)
        except (ValueError, np.linalg.LinAlgError) as e:
            raise EstimationError(f"{spec.label}: likelihood failed at the optimum: {e}") from e

        std_errors = self._standard_errors(w, spec, params) if spec.n_coefficients else np.zeros(0)

        violations = self._constraint_violations(spec, params)
        if violations:
            logger.warning("%s has coefficients outside the admissible region: %s", spec.label, violations)
            if self.settings["raise_on_violation"]:
                if any(v in ("ar", "sar") for v in violations):
                    raise NonStationaryCoefficientError(f"{spec.label}: non-stationary {violations}")
                raise NonInvertibleCoefficientError(f"{spec.label}: non-invertible {violations}")

        coefficients = MappingProxyType({
            name: CoefficientEstimate(float(est), float(se))
            for name, est, se in zip(spec.param_names, params, std_errors)
        })
        residuals = np.array(out.innovations)
        residuals.setflags(write=False)
        state = np.array(out.state)
        state.setflags(write=False)
        n_params = spec.n_coefficients + 1

        model = FittedModel(
            spec=spec,
            coefficients=coefficients,
            sigma2=sigma2,
            loglik=loglik,
            aic=compute_aic(loglik, n_params),
            nobs=len(w),
            residuals=residuals,
            series=series,
            state=state,
            n_iter=n_iter,
            constraint_violations=violations,
        )
        logger.info("%s: loglik=%.3f AIC=%.3f sigma2=%.5g", spec.label, model.loglik, model.aic, sigma2)
        return model


def fit_sarima(series: TimeSeries, spec: SarimaSpec,
               config_manager: Optional[ConfigManager] = None, **overrides) -> FittedModel:
    """Convenience wrapper around :meth:`SarimaEstimator.fit`."""
    return SarimaEstimator(config_manager, **overrides).fit(series, spec)


def fit_candidates(series: TimeSeries, specs: Sequence[SarimaSpec],
                   config_manager: Optional[ConfigManager] = None,
                   show_progress: bool = True,
                   **overrides) -> Tuple[List[FittedModel], Dict[SarimaSpec, EstimationError]]:
    """
    Fit a small candidate set of specifications.

    Estimation failures do not abort the loop; they are logged and returned
    next to the successful fits so the caller can see every failure.

    Returns
    -------
    Tuple[List[FittedModel], Dict[SarimaSpec, EstimationError]]
        (fitted models in input order, failures keyed by specification)
    """
    estimator = SarimaEstimator(config_manager, **overrides)
    models: List[FittedModel] = []
    failures: Dict[SarimaSpec, EstimationError] = {}
    for spec in tqdm(list(specs), desc="Fitting SARIMA candidates", disable=not show_progress):
        try:
            models.append(estimator.fit(series, spec))
        except EstimationError as e:
            logger.warning("Estimation failed for %s: %s", spec.label, e)
            failures[spec] = e
    return models, failures


def coefficient_frame(models: Sequence[FittedModel]) -> pd.DataFrame:
    """Stacked coefficient / standard-error table for several fits."""
    frames = [m.coefficient_table() for m in models]
    if not frames:
        return pd.DataFrame(columns=["model", "coefficient", "estimate", "std_error", "z"])
    return pd.concat(frames, ignore_index=True)
