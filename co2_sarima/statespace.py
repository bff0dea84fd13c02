# co2_sarima/statespace.py

"""
Lag polynomials and the state-space form of a seasonal ARMA process.

A differenced SARIMA series ``w_t`` follows

    phi(B) Phi(B^s) w_t = theta(B) Theta(B^s) e_t,   e_t ~ N(0, sigma2)

The multiplied-out polynomials are cast in companion (Harvey) form

    alpha_{t+1} = T alpha_t + R e_{t+1},     w_t = alpha_t[0]

and the exact Gaussian likelihood is evaluated by the Kalman filter
prediction-error decomposition. The filter runs with ``sigma2 = 1`` and the
innovation variance is concentrated out of the likelihood afterwards.
"""

import logging
from typing import NamedTuple, Sequence, Tuple

import numpy as np
from numpy.polynomial import polynomial as npoly
from scipy.linalg import solve_discrete_lyapunov

from .model_spec import SarimaSpec

logger = logging.getLogger(__name__)

# Roots with modulus within this distance of 1 count as unit roots.
UNIT_ROOT_TOL = 1e-10

# Largest absolute change in the state covariance treated as converged.
STEADY_STATE_TOL = 1e-11


def lag_polynomial(coefs: Sequence[float], autoregressive: bool, step: int = 1) -> np.ndarray:
    """
    Ascending coefficients of ``1 -/+ c_1 B^step -/+ c_2 B^(2 step) ...``.

    Autoregressive polynomials subtract their coefficients, moving-average
    polynomials add them.
    """
    coefs = np.asarray(coefs, dtype=np.float64)
    out = np.zeros(len(coefs) * step + 1)
    out[0] = 1.0
    sign = -1.0 if autoregressive else 1.0
    for i, c in enumerate(coefs, start=1):
        out[i * step] = sign * c
    return out


def differencing_polynomial(d: int, D: int, s: int) -> np.ndarray:
    """Ascending coefficients of ``(1 - B)^d (1 - B^s)^D``."""
    poly = np.array([1.0])
    for _ in range(d):
        poly = npoly.polymul(poly, [1.0, -1.0])
    seasonal = np.zeros(s + 1)
    seasonal[0], seasonal[s] = 1.0, -1.0
    for _ in range(D):
        poly = npoly.polymul(poly, seasonal)
    return poly


def sarima_polynomials(spec: SarimaSpec, params: Sequence[float]) -> Tuple[np.ndarray, np.ndarray]:
    """Multiplied-out (AR, MA) polynomials of the stationary ARMA part."""
    ar, ma, sar, sma = spec.split_params(params)
    ar_poly = npoly.polymul(lag_polynomial(ar, True), lag_polynomial(sar, True, spec.s))
    ma_poly = npoly.polymul(lag_polynomial(ma, False), lag_polynomial(sma, False, spec.s))
    return ar_poly, ma_poly


def polynomial_roots(coefs: Sequence[float], autoregressive: bool) -> np.ndarray:
    """Roots of ``1 -/+ c_1 z -/+ ... = 0`` (empty when there are no coefficients)."""
    poly = lag_polynomial(coefs, autoregressive)
    poly = np.trim_zeros(poly, "b")
    if len(poly) <= 1:
        return np.array([], dtype=np.complex128)
    return np.roots(poly[::-1])


def polynomial_is_stable(coefs: Sequence[float], autoregressive: bool = True) -> bool:
    """
    True when every root of the lag polynomial lies strictly outside the unit circle.

    Order-1 polynomials are decided by ``|c| < 1`` directly; higher orders use
    explicit root finding. A root on the unit circle is not stable.
    """
    coefs = np.asarray(coefs, dtype=np.float64)
    if not np.all(np.isfinite(coefs)):
        return False
    if len(coefs) == 0:
        return True
    if len(coefs) == 1:
        return bool(abs(coefs[0]) < 1.0)
    roots = polynomial_roots(coefs, autoregressive)
    return bool(np.all(np.abs(roots) > 1.0 + UNIT_ROOT_TOL))


def arma_to_statespace(ar_poly: np.ndarray, ma_poly: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Companion-form transition matrix ``T`` and selection vector ``R``.

    The state dimension is ``max(len(phi), len(theta) + 1)`` where ``phi`` and
    ``theta`` are the multiplied-out AR and MA coefficients.
    """
    phi = -np.asarray(ar_poly, dtype=np.float64)[1:]
    theta = np.asarray(ma_poly, dtype=np.float64)[1:]
    r = max(len(phi), len(theta) + 1, 1)
    T = np.zeros((r, r))
    T[:len(phi), 0] = phi
    if r > 1:
        T[:-1, 1:] = np.eye(r - 1)
    R = np.zeros(r)
    R[0] = 1.0
    R[1:len(theta) + 1] = theta
    return T, R


class FilterOutput(NamedTuple):
    """Kalman filter output with the innovation variance scaled to one."""

    innovations: np.ndarray
    variances: np.ndarray
    sum_squares: float
    sum_log_variances: float
    state: np.ndarray
    state_cov: np.ndarray


def kalman_filter(y: np.ndarray, T: np.ndarray, R: np.ndarray) -> FilterOutput:
    """
    Exact Kalman filter for a stationary ARMA model in companion form.

    The state is initialised at zero with the stationary covariance. Once the
    predicted covariance stops changing the gain is frozen and only the state
    is propagated. The update uses the scalar innovation variance, so no matrix
    is inverted.

    Returns
    -------
    FilterOutput
        One-step innovations ``v_t``, their scale-free variances ``F_t``,
        ``sum(v_t^2 / F_t)``, ``sum(log F_t)`` and the predicted state (and
        covariance) for the period after the last observation.

    Raises
    ------
    np.linalg.LinAlgError
        If the stationary covariance cannot be formed or an innovation
        variance is not positive.
    """
    y = np.asarray(y, dtype=np.float64)
    n = len(y)
    RR = np.outer(R, R)
    P = solve_discrete_lyapunov(T, RR)
    if not np.all(np.isfinite(P)):
        raise np.linalg.LinAlgError("Stationary state covariance is not finite")
    a = np.zeros(len(R))

    v = np.empty(n)
    F = np.empty(n)
    steady = False
    gain = None
    for t in range(n):
        f = P[0, 0]
        if not f > 0.0:
            raise np.linalg.LinAlgError(f"Non-positive innovation variance at t={t}")
        v_t = y[t] - a[0]
        if steady:
            a = T @ a + gain * v_t
        else:
            k = P[:, 0] / f
            a = T @ (a + k * v_t)
            P_next = T @ (P - np.outer(k, P[0, :])) @ T.T + RR
            P_next = 0.5 * (P_next + P_next.T)
            if np.max(np.abs(P_next - P)) < STEADY_STATE_TOL:
                steady = True
                gain = T @ (P_next[:, 0] / P_next[0, 0])
            P = P_next
        v[t] = v_t
        F[t] = f

    return FilterOutput(
        innovations=v,
        variances=F,
        sum_squares=float(np.sum(v * v / F)),
        sum_log_variances=float(np.sum(np.log(F))),
        state=a,
        state_cov=P,
    )


def concentrated_loglike(out: FilterOutput) -> Tuple[float, float]:
    """
    Gaussian log-likelihood with the innovation variance at its MLE.

    Returns
    -------
    Tuple[float, float]
        (loglik, sigma2)
    """
    n = len(out.innovations)
    sigma2 = out.sum_squares / n
    if not sigma2 > 0.0:
        return float("-inf"), float(sigma2)
    loglik = -0.5 * n * (np.log(2.0 * np.pi) + 1.0 + np.log(sigma2)) - 0.5 * out.sum_log_variances
    return float(loglik), float(sigma2)


def sarima_loglike(w: np.ndarray, spec: SarimaSpec, params: Sequence[float]) -> Tuple[float, float, FilterOutput]:
    """
    Exact log-likelihood of the differenced series ``w`` at ``params``.

    Raises
    ------
    ValueError
        If the autoregressive part is not stationary (the stationary
        initialisation does not exist)
    """
    ar, _, sar, _ = spec.split_params(params)
    if not (polynomial_is_stable(ar) and polynomial_is_stable(sar)):
        raise ValueError("Autoregressive polynomial is not stationary")
    ar_poly, ma_poly = sarima_polynomials(spec, params)
    T, R = arma_to_statespace(ar_poly, ma_poly)
    out = kalman_filter(w, T, R)
    loglik, sigma2 = concentrated_loglike(out)
    return loglik, sigma2, out


def psi_weights(ar_poly: np.ndarray, ma_poly: np.ndarray, n: int) -> np.ndarray:
    """
    First ``n`` impulse-response (psi) weights of ``ma_poly(B) / ar_poly(B)``.

    ``ar_poly`` may include the differencing operator, in which case the
    weights do not decay.
    """
    psi = np.zeros(n)
    for j in range(n):
        acc = ma_poly[j] if j < len(ma_poly) else 0.0
        upper = min(j, len(ar_poly) - 1)
        for i in range(1, upper + 1):
            acc -= ar_poly[i] * psi[j - i]
        psi[j] = acc
    return psi
