# co2_sarima/exceptions.py

"""
Exception hierarchy for the SARIMA modeling pipeline.

Invalid inputs are rejected before any computation starts; numerical failures
during estimation surface as ``EstimationError``. A statistical test that
rejects its null hypothesis is a result, not an error, and never raises.
"""


class SarimaError(Exception):
    """Base class for all pipeline errors."""


class InvalidOrderError(SarimaError, ValueError):
    """Negative or inconsistent (p, d, q, P, D, Q, s) orders."""


class InvalidHorizonError(SarimaError, ValueError):
    """Forecast horizon is not a positive integer."""


class InsufficientDataError(SarimaError, ValueError):
    """Series is too short for the requested lag structure."""


class EstimationError(SarimaError, RuntimeError):
    """Optimizer did not converge or the information matrix is singular."""


class NonStationaryCoefficientError(EstimationError):
    """Autoregressive polynomial has a root on or inside the unit circle."""


class NonInvertibleCoefficientError(EstimationError):
    """Moving-average polynomial has a root on or inside the unit circle."""


class ModelSelectionError(SarimaError, ValueError):
    """No candidate model satisfies the selection criteria."""
