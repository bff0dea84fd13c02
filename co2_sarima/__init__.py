# co2_sarima/__init__.py

"""
CO2 SARIMA - Box-Jenkins modeling of the monthly Mauna Loa CO2 record

Key Components
--------------
- config_utils: Configuration defaults, YAML overrides and CLI precedence
- data_utils: TimeSeries, train/test SeriesStore, CSV and dataset loading
- transform_utils: Differencing, integration and the variance-per-stage table
- identification_utils: ACF/PACF correlograms and candidate orders
- model_spec: SARIMA order value object
- statespace: Lag polynomials, state-space form and the exact Kalman likelihood
- estimation_utils: Maximum-likelihood estimation
- diagnostics_utils: Residual tests and stationarity/invertibility checks
- selection_utils: AIC comparison under residual independence
- forecasting_utils: Multi-step forecasts with standard errors
- main: Workflow orchestration and command-line entry point

Usage
-----
    # Command-line usage
    python -m co2_sarima.main --output-dir results

    # Programmatic usage
    from co2_sarima import SeriesStore, load_co2_monthly, run_analysis
    result = run_analysis(SeriesStore(load_co2_monthly()))
"""

__version__ = "1.0.0"

from .config_utils import ConfigManager, get_config_value, load_config
from .data_utils import SeriesStore, TimeSeries, load_co2_monthly, load_series_csv
from .diagnostics_utils import DiagnosticEngine, DiagnosticReport
from .estimation_utils import FittedModel, SarimaEstimator, fit_sarima
from .exceptions import (
    EstimationError,
    InsufficientDataError,
    InvalidHorizonError,
    InvalidOrderError,
    ModelSelectionError,
    NonInvertibleCoefficientError,
    NonStationaryCoefficientError,
    SarimaError,
)
from .forecasting_utils import ForecastResult, forecast
from .identification_utils import compute_acf, compute_pacf, propose_candidates
from .main import main, run_analysis
from .model_spec import SarimaSpec
from .selection_utils import select_best
from .transform_utils import apply_differencing, difference, integrate, variance_table

__all__ = [
    "main",
    "run_analysis",
    "ConfigManager",
    "load_config",
    "get_config_value",
    "TimeSeries",
    "SeriesStore",
    "load_co2_monthly",
    "load_series_csv",
    "difference",
    "integrate",
    "apply_differencing",
    "variance_table",
    "compute_acf",
    "compute_pacf",
    "propose_candidates",
    "SarimaSpec",
    "SarimaEstimator",
    "FittedModel",
    "fit_sarima",
    "DiagnosticEngine",
    "DiagnosticReport",
    "select_best",
    "forecast",
    "ForecastResult",
    "SarimaError",
    "InvalidOrderError",
    "InvalidHorizonError",
    "InsufficientDataError",
    "EstimationError",
    "NonStationaryCoefficientError",
    "NonInvertibleCoefficientError",
    "ModelSelectionError",
    "__version__",
]
