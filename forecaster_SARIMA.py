#!/usr/bin/env python3
"""
SARIMA modeling and forecasting of the monthly Mauna Loa CO2 record.

Usage
-----
    python forecaster_SARIMA.py --help
    python forecaster_SARIMA.py --output-dir results
    python forecaster_SARIMA.py --series-csv data/co2.csv --order 1,1,1,0,1,1

Module Structure
----------------
The code is organized in co2_sarima/:
- config_utils.py: Configuration management
- data_utils.py: Data loading and train/test split
- transform_utils.py: Differencing and variance tracking
- identification_utils.py: ACF/PACF and candidate orders
- statespace.py: State-space form and Kalman likelihood
- estimation_utils.py: Maximum-likelihood fitting
- diagnostics_utils.py: Residual diagnostics
- selection_utils.py: Model comparison
- forecasting_utils.py: Multi-step forecasts
- main.py: Main entry point
"""

import sys

if __name__ == "__main__":
    try:
        from co2_sarima.main import main
    except ImportError as e:
        print(f"Error: Cannot import the modules: {e}")
        print("Please ensure the co2_sarima/ directory is present and its dependencies are installed.")
        sys.exit(1)
    sys.exit(main())
