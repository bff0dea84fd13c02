# co2_sarima/main.py

"""
Box-Jenkins SARIMA analysis of the monthly Mauna Loa CO2 record.

Purpose
-------
- Load the monthly series (from CSV if provided, else statsmodels.datasets.co2)
  and hold out the last 36 months as a test set
- Difference the training series and track the variance at each stage
- Read candidate orders off the ACF/PACF of the differenced series
- Fit each candidate by exact maximum likelihood, run residual diagnostics
- Keep the lowest-AIC model whose residuals pass the independence tests
- Forecast the held-out months with approximate 95% intervals

Every table is returned as a pandas DataFrame by :func:`run_analysis`; the
command-line entry point writes them as CSV files.

Configuration-Driven Workflow
-----------------------------
Settings come from the defaults in :mod:`co2_sarima.config_utils`, optionally
overlaid by a YAML file (``--config``). CLI arguments override both.
"""

import argparse
import logging
import sys
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

import pandas as pd

from .config_utils import ConfigManager, get_config_value, load_config
from .data_utils import SeriesStore, load_co2_monthly, load_series_csv
from .diagnostics_utils import DiagnosticEngine, DiagnosticReport, diagnostics_frame, stationarity_frame
from .estimation_utils import FittedModel, coefficient_frame, fit_candidates
from .exceptions import EstimationError, ModelSelectionError, SarimaError
from .forecasting_utils import ForecastResult, forecast
from .identification_utils import IdentificationResult, propose_candidates
from .model_spec import SarimaSpec
from .selection_utils import comparison_table, select_best
from .transform_utils import VarianceStage, apply_differencing, variance_frame, variance_table

logger = logging.getLogger(__name__)


@dataclass
class AnalysisResult:
    """Everything produced by one run of the workflow."""

    store: SeriesStore
    variance_stages: List[VarianceStage]
    identification: IdentificationResult
    models: List[FittedModel]
    reports: List[DiagnosticReport]
    selected: FittedModel
    selected_report: DiagnosticReport
    forecast: ForecastResult
    failures: Dict[SarimaSpec, EstimationError] = field(default_factory=dict)
    alpha: float = 0.05
    reject_residual_ar: bool = True

    def tables(self) -> Dict[str, pd.DataFrame]:
        actual = self.store.test.values if len(self.forecast) == self.store.test_size else None
        return {
            "variance": variance_frame(self.variance_stages),
            "correlogram": self.identification.to_frame(),
            "coefficients": coefficient_frame(self.models),
            "stationarity": stationarity_frame(self.reports),
            "diagnostics": diagnostics_frame(self.reports),
            "comparison": comparison_table(self.models, self.reports, self.alpha, self.reject_residual_ar),
            "forecast": self.forecast.to_frame(actual),
        }


def _resolve_override(override: Optional[SarimaSpec], specs: List[SarimaSpec]) -> List[SarimaSpec]:
    if override is None:
        return specs
    override = SarimaSpec(*override).validate()
    if override not in specs:
        specs = specs + [override]
    return specs


def run_analysis(store: SeriesStore,
                 d: int = 1,
                 D: int = 1,
                 candidates: Optional[Sequence[SarimaSpec]] = None,
                 override: Optional[SarimaSpec] = None,
                 horizon: Optional[int] = None,
                 config: Optional[ConfigManager] = None,
                 show_progress: bool = False) -> AnalysisResult:
    """
    Run the full workflow on the training part of ``store``.

    Parameters
    ----------
    store : SeriesStore
        Series and its train/test partition
    d, D : int, default=1
        Non-seasonal and seasonal differencing orders
    candidates : Sequence[SarimaSpec], optional
        Analyst-selected specifications; defaults to the correlogram proposals
    override : SarimaSpec, optional
        Final structure confirmed by the analyst. It is fitted and diagnosed
        with the other candidates but bypasses the AIC selection.
    horizon : int, optional
        Forecast horizon; defaults to the test size
    config : ConfigManager, optional
        Configuration shared by every stage
    show_progress : bool, default=False
        Show a progress bar while fitting candidates

    Returns
    -------
    AnalysisResult

    Raises
    ------
    ModelSelectionError
        If every fit fails or no model passes the independence tests
    EstimationError
        If the override itself cannot be estimated
    """
    config = config or ConfigManager()
    train = store.train
    s = train.season
    logger.info("Training on %d observations, holding out %d", len(train), store.test_size)

    stages = variance_table(train, d, D, s)
    for stage in stages:
        logger.info("Variance (%s): %.6g, ADF p=%.4f", stage.label, stage.variance, stage.adf_pvalue)

    differenced = apply_differencing(train, d, D, s)
    identification = propose_candidates(differenced, d, D, s, config=config)

    specs = list(candidates) if candidates else list(identification.candidates)
    specs = _resolve_override(override, specs)
    logger.info("Fitting %d candidate(s): %s", len(specs), ", ".join(sp.label for sp in specs))

    models, failures = fit_candidates(train, specs, config_manager=config, show_progress=show_progress)
    if not models:
        raise ModelSelectionError(f"All {len(specs)} candidate fits failed: {sorted(sp.label for sp in failures)}")

    engine = DiagnosticEngine(config)
    reports = [engine.diagnose(m) for m in models]
    alpha = float(get_config_value("diagnostics.significance_level", 0.05, config=config))
    reject_residual_ar = bool(get_config_value("diagnostics.reject_residual_ar", True, config=config))

    if override is not None:
        chosen = identification.choose(override)
        if chosen in failures:
            raise failures[chosen]
        idx = next(i for i, m in enumerate(models) if m.spec == chosen)
        selected, selected_report = models[idx], reports[idx]
        logger.info("Using analyst-confirmed %s (AIC=%.3f)", selected.label, selected.aic)
    else:
        selected = select_best(models, reports, alpha, reject_residual_ar)
        selected_report = reports[models.index(selected)]

    if horizon is None:
        horizon = store.test_size
    result = forecast(selected, horizon, config=config)
    if horizon == store.test_size:
        logger.info("%s: %d of %d test values inside the forecast interval",
                    selected.label, result.n_covered(store.test), horizon)

    return AnalysisResult(
        store=store,
        variance_stages=stages,
        identification=identification,
        models=models,
        reports=reports,
        selected=selected,
        selected_report=selected_report,
        forecast=result,
        failures=failures,
        alpha=alpha,
        reject_residual_ar=reject_residual_ar,
    )


def write_tables(result: AnalysisResult, output_dir: Path) -> List[Path]:
    """Write every result table as ``<name>.csv`` under ``output_dir``."""
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for name, df in result.tables().items():
        path = output_dir / f"{name}.csv"
        df.to_csv(path, index=(name == "forecast"))
        written.append(path)
        logger.debug("Wrote %s (%d rows)", path, len(df))
    logger.info("Wrote %d tables to %s", len(written), output_dir)
    return written


def setup_cli_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SARIMA modeling and forecasting of the monthly Mauna Loa CO2 record."
    )
    parser.add_argument(
        "--series-csv", type=str, default=None,
        help="CSV with a date column and a value column. Defaults to statsmodels.datasets.co2."
    )
    parser.add_argument("--date-col", type=str, default="date", help="Date column of --series-csv.")
    parser.add_argument("--value-col", type=str, default="co2", help="Value column of --series-csv.")
    parser.add_argument("--config", type=str, default=None, help="Optional YAML configuration file.")
    parser.add_argument(
        "--output-dir", type=str, default="results",
        help="Directory to write the result tables to."
    )
    parser.add_argument("--season", type=int, default=None, help="Seasonal period s (default from config).")
    parser.add_argument("--test-size", type=int, default=None, help="Held-out observations (default from config).")
    parser.add_argument("--d", dest="d", type=int, default=1, help="Non-seasonal differencing order.")
    parser.add_argument("--D", dest="D", type=int, default=1, help="Seasonal differencing order.")
    parser.add_argument(
        "--candidates", type=str, default=None,
        help="Semicolon-separated orders 'p,d,q,P,D,Q[,s]' to fit instead of the correlogram proposals."
    )
    parser.add_argument(
        "--order", type=str, default=None,
        help="Analyst-confirmed final order 'p,d,q,P,D,Q[,s]'; bypasses AIC selection."
    )
    parser.add_argument("--horizon", type=int, default=None, help="Forecast horizon (default: test size).")
    parser.add_argument(
        "--exact-intervals", action="store_true", default=False,
        help="Use the normal quantile instead of +/- 2 standard errors."
    )
    parser.add_argument("--no-progress", action="store_true", default=False, help="Hide the progress bar.")
    parser.add_argument(
        "--log-level", type=str, default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity level."
    )
    return parser


def setup_logging(log_level: str) -> None:
    """
    Configure logging with specified level and warning filters.

    Parameters
    ----------
    log_level : str
        Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = log_level.upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    if level == "DEBUG":
        warnings.resetwarnings()
        warnings.filterwarnings("default")
    else:
        warnings.filterwarnings("ignore", category=FutureWarning)
        warnings.filterwarnings("ignore", category=UserWarning, module="statsmodels")


def _parse_specs(text: Optional[str], season: int) -> Optional[List[SarimaSpec]]:
    if not text:
        return None
    return [SarimaSpec.parse(part, s=season) for part in text.split(";") if part.strip()]


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    Command-line entry point.

    Returns
    -------
    int
        Process exit code: 0 on success, 1 when the analysis fails
    """
    parser = setup_cli_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    config = load_config(args.config)
    if args.exact_intervals:
        config = config.with_overrides({"forecast": {"exact_quantile": True}})

    season = int(get_config_value("data.season", 12, args=args, cli_param="season", config=config))
    test_size = int(get_config_value("data.test_size", 36, args=args, cli_param="test_size", config=config))

    try:
        if args.series_csv:
            series = load_series_csv(args.series_csv, date_col=args.date_col,
                                     value_col=args.value_col, season=season)
        else:
            series = load_co2_monthly(season=season)
        store = SeriesStore(series, test_size)
        result = run_analysis(
            store,
            d=args.d,
            D=args.D,
            candidates=_parse_specs(args.candidates, season),
            override=SarimaSpec.parse(args.order, s=season) if args.order else None,
            horizon=args.horizon,
            config=config,
            show_progress=not args.no_progress,
        )
    except (SarimaError, ValueError, OSError) as e:
        logger.error("Analysis failed: %s", e)
        return 1

    write_tables(result, Path(args.output_dir))
    logger.info("Selected %s with AIC %.3f", result.selected.label, result.selected.aic)
    return 0


if __name__ == "__main__":
    sys.exit(main())
