# co2_sarima/diagnostics_utils.py

"""
Residual diagnostics and admissibility checks for fitted SARIMA models.

The engine runs the tests and returns raw statistics and p-values; it never
decides whether a model is acceptable. Interpretation against a significance
level (0.05 by convention) is left to the caller, e.g.
:func:`co2_sarima.selection_utils.select_best`.

Tests:
- Stationarity / invertibility of every AR and MA polynomial (root finding)
- Shapiro-Wilk and Jarque-Bera normality tests
- Box-Pierce and Ljung-Box portmanteau tests at lag round(sqrt(n))
- McLeod-Li test (Ljung-Box on squared residuals)
- ARCH-LM test for conditional heteroskedasticity
- Autoregressive order of the residuals selected by AIC
"""

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.stats.diagnostic import acorr_ljungbox, het_arch
from statsmodels.stats.stattools import jarque_bera
from statsmodels.tsa.ar_model import ar_select_order

from .config_utils import ConfigManager
from .estimation_utils import CoefficientEstimate, FittedModel
from .model_spec import PARAM_BLOCKS, SarimaSpec
from .statespace import polynomial_is_stable

logger = logging.getLogger(__name__)


class DiagnosticTest(Enum):
    """Types of residual diagnostic tests."""
    SHAPIRO_WILK = "shapiro_wilk"
    JARQUE_BERA = "jarque_bera"
    BOX_PIERCE = "box_pierce"
    LJUNG_BOX = "ljung_box"
    MCLEOD_LI = "mcleod_li"
    ARCH_LM = "arch_lm"


@dataclass(frozen=True)
class TestResult:
    """Statistic, degrees of freedom and p-value of a single test."""

    __test__ = False  # not a pytest class

    test_type: DiagnosticTest
    statistic: float
    p_value: float
    degrees_of_freedom: Optional[int] = None
    lags: Optional[int] = None

    @property
    def name(self) -> str:
        return self.test_type.value

    def rejects(self, alpha: float = 0.05) -> bool:
        """True when the null is rejected at ``alpha``; NaN p-values never reject."""
        return bool(np.isfinite(self.p_value) and self.p_value < alpha)


@dataclass(frozen=True)
class DiagnosticReport:
    """
    Diagnostic results for one fitted model.

    ``stationarity`` maps each polynomial (``ar``, ``ma``, ``sar``, ``sma``) to
    whether its roots lie outside the unit circle. ``portmanteau`` holds the
    Box-Pierce, Ljung-Box and McLeod-Li results keyed by test name.
    """

    n_residuals: int
    normality: TestResult
    portmanteau: Mapping[str, TestResult]
    residual_ar_order: int
    stationarity: Mapping[str, bool] = field(default_factory=dict)
    extra_tests: Mapping[str, TestResult] = field(default_factory=dict)
    model_label: str = ""

    @property
    def residual_ar_flag(self) -> bool:
        """A nonzero residual AR order is evidence against white noise."""
        return self.residual_ar_order != 0

    @property
    def admissible(self) -> bool:
        return all(self.stationarity.values())

    def tests(self) -> Dict[str, TestResult]:
        out = {self.normality.name: self.normality}
        out.update(self.portmanteau)
        out.update(self.extra_tests)
        return out

    def to_frame(self) -> pd.DataFrame:
        rows = [
            {
                "model": self.model_label,
                "test": name,
                "statistic": res.statistic,
                "df": res.degrees_of_freedom,
                "lags": res.lags,
                "p_value": res.p_value,
            }
            for name, res in self.tests().items()
        ]
        return pd.DataFrame(rows, columns=["model", "test", "statistic", "df", "lags", "p_value"])

    def stationarity_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [{"model": self.model_label, "polynomial": k, "roots_outside_unit_circle": v}
             for k, v in self.stationarity.items()],
            columns=["model", "polynomial", "roots_outside_unit_circle"],
        )


CoefficientMap = Mapping[str, Union[float, CoefficientEstimate]]


class DiagnosticEngine:
    """Residual diagnostic testing for SARIMA fits."""

    def __init__(self, config_manager: Optional[ConfigManager] = None, **overrides):
        """
        Parameters
        ----------
        config_manager : ConfigManager, optional
            Source of the ``diagnostics.*`` settings
        **overrides
            ``max_ar_order`` or ``arch_lm_lags`` overrides
        """
        self.config_manager = config_manager or ConfigManager()
        self.diag_config = self._load_diagnostic_config(overrides)

    def _load_diagnostic_config(self, overrides: Dict[str, Any]) -> Dict[str, Any]:
        default_config = {
            "max_ar_order": 12,
            "arch_lm_lags": 12,
        }
        for key in default_config:
            value = self.config_manager.get(f"diagnostics.{key}")
            if value is not None:
                default_config[key] = int(value)
        default_config.update(overrides)
        return default_config

    # -- admissibility --------------------------------------------------------

    def check_stationarity_invertibility(self, spec: SarimaSpec,
                                         coefficients: Union[CoefficientMap, Sequence[float]]) -> Dict[str, bool]:
        """
        Check that every AR and MA polynomial has all roots outside the unit circle.

        Parameters
        ----------
        spec : SarimaSpec
            Model structure
        coefficients : mapping or sequence
            Coefficients keyed by name (``ar1``, ``sma1``, ...) as floats or
            CoefficientEstimate, or a flat vector in parameter order

        Returns
        -------
        Dict[str, bool]
            ``{"ar", "ma", "sar", "sma"} -> bool``; a polynomial without
            coefficients is trivially True and a unit root is False
        """
        if isinstance(coefficients, Mapping):
            missing = [n for n in spec.param_names if n not in coefficients]
            if missing:
                raise KeyError(f"Missing coefficients for {spec.label}: {missing}")
            values = []
            for name in spec.param_names:
                c = coefficients[name]
                values.append(c.estimate if isinstance(c, CoefficientEstimate) else float(c))
        else:
            values = list(coefficients)

        verdicts: Dict[str, bool] = {}
        for (prefix, autoregressive, _), block in zip(PARAM_BLOCKS, spec.split_params(values)):
            verdicts[prefix] = polynomial_is_stable(block, autoregressive)
            if not verdicts[prefix]:
                kind = "stationary" if autoregressive else "invertible"
                logger.warning("%s: %s polynomial is not %s (%s)", spec.label, prefix, kind,
                               np.round(block, 4).tolist())
        return verdicts

    # -- individual residual tests ---------------------------------------------

    @staticmethod
    def portmanteau_lag(n: int) -> int:
        return max(1, int(round(np.sqrt(n))))

    def shapiro_wilk_test(self, residuals: np.ndarray) -> TestResult:
        if len(residuals) > 5000:
            logger.warning("Shapiro-Wilk test may be unreliable for large samples (n=%d)", len(residuals))
        sw_stat, sw_pval = stats.shapiro(residuals)
        return TestResult(DiagnosticTest.SHAPIRO_WILK, float(sw_stat), float(sw_pval))

    def jarque_bera_test(self, residuals: np.ndarray) -> TestResult:
        jb_stat, jb_pval, _, _ = jarque_bera(residuals)
        return TestResult(DiagnosticTest.JARQUE_BERA, float(jb_stat), float(jb_pval), degrees_of_freedom=2)

    def ljung_box_tests(self, residuals: np.ndarray, lags: int, fitted_params_count: int) -> Dict[str, TestResult]:
        """
        Box-Pierce and Ljung-Box statistics at ``lags`` with ``lags - fitted_params_count`` df.

        The p-value is NaN when the degrees of freedom are not positive.
        """
        lb = acorr_ljungbox(residuals, lags=[lags], boxpierce=True,
                            model_df=fitted_params_count)
        row = lb.iloc[-1]
        dof = lags - fitted_params_count
        return {
            DiagnosticTest.BOX_PIERCE.value: TestResult(
                DiagnosticTest.BOX_PIERCE, float(row["bp_stat"]), float(row["bp_pvalue"]), dof, lags),
            DiagnosticTest.LJUNG_BOX.value: TestResult(
                DiagnosticTest.LJUNG_BOX, float(row["lb_stat"]), float(row["lb_pvalue"]), dof, lags),
        }

    def mcleod_li_test(self, residuals: np.ndarray, lags: int) -> TestResult:
        """Ljung-Box on squared residuals with no fitted-parameter correction."""
        lb = acorr_ljungbox(np.square(residuals), lags=[lags], model_df=0)
        row = lb.iloc[-1]
        return TestResult(DiagnosticTest.MCLEOD_LI, float(row["lb_stat"]), float(row["lb_pvalue"]), lags, lags)

    def arch_lm_test(self, residuals: np.ndarray, lags: Optional[int] = None) -> Optional[TestResult]:
        if lags is None:
            lags = self.diag_config["arch_lm_lags"]
        lags = int(min(lags, max(1, len(residuals) // 10)))
        try:
            lm_stat, lm_pval, _, _ = het_arch(residuals, nlags=lags, result_object=False)
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.debug("ARCH-LM test skipped: %s", e)
            return None
        return TestResult(DiagnosticTest.ARCH_LM, float(lm_stat), float(lm_pval), lags, lags)

    def residual_ar_order(self, residuals: np.ndarray, max_order: Optional[int] = None) -> int:
        """
        Autoregressive order of the residuals, selected by AIC over ``0..max_order``.

        Each AR(k) is fitted by least squares (minimum one-step prediction
        error) on a common sample. White-noise residuals should give order 0.
        """
        if max_order is None:
            max_order = self.diag_config["max_ar_order"]
        max_order = int(min(max_order, max(0, len(residuals) // 4)))
        if max_order == 0:
            return 0
        selection = ar_select_order(np.asarray(residuals), maxlag=max_order, ic="aic", trend="n")
        lags = selection.ar_lags
        order = int(max(lags)) if lags else 0
        logger.debug("Residual AR order selected by AIC: %d (max %d)", order, max_order)
        return order

    # -- reports ----------------------------------------------------------------

    def test_residuals(self, residuals: Union[np.ndarray, pd.Series, Sequence[float]],
                       fitted_params_count: int, model_label: str = "") -> DiagnosticReport:
        """
        Run the residual test battery.

        Parameters
        ----------
        residuals : array-like
            One-step prediction errors of a fitted model
        fitted_params_count : int
            Number of estimated ARMA coefficients, subtracted from the
            portmanteau degrees of freedom
        model_label : str, optional
            Label carried into the report tables

        Returns
        -------
        DiagnosticReport
            Report without stationarity verdicts (see :meth:`diagnose`)
        """
        resid = np.asarray(residuals, dtype=np.float64)
        resid = resid[np.isfinite(resid)]
        if len(resid) < 8:
            raise ValueError(f"At least 8 residuals are needed for diagnostics, got {len(resid)}")
        if fitted_params_count < 0:
            raise ValueError("fitted_params_count must be >= 0")

        h = self.portmanteau_lag(len(resid))
        logger.debug("Running residual diagnostics on %d residuals (h=%d)", len(resid), h)

        portmanteau = self.ljung_box_tests(resid, h, fitted_params_count)
        portmanteau[DiagnosticTest.MCLEOD_LI.value] = self.mcleod_li_test(resid, h)

        extra = {DiagnosticTest.JARQUE_BERA.value: self.jarque_bera_test(resid)}
        arch = self.arch_lm_test(resid)
        if arch is not None:
            extra[DiagnosticTest.ARCH_LM.value] = arch

        order = self.residual_ar_order(resid)
        if order:
            logger.info("%s residuals: AR(%d) selected - evidence against white noise",
                        model_label or "model", order)

        return DiagnosticReport(
            n_residuals=len(resid),
            normality=self.shapiro_wilk_test(resid),
            portmanteau=portmanteau,
            residual_ar_order=order,
            extra_tests=extra,
            model_label=model_label,
        )

    def diagnose(self, model: FittedModel) -> DiagnosticReport:
        """Residual tests plus stationarity/invertibility verdicts for a fitted model."""
        report = self.test_residuals(model.residuals, model.spec.n_coefficients, model.label)
        verdicts = self.check_stationarity_invertibility(model.spec, model.coefficients)
        return replace(report, stationarity=verdicts)


def diagnose_models(models: Sequence[FittedModel],
                    config_manager: Optional[ConfigManager] = None) -> list:
    """Convenience function returning one report per model, in order."""
    engine = DiagnosticEngine(config_manager)
    return [engine.diagnose(m) for m in models]


def diagnostics_frame(reports: Sequence[DiagnosticReport]) -> pd.DataFrame:
    frames = [r.to_frame() for r in reports]
    if not frames:
        return pd.DataFrame(columns=["model", "test", "statistic", "df", "lags", "p_value"])
    return pd.concat(frames, ignore_index=True)


def stationarity_frame(reports: Sequence[DiagnosticReport]) -> pd.DataFrame:
    frames = [r.stationarity_frame() for r in reports]
    if not frames:
        return pd.DataFrame(columns=["model", "polynomial", "roots_outside_unit_circle"])
    return pd.concat(frames, ignore_index=True)
