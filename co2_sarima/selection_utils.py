# co2_sarima/selection_utils.py

import logging
from typing import List, Optional, Sequence

import numpy as np
import pandas as pd

from .diagnostics_utils import DiagnosticReport
from .estimation_utils import FittedModel
from .exceptions import ModelSelectionError

logger = logging.getLogger(__name__)

INDEPENDENCE_TESTS = ("ljung_box", "box_pierce")


def passes_independence(report: DiagnosticReport, alpha: float = 0.05,
                        reject_residual_ar: bool = True) -> bool:
    """
    True when the residuals look like white noise.

    Both portmanteau tests must fail to reject independence at ``alpha``; a
    NaN p-value (too few degrees of freedom) counts as a failure. Unless
    ``reject_residual_ar`` is False, a nonzero residual AR order is also a
    failure.
    """
    for name in INDEPENDENCE_TESTS:
        result = report.portmanteau.get(name)
        if result is None or not np.isfinite(result.p_value) or result.p_value < alpha:
            return False
    if reject_residual_ar and report.residual_ar_flag:
        return False
    return True


def select_best(models: Sequence[FittedModel], reports: Sequence[DiagnosticReport],
                alpha: float = 0.05, reject_residual_ar: bool = True) -> FittedModel:
    """
    Pick the lowest-AIC model among those whose residuals pass the independence tests.

    Parameters
    ----------
    models : Sequence[FittedModel]
        Fitted candidates
    reports : Sequence[DiagnosticReport]
        Diagnostic report of each model, in the same order
    alpha : float, default=0.05
        Significance level of the Box-Pierce and Ljung-Box tests
    reject_residual_ar : bool, default=True
        Also disqualify models whose residuals still carry AR structure
        (``DiagnosticReport.residual_ar_flag``)

    Returns
    -------
    FittedModel
        The winner. Ties on AIC keep the earlier model.

    Raises
    ------
    ModelSelectionError
        If no candidate passes (or none was given)
    """
    if len(models) != len(reports):
        raise ValueError(f"Got {len(models)} models but {len(reports)} diagnostic reports")
    if not 0.0 < alpha < 1.0:
        raise ValueError(f"alpha must be in (0, 1), got {alpha}")

    best: Optional[FittedModel] = None
    for model, report in zip(models, reports):
        if not passes_independence(report, alpha, reject_residual_ar):
            logger.info("%s rejected: residuals fail the independence tests at alpha=%.3g "
                        "(residual AR order %d)", model.label, alpha, report.residual_ar_order)
            continue
        if best is None or model.aic < best.aic:
            best = model

    if best is None:
        raise ModelSelectionError(
            f"None of the {len(models)} candidate model(s) passes the residual independence tests at alpha={alpha}"
        )
    logger.info("Selected %s (AIC=%.3f)", best.label, best.aic)
    return best


def comparison_table(models: Sequence[FittedModel], reports: Sequence[DiagnosticReport],
                     alpha: float = 0.05, reject_residual_ar: bool = True) -> pd.DataFrame:
    """AIC and portmanteau p-values of every candidate, sorted by AIC."""
    rows: List[dict] = []
    for model, report in zip(models, reports):
        lb = report.portmanteau.get("ljung_box")
        bp = report.portmanteau.get("box_pierce")
        rows.append({
            "model": model.label,
            "n_params": model.n_params,
            "loglik": model.loglik,
            "aic": model.aic,
            "sigma2": model.sigma2,
            "ljung_box_p": lb.p_value if lb is not None else np.nan,
            "box_pierce_p": bp.p_value if bp is not None else np.nan,
            "residual_ar_order": report.residual_ar_order,
            "admissible": report.admissible,
            "passes_independence": passes_independence(report, alpha, reject_residual_ar),
        })
    df = pd.DataFrame(rows)
    if not df.empty:
        df = df.sort_values("aic", kind="mergesort").reset_index(drop=True)
    return df
