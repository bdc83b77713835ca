"""
Univariate tests on a single marker: log-scale ANOVA, Tukey HSD and
simulation-based residual checks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
import pandas as pd
from scipy import stats
from statsmodels.formula.api import ols
from statsmodels.stats.anova import anova_lm
from statsmodels.stats.multicomp import pairwise_tukeyhsd

from .constants import (
    CN_RATIO,
    DEFAULT_ALPHA,
    DEFAULT_SEED,
    DEFAULT_SIMULATIONS,
    LOGGER_NAME,
    MIN_GROUPS_FOR_LEVENE,
    MIN_SAMPLES_FOR_SHAPIRO,
    PHYLUM_COL,
)
from .exceptions import MissingDataError, SchemaError
from .views import DerivedView

logger = logging.getLogger(LOGGER_NAME)


@dataclass(frozen=True, eq=False)
class LogAnovaResult:
    model: object
    anova_table: pd.DataFrame
    data: pd.DataFrame
    response: str
    factor: str


@dataclass(frozen=True, eq=False)
class ResidualDiagnostics:
    scaled_residuals: pd.Series
    uniformity_stat: float
    uniformity_p: float
    dispersion_ratio: float
    dispersion_p: float
    normality: pd.DataFrame
    levene: pd.DataFrame
    n_simulations: int
    seed: Optional[int]

    def summary(self) -> pd.DataFrame:
        """One row per check, for reporting."""
        rows = [
            {"test": "KS uniformity (scaled residuals)",
             "stat": self.uniformity_stat, "p_value": self.uniformity_p},
            {"test": "Dispersion (simulated)",
             "stat": self.dispersion_ratio, "p_value": self.dispersion_p},
        ]
        overall = self.normality[self.normality["group"] == "ALL"]
        if not overall.empty:
            rows.append({"test": "Shapiro-Wilk (residuals)",
                         "stat": overall["stat"].iloc[0], "p_value": overall["p_value"].iloc[0]})
        rows.append({"test": "Levene", "stat": self.levene["stat"].iloc[0],
                     "p_value": self.levene["p_value"].iloc[0]})
        return pd.DataFrame(rows)


def _prepare_model_df(view: DerivedView, response: str, factor: str) -> pd.DataFrame:
    """
    log10 response and categorical factor, one row per sample.

    Raises
    ------
    SchemaError
        If the response or factor is missing from the view.
    MissingDataError
        If the response has missing values.
    ValueError
        If the response has non-positive values.
    """
    if response not in view.markers.columns:
        raise SchemaError(f"View '{view.name}' has no marker '{response}'")
    values = view.markers[response]
    if values.isna().any():
        raise MissingDataError(f"View '{view.name}': '{response}' has missing values")
    if (values <= 0).any():
        raise ValueError(f"View '{view.name}': log10 needs positive '{response}' values")

    model_df = pd.DataFrame({
        "log_response": np.log10(values.astype(float)),
        "group": view.factor(factor).astype(str),
    }, index=view.markers.index)
    model_df["group"] = model_df["group"].astype("category")
    return model_df


def anova_on_log(
    view: DerivedView,
    response: str = CN_RATIO,
    factor: str = PHYLUM_COL,
) -> LogAnovaResult:
    """
    One-way ANOVA of log10(response) across the levels of a factor.

    Parameters
    ----------
    view : DerivedView
        Wide view holding the response marker.
    response : str, default="CN ratio"
        Response marker.
    factor : str, default="phylum"
        Annotation column used as the categorical predictor.

    Returns
    -------
    LogAnovaResult
        Fitted OLS model and ANOVA table with columns:
        term, df, sum_sq, mean_sq, F, p_value
    """
    model_df = _prepare_model_df(view, response, factor)
    if model_df["group"].nunique() < 2:
        raise ValueError(f"View '{view.name}': '{factor}' needs at least two levels")

    model = ols("log_response ~ C(group)", data=model_df).fit()
    table = anova_lm(model, typ=1)
    table = table.reset_index().rename(columns={
        "index": "term",
        "PR(>F)": "p_value",
    })
    table["term"] = table["term"].replace({"C(group)": factor})
    logger.info(
        "ANOVA log10(%s) ~ %s on '%s': F=%.3f, p=%.4g",
        response, factor, view.name, table["F"].iloc[0], table["p_value"].iloc[0],
    )
    return LogAnovaResult(model=model, anova_table=table, data=model_df,
                          response=response, factor=factor)


def pairwise_tukey(
    view: DerivedView,
    response: str = CN_RATIO,
    factor: str = PHYLUM_COL,
    alpha: float = DEFAULT_ALPHA,
) -> pd.DataFrame:
    """
    Tukey HSD (Honest Significant Difference) on log10(response).

    Returns
    -------
    pd.DataFrame
        Pairwise comparison results with columns:
        group_a, group_b, mean_diff, p_adj, ci_low, ci_high, reject_at_0.05
    """
    model_df = _prepare_model_df(view, response, factor)
    model_df["group"] = model_df["group"].astype(str)

    if model_df["group"].nunique() < 2:
        return pd.DataFrame(
            columns=["group_a", "group_b", "mean_diff", "p_adj", "ci_low", "ci_high", "reject_at_0.05"]
        )

    result = pairwise_tukeyhsd(endog=model_df["log_response"], groups=model_df["group"], alpha=alpha)
    table = pd.DataFrame(result._results_table.data[1:], columns=result._results_table.data[0])
    table = table.rename(columns={
        "group1": "group_a",
        "group2": "group_b",
        "meandiff": "mean_diff",
        "p-adj": "p_adj",
        "lower": "ci_low",
        "upper": "ci_high",
        "reject": "reject_at_0.05",
    })
    return table


def normality_checks(
    df: pd.DataFrame,
    response: str,
    group: Optional[str] = None,
) -> pd.DataFrame:
    """
    Perform Shapiro-Wilk normality test on a column, overall or by group.

    Returns
    -------
    pd.DataFrame
        Normality test results with columns: group, n, stat, p_value, normal_at_0.05
    """
    out = []
    parts = [("ALL", df)] if group is None else list(df.groupby(group, observed=True))
    for g, sub in parts:
        vals = pd.to_numeric(sub[response], errors="coerce").dropna()
        if len(vals) < MIN_SAMPLES_FOR_SHAPIRO:
            out.append({"group": g, "n": len(vals), "stat": np.nan, "p_value": np.nan})
            continue
        stat, p = stats.shapiro(vals)
        out.append({"group": g, "n": len(vals), "stat": stat, "p_value": p})

    result = pd.DataFrame(out)
    result["normal_at_0.05"] = result["p_value"] > DEFAULT_ALPHA
    return result


def levene_homogeneity(df: pd.DataFrame, response: str, group: str) -> pd.DataFrame:
    """
    Perform Levene's test for homogeneity of variance across groups.

    Returns
    -------
    pd.DataFrame
        Levene test results with columns: test, stat, p_value, homogeneous_at_0.05
    """
    grouped = [
        pd.to_numeric(g[response], errors="coerce").dropna().values
        for _, g in df.groupby(group, observed=True)
    ]
    grouped = [x for x in grouped if len(x) > 0]

    if len(grouped) < MIN_GROUPS_FOR_LEVENE:
        return pd.DataFrame([{
            "test": "Levene",
            "stat": np.nan,
            "p_value": np.nan,
            "homogeneous_at_0.05": np.nan,
        }])

    stat, p = stats.levene(*grouped, center="median")
    return pd.DataFrame([{
        "test": "Levene",
        "stat": stat,
        "p_value": p,
        "homogeneous_at_0.05": p > DEFAULT_ALPHA,
    }])


def residual_diagnostics(
    result: LogAnovaResult,
    n_simulations: int = DEFAULT_SIMULATIONS,
    seed: Optional[int] = DEFAULT_SEED,
) -> ResidualDiagnostics:
    """
    Simulation-based residual checks for a fitted log-scale ANOVA.

    New responses are drawn from the fitted Gaussian model. Each
    observation's scaled residual is the fraction of its simulated values
    at or below the observed one; under the model these are uniform on
    [0, 1] (Kolmogorov-Smirnov test). The dispersion statistic is the
    variance of observed residuals over the mean variance of simulated
    residuals, with a two-sided simulation p-value.

    Parameters
    ----------
    result : LogAnovaResult
        Output of ``anova_on_log``.
    n_simulations : int, default=250
        Number of simulated data sets.
    seed : Optional[int]
        Seed of the simulation generator.

    Returns
    -------
    ResidualDiagnostics
    """
    model = result.model
    fitted = np.asarray(model.fittedvalues, dtype=float)
    observed = result.data["log_response"].to_numpy(dtype=float)
    sigma = float(np.sqrt(model.scale))

    rng = np.random.default_rng(seed)
    simulated = fitted[:, None] + rng.normal(0.0, sigma, size=(len(fitted), n_simulations))

    scaled = (simulated <= observed[:, None]).mean(axis=1)
    ks_stat, ks_p = stats.kstest(scaled, "uniform")

    obs_spread = np.var(observed - fitted, ddof=1)
    sim_spread = np.var(simulated - fitted[:, None], axis=0, ddof=1)
    ratio = float(obs_spread / sim_spread.mean())
    disp_p = float(min(1.0, 2 * min((sim_spread <= obs_spread).mean(), (sim_spread >= obs_spread).mean())))

    resid_df = pd.DataFrame({"residual": np.asarray(model.resid, dtype=float),
                             "log_response": observed,
                             "group": result.data["group"].to_numpy()})
    normality = normality_checks(resid_df, "residual")
    levene = levene_homogeneity(resid_df, "log_response", "group")

    logger.info(
        "Residual diagnostics: KS p=%.4g, dispersion ratio=%.3f (p=%.4g), seed=%s",
        ks_p, ratio, disp_p, seed,
    )
    return ResidualDiagnostics(
        scaled_residuals=pd.Series(scaled, index=result.data.index, name="scaled_residual"),
        uniformity_stat=float(ks_stat),
        uniformity_p=float(ks_p),
        dispersion_ratio=ratio,
        dispersion_p=disp_p,
        normality=normality,
        levene=levene,
        n_simulations=n_simulations,
        seed=seed,
    )
