import numpy as np
import pandas as pd
import pytest
from scipy import stats

from fasi.constants import CN_RATIO, PHYLUM_COL
from fasi.exceptions import MissingDataError, SchemaError
from fasi.univariate import (
    anova_on_log,
    levene_homogeneity,
    normality_checks,
    pairwise_tukey,
    residual_diagnostics,
)
from fasi.views import DerivedView


def test_anova_matches_oneway_on_log(views):
    si = views["si"]
    result = anova_on_log(si)
    table = result.anova_table
    assert list(table["term"]) == [PHYLUM_COL, "Residual"]
    assert list(table.columns) == ["term", "df", "sum_sq", "mean_sq", "F", "p_value"]

    frame = si.frame()
    groups = [np.log10(g[CN_RATIO]) for _, g in frame.groupby(PHYLUM_COL)]
    f, p = stats.f_oneway(*groups)
    assert table["F"].iloc[0] == pytest.approx(f)
    assert table["p_value"].iloc[0] == pytest.approx(p)


def test_anova_rejects_non_positive(views):
    si = views["si"]
    markers = si.markers.copy()
    markers.iloc[0, markers.columns.get_loc(CN_RATIO)] = 0.0
    bad = DerivedView("si_bad", markers, si.annotations)
    with pytest.raises(ValueError, match="positive"):
        anova_on_log(bad)


def test_anova_rejects_missing(views):
    si = views["si"]
    markers = si.markers.copy()
    markers.iloc[0, markers.columns.get_loc(CN_RATIO)] = np.nan
    with pytest.raises(MissingDataError):
        anova_on_log(DerivedView("si_na", markers, si.annotations))


def test_anova_unknown_marker(views):
    with pytest.raises(SchemaError):
        anova_on_log(views["fa"], response=CN_RATIO)


def test_tukey_shape(views):
    table = pairwise_tukey(views["si"])
    assert list(table.columns) == [
        "group_a", "group_b", "mean_diff", "p_adj", "ci_low", "ci_high", "reject_at_0.05",
    ]
    assert len(table) == 1
    assert set(table[["group_a", "group_b"]].iloc[0]) == {"Ochrophyta", "Rhodophyta"}


def test_residual_diagnostics_bounds(views):
    fit = anova_on_log(views["si"])
    diag = residual_diagnostics(fit, n_simulations=100, seed=1)
    assert diag.scaled_residuals.between(0, 1).all()
    assert len(diag.scaled_residuals) == len(views["si"])
    assert 0 <= diag.uniformity_p <= 1
    assert 0 <= diag.dispersion_p <= 1
    assert diag.dispersion_ratio > 0
    summary = diag.summary()
    assert list(summary["test"]) == [
        "KS uniformity (scaled residuals)",
        "Dispersion (simulated)",
        "Shapiro-Wilk (residuals)",
        "Levene",
    ]


def test_residual_diagnostics_reproducible(views):
    fit = anova_on_log(views["si"])
    a = residual_diagnostics(fit, n_simulations=50, seed=8)
    b = residual_diagnostics(fit, n_simulations=50, seed=8)
    pd.testing.assert_series_equal(a.scaled_residuals, b.scaled_residuals)
    assert a.dispersion_p == b.dispersion_p


def test_normality_checks_small_groups():
    df = pd.DataFrame({"y": [1.0, 2.0, 3.5, 4.0, 1.5], "g": ["a", "a", "b", "b", "b"]})
    out = normality_checks(df, "y", "g")
    by_group = out.set_index("group")
    assert np.isnan(by_group.loc["a", "p_value"])
    assert 0 <= by_group.loc["b", "p_value"] <= 1


def test_levene_needs_two_groups():
    df = pd.DataFrame({"y": [1.0, 2.0, 3.0], "g": ["a", "a", "a"]})
    assert np.isnan(levene_homogeneity(df, "y", "g")["p_value"].iloc[0])
