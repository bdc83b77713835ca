import logging
import warnings

import pandas as pd
import pytest

from fasi.config import AnalysisConfig
from fasi.constants import PHYLUM_COL, SPECIES_COL
from fasi.data_loader import prepare_table
from fasi.exceptions import UnresolvedTaxonomyError
from fasi.pipeline import permanova_plan, run_pipeline

FAST = AnalysisConfig(permutations=19, nmds_restarts=2, simulations=30, seed=123)


@pytest.fixture
def results(sample_table):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        return run_pipeline(sample_table, FAST)


def test_core_tables_present(results):
    for name in (
        "views",
        "species_fa_summary",
        "species_si_summary",
        "species_si_means",
        "nonzero_fa_distribution",
        "ranked_fa_means",
        "cluster_fa_membership",
        "cluster_si_merges",
        "simper_fa",
        "simper_fa_discriminating",
        "permanova",
        "nmds_fa_points",
        "nmds_si_points",
        "pca_fa_loadings",
        "pca_overlap_reduced_importance",
        "anova_log_cn",
        "tukey_log_cn",
        "residuals_log_cn",
    ):
        assert name in results, name


def test_species_pair_subsets_fail_in_isolation(results):
    failed = {f["analysis"] for f in results.failures}
    # the fixture has neither Phyllophora antarctica nor Callophyllis atrosanguinea
    assert failed == {"fa_phyllophora_callophyllis~species", "si_phyllophora_callophyllis~species"}
    assert all(f["error"] == "ShapeError" for f in results.failures)
    assert "fa_desmarestia~species" in results.manifest["completed"]


def test_permanova_table_covers_plan(results, views):
    analyses = set(results["permanova"]["analysis"])
    planned = {name for name, _, _ in permanova_plan(views)}
    assert analyses == planned - {f["analysis"] for f in results.failures}
    si_rows = results["permanova"][results["permanova"]["analysis"] == "si~phylum"]
    assert (si_rows["transforms"] == "absolute").all()


def test_seeds_recorded_and_reproducible(sample_table, results):
    seeds = results.manifest["seeds"]
    assert seeds["fa~phylum"] == FAST.seed_for("fa~phylum")
    assert "nmds_fa" in seeds and "residuals_log_cn" in seeds
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        again = run_pipeline(sample_table, FAST)
    pd.testing.assert_frame_equal(results["permanova"], again["permanova"])


def test_marker_summaries_skip_absent_markers(results):
    assert "new_rhodophyta_16_1w7c" in results.manifest["skipped"]
    summaries = results["marker_summaries"]
    assert "ochrophyta_cn_ratio" in set(summaries["summary"])


def test_marker_summaries_use_raw_proportions(results, views):
    fa = views["fa"]
    summaries = results["marker_summaries"].set_index("summary")
    rhodophyta = fa.markers.loc[fa.factor(PHYLUM_COL) == "Rhodophyta", "16:0"]
    assert summaries.loc["rhodophyta_16_0", "view"] == "fa"
    assert summaries.loc["rhodophyta_16_0", "mean"] == pytest.approx(rhodophyta.mean())
    assert summaries.loc["rhodophyta_16_0", "n"] == 3

    ranked = results["ranked_fa_means"]
    assert ranked["mean"].max() < 1
    green = ranked[(ranked[PHYLUM_COL] == "Chlorophyta") & (ranked["marker"] == "16:0")]
    lambia = fa.markers.loc[fa.factor(PHYLUM_COL) == "Chlorophyta", "16:0"]
    assert green["mean"].iloc[0] == pytest.approx(lambia.mean())


def test_marker_summaries_cover_both_panels(results):
    summaries = results["marker_summaries"].set_index("summary")
    for name in ("rhodophyta_d13c", "ochrophyta_d15n", "chlorophyta_16_0", "chlorophyta_18_3w3"):
        assert name in summaries.index, name
    assert summaries.loc["callophyllis_atrosanguinea_d13c", "n"] == 0
    assert summaries.loc["rhodophyta_d13c", "n"] == 4
    assert summaries.loc["rhodophyta_d13c", "mean"] < 0
    skipped = set(results.manifest["skipped"])
    assert {"ochrophyta_20_5w3", "chlorophyta_18_2w6c", "rhodophyta_20_4w6"} <= skipped
    assert len(summaries) + len(skipped) == 22


def test_species_isotope_means(results, views):
    means = results["species_si_means"]
    assert len(means) == views["si"].species.nunique() == 4
    for col in ("CN ratio_mean", "d15N_sd", "d13C_mean"):
        assert col in means.columns, col
    palmaria = means[means[SPECIES_COL] == "Palmaria decipiens"]
    assert palmaria["n"].iloc[0] == 3


def test_isotope_view_made_absolute_once(sample_table, caplog):
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        with caplog.at_level(logging.WARNING, logger="fasi"):
            results = run_pipeline(sample_table, FAST)
    messages = [r.getMessage() for r in caplog.records]
    assert sum(m.startswith("View 'si':") for m in messages) == 1
    si_rows = results["permanova"][results["permanova"]["analysis"] == "si~phylum"]
    assert (si_rows["view"] == "si_abs").all()


def test_cluster_membership_has_every_species(results):
    membership = results["cluster_fa_membership"]
    assert len(membership) == 4
    assert membership["cluster"].nunique() == 4


def test_unresolved_species_aborts(raw_df):
    raw_df.loc[0, SPECIES_COL] = "Nobody"
    with pytest.raises(UnresolvedTaxonomyError):
        run_pipeline(prepare_table(raw_df), FAST)
