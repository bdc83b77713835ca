"""
Fixed analysis sequence over the standard views.

Each analysis runs in isolation: shape and missing-data failures are
logged and recorded in the run manifest while the remaining analyses
continue. Schema and taxonomy failures abort the run.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import pandas as pd

from .community import discriminating_markers, nmds, permanova, simper
from .config import AnalysisConfig
from .constants import (
    BENTHIC_DIATOMS,
    CN_RATIO,
    D13C,
    D15N,
    DESMARESTIA_PAIR,
    FAMILY_COL,
    LOGGER_NAME,
    NEW_RHODOPHYTA,
    ORDER_COL,
    PHYLLOPHORA_CALLOPHYLLIS_PAIR,
    PHYLUM_COL,
    PUBLISHED_COL,
    SITE_COL,
    SPECIES_COL,
)
from .data_loader import SampleTable
from .dissimilarity import cluster, distance
from .exceptions import ShapeError
from .ordination import biplot_table, importance_table, pca
from .summary_stats import (
    group_summary,
    isotope_biplot_summary,
    marker_summary,
    nonzero_distribution,
    ranked_means,
    species_means,
)
from .taxonomy import TaxonomyResolver
from .univariate import anova_on_log, pairwise_tukey, residual_diagnostics
from .views import (
    DerivedView,
    absolute_values,
    all_of,
    phylum_in,
    species_in,
    species_not_in,
    standard_views,
    subset_view,
)

logger = logging.getLogger(LOGGER_NAME)

TAXONOMIC_LEVELS = [PHYLUM_COL, ORDER_COL, FAMILY_COL, SPECIES_COL]

# (table name, view, marker, subset) for single-marker summaries; FA on raw proportions
_RHODOPHYTA = phylum_in(["Rhodophyta"])
_OCHROPHYTA = phylum_in(["Ochrophyta"])
_CHLOROPHYTA = phylum_in(["Chlorophyta"])

MARKER_SUMMARIES = [
    ("rhodophyta_16_0", "fa", "16:0", _RHODOPHYTA),
    ("rhodophyta_20_5w3", "fa", "20:5w3", _RHODOPHYTA),
    ("rhodophyta_20_4w6", "fa", "20:4w6", _RHODOPHYTA),
    ("new_rhodophyta_16_1w7c", "fa", "16:1w7c",
     all_of(_RHODOPHYTA, species_in(NEW_RHODOPHYTA))),
    ("ochrophyta_20_4w6", "fa", "20:4w6", _OCHROPHYTA),
    ("ochrophyta_20_5w3", "fa", "20:5w3", _OCHROPHYTA),
    ("ochrophyta_16_0", "fa", "16:0", _OCHROPHYTA),
    ("ochrophyta_18_4w3c", "fa", "18:4w3c", _OCHROPHYTA),
    ("ochrophyta_18_1w9c", "fa", "18:1w9c", _OCHROPHYTA),
    ("chlorophyta_16_0", "fa", "16:0", _CHLOROPHYTA),
    ("chlorophyta_18_3w3", "fa", "18:3w3", _CHLOROPHYTA),
    ("chlorophyta_18_2w6c", "fa", "18:2w6c", _CHLOROPHYTA),
    ("callophyllis_atrosanguinea_d13c", "si", D13C, species_in(["Callophyllis atrosanguinea"])),
    ("phyllophora_antarctica_d13c", "si", D13C, species_in(["Phyllophora antarctica"])),
    ("rhodophyta_cn_ratio", "si", CN_RATIO, _RHODOPHYTA),
    ("rhodophyta_d15n", "si", D15N, _RHODOPHYTA),
    ("rhodophyta_d13c", "si", D13C, _RHODOPHYTA),
    ("ochrophyta_d15n", "si", D15N, _OCHROPHYTA),
    ("ochrophyta_d13c", "si", D13C, _OCHROPHYTA),
    ("ochrophyta_cn_ratio", "si", CN_RATIO,
     all_of(_OCHROPHYTA, species_not_in([BENTHIC_DIATOMS]))),
    ("chlorophyta_d13c", "si", D13C, _CHLOROPHYTA),
    ("chlorophyta_d15n", "si", D15N, _CHLOROPHYTA),
]


@dataclass
class PipelineResults:
    """Result tables by name plus the run manifest."""

    tables: dict[str, pd.DataFrame] = field(default_factory=dict)
    manifest: dict[str, Any] = field(default_factory=dict)

    def __getitem__(self, name: str) -> pd.DataFrame:
        return self.tables[name]

    def __contains__(self, name: str) -> bool:
        return name in self.tables

    @property
    def failures(self) -> list[dict]:
        return self.manifest.get("failures", [])


class _Runner:
    """Calls analyses, catching per-analysis failures into the manifest."""

    def __init__(self, results: PipelineResults):
        self.results = results

    def run(self, analysis: str, func: Callable[[], Any], view: Optional[DerivedView] = None):
        try:
            out = func()
        except (ShapeError, ValueError) as exc:
            filters = list(view.filters) if view is not None else []
            logger.error(
                "Analysis '%s' failed on view '%s' (filters: %s): %s",
                analysis, view.name if view is not None else "-", filters, exc,
            )
            self.results.manifest["failures"].append({
                "analysis": analysis,
                "view": view.name if view is not None else None,
                "filters": filters,
                "error": type(exc).__name__,
                "message": str(exc),
            })
            return None
        self.results.manifest["completed"].append(analysis)
        return out

    def seed(self, config: AnalysisConfig, analysis: str) -> int:
        seed = config.seed_for(analysis)
        self.results.manifest["seeds"][analysis] = seed
        return seed


def _view_table(views: dict[str, DerivedView]) -> pd.DataFrame:
    return pd.DataFrame([
        {
            "view": v.name,
            "n_samples": len(v),
            "n_species": v.species.nunique(),
            "n_markers": len(v.marker_names),
            "filters": " | ".join(v.filters),
            "transforms": " | ".join(v.transforms),
        }
        for v in views.values()
    ])


def _summaries(views, runner: _Runner) -> None:
    tables = runner.results.tables
    fa_pct = views["fa_published_percent"]
    si = views["si"]

    out = runner.run("species_fa_summary",
                     lambda: group_summary(fa_pct, [PHYLUM_COL, SPECIES_COL]), fa_pct)
    if out is not None:
        tables["species_fa_summary"] = out
    out = runner.run("species_si_summary", lambda: isotope_biplot_summary(si), si)
    if out is not None:
        tables["species_si_summary"] = out
    out = runner.run("species_si_means",
                     lambda: group_summary(si, [PHYLUM_COL, SPECIES_COL]), si)
    if out is not None:
        tables["species_si_means"] = out
    out = runner.run("published_fa_summary",
                     lambda: group_summary(fa_pct, [PHYLUM_COL, PUBLISHED_COL]), fa_pct)
    if out is not None:
        tables["published_fa_summary"] = out
    out = runner.run("nonzero_fa_distribution",
                     lambda: nonzero_distribution(views["long_overlap"]), views["long_overlap"])
    if out is not None:
        tables["nonzero_fa_distribution"] = out

    rows = []
    for table_name, view_name, marker, subset in MARKER_SUMMARIES:
        view = views[view_name]
        if marker not in view.marker_names:
            logger.info("Skipping %s: marker '%s' not in view '%s'", table_name, marker, view_name)
            runner.results.manifest["skipped"].append(table_name)
            continue
        out = runner.run(table_name, lambda: marker_summary(view, marker, subset), view)
        if out is not None:
            rows.append(out.assign(summary=table_name))
    if rows:
        tables["marker_summaries"] = pd.concat(rows, ignore_index=True)

    fa = views["fa"]
    ranked = []
    for phylum in sorted(fa.factor(PHYLUM_COL).unique()):
        out = runner.run(f"ranked_fa_{phylum}",
                         lambda: ranked_means(fa, phylum_in([phylum])), fa)
        if out is not None:
            out.insert(0, PHYLUM_COL, phylum)
            ranked.append(out)
    if ranked:
        tables["ranked_fa_means"] = pd.concat(ranked, ignore_index=True)


def _absolute_si(views: dict[str, DerivedView]) -> DerivedView:
    """Absolute-valued isotope view; reuses the one built by ``run_pipeline``."""
    if "si_abs" in views:
        return views["si_abs"]
    return absolute_values(views["si"], name="si_abs")


def _species_clusters(view: DerivedView, k: int) -> dict[str, pd.DataFrame]:
    means = species_means(view)
    matrix = means.set_index(SPECIES_COL)[view.marker_names]
    tree = cluster(distance(matrix), labels=list(matrix.index))
    membership = tree.cut(min(k, len(matrix)))
    membership = membership.merge(
        means[[SPECIES_COL, PHYLUM_COL]], left_on="label", right_on=SPECIES_COL, how="left"
    ).drop(columns=SPECIES_COL)
    order = pd.DataFrame({"label": tree.leaf_order, "leaf_position": range(len(tree.labels))})
    return {"merges": tree.merges(), "membership": membership.merge(order, on="label")}


def _clustering(views, config: AnalysisConfig, runner: _Runner) -> None:
    tables = runner.results.tables
    for label, view in (("fa", views["fa"]), ("si", _absolute_si(views))):
        out = runner.run(f"cluster_{label}",
                         lambda: _species_clusters(view, config.cluster_count), view)
        if out is not None:
            tables[f"cluster_{label}_merges"] = out["merges"]
            tables[f"cluster_{label}_membership"] = out["membership"]


def _simper(views, config: AnalysisConfig, runner: _Runner) -> list[str]:
    fa = views["fa"]
    ranking = runner.run("simper_fa", lambda: simper(fa, seed=runner.seed(config, "simper_fa")), fa)
    if ranking is None:
        return []
    runner.results.tables["simper_fa"] = ranking
    top = discriminating_markers(ranking, config.simper_cutoff, inclusive=config.simper_inclusive)
    runner.results.tables["simper_fa_discriminating"] = pd.DataFrame({
        "rank": range(1, len(top) + 1),
        "marker": top,
    })
    runner.results.manifest["discriminating_markers"] = top
    logger.info("SIMPER: %d markers reach %.0f%% of dissimilarity", len(top), config.simper_cutoff * 100)
    return top


def permanova_plan(views: dict[str, DerivedView]) -> list[tuple[str, DerivedView, list[str]]]:
    """
    (analysis name, view, factors) for every PERMANOVA of the run.

    Views holding isotope markers are passed through ``absolute_values``.
    """
    si_abs = _absolute_si(views)
    plan = [("fa~species+site", views["fa"], [SPECIES_COL, SITE_COL])]
    by_level = [
        ("fa", views["fa"]),
        ("fa_reduced", views["fa_reduced"]),
        ("si", si_abs),
        ("overlap", absolute_values(views["overlap"])),
        ("overlap_reduced", absolute_values(views["overlap_reduced"])),
    ]
    for label, view in by_level:
        for level in TAXONOMIC_LEVELS:
            plan.append((f"{label}~{level}", view, [level]))

    pairs = [("desmarestia", DESMARESTIA_PAIR), ("phyllophora_callophyllis", PHYLLOPHORA_CALLOPHYLLIS_PAIR)]
    for pair_name, pair in pairs:
        for label, view in (("fa", views["fa"]), ("si", si_abs)):
            sub = subset_view(view, species_in(pair), name=f"{label}[{pair_name}]")
            plan.append((f"{label}_{pair_name}~species", sub, [SPECIES_COL]))
    return plan


def _permanova(views, config: AnalysisConfig, runner: _Runner) -> None:
    tables = []
    for analysis, view, factors in permanova_plan(views):
        out = runner.run(
            analysis,
            lambda: permanova(view, factors, permutations=config.permutations,
                              seed=runner.seed(config, analysis)),
            view,
        )
        if out is not None:
            out.insert(0, "analysis", analysis)
            out.insert(1, "view", view.name)
            out["transforms"] = " | ".join(view.transforms)
            out["seed"] = out.attrs["seed"]
            tables.append(out)
    if tables:
        runner.results.tables["permanova"] = pd.concat(tables, ignore_index=True)


def _nmds(views, config: AnalysisConfig, runner: _Runner) -> None:
    summary = {}
    for label, view in (("fa", views["fa"]), ("si", _absolute_si(views))):
        analysis = f"nmds_{label}"
        out = runner.run(
            analysis,
            lambda: nmds(view, max_iterations=config.nmds_max_iterations,
                         tolerance=config.nmds_tolerance, n_init=config.nmds_restarts,
                         seed=runner.seed(config, analysis)),
            view,
        )
        if out is None:
            continue
        points = view.annotations[[SPECIES_COL, PHYLUM_COL]].join(out.points)
        runner.results.tables[f"nmds_{label}_points"] = points.reset_index()
        summary[label] = {"stress": float(out.stress), "n_iter": int(out.n_iter), "converged": bool(out.converged)}
    runner.results.manifest["nmds"] = summary


def _ordination(views, top: list[str], runner: _Runner) -> None:
    for label in ("fa", "fa_reduced", "si", "overlap", "overlap_reduced"):
        view = views[label]
        out = runner.run(f"pca_{label}", lambda: pca(view), view)
        if out is None:
            continue
        highlight = set(top) | {m for m in view.marker_names if m not in views["fa"].marker_names}
        tables = runner.results.tables
        tables[f"pca_{label}_importance"] = importance_table(out)
        tables[f"pca_{label}_loadings"] = biplot_table(out, highlight=highlight)
        tables[f"pca_{label}_scores"] = (
            view.annotations[[SPECIES_COL, PHYLUM_COL]].join(out.scores).reset_index()
        )


def _univariate(views, config: AnalysisConfig, runner: _Runner) -> None:
    si = views["si"]
    tables = runner.results.tables
    fit = runner.run("anova_log_cn", lambda: anova_on_log(si, CN_RATIO, PHYLUM_COL), si)
    if fit is None:
        return
    tables["anova_log_cn"] = fit.anova_table
    tukey = runner.run("tukey_log_cn", lambda: pairwise_tukey(si, CN_RATIO, PHYLUM_COL), si)
    if tukey is not None:
        tables["tukey_log_cn"] = tukey
    diag = runner.run(
        "residuals_log_cn",
        lambda: residual_diagnostics(fit, config.simulations, runner.seed(config, "residuals_log_cn")),
        si,
    )
    if diag is not None:
        tables["residuals_log_cn"] = diag.summary()
        tables["residuals_log_cn_scaled"] = diag.scaled_residuals.reset_index()


def run_pipeline(
    table: SampleTable,
    config: Optional[AnalysisConfig] = None,
    resolver: Optional[TaxonomyResolver] = None,
) -> PipelineResults:
    """
    Run the full analysis sequence on a loaded sample table.

    Parameters
    ----------
    table : SampleTable
        Output of ``load_table`` / ``prepare_table``.
    config : Optional[AnalysisConfig]
        Analysis parameters. Defaults when None.
    resolver : Optional[TaxonomyResolver]
        Taxonomy lookup. The packaged table when None.

    Returns
    -------
    PipelineResults

    Raises
    ------
    SchemaError
        If an expected column is missing.
    UnresolvedTaxonomyError
        If a species has no taxonomy entry.
    """
    config = config or AnalysisConfig()
    results = PipelineResults(manifest={
        "config": config.to_dict(),
        "n_samples": len(table),
        "seeds": {},
        "completed": [],
        "failures": [],
        "skipped": [],
    })
    runner = _Runner(results)

    logger.info("Building views for %d samples", len(table))
    views = standard_views(table, resolver)
    views["si_abs"] = absolute_values(views["si"], name="si_abs")
    results.tables["views"] = _view_table(views)
    results.manifest["views"] = {
        v.name: {"n_samples": len(v), "filters": list(v.filters), "transforms": list(v.transforms)}
        for v in views.values()
    }

    logger.info("Step 1/7: summary statistics")
    _summaries(views, runner)
    logger.info("Step 2/7: clustering")
    _clustering(views, config, runner)
    logger.info("Step 3/7: SIMPER")
    top = _simper(views, config, runner)
    logger.info("Step 4/7: PERMANOVA (%d permutations)", config.permutations)
    _permanova(views, config, runner)
    logger.info("Step 5/7: nMDS")
    _nmds(views, config, runner)
    logger.info("Step 6/7: PCA")
    _ordination(views, top, runner)
    logger.info("Step 7/7: log C:N ANOVA")
    _univariate(views, config, runner)

    logger.info(
        "Pipeline finished: %d analyses completed, %d failed",
        len(results.manifest["completed"]), len(results.failures),
    )
    return results
