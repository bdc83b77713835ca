"""
FASI - fatty acid and stable isotope statistics for Antarctic macroalgae.

This package loads one wide sample table, derives filtered and reshaped
views annotated with taxonomy, and runs descriptive statistics, Bray-Curtis
clustering, PERMANOVA, SIMPER, nMDS, PCA and a log-scale ANOVA with
residual diagnostics.
"""

from .constants import *
from .community import NmdsResult, discriminating_markers, nmds, permanova, simper
from .config import AnalysisConfig, load_config
from .data_loader import (
    DEFAULT_SCHEMA,
    DatasetSchema,
    SampleTable,
    load_table,
    prepare_table,
    read_table,
)
from .dissimilarity import Dendrogram, cluster, distance
from .exceptions import (
    ConvergenceWarning,
    FasiError,
    MissingDataError,
    SchemaError,
    ShapeError,
    UnresolvedTaxonomyError,
)
from .logger import setup_logging
from .ordination import OrdinationResult, biplot_table, importance_table, pca
from .pipeline import PipelineResults, run_pipeline
from .summary_stats import (
    group_summary,
    marker_summary,
    nonzero_distribution,
    ranked_means,
    species_means,
)
from .taxonomy import TaxonomyRecord, TaxonomyResolver, load_taxonomy
from .univariate import (
    LogAnovaResult,
    ResidualDiagnostics,
    anova_on_log,
    pairwise_tukey,
    residual_diagnostics,
)
from .views import (
    DerivedView,
    RowFilter,
    absolute_values,
    build_view,
    percent_scale,
    standard_views,
    subset_view,
)

__version__ = "1.0.0"
__author__ = "FASI Team"

__all__ = [
    # Data loading
    "DatasetSchema",
    "DEFAULT_SCHEMA",
    "SampleTable",
    "read_table",
    "prepare_table",
    "load_table",
    # Taxonomy
    "TaxonomyRecord",
    "TaxonomyResolver",
    "load_taxonomy",
    # Views
    "RowFilter",
    "DerivedView",
    "build_view",
    "subset_view",
    "percent_scale",
    "absolute_values",
    "standard_views",
    # Summary statistics
    "group_summary",
    "marker_summary",
    "ranked_means",
    "nonzero_distribution",
    "species_means",
    # Dissimilarity and clustering
    "distance",
    "cluster",
    "Dendrogram",
    # Community analyses
    "permanova",
    "simper",
    "discriminating_markers",
    "nmds",
    "NmdsResult",
    # Ordination
    "pca",
    "importance_table",
    "biplot_table",
    "OrdinationResult",
    # Univariate tests
    "anova_on_log",
    "pairwise_tukey",
    "residual_diagnostics",
    "LogAnovaResult",
    "ResidualDiagnostics",
    # Pipeline
    "AnalysisConfig",
    "load_config",
    "run_pipeline",
    "PipelineResults",
    "setup_logging",
    # Errors
    "FasiError",
    "SchemaError",
    "UnresolvedTaxonomyError",
    "ShapeError",
    "MissingDataError",
    "ConvergenceWarning",
]
