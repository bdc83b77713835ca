"""
Group-wise descriptive statistics over derived views.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
import pandas as pd

from .constants import (
    D13C,
    D15N,
    FAMILY_COL,
    ISOTOPE_COLUMNS,
    LOGGER_NAME,
    ORDER_COL,
    PHYLUM_COL,
    REPORT_DECIMALS,
    SPECIES_COL,
)
from .exceptions import MissingDataError, SchemaError
from .views import DerivedView, RowFilter, subset_view

logger = logging.getLogger(LOGGER_NAME)


def _check_complete(view: DerivedView, markers: list[str]) -> None:
    """Raise if any selected marker still holds missing values."""
    na_counts = view.markers[markers].isna().sum()
    na_counts = na_counts[na_counts > 0]
    if not na_counts.empty:
        raise MissingDataError(
            f"View '{view.name}' (filters: {list(view.filters)}) has missing values in "
            f"{na_counts.to_dict()}"
        )


def group_summary(
    view: DerivedView,
    group_keys: list[str],
    markers: Optional[list[str]] = None,
) -> pd.DataFrame:
    """
    Count, mean and sample standard deviation per group.

    Parameters
    ----------
    view : DerivedView
        Wide view to summarise.
    group_keys : list[str]
        Annotation columns defining the groups (e.g. phylum, species).
    markers : Optional[list[str]]
        Markers to summarise. All markers of the view when None.

    Returns
    -------
    pd.DataFrame
        One row per group with columns: group keys, n, <marker>_mean, <marker>_sd

    Raises
    ------
    MissingDataError
        If a selected marker contains missing values.
    SchemaError
        If a group key is not an annotation column.
    """
    markers = view.marker_names if markers is None else markers
    missing_keys = [k for k in group_keys if k not in view.annotations.columns]
    if missing_keys:
        raise SchemaError(f"View '{view.name}' has no grouping columns {missing_keys}")
    _check_complete(view, markers)

    frame = view.annotations[group_keys].join(view.markers[markers])
    grouped = frame.groupby(group_keys, sort=True, observed=True)

    out = grouped.size().rename("n").to_frame()
    means = grouped[markers].mean()
    sds = grouped[markers].std(ddof=1)
    for m in markers:
        out[f"{m}_mean"] = means[m]
        out[f"{m}_sd"] = sds[m]
    return out.reset_index()


def marker_summary(
    view: DerivedView,
    marker: str,
    where: Optional[RowFilter] = None,
) -> pd.DataFrame:
    """
    Mean and standard deviation of one marker, optionally for a subset of rows.

    Returns
    -------
    pd.DataFrame
        Single row with columns: view, marker, subset, n, mean, sd
    """
    sub = subset_view(view, where) if where is not None else view
    _check_complete(sub, [marker])
    vals = sub.markers[marker]
    return pd.DataFrame([{
        "view": view.name,
        "marker": marker,
        "subset": where.name if where is not None else "all",
        "n": len(vals),
        "mean": vals.mean(),
        "sd": vals.std(ddof=1),
    }])


def ranked_means(view: DerivedView, where: Optional[RowFilter] = None) -> pd.DataFrame:
    """Mean of every marker, ranked from largest to smallest."""
    sub = subset_view(view, where) if where is not None else view
    _check_complete(sub, sub.marker_names)
    means = sub.markers.mean().sort_values(ascending=False)
    out = means.rename("mean").rename_axis("marker").reset_index()
    out.insert(0, "rank", np.arange(1, len(out) + 1))
    return out


def nonzero_distribution(
    long_view: DerivedView,
    exclude_markers: Optional[list[str]] = None,
) -> pd.DataFrame:
    """
    Five-number summary and mean of all non-zero values in a long view.

    Isotope markers are excluded by default so the summary covers fatty
    acid proportions only.
    """
    if not long_view.long:
        raise SchemaError(f"View '{long_view.name}' is not long-form")
    exclude = ISOTOPE_COLUMNS if exclude_markers is None else exclude_markers
    vals = long_view.markers.loc[~long_view.markers["marker"].isin(exclude), "value"]
    vals = vals[vals != 0].dropna()
    q1, median, q3 = np.quantile(vals, [0.25, 0.5, 0.75]) if len(vals) else (np.nan,) * 3
    return pd.DataFrame([{
        "n": len(vals),
        "min": vals.min(),
        "q1": q1,
        "median": median,
        "mean": vals.mean(),
        "q3": q3,
        "max": vals.max(),
    }])


def species_means(view: DerivedView) -> pd.DataFrame:
    """Per (phylum, species) mean of every marker, the input of the cluster analyses."""
    _check_complete(view, view.marker_names)
    frame = view.annotations[[PHYLUM_COL, SPECIES_COL]].join(view.markers)
    return (
        frame.groupby([PHYLUM_COL, SPECIES_COL], sort=True, observed=True)[view.marker_names]
        .mean()
        .reset_index()
    )


def isotope_biplot_summary(view: DerivedView) -> pd.DataFrame:
    """Per-species count, mean and SD of d13C and d15N."""
    return group_summary(view, [SPECIES_COL, PHYLUM_COL, FAMILY_COL, ORDER_COL], [D13C, D15N])


def round_for_report(df: pd.DataFrame, decimals: int = REPORT_DECIMALS) -> pd.DataFrame:
    """Round numeric columns for presentation; analyses never read the result."""
    out = df.copy()
    numeric = out.select_dtypes(include=[np.number]).columns
    out[numeric] = out[numeric].round(decimals)
    return out
