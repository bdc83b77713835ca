"""
Derived, analysis-ready views of the sample table.

Every view pairs a marker matrix with a row-parallel annotation table. Both
frames are indexed by the ``sample_id`` row key and are always filtered
together, so taxonomy labels can never drift out of line with the markers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import numpy as np
import pandas as pd

from .constants import (
    CN_RATIO,
    FA_FIRST,
    LOGGER_NAME,
    PERCENT_FACTOR,
    PHYLUM_COL,
    REDUCED_FA,
    ROW_KEY,
    SPECIES_COL,
)
from .data_loader import SampleTable
from .exceptions import SchemaError, ShapeError
from .taxonomy import TaxonomyResolver

logger = logging.getLogger(LOGGER_NAME)

LONG_COLUMNS = [ROW_KEY, "marker", "value"]


@dataclass(frozen=True)
class RowFilter:
    """Named boolean row predicate over a sample frame."""

    name: str
    func: Callable[[pd.DataFrame], pd.Series]

    def __call__(self, df: pd.DataFrame) -> pd.Series:
        return self.func(df).astype(bool)


def _require(df: pd.DataFrame, column: str, filter_name: str) -> pd.Series:
    if column not in df.columns:
        raise SchemaError(f"Filter '{filter_name}' needs column '{column}'")
    return df[column]


def isotope_present(column: str = CN_RATIO) -> RowFilter:
    name = "isotope_present"
    return RowFilter(name, lambda df: _require(df, column, name).notna())


def fa_present(column: str = FA_FIRST) -> RowFilter:
    name = "fa_present"
    return RowFilter(name, lambda df: _require(df, column, name).notna())


def species_in(species: Iterable[str]) -> RowFilter:
    wanted = list(species)
    name = f"species_in({', '.join(wanted)})"
    return RowFilter(name, lambda df: _require(df, SPECIES_COL, name).isin(wanted))


def species_not_in(species: Iterable[str]) -> RowFilter:
    unwanted = list(species)
    name = f"species_not_in({', '.join(unwanted)})"
    return RowFilter(name, lambda df: ~_require(df, SPECIES_COL, name).isin(unwanted))


def phylum_in(phyla: Iterable[str]) -> RowFilter:
    wanted = list(phyla)
    name = f"phylum_in({', '.join(wanted)})"
    return RowFilter(name, lambda df: _require(df, PHYLUM_COL, name).isin(wanted))


def all_of(*filters: RowFilter) -> RowFilter:
    """Intersection of several filters."""
    name = " & ".join(f.name for f in filters)

    def _apply(df: pd.DataFrame) -> pd.Series:
        mask = pd.Series(True, index=df.index)
        for f in filters:
            mask &= f(df)
        return mask

    return RowFilter(name, _apply)


@dataclass(frozen=True, eq=False)
class DerivedView:
    """
    Named projection of the sample table.

    ``markers`` is samples x markers for wide views, or the melted
    ``sample_id, marker, value`` table for long views. ``annotations`` holds
    one row per sample (species, taxonomy, site, identifiers).
    """

    name: str
    markers: pd.DataFrame
    annotations: pd.DataFrame
    filters: tuple[str, ...] = ()
    transforms: tuple[str, ...] = ()
    long: bool = False

    def __post_init__(self):
        if self.long:
            keys = pd.Index(self.markers[ROW_KEY].unique())
            if not keys.sort_values().equals(self.annotations.index.sort_values()):
                raise ShapeError(
                    f"View '{self.name}': long markers and annotations cover different samples"
                )
        elif not self.markers.index.equals(self.annotations.index):
            raise ShapeError(
                f"View '{self.name}': {len(self.markers)} marker rows do not line up "
                f"with {len(self.annotations)} annotation rows"
            )

    def __len__(self) -> int:
        return len(self.annotations)

    def __repr__(self) -> str:
        shape = "long" if self.long else f"{len(self)}x{self.markers.shape[1]}"
        return f"DerivedView({self.name!r}, {shape}, filters={list(self.filters)})"

    @property
    def marker_names(self) -> list[str]:
        if self.long:
            return list(pd.unique(self.markers["marker"]))
        return list(self.markers.columns)

    @property
    def species(self) -> pd.Series:
        return self.annotations[SPECIES_COL]

    def factor(self, column: str) -> pd.Series:
        if column not in self.annotations.columns:
            raise SchemaError(f"View '{self.name}' has no annotation column '{column}'")
        return self.annotations[column]

    def frame(self) -> pd.DataFrame:
        """Annotations and markers joined on the row key."""
        if self.long:
            return self.markers.merge(
                self.annotations, left_on=ROW_KEY, right_index=True, how="left"
            )
        return self.annotations.join(self.markers)

    def select(self, markers: list[str], name: Optional[str] = None) -> "DerivedView":
        """Same rows, a subset of the marker columns."""
        if self.long:
            raise ShapeError(f"View '{self.name}' is long-form; select markers before melting")
        missing = [m for m in markers if m not in self.markers.columns]
        if missing:
            raise SchemaError(f"View '{self.name}' has no markers {missing}")
        return DerivedView(
            name=name or self.name,
            markers=self.markers[markers].copy(),
            annotations=self.annotations.copy(),
            filters=self.filters,
            transforms=self.transforms,
        )


def _marker_columns(table: SampleTable, columns) -> list[str]:
    if columns is None or columns == "all":
        return table.marker_columns
    if columns == "fa":
        return list(table.fa_columns)
    if columns == "isotope":
        return list(table.isotope_columns)
    return list(columns)


def melt_markers(markers: pd.DataFrame) -> pd.DataFrame:
    """Wide marker matrix to ``sample_id, marker, value`` rows."""
    long_df = markers.reset_index().melt(
        id_vars=ROW_KEY, var_name="marker", value_name="value"
    )
    return long_df.sort_values([ROW_KEY], kind="stable").reset_index(drop=True)[LONG_COLUMNS]


def build_view(
    table: SampleTable,
    name: str,
    row_filter: Optional[RowFilter] = None,
    columns=None,
    reshape: Optional[str] = None,
    resolver: Optional[TaxonomyResolver] = None,
) -> DerivedView:
    """
    Build a named view: row filter, then column selection, then reshape.

    Parameters
    ----------
    table : SampleTable
        Loaded source table.
    name : str
        View name, used in logs and error messages.
    row_filter : Optional[RowFilter]
        Rows to keep. All rows when None.
    columns : None | str | list[str]
        ``"fa"``, ``"isotope"``, ``"all"`` (default) or an explicit marker list.
    reshape : Optional[str]
        ``"long"`` to melt the marker columns.
    resolver : Optional[TaxonomyResolver]
        Taxonomy lookup. The packaged table when None.

    Returns
    -------
    DerivedView

    Raises
    ------
    SchemaError
        If a selected marker is absent.
    UnresolvedTaxonomyError
        If a retained species has no taxonomy entry.
    """
    resolver = resolver or TaxonomyResolver()
    data = table.data
    filters = (row_filter.name,) if row_filter is not None else ()

    mask = row_filter(data) if row_filter is not None else pd.Series(True, index=data.index)
    rows = data.loc[mask]

    markers = _marker_columns(table, columns)
    missing = [m for m in markers if m not in rows.columns]
    if missing:
        raise SchemaError(f"View '{name}' (filters: {list(filters)}): missing markers {missing}")

    marker_set = set(table.marker_columns)
    annotation_cols = [c for c in rows.columns if c not in marker_set]
    annotations = resolver.annotate(rows[annotation_cols], SPECIES_COL, view=name)
    marker_df = rows[markers].copy()

    if reshape is None:
        view = DerivedView(name, marker_df, annotations, filters=filters)
    elif reshape == "long":
        view = DerivedView(name, melt_markers(marker_df), annotations, filters=filters, long=True)
    else:
        raise ValueError(f"Unknown reshape '{reshape}'")

    logger.debug("Built view %r", view)
    return view


def subset_view(view: DerivedView, row_filter: RowFilter, name: Optional[str] = None) -> DerivedView:
    """Filter an existing wide view; markers and annotations are cut with one mask."""
    if view.long:
        raise ShapeError(f"View '{view.name}' is long-form; subset the wide view instead")
    mask = row_filter(view.frame())
    keep = mask[mask].index
    return DerivedView(
        name=name or f"{view.name}[{row_filter.name}]",
        markers=view.markers.loc[keep].copy(),
        annotations=view.annotations.loc[keep].copy(),
        filters=view.filters + (row_filter.name,),
        transforms=view.transforms,
    )


def percent_scale(
    view: DerivedView,
    columns: Optional[list[str]] = None,
    factor: float = PERCENT_FACTOR,
) -> DerivedView:
    """Return a copy with ``columns`` (default: all markers) multiplied by ``factor``."""
    if view.long:
        raise ShapeError(f"View '{view.name}' is long-form; scale the wide view instead")
    cols = list(view.markers.columns) if columns is None else columns
    markers = view.markers.copy()
    markers[cols] = markers[cols] * factor
    return DerivedView(
        name=view.name,
        markers=markers,
        annotations=view.annotations.copy(),
        filters=view.filters,
        transforms=view.transforms + (f"percent(x{factor:g})",),
    )


def absolute_values(view: DerivedView, name: Optional[str] = None) -> DerivedView:
    """
    Return a copy with every marker replaced by its absolute value.

    Isotope ratios are negative; Bray-Curtis is defined for non-negative
    data only.
    """
    if view.long:
        raise ShapeError(f"View '{view.name}' is long-form; transform the wide view instead")
    negative = int((view.markers < 0).to_numpy().sum())
    if negative:
        logger.warning("View '%s': taking absolute value of %d negative entries", view.name, negative)
    return DerivedView(
        name=name or view.name,
        markers=view.markers.abs(),
        annotations=view.annotations.copy(),
        filters=view.filters,
        transforms=view.transforms + ("absolute",),
    )


def overlap_filter(table: SampleTable) -> RowFilter:
    """Isotope panel AND fatty acid panel present."""
    return all_of(isotope_present(table.isotope_columns[0]), fa_present(table.fa_columns[0]))


def standard_views(
    table: SampleTable,
    resolver: Optional[TaxonomyResolver] = None,
) -> dict[str, DerivedView]:
    """
    Build the named views used by the analysis pipeline.

    Returns
    -------
    dict[str, DerivedView]
        ``long_overlap``, ``overlap``, ``overlap_reduced``, ``fa``,
        ``fa_reduced``, ``fa_published_percent`` and ``si``.
    """
    resolver = resolver or TaxonomyResolver()
    has_fa = fa_present(table.fa_columns[0])
    has_si = isotope_present(table.isotope_columns[0])
    overlap = overlap_filter(table)
    reduced = [c for c in REDUCED_FA if c in table.fa_columns]
    if len(reduced) < len(REDUCED_FA):
        logger.info(
            "Reduced marker set limited to %s (others not in table)", reduced
        )

    views = {
        "long_overlap": build_view(table, "long_overlap", overlap, "all", reshape="long", resolver=resolver),
        "overlap": build_view(table, "overlap", overlap, "all", resolver=resolver),
        "overlap_reduced": build_view(
            table, "overlap_reduced", overlap, table.isotope_columns + reduced, resolver=resolver
        ),
        "fa": build_view(table, "fa", has_fa, "fa", resolver=resolver),
        "fa_reduced": build_view(table, "fa_reduced", has_fa, reduced, resolver=resolver),
        "fa_published_percent": percent_scale(
            build_view(table, "fa_published_percent", has_fa, "fa", resolver=resolver)
        ),
        "si": build_view(table, "si", has_si, "isotope", resolver=resolver),
    }
    for view in views.values():
        logger.info("View %-22s %4d samples", view.name, len(view))
    return views


def marker_matrix(view: DerivedView) -> np.ndarray:
    """Float matrix of a wide view, rows in view order."""
    if view.long:
        raise ShapeError(f"View '{view.name}' is long-form")
    return view.markers.to_numpy(dtype=float)
