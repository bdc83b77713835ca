"""
Species to higher-taxonomy lookup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Optional

import pandas as pd

from .constants import (
    FAMILY_COL,
    LOGGER_NAME,
    ORDER_COL,
    PHYLUM_COL,
    PUBLISHED_COL,
    TAXONOMY_COLUMNS,
)
from .exceptions import SchemaError, UnresolvedTaxonomyError

logger = logging.getLogger(LOGGER_NAME)

_LOOKUP_COLUMNS = ["species"] + TAXONOMY_COLUMNS


@dataclass(frozen=True)
class TaxonomyRecord:
    species: str
    phylum: str
    order: str
    family: str
    published: str


def load_taxonomy(path: Optional[str | Path] = None) -> pd.DataFrame:
    """
    Read the species lookup table.

    Parameters
    ----------
    path : Optional[str | Path]
        CSV with columns species, phylum, order, family, published.
        If None, the table shipped with the package is used.

    Returns
    -------
    pd.DataFrame
        Lookup table indexed by species label.

    Raises
    ------
    SchemaError
        If a lookup column is missing or a species is listed twice.
    """
    if path is None:
        with resources.as_file(resources.files("fasi") / "data" / "taxonomy.csv") as p:
            table = pd.read_csv(p, dtype=str)
    else:
        table = pd.read_csv(path, dtype=str)

    missing = [c for c in _LOOKUP_COLUMNS if c not in table.columns]
    if missing:
        raise SchemaError(f"Taxonomy table is missing columns: {missing}")

    dupes = table.loc[table["species"].duplicated(), "species"].tolist()
    if dupes:
        raise SchemaError(f"Taxonomy table lists species more than once: {dupes}")

    return table[_LOOKUP_COLUMNS].set_index("species")


class TaxonomyResolver:
    """Resolve species labels to phylum, order, family and published status."""

    def __init__(self, table: Optional[pd.DataFrame] = None):
        self.table = load_taxonomy() if table is None else table

    def __contains__(self, species: str) -> bool:
        return species in self.table.index

    def resolve(self, species: str) -> TaxonomyRecord:
        if species not in self.table.index:
            raise UnresolvedTaxonomyError([species])
        row = self.table.loc[species]
        return TaxonomyRecord(
            species=species,
            phylum=row[PHYLUM_COL],
            order=row[ORDER_COL],
            family=row[FAMILY_COL],
            published=row[PUBLISHED_COL],
        )

    def annotate(
        self,
        df: pd.DataFrame,
        species_col: str,
        view: Optional[str] = None,
    ) -> pd.DataFrame:
        """
        Join taxonomy columns onto a frame by exact species label.

        Row order and index are preserved. A phylum column already present
        in ``df`` is replaced by the lookup value; disagreements are logged.

        Parameters
        ----------
        df : pd.DataFrame
            Frame carrying a species column.
        species_col : str
            Name of the species column.
        view : Optional[str]
            View name used in error messages.

        Returns
        -------
        pd.DataFrame
            Copy of ``df`` with phylum, order, family and published columns.

        Raises
        ------
        UnresolvedTaxonomyError
            If any species has no lookup entry.
        """
        species = df[species_col].astype(str)
        unresolved = sorted(set(species[~species.isin(self.table.index)]))
        if unresolved:
            raise UnresolvedTaxonomyError(unresolved, view=view)

        out = df.copy()
        lookup = self.table.reindex(species.to_numpy())
        lookup.index = df.index

        if PHYLUM_COL in out.columns:
            disagree = out[PHYLUM_COL].notna() & (out[PHYLUM_COL] != lookup[PHYLUM_COL])
            if disagree.any():
                logger.warning(
                    "Source phylum differs from lookup for %d rows (%s); using lookup",
                    int(disagree.sum()),
                    ", ".join(sorted(set(species[disagree]))),
                )

        for col in TAXONOMY_COLUMNS:
            out[col] = lookup[col]
        return out
