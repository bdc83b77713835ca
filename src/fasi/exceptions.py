"""
Exception and warning types raised by the FASI pipeline.
"""

from __future__ import annotations


class FasiError(Exception):
    """Base exception for biomarker pipeline errors."""

    pass


class SchemaError(FasiError):
    """An expected column is missing from the source table."""

    pass


class UnresolvedTaxonomyError(FasiError):
    """One or more species labels have no taxonomy lookup entry."""

    def __init__(self, species: list[str], view: str | None = None):
        self.species = sorted(set(species))
        self.view = view
        where = f" in view '{view}'" if view else ""
        super().__init__(f"Unresolved species{where}: {', '.join(self.species)}")


class ShapeError(FasiError):
    """Row count or row order of a matrix disagrees with its annotations."""

    pass


class MissingDataError(FasiError, ValueError):
    """Missing values where the view filters should have removed them."""

    pass


class ConvergenceWarning(UserWarning):
    """nMDS stopped at the iteration limit before reaching tolerance."""

    pass
