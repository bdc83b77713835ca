"""
Data loading and preprocessing utilities.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pandas as pd

from .constants import (
    CONTROL_COLUMN,
    FA_FIRST,
    FA_LAST,
    ID_COLUMNS,
    ISOTOPE_COLUMNS,
    LOGGER_NAME,
    ROW_KEY,
)
from .exceptions import SchemaError

logger = logging.getLogger(LOGGER_NAME)


@dataclass(frozen=True)
class DatasetSchema:
    """
    Column layout of the source table.

    The fatty acid panel is every column from ``fa_first`` to ``fa_last``
    inclusive, in file order, once the control column has been dropped.
    """

    id_columns: list[str] = field(default_factory=lambda: list(ID_COLUMNS))
    isotope_columns: list[str] = field(default_factory=lambda: list(ISOTOPE_COLUMNS))
    fa_first: str = FA_FIRST
    fa_last: str = FA_LAST
    control_column: Optional[str] = CONTROL_COLUMN


DEFAULT_SCHEMA = DatasetSchema()


@dataclass(frozen=True)
class SampleTable:
    """Loaded source table with its resolved marker panels."""

    data: pd.DataFrame
    isotope_columns: list[str]
    fa_columns: list[str]
    schema: DatasetSchema = DEFAULT_SCHEMA

    @property
    def marker_columns(self) -> list[str]:
        return self.isotope_columns + self.fa_columns

    def __len__(self) -> int:
        return len(self.data)


def read_table(path: str | Path, sheet_name: Optional[str] = None) -> pd.DataFrame:
    """
    Read a CSV or Excel file from disk.

    Parameters
    ----------
    path : str | Path
        File path to CSV or Excel file.
    sheet_name : Optional[str]
        Sheet name for Excel files. If None, uses first sheet.

    Returns
    -------
    pd.DataFrame
        Raw table with stripped column names.

    Raises
    ------
    ValueError
        If file format is not CSV or XLSX.
    """
    p = Path(path)

    if p.suffix.lower() == ".csv":
        df = pd.read_csv(p)
    elif p.suffix.lower() in [".xlsx", ".xls"]:
        df = pd.read_excel(p, sheet_name=sheet_name or 0)
    else:
        raise ValueError(f"Unsupported file format: {p.suffix}")

    df.columns = [str(c).strip() for c in df.columns]
    return df


def fa_column_range(df: pd.DataFrame, schema: DatasetSchema = DEFAULT_SCHEMA) -> list[str]:
    """
    Resolve the contiguous fatty acid block of a table.

    Raises
    ------
    SchemaError
        If either bound is absent or the bounds are out of order.
    """
    cols = list(df.columns)
    missing = [c for c in (schema.fa_first, schema.fa_last) if c not in cols]
    if missing:
        raise SchemaError(f"Fatty acid range bounds missing from table: {missing}")

    start = cols.index(schema.fa_first)
    stop = cols.index(schema.fa_last)
    if stop < start:
        raise SchemaError(
            f"Fatty acid range is reversed: '{schema.fa_first}' follows '{schema.fa_last}'"
        )
    return cols[start:stop + 1]


def coerce_numeric_columns(df: pd.DataFrame, columns: list[str]) -> pd.DataFrame:
    """
    Coerce specified columns to numeric type.

    Parameters
    ----------
    df : pd.DataFrame
        Input DataFrame.
    columns : list[str]
        Column names to coerce to numeric.

    Returns
    -------
    pd.DataFrame
        DataFrame with coerced columns (NaN for non-convertible values).
    """
    out = df.copy()
    for col in columns:
        out[col] = pd.to_numeric(out[col], errors="coerce")
    return out


def prepare_table(df: pd.DataFrame, schema: DatasetSchema = DEFAULT_SCHEMA) -> SampleTable:
    """
    Validate a raw table and turn it into a SampleTable.

    Drops the control column, checks the expected columns, coerces the
    marker panels to numeric and assigns the ``sample_id`` row key in file
    order.

    Raises
    ------
    SchemaError
        If identifier, isotope or fatty acid range columns are missing.
    """
    if schema.control_column and schema.control_column in df.columns:
        df = df.drop(columns=[schema.control_column])
        logger.debug("Dropped control column '%s'", schema.control_column)

    expected = schema.id_columns + schema.isotope_columns
    missing = [c for c in expected if c not in df.columns]
    if missing:
        raise SchemaError(f"Source table is missing expected columns: {missing}")

    fa_cols = fa_column_range(df, schema)
    overlap = [c for c in fa_cols if c in schema.isotope_columns or c in schema.id_columns]
    if overlap:
        raise SchemaError(f"Fatty acid range overlaps non-FA columns: {overlap}")

    data = coerce_numeric_columns(df, schema.isotope_columns + fa_cols)
    data = data.reset_index(drop=True)
    data.index.name = ROW_KEY

    logger.info(
        "Loaded %d samples: %d isotope and %d fatty acid columns",
        len(data), len(schema.isotope_columns), len(fa_cols),
    )
    return SampleTable(
        data=data,
        isotope_columns=list(schema.isotope_columns),
        fa_columns=fa_cols,
        schema=schema,
    )


def load_table(
    path: str | Path,
    schema: DatasetSchema = DEFAULT_SCHEMA,
    sheet_name: Optional[str] = None,
) -> SampleTable:
    """
    Load the biomarker table from a file path.

    Parameters
    ----------
    path : str | Path
        CSV or Excel file.
    schema : DatasetSchema
        Expected column layout.
    sheet_name : Optional[str]
        Sheet name for Excel files.

    Returns
    -------
    SampleTable
        Validated table.
    """
    logger.info("Loading data from %s", path)
    return prepare_table(read_table(path, sheet_name=sheet_name), schema)
