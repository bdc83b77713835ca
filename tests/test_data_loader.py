import pytest

from fasi.constants import CN_RATIO, ISOTOPE_COLUMNS, ROW_KEY
from fasi.data_loader import DatasetSchema, load_table, prepare_table, read_table
from fasi.exceptions import SchemaError

FA_COLUMNS = ["8:0", "16:0", "18:3w3", "24:1w9"]


def test_prepare_table_resolves_panels(sample_table):
    assert sample_table.isotope_columns == ISOTOPE_COLUMNS
    assert sample_table.fa_columns == FA_COLUMNS
    assert "19:0" not in sample_table.data.columns
    assert sample_table.data.index.name == ROW_KEY
    assert len(sample_table) == 13


def test_missing_isotope_column(raw_df):
    with pytest.raises(SchemaError, match=CN_RATIO):
        prepare_table(raw_df.drop(columns=[CN_RATIO]))


def test_missing_fa_bound(raw_df):
    with pytest.raises(SchemaError, match="24:1w9"):
        prepare_table(raw_df.drop(columns=["24:1w9"]))


def test_reversed_fa_bounds(raw_df):
    schema = DatasetSchema(fa_first="24:1w9", fa_last="8:0")
    with pytest.raises(SchemaError, match="reversed"):
        prepare_table(raw_df, schema)


def test_non_numeric_values_coerced(raw_df):
    raw_df.loc[0, "16:0"] = "n.d."
    table = prepare_table(raw_df)
    assert table.data["16:0"].isna().sum() == 2  # n.d. plus the FA-less row


def test_load_table_from_csv(raw_csv):
    table = load_table(raw_csv)
    assert table.fa_columns == FA_COLUMNS
    assert len(table) == 13


def test_read_table_strips_headers(tmp_path):
    path = tmp_path / "t.csv"
    path.write_text(" a ,b\n1,2\n")
    assert list(read_table(path).columns) == ["a", "b"]


def test_read_table_rejects_unknown_format(tmp_path):
    path = tmp_path / "t.json"
    path.write_text("{}")
    with pytest.raises(ValueError, match="Unsupported"):
        read_table(path)
