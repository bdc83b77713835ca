import logging

import pandas as pd
import pytest

from fasi.constants import PHYLUM_COL, SPECIES_COL
from fasi.exceptions import SchemaError, UnresolvedTaxonomyError
from fasi.taxonomy import TaxonomyResolver, load_taxonomy


def test_packaged_table_loads():
    table = load_taxonomy()
    assert table.index.is_unique
    assert set(table[PHYLUM_COL]) == {"Chlorophyta", "Ochrophyta", "Rhodophyta"}


def test_resolve_known_species(resolver):
    rec = resolver.resolve("Palmaria decipiens")
    assert rec.phylum == "Rhodophyta"
    assert rec.order == "Palmariales"
    assert rec.family == "Palmariaceae"


def test_benthic_diatoms_are_ochrophyta(resolver):
    assert resolver.resolve("Benthic diatoms").phylum == "Ochrophyta"


def test_resolve_unknown_raises(resolver):
    with pytest.raises(UnresolvedTaxonomyError) as exc:
        resolver.resolve("Nereocystis luetkeana")
    assert exc.value.species == ["Nereocystis luetkeana"]


def test_annotate_lists_every_unresolved_species(resolver):
    df = pd.DataFrame({SPECIES_COL: ["Zeta sp.", "Palmaria decipiens", "Alpha sp.", "Zeta sp."]})
    with pytest.raises(UnresolvedTaxonomyError) as exc:
        resolver.annotate(df, SPECIES_COL, view="fa")
    assert exc.value.species == ["Alpha sp.", "Zeta sp."]
    assert exc.value.view == "fa"
    assert "fa" in str(exc.value)


def test_annotate_preserves_index_and_order(resolver):
    df = pd.DataFrame(
        {SPECIES_COL: ["Lambia antarctica", "Desmarestia anceps"]},
        index=pd.Index([10, 3], name="sample_id"),
    )
    out = resolver.annotate(df, SPECIES_COL)
    assert list(out.index) == [10, 3]
    assert list(out[PHYLUM_COL]) == ["Chlorophyta", "Ochrophyta"]
    assert PHYLUM_COL not in df.columns


def test_lookup_phylum_wins_and_is_logged(resolver, caplog):
    df = pd.DataFrame({SPECIES_COL: ["Palmaria decipiens"], PHYLUM_COL: ["Ochrophyta"]})
    with caplog.at_level(logging.WARNING, logger="fasi"):
        out = resolver.annotate(df, SPECIES_COL)
    assert out[PHYLUM_COL].iloc[0] == "Rhodophyta"
    assert "differs from lookup" in caplog.text


def test_duplicate_lookup_rows_rejected(tmp_path):
    path = tmp_path / "tax.csv"
    path.write_text(
        "species,phylum,order,family,published\n"
        "A b,Rhodophyta,O,F,published\n"
        "A b,Rhodophyta,O,F,published\n"
    )
    with pytest.raises(SchemaError):
        load_taxonomy(path)


def test_custom_table(tmp_path):
    path = tmp_path / "tax.csv"
    path.write_text("species,phylum,order,family,published\nA b,Rhodophyta,O,F,published\n")
    res = TaxonomyResolver(load_taxonomy(path))
    assert "A b" in res
    assert "Palmaria decipiens" not in res
