"""
Shared fixtures: a small synthetic FASI table.

Four species carry fatty acid profiles (three samples each). Lambia
antarctica has no isotope panel; one Iridaea cordata sample has isotopes
but no fatty acids. Overlap therefore covers three species and nine rows.
"""

import numpy as np
import pandas as pd
import pytest

from fasi.constants import (
    CN_RATIO,
    D13C,
    D15N,
    ICE_COVER_COL,
    PROJECT_COL,
    SITE_COL,
    SPECIES_COL,
)
from fasi.data_loader import prepare_table
from fasi.taxonomy import TaxonomyResolver
from fasi.views import standard_views

FA_COLUMNS = ["8:0", "16:0", "18:3w3", "24:1w9"]

# species -> (FA profile, (CN, d15N, d13C) or None)
PROFILES = {
    "Desmarestia menziesii": ([0.05, 0.30, 0.15, 0.02], (22.0, 3.5, -28.0)),
    "Desmarestia anceps": ([0.04, 0.25, 0.20, 0.03], (18.0, 4.0, -26.0)),
    "Palmaria decipiens": ([0.02, 0.45, 0.05, 0.01], (12.0, 5.5, -22.0)),
    "Lambia antarctica": ([0.10, 0.20, 0.30, 0.05], None),
}


def make_raw_table(seed: int = 7) -> pd.DataFrame:
    rng = np.random.default_rng(seed)
    rows = []
    for species, (fa, si) in PROFILES.items():
        for rep in range(3):
            row = {
                PROJECT_COL: f"P{len(rows) + 1:03d}",
                SITE_COL: "Site A" if len(rows) % 2 == 0 else "Site B",
                SPECIES_COL: species,
                ICE_COVER_COL: round(0.2 + 0.1 * rep, 2),
            }
            if si is None:
                row.update({CN_RATIO: np.nan, D15N: np.nan, D13C: np.nan})
            else:
                row.update({
                    CN_RATIO: si[0] * rng.uniform(0.85, 1.15),
                    D15N: si[1] + rng.normal(0, 0.3),
                    D13C: si[2] + rng.normal(0, 0.8),
                })
            for col, base in zip(FA_COLUMNS, fa):
                row[col] = base * rng.uniform(0.8, 1.2)
            row["19:0"] = 0.01
            rows.append(row)

    rows.append({
        PROJECT_COL: "P999",
        SITE_COL: "Site A",
        SPECIES_COL: "Iridaea cordata",
        ICE_COVER_COL: 0.5,
        CN_RATIO: 15.0,
        D15N: 4.8,
        D13C: -24.0,
        **{col: np.nan for col in FA_COLUMNS},
        "19:0": np.nan,
    })

    columns = [PROJECT_COL, SITE_COL, SPECIES_COL, ICE_COVER_COL, CN_RATIO, D15N, D13C,
               "8:0", "16:0", "19:0", "18:3w3", "24:1w9"]
    return pd.DataFrame(rows)[columns]


@pytest.fixture
def raw_df():
    return make_raw_table()


@pytest.fixture
def sample_table(raw_df):
    return prepare_table(raw_df)


@pytest.fixture(scope="session")
def resolver():
    return TaxonomyResolver()


@pytest.fixture
def views(sample_table, resolver):
    return standard_views(sample_table, resolver)


@pytest.fixture
def raw_csv(tmp_path, raw_df):
    path = tmp_path / "fasi.csv"
    raw_df.to_csv(path, index=False)
    return path
