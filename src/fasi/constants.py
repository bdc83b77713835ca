"""
Global constants and magic numbers for the FASI biomarker statistics.
"""

# Source table columns
PROJECT_COL = "ProjID"
SITE_COL = "siteName"
SPECIES_COL = "revisedSpecies"
ICE_COVER_COL = "Ice cover (NIC-Midpoint-Annual)"
PHYLUM_COL = "phylum"
ORDER_COL = "order"
FAMILY_COL = "family"
PUBLISHED_COL = "published"
ROW_KEY = "sample_id"

ID_COLUMNS = [PROJECT_COL, SITE_COL, SPECIES_COL, ICE_COVER_COL]
TAXONOMY_COLUMNS = [PHYLUM_COL, ORDER_COL, FAMILY_COL, PUBLISHED_COL]

# Stable isotope panel (contiguous block)
CN_RATIO = "CN ratio"
D15N = "d15N"
D13C = "d13C"
ISOTOPE_COLUMNS = [CN_RATIO, D15N, D13C]

# Fatty acid panel (contiguous block, inclusive bounds)
FA_FIRST = "8:0"
FA_LAST = "24:1w9"

# 'Control biomarker' dropped on load
CONTROL_COLUMN = "19:0"

# Markers retained in the reduced views
REDUCED_FA = ["20:5w3", "20:4w6", "16:0", "18:3w3", "18:4w3c", "18:1w9c", "18:1w7c"]

# Species pairs compared on their own
DESMARESTIA_PAIR = ["Desmarestia menziesii", "Desmarestia anceps"]
PHYLLOPHORA_CALLOPHYLLIS_PAIR = ["Phyllophora antarctica", "Callophyllis atrosanguinea"]

# Rhodophyta with no prior FA record (16:1w7c summary)
NEW_RHODOPHYTA = [
    "Ballia callitricha",
    "Porphyra plocamiestris",
    "Paraglossum salicifolium",
    "Picconiella plumosa",
    "Meridionella antarctica",
    "Austropugetia crassa",
    "Callophyllis atrosanguinea",
    "Gymnogongrus antarcticus",
    "Phyllophora antarctica",
    "Pachymenia orbicularis",
    "Trematocarpus antarcticus",
]
BENTHIC_DIATOMS = "Benthic diatoms"

# Statistical Analysis Constants
DEFAULT_ALPHA = 0.05
DEFAULT_SEED = 20240112
DEFAULT_PERMUTATIONS = 999
DEFAULT_METRIC = "braycurtis"
DEFAULT_SIMPER_CUTOFF = 0.83
DEFAULT_CLUSTER_COUNT = 4
DEFAULT_LINKAGE = "ward"
PERCENT_FACTOR = 100
REPORT_DECIMALS = 3
MIN_SAMPLES_FOR_SHAPIRO = 3
MIN_GROUPS_FOR_LEVENE = 2

# nMDS Constants
NMDS_COMPONENTS = 2
NMDS_MAX_ITER = 300
NMDS_TOLERANCE = 1e-3
NMDS_RESTARTS = 20

# Residual diagnostics
DEFAULT_SIMULATIONS = 250

# Logging
LOGGER_NAME = "fasi"
