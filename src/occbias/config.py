"""
Module: config.py
Project: Biodiversity Meets Data (BMD)
Work Package: WP3 - Data harmonisation in Space-Time-Taxonomy, Data gaps and biases
Task: T3.3 - Data gap and bias surfaces

Description:
Central configuration for the occurrence bias assessment of Swedish
longhorn beetles (Cerambycidae). All paths, column names and analysis
defaults live here so that the pipeline and the individual assessors
read from a single place.

Notes:
Paths are resolved relative to the project root. The root defaults to the
current working directory and can be overridden with the environment
variable BMD_PROJECT_ROOT. Every value below can also be overridden on the
command line of the pipeline (see occbias.pipeline).
"""

import os
from pathlib import Path


# ----------------------------------------------------------------------
# Project-level paths (BMD structure)
# ----------------------------------------------------------------------
# data/raw holds the GBIF download (DwC-A ZIP or simple CSV export),
# data/external the boundary polygon and the environmental covariate
# stack. Figures, reports and logs are written under results/ and logs/.

PROJECT_ROOT = Path(os.getenv("BMD_PROJECT_ROOT", Path.cwd())).resolve()

DATA_DIR = PROJECT_ROOT / "data"
RAW_DIR = DATA_DIR / "raw"
FILTERED_DIR = DATA_DIR / "filtered"
EXTERNAL_DIR = DATA_DIR / "external"
RESULTS_DIR = PROJECT_ROOT / "results" / "bias_assessment"
LOG_DIR = PROJECT_ROOT / "logs"


# ----------------------------------------------------------------------
# User configuration
# ----------------------------------------------------------------------
# DATASET_NAME identifies the GBIF download being analysed. The occurrence
# file is expected under data/raw with the naming pattern below; the
# boundary and covariate files under data/external.

DATASET_NAME = "CERAMBYCIDAE_SE"

OCCURRENCE_FILE = RAW_DIR / f"GBIF_{DATASET_NAME}.zip"
SUMMARY_REPORT_FILE = FILTERED_DIR / f"GBIF_{DATASET_NAME}_summary_report.txt"
BOUNDARY_FILE = EXTERNAL_DIR / "sweden_boundary.gpkg"
ENV_RASTER_FILE = EXTERNAL_DIR / "worldclim_bio_sweden.tif"

# Boundary layer filter (set BOUNDARY_NAME to None to keep all features)
BOUNDARY_NAME_COL = "ISO_A2"
BOUNDARY_NAME = "SE"

CHUNK_SIZE = 100_000  # rows per chunk when reading large files


# ----------------------------------------------------------------------
# GBIF download settings
# ----------------------------------------------------------------------
# Credentials are read from the environment so that nothing sensitive is
# stored in the source code. TAXON_KEY is the GBIF backbone key of the
# family Cerambycidae.

GBIF_API = "https://api.gbif.org/v1"
GBIF_USER = os.getenv("GBIF_USER")
GBIF_PASSWORD = os.getenv("GBIF_PASSWORD")
GBIF_EMAIL = os.getenv("GBIF_EMAIL")

TAXON_KEY = 5602
COUNTRY = "SE"
POLL_INTERVAL = 20  # seconds between download status checks


# ----------------------------------------------------------------------
# Columns (Darwin Core names, as exported by GBIF)
# ----------------------------------------------------------------------

COL_SPECIES = "species"
COL_GENUS = "genus"
COL_FAMILY = "family"
COL_LON = "decimalLongitude"
COL_LAT = "decimalLatitude"
COL_YEAR = "year"
COL_EVENT_DATE = "eventDate"
COL_UNCERTAINTY = "coordinateUncertaintyInMeters"
COL_DATASET = "datasetKey"
COL_COUNTRY = "countryCode"
COL_ISSUE = "issue"

REQUIRED_COLUMNS = [
    COL_SPECIES,
    COL_GENUS,
    COL_FAMILY,
    COL_LON,
    COL_LAT,
    COL_YEAR,
    COL_EVENT_DATE,
    COL_UNCERTAINTY,
    COL_DATASET,
    COL_COUNTRY,
    COL_ISSUE,
]

# Kept when present, never required
OPTIONAL_COLUMNS = ["gbifID", "scientificName", "basisOfRecord"]


# ----------------------------------------------------------------------
# Analysis defaults
# ----------------------------------------------------------------------
# Periods are decades from 1900 to 2019. The grouping identifier is the
# column the assessors split their output by. Spatial work happens in
# SWEREF99 TM (metres) on a 10 km grid.

PERIOD_START = 1900
PERIOD_END = 2019
PERIOD_WIDTH = 10

IDENTIFIER = COL_FAMILY

SOURCE_CRS = "EPSG:4326"
ANALYSIS_CRS = "EPSG:3006"
GRID_RES = 10_000

N_SAMPLES = 15  # bootstrap / random samples for the nearest-neighbour index
N_BACKGROUND = 10_000  # background cells for the environmental PCA
RANDOM_SEED = 42

# Optional quality filters (None / empty disables them)
MAX_UNCERTAINTY = None  # e.g. 1000 (metres)
EXCLUDE_ISSUES = ()  # e.g. ("ZERO_COORDINATE", "COUNTRY_COORDINATE_MISMATCH")

# Column holding the grouping identifier in every assessment table
IDENTIFIER_COL = "identifier"
# Identifier value used when no record carries one
NO_IDENTIFIER = "all"
