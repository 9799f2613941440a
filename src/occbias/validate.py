"""
Module: validate.py
Project: Biodiversity Meets Data (BMD)
Work Package: WP3 - Data harmonisation in Space-Time-Taxonomy, Data gaps and biases
Task: T3.3 - Data gap and bias surfaces

Description:
Validates a loaded occurrence table before the bias assessment.
Counts missing taxonomic, temporal and spatial fields, checks coordinate
ranges and summarises the composition by source dataset.

Notes:
This step does not modify the dataset. It documents what the assessors
will have to exclude, so that filtering effects are visible before any
result is interpreted. A single datasetKey may aggregate several
collection protocols; the per-dataset counts are reported for that reason,
not as a proxy for methodology.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict

import pandas as pd

from . import config
from .assessors.base import is_missing
from .utils import log

logger = logging.getLogger(__name__)


@dataclass
class ValidationReport:
    n_records: int
    missing_species: int
    missing_genus: int
    missing_family: int
    missing_year: int
    missing_coordinates: int
    invalid_latitude: int
    invalid_longitude: int
    n_datasets: int
    records_per_dataset: Dict[str, int] = field(default_factory=dict)

    @property
    def ready(self) -> bool:
        """True when at least one record can be placed on a map."""
        return self.n_records - self.missing_coordinates > 0


def validate_occurrences(df: pd.DataFrame) -> ValidationReport:
    """Check required fields and coordinate integrity, and log the results."""
    missing_cols = [c for c in config.REQUIRED_COLUMNS if c not in df.columns]
    if missing_cols:
        raise KeyError(f"Missing required columns: {missing_cols}. Available={list(df.columns)}")

    lat = pd.to_numeric(df[config.COL_LAT], errors="coerce")
    lon = pd.to_numeric(df[config.COL_LON], errors="coerce")

    datasets = df.loc[~is_missing(df[config.COL_DATASET]), config.COL_DATASET].astype(str)
    per_dataset = {str(k): int(v) for k, v in datasets.value_counts().items()}

    report = ValidationReport(
        n_records=len(df),
        missing_species=int(is_missing(df[config.COL_SPECIES]).sum()),
        missing_genus=int(is_missing(df[config.COL_GENUS]).sum()),
        missing_family=int(is_missing(df[config.COL_FAMILY]).sum()),
        missing_year=int(pd.to_numeric(df[config.COL_YEAR], errors="coerce").isna().sum()),
        missing_coordinates=int((lat.isna() | lon.isna()).sum()),
        invalid_latitude=int((lat.notna() & ~lat.between(-90, 90)).sum()),
        invalid_longitude=int((lon.notna() & ~lon.between(-180, 180)).sum()),
        n_datasets=len(per_dataset),
        records_per_dataset=per_dataset,
    )

    log("=== Dataset validation ===")
    log(f"Records:                 {report.n_records}")
    log(f"Missing species:         {report.missing_species}")
    log(f"Missing genus:           {report.missing_genus}")
    log(f"Missing family:          {report.missing_family}")
    log(f"Missing year:            {report.missing_year}")
    log(f"Missing coordinates:     {report.missing_coordinates}")
    log(f"Latitude outside range:  {report.invalid_latitude}")
    log(f"Longitude outside range: {report.invalid_longitude}")
    log(f"Source datasets:         {report.n_datasets}")

    if not report.ready:
        logger.warning("No record has usable coordinates; spatial assessments will be empty")
    return report
