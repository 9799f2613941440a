"""
Module: loader.py
Project: Biodiversity Meets Data (BMD)
Work Package: WP3 - Data harmonisation in Space-Time-Taxonomy, Data gaps and biases
Task: T3.3 - Data gap and bias surfaces

Description:
Reads a GBIF occurrence download (simple CSV export or zipped Darwin Core
archive) in memory-efficient chunks, keeps the fields needed by the bias
assessors and applies light cleaning.

Input:
- GBIF occurrence data, either a delimited text file or a DwC-A ZIP
  containing occurrence.txt

Output:
- Cleaned occurrence DataFrame (one record per row)
- Optional plain-text summary report

Purpose:
To produce an analysis-ready occurrence table by:
- Converting blank strings to missing values (a blank species name is
  treated exactly like an absent one).
- Coercing coordinates, years and coordinate uncertainty to numbers, and
  recovering the year from eventDate when it denotes a single year.
- Parsing GBIF issue flags into sets.
- Optionally filtering by coordinate uncertainty, issue flags and basis
  of record.

Records with missing fields are kept here: each assessor excludes and
counts what it cannot use.
"""

import logging
import zipfile
from collections import Counter
from pathlib import Path
from typing import Dict, Iterable, Optional, Tuple

import numpy as np
import pandas as pd

from . import config

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Columns
# ----------------------------------------------------------------------
# COLUMNS_KEEP defines the subset of GBIF Darwin Core fields required for
# downstream analyses. Optional columns are read when the export has them.

COLUMNS_KEEP = config.REQUIRED_COLUMNS + config.OPTIONAL_COLUMNS

STRING_COLUMNS = [
    config.COL_SPECIES,
    config.COL_GENUS,
    config.COL_FAMILY,
    config.COL_EVENT_DATE,
    config.COL_DATASET,
    config.COL_COUNTRY,
    config.COL_ISSUE,
    "scientificName",
    "basisOfRecord",
]

NUMERIC_COLUMNS = [config.COL_LON, config.COL_LAT, config.COL_UNCERTAINTY]

DWCA_OCCURRENCE = "occurrence.txt"


# ----------------------------------------------------------------------
# Reading
# ----------------------------------------------------------------------

def _guess_sep(path: Path) -> str:
    return "," if path.suffix.lower() == ".csv" else "\t"


def _read_chunks(handle, sep: str, chunk_size: int) -> pd.DataFrame:
    chunks = []
    reader = pd.read_csv(
        handle,
        sep=sep,
        usecols=lambda c: c in COLUMNS_KEEP,
        dtype=str,
        keep_default_na=False,
        chunksize=chunk_size,
        quoting=3 if sep == "\t" else 0,  # GBIF tab exports are unquoted
        low_memory=False,
    )
    for chunk in reader:
        chunks.append(chunk)
    if not chunks:
        return pd.DataFrame(columns=COLUMNS_KEEP)
    return pd.concat(chunks, ignore_index=True)


def read_occurrences(path, sep: Optional[str] = None, chunk_size: int = config.CHUNK_SIZE) -> pd.DataFrame:
    """
    Read the raw occurrence table as strings.

    ZIP files are treated as Darwin Core archives and must contain
    occurrence.txt (tab separated). Other files are read as delimited text;
    the separator defaults to comma for .csv and tab otherwise.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Occurrence file not found: {path}")

    if zipfile.is_zipfile(path):
        with zipfile.ZipFile(str(path), "r") as z:
            if DWCA_OCCURRENCE not in z.namelist():
                raise FileNotFoundError(f"{DWCA_OCCURRENCE} not found in the ZIP file {path}.")
            with z.open(DWCA_OCCURRENCE) as f:
                df = _read_chunks(f, sep or "\t", chunk_size)
    else:
        df = _read_chunks(path, sep or _guess_sep(path), chunk_size)

    missing = [c for c in config.REQUIRED_COLUMNS if c not in df.columns]
    if missing:
        raise KeyError(f"Missing required columns: {missing}. Available={list(df.columns)}")

    logger.info("Read %d raw records from %s", len(df), path.name)
    return df


# ----------------------------------------------------------------------
# Cleaning
# ----------------------------------------------------------------------

def blank_to_missing(df: pd.DataFrame, columns: Optional[Iterable[str]] = None) -> pd.DataFrame:
    """Replace empty or whitespace-only strings with pd.NA in the given columns."""
    out = df.copy()
    cols = [c for c in (columns if columns is not None else out.columns) if c in out.columns]
    for col in cols:
        if out[col].dtype == object or pd.api.types.is_string_dtype(out[col]):
            s = out[col].astype("string").str.strip()
            out[col] = s.mask(s == "", pd.NA)
    return out


def _to_float(s: pd.Series) -> pd.Series:
    values = pd.to_numeric(s, errors="coerce")
    return pd.Series(values.to_numpy(dtype=float, na_value=np.nan), index=s.index)


def year_from_event_date(event_date: pd.Series) -> pd.Series:
    """
    Derive a year from eventDate where it denotes a single year.

    eventDate may be a date ("1995-06-12") or an ISO 8601 interval
    ("1995-06-01/1995-06-30"). The year is returned only when both ends of
    the interval fall in the same year; otherwise it is missing.
    """
    s = event_date.astype("string")
    first = _to_float(s.str.extract(r"^\s*(\d{4})", expand=False))
    last = _to_float(s.str.extract(r"/\s*(\d{4})", expand=False))
    last = last.fillna(first)
    return first.where(first == last).astype("Int64")


def parse_issues(issue: pd.Series) -> pd.Series:
    """Split GBIF semicolon-separated issue flags into frozensets."""
    def split(value):
        if value is None or value is pd.NA or (isinstance(value, float) and np.isnan(value)):
            return frozenset()
        return frozenset(flag.strip() for flag in str(value).split(";") if flag.strip())

    return issue.map(split)


def clean_occurrences(df: pd.DataFrame) -> pd.DataFrame:
    """
    Normalise a raw occurrence table.

    1. Blank strings become missing values.
    2. Coordinates and uncertainty become floats; out-of-range coordinates
       become missing (with a warning).
    3. year becomes a nullable integer, recovered from eventDate when absent.
    4. issue becomes a frozenset of flags.
    """
    out = blank_to_missing(df, [c for c in STRING_COLUMNS if c in df.columns])

    for col in NUMERIC_COLUMNS:
        out[col] = _to_float(out[col])

    bad_lat = out[config.COL_LAT].notna() & ~out[config.COL_LAT].between(-90, 90)
    bad_lon = out[config.COL_LON].notna() & ~out[config.COL_LON].between(-180, 180)
    bad = bad_lat | bad_lon
    if bad.any():
        logger.warning("%d records have out-of-range coordinates; coordinates set to missing", int(bad.sum()))
        out.loc[bad, [config.COL_LAT, config.COL_LON]] = np.nan

    year = _to_float(out[config.COL_YEAR].astype("string").str.strip())
    year = year.where(year % 1 == 0).astype("Int64")
    recovered = year_from_event_date(out[config.COL_EVENT_DATE])
    fill = year.isna() & recovered.notna()
    if fill.any():
        logger.info("Recovered year from eventDate for %d records", int(fill.sum()))
    out[config.COL_YEAR] = year.fillna(recovered)

    out[config.COL_ISSUE] = parse_issues(out[config.COL_ISSUE])
    return out


def load_occurrences(path, sep: Optional[str] = None, chunk_size: int = config.CHUNK_SIZE) -> pd.DataFrame:
    """Read and clean an occurrence file (see read_occurrences, clean_occurrences)."""
    df = clean_occurrences(read_occurrences(path, sep=sep, chunk_size=chunk_size))
    logger.info(
        "Loaded %d occurrence records (%d without species, %d without coordinates, %d without year)",
        len(df),
        int(df[config.COL_SPECIES].isna().sum()),
        int((df[config.COL_LAT].isna() | df[config.COL_LON].isna()).sum()),
        int(df[config.COL_YEAR].isna().sum()),
    )
    return df


# ----------------------------------------------------------------------
# Optional data-quality filters
# ----------------------------------------------------------------------

def apply_quality_filters(
    df: pd.DataFrame,
    max_uncertainty: Optional[float] = None,
    exclude_issues: Iterable[str] = (),
    basis_of_record: Optional[Iterable[str]] = None,
) -> Tuple[pd.DataFrame, Dict[str, int]]:
    """
    Apply the optional quality filters and return (filtered, removed).

    removed maps each active filter to the number of records it removed.
    Missing coordinate uncertainty is kept (not treated as a failure).
    """
    mask = pd.Series(True, index=df.index)
    removed: Dict[str, int] = {}

    if max_uncertainty is not None:
        unc = df[config.COL_UNCERTAINTY]
        fails = unc.notna() & (unc > max_uncertainty)
        removed["coordinate_uncertainty"] = int((mask & fails).sum())
        mask &= ~fails

    exclude_issues = frozenset(exclude_issues)
    if exclude_issues:
        fails = df[config.COL_ISSUE].map(lambda flags: bool(flags & exclude_issues))
        removed["issue_flags"] = int((mask & fails).sum())
        mask &= ~fails

    if basis_of_record is not None:
        if "basisOfRecord" not in df.columns:
            raise KeyError("basisOfRecord filter requested but the column is not present")
        fails = ~df["basisOfRecord"].isin(list(basis_of_record))
        removed["basis_of_record"] = int((mask & fails).sum())
        mask &= ~fails

    for name, n in removed.items():
        if n:
            logger.info("Quality filter %s removed %d records", name, n)

    return df[mask].copy(), removed


# ----------------------------------------------------------------------
# Textual summary report
# ----------------------------------------------------------------------

def write_summary_report(
    df: pd.DataFrame,
    path,
    source: str = "",
    n_raw: Optional[int] = None,
    removed: Optional[Dict[str, int]] = None,
) -> Path:
    """
    Write a human-readable summary of the loaded dataset: retention, taxonomic
    richness, temporal and geographic coverage, sub-dataset composition and
    issue flag frequencies.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    n_raw = len(df) if n_raw is None else n_raw
    removed = removed or {}

    issue_counter = Counter()
    for flags in df[config.COL_ISSUE]:
        issue_counter.update(flags)

    with open(path, "w", encoding="utf-8") as report:
        report.write("GBIF DATA SUMMARY REPORT\n\n")
        report.write(f"Dataset: {source}\n")
        report.write("=" * 60 + "\n\n")

        report.write("Filter configuration\n")
        report.write("--------------------\n")
        if removed:
            for name, n in removed.items():
                report.write(f"{name}: {n} records removed\n")
        else:
            report.write("No quality filters applied\n")
        report.write("\n")

        report.write(f"Total records (raw): {n_raw}\n")
        report.write(f"Records after filtering: {len(df)}\n")
        ratio = (len(df) / n_raw * 100) if n_raw > 0 else 0
        report.write(f"Retention ratio after filtering: {ratio:.2f}%\n\n")

        report.write(f"Unique species: {df[config.COL_SPECIES].nunique()}\n")
        report.write(f"Unique genera: {df[config.COL_GENUS].nunique()}\n")
        report.write(f"Unique families: {df[config.COL_FAMILY].nunique()}\n")
        report.write(f"Records without species name: {int(df[config.COL_SPECIES].isna().sum())}\n\n")

        years = df[config.COL_YEAR].dropna()
        if len(years) > 0:
            report.write(f"Year range: {int(years.min())} to {int(years.max())}\n")
        else:
            report.write("Year range: no valid years\n")
        report.write(f"Records without year: {int(df[config.COL_YEAR].isna().sum())}\n")

        lat = df[config.COL_LAT].dropna()
        lon = df[config.COL_LON].dropna()
        if len(lat) > 0 and len(lon) > 0:
            report.write(f"Latitude range: {lat.min():.4f} to {lat.max():.4f}\n")
            report.write(f"Longitude range: {lon.min():.4f} to {lon.max():.4f}\n")
        report.write("\n")

        # A single datasetKey can aggregate several collection protocols
        report.write("Occurrences per source dataset (sorted by number of occurrences):\n")
        for key, count in df[config.COL_DATASET].value_counts().items():
            report.write(f"  {key}: {count}\n")
        report.write("\n")

        report.write("Issue flags:\n")
        for flag, count in issue_counter.most_common():
            report.write(f"  {flag}: {count}\n")
        report.write("\n")

        report.write("Top 10 species by number of occurrences:\n")
        for name, count in df[config.COL_SPECIES].value_counts().head(10).items():
            report.write(f"  {name}: {count}\n")

    logger.info("Summary report saved to %s", path)
    return path
