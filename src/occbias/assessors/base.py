"""
Common plumbing for the assessors.

Every assessor follows the same contract: validate the period list and the
grouping identifier (fatal if malformed), bin the records by period, drop
the records it cannot use while counting why, compute its statistic per
period and identifier, and return an AssessmentResult.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence

import pandas as pd

from .. import config
from ..periods import PERIOD_COL, Period, bin_records, validate_periods

logger = logging.getLogger(__name__)

IDENTIFIER_COL = config.IDENTIFIER_COL

# Fields that can be required by an assessor, and the exclusion reason
# reported when a record lacks them.
REASONS = {
    config.COL_SPECIES: "missing_species",
    config.COL_GENUS: "missing_genus",
    config.COL_FAMILY: "missing_family",
    "coordinates": "missing_coordinates",
    config.COL_DATASET: "missing_dataset",
}


@dataclass
class AssessmentResult:
    """Summary table, chart and exclusion counts of one assessor run."""
    name: str
    data: pd.DataFrame
    figure: object = None
    excluded: Dict[str, int] = field(default_factory=dict)
    n_used: int = 0
    details: Optional[pd.DataFrame] = None

    @property
    def n_excluded(self) -> int:
        return sum(self.excluded.values())


@dataclass
class Prepared:
    data: pd.DataFrame
    periods: List[Period]
    identifiers: List[str]
    excluded: Dict[str, int]

    @property
    def labels(self) -> List[str]:
        return [p.label for p in self.periods]


def is_missing(s: pd.Series) -> pd.Series:
    """True where a value is missing or a blank string."""
    missing = s.isna()
    if s.dtype == object or pd.api.types.is_string_dtype(s):
        missing = missing | (s.astype("string").str.strip() == "").fillna(True)
    return missing.astype(bool)


def check_identifier(df: pd.DataFrame, identifier: str) -> None:
    """The grouping identifier must name a column of df."""
    if not isinstance(identifier, str) or not identifier.strip():
        raise ValueError(f"Grouping identifier must be a column name, got {identifier!r}")
    if identifier not in df.columns:
        raise KeyError(f"Grouping identifier column '{identifier}' not found. Available={list(df.columns)}")


def prepare_records(
    df: pd.DataFrame,
    periods: Iterable,
    identifier: str,
    required: Sequence[str] = (),
    year_col: str = config.COL_YEAR,
    name: str = "assessment",
) -> Prepared:
    """
    Bin records by period and drop those an assessor cannot use.

    Each excluded record is counted once, under the first reason that
    applies, in this order: missing year, year outside every period,
    missing identifier, then the `required` fields in the order given
    ("coordinates" stands for both longitude and latitude).
    """
    periods = validate_periods(periods)
    check_identifier(df, identifier)

    binned = bin_records(df, periods, year_col=year_col)
    data = binned.data
    excluded = {
        "missing_year": binned.n_missing_year,
        "outside_periods": binned.n_outside_periods,
    }
    keep = data[PERIOD_COL].notna()

    id_missing = is_missing(data[identifier])
    excluded["missing_identifier"] = int((keep & id_missing).sum())
    keep &= ~id_missing

    for field_name in required:
        if field_name == "coordinates":
            missing = (pd.to_numeric(data[config.COL_LON], errors="coerce").isna()
                       | pd.to_numeric(data[config.COL_LAT], errors="coerce").isna())
        else:
            if field_name not in data.columns:
                raise KeyError(f"Required column '{field_name}' not found. Available={list(data.columns)}")
            missing = is_missing(data[field_name])
        reason = REASONS.get(field_name, f"missing_{field_name}")
        excluded[reason] = int((keep & missing).sum())
        keep &= ~missing

    for reason, n in excluded.items():
        if n and reason not in ("missing_year", "outside_periods"):
            logger.warning("%s: %d records excluded (%s)", name, n, reason)

    identifiers = sorted(df.loc[~is_missing(df[identifier]), identifier].astype(str).str.strip().unique())
    if not identifiers:
        logger.warning("%s: no record has a value in '%s'; reporting periods under '%s'",
                       name, identifier, config.NO_IDENTIFIER)
        identifiers = [config.NO_IDENTIFIER]

    out = data[keep].copy()
    out[IDENTIFIER_COL] = out[identifier].astype(str).str.strip()
    return Prepared(data=out, periods=periods, identifiers=identifiers, excluded=excluded)


def full_index(prepared: Prepared) -> pd.MultiIndex:
    """Every (period, identifier) pair, so that empty periods show up as rows."""
    return pd.MultiIndex.from_product([prepared.labels, prepared.identifiers],
                                      names=[PERIOD_COL, IDENTIFIER_COL])


def finish_table(table: pd.DataFrame, prepared: Prepared) -> pd.DataFrame:
    """Turn a (period, identifier)-indexed table into columns, periods in order."""
    out = table.reset_index()
    out[PERIOD_COL] = pd.Categorical(out[PERIOD_COL].astype(str), categories=prepared.labels, ordered=True)
    return out.sort_values([PERIOD_COL, IDENTIFIER_COL]).reset_index(drop=True)


def group_counts(prepared: Prepared, column: str = None, how: str = "size") -> pd.Series:
    """
    Per (period, identifier) aggregate reindexed onto the full index, with
    zero for empty combinations.
    """
    index = full_index(prepared)
    if prepared.data.empty:
        return pd.Series(0, index=index, dtype=int)
    data = prepared.data.assign(**{PERIOD_COL: prepared.data[PERIOD_COL].astype(str)})
    grouped = data.groupby([PERIOD_COL, IDENTIFIER_COL])
    if how == "size":
        counts = grouped.size()
    else:
        counts = grouped[column].agg(how)
    return counts.reindex(index, fill_value=0).astype(int)
