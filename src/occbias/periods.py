"""
Period binning
==============

Occurrence records are assessed per period: an analyst-defined, closed
integer year range such as 1900-1909. Periods are supplied as an ordered,
non-overlapping list. A record belongs to the period whose bounds contain
its year; records with a missing year, or a year outside every period, are
left unassigned and reported as exclusions.

A malformed period list is a configuration error and is fatal (ValueError);
an individual record that cannot be binned is not.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Tuple, Union

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

PERIOD_COL = "period"


@dataclass(frozen=True)
class Period:
    """Closed integer year range [start, end]."""
    start: int
    end: int

    @property
    def label(self) -> str:
        return f"{self.start}-{self.end}"

    def contains(self, year):
        """True where year falls in the period; works elementwise on arrays."""
        return (year >= self.start) & (year <= self.end)

    def __str__(self) -> str:
        return self.label


PeriodLike = Union[Period, Tuple[int, int], Sequence[int]]


def _as_int(value, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise ValueError(f"Period {what} must be an integer year, got {value!r}")
    return int(value)


def _as_period(item: PeriodLike) -> Period:
    if isinstance(item, Period):
        start, end = item.start, item.end
    else:
        try:
            start, end = item
        except (TypeError, ValueError):
            raise ValueError(f"Period must be a (start, end) pair, got {item!r}") from None
    start = _as_int(start, "start")
    end = _as_int(end, "end")
    if start > end:
        raise ValueError(f"Period start {start} is after its end {end}")
    return Period(start, end)


def validate_periods(periods: Iterable[PeriodLike]) -> List[Period]:
    """
    Normalise and check a period list.

    Accepts Period objects or (start, end) pairs. Raises ValueError when the
    list is absent or empty, when a bound is not an integer, when a period
    ends before it starts, or when periods are unordered or overlap.
    """
    if periods is None:
        raise ValueError("A period list is required")
    if isinstance(periods, (str, bytes)):
        raise ValueError(f"Period list must be a sequence of (start, end) pairs, got {periods!r}")

    out = [_as_period(p) for p in periods]
    if not out:
        raise ValueError("Period list is empty")

    for prev, cur in zip(out, out[1:]):
        if cur.start <= prev.end:
            raise ValueError(
                f"Periods must be ordered and non-overlapping: {prev.label} then {cur.label}"
            )
    return out


def make_periods(start: int, end: int, width: int = 10) -> List[Period]:
    """
    Build consecutive periods of `width` years covering [start, end].

    make_periods(1900, 2019, 10) gives the twelve decades 1900-1909 ... 2010-2019.
    The last period is truncated at `end` if the range is not a multiple of width.
    """
    if width < 1:
        raise ValueError(f"Period width must be at least 1, got {width}")
    if start > end:
        raise ValueError(f"Start year {start} is after end year {end}")
    return [Period(y, min(y + width - 1, end)) for y in range(start, end + 1, width)]


def period_labels(periods: Iterable[PeriodLike]) -> List[str]:
    return [p.label for p in validate_periods(periods)]


def assign_periods(years: pd.Series, periods: Iterable[PeriodLike]) -> pd.Series:
    """
    Map each year to the label of the period containing it.

    Returns an ordered categorical Series aligned with `years`; years that are
    missing or fall in no period are NaN.
    """
    periods = validate_periods(periods)
    labels = [p.label for p in periods]

    values = pd.to_numeric(years, errors="coerce").astype("Float64").to_numpy(
        dtype=float, na_value=np.nan
    )
    codes = np.full(len(values), -1, dtype=int)
    for i, p in enumerate(periods):
        codes[p.contains(values)] = i

    cat = pd.Categorical.from_codes(codes, categories=labels, ordered=True)
    return pd.Series(cat, index=years.index, name=PERIOD_COL)


@dataclass
class BinnedRecords:
    """Records with their period, plus the counts of records left unassigned."""
    data: pd.DataFrame
    periods: List[Period]
    n_missing_year: int
    n_outside_periods: int

    @property
    def assigned(self) -> pd.DataFrame:
        return self.data[self.data[PERIOD_COL].notna()]

    @property
    def n_assigned(self) -> int:
        return int(self.data[PERIOD_COL].notna().sum())

    @property
    def n_unassigned(self) -> int:
        return self.n_missing_year + self.n_outside_periods


def bin_records(df: pd.DataFrame, periods: Iterable[PeriodLike], year_col: str = "year") -> BinnedRecords:
    """
    Attach a `period` column to a copy of `df`.

    The input frame is never modified. Counts of records with a missing year
    and with a year outside every period are returned alongside, so that
    n_assigned + n_unassigned == len(df).
    """
    periods = validate_periods(periods)
    if year_col not in df.columns:
        raise KeyError(f"Year column '{year_col}' not found. Available={list(df.columns)}")

    out = df.copy()
    out[PERIOD_COL] = assign_periods(out[year_col], periods)

    years = pd.to_numeric(out[year_col], errors="coerce")
    n_missing_year = int(years.isna().sum())
    n_outside = int((years.notna() & out[PERIOD_COL].isna()).sum())

    if n_missing_year:
        logger.warning("%d records have no year and were not assigned to a period", n_missing_year)
    if n_outside:
        logger.warning("%d records fall outside every period (%s to %s)",
                       n_outside, periods[0].label, periods[-1].label)

    return BinnedRecords(data=out, periods=periods,
                         n_missing_year=n_missing_year, n_outside_periods=n_outside)
