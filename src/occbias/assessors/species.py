"""
Species-based assessors: number of species recorded per period, and the
taxonomic resolution of the records (share identified to species level).

A blank species name counts as missing. Species names are compared as
given; no synonymy resolution is attempted, so taxonomic concept drift
between periods or source datasets shows up in these numbers.
"""

from typing import Iterable

import numpy as np

from .. import config
from ..plotting import plot_trend
from .base import AssessmentResult, finish_table, group_counts, is_missing, prepare_records


def assess_species_number(df, periods: Iterable, identifier: str,
                          species_col: str = config.COL_SPECIES) -> AssessmentResult:
    """
    Number of distinct species per period and identifier.

    Records without a species name are excluded and counted
    (missing_species); empty periods report 0 species.
    """
    prepared = prepare_records(df, periods, identifier, required=[species_col], name="species number")
    prepared.data[species_col] = prepared.data[species_col].astype(str).str.strip()

    table = group_counts(prepared, column=species_col, how="nunique").rename("n_species").to_frame()
    data = finish_table(table, prepared)
    figure = plot_trend(data, "n_species", "Number of species", "Number of species recorded per period")
    return AssessmentResult(name="species_number", data=data, figure=figure,
                            excluded=prepared.excluded, n_used=len(prepared.data))


def assess_species_id(df, periods: Iterable, identifier: str, type: str = "proportion",
                      species_col: str = config.COL_SPECIES) -> AssessmentResult:
    """
    Taxonomic resolution: records identified to species level per period.

    Records without a species name are kept as unidentified. The table
    always carries n_records, n_identified and prop_identified (missing for
    periods without records); `type` ("proportion" or "count") selects what
    the chart shows.
    """
    if type not in ("proportion", "count"):
        raise ValueError(f"type must be 'proportion' or 'count', got {type!r}")
    if species_col not in df.columns:
        raise KeyError(f"Species column '{species_col}' not found. Available={list(df.columns)}")

    prepared = prepare_records(df, periods, identifier, name="species identification")
    prepared.data["_identified"] = (~is_missing(prepared.data[species_col])).astype(int)

    table = group_counts(prepared).rename("n_records").to_frame()
    table["n_identified"] = group_counts(prepared, column="_identified", how="sum")
    table["prop_identified"] = table["n_identified"] / table["n_records"].where(table["n_records"] > 0, np.nan)

    data = finish_table(table, prepared)
    if type == "proportion":
        figure = plot_trend(data, "prop_identified", "Proportion identified to species",
                            "Proportion of records identified to species level")
    else:
        figure = plot_trend(data, "n_identified", "Records identified to species",
                            "Number of records identified to species level")
    return AssessmentResult(name="species_id", data=data, figure=figure,
                            excluded=prepared.excluded, n_used=len(prepared.data))
