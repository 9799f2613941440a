"""
Rarity bias
===========

If recording effort is proportional to how widespread a species is, the
number of records per species should be well explained by its range size.
For each period the number of records of every species is regressed on a
range-size proxy, the number of occupied grid cells, and the R² of that
regression is reported. A low R² means some species are recorded more
(or less) often than their range would suggest, i.e. rare or common
species are over- or under-represented.
"""

import logging
from typing import Iterable

import numpy as np
import pandas as pd
from scipy import stats

from .. import config
from ..geo import cell_ids, project_points
from ..periods import PERIOD_COL
from ..plotting import plot_trend
from .base import IDENTIFIER_COL, AssessmentResult, finish_table, full_index, prepare_records

logger = logging.getLogger(__name__)

MIN_SPECIES = 3


def _regress(per_species: pd.DataFrame) -> dict:
    out = {"n_species": len(per_species), "r2": np.nan, "slope": np.nan, "intercept": np.nan}
    if len(per_species) < MIN_SPECIES or per_species["range_size"].nunique() < 2:
        return out
    fit = stats.linregress(per_species["range_size"].astype(float), per_species["n_records"].astype(float))
    out.update(r2=float(fit.rvalue ** 2), slope=float(fit.slope), intercept=float(fit.intercept))
    return out


def assess_rarity_bias(df, periods: Iterable, identifier: str, res: float = config.GRID_RES,
                       prev_per_period: bool = False, crs: str = config.ANALYSIS_CRS,
                       species_col: str = config.COL_SPECIES) -> AssessmentResult:
    """
    Per period and identifier: R² of records-per-species against range size.

    Range size is the number of res x res cells (in the projected `crs`)
    occupied by the species, computed across all periods, or within each
    period when prev_per_period is True. R² is missing when fewer than three
    species are recorded or all species share the same range size.
    """
    prepared = prepare_records(df, periods, identifier, required=[species_col, "coordinates"],
                               name="rarity bias")
    data = prepared.data
    data[species_col] = data[species_col].astype(str).str.strip()
    x, y = project_points(data, crs)
    data["_cell"] = cell_ids(x, y, res)

    if prev_per_period:
        keys = [PERIOD_COL, IDENTIFIER_COL, species_col]
    else:
        keys = [IDENTIFIER_COL, species_col]
    range_size = (data.groupby(keys, observed=True)["_cell"].nunique().rename("range_size"))

    rows = []
    species_tables = []
    for (label, ident), sub in data.groupby([PERIOD_COL, IDENTIFIER_COL], observed=True):
        per_species = sub.groupby(species_col).size().rename("n_records").to_frame()
        if prev_per_period:
            per_species["range_size"] = range_size.loc[(label, ident)].reindex(per_species.index)
        else:
            per_species["range_size"] = range_size.loc[ident].reindex(per_species.index)
        species_tables.append(per_species.reset_index().assign(**{PERIOD_COL: str(label), IDENTIFIER_COL: ident}))
        rows.append({PERIOD_COL: str(label), IDENTIFIER_COL: ident, **_regress(per_species)})

    table = pd.DataFrame(rows, columns=[PERIOD_COL, IDENTIFIER_COL, "n_species", "r2", "slope", "intercept"])
    table = table.set_index([PERIOD_COL, IDENTIFIER_COL]).reindex(full_index(prepared))
    table["n_species"] = table["n_species"].fillna(0).astype(int)

    result = finish_table(table, prepared)
    figure = plot_trend(result, "r2", "R² (records ~ range size)", "Rarity bias per period")
    species = (pd.concat(species_tables, ignore_index=True) if species_tables
               else pd.DataFrame(columns=[species_col, "n_records", "range_size", PERIOD_COL, IDENTIFIER_COL]))
    return AssessmentResult(name="rarity_bias", data=result, figure=figure,
                            excluded=prepared.excluded, n_used=len(data), details=species)
