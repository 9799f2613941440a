"""
Spatial assessors
=================

Spatial coverage
----------------
Records are gridded at a chosen resolution inside the region mask, per
period and identifier. Three outputs are available:
- density:  number of records per cell in each period (optionally log10(n + 1)),
- nPeriods: number of periods in which each cell was sampled,
- overlap:  cells sampled in at least `min_periods` periods (1) or not (0).

Spatial bias
------------
The nearest neighbour index (NNI) is the observed mean distance from each
point to its nearest neighbour divided by the distance expected under
complete spatial randomness, 0.5 * sqrt(A / n) for n points in area A.
NNI < 1 indicates clustering. For each period the NNI of the records is
compared with the NNI of the same number of points drawn uniformly at
random inside the mask; uncertainty on both comes from repeated sampling.

Records without coordinates, or outside the mask, are excluded from both
assessors and counted.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

import numpy as np
import pandas as pd
from scipy.spatial import cKDTree

from .. import config
from ..geo import Grid, project_points, within_mask
from ..periods import PERIOD_COL
from ..plotting import plot_interval_trend, plot_rasters
from .base import IDENTIFIER_COL, AssessmentResult, Prepared, finish_table, full_index, prepare_records

logger = logging.getLogger(__name__)

COVERAGE_OUTPUTS = ("density", "nPeriods", "overlap")


def _mask_records(prepared: Prepared, mask, crs: str, name: str):
    """Project the prepared records and drop those outside the mask."""
    data = prepared.data
    x, y = project_points(data, crs)
    inside = within_mask(x, y, mask)
    n_out = int((~inside).sum())
    prepared.excluded["outside_mask"] = n_out
    if n_out:
        logger.warning("%s: %d records excluded (outside_mask)", name, n_out)
    data = data.loc[inside].copy()
    data["_x"] = x[inside]
    data["_y"] = y[inside]
    prepared.data = data
    return prepared


# ----------------------------------------------------------------------
# Spatial coverage
# ----------------------------------------------------------------------

@dataclass
class SpatialCoverageResult(AssessmentResult):
    """AssessmentResult plus the rasters: identifier -> {layer name -> array}."""
    rasters: Dict[str, Dict[str, np.ndarray]] = field(default_factory=dict)
    grid: Optional[Grid] = None


def assess_spatial_coverage(df, periods: Iterable, identifier: str, mask, res: float = config.GRID_RES,
                            log_count: bool = False, output: str = "density",
                            min_periods: Optional[int] = None,
                            crs: str = config.ANALYSIS_CRS) -> SpatialCoverageResult:
    """
    Grid the records inside `mask` (a geometry in `crs`) per period.

    The table reports, per period and identifier, the records used, the
    number of cells sampled and the proportion of mask cells sampled. The
    rasters hold one density layer per period plus "nPeriods" and
    "overlap" layers for every identifier; `output` selects what the chart
    shows. Cells outside the mask are NaN.
    """
    if output not in COVERAGE_OUTPUTS:
        raise ValueError(f"output must be one of {COVERAGE_OUTPUTS}, got {output!r}")

    prepared = prepare_records(df, periods, identifier, required=["coordinates"], name="spatial coverage")
    n_periods = len(prepared.periods)
    if min_periods is None:
        min_periods = n_periods
    if not 1 <= min_periods <= n_periods:
        raise ValueError(f"min_periods must be between 1 and {n_periods}, got {min_periods}")

    prepared = _mask_records(prepared, mask, crs, "spatial coverage")
    grid = Grid.from_mask(mask, res)
    n_mask_cells = int(grid.inside.sum())
    data = prepared.data

    rasters: Dict[str, Dict[str, np.ndarray]] = {}
    rows = []
    for ident in prepared.identifiers:
        layers: Dict[str, np.ndarray] = {}
        sampled_periods = np.zeros(grid.shape, dtype=float)
        sub = data[data[IDENTIFIER_COL] == ident]
        for label in prepared.labels:
            psub = sub[sub[PERIOD_COL] == label]
            counts = grid.count(psub["_x"].to_numpy(), psub["_y"].to_numpy())
            sampled = np.nan_to_num(counts) > 0
            sampled_periods += sampled
            rows.append({
                PERIOD_COL: label,
                IDENTIFIER_COL: ident,
                "n_records": len(psub),
                "n_cells_sampled": int(sampled.sum()),
                "prop_cells_sampled": sampled.sum() / n_mask_cells if n_mask_cells else np.nan,
            })
            if log_count:
                # unsampled cells stay at 0, single records map to log10(2)
                counts = np.log10(counts + 1)
            layers[label] = counts

        sampled_periods[~grid.inside] = np.nan
        layers["nPeriods"] = sampled_periods
        overlap = (sampled_periods >= min_periods).astype(float)
        overlap[~grid.inside] = np.nan
        layers["overlap"] = overlap
        rasters[ident] = layers

    table = pd.DataFrame(rows, columns=[PERIOD_COL, IDENTIFIER_COL, "n_records",
                                        "n_cells_sampled", "prop_cells_sampled"])
    table = table.set_index([PERIOD_COL, IDENTIFIER_COL]).reindex(full_index(prepared))
    result = finish_table(table, prepared)

    if output == "density":
        shown = {f"{ident} {label}": layers[label] for ident, layers in rasters.items() for label in prepared.labels}
        cbar = "log10(records + 1)" if log_count else "Records"
    elif output == "nPeriods":
        shown = {ident: layers["nPeriods"] for ident, layers in rasters.items()}
        cbar = "Periods sampled"
    else:
        shown = {ident: layers["overlap"] for ident, layers in rasters.items()}
        cbar = f"Sampled in >= {min_periods} periods"
    figure = plot_rasters(shown, grid.extent, mask=mask, title=f"Spatial coverage ({output})", cbar_label=cbar)

    return SpatialCoverageResult(name="spatial_coverage", data=result, figure=figure,
                                 excluded=prepared.excluded, n_used=len(data),
                                 rasters=rasters, grid=grid)


# ----------------------------------------------------------------------
# Spatial bias (nearest neighbour index)
# ----------------------------------------------------------------------

def nearest_neighbour_index(x: np.ndarray, y: np.ndarray, area: float) -> float:
    """
    Clark-Evans nearest neighbour index of the points in an area.

    Returns NaN for fewer than two points.
    """
    pts = np.column_stack([np.asarray(x, dtype=float), np.asarray(y, dtype=float)])
    n = len(pts)
    if n < 2 or area <= 0:
        return np.nan
    dist, _ = cKDTree(pts).query(pts, k=2)
    observed = dist[:, 1].mean()
    expected = 0.5 * np.sqrt(area / n)
    return float(observed / expected)


def random_points_in_mask(mask, n: int, rng: np.random.Generator, batch: int = 1000):
    """Draw n points uniformly inside the mask by rejection sampling on its bounds."""
    if mask.area <= 0:
        raise ValueError("Cannot sample random points in a mask with zero area")
    minx, miny, maxx, maxy = mask.bounds
    xs, ys = [], []
    found = 0
    while found < n:
        size = max(batch, 2 * (n - found))
        cx = rng.uniform(minx, maxx, size)
        cy = rng.uniform(miny, maxy, size)
        ok = within_mask(cx, cy, mask)
        xs.append(cx[ok])
        ys.append(cy[ok])
        found += int(ok.sum())
    return np.concatenate(xs)[:n], np.concatenate(ys)[:n]


def _degrade(x, y, grid: Grid):
    """Collapse points to the unique centres of the grid cells they fall in."""
    rows, cols = grid.cell_index(x, y)
    on = rows >= 0
    cells = np.unique(np.column_stack([rows[on], cols[on]]), axis=0)
    if len(cells) == 0:
        return np.array([]), np.array([])
    return grid.cell_centres(cells[:, 0], cells[:, 1])


def _random_nni(mask, n: int, area: float, n_samples: int, rng, grid: Optional[Grid]):
    values = []
    for _ in range(n_samples):
        if grid is not None:
            rows, cols = np.nonzero(grid.inside)
            pick = rng.choice(len(rows), size=min(n, len(rows)), replace=False)
            rx, ry = grid.cell_centres(rows[pick], cols[pick])
        else:
            rx, ry = random_points_in_mask(mask, n, rng)
        values.append(nearest_neighbour_index(rx, ry, area))
    return np.array(values, dtype=float)


def _bootstrap_nni(x, y, area: float, n_samples: int, rng):
    n = len(x)
    values = []
    for _ in range(n_samples):
        idx = np.unique(rng.integers(0, n, size=n))
        values.append(nearest_neighbour_index(x[idx], y[idx], area))
    return np.array(values, dtype=float)


def _quantiles(values: np.ndarray):
    values = values[np.isfinite(values)]
    if values.size == 0:
        return np.nan, np.nan, np.nan
    return float(values.mean()), float(np.quantile(values, 0.05)), float(np.quantile(values, 0.95))


def assess_spatial_bias(df, periods: Iterable, identifier: str, mask, n_samples: int = config.N_SAMPLES,
                        degrade: bool = True, res: Optional[float] = config.GRID_RES,
                        seed: Optional[int] = config.RANDOM_SEED,
                        crs: str = config.ANALYSIS_CRS) -> AssessmentResult:
    """
    Nearest neighbour index of the records per period and identifier,
    against random sampling within the mask.

    nni is computed on all points; nni_lower/nni_upper are the 5th and 95th
    percentiles over n_samples bootstrap resamples (duplicates dropped).
    random_nni is the mean over n_samples sets of random points of the same
    size, with its own 5th/95th percentiles. With degrade=True records (and
    random points) are first collapsed to res x res grid cell centres, so
    repeated records from one site do not dominate.
    """
    if n_samples < 1:
        raise ValueError(f"n_samples must be at least 1, got {n_samples}")
    if degrade and (res is None or res <= 0):
        raise ValueError("degrade=True requires a positive grid resolution")
    if mask.area <= 0:
        raise ValueError("Spatial bias needs a polygon mask with positive area")

    prepared = prepare_records(df, periods, identifier, required=["coordinates"], name="spatial bias")
    prepared = _mask_records(prepared, mask, crs, "spatial bias")
    data = prepared.data

    rng = np.random.default_rng(seed)
    area = float(mask.area)
    grid = Grid.from_mask(mask, res) if degrade else None

    rows = []
    for ident in prepared.identifiers:
        sub = data[data[IDENTIFIER_COL] == ident]
        for label in prepared.labels:
            psub = sub[sub[PERIOD_COL] == label]
            x, y = psub["_x"].to_numpy(), psub["_y"].to_numpy()
            if grid is not None:
                x, y = _degrade(x, y, grid)
            n = len(x)
            row = {PERIOD_COL: label, IDENTIFIER_COL: ident, "n_points": n}
            if n < 2:
                logger.info("spatial bias: %s %s has %d points; NNI not computed", ident, label, n)
                row.update(nni=np.nan, nni_lower=np.nan, nni_upper=np.nan,
                           random_nni=np.nan, random_lower=np.nan, random_upper=np.nan)
            else:
                _, lower, upper = _quantiles(_bootstrap_nni(x, y, area, n_samples, rng))
                r_mean, r_lower, r_upper = _quantiles(_random_nni(mask, n, area, n_samples, rng, grid))
                row.update(nni=nearest_neighbour_index(x, y, area), nni_lower=lower, nni_upper=upper,
                           random_nni=r_mean, random_lower=r_lower, random_upper=r_upper)
            rows.append(row)

    columns = [PERIOD_COL, IDENTIFIER_COL, "n_points", "nni", "nni_lower", "nni_upper",
               "random_nni", "random_lower", "random_upper"]
    table = pd.DataFrame(rows, columns=columns).set_index([PERIOD_COL, IDENTIFIER_COL])
    table = table.reindex(full_index(prepared))
    result = finish_table(table, prepared)
    figure = plot_interval_trend(result, "Spatial bias: nearest neighbour index")
    return AssessmentResult(name="spatial_bias", data=result, figure=figure,
                            excluded=prepared.excluded, n_used=len(data))
