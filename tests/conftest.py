"""Shared pytest fixtures for the occbias tests.

Synthetic occurrence tables are built in SWEREF99 TM (EPSG:3006) metres and
converted to WGS84 longitude/latitude, so that tests can place records in
known grid cells of a 100 km x 100 km square mask.
"""

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt  # noqa: E402
import numpy as np  # noqa: E402
import pandas as pd  # noqa: E402
import pytest  # noqa: E402
from pyproj import Transformer  # noqa: E402
from shapely.geometry import box  # noqa: E402

from occbias import config  # noqa: E402

# Square region of interest: 10 x 10 cells at 10 km
WEST, SOUTH, EAST, NORTH = 500_000, 6_500_000, 600_000, 6_600_000

_TO_LONLAT = Transformer.from_crs(config.ANALYSIS_CRS, config.SOURCE_CRS, always_xy=True)


def to_lonlat(x, y):
    """SWEREF99 TM metres -> (lon, lat) arrays."""
    lon, lat = _TO_LONLAT.transform(np.asarray(x, dtype=float), np.asarray(y, dtype=float))
    return np.asarray(lon), np.asarray(lat)


def cell_centre(row, col, res=10_000):
    """Centre of grid cell (row, col) of the square mask, rows from the north."""
    return WEST + (col + 0.5) * res, NORTH - (row + 0.5) * res


def make_records(rows):
    """
    Occurrence table from dicts with keys year, species, family and
    optionally x/y (EPSG:3006 metres) or lon/lat. Missing keys give
    missing values; every required column is present.
    """
    out = []
    for r in rows:
        lon, lat = r.get("lon", np.nan), r.get("lat", np.nan)
        if "x" in r and "y" in r:
            lon, lat = to_lonlat([r["x"]], [r["y"]])
            lon, lat = float(lon[0]), float(lat[0])
        species = r.get("species")
        out.append({
            config.COL_SPECIES: species,
            config.COL_GENUS: r.get("genus", species.split()[0] if species and species.strip() else None),
            config.COL_FAMILY: r.get("family", "Cerambycidae"),
            config.COL_LON: lon,
            config.COL_LAT: lat,
            config.COL_YEAR: r.get("year"),
            config.COL_EVENT_DATE: r.get("eventDate"),
            config.COL_UNCERTAINTY: r.get("uncertainty", np.nan),
            config.COL_DATASET: r.get("dataset", "ds-1"),
            config.COL_COUNTRY: "SE",
            config.COL_ISSUE: frozenset(),
        })
    df = pd.DataFrame(out)
    df[config.COL_YEAR] = pd.array(df[config.COL_YEAR].tolist(), dtype="Int64")
    return df


@pytest.fixture
def mask():
    return box(WEST, SOUTH, EAST, NORTH)


@pytest.fixture
def scenario_periods():
    return [(1900, 1909), (1990, 1999), (2000, 2009)]


@pytest.fixture
def scenario_records():
    """Five records with years 1905, 1915, 1995, 1995, 2005."""
    x, y = cell_centre(4, 4)
    return make_records([
        {"year": 1905, "species": "Rhagium mordax", "x": x, "y": y},
        {"year": 1915, "species": "Rhagium mordax", "x": x, "y": y},
        {"year": 1995, "species": "Rhagium mordax", "x": x, "y": y},
        {"year": 1995, "species": "Leptura quadrifasciata", "x": x, "y": y},
        {"year": 2005, "species": "Monochamus sutor", "x": x, "y": y},
    ])


@pytest.fixture(autouse=True)
def close_figures():
    yield
    plt.close("all")
