"""
Module: geo.py
Project: Biodiversity Meets Data (BMD)
Work Package: WP3 - Data harmonisation in Space-Time-Taxonomy, Data gaps and biases
Task: T3.3 - Data gap and bias surfaces

Description:
Geographic helpers shared by the spatial assessors:
- loading the region-of-interest boundary (national border) and
  reprojecting it to the analysis CRS,
- projecting occurrence coordinates (WGS84) to the analysis CRS,
- testing points against the mask,
- a regular analysis grid aligned to the mask.

Notes:
GBIF coordinates are stored in WGS84 (EPSG:4326). All distances, areas
and grid cells are computed in a projected CRS (SWEREF99 TM by default),
so the grid resolution is given in metres.
"""

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import geopandas as gpd
import numpy as np
import pandas as pd
import shapely
from rasterio.features import geometry_mask
from rasterio.transform import from_origin

from . import config

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Boundary mask
# ----------------------------------------------------------------------

def load_boundary(path, crs: str = config.ANALYSIS_CRS, name_col: Optional[str] = None,
                  name: Optional[str] = None):
    """
    Load a boundary polygon layer and return it as one geometry in `crs`.

    When name_col and name are given, only matching features are kept
    (e.g. ISO_A2 == "SE" in a world countries layer).
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Boundary file not found: {path}")

    gdf = gpd.read_file(path)
    logger.info("Loaded boundary layer %s: %d features, CRS %s", path.name, len(gdf), gdf.crs)

    if name_col is not None and name is not None:
        if name_col not in gdf.columns:
            raise KeyError(f"Boundary column '{name_col}' not found. Available={list(gdf.columns)}")
        gdf = gdf[gdf[name_col] == name]
        if gdf.empty:
            raise ValueError(f"No boundary feature with {name_col} == {name!r} in {path.name}")

    return boundary_geometry(gdf, crs)


def boundary_geometry(gdf: gpd.GeoDataFrame, crs: str = config.ANALYSIS_CRS):
    """Reproject a boundary GeoDataFrame to `crs` and dissolve it to one geometry."""
    if gdf.crs is None:
        raise ValueError("Boundary layer has no CRS defined.")
    if gdf.crs != crs:
        logger.info("Reprojecting boundary from %s to %s", gdf.crs, crs)
        gdf = gdf.to_crs(crs)
    geom = gdf.geometry.union_all()
    if geom.is_empty:
        raise ValueError("Boundary geometry is empty.")
    return geom


# ----------------------------------------------------------------------
# Points
# ----------------------------------------------------------------------

def project_points(df: pd.DataFrame, crs: str = config.ANALYSIS_CRS,
                   lon_col: str = config.COL_LON, lat_col: str = config.COL_LAT,
                   source_crs: str = config.SOURCE_CRS) -> Tuple[np.ndarray, np.ndarray]:
    """
    Return x, y arrays of the records' coordinates in `crs`.

    Rows with missing coordinates give NaN.
    """
    lon = pd.to_numeric(df[lon_col], errors="coerce").to_numpy(dtype=float, na_value=np.nan)
    lat = pd.to_numeric(df[lat_col], errors="coerce").to_numpy(dtype=float, na_value=np.nan)
    ok = ~(np.isnan(lon) | np.isnan(lat))

    x = np.full(len(df), np.nan)
    y = np.full(len(df), np.nan)
    if ok.any():
        pts = gpd.GeoSeries(gpd.points_from_xy(lon[ok], lat[ok]), crs=source_crs)
        if pts.crs != crs:
            pts = pts.to_crs(crs)
        x[ok] = pts.x.to_numpy()
        y[ok] = pts.y.to_numpy()
    return x, y


def within_mask(x: np.ndarray, y: np.ndarray, mask) -> np.ndarray:
    """Boolean array: which (x, y) points lie inside or on the mask geometry."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    ok = ~(np.isnan(x) | np.isnan(y))
    out = np.zeros(len(x), dtype=bool)
    if ok.any():
        shapely.prepare(mask)
        out[ok] = shapely.intersects_xy(mask, x[ok], y[ok])
    return out


# ----------------------------------------------------------------------
# Analysis grid
# ----------------------------------------------------------------------

@dataclass
class Grid:
    """
    Regular square grid in a projected CRS.

    Rows run north to south, columns west to east, as in a raster. `inside`
    flags the cells that touch the mask geometry.
    """
    west: float
    north: float
    res: float
    width: int
    height: int
    inside: np.ndarray

    @classmethod
    def from_mask(cls, mask, res: float) -> "Grid":
        if res is None or res <= 0:
            raise ValueError(f"Grid resolution must be positive, got {res}")
        minx, miny, maxx, maxy = mask.bounds
        west = math.floor(minx / res) * res
        south = math.floor(miny / res) * res
        east = math.ceil(maxx / res) * res
        north = math.ceil(maxy / res) * res
        width = max(int(round((east - west) / res)), 1)
        height = max(int(round((north - south) / res)), 1)

        transform = from_origin(west, north, res, res)
        inside = geometry_mask([mask], out_shape=(height, width), transform=transform,
                               all_touched=True, invert=True)
        logger.info("Analysis grid %d x %d cells at %s m (%d cells inside mask)",
                    width, height, res, int(inside.sum()))
        return cls(west=west, north=north, res=float(res), width=width, height=height, inside=inside)

    @property
    def shape(self) -> Tuple[int, int]:
        return self.height, self.width

    @property
    def extent(self) -> Tuple[float, float, float, float]:
        """(left, right, bottom, top), as expected by matplotlib imshow."""
        return (self.west, self.west + self.width * self.res,
                self.north - self.height * self.res, self.north)

    def cell_index(self, x: np.ndarray, y: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        """
        Row and column of each point. Points on the outer east/south edge
        are clipped into the last cell; points off the grid get -1.
        """
        x = np.asarray(x, dtype=float)
        y = np.asarray(y, dtype=float)
        col = np.floor((x - self.west) / self.res)
        row = np.floor((self.north - y) / self.res)
        col = np.where(col == self.width, self.width - 1, col)
        row = np.where(row == self.height, self.height - 1, row)
        off = np.isnan(col) | np.isnan(row) | (col < 0) | (col >= self.width) | (row < 0) | (row >= self.height)
        col = np.where(off, -1, col).astype(int)
        row = np.where(off, -1, row).astype(int)
        return row, col

    def cell_centres(self, rows: np.ndarray, cols: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        x = self.west + (np.asarray(cols) + 0.5) * self.res
        y = self.north - (np.asarray(rows) + 0.5) * self.res
        return x, y

    def count(self, x: np.ndarray, y: np.ndarray) -> np.ndarray:
        """Number of points per cell; NaN outside the mask."""
        row, col = self.cell_index(x, y)
        on = row >= 0
        counts = np.zeros(self.shape, dtype=float)
        np.add.at(counts, (row[on], col[on]), 1)
        counts[~self.inside] = np.nan
        return counts


def cell_ids(x: np.ndarray, y: np.ndarray, res: float) -> np.ndarray:
    """
    Identifier of the res x res cell containing each point, independent of
    any mask (cells aligned to multiples of res). NaN coordinates give None.
    """
    if res is None or res <= 0:
        raise ValueError(f"Grid resolution must be positive, got {res}")
    cx = np.floor(np.asarray(x, dtype=float) / res)
    cy = np.floor(np.asarray(y, dtype=float) / res)
    return np.array([None if (np.isnan(a) or np.isnan(b)) else f"{int(a)}_{int(b)}"
                     for a, b in zip(cx, cy)], dtype=object)
