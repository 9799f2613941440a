"""
Environmental bias
==================

Compares the environmental conditions at the recorded sites with the
conditions available across the region. A principal component analysis is
fitted on background covariates (random cells of the region) and the
records of each period are projected into the same component space. If the
records of a period occupy only part of the background cloud, that
period's sampling is environmentally biased.

Covariates come from a gridded environmental stack (e.g. WorldClim
bioclimatic variables, one band per variable). extract_environment and
sample_background read it with rasterio; assess_environmental_bias itself
only needs the covariate tables.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional, Sequence

import numpy as np
import pandas as pd
import rasterio
from rasterio.features import geometry_mask
from shapely.ops import transform as shapely_transform
from pyproj import Transformer
from sklearn.decomposition import PCA
from sklearn.preprocessing import StandardScaler

from .. import config
from ..geo import project_points
from ..periods import PERIOD_COL
from ..plotting import plot_environment
from .base import IDENTIFIER_COL, AssessmentResult, finish_table, full_index, prepare_records

logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# Covariate extraction
# ----------------------------------------------------------------------

def _band_names(src, names: Optional[Sequence[str]]):
    if names is not None:
        if len(names) != src.count:
            raise ValueError(f"Got {len(names)} covariate names for {src.count} raster bands")
        return list(names)
    return [d if d else f"band{i + 1}" for i, d in enumerate(src.descriptions)]


def extract_environment(df: pd.DataFrame, raster_path, names: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """
    Covariate values at each record's coordinates, one column per band.

    The result is row-aligned with df. Records without coordinates, off the
    raster, or on nodata cells get missing values.
    """
    raster_path = Path(raster_path)
    if not raster_path.exists():
        raise FileNotFoundError(f"Environmental raster not found: {raster_path}")

    with rasterio.open(raster_path) as src:
        columns = _band_names(src, names)
        x, y = project_points(df, src.crs.to_string())
        values = np.full((len(df), src.count), np.nan)
        ok = ~(np.isnan(x) | np.isnan(y))
        left, bottom, right, top = src.bounds
        ok &= (x >= left) & (x <= right) & (y >= bottom) & (y <= top)
        if ok.any():
            sampled = np.ma.stack(list(src.sample(zip(x[ok], y[ok]), masked=True)))
            values[ok] = sampled.astype(float).filled(np.nan)

    logger.info("Extracted %d covariates for %d records (%d without values)",
                len(columns), len(df), int(np.isnan(values).any(axis=1).sum()))
    return pd.DataFrame(values, columns=columns, index=df.index)


def sample_background(raster_path, mask=None, n: int = config.N_BACKGROUND,
                      seed: Optional[int] = config.RANDOM_SEED, mask_crs: str = config.ANALYSIS_CRS,
                      names: Optional[Sequence[str]] = None) -> pd.DataFrame:
    """
    Covariate values of up to n random raster cells with data in every band,
    restricted to the mask when given (mask geometry expressed in mask_crs).
    """
    raster_path = Path(raster_path)
    if not raster_path.exists():
        raise FileNotFoundError(f"Environmental raster not found: {raster_path}")

    with rasterio.open(raster_path) as src:
        columns = _band_names(src, names)
        stack = src.read(masked=True).astype(float)
        valid = ~np.ma.getmaskarray(stack).any(axis=0)
        if mask is not None:
            if src.crs is not None and src.crs != mask_crs:
                to_raster = Transformer.from_crs(mask_crs, src.crs, always_xy=True)
                mask = shapely_transform(to_raster.transform, mask)
            valid &= geometry_mask([mask], out_shape=valid.shape, transform=src.transform, invert=True)

    rows, cols = np.nonzero(valid)
    if len(rows) == 0:
        raise ValueError("No raster cells with covariate values inside the mask")
    rng = np.random.default_rng(seed)
    pick = rng.choice(len(rows), size=min(n, len(rows)), replace=False)
    values = stack.filled(np.nan)[:, rows[pick], cols[pick]].T
    logger.info("Sampled %d background cells from %d available", len(pick), len(rows))
    return pd.DataFrame(values, columns=columns)


# ----------------------------------------------------------------------
# Assessment
# ----------------------------------------------------------------------

@dataclass
class EnvironmentalBiasResult(AssessmentResult):
    """AssessmentResult plus background PC scores and explained variance."""
    background_scores: Optional[pd.DataFrame] = None
    explained_variance: np.ndarray = field(default_factory=lambda: np.array([]))


def assess_environmental_bias(df, periods: Iterable, identifier: str, env: pd.DataFrame,
                              background: pd.DataFrame, x_pc: int = 1, y_pc: int = 2,
                              scale: bool = True) -> EnvironmentalBiasResult:
    """
    Project the records' covariates onto principal components of the background.

    env must be row-aligned with df (same index) and have the same columns as
    background. Records with any missing covariate are excluded
    (missing_environment). The table gives, per period and identifier, the
    number of records and the mean and standard deviation of their scores on
    the two chosen components; per-record scores are in `details`.
    """
    columns = list(background.columns)
    if not columns:
        raise ValueError("Background covariate table has no columns")
    missing_cols = [c for c in columns if c not in env.columns]
    if missing_cols:
        raise KeyError(f"Covariates missing from env: {missing_cols}")
    if not env.index.equals(df.index):
        raise ValueError("env must be row-aligned with the occurrence table (same index)")
    bg = background[columns].apply(pd.to_numeric, errors="coerce").dropna()
    if len(bg) < 2:
        raise ValueError("At least two complete background rows are needed for the PCA")
    n_comp = min(len(columns), len(bg))
    if not (1 <= x_pc <= n_comp and 1 <= y_pc <= n_comp) or x_pc == y_pc:
        raise ValueError(f"x_pc and y_pc must be distinct components between 1 and {n_comp}")

    env_cols = [f"_env_{c}" for c in columns]
    merged = df.copy()
    for col, env_col in zip(columns, env_cols):
        merged[env_col] = pd.to_numeric(env[col], errors="coerce").astype(float)

    prepared = prepare_records(merged, periods, identifier, name="environmental bias")
    data = prepared.data
    no_env = data[env_cols].isna().any(axis=1)
    prepared.excluded["missing_environment"] = int(no_env.sum())
    if no_env.any():
        logger.warning("environmental bias: %d records excluded (missing_environment)", int(no_env.sum()))
    data = data[~no_env]

    scaler = StandardScaler(with_std=scale).fit(bg.to_numpy())
    pca = PCA(n_components=n_comp).fit(scaler.transform(bg.to_numpy()))
    x_col, y_col = f"PC{x_pc}", f"PC{y_pc}"

    bg_scores = pca.transform(scaler.transform(bg.to_numpy()))
    background_scores = pd.DataFrame({x_col: bg_scores[:, x_pc - 1], y_col: bg_scores[:, y_pc - 1]})

    if len(data):
        rec_scores = pca.transform(scaler.transform(data[env_cols].to_numpy()))
    else:
        rec_scores = np.empty((0, n_comp))
    scores = pd.DataFrame({
        PERIOD_COL: data[PERIOD_COL].to_numpy(),
        IDENTIFIER_COL: data[IDENTIFIER_COL].to_numpy(),
        x_col: rec_scores[:, x_pc - 1],
        y_col: rec_scores[:, y_pc - 1],
    }, index=data.index)
    scores[PERIOD_COL] = pd.Categorical(scores[PERIOD_COL].astype(str), categories=prepared.labels, ordered=True)

    stats_cols = ["n_records", "mean_pc_x", "mean_pc_y", "sd_pc_x", "sd_pc_y"]
    if scores.empty:
        summary = pd.DataFrame(np.nan, index=full_index(prepared), columns=stats_cols)
    else:
        summary = (scores.groupby([scores[PERIOD_COL].astype(str), IDENTIFIER_COL])
                   .agg(n_records=(x_col, "size"), mean_pc_x=(x_col, "mean"), mean_pc_y=(y_col, "mean"),
                        sd_pc_x=(x_col, "std"), sd_pc_y=(y_col, "std")))
        summary = summary.reindex(full_index(prepared))
    summary["n_records"] = summary["n_records"].fillna(0).astype(int)
    result = finish_table(summary, prepared)

    figure = plot_environment(scores, background_scores, x_col, y_col,
                              explained=pca.explained_variance_ratio_,
                              title="Environmental bias: records over background")
    return EnvironmentalBiasResult(name="environmental_bias", data=result, figure=figure,
                                   excluded=prepared.excluded, n_used=len(data), details=scores,
                                   background_scores=background_scores,
                                   explained_variance=pca.explained_variance_ratio_)
