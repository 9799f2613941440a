"""
Charts for the assessors.

Each function returns a matplotlib Figure and leaves saving (and closing)
to the caller, so the same figure can go into the report or be shown
interactively.
"""

from typing import Dict, Optional

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from .config import IDENTIFIER_COL
from .periods import PERIOD_COL


def _period_axis(ax, labels):
    ax.set_xticks(range(len(labels)))
    ax.set_xticklabels(labels, rotation=45, ha="right")
    ax.set_xlabel("Period")


def plot_trend(data: pd.DataFrame, value_col: str, ylabel: str, title: str):
    """One line per identifier across the ordered periods."""
    fig, ax = plt.subplots(figsize=(9, 5))
    labels = [str(p) for p in data[PERIOD_COL].cat.categories] if hasattr(data[PERIOD_COL], "cat") \
        else list(dict.fromkeys(data[PERIOD_COL].astype(str)))
    pos = {label: i for i, label in enumerate(labels)}

    for ident, sub in data.groupby(IDENTIFIER_COL, sort=True):
        x = [pos[str(p)] for p in sub[PERIOD_COL]]
        ax.plot(x, sub[value_col].astype(float), marker="o", label=str(ident))

    _period_axis(ax, labels)
    ax.set_ylabel(ylabel)
    ax.set_title(title, fontsize=13)
    if data[IDENTIFIER_COL].nunique() > 0:
        ax.legend(title="Group", fontsize=8)
    fig.tight_layout()
    return fig


def plot_interval_trend(data: pd.DataFrame, title: str):
    """Nearest-neighbour index of the data against the random-sampling reference."""
    fig, ax = plt.subplots(figsize=(9, 5))
    labels = [str(p) for p in data[PERIOD_COL].cat.categories]
    pos = {label: i for i, label in enumerate(labels)}

    for ident, sub in data.groupby(IDENTIFIER_COL, sort=True):
        x = np.array([pos[str(p)] for p in sub[PERIOD_COL]])
        ax.plot(x, sub["nni"].astype(float), marker="o", label=f"{ident}")
        ax.fill_between(x, sub["nni_lower"].astype(float), sub["nni_upper"].astype(float), alpha=0.25)

    ref = data.groupby(PERIOD_COL, observed=False)[["random_nni", "random_lower", "random_upper"]].mean()
    x = np.array([pos[str(p)] for p in ref.index])
    ax.plot(x, ref["random_nni"], color="grey", linestyle="--", label="Random sampling")
    ax.fill_between(x, ref["random_lower"], ref["random_upper"], color="grey", alpha=0.2)

    _period_axis(ax, labels)
    ax.set_ylabel("Nearest neighbour index")
    ax.set_title(title, fontsize=13)
    ax.legend(fontsize=8)
    fig.tight_layout()
    return fig


def plot_rasters(rasters: Dict[str, np.ndarray], extent, mask=None, title: str = "",
                 cbar_label: str = "", ncols: int = 4):
    """Small multiples of grid rasters (NaN cells are left blank)."""
    n = max(len(rasters), 1)
    ncols = min(ncols, n)
    nrows = int(np.ceil(n / ncols))
    fig, axes = plt.subplots(nrows, ncols, figsize=(3.2 * ncols, 4.2 * nrows), squeeze=False)

    finite = [r[np.isfinite(r)] for r in rasters.values()]
    finite = [f for f in finite if f.size]
    vmax = max(float(f.max()) for f in finite) if finite else 1.0
    vmin = min(float(f.min()) for f in finite) if finite else 0.0

    image = None
    for ax, (name, raster) in zip(axes.flat, rasters.items()):
        image = ax.imshow(raster, extent=extent, vmin=vmin, vmax=vmax, cmap="viridis",
                          interpolation="nearest")
        if mask is not None:
            xs, ys = _outline(mask)
            for x, y in zip(xs, ys):
                ax.plot(x, y, color="black", linewidth=0.5)
        ax.set_title(str(name), fontsize=10)
        ax.set_axis_off()
    for ax in list(axes.flat)[len(rasters):]:
        ax.set_axis_off()

    if image is not None:
        fig.colorbar(image, ax=axes.ravel().tolist(), shrink=0.6, label=cbar_label)
    fig.suptitle(title, fontsize=13)
    return fig


def _outline(geom):
    """Exterior ring coordinates of a (multi)polygon mask."""
    polys = getattr(geom, "geoms", [geom])
    xs, ys = [], []
    for poly in polys:
        ring = getattr(poly, "exterior", None)
        if ring is None:
            continue
        x, y = ring.xy
        xs.append(np.asarray(x))
        ys.append(np.asarray(y))
    return xs, ys


def plot_environment(scores: pd.DataFrame, background: pd.DataFrame, x_col: str, y_col: str,
                     explained: Optional[np.ndarray] = None, title: str = ""):
    """Occurrence PC scores per period over the background environmental space."""
    identifiers = sorted(scores[IDENTIFIER_COL].unique()) if not scores.empty else ["all"]
    fig, axes = plt.subplots(1, len(identifiers), figsize=(6 * len(identifiers), 5), squeeze=False)

    for ax, ident in zip(axes.flat, identifiers):
        ax.scatter(background[x_col], background[y_col], s=2, color="lightgrey", label="Background")
        sub = scores[scores[IDENTIFIER_COL] == ident] if not scores.empty else scores
        for period, psub in sub.groupby(PERIOD_COL, observed=True):
            ax.scatter(psub[x_col], psub[y_col], s=6, alpha=0.7, label=str(period))
        xlabel, ylabel = x_col, y_col
        if explained is not None:
            xi, yi = int(x_col[2:]) - 1, int(y_col[2:]) - 1
            xlabel = f"{x_col} ({explained[xi] * 100:.1f}%)"
            ylabel = f"{y_col} ({explained[yi] * 100:.1f}%)"
        ax.set_xlabel(xlabel)
        ax.set_ylabel(ylabel)
        ax.set_title(str(ident), fontsize=11)
        ax.legend(fontsize=7, markerscale=2)

    fig.suptitle(title, fontsize=13)
    fig.tight_layout()
    return fig
