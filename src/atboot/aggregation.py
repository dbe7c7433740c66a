"""Scaling-class filtering and spatial binning of acoustic backscatter."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

# Transects numbered at or above this value are calibration, transit or
# experimental lines rather than survey transects.
DEFAULT_MAX_TRANSECT = 200


def round_to_resolution(values, resolution: float) -> np.ndarray:
    """Round coordinates to the nearest multiple of ``resolution``."""
    if resolution <= 0:
        raise ValueError("resolution must be positive.")
    return np.round(np.asarray(values, dtype=float) / resolution) * resolution


def bin_acoustics(
    acoustics: pd.DataFrame,
    classes: Sequence[str],
    resolution: float,
    max_transect: int = DEFAULT_MAX_TRANSECT,
) -> pd.DataFrame:
    """
    Restrict acoustics to the given scaling classes and average NASC in spatial bins.

    Parameters
    ----------
    acoustics : pd.DataFrame
        Projected acoustics with transect, class, lon, lat, x, y, nasc.
    classes : sequence of str
        Accepted scaling-class labels.
    resolution : float
        Bin size (km); x and y are rounded to the nearest multiple of it.
    max_transect : int
        Transects numbered ``>= max_transect`` are dropped.

    Returns
    -------
    pd.DataFrame
        One row per (transect, class, x, y) with mean nasc, lon and lat.
    """
    if not classes:
        raise ValueError("At least one scaling class is required.")
    classes = [str(c) for c in classes]

    df = acoustics[acoustics["class"].astype(str).isin(classes)]
    n_class = len(df)
    df = df[df["transect"] < max_transect]
    dropped = n_class - len(df)
    if dropped:
        logger.info(f"Dropped {dropped} intervals on transects >= {max_transect}")
    if df.empty:
        raise ValueError(f"No acoustic records left for classes {classes} on transects < {max_transect}.")

    df = df.assign(
        x=round_to_resolution(df["x"], resolution),
        y=round_to_resolution(df["y"], resolution),
    )
    binned = (
        df.groupby(["transect", "class", "x", "y"], as_index=False, sort=True)
        .agg(nasc=("nasc", "mean"), lon=("lon", "mean"), lat=("lat", "mean"))
    )
    missing = sorted(set(classes) - set(binned["class"]))
    if missing:
        logger.warning(f"No acoustic records for scaling class(es) {missing}")
    logger.info(f"Binned {len(df)} intervals into {len(binned)} cells at {resolution} km")
    return binned
