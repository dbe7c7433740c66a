"""Survey file access and spatial preprocessing.

This module reads the flat files of an acoustic-trawl survey and prepares
them for geostatistical analysis:
- Projection of lon/lat positions into a km-based local CRS
- Survey boundary construction (supplied polygon or convex hull of the acoustics)
- Regular domain grid at the requested resolution
- Typed loading of the preprocessed tables into a SurveyData bundle

Raw survey directory layout::

    acoustics.csv          transect, class, lon, lat, nasc
    trawl_locations.csv    event_id, lon, lat
    scaling.csv            event_id, class, species_code, primary_length, w
    age_length.csv         length, age
    length_weight.csv      length, weight
    boundary.geojson       (optional) survey boundary polygon in lon/lat

``preprocess_survey_data`` writes the projected intermediates next to the raw
files; ``read_survey_files`` only reads intermediates, so a survey has to be
preprocessed once per resolution.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
import geopandas as gpd
import shapely
from pyproj import CRS
from shapely.geometry import MultiPoint, MultiPolygon, Polygon

from .crs_utils import GEOGRAPHIC_CRS, _ensure_crs_obj, crs_axis_unit, local_survey_crs, project_lonlat

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# name -> (file name, required columns)
RAW_FILES: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "acoustics": ("acoustics.csv", ("transect", "class", "lon", "lat", "nasc")),
    "trawl_locations": ("trawl_locations.csv", ("event_id", "lon", "lat")),
    "scaling": ("scaling.csv", ("event_id", "class", "species_code", "primary_length", "w")),
    "age_length": ("age_length.csv", ("length", "age")),
    "length_weight": ("length_weight.csv", ("length", "weight")),
}

BOUNDARY_FILE = "boundary.geojson"
ACOUSTICS_PROJECTED = "acoustics_projected.csv"
TRAWLS_PROJECTED = "trawl_locations_projected.csv"
DOMAIN_GRID = "surveydomain.csv"
DOMAIN_BOUNDARY = "surveydomain.geojson"
PROJECTION_FILE = "projection.json"

_STRING_COLUMNS = {"class": str, "event_id": str}


class SurveyFileError(ValueError):
    """Raised when a survey file is missing or does not have the expected content."""

    def __init__(self, path: PathLike, reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Survey file '{self.path}': {reason}")


@dataclass(frozen=True)
class SurveyData:
    """
    In-memory tables of one preprocessed survey.

    Attributes
    ----------
    acoustics : pd.DataFrame
        transect, class, lon, lat, x, y, nasc (one row per integration interval).
    scaling : pd.DataFrame
        event_id, class, species_code, primary_length, w.
    age_length : pd.DataFrame
        length, age specimen records of the target species.
    length_weight : pd.DataFrame
        length, weight specimen records of the target species.
    trawl_locations : pd.DataFrame
        event_id, lon, lat, x, y.
    domain : pd.DataFrame
        x, y centres of the simulation grid cells.
    boundary : shapely Polygon or MultiPolygon
        Survey boundary in projected km coordinates.
    dx : float
        Grid resolution (km) the survey was preprocessed at.
    crs : pyproj.CRS
        Projection of x/y.
    """
    acoustics: pd.DataFrame
    scaling: pd.DataFrame
    age_length: pd.DataFrame
    length_weight: pd.DataFrame
    trawl_locations: pd.DataFrame
    domain: pd.DataFrame
    boundary: Union[Polygon, MultiPolygon]
    dx: float
    crs: CRS

    @property
    def domain_coords(self) -> np.ndarray:
        return self.domain[["x", "y"]].to_numpy(dtype=float)


# =============================================================================
# Table readers
# =============================================================================

def _read_table(path: Path, required: Sequence[str]) -> pd.DataFrame:
    """Read a CSV table, failing with a descriptive error if it is unusable."""
    if not path.is_file():
        raise SurveyFileError(path, "file not found")
    try:
        df = pd.read_csv(path, dtype={k: v for k, v in _STRING_COLUMNS.items() if k in required})
    except pd.errors.EmptyDataError:
        raise SurveyFileError(path, "file is empty") from None
    except pd.errors.ParserError as e:
        raise SurveyFileError(path, f"could not be parsed: {e}") from e

    missing = [c for c in required if c not in df.columns]
    if missing:
        raise SurveyFileError(path, f"missing required column(s) {missing}")
    if df.empty:
        raise SurveyFileError(path, "table has no rows")

    for col in required:
        if col in _STRING_COLUMNS:
            continue
        if not pd.api.types.is_numeric_dtype(df[col]):
            raise SurveyFileError(path, f"column '{col}' is not numeric")
        if df[col].isna().any():
            raise SurveyFileError(path, f"column '{col}' contains missing values")
    return df


def _check_values(df: pd.DataFrame, path: Path, name: str) -> None:
    if name == "acoustics":
        if (df["nasc"] < 0).any():
            raise SurveyFileError(path, "negative NASC values")
    elif name == "scaling":
        if (df["primary_length"] <= 0).any():
            raise SurveyFileError(path, "non-positive specimen lengths")
        if (df["w"] < 0).any():
            raise SurveyFileError(path, "negative expansion weights")
    elif name == "age_length":
        if (df["length"] <= 0).any() or (df["age"] < 0).any():
            raise SurveyFileError(path, "lengths must be positive and ages non-negative")
    elif name == "length_weight":
        if (df["length"] <= 0).any() or (df["weight"] <= 0).any():
            raise SurveyFileError(path, "lengths and weights must be positive")


def read_raw_tables(surveydir: PathLike) -> Dict[str, pd.DataFrame]:
    """Read and validate the raw survey tables."""
    surveydir = Path(surveydir)
    if not surveydir.is_dir():
        raise SurveyFileError(surveydir, "survey directory not found")

    tables = {}
    for name, (fname, required) in RAW_FILES.items():
        path = surveydir / fname
        df = _read_table(path, required)
        _check_values(df, path, name)
        tables[name] = df
    return tables


# =============================================================================
# Preprocessing
# =============================================================================

def _read_boundary(path: Path, crs: CRS) -> Union[Polygon, MultiPolygon]:
    try:
        gdf = gpd.read_file(path)
    except Exception as e:
        raise SurveyFileError(path, f"could not be read as a vector file: {e}") from e
    if gdf.empty:
        raise SurveyFileError(path, "no geometries found")
    if gdf.crs is None:
        gdf = gdf.set_crs(GEOGRAPHIC_CRS)
    geom = gdf.to_crs(crs).geometry.union_all()
    if not isinstance(geom, (Polygon, MultiPolygon)) or geom.is_empty or geom.area <= 0:
        raise SurveyFileError(path, "boundary must be a Polygon/MultiPolygon with non-zero area")
    return geom


def survey_boundary(x: np.ndarray, y: np.ndarray) -> Polygon:
    """Convex hull of the acoustic positions."""
    hull = MultiPoint(np.column_stack([x, y])).convex_hull
    if not isinstance(hull, Polygon) or hull.area <= 0:
        raise ValueError("Acoustic positions are collinear; cannot build a survey boundary.")
    return hull


def domain_grid(boundary: Union[Polygon, MultiPolygon], dx: float) -> pd.DataFrame:
    """
    Centres of a dx-spaced grid, aligned to multiples of dx, lying within the boundary.
    """
    if dx <= 0:
        raise ValueError("Grid resolution dx must be positive.")
    minx, miny, maxx, maxy = boundary.bounds
    xs = np.arange(np.floor(minx / dx) * dx, np.ceil(maxx / dx) * dx + dx / 2, dx)
    ys = np.arange(np.floor(miny / dx) * dx, np.ceil(maxy / dx) * dx + dx / 2, dx)
    gx, gy = np.meshgrid(xs, ys)
    gx = gx.ravel()
    gy = gy.ravel()
    inside = shapely.intersects_xy(boundary, gx, gy)
    grid = pd.DataFrame({"x": gx[inside], "y": gy[inside]})
    if grid.empty:
        raise ValueError(f"No grid cells of size {dx} km fall inside the survey boundary.")
    return grid


def preprocess_survey_data(
    surveydir: PathLike,
    dx: float = 10.0,
    crs: Optional[Union[str, CRS, dict]] = None,
) -> Path:
    """
    Project raw survey tables and build the simulation domain at resolution ``dx``.

    Writes (overwriting) the projected acoustics and trawl tables, the domain
    grid and boundary, and the projection metadata into ``surveydir``. Running
    it twice with the same ``dx`` produces the same files.

    Parameters
    ----------
    surveydir : path-like
        Directory holding the raw survey files.
    dx : float
        Grid resolution in km.
    crs : optional
        Projected CRS with kilometre axes. If None, an azimuthal equidistant
        projection centred on the acoustic data is used.

    Returns
    -------
    Path
        The survey directory.
    """
    if dx <= 0:
        raise ValueError("dx must be positive.")
    surveydir = Path(surveydir)
    tables = read_raw_tables(surveydir)
    acoustics = tables["acoustics"]
    trawls = tables["trawl_locations"]

    if crs is None:
        crs_obj = local_survey_crs(float(acoustics["lon"].mean()), float(acoustics["lat"].mean()))
    else:
        crs_obj = _ensure_crs_obj(crs)
        unit = crs_axis_unit(crs_obj)
        if unit not in ("kilometre", "kilometer"):
            raise ValueError(f"Survey CRS must have kilometre axes, got '{unit}'.")

    ax, ay = project_lonlat(acoustics["lon"].to_numpy(), acoustics["lat"].to_numpy(), crs_obj)
    acoustics = acoustics.assign(x=ax, y=ay)
    tx, ty = project_lonlat(trawls["lon"].to_numpy(), trawls["lat"].to_numpy(), crs_obj)
    trawls = trawls.assign(x=tx, y=ty)

    boundary_path = surveydir / BOUNDARY_FILE
    if boundary_path.is_file():
        boundary = _read_boundary(boundary_path, crs_obj)
        logger.info(f"Using supplied survey boundary {boundary_path.name}")
    else:
        boundary = survey_boundary(ax, ay)
        logger.info("No boundary file found; using convex hull of acoustic positions")

    grid = domain_grid(boundary, dx)

    acoustics.to_csv(surveydir / ACOUSTICS_PROJECTED, index=False)
    trawls.to_csv(surveydir / TRAWLS_PROJECTED, index=False)
    grid.to_csv(surveydir / DOMAIN_GRID, index=False)

    domain_path = surveydir / DOMAIN_BOUNDARY
    if domain_path.exists():
        domain_path.unlink()
    gpd.GeoDataFrame({"dx": [float(dx)]}, geometry=[boundary], crs=crs_obj).to_crs(GEOGRAPHIC_CRS).to_file(
        domain_path, driver="GeoJSON"
    )

    with open(surveydir / PROJECTION_FILE, "w") as f:
        json.dump({"crs": crs_obj.to_wkt(), "dx": float(dx)}, f, indent=2)

    logger.info(
        f"Preprocessed {surveydir.name}: {len(acoustics)} acoustic intervals, "
        f"{len(trawls)} trawls, {len(grid)} domain cells at {dx} km"
    )
    return surveydir


def read_survey_files(surveydir: PathLike) -> SurveyData:
    """
    Load a preprocessed survey directory into a :class:`SurveyData` bundle.

    Raises
    ------
    SurveyFileError
        If the survey has not been preprocessed or a table is missing/malformed.
    """
    surveydir = Path(surveydir)
    proj_path = surveydir / PROJECTION_FILE
    if not proj_path.is_file():
        raise SurveyFileError(proj_path, "not found; run preprocess_survey_data first")
    try:
        with open(proj_path) as f:
            meta = json.load(f)
        crs = _ensure_crs_obj(meta["crs"])
        dx = float(meta["dx"])
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        raise SurveyFileError(proj_path, f"malformed projection metadata: {e}") from e

    acoustic_cols = RAW_FILES["acoustics"][1] + ("x", "y")
    acoustics = _read_table(surveydir / ACOUSTICS_PROJECTED, acoustic_cols)
    _check_values(acoustics, surveydir / ACOUSTICS_PROJECTED, "acoustics")
    trawls = _read_table(surveydir / TRAWLS_PROJECTED, RAW_FILES["trawl_locations"][1] + ("x", "y"))

    other = {}
    for name in ("scaling", "age_length", "length_weight"):
        fname, required = RAW_FILES[name]
        df = _read_table(surveydir / fname, required)
        _check_values(df, surveydir / fname, name)
        other[name] = df

    domain = _read_table(surveydir / DOMAIN_GRID, ("x", "y"))

    boundary_path = surveydir / DOMAIN_BOUNDARY
    if not boundary_path.is_file():
        raise SurveyFileError(boundary_path, "file not found")
    boundary = _read_boundary(boundary_path, crs)

    duplicated = trawls["event_id"][trawls["event_id"].duplicated()].unique()
    if len(duplicated):
        raise SurveyFileError(
            surveydir / TRAWLS_PROJECTED, f"duplicate trawl event_id(s) {sorted(duplicated)[:5]}"
        )
    unknown = set(other["scaling"]["event_id"]) - set(trawls["event_id"])
    if unknown:
        raise SurveyFileError(
            surveydir / RAW_FILES["scaling"][0],
            f"scaling rows reference unknown trawl event(s) {sorted(unknown)[:5]}",
        )

    logger.info(f"Loaded survey {surveydir.name} ({len(trawls)} trawls, {len(domain)} domain cells)")
    return SurveyData(
        acoustics=acoustics,
        scaling=other["scaling"],
        age_length=other["age_length"],
        length_weight=other["length_weight"],
        trawl_locations=trawls,
        domain=domain,
        boundary=boundary,
        dx=dx,
        crs=crs,
    )
