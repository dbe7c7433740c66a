"""CRS construction and coordinate projection utilities.

Provides functions for normalising CRS inputs, building the kilometre-based
local projection a survey is analysed in, and projecting lon/lat positions
into that projection.
"""
from typing import Any, Dict, Tuple, Union

import numpy as _np
from pyproj import CRS as _CRS
from pyproj import Transformer as _Transformer

GEOGRAPHIC_CRS = "EPSG:4326"


def _ensure_crs_obj(crs: Union[str, _CRS, Dict[str, Any]]) -> _CRS:
    """
    Accept WKT, PROJJSON (dict), proj string, EPSG code, or CRS object.
    Return a pyproj.CRS instance, raising on failure.
    """
    if isinstance(crs, _CRS):
        return crs
    if isinstance(crs, dict):
        return _CRS.from_json_dict(crs)
    return _CRS.from_user_input(crs)


def local_survey_crs(lon0: float, lat0: float) -> _CRS:
    """
    Azimuthal equidistant projection centred on (lon0, lat0) with kilometre units.

    Distances from the centre are exact and distortion stays small over the
    extent of a single survey, which keeps variogram lags in true km.
    """
    if not (-180.0 <= lon0 <= 180.0 and -90.0 <= lat0 <= 90.0):
        raise ValueError(f"Projection centre out of range: lon={lon0}, lat={lat0}")
    return _CRS.from_proj4(
        f"+proj=aeqd +lat_0={lat0:.6f} +lon_0={lon0:.6f} +x_0=0 +y_0=0 +datum=WGS84 +units=km +no_defs"
    )


def crs_axis_unit(crs: Union[str, _CRS, Dict[str, Any]]) -> str:
    """Name of the first axis unit of a CRS (e.g. 'kilometre', 'metre', 'degree')."""
    crs_obj = _ensure_crs_obj(crs)
    axes = crs_obj.axis_info
    if not axes:
        return "unknown"
    return axes[0].unit_name


def project_lonlat(
    lon: _np.ndarray,
    lat: _np.ndarray,
    crs: Union[str, _CRS, Dict[str, Any]],
) -> Tuple[_np.ndarray, _np.ndarray]:
    """Project geographic lon/lat (EPSG:4326) to x/y in the target CRS."""
    transformer = _Transformer.from_crs(GEOGRAPHIC_CRS, _ensure_crs_obj(crs), always_xy=True)
    x, y = transformer.transform(_np.asarray(lon, dtype=float), _np.asarray(lat, dtype=float))
    return _np.asarray(x, dtype=float), _np.asarray(y, dtype=float)
