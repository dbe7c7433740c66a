"""Tests for unit conversions and the local survey projection."""

from __future__ import annotations

import numpy as np
import pytest

from atboot.crs_utils import crs_axis_unit, local_survey_crs, project_lonlat
from atboot.units import (
    KILOGRAM,
    KILOMETER,
    KILOTONNE,
    KM_TO_NMI,
    NAUTICAL_MILE,
    cell_area_nmi2,
    format_value_with_unit,
)


def test_km_to_nmi() -> None:
    assert KM_TO_NMI == pytest.approx(1 / 1.852)
    np.testing.assert_allclose(KILOMETER.convert_to([1.852, 3.704], NAUTICAL_MILE), [1.0, 2.0])


def test_cell_area() -> None:
    assert cell_area_nmi2(1.852) == pytest.approx(1.0)
    assert cell_area_nmi2(10.0) == pytest.approx(100.0 / 1.852 ** 2)
    assert cell_area_nmi2(2.0, 1.0, km_to_nmi=0.5) == pytest.approx(0.5)
    with pytest.raises(ValueError):
        cell_area_nmi2(0.0)


def test_mass_conversion() -> None:
    np.testing.assert_allclose(KILOGRAM.convert_to([2.5e6], KILOTONNE), [2.5])
    with pytest.raises(ValueError, match="Cannot convert"):
        KILOMETER.convert_to([1.0], KILOGRAM)


def test_format_value_with_unit() -> None:
    kt = float(KILOGRAM.convert_to(1e6, KILOTONNE))
    assert format_value_with_unit(kt, KILOTONNE) == "1.00 kt"
    assert format_value_with_unit(1234.56, KILOTONNE, precision=1) == "1234.6 kt"
    assert format_value_with_unit(cell_area_nmi2(10.0), NAUTICAL_MILE, squared=True) == "29.16 nmi²"


def test_local_projection_centre() -> None:
    crs = local_survey_crs(-165.0, 57.0)
    assert crs_axis_unit(crs) in ("kilometre", "kilometer")
    x, y = project_lonlat(np.array([-165.0, -165.0]), np.array([57.0, 58.0]), crs)
    assert x[0] == pytest.approx(0.0, abs=1e-6) and y[0] == pytest.approx(0.0, abs=1e-6)
    # one degree of latitude is about 111.4 km at 57N
    assert x[1] == pytest.approx(0.0, abs=1e-6)
    assert y[1] == pytest.approx(111.4, abs=0.5)


def test_projection_centre_out_of_range() -> None:
    with pytest.raises(ValueError):
        local_survey_crs(200.0, 57.0)
