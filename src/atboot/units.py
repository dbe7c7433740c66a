"""
units.py - Area and mass units reported by the survey analysis.

NASC is expressed in m² nmi⁻², while survey positions are projected in
kilometres, so every cell area has to be converted to square nautical miles
before backscatter can be integrated over the survey domain. Biomass is
computed in kilograms and reported in thousand tonnes.
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class UnitInfo:
    """
    A reporting unit.

    Attributes
    ----------
    name : str
        Canonical name, e.g. "nautical_mile".
    abbreviation : str
        Short form for display, e.g. "nmi", "kt".
    to_base_factor : float
        Factor to the base unit of the category (metres or kilograms).
    category : str
        "linear" or "mass".
    """
    name: str
    abbreviation: str
    to_base_factor: float
    category: str

    def convert_to(self, values, target: "UnitInfo") -> np.ndarray:
        """Convert values from this unit to ``target``; both must share a category."""
        if self.category != target.category:
            raise ValueError(f"Cannot convert {self.category} unit {self.name} to {target.category} unit {target.name}")
        return np.asarray(values, dtype=float) * (self.to_base_factor / target.to_base_factor)


KILOMETER = UnitInfo("kilometer", "km", 1000.0, "linear")
NAUTICAL_MILE = UnitInfo("nautical_mile", "nmi", 1852.0, "linear")
KILOGRAM = UnitInfo("kilogram", "kg", 1.0, "mass")
KILOTONNE = UnitInfo("kilotonne", "kt", 1.0e6, "mass")

# Survey convention: 1 km = 1/1.852 nmi
KM_TO_NMI = KILOMETER.to_base_factor / NAUTICAL_MILE.to_base_factor


def cell_area_nmi2(dx_km: float, dy_km: float | None = None, km_to_nmi: float = KM_TO_NMI) -> float:
    """
    Area of a dx × dy km grid cell in square nautical miles.

    ``km_to_nmi`` is exposed so an analysis can pin the linear conversion
    factor it reports with.
    """
    if dy_km is None:
        dy_km = dx_km
    if dx_km <= 0 or dy_km <= 0:
        raise ValueError("Cell dimensions must be positive.")
    return float(dx_km * km_to_nmi) * float(dy_km * km_to_nmi)


def format_value_with_unit(value: float, unit: UnitInfo, precision: int = 2, squared: bool = False) -> str:
    """Format a value with its unit for display, e.g. "123.45 kt" or "29.16 nmi²"."""
    suffix = "²" if squared else ""
    return f"{value:.{precision}f} {unit.abbreviation}{suffix}"
