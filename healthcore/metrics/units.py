"""Unit normalisation and conversion for canonical metric values.

Raw unit spellings are first mapped to a canonical symbol
(``normalize_unit``), then converted with a pure lookup table of affine
formulas ``to = value * factor + offset``.  Each conversion is declared in
one direction only; the inverse is derived from the same constants so every
declared pair round-trips within floating-point tolerance.

No rounding happens here.  An unknown unit pair raises ``ConversionError``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping

from healthcore.errors import ConversionError

logger = logging.getLogger("healthcore.metrics.units")


# ---------------------------------------------------------------------------
# Unit aliases: lowercase raw spelling → canonical symbol
# ---------------------------------------------------------------------------

UNIT_ALIASES: dict[str, str] = {
    # Distance / length
    "m": "m", "meter": "m", "meters": "m", "metre": "m", "metres": "m",
    "km": "km", "kilometer": "km", "kilometers": "km", "kilometre": "km", "kilometres": "km",
    "mi": "mi", "mile": "mi", "miles": "mi",
    "ft": "ft", "foot": "ft", "feet": "ft",
    "in": "in", "inch": "in", "inches": "in",
    "cm": "cm", "centimeter": "cm", "centimeters": "cm", "centimetre": "cm",
    # Mass
    "kg": "kg", "kgs": "kg", "kilogram": "kg", "kilograms": "kg",
    "lb": "lbs", "lbs": "lbs", "pound": "lbs", "pounds": "lbs",
    "g": "g", "gram": "g", "grams": "g",
    "mg": "mg", "milligram": "mg", "milligrams": "mg",
    "oz": "oz", "ounce": "oz", "ounces": "oz",
    # Volume
    "ml": "ml", "milliliter": "ml", "milliliters": "ml", "millilitre": "ml", "millilitres": "ml",
    "l": "l", "liter": "l", "liters": "l", "litre": "l", "litres": "l",
    "fl_oz": "fl_oz", "fl oz": "fl_oz", "floz": "fl_oz", "fluid ounce": "fl_oz", "fluid ounces": "fl_oz",
    "cup": "cup", "cups": "cup",
    # Temperature
    "°c": "°C", "degc": "°C", "celsius": "°C",
    "°f": "°F", "degf": "°F", "fahrenheit": "°F",
    "k": "K", "kelvin": "K",
    # Time
    "ms": "ms", "millisecond": "ms", "milliseconds": "ms",
    "s": "s", "sec": "s", "secs": "s", "second": "s", "seconds": "s",
    "min": "min", "mins": "min", "minute": "min", "minutes": "min",
    "h": "h", "hr": "h", "hrs": "h", "hour": "h", "hours": "h",
    # Energy ("Cal" on nutrition labels is the kilocalorie)
    "kcal": "kcal", "cal": "kcal", "calories": "kcal", "kilocalorie": "kcal", "kilocalories": "kcal",
    "kj": "kJ", "kilojoule": "kJ", "kilojoules": "kJ",
    # Rates and ratios
    "bpm": "bpm", "count/min": "bpm", "beats/min": "bpm", "breaths/min": "bpm",
    "%": "%", "percent": "%", "pct": "%",
    "fraction": "fraction", "ratio": "fraction",
    "mmhg": "mmHg",
    "mg/dl": "mg/dL",
    "mmol/l": "mmol/L",
    "ml/kg/min": "ml/kg/min", "ml/(kg·min)": "ml/kg/min",
    "kg/m²": "kg/m²", "kg/m2": "kg/m²",
    # Counts
    "count": "count",
    "step": "steps", "steps": "steps",
    "flight": "flights", "flights": "flights", "floors": "flights",
    "rep": "reps", "reps": "reps",
    "set": "sets", "sets": "sets",
    "level": "level",
}


def normalize_unit(raw_unit: str) -> str:
    """Return the canonical symbol for a raw unit string.

    Unknown spellings are returned stripped but otherwise unchanged so the
    conversion lookup can report them precisely.
    """
    cleaned = raw_unit.strip()
    return UNIT_ALIASES.get(cleaned.lower(), cleaned)


# ---------------------------------------------------------------------------
# Conversion table
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Conversion:
    """Affine conversion ``to = value * factor + offset``."""

    factor: float
    offset: float = 0.0

    def apply(self, value: float) -> float:
        return value * self.factor + self.offset

    def inverse(self) -> Conversion:
        return Conversion(factor=1.0 / self.factor, offset=-self.offset / self.factor)


# Declared once per pair; inverses are derived in _build_table().
DECLARED_CONVERSIONS: dict[tuple[str, str], Conversion] = {
    # Distance
    ("km", "mi"): Conversion(0.621371),
    ("m", "mi"): Conversion(0.000621371),
    ("m", "ft"): Conversion(3.28084),
    ("km", "m"): Conversion(1000.0),
    ("mi", "ft"): Conversion(5280.0),
    # Length
    ("m", "in"): Conversion(39.3701),
    ("cm", "in"): Conversion(0.393701),
    ("cm", "ft"): Conversion(0.0328084),
    ("ft", "in"): Conversion(12.0),
    # Mass
    ("kg", "lbs"): Conversion(2.20462),
    ("g", "oz"): Conversion(0.035274),
    ("kg", "g"): Conversion(1000.0),
    ("g", "mg"): Conversion(1000.0),
    # Temperature
    ("°C", "°F"): Conversion(9.0 / 5.0, 32.0),
    ("K", "°C"): Conversion(1.0, -273.15),
    # Volume
    ("ml", "fl_oz"): Conversion(0.033814),
    ("ml", "cup"): Conversion(0.00422675),
    ("l", "ml"): Conversion(1000.0),
    ("l", "fl_oz"): Conversion(33.814),
    # Time
    ("s", "min"): Conversion(1.0 / 60.0),
    ("h", "min"): Conversion(60.0),
    ("s", "h"): Conversion(1.0 / 3600.0),
    ("ms", "s"): Conversion(0.001),
    # Energy
    ("kJ", "kcal"): Conversion(1.0 / 4.184),
    # Ratios
    ("fraction", "%"): Conversion(100.0),
    # Blood glucose
    ("mmol/L", "mg/dL"): Conversion(18.0),
    # Dimensionless counts reported generically by native stores
    ("count", "steps"): Conversion(1.0),
    ("count", "flights"): Conversion(1.0),
    ("count", "reps"): Conversion(1.0),
    ("count", "sets"): Conversion(1.0),
}


def _build_table(
    declared: Mapping[tuple[str, str], Conversion],
) -> Mapping[tuple[str, str], Conversion]:
    table: dict[tuple[str, str], Conversion] = {}
    for (src, dst), conversion in declared.items():
        if (dst, src) in declared:
            raise ValueError(f"Conversion {src}->{dst} is declared in both directions")
        table[(src, dst)] = conversion
        table[(dst, src)] = conversion.inverse()
    return MappingProxyType(table)


UNIT_CONVERSIONS: Mapping[tuple[str, str], Conversion] = _build_table(DECLARED_CONVERSIONS)


def can_convert(from_unit: str, to_unit: str) -> bool:
    src, dst = normalize_unit(from_unit), normalize_unit(to_unit)
    return src == dst or (src, dst) in UNIT_CONVERSIONS


def convert(value: float, from_unit: str, to_unit: str, metric: str | None = None) -> float:
    """Convert *value* from *from_unit* to *to_unit*.

    Both units are alias-normalised first; identical units pass through.

    Args:
        value:     Numeric value in ``from_unit``.
        from_unit: Source unit (any known spelling).
        to_unit:   Target unit (any known spelling).
        metric:    Optional metric id, used only in the error message.

    Returns:
        The converted value as a float (double precision, unrounded).

    Raises:
        ConversionError: If no conversion is known for the pair.
    """
    src, dst = normalize_unit(from_unit), normalize_unit(to_unit)
    if src == dst:
        return float(value)
    conversion = UNIT_CONVERSIONS.get((src, dst))
    if conversion is None:
        raise ConversionError(src, dst, metric)
    return conversion.apply(float(value))
