"""
Figures read from a machine-code stream's comment headers.

Recognized dialects:
    - Bambu Studio / OrcaSlicer:  ``; total layer number: 120``,
      ``; total estimated time: 1h 2m 3s``, ``; total filament weight [g] : 12.3``
    - PrusaSlicer:  ``; estimated printing time (normal mode) = 1h 2m``,
      ``; filament used [g] = 12.3``
    - Cura:  ``;LAYER_COUNT:120``, ``;LAYER:n``, ``;TIME:3723``,
      ``;Filament used: 4.1m``

Anything not found falls back to size-based estimates, and the result is
flagged ``estimated`` so callers can warn about it.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional


# Fallback heuristics: one layer per 1000 characters of stream
CHARS_PER_LAYER = 1000
MINUTES_PER_LAYER = 3.0
GRAMS_PER_LAYER = 0.5

# 1.75 mm filament at PLA density (1.24 g/cm3)
GRAMS_PER_METER = 2.98

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d+)?)\s*([dhms])", re.I)

_LAYER_TOTAL_PATTERNS = (
    re.compile(r"^;\s*total layer number\s*[:=]\s*(\d+)", re.I | re.M),
    re.compile(r"^;\s*LAYER_COUNT\s*:\s*(\d+)", re.I | re.M),
)
_LAYER_INDEX_RE = re.compile(r"^;\s*LAYER\s*:\s*(\d+)", re.M)

_TIME_TEXT_PATTERNS = (
    re.compile(r"^;.*total estimated time\s*[:=]\s*([\d dhms.]+)", re.I | re.M),
    re.compile(r"^;\s*estimated printing time(?: \(normal mode\))?\s*[:=]\s*([\d dhms.]+)", re.I | re.M),
)
_TIME_SECONDS_RE = re.compile(r"^;\s*TIME\s*:\s*(\d+(?:\.\d+)?)", re.M)

_WEIGHT_PATTERNS = (
    re.compile(r"^;\s*total filament weight \[g\]\s*[:=]\s*([\d.]+)", re.I | re.M),
    re.compile(r"^;\s*filament used \[g\]\s*[:=]\s*([\d.]+)", re.I | re.M),
    re.compile(r"^;\s*Filament used\s*:\s*([\d.]+)\s*g\b", re.I | re.M),
)
_LENGTH_METERS_RE = re.compile(r"^;\s*Filament used\s*:\s*([\d.]+)\s*m\b", re.I | re.M)


@dataclass(frozen=True)
class GcodeInfo:
    """Layers, print time (minutes) and filament weight (grams) of one copy."""

    layers: int
    time_minutes: float
    material_grams: float
    estimated: bool = False


def parse_duration(text: str) -> Optional[float]:
    """'1d 2h 3m 4s' -> minutes. None when no unit part is present."""
    parts = _DURATION_PART_RE.findall(text or "")
    if not parts:
        return None

    factors = {"d": 1440.0, "h": 60.0, "m": 1.0, "s": 1.0 / 60.0}
    return sum(float(value) * factors[unit.lower()] for value, unit in parts)


def _first_float(patterns, text: str) -> Optional[float]:
    for pattern in patterns:
        match = pattern.search(text)
        if match:
            try:
                return float(match.group(1))
            except ValueError:
                continue
    return None


def read_layers(text: str) -> Optional[int]:
    total = _first_float(_LAYER_TOTAL_PATTERNS, text)
    if total is not None:
        return int(total)

    indices = [int(n) for n in _LAYER_INDEX_RE.findall(text)]
    if indices:
        # Cura numbers layers from zero
        return max(indices) + 1
    return None


def read_time_minutes(text: str) -> Optional[float]:
    for pattern in _TIME_TEXT_PATTERNS:
        match = pattern.search(text)
        if match:
            minutes = parse_duration(match.group(1))
            if minutes is not None:
                return minutes

    match = _TIME_SECONDS_RE.search(text)
    if match:
        return float(match.group(1)) / 60.0
    return None


def read_material_grams(text: str) -> Optional[float]:
    grams = _first_float(_WEIGHT_PATTERNS, text)
    if grams is not None:
        return grams

    match = _LENGTH_METERS_RE.search(text)
    if match:
        return float(match.group(1)) * GRAMS_PER_METER
    return None


def extract_gcode_info(text: str) -> GcodeInfo:
    """
    Read layers, time and material from a stream, estimating what is missing.

    The estimates follow the stream size: one layer per 1000 characters
    (at least one), three minutes and half a gram per layer.
    """
    layers = read_layers(text)
    time_minutes = read_time_minutes(text)
    material = read_material_grams(text)

    estimated = layers is None or time_minutes is None or material is None

    if layers is None:
        layers = max(1, len(text) // CHARS_PER_LAYER)
    if time_minutes is None:
        time_minutes = layers * MINUTES_PER_LAYER
    if material is None:
        material = layers * GRAMS_PER_LAYER

    return GcodeInfo(
        layers=layers,
        time_minutes=round(time_minutes, 2),
        material_grams=round(material, 2),
        estimated=estimated,
    )
