"""
Job analysis: weight, duration, material and printer from an uploaded file.

Accepts either a full ``.gcode.3mf`` package or a bare ``.gcode`` stream.
For packages the slicer's own slice_info figures win over header comments;
header comments win over size-based estimates.
"""

from __future__ import annotations

import io
import re
import xml.etree.ElementTree as ET
import zipfile
from typing import Any, Dict, Optional, Tuple

from models.job import JobAnalysis
from modules.gcode_stats import extract_gcode_info
from modules.metadata_extractor import MetadataExtractor, SLICE_INFO_ENTRY
from modules.package_reader import PackageReader
from modules.printer_profiles import printer_identifier
from logging_config import get_logger


logger = get_logger(__name__)

# "; key = value" settings block at the end of bare streams
_HEADER_SETTING_RE = re.compile(r"^;\s*(filament_type|printer_model|printer_settings_id|print_settings_id)\s*=\s*(.+?)\s*$", re.M)


def read_slice_info(content: Optional[bytes]) -> Tuple[Optional[float], Optional[float]]:
    """
    (duration_minutes, weight_grams) from slice_info.config.

    The slicer records the first plate's ``prediction`` in seconds and its
    ``weight`` in grams. Missing or malformed values come back as None.
    """
    if not content:
        return None, None
    try:
        root = ET.fromstring(content)
    except ET.ParseError:
        return None, None

    plate = root.find("plate")
    if plate is None:
        return None, None

    values = {item.get("key"): item.get("value") for item in plate.iter("metadata")}

    def _number(key: str) -> Optional[float]:
        try:
            return float(values[key])
        except (KeyError, TypeError, ValueError):
            return None

    seconds = _number("prediction")
    return (seconds / 60.0 if seconds is not None else None), _number("weight")


class JobAnalyzer:
    """Extract the analysis fields of a Job from its stored file."""

    def __init__(
        self,
        reader: Optional[PackageReader] = None,
        extractor: Optional[MetadataExtractor] = None,
    ):
        self.reader = reader or PackageReader()
        self.extractor = extractor or MetadataExtractor()

    def analyze(self, data: bytes, filename: str = "") -> JobAnalysis:
        """
        Analyze a package or bare stream.

        Raises:
            ParseError: If a package cannot be read
        """
        if self.is_bare_gcode(data, filename):
            return self._analyze_gcode(data.decode("utf-8", errors="replace"))
        return self._analyze_package(data, filename)

    @staticmethod
    def is_bare_gcode(data: bytes, filename: str) -> bool:
        lowered = (filename or "").lower()
        if lowered.endswith(".gcode") and not lowered.endswith(".gcode.3mf"):
            return True
        return not zipfile.is_zipfile(io.BytesIO(data))

    def _analyze_package(self, data: bytes, filename: str) -> JobAnalysis:
        contents = self.reader.read(data, source=filename or None)
        metadata = self.extractor.parse(contents.metadata_raw, contents.auxiliary_files)
        info = extract_gcode_info(contents.gcode)

        duration, weight = read_slice_info(contents.entries.get(SLICE_INFO_ENTRY))

        analysis = JobAnalysis(metadata=metadata)
        analysis.duration_minutes = round(duration, 2) if duration is not None else info.time_minutes
        analysis.weight_grams = round(weight, 2) if weight is not None else info.material_grams

        if info.estimated and (duration is None or weight is None):
            analysis.warnings.append("Some figures were estimated from the G-code size")

        self._fill_identity(analysis, metadata)
        return analysis

    def _analyze_gcode(self, text: str) -> JobAnalysis:
        info = extract_gcode_info(text)
        metadata: Dict[str, Any] = {}
        for key, value in _HEADER_SETTING_RE.findall(text):
            metadata.setdefault("material_type" if key == "filament_type" else key, value.split(";")[0].strip())

        analysis = JobAnalysis(
            duration_minutes=info.time_minutes,
            weight_grams=info.material_grams,
            metadata=metadata,
        )
        if info.estimated:
            analysis.warnings.append("Some figures were estimated from the G-code size")

        self._fill_identity(analysis, metadata)
        return analysis

    @staticmethod
    def _fill_identity(analysis: JobAnalysis, metadata: Dict[str, Any]) -> None:
        # Material type (e.g. PLA) groups better than a full filament profile name
        analysis.material = metadata.get("material_type") or metadata.get("material_name") or None
        analysis.printer = printer_identifier(metadata) or None

        if not analysis.material:
            analysis.errors.append("Material not found")
        if not analysis.printer:
            analysis.errors.append("Printer not found")
