"""
Slicing metadata extraction.

Turns the metadata entry located by PackageReader (plus the package's other
entries) into a flat dictionary:

    application, creation_date, designer_user_id,
    printer_brand, printer_model, printer_model_id, printer_settings_id,
    print_settings_id, print_settings_name,
    material_type, material_name, nozzle_diameter,
    is_automatic_profile

Keys are only present when a value was found. Extraction never raises:
a package with unreadable metadata simply yields fewer keys.
"""

from __future__ import annotations

import json
import re
import xml.etree.ElementTree as ET
from typing import Any, Dict, Optional

from modules.printer_profiles import GENERIC, detect_family, family_for_metadata
from logging_config import get_logger


logger = get_logger(__name__)

DEFAULT_AUTOMATIC_MARKER = "AUTO"

_XML_METADATA_FIELDS = {
    "Application": "application",
    "CreationDate": "creation_date",
    "DesignerUserId": "designer_user_id",
}

PROJECT_SETTINGS_ENTRY = "Metadata/project_settings.config"
SLICE_INFO_ENTRY = "Metadata/slice_info.config"
PLATE_JSON_ENTRY = "Metadata/plate_1.json"

# project_settings.config key -> metadata field
_PROJECT_SETTINGS_KEYS = (
    ("print_settings_id", "print_settings_id"),
    ("default_print_profile", "print_settings_name"),
    ("print_settings_id", "print_settings_name"),
    ("printer_settings_id", "printer_settings_id"),
    ("default_filament_profile", "material_name"),
    ("filament_settings_id", "material_name"),
    ("filament_type", "material_type"),
    ("nozzle_diameter", "nozzle_diameter"),
    ("printer_model", "printer_model"),
)

# Names accepted by the generic scan, field -> aliases
_GENERIC_ALIASES = {
    "printer_model": ("printer_model", "machine_name", "printer_name"),
    "printer_settings_id": ("printer_settings_id", "printer_profile"),
    "print_settings_id": ("print_settings_id",),
    "print_settings_name": ("print_settings_name", "print_profile", "default_print_profile"),
    "material_type": ("filament_type", "material_type"),
    "material_name": ("material_name", "filament_settings_id", "filament_name"),
    "nozzle_diameter": ("nozzle_diameter",),
}

_GENERIC_NAME_HINTS = ("profile", "config", "settings", "print", "material")

_KEY_VALUE_RE = re.compile(r"^\s*;?\s*([A-Za-z_][\w ]*?)\s*=\s*(.+?)\s*$", re.MULTILINE)


def _first_value(value: Any) -> Optional[str]:
    """Scalar or first non-empty list element, as a string."""
    if isinstance(value, (list, tuple)):
        for item in value:
            text = _first_value(item)
            if text:
                return text
        return None
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _decode(data: Optional[bytes]) -> str:
    if not data:
        return ""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="replace")


def _load_json_object(data: Optional[bytes]) -> Optional[Dict[str, Any]]:
    text = _decode(data).strip()
    if not text:
        return None
    try:
        parsed = json.loads(text)
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _contains_marker(value: Any, marker: str) -> bool:
    return bool(value) and bool(marker) and marker.lower() in str(value).lower()


class MetadataExtractor:
    """
    Build a normalized metadata record from a package's metadata entry.

    Args:
        automatic_profile_marker: Substring identifying pre-approved,
            operator-independent print profiles (case-insensitive)
    """

    def __init__(self, automatic_profile_marker: str = DEFAULT_AUTOMATIC_MARKER):
        self.automatic_profile_marker = automatic_profile_marker

    def parse(
        self,
        metadata_raw: Optional[bytes],
        auxiliary_files: Optional[Dict[str, bytes]] = None,
    ) -> Dict[str, Any]:
        """
        Extract the metadata record.

        A metadata entry that is itself a JSON object is returned unchanged.
        Otherwise fields are pattern-matched from the XML document and then
        completed from the auxiliary entries.
        """
        as_json = _load_json_object(metadata_raw)
        if as_json is not None:
            return as_json

        metadata: Dict[str, Any] = {}
        self._parse_xml_fields(_decode(metadata_raw), metadata)
        self._apply_brand(metadata)

        if auxiliary_files:
            self._parse_auxiliary(auxiliary_files, metadata)
            self._apply_brand(metadata)

        metadata["is_automatic_profile"] = bool(
            metadata.get("is_automatic_profile")
            or _contains_marker(metadata.get("printer_settings_id"), self.automatic_profile_marker)
            or _contains_marker(metadata.get("print_settings_name"), self.automatic_profile_marker)
        )
        return metadata

    # =========================================================================
    # PRIMARY DOCUMENT
    # =========================================================================

    @staticmethod
    def _parse_xml_fields(text: str, metadata: Dict[str, Any]) -> None:
        for name, field in _XML_METADATA_FIELDS.items():
            match = re.search(rf'<metadata name="{name}">([^<]+)</metadata>', text)
            if match:
                metadata[field] = match.group(1).strip()

    @staticmethod
    def _apply_brand(metadata: Dict[str, Any]) -> None:
        model_text = " ".join(
            str(metadata.get(key) or "") for key in ("printer_model", "printer_model_id")
        )
        family = detect_family(metadata.get("application"), model_text)
        if family is GENERIC:
            return

        metadata.setdefault("printer_brand", family.brand)
        model_name = family.model_name(metadata.get("printer_model_id"))
        if model_name and not metadata.get("printer_model"):
            metadata["printer_model"] = model_name

    # =========================================================================
    # AUXILIARY ENTRIES
    # =========================================================================

    def _parse_auxiliary(self, files: Dict[str, bytes], metadata: Dict[str, Any]) -> None:
        self._from_project_settings(files.get(PROJECT_SETTINGS_ENTRY), metadata)
        self._from_slice_info(files.get(SLICE_INFO_ENTRY), metadata)
        self._from_plate_json(files.get(PLATE_JSON_ENTRY), metadata)

        specific = (PROJECT_SETTINGS_ENTRY, SLICE_INFO_ENTRY, PLATE_JSON_ENTRY)
        for name, content in files.items():
            if name in specific:
                continue
            lowered = name.lower()
            if lowered.endswith((".png", ".jpg", ".gcode", ".md5")):
                continue
            if any(hint in lowered for hint in _GENERIC_NAME_HINTS):
                self._from_generic(content, metadata)

    @staticmethod
    def _from_project_settings(content: Optional[bytes], metadata: Dict[str, Any]) -> None:
        settings = _load_json_object(content)
        if settings is None:
            return
        for source_key, field in _PROJECT_SETTINGS_KEYS:
            if metadata.get(field):
                continue
            value = _first_value(settings.get(source_key))
            if value:
                metadata[field] = value

    @staticmethod
    def _from_slice_info(content: Optional[bytes], metadata: Dict[str, Any]) -> None:
        text = _decode(content).strip()
        if not text:
            return
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            logger.debug(f"slice_info.config is not well-formed: {e}")
            return

        for item in root.iter("metadata"):
            key = item.get("key")
            value = _first_value(item.get("value"))
            if not value:
                continue
            if key == "printer_model_id" and not metadata.get("printer_model_id"):
                metadata["printer_model_id"] = value
            elif key == "nozzle_diameters" and not metadata.get("nozzle_diameter"):
                metadata["nozzle_diameter"] = value.split(",")[0].strip()

        if not metadata.get("material_type"):
            for filament in root.iter("filament"):
                material = _first_value(filament.get("type"))
                if material:
                    metadata["material_type"] = material
                    break

    @staticmethod
    def _from_plate_json(content: Optional[bytes], metadata: Dict[str, Any]) -> None:
        plate = _load_json_object(content)
        if plate is None or metadata.get("nozzle_diameter"):
            return
        value = _first_value(plate.get("nozzle_diameter"))
        if value:
            metadata["nozzle_diameter"] = value

    @staticmethod
    def _from_generic(content: bytes, metadata: Dict[str, Any]) -> None:
        values = _load_json_object(content)
        if values is None:
            text = _decode(content)
            values = {key.strip().lower(): value for key, value in _KEY_VALUE_RE.findall(text)}

        for field, aliases in _GENERIC_ALIASES.items():
            if metadata.get(field):
                continue
            for alias in aliases:
                value = _first_value(values.get(alias))
                if value:
                    metadata[field] = value
                    break


# =============================================================================
# RECORD HELPERS
# =============================================================================

def is_automatic_profile(metadata: Dict[str, Any], marker: str = DEFAULT_AUTOMATIC_MARKER) -> bool:
    """True iff printer_settings_id or print_settings_name contains ``marker``."""
    return (
        _contains_marker(metadata.get("printer_settings_id"), marker)
        or _contains_marker(metadata.get("print_settings_name"), marker)
    )


def is_bambu_lab_printer(metadata: Dict[str, Any]) -> bool:
    return family_for_metadata(metadata).tag == "bambu"


def get_material_name(metadata: Dict[str, Any]) -> str:
    return metadata.get("material_name") or metadata.get("material_type") or "Unknown"


def get_print_settings_name(metadata: Dict[str, Any]) -> str:
    return metadata.get("print_settings_name") or metadata.get("print_settings_id") or "Unknown"
