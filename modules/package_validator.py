"""
Package validation.

The gate every artifact passes before it is offered for download: the
required-file set must be present and the structured entries must at least
look well-formed. Problems that would not stop a printer are reported as
warnings instead.
"""

from __future__ import annotations

import json
from typing import Dict, Iterable, Optional

from core.exceptions import ParseError, ValidationError
from models.package import REQUIRED_FILES, Package, ValidationResult
from modules.package_reader import PackageReader
from logging_config import get_logger


logger = get_logger(__name__)

GCODE_ENTRY = "Metadata/plate_1.gcode"
CHECKSUM_ENTRY = "Metadata/plate_1.gcode.md5"

MIN_GCODE_CHARS = 100
CHECKSUM_LENGTH = 32

# Entry -> substrings its content must contain
XML_ROOT_MARKERS = {
    "3D/3dmodel.model": ("<?xml", "<model"),
    "[Content_Types].xml": ("<Types",),
    "_rels/.rels": ("<Relationships",),
}


class PackageValidator:
    """Check packages against the required-file and well-formedness contract."""

    def __init__(self, required_files: Iterable[str] = REQUIRED_FILES, reader: Optional[PackageReader] = None):
        self.required_files = tuple(required_files)
        self._reader = reader or PackageReader()

    def validate(self, package: Package) -> ValidationResult:
        return self.validate_entries(package.entries)

    def validate_bytes(self, data: bytes) -> ValidationResult:
        """Validate raw archive bytes; an unreadable archive is simply invalid."""
        try:
            entries = self._reader.read_entries(data)
        except ParseError as e:
            return ValidationResult(is_valid=False, errors=[e.message])
        return self.validate_entries(entries)

    def validate_entries(self, entries: Dict[str, bytes]) -> ValidationResult:
        errors = []
        warnings = []

        for name in self.required_files:
            if name not in entries:
                errors.append(f"Missing required file: {name}")

        for name, content in entries.items():
            if not name.lower().endswith(".json"):
                continue
            try:
                json.loads(content.decode("utf-8"))
            except (UnicodeDecodeError, ValueError):
                errors.append(f"Invalid JSON: {name}")

        for name, markers in XML_ROOT_MARKERS.items():
            if name not in entries:
                continue
            text = entries[name].decode("utf-8", errors="replace")
            if not all(marker in text for marker in markers):
                errors.append(f"Malformed XML: {name}")

        if GCODE_ENTRY in entries:
            if len(entries[GCODE_ENTRY].decode("utf-8", errors="replace")) < MIN_GCODE_CHARS:
                warnings.append(f"G-code is very short, it may be empty: {GCODE_ENTRY}")

        if CHECKSUM_ENTRY in entries:
            checksum = entries[CHECKSUM_ENTRY].decode("utf-8", errors="replace")
            if len(checksum) != CHECKSUM_LENGTH:
                warnings.append(f"Checksum is not {CHECKSUM_LENGTH} characters: {CHECKSUM_ENTRY}")

        result = ValidationResult(is_valid=not errors, errors=errors, warnings=warnings)
        if errors:
            logger.warning(f"Package failed validation with {len(errors)} error(s)")
        return result

    def ensure_valid(self, package: Package) -> ValidationResult:
        """
        Validate and raise when invalid.

        Raises:
            ValidationError: Listing every offending file
        """
        result = self.validate(package)
        if not result.is_valid:
            raise ValidationError(result.errors, result.warnings)
        return result
