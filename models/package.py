"""
Print package data models.

A print package (``.gcode.3mf``) is a ZIP archive holding the sliced
machine-code stream plus the metadata, thumbnails and project settings the
printer firmware and slicer expect to find next to it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional


REQUIRED_FILES = (
    "[Content_Types].xml",
    "_rels/.rels",
    "3D/3dmodel.model",
    "Metadata/plate_1.gcode",
    "Metadata/plate_1.gcode.md5",
    "Metadata/plate_1.json",
    "Metadata/slice_info.config",
    "Metadata/project_settings.config",
    "Metadata/model_settings.config",
    "Metadata/cut_information.xml",
    "Metadata/plate_1.png",
    "Metadata/plate_1_small.png",
)
"""Entries a package must carry to be accepted by the printer."""


@dataclass
class PackageContents:
    """
    What PackageReader located inside an archive.

    ``entries`` preserves archive order so a package can be cloned entry by
    entry without reshuffling it.
    """

    gcode: str
    """Decoded machine-code stream."""

    gcode_entry: str
    """Archive name the stream was read from."""

    metadata_raw: bytes = b""
    """Raw bytes of the metadata entry; empty if none was found."""

    metadata_entry: Optional[str] = None

    auxiliary_files: Dict[str, bytes] = field(default_factory=dict)
    """Every entry other than the stream and the metadata entry."""

    entries: Dict[str, bytes] = field(default_factory=dict)
    """All entries in archive order."""


@dataclass
class PackageSummary:
    """Aggregate figures reported alongside a built package."""

    original_files: List[str] = field(default_factory=list)
    total_layers: int = 0
    total_time: float = 0.0
    total_material: float = 0.0
    checksums: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Wire format, keys as the front end expects them."""
        return {
            "originalFiles": list(self.original_files),
            "totalLayers": self.total_layers,
            "totalTime": round(self.total_time, 2),
            "totalMaterial": round(self.total_material, 2),
            "checksums": dict(self.checksums),
        }


@dataclass
class Package:
    """
    A complete archive: its bytes plus the entry map it was built from.

    Invariant: ``data`` is the ZIP serialization of ``entries``.
    """

    data: bytes
    entries: Dict[str, bytes]
    summary: PackageSummary = field(default_factory=PackageSummary)

    @property
    def size(self) -> int:
        return len(self.data)

    def names(self) -> List[str]:
        return list(self.entries)


@dataclass
class ValidationResult:
    """Outcome of checking a package against the required-file contract."""

    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
