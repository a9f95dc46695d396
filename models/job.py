"""
Job (machine-code record) data models.

A Job is one sliced, printable unit: a stored package plus the figures
extracted from it. Many Orders may reference the same Job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Any, List, Optional


ANALYSIS_FIELDS = ("weight_grams", "duration_minutes", "material", "printer")
"""Fields filled in by package analysis; None means not analyzed yet."""


@dataclass
class Job:
    """
    Metadata about one sliceable unit.

    The analysis fields are optional because uploads may predate the
    analyzer or the analyzer may not find a value in the package.
    """

    storage_path: str
    """Object storage key of the .gcode.3mf package."""

    source_file_id: Optional[int] = None
    """Design file the package was sliced from."""

    weight_grams: Optional[float] = None
    """Filament weight for one copy."""

    duration_minutes: Optional[float] = None
    """Estimated print time for one copy."""

    material: Optional[str] = None
    """Material name or type, e.g. 'PLA'."""

    printer: Optional[str] = None
    """Free-text printer label, e.g. 'X1C'. Empty means unknown."""

    uploaded_at: Optional[datetime] = None
    """Upload timestamp."""

    note: str = ""

    id: Optional[int] = None

    @property
    def file_name(self) -> str:
        """Last path component of the storage key."""
        return self.storage_path.rsplit("/", 1)[-1]

    def missing_fields(self) -> List[str]:
        """Analysis fields that are still unset."""
        return [name for name in ANALYSIS_FIELDS if getattr(self, name) in (None, "")]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "storage_path": self.storage_path,
            "file_name": self.file_name,
            "source_file_id": self.source_file_id,
            "weight_grams": self.weight_grams,
            "duration_minutes": self.duration_minutes,
            "material": self.material,
            "printer": self.printer,
            "uploaded_at": self.uploaded_at.isoformat() if self.uploaded_at else None,
            "note": self.note,
        }


@dataclass
class JobAnalysis:
    """
    Figures extracted from a package (or bare G-code file).

    ``errors`` means a value could not be read at all; ``warnings`` means
    a value was derived from a heuristic rather than read from the file.
    """

    weight_grams: Optional[float] = None
    duration_minutes: Optional[float] = None
    material: Optional[str] = None
    printer: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def as_updates(self) -> Dict[str, Any]:
        """Analysis values that were found, keyed by Job field."""
        values = {
            "weight_grams": self.weight_grams,
            "duration_minutes": self.duration_minutes,
            "material": self.material,
            "printer": self.printer,
        }
        return {k: v for k, v in values.items() if v not in (None, "")}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weight_grams": self.weight_grams,
            "duration_minutes": self.duration_minutes,
            "material": self.material,
            "printer": self.printer,
            "metadata": dict(self.metadata),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
