"""
Concatenation data models.

Candidates and proposals are computed on demand from the queue and never
persisted. Results and runs carry the outcome of building a merged package,
the latter for builds executed on a background thread.

Thread Safety:
    - ConcatenationRun is created by the run thread and only replaced,
      never mutated, once stored in ConcatenationRunStore
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional

from .package import Package, PackageSummary, ValidationResult


class ProposalType(Enum):
    """How the Orders in a proposal relate to each other."""

    SAME_GCODE = "same_gcode"
    """All Orders print the same Job (or one Order is replicated)."""

    SAME_MATERIAL = "same_material"
    """Different Jobs sharing a material (and usually a printer)."""


@dataclass
class ConcatenationCandidate:
    """
    A group of Orders that could be printed as one package.

    Invariant: ``total_quantity`` equals the summed quantity of the Orders
    in ``order_ids``.
    """

    order_ids: List[int]
    job_ids: List[int]
    """Distinct Jobs, in discovery order."""

    printer: str
    material_name: str
    print_settings_name: str
    total_quantity: int
    is_same_gcode: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderIds": list(self.order_ids),
            "jobIds": list(self.job_ids),
            "printer": self.printer,
            "materialName": self.material_name,
            "printSettingsName": self.print_settings_name,
            "totalQuantity": self.total_quantity,
            "isSameGcode": self.is_same_gcode,
        }


@dataclass
class ConcatenationProposal:
    """A candidate plus the description and estimates shown to the operator."""

    id: str
    type: ProposalType
    candidate: ConcatenationCandidate
    description: str
    estimated_time: float
    """Minutes, summed over every copy."""

    estimated_material: float
    """Grams, summed over every copy."""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "candidate": self.candidate.to_dict(),
            "description": self.description,
            "estimatedTime": round(self.estimated_time, 2),
            "estimatedMaterial": round(self.estimated_material, 2),
        }


@dataclass
class ConcatenationResult:
    """A built package plus what went into it."""

    package: Package
    requested_segments: int
    included_segments: int
    validation: ValidationResult
    warnings: List[str] = field(default_factory=list)

    @property
    def summary(self) -> PackageSummary:
        return self.package.summary

    @property
    def truncated(self) -> bool:
        return self.included_segments < self.requested_segments

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary.to_dict(),
            "requestedSegments": self.requested_segments,
            "includedSegments": self.included_segments,
            "truncated": self.truncated,
            "warnings": list(self.warnings),
            "validation": self.validation.to_dict(),
            "size": self.package.size,
        }


class RunStatus(Enum):
    """
    Status of a background concatenation run.

    Lifecycle:
        PENDING -> RUNNING -> (COMPLETED | FAILED)
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ConcatenationRun:
    """
    Record of one background concatenation.

    Written by the run thread into ConcatenationRunStore and read by the
    request threads polling for it.
    """

    run_id: str
    """Unique run identifier (UUID)."""

    submitted_at: datetime
    status: RunStatus
    order_ids: List[int] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    artifact_path: Optional[str] = None
    """Storage key of the uploaded package, when completed."""

    summary: Optional[PackageSummary] = None
    warnings: List[str] = field(default_factory=list)
    error: str = ""
    error_details: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create_pending(cls, run_id: str, order_ids: List[int]) -> "ConcatenationRun":
        return cls(
            run_id=run_id,
            submitted_at=datetime.now(timezone.utc),
            status=RunStatus.PENDING,
            order_ids=list(order_ids),
        )

    def mark_running(self) -> "ConcatenationRun":
        return ConcatenationRun(
            run_id=self.run_id,
            submitted_at=self.submitted_at,
            status=RunStatus.RUNNING,
            order_ids=self.order_ids,
        )

    def mark_completed(
        self,
        artifact_path: Optional[str],
        summary: PackageSummary,
        warnings: List[str],
    ) -> "ConcatenationRun":
        return ConcatenationRun(
            run_id=self.run_id,
            submitted_at=self.submitted_at,
            status=RunStatus.COMPLETED,
            order_ids=self.order_ids,
            finished_at=datetime.now(timezone.utc),
            artifact_path=artifact_path,
            summary=summary,
            warnings=list(warnings),
        )

    def mark_failed(self, error: str, details: Optional[Dict[str, Any]] = None) -> "ConcatenationRun":
        return ConcatenationRun(
            run_id=self.run_id,
            submitted_at=self.submitted_at,
            status=RunStatus.FAILED,
            order_ids=self.order_ids,
            finished_at=datetime.now(timezone.utc),
            error=error,
            error_details=dict(details or {}),
        )

    @property
    def is_finished(self) -> bool:
        return self.status in (RunStatus.COMPLETED, RunStatus.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "submitted_at": self.submitted_at.isoformat(),
            "status": self.status.value,
            "order_ids": list(self.order_ids),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "artifact_path": self.artifact_path,
            "summary": self.summary.to_dict() if self.summary else None,
            "warnings": list(self.warnings),
            "error": self.error,
            "error_details": dict(self.error_details),
        }
