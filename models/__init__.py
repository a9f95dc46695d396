"""
Data models for the print queue.

This module contains dataclasses for:
- Order: One request to print N copies of a Job
- Job: A sliced package plus its extracted figures
- Package / PackageContents / PackageSummary: Archives and their contents
- ConcatenationCandidate / ConcatenationProposal: Matcher output
- ConcatenationResult / ConcatenationRun: Engine output and background runs

Runs are copied before they leave the run store, so a caller never sees
a record the run thread is still mutating.
"""

from .order import Order, OrderState, LIFECYCLE, QUEUE_STATES, REPRINT_MARKER
from .job import Job, JobAnalysis, ANALYSIS_FIELDS
from .package import (
    Package,
    PackageContents,
    PackageSummary,
    ValidationResult,
    REQUIRED_FILES,
)
from .concatenation import (
    ConcatenationCandidate,
    ConcatenationProposal,
    ConcatenationResult,
    ConcatenationRun,
    ProposalType,
    RunStatus,
)

__all__ = [
    # Order models
    "Order",
    "OrderState",
    "LIFECYCLE",
    "QUEUE_STATES",
    "REPRINT_MARKER",
    # Job models
    "Job",
    "JobAnalysis",
    "ANALYSIS_FIELDS",
    # Package models
    "Package",
    "PackageContents",
    "PackageSummary",
    "ValidationResult",
    "REQUIRED_FILES",
    # Concatenation models
    "ConcatenationCandidate",
    "ConcatenationProposal",
    "ConcatenationResult",
    "ConcatenationRun",
    "ProposalType",
    "RunStatus",
]
