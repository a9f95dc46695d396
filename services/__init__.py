"""
Services layer for the print queue.

This module contains the business logic services:
- QueueStateMachine: Order lifecycle and error compensation
- AnalysisService: Job (re)analysis and metadata backfill
- ConcatenationService: Proposals, inline builds and background runs

Thread Model:
    Main Thread (Flask)
    └── ConcatenationService threads (one per background run)

Run threads share the repositories (each call opens its own session)
and report back only through the lock-protected run store.
"""

from .queue_service import QueueStateMachine, TransitionResult, allowed_transitions
from .analysis_service import AnalysisService, BatchResult
from .concatenation_service import ConcatenationService, ConcatenationRunStore

__all__ = [
    "QueueStateMachine",
    "TransitionResult",
    "allowed_transitions",
    "AnalysisService",
    "BatchResult",
    "ConcatenationService",
    "ConcatenationRunStore",
]
