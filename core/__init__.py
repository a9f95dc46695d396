"""
Core module for the print queue.

Contains fundamental infrastructure components:
- exceptions: Custom exception hierarchy
- database: SQLAlchemy engine, session scope and table definitions
- repository: Order and Job persistence
- storage: Object storage backends for package blobs
- cache: TTL cache for parsed metadata
- deadline: Per-operation time limits
"""

from .exceptions import (
    PrintQueueError,
    ParseError,
    ValidationError,
    NotFoundError,
    RemoteIOError,
    StorageConflictError,
    OperationTimeoutError,
    SizeLimitError,
    InvalidTransitionError,
    DatabaseError,
)
from .cache import TTLCache
from .deadline import Deadline
from .database import Database
from .repository import JobRepository, OrderRepository
from .storage import ObjectStorage, LocalObjectStorage, MemoryObjectStorage, create_storage

__all__ = [
    "PrintQueueError",
    "ParseError",
    "ValidationError",
    "NotFoundError",
    "RemoteIOError",
    "StorageConflictError",
    "OperationTimeoutError",
    "SizeLimitError",
    "InvalidTransitionError",
    "DatabaseError",
    "TTLCache",
    "Deadline",
    "Database",
    "JobRepository",
    "OrderRepository",
    "ObjectStorage",
    "LocalObjectStorage",
    "MemoryObjectStorage",
    "create_storage",
]
