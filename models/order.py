"""
Order data models.

An Order is a request for N copies of a printed item. It moves through the
print queue lifecycle:

    processing -> queued -> printing -> ready -> delivered
                 (any non-terminal state) -> error

Orders are never deleted by the core. An Order that enters ``error`` stays
there; a fresh reprint Order takes its place in the queue.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


REPRINT_MARKER = "reprint"
"""Note stamped on Orders created to compensate for a failed print."""


class OrderState(Enum):
    """
    Lifecycle state of an Order.

    Lifecycle:
        PROCESSING -> QUEUED -> PRINTING -> READY -> DELIVERED
        ERROR is reachable from every non-terminal state.
    """

    PROCESSING = "processing"
    """Submitted, waiting for an operator to accept it into the queue."""

    QUEUED = "queued"
    """Accepted and waiting for a printer."""

    PRINTING = "printing"
    """Currently on a printer."""

    READY = "ready"
    """Printed, waiting for pickup or shipping."""

    DELIVERED = "delivered"
    """Handed over. Terminal."""

    ERROR = "error"
    """Print failed. Terminal; a reprint Order replaces it."""

    @property
    def is_terminal(self) -> bool:
        return self in (OrderState.DELIVERED, OrderState.ERROR)


# Forward-only happy path; ERROR is handled separately
LIFECYCLE = (
    OrderState.PROCESSING,
    OrderState.QUEUED,
    OrderState.PRINTING,
    OrderState.READY,
    OrderState.DELIVERED,
)

# States whose Orders are visible to the print queue and the matcher
QUEUE_STATES = frozenset({
    OrderState.QUEUED,
    OrderState.PRINTING,
    OrderState.READY,
    OrderState.ERROR,
})


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass
class Order:
    """
    A unit of demand for a printed item.

    Attributes are plain values; persistence goes through OrderRepository.
    ``quantity`` must be positive, which is enforced on construction.
    """

    job_id: int
    """Machine-code Job this Order prints."""

    quantity: int
    """Number of copies requested (> 0)."""

    project_id: Optional[int] = None
    """Project (commission) the Order belongs to."""

    organization_id: Optional[int] = None
    """Owning organization."""

    requester_id: str = ""
    """Identity of the user who submitted the Order."""

    state: OrderState = OrderState.PROCESSING
    """Current lifecycle state."""

    created_at: Optional[datetime] = None
    """Submission timestamp."""

    requested_delivery: Optional[datetime] = None
    """Optional delivery date asked for by the requester."""

    started_at: Optional[datetime] = None
    """Stamped when the Order enters PRINTING."""

    finished_at: Optional[datetime] = None
    """Stamped when the Order enters READY."""

    note: str = ""
    """Free text. Reprints carry REPRINT_MARKER."""

    id: Optional[int] = None
    """Row identity, None until persisted."""

    def __post_init__(self) -> None:
        if isinstance(self.state, str):
            self.state = OrderState(self.state)
        if not isinstance(self.quantity, int) or isinstance(self.quantity, bool) or self.quantity <= 0:
            raise ValueError(f"Order quantity must be a positive integer, got {self.quantity!r}")

    @property
    def is_reprint(self) -> bool:
        return REPRINT_MARKER in (self.note or "")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dictionary."""
        return {
            "id": self.id,
            "job_id": self.job_id,
            "quantity": self.quantity,
            "project_id": self.project_id,
            "organization_id": self.organization_id,
            "requester_id": self.requester_id,
            "state": self.state.value,
            "created_at": _iso(self.created_at),
            "requested_delivery": _iso(self.requested_delivery),
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "note": self.note,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        """Create from a dictionary (e.g. a JSON request body)."""
        return cls(
            id=data.get("id"),
            job_id=data.get("job_id"),
            quantity=data.get("quantity", 0),
            project_id=data.get("project_id"),
            organization_id=data.get("organization_id"),
            requester_id=data.get("requester_id", ""),
            state=OrderState(data.get("state", OrderState.PROCESSING.value)),
            created_at=_parse_dt(data.get("created_at")),
            requested_delivery=_parse_dt(data.get("requested_delivery")),
            started_at=_parse_dt(data.get("started_at")),
            finished_at=_parse_dt(data.get("finished_at")),
            note=data.get("note") or "",
        )

    def make_reprint(self, created_at: datetime) -> "Order":
        """
        Build the compensating Order for a failed print.

        Copies quantity, job, project, organization, requester and requested
        delivery; the copy starts QUEUED with the reprint marker as its note.
        """
        return replace(
            self,
            id=None,
            state=OrderState.QUEUED,
            created_at=created_at,
            started_at=None,
            finished_at=None,
            note=REPRINT_MARKER,
        )
