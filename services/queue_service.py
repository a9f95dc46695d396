"""
Order lifecycle service.

Owns every Order state change:

    processing -> queued -> printing -> ready -> delivered
    (any non-terminal state) -> error

Only the next forward state or ``error`` is accepted. Entering ``error``
leaves the failed Order in place and queues one compensating reprint Order
with the same job, quantity and ownership. A failure to create the reprint
is logged and reported on the result; the state change itself stands.

Concatenation never calls into this service: building a merged package
does not move any Order.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Dict, Any, List, Optional

from core.exceptions import InvalidTransitionError, PrintQueueError
from core.repository import OrderRepository
from models.order import LIFECYCLE, QUEUE_STATES, Order, OrderState
from logging_config import get_logger


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TransitionResult:
    """Outcome of one state change."""

    order: Order
    previous_state: OrderState
    reprint: Optional[Order] = None
    compensation_error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": self.order.to_dict(),
            "previous_state": self.previous_state.value,
            "reprint": self.reprint.to_dict() if self.reprint else None,
            "compensation_error": self.compensation_error,
        }


def allowed_transitions(state: OrderState) -> List[OrderState]:
    """States reachable from ``state`` in one step."""
    if state.is_terminal:
        return []
    index = LIFECYCLE.index(state)
    return [LIFECYCLE[index + 1], OrderState.ERROR]


class QueueStateMachine:
    """
    Validate and apply Order state changes.

    Args:
        orders: Repository the Orders are read from and written to
        clock: Source of timestamps (UTC)
    """

    def __init__(self, orders: OrderRepository, clock: Callable[[], datetime] = _utcnow):
        self._orders = orders
        self._clock = clock

    def submit(self, order: Order) -> Order:
        """
        Record a new Order in ``processing``.

        Raises:
            NotFoundError: If the Order's Job does not exist
        """
        new_order = replace(
            order,
            id=None,
            state=OrderState.PROCESSING,
            created_at=order.created_at or self._clock(),
            started_at=None,
            finished_at=None,
        )
        created = self._orders.create(new_order)
        logger.info(f"Order {created.id} submitted: job {created.job_id} x{created.quantity}")
        return created

    def queue(self) -> List[Order]:
        """Orders visible to the print queue, oldest first."""
        return self._orders.list(states=QUEUE_STATES)

    def transition(self, order_id: int, new_state: OrderState) -> TransitionResult:
        """
        Move an Order to ``new_state``.

        Raises:
            NotFoundError: If the Order does not exist
            InvalidTransitionError: If the lifecycle does not allow the move
        """
        order = self._orders.get(order_id)
        current = order.state

        if new_state not in allowed_transitions(current):
            raise InvalidTransitionError(order_id, current.value, new_state.value)

        now = self._clock()
        changes: Dict[str, Any] = {"state": new_state}
        if new_state is OrderState.PRINTING:
            changes["started_at"] = now
        elif new_state is OrderState.READY:
            changes["finished_at"] = now

        updated = self._orders.update(replace(order, **changes))
        logger.info(f"Order {order_id}: {current.value} -> {new_state.value}")

        result = TransitionResult(order=updated, previous_state=current)
        if new_state is OrderState.ERROR:
            self._compensate(updated, result)
        return result

    def _compensate(self, failed: Order, result: TransitionResult) -> None:
        try:
            reprint = self._orders.create(failed.make_reprint(self._clock()))
        except PrintQueueError as e:
            result.compensation_error = str(e)
            logger.error(f"Reprint for failed order {failed.id} could not be created: {e}")
            return

        result.reprint = reprint
        logger.info(f"Order {failed.id} failed, reprint order {reprint.id} queued")
