"""
Unit tests for the QueueStateMachine.

Runs against an in-memory SQLite database so the reprint compensation is
checked end to end.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from core.exceptions import DatabaseError, InvalidTransitionError, NotFoundError
from models.job import Job
from models.order import Order, OrderState, REPRINT_MARKER
from services.queue_service import QueueStateMachine, allowed_transitions


FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def job(job_repository):
    return job_repository.create(Job(storage_path="jobs/cube.gcode.3mf"))


@pytest.fixture
def queue_service(order_repository):
    return QueueStateMachine(order_repository, clock=lambda: FIXED_NOW)


def submit(queue_service, job, quantity=2, **fields):
    return queue_service.submit(Order(job_id=job.id, quantity=quantity, project_id=7, organization_id=3, **fields))


def advance(queue_service, order, *states):
    result = None
    for state in states:
        result = queue_service.transition(order.id, state)
    return result


class TestAllowedTransitions:
    """Tests for the lifecycle table."""

    def test_forward_or_error(self):
        assert allowed_transitions(OrderState.PROCESSING) == [OrderState.QUEUED, OrderState.ERROR]
        assert allowed_transitions(OrderState.READY) == [OrderState.DELIVERED, OrderState.ERROR]

    def test_terminal_states(self):
        assert allowed_transitions(OrderState.DELIVERED) == []
        assert allowed_transitions(OrderState.ERROR) == []


class TestSubmit:
    """Tests for Order submission."""

    def test_submit_forces_processing(self, queue_service, job):
        order = submit(queue_service, job, state=OrderState.PRINTING)

        assert order.id is not None
        assert order.state is OrderState.PROCESSING
        assert order.created_at is not None

    def test_submit_unknown_job(self, queue_service):
        with pytest.raises(NotFoundError):
            queue_service.submit(Order(job_id=999, quantity=1))

    def test_processing_not_in_queue(self, queue_service, job):
        order = submit(queue_service, job)
        assert queue_service.queue() == []

        queue_service.transition(order.id, OrderState.QUEUED)

        assert [o.id for o in queue_service.queue()] == [order.id]


class TestTransitions:
    """Tests for lifecycle moves."""

    def test_happy_path_stamps_times(self, queue_service, job):
        order = submit(queue_service, job)

        advance(queue_service, order, OrderState.QUEUED, OrderState.PRINTING)
        ready = queue_service.transition(order.id, OrderState.READY).order

        assert ready.started_at is not None
        assert ready.finished_at is not None

        result = queue_service.transition(order.id, OrderState.DELIVERED)
        assert result.order.state is OrderState.DELIVERED
        assert result.previous_state is OrderState.READY
        assert result.reprint is None

    def test_skipping_a_state_is_rejected(self, queue_service, job):
        order = submit(queue_service, job)

        with pytest.raises(InvalidTransitionError) as exc_info:
            queue_service.transition(order.id, OrderState.PRINTING)

        assert exc_info.value.current == "processing"
        assert exc_info.value.requested == "printing"

    def test_moving_backwards_is_rejected(self, queue_service, job):
        order = submit(queue_service, job)
        advance(queue_service, order, OrderState.QUEUED, OrderState.PRINTING)

        with pytest.raises(InvalidTransitionError):
            queue_service.transition(order.id, OrderState.QUEUED)

    def test_delivered_is_terminal(self, queue_service, job):
        order = submit(queue_service, job)
        advance(queue_service, order, OrderState.QUEUED, OrderState.PRINTING, OrderState.READY, OrderState.DELIVERED)

        with pytest.raises(InvalidTransitionError):
            queue_service.transition(order.id, OrderState.ERROR)

    def test_unknown_order(self, queue_service):
        with pytest.raises(NotFoundError):
            queue_service.transition(12345, OrderState.QUEUED)


class TestErrorCompensation:
    """Tests for the reprint created when an Order fails."""

    def test_error_creates_exactly_one_reprint(self, queue_service, order_repository, job):
        order = submit(queue_service, job, quantity=3, requester_id="user-1")
        advance(queue_service, order, OrderState.QUEUED, OrderState.PRINTING)

        result = queue_service.transition(order.id, OrderState.ERROR)

        assert result.order.state is OrderState.ERROR
        assert result.compensation_error == ""
        reprint = result.reprint
        assert reprint.id != order.id
        assert reprint.state is OrderState.QUEUED
        assert reprint.note == REPRINT_MARKER
        assert reprint.is_reprint
        assert reprint.quantity == 3
        assert reprint.job_id == job.id
        assert reprint.project_id == 7
        assert reprint.organization_id == 3
        assert reprint.requester_id == "user-1"
        assert reprint.started_at is None

        all_orders = order_repository.list()
        assert len(all_orders) == 2

    def test_failed_order_stays_in_error(self, queue_service, order_repository, job):
        order = submit(queue_service, job)
        queue_service.transition(order.id, OrderState.ERROR)

        assert order_repository.get(order.id).state is OrderState.ERROR

        with pytest.raises(InvalidTransitionError):
            queue_service.transition(order.id, OrderState.ERROR)
        assert len(order_repository.list()) == 2

    def test_reprint_failure_is_reported(self):
        """A failed reprint insert does not undo the state change."""
        failed = Order(id=1, job_id=5, quantity=2, state=OrderState.PRINTING)
        orders = MagicMock()
        orders.get.return_value = failed
        orders.update.side_effect = lambda order: order
        orders.create.side_effect = DatabaseError("insert", RuntimeError("disk full"))
        queue_service = QueueStateMachine(orders, clock=lambda: FIXED_NOW)

        result = queue_service.transition(1, OrderState.ERROR)

        assert result.order.state is OrderState.ERROR
        assert result.reprint is None
        assert "disk full" in result.compensation_error
        orders.update.assert_called_once()
