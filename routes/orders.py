"""
Order routes.

Handles:
- POST /api/orders - Submit a new Order (state: processing)
- GET  /api/queue - Orders visible to the print queue
- POST /api/orders/<id>/state - Move an Order through its lifecycle
"""

from flask import Blueprint, current_app, request

import bleach

from models.order import QUEUE_STATES, Order, OrderState
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

orders_bp = Blueprint("orders", __name__)

MAX_NOTE_LENGTH = 1000
MAX_REQUESTER_LENGTH = 100


def _sanitize_text(text: str, max_length: int = None) -> str:
    """
    Sanitize user input text to prevent XSS and injection attacks.

    Args:
        text: Raw input text
        max_length: Optional maximum length to enforce

    Returns:
        Sanitized text safe for storage and display
    """
    if not text:
        return ""

    text = str(text).strip()

    # Bleach HTML tags and attributes
    text = bleach.clean(text, tags=[], strip=True)

    if max_length and len(text) > max_length:
        text = text[:max_length]

    return text


@orders_bp.route("/api/orders", methods=["POST"])
def submit_order():
    """Create an Order from a JSON body."""
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return {"error": "Request body must be a JSON object"}, 400

    payload = dict(payload)
    payload["note"] = _sanitize_text(payload.get("note", ""), MAX_NOTE_LENGTH)
    payload["requester_id"] = _sanitize_text(payload.get("requester_id", ""), MAX_REQUESTER_LENGTH)
    # Lifecycle fields are never taken from the client
    for key in ("id", "state", "started_at", "finished_at"):
        payload.pop(key, None)

    if not isinstance(payload.get("job_id"), int):
        return {"error": "job_id must be an integer"}, 400

    try:
        order = Order.from_dict(payload)
    except ValueError as e:
        return {"error": str(e)}, 400

    queue_service = current_app.config["QUEUE_SERVICE"]
    created = queue_service.submit(order)
    return {"order": created.to_dict()}, 201


@orders_bp.route("/api/queue", methods=["GET"])
def list_queue():
    """
    Orders in the print queue, oldest first.

    Optional ``?state=queued&state=printing`` narrows the queue states.
    """
    requested = request.args.getlist("state")
    try:
        states = {OrderState(value) for value in requested} if requested else set(QUEUE_STATES)
    except ValueError as e:
        return {"error": str(e)}, 400

    order_repository = current_app.config["ORDER_REPOSITORY"]
    orders = order_repository.list(states=states)
    return {"orders": [o.to_dict() for o in orders], "count": len(orders)}, 200


@orders_bp.route("/api/orders/<int:order_id>/state", methods=["POST"])
def change_state(order_id: int):
    """Apply a lifecycle transition. Entering 'error' also queues a reprint."""
    payload = request.get_json(silent=True) or {}
    try:
        new_state = OrderState(payload.get("state"))
    except ValueError:
        valid = ", ".join(s.value for s in OrderState)
        return {"error": f"state must be one of: {valid}"}, 400

    queue_service = current_app.config["QUEUE_SERVICE"]
    result = queue_service.transition(order_id, new_state)
    return result.to_dict(), 200
