"""Order lifecycle state machine.

    pending → confirmed → processing → shipped → delivered → refunded
       └──────────┴────────────┴───────────┴──→ cancelled

``cancelled`` and ``refunded`` are terminal. Every accepted transition
updates ``order.status`` and appends one row to the status ledger in the same
transaction, so the column always equals the latest ledger entry.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional
from uuid import uuid4

from sqlalchemy import func

from ..db.session import get_session
from ..errors import InvalidTransition, NoOpTransition, NotFound, ValidationError
from ..models.base import utcnow
from ..models.order import Order, OrderLine, OrderStatusEvent
from ..models.product import Product
from .logging import log_event
from .notifications import ORDER_STATUS_CHANGED, Notifier, dispatch_safely


ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded")

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered", "cancelled"}),
    "delivered": frozenset({"refunded"}),
    "cancelled": frozenset(),
    "refunded": frozenset(),
}

# payment status implied by reaching a state
PAYMENT_ON_ENTRY = {
    "delivered": "paid",
    "cancelled": "refunded",
}


def allowed_transitions(status: str) -> FrozenSet[str]:
    return TRANSITIONS.get(status, frozenset())


def is_terminal(status: str) -> bool:
    return not allowed_transitions(status)


def check_transition(current: str, target: str) -> None:
    if target == current:
        raise NoOpTransition(current)
    allowed = allowed_transitions(current)
    if target not in allowed:
        raise InvalidTransition(current, target, allowed)


def current_status_from_history(events: Iterable) -> Optional[str]:
    """Project the ledger onto a status: the entry with the highest sequence wins."""
    latest = None
    for ev in events:
        seq = ev["sequence"] if isinstance(ev, dict) else ev.sequence
        if latest is None or seq > latest[0]:
            latest = (seq, ev["status"] if isinstance(ev, dict) else ev.status)
    return latest[1] if latest else None


class OrderStatusService:
    """Validates and records status transitions on existing orders."""

    def __init__(
        self,
        session_factory=get_session,
        *,
        notifier: Optional[Notifier] = None,
        restock_on_cancel: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._notifier = notifier
        self._restock_on_cancel = restock_on_cancel
        self._clock = clock

    def transition(self, order_id: str, target_status: str, notes: Optional[str] = None) -> Dict:
        target = (target_status or "").strip().lower()
        with self._session_factory() as session:
            order = (
                session.query(Order).filter(Order.id == order_id).with_for_update().first()
                if order_id
                else None
            )
            if order is None:
                raise NotFound("order", order_id)
            if target not in TRANSITIONS:
                raise ValidationError(
                    f"Unknown order status: {target_status!r}",
                    details=[{"field": "status", "message": f"must be one of {', '.join(ORDER_STATUSES)}"}],
                )
            if notes is not None and len(notes) > 500:
                raise ValidationError("notes must be at most 500 characters")

            previous = order.status
            check_transition(previous, target)

            now = self._clock()
            order.status = target
            order.updated_at = now
            if target in PAYMENT_ON_ENTRY:
                order.payment_status = PAYMENT_ON_ENTRY[target]
            if target == "cancelled" and self._restock_on_cancel:
                self._release_stock(session, order, now)

            last_seq = (
                session.query(func.max(OrderStatusEvent.sequence))
                .filter(OrderStatusEvent.order_id == order.id)
                .scalar()
            )
            text = (notes or "").strip() or f'Order status updated from "{previous}" to "{target}"'
            session.add(
                OrderStatusEvent(
                    id=str(uuid4()),
                    order_id=order.id,
                    sequence=(last_seq or 0) + 1,
                    status=target,
                    notes=text,
                    created_at=now,
                )
            )
            session.flush()

            result = {
                "id": order.id,
                "order_number": order.order_number,
                "status": order.status,
                "previous_status": previous,
                "payment_status": order.payment_status,
                "updated_at": order.updated_at,
            }
            recipient = order.customer_email

        log_event(
            "info",
            "order.status_changed",
            order_id=result["id"],
            previous=previous,
            status=target,
        )
        dispatch_safely(
            self._notifier,
            ORDER_STATUS_CHANGED,
            recipient,
            {
                "order_id": result["id"],
                "order_number": result["order_number"],
                "status": target,
                "previous_status": previous,
                "notes": text,
            },
        )
        return result

    @staticmethod
    def _release_stock(session, order: Order, now: datetime) -> None:
        # give back what the checkout reserved
        lines = session.query(OrderLine).filter(OrderLine.order_id == order.id).all()
        returned: Dict[str, int] = {}
        for line in lines:
            returned[line.product_id] = returned.get(line.product_id, 0) + line.quantity
        for product_id in sorted(returned):
            session.query(Product).filter(Product.id == product_id).update(
                {Product.stock: Product.stock + returned[product_id], Product.updated_at: now},
                synchronize_session=False,
            )

    def history(self, order_id: str) -> List[Dict]:
        with self._session_factory() as session:
            if not order_id or session.get(Order, order_id) is None:
                raise NotFound("order", order_id)
            events = (
                session.query(OrderStatusEvent)
                .filter(OrderStatusEvent.order_id == order_id)
                .order_by(OrderStatusEvent.sequence)
                .all()
            )
            return [
                {
                    "id": ev.id,
                    "sequence": ev.sequence,
                    "status": ev.status,
                    "notes": ev.notes,
                    "created_at": ev.created_at,
                }
                for ev in events
            ]
