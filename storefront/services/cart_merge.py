"""Fold a guest cart into an account cart when the visitor signs in.

The reconciliation itself is :func:`merge_lines`, a pure function over two
line multisets. :class:`CartMergeService` loads both carts, asks for a plan
and applies it in one transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from ..db.session import get_session
from ..errors import ValidationError
from ..identity import AccountOwner, GuestOwner
from ..models.base import utcnow
from ..models.cart import CartLine
from .cart_service import cart_lines, drop_cart, find_cart, is_live
from .logging import log_event


LineKey = Tuple[str, str]


@dataclass(frozen=True)
class LineSpec:
    product_id: str
    attributes_key: str
    quantity: int
    price_snapshot: Decimal
    attributes: Optional[dict] = None

    @property
    def key(self) -> LineKey:
        return self.product_id, self.attributes_key

    @classmethod
    def from_line(cls, line: CartLine) -> "LineSpec":
        return cls(
            product_id=line.product_id,
            attributes_key=line.attributes_key or "",
            quantity=line.quantity,
            price_snapshot=Decimal(line.price_snapshot),
            attributes=line.attributes,
        )


@dataclass
class MergePlan:
    # quantity to add to an existing account line, by line identity
    increments: Dict[LineKey, int] = field(default_factory=dict)
    # guest lines with no counterpart in the account cart
    copies: List[LineSpec] = field(default_factory=list)

    def final_quantities(self, account_lines: Iterable[LineSpec]) -> Dict[LineKey, int]:
        result: Dict[LineKey, int] = {}
        for line in account_lines:
            result[line.key] = result.get(line.key, 0) + line.quantity
        for key, qty in self.increments.items():
            result[key] = result.get(key, 0) + qty
        for spec in self.copies:
            result[spec.key] = result.get(spec.key, 0) + spec.quantity
        return result


def merge_lines(account_lines: Iterable[LineSpec], guest_lines: Iterable[LineSpec]) -> MergePlan:
    """Plan the fold of ``guest_lines`` into ``account_lines``.

    Matching is by (product, attribute selection). Quantities of matches are
    summed onto the account line, whose price snapshot is kept. Unmatched
    guest lines are copied with their own snapshot; repeated guest keys are
    collapsed into one copy. The resulting quantities do not depend on the
    order of either input.
    """
    account_keys = {line.key for line in account_lines}
    plan = MergePlan()
    pending: Dict[LineKey, LineSpec] = {}
    for line in guest_lines:
        if line.quantity <= 0:
            continue
        if line.key in account_keys:
            plan.increments[line.key] = plan.increments.get(line.key, 0) + line.quantity
        elif line.key in pending:
            prev = pending[line.key]
            pending[line.key] = replace(prev, quantity=prev.quantity + line.quantity)
        else:
            pending[line.key] = line
    plan.copies = [pending[k] for k in sorted(pending)]
    return plan


class CartMergeService:
    """One-shot guest → account cart reconciliation."""

    def __init__(
        self,
        session_factory=get_session,
        *,
        ttl_days: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._ttl = timedelta(days=ttl_days)
        self._clock = clock

    def merge(self, session_token: str, account_id: str) -> Dict:
        if not session_token or not account_id:
            raise ValidationError("Both a guest session token and an account id are required")
        guest = GuestOwner(session_token)
        account = AccountOwner(account_id)

        with self._session_factory() as session:
            now = self._clock()
            guest_cart = find_cart(session, guest, lock=True)
            if not is_live(guest_cart, now):
                return {"status": "noop", "cart_id": None, "merged": 0, "copied": 0}

            account_cart = find_cart(session, account, lock=True)
            if account_cart is not None and not is_live(account_cart, now):
                drop_cart(session, account_cart)
                account_cart = None

            if account_cart is None:
                guest_cart.owner_kind = account.kind
                guest_cart.owner_ref = account.ref
                guest_cart.expires_at = now + self._ttl
                guest_cart.updated_at = now
                session.flush()
                log_event("info", "cart.merged", cart_id=guest_cart.id, mode="rekey")
                return {"status": "rekeyed", "cart_id": guest_cart.id, "merged": 0, "copied": 0}

            account_rows = cart_lines(session, account_cart.id)
            guest_rows = cart_lines(session, guest_cart.id)
            plan = merge_lines(
                [LineSpec.from_line(l) for l in account_rows],
                [LineSpec.from_line(l) for l in guest_rows],
            )

            by_key = {(l.product_id, l.attributes_key or ""): l for l in account_rows}
            for key, qty in plan.increments.items():
                target = by_key[key]
                target.quantity += qty
                target.updated_at = now
            for spec in plan.copies:
                session.add(
                    CartLine(
                        id=str(uuid4()),
                        cart_id=account_cart.id,
                        product_id=spec.product_id,
                        quantity=spec.quantity,
                        price_snapshot=spec.price_snapshot,
                        attributes=spec.attributes,
                        attributes_key=spec.attributes_key,
                        created_at=now,
                        updated_at=now,
                    )
                )
            account_cart.updated_at = now
            session.flush()
            for row in guest_rows:
                session.expunge(row)
            drop_cart(session, guest_cart)
            log_event(
                "info",
                "cart.merged",
                cart_id=account_cart.id,
                mode="fold",
                merged=len(plan.increments),
                copied=len(plan.copies),
            )
            return {
                "status": "merged",
                "cart_id": account_cart.id,
                "merged": len(plan.increments),
                "copied": len(plan.copies),
            }
