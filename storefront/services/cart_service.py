from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, Dict, FrozenSet, Iterable, Optional
from uuid import uuid4

from sqlalchemy.orm import Session

from ..db.session import get_session
from ..errors import InsufficientStock, NotFound, ProductUnavailable, ValidationError
from ..identity import OwnerKey
from ..models.base import utcnow
from ..models.cart import Cart, CartLine, attributes_key
from .catalog_service import CatalogService, ProductLookup, ProductSnapshot
from .logging import log_event


DEFAULT_PURCHASABLE = frozenset({"active"})


def find_cart(session: Session, owner: OwnerKey, *, lock: bool = False) -> Optional[Cart]:
    """Return the owner's cart row, expired or not."""
    q = session.query(Cart).filter(Cart.owner_kind == owner.kind, Cart.owner_ref == owner.ref)
    if lock:
        q = q.with_for_update()
    return q.first()


def is_live(cart: Optional[Cart], now: datetime) -> bool:
    return cart is not None and cart.expires_at > now


def find_live_cart(session: Session, owner: OwnerKey, now: datetime, *, lock: bool = False) -> Optional[Cart]:
    cart = find_cart(session, owner, lock=lock)
    return cart if is_live(cart, now) else None


def drop_cart(session: Session, cart: Cart) -> None:
    """Delete a cart and its lines inside the caller's transaction."""
    session.query(CartLine).filter(CartLine.cart_id == cart.id).delete(synchronize_session=False)
    session.delete(cart)
    session.flush()


def cart_lines(session: Session, cart_id: str) -> list:
    return (
        session.query(CartLine)
        .filter(CartLine.cart_id == cart_id)
        .order_by(CartLine.created_at, CartLine.id)
        .all()
    )


def line_view(line: CartLine) -> Dict:
    price = Decimal(line.price_snapshot)
    return {
        "id": line.id,
        "product_id": line.product_id,
        "attributes": line.attributes or {},
        "quantity": line.quantity,
        "price_snapshot": price,
        "line_total": price * line.quantity,
    }


def cart_view(cart: Optional[Cart], lines: Iterable[CartLine]) -> Dict:
    items = [line_view(it) for it in lines]
    subtotal = sum((it["line_total"] for it in items), Decimal("0"))
    return {
        "id": cart.id if cart else None,
        "owner_kind": cart.owner_kind if cart else None,
        "expires_at": cart.expires_at if cart else None,
        "items": items,
        "item_count": sum(it["quantity"] for it in items),
        "subtotal": subtotal,
    }


def validate_quantity(quantity, *, allow_non_positive: bool = False) -> int:
    if isinstance(quantity, bool):
        raise ValidationError("quantity must be an integer")
    try:
        qnty = int(quantity)
    except (TypeError, ValueError):
        raise ValidationError("quantity must be an integer")
    if qnty != quantity and not isinstance(quantity, str):
        raise ValidationError("quantity must be an integer")
    if qnty <= 0 and not allow_non_positive:
        raise ValidationError("quantity must be > 0")
    return qnty


class CartService:
    """Cart operations backed by DB.

    Every public method is one unit of work. The product lookup is read
    before or beside the cart transaction and never written to.
    """

    def __init__(
        self,
        session_factory=get_session,
        product_lookup: Optional[ProductLookup] = None,
        *,
        ttl_days: int = 30,
        purchasable_statuses: FrozenSet[str] = DEFAULT_PURCHASABLE,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._products = product_lookup or CatalogService(session_factory)
        self._ttl = timedelta(days=ttl_days)
        self._purchasable = frozenset(s.lower() for s in purchasable_statuses)
        self._clock = clock

    # ------------------------------------------------------------------
    # Transaction-scoped helpers, shared with merge and checkout
    # ------------------------------------------------------------------
    def ensure_cart(self, session: Session, owner: OwnerKey) -> Cart:
        now = self._clock()
        cart = find_cart(session, owner, lock=True)
        if is_live(cart, now):
            return cart
        if cart is not None:
            # expired carts count as absent; drop the row so the owner key is free
            drop_cart(session, cart)
        cart = Cart(
            id=str(uuid4()),
            owner_kind=owner.kind,
            owner_ref=owner.ref,
            expires_at=now + self._ttl,
            created_at=now,
            updated_at=now,
        )
        session.add(cart)
        session.flush()
        log_event("info", "cart.created", cart_id=cart.id, owner_kind=owner.kind)
        return cart

    def clear(self, session: Session, cart: Cart) -> int:
        """Delete every line of ``cart`` inside the caller's transaction."""
        removed = (
            session.query(CartLine)
            .filter(CartLine.cart_id == cart.id)
            .delete(synchronize_session=False)
        )
        cart.updated_at = self._clock()
        session.flush()
        session.expire(cart, ["lines"])
        return removed

    def _check_product(self, product_id: str) -> ProductSnapshot:
        product = self._products.get_product(product_id)
        if product is None:
            raise ProductUnavailable(product_id)
        if product.status not in self._purchasable:
            raise ProductUnavailable(product_id, product.status)
        return product

    def _owned_line(self, session: Session, owner: OwnerKey, line_id: str):
        if not line_id:
            raise ValidationError("line_id required")
        cart = find_live_cart(session, owner, self._clock(), lock=True)
        if cart is None:
            raise NotFound("cart")
        line = (
            session.query(CartLine)
            .filter(CartLine.id == line_id, CartLine.cart_id == cart.id)
            .first()
        )
        return cart, line

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------
    def get_or_create_cart(self, owner: OwnerKey) -> Dict:
        with self._session_factory() as session:
            cart = self.ensure_cart(session, owner)
            return cart_view(cart, cart_lines(session, cart.id))

    def get_cart(self, owner: OwnerKey) -> Dict:
        with self._session_factory() as session:
            cart = find_live_cart(session, owner, self._clock())
            if cart is None:
                return cart_view(None, [])
            return cart_view(cart, cart_lines(session, cart.id))

    def add_line(self, owner: OwnerKey, product_id: str, quantity, attributes: Optional[dict] = None) -> Dict:
        if not product_id:
            raise ValidationError("product_id required")
        if attributes is not None and not isinstance(attributes, dict):
            raise ValidationError("attributes must be a mapping of option name to value")
        qnty = validate_quantity(quantity)
        product = self._check_product(product_id)
        key = attributes_key(attributes)

        with self._session_factory() as session:
            cart = self.ensure_cart(session, owner)
            now = self._clock()
            existing = (
                session.query(CartLine)
                .filter(
                    CartLine.cart_id == cart.id,
                    CartLine.product_id == product_id,
                    CartLine.attributes_key == key,
                )
                .with_for_update()
                .first()
            )
            wanted = qnty + (existing.quantity if existing else 0)
            if wanted > product.stock:
                raise InsufficientStock(product_id, wanted, product.stock)

            if existing:
                # the snapshot taken on first add stays authoritative
                existing.quantity = wanted
                existing.updated_at = now
                line = existing
            else:
                line = CartLine(
                    id=str(uuid4()),
                    cart_id=cart.id,
                    product_id=product_id,
                    quantity=qnty,
                    price_snapshot=product.price,
                    attributes=dict(attributes) if attributes else None,
                    attributes_key=key,
                    created_at=now,
                    updated_at=now,
                )
                session.add(line)
            cart.updated_at = now
            session.flush()
            log_event(
                "info",
                "cart.line_added",
                cart_id=cart.id,
                line_id=line.id,
                product_id=product_id,
                quantity=line.quantity,
                merged=bool(existing),
            )
            return {"status": "added", "line_id": line.id, "cart": cart_view(cart, cart_lines(session, cart.id))}

    def update_quantity(self, owner: OwnerKey, line_id: str, quantity) -> Dict:
        qnty = validate_quantity(quantity, allow_non_positive=True)
        with self._session_factory() as session:
            cart, line = self._owned_line(session, owner, line_id)
            if line is None:
                raise NotFound("cart line", line_id)
            now = self._clock()
            if qnty <= 0:
                session.delete(line)
                cart.updated_at = now
                session.flush()
                log_event("info", "cart.line_removed", cart_id=cart.id, line_id=line_id, reason="quantity")
                return {"status": "removed", "line_id": line_id, "cart": cart_view(cart, cart_lines(session, cart.id))}

            product = self._check_product(line.product_id)
            if qnty > product.stock:
                raise InsufficientStock(line.product_id, qnty, product.stock)
            line.quantity = qnty
            line.updated_at = now
            cart.updated_at = now
            session.flush()
            log_event("info", "cart.line_updated", cart_id=cart.id, line_id=line_id, quantity=qnty)
            return {"status": "updated", "line_id": line_id, "cart": cart_view(cart, cart_lines(session, cart.id))}

    def remove_line(self, owner: OwnerKey, line_id: str) -> Dict:
        with self._session_factory() as session:
            cart, line = self._owned_line(session, owner, line_id)
            if line is None:
                return {"status": "absent", "line_id": line_id}
            session.delete(line)
            cart.updated_at = self._clock()
            session.flush()
            log_event("info", "cart.line_removed", cart_id=cart.id, line_id=line_id, reason="explicit")
            return {"status": "removed", "line_id": line_id}

    def purge_expired(self) -> int:
        """Delete expired carts and their lines; returns the number of carts removed."""
        with self._session_factory() as session:
            expired = session.query(Cart).filter(Cart.expires_at <= self._clock()).all()
            for cart in expired:
                drop_cart(session, cart)
            if expired:
                log_event("info", "cart.purged", count=len(expired))
            return len(expired)
