import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence
from uuid import uuid4

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..db.session import get_session
from ..errors import (
    EmptyCart,
    InsufficientStock,
    NotFound,
    PersistenceError,
    PricingMismatch,
    ProductUnavailable,
    StorefrontError,
    ValidationError,
)
from ..identity import AccountOwner, GuestOwner, OwnerKey
from ..models.base import utcnow
from ..models.cart import CartLine, attributes_key
from ..models.order import Order, OrderAddress, OrderLine, OrderStatusEvent
from ..models.product import Product
from ..schemas.checkout import CheckoutLine, CheckoutPayload, Pricing, parse_checkout
from ..utils.pagination import normalize_paging
from .cart_service import DEFAULT_PURCHASABLE, CartService, cart_lines, find_live_cart
from .logging import log_event
from .notifications import ORDER_PLACED, Notifier, dispatch_safely
from .regions import RegionDirectory


CENTS = Decimal("0.01")
_CODE_ALPHABET = string.ascii_uppercase + string.digits
_MAX_CODE_ATTEMPTS = 5


def money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def initial_payment_status(payment_method: str) -> str:
    # cash is collected on delivery; every other method stays unpaid until confirmed
    return "pending" if payment_method == "cash_delivery" else "unpaid"


def generate_order_number(prefix: str, now: datetime) -> str:
    millis = str(int(now.timestamp() * 1000))[-4:]
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))
    return f"{prefix}-{now:%m%d}-{millis}-{suffix}"


def generate_verification_code() -> str:
    return secrets.token_hex(8).upper()


@dataclass(frozen=True)
class Amounts:
    subtotal: Decimal
    shipping: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal


def order_summary(order: Order) -> Dict:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "status": order.status,
        "payment_status": order.payment_status,
        "total": Decimal(order.total_amount),
        "currency": order.currency,
        "customer_phone": order.customer_phone,
        "is_guest": order.account_id is None,
        "created_at": order.created_at,
    }


def order_detail(order: Order) -> Dict:
    shipping = next((a for a in order.addresses if a.type == "shipping"), None)
    data = order_summary(order)
    data.update(
        {
            "subtotal": Decimal(order.subtotal),
            "shipping_amount": Decimal(order.shipping_amount),
            "tax_amount": Decimal(order.tax_amount),
            "discount_amount": Decimal(order.discount_amount),
            "total_amount": Decimal(order.total_amount),
            "delivery_method": order.delivery_method,
            "payment_method": order.payment_method,
            "agent_location": order.agent_location,
            "agent_instructions": order.agent_instructions,
            "customer_email": order.customer_email,
            "verification_code": order.verification_code,
            "receipt_ref": order.receipt_ref,
            "updated_at": order.updated_at,
            "lines": [
                {
                    "product_id": ln.product_id,
                    "product_name": ln.product_name,
                    "quantity": ln.quantity,
                    "unit_price": Decimal(ln.unit_price),
                    "attributes": ln.attributes or {},
                }
                for ln in order.lines
            ],
            "shipping_address": None
            if shipping is None
            else {
                "full_name": shipping.full_name,
                "phone": shipping.phone,
                "email": shipping.email,
                "address": shipping.address,
                "city": shipping.city,
                "region": shipping.region,
                "country": shipping.country,
                "notes": shipping.notes,
            },
            "history": [
                {"status": ev.status, "notes": ev.notes, "created_at": ev.created_at} for ev in order.events
            ],
        }
    )
    return data


class OrderService:
    """Checkout and order retrieval backed by DB.

    ``create_order`` carves an order out of the owner's cart in a single
    transaction: order row, shipping address, lines, the first status event,
    the stock reservation and the emptying of the cart either all commit or
    none do. The confirmation email is sent only after commit.
    """

    def __init__(
        self,
        session_factory=get_session,
        *,
        cart_service: Optional[CartService] = None,
        notifier: Optional[Notifier] = None,
        regions: Optional[RegionDirectory] = None,
        order_number_prefix: str = "SF",
        price_tolerance: Decimal = CENTS,
        purchasable_statuses: FrozenSet[str] = DEFAULT_PURCHASABLE,
        default_country: str = "Tanzania",
        currency: str = "TZS",
        phone_pattern: Optional[str] = None,
        verify_url: Optional[Callable[[str], str]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._carts = cart_service or CartService(session_factory, clock=clock)
        self._notifier = notifier
        self._regions = regions or RegionDirectory()
        self._prefix = order_number_prefix
        self._tolerance = Decimal(price_tolerance)
        self._purchasable = frozenset(s.lower() for s in purchasable_statuses)
        self._country = default_country
        self._currency = currency
        self._phone_pattern = phone_pattern
        self._verify_url = verify_url
        self._clock = clock

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------
    def create_order(self, owner: OwnerKey, payload) -> Dict:
        checkout = parse_checkout(payload, phone_pattern=self._phone_pattern)
        agent_location = self._check_region(checkout)

        try:
            with self._session_factory() as session:
                now = self._clock()
                cart = find_live_cart(session, owner, now, lock=True)
                rows = cart_lines(session, cart.id) if cart is not None else []
                if not rows:
                    raise EmptyCart()

                ordered = self._resolve_lines(rows, checkout.lines)
                amounts = self._price(ordered, checkout.pricing)
                products = self._reserve_stock(session, ordered, now)

                order = self._insert_order(session, owner, checkout, amounts, agent_location, now)
                self._insert_address(session, order, checkout)
                self._insert_lines(session, order, ordered, products)
                self._append_initial_event(session, order, now)
                self._carts.clear(session, cart)

                result = {
                    "order_id": order.id,
                    "order_number": order.order_number,
                    "verification_code": order.verification_code,
                    "verify_url": self._link(order),
                    "total": amounts.total,
                    "status": order.status,
                    "is_guest": isinstance(owner, GuestOwner),
                }
                notice = self._placed_notice(order, ordered, products, checkout)
        except StorefrontError as exc:
            log_event("warning", "order.create_failed", owner_kind=owner.kind, error=exc.code, message=str(exc))
            raise

        log_event(
            "info",
            "order.created",
            order_id=result["order_id"],
            order_number=result["order_number"],
            lines=len(ordered),
            total=amounts.total,
        )
        dispatch_safely(self._notifier, ORDER_PLACED, checkout.contact.email, notice)
        return result

    def _check_region(self, checkout: CheckoutPayload) -> Optional[str]:
        region = checkout.contact.region
        if not self._regions.is_known_region(region):
            raise ValidationError(
                "Invalid order data",
                details=[{"field": "contact.region", "message": f"Unknown region: {region}"}],
            )
        if checkout.delivery.method != "agent_pickup":
            return None
        agent = self._regions.find_agent(region, checkout.delivery.agent_location)
        if agent is None:
            raise ValidationError(
                "Invalid order data",
                details=[
                    {
                        "field": "delivery.agent_location",
                        "message": f"No pickup point {checkout.delivery.agent_location} in {region}",
                    }
                ],
            )
        return agent.id

    def _resolve_lines(self, rows: Sequence[CartLine], submitted: Optional[List[CheckoutLine]]) -> List[CartLine]:
        """Map submitted lines onto real cart lines; all cart lines when none are submitted."""
        if submitted is None:
            return list(rows)
        by_key = {(r.product_id, r.attributes_key or ""): r for r in rows}
        resolved: List[CartLine] = []
        seen = set()
        problems = []
        for idx, line in enumerate(submitted):
            key = (line.product_id, attributes_key(line.attributes))
            row = by_key.get(key)
            field = f"lines.{idx}"
            if row is None:
                problems.append({"field": field, "message": f"product {line.product_id} is not in the cart"})
            elif key in seen:
                problems.append({"field": field, "message": f"product {line.product_id} listed twice"})
            elif row.quantity != line.quantity:
                problems.append(
                    {"field": field, "message": f"quantity {line.quantity} does not match cart quantity {row.quantity}"}
                )
            elif line.unit_price is not None and abs(money(line.unit_price) - money(row.price_snapshot)) > self._tolerance:
                problems.append(
                    {"field": field, "message": f"unit price {line.unit_price} does not match {money(row.price_snapshot)}"}
                )
            else:
                seen.add(key)
                resolved.append(row)
        if problems:
            raise ValidationError("Checkout lines do not match the cart", details=problems)
        if not resolved:
            raise EmptyCart("No cart lines selected for checkout")
        return resolved

    def _price(self, ordered: Sequence[CartLine], pricing: Pricing) -> Amounts:
        """Recompute the breakdown from server-side snapshots and compare with the submitted one."""
        subtotal = money(sum((money(r.price_snapshot) * r.quantity for r in ordered), Decimal("0")))
        shipping = money(pricing.shipping)
        tax = money(pricing.tax)
        discount = money(pricing.discount)
        if abs(money(pricing.subtotal) - subtotal) > self._tolerance:
            raise PricingMismatch("subtotal", money(pricing.subtotal), subtotal)
        gross = subtotal + shipping + tax
        if discount > gross:
            raise PricingMismatch("discount", discount, gross)
        total = gross - discount
        if abs(money(pricing.total) - total) > self._tolerance:
            raise PricingMismatch("total", money(pricing.total), total)
        return Amounts(subtotal=subtotal, shipping=shipping, tax=tax, discount=discount, total=total)

    def _reserve_stock(self, session: Session, ordered: Sequence[CartLine], now: datetime) -> Dict[str, Product]:
        needed: Dict[str, int] = {}
        for row in ordered:
            needed[row.product_id] = needed.get(row.product_id, 0) + row.quantity

        products: Dict[str, Product] = {}
        # fixed lock order keeps two concurrent checkouts from deadlocking
        for product_id in sorted(needed):
            qty = needed[product_id]
            product = session.query(Product).filter(Product.id == product_id).with_for_update().first()
            if product is None:
                raise ProductUnavailable(product_id)
            if (product.status or "").lower() not in self._purchasable:
                raise ProductUnavailable(product_id, product.status)
            updated = (
                session.query(Product)
                .filter(Product.id == product_id, Product.stock >= qty)
                .update({Product.stock: Product.stock - qty, Product.updated_at: now}, synchronize_session=False)
            )
            if updated != 1:
                raise InsufficientStock(product_id, qty, int(product.stock or 0))
            products[product_id] = product
        return products

    def _allocate(self, session: Session, column, generate: Callable[[], str]) -> str:
        for _ in range(_MAX_CODE_ATTEMPTS):
            candidate = generate()
            if session.query(Order.id).filter(column == candidate).first() is None:
                return candidate
        raise PersistenceError(f"could not allocate a unique {column.key}")

    def _insert_order(
        self,
        session: Session,
        owner: OwnerKey,
        checkout: CheckoutPayload,
        amounts: Amounts,
        agent_location: Optional[str],
        now: datetime,
    ) -> Order:
        order = Order(
            id=str(uuid4()),
            order_number=self._allocate(session, Order.order_number, lambda: generate_order_number(self._prefix, now)),
            account_id=owner.account_id if isinstance(owner, AccountOwner) else None,
            guest_session_id=owner.session_token if isinstance(owner, GuestOwner) else None,
            status="pending",
            subtotal=amounts.subtotal,
            shipping_amount=amounts.shipping,
            tax_amount=amounts.tax,
            discount_amount=amounts.discount,
            total_amount=amounts.total,
            currency=self._currency,
            delivery_method=checkout.delivery.method,
            payment_method=checkout.payment.method,
            payment_status=initial_payment_status(checkout.payment.method),
            agent_location=agent_location,
            agent_instructions=checkout.delivery.agent_instructions,
            customer_phone=checkout.contact.phone,
            customer_email=checkout.contact.email,
            verification_code=self._allocate(session, Order.verification_code, generate_verification_code),
            created_at=now,
            updated_at=now,
        )
        session.add(order)
        session.flush()
        return order

    def _insert_address(self, session: Session, order: Order, checkout: CheckoutPayload) -> OrderAddress:
        address = OrderAddress(
            id=str(uuid4()),
            order_id=order.id,
            type="shipping",
            full_name=checkout.address.full_name,
            phone=checkout.contact.phone,
            email=checkout.contact.email,
            address=checkout.address.address,
            city=checkout.address.city or checkout.contact.region,
            region=checkout.contact.region,
            country=self._country,
            notes=checkout.address.notes,
            created_at=order.created_at,
        )
        session.add(address)
        session.flush()
        return address

    def _insert_lines(
        self, session: Session, order: Order, ordered: Sequence[CartLine], products: Dict[str, Product]
    ) -> List[OrderLine]:
        lines = [
            OrderLine(
                id=str(uuid4()),
                order_id=order.id,
                product_id=row.product_id,
                product_name=products[row.product_id].name,
                quantity=row.quantity,
                unit_price=money(row.price_snapshot),
                attributes=dict(row.attributes) if row.attributes else None,
                created_at=order.created_at,
            )
            for row in ordered
        ]
        session.add_all(lines)
        session.flush()
        return lines

    def _append_initial_event(self, session: Session, order: Order, now: datetime) -> OrderStatusEvent:
        event = OrderStatusEvent(
            id=str(uuid4()),
            order_id=order.id,
            sequence=1,
            status="pending",
            notes="Order created successfully",
            created_at=now,
        )
        session.add(event)
        session.flush()
        return event

    def _link(self, order: Order) -> Optional[str]:
        return self._verify_url(order.verification_code) if self._verify_url else None

    def _placed_notice(self, order: Order, ordered, products, checkout: CheckoutPayload) -> Dict:
        return {
            "name": checkout.address.full_name,
            "order_id": order.id,
            "order_number": order.order_number,
            "verification_code": order.verification_code,
            "verify_url": self._link(order),
            "items": [
                {
                    "product_id": row.product_id,
                    "name": products[row.product_id].name,
                    "quantity": row.quantity,
                    "price": str(money(row.price_snapshot)),
                }
                for row in ordered
            ],
            "total": str(money(order.total_amount)),
            "order_date": order.created_at.isoformat() if order.created_at else None,
        }

    # ------------------------------------------------------------------
    # Reads and admin operations
    # ------------------------------------------------------------------
    def _load(self, session: Session, order_id: str) -> Order:
        order = session.get(Order, order_id) if order_id else None
        if order is None:
            raise NotFound("order", order_id)
        return order

    @staticmethod
    def _owned_by(order: Order, owner: OwnerKey) -> bool:
        if isinstance(owner, AccountOwner):
            return order.account_id == owner.account_id
        return order.account_id is None and order.guest_session_id == owner.session_token

    def get_order(self, order_id: str, owner: Optional[OwnerKey] = None) -> Dict:
        with self._session_factory() as session:
            order = self._load(session, order_id)
            if owner is not None and not self._owned_by(order, owner):
                raise NotFound("order", order_id)
            return order_detail(order)

    def get_order_by_verification_code(self, code: str) -> Dict:
        code = (code or "").strip().upper()
        if not code:
            raise NotFound("order")
        with self._session_factory() as session:
            order = session.query(Order).filter(Order.verification_code == code).first()
            if order is None:
                raise NotFound("order", code)
            return order_detail(order)

    def list_orders(
        self,
        *,
        status: Optional[str] = None,
        search: Optional[str] = None,
        owner: Optional[OwnerKey] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict:
        p, ps = normalize_paging(page, page_size)
        with self._session_factory() as session:
            q = session.query(Order)
            if status:
                q = q.filter(Order.status == status)
            if search and search.strip():
                like = f"%{search.strip()}%"
                q = q.filter(
                    or_(
                        Order.order_number.ilike(like),
                        Order.customer_phone.ilike(like),
                        Order.customer_email.ilike(like),
                    )
                )
            if isinstance(owner, AccountOwner):
                q = q.filter(Order.account_id == owner.account_id)
            elif isinstance(owner, GuestOwner):
                q = q.filter(Order.account_id.is_(None), Order.guest_session_id == owner.session_token)
            total = q.count()
            rows = q.order_by(Order.created_at.desc(), Order.id).offset((p - 1) * ps).limit(ps).all()
            return {"items": [order_summary(o) for o in rows], "page": p, "page_size": ps, "total": total}

    def attach_receipt(self, order_id: str, receipt_ref: str) -> Dict:
        if not receipt_ref:
            raise ValidationError("receipt_ref required")
        with self._session_factory() as session:
            order = self._load(session, order_id)
            order.receipt_ref = receipt_ref
            order.updated_at = self._clock()
            session.flush()
            return {"order_id": order.id, "receipt_ref": order.receipt_ref}

    def delete_order(self, order_id: str) -> Dict:
        """Administrative hard delete of an order and every child row."""
        with self._session_factory() as session:
            order = self._load(session, order_id)
            for model in (OrderStatusEvent, OrderAddress, OrderLine):
                session.query(model).filter(model.order_id == order.id).delete(synchronize_session=False)
            session.expunge(order)
            session.query(Order).filter(Order.id == order_id).delete(synchronize_session=False)
            log_event("info", "order.deleted", order_id=order_id)
            return {"status": "deleted", "order_id": order_id}
