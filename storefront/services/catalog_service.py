from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from ..db.session import get_session
from ..models.product import Product


@dataclass(frozen=True)
class ProductSnapshot:
    """Price, stock and status of a product at lookup time."""

    id: str
    name: str
    price: Decimal
    stock: int
    status: str
    currency: str


class ProductLookup(Protocol):
    def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        ...


def to_snapshot(row: Product) -> ProductSnapshot:
    return ProductSnapshot(
        id=row.id,
        name=row.name,
        price=row.effective_price,
        stock=int(row.stock or 0),
        status=(row.status or "").lower(),
        currency=row.currency,
    )


class CatalogService:
    """Read-only product lookup backed by the product table.

    Each call runs in its own short session, outside of any cart transaction,
    so a result may be marginally stale by the time the caller commits.
    """

    def __init__(self, session_factory=get_session):
        self._session_factory = session_factory

    def get_product(self, product_id: str) -> Optional[ProductSnapshot]:
        if not product_id:
            return None
        with self._session_factory() as session:
            row = session.get(Product, product_id)
            return to_snapshot(row) if row else None
