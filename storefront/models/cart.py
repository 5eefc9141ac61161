import json
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship
from .base import Base


def attributes_key(attributes: Optional[dict]) -> str:
    """Canonical text form of an attribute selection, used in line identity.

    Key order is irrelevant and an empty selection equals no selection.
    """
    if not attributes:
        return ""
    normalized = {str(k): ("" if v is None else str(v)) for k, v in attributes.items()}
    return json.dumps(normalized, sort_keys=True, ensure_ascii=False, separators=(",", ":"))


class Cart(Base):
    __tablename__ = "cart"
    __table_args__ = (
        UniqueConstraint("owner_kind", "owner_ref", name="uq_cart_owner"),
        CheckConstraint("owner_kind IN ('account', 'guest')", name="ck_cart_owner_kind"),
    )

    id = Column(String(36), primary_key=True)
    owner_kind = Column(String(16), nullable=False)
    owner_ref = Column(String(128), nullable=False)
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    lines = relationship(
        "CartLine",
        back_populates="cart",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CartLine.created_at",
    )


class CartLine(Base):
    __tablename__ = "cart_line"
    __table_args__ = (
        UniqueConstraint("cart_id", "product_id", "attributes_key", name="uq_cart_line_identity"),
        CheckConstraint("quantity > 0", name="ck_cart_line_quantity"),
    )

    id = Column(String(36), primary_key=True)
    cart_id = Column(String(36), ForeignKey("cart.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), nullable=False)
    quantity = Column(Integer, nullable=False)
    price_snapshot = Column(Numeric(12, 2), nullable=False)
    attributes = Column(JSON, nullable=True)
    attributes_key = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    cart = relationship("Cart", back_populates="lines")
