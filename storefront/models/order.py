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


class Order(Base):
    __tablename__ = "order"
    __table_args__ = (
        CheckConstraint(
            "subtotal >= 0 AND shipping_amount >= 0 AND tax_amount >= 0 "
            "AND discount_amount >= 0 AND total_amount >= 0",
            name="ck_order_amounts_non_negative",
        ),
    )

    id = Column(String(36), primary_key=True)
    order_number = Column(String(50), nullable=False, unique=True)
    account_id = Column(String(128), nullable=True, index=True)
    guest_session_id = Column(String(128), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="pending")

    subtotal = Column(Numeric(12, 2), nullable=False)
    shipping_amount = Column(Numeric(12, 2), nullable=False)
    tax_amount = Column(Numeric(12, 2), nullable=False)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)

    delivery_method = Column(String(50), nullable=False)
    payment_method = Column(String(50), nullable=False)
    payment_status = Column(String(20), nullable=False, default="pending")
    agent_location = Column(String(100), nullable=True)
    agent_instructions = Column(Text, nullable=True)

    customer_phone = Column(String(20), nullable=False)
    customer_email = Column(String(255), nullable=True)

    verification_code = Column(String(32), nullable=False, unique=True)
    receipt_ref = Column(Text, nullable=True)

    created_at = Column(DateTime, nullable=False, server_default=func.now())
    updated_at = Column(DateTime, nullable=False, server_default=func.now())

    lines = relationship(
        "OrderLine", back_populates="order", cascade="all, delete-orphan", passive_deletes=True
    )
    addresses = relationship(
        "OrderAddress", back_populates="order", cascade="all, delete-orphan", passive_deletes=True
    )
    events = relationship(
        "OrderStatusEvent",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="OrderStatusEvent.sequence",
    )


class OrderLine(Base):
    __tablename__ = "order_line"
    __table_args__ = (CheckConstraint("quantity > 0", name="ck_order_line_quantity"),)

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("order.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), nullable=False)
    product_name = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    attributes = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    order = relationship("Order", back_populates="lines")


class OrderAddress(Base):
    __tablename__ = "order_address"

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("order.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # shipping | billing
    full_name = Column(String(200), nullable=False)
    phone = Column(String(20), nullable=False)
    email = Column(String(255), nullable=True)
    address = Column(Text, nullable=True)
    city = Column(String(100), nullable=False)
    region = Column(String(100), nullable=False)
    country = Column(String(100), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    order = relationship("Order", back_populates="addresses")


class OrderStatusEvent(Base):
    """Append-only status ledger; rows are never updated and only leave with their order."""

    __tablename__ = "order_status_event"
    __table_args__ = (UniqueConstraint("order_id", "sequence", name="uq_order_status_event_seq"),)

    id = Column(String(36), primary_key=True)
    order_id = Column(String(36), ForeignKey("order.id", ondelete="CASCADE"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    order = relationship("Order", back_populates="events")
