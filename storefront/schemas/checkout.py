"""
Checkout payload schema.

Accepts both snake_case and the storefront client's camelCase keys
(``fullName``, ``agentLocation``, ``cartItems`` ...).
"""
from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from ..errors import ValidationError


DEFAULT_PHONE_PATTERN = r"^\+255[0-9]{9}$"

DeliveryMethod = Literal["direct_delivery", "agent_pickup"]
PaymentMethod = Literal["cash_delivery", "mpesa", "card", "bank_transfer"]


class _Schema(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)

    @model_validator(mode="before")
    @classmethod
    def blank_to_none(cls, data: Any) -> Any:
        # the storefront form posts "" for untouched optional inputs
        if isinstance(data, dict):
            return {k: (None if isinstance(v, str) and not v.strip() else v) for k, v in data.items()}
        return data


# -----------------------------
# Contact / delivery / address
# -----------------------------
class Contact(_Schema):
    phone: str = Field(..., min_length=10)
    email: Optional[EmailStr] = None
    region: str = Field(..., min_length=1)

    @field_validator("phone")
    @classmethod
    def phone_format(cls, value: str, info: ValidationInfo) -> str:
        pattern = (info.context or {}).get("phone_pattern") or DEFAULT_PHONE_PATTERN
        if not re.match(pattern, value):
            raise ValueError("phone number has an invalid format")
        return value


class Delivery(_Schema):
    method: DeliveryMethod
    agent_location: Optional[str] = None
    agent_instructions: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def pickup_needs_location(self) -> "Delivery":
        if self.method == "agent_pickup" and not self.agent_location:
            raise ValueError("Please select a pickup location")
        return self


class Address(_Schema):
    full_name: str = Field(..., min_length=2, max_length=100)
    address: Optional[str] = Field(default=None, min_length=5, max_length=500)
    city: Optional[str] = Field(default=None, min_length=2, max_length=100)
    notes: Optional[str] = Field(default=None, max_length=500)


class Payment(_Schema):
    method: PaymentMethod


# -----------------------------
# Lines / pricing
# -----------------------------
class CheckoutLine(_Schema):
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., gt=0)
    attributes: Optional[Dict[str, Any]] = None
    unit_price: Optional[Decimal] = Field(default=None, ge=0)


class Pricing(_Schema):
    subtotal: Decimal = Field(..., ge=0)
    shipping: Decimal = Field(default=Decimal("0"), ge=0)
    tax: Decimal = Field(default=Decimal("0"), ge=0)
    discount: Decimal = Field(default=Decimal("0"), ge=0)
    total: Decimal = Field(..., ge=0)


class CheckoutPayload(_Schema):
    contact: Contact
    delivery: Delivery
    address: Address
    payment: Payment
    pricing: Pricing
    lines: Optional[List[CheckoutLine]] = Field(
        default=None, validation_alias=AliasChoices("lines", "cartItems", "cart_items")
    )

    @model_validator(mode="after")
    def direct_delivery_needs_address(self) -> "CheckoutPayload":
        if self.delivery.method == "direct_delivery" and not (self.address.address and self.address.city):
            raise ValueError("Address and city are required for direct delivery")
        return self


def _details(exc: PydanticValidationError) -> List[Dict[str, Any]]:
    return [
        {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
        for err in exc.errors()
    ]


def parse_checkout(data: Any, *, phone_pattern: Optional[str] = None) -> CheckoutPayload:
    """Validate a raw checkout body; raises storefront ValidationError with per-field details."""
    if isinstance(data, CheckoutPayload):
        return data
    if not isinstance(data, dict):
        raise ValidationError("Invalid order data: expected an object")
    try:
        return CheckoutPayload.model_validate(data, context={"phone_pattern": phone_pattern})
    except PydanticValidationError as exc:
        raise ValidationError("Invalid order data", details=_details(exc)) from exc
