"""Request payload schemas."""

from .checkout import CheckoutPayload, parse_checkout

__all__ = ["CheckoutPayload", "parse_checkout"]
