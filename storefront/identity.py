"""Identity resolution: who owns the cart for the current request."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union
from uuid import uuid4

from .errors import ValidationError


@dataclass(frozen=True)
class AccountOwner:
    account_id: str
    kind = "account"

    @property
    def ref(self) -> str:
        return self.account_id


@dataclass(frozen=True)
class GuestOwner:
    session_token: str
    kind = "guest"

    @property
    def ref(self) -> str:
        return self.session_token


OwnerKey = Union[AccountOwner, GuestOwner]


def resolve_owner(account_id: Optional[str] = None, session_token: Optional[str] = None) -> OwnerKey:
    """Authenticated account wins; otherwise fall back to the guest session token."""
    account_id = (account_id or "").strip()
    session_token = (session_token or "").strip()
    if account_id:
        return AccountOwner(account_id)
    if session_token:
        return GuestOwner(session_token)
    raise ValidationError("Either an account id or a guest session token is required")


def new_session_token() -> str:
    return str(uuid4())
