import os
import re
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
import json
from typing import Dict, FrozenSet, List, Optional

from dotenv import load_dotenv


@dataclass
class AppConfig:
    database_url: str
    secret_key: str
    log_level: str
    store_base_url: str
    currency: str
    cart_ttl_days: int = 30
    order_number_prefix: str = "SF"
    price_tolerance: Decimal = Decimal("0.01")
    default_country: str = "Tanzania"
    phone_pattern: str = r"^\+255[0-9]{9}$"
    purchasable_statuses: FrozenSet[str] = field(default_factory=lambda: frozenset({"active"}))
    email_endpoint: Optional[str] = None
    admin_username: str = "admin"
    admin_password: str = "storefront"

    def get_verify_url(self, verification_code: str) -> str:
        base = self.store_base_url.rstrip("/")
        return f"{base}/verify/{verification_code}"


ALLOWED_HOT_KEYS = {"CURRENCY", "PRICE_TOLERANCE", "CART_TTL_DAYS"}
SENSITIVE_KEYS = {"SECRET_KEY", "DATABASE_URL", "EMAIL_ENDPOINT", "ADMIN_USERNAME", "ADMIN_PASSWORD"}


def validate_currency(value: Optional[str]) -> str:
    v = (value or "TZS").strip().upper()
    if len(v) != 3:
        raise ValueError("Invalid currency code: expected ISO4217 length 3")
    return v


def validate_tolerance(value) -> Decimal:
    try:
        d = Decimal(str(value if value not in (None, "") else "0.01"))
    except InvalidOperation:
        raise ValueError(f"Invalid PRICE_TOLERANCE: {value!r}")
    if d < 0:
        raise ValueError("PRICE_TOLERANCE must be >= 0")
    return d


def validate_ttl_days(value) -> int:
    try:
        days = int(value if value not in (None, "") else 30)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid CART_TTL_DAYS: {value!r}")
    if days <= 0:
        raise ValueError("CART_TTL_DAYS must be > 0")
    return days


def validate_phone_pattern(value: Optional[str]) -> str:
    pattern = value or r"^\+255[0-9]{9}$"
    try:
        re.compile(pattern)
    except re.error as exc:
        raise ValueError(f"Invalid PHONE_PATTERN: {exc}")
    return pattern


def parse_statuses(value) -> FrozenSet[str]:
    if isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        items = str(value or "active").split(",")
    statuses = frozenset(s.strip().lower() for s in items if s and str(s).strip())
    if not statuses:
        raise ValueError("PURCHASABLE_STATUSES must name at least one status")
    return statuses


def _load_settings_file() -> dict:
    try:
        path = Path(__file__).resolve().parents[1] / "data" / "settings.json"
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        pass
    return {}


def load_env() -> AppConfig:
    # data/settings.json wins, environment (.env included) is the fallback
    load_dotenv(Path(__file__).resolve().parents[1] / ".env")
    s = _load_settings_file()

    def pick(key: str, default=None):
        value = s.get(key)
        if value in (None, ""):
            value = os.getenv(key)
        return default if value in (None, "") else value

    return AppConfig(
        database_url=pick("DATABASE_URL", "sqlite:///data/app.db"),
        secret_key=pick("SECRET_KEY", "dev_secret"),
        log_level=str(pick("LOG_LEVEL", "INFO")).upper(),
        store_base_url=str(pick("STORE_BASE_URL", "http://127.0.0.1:5000")).rstrip("/"),
        currency=validate_currency(pick("CURRENCY")),
        cart_ttl_days=validate_ttl_days(pick("CART_TTL_DAYS")),
        order_number_prefix=str(pick("ORDER_NUMBER_PREFIX", "SF")).strip().upper(),
        price_tolerance=validate_tolerance(pick("PRICE_TOLERANCE")),
        default_country=pick("DEFAULT_COUNTRY", "Tanzania"),
        phone_pattern=validate_phone_pattern(pick("PHONE_PATTERN")),
        purchasable_statuses=parse_statuses(pick("PURCHASABLE_STATUSES")),
        email_endpoint=pick("EMAIL_ENDPOINT"),
        admin_username=pick("ADMIN_USERNAME", "admin"),
        admin_password=pick("ADMIN_PASSWORD", "storefront"),
    )


def refresh_non_sensitive(overrides: Dict[str, str], current: AppConfig) -> AppConfig:
    updates = {k: v for k, v in (overrides or {}).items() if k in ALLOWED_HOT_KEYS}
    return replace(
        current,
        currency=validate_currency(updates.get("CURRENCY", current.currency)),
        price_tolerance=validate_tolerance(updates.get("PRICE_TOLERANCE", current.price_tolerance)),
        cart_ttl_days=validate_ttl_days(updates.get("CART_TTL_DAYS", current.cart_ttl_days)),
    )


def requires_restart(changed_keys: List[str]) -> bool:
    if not changed_keys:
        return False
    return any(k in SENSITIVE_KEYS for k in changed_keys)
