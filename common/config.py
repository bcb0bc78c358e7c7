import os
from dataclasses import dataclass, field, replace
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
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    paypal_client_id: str = ""
    paypal_client_secret: str = ""
    paypal_webhook_id: str = ""
    paypal_env: str = "sandbox"
    admin_token: str = ""
    notify_webhook_url: str = ""
    metrics_webhook_url: str = ""
    shipping_fee_amount: int = 500
    max_free_items_per_order: int = 2
    promotion_excluded_categories: FrozenSet[str] = field(default_factory=frozenset)
    shipping_excluded_categories: FrozenSet[str] = field(default_factory=frozenset)

    def get_order_url(self, order_id: str, provider: str = "stripe") -> str:
        base = self.store_base_url.rstrip("/")
        return f"{base}/checkout/success?order={order_id}&provider={provider}"

    def get_paypal_return_url(self, order_id: str) -> str:
        return f"{self.store_base_url.rstrip('/')}/checkout/paypal/return?order={order_id}"

    def get_cart_url(self) -> str:
        return f"{self.store_base_url.rstrip('/')}/cart"


ALLOWED_HOT_KEYS = {"CURRENCY", "SHIPPING_FEE_AMOUNT", "MAX_FREE_ITEMS_PER_ORDER"}
SENSITIVE_KEYS = {
    "SECRET_KEY",
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "PAYPAL_CLIENT_SECRET",
    "PAYPAL_WEBHOOK_ID",
    "ADMIN_TOKEN",
    "DATABASE_URL",
}


def validate_currency(value: Optional[str]) -> str:
    v = (value or "EUR").strip().upper()
    if len(v) != 3:
        raise ValueError("Invalid currency code: expected ISO4217 length 3")
    return v


def validate_paypal_env(value: Optional[str]) -> str:
    v = (value or "sandbox").strip().lower()
    if v not in ("sandbox", "live"):
        raise ValueError("PAYPAL_ENV must be 'sandbox' or 'live'")
    return v


def validate_amount(value, field_name: str, default: int) -> int:
    if value is None or str(value).strip() == "":
        return default
    try:
        amount = int(str(value).strip())
    except ValueError:
        raise ValueError(f"{field_name} must be an integer amount in minor units")
    if amount < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return amount


def parse_categories(value) -> FrozenSet[str]:
    if not value:
        return frozenset()
    if isinstance(value, (list, tuple, set, frozenset)):
        items = value
    else:
        items = str(value).split(",")
    return frozenset(str(v).strip().lower() for v in items if str(v).strip())


def _load_settings_file() -> dict:
    # settings.json is optional; a broken file must not prevent boot
    try:
        path = Path(__file__).resolve().parents[1] / "data" / "settings.json"
        if path.exists():
            data = json.loads(path.read_text(encoding="utf-8"))
            return data if isinstance(data, dict) else {}
    except (OSError, ValueError):
        pass
    return {}


def load_env() -> AppConfig:
    # non-secret settings come from data/settings.json first, .env / environment second
    load_dotenv()
    s = _load_settings_file()
    store_base_url = (s.get("STORE_BASE_URL") or os.getenv("STORE_BASE_URL") or "http://127.0.0.1:5000").rstrip("/")
    return AppConfig(
        database_url=os.getenv("DATABASE_URL", "sqlite:///data/app.db"),
        secret_key=os.getenv("SECRET_KEY", "dev_secret"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        store_base_url=store_base_url,
        currency=validate_currency(s.get("CURRENCY") or os.getenv("CURRENCY")),
        stripe_secret_key=os.getenv("STRIPE_SECRET_KEY", ""),
        stripe_webhook_secret=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        paypal_client_id=os.getenv("PAYPAL_CLIENT_ID", ""),
        paypal_client_secret=os.getenv("PAYPAL_CLIENT_SECRET", ""),
        paypal_webhook_id=os.getenv("PAYPAL_WEBHOOK_ID", ""),
        paypal_env=validate_paypal_env(os.getenv("PAYPAL_ENV")),
        admin_token=os.getenv("ADMIN_TOKEN", ""),
        notify_webhook_url=os.getenv("NOTIFY_WEBHOOK_URL", ""),
        metrics_webhook_url=os.getenv("METRICS_WEBHOOK_URL", ""),
        shipping_fee_amount=validate_amount(
            s.get("SHIPPING_FEE_AMOUNT", os.getenv("SHIPPING_FEE_AMOUNT")), "SHIPPING_FEE_AMOUNT", 500
        ),
        max_free_items_per_order=validate_amount(
            s.get("MAX_FREE_ITEMS_PER_ORDER", os.getenv("MAX_FREE_ITEMS_PER_ORDER")), "MAX_FREE_ITEMS_PER_ORDER", 2
        ),
        promotion_excluded_categories=parse_categories(
            s.get("PROMOTION_EXCLUDED_CATEGORIES") or os.getenv("PROMOTION_EXCLUDED_CATEGORIES")
        ),
        shipping_excluded_categories=parse_categories(
            s.get("SHIPPING_EXCLUDED_CATEGORIES") or os.getenv("SHIPPING_EXCLUDED_CATEGORIES")
        ),
    )


def refresh_non_sensitive(overrides: Dict[str, str], current: AppConfig) -> AppConfig:
    updates = {k: v for k, v in (overrides or {}).items() if k in ALLOWED_HOT_KEYS}
    return replace(
        current,
        currency=validate_currency(updates.get("CURRENCY", current.currency)),
        shipping_fee_amount=validate_amount(
            updates.get("SHIPPING_FEE_AMOUNT"), "SHIPPING_FEE_AMOUNT", current.shipping_fee_amount
        ),
        max_free_items_per_order=validate_amount(
            updates.get("MAX_FREE_ITEMS_PER_ORDER"), "MAX_FREE_ITEMS_PER_ORDER", current.max_free_items_per_order
        ),
    )


def requires_restart(changed_keys: List[str]) -> bool:
    if not changed_keys:
        return False
    return any(k in SENSITIVE_KEYS for k in changed_keys)
