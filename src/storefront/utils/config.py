# environment-driven settings, read once at import
import os
from decimal import Decimal


def _flag(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


DB_PATH = os.getenv("STOREFRONT_DB_PATH", "data/storefront.sqlite")

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-key-change")
JWT_ALGORITHM = "HS256"
JWT_EXPIRE_DAYS = int(os.getenv("JWT_EXPIRE_DAYS", "7"))

GUEST_SESSION_DAYS = int(os.getenv("GUEST_SESSION_DAYS", "30"))

TAX_RATE = Decimal(os.getenv("STOREFRONT_TAX_RATE", "0.08"))
FREE_SHIPPING_OVER = Decimal(os.getenv("STOREFRONT_FREE_SHIPPING_OVER", "50.00"))
FLAT_SHIPPING = Decimal(os.getenv("STOREFRONT_FLAT_SHIPPING", "9.99"))

# stock is checked at cart time; decrementing it on order placement is opt-in
RESERVE_STOCK_ON_ORDER = _flag("STOREFRONT_RESERVE_STOCK")

CORS_ORIGINS = [
    o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()
]

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "8000"))
