from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings

# .env at project root: app/core/config.py -> app/core -> app -> root
_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _ROOT / ".env"

STRIPE_SECRET_PREFIXES = ("sk_", "rk_")


class Settings(BaseSettings):
    secret_key: str = "change-me-in-production"
    database_url: str = "sqlite:///./marketplace.db"
    # CORS: comma separated origins; in production e.g. https://shop.example.com
    cors_origins: str = "*"
    # Max requests per IP per minute on write endpoints
    rate_limit_per_minute: int = 60
    # Stripe: credentials are handed to the gateway adapter, never set globally
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    stripe_currency: str = "sar"
    stripe_webhook_tolerance: int = 300  # seconds
    orders_per_page: int = 10
    orders_max_per_page: int = 50
    admin_secret: str = ""  # X-Admin-Secret for operator endpoints
    environment: str = "development"

    model_config = {
        "env_file": _ENV_FILE if _ENV_FILE.is_file() else ".env",
        "extra": "ignore",
    }

    @field_validator("stripe_secret_key", "stripe_webhook_secret", mode="before")
    @classmethod
    def strip_stripe_keys(cls, v: str | None) -> str:
        """Copy/paste whitespace breaks signature checks."""
        return (v or "").strip()

    @field_validator("stripe_currency", mode="before")
    @classmethod
    def lower_currency(cls, v: str | None) -> str:
        return (v or "sar").strip().lower()


settings = Settings()


def is_stripe_configured() -> bool:
    key = settings.stripe_secret_key
    return bool(key) and key.startswith(STRIPE_SECRET_PREFIXES)
