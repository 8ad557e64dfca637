# storefront/settings.py
from __future__ import annotations
from typing import Dict, List, Optional
from pydantic import Field, AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict
import json

_DEFAULT_ORIGINS = ["http://localhost:3000", "http://127.0.0.1:3000"]
_DEFAULT_COUNTRIES = ["FR", "BE", "LU", "MC", "CH", "DE", "NL", "ES", "IT", "PT"]


def _parse_list(v: Optional[str | List[str]], default: List[str]) -> List[str]:
    """
    Accept JSON array (e.g. '["http://localhost:3000"]') or
    comma-separated string ('http://localhost:3000,http://127.0.0.1:3000').
    """
    if v is None:
        return list(default)
    if isinstance(v, list):
        return v
    s = v.strip()
    if not s:
        return list(default)
    # try JSON first
    try:
        parsed = json.loads(s)
        if isinstance(parsed, list) and all(isinstance(x, str) for x in parsed):
            return parsed
    except ValueError:
        pass
    # fallback: comma separated
    return [p.strip() for p in s.split(",") if p.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",   # ignore unknown env keys instead of raising
    )

    # --- API ---
    app_env: str = Field(default="development", validation_alias=AliasChoices("APP_ENV", "ENV"))
    api_host: str = Field(default="127.0.0.1", validation_alias=AliasChoices("API_HOST",))
    api_port: int = Field(default=8000,        validation_alias=AliasChoices("API_PORT",))
    log_level: str = Field(default="INFO",     validation_alias=AliasChoices("LOG_LEVEL",))
    cors_origins_raw: Optional[str | List[str]] = Field(
        default=None, validation_alias=AliasChoices("CORS_ORIGINS",)
    )
    site_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("SITE_URL", "NEXT_PUBLIC_BASE_URL")
    )

    # --- Postgres ---
    database_url: Optional[str] = Field(default=None, validation_alias=AliasChoices("DATABASE_URL",))
    db_min_pool_size: int = Field(default=2,  validation_alias=AliasChoices("DB_MIN_POOL_SIZE",))
    db_max_pool_size: int = Field(default=10, validation_alias=AliasChoices("DB_MAX_POOL_SIZE",))

    # --- Stripe ---
    stripe_secret_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("STRIPE_SECRET_KEY",)
    )
    stripe_webhook_secret: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("STRIPE_WEBHOOK_SECRET",)
    )
    currency: str = Field(default="eur", validation_alias=AliasChoices("CURRENCY",))
    shipping_countries_raw: Optional[str | List[str]] = Field(
        default=None, validation_alias=AliasChoices("SHIPPING_COUNTRIES",)
    )
    shipping_standard_amount: int = Field(
        default=600, validation_alias=AliasChoices("SHIPPING_STANDARD_AMOUNT",)
    )
    shipping_express_amount: int = Field(
        default=1500, validation_alias=AliasChoices("SHIPPING_EXPRESS_AMOUNT",)
    )

    # --- Email (Resend) ---
    resend_api_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("RESEND_API_KEY",))
    email_from: str = Field(
        default="Vague <noreply@vague.art>",
        validation_alias=AliasChoices("EMAIL_FROM", "RESEND_FROM"),
    )
    admin_notify_email: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("ADMIN_NOTIFY_EMAIL",)
    )
    contact_email: str = Field(
        default="contact@vague-galerie.store", validation_alias=AliasChoices("CONTACT_EMAIL",)
    )
    # all artist emails go here instead (staging / manual testing)
    sales_notif_override: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("SALES_NOTIF_OVERRIDE",)
    )

    # --- Admin ---
    admin_username: str = Field(default="admin", validation_alias=AliasChoices("ADMIN_USERNAME",))
    admin_password: Optional[str] = Field(default=None, validation_alias=AliasChoices("ADMIN_PASSWORD",))
    admin_key: Optional[str] = Field(default=None, validation_alias=AliasChoices("ADMIN_KEY",))

    # --- Rate limiting ---
    rate_limit_backend: str = Field(default="memory", validation_alias=AliasChoices("RATE_LIMIT_BACKEND",))
    checkout_rate_limit: int = Field(default=15, validation_alias=AliasChoices("CHECKOUT_RATE_LIMIT",))
    checkout_rate_window_seconds: int = Field(
        default=60, validation_alias=AliasChoices("CHECKOUT_RATE_WINDOW_SECONDS",)
    )

    @property
    def cors_origins(self) -> List[str]:
        return _parse_list(self.cors_origins_raw, _DEFAULT_ORIGINS)

    @property
    def shipping_countries(self) -> List[str]:
        return [c.upper() for c in _parse_list(self.shipping_countries_raw, _DEFAULT_COUNTRIES)]

    @property
    def shipping_rates(self) -> List[Dict[str, object]]:
        """Fixed shipping tiers offered at checkout (amounts in minor units)."""
        return [
            {
                "key": "standard",
                "label": "Lettre suivie",
                "amount": self.shipping_standard_amount,
                "min_days": 2,
                "max_days": 4,
            },
            {
                "key": "express",
                "label": "Colissimo express",
                "amount": self.shipping_express_amount,
                "min_days": 1,
                "max_days": 2,
            },
        ]

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() in ("production", "prod")


# singleton
settings = Settings()
