import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None
    DB_ECHO: bool = False

    # Product lines
    DEFAULT_SERVICE: str = "alttext-ai"

    # Stripe
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    ALTTEXT_AI_STRIPE_PRICE_PRO: Optional[str] = None
    ALTTEXT_AI_STRIPE_PRICE_AGENCY: Optional[str] = None
    ALTTEXT_AI_STRIPE_PRICE_CREDITS: Optional[str] = None
    SEO_AI_META_STRIPE_PRICE_PRO: Optional[str] = None
    SEO_AI_META_STRIPE_PRICE_AGENCY: Optional[str] = None
    BEEPBEEP_AI_STRIPE_PRICE_PRO: Optional[str] = None
    BEEPBEEP_AI_STRIPE_PRICE_AGENCY: Optional[str] = None

    # Notifications (Resend)
    RESEND_API_KEY: Optional[str] = None
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "AltText AI <noreply@alttextai.com>"
    NOTIFICATION_TIMEOUT_SECONDS: float = 10.0

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("quota_backend")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "RESEND_API_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
