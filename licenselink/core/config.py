import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    PORT: int = 8080

    # Stripe (payments provider)
    STRIPE_SECRET_KEY: Optional[str] = None
    STRIPE_WEBHOOK_SECRET: Optional[str] = None
    STRIPE_PRICE_ID: Optional[str] = None

    # Keygen (license provider)
    KEYGEN_API_URL: str = "https://api.keygen.sh"
    KEYGEN_ACCOUNT_ID: Optional[str] = None
    KEYGEN_POLICY_ID: Optional[str] = None
    KEYGEN_PRODUCT_TOKEN: Optional[str] = None

    # Supabase (auth / user database)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_ANON_KEY: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None

    # Session tokens
    SESSION_SECRET: Optional[str] = None
    SESSION_TTL_SECONDS: int = 3600

    # Browser
    FRONTEND_URL: str = "http://localhost:5173"
    ALLOWED_ORIGINS: str = "http://localhost:5173,http://127.0.0.1:5173"  # comma-separated

    # Outbound vendor calls
    VENDOR_TIMEOUT_SECONDS: float = 10.0

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def allowed_origins(self) -> List[str]:
        origins = [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]
        if self.FRONTEND_URL and self.FRONTEND_URL not in origins:
            origins.insert(0, self.FRONTEND_URL)
        return origins


REQUIRED_KEYS = [
    "STRIPE_SECRET_KEY",
    "STRIPE_WEBHOOK_SECRET",
    "KEYGEN_ACCOUNT_ID",
    "KEYGEN_POLICY_ID",
    "KEYGEN_PRODUCT_TOKEN",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "SESSION_SECRET",
]


def validate_config(settings_obj: Settings, strict: Optional[bool] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    log = logger or logging.getLogger("licenselink")
    strict_mode = strict if strict is not None else getattr(settings_obj, "CONFIG_STRICT", False)

    missing = [key for key in REQUIRED_KEYS if not getattr(settings_obj, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
