"""
Environment validation utilities.

Ensures the backend fails fast on misconfiguration while
remaining bypassable for tests via SKIP_ENV_VALIDATION.
"""

import os
from typing import Iterable, Optional
from urllib.parse import urlparse


class EnvValidationError(RuntimeError):
    """Raised when environment validation fails."""


def _is_valid_http_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _require(vars_required: Iterable[str], source: object) -> None:
    for var in vars_required:
        if not getattr(source, var, None):
            raise EnvValidationError(f"{var} is required in production")


def validate_env(settings_obj, env: Optional[str] = None) -> bool:
    """Validate environment configuration.

    Args:
        settings_obj: Settings instance (or any object exposing the same attributes)
        env: Override environment name (defaults to settings_obj.ENV)

    Returns:
        True if validation passes.

    Raises:
        EnvValidationError when a rule is violated.
    """
    if os.getenv("SKIP_ENV_VALIDATION") == "1":
        return True

    cfg = settings_obj
    mode = (env or getattr(cfg, "ENV", "development") or "development").lower()

    for key in ("SUPABASE_URL", "FRONTEND_URL", "KEYGEN_API_URL"):
        value = getattr(cfg, key, None)
        if value and not _is_valid_http_url(value):
            raise EnvValidationError(f"{key} must be an http(s) URL")

    required_prod = [
        "STRIPE_SECRET_KEY",
        "STRIPE_WEBHOOK_SECRET",
        "KEYGEN_ACCOUNT_ID",
        "KEYGEN_PRODUCT_TOKEN",
        "SUPABASE_URL",
        "SUPABASE_SERVICE_ROLE_KEY",
        "SESSION_SECRET",
    ]

    if mode == "production":
        _require(required_prod, cfg)
        secret = getattr(cfg, "SESSION_SECRET", None) or ""
        if len(secret) < 32:
            raise EnvValidationError("SESSION_SECRET must be at least 32 characters in production")
        key = getattr(cfg, "STRIPE_SECRET_KEY", None) or ""
        if key.startswith("sk_test_"):
            raise EnvValidationError("STRIPE_SECRET_KEY must be a live key in production")

    timeout = getattr(cfg, "VENDOR_TIMEOUT_SECONDS", 10)
    if timeout is not None and timeout <= 0:
        raise EnvValidationError("VENDOR_TIMEOUT_SECONDS must be positive")

    return True
