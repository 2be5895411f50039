import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = "sqlite:///./qrforge.db"
    TEST_DATABASE_URL: Optional[str] = None

    # Identity provider: session tokens are HS256 JWTs with the user id in `sub`
    AUTH_SECRET_KEY: Optional[str] = None
    AUTH_ALLOW_USER_ID_HEADER: bool = True  # X-User-Id fallback (tests/dev)

    # Admin access
    ADMIN_KEY: Optional[str] = None

    # App URLs
    API_BASE_URL: str = "http://localhost:8000"
    PRICING_URL: str = "/pricing"
    CORS_ALLOWED_ORIGINS: str = "http://localhost:3000"  # comma-separated

    # Usage tracker HTTP client
    HTTP_TIMEOUT_SECONDS: float = 10.0

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
    log = logger or logging.getLogger("qrforge")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "AUTH_SECRET_KEY",
        "ADMIN_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
