"""
Trailgate — Application Configuration
======================================

What:  Centralized configuration management using Pydantic Settings.
How:   Pydantic Settings reads from environment variables (or .env file),
       validates types/ranges, and provides a singleton `settings` object.
Who:   Imported by `trailgate.main` when assembling the stage list; stages
       receive plain values through their constructors.
When:  Loaded once at module import time.

The verbosity switch is APP_ENV:
    development → request logging stage + verbose error responses
    production  → no request logging + restricted error responses
"""

from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


DEFAULT_HPP_WHITELIST = (
    "duration,ratingsAverage,ratingsQuantity,maxGroupSize,difficulty,price"
)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings have defaults matching the public API contract
    (10 KB bodies, 100 requests per hour on /api, open CORS).
    """

    # ── Environment ───────────────────────────────────────────────────────
    app_env: str = Field(default="production")

    log_level: str = Field(default="INFO")

    @field_validator("app_env")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        lower = v.strip().lower()
        if lower not in {"development", "production"}:
            raise ValueError(
                f"Invalid app_env '{v}'. Must be 'development' or 'production'"
            )
        return lower

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensures log level is a valid Python logging level name."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper = v.upper()
        if upper not in valid_levels:
            raise ValueError(f"Invalid log_level '{v}'. Must be one of: {valid_levels}")
        return upper

    @property
    def is_development(self) -> bool:
        return self.app_env == "development"

    # ── Body Handling ─────────────────────────────────────────────────────
    # Bytes accepted by the JSON and form parsers
    body_limit: int = Field(default=10_240, ge=1, le=10_485_760)

    # Bytes accepted by the raw webhook capture (express.raw default)
    raw_body_limit: int = Field(default=102_400, ge=1, le=10_485_760)

    webhook_path: str = Field(default="/webhook-checkout")

    # ── Rate Limiting ─────────────────────────────────────────────────────
    rate_limit_requests: int = Field(default=100, ge=1, le=100_000)
    rate_limit_window: int = Field(default=3600, ge=1, le=86400)  # seconds
    rate_limit_prefix: str = Field(default="/api")
    rate_limit_message: str = Field(
        default="Too many requests from this IP, please try again in 1 hour !"
    )

    # Use the first X-Forwarded-For hop as the client identity
    trust_proxy: bool = Field(default=False)

    # ── CORS ──────────────────────────────────────────────────────────────
    # "*" or comma-separated origins
    cors_origins: str = Field(default="*")

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    # ── Parameter Pollution ───────────────────────────────────────────────
    hpp_whitelist: str = Field(default=DEFAULT_HPP_WHITELIST)

    @property
    def hpp_whitelist_list(self) -> List[str]:
        return [name.strip() for name in self.hpp_whitelist.split(",") if name.strip()]

    # ── Compression ───────────────────────────────────────────────────────
    compression_threshold: int = Field(default=1024, ge=0)

    # ── Static Files ──────────────────────────────────────────────────────
    static_root: str = Field(default="./public")

    # ── Server ────────────────────────────────────────────────────────────
    backend_host: str = Field(default="0.0.0.0")
    backend_port: int = Field(default=8000, ge=1024, le=65535)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


settings = Settings()
