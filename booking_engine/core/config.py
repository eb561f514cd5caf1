# booking_engine/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional, Set

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

_PROJECT_ROOT = Path(__file__).resolve().parents[2]

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = _PROJECT_ROOT / ".env"
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


PROD_ENVIRONMENTS: Set[str] = {"prod", "production", "live"}

PaymentGatewayName = Literal["fake", "payment_service", "stripe"]


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment name")
    log_level: str = Field(default="INFO", description="Root log level for API and workers")

    # Persistence
    database_url: str = Field(
        default="sqlite:///./booking_engine.db",
        description="SQLAlchemy database URL",
    )
    database_pool_size: int = Field(default=20, ge=1)
    database_max_overflow: int = Field(default=10, ge=0)

    # Redis is used for the Celery broker and the per-booking mutex.
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis URL; when unset the booking mutex is skipped",
    )
    booking_lock_ttl_seconds: int = Field(default=90, ge=1)

    # Booking lifecycle
    booking_hold_minutes: int = Field(
        default=30,
        ge=1,
        description="Minutes an unpaid booking keeps its capacity hold",
    )
    manual_confirmation_asset_types: str = Field(
        default="accommodation,package",
        description="Comma separated asset types that wait for partner acceptance",
    )
    default_service_duration_minutes: int = Field(default=120, ge=1)
    transition_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts for a transition that loses an optimistic concurrency race",
    )
    sweep_batch_size: int = Field(default=200, ge=1)
    confirmation_code_length: int = Field(default=8, ge=6, le=12)
    currency: str = Field(default="BRL", min_length=3, max_length=3)
    frontend_url: str = Field(default="http://localhost:3000")

    # Coupons
    coupon_max_validity_days: int = Field(default=730, ge=1)
    coupon_expiring_soon_days: int = Field(default=3, ge=0)

    # Payment gateways
    payment_gateway: PaymentGatewayName = Field(default="fake")
    payment_service_url: str = Field(default="http://localhost:8080")
    payment_service_api_key: SecretStr = Field(default=SecretStr(""))
    stripe_secret_key: SecretStr = Field(default=SecretStr(""))
    stripe_webhook_secret: SecretStr = Field(default=SecretStr(""))
    payment_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="HMAC secret for the generic payment webhook; empty disables verification",
    )
    gateway_max_attempts: int = Field(default=3, ge=1)
    gateway_backoff_seconds: float = Field(default=0.5, ge=0)
    gateway_timeout_seconds: float = Field(default=10.0, gt=0)

    # Notifications
    notification_service_url: Optional[str] = Field(
        default=None,
        description="Endpoint receiving notification effects; when unset effects are only logged",
    )
    notification_service_api_key: SecretStr = Field(default=SecretStr(""))

    # Worker cadence
    celery_broker_url: Optional[str] = Field(
        default=None, description="Broker for the workers; falls back to redis_url"
    )
    hold_expiry_interval_seconds: int = Field(default=60, ge=5)
    schedule_advance_interval_seconds: int = Field(default=300, ge=5)
    webhook_replay_interval_seconds: int = Field(default=300, ge=5)
    outbox_dispatch_interval_seconds: int = Field(default=30, ge=5)
    webhook_max_replays: int = Field(
        default=5, ge=1, description="Replays a failed payment webhook gets before manual review"
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("environment", mode="before")
    @classmethod
    def _normalize_environment(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower() or "development"
        return value

    @field_validator("currency", mode="before")
    @classmethod
    def _normalize_currency(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().upper()
        return value

    @model_validator(mode="after")
    def _check_gateway_credentials(self) -> "Settings":
        """Refuse to boot production without real gateway credentials."""
        if self.environment not in PROD_ENVIRONMENTS:
            return self
        if self.payment_gateway == "fake":
            raise ValueError("PAYMENT_GATEWAY=fake is not allowed in production")
        if (
            self.payment_gateway == "stripe"
            and not self.stripe_secret_key.get_secret_value()
        ):
            raise ValueError("STRIPE_SECRET_KEY is required when PAYMENT_GATEWAY=stripe")
        if (
            self.payment_gateway == "payment_service"
            and not self.payment_service_api_key.get_secret_value()
        ):
            raise ValueError(
                "PAYMENT_SERVICE_API_KEY is required when PAYMENT_GATEWAY=payment_service"
            )
        return self

    @property
    def is_production(self) -> bool:
        return self.environment in PROD_ENVIRONMENTS

    @property
    def manual_confirmation_types(self) -> Set[str]:
        """Asset types that stop in awaiting_confirmation after payment."""
        return {
            token.strip().lower()
            for token in self.manual_confirmation_asset_types.split(",")
            if token.strip()
        }

    def get_database_url(self) -> str:
        return self.database_url


settings = Settings()
