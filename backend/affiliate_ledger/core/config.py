# Central place for all configurable settings. We use Pydantic's
# BaseSettings so values can be read from env vars or a .env file.
# This keeps deployment flexible without hardcoding policy.

import json
from decimal import Decimal
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def safe_json_loads(value):
    try:
        return json.loads(value)
    except Exception:
        return value


ATTRIBUTION_MODELS = {"last_touch", "first_touch"}
LEADERBOARD_METRICS = {"total_earnings", "total_referrals"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_json_loads=safe_json_loads,
    )

    # Core DB connection string, like sqlite:///./ledger.db or a Postgres URL.
    DATABASE_URL: str

    # Toggle SQLAlchemy echo logs. Useful for debugging queries locally.
    DB_ECHO: bool = False

    LOG_LEVEL: str = "INFO"

    # Referral URLs are built as <APP_BASE_URL>/?ref=<code>.
    APP_BASE_URL: str = "http://localhost:3000"

    # Percentage applied to new affiliates without an explicit override.
    DEFAULT_COMMISSION_RATE: Decimal = Decimal("10.00")

    # Review policies. When enabled, new affiliates start as "pending"
    # and new referrals wait for an admin decision before earning.
    AFFILIATE_MANUAL_REVIEW: bool = False
    REFERRAL_REVIEW_REQUIRED: bool = False

    # Attribution window (cookie lifetime on the landing page) and the
    # strategy used to pick a visit when several are eligible.
    ATTRIBUTION_WINDOW_DAYS: int = Field(default=30, gt=0)
    ATTRIBUTION_MODEL: str = "last_touch"

    # Bounded retries for referral / link code issuance.
    CODE_GENERATION_MAX_ATTEMPTS: int = Field(default=5, gt=0)

    # Payout rules. Optimistic check-and-insert retries back off
    # exponentially starting at PAYOUT_RETRY_BASE_DELAY_MS.
    MIN_PAYOUT_AMOUNT: Decimal = Decimal("50.00")
    PAYOUT_MAX_RETRIES: int = Field(default=3, gt=0)
    PAYOUT_RETRY_BASE_DELAY_MS: int = Field(default=20, ge=0)

    # Leaderboard snapshot settings.
    LEADERBOARD_METRIC: str = "total_earnings"
    LEADERBOARD_CADENCE_DAYS: int = Field(default=7, ge=0)
    LEADERBOARD_LIMIT: int = Field(default=10, gt=0)

    # Outbound notification copy.
    NOTIFICATION_FROM_NAME: str = "Affiliate Program"

    # Roles treated as "affiliate" at the access-control boundary.
    AFFILIATE_ROLE_ALIASES: List[str] = Field(default_factory=lambda: ["affiliate", "agent"])

    # Optional header carrying the original client IP behind a proxy.
    CLIENT_IP_HEADER: Optional[str] = "X-Forwarded-For"

    @field_validator("ATTRIBUTION_MODEL")
    @classmethod
    def _check_attribution_model(cls, value):
        value = (value or "").strip().lower()
        if value not in ATTRIBUTION_MODELS:
            raise ValueError(f"ATTRIBUTION_MODEL must be one of {sorted(ATTRIBUTION_MODELS)}")
        return value

    @field_validator("LEADERBOARD_METRIC")
    @classmethod
    def _check_leaderboard_metric(cls, value):
        value = (value or "").strip().lower()
        if value not in LEADERBOARD_METRICS:
            raise ValueError(f"LEADERBOARD_METRIC must be one of {sorted(LEADERBOARD_METRICS)}")
        return value

    @field_validator("AFFILIATE_ROLE_ALIASES", mode="before")
    @classmethod
    def _parse_list_values(cls, value):
        if isinstance(value, str):
            parts = [p.strip() for p in value.split(",") if p.strip()]
            return parts
        return value


# Instantiate a single settings object for app-wide import.
# Any module can just `from affiliate_ledger.core.config import settings`.
settings = Settings()
