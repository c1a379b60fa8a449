"""Application configuration."""

import os
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    openai_api_key: str
    openai_model: str = "gpt-4.1"
    openai_max_output_tokens: int = 8192
    openai_temperature: float = 0.0
    openai_store: bool = False
    stripe_secret_key: str
    stripe_webhook_secret: str | None = None
    resend_api_key: str | None = None
    email_sender: str = "NebenkostenRetter <bericht@nebenkostenretter.de>"
    public_base_url: str | None = None
    plan_prices: dict[str, int] = {"standard": 399}
    default_plan: str = "standard"
    currency: str = "eur"
    admin_token: str
    state_backend: Literal["memory", "supabase"] = "memory"
    supabase_url: str | None = None
    supabase_service_key: str | None = None
    analysis_max_retries: int = 2
    analysis_retry_delay_seconds: float = 3.0
    pending_ttl_minutes: int = 30
    completed_ttl_minutes: int = 60
    sweep_interval_seconds: float = 300.0
    max_upload_files: int = 5
    max_upload_mb: int = 10
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_plan_id(raw: str | None) -> str | None:
    """Normalize a plan id submitted with the upload form."""
    if raw is None:
        return None
    cleaned = raw.strip().lower()
    return cleaned or None


def parse_floor_area(raw: str | None) -> float | None:
    """Parse a floor area in square metres, accepting a decimal comma."""
    if raw is None:
        return None
    cleaned = raw.strip().replace(",", ".")
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None
