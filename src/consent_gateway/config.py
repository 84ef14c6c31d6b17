"""
Consent Gateway Configuration

Configuration management using Pydantic Settings.
Supports environment variables and .env files.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConsentSettings(BaseSettings):
    """Core consent engine settings."""

    model_config = SettingsConfigDict(
        env_prefix="CONSENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    log_json: bool = True

    # Expiry reconciler
    sweep_interval_seconds: float = Field(default=60.0, gt=0)

    # Internal retries after a concurrent modification
    conflict_retries: int = Field(default=1, ge=0)


class SigningSettings(BaseSettings):
    """Artefact signing settings."""

    model_config = SettingsConfigDict(
        env_prefix="SIGNING_",
        env_file=".env",
        extra="ignore",
    )

    # Provider: jwt, digest
    provider: Literal["jwt", "digest"] = "jwt"
    secret_key: SecretStr = Field(default=SecretStr("consent-gateway-signing-key-change-me"))
    algorithm: str = "HS256"


class Settings:
    """
    Aggregated settings container.

    Usage:
        from consent_gateway.config import get_settings
        settings = get_settings()
        print(settings.consent.sweep_interval_seconds)
    """

    def __init__(self, consent: ConsentSettings | None = None, signing: SigningSettings | None = None):
        self.consent = consent or ConsentSettings()
        self.signing = signing or SigningSettings()

    @property
    def is_production(self) -> bool:
        return self.consent.env == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings: The application settings
    """
    return Settings()
