from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    database_url: str = "sqlite+aiosqlite:///./promo_ledger.db"
    sql_echo: bool = False
    secret_key: str = "change-me"

    # Internal API security (observability snapshots, operator routes)
    observability_api_key: str = ""

    # Visit settlement policy
    visit_loyalty_points: int = Field(default=10, gt=0)

    # Reward redemptions
    redemption_validity_days: int = Field(default=30, gt=0)
    redemption_proof_scheme: str = "promo"

    # Referral artifacts
    referral_code_length: int = Field(default=8, ge=6, le=32)

    # QR rendering
    qr_box_size: int = 10
    qr_border: int = 4

    # Logging and tracing
    log_level: str = "INFO"
    tracing_enabled: bool = True

    @field_validator("redemption_proof_scheme")
    @classmethod
    def _normalize_scheme(cls, value: str) -> str:
        scheme = value.strip().lower().rstrip(":/")
        if not scheme or not scheme.isalnum():
            raise ValueError("redemption_proof_scheme must be alphanumeric")
        return scheme


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
