"""Configuration management for the baseline auditor.

Loads settings from environment variables and .env files using pydantic-settings.
Provides a cached singleton via get_config().
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuditConfig(BaseSettings):
    """Application configuration sourced from environment variables."""

    spo_admin_url: str = Field(..., alias="SPO_ADMIN_URL")
    spo_access_token: str = Field(..., alias="SPO_ACCESS_TOKEN")
    spo_timeout: int = Field(30, alias="SPO_TIMEOUT")
    spo_max_retries: int = Field(3, ge=0, alias="SPO_MAX_RETRIES")
    concurrency_limit: int = Field(8, ge=1, alias="AUDIT_CONCURRENCY_LIMIT")
    deadline_seconds: float | None = Field(None, gt=0, alias="AUDIT_DEADLINE_SECONDS")
    remediation_max_attempts: int = Field(4, ge=1, alias="REMEDIATION_MAX_ATTEMPTS")
    retry_base_delay: float = Field(1.0, ge=0, alias="RETRY_BASE_DELAY")
    retry_max_delay: float = Field(30.0, ge=0, alias="RETRY_MAX_DELAY")
    include_low_risk: bool = Field(False, alias="REMEDIATE_LOW_RISK")
    baseline_path: str | None = Field(None, alias="BASELINE_PATH")
    risk_matrix_path: str | None = Field(None, alias="RISK_MATRIX_PATH")
    audit_storage_path: str = Field(".spo-audit", alias="AUDIT_STORAGE_PATH")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_config() -> AuditConfig:
    """Return a cached singleton of AuditConfig."""
    return AuditConfig()
