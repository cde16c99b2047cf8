"""
Configuration management for the bounty market service.

Loads configuration from YAML with ZERO defaults for required sections.
Every required value must be explicitly specified or startup fails.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator


class ServiceConfig(BaseModel):
    """Service identity configuration."""

    model_config = ConfigDict(extra="forbid")
    name: str
    version: str


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(extra="forbid")
    level: str
    directory: str


class DatabaseConfig(BaseModel):
    """Database configuration."""

    model_config = ConfigDict(extra="forbid")
    path: str


class IdentityConfig(BaseModel):
    """Identity service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    verify_jws_path: str
    timeout_seconds: int


class CompanyRegistryConfig(BaseModel):
    """Company vetting service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    company_path: str
    timeout_seconds: int


class PaymentsConfig(BaseModel):
    """Value transfer service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    transfer_path: str
    deposit_lock_path: str
    timeout_seconds: int


class ProfilesConfig(BaseModel):
    """Profile service connection configuration."""

    model_config = ConfigDict(extra="forbid")
    base_url: str
    completed_task_path: str
    timeout_seconds: int


class PlatformConfig(BaseModel):
    """Platform agent configuration for signing outbound payments."""

    model_config = ConfigDict(extra="forbid")
    agent_id: str
    private_key_path: str | None = None


class RequestConfig(BaseModel):
    """Request handling configuration."""

    model_config = ConfigDict(extra="forbid")
    max_body_size: int


class EscrowConfig(BaseModel):
    """Storage pricing used by the escrow accountant."""

    model_config = ConfigDict(extra="forbid")
    price_per_byte: int = Field(ge=0)
    invitee_storage_bytes: int = Field(ge=0)
    record_overhead_bytes: int = Field(ge=0)
    token_kind: str


class LimitsConfig(BaseModel):
    """Caps on caller-supplied sizes."""

    model_config = ConfigDict(extra="forbid")
    max_invitees: int = Field(ge=1)
    default_page_limit: int = Field(ge=1)
    max_page_limit: int = Field(ge=1)
    max_account_id_length: int = Field(ge=1)
    max_title_length: int = Field(ge=1)
    max_description_length: int = Field(ge=1)


class Settings(BaseModel):
    """
    Root configuration container.

    All fields are REQUIRED. No defaults exist.
    Missing fields cause immediate startup failure.
    """

    model_config = ConfigDict(extra="forbid")
    service: ServiceConfig
    logging: LoggingConfig
    database: DatabaseConfig
    identity: IdentityConfig
    company_registry: CompanyRegistryConfig
    payments: PaymentsConfig
    profiles: ProfilesConfig
    platform: PlatformConfig
    request: RequestConfig
    escrow: EscrowConfig
    limits: LimitsConfig

    @model_validator(mode="after")
    def _check_cross_section_limits(self) -> Settings:
        if self.escrow.invitee_storage_bytes < self.limits.max_account_id_length:
            msg = "escrow.invitee_storage_bytes must cover limits.max_account_id_length"
            raise ValueError(msg)
        if self.limits.default_page_limit > self.limits.max_page_limit:
            msg = "limits.default_page_limit must not exceed limits.max_page_limit"
            raise ValueError(msg)
        return self


def get_config_path() -> Path:
    """Determine configuration file path from CONFIG_PATH, defaulting to ./config.yaml."""
    configured = os.environ.get("CONFIG_PATH")
    if configured:
        return Path(configured)
    return Path.cwd() / "config.yaml"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load and cache settings from the YAML config file."""
    config_path = get_config_path()
    if not config_path.exists():
        msg = f"Config file not found: {config_path}"
        raise FileNotFoundError(msg)

    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return Settings(**raw)


def clear_settings_cache() -> None:
    """Drop the cached settings so the next call reloads the file."""
    get_settings.cache_clear()
