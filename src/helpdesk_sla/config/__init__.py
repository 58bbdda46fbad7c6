"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety. Organisation-level SLA
    settings (extension limits, pause-on-snooze, approaching threshold)
    live in the YAML file named by ``sla_config_path`` so they can be
    hot-reloaded without a restart.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-sla", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Engine ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to organisation SLA settings YAML file"
    )
    sla_scan_interval_seconds: int = Field(
        default=300,
        description="Seconds between breach scanner sweeps (0 disables the job)",
        ge=0
    )
    sla_unsnooze_interval_seconds: int = Field(
        default=300,
        description="Seconds between snooze expiry sweeps (0 disables the job)",
        ge=0
    )
    sla_scan_batch_size: int = Field(
        default=100,
        description="Tickets loaded per scanner batch",
        ge=1,
        le=5000
    )
    sla_manager_roles: List[str] = Field(
        default=["admin", "ticket_manager"],
        description="Actor roles that carry the manage-tickets capability"
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:8080"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production", "test"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalise log level name."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level: {v}")
        return level


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class TicketStatus(str):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING_CUSTOMER = "pending_customer"
    PENDING_VENDOR = "pending_vendor"
    RESOLVED = "resolved"
    CLOSED = "closed"


class SLAStatus(str):
    """Compliance states of a ticket's SLA clock."""
    ON_TRACK = "on_track"
    APPROACHING_BREACH = "approaching_breach"
    BREACHED = "breached"
    COMPLETED = "completed"


class SLAEventType(str):
    """Events emitted for the notification subsystem."""
    APPROACHING = "sla_approaching"
    BREACHED = "sla_breached"


# ========== Status groups ==========

FINISHED_STATUSES = [TicketStatus.RESOLVED, TicketStatus.CLOSED]
OPEN_SLA_STATUSES = [SLAStatus.ON_TRACK, SLAStatus.APPROACHING_BREACH]

SLA_STATUS_LABELS = {
    SLAStatus.ON_TRACK: "On Track",
    SLAStatus.APPROACHING_BREACH: "Approaching Breach",
    SLAStatus.BREACHED: "Breached",
    SLAStatus.COMPLETED: "Completed",
}
