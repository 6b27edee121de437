from __future__ import annotations

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration loaded from environment / .env file."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Admin auth: mutations require X-Admin-Token to match
    admin_token: str = ""
    allow_anonymous_admin: bool = False  # dev mode only

    # Storage
    storage_backend: str = "sqlite"  # sqlite | memory
    db_path: str = "data/monitor.db"
    services_file: str = "services.yaml"  # seed definitions, optional

    # Scheduler
    probe_workers: int = 8
    failure_threshold: int = 3  # consecutive failures before "failing"
    probe_grace_ms: int = 1000  # slack on top of a service's timeout
    history_limit: int = 100

    # Logging
    log_level: str = "INFO"

    @field_validator("storage_backend")
    @classmethod
    def validate_storage_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in ("sqlite", "memory", "test"):
            raise ValueError(f"storage_backend must be sqlite or memory, got '{v}'")
        return v

    @field_validator("probe_workers", "failure_threshold", "history_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"must be at least 1, got {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        v = v.upper()
        if v not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"log_level must be a standard logging level, got '{v}'")
        return v


settings = Settings()
