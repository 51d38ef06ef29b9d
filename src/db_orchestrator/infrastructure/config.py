"""Configuration management for the database orchestrator."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageConfig(BaseModel):
    """Persistent state configuration."""

    app_dir: Path = Field(
        default=Path.home() / ".db-orchestrator", description="Private application data dir"
    )
    databases_dir: Path | None = Field(
        default=None, description="Parent of instance data dirs (default <app_dir>/databases)"
    )
    state_file: str = Field(default="databases.json", description="Instance records document")
    banned_ports_file: str = Field(default="banned-ports.json", description="Banned ports list")

    @model_validator(mode="after")
    def _default_databases_dir(self) -> StorageConfig:
        if self.databases_dir is None:
            self.databases_dir = self.app_dir / "databases"
        return self

    @property
    def state_path(self) -> Path:
        return self.app_dir / self.state_file

    @property
    def banned_ports_path(self) -> Path:
        return self.app_dir / self.banned_ports_file


class PortConfig(BaseModel):
    """Port allocation configuration."""

    search_window: int = Field(default=100, ge=1, le=65535, description="Ports scanned by resolve")
    allow_privileged: bool = Field(default=False, description="Allow ports below 1024")
    probe_cache_ttl_seconds: float = Field(default=5.0, ge=0, description="Port probe cache TTL")
    advisory_debounce_seconds: float = Field(default=0.5, ge=0, description="Live check debounce")
    probe_timeout_seconds: float = Field(default=1.0, gt=0, description="OS port probe timeout")


class ProcessConfig(BaseModel):
    """Process supervision configuration."""

    start_timeout_seconds: float = Field(default=10.0, gt=0, description="Readiness timeout")
    stop_timeout_seconds: float = Field(default=10.0, gt=0, description="Graceful stop timeout")
    kill_grace_seconds: float = Field(default=2.0, gt=0, description="SIGTERM to SIGKILL delay")
    startup_grace_seconds: float = Field(
        default=30.0, ge=0, description="Ignore stopped probes for starting instances"
    )
    event_dedup_window_seconds: float = Field(default=0.5, ge=0, description="Duplicate event window")
    shutdown_budget_seconds: float = Field(default=15.0, gt=0, description="Stop-all budget on exit")
    orphan_kill_grace_seconds: float = Field(default=0.5, gt=0, description="Orphan SIGTERM grace")


class InstallConfig(BaseModel):
    """Installation configuration."""

    max_attempts: int = Field(default=3, ge=1, description="Consecutive failures before giving up")
    max_name_length: int = Field(default=15, ge=1, le=255, description="Longest instance name")
    persist_on_init_failure: bool = Field(
        default=True, description="Keep the record when data dir initialization fails"
    )
    brew_path: Path | None = Field(default=None, description="Explicit brew executable")


class VaultConfig(BaseModel):
    """Credential vault configuration."""

    secret: str | None = Field(default=None, description="Key derivation secret (default app_dir)")


class ServerConfig(BaseModel):
    """Server configuration."""

    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8765, ge=1, le=65535, description="REST API port")
    metrics_port: int = Field(default=8766, ge=1, le=65535, description="Prometheus metrics port")
    metrics_enabled: bool = Field(default=False, description="Expose Prometheus metrics")


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="console", description="Log format")
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="db_orchestrator", description="Service name for tracing")


class Config(BaseSettings):
    """Main configuration for the database orchestrator."""

    model_config = SettingsConfigDict(
        env_prefix="DB_ORCHESTRATOR_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    ports: PortConfig = Field(default_factory=PortConfig)
    process: ProcessConfig = Field(default_factory=ProcessConfig)
    install: InstallConfig = Field(default_factory=InstallConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    @property
    def vault_secret(self) -> str:
        return self.vault.secret or str(self.storage.app_dir.expanduser().resolve())

    def ensure_directories(self) -> None:
        """Ensure application and database directories exist."""
        self.storage.app_dir.mkdir(parents=True, exist_ok=True)
        assert self.storage.databases_dir is not None
        self.storage.databases_dir.mkdir(parents=True, exist_ok=True)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    config = Config()
    config.ensure_directories()
    return config
