"""Configuration loaders for GuestPilot services.

Leverages pydantic-settings to hydrate runtime configuration from environment
variables, an optional ``.env`` file, or default values. Nested settings classes
mirror infrastructure concerns (datastore, queue, platform and model providers).
"""

from __future__ import annotations

from functools import cached_property
from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseAppSettings(BaseSettings):
    """Base settings that looks at environment variables and an optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class PostgresSettings(BaseAppSettings):
    """Postgres connection details."""

    model_config = SettingsConfigDict(
        env_prefix="postgres_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    host: str = "localhost"
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = Field(
        default="guestpilot",
        validation_alias=AliasChoices("postgres_database", "postgres_db", "database"),
    )
    user: str = "guestpilot"
    password: str = "changeme"
    sslmode: str = "prefer"
    dsn_override: str | None = None

    @cached_property
    def dsn(self) -> str:
        """Return a SQLAlchemy DSN for the psycopg driver (or the override)."""

        if self.dsn_override:
            return self.dsn_override
        return (
            f"postgresql+psycopg://{self.user}:{self.password}@{self.host}:{self.port}"
            f"/{self.database}?sslmode={self.sslmode}"
        )


class RedisSettings(BaseAppSettings):
    """Redis URL used for sync progress state."""

    model_config = SettingsConfigDict(
        env_prefix="redis_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    url: str = "redis://localhost:6379/0"


class OpenAISettings(BaseAppSettings):
    """Configuration for OpenAI chat and embedding models."""

    model_config = SettingsConfigDict(
        env_prefix="openai_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_key: str | None = None
    intent_model: str = Field(default="gpt-4o-mini")
    response_model: str = Field(default="gpt-4o-mini")
    embedding_model: str = Field(default="text-embedding-3-small")
    timeout_seconds: float = Field(default=30.0, ge=0.1)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


class HostawaySettings(BaseAppSettings):
    """Hostaway public API configuration."""

    model_config = SettingsConfigDict(
        env_prefix="hostaway_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_base_url: str = "https://api.hostaway.com"
    dry_run: bool = False
    timeout_seconds: float = Field(default=30.0, ge=0.1)
    max_rate_limit_wait_seconds: float = Field(default=60.0, ge=0.0)


class TwilioSettings(BaseAppSettings):
    """Global Twilio credentials used when a tenant has no overrides."""

    model_config = SettingsConfigDict(
        env_prefix="twilio_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    api_base_url: str = "https://api.twilio.com"
    account_sid: str | None = None
    auth_token: str | None = None
    whatsapp_from: str | None = None
    voice_from: str | None = None
    messaging_service_sid: str | None = None
    dry_run: bool = False
    timeout_seconds: float = Field(default=15.0, ge=0.1)


class EscalationSettings(BaseAppSettings):
    """Human hand-off thresholds and fallback contact numbers."""

    model_config = SettingsConfigDict(
        env_prefix="escalation_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    staff_whatsapp_number: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "escalation_staff_whatsapp_number", "staff_whatsapp_number"
        ),
    )
    on_call_number: str | None = Field(
        default=None,
        validation_alias=AliasChoices("escalation_on_call_number", "on_call_number"),
    )
    confidence_threshold: float = Field(default=0.45, ge=0.0, le=1.0)
    history_limit: int = Field(default=10, ge=1)
    history_context_size: int = Field(default=5, ge=1)


class SecuritySettings(BaseAppSettings):
    """Key material for decrypting tenant credentials."""

    model_config = SettingsConfigDict(
        env_prefix="security_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    encryption_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("security_encryption_key", "encryption_key"),
    )


class EventQueueSettings(BaseAppSettings):
    """Redis connection details for the platform event worker queue."""

    model_config = SettingsConfigDict(
        env_prefix="events_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    redis_host: str = "localhost"
    redis_port: int = Field(default=6379, ge=1, le=65535)
    redis_db: int = Field(default=0, ge=0)
    redis_password: str | None = None
    queue_name: str = "guestpilot:events"
    max_tries: int = Field(default=3, ge=1)
    job_timeout_seconds: int = Field(default=120, ge=1)


class KnowledgeSyncSettings(BaseAppSettings):
    """Pacing and safety limits for the conversation-history sync job."""

    model_config = SettingsConfigDict(
        env_prefix="sync_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    page_size: int = Field(default=100, ge=1, le=500)
    max_pages: int = Field(default=50, ge=1)
    page_delay_seconds: float = Field(default=0.2, ge=0.0)
    batch_size: int = Field(default=10, ge=1)
    batch_delay_seconds: float = Field(default=0.5, ge=0.0)
    rate_limit_base_delay_seconds: float = Field(default=5.0, ge=0.0)
    max_rate_limit_retries: int = Field(default=5, ge=1)
    progress_interval: int = Field(default=25, ge=1)
    progress_ttl_seconds: int = Field(default=3600, ge=1)
    progress_key_template: str = "guestpilot:sync-progress:{user}"


class TelemetrySettings(BaseAppSettings):
    """Shared telemetry configuration."""

    model_config = SettingsConfigDict(
        env_prefix="otel_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    exporter_endpoint: str | None = None
    exporter_headers: str | None = None
    metrics_host: str = "0.0.0.0"
    metrics_port: int | None = None


class AppSettings(BaseAppSettings):
    """Top level settings object used by services."""

    postgres: PostgresSettings = Field(default_factory=PostgresSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    hostaway: HostawaySettings = Field(default_factory=HostawaySettings)
    twilio: TwilioSettings = Field(default_factory=TwilioSettings)
    escalation: EscalationSettings = Field(default_factory=EscalationSettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    event_queue: EventQueueSettings = Field(default_factory=EventQueueSettings)
    knowledge_sync: KnowledgeSyncSettings = Field(default_factory=KnowledgeSyncSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    log_level: str = "INFO"

    @classmethod
    def load(cls, **kwargs: Any) -> AppSettings:
        """Helper factory that mirrors BaseSettings semantics."""

        return cls(**kwargs)
