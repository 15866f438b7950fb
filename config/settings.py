"""
CaseGate Settings Configuration

Centralized configuration using Pydantic Settings with environment variable support.
"""

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment types."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Supports .env file loading and provides sensible defaults for development.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Case-Management Authority
    # ==========================================================================

    authority_base_url: str = Field(
        default="http://localhost:9000/api",
        description="Base URL of the case-management authority REST API"
    )
    authority_username: Optional[str] = Field(
        default=None,
        description="System principal used by the directory synchronizer"
    )
    authority_password: Optional[str] = Field(
        default=None,
        description="Password of the system principal"
    )
    authority_timeout_seconds: float = Field(
        default=20.0,
        description="Timeout for a single authority request"
    )
    sync_request_delay_seconds: float = Field(
        default=0.3,
        description="Pause between roster lookups so the authority is not flooded"
    )

    # ==========================================================================
    # Object Store
    # ==========================================================================

    azure_storage_connection_string: Optional[str] = Field(
        default=None,
        description="Azure Blob Storage connection string"
    )
    azure_container_name: str = Field(
        default="case-documents",
        description="Container holding one top-level folder per case"
    )

    # ==========================================================================
    # Retrieval Index
    # ==========================================================================

    search_endpoint: Optional[str] = Field(
        default=None,
        description="Azure AI Search endpoint"
    )
    search_api_key: Optional[str] = Field(
        default=None,
        description="Azure AI Search query key"
    )
    search_index_name: str = Field(
        default="case-documents-index",
        description="Search index name"
    )
    search_api_version: str = Field(
        default="2023-11-01",
        description="Azure AI Search REST API version"
    )
    search_case_field: str = Field(
        default="case_number",
        description="Index field holding the case number, used in filters"
    )
    search_top_k: int = Field(
        default=10,
        description="Candidates requested from the index during resolution"
    )

    # ==========================================================================
    # Generation Engine
    # ==========================================================================

    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI / Azure OpenAI API key"
    )
    azure_openai_endpoint: Optional[str] = Field(
        default=None,
        description="Azure OpenAI endpoint (plain OpenAI is used when unset)"
    )
    azure_openai_api_version: str = Field(
        default="2025-04-01-preview",
        description="Azure OpenAI API version"
    )
    engine_model: str = Field(
        default="gpt-4o-mini",
        description="Model or deployment answering questions over the case corpus"
    )
    engine_vector_store_ids: list[str] = Field(
        default_factory=list,
        description="Vector stores searched by the engine file_search tool"
    )
    engine_case_attribute: str = Field(
        default="case_number",
        description="File attribute holding the case number in the engine vector store"
    )
    engine_poll_interval_seconds: float = Field(
        default=1.0,
        description="Delay between run status polls"
    )
    engine_max_polls: int = Field(
        default=60,
        description="Polling ceiling before a run is reported as timed out"
    )

    # ==========================================================================
    # Security Configuration
    # ==========================================================================

    jwt_secret_key: str = Field(
        default="change-me-in-production-use-strong-secret",
        description="JWT signing secret key"
    )

    jwt_algorithm: str = Field(
        default="HS256",
        description="JWT signing algorithm"
    )

    session_expire_minutes: int = Field(
        default=480,
        description="Session token lifetime in minutes"
    )

    signed_url_ttl_minutes: int = Field(
        default=60,
        description="Lifetime of signed document URLs in minutes"
    )

    admin_roles: list[str] = Field(
        default_factory=lambda: ["administrator"],
        description="Roster roles that receive access to every case"
    )

    admin_emails: list[str] = Field(
        default_factory=list,
        description="Emails that receive access to every case"
    )

    admin_sync_secret: Optional[str] = Field(
        default=None,
        description="Shared secret required to force a directory sync"
    )

    case_id_pattern: str = Field(
        default=r"^\d+$",
        description="Shape of a case number (top-level storage folder)"
    )

    federated_jwks_url: Optional[str] = Field(
        default=None,
        description="JWKS URL used to verify federated identity tokens"
    )
    federated_audience: Optional[str] = Field(
        default=None,
        description="Expected audience of federated identity tokens"
    )
    federated_issuer: Optional[str] = Field(
        default=None,
        description="Expected issuer of federated identity tokens"
    )

    # ==========================================================================
    # Directory and Conversation Threads
    # ==========================================================================

    sync_cron: str = Field(
        default="0 3 1 * *",
        description="Crontab expression for scheduled directory syncs"
    )
    sync_on_startup: bool = Field(
        default=True,
        description="Run a directory sync when the application starts"
    )
    directory_stale_days: int = Field(
        default=35,
        description="Age after which the directory is reported as stale"
    )
    thread_idle_minutes: int = Field(
        default=60,
        description="Idle time after which a conversation thread is deleted"
    )
    audit_log_path: Optional[str] = Field(
        default=None,
        description="Optional JSONL file receiving audit entries"
    )

    # ==========================================================================
    # Application Configuration
    # ==========================================================================

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment"
    )

    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )

    api_port: int = Field(
        default=8000,
        description="API server port"
    )

    debug: bool = Field(
        default=True,
        description="Enable debug mode"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins"
    )

    rate_limit_per_minute: int = Field(
        default=120,
        description="Requests allowed per client per minute"
    )

    # ==========================================================================
    # Validators
    # ==========================================================================

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is a valid Python logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        upper_v = v.upper()
        if upper_v not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return upper_v

    @field_validator("signed_url_ttl_minutes")
    @classmethod
    def validate_signed_url_ttl(cls, v: int) -> int:
        """Signed URLs live for minutes or hours, never days."""
        if not 1 <= v <= 24 * 60:
            raise ValueError("signed_url_ttl_minutes must be between 1 and 1440")
        return v

    @field_validator("admin_roles", "admin_emails")
    @classmethod
    def normalize_lists(cls, v: list[str]) -> list[str]:
        """Admin roles and emails are compared case-insensitively."""
        return [item.strip().lower() for item in v if item.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == Environment.PRODUCTION

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == Environment.DEVELOPMENT


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once.

    Returns:
        Settings: Application settings instance
    """
    return Settings()
