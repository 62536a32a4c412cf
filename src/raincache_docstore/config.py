"""
Configuration management for the storage engine.

This module provides:
- Pydantic-based configuration validation
- Environment-backed secrets lookup
- Retry configuration for connection establishment
- ``.env`` loading through python-dotenv
"""

import os
import logging
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

logger = logging.getLogger(__name__)


class SecretsManager:
    """Resolves secret names to values from environment variables."""

    def get_secret(self, secret_name: str, default: Optional[str] = None) -> str:
        """
        Retrieve a secret.

        Raises:
            ValueError: If secret not found and no default provided
        """
        value = os.getenv(secret_name, default)
        if value is None:
            raise ValueError(f"Secret '{secret_name}' not found in environment variables")
        return value


# ============================================================================
# Configuration Models
# ============================================================================

class CollectionNames(BaseModel):
    """Logical names of the two collections the engine writes to."""

    kv: str = Field(
        default="raincache",
        min_length=1,
        description="Collection holding key-value and list entries"
    )

    list: str = Field(
        default="raincachelists",
        min_length=1,
        description="Collection holding list elements"
    )

    @model_validator(mode='after')
    def validate_distinct(self):
        if self.kv == self.list:
            raise ValueError("kv and list collections must have different names")
        return self


class AuthConfig(BaseModel):
    """Authentication configuration for ScyllaDB."""

    enabled: bool = Field(
        default=False,
        description="Enable authentication"
    )

    username: Optional[str] = Field(
        default=None,
        description="Database username"
    )

    password: Optional[str] = Field(
        default=None,
        description="Database password"
    )

    password_secret_name: Optional[str] = Field(
        default=None,
        description="Environment variable holding the password"
    )

    @model_validator(mode='after')
    def validate_auth_config(self):
        if self.enabled:
            if not self.username:
                raise ValueError("Authentication requires username")

            if not self.password and not self.password_secret_name:
                raise ValueError(
                    "Authentication requires either 'password' or 'password_secret_name'"
                )

        return self


class RetryConfig(BaseModel):
    """Retry policy for establishing the cluster connection."""

    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Maximum number of connection attempts"
    )

    initial_delay: float = Field(
        default=0.5,
        ge=0.1,
        le=5.0,
        description="Initial retry delay in seconds"
    )

    backoff_factor: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Exponential backoff multiplier"
    )

    max_delay: float = Field(
        default=10.0,
        ge=1.0,
        le=60.0,
        description="Maximum retry delay in seconds"
    )


class ScyllaConfig(BaseModel):
    """Connection settings for the ScyllaDB document collaborator."""

    contact_points: list[str] = Field(
        default_factory=lambda: ["127.0.0.1"],
        description="ScyllaDB contact points (hostnames or IPs)"
    )

    keyspace: str = Field(
        default="raincache",
        description="Keyspace holding the documents table"
    )

    port: int = Field(
        default=9042,
        ge=1,
        le=65535,
        description="ScyllaDB port"
    )

    request_timeout: float = Field(
        default=10.0,
        gt=0,
        le=120.0,
        description="Driver request timeout in seconds"
    )

    fetch_size: int = Field(
        default=500,
        ge=10,
        le=10000,
        description="Rows fetched per page during scans"
    )

    replication_factor: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Replication factor used when creating the keyspace"
    )

    auth: AuthConfig = Field(
        default_factory=AuthConfig,
        description="Authentication configuration"
    )

    @field_validator('contact_points')
    @classmethod
    def validate_contact_points(cls, v):
        if not v:
            raise ValueError("At least one contact point required")
        return v

    @field_validator('keyspace')
    @classmethod
    def validate_keyspace(cls, v):
        if not v or not v.replace('_', '').isalnum():
            raise ValueError(
                "Keyspace must be alphanumeric with optional underscores"
            )
        return v

    def resolve_secrets(self, secrets_manager: SecretsManager | None = None) -> None:
        """Replace ``password_secret_name`` with the secret's value."""
        secrets_manager = secrets_manager or SecretsManager()
        if self.auth.enabled and self.auth.password_secret_name:
            self.auth.password = secrets_manager.get_secret(self.auth.password_secret_name)
            self.auth.password_secret_name = None


class EngineConfig(BaseModel):
    """
    Complete configuration for a StorageEngine.

    Example usage:
        config = EngineConfig(
            scylla=ScyllaConfig(contact_points=["scylla1.example.com"], keyspace="cache"),
            partitions=["users", "sessions"],
        )

        async with StorageEngine.from_config(config) as engine:
            await engine.upsert("users.42", {"name": "Alice"})
    """

    scylla: ScyllaConfig = Field(
        default_factory=ScyllaConfig,
        description="ScyllaDB connection settings"
    )

    collections: CollectionNames = Field(
        default_factory=CollectionNames,
        description="Collection names"
    )

    partitions: list[str] = Field(
        default_factory=list,
        description="Top-level namespaces stored in their own collections"
    )

    retry: RetryConfig = Field(
        default_factory=RetryConfig,
        description="Connection retry configuration"
    )

    enable_tracing: bool = Field(
        default=False,
        description="Wrap operations in OpenTelemetry spans"
    )

    configure_logging: bool = Field(
        default=True,
        description="Apply log_level and log_format to the root logger in StorageEngine.from_config"
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level applied by setup_production_logging"
    )

    log_format: Literal["json", "text"] = Field(
        default="json",
        description="Log output format"
    )

    model_config = ConfigDict(validate_assignment=True)

    @field_validator('partitions')
    @classmethod
    def validate_partitions(cls, v):
        for name in v:
            if not name or "." in name:
                raise ValueError(f"Partition name must be non-empty and contain no dots: {name!r}")
            if not name.replace('_', '').isalnum():
                raise ValueError(f"Partition name must be alphanumeric with optional underscores: {name!r}")
        if len(set(v)) != len(v):
            raise ValueError("Partition names must be unique")
        return v


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def load_config_from_env(env_file: str | None = None) -> EngineConfig:
    """
    Load configuration from environment variables (and an optional .env file).

    Environment variables:
        RAINCACHE_SCYLLA_CONTACT_POINTS: Comma-separated list of contact points
        RAINCACHE_SCYLLA_KEYSPACE: Keyspace name
        RAINCACHE_SCYLLA_PORT: Port (default: 9042)
        RAINCACHE_SCYLLA_REQUEST_TIMEOUT: Driver request timeout in seconds
        RAINCACHE_SCYLLA_FETCH_SIZE: Rows per scan page
        RAINCACHE_SCYLLA_AUTH_ENABLED: Enable authentication (true/false)
        RAINCACHE_SCYLLA_USERNAME: Database username
        RAINCACHE_SCYLLA_PASSWORD: Database password
        RAINCACHE_SCYLLA_PASSWORD_SECRET: Variable name holding the password
        RAINCACHE_KV_COLLECTION: Key-value collection name
        RAINCACHE_LIST_COLLECTION: List collection name
        RAINCACHE_PARTITIONS: Comma-separated partition names
        RAINCACHE_ENABLE_TRACING: Enable OpenTelemetry spans (true/false)
        RAINCACHE_CONFIGURE_LOGGING: Configure root logging in from_config (default: true)
        RAINCACHE_LOG_LEVEL: Log level
        RAINCACHE_LOG_FORMAT: json or text

    Returns:
        Validated configuration
    """
    load_dotenv(env_file)

    contact_points_str = os.getenv("RAINCACHE_SCYLLA_CONTACT_POINTS", "127.0.0.1")
    contact_points = [cp.strip() for cp in contact_points_str.split(",") if cp.strip()]

    partitions_str = os.getenv("RAINCACHE_PARTITIONS", "")
    partitions = [p.strip() for p in partitions_str.split(",") if p.strip()]

    scylla = ScyllaConfig(
        contact_points=contact_points,
        keyspace=os.getenv("RAINCACHE_SCYLLA_KEYSPACE", "raincache"),
        port=int(os.getenv("RAINCACHE_SCYLLA_PORT", "9042")),
        request_timeout=float(os.getenv("RAINCACHE_SCYLLA_REQUEST_TIMEOUT", "10.0")),
        fetch_size=int(os.getenv("RAINCACHE_SCYLLA_FETCH_SIZE", "500")),
        auth=AuthConfig(
            enabled=_env_flag("RAINCACHE_SCYLLA_AUTH_ENABLED"),
            username=os.getenv("RAINCACHE_SCYLLA_USERNAME"),
            password=os.getenv("RAINCACHE_SCYLLA_PASSWORD"),
            password_secret_name=os.getenv("RAINCACHE_SCYLLA_PASSWORD_SECRET"),
        ),
    )
    scylla.resolve_secrets()

    return EngineConfig(
        scylla=scylla,
        collections=CollectionNames(
            kv=os.getenv("RAINCACHE_KV_COLLECTION", "raincache"),
            list=os.getenv("RAINCACHE_LIST_COLLECTION", "raincachelists"),
        ),
        partitions=partitions,
        enable_tracing=_env_flag("RAINCACHE_ENABLE_TRACING"),
        configure_logging=_env_flag("RAINCACHE_CONFIGURE_LOGGING", "true"),
        log_level=os.getenv("RAINCACHE_LOG_LEVEL", "INFO").upper(),
        log_format=os.getenv("RAINCACHE_LOG_FORMAT", "json").lower(),
    )
