"""
Configuration management for the sync pipeline.

Uses pydantic-settings to load configuration from environment variables
and optional YAML files. Settings are read once per process and cached.
"""

import os
import re
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import yaml
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationException

# SQS SendMessageBatch limit
MAX_QUEUE_BATCH_SIZE = 10
# S3 ListObjectsV2 limit
MAX_PAGE_SIZE = 1000
# Short long-poll: sparse queues can answer an immediate receive with nothing
RECEIVE_WAIT_SECONDS = 1


class SyncSettings(BaseSettings):
    """
    Settings for the index sync handlers, drainer and reindex orchestrator.
    """

    model_config = SettingsConfigDict(
        env_prefix="DOCSYNC_", env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # Environment
    environment: str = Field("dev", description="Environment name (dev/devlocal/staging/prod)")

    # AWS Configuration
    aws_region: str = Field("us-east-1")
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    localstack_endpoint: Optional[str] = Field(None, description="LocalStack endpoint for local development")

    # Object store
    s3_bucket: str = Field(..., description="Bucket holding one prefix per collection")
    checkpoint_key_name: str = Field("_reindex_status", description="Reserved per-collection checkpoint key")

    # Search engine
    opensearch_endpoint: str = Field(..., description="OpenSearch/Elasticsearch base URL")
    opensearch_index: str = Field("items")
    opensearch_username: Optional[str] = None
    opensearch_password: Optional[str] = None
    opensearch_verify_certs: bool = Field(True)
    opensearch_timeout: int = Field(5, ge=1, le=300)

    # Retry queue
    sqs_retry_queue_url: str = Field(..., description="SQS queue holding failed or synthetic change events")
    queue_batch_size: int = Field(MAX_QUEUE_BATCH_SIZE, ge=1, le=MAX_QUEUE_BATCH_SIZE)

    # Drain
    drain_visibility_timeout: int = Field(10, ge=1, le=43200)
    drain_safety_margin: float = Field(20.0, gt=0)
    drain_log_interval: int = Field(10, ge=1)
    replay_mode: Literal["direct", "invoke"] = Field("direct")
    primary_function_name: Optional[str] = Field(None, description="Primary handler for invoke-mode replay")

    # Reindex
    reindex_page_size: int = Field(MAX_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)
    reindex_safety_margin: float = Field(10.0, gt=0)

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    json_logs: bool = Field(True, description="Whether to output JSON format logs")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        valid_envs = ["dev", "devlocal", "staging", "prod"]
        if v not in valid_envs:
            raise ValueError(f"Invalid environment: {v}. Must be one of {valid_envs}")
        return v

    @model_validator(mode="after")
    def validate_runtime_config(self) -> "SyncSettings":
        """Cross-field checks for drain timing, replay mode and LocalStack."""
        if self.environment == "devlocal" and not self.localstack_endpoint:
            raise ValueError("localstack_endpoint is required for devlocal environment")

        # The last lease must expire and its replay finish before the invocation is killed
        if self.drain_safety_margin < self.drain_cycle_seconds:
            raise ValueError(
                f"drain_safety_margin ({self.drain_safety_margin}s) must cover the visibility lease "
                f"({self.drain_visibility_timeout}s) plus one replay attempt "
                f"({RECEIVE_WAIT_SECONDS}s receive wait, {self.opensearch_timeout}s search timeout)"
            )

        if self.replay_mode == "invoke" and not self.primary_function_name:
            raise ValueError("primary_function_name is required when replay_mode is 'invoke'")

        return self

    @property
    def drain_cycle_seconds(self) -> float:
        """Upper bound on one lease-and-replay cycle."""
        return self.drain_visibility_timeout + RECEIVE_WAIT_SECONDS + self.opensearch_timeout

    def checkpoint_key(self, collection_id: str) -> str:
        return f"{collection_id}/{self.checkpoint_key_name}"

    def aws_client_kwargs(self) -> Dict[str, Any]:
        """Keyword arguments for boto3.client, honouring LocalStack."""
        if self.localstack_endpoint:
            return {
                "endpoint_url": self.localstack_endpoint,
                "aws_access_key_id": self.aws_access_key_id,
                "aws_secret_access_key": self.aws_secret_access_key,
                "region_name": self.aws_region,
            }
        return {"region_name": self.aws_region}


def _expand_env_variables(obj: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:default} in configuration values."""
    if isinstance(obj, str):

        def replace_env_var(match):
            var_with_default = match.group(1)
            if ":" in var_with_default:
                var_name, default_value = var_with_default.split(":", 1)
                return os.getenv(var_name, default_value)
            return os.getenv(var_with_default, match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace_env_var, obj)
    elif isinstance(obj, dict):
        return {key: _expand_env_variables(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_variables(item) for item in obj]
    else:
        return obj


def load_config_from_yaml(file_path: Path) -> Dict[str, Any]:
    """
    Load configuration from YAML file with environment variable expansion.

    Raises:
        FileNotFoundError: If configuration file doesn't exist
        yaml.YAMLError: If YAML file is malformed
    """
    if not file_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {file_path}")

    with open(file_path, "r", encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}
        return _expand_env_variables(config)


def get_config_file_path(environment: str) -> Path:
    """Path of the per-environment YAML file next to this module."""
    return Path(__file__).parent / f"{environment}.yaml"


def load_settings(
    environment: Optional[str] = None, config_file: Optional[Path] = None, **overrides: Any
) -> SyncSettings:
    """
    Load settings from environment variables and configuration files.

    Args:
        environment: Environment name. If None, read from DOCSYNC_ENVIRONMENT
        config_file: Path to configuration file. If None, use default path
        **overrides: Additional configuration overrides

    Returns:
        Configured SyncSettings instance

    Raises:
        ConfigurationException: If the merged configuration is invalid
    """
    if environment is None:
        environment = os.getenv("DOCSYNC_ENVIRONMENT", "dev")

    config_data: Dict[str, Any] = {}

    if config_file:
        config_data = load_config_from_yaml(config_file)
    else:
        default_config_file = get_config_file_path(environment)
        if default_config_file.exists():
            config_data = load_config_from_yaml(default_config_file)

    config_data["environment"] = environment
    config_data.update(overrides)

    try:
        return SyncSettings(**config_data)
    except ValidationError as e:
        raise ConfigurationException(f"Invalid configuration for {environment}: {e}") from e


_settings: Optional[SyncSettings] = None


def get_cached_settings() -> SyncSettings:
    """Settings are read once per process; Lambda containers reuse them across invocations."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings_cache() -> None:
    """Reset the cached settings instance (useful for testing)"""
    global _settings
    _settings = None
