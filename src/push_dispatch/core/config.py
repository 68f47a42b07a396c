"""Configuration system for push-dispatch.

This module implements the main configuration schema using Pydantic for
validation, with support for ``${ENV_VAR}`` resolution and fail-fast
validation with actionable error messages. Gateway plugins validate their own
configuration file with ``load_provider_config``.
"""

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Annotated, Final

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from push_dispatch.core.batching import GATEWAY_BATCH_LIMIT
from push_dispatch.exceptions import PushDispatchError

# Matches ${VARIABLE_NAME} where VARIABLE_NAME contains uppercase letters, digits, and underscores
ENV_VAR_PATTERN: Final[re.Pattern[str]] = re.compile(r"\$\{([A-Z0-9_]+)\}")


class ApplicationConfig(BaseModel):
    """Application-level settings: logging level, dry-run mode, syslog integration."""

    log_level: Annotated[
        str,
        Field(
            description="Logging level",
            pattern=r"^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        ),
    ] = "INFO"
    dry_run: Annotated[
        bool,
        Field(
            description="Dry-run mode: resolve and build notifications without calling the gateway",
        ),
    ] = False
    syslog_enabled: Annotated[
        bool,
        Field(
            description="Enable syslog integration",
        ),
    ] = False


class RetryConfig(BaseModel):
    """Retry and circuit breaker policy for whole-call gateway failures."""

    max_attempts: Annotated[
        int,
        Field(
            ge=1,
            le=10,
            description="Attempts per gateway call; 1 disables retries",
        ),
    ] = 1
    backoff_factor: Annotated[
        float,
        Field(
            ge=1.0,
            description="Multiplier for exponential backoff between attempts",
        ),
    ] = 2.0
    jitter: Annotated[
        bool,
        Field(
            description="Randomize backoff delays between 50% and 150%",
        ),
    ] = True
    circuit_breaker_enabled: Annotated[
        bool,
        Field(
            description="Fail fast after repeated transport failures",
        ),
    ] = False
    failure_threshold: Annotated[
        int,
        Field(
            ge=1,
            description="Consecutive transport failures before the circuit opens",
        ),
    ] = 5
    recovery_timeout_seconds: Annotated[
        float,
        Field(
            gt=0,
            description="Seconds the circuit stays open before a trial call",
        ),
    ] = 60.0


class DispatchConfig(BaseModel):
    """Dispatch engine tuning: chunking, concurrency, throttling, and deadlines."""

    batch_size: Annotated[
        int,
        Field(
            ge=1,
            le=GATEWAY_BATCH_LIMIT,
            description="Tokens per gateway call",
        ),
    ] = GATEWAY_BATCH_LIMIT
    max_concurrency: Annotated[
        int,
        Field(
            ge=1,
            description="Chunks in flight at once",
        ),
    ] = 4
    rate_limit_per_second: Annotated[
        float | None,
        Field(
            gt=0,
            description="Sustained gateway calls per second (unset disables throttling)",
        ),
    ] = None
    rate_limit_burst: Annotated[
        int,
        Field(
            ge=1,
            description="Gateway calls allowed in a burst before throttling applies",
        ),
    ] = 1
    chunk_timeout_seconds: Annotated[
        float | None,
        Field(
            gt=0,
            description="Per-call gateway timeout; expiry counts as a transport failure",
        ),
    ] = None
    dispatch_timeout_seconds: Annotated[
        float | None,
        Field(
            gt=0,
            description="Deadline after which no new chunks are started",
        ),
    ] = None
    retry: Annotated[
        RetryConfig,
        Field(
            description="Retry policy for whole-call gateway failures",
        ),
    ] = RetryConfig()


class RegistryConfig(BaseModel):
    """Token registry storage settings."""

    database_path: Annotated[
        str,
        Field(
            min_length=1,
            description="SQLite database file, or :memory: for a throwaway registry",
        ),
    ] = "push-dispatch.db"
    page_size: Annotated[
        int,
        Field(
            ge=1,
            description="Rows fetched per page when enumerating all active tokens",
        ),
    ] = 1000


class GatewayConfig(BaseModel):
    """Delivery gateway selection."""

    provider: Annotated[
        str,
        Field(
            description="Identifier of the gateway plugin to load",
        ),
    ]
    config_file: Annotated[
        Path,
        Field(
            description="Path to the gateway plugin's own configuration file",
        ),
    ]

    @field_validator("provider", mode="after")
    @classmethod
    def validate_provider_identifier(cls, v: str) -> str:
        """Validate the gateway identifier against discovered plugins.

        Args:
            v: Gateway plugin identifier

        Returns:
            Validated identifier

        Raises:
            ValueError: If no plugin with that identifier exists
        """
        # Import here to avoid circular dependency at module level
        from push_dispatch.plugins.discovery import get_registered_plugins

        available = {plugin.identifier for plugin in get_registered_plugins()}
        if v not in available:
            msg = f"Unknown gateway provider: {v}. Available providers: {', '.join(sorted(available))}"
            raise ValueError(msg)
        return v


class MainConfig(BaseModel):
    """Main application configuration schema.

    Top-level container aggregating:
    - application: Logging and dry-run settings
    - dispatch: Chunking, concurrency, throttling, retry
    - registry: Token storage
    - gateway: Gateway plugin selection
    """

    gateway: Annotated[
        GatewayConfig,
        Field(
            description="Delivery gateway configuration",
        ),
    ]
    application: Annotated[
        ApplicationConfig,
        Field(
            description="Application-level configuration",
        ),
    ] = ApplicationConfig()
    dispatch: Annotated[
        DispatchConfig,
        Field(
            description="Dispatch engine configuration",
        ),
    ] = DispatchConfig()
    registry: Annotated[
        RegistryConfig,
        Field(
            description="Token registry configuration",
        ),
    ] = RegistryConfig()


class EnvironmentVariableError(Exception):
    """Raised when an ``${ENV_VAR}`` reference cannot be resolved.

    Messages name the variable but never include resolved values.
    """


class ConfigurationError(PushDispatchError):
    """Raised when configuration loading or validation fails.

    Carries actionable messages for missing files, YAML syntax errors,
    unresolvable environment variables, and field-level validation failures.
    """


def resolve_env_var(value: str) -> str:
    """Resolve environment variable references in a string value.

    Args:
        value: String potentially containing ``${VARIABLE_NAME}`` references

    Returns:
        String with environment variables resolved

    Raises:
        EnvironmentVariableError: If a referenced environment variable is not set

    Examples:
        >>> os.environ["PUSH_PROJECT"] = "demo-project"
        >>> resolve_env_var("${PUSH_PROJECT}")
        'demo-project'
        >>> resolve_env_var("projects/${PUSH_PROJECT}/messages")
        'projects/demo-project/messages'
    """

    def replace_match(match: re.Match[str]) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            msg = (
                f"Required environment variable '{var_name}' is not set. "
                f"Please set this variable before starting the application."
            )
            raise EnvironmentVariableError(msg)
        return env_value

    return ENV_VAR_PATTERN.sub(replace_match, value)


def _resolve_env_vars_in_item(value: object) -> object:
    if isinstance(value, str):
        return resolve_env_var(value)
    if isinstance(value, dict):
        # YAML data is untyped at load time; validated by Pydantic after resolution
        return resolve_env_vars_in_dict(value)  # pyright: ignore[reportUnknownArgumentType]  # YAML boundary
    if isinstance(value, list):
        items: list[object] = value  # pyright: ignore[reportUnknownVariableType]  # YAML boundary
        return [_resolve_env_vars_in_item(item) for item in items]
    return value


def resolve_env_vars_in_dict(data: Mapping[str, object]) -> dict[str, object]:
    """Recursively resolve environment variables in a dictionary.

    Traverses nested dictionaries and lists, resolving references in string
    values. Non-string values are preserved as-is.

    Raises:
        EnvironmentVariableError: If a referenced environment variable is not set

    Examples:
        >>> os.environ["PUSH_CREDENTIALS"] = "/etc/push/service-account.json"
        >>> resolve_env_vars_in_dict({"nested": {"credentials_file": "${PUSH_CREDENTIALS}"}})
        {'nested': {'credentials_file': '/etc/push/service-account.json'}}
    """
    return {key: _resolve_env_vars_in_item(value) for key, value in data.items()}


def _load_yaml_mapping(config_path: Path, label: str) -> dict[str, object]:
    """Read a YAML file, require a mapping at its root, and resolve ``${ENV}`` references."""
    if not config_path.exists():
        msg = (
            f"{label} file not found: {config_path}\n"
            f"Please create a configuration file at this location."
        )
        raise ConfigurationError(msg)

    try:
        with config_path.open("r", encoding="utf-8") as f:
            raw_data: object = yaml.safe_load(f)  # pyright: ignore[reportAny]  # YAML boundary
    except yaml.YAMLError as e:
        msg = (
            f"Failed to parse YAML in {label}: {config_path}\n"
            f"YAML parsing error: {e}\n"
            f"Please check the file for syntax errors."
        )
        raise ConfigurationError(msg) from e
    except OSError as e:
        msg = f"Failed to read {label}: {config_path}\nError: {e}\nPlease check file permissions."
        raise ConfigurationError(msg) from e

    if not isinstance(raw_data, dict):
        msg = (
            f"Invalid {label} format: {config_path}\n"
            f"Expected YAML dictionary at root level, got: {type(raw_data).__name__}\n"
            f"Configuration file must contain key-value pairs."
        )
        raise ConfigurationError(msg)

    try:
        mapping: dict[str, object] = raw_data  # pyright: ignore[reportUnknownVariableType]  # YAML boundary
        return resolve_env_vars_in_dict(mapping)
    except EnvironmentVariableError as e:
        msg = (
            f"Environment variable resolution failed in {label}: {config_path}\n"
            f"{e}\n"
            f"Set the required environment variable before starting the application."
        )
        raise ConfigurationError(msg) from e


def _format_validation_error(error: ValidationError, config_path: Path, label: str) -> str:
    """Render Pydantic errors with field-level diagnostics."""
    error_lines = [f"{label} validation failed:", ""]
    for item in error.errors():
        field_path = " -> ".join(str(loc) for loc in item["loc"])
        error_lines.append(f"  Field: {field_path}")
        error_lines.append(f"  Error: {item['msg']}")
        error_lines.append(f"  Type: {item['type']}")
        error_lines.append("")
    error_lines.append(f"Configuration file: {config_path}")
    error_lines.append("Please fix the above errors and try again.")
    return "\n".join(error_lines)


def load_main_config(config_path: Path) -> MainConfig:
    """Load and validate the main configuration from a YAML file.

    Args:
        config_path: Path to main configuration YAML file

    Returns:
        Validated MainConfig instance

    Raises:
        ConfigurationError: If the file cannot be loaded, references an unset
            environment variable, or fails validation

    Examples:
        >>> config = load_main_config(Path("config/push-dispatch.yaml"))
        >>> config.dispatch.batch_size
        500
    """
    resolved_data = _load_yaml_mapping(config_path, "Configuration")
    try:
        return MainConfig.model_validate(resolved_data)
    except ValidationError as e:
        raise ConfigurationError(_format_validation_error(e, config_path, "Configuration")) from e


def load_provider_config[T: BaseModel](
    config_path: Path,
    model: type[T],
    *,
    provider_name: str,
) -> T:
    """Load and validate a gateway plugin's configuration from a YAML file.

    Args:
        config_path: Path to the plugin configuration YAML file
        model: Pydantic model class for validation
        provider_name: Human-readable gateway name for error messages

    Returns:
        Validated configuration instance

    Raises:
        ConfigurationError: If the file cannot be loaded or is invalid
    """
    label = f"{provider_name} configuration"
    resolved_data = _load_yaml_mapping(config_path, label)
    try:
        return model.model_validate(resolved_data)
    except ValidationError as e:
        raise ConfigurationError(_format_validation_error(e, config_path, label)) from e
