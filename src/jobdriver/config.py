"""Per-environment configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from jobdriver.logger import LogLevel, parse_log_level
from jobdriver.models import ApplicationError, ConfigError

__all__ = [
    "CONFIG_FILE_NAME",
    "Configuration",
    "ConfigurationError",
    "RemoteStoreConfig",
    "variable_string",
]

CONFIG_FILE_NAME = "jobdriver.yaml"


@dataclass(frozen=True)
class RemoteStoreConfig:
    """A named remote log destination."""

    name: str
    type: str  # "directory" or "sftp"
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class Configuration:
    """Parsed and validated configuration of one environment."""

    log_level: LogLevel = LogLevel.WARNING
    variables: dict[str, str] = field(default_factory=dict)
    remote_stores: dict[str, RemoteStoreConfig] = field(default_factory=dict)
    path: Path | None = None

    @classmethod
    def path_for(cls, home: Path, environment: str) -> Path:
        """Get the config file path of an environment under an application home."""
        return home / "config" / environment / CONFIG_FILE_NAME

    @classmethod
    def load(cls, home: Path, environment: str) -> Configuration:
        """Load the environment's config file; a missing file means defaults."""
        path = cls.path_for(home, environment)
        if not path.exists():
            return cls()
        return cls.from_yaml(path)

    @classmethod
    def from_yaml(cls, path: Path) -> Configuration:
        """Load and validate configuration from a YAML file.

        Args:
            path: Path to jobdriver.yaml

        Returns:
            Validated Configuration instance

        Raises:
            ConfigurationError: If YAML is invalid or schema validation fails
        """
        errors: list[ConfigError] = []

        try:
            with path.open() as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise ConfigurationError(
                [ConfigError(path=str(path), message=f"Configuration file not found: {path}")]
            ) from None
        except yaml.YAMLError as e:
            error_msg = str(e)
            mark = getattr(e, "problem_mark", None)
            problem = getattr(e, "problem", None)
            if mark is not None and problem is not None:
                error_msg = f"YAML syntax error at line {mark.line + 1}, column {mark.column + 1}: {problem}"
            raise ConfigurationError([ConfigError(path=str(path), message=error_msg)]) from e

        if data is None:
            data = {}

        validator = jsonschema.Draft7Validator(_load_schema())
        for error in validator.iter_errors(data):
            path_parts = list(error.absolute_path)
            path_str = ".".join(str(p) for p in path_parts) if path_parts else "root"
            errors.append(ConfigError(path=path_str, message=error.message))

        if errors:
            raise ConfigurationError(errors)

        log_level = LogLevel.WARNING
        try:
            log_level = parse_log_level(data.get("log_level", "WARNING"))
        except ValueError as e:
            errors.append(ConfigError(path="log_level", message=str(e)))

        if errors:
            raise ConfigurationError(errors)

        variables = {name: variable_string(value) for name, value in data.get("variables", {}).items()}
        remote_stores = {
            name: RemoteStoreConfig(
                name=name,
                type=store["type"],
                options={k: v for k, v in store.items() if k != "type"},
            )
            for name, store in data.get("remote_stores", {}).items()
        }

        return cls(
            log_level=log_level,
            variables=variables,
            remote_stores=remote_stores,
            path=path,
        )

    def get_remote_store(self, name: str) -> RemoteStoreConfig:
        """Look up a remote store by name."""
        try:
            return self.remote_stores[name]
        except KeyError:
            where = f" in {self.path}" if self.path else ""
            raise ApplicationError(f"no such remote store: {name}{where}") from None


class ConfigurationError(ApplicationError):
    """Raised when configuration loading or validation fails."""

    def __init__(self, errors: list[ConfigError]) -> None:
        self.errors = errors
        messages = [f"{e.path}: {e.message}" for e in errors]
        super().__init__("Configuration validation failed: " + "; ".join(messages))


def _load_schema() -> dict[str, Any]:
    """Load the config schema from package resources."""
    schema_path = Path(__file__).parent / "schemas" / "config-schema.yaml"
    with schema_path.open() as f:
        return yaml.safe_load(f)


def variable_string(value: Any) -> str:
    """Render a YAML scalar the way shell scripts expect it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)
