"""
proofgate Configuration System

Configuration management with YAML files, environment variables, validation,
and runtime updates.

Configuration Sources (in order of precedence):
    1. Runtime overrides (admin calls, ConfigManager.set)
    2. Environment variables (PROOFGATE_*), where a value binds one
    3. Config files (./proofgate.yaml, ./config/proofgate.yaml,
       ~/.proofgate/config.yaml), later files winning
    4. Default values

Environment values pass the same validator as every other source; a bad one
raises ConfigValidationError on read rather than being used.

``gate.zk_enforced`` has no environment binding: turning enforcement off is an
admin action, not a property of the process environment.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar, Union

import yaml

from proofgate.observability import GateLayer, get_logger

T = TypeVar("T")

logger = get_logger("config", GateLayer.CONFIG)

MAX_ATTESTATION_TTL = 86_400


class ConfigError(Exception):
    """Configuration error."""
    pass


class ConfigValidationError(ConfigError):
    """Configuration validation error."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """
    A single configuration value with metadata.

    Holds a runtime override (``set``), a file-loaded value (``load``) and a
    default. An environment binding sits between the override and the file
    value; see the module docstring for the full order.
    """
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)
    _loaded: Optional[T] = field(default=None, repr=False)
    _callbacks: List[Callable[[T, T], None]] = field(default_factory=list, repr=False)

    def get(self) -> T:
        """
        Get the effective value.

        Raises:
            ConfigValidationError: the bound environment variable holds a
                value that does not coerce or validate.
        """
        if self._value is not None:
            return self._value
        if self.env_var and self.env_var in os.environ:
            value = self._coerce(os.environ[self.env_var])
            self._check(value, source=self.env_var)
            return value
        return self._loaded if self._loaded is not None else self.default

    def set(self, value: T) -> None:
        """Set a runtime override with validation."""
        self._check(value)
        self._replace("_value", value)

    def load(self, value: T) -> None:
        """Set the file-level value with validation."""
        self._check(value)
        self._replace("_loaded", value)

    def _check(self, value: Any, source: str = "") -> None:
        if self.validator and not self.validator(value):
            where = f" from {source}" if source else ""
            raise ConfigValidationError(f"Invalid value for config{where}: {value!r}")

    def _replace(self, slot: str, value: T) -> None:
        try:
            old_value = self.get()
        except ConfigValidationError:
            old_value = None
        setattr(self, slot, value)
        new_value = self.get()
        if new_value != old_value:
            for callback in self._callbacks:
                callback(old_value, new_value)

    def _coerce(self, value: str) -> Any:
        """Coerce an environment string to the default's type."""
        target_type = type(self.default)

        if target_type == bool:
            return value.strip().lower() in ("true", "1", "yes", "on")
        elif target_type == int:
            try:
                return int(value)
            except ValueError as e:
                raise ConfigValidationError(f"{self.env_var}: expected an integer, got {value!r}") from e
        else:
            return value

    def on_change(self, callback: Callable[[T, T], None]) -> None:
        """Register a change callback."""
        self._callbacks.append(callback)


def _is_bool(x: Any) -> bool:
    return isinstance(x, bool)


def _is_positive_int(x: Any) -> bool:
    return isinstance(x, int) and not isinstance(x, bool) and x > 0


@dataclass
class GateConfig:
    """Access gate settings, read on every proof submission and privileged read."""
    zk_enforced: ConfigValue[bool] = field(default_factory=lambda: ConfigValue(
        default=False,
        description="Require a live access grant in addition to the ACL on privileged reads",
        validator=_is_bool,
    ))
    grant_ttl_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=3600,
        env_var="PROOFGATE_GRANT_TTL",
        description="Lifetime of an access grant in seconds",
        validator=_is_positive_int,
    ))


@dataclass
class AttestationConfig:
    """Attestation store settings."""
    default_ttl_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=600,
        env_var="PROOFGATE_ATTESTATION_TTL",
        description="TTL applied when an attestor submits ttl=0",
        validator=lambda x: _is_positive_int(x) and x <= MAX_ATTESTATION_TTL,
    ))
    max_ttl_seconds: ConfigValue[int] = field(default_factory=lambda: ConfigValue(
        default=MAX_ATTESTATION_TTL,
        env_var="PROOFGATE_ATTESTATION_MAX_TTL",
        description="Upper bound on any attestation TTL",
        validator=lambda x: _is_positive_int(x) and x <= MAX_ATTESTATION_TTL,
    ))


@dataclass
class ObservabilityConfig:
    """Logging settings."""
    log_level: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="info",
        env_var="PROOFGATE_LOG_LEVEL",
        description="Log level (debug, info, warning, error)",
        validator=lambda x: x in ("debug", "info", "warning", "error", "critical"),
    ))
    log_format: ConfigValue[str] = field(default_factory=lambda: ConfigValue(
        default="json",
        env_var="PROOFGATE_LOG_FORMAT",
        description="Log format (json, text)",
        validator=lambda x: x in ("json", "text"),
    ))


@dataclass
class ProofgateConfig:
    """Root configuration aggregating all component configurations."""
    gate: GateConfig = field(default_factory=GateConfig)
    attestation: AttestationConfig = field(default_factory=AttestationConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def to_dict(self) -> Dict[str, Any]:
        def extract_values(obj: Any) -> Any:
            if isinstance(obj, ConfigValue):
                return obj.get()
            elif hasattr(obj, "__dataclass_fields__"):
                return {k: extract_values(getattr(obj, k)) for k in obj.__dataclass_fields__}
            return obj

        return extract_values(self)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=True)


class ConfigManager:
    """
    Configuration manager with file loading and environment binding.

    Instances are independent; ``get_config_manager()`` returns the
    process-wide one used by the CLI.
    """

    DEFAULT_PATHS = (
        Path("proofgate.yaml"),
        Path("config/proofgate.yaml"),
    )

    def __init__(self, config: Optional[ProofgateConfig] = None):
        self._config = config or ProofgateConfig()
        self._config_paths: List[Path] = []

    @property
    def config(self) -> ProofgateConfig:
        return self._config

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {path}: {e}") from e

        if data is None:
            return
        if not isinstance(data, dict):
            raise ConfigError(f"Configuration root must be a mapping: {path}")

        self._apply_dict(data)
        self._config_paths.append(path)
        logger.info("Loaded configuration", operation="load_config", path=str(path))

    def load_defaults(self) -> List[Path]:
        """Load default configuration files that exist. Returns the paths loaded."""
        paths = list(self.DEFAULT_PATHS) + [Path.home() / ".proofgate" / "config.yaml"]
        loaded = []
        for path in paths:
            if path.exists():
                self.load_from_file(path)
                loaded.append(path)
        return loaded

    def _apply_dict(self, data: Dict[str, Any]) -> None:
        def apply_to_config(config_obj: Any, values: Dict[str, Any], prefix: str) -> None:
            for key, value in values.items():
                path = f"{prefix}{key}"
                if not hasattr(config_obj, key):
                    raise ConfigError(f"Unknown config key: {path}")
                attr = getattr(config_obj, key)
                if isinstance(attr, ConfigValue):
                    attr.load(value)
                elif hasattr(attr, "__dataclass_fields__") and isinstance(value, dict):
                    apply_to_config(attr, value, f"{path}.")
                else:
                    raise ConfigError(f"Invalid config section: {path}")

        apply_to_config(self._config, data, "")

    def set(self, path: str, value: Any) -> None:
        """
        Set a configuration value by path.

        Example: manager.set("gate.grant_ttl_seconds", 900)
        """
        attr = self._resolve(path)
        if not isinstance(attr, ConfigValue):
            raise ConfigError(f"Invalid config path: {path}")
        attr.set(value)

    def get(self, path: str) -> Any:
        """
        Get a configuration value by path.

        Example: manager.get("gate.zk_enforced")
        """
        obj = self._resolve(path)
        if isinstance(obj, ConfigValue):
            return obj.get()
        return obj

    def _resolve(self, path: str) -> Any:
        obj: Any = self._config
        for part in path.split("."):
            if not hasattr(obj, part):
                raise ConfigError(f"Invalid config path: {path}")
            obj = getattr(obj, part)
        return obj

    def validate(self) -> List[str]:
        """Validate all configuration values. Returns list of errors."""
        errors: List[str] = []

        def validate_config(obj: Any, path: str = "") -> None:
            if isinstance(obj, ConfigValue):
                try:
                    obj.get()
                except ConfigValidationError as e:
                    errors.append(f"{path}: {e}")
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    field_path = f"{path}.{field_name}" if path else field_name
                    validate_config(getattr(obj, field_name), field_path)

        validate_config(self._config)
        if errors:
            return errors

        att = self._config.attestation
        if att.default_ttl_seconds.get() > att.max_ttl_seconds.get():
            errors.append("attestation.default_ttl_seconds: exceeds attestation.max_ttl_seconds")
        return errors

    def export_schema(self) -> Dict[str, Any]:
        """Export configuration schema for documentation."""
        schema: Dict[str, Any] = {"properties": {}}

        def extract_schema(obj: Any, properties: Dict[str, Any]) -> None:
            if isinstance(obj, ConfigValue):
                properties["type"] = type(obj.default).__name__
                properties["default"] = str(obj.default)
                properties["description"] = obj.description
                if obj.env_var:
                    properties["env_var"] = obj.env_var
            elif hasattr(obj, "__dataclass_fields__"):
                for field_name in obj.__dataclass_fields__:
                    properties[field_name] = {}
                    extract_schema(getattr(obj, field_name), properties[field_name])

        extract_schema(self._config, schema["properties"])
        return schema


_manager: Optional[ConfigManager] = None
_manager_lock = threading.Lock()


def get_config_manager() -> ConfigManager:
    """Get the process-wide configuration manager."""
    global _manager
    with _manager_lock:
        if _manager is None:
            _manager = ConfigManager()
        return _manager


def get_config() -> ProofgateConfig:
    return get_config_manager().config
