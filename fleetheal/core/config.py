"""
Configuration Management for fleetheal
======================================

Split into small components:
- Dataclass sections: one per stage of the control loop
- ConfigLoader: reads YAML/JSON files and FLEETHEAL_* environment variables
- ConfigConverter: turns the merged dictionary into a FleetHealConfig
- ConfigValidator: rejects invalid parameter combinations

Usage:
    config = load_config("fleetheal.yaml")
    config.scan.concurrency_limit
    config.healing.policy_object()
"""

import json
import os
from collections.abc import Callable
from copy import deepcopy
from dataclasses import asdict, dataclass, field, fields
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from fleetheal.healing.policy import POLICIES, HealingPolicy, create_healing_policy

from .exceptions import ConfigLoadError, PolicyConfigError
from .logging import get_logger

# =============================================================================
# Configuration Dataclasses
# =============================================================================


GLOBAL_TIMEOUT_FACTOR = 15


@dataclass
class ScanConfig:
    """Fleet scanner limits"""

    concurrency_limit: int = 8
    per_node_timeout: float = 60.0
    # None: GLOBAL_TIMEOUT_FACTOR x per_node_timeout
    global_timeout: float | None = None

    @property
    def effective_global_timeout(self) -> float:
        if self.global_timeout is not None:
            return self.global_timeout
        return self.per_node_timeout * GLOBAL_TIMEOUT_FACTOR


@dataclass
class RetryConfig:
    """Retry budget for health probes"""

    max_attempts: int = 3
    initial_delay: float = 2.0
    max_delay: float = 30.0
    jitter: bool = False


@dataclass
class RepairConfig:
    """Retry budget and rollback settings for repair calls"""

    max_attempts: int = 2
    initial_delay: float = 5.0
    max_delay: float = 30.0
    timeout: float = 300.0
    rollback_enabled: bool = True
    rollback_timeout: float = 120.0


@dataclass
class HealingSettings:
    """Auto-heal gate and policy selection"""

    auto_heal: bool = False
    dry_run: bool = False
    policy: str = "conservative"
    max_actions: int | None = None
    convergence_wait: float = 30.0
    policy_overrides: dict[str, Any] = field(default_factory=dict)

    def policy_object(self) -> HealingPolicy:
        return create_healing_policy(self.policy, **self.policy_overrides)


@dataclass
class DeltaConfig:
    enabled: bool = True
    max_age_minutes: float = 60.0

    @property
    def max_age(self) -> timedelta:
        return timedelta(minutes=self.max_age_minutes)


@dataclass
class ClassifierConfig:
    stale_threshold_hours: float = 24.0

    @property
    def stale_threshold(self) -> timedelta:
        return timedelta(hours=self.stale_threshold_hours)


@dataclass
class StorageConfig:
    state_dir: str = ".fleetheal/state"
    history_limit: int = 1000
    report_path: str | None = None


@dataclass
class SystemConfig:
    """Process-level settings"""

    name: str = "fleetheal"
    log_level: str = "INFO"
    log_format: str = "console"


@dataclass
class FleetHealConfig:
    """Complete fleetheal configuration"""

    system: SystemConfig = field(default_factory=SystemConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    repair: RepairConfig = field(default_factory=RepairConfig)
    healing: HealingSettings = field(default_factory=HealingSettings)
    delta: DeltaConfig = field(default_factory=DeltaConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    inventory: dict[str, list[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


# =============================================================================
# ConfigLoader - Loads configuration from various sources
# =============================================================================


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_optional_int(value: str) -> int | None:
    return None if value.strip().lower() in ("", "none") else int(value)


class ConfigLoader:
    """
    Loads configuration from files (YAML/JSON) and environment variables.

    Responsibilities:
    - File I/O operations
    - Environment variable parsing
    - Deep merging of configuration sources
    """

    ENV_MAPPINGS: dict[str, tuple[tuple[str, str], Callable[[str], Any]]] = {
        "LOG_LEVEL": (("system", "log_level"), str),
        "LOG_FORMAT": (("system", "log_format"), str),
        "CONCURRENCY_LIMIT": (("scan", "concurrency_limit"), int),
        "PER_NODE_TIMEOUT": (("scan", "per_node_timeout"), float),
        "GLOBAL_TIMEOUT": (("scan", "global_timeout"), float),
        "RETRY_MAX_ATTEMPTS": (("retry", "max_attempts"), int),
        "RETRY_INITIAL_DELAY": (("retry", "initial_delay"), float),
        "RETRY_MAX_DELAY": (("retry", "max_delay"), float),
        "RETRY_JITTER": (("retry", "jitter"), _parse_bool),
        "AUTO_HEAL": (("healing", "auto_heal"), _parse_bool),
        "DRY_RUN": (("healing", "dry_run"), _parse_bool),
        "POLICY": (("healing", "policy"), str),
        "MAX_ACTIONS": (("healing", "max_actions"), _parse_optional_int),
        "ROLLBACK_ENABLED": (("repair", "rollback_enabled"), _parse_bool),
        "DELTA_MAX_AGE_MINUTES": (("delta", "max_age_minutes"), float),
        "STALE_THRESHOLD_HOURS": (("classifier", "stale_threshold_hours"), float),
        "STATE_DIR": (("storage", "state_dir"), str),
    }

    def __init__(self, env_prefix: str = "FLEETHEAL_"):
        self.env_prefix = env_prefix
        self._logger = get_logger("fleetheal.config.loader")

    def load_from_file(self, path: str) -> dict[str, Any]:
        """Load configuration from a YAML or JSON file"""
        file_path = Path(path)

        if not file_path.exists():
            raise ConfigLoadError(config_path=path, reason="File does not exist")

        suffix = file_path.suffix.lower()
        if suffix not in (".yaml", ".yml", ".json"):
            raise ConfigLoadError(config_path=path, reason=f"Unsupported file format: {file_path.suffix}")

        try:
            content = file_path.read_text(encoding="utf-8")
            data = yaml.safe_load(content) if suffix in (".yaml", ".yml") else json.loads(content)
        except yaml.YAMLError as e:
            raise ConfigLoadError(config_path=path, reason=f"YAML error: {e}", cause=e) from e
        except json.JSONDecodeError as e:
            raise ConfigLoadError(config_path=path, reason=f"JSON error: {e}", cause=e) from e
        except OSError as e:
            raise ConfigLoadError(config_path=path, reason=str(e), cause=e) from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigLoadError(config_path=path, reason="Top level must be a mapping")
        return data

    def load_from_env(self, environ: dict[str, str] | None = None) -> dict[str, Any]:
        """Load configuration from environment variables"""
        environ = dict(os.environ) if environ is None else environ
        config: dict[str, Any] = {}

        for suffix, (config_path, cast) in self.ENV_MAPPINGS.items():
            env_var = f"{self.env_prefix}{suffix}"
            value = environ.get(env_var)
            if value is None:
                continue
            try:
                self._set_nested(config, config_path, cast(value))
            except ValueError as e:
                raise PolicyConfigError(
                    f"invalid value for {env_var}: {value!r}", details={"variable": env_var}, cause=e
                ) from e

        return config

    def _set_nested(self, config: dict[str, Any], path: tuple[str, ...], value: Any) -> None:
        """Set a value in a nested dictionary path"""
        current = config
        for key in path[:-1]:
            current = current.setdefault(key, {})
        current[path[-1]] = value

    def deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge two dictionaries"""
        result = deepcopy(base)

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self.deep_merge(result[key], value)
            else:
                result[key] = deepcopy(value)

        return result


# =============================================================================
# ConfigConverter - dict -> FleetHealConfig
# =============================================================================


class ConfigConverter:
    """Converts configuration dictionaries to FleetHealConfig objects"""

    SECTIONS: dict[str, type] = {
        "system": SystemConfig,
        "scan": ScanConfig,
        "retry": RetryConfig,
        "repair": RepairConfig,
        "healing": HealingSettings,
        "delta": DeltaConfig,
        "classifier": ClassifierConfig,
        "storage": StorageConfig,
    }

    @classmethod
    def dict_to_config(cls, config_dict: dict[str, Any]) -> FleetHealConfig:
        unknown = set(config_dict) - set(cls.SECTIONS) - {"inventory"}
        if unknown:
            raise PolicyConfigError(f"unknown configuration sections: {', '.join(sorted(unknown))}")

        sections: dict[str, Any] = {}
        for name, section_type in cls.SECTIONS.items():
            values = config_dict.get(name) or {}
            if not isinstance(values, dict):
                raise PolicyConfigError(f"configuration section '{name}' must be a mapping")
            allowed = {f.name for f in fields(section_type)}
            extra = set(values) - allowed
            if extra:
                raise PolicyConfigError(
                    f"unknown keys in '{name}': {', '.join(sorted(extra))}",
                    suggestions=[f"Allowed keys: {', '.join(sorted(allowed))}"],
                )
            sections[name] = section_type(**values)

        inventory = config_dict.get("inventory") or {}
        if not isinstance(inventory, dict):
            raise PolicyConfigError("inventory must map site names to node lists")

        return FleetHealConfig(
            inventory={str(site): [str(n) for n in nodes or []] for site, nodes in inventory.items()},
            **sections,
        )


# =============================================================================
# ConfigValidator - Validates configuration values
# =============================================================================


class ConfigValidator:
    """
    Validates configuration values.

    Warnings are normalised in place; errors are returned and turned into a
    PolicyConfigError by ``validate_or_raise``.
    """

    VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    VALID_LOG_FORMATS = {"console", "json"}

    def __init__(self):
        self._logger = get_logger("fleetheal.config.validator")

    def validate(self, config: FleetHealConfig) -> tuple[list[str], list[str]]:
        """
        Validate configuration and return warnings and errors.

        Returns:
            Tuple of (warnings, errors)
        """
        warnings: list[str] = []
        errors: list[str] = []

        if config.system.log_level.upper() not in self.VALID_LOG_LEVELS:
            warnings.append(f"Invalid log_level: {config.system.log_level}, defaulting to INFO")
            config.system.log_level = "INFO"
        if config.system.log_format not in self.VALID_LOG_FORMATS:
            warnings.append(f"Invalid log_format: {config.system.log_format}, defaulting to console")
            config.system.log_format = "console"

        self._validate_scan(config, errors)
        self._validate_retry(config, errors)
        self._validate_healing(config, errors)

        if config.delta.max_age_minutes <= 0:
            errors.append("delta.max_age_minutes must be positive")
        if config.classifier.stale_threshold_hours <= 0:
            errors.append("classifier.stale_threshold_hours must be positive")
        if config.storage.history_limit < 1:
            errors.append("storage.history_limit must be at least 1")

        return warnings, errors

    def _validate_scan(self, config: FleetHealConfig, errors: list[str]) -> None:
        scan = config.scan
        if scan.concurrency_limit < 1:
            errors.append("scan.concurrency_limit must be at least 1")
        if scan.per_node_timeout <= 0:
            errors.append("scan.per_node_timeout must be positive")
        if scan.global_timeout is not None:
            if scan.global_timeout <= 0:
                errors.append("scan.global_timeout must be positive")
            elif scan.global_timeout < scan.per_node_timeout:
                errors.append("scan.global_timeout must be >= scan.per_node_timeout")

    def _validate_retry(self, config: FleetHealConfig, errors: list[str]) -> None:
        for name, section in (("retry", config.retry), ("repair", config.repair)):
            if section.max_attempts < 1:
                errors.append(f"{name}.max_attempts must be at least 1")
            if section.initial_delay < 0:
                errors.append(f"{name}.initial_delay must be non-negative")
            if section.max_delay < section.initial_delay:
                errors.append(f"{name}.max_delay must be >= {name}.initial_delay")
        if config.repair.timeout <= 0:
            errors.append("repair.timeout must be positive")

    def _validate_healing(self, config: FleetHealConfig, errors: list[str]) -> None:
        healing = config.healing
        if healing.policy.lower() not in POLICIES:
            errors.append(f"Unknown healing policy: {healing.policy}. Must be one of: {', '.join(POLICIES)}")
        if healing.max_actions is not None and healing.max_actions < 0:
            errors.append("healing.max_actions must be non-negative")
        if healing.convergence_wait < 0:
            errors.append("healing.convergence_wait must be non-negative")

    def validate_or_raise(self, config: FleetHealConfig) -> FleetHealConfig:
        warnings, errors = self.validate(config)
        for warning in warnings:
            self._logger.warning(warning)
        if errors:
            raise PolicyConfigError(
                "Invalid configuration",
                details={"errors": errors},
                suggestions=["Fix the listed values in the config file or FLEETHEAL_* variables"],
            )
        if config.healing.policy.lower() in POLICIES:
            # Surfaces bad policy_overrides before the run starts.
            config.healing.policy_object()
        return config


def get_default_config() -> FleetHealConfig:
    """Get default configuration"""
    return FleetHealConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "FLEETHEAL_",
    environ: dict[str, str] | None = None,
) -> FleetHealConfig:
    """
    Load configuration from available sources.

    File values are overridden by environment variables.

    Raises:
        ConfigLoadError: the file is missing or malformed
        PolicyConfigError: values are invalid
    """
    loader = ConfigLoader(env_prefix=env_prefix)
    merged: dict[str, Any] = {}
    if config_path:
        merged = loader.load_from_file(config_path)
    merged = loader.deep_merge(merged, loader.load_from_env(environ))

    config = ConfigConverter.dict_to_config(merged)
    return ConfigValidator().validate_or_raise(config)
