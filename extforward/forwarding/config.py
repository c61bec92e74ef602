"""
Configuration for forwarded address resolution.

Supports YAML configuration files with environment variable substitution,
or the EXTFORWARD_* application settings. The raw configuration is validated
once into ExtForwardConfig and compiled into an immutable ForwardingPolicy
that requests only read from.

Example:
    ```yaml
    extforward:
      forwarder:
        10.0.0.232: trust
        10.0.0.233: trust
      headers:
        - X-Forwarded-For
      conditions:
        - condition: {field: host, operator: "==", value: internal.example.com}
          forwarder: {all: trust}
    ```
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError
from starlette.types import Scope

from extforward.core.config import settings as default_settings

from .conditions import Condition, ConditionCache
from .trusted import TrustedSet

logger = logging.getLogger(__name__)

DEFAULT_HEADERS: Tuple[str, ...] = ("X-Forwarded-For", "Forwarded-For")

_EXPECTED_SHAPES = {
    "forwarder": 'expected mapping of "IPaddr" => "trust"',
    "headers": 'expected list of "headername"',
}


class ConfigurationError(Exception):
    """Raised when forwarding configuration is invalid."""

    pass


class ScopeOverride(BaseModel):
    """A conditional configuration block; unset keys inherit."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    condition: Condition
    forwarder: Optional[Dict[StrictStr, StrictStr]] = None
    # An explicitly empty list means "use the default header list"
    headers: Optional[List[StrictStr]] = None


class ExtForwardConfig(BaseModel):
    """Root configuration: global scope plus ordered conditional blocks."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    forwarder: Dict[StrictStr, StrictStr] = Field(default_factory=dict)
    headers: List[StrictStr] = Field(default_factory=list)
    conditions: List[ScopeOverride] = Field(default_factory=list)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ExtForwardConfig":
        """
        Validate raw configuration data.

        Raises:
            ConfigurationError: If the data does not have the expected shape
        """
        if not isinstance(data, Mapping):
            raise ConfigurationError(
                f"Configuration validation failed:\n  - expected a mapping, "
                f"got {type(data).__name__}"
            )
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            raise ConfigurationError(_format_validation_error(e)) from e

    def build_policy(self) -> "ForwardingPolicy":
        """Compile into the immutable structure consulted per request."""
        overrides = tuple(
            _CompiledOverride(
                condition=block.condition,
                trusted=None if block.forwarder is None else TrustedSet(block.forwarder),
                headers=None if block.headers is None else _header_list(block.headers),
            )
            for block in self.conditions
        )
        return ForwardingPolicy(
            global_rules=ScopeRules(
                trusted=TrustedSet(self.forwarder),
                headers=_header_list(self.headers),
            ),
            overrides=overrides,
        )


def _header_list(headers: List[str]) -> Tuple[str, ...]:
    return tuple(headers) if headers else DEFAULT_HEADERS


def _format_validation_error(error: ValidationError) -> str:
    errors: List[str] = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        hint = ""
        for key, expected in _EXPECTED_SHAPES.items():
            if key in item["loc"]:
                hint = f"; {expected}"
        errors.append(f"unexpected value for extforward.{location}: {item['msg']}{hint}")
    return "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)


@dataclass(frozen=True)
class ScopeRules:
    """Effective, read-only rules for one request."""

    trusted: TrustedSet
    headers: Tuple[str, ...]


@dataclass(frozen=True)
class _CompiledOverride:
    condition: Condition
    trusted: Optional[TrustedSet]
    headers: Optional[Tuple[str, ...]]


@dataclass(frozen=True)
class ForwardingPolicy:
    """
    Immutable compiled configuration.

    Reloading configuration means building a new policy; a policy is never
    mutated while requests may be reading it.
    """

    global_rules: ScopeRules
    overrides: Tuple[_CompiledOverride, ...] = ()

    def resolve(self, scope: Scope, cache: Optional[ConditionCache] = None) -> ScopeRules:
        """
        Merge the global rules with every matching conditional block.

        Args:
            scope: ASGI scope of the current request
            cache: Per-request condition cache (a private one is used if None)

        Returns:
            The effective ScopeRules for this request
        """
        if not self.overrides:
            return self.global_rules

        cache = cache if cache is not None else ConditionCache()
        trusted = self.global_rules.trusted
        headers = self.global_rules.headers
        for override in self.overrides:
            if not cache.evaluate(override.condition, scope):
                continue
            if override.trusted is not None:
                trusted = override.trusted
            if override.headers is not None:
                headers = override.headers
        return ScopeRules(trusted=trusted, headers=headers)


def _substitute_env_vars(value: str) -> str:
    """Substitute ${VAR} or ${VAR:default} patterns with environment variable values."""
    pattern = r"\$\{([^}]+)\}"

    def replace(match: re.Match[str]) -> str:
        var_expr = match.group(1)
        if ":" in var_expr:
            var_name, default = var_expr.split(":", 1)
            return os.environ.get(var_name, default)
        return os.environ.get(var_expr, "")

    return re.sub(pattern, replace, value)


def _process_config_values(value: Any) -> Any:
    """Recursively substitute environment variables in string values."""
    if isinstance(value, str):
        return _substitute_env_vars(value)
    if isinstance(value, dict):
        return {key: _process_config_values(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_process_config_values(item) for item in value]
    return value


def _load_yaml(path: Path) -> Any:
    """Load a YAML file."""
    try:
        with open(path) as f:
            return yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Could not parse {path}: {e}") from e


def load_config(
    config_path: Optional[str] = None,
    settings: Optional[Any] = None,
) -> ExtForwardConfig:
    """
    Load forwarding configuration.

    Configuration is loaded from (in order of precedence):
    1. The explicit YAML ``config_path``
    2. ``settings.EXTFORWARD_CONFIG_PATH``
    3. ``settings.EXTFORWARD_FORWARDER`` / ``settings.EXTFORWARD_HEADERS``

    Args:
        config_path: Path to a YAML configuration file.
        settings: Application settings (defaults to extforward.core.config.settings).

    Returns:
        Validated ExtForwardConfig.

    Raises:
        ConfigurationError: If the file is missing, unparseable or malformed.
    """
    settings = settings if settings is not None else default_settings

    path = config_path or settings.EXTFORWARD_CONFIG_PATH
    if path:
        yaml_path = Path(path)
        if not yaml_path.exists():
            raise ConfigurationError(f"Configuration file not found: {yaml_path}")
        data = _load_yaml(yaml_path)
        if isinstance(data, dict) and "extforward" in data:
            data = data["extforward"] or {}
        data = _process_config_values(data)
        logger.info("Loaded forwarding configuration from %s", yaml_path)
    else:
        data = {
            "forwarder": dict(settings.EXTFORWARD_FORWARDER),
            "headers": list(settings.EXTFORWARD_HEADERS),
        }

    config = ExtForwardConfig.from_mapping(data)
    if config.forwarder and TrustedSet(config.forwarder).trust_all:
        logger.warning(
            "extforward.forwarder trusts all peers; forwarding headers from "
            "any client will be honored"
        )
    return config
