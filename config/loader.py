"""
Configuration Loader - Loads and validates login guard settings

Usage:
    from config.loader import get_settings

    settings = get_settings()
    print(settings.max_attempts)
    print(settings.lock_duration_seconds)

Sources, lowest to highest precedence:
1. Built-in defaults
2. Optional YAML file named by LOGIN_GUARD_CONFIG (supports ${VAR:-default})
3. Environment variables (LOGIN_MAX_ATTEMPTS, RATE_LIMIT_BUCKET_CAPACITY, ...)

The merged result is validated against config/schema.json.
"""

import copy
import json
import os
import re
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional, Tuple

import yaml
from jsonschema import validate, ValidationError

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.json"

DEFAULT_EXCLUDED_PATHS = ["/health", "/docs", "/redoc", "/openapi.json"]

DEFAULTS: Dict[str, Any] = {
    "login": {
        "max_attempts": 5,
        "lock_duration_minutes": 15,
        "progressive_delay_enabled": True,
        "delay_cap_seconds": 8,
        "store_failure_policy": "closed",
    },
    "rate_limit": {
        "bucket_capacity": 100,
        "refill_per_second": 10.0,
        "excluded_path_prefixes": DEFAULT_EXCLUDED_PATHS,
        "trust_forwarded_for": False,
    },
    "redis": {
        "url": None,
        "socket_timeout_seconds": 0.5,
    },
    "admin": {
        "api_token": None,
    },
    "logging": {
        "level": "INFO",
        "json": True,
        "mask_identities": False,
    },
    "credentials": {},
}

# env var -> (section, key, parser)
ENV_VARS: Dict[str, Tuple[str, str, str]] = {
    "LOGIN_MAX_ATTEMPTS": ("login", "max_attempts", "int"),
    "LOGIN_LOCK_DURATION_MINUTES": ("login", "lock_duration_minutes", "int"),
    "LOGIN_PROGRESSIVE_DELAY_ENABLED": ("login", "progressive_delay_enabled", "bool"),
    "LOGIN_DELAY_CAP_SECONDS": ("login", "delay_cap_seconds", "int"),
    "LOGIN_STORE_FAILURE_POLICY": ("login", "store_failure_policy", "lower"),
    "RATE_LIMIT_BUCKET_CAPACITY": ("rate_limit", "bucket_capacity", "int"),
    "RATE_LIMIT_REFILL_PER_SECOND": ("rate_limit", "refill_per_second", "float"),
    "RATE_LIMIT_EXCLUDED_PATHS": ("rate_limit", "excluded_path_prefixes", "list"),
    "TRUST_FORWARDED_FOR": ("rate_limit", "trust_forwarded_for", "bool"),
    "REDIS_URL": ("redis", "url", "str"),
    "REDIS_SOCKET_TIMEOUT_SECONDS": ("redis", "socket_timeout_seconds", "float"),
    "ADMIN_API_TOKEN": ("admin", "api_token", "str"),
    "LOG_LEVEL": ("logging", "level", "upper"),
    "LOG_JSON": ("logging", "json", "bool"),
    "LOG_MASK_IDENTITIES": ("logging", "mask_identities", "bool"),
}

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


class ConfigError(ValueError):
    """Raised when settings cannot be parsed or fail schema validation."""


@dataclass(frozen=True)
class Settings:
    """Validated, immutable login guard settings."""

    max_attempts: int = 5
    lock_duration_minutes: int = 15
    progressive_delay_enabled: bool = True
    delay_cap_seconds: int = 8
    store_failure_policy: str = "closed"
    store_failure_policy_explicit: bool = False
    bucket_capacity: int = 100
    bucket_refill_per_second: float = 10.0
    excluded_path_prefixes: Tuple[str, ...] = tuple(DEFAULT_EXCLUDED_PATHS)
    trust_forwarded_for: bool = False
    redis_url: Optional[str] = None
    redis_socket_timeout: float = 0.5
    admin_api_token: Optional[str] = None
    log_level: str = "INFO"
    log_json: bool = True
    log_mask_identities: bool = False
    credentials: Dict[str, str] = field(default_factory=dict)

    @property
    def lock_duration_seconds(self) -> int:
        """Lock duration window in seconds (shared TTL of all gate records)"""
        return self.lock_duration_minutes * 60


def _substitute_env_vars(obj: Any) -> Any:
    """
    Recursively substitute environment variables in config

    Supports: ${VAR_NAME} or ${VAR_NAME:-default_value}
    """
    if isinstance(obj, dict):
        return {k: _substitute_env_vars(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_substitute_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        pattern = r'\$\{([A-Z_]+)(?::-([^}]+))?\}'

        def replacer(match):
            var_name = match.group(1)
            default = match.group(2)
            return os.getenv(var_name, default or '')

        return re.sub(pattern, replacer, obj)
    else:
        return obj


def _parse_env_value(name: str, raw: str, kind: str) -> Any:
    value = raw.strip()
    try:
        if kind == "int":
            return int(value)
        if kind == "float":
            return float(value)
        if kind == "bool":
            lowered = value.lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ValueError(f"not a boolean: {raw!r}")
        if kind == "list":
            return [item.strip() for item in value.split(",") if item.strip()]
        if kind == "lower":
            return value.lower()
        if kind == "upper":
            return value.upper()
        return value or None
    except ValueError as e:
        raise ConfigError(f"Invalid value for {name}: {e}") from e


def _load_yaml(path: Path) -> Dict[str, Any]:
    """Load YAML configuration file"""
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    with open(path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigError(f"Configuration file must contain a mapping: {path}")

    return _substitute_env_vars(data)


def _merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _coerce_yaml_scalars(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Env substitution leaves strings behind; turn them back into typed values."""
    kinds = {(section, key): kind for section, key, kind in ENV_VARS.values()}
    coerced = copy.deepcopy(raw)
    for section, values in coerced.items():
        if not isinstance(values, dict) or section == "credentials":
            continue
        for key, value in values.items():
            kind = kinds.get((section, key))
            if isinstance(value, str) and kind in ("int", "float", "bool", "list"):
                values[key] = _parse_env_value(f"{section}.{key}", value, kind)
    return coerced


def _validate_config(config: Dict[str, Any]) -> None:
    """Validate configuration against JSON schema"""
    with open(SCHEMA_PATH, 'r') as f:
        schema = json.load(f)

    try:
        validate(instance=config, schema=schema)
    except ValidationError as e:
        path = ".".join(str(p) for p in e.absolute_path)
        raise ConfigError(f"Configuration validation failed at '{path}': {e.message}")


def load_settings(
    config_path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Settings:
    """
    Build Settings from defaults, optional YAML file and environment.

    Args:
        config_path: YAML file path (defaults to LOGIN_GUARD_CONFIG)
        environ: Environment mapping (defaults to os.environ)

    Raises:
        ConfigError: if a value cannot be parsed or violates the schema
    """
    env = os.environ if environ is None else environ
    config = copy.deepcopy(DEFAULTS)

    path = config_path or env.get("LOGIN_GUARD_CONFIG")
    policy_explicit = False
    if path:
        file_config = _coerce_yaml_scalars(_load_yaml(Path(path)))
        policy_explicit = "store_failure_policy" in file_config.get("login", {})
        config = _merge(config, file_config)
        logger.info(f"Loaded login guard configuration from {path}")

    overrides: Dict[str, Dict[str, Any]] = {}
    for name, (section, key, kind) in ENV_VARS.items():
        raw = env.get(name)
        if raw is None or raw.strip() == "":
            continue
        overrides.setdefault(section, {})[key] = _parse_env_value(name, raw, kind)
        if name == "LOGIN_STORE_FAILURE_POLICY":
            policy_explicit = True
    config = _merge(config, overrides)

    _validate_config(config)

    login = config["login"]
    rate_limit = config["rate_limit"]
    return Settings(
        max_attempts=login["max_attempts"],
        lock_duration_minutes=login["lock_duration_minutes"],
        progressive_delay_enabled=login["progressive_delay_enabled"],
        delay_cap_seconds=login["delay_cap_seconds"],
        store_failure_policy=login["store_failure_policy"],
        store_failure_policy_explicit=policy_explicit,
        bucket_capacity=rate_limit["bucket_capacity"],
        bucket_refill_per_second=float(rate_limit["refill_per_second"]),
        excluded_path_prefixes=tuple(rate_limit["excluded_path_prefixes"]),
        trust_forwarded_for=rate_limit["trust_forwarded_for"],
        redis_url=config["redis"]["url"] or None,
        redis_socket_timeout=float(config["redis"]["socket_timeout_seconds"]),
        admin_api_token=config["admin"]["api_token"] or None,
        log_level=config["logging"]["level"],
        log_json=config["logging"]["json"],
        log_mask_identities=config["logging"]["mask_identities"],
        credentials={k.strip().lower(): v for k, v in config["credentials"].items()},
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create the process-wide Settings"""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop cached settings (tests, config reload)"""
    global _settings
    _settings = None
