#!/usr/bin/env python3
"""
Configuration Manager for the registry GC listener

This module handles loading and managing configuration from config.yaml
and environment variables. Environment variables always win over the file,
the file wins over the built-in defaults.
"""

import logging
import os
import re
from typing import Any, Dict, Optional, Tuple, Union

import yaml


class ConfigValidationError(Exception):
    """Raised when configuration validation fails"""


_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}
_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")

_TRUE_VALUES = ("true", "1", "yes", "on")
_FALSE_VALUES = ("false", "0", "no", "off")


def parse_duration(value: Union[str, int, float]) -> float:
    """Parse a duration into seconds.

    Accepts plain numbers (seconds) and Go-style strings such as "24h",
    "1h30m", "90s" or "250ms".

    Raises:
        ConfigValidationError: If the value is not a valid duration
    """
    if isinstance(value, bool):
        raise ConfigValidationError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return float(value)

    text = str(value).strip()
    if not text:
        raise ConfigValidationError("invalid duration: empty string")
    try:
        return float(text)
    except ValueError:
        pass

    sign = 1.0
    if text[0] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos == 0 or pos != len(text):
        raise ConfigValidationError(f"invalid duration: {value!r} (expected e.g. 24h, 1h30m, 60s)")
    return sign * total


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    raise ConfigValidationError(f"{name} must be a boolean, got: {value}")


class ConfigManager:
    """Manages configuration for the registry GC listener"""

    def __init__(self, config_file: str = None, validate: bool = True):
        """Initialize ConfigManager

        Args:
            config_file: Path to configuration YAML file (defaults to config.yaml or CONFIG_FILE env var)
            validate: If True, validate configuration on initialization
        """
        # Allow override via environment variable for containerized deployments
        if config_file is None:
            config_file = os.environ.get("CONFIG_FILE", "config.yaml")
        self.config_file = config_file
        self.config = self._load_config()

        if validate:
            self.validate_config()

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file with defaults"""
        default_config = {
            "registry": {
                "url": "http://registry-server:5000",
                "username": "",
                "password": "",
                "timeout": 15,
                "catalog_page_size": 1000,
            },
            "retention": {
                "keep_n": 10,
                "prune_interval": "24h",
                "workers": 8,
            },
            "gc": {
                "mode": "local",
                "binary": "registry",
                "config_path": "/etc/docker/registry/config.yml",
                "delete_untagged": True,
                "debounce": "60s",
                "statefulset": "docker-registry",
                "namespace": "default",
            },
            "server": {"listen": "0.0.0.0:8080"},
            "logging": {"level": "info"},
        }

        try:
            if os.path.exists(self.config_file):
                with open(self.config_file, "r") as f:
                    user_config = yaml.safe_load(f) or {}
                return self._merge_config(default_config, user_config)
            else:
                logging.debug(f"Config file {self.config_file} not found, using defaults")
                return default_config
        except Exception as e:
            logging.error(f"Error loading config file: {e}")
            return default_config

    def _merge_config(self, default: Dict[str, Any], user: Dict[str, Any]) -> Dict[str, Any]:
        """Recursively merge user config with defaults"""
        result = default.copy()
        for key, value in user.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_config(result[key], value)
            else:
                result[key] = value
        return result

    def _get(self, env_var: Optional[str], section: str, key: str) -> Any:
        if env_var:
            value = os.environ.get(env_var)
            if value not in (None, ""):
                return value
        return self.config.get(section, {}).get(key)

    def _get_int(self, env_var: Optional[str], section: str, key: str) -> int:
        value = self._get(env_var, section, key)
        try:
            return int(value)
        except (ValueError, TypeError):
            raise ConfigValidationError(
                f"{section}.{key} must be an integer, got: {value} (type: {type(value).__name__})"
            )

    def _get_duration(self, env_var: Optional[str], section: str, key: str) -> float:
        value = self._get(env_var, section, key)
        try:
            return parse_duration(value)
        except ConfigValidationError as e:
            raise ConfigValidationError(f"{section}.{key}: {e}")

    # Registry configuration
    def get_registry_url(self) -> str:
        """Get registry URL from environment or config"""
        return self._get("REGISTRY_URL", "registry", "url") or ""

    def get_registry_username(self) -> Optional[str]:
        """Get basic-auth user for the registry API (only needed for pruning)"""
        return self._get("REGISTRY_USER", "registry", "username") or None

    def get_registry_password(self) -> Optional[str]:
        """Get basic-auth password for the registry API"""
        return self._get("REGISTRY_PASS", "registry", "password") or None

    def get_registry_timeout(self) -> float:
        """Get per-request timeout for registry API calls, in seconds"""
        return self._get_duration("REGISTRY_TIMEOUT", "registry", "timeout")

    def get_catalog_page_size(self) -> int:
        return self._get_int(None, "registry", "catalog_page_size")

    # Retention configuration
    def get_keep_n(self) -> int:
        """Get number of most recent tags kept per repository"""
        return self._get_int("KEEP_N", "retention", "keep_n")

    def get_prune_interval(self) -> float:
        """Get interval between periodic prune runs in seconds (<= 0 disables)"""
        return self._get_duration("PRUNE_INTERVAL", "retention", "prune_interval")

    def get_workers(self) -> int:
        """Get size of the deletion worker pool"""
        return self._get_int("WORKERS", "retention", "workers")

    # Garbage collection configuration
    def get_gc_mode(self) -> str:
        """Get how garbage-collect is executed: local subprocess or kubernetes exec"""
        return str(self._get("GC_MODE", "gc", "mode")).strip().lower()

    def get_gc_binary(self) -> str:
        return self._get("GC_BINARY", "gc", "binary")

    def get_gc_config_path(self) -> str:
        """Get the registry configuration file passed to garbage-collect"""
        return self._get("REGISTRY_CONFIG", "gc", "config_path")

    def get_gc_delete_untagged(self) -> bool:
        return _as_bool(self._get("GC_DELETE_UNTAGGED", "gc", "delete_untagged"), "gc.delete_untagged")

    def get_gc_debounce(self) -> float:
        """Get delay between the first delete notification and the GC it schedules"""
        return self._get_duration("GC_DEBOUNCE", "gc", "debounce")

    def get_registry_statefulset(self) -> str:
        return self._get("REGISTRY_STATEFULSET", "gc", "statefulset")

    def get_registry_namespace(self) -> str:
        return self._get("REGISTRY_NAMESPACE", "gc", "namespace")

    # Server / logging configuration
    def get_listen_address(self) -> Tuple[str, int]:
        """Get (host, port) for the HTTP listener"""
        value = str(self._get("LISTEN_ADDR", "server", "listen")).strip()
        host, _, port = value.rpartition(":")
        try:
            return host or "0.0.0.0", int(port)
        except ValueError:
            raise ConfigValidationError(f"server.listen must look like host:port, got: {value}")

    def get_log_level(self) -> str:
        return str(self._get("LOG_LEVEL", "logging", "level") or "info")

    def has_registry_credentials(self) -> bool:
        return bool(self.get_registry_username())

    def validate_config(self) -> None:
        """Validate configuration values

        Raises:
            ConfigValidationError: If configuration is invalid
        """
        errors = []
        warnings = []

        registry_url = self.get_registry_url()
        if not registry_url or not registry_url.strip():
            errors.append("Registry URL is required and cannot be empty")
        elif not self._is_valid_registry_url(registry_url):
            warnings.append(
                f"Registry URL '{registry_url}' may be invalid (expected format: [http(s)://]hostname[:port])"
            )

        checks = [
            ("registry.timeout", self.get_registry_timeout),
            ("registry.catalog_page_size", self.get_catalog_page_size),
            ("retention.keep_n", self.get_keep_n),
            ("retention.prune_interval", self.get_prune_interval),
            ("retention.workers", self.get_workers),
            ("gc.debounce", self.get_gc_debounce),
            ("gc.delete_untagged", self.get_gc_delete_untagged),
            ("server.listen", self.get_listen_address),
        ]
        values: Dict[str, Any] = {}
        for name, getter in checks:
            try:
                values[name] = getter()
            except ConfigValidationError as e:
                errors.append(str(e))

        timeout = values.get("registry.timeout")
        if timeout is not None and timeout <= 0:
            errors.append(f"registry.timeout must be positive (seconds), got: {timeout}")

        page_size = values.get("registry.catalog_page_size")
        if page_size is not None and page_size < 1:
            errors.append(f"registry.catalog_page_size must be a positive integer, got: {page_size}")

        keep_n = values.get("retention.keep_n")
        if keep_n is not None and keep_n <= 0:
            warnings.append(f"keep_n is {keep_n}: tag pruning is disabled, only garbage collection will run")

        workers = values.get("retention.workers")
        if workers is not None:
            if workers < 1:
                errors.append(f"retention.workers must be a positive integer, got: {workers}")
            elif workers > 64:
                warnings.append(f"workers is very high ({workers}), this may overload the registry")

        interval = values.get("retention.prune_interval")
        if interval is not None and interval <= 0:
            warnings.append("prune_interval is not positive: periodic pruning is disabled")

        debounce = values.get("gc.debounce")
        if debounce is not None and debounce < 0:
            errors.append(f"gc.debounce must not be negative, got: {debounce}")

        listen = values.get("server.listen")
        if listen is not None and not 0 < listen[1] < 65536:
            errors.append(f"server.listen port must be between 1 and 65535, got: {listen[1]}")

        gc_mode = self.get_gc_mode()
        if gc_mode not in ("local", "kubernetes"):
            errors.append(f"gc.mode must be 'local' or 'kubernetes', got: {gc_mode}")

        if not self.get_gc_config_path():
            errors.append("gc.config_path is required and cannot be empty")

        if not self.has_registry_credentials():
            warnings.append("REGISTRY_USER/REGISTRY_PASS not set: tag pruning will be skipped")

        # Log warnings
        for warning in warnings:
            logging.warning(f"Configuration warning: {warning}")

        # Raise error if there are validation errors
        if errors:
            error_msg = "Configuration validation failed:\n  " + "\n  ".join(errors)
            logging.error(error_msg)
            raise ConfigValidationError(error_msg)

    def _is_valid_registry_url(self, url: str) -> bool:
        """Validate registry URL format"""
        if not url:
            return False

        # Remove protocol if present
        url = url.replace("http://", "").replace("https://", "").rstrip("/")

        pattern = r"^[a-zA-Z0-9]([a-zA-Z0-9\-\.]*[a-zA-Z0-9])?(:[0-9]{1,5})?$"
        return bool(re.match(pattern, url))

    def print_config(self):
        """Print current configuration"""
        print("Current Configuration:")
        print(f"  Registry URL: {self.get_registry_url()}")
        print(f"  Registry User: {self.get_registry_username() or 'Not set'}")
        password = self.get_registry_password()
        print(f"  Registry Password: {'*' * len(password) if password else 'Not set'}")
        print(f"  Keep N: {self.get_keep_n()}")
        print(f"  Prune Interval: {self.get_prune_interval()}s")
        print(f"  Workers: {self.get_workers()}")
        print(f"  GC Mode: {self.get_gc_mode()}")
        print(f"  GC Config Path: {self.get_gc_config_path()}")
        print(f"  GC Debounce: {self.get_gc_debounce()}s")
        host, port = self.get_listen_address()
        print(f"  Listen: {host}:{port}")
        print(f"  Log Level: {self.get_log_level()}")

