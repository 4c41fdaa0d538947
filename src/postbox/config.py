"""Configuration loading and validation."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .routing import RouteError, RoutingRule

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("~/.config/postbox/config.yaml")
DEFAULT_ROOT_DIR = Path("~/.local/lib/postbox")
DEFAULT_LOG_LEVEL = "info"
DEFAULT_WORKERS = 4
DEFAULT_ROUTES: tuple[dict[str, Any], ...] = (
    {"pattern": r"blog@", "handler": "post"},
    {"pattern": r"^comment\+(\d+)@", "handler": "comment", "token_group": 1},
)


class ConfigError(ValueError):
    """Raised when configuration is invalid or missing."""


@dataclass(frozen=True)
class LoggingConfig:
    """Logging-related configuration."""

    level: str = DEFAULT_LOG_LEVEL
    debug_file: bool = False


@dataclass(frozen=True)
class Config:
    """Fully parsed configuration."""

    root_dir: Path
    routes: tuple[RoutingRule, ...]
    maildir: Path | None = None
    workers: int = DEFAULT_WORKERS
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(path: Path | str | None = None) -> Config:
    """Load and validate configuration from YAML."""

    config_path = resolve_config_path(path)
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    with config_path.open("r", encoding="utf-8") as handle:
        try:
            raw = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {config_path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError("Configuration root must be a mapping.")

    return parse_config(raw)


def resolve_config_path(explicit: Path | str | None) -> Path:
    if explicit:
        return Path(explicit).expanduser()
    env_path = os.environ.get("POSTBOX_CONFIG")
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_CONFIG_PATH.expanduser()


def parse_config(raw: dict[str, Any]) -> Config:
    root_dir = Path(raw.get("root_dir") or raw.get("rootdir") or DEFAULT_ROOT_DIR).expanduser()
    return Config(
        root_dir=root_dir,
        routes=_parse_routes(raw.get("routes")),
        maildir=_parse_maildir(raw.get("maildir")),
        workers=_parse_workers(raw.get("workers")),
        logging=_parse_logging(raw.get("logging")),
    )


def _parse_routes(value: Any) -> tuple[RoutingRule, ...]:
    if value is None:
        value = [dict(entry) for entry in DEFAULT_ROUTES]
    if not isinstance(value, list):
        raise ConfigError("routes must be a list.")
    if not value:
        raise ConfigError("At least one route must be configured.")

    rules: list[RoutingRule] = []
    for idx, entry in enumerate(value, start=1):
        if not isinstance(entry, dict):
            raise ConfigError(f"routes[{idx}] must be a mapping.")
        pattern = entry.get("pattern")
        handler = entry.get("handler")
        if not pattern or not handler:
            raise ConfigError(f"routes[{idx}] requires 'pattern' and 'handler'.")
        if not isinstance(pattern, str):
            raise ConfigError(f"routes[{idx}].pattern must be a string.")
        token_group = entry.get("token_group")
        if token_group is not None and (
            isinstance(token_group, bool) or not isinstance(token_group, (int, str))
        ):
            raise ConfigError(f"routes[{idx}].token_group must be a group index or name.")
        try:
            rules.append(RoutingRule.compile(pattern, str(handler), token_group))
        except RouteError as exc:
            raise ConfigError(f"routes[{idx}]: {exc}") from exc
    return tuple(rules)


def _parse_maildir(value: Any) -> Path | None:
    if value is None:
        return None
    if not isinstance(value, (str, Path)) or not str(value).strip():
        raise ConfigError("maildir must be a path.")
    return Path(value).expanduser()


def _parse_workers(value: Any) -> int:
    if value is None:
        return DEFAULT_WORKERS
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError("workers must be an integer.")
    if value < 1:
        raise ConfigError("workers must be at least 1.")
    return value


def _parse_logging(value: Any) -> LoggingConfig:
    if value is None:
        return LoggingConfig()
    if not isinstance(value, dict):
        raise ConfigError("logging must be a mapping.")
    level = str(value.get("level", DEFAULT_LOG_LEVEL)).lower()
    debug_file = bool(value.get("debug_file", False))
    return LoggingConfig(level=level, debug_file=debug_file)


__all__ = [
    "Config",
    "ConfigError",
    "DEFAULT_ROUTES",
    "LoggingConfig",
    "load_config",
    "parse_config",
    "resolve_config_path",
]
