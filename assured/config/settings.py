from __future__ import annotations

import logging
import os
import re
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from assured.auth.config import BrokerAuthConfig, HttpAuthConfig, broker_auth_from_dict, http_auth_from_dict
from assured.errors import ConfigurationError

logger = logging.getLogger(__name__)

SETTINGS_FILES = ("assured.yaml", "assured.yml", "assured.json")
SEARCH_PARENTS = 3

_ENV_PLACEHOLDER = re.compile(r"\$\{ENV:([A-Za-z_][A-Za-z0-9_]*)\}")


@dataclass
class HttpSettings:
    base_url: str = ""
    timeout: float = 30.0
    default_headers: Dict[str, str] = field(default_factory=dict)
    verify_tls: bool = True
    auth: Optional[HttpAuthConfig] = None


@dataclass
class BrokerSettings:
    bootstrap_servers: str = "localhost:9092"
    group_id: str = "assured-consumer"
    client_id_prefix: str = "assured"
    auth: Optional[BrokerAuthConfig] = None


@dataclass
class ExportSettings:
    json_path: Optional[str] = None
    console: bool = False


@dataclass
class Settings:
    http: HttpSettings = field(default_factory=HttpSettings)
    broker: BrokerSettings = field(default_factory=BrokerSettings)
    export: ExportSettings = field(default_factory=ExportSettings)
    environment: Optional[str] = None
    source: Optional[str] = None  # file the settings came from, None for defaults


def substitute_env(text: str) -> str:
    """Replace ${ENV:NAME} placeholders; unset variables become empty strings."""
    return _ENV_PLACEHOLDER.sub(lambda m: os.getenv(m.group(1), ""), text)


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def _section(raw: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Settings section '{name}' must be a mapping")
    return value


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("true", "1", "yes", "on")


def find_settings_file(start: Optional[Path] = None) -> Optional[Path]:
    here = Path(start or Path.cwd()).resolve()
    for directory in [here, *list(here.parents)[:SEARCH_PARENTS]]:
        for name in SETTINGS_FILES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    return None


def settings_from_dict(raw: Dict[str, Any], environment: Optional[str] = None) -> Settings:
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Settings root must be a mapping, got {type(raw).__name__}")

    envs = raw.get("environments") or {}
    if environment:
        if environment not in envs:
            raise ConfigurationError(
                f"Settings environment '{environment}' not defined; known: {sorted(envs)}"
            )
        raw = _deep_merge(raw, envs[environment])

    http = _section(raw, "http")
    broker = _section(raw, "broker")
    export = _section(raw, "export")

    try:
        http_settings = HttpSettings(
            base_url=str(http.get("base_url") or ""),
            timeout=float(http.get("timeout", 30.0)),
            default_headers={str(k): str(v) for k, v in (http.get("default_headers") or {}).items()},
            verify_tls=_as_bool(http.get("verify_tls", True)),
            auth=http_auth_from_dict(http.get("authentication")),
        )
        broker_settings = BrokerSettings(
            bootstrap_servers=str(broker.get("bootstrap_servers") or "localhost:9092"),
            group_id=str(broker.get("group_id") or "assured-consumer"),
            client_id_prefix=str(broker.get("client_id_prefix") or "assured"),
            auth=broker_auth_from_dict(broker.get("authentication")),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid settings: {exc}") from exc

    return Settings(
        http=http_settings,
        broker=broker_settings,
        export=ExportSettings(json_path=export.get("json_path"), console=_as_bool(export.get("console", False))),
        environment=environment,
    )


def _apply_env_overrides(settings: Settings) -> Settings:
    base_url = os.getenv("ASSURED_BASE_URL", "").strip()
    if base_url:
        settings.http.base_url = base_url

    timeout = os.getenv("ASSURED_HTTP_TIMEOUT_SECONDS")
    if timeout:
        try:
            settings.http.timeout = float(timeout)
        except ValueError as exc:
            raise ConfigurationError(f"ASSURED_HTTP_TIMEOUT_SECONDS is not a number: {timeout!r}") from exc

    verify = os.getenv("ASSURED_HTTP_VERIFY_TLS")
    if verify:
        settings.http.verify_tls = verify.lower() == "true"

    servers = os.getenv("ASSURED_BOOTSTRAP_SERVERS", "").strip()
    if servers:
        settings.broker.bootstrap_servers = servers
    return settings


def load_settings(path: Optional[str] = None, environment: Optional[str] = None) -> Settings:
    # 1) explicit path, then ASSURED_SETTINGS_PATH, then search from cwd upwards
    explicit = path or os.getenv("ASSURED_SETTINGS_PATH")
    environment = environment or os.getenv("ASSURED_ENV") or None

    if explicit:
        settings_path: Optional[Path] = Path(explicit)
        if not settings_path.is_file():
            raise ConfigurationError(f"Settings file not found: {settings_path}")
    else:
        settings_path = find_settings_file()

    # 2) parse (JSON is valid YAML) after ${ENV:...} substitution
    if settings_path is None:
        logger.debug("No settings file found, using defaults")
        raw: Dict[str, Any] = {}
    else:
        text = substitute_env(settings_path.read_text(encoding="utf-8"))
        try:
            raw = yaml.safe_load(text) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Cannot parse settings file {settings_path}: {exc}") from exc
        logger.info("Loaded settings from %s (environment=%s)", settings_path, environment)

    # 3) build typed settings, env overrides win last
    settings = settings_from_dict(raw, environment)
    settings.source = str(settings_path) if settings_path else None
    return _apply_env_overrides(settings)


_cached: Optional[Settings] = None
_cache_lock = threading.Lock()


def get_settings() -> Settings:
    global _cached
    if _cached is None:
        with _cache_lock:
            if _cached is None:
                _cached = load_settings()
    return _cached


def clear_settings_cache() -> None:
    global _cached
    with _cache_lock:
        _cached = None
