# gateway/app/config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import find_dotenv, load_dotenv

from gateway.core.errors import ConfigError


@dataclass(frozen=True)
class HttpDeviceSettings:
    request_timeout_s: float = 3.0
    throttle_s: float = 0.2
    cache_ttl_s: float = 0.5
    retry_attempts: int = 3
    retry_base_delay_s: float = 0.2
    retry_max_delay_s: float = 2.0


@dataclass(frozen=True)
class MqttSettings:
    connect_timeout_s: float = 10.0


@dataclass(frozen=True)
class ScriptSettings:
    max_steps: int = 200_000
    min_interval_ms: float = 10.0


@dataclass(frozen=True)
class BoardSettings:
    handshake_timeout_s: float = 5.0


@dataclass(frozen=True)
class GatewayConfig:
    host: str = "127.0.0.1"
    port: int = 4000
    socket_server_url: Optional[str] = None
    server_api_key: Optional[str] = None
    log_level: str = "INFO"
    log_file: Optional[str] = None
    metadata_dir: Optional[str] = None
    http_device: HttpDeviceSettings = field(default_factory=HttpDeviceSettings)
    mqtt: MqttSettings = field(default_factory=MqttSettings)
    script: ScriptSettings = field(default_factory=ScriptSettings)
    board: BoardSettings = field(default_factory=BoardSettings)

    @property
    def sockets_enabled(self) -> bool:
        return bool(self.socket_server_url and self.server_api_key)

    def driver_options(self) -> Dict[str, Dict[str, Any]]:
        """Extra constructor kwargs per driver key, fed to the transport factory."""
        h = self.http_device
        return {
            "http": {
                "request_timeout_s": h.request_timeout_s,
                "throttle_s": h.throttle_s,
                "cache_ttl_s": h.cache_ttl_s,
                "retry_attempts": h.retry_attempts,
                "retry_base_delay_s": h.retry_base_delay_s,
                "retry_max_delay_s": h.retry_max_delay_s,
            },
            "mqtt": {"connect_timeout_s": self.mqtt.connect_timeout_s},
        }


# env var -> (field, cast)
ENV_VARS = {
    "HOST": ("host", str),
    "PORT": ("port", int),
    "SOCKETSERVER_URL": ("socket_server_url", str),
    "SERVERAPI_KEY": ("server_api_key", str),
    "GATEWAY_LOG_LEVEL": ("log_level", str),
    "GATEWAY_LOG_FILE": ("log_file", str),
    "GATEWAY_METADATA_DIR": ("metadata_dir", str),
}

_SECTIONS = {
    "http_device": HttpDeviceSettings,
    "mqtt": MqttSettings,
    "script": ScriptSettings,
    "board": BoardSettings,
}


def _cast(value: Any, cast: type, where: str) -> Any:
    try:
        if cast is int and isinstance(value, float) and not value.is_integer():
            raise ValueError("not an integer")
        return cast(value)
    except (TypeError, ValueError):
        raise ConfigError(
            f"Invalid value {value!r} for {where}.",
            hint=f"Expected {cast.__name__}.",
            details={"key": where},
        ) from None


def _section(cls: type, raw: Any, name: str) -> Any:
    if raw is None:
        return cls()
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Config section '{name}' must be a mapping.")

    known = {f.name: f for f in fields(cls)}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        raise ConfigError(
            f"Unknown keys in config section '{name}': {', '.join(unknown)}.",
            hint=f"Known keys: {', '.join(sorted(known))}",
        )

    values = {}
    for key, value in raw.items():
        cast = type(known[key].default)
        values[key] = _cast(value, cast, f"{name}.{key}")
    return cls(**values)


def _read_yaml(path: Path) -> dict:
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Config file {path} is not valid YAML.", hint=str(e)) from None
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} root must be a mapping.")
    return data


def load_config(
    config_file: str | Path | None = None,
    environ: Optional[Mapping[str, str]] = None,
    *,
    dotenv_path: str | Path | None = None,
) -> GatewayConfig:
    """
    Build the gateway config: defaults, then the YAML file, then environment.

    When `environ` is None the process environment is used, after loading a
    `.env` file (python-dotenv; existing variables win).
    """
    if environ is None:
        load_dotenv(dotenv_path or find_dotenv(usecwd=True), override=False)
        environ = os.environ

    cfg = GatewayConfig()

    if config_file is not None:
        data = _read_yaml(Path(config_file))
        top: Dict[str, Any] = {}
        flat = {f.name: f for f in fields(GatewayConfig) if f.name not in _SECTIONS}
        for key, value in data.items():
            if key in _SECTIONS:
                top[key] = _section(_SECTIONS[key], value, key)
            elif key in flat:
                cast = int if key == "port" else str
                top[key] = None if value is None else _cast(value, cast, key)
            else:
                raise ConfigError(
                    f"Unknown config key '{key}'.",
                    hint=f"Known keys: {', '.join(sorted(list(flat) + list(_SECTIONS)))}",
                )
        cfg = replace(cfg, **top)

    env_values: Dict[str, Any] = {}
    for var, (name, cast) in ENV_VARS.items():
        raw = environ.get(var)
        if raw is None or raw == "":
            continue
        env_values[name] = _cast(raw, cast, var)
    if env_values:
        cfg = replace(cfg, **env_values)

    if not 0 < cfg.port < 65536:
        raise ConfigError(f"Invalid port {cfg.port}.", hint="Use 1..65535.")
    if cfg.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
        raise ConfigError(f"Invalid log level '{cfg.log_level}'.")
    if cfg.script.max_steps <= 0:
        raise ConfigError("script.max_steps must be > 0.")

    return cfg
