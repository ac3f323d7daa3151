from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
import tomllib

from plexdigest.cache import DEFAULT_CACHE_PATH

DEFAULT_CONFIG_PATH = Path("~/.config/plexdigest/config.toml").expanduser()

DEFAULT_HOSTNAME = "localhost"
DEFAULT_PORT = 32400
DEFAULT_REFRESH_MINUTES = 15
DEFAULT_TIMEOUT_S = 30.0

HEADER = """# plexdigest configuration
# Written by `python -m plexdigest --setup`; edit by hand or run setup again.
"""


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class ServerConfig:
    token: str
    hostname: str = DEFAULT_HOSTNAME
    port: int = DEFAULT_PORT
    https: bool = False
    refresh_duration: float = DEFAULT_REFRESH_MINUTES   # minutes
    timeout: float = DEFAULT_TIMEOUT_S                  # seconds, per fetch
    cache_path: Path = DEFAULT_CACHE_PATH

    @property
    def base_url(self) -> str:
        scheme = "https" if self.https else "http"
        return f"{scheme}://{self.hostname}:{self.port}"

    @property
    def refresh_seconds(self) -> float:
        return float(self.refresh_duration) * 60.0


def load_config(path: Path | None = None) -> dict:
    cfg_path = path or DEFAULT_CONFIG_PATH
    if not cfg_path.exists():
        # Allow running without config (still possible via CLI args)
        return {}

    try:
        with cfg_path.open("rb") as f:
            cfg = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid config file {cfg_path}: {e}") from e

    # Expand ~ in any string paths under [paths]
    paths = cfg.get("paths", {})
    for k, v in list(paths.items()):
        if isinstance(v, str):
            paths[k] = os.path.expanduser(v)

    return cfg


def validate_port(value: Any) -> int:
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Port must be a number, got {value!r}") from None
    if not 0 <= port <= 65535:
        raise ConfigError("Port number should be between 0 and 65535 inclusive.")
    return port


def validate_refresh(value: Any, minimum: float = 0) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"Refresh duration must be a number, got {value!r}")
    try:
        minutes = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Refresh duration must be a number, got {value!r}") from None
    if minutes <= 0:
        raise ConfigError("Refresh duration must be positive.")
    if minutes < minimum:
        raise ConfigError(f"Refresh duration should be at least {minimum:g} minutes.")
    return minutes


def build_server_config(cfg: dict, **overrides: Any) -> ServerConfig:
    """
    Merges the [server] and [paths] tables of a loaded config with non-None
    overrides (usually CLI arguments) and validates the result.
    """
    server = dict(cfg.get("server", {}))
    server.update({k: v for k, v in overrides.items() if v is not None and k != "cache_path"})

    token = server.get("token")
    if not token:
        raise ConfigError("You must provide an authorization token to connect to the Plex server.")

    timeout = server.get("timeout", DEFAULT_TIMEOUT_S)
    try:
        timeout = float(timeout)
    except (TypeError, ValueError):
        raise ConfigError(f"Timeout must be a number, got {timeout!r}") from None
    if timeout <= 0:
        raise ConfigError("Timeout must be positive.")

    cache_path = overrides.get("cache_path") or cfg.get("paths", {}).get("cache") or DEFAULT_CACHE_PATH

    return ServerConfig(
        token=str(token),
        hostname=str(server.get("hostname") or DEFAULT_HOSTNAME),
        port=validate_port(server.get("port", DEFAULT_PORT)),
        https=bool(server.get("https", False)),
        refresh_duration=validate_refresh(server.get("refresh_duration", DEFAULT_REFRESH_MINUTES)),
        timeout=timeout,
        cache_path=Path(cache_path).expanduser(),
    )


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(int(value)) if float(value).is_integer() else str(value)
    text = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{text}"'


def write_config(path: Path | None, config: ServerConfig) -> Path:
    p = (path or DEFAULT_CONFIG_PATH).expanduser()
    p.parent.mkdir(parents=True, exist_ok=True)

    lines = [HEADER.rstrip("\n"), "", "[server]"]
    for name in ("hostname", "port", "https", "token", "refresh_duration", "timeout"):
        lines.append(f"{name} = {_toml_value(getattr(config, name))}")
    lines += ["", "[paths]", f"cache = {_toml_value(config.cache_path)}"]

    p.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return p


def optional_path(value: Optional[str]) -> Optional[Path]:
    return Path(value).expanduser() if value else None
