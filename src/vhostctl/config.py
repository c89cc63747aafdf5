"""Configuration loader for vhostctl.

Settings are layered, later sources winning:

1. Built-in defaults.
2. ``/etc/vhostctl/config.yml`` (or ``--config-file`` / ``VHOSTCTL_CONFIG_FILE``).
3. Environment variables prefixed with ``VHOSTCTL_``.
4. Explicit overrides supplied programmatically (CLI flags such as ``--backend``).

Environment keys use double underscores to express nesting, e.g.::

    export VHOSTCTL_BACKEND=apache
    export VHOSTCTL_PATHS__AVAILABLE=/etc/apache2/sites-available
    export VHOSTCTL_TLS__WARN_EXPIRY_DAYS=14

Environment values go through ``yaml.safe_load`` so numbers and booleans
arrive typed. The merged tree is checked for unknown keys and then frozen
into the dataclasses below.
"""
from __future__ import annotations

import copy
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .models import BackendKind

ENV_PREFIX = "VHOSTCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PathsConfig:
    """Explicit sites directories; both unset means auto-detect."""

    available: Path | None = None
    enabled: Path | None = None

    @property
    def is_set(self) -> bool:
        """Return ``True`` when both directories were configured."""
        return self.available is not None and self.enabled is not None

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> PathsConfig:
        available, enabled = data.get("available"), data.get("enabled")
        if bool(available) != bool(enabled):
            raise ConfigError(
                "both paths.available and paths.enabled must be set if either is specified"
            )
        resolved: dict[str, Path | None] = {}
        for label, value in (("available", available), ("enabled", enabled)):
            if not value:
                resolved[label] = None
                continue
            path = _path(value, f"paths.{label}")
            if not path.is_absolute():
                raise ConfigError(f"paths.{label} must be an absolute path: {value}")
            resolved[label] = path
        return cls(**resolved)

    def to_dict(self) -> dict[str, object]:
        return {
            "available": str(self.available) if self.available else None,
            "enabled": str(self.enabled) if self.enabled else None,
        }


@dataclass(frozen=True)
class CommandsConfig:
    """External binaries used to validate and reload each backend."""

    systemctl_bin: str = "systemctl"
    nginx_bin: str = "nginx"
    apachectl_bin: str = "apache2ctl"
    caddy_bin: str = "caddy"
    caddyfile: Path = Path("/etc/caddy/Caddyfile")

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> CommandsConfig:
        binaries = {
            key: str(data[key])
            for key in ("systemctl_bin", "nginx_bin", "apachectl_bin", "caddy_bin")
        }
        return cls(caddyfile=_path(data["caddyfile"], "commands.caddyfile"), **binaries)

    def to_dict(self) -> dict[str, object]:
        return {
            "systemctl_bin": self.systemctl_bin,
            "nginx_bin": self.nginx_bin,
            "apachectl_bin": self.apachectl_bin,
            "caddy_bin": self.caddy_bin,
            "caddyfile": str(self.caddyfile),
        }


@dataclass(frozen=True)
class TLSConfig:
    """Certificate provisioning defaults."""

    email: str | None = None
    live_dir: Path = Path("/etc/letsencrypt/live")
    certbot_bin: str = "certbot"
    warn_expiry_days: int = 30

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> TLSConfig:
        warn_days = _integer(data["warn_expiry_days"], "tls.warn_expiry_days")
        if warn_days < 0:
            raise ConfigError("tls.warn_expiry_days must be non-negative.")
        email = data.get("email")
        return cls(
            email=str(email).strip() if email else None,
            live_dir=_path(data["live_dir"], "tls.live_dir"),
            certbot_bin=str(data["certbot_bin"]),
            warn_expiry_days=warn_days,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "email": self.email,
            "live_dir": str(self.live_dir),
            "certbot_bin": self.certbot_bin,
            "warn_expiry_days": self.warn_expiry_days,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for vhostctl."""

    config_file: Path
    backend: BackendKind
    default_php: str
    state_dir: Path
    registry_dir: Path
    logs_dir: Path
    templates_dir: Path
    paths: PathsConfig
    commands: CommandsConfig
    tls: TLSConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "backend": self.backend.value,
            "default_php": self.default_php,
            "state_dir": str(self.state_dir),
            "registry_dir": str(self.registry_dir),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "paths": self.paths.to_dict(),
            "commands": self.commands.to_dict(),
            "tls": self.tls.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/vhostctl/config.yml",
    "backend": "nginx",
    "default_php": "8.2",
    "state_dir": "/var/lib/vhostctl",
    "registry_dir": None,  # state_dir/registry when unset
    "logs_dir": "/var/log/vhostctl",
    "templates_dir": "/etc/vhostctl/templates",
    "paths": {"available": None, "enabled": None},
    "commands": {
        "systemctl_bin": "systemctl",
        "nginx_bin": "nginx",
        "apachectl_bin": "apache2ctl",
        "caddy_bin": "caddy",
        "caddyfile": "/etc/caddy/Caddyfile",
    },
    "tls": {
        "email": None,
        "live_dir": "/etc/letsencrypt/live",
        "certbot_bin": "certbot",
        "warn_expiry_days": 30,
    },
}

_SECTIONS = ("paths", "commands", "tls")


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    environ = os.environ if env is None else env
    if config_file:
        config_path = Path(config_file)
    elif CONFIG_ENV_VAR in environ:
        config_path = Path(environ[CONFIG_ENV_VAR])
    else:
        config_path = Path(str(DEFAULTS["config_file"]))

    tree: dict[str, object] = copy.deepcopy(DEFAULTS)
    for layer in (_read_file(config_path), _env_layer(environ), dict(overrides or {})):
        _merge(tree, layer, prefix="")
    tree["config_file"] = str(config_path)
    return _freeze(tree)


def _read_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return dict(data)


def _env_layer(environ: Mapping[str, str]) -> dict[str, object]:
    layer: dict[str, object] = {}
    for key, raw in environ.items():
        if key == CONFIG_ENV_VAR or not key.startswith(ENV_PREFIX):
            continue
        segments = [part.lower() for part in key[len(ENV_PREFIX) :].split("__") if part]
        if not segments:
            continue
        node = layer
        for segment in segments[:-1]:
            child = node.setdefault(segment, {})
            if not isinstance(child, dict):
                raise ConfigError(f"Environment variable {key} conflicts with {segment}={child!r}")
            node = child
        node[segments[-1]] = _env_value(raw)
    return layer


def _env_value(raw: str) -> object:
    try:
        return yaml.safe_load(raw.strip())
    except yaml.YAMLError:
        return raw.strip()


def _merge(target: dict[str, object], layer: Mapping[str, object], *, prefix: str) -> None:
    """Merge *layer* into *target*, rejecting keys the defaults do not define."""
    unknown = sorted(str(key) for key in layer if key not in target)
    if unknown:
        scope = f"{prefix} " if prefix else ""
        raise ConfigError(f"Unknown {scope}configuration keys: {', '.join(unknown)}.")
    for key, value in layer.items():
        current = target[key]
        if isinstance(current, dict):
            if value is None:
                continue
            if not isinstance(value, Mapping):
                raise ConfigError(
                    f"Expected {key} to be a mapping. Got {type(value).__name__}."
                )
            _merge(current, value, prefix=key)
        else:
            target[key] = value


def _freeze(tree: Mapping[str, object]) -> AppConfig:
    backend_name = str(tree["backend"]).strip().lower()
    try:
        backend = BackendKind(backend_name)
    except ValueError:
        allowed = ", ".join(sorted(kind.value for kind in BackendKind))
        raise ConfigError(f"Unsupported backend '{backend_name}'. Allowed: {allowed}.") from None

    sections = {name: cast(Mapping[str, object], tree[name]) for name in _SECTIONS}
    state_dir = _path(tree["state_dir"], "state_dir")
    registry_dir = tree["registry_dir"]
    return AppConfig(
        config_file=_path(tree["config_file"], "config_file"),
        backend=backend,
        default_php=str(tree["default_php"]),
        state_dir=state_dir,
        registry_dir=(
            _path(registry_dir, "registry_dir") if registry_dir else state_dir / "registry"
        ),
        logs_dir=_path(tree["logs_dir"], "logs_dir"),
        templates_dir=_path(tree["templates_dir"], "templates_dir"),
        paths=PathsConfig.from_mapping(sections["paths"]),
        commands=CommandsConfig.from_mapping(sections["commands"]),
        tls=TLSConfig.from_mapping(sections["tls"]),
    )


def _path(value: object, label: str) -> Path:
    if isinstance(value, (str, Path)) and str(value):
        return Path(value).expanduser()
    raise ConfigError(f"Expected {label} to be a filesystem path. Got {value!r}.")


def _integer(value: object, label: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


__all__ = [
    "AppConfig",
    "CommandsConfig",
    "ConfigError",
    "PathsConfig",
    "TLSConfig",
    "load_config",
]
