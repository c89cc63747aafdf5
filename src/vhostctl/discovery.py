"""Platform detection of backend configuration directories."""
from __future__ import annotations

import os
import platform
from collections.abc import Callable
from pathlib import Path

from .config import AppConfig, ConfigError
from .models import BackendKind, BackendPaths

_SITE_DIRS = ("sites-available", "sites-enabled")

# Backend -> configuration directory name under a platform prefix.
_DEBIAN_ROOTS: dict[BackendKind, str] = {
    BackendKind.NGINX: "/etc/nginx",
    BackendKind.APACHE: "/etc/apache2",
    BackendKind.CADDY: "/etc/caddy",
}
_RHEL_ROOTS: dict[BackendKind, str] = {
    BackendKind.NGINX: "/etc/nginx",
    BackendKind.APACHE: "/etc/httpd",
    BackendKind.CADDY: "/etc/caddy",
}
_HOMEBREW_PREFIXES = ("/opt/homebrew", "/usr/local")


class DiscoveryError(ConfigError):
    """Raised when backend directories cannot be determined."""


def detect_paths(
    backend: BackendKind,
    *,
    system: str | None = None,
    exists: Callable[[str], bool] = os.path.exists,
) -> BackendPaths:
    """Return the conventional directories for *backend* on this platform."""
    system_name = (system or platform.system()).lower()
    if system_name == "darwin":
        return _detect_homebrew(backend, exists)
    if system_name == "linux":
        return _detect_linux(backend, exists)
    raise DiscoveryError(f"unsupported platform: {system_name}")


def resolve_backend_paths(
    config: AppConfig,
    backend: BackendKind | None = None,
    *,
    system: str | None = None,
    exists: Callable[[str], bool] = os.path.exists,
) -> BackendPaths:
    """Return configured directories when set, otherwise detect them."""
    kind = backend or config.backend
    available = config.paths.available
    enabled = config.paths.enabled
    if available is not None and enabled is not None:
        return BackendPaths(available=available, enabled=enabled)
    if available is not None or enabled is not None:
        raise DiscoveryError(
            "both paths.available and paths.enabled must be set if either is specified"
        )
    return detect_paths(kind, system=system, exists=exists)


def _detect_linux(backend: BackendKind, exists: Callable[[str], bool]) -> BackendPaths:
    if exists("/etc/nginx/sites-available") or exists("/etc/apache2"):
        return _site_pair(Path(_DEBIAN_ROOTS[backend]))
    if exists("/etc/nginx/conf.d") or exists("/etc/httpd"):
        return _site_pair(Path(_RHEL_ROOTS[backend]))
    if exists(_DEBIAN_ROOTS[backend]):
        return _site_pair(Path(_DEBIAN_ROOTS[backend]))
    raise DiscoveryError(
        "web server configuration paths not found "
        "(checked /etc/nginx, /etc/nginx/conf.d, /etc/apache2, /etc/httpd)"
    )


def _detect_homebrew(backend: BackendKind, exists: Callable[[str], bool]) -> BackendPaths:
    for prefix in _HOMEBREW_PREFIXES:
        if not exists(prefix):
            continue
        etc = Path(prefix) / "etc"
        if backend is BackendKind.NGINX:
            # Homebrew nginx includes servers/* from its stock nginx.conf.
            return BackendPaths(etc / "nginx" / "sites-available", etc / "nginx" / "servers")
        if backend is BackendKind.APACHE:
            return BackendPaths(
                etc / "httpd" / "sites-available", etc / "httpd" / "extra" / "vhosts"
            )
        return _site_pair(etc / "caddy")
    raise DiscoveryError(
        "homebrew installation not found (checked /opt/homebrew and /usr/local)"
    )


def _site_pair(root: Path) -> BackendPaths:
    available, enabled = _SITE_DIRS
    return BackendPaths(root / available, root / enabled)


__all__ = ["DiscoveryError", "detect_paths", "resolve_backend_paths"]
