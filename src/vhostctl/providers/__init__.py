"""Backend drivers and the command/service providers they rely on."""
from __future__ import annotations

from ..config import CommandsConfig
from ..models import BackendKind, BackendPaths
from .apache import ApacheDriver
from .base import SiteDriver
from .caddy import CaddyDriver
from .executor import CommandResult, CommandRunner
from .nginx import NginxDriver
from .systemd import SystemdProvider


def create_driver(
    kind: BackendKind,
    paths: BackendPaths,
    *,
    commands: CommandsConfig | None = None,
    runner: CommandRunner | None = None,
) -> SiteDriver:
    """Return the driver for *kind* operating on *paths*."""
    commands = commands or CommandsConfig()
    runner = runner or CommandRunner()
    systemd = SystemdProvider(runner=runner, systemctl_bin=commands.systemctl_bin)
    if kind is BackendKind.NGINX:
        return NginxDriver(paths, runner=runner, systemd=systemd, nginx_bin=commands.nginx_bin)
    if kind is BackendKind.APACHE:
        return ApacheDriver(
            paths, runner=runner, systemd=systemd, apachectl_bin=commands.apachectl_bin
        )
    if kind is BackendKind.CADDY:
        return CaddyDriver(
            paths,
            runner=runner,
            systemd=systemd,
            caddy_bin=commands.caddy_bin,
            caddyfile=commands.caddyfile,
        )
    raise ValueError(f"Unsupported backend: {kind!r}")


__all__ = [
    "ApacheDriver",
    "CaddyDriver",
    "CommandResult",
    "CommandRunner",
    "NginxDriver",
    "SiteDriver",
    "SystemdProvider",
    "create_driver",
]
