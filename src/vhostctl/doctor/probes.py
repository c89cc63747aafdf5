"""Probe registration entry point for the doctor command."""

from __future__ import annotations

import os
import platform
import sys
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from pathlib import Path

from .. import __version__
from ..errors import VHostError
from ..models import VHost
from ..tls import certificate_expiry, days_remaining
from .models import (
    DoctorImpact,
    ProbeCategory,
    ProbeContext,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
)

PHP_FPM_VERSIONS = ("8.3", "8.2", "8.1", "8.0", "7.4")


def collect_probes(context: ProbeContext) -> Sequence[ProbeDefinition]:
    """Return the set of probes that should run for the current context."""
    probes: list[ProbeDefinition] = []
    probes.extend(_env_probes())
    probes.extend(_config_probes())
    probes.extend(_state_probes())
    probes.extend(_backend_probes())
    probes.extend(_php_probes())
    probes.extend(_tls_probes())
    probes.extend(_vhost_probes(context))
    return tuple(probes)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_probe(
    probe_id: str,
    category: ProbeCategory,
    handler: Callable[[ProbeContext], ProbeResult],
) -> ProbeDefinition:
    def _runner(context: ProbeContext) -> ProbeResult:
        return handler(context)

    return ProbeDefinition(id=probe_id, category=category, run=_runner)


def _command_exists(context: ProbeContext, command: str) -> bool:
    path = Path(command)
    if path.is_absolute() or str(path.parent) not in {"", "."}:
        return path.exists() and os.access(path, os.X_OK)
    return context.runner.which(command) is not None


def _tracked_vhosts(context: ProbeContext) -> list[VHost]:
    try:
        return list(context.registry.load().values())
    except VHostError:
        return []


def _green(probe_id: str, category: ProbeCategory, message: str, **extra: object) -> ProbeResult:
    return ProbeResult(
        id=probe_id,
        category=category,
        status=ProbeStatus.GREEN,
        impact=DoctorImpact.OK,
        message=message,
        **extra,  # type: ignore[arg-type]
    )


# ---------------------------------------------------------------------------
# Environment probes
# ---------------------------------------------------------------------------


def _env_probes() -> Sequence[ProbeDefinition]:
    return (
        _make_probe("env-python", "env", _probe_env_python),
        _make_probe("env-vhostctl", "env", _probe_env_vhostctl),
        _make_probe("env-backend", "env", _probe_env_backend),
        _make_probe("env-systemctl", "env", _probe_env_systemctl),
    )


def _probe_env_python(_context: ProbeContext) -> ProbeResult:
    version = platform.python_version()
    return _green(
        "env-python",
        "env",
        f"Python {version} detected on {platform.system()}.",
        data={"executable": sys.executable, "version": version},
    )


def _probe_env_vhostctl(_context: ProbeContext) -> ProbeResult:
    return _green("env-vhostctl", "env", f"vhostctl {__version__} installed.")


def _probe_env_backend(context: ProbeContext) -> ProbeResult:
    binary = context.driver.validate_command()[0]
    if _command_exists(context, binary):
        return _green("env-backend", "env", f"{context.driver.name} binary '{binary}' available.")
    return ProbeResult(
        id="env-backend",
        category="env",
        status=ProbeStatus.RED,
        impact=DoctorImpact.ENVIRONMENT,
        message=f"{context.driver.name} binary '{binary}' not found.",
        remediation=f"Install {context.driver.name} or set commands.* in the config file.",
    )


def _probe_env_systemctl(context: ProbeContext) -> ProbeResult:
    binary = context.systemd.systemctl_bin
    if context.systemd.available():
        return _green("env-systemctl", "env", f"systemctl binary '{binary}' available.")
    return ProbeResult(
        id="env-systemctl",
        category="env",
        status=ProbeStatus.YELLOW,
        impact=DoctorImpact.OK,
        message="systemctl not found; reloads will use the backend's own command.",
        warnings=("missing:systemctl",),
    )


# ---------------------------------------------------------------------------
# Configuration and state probes
# ---------------------------------------------------------------------------


def _config_probes() -> Sequence[ProbeDefinition]:
    return (
        _make_probe("config-file", "config", _probe_config_file),
        _make_probe("config-paths", "config", _probe_config_paths),
    )


def _probe_config_file(context: ProbeContext) -> ProbeResult:
    path = context.config.config_file
    if path.exists():
        return _green("config-file", "config", f"Config file present ({path}).")
    return ProbeResult(
        id="config-file",
        category="config",
        status=ProbeStatus.YELLOW,
        impact=DoctorImpact.OK,
        message=f"Config file {path} not found; built-in defaults in use.",
        warnings=("config-missing",),
    )


def _probe_config_paths(context: ProbeContext) -> ProbeResult:
    paths = context.driver.paths
    missing = [str(path) for path in (paths.available, paths.enabled) if not path.is_dir()]
    data = paths.to_dict()
    if not missing:
        return _green("config-paths", "config", "Site directories present.", data=data)
    return ProbeResult(
        id="config-paths",
        category="config",
        status=ProbeStatus.YELLOW,
        impact=DoctorImpact.OK,
        message=f"Site directories missing: {', '.join(missing)} (created on first add).",
        data=data,
        warnings=tuple(f"missing:{path}" for path in missing),
    )


def _state_probes() -> Sequence[ProbeDefinition]:
    return (_make_probe("state-registry", "state", _probe_state_registry),)


def _probe_state_registry(context: ProbeContext) -> ProbeResult:
    try:
        tracked = context.registry.load()
    except VHostError as exc:
        return ProbeResult(
            id="state-registry",
            category="state",
            status=ProbeStatus.RED,
            impact=DoctorImpact.ENVIRONMENT,
            message=f"Registry unreadable: {exc}",
            remediation=f"Inspect {context.registry.root} for a malformed vhosts.yml.",
        )
    return _green(
        "state-registry",
        "state",
        f"Registry readable ({len(tracked)} vhost(s) tracked).",
        data={"root": str(context.registry.root), "count": len(tracked)},
    )


# ---------------------------------------------------------------------------
# Backend probes
# ---------------------------------------------------------------------------


def _backend_probes() -> Sequence[ProbeDefinition]:
    return (_make_probe("backend-syntax", "backend", _probe_backend_syntax),)


def _probe_backend_syntax(context: ProbeContext) -> ProbeResult:
    name = context.driver.name
    try:
        context.driver.validate()
    except VHostError as exc:
        return ProbeResult(
            id="backend-syntax",
            category="backend",
            status=ProbeStatus.RED,
            impact=DoctorImpact.PROVIDER,
            message=f"{name} configuration syntax error.",
            data={"output": exc.detail or str(exc)},
        )
    return _green("backend-syntax", "backend", f"{name} configuration syntax OK.")


# ---------------------------------------------------------------------------
# PHP-FPM and TLS probes
# ---------------------------------------------------------------------------


def _php_probes() -> Sequence[ProbeDefinition]:
    return (_make_probe("php-fpm", "php", _probe_php_fpm),)


def _php_fpm_running(context: ProbeContext, version: str) -> bool:
    if context.systemd.is_active(f"php{version}-fpm"):
        return True
    return (context.php_socket_dir / f"php{version}-fpm.sock").exists()


def _probe_php_fpm(context: ProbeContext) -> ProbeResult:
    for version in PHP_FPM_VERSIONS:
        if _php_fpm_running(context, version):
            return _green("php-fpm", "php", f"PHP-FPM {version} running.", data={"version": version})
    needed = sorted(
        {vhost.php_version or "" for vhost in _tracked_vhosts(context) if vhost.kind.requires_php}
    )
    if needed:
        return ProbeResult(
            id="php-fpm",
            category="php",
            status=ProbeStatus.RED,
            impact=DoctorImpact.ENVIRONMENT,
            message="PHP-FPM not detected but PHP vhosts are configured.",
            remediation="Install and start php-fpm (e.g. apt install php8.2-fpm).",
            data={"required": needed},
        )
    return ProbeResult(
        id="php-fpm",
        category="php",
        status=ProbeStatus.YELLOW,
        impact=DoctorImpact.OK,
        message="PHP-FPM not detected.",
        warnings=("missing:php-fpm",),
    )


def _tls_probes() -> Sequence[ProbeDefinition]:
    return (_make_probe("tls-certbot", "tls", _probe_tls_certbot),)


def _probe_tls_certbot(context: ProbeContext) -> ProbeResult:
    if context.certbot.is_installed():
        return _green("tls-certbot", "tls", "Certbot installed.")
    needs_tls = any(vhost.tls for vhost in _tracked_vhosts(context))
    return ProbeResult(
        id="tls-certbot",
        category="tls",
        status=ProbeStatus.RED if needs_tls else ProbeStatus.YELLOW,
        impact=DoctorImpact.ENVIRONMENT if needs_tls else DoctorImpact.OK,
        message="Certbot not installed.",
        remediation="Install certbot (apt install certbot) to issue and renew certificates.",
        warnings=("missing:certbot",),
    )


# ---------------------------------------------------------------------------
# Per-vhost probes
# ---------------------------------------------------------------------------


def _vhost_probes(context: ProbeContext) -> Sequence[ProbeDefinition]:
    return tuple(
        _make_probe(f"vhost-{vhost.domain}", "vhost", _probe_vhost(vhost))
        for vhost in _tracked_vhosts(context)
    )


def _probe_vhost(vhost: VHost) -> Callable[[ProbeContext], ProbeResult]:
    def _run(context: ProbeContext) -> ProbeResult:
        probe_id = f"vhost-{vhost.domain}"
        facts = context.driver.diagnostics(vhost.domain)
        issues: list[str] = []
        impact = DoctorImpact.OK

        if facts["integrity"] == "not-a-symlink":
            issues.append(f"{facts['enabled_path']} is not a symbolic link")
            impact = DoctorImpact.PROVIDER
        elif facts["integrity"] != "ok":
            issues.append(f"activation link is {facts['integrity']}")
        if not facts["config_exists"]:
            issues.append("config file missing")
        if facts["enabled"] != vhost.activated:
            issues.append(
                f"enabled mismatch (registry: {vhost.activated}, actual: {facts['enabled']})"
            )
        if vhost.root and not Path(vhost.root).is_dir():
            issues.append(f"document root {vhost.root} missing")
        if vhost.tls:
            issues.extend(_tls_issues(context, vhost))

        data = {key: str(value) for key, value in facts.items()}
        if not issues:
            return _green(probe_id, "vhost", f"{vhost.domain} OK.", data=data)
        return ProbeResult(
            id=probe_id,
            category="vhost",
            status=ProbeStatus.RED if impact is DoctorImpact.PROVIDER else ProbeStatus.YELLOW,
            impact=impact,
            message=f"{vhost.domain}: {'; '.join(issues)}",
            remediation="Run `vhostctl sync` to refresh registry flags.",
            data=data,
            warnings=tuple(issues),
        )

    return _run


def _tls_issues(context: ProbeContext, vhost: VHost) -> list[str]:
    issues: list[str] = []
    for label, value in (("certificate", vhost.tls_cert), ("key", vhost.tls_key)):
        if not value or not Path(value).is_file():
            issues.append(f"TLS {label} file missing")
    if issues or not vhost.tls_cert:
        return issues
    try:
        expiry = certificate_expiry(Path(vhost.tls_cert))
    except (OSError, ValueError) as exc:
        return [f"TLS certificate unreadable: {exc}"]
    remaining = days_remaining(expiry, now=datetime.now(UTC))
    if remaining < 0:
        issues.append(f"TLS certificate expired on {expiry.date().isoformat()}")
    elif remaining <= context.config.tls.warn_expiry_days:
        issues.append(f"TLS certificate expires in {remaining} day(s)")
    return issues


__all__ = ["PHP_FPM_VERSIONS", "collect_probes"]
