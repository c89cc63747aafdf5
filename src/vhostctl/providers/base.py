"""Shared implementation of the backend driver contract.

A backend stores every defined vhost as one file in an "available" directory
and marks it live with a symbolic link of the same name in an "enabled"
directory. All backends share that behaviour; subclasses only declare their
filename suffix, systemd service and native validate/reload commands.
"""
from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from ..errors import (
    AlreadyActiveError,
    ConfigTestError,
    FilesystemError,
    IntegrityError,
    NotActiveError,
    NotFoundError,
    ReloadError,
)
from ..models import BackendKind, BackendPaths, VHost
from .executor import CommandResult, CommandRunner
from .systemd import SystemdProvider

_LOG = logging.getLogger(__name__)


@dataclass(slots=True)
class SiteDriver(ABC):
    """File-plus-symlink driver parameterised by backend specifics.

    Abstract: backends set ``kind``, ``service`` and ``suffix`` and implement
    the four command and log-path hooks below.
    """

    paths: BackendPaths
    runner: CommandRunner = field(default_factory=CommandRunner)
    systemd: SystemdProvider | None = None

    kind: ClassVar[BackendKind]
    suffix: ClassVar[str] = ""
    service: ClassVar[str]

    # ------------------------------------------------------------------
    # Backend parameters
    # ------------------------------------------------------------------
    @property
    def name(self) -> str:
        """Return the backend name (``nginx``, ``apache`` or ``caddy``)."""
        return self.kind.value

    @abstractmethod
    def validate_command(self) -> Sequence[str]:
        """Return the native syntax-check command."""

    @abstractmethod
    def fallback_reload_command(self) -> Sequence[str]:
        """Return the reload command used when systemd is unavailable."""

    @abstractmethod
    def log_patterns(self) -> tuple[re.Pattern[str], re.Pattern[str]]:
        """Return regexes capturing the access and error log paths."""

    @abstractmethod
    def default_log_paths(self, domain: str) -> tuple[Path, Path]:
        """Return the default (access, error) log paths for *domain*."""

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------
    def filename(self, domain: str) -> str:
        """Return the on-disk filename for *domain*."""
        return f"{domain}{self.suffix}"

    def config_path(self, domain: str) -> Path:
        """Return the configuration file path under "available"."""
        return self.paths.available / self.filename(domain)

    def enabled_path(self, domain: str) -> Path:
        """Return the activation link path under "enabled"."""
        return self.paths.enabled / self.filename(domain)

    def exists(self, domain: str) -> bool:
        """Return ``True`` when a configuration file is defined for *domain*."""
        return self.config_path(domain).is_file()

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------
    def write_config(self, vhost: VHost, text: str) -> Path:
        """Write *text* as the configuration for *vhost*, overwriting any previous copy."""
        destination = self.config_path(vhost.domain)
        try:
            self.paths.available.mkdir(parents=True, exist_ok=True)
            self.paths.enabled.mkdir(parents=True, exist_ok=True)
            with destination.open("w", encoding="utf-8", newline="") as handle:
                handle.write(text)
            os.chmod(destination, 0o644)
        except OSError as exc:
            raise FilesystemError(
                "failed to write config file",
                domain=vhost.domain,
                action="write",
                detail=str(exc),
            ) from exc
        if vhost.root:
            try:
                Path(vhost.root).mkdir(mode=0o755, parents=True, exist_ok=True)
            except OSError as exc:
                destination.unlink(missing_ok=True)
                raise FilesystemError(
                    "failed to create document root",
                    domain=vhost.domain,
                    action="write",
                    detail=str(exc),
                ) from exc
        _LOG.debug("%s: wrote %s", self.name, destination)
        return destination

    def delete_config(self, domain: str) -> None:
        """Remove the configuration for *domain*, deactivating it first.

        Nothing is touched when no configuration file exists.
        """
        path = self.config_path(domain)
        if not path.is_file():
            raise NotFoundError(
                f"config file not found: {path}", domain=domain, action="remove"
            )
        if self.is_active(domain):
            self.deactivate(domain)
        self.discard_config(domain)

    def discard_config(self, domain: str) -> None:
        """Unlink the configuration file only, leaving the enabled directory alone."""
        path = self.config_path(domain)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise FilesystemError(
                "failed to remove config file",
                domain=domain,
                action="remove",
                detail=str(exc),
            ) from exc
        _LOG.debug("%s: removed %s", self.name, path)

    def activate(self, domain: str) -> None:
        """Create the activation link for *domain*."""
        source = self.config_path(domain)
        target = self.enabled_path(domain)
        if not source.exists():
            raise NotFoundError(
                f"config file not found: {source}", domain=domain, action="enable"
            )
        if target.is_symlink() or target.exists():
            raise AlreadyActiveError("already enabled", domain=domain, action="enable")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.symlink_to(source)
        except OSError as exc:
            raise FilesystemError(
                "failed to create activation link",
                domain=domain,
                action="enable",
                detail=str(exc),
            ) from exc
        _LOG.debug("%s: linked %s -> %s", self.name, target, source)

    def deactivate(self, domain: str) -> None:
        """Remove the activation link for *domain*.

        A regular file or directory occupying the link location is never
        deleted; it raises :class:`IntegrityError` instead.
        """
        target = self.enabled_path(domain)
        try:
            is_link = target.is_symlink()
            present = is_link or target.exists()
        except OSError as exc:
            raise FilesystemError(
                "failed to check activation link",
                domain=domain,
                action="disable",
                detail=str(exc),
            ) from exc
        if not present:
            raise NotActiveError("not enabled", domain=domain, action="disable")
        if not is_link:
            raise IntegrityError(
                f"{target} is not a symbolic link, refusing to remove",
                domain=domain,
                action="disable",
            )
        try:
            target.unlink()
        except OSError as exc:
            raise FilesystemError(
                "failed to remove activation link",
                domain=domain,
                action="disable",
                detail=str(exc),
            ) from exc
        _LOG.debug("%s: unlinked %s", self.name, target)

    def list(self) -> list[str]:
        """Return the domains defined under "available", sorted."""
        try:
            entries = list(self.paths.available.iterdir())
        except FileNotFoundError:
            return []
        except OSError as exc:
            raise FilesystemError(
                f"failed to read {self.paths.available}", action="list", detail=str(exc)
            ) from exc
        domains: list[str] = []
        for entry in entries:
            name = entry.name
            if name.startswith(".") or entry.is_dir():
                continue
            if self.suffix:
                if not name.endswith(self.suffix):
                    continue
                name = name[: -len(self.suffix)]
            domains.append(name)
        return sorted(domains)

    def is_active(self, domain: str) -> bool:
        """Return ``True`` when anything occupies the activation path."""
        target = self.enabled_path(domain)
        try:
            os.lstat(target)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise FilesystemError(
                "failed to check activation state",
                domain=domain,
                action="status",
                detail=str(exc),
            ) from exc
        return True

    def validate(self) -> CommandResult:
        """Run the native syntax check; raise :class:`ConfigTestError` on failure."""
        result = self.runner.run(self.validate_command())
        if not result.ok:
            raise ConfigTestError(
                "configuration test failed",
                action="test",
                detail=result.output.strip() or f"exit {result.returncode}",
            )
        return result

    def reload(self) -> CommandResult:
        """Reload via systemd, falling back to the backend's own command once."""
        systemd = self.systemd or SystemdProvider(runner=self.runner)
        primary = systemd.reload(self.service)
        if primary.ok:
            return primary
        _LOG.debug("%s: systemd reload failed, trying fallback", self.name)
        fallback = self.runner.run(self.fallback_reload_command())
        if fallback.ok:
            return fallback
        raise ReloadError(
            f"failed to reload {self.name}",
            action="reload",
            detail=f"{primary.describe()}; {fallback.describe()}",
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------
    def read_config(self, domain: str) -> str:
        """Return the configuration text for *domain*."""
        path = self.config_path(domain)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise NotFoundError(
                f"config file not found: {path}", domain=domain, action="read"
            ) from exc
        except OSError as exc:
            raise FilesystemError(
                "failed to read config file", domain=domain, action="read", detail=str(exc)
            ) from exc

    def diagnostics(self, domain: str) -> dict[str, object]:
        """Return on-disk facts about *domain* for show and doctor."""
        config_path = self.config_path(domain)
        enabled_path = self.enabled_path(domain)
        link_target: str | None = None
        integrity = "ok"
        if enabled_path.is_symlink():
            link_target = os.readlink(enabled_path)
            try:
                if enabled_path.resolve(strict=True) != config_path.resolve(strict=True):
                    integrity = "foreign-link"
            except (FileNotFoundError, RuntimeError):
                integrity = "dangling-link"
        elif enabled_path.exists():
            integrity = "not-a-symlink"
        return {
            "config_path": config_path,
            "config_exists": config_path.is_file(),
            "enabled_path": enabled_path,
            "enabled": self.is_active(domain),
            "link_target": link_target,
            "integrity": integrity,
        }

    def log_paths(self, domain: str) -> tuple[Path, Path]:
        """Return (access, error) log paths parsed from the config, else defaults."""
        access, error = self.default_log_paths(domain)
        try:
            text = self.read_config(domain)
        except NotFoundError:
            return access, error
        access_pattern, error_pattern = self.log_patterns()
        access_match = access_pattern.search(text)
        error_match = error_pattern.search(text)
        if access_match:
            access = Path(self.expand_log_path(access_match.group(1)))
        if error_match:
            error = Path(self.expand_log_path(error_match.group(1)))
        return access, error

    def expand_log_path(self, value: str) -> str:
        """Expand backend-specific variables inside a log path."""
        return value


__all__ = ["SiteDriver"]
