"""Error taxonomy shared by drivers, the renderer and lifecycle workflows.

Every error carries the domain and action it relates to so the CLI can report
a single message naming both. External tool output (``nginx -t`` diagnostics,
reload stderr) is attached verbatim as ``detail``. Rollback failures that
happen while handling an error are appended to ``warnings`` so the original
cause is never replaced.
"""
from __future__ import annotations

from .exit_codes import ExitCode


class VHostError(RuntimeError):
    """Base class for all vhostctl failures."""

    exit_code: ExitCode = ExitCode.PROVIDER

    def __init__(
        self,
        message: str,
        *,
        domain: str | None = None,
        action: str | None = None,
        detail: str | None = None,
    ) -> None:
        """Store the structured context alongside the message."""
        super().__init__(message)
        self.message = message
        self.domain = domain
        self.action = action
        self.detail = detail
        self.warnings: list[str] = []

    def __str__(self) -> str:
        """Return ``vhost <domain>: <action>: <message>: <detail>``."""
        parts: list[str] = []
        if self.domain:
            parts.append(f"vhost {self.domain}")
        if self.action:
            parts.append(self.action)
        parts.append(self.message)
        text = ": ".join(parts)
        detail = (self.detail or "").strip()
        if detail:
            text = f"{text}: {detail}"
        return text


class ValidationError(VHostError):
    """Raised when operator input is rejected before any state change."""

    exit_code = ExitCode.VALIDATION


class NotFoundError(VHostError):
    """Raised when a config file or registry entry does not exist."""

    exit_code = ExitCode.VALIDATION


class AlreadyExistsError(VHostError):
    """Raised when a vhost is already defined."""

    exit_code = ExitCode.VALIDATION


class AlreadyActiveError(VHostError):
    """Raised when the activation link is already present."""

    exit_code = ExitCode.VALIDATION


class NotActiveError(VHostError):
    """Raised when deactivating a vhost that has no activation link."""

    exit_code = ExitCode.VALIDATION


class IntegrityError(VHostError):
    """Raised when the activation path exists but is not a symbolic link."""


class FilesystemError(VHostError):
    """Raised when a filesystem operation fails."""


class ConfigTestError(VHostError):
    """Raised when the backend's native syntax check rejects the configuration."""


class ReloadError(VHostError):
    """Raised when neither the service manager nor the fallback reload worked."""


class TemplateNotFoundError(VHostError):
    """Raised for an unknown (backend, vhost kind) template pair."""


class RenderError(VHostError):
    """Raised when template substitution fails."""


class RegistryError(VHostError):
    """Raised when the vhost registry cannot be read or written."""

    exit_code = ExitCode.ENVIRONMENT


__all__ = [
    "AlreadyActiveError",
    "AlreadyExistsError",
    "ConfigTestError",
    "FilesystemError",
    "IntegrityError",
    "NotActiveError",
    "NotFoundError",
    "RegistryError",
    "ReloadError",
    "RenderError",
    "TemplateNotFoundError",
    "ValidationError",
    "VHostError",
]
