"""Systemd provider used for web server reloads and service status."""
from __future__ import annotations

from dataclasses import dataclass, field

from .executor import CommandResult, CommandRunner


@dataclass(slots=True)
class SystemdProvider:
    """Thin wrapper around ``systemctl`` for web server services."""

    runner: CommandRunner = field(default_factory=CommandRunner)
    systemctl_bin: str = "systemctl"

    def reload(self, service: str) -> CommandResult:
        """Run ``systemctl reload <service>`` and return the result."""
        return self._systemctl("reload", service)

    def is_active(self, service: str) -> bool:
        """Return ``True`` when ``systemctl is-active`` reports the unit active."""
        result = self._systemctl("is-active", service)
        return result.ok and result.output.strip() == "active"

    def available(self) -> bool:
        """Return ``True`` when the ``systemctl`` binary can be found."""
        return self.runner.which(self.systemctl_bin) is not None

    def _systemctl(self, command: str, unit: str) -> CommandResult:
        return self.runner.run([self.systemctl_bin, command, unit])


__all__ = ["SystemdProvider"]
