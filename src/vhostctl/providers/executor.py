"""External command execution shared by drivers, systemd and certbot."""
from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of a single external command."""

    args: tuple[str, ...]
    returncode: int
    output: str = ""

    @property
    def ok(self) -> bool:
        """Return ``True`` when the command exited with status zero."""
        return self.returncode == 0

    @property
    def command(self) -> str:
        """Return the command line as a single string."""
        return " ".join(self.args)

    def describe(self) -> str:
        """Return ``<command> failed (exit N): <output>`` for error messages."""
        message = self.output.strip() or "no output"
        return f"{self.command} failed (exit {self.returncode}): {message}"


class CommandRunner:
    """Run external commands, capturing combined stdout and stderr."""

    def run(self, args: Sequence[str]) -> CommandResult:
        """Execute *args* and return its :class:`CommandResult`.

        A missing binary is reported as exit status 127 with the OS error text
        as output instead of raising.
        """
        command = tuple(str(arg) for arg in args)
        _LOG.debug("running %s", " ".join(command))
        try:
            completed = subprocess.run(  # noqa: S603
                list(command),
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            return CommandResult(command, 127, f"{command[0]} not found: {exc}")
        except OSError as exc:
            return CommandResult(command, 126, f"{command[0]} could not be executed: {exc}")
        return CommandResult(command, completed.returncode, completed.stdout or "")

    def which(self, name: str) -> str | None:
        """Return the absolute path of *name* on ``PATH`` if present."""
        return shutil.which(name)


__all__ = ["CommandResult", "CommandRunner"]
