"""Caddy driver: site blocks imported from sites-enabled by the main Caddyfile."""
from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from ..models import BackendKind
from .base import SiteDriver

_LOG_OUTPUT = re.compile(r"^\s*output\s+file\s+(\S+)", re.MULTILINE)


@dataclass(slots=True)
class CaddyDriver(SiteDriver):
    """Manage Caddy site blocks."""

    caddy_bin: str = "caddy"
    caddyfile: Path = Path("/etc/caddy/Caddyfile")

    kind: ClassVar[BackendKind] = BackendKind.CADDY
    service: ClassVar[str] = "caddy"

    def validate_command(self) -> Sequence[str]:
        """Return ``caddy validate --config <Caddyfile>``."""
        return [self.caddy_bin, "validate", "--config", str(self.caddyfile)]

    def fallback_reload_command(self) -> Sequence[str]:
        """Return ``caddy reload --config <Caddyfile>``."""
        return [self.caddy_bin, "reload", "--config", str(self.caddyfile)]

    def log_patterns(self) -> tuple[re.Pattern[str], re.Pattern[str]]:
        """Caddy writes one combined log per site."""
        return _LOG_OUTPUT, _LOG_OUTPUT

    def default_log_paths(self, domain: str) -> tuple[Path, Path]:
        """Return ``/var/log/caddy/<domain>.log`` for both streams."""
        path = Path("/var/log/caddy") / f"{domain}.log"
        return path, path


__all__ = ["CaddyDriver"]
