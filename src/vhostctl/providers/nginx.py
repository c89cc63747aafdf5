"""Nginx driver: bare-domain filenames under sites-available/sites-enabled."""
from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from ..models import BackendKind
from .base import SiteDriver

_ACCESS_LOG = re.compile(r"^\s*access_log\s+([^\s;]+)", re.MULTILINE)
_ERROR_LOG = re.compile(r"^\s*error_log\s+([^\s;]+)", re.MULTILINE)


@dataclass(slots=True)
class NginxDriver(SiteDriver):
    """Manage nginx server blocks."""

    nginx_bin: str = "nginx"

    kind: ClassVar[BackendKind] = BackendKind.NGINX
    service: ClassVar[str] = "nginx"

    def validate_command(self) -> Sequence[str]:
        """Return ``nginx -t``."""
        return [self.nginx_bin, "-t"]

    def fallback_reload_command(self) -> Sequence[str]:
        """Return ``nginx -s reload``."""
        return [self.nginx_bin, "-s", "reload"]

    def log_patterns(self) -> tuple[re.Pattern[str], re.Pattern[str]]:
        """Match ``access_log`` and ``error_log`` directives."""
        return _ACCESS_LOG, _ERROR_LOG

    def default_log_paths(self, domain: str) -> tuple[Path, Path]:
        """Return ``/var/log/nginx/<domain>-{access,error}.log``."""
        base = Path("/var/log/nginx")
        return base / f"{domain}-access.log", base / f"{domain}-error.log"


__all__ = ["NginxDriver"]
