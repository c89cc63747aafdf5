"""Apache driver: ``<domain>.conf`` files managed a2ensite-style."""
from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import ClassVar

from ..models import BackendKind
from .base import SiteDriver

APACHE_LOG_DIR = "/var/log/apache2"

_ACCESS_LOG = re.compile(r"^\s*CustomLog\s+(\S+)", re.MULTILINE)
_ERROR_LOG = re.compile(r"^\s*ErrorLog\s+(\S+)", re.MULTILINE)


@dataclass(slots=True)
class ApacheDriver(SiteDriver):
    """Manage Apache virtual hosts."""

    apachectl_bin: str = "apache2ctl"

    kind: ClassVar[BackendKind] = BackendKind.APACHE
    suffix: ClassVar[str] = ".conf"
    service: ClassVar[str] = "apache2"

    def validate_command(self) -> Sequence[str]:
        """Return ``apache2ctl configtest``."""
        return [self.apachectl_bin, "configtest"]

    def fallback_reload_command(self) -> Sequence[str]:
        """Return ``apache2ctl graceful``."""
        return [self.apachectl_bin, "graceful"]

    def log_patterns(self) -> tuple[re.Pattern[str], re.Pattern[str]]:
        """Match ``CustomLog`` and ``ErrorLog`` directives."""
        return _ACCESS_LOG, _ERROR_LOG

    def default_log_paths(self, domain: str) -> tuple[Path, Path]:
        """Return ``/var/log/apache2/<domain>-{access,error}.log``."""
        base = Path(APACHE_LOG_DIR)
        return base / f"{domain}-access.log", base / f"{domain}-error.log"

    def expand_log_path(self, value: str) -> str:
        """Substitute ``${APACHE_LOG_DIR}`` with the Debian default."""
        return value.replace("${APACHE_LOG_DIR}", APACHE_LOG_DIR)


__all__ = ["ApacheDriver"]
