"""Helpers for interacting with the vhostctl state registry.

The registry directory (``/var/lib/vhostctl/registry`` by default) stores the
YAML file ``vhosts.yml`` holding one entry per tracked vhost, keyed by domain.
Writes are atomic (temporary file + ``os.replace``) so a crash never leaves a
truncated registry behind.
"""
from __future__ import annotations

import os
import tempfile
from collections.abc import Iterable, Mapping
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:  # PyYAML is a runtime dependency declared in pyproject.toml
    import yaml
except Exception as exc:  # pragma: no cover - import failure handled in tests
    raise RuntimeError(
        "PyYAML is required to manage vhostctl state. Install with `pip install vhostctl`."
    ) from exc

from ..errors import RegistryError
from ..models import VHost

VHOSTS_FILE = "vhosts.yml"


class StateRegistryError(RegistryError):
    """Raised when state registry operations fail."""


@dataclass(frozen=True)
class StateRegistry:
    """High-level interface to the YAML registry."""

    root: Path

    def __post_init__(self) -> None:
        """Normalise the root path after initialisation."""
        object.__setattr__(self, "root", Path(self.root).expanduser())

    def ensure_root(self) -> None:
        """Create the registry directory if it does not yet exist."""
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StateRegistryError(
                f"Unable to create registry directory {self.root}: {exc}"
            ) from exc

    # ------------------------------------------------------------------
    # Public helpers
    # ------------------------------------------------------------------
    def path_for(self, name: str) -> Path:
        """Return the filesystem path for a named registry file."""
        return self.root / name

    def read(self, name: str, *, default: object | None = None) -> object | None:
        """Read a registry file, returning *default* when missing."""
        path = self.path_for(name)
        if not path.exists():
            return deepcopy(default)
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise StateRegistryError(f"Failed to parse registry file {path}: {exc}") from exc
        except OSError as exc:
            raise StateRegistryError(f"Failed to read registry file {path}: {exc}") from exc
        return data if data is not None else deepcopy(default)

    def write(self, name: str, payload: Mapping[str, object]) -> None:
        """Atomically write *payload* to the given registry file."""
        self.ensure_root()
        path = self.path_for(name)

        try:
            tmp_fd, tmp_name = tempfile.mkstemp(dir=str(self.root), prefix=f".{path.name}.")
        except OSError as exc:
            raise StateRegistryError(f"Failed to write registry file {path}: {exc}") from exc
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(tmp_fd, "w", encoding="utf-8") as handle:
                yaml.safe_dump(dict(payload), handle, sort_keys=False)
            os.replace(tmp_path, path)
            os.chmod(path, 0o640)
        except OSError as exc:
            raise StateRegistryError(f"Failed to write registry file {path}: {exc}") from exc
        finally:
            tmp_path.unlink(missing_ok=True)

    # Convenience wrappers -------------------------------------------------
    def read_vhosts(self) -> dict[str, dict[str, Any]]:
        """Return registry entries keyed by domain (empty mapping if missing)."""
        value = self.read(VHOSTS_FILE, default={"vhosts": {}})
        if not isinstance(value, Mapping):
            raise StateRegistryError(f"Registry file {self.path_for(VHOSTS_FILE)} is malformed.")
        raw = value.get("vhosts") or {}
        if not isinstance(raw, Mapping):
            raise StateRegistryError("Registry 'vhosts' section must be a mapping.")
        entries: dict[str, dict[str, Any]] = {}
        for domain, entry in raw.items():
            if not isinstance(entry, Mapping):
                raise StateRegistryError(f"Registry entry for '{domain}' must be a mapping.")
            normalized = dict(entry)
            normalized.setdefault("domain", str(domain))
            entries[str(domain)] = normalized
        return entries

    def write_vhosts(self, entries: Mapping[str, Mapping[str, object]]) -> None:
        """Persist vhost entries to ``vhosts.yml`` sorted by domain."""
        ordered = {domain: dict(entries[domain]) for domain in sorted(entries)}
        self.write(VHOSTS_FILE, {"vhosts": ordered})

    def load(self) -> dict[str, VHost]:
        """Return tracked vhosts as :class:`VHost` objects keyed by domain."""
        return {
            domain: VHost.from_mapping(entry) for domain, entry in self.read_vhosts().items()
        }

    def save(self, vhosts: Iterable[VHost]) -> None:
        """Replace the registry contents with *vhosts*."""
        self.write_vhosts({vhost.domain: vhost.to_dict() for vhost in vhosts})

    # VHost helpers -------------------------------------------------------
    def get_vhost(self, domain: str) -> VHost | None:
        """Return the tracked vhost for *domain* if registered."""
        entry = self.read_vhosts().get(_normalize_domain(domain))
        return VHost.from_mapping(entry) if entry is not None else None

    def upsert_vhost(self, vhost: VHost) -> None:
        """Add or replace the entry for ``vhost.domain``."""
        entries = self.read_vhosts()
        entries[vhost.domain] = vhost.to_dict()
        self.write_vhosts(entries)

    def update_vhost(self, domain: str, updates: Mapping[str, object]) -> None:
        """Apply *updates* to the registered vhost for *domain*."""
        key = _normalize_domain(domain)
        entries = self.read_vhosts()
        if key not in entries:
            raise StateRegistryError(f"VHost '{key}' not found in registry")
        merged = dict(entries[key])
        merged.update(updates)
        entries[key] = merged
        self.write_vhosts(entries)

    def remove_vhost(self, domain: str) -> None:
        """Remove the entry for *domain* from the registry."""
        key = _normalize_domain(domain)
        entries = self.read_vhosts()
        if key not in entries:
            raise StateRegistryError(f"VHost '{key}' not found in registry")
        del entries[key]
        self.write_vhosts(entries)


def _normalize_domain(domain: str) -> str:
    normalized = domain.strip().lower()
    if not normalized:
        raise StateRegistryError("Domain must be a non-empty string.")
    return normalized


__all__ = ["StateRegistry", "StateRegistryError", "VHOSTS_FILE"]
