"""Core data types for managed virtual hosts."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

from .errors import ValidationError


class BackendKind(str, Enum):
    """Supported web server configuration conventions."""

    NGINX = "nginx"
    APACHE = "apache"
    CADDY = "caddy"

    @classmethod
    def parse(cls, value: str | BackendKind) -> BackendKind:
        """Return the backend for *value* or raise :class:`ValidationError`."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            allowed = ", ".join(kind.value for kind in cls)
            raise ValidationError(
                f"unknown backend '{value}' (available: {allowed})"
            ) from exc


class VHostKind(str, Enum):
    """Kinds of site a vhost can serve."""

    STATIC = "static"
    PHP = "php"
    PROXY = "proxy"
    LARAVEL = "laravel"
    WORDPRESS = "wordpress"

    @property
    def requires_php(self) -> bool:
        """Return ``True`` for kinds rendered with a PHP-FPM upstream."""
        return self in {VHostKind.PHP, VHostKind.LARAVEL, VHostKind.WORDPRESS}

    @property
    def requires_root(self) -> bool:
        """Return ``True`` for kinds served from a document root."""
        return self is not VHostKind.PROXY

    @classmethod
    def parse(cls, value: str | VHostKind) -> VHostKind:
        """Return the kind for *value* or raise :class:`ValidationError`."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            allowed = ", ".join(kind.value for kind in cls)
            raise ValidationError(
                f"invalid type: {value}. Valid types: {allowed}"
            ) from exc


@dataclass(frozen=True)
class BackendPaths:
    """Directory pair holding defined ("available") and live ("enabled") configs."""

    available: Path
    enabled: Path

    def __post_init__(self) -> None:
        """Normalise both paths and require them to be absolute."""
        available = Path(self.available).expanduser()
        enabled = Path(self.enabled).expanduser()
        for label, path in (("available", available), ("enabled", enabled)):
            if not path.is_absolute():
                raise ValidationError(f"paths.{label} must be an absolute path: {path}")
        if available == enabled:
            raise ValidationError(
                f"paths.available and paths.enabled must differ (both are {available})"
            )
        object.__setattr__(self, "available", available)
        object.__setattr__(self, "enabled", enabled)

    def to_dict(self) -> dict[str, str]:
        """Return a serialisable representation."""
        return {"available": str(self.available), "enabled": str(self.enabled)}


@dataclass(slots=True)
class VHost:
    """A tracked virtual host and its rendering parameters."""

    domain: str
    kind: VHostKind
    root: str | None = None
    proxy_pass: str | None = None
    php_version: str | None = None
    tls: bool = False
    tls_cert: str | None = None
    tls_key: str | None = None
    activated: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def check_invariants(self) -> None:
        """Reject root/proxy combinations that do not fit ``kind``."""
        if self.kind is VHostKind.PROXY:
            if self.root:
                raise ValidationError(
                    "proxy vhosts cannot carry a document root",
                    domain=self.domain,
                )
            if not self.proxy_pass:
                raise ValidationError(
                    "--proxy is required for type proxy",
                    domain=self.domain,
                )
            return
        if self.proxy_pass:
            raise ValidationError(
                f"only proxy vhosts accept a proxy target (type {self.kind.value})",
                domain=self.domain,
            )
        if not self.root:
            raise ValidationError(
                f"--root is required for type {self.kind.value}",
                domain=self.domain,
            )

    def to_dict(self) -> dict[str, object]:
        """Return the registry representation of this vhost."""
        payload: dict[str, object] = {
            "domain": self.domain,
            "type": self.kind.value,
        }
        if self.root:
            payload["root"] = self.root
        if self.proxy_pass:
            payload["proxy_pass"] = self.proxy_pass
        if self.php_version:
            payload["php_version"] = self.php_version
        payload["ssl"] = self.tls
        if self.tls_cert:
            payload["ssl_cert"] = self.tls_cert
        if self.tls_key:
            payload["ssl_key"] = self.tls_key
        payload["enabled"] = self.activated
        payload["created_at"] = self.created_at.isoformat()
        return payload

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> VHost:
        """Build a :class:`VHost` from a registry entry."""
        domain = str(data.get("domain") or "").strip()
        if not domain:
            raise ValidationError("registry entry is missing 'domain'")
        return cls(
            domain=domain,
            kind=VHostKind.parse(str(data.get("type", "static"))),
            root=_optional_str(data.get("root")),
            proxy_pass=_optional_str(data.get("proxy_pass")),
            php_version=_optional_str(data.get("php_version")),
            tls=bool(data.get("ssl", False)),
            tls_cert=_optional_str(data.get("ssl_cert")),
            tls_key=_optional_str(data.get("ssl_key")),
            activated=bool(data.get("enabled", False)),
            created_at=_parse_timestamp(data.get("created_at")),
        )


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_timestamp(value: object) -> datetime:
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, str) and value.strip():
        try:
            moment = datetime.fromisoformat(value.strip())
        except ValueError:
            return datetime.now(UTC)
    else:
        return datetime.now(UTC)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


__all__ = ["BackendKind", "BackendPaths", "VHost", "VHostKind"]
