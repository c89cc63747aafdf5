"""Operator input validation performed before any filesystem change."""
from __future__ import annotations

import os
import re
from datetime import UTC, datetime
from urllib.parse import urlsplit

from .errors import ValidationError
from .models import VHost, VHostKind

MAX_DOMAIN_LENGTH = 253

_LABEL = r"[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?"
_DOMAIN_PATTERN = re.compile(rf"^({_LABEL}\.)*{_LABEL}$")
_TRAVERSAL_SEQUENCES = ("../", "..\\", "./", ".\\")
_SHELL_METACHARACTERS = frozenset(";|&$`<>\n\r")


def validate_domain(value: str) -> str:
    """Validate and normalise a domain name."""
    if not value:
        raise ValidationError("domain cannot be empty")
    if value.strip() != value:
        raise ValidationError("domain cannot contain leading or trailing whitespace")
    if " " in value:
        raise ValidationError("domain cannot contain spaces")
    if len(value) > MAX_DOMAIN_LENGTH:
        raise ValidationError(
            f"domain exceeds maximum length of {MAX_DOMAIN_LENGTH} characters"
        )
    if _contains_traversal(value):
        raise ValidationError("domain contains invalid path traversal sequences")
    if any(char in _SHELL_METACHARACTERS for char in value):
        raise ValidationError("domain contains invalid shell metacharacters")
    if "\x00" in value:
        raise ValidationError("domain contains null byte")
    if value.startswith("-") or value.endswith("-"):
        raise ValidationError("domain cannot start or end with hyphen")
    normalised = value.lower()
    if not _DOMAIN_PATTERN.fullmatch(normalised):
        raise ValidationError(
            "invalid domain format: must contain only letters, numbers, hyphens, and dots"
        )
    return normalised


def validate_root(value: str) -> str:
    """Validate a document root path (absolute and canonical)."""
    if "\x00" in value:
        raise ValidationError("root path contains null byte")
    if not os.path.isabs(value):
        raise ValidationError(f"root path must be absolute: {value}")
    if _contains_traversal(value):
        raise ValidationError(f"root path contains invalid traversal sequences: {value}")
    cleaned = os.path.normpath(value)
    if cleaned != value:
        raise ValidationError(
            f"root path contains invalid sequences: use {cleaned} instead of {value}"
        )
    return value


def validate_proxy_url(value: str) -> str:
    """Validate a proxy target, accepting bare ``host:port`` values."""
    candidate = value.strip()
    if not candidate:
        raise ValidationError("proxy URL cannot be empty")
    if "://" not in candidate:
        candidate = f"http://{candidate}"
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as exc:
        raise ValidationError(f"invalid proxy URL: {exc}") from exc
    if parts.scheme not in {"http", "https"}:
        raise ValidationError(f"invalid proxy URL scheme: {parts.scheme}")
    if not parts.hostname:
        raise ValidationError(f"invalid proxy URL: missing host in {value}")
    if port is not None and not 0 < port < 65536:
        raise ValidationError(f"invalid proxy URL port: {port}")
    return candidate


def build_vhost(
    domain: str,
    kind: str | VHostKind,
    *,
    root: str | None = None,
    proxy_pass: str | None = None,
    php_version: str | None = None,
    default_php: str = "8.2",
    tls: bool = False,
) -> VHost:
    """Return a validated :class:`VHost` ready for the add workflow."""
    normalised_domain = validate_domain(domain)
    vhost_kind = VHostKind.parse(kind)

    if vhost_kind.requires_root:
        if not root:
            raise ValidationError(f"--root is required for type {vhost_kind.value}")
        if proxy_pass:
            raise ValidationError(
                f"--proxy is only valid for type proxy, not {vhost_kind.value}"
            )
        root = validate_root(root)
    else:
        if not proxy_pass:
            raise ValidationError("--proxy is required for type proxy")
        if root:
            raise ValidationError("--root cannot be combined with type proxy")
        proxy_pass = validate_proxy_url(proxy_pass)

    if vhost_kind.requires_php:
        php_version = (php_version or default_php).strip()
        if not re.fullmatch(r"\d+(\.\d+)*", php_version):
            raise ValidationError(f"invalid PHP version: {php_version}")
    elif php_version:
        raise ValidationError(f"--php is not applicable to type {vhost_kind.value}")

    vhost = VHost(
        domain=normalised_domain,
        kind=vhost_kind,
        root=root or None,
        proxy_pass=proxy_pass or None,
        php_version=php_version or None,
        tls=tls,
        activated=False,
        created_at=datetime.now(UTC),
    )
    vhost.check_invariants()
    return vhost


def _contains_traversal(value: str) -> bool:
    return any(sequence in value for sequence in _TRAVERSAL_SEQUENCES)


__all__ = [
    "MAX_DOMAIN_LENGTH",
    "build_vhost",
    "validate_domain",
    "validate_proxy_url",
    "validate_root",
]
