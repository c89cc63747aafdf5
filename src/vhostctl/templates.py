"""Jinja2 template engine for backend configuration files.

Built-in templates live in ``vhostctl/templates/<backend>/<kind>.conf.j2``.
An operator override directory (``templates_dir`` in the config) may shadow
any of them by providing a file with the same relative name.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import (
    ChoiceLoader,
    Environment,
    FileSystemLoader,
    PackageLoader,
    StrictUndefined,
    TemplateError,
    TemplateNotFound,
)

from .errors import RenderError, TemplateNotFoundError
from .models import BackendKind, VHost


def template_name(backend: BackendKind, vhost: VHost) -> str:
    """Return the template name for the (backend, kind) pair."""
    return f"{backend.value}/{vhost.kind.value}.conf.j2"


@dataclass(slots=True)
class TemplateEngine:
    """Render configuration text from packaged or overridden templates."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Create an engine whose templates may be shadowed by *override_dir*."""
        loaders: list[FileSystemLoader | PackageLoader] = []
        if override_dir is not None and Path(override_dir).is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("vhostctl", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        return cls(environment=environment)

    def render_to_string(self, name: str, context: Mapping[str, object]) -> str:
        """Render template *name* with *context*."""
        template = self.environment.get_template(name)
        return template.render(**dict(context))

    def render_vhost(self, backend: BackendKind, vhost: VHost) -> str:
        """Return the configuration text for *vhost* on *backend*.

        Pure function of its inputs: PHP versions must already be defaulted by
        the caller. Unknown template pairs raise :class:`TemplateNotFoundError`
        and any substitution failure raises :class:`RenderError`.
        """
        name = template_name(backend, vhost)
        if vhost.kind.requires_php and not vhost.php_version:
            raise RenderError(
                "PHP version is required to render this template",
                domain=vhost.domain,
                action="render",
            )
        if vhost.tls and not (vhost.tls_cert and vhost.tls_key):
            raise RenderError(
                "TLS is enabled but certificate paths are missing",
                domain=vhost.domain,
                action="render",
            )
        try:
            return self.render_to_string(name, vhost_context(vhost))
        except TemplateNotFound as exc:
            raise TemplateNotFoundError(
                f"template not found: {backend.value}/{vhost.kind.value}",
                domain=vhost.domain,
                action="render",
            ) from exc
        except TemplateError as exc:
            raise RenderError(
                "failed to render template",
                domain=vhost.domain,
                action="render",
                detail=str(exc),
            ) from exc


def vhost_context(vhost: VHost) -> dict[str, object]:
    """Return the substitution fields exposed to templates."""
    return {
        "domain": vhost.domain,
        "root": vhost.root or "",
        "proxy_pass": vhost.proxy_pass or "",
        "php_version": vhost.php_version or "",
        "ssl": vhost.tls,
        "ssl_cert": vhost.tls_cert or "",
        "ssl_key": vhost.tls_key or "",
    }


__all__ = ["TemplateEngine", "template_name", "vhost_context"]
