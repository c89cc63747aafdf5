"""Lifecycle workflows for managed vhosts.

Each workflow sequences driver operations in a fixed order and keeps a stack
of compensating actions. When a step fails after the filesystem has been
touched, the stack is unwound (last in, first out) before the original error
is re-raised; rollback failures are attached to that error as warnings.

Reloads are only issued after the backend's own syntax check has passed. A
caller that skips the check also skips the reload.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from pathlib import Path

from .errors import (
    AlreadyExistsError,
    NotFoundError,
    RegistryError,
    ReloadError,
    VHostError,
)
from .models import VHost
from .providers.base import SiteDriver
from .state import StateRegistry
from .templates import TemplateEngine

_LOG = logging.getLogger(__name__)


@dataclass(slots=True)
class Step:
    """One recorded workflow step."""

    name: str
    status: str = "success"
    detail: str | None = None


@dataclass(slots=True)
class LifecycleResult:
    """Outcome of a successful (or cancelled) workflow."""

    domain: str
    action: str
    vhost: VHost | None = None
    steps: list[Step] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    dry_run: bool = False
    cancelled: bool = False
    changed: int = 0

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        """Record a step; successful steps count as changes."""
        self.steps.append(Step(name, status, str(detail) if detail is not None else None))
        if status == "success" and not self.dry_run:
            self.changed += 1

    def plan(self, name: str, detail: object = None) -> None:
        """Record a step that a dry run would perform."""
        self.add_step(name, status="planned", detail=detail)


class Rollback:
    """Ordered stack of compensating actions."""

    def __init__(self) -> None:
        """Start with an empty stack."""
        self._actions: list[tuple[str, Callable[[], object]]] = []

    def push(self, name: str, action: Callable[[], object]) -> None:
        """Register *action* to undo the step just performed."""
        self._actions.append((name, action))

    def run(self) -> list[str]:
        """Run all actions newest first and return warnings for those that failed."""
        warnings: list[str] = []
        while self._actions:
            name, action = self._actions.pop()
            _LOG.debug("rollback: %s", name)
            try:
                action()
            except (VHostError, OSError) as exc:
                warnings.append(f"rollback {name} failed: {exc}")
        return warnings


@dataclass(slots=True)
class VHostStatus:
    """Merged registry and on-disk view of one domain."""

    domain: str
    kind: str
    active: bool
    registered: bool
    config_exists: bool
    tls: bool = False
    registry_active: bool | None = None
    vhost: VHost | None = None

    @property
    def drift(self) -> bool:
        """Return ``True`` when the registry flag disagrees with the driver."""
        return self.registry_active is not None and self.registry_active != self.active

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation."""
        return {
            "domain": self.domain,
            "type": self.kind,
            "enabled": self.active,
            "registered": self.registered,
            "config_exists": self.config_exists,
            "ssl": self.tls,
            "drift": self.drift,
        }


@dataclass(slots=True)
class Lifecycle:
    """Run vhost workflows against one backend driver."""

    driver: SiteDriver
    templates: TemplateEngine
    registry: StateRegistry

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------
    def render(self, vhost: VHost) -> str:
        """Return the configuration text for *vhost* on this backend."""
        return self.templates.render_vhost(self.driver.kind, vhost)

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------
    def add(
        self,
        vhost: VHost,
        *,
        test: bool = True,
        reload: bool = True,
        dry_run: bool = False,
    ) -> LifecycleResult:
        """Write, activate, test, reload and register a new vhost."""
        domain = vhost.domain
        if self.registry.get_vhost(domain) is not None:
            raise AlreadyExistsError("already exists in registry", domain=domain, action="add")
        if self.driver.exists(domain):
            raise AlreadyExistsError(
                f"config file already exists: {self.driver.config_path(domain)}",
                domain=domain,
                action="add",
            )
        with _annotated(domain, "add"):
            text = self.render(vhost)

        result = LifecycleResult(domain=domain, action="add", vhost=vhost, dry_run=dry_run)
        if dry_run:
            result.plan("config.write", self.driver.config_path(domain))
            if vhost.root:
                result.plan("root.create", vhost.root)
            result.plan("link.create", self.driver.enabled_path(domain))
            self._plan_apply(result, test=test, reload=reload)
            result.plan("registry.update", domain)
            return result

        self._apply(vhost, text, result, previous=None, test=test, reload=reload)
        return result

    def enable(
        self,
        domain: str,
        *,
        test: bool = True,
        reload: bool = True,
        dry_run: bool = False,
    ) -> LifecycleResult:
        """Activate a previously disabled vhost."""
        result = LifecycleResult(domain=domain, action="enable", dry_run=dry_run)
        if dry_run:
            result.plan("link.create", self.driver.enabled_path(domain))
            self._plan_apply(result, test=test, reload=reload)
            return result

        with _annotated(domain, "enable"):
            self.driver.activate(domain)
        result.add_step("link.create", detail=self.driver.enabled_path(domain))

        rollback = Rollback()
        rollback.push("link.remove", lambda: self.driver.deactivate(domain))
        try:
            self._test(result, test=test)
        except VHostError as exc:
            exc.warnings.extend(rollback.run())
            _annotate(exc, domain, "enable")
            raise

        reload_error = self._reload_capturing(result, test=test, reload=reload)
        self._update_registry_flag(result, domain, active=True)
        _raise_reload(reload_error, result, domain, "enable")
        return result

    def disable(
        self,
        domain: str,
        *,
        reload: bool = True,
        dry_run: bool = False,
    ) -> LifecycleResult:
        """Deactivate a vhost; post-change test and reload failures are warnings."""
        result = LifecycleResult(domain=domain, action="disable", dry_run=dry_run)
        if dry_run:
            result.plan("link.remove", self.driver.enabled_path(domain))
            self._plan_apply(result, test=True, reload=reload)
            return result

        with _annotated(domain, "disable"):
            self.driver.deactivate(domain)
        result.add_step("link.remove", detail=self.driver.enabled_path(domain))
        self._best_effort_apply(result, reload=reload)
        self._update_registry_flag(result, domain, active=False)
        return result

    def remove(
        self,
        domain: str,
        *,
        force: bool = False,
        confirm: Callable[[str], bool] | None = None,
        reload: bool = True,
        dry_run: bool = False,
    ) -> LifecycleResult:
        """Delete a vhost's configuration and registry entry."""
        if not self.driver.exists(domain):
            raise NotFoundError(
                f"config file not found: {self.driver.config_path(domain)}",
                domain=domain,
                action="remove",
            )
        result = LifecycleResult(domain=domain, action="remove", dry_run=dry_run)
        if dry_run:
            if self.driver.is_active(domain):
                result.plan("link.remove", self.driver.enabled_path(domain))
            result.plan("config.delete", self.driver.config_path(domain))
            self._plan_apply(result, test=True, reload=reload)
            result.plan("registry.remove", domain)
            return result

        if not force and (confirm is None or not confirm(domain)):
            result.cancelled = True
            result.add_step("confirm", status="cancelled")
            return result

        was_active = self.driver.is_active(domain)
        with _annotated(domain, "remove"):
            self.driver.delete_config(domain)
        if was_active:
            result.add_step("link.remove", detail=self.driver.enabled_path(domain))
        result.add_step("config.delete", detail=self.driver.config_path(domain))
        self._best_effort_apply(result, reload=reload)

        try:
            if self.registry.get_vhost(domain) is not None:
                self.registry.remove_vhost(domain)
                result.add_step("registry.remove", detail=domain)
            else:
                result.add_step("registry.remove", status="skipped", detail="not registered")
        except RegistryError as exc:
            result.add_step("registry.remove", status="warning", detail=str(exc))
            result.warnings.append(f"vhost removed but registry update failed: {exc}")
        return result

    def install_tls(
        self,
        domain: str,
        cert_path: Path | str,
        key_path: Path | str,
        *,
        test: bool = True,
        reload: bool = True,
    ) -> LifecycleResult:
        """Re-render and re-apply *domain* with TLS certificate paths populated."""
        current = self.registry.get_vhost(domain)
        if current is None:
            raise NotFoundError("not found in registry", domain=domain, action="ssl install")
        updated = replace(current, tls=True, tls_cert=str(cert_path), tls_key=str(key_path))
        with _annotated(domain, "ssl install"):
            previous = self.driver.read_config(domain)
            text = self.render(updated)

        result = LifecycleResult(domain=domain, action="ssl install", vhost=updated)
        self._apply(updated, text, result, previous=previous, test=test, reload=reload)
        return result

    def verify_edit(
        self,
        domain: str,
        previous: str,
        *,
        reload: bool = True,
    ) -> LifecycleResult:
        """Test an operator-edited config, restoring *previous* when the test fails."""
        result = LifecycleResult(domain=domain, action="edit")
        with _annotated(domain, "edit"):
            current = self.driver.read_config(domain)
        if current == previous:
            result.add_step("config.edit", status="unchanged")
            return result
        result.add_step("config.edit", detail=self.driver.config_path(domain))

        path = self.driver.config_path(domain)
        rollback = Rollback()
        rollback.push("config.restore", lambda: path.write_text(previous, encoding="utf-8"))
        try:
            self._test(result, test=True)
        except VHostError as exc:
            exc.warnings.extend(rollback.run())
            _annotate(exc, domain, "edit")
            raise
        reload_error = self._reload_capturing(result, test=True, reload=reload)
        _raise_reload(reload_error, result, domain, "edit")
        return result

    def sync(self, *, dry_run: bool = False) -> LifecycleResult:
        """Rewrite registry activation flags from the driver's on-disk state."""
        result = LifecycleResult(domain="*", action="sync", dry_run=dry_run)
        tracked = self.registry.load()
        corrected: list[VHost] = []
        for status in self.inventory(tracked):
            if not status.registered:
                result.warnings.append(f"{status.domain}: config on disk is not registered")
                continue
            if not status.config_exists:
                result.warnings.append(f"{status.domain}: registered but config file is missing")
            if status.drift and status.vhost is not None:
                status.vhost.activated = status.active
                corrected.append(status.vhost)
                detail = f"{status.domain}: enabled={status.active}"
                if dry_run:
                    result.plan("registry.update", detail)
                else:
                    result.add_step("registry.update", detail=detail)
        if corrected and not dry_run:
            try:
                self.registry.save(tracked.values())
            except RegistryError as exc:
                exc.action = "sync"
                raise
        return result

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------
    def inventory(self, tracked: dict[str, VHost] | None = None) -> list[VHostStatus]:
        """Merge registry entries with the driver listing, sorted by domain."""
        if tracked is None:
            tracked = self.registry.load()
        on_disk = set(self.driver.list())
        rows: list[VHostStatus] = []
        for domain in sorted(on_disk | set(tracked)):
            vhost = tracked.get(domain)
            rows.append(
                VHostStatus(
                    domain=domain,
                    kind=vhost.kind.value if vhost else "unknown",
                    active=self.driver.is_active(domain),
                    registered=vhost is not None,
                    config_exists=domain in on_disk,
                    tls=vhost.tls if vhost else False,
                    registry_active=vhost.activated if vhost else None,
                    vhost=vhost,
                )
            )
        return rows

    def status(self, domain: str) -> VHostStatus:
        """Return the merged view for a single domain."""
        vhost = self.registry.get_vhost(domain)
        exists = self.driver.exists(domain)
        if vhost is None and not exists:
            raise NotFoundError("not found", domain=domain, action="show")
        return VHostStatus(
            domain=domain,
            kind=vhost.kind.value if vhost else "unknown",
            active=self.driver.is_active(domain),
            registered=vhost is not None,
            config_exists=exists,
            tls=vhost.tls if vhost else False,
            registry_active=vhost.activated if vhost else None,
            vhost=vhost,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _apply(
        self,
        vhost: VHost,
        text: str,
        result: LifecycleResult,
        *,
        previous: str | None,
        test: bool,
        reload: bool,
    ) -> None:
        domain = vhost.domain
        rollback = Rollback()
        try:
            path = self.driver.write_config(vhost, text)
            result.add_step("config.write", detail=path)
            if previous is None:
                rollback.push("config.delete", lambda: self.driver.discard_config(domain))
            else:
                rollback.push(
                    "config.restore", lambda: self.driver.write_config(vhost, previous)
                )

            if previous is None or not self.driver.is_active(domain):
                self.driver.activate(domain)
                result.add_step("link.create", detail=self.driver.enabled_path(domain))
                rollback.push("link.remove", lambda: self.driver.deactivate(domain))

            self._test(result, test=test)
        except VHostError as exc:
            exc.warnings.extend(rollback.run())
            _annotate(exc, domain, result.action)
            raise

        vhost.activated = True
        reload_error = self._reload_capturing(result, test=test, reload=reload)
        try:
            self.registry.upsert_vhost(vhost)
            result.add_step("registry.update", detail=domain)
        except RegistryError as exc:
            result.add_step("registry.update", status="warning", detail=str(exc))
            result.warnings.append(f"vhost is live but registry update failed: {exc}")
        _raise_reload(reload_error, result, domain, result.action)

    def _test(self, result: LifecycleResult, *, test: bool) -> None:
        if not test:
            result.add_step("test", status="skipped", detail="skipped by request")
            return
        self.driver.validate()
        result.add_step("test", detail=self.driver.name)

    def _reload_capturing(
        self, result: LifecycleResult, *, test: bool, reload: bool
    ) -> ReloadError | None:
        if not reload:
            result.add_step("reload", status="skipped", detail="skipped by request")
            return None
        if not test:
            result.add_step("reload", status="skipped", detail="configuration was not tested")
            result.warnings.append(
                f"{self.driver.name} was not reloaded because the configuration test was skipped"
            )
            return None
        try:
            self.driver.reload()
        except ReloadError as exc:
            result.add_step("reload", status="error", detail=str(exc))
            return exc
        result.add_step("reload", detail=self.driver.name)
        return None

    def _best_effort_apply(self, result: LifecycleResult, *, reload: bool) -> None:
        try:
            self._test(result, test=True)
        except VHostError as exc:
            result.add_step("test", status="warning", detail=str(exc))
            result.warnings.append(f"post-{result.action} check failed: {exc}")
            if reload:
                result.add_step("reload", status="skipped", detail="configuration test failed")
            return
        reload_error = self._reload_capturing(result, test=True, reload=reload)
        if reload_error is not None:
            result.warnings.append(f"post-{result.action} reload failed: {reload_error}")

    def _update_registry_flag(self, result: LifecycleResult, domain: str, *, active: bool) -> None:
        try:
            if self.registry.get_vhost(domain) is None:
                result.add_step("registry.update", status="skipped", detail="not registered")
                return
            self.registry.update_vhost(domain, {"enabled": active})
        except RegistryError as exc:
            result.add_step("registry.update", status="warning", detail=str(exc))
            result.warnings.append(f"vhost {result.action}d but registry update failed: {exc}")
            return
        result.add_step("registry.update", detail=f"enabled={active}")

    def _plan_apply(self, result: LifecycleResult, *, test: bool, reload: bool) -> None:
        if test:
            result.plan("test", self.driver.name)
        if reload and test:
            result.plan("reload", self.driver.name)


def _annotate(exc: VHostError, domain: str, action: str) -> VHostError:
    """Name the workflow *action* on *exc* and fill in a missing domain."""
    if exc.domain is None:
        exc.domain = domain
    exc.action = action
    return exc


@contextmanager
def _annotated(domain: str, action: str) -> Iterator[None]:
    """Attach *domain* and *action* to any :class:`VHostError` raised inside."""
    try:
        yield
    except VHostError as exc:
        _annotate(exc, domain, action)
        raise


def _raise_reload(
    error: ReloadError | None, result: LifecycleResult, domain: str, action: str
) -> None:
    if error is None:
        return
    error.warnings.extend(result.warnings)
    raise _annotate(error, domain, action)


__all__ = [
    "Lifecycle",
    "LifecycleResult",
    "Rollback",
    "Step",
    "VHostStatus",
]
