"""Typer-powered command line interface for ``vhostctl``.

Commands resolve a :class:`RuntimeContext` once per invocation (config,
registry, structured logger, template engine and command providers) and run
inside a :meth:`StructuredLogger.operation` scope so every invocation leaves a
JSON record in ``operations.jsonl``. Backend directories are resolved lazily
because path detection can fail on hosts without a web server installed.
"""
from __future__ import annotations

import json
import logging
import os
import shlex
import shutil
import subprocess
import textwrap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .discovery import resolve_backend_paths
from .doctor import (
    PROBE_CATEGORY_VALUES,
    DoctorEngine,
    DoctorImpact,
    DoctorReport,
    ProbeContext,
    ProbeResult,
    ProbeStatus,
    collect_probes,
)
from .errors import NotFoundError, ValidationError, VHostError
from .exit_codes import ExitCode
from .lifecycle import Lifecycle, LifecycleResult, Step
from .logging import OperationScope, StructuredLogger
from .models import VHost, VHostKind
from .providers import CommandRunner, SiteDriver, SystemdProvider, create_driver
from .state import StateRegistry
from .templates import TemplateEngine
from .tls import CertbotProvider, certificate_expiry, days_remaining
from .validation import build_vhost, validate_domain

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to vhostctl's YAML config file.",
)
BACKEND_OPTION = typer.Option(
    None,
    "--backend",
    help="Override the configured backend (nginx|apache|caddy).",
)
VERBOSE_OPTION = typer.Option(
    False,
    "--verbose",
    "-v",
    help="Emit debug diagnostics on stderr.",
)

DOMAIN_ARGUMENT = typer.Argument(..., help="Domain name of the virtual host.")

NO_RELOAD_OPTION = typer.Option(
    False,
    "--no-reload",
    help="Do not reload the web server after the change.",
)
SKIP_TEST_OPTION = typer.Option(
    False,
    "--skip-test",
    help="Skip the backend configuration test (also skips the reload).",
)
DRY_RUN_OPTION = typer.Option(
    False,
    "--dry-run",
    help="Report the actions that would be taken without applying changes.",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON instead of formatted output.",
)

TYPE_OPTION = typer.Option(
    VHostKind.STATIC.value,
    "--type",
    "-t",
    help="VHost type (static, php, proxy, laravel, wordpress).",
)
ROOT_OPTION = typer.Option(None, "--root", "-r", help="Document root path.")
PROXY_OPTION = typer.Option(
    None,
    "--proxy",
    "-p",
    help="Proxy target URL or host:port (type proxy only).",
)
PHP_OPTION = typer.Option(
    None,
    "--php",
    help="PHP-FPM version (defaults to the configured default_php).",
)
SSL_OPTION = typer.Option(
    False,
    "--ssl",
    help="Issue a Let's Encrypt certificate after the vhost is live.",
)
EMAIL_OPTION = typer.Option(
    None,
    "--email",
    "-e",
    help="Contact email for Let's Encrypt (defaults to tls.email).",
)
FORCE_OPTION = typer.Option(
    False,
    "--force",
    "-f",
    help="Remove without asking for confirmation.",
)

LOGS_ACCESS_OPTION = typer.Option(False, "--access", help="Show the access log only.")
LOGS_ERROR_OPTION = typer.Option(False, "--error", help="Show the error log only.")
LOGS_FOLLOW_OPTION = typer.Option(
    False,
    "--follow",
    "-f",
    help="Follow log output (like tail -f).",
)
LOGS_LINES_OPTION = typer.Option(20, "--lines", "-n", min=1, help="Number of lines to show.")

RENEW_ALL_OPTION = typer.Option(False, "--all", help="Renew every managed certificate.")

_PROBE_CATEGORY_NAMES = ", ".join(PROBE_CATEGORY_VALUES)
_PROBE_CATEGORY_SET = set(PROBE_CATEGORY_VALUES)

DOCTOR_ONLY_OPTION = typer.Option(
    None,
    "--only",
    metavar="CATEGORY[,CATEGORY...]",
    help=f"Comma-separated probe categories to include ({_PROBE_CATEGORY_NAMES}).",
)
DOCTOR_EXCLUDE_OPTION = typer.Option(
    None,
    "--exclude",
    metavar="CATEGORY[,CATEGORY...]",
    help=f"Comma-separated probe categories to exclude ({_PROBE_CATEGORY_NAMES}).",
)

_PROBE_STATUS_STYLE = {
    ProbeStatus.GREEN: "[green]OK[/green]",
    ProbeStatus.YELLOW: "[yellow]WARN[/yellow]",
    ProbeStatus.RED: "[red]FAIL[/red]",
}
_SUMMARY_STATUS_STYLE = {
    ProbeStatus.GREEN: "[green]green[/green]",
    ProbeStatus.YELLOW: "[yellow]yellow[/yellow]",
    ProbeStatus.RED: "[red]red[/red]",
}
_DOCTOR_IMPACT_MESSAGES = {
    DoctorImpact.OK: "Doctor checks passed.",
    DoctorImpact.VALIDATION: "Doctor detected validation issues.",
    DoctorImpact.ENVIRONMENT: "Doctor detected environment issues.",
    DoctorImpact.PROVIDER: "Doctor detected web server issues.",
}

# ``tail`` exit statuses after SIGINT/SIGTERM.
_INTERRUPTED_EXIT_CODES = {130, 143}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Manage web server virtual hosts across nginx, Apache and Caddy.

        Every change is written, activated, syntax-checked and only then
        reloaded; a failed check rolls the change back.
        """
    ).strip(),
)
ssl_app = typer.Typer(help="Issue, renew and inspect TLS certificates.")
config_app = typer.Typer(help="Inspect the effective configuration.")

app.add_typer(ssl_app, name="ssl")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    registry: StateRegistry
    logger: StructuredLogger
    templates: TemplateEngine
    runner: CommandRunner
    systemd: SystemdProvider
    certbot: CertbotProvider
    _driver: SiteDriver | None = None

    def driver(self) -> SiteDriver:
        """Return the backend driver, resolving directories on first use."""
        if self._driver is None:
            paths = resolve_backend_paths(self.config)
            self._driver = create_driver(
                self.config.backend,
                paths,
                commands=self.config.commands,
                runner=self.runner,
            )
        return self._driver

    def lifecycle(self) -> Lifecycle:
        """Return a lifecycle orchestrator bound to the backend driver."""
        return Lifecycle(driver=self.driver(), templates=self.templates, registry=self.registry)


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    backend: str | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if backend is not None:
        overrides["backend"] = backend

    config = load_config(config_file=config_file, overrides=overrides)
    registry = StateRegistry(config.registry_dir)
    logger = StructuredLogger(config.logs_dir)
    templates = TemplateEngine.with_overrides(config.templates_dir)
    runner = CommandRunner()
    systemd = SystemdProvider(runner=runner, systemctl_bin=config.commands.systemctl_bin)
    certbot = CertbotProvider(
        live_dir=config.tls.live_dir,
        certbot_bin=config.tls.certbot_bin,
        runner=runner,
    )
    runtime = RuntimeContext(
        config=config,
        registry=registry,
        logger=logger,
        templates=templates,
        runner=runner,
        systemd=systemd,
        certbot=certbot,
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the vhostctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    backend: str | None = BACKEND_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")

    try:
        runtime = _ensure_runtime(ctx, config_file, backend)
    except (ConfigError, ValidationError) as exc:
        console.print(f"[red]Configuration error: {exc}[/red]")
        raise typer.Exit(code=int(ExitCode.ENVIRONMENT)) from exc

    if version:
        with runtime.logger.operation(
            "root --version",
            args={"version": True},
            target={"kind": "meta", "scope": "version"},
        ) as op:
            console.print(f"vhostctl {__version__}")
            op.success("Reported CLI version.", changed=0)
        raise typer.Exit(code=0)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = 2,
    errors: Sequence[str] | None = None,
    warnings: Sequence[str] | None = None,
) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{escape(message)}[/red]")
    for warning in warnings or ():
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
    op.error(message, errors=list(errors or [message]), warnings=warnings or None, rc=rc)
    raise typer.Exit(code=rc)


def _vhost_error(op: OperationScope, exc: VHostError) -> NoReturn:
    """Report a :class:`VHostError` (with rollback warnings) and exit."""
    _command_error(op, str(exc), rc=int(exc.exit_code), warnings=list(exc.warnings))


def _dry_run_complete(
    op: OperationScope,
    summary: str,
    *,
    context: Mapping[str, object] | None = None,
) -> None:
    """Standardise dry-run completion messaging."""
    console.print(f"[yellow]Dry run[/yellow]: {summary}")
    op.success("Dry run complete.", changed=0, context=dict(context or {}))


def _require_driver(runtime: RuntimeContext, op: OperationScope) -> SiteDriver:
    try:
        return runtime.driver()
    except (ConfigError, ValidationError) as exc:
        _command_error(op, f"Unable to resolve backend paths: {exc}", rc=int(ExitCode.ENVIRONMENT))


def _require_lifecycle(runtime: RuntimeContext, op: OperationScope) -> Lifecycle:
    _require_driver(runtime, op)
    return runtime.lifecycle()


def _require_domain(op: OperationScope, domain: str) -> str:
    try:
        return validate_domain(domain)
    except ValidationError as exc:
        _command_error(op, str(exc), rc=int(exc.exit_code))


def _result_payload(result: LifecycleResult) -> dict[str, object]:
    payload: dict[str, object] = {
        "success": True,
        "domain": result.domain,
        "action": result.action,
        "changed": result.changed,
        "dry_run": result.dry_run,
        "cancelled": result.cancelled,
        "steps": [
            {"name": step.name, "status": step.status, "detail": step.detail}
            for step in result.steps
        ],
        "warnings": list(result.warnings),
    }
    if result.vhost is not None:
        payload["vhost"] = result.vhost.to_dict()
    return payload


def _record_steps(op: OperationScope, result: LifecycleResult) -> None:
    for step in result.steps:
        op.add_step(step.name, status=step.status, detail=step.detail)


def _finish(
    op: OperationScope,
    result: LifecycleResult,
    message: str,
    *,
    json_output: bool = False,
) -> None:
    """Print and log the outcome of a lifecycle workflow."""
    _record_steps(op, result)
    payload = _result_payload(result)
    if result.dry_run:
        if json_output:
            console.print_json(data=payload)
        else:
            for step in result.steps:
                detail = f" ({step.detail})" if step.detail else ""
                console.print(f"  would run {step.name}{detail}")
        _dry_run_complete(op, message, context={"steps": payload["steps"]})
        return

    if json_output:
        console.print_json(data=payload)
    else:
        for warning in result.warnings:
            console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
        console.print(f"[green]{message}[/green]")
    if result.warnings:
        op.warning(message, warnings=result.warnings, changed=result.changed)
    else:
        op.success(message, changed=result.changed)


def _merge_results(primary: LifecycleResult, secondary: LifecycleResult) -> None:
    primary.steps.extend(secondary.steps)
    primary.warnings.extend(secondary.warnings)
    primary.changed += secondary.changed
    if secondary.vhost is not None:
        primary.vhost = secondary.vhost


def _webroot_for(vhost: VHost) -> str | None:
    if not vhost.root:
        return None
    if vhost.kind is VHostKind.LARAVEL:
        return str(Path(vhost.root) / "public")
    return vhost.root


def _provision_tls(
    runtime: RuntimeContext,
    lifecycle: Lifecycle,
    domain: str,
    email: str | None,
    *,
    reload: bool,
) -> LifecycleResult:
    """Issue a certificate for *domain* and re-apply its config with TLS enabled."""
    vhost = runtime.registry.get_vhost(domain)
    if vhost is None:
        raise NotFoundError("not found in registry", domain=domain, action="ssl install")
    contact = email or runtime.config.tls.email
    if not contact:
        raise ValidationError(
            "--email is required (or set tls.email in the config file)",
            domain=domain,
            action="ssl install",
        )
    paths = runtime.certbot.issue(domain, contact, webroot=_webroot_for(vhost))
    result = lifecycle.install_tls(domain, paths.certificate, paths.key, reload=reload)
    result.steps.insert(0, Step("certbot.issue", "success", str(paths.certificate)))
    result.changed += 1
    return result


def _cert_expiry_summary(path: str | None, warn_days: int) -> dict[str, object]:
    if not path:
        return {"status": "missing"}
    cert = Path(path)
    if not cert.is_file():
        return {"status": "missing", "path": path}
    try:
        expiry = certificate_expiry(cert)
    except (OSError, ValueError) as exc:
        return {"status": "unreadable", "path": path, "error": str(exc)}
    remaining = days_remaining(expiry, now=datetime.now(UTC))
    if remaining < 0:
        status = "expired"
    elif remaining <= warn_days:
        status = "expiring"
    else:
        status = "valid"
    return {
        "status": status,
        "path": path,
        "expires": expiry.isoformat(),
        "days_remaining": remaining,
    }


# ---------------------------------------------------------------------------
# Lifecycle commands
# ---------------------------------------------------------------------------


@app.command()
def add(
    ctx: typer.Context,
    domain: str = DOMAIN_ARGUMENT,
    vhost_type: str = TYPE_OPTION,
    root: str | None = ROOT_OPTION,
    proxy: str | None = PROXY_OPTION,
    php: str | None = PHP_OPTION,
    ssl: bool = SSL_OPTION,
    email: str | None = EMAIL_OPTION,
    no_reload: bool = NO_RELOAD_OPTION,
    skip_test: bool = SKIP_TEST_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Create, activate and register a new virtual host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "add",
        args={
            "domain": domain,
            "type": vhost_type,
            "root": root,
            "proxy": proxy,
            "php": php,
            "ssl": ssl,
            "no_reload": no_reload,
            "skip_test": skip_test,
            "dry_run": dry_run,
        },
        target={"kind": "vhost", "domain": domain},
    ) as op:
        try:
            vhost = build_vhost(
                domain,
                vhost_type,
                root=root,
                proxy_pass=proxy,
                php_version=php,
                default_php=runtime.config.default_php,
            )
        except ValidationError as exc:
            _vhost_error(op, exc)

        lifecycle = _require_lifecycle(runtime, op)
        try:
            result = lifecycle.add(
                vhost, test=not skip_test, reload=not no_reload, dry_run=dry_run
            )
        except VHostError as exc:
            _vhost_error(op, exc)

        if dry_run:
            if ssl:
                result.plan("certbot.issue", vhost.domain)
            _finish(
                op,
                result,
                f"VHost {vhost.domain} would be created.",
                json_output=json_output,
            )
            return

        if ssl:
            try:
                tls_result = _provision_tls(
                    runtime, lifecycle, vhost.domain, email, reload=not no_reload
                )
            except VHostError as exc:
                _record_steps(op, result)
                _command_error(
                    op,
                    f"VHost {vhost.domain} created but TLS setup failed: {exc}",
                    rc=int(exc.exit_code),
                    warnings=list(exc.warnings),
                )
            _merge_results(result, tls_result)

        _finish(op, result, f"VHost {vhost.domain} created.", json_output=json_output)


@app.command("remove")
def remove(
    ctx: typer.Context,
    domain: str = DOMAIN_ARGUMENT,
    force: bool = FORCE_OPTION,
    no_reload: bool = NO_RELOAD_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Delete a virtual host configuration and its registry entry."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "remove",
        args={"domain": domain, "force": force, "no_reload": no_reload, "dry_run": dry_run},
        target={"kind": "vhost", "domain": domain},
    ) as op:
        name = _require_domain(op, domain)
        lifecycle = _require_lifecycle(runtime, op)

        def _confirm(target: str) -> bool:
            return typer.confirm(
                f"Are you sure you want to remove vhost '{target}'?", default=False
            )

        try:
            result = lifecycle.remove(
                name,
                force=force,
                confirm=_confirm,
                reload=not no_reload,
                dry_run=dry_run,
            )
        except VHostError as exc:
            _vhost_error(op, exc)

        if result.cancelled:
            _record_steps(op, result)
            console.print("Removal cancelled.")
            op.success("Removal cancelled.", changed=0)
            return
        verb = "would be removed" if dry_run else "removed"
        _finish(op, result, f"VHost {name} {verb}.", json_output=json_output)


app.command("rm", help="Alias for remove.")(remove)


@app.command()
def enable(
    ctx: typer.Context,
    domain: str = DOMAIN_ARGUMENT,
    no_reload: bool = NO_RELOAD_OPTION,
    skip_test: bool = SKIP_TEST_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Activate a disabled virtual host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "enable",
        args={
            "domain": domain,
            "no_reload": no_reload,
            "skip_test": skip_test,
            "dry_run": dry_run,
        },
        target={"kind": "vhost", "domain": domain},
    ) as op:
        name = _require_domain(op, domain)
        lifecycle = _require_lifecycle(runtime, op)
        try:
            result = lifecycle.enable(
                name, test=not skip_test, reload=not no_reload, dry_run=dry_run
            )
        except VHostError as exc:
            _vhost_error(op, exc)
        verb = "would be enabled" if dry_run else "enabled"
        _finish(op, result, f"VHost {name} {verb}.", json_output=json_output)


@app.command()
def disable(
    ctx: typer.Context,
    domain: str = DOMAIN_ARGUMENT,
    no_reload: bool = NO_RELOAD_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Deactivate a virtual host without deleting its configuration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "disable",
        args={"domain": domain, "no_reload": no_reload, "dry_run": dry_run},
        target={"kind": "vhost", "domain": domain},
    ) as op:
        name = _require_domain(op, domain)
        lifecycle = _require_lifecycle(runtime, op)
        try:
            result = lifecycle.disable(name, reload=not no_reload, dry_run=dry_run)
        except VHostError as exc:
            _vhost_error(op, exc)
        verb = "would be disabled" if dry_run else "disabled"
        _finish(op, result, f"VHost {name} {verb}.", json_output=json_output)


@app.command()
def sync(
    ctx: typer.Context,
    dry_run: bool = DRY_RUN_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Correct registry enabled flags from the on-disk activation state."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "sync",
        args={"dry_run": dry_run},
        target={"kind": "vhost", "scope": "registry"},
    ) as op:
        lifecycle = _require_lifecycle(runtime, op)
        try:
            result = lifecycle.sync(dry_run=dry_run)
        except VHostError as exc:
            _vhost_error(op, exc)
        updates = [step for step in result.steps if step.name == "registry.update"]
        if dry_run:
            summary = f"{len(updates)} registry flag(s) would be updated."
        elif updates:
            summary = f"Registry synchronised ({len(updates)} updated)."
        else:
            summary = "Registry already in sync."
        _finish(op, result, summary, json_output=json_output)


# ---------------------------------------------------------------------------
# Read-only views
# ---------------------------------------------------------------------------


@app.command("list")
def list_vhosts(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """List managed and on-disk virtual hosts."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "list",
        args={"json": json_output},
        target={"kind": "vhost", "scope": "all"},
    ) as op:
        lifecycle = _require_lifecycle(runtime, op)
        try:
            rows = lifecycle.inventory()
        except VHostError as exc:
            _vhost_error(op, exc)

        if json_output:
            console.print_json(data={"vhosts": [row.to_dict() for row in rows]})
            op.success("Reported vhost list as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Domain", style="bold")
        table.add_column("Type")
        table.add_column("Status")
        table.add_column("SSL")
        table.add_column("Notes")

        if not rows:
            table.add_row("(none)", "", "", "", "")
        for row in rows:
            notes: list[str] = []
            if not row.registered:
                notes.append("not registered")
            if row.registered and not row.config_exists:
                notes.append("config missing")
            if row.drift:
                notes.append(f"registry says {'enabled' if row.registry_active else 'disabled'}")
            status = "[green]enabled[/green]" if row.active else "[dim]disabled[/dim]"
            table.add_row(
                row.domain,
                row.kind,
                status,
                "yes" if row.tls else "no",
                ", ".join(notes),
            )

        console.print(table)
        drifted = [row.domain for row in rows if row.drift]
        if drifted:
            console.print("[yellow]Registry out of sync; run `vhostctl sync`.[/yellow]")
            op.warning("Reported vhost list.", warnings=[f"drift:{d}" for d in drifted])
            return
        op.success("Reported vhost list.", changed=0)


app.command("ls", help="Alias for list.")(list_vhosts)


@app.command()
def show(
    ctx: typer.Context,
    domain: str = DOMAIN_ARGUMENT,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show registry details and live state for one virtual host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "show",
        args={"domain": domain, "json": json_output},
        target={"kind": "vhost", "domain": domain},
    ) as op:
        name = _require_domain(op, domain)
        lifecycle = _require_lifecycle(runtime, op)
        driver = runtime.driver()
        try:
            status = lifecycle.status(name)
        except VHostError as exc:
            _vhost_error(op, exc)

        facts = driver.diagnostics(name)
        details: dict[str, object] = dict(status.vhost.to_dict()) if status.vhost else {
            "domain": name,
            "type": "unknown",
        }
        details["enabled"] = status.active
        details["registered"] = status.registered
        details["config_path"] = str(facts["config_path"])
        details["config_exists"] = facts["config_exists"]
        details["enabled_path"] = str(facts["enabled_path"])
        details["integrity"] = facts["integrity"]
        details["drift"] = status.drift
        if status.vhost is not None and status.vhost.tls:
            details["certificate"] = _cert_expiry_summary(
                status.vhost.tls_cert, runtime.config.tls.warn_expiry_days
            )

        if json_output:
            console.print_json(data=details)
            op.success("Displayed vhost details as JSON.", changed=0)
            return

        table = Table(show_header=False)
        for key, value in details.items():
            if value in (None, ""):
                continue
            if isinstance(value, dict):
                rendered = ", ".join(f"{k}={v}" for k, v in value.items())
            else:
                rendered = str(value)
            table.add_row(key.replace("_", " ").title(), rendered)
        console.print(table)
        op.success("Displayed vhost details.", changed=0)


# ---------------------------------------------------------------------------
# Editing and logs
# ---------------------------------------------------------------------------


@app.command()
def edit(
    ctx: typer.Context,
    domain: str = DOMAIN_ARGUMENT,
    no_reload: bool = NO_RELOAD_OPTION,
) -> None:
    """Open the configuration in $EDITOR, then test and reload it."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "edit",
        args={"domain": domain, "no_reload": no_reload},
        target={"kind": "vhost", "domain": domain},
    ) as op:
        name = _require_domain(op, domain)
        lifecycle = _require_lifecycle(runtime, op)
        driver = runtime.driver()
        try:
            previous = driver.read_config(name)
        except VHostError as exc:
            _vhost_error(op, exc)

        editor = shlex.split(os.environ.get("EDITOR") or "vi")
        if not editor or shutil.which(editor[0]) is None:
            _command_error(
                op, f"Editor not found: {' '.join(editor)}", rc=int(ExitCode.ENVIRONMENT)
            )
        path = driver.config_path(name)
        console.print(f"Opening {path} with {editor[0]}...")
        completed = subprocess.run([*editor, str(path)], check=False)
        op.add_step(
            "editor",
            status="success" if completed.returncode == 0 else "error",
            detail=f"exit {completed.returncode}",
        )
        if completed.returncode != 0:
            _command_error(
                op,
                f"Editor exited with status {completed.returncode}; configuration not tested.",
                rc=int(ExitCode.PROVIDER),
            )

        try:
            result = lifecycle.verify_edit(name, previous, reload=not no_reload)
        except VHostError as exc:
            _vhost_error(op, exc)
        if result.steps and result.steps[0].status == "unchanged":
            _record_steps(op, result)
            console.print("No changes made.")
            op.success("Configuration unchanged.", changed=0)
            return
        _finish(op, result, f"VHost {name} configuration updated.")


@app.command()
def logs(
    ctx: typer.Context,
    domain: str = DOMAIN_ARGUMENT,
    access: bool = LOGS_ACCESS_OPTION,
    error: bool = LOGS_ERROR_OPTION,
    follow: bool = LOGS_FOLLOW_OPTION,
    lines: int = LOGS_LINES_OPTION,
) -> None:
    """Tail the access and error logs of a virtual host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "logs",
        args={"domain": domain, "access": access, "error": error, "follow": follow, "lines": lines},
        target={"kind": "vhost", "domain": domain},
    ) as op:
        name = _require_domain(op, domain)
        driver = _require_driver(runtime, op)
        warnings: list[str] = []
        try:
            registered = runtime.registry.get_vhost(name) is not None
        except VHostError as exc:
            _vhost_error(op, exc)
        if not registered:
            warnings.append(f"VHost {name} not found in registry, trying to parse logs anyway")

        access_log, error_log = driver.log_paths(name)
        show_access = access or not error
        show_error = error or not access
        files: list[Path] = []
        for label, path, wanted in (
            ("Access", access_log, show_access),
            ("Error", error_log, show_error),
        ):
            if not wanted:
                continue
            if path.exists():
                files.append(path)
            else:
                warnings.append(f"{label} log not found: {path}")
        for warning in warnings:
            console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
        if not files:
            _command_error(op, f"No log files found for {name}", rc=int(ExitCode.VALIDATION))

        tail = shutil.which("tail")
        if tail is None:
            _command_error(op, "tail command not found", rc=int(ExitCode.ENVIRONMENT))
        args = [tail]
        if follow:
            args.append("-f")
        args.extend(["-n", str(lines), *[str(path) for path in files]])
        console.print("Showing logs from: " + ", ".join(str(path) for path in files))
        completed = subprocess.run(args, check=False)
        op.add_step("tail", detail=" ".join(args))
        if completed.returncode not in (0, *_INTERRUPTED_EXIT_CODES):
            _command_error(
                op,
                f"Failed to read logs (tail exited with {completed.returncode})",
                rc=int(ExitCode.PROVIDER),
            )
        if warnings:
            op.warning("Displayed logs.", warnings=warnings, changed=0)
        else:
            op.success("Displayed logs.", changed=0)


# ---------------------------------------------------------------------------
# TLS
# ---------------------------------------------------------------------------


@ssl_app.command("install")
def ssl_install(
    ctx: typer.Context,
    domain: str = DOMAIN_ARGUMENT,
    email: str | None = EMAIL_OPTION,
    no_reload: bool = NO_RELOAD_OPTION,
    json_output: bool = JSON_OPTION,
) -> None:
    """Issue a Let's Encrypt certificate and enable TLS for a virtual host."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "ssl install",
        args={"domain": domain, "email": email, "no_reload": no_reload},
        target={"kind": "vhost", "domain": domain},
    ) as op:
        name = _require_domain(op, domain)
        lifecycle = _require_lifecycle(runtime, op)
        try:
            result = _provision_tls(runtime, lifecycle, name, email, reload=not no_reload)
        except VHostError as exc:
            _vhost_error(op, exc)
        _finish(op, result, f"SSL certificate installed for {name}.", json_output=json_output)


@ssl_app.command("renew")
def ssl_renew(
    ctx: typer.Context,
    domain: str | None = typer.Argument(None, help="Certificate to renew."),
    renew_all: bool = RENEW_ALL_OPTION,
    no_reload: bool = NO_RELOAD_OPTION,
) -> None:
    """Renew one certificate (or all with --all) and reload the web server."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "ssl renew",
        args={"domain": domain, "all": renew_all, "no_reload": no_reload},
        target={"kind": "tls", "domain": domain or "*"},
    ) as op:
        if domain is None and not renew_all:
            _command_error(op, "Specify a domain or use --all.", rc=int(ExitCode.VALIDATION))
        if domain is not None and renew_all:
            _command_error(op, "Cannot combine a domain with --all.", rc=int(ExitCode.VALIDATION))

        try:
            if renew_all:
                runtime.certbot.renew_all()
                op.add_step("certbot.renew", detail="all")
            else:
                name = _require_domain(op, domain or "")
                runtime.certbot.renew(name)
                op.add_step("certbot.renew", detail=name)
        except VHostError as exc:
            _vhost_error(op, exc)

        warnings: list[str] = []
        if no_reload:
            op.add_step("reload", status="skipped", detail="skipped by request")
        else:
            driver = _require_driver(runtime, op)
            try:
                driver.validate()
                op.add_step("test", detail=driver.name)
                driver.reload()
                op.add_step("reload", detail=driver.name)
            except VHostError as exc:
                op.add_step("reload", status="warning", detail=str(exc))
                warnings.append(f"certificates renewed but {driver.name} was not reloaded: {exc}")

        message = "All certificates renewed." if renew_all else f"Certificate renewed for {domain}."
        for warning in warnings:
            console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")
        console.print(f"[green]{message}[/green]")
        if warnings:
            op.warning(message, warnings=warnings, changed=1)
        else:
            op.success(message, changed=1)


@ssl_app.command("status")
def ssl_status(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Report certificate expiry for TLS-enabled virtual hosts."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "ssl status",
        args={"json": json_output},
        target={"kind": "tls", "scope": "all"},
    ) as op:
        try:
            tracked = runtime.registry.load()
        except VHostError as exc:
            _vhost_error(op, exc)
        warn_days = runtime.config.tls.warn_expiry_days
        entries = [
            {"domain": vhost.domain, **_cert_expiry_summary(vhost.tls_cert, warn_days)}
            for vhost in sorted(tracked.values(), key=lambda item: item.domain)
            if vhost.tls
        ]
        attention = [
            f"{entry['domain']}:{entry['status']}"
            for entry in entries
            if entry["status"] != "valid"
        ]

        if json_output:
            console.print_json(data={"certificates": entries})
            if attention:
                op.warning("Reported certificate status as JSON.", warnings=attention)
            else:
                op.success("Reported certificate status as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Domain", style="bold")
        table.add_column("Status")
        table.add_column("Expires")
        table.add_column("Days Left")
        if not entries:
            table.add_row("(none)", "", "", "")
        for entry in entries:
            table.add_row(
                str(entry["domain"]),
                str(entry["status"]),
                str(entry.get("expires", "")),
                str(entry.get("days_remaining", "")),
            )
        console.print(table)

        if attention:
            op.warning("Reported certificate status.", warnings=attention)
        else:
            op.success("Reported certificate status.", changed=0)


# ---------------------------------------------------------------------------
# Doctor
# ---------------------------------------------------------------------------


def _parse_probe_categories(raw: str | None) -> set[str]:
    """Parse comma-separated probe categories into a normalised set."""
    if raw is None:
        return set()
    return {part.strip().lower() for part in raw.split(",") if part.strip()}


def _collect_status_identifiers(
    results: Sequence[ProbeResult],
    status: ProbeStatus,
) -> list[str]:
    """Return identifiers for results matching a particular status."""
    return [f"{result.category}:{result.id}" for result in results if result.status is status]


def _render_doctor_report(report: DoctorReport) -> None:
    """Render a doctor report in a human-friendly format."""
    summary = report.summary
    totals = summary.totals
    console.print(
        f"Doctor summary: {_SUMMARY_STATUS_STYLE[summary.status]} "
        f"(impact={summary.impact.name.lower()}, exit={summary.exit_code})"
    )
    console.print(
        f"Totals: green={totals.get(ProbeStatus.GREEN, 0)} "
        f"warn={totals.get(ProbeStatus.YELLOW, 0)} "
        f"red={totals.get(ProbeStatus.RED, 0)}"
    )
    if not report.results:
        console.print("No probes were executed.")
        return

    console.print()
    for result in report.results:
        console.print(
            f"{_PROBE_STATUS_STYLE[result.status]} \\[{result.category}] {result.id}: "
            f"{escape(result.message)}"
        )
        if result.remediation:
            console.print(f"  remediation: {result.remediation}")
        if result.impact is not DoctorImpact.OK:
            console.print(
                f"  impact: {result.impact.name.lower()} (exit={result.impact.exit_code})"
            )


@app.command()
def doctor(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
    only: str | None = DOCTOR_ONLY_OPTION,
    exclude: str | None = DOCTOR_EXCLUDE_OPTION,
) -> None:
    """Run environment, backend and per-vhost health checks."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "doctor",
        args={"json": json_output, "only": only, "exclude": exclude},
        target={"kind": "system", "scope": "health"},
    ) as op:
        include_categories = _parse_probe_categories(only)
        exclude_categories = _parse_probe_categories(exclude)
        invalid = (include_categories | exclude_categories) - _PROBE_CATEGORY_SET
        if invalid:
            _command_error(op, f"Unknown probe categories: {', '.join(sorted(invalid))}", rc=2)
        if only is not None and exclude is not None:
            _command_error(op, "Cannot combine --only and --exclude.", rc=2)

        driver = _require_driver(runtime, op)
        context = ProbeContext(
            config=runtime.config,
            registry=runtime.registry,
            driver=driver,
            lifecycle=runtime.lifecycle(),
            runner=runtime.runner,
            systemd=runtime.systemd,
            certbot=runtime.certbot,
        )
        probes = list(collect_probes(context))
        if include_categories:
            probes = [probe for probe in probes if probe.category in include_categories]
        if exclude_categories:
            probes = [probe for probe in probes if probe.category not in exclude_categories]

        report = DoctorEngine(context).run(
            probes,
            metadata={
                "filters": {
                    "only": sorted(include_categories) if only is not None else None,
                    "exclude": sorted(exclude_categories) if exclude is not None else None,
                },
                "matched_probes": len(probes),
            },
        )
        payload = report.to_dict()

        if json_output:
            console.print_json(data=payload)
        else:
            _render_doctor_report(report)

        summary = report.summary
        warning_ids = _collect_status_identifiers(report.results, ProbeStatus.YELLOW)
        error_ids = _collect_status_identifiers(report.results, ProbeStatus.RED)
        impact_message = _DOCTOR_IMPACT_MESSAGES[summary.impact]

        if summary.exit_code == 0:
            if summary.status is ProbeStatus.YELLOW:
                if not json_output:
                    console.print("[yellow]Doctor completed with warnings.[/yellow]")
                op.warning(
                    "Doctor completed with warnings.",
                    warnings=warning_ids or None,
                    context={"report": payload},
                )
            else:
                op.success(impact_message, changed=0, context={"report": payload})
            return

        if not json_output:
            console.print(f"[red]{impact_message}[/red]")
        op.error(
            impact_message,
            rc=summary.exit_code,
            errors=error_ids or None,
            warnings=warning_ids or None,
            context={"report": payload},
        )
        raise typer.Exit(code=summary.exit_code)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    with runtime.logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")
        for key, value in data.items():
            if isinstance(value, dict):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)
        console.print(table)
        op.success("Rendered configuration table.", changed=0)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
