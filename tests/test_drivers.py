"""Tests for the shared site driver and its backend variants."""
from __future__ import annotations

from pathlib import Path

import pytest

from vhostctl.config import CommandsConfig
from vhostctl.errors import (
    AlreadyActiveError,
    ConfigTestError,
    IntegrityError,
    NotActiveError,
    NotFoundError,
    ReloadError,
)
from vhostctl.models import BackendKind, BackendPaths, VHost, VHostKind
from vhostctl.providers import (
    ApacheDriver,
    CaddyDriver,
    NginxDriver,
    SiteDriver,
    SystemdProvider,
    create_driver,
)


def _vhost(domain: str = "example.com", root: str | None = None) -> VHost:
    return VHost(domain=domain, kind=VHostKind.STATIC, root=root)


def _nginx(backend_paths: BackendPaths, runner) -> NginxDriver:
    return NginxDriver(backend_paths, runner=runner, systemd=SystemdProvider(runner=runner))


def test_write_activate_and_list(backend_paths: BackendPaths, runner, tmp_path: Path) -> None:
    """Writing and activating creates the file and a symlink pointing at it."""
    driver = _nginx(backend_paths, runner)
    root = tmp_path / "www"

    path = driver.write_config(_vhost(root=str(root)), "server {}\n")
    driver.activate("example.com")

    assert path == backend_paths.available / "example.com"
    assert (path.stat().st_mode & 0o777) == 0o644
    assert root.is_dir()
    link = backend_paths.enabled / "example.com"
    assert link.is_symlink()
    assert link.resolve() == path.resolve()
    assert driver.is_active("example.com")
    assert driver.list() == ["example.com"]


def test_activate_twice_reports_already_active(backend_paths: BackendPaths, runner) -> None:
    """A second activation is a precondition error."""
    driver = _nginx(backend_paths, runner)
    driver.write_config(_vhost(), "server {}\n")
    driver.activate("example.com")

    with pytest.raises(AlreadyActiveError):
        driver.activate("example.com")


def test_activate_without_config(backend_paths: BackendPaths, runner) -> None:
    """Activating an undefined vhost reports not found."""
    driver = _nginx(backend_paths, runner)

    with pytest.raises(NotFoundError):
        driver.activate("missing.example.com")


def test_deactivate_inactive_reports_not_active(backend_paths: BackendPaths, runner) -> None:
    """Deactivating without a link is a precondition error."""
    driver = _nginx(backend_paths, runner)
    driver.write_config(_vhost(), "server {}\n")

    with pytest.raises(NotActiveError):
        driver.deactivate("example.com")


def test_deactivate_refuses_regular_file(backend_paths: BackendPaths, runner) -> None:
    """A regular file in the enabled directory raises IntegrityError and survives."""
    driver = _nginx(backend_paths, runner)
    driver.write_config(_vhost(), "server {}\n")
    occupant = backend_paths.enabled / "example.com"
    occupant.write_text("copied, not linked\n", encoding="utf-8")

    with pytest.raises(IntegrityError):
        driver.deactivate("example.com")

    assert occupant.read_text(encoding="utf-8") == "copied, not linked\n"
    assert driver.diagnostics("example.com")["integrity"] == "not-a-symlink"


def test_delete_config_twice(backend_paths: BackendPaths, runner) -> None:
    """The second delete reports not found without touching anything else."""
    driver = _nginx(backend_paths, runner)
    driver.write_config(_vhost(), "server {}\n")
    driver.write_config(_vhost("other.example.com"), "server {}\n")
    driver.activate("example.com")

    driver.delete_config("example.com")

    assert not driver.config_path("example.com").exists()
    assert not driver.enabled_path("example.com").is_symlink()
    with pytest.raises(NotFoundError):
        driver.delete_config("example.com")
    assert driver.list() == ["other.example.com"]


def test_delete_config_without_file_keeps_leftover_link(backend_paths: BackendPaths, runner) -> None:
    """A missing config file is reported before the enabled directory is touched."""
    driver = _nginx(backend_paths, runner)
    backend_paths.enabled.mkdir(parents=True)
    link = driver.enabled_path("example.com")
    link.symlink_to(driver.config_path("example.com"))

    with pytest.raises(NotFoundError):
        driver.delete_config("example.com")

    assert link.is_symlink()


def test_discard_config_leaves_activation_link(backend_paths: BackendPaths, runner) -> None:
    """Discarding only unlinks the file under "available"."""
    driver = _nginx(backend_paths, runner)
    driver.write_config(_vhost(), "server {}\n")
    driver.activate("example.com")

    driver.discard_config("example.com")
    driver.discard_config("example.com")

    assert not driver.config_path("example.com").exists()
    assert driver.enabled_path("example.com").is_symlink()


def test_apache_uses_conf_suffix(backend_paths: BackendPaths, runner) -> None:
    """Apache files carry ``.conf`` and listing strips it."""
    driver = ApacheDriver(backend_paths, runner=runner)
    driver.write_config(_vhost(), "<VirtualHost *:80>\n</VirtualHost>\n")
    (backend_paths.available / "README").write_text("ignored", encoding="utf-8")
    (backend_paths.available / ".hidden.conf").write_text("ignored", encoding="utf-8")

    assert driver.config_path("example.com").name == "example.com.conf"
    assert driver.list() == ["example.com"]


def test_list_missing_directory_is_empty(tmp_path: Path, runner) -> None:
    """A missing available directory lists nothing."""
    paths = BackendPaths(tmp_path / "nope-available", tmp_path / "nope-enabled")

    assert _nginx(paths, runner).list() == []


def test_validate_failure_carries_tool_output(backend_paths: BackendPaths, runner) -> None:
    """Syntax check failures embed the backend output verbatim."""
    runner.fail("nginx", "-t", output="nginx: [emerg] unknown directive \"sever\"")
    driver = _nginx(backend_paths, runner)

    with pytest.raises(ConfigTestError) as excinfo:
        driver.validate()

    assert excinfo.value.detail == "nginx: [emerg] unknown directive \"sever\""
    assert "configuration test failed" in str(excinfo.value)


def test_reload_prefers_systemd(backend_paths: BackendPaths, runner) -> None:
    """A successful systemd reload skips the fallback."""
    driver = _nginx(backend_paths, runner)

    driver.reload()

    assert runner.calls == [("systemctl", "reload", "nginx")]


def test_reload_reports_both_failures(backend_paths: BackendPaths, runner) -> None:
    """ReloadError carries output from the primary and fallback attempts."""
    runner.fail("systemctl", output="Failed to reload nginx.service")
    runner.fail("nginx", "-s", "reload", output="invalid PID number")
    driver = _nginx(backend_paths, runner)

    with pytest.raises(ReloadError) as excinfo:
        driver.reload()

    detail = excinfo.value.detail or ""
    assert "Failed to reload nginx.service" in detail
    assert "invalid PID number" in detail
    assert len(runner.calls) == 2


def test_backend_commands(backend_paths: BackendPaths, runner, tmp_path: Path) -> None:
    """Each backend supplies its own validate and fallback reload commands."""
    caddyfile = tmp_path / "Caddyfile"
    apache = ApacheDriver(backend_paths, runner=runner, apachectl_bin="apachectl")
    caddy = CaddyDriver(backend_paths, runner=runner, caddyfile=caddyfile)

    assert list(apache.validate_command()) == ["apachectl", "configtest"]
    assert list(apache.fallback_reload_command()) == ["apachectl", "graceful"]
    assert list(caddy.validate_command()) == ["caddy", "validate", "--config", str(caddyfile)]
    assert list(caddy.fallback_reload_command()) == ["caddy", "reload", "--config", str(caddyfile)]
    assert apache.service == "apache2"
    assert caddy.service == "caddy"


def test_log_paths_parsed_from_config(backend_paths: BackendPaths, runner) -> None:
    """Log paths come from the config file, with Apache variables expanded."""
    apache = ApacheDriver(backend_paths, runner=runner)
    apache.write_config(
        _vhost(),
        "<VirtualHost *:80>\n"
        "    ErrorLog ${APACHE_LOG_DIR}/example.com-error.log\n"
        "    CustomLog /srv/logs/example.com.log combined\n"
        "</VirtualHost>\n",
    )

    access, error = apache.log_paths("example.com")

    assert access == Path("/srv/logs/example.com.log")
    assert error == Path("/var/log/apache2/example.com-error.log")


def test_log_paths_default_when_config_missing(backend_paths: BackendPaths, runner) -> None:
    """Without a config file the backend defaults apply."""
    access, error = _nginx(backend_paths, runner).log_paths("example.com")

    assert access == Path("/var/log/nginx/example.com-access.log")
    assert error == Path("/var/log/nginx/example.com-error.log")


def test_diagnostics_dangling_link(backend_paths: BackendPaths, runner) -> None:
    """A link whose target vanished is reported as dangling."""
    driver = _nginx(backend_paths, runner)
    driver.write_config(_vhost(), "server {}\n")
    driver.activate("example.com")
    driver.config_path("example.com").unlink()

    facts = driver.diagnostics("example.com")

    assert facts["integrity"] == "dangling-link"
    assert facts["config_exists"] is False
    assert facts["enabled"] is True


@pytest.mark.parametrize(
    ("kind", "expected"),
    [
        (BackendKind.NGINX, NginxDriver),
        (BackendKind.APACHE, ApacheDriver),
        (BackendKind.CADDY, CaddyDriver),
    ],
)
def test_create_driver_dispatches_on_kind(
    backend_paths: BackendPaths, runner, kind: BackendKind, expected: type
) -> None:
    """The factory returns the matching driver with configured binaries."""
    commands = CommandsConfig(systemctl_bin="/bin/systemctl", nginx_bin="/usr/sbin/nginx")

    driver = create_driver(kind, backend_paths, commands=commands, runner=runner)

    assert isinstance(driver, expected)
    assert driver.paths == backend_paths
    assert driver.systemd is not None
    assert driver.systemd.systemctl_bin == "/bin/systemctl"
    if kind is BackendKind.NGINX:
        assert driver.validate_command()[0] == "/usr/sbin/nginx"


def test_backend_without_hooks_cannot_be_instantiated(backend_paths: BackendPaths) -> None:
    """A backend must implement every command and log-path hook."""

    class HalfDriver(SiteDriver):
        kind = BackendKind.NGINX
        service = "nginx"

        def validate_command(self) -> list[str]:
            return ["nginx", "-t"]

    with pytest.raises(TypeError, match="abstract"):
        HalfDriver(backend_paths)  # type: ignore[abstract]
    with pytest.raises(TypeError):
        SiteDriver(backend_paths)  # type: ignore[abstract]
