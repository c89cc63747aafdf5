"""Lifecycle workflow tests: ordering, rollback and registry bookkeeping."""
from __future__ import annotations

import os
from pathlib import Path

import pytest

from vhostctl.errors import (
    AlreadyActiveError,
    AlreadyExistsError,
    ConfigTestError,
    FilesystemError,
    NotFoundError,
    RegistryError,
    ReloadError,
)
from vhostctl.lifecycle import Lifecycle, Rollback
from vhostctl.models import VHostKind
from vhostctl.state import StateRegistryError
from vhostctl.validation import build_vhost


def _static(tmp_path: Path, domain: str = "example.com"):
    return build_vhost(domain, "static", root=str(tmp_path / "www" / domain))


def _proxy(domain: str = "api.example.com"):
    return build_vhost(domain, "proxy", proxy_pass="http://127.0.0.1:3000")


def test_add_static_writes_links_and_registers(tmp_path: Path, lifecycle, driver, registry) -> None:
    """Adding a static vhost renders, activates, reloads and registers it."""
    root = tmp_path / "srv" / "www" / "example"
    vhost = build_vhost("example.com", "static", root=str(root))

    result = lifecycle.add(vhost)

    config = driver.config_path("example.com")
    link = driver.enabled_path("example.com")
    assert config.is_file()
    assert f"root {root};" in config.read_text(encoding="utf-8")
    assert link.is_symlink()
    assert os.readlink(link) == str(config)
    assert root.is_dir()
    assert driver.is_active("example.com")
    assert "example.com" in driver.list()

    entry = registry.get_vhost("example.com")
    assert entry is not None
    assert entry.activated is True
    assert entry.kind is VHostKind.STATIC

    assert driver.trace == ["write_config", "activate", "validate", "reload"]
    assert [step.name for step in result.steps] == [
        "config.write",
        "link.create",
        "test",
        "reload",
        "registry.update",
    ]
    assert result.warnings == []


@pytest.mark.parametrize(
    ("kind", "kwargs"),
    [
        ("static", {"root": "/tmp/vh/static"}),
        ("php", {"root": "/tmp/vh/php"}),
        ("laravel", {"root": "/tmp/vh/laravel"}),
        ("wordpress", {"root": "/tmp/vh/wp"}),
        ("proxy", {"proxy_pass": "127.0.0.1:8080"}),
    ],
)
def test_add_then_active_for_every_kind(
    tmp_path: Path, lifecycle, driver, kind: str, kwargs: dict[str, str]
) -> None:
    """Every valid kind is active and listed right after add."""
    if "root" in kwargs:
        kwargs = {"root": str(tmp_path / kwargs["root"].lstrip("/"))}
    vhost = build_vhost(f"{kind}.example.com", kind, **kwargs)

    lifecycle.add(vhost)

    assert driver.is_active(vhost.domain)
    assert vhost.domain in driver.list()


def test_add_rejects_existing_config_without_mutation(tmp_path: Path, lifecycle, driver) -> None:
    """An existing config file blocks add and is left untouched."""
    driver.paths.available.mkdir(parents=True)
    existing = driver.config_path("example.com")
    existing.write_text("hand written\n", encoding="utf-8")

    with pytest.raises(AlreadyExistsError):
        lifecycle.add(_static(tmp_path))

    assert existing.read_text(encoding="utf-8") == "hand written\n"
    assert not driver.enabled_path("example.com").exists()
    assert driver.trace == []


def test_add_rejects_registered_domain(tmp_path: Path, lifecycle, registry) -> None:
    """A registered domain cannot be added twice."""
    lifecycle.add(_static(tmp_path))

    with pytest.raises(AlreadyExistsError) as excinfo:
        lifecycle.add(_static(tmp_path))

    assert "example.com" in str(excinfo.value)


def test_add_validate_failure_rolls_back_fully(lifecycle, driver, registry, runner) -> None:
    """A failed syntax check removes the link before the file and keeps the registry."""
    runner.fail("nginx", "-t", output="nginx: [emerg] unexpected '}'")

    with pytest.raises(ConfigTestError) as excinfo:
        lifecycle.add(_proxy())

    message = str(excinfo.value)
    assert "configuration test failed" in message
    assert "api.example.com" in message
    assert "unexpected '}'" in message
    assert not driver.config_path("api.example.com").exists()
    assert not driver.enabled_path("api.example.com").is_symlink()
    assert registry.read_vhosts() == {}
    assert driver.trace == [
        "write_config",
        "activate",
        "validate",
        "deactivate",
        "discard_config",
    ]
    assert not any(call[:2] == ("systemctl", "reload") for call in runner.calls)


def test_add_activate_failure_deletes_written_config(
    tmp_path: Path, lifecycle, driver, monkeypatch: pytest.MonkeyPatch
) -> None:
    """Activation failure deletes the freshly written file."""

    def broken_activate(domain: str) -> None:
        driver.trace.append("activate")
        raise FilesystemError("failed to create activation link", domain=domain)

    monkeypatch.setattr(driver, "activate", broken_activate)

    with pytest.raises(FilesystemError):
        lifecycle.add(_static(tmp_path))

    assert not driver.config_path("example.com").exists()
    assert driver.trace == ["write_config", "activate", "discard_config"]


def test_add_into_occupied_link_slot_removes_only_new_file(
    tmp_path: Path, lifecycle, driver, registry
) -> None:
    """A regular file at the link location survives; the new config does not."""
    driver.paths.enabled.mkdir(parents=True)
    occupant = driver.enabled_path("example.com")
    occupant.write_text("# hand-written\n", encoding="utf-8")

    with pytest.raises(AlreadyActiveError) as excinfo:
        lifecycle.add(_static(tmp_path))

    assert excinfo.value.warnings == []
    assert not driver.config_path("example.com").exists()
    assert occupant.read_text(encoding="utf-8") == "# hand-written\n"
    assert driver.trace == ["write_config", "activate", "discard_config"]
    assert registry.read_vhosts() == {}


def test_add_keeps_foreign_dangling_link(tmp_path: Path, lifecycle, driver) -> None:
    """Rollback never removes a link the workflow did not create."""
    driver.paths.enabled.mkdir(parents=True)
    link = driver.enabled_path("example.com")
    foreign = tmp_path / "elsewhere.conf"
    link.symlink_to(foreign)

    with pytest.raises(AlreadyActiveError):
        lifecycle.add(_static(tmp_path))

    assert link.is_symlink()
    assert os.readlink(link) == str(foreign)
    assert not driver.config_path("example.com").exists()


def test_add_rollback_failure_is_reported_as_warning(
    lifecycle, driver, runner, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A failing compensating action never hides the original error."""
    runner.fail("nginx", "-t", output="bad config")

    def broken_deactivate(domain: str) -> None:
        raise OSError("read-only filesystem")

    monkeypatch.setattr(driver, "deactivate", broken_deactivate)

    with pytest.raises(ConfigTestError) as excinfo:
        lifecycle.add(_proxy())

    assert excinfo.value.warnings
    assert "rollback link.remove failed" in excinfo.value.warnings[0]


def test_add_reload_failure_keeps_state(tmp_path: Path, lifecycle, driver, registry, runner) -> None:
    """Reload failures leave the validated config in place and still register it."""
    runner.fail("systemctl", "reload", output="unit not found")
    runner.fail("nginx", "-s", "reload", output="no pid")

    with pytest.raises(ReloadError) as excinfo:
        lifecycle.add(_static(tmp_path))

    assert "systemctl reload nginx failed" in str(excinfo.value)
    assert "nginx -s reload failed" in str(excinfo.value)
    assert driver.config_path("example.com").exists()
    assert driver.is_active("example.com")
    assert registry.get_vhost("example.com") is not None


def test_reload_falls_back_once(tmp_path: Path, lifecycle, runner) -> None:
    """The backend's own reload runs when systemd fails."""
    runner.fail("systemctl", "reload")

    lifecycle.add(_static(tmp_path))

    assert ("nginx", "-s", "reload") in runner.calls


def test_add_skip_test_also_skips_reload(tmp_path: Path, lifecycle, driver) -> None:
    """Reload is never attempted against an untested configuration."""
    result = lifecycle.add(_static(tmp_path), test=False)

    assert "validate" not in driver.trace
    assert "reload" not in driver.trace
    assert any("not reloaded" in warning for warning in result.warnings)


def test_add_registry_failure_is_warning(
    tmp_path: Path, lifecycle, registry, monkeypatch: pytest.MonkeyPatch
) -> None:
    """A registry write failure after a successful change is only a warning."""

    def broken_upsert(self, vhost) -> None:
        raise StateRegistryError("disk full")

    monkeypatch.setattr(type(registry), "upsert_vhost", broken_upsert)

    result = lifecycle.add(_static(tmp_path))

    assert any("registry update failed" in warning for warning in result.warnings)


def test_add_dry_run_touches_nothing(tmp_path: Path, lifecycle, driver, registry) -> None:
    """Dry runs only plan steps."""
    result = lifecycle.add(_static(tmp_path), dry_run=True)

    assert result.dry_run is True
    assert result.changed == 0
    assert {step.status for step in result.steps} == {"planned"}
    assert not driver.paths.available.exists()
    assert registry.read_vhosts() == {}


def test_disable_is_never_reverted(tmp_path: Path, lifecycle, driver, registry, runner) -> None:
    """Disable stays in effect even when the follow-up test fails."""
    lifecycle.add(_static(tmp_path))
    runner.fail("nginx", "-t", output="broken elsewhere")

    result = lifecycle.disable("example.com")

    assert not driver.is_active("example.com")
    assert driver.config_path("example.com").exists()
    assert any("post-disable check failed" in warning for warning in result.warnings)
    entry = registry.get_vhost("example.com")
    assert entry is not None and entry.activated is False


def test_disable_reload_failure_is_warning(
    tmp_path: Path, lifecycle, driver, registry, runner
) -> None:
    """A passing test followed by a failed reload still leaves the vhost disabled."""
    lifecycle.add(_static(tmp_path))
    runner.fail("systemctl", "reload", output="unit not found")
    runner.fail("nginx", "-s", "reload", output="no pid")

    result = lifecycle.disable("example.com")

    assert not driver.is_active("example.com")
    assert any("post-disable reload failed" in warning for warning in result.warnings)
    assert not any("post-disable check failed" in warning for warning in result.warnings)
    entry = registry.get_vhost("example.com")
    assert entry is not None and entry.activated is False


def test_enable_rolls_back_link_on_test_failure(tmp_path: Path, lifecycle, driver, runner) -> None:
    """Enable removes the new link when the syntax check fails."""
    lifecycle.add(_static(tmp_path))
    lifecycle.disable("example.com")
    runner.fail("nginx", "-t")

    with pytest.raises(ConfigTestError) as excinfo:
        lifecycle.enable("example.com")

    assert excinfo.value.action == "enable"
    assert not driver.is_active("example.com")


def test_enable_updates_registry(tmp_path: Path, lifecycle, registry) -> None:
    """Enabling a disabled vhost flips the registry flag back."""
    lifecycle.add(_static(tmp_path))
    lifecycle.disable("example.com")

    lifecycle.enable("example.com")

    entry = registry.get_vhost("example.com")
    assert entry is not None and entry.activated is True


def test_remove_succeeds_when_reload_fails(tmp_path: Path, lifecycle, driver, registry, runner) -> None:
    """Remove with force reports success with a warning when reload fails."""
    lifecycle.add(_static(tmp_path))
    runner.fail("systemctl", "reload")
    runner.fail("nginx", "-s", "reload")

    result = lifecycle.remove("example.com", force=True)

    assert result.cancelled is False
    assert any("reload failed" in warning for warning in result.warnings)
    assert not driver.config_path("example.com").exists()
    assert not driver.enabled_path("example.com").is_symlink()
    assert registry.get_vhost("example.com") is None


def test_remove_requires_confirmation(tmp_path: Path, lifecycle, driver) -> None:
    """Without force, a declined confirmation cancels the workflow."""
    lifecycle.add(_static(tmp_path))
    asked: list[str] = []

    def decline(domain: str) -> bool:
        asked.append(domain)
        return False

    result = lifecycle.remove("example.com", confirm=decline)

    assert asked == ["example.com"]
    assert result.cancelled is True
    assert driver.config_path("example.com").exists()


def test_remove_unknown_domain(lifecycle) -> None:
    """Removing an undefined vhost reports not found before prompting."""
    with pytest.raises(NotFoundError):
        lifecycle.remove("missing.example.com", confirm=lambda _: True)


def test_install_tls_rerenders_and_restores_on_failure(
    tmp_path: Path, lifecycle, driver, registry, runner
) -> None:
    """TLS install re-applies the add sequence and restores the old file on failure."""
    lifecycle.add(_static(tmp_path))
    before = driver.read_config("example.com")
    cert = tmp_path / "fullchain.pem"
    key = tmp_path / "privkey.pem"

    runner.fail("nginx", "-t")
    with pytest.raises(ConfigTestError):
        lifecycle.install_tls("example.com", cert, key)
    assert driver.read_config("example.com") == before
    assert driver.is_active("example.com")

    runner.succeed("nginx", "-t")
    result = lifecycle.install_tls("example.com", cert, key)

    text = driver.read_config("example.com")
    assert f"ssl_certificate {cert};" in text
    assert "listen 443 ssl;" in text
    assert result.vhost is not None and result.vhost.tls is True
    entry = registry.get_vhost("example.com")
    assert entry is not None and entry.tls_cert == str(cert)


def test_verify_edit_restores_previous_contents(tmp_path: Path, lifecycle, driver, runner) -> None:
    """A broken manual edit is reverted."""
    lifecycle.add(_static(tmp_path))
    path = driver.config_path("example.com")
    previous = path.read_text(encoding="utf-8")
    path.write_text("server { broken\n", encoding="utf-8")
    runner.fail("nginx", "-t")

    with pytest.raises(ConfigTestError) as excinfo:
        lifecycle.verify_edit("example.com", previous)

    assert excinfo.value.action == "edit"
    assert path.read_text(encoding="utf-8") == previous


def test_sync_corrects_drift(tmp_path: Path, lifecycle, driver, registry) -> None:
    """Sync rewrites registry flags from the on-disk activation state."""
    lifecycle.add(_static(tmp_path))
    driver.enabled_path("example.com").unlink()
    driver.paths.available.joinpath("stray.example.com").write_text("", encoding="utf-8")

    status = lifecycle.status("example.com")
    assert status.drift is True

    result = lifecycle.sync()

    entry = registry.get_vhost("example.com")
    assert entry is not None and entry.activated is False
    assert any("stray.example.com" in warning for warning in result.warnings)
    assert lifecycle.status("example.com").drift is False


def test_sync_dry_run_keeps_registry(tmp_path: Path, lifecycle, driver, registry) -> None:
    """Dry-run sync plans updates without writing."""
    lifecycle.add(_static(tmp_path))
    driver.enabled_path("example.com").unlink()

    result = lifecycle.sync(dry_run=True)

    assert [step.status for step in result.steps] == ["planned"]
    entry = registry.get_vhost("example.com")
    assert entry is not None and entry.activated is True


def test_inventory_marks_unregistered_configs(tmp_path: Path, lifecycle, driver) -> None:
    """Configs on disk without a registry entry are reported as unknown."""
    lifecycle.add(_static(tmp_path))
    driver.paths.available.joinpath("legacy.example.com").write_text("", encoding="utf-8")

    rows = {row.domain: row for row in lifecycle.inventory()}

    assert rows["legacy.example.com"].kind == "unknown"
    assert rows["legacy.example.com"].registered is False
    assert rows["example.com"].active is True


def test_status_unknown_domain(lifecycle) -> None:
    """Status raises when neither the registry nor the disk knows the domain."""
    with pytest.raises(NotFoundError):
        lifecycle.status("nowhere.example.com")


def test_rollback_runs_newest_first() -> None:
    """Compensating actions unwind in reverse order and collect failures."""
    order: list[str] = []
    rollback = Rollback()
    rollback.push("first", lambda: order.append("first"))

    def fail() -> None:
        raise RegistryError("boom")

    rollback.push("second", fail)
    rollback.push("third", lambda: order.append("third"))

    warnings = rollback.run()

    assert order == ["third", "first"]
    assert warnings == ["rollback second failed: boom"]


def test_render_round_trip_is_byte_identical(tmp_path: Path, lifecycle: Lifecycle, driver) -> None:
    """Text written by the driver reads back exactly as rendered."""
    vhost = build_vhost("php.example.com", "php", root=str(tmp_path / "php"), default_php="8.3")
    text = lifecycle.render(vhost)

    driver.write_config(vhost, text)

    assert driver.config_path(vhost.domain).read_bytes() == text.encode("utf-8")
