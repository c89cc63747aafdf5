"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from vhostctl.lifecycle import Lifecycle
from vhostctl.models import BackendPaths, VHost
from vhostctl.providers import CommandResult, CommandRunner, NginxDriver, SystemdProvider
from vhostctl.state import StateRegistry
from vhostctl.templates import TemplateEngine


class FakeRunner(CommandRunner):
    """Command runner that records invocations instead of spawning processes."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.failures: dict[tuple[str, ...], tuple[int, str]] = {}
        self.outputs: dict[tuple[str, ...], str] = {}
        self.missing: set[str] = set()

    def fail(self, *prefix: str, returncode: int = 1, output: str = "") -> None:
        """Make every command starting with *prefix* fail."""
        self.failures[tuple(prefix)] = (returncode, output)

    def succeed(self, *prefix: str) -> None:
        """Clear a failure registered with :meth:`fail`."""
        self.failures.pop(tuple(prefix), None)

    def run(self, args: Sequence[str]) -> CommandResult:
        command = tuple(str(arg) for arg in args)
        self.calls.append(command)
        for prefix, (returncode, output) in self.failures.items():
            if command[: len(prefix)] == prefix:
                return CommandResult(command, returncode, output)
        return CommandResult(command, 0, self.outputs.get(command, ""))

    def which(self, name: str) -> str | None:
        if name in self.missing:
            return None
        return f"/usr/bin/{name}"


@dataclass
class TracingDriver(NginxDriver):
    """Nginx driver that records contract calls in order."""

    trace: list[str] = field(default_factory=list)

    def write_config(self, vhost: VHost, text: str) -> Path:
        self.trace.append("write_config")
        return NginxDriver.write_config(self, vhost, text)

    def delete_config(self, domain: str) -> None:
        self.trace.append("delete_config")
        NginxDriver.delete_config(self, domain)

    def discard_config(self, domain: str) -> None:
        self.trace.append("discard_config")
        NginxDriver.discard_config(self, domain)

    def activate(self, domain: str) -> None:
        self.trace.append("activate")
        NginxDriver.activate(self, domain)

    def deactivate(self, domain: str) -> None:
        self.trace.append("deactivate")
        NginxDriver.deactivate(self, domain)

    def validate(self) -> CommandResult:
        self.trace.append("validate")
        return NginxDriver.validate(self)

    def reload(self) -> CommandResult:
        self.trace.append("reload")
        return NginxDriver.reload(self)


@pytest.fixture
def runner() -> FakeRunner:
    """Return a recording command runner where every command succeeds."""
    return FakeRunner()


@pytest.fixture
def backend_paths(tmp_path: Path) -> BackendPaths:
    """Return an empty available/enabled directory pair."""
    return BackendPaths(tmp_path / "sites-available", tmp_path / "sites-enabled")


@pytest.fixture
def registry(tmp_path: Path) -> StateRegistry:
    """Return a registry rooted in the temporary directory."""
    return StateRegistry(tmp_path / "registry")


@pytest.fixture
def templates() -> TemplateEngine:
    """Return the packaged template engine."""
    return TemplateEngine.with_overrides(None)


@pytest.fixture
def driver(backend_paths: BackendPaths, runner: FakeRunner) -> TracingDriver:
    """Return a tracing nginx driver bound to the fake runner."""
    return TracingDriver(
        backend_paths,
        runner=runner,
        systemd=SystemdProvider(runner=runner),
    )


@pytest.fixture
def lifecycle(
    driver: TracingDriver,
    templates: TemplateEngine,
    registry: StateRegistry,
) -> Lifecycle:
    """Return a lifecycle orchestrator wired to the tracing driver."""
    return Lifecycle(driver=driver, templates=templates, registry=registry)


def _create_self_signed_cert(directory: Path, domain: str, days_valid: int) -> tuple[Path, Path]:
    now = datetime.now(UTC)
    valid_to = now + timedelta(days=days_valid)
    valid_from = min(now - timedelta(days=1), valid_to - timedelta(days=30))
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = issuer = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(valid_from)
        .not_valid_after(valid_to)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
        .sign(key, hashes.SHA256())
    )
    directory.mkdir(parents=True, exist_ok=True)
    cert_path = directory / "fullchain.pem"
    key_path = directory / "privkey.pem"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    key_path.chmod(0o600)
    return cert_path, key_path


@pytest.fixture
def make_certificate(tmp_path: Path) -> Callable[..., tuple[Path, Path]]:
    """Return a factory writing certbot-style live certificates under tmp_path."""
    live_dir = tmp_path / "letsencrypt" / "live"

    def factory(domain: str = "example.com", *, days_valid: int = 60) -> tuple[Path, Path]:
        return _create_self_signed_cert(live_dir / domain, domain, days_valid)

    return factory
