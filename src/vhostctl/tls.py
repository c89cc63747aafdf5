"""TLS helpers: certbot provisioning and certificate inspection."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from cryptography import x509

from .errors import VHostError
from .exit_codes import ExitCode
from .providers.executor import CommandResult, CommandRunner


class CertbotError(VHostError):
    """Raised when certbot is missing or a certbot invocation fails."""


class CertbotMissingError(CertbotError):
    """Raised when the certbot binary cannot be found."""

    exit_code = ExitCode.ENVIRONMENT


@dataclass(frozen=True)
class CertPaths:
    """Certificate and private key locations for a domain."""

    domain: str
    certificate: Path
    key: Path

    def exists(self) -> bool:
        """Return ``True`` when both files are present."""
        return self.certificate.is_file() and self.key.is_file()


@dataclass(slots=True)
class CertbotProvider:
    """Issue and renew Let's Encrypt certificates through certbot."""

    live_dir: Path = Path("/etc/letsencrypt/live")
    certbot_bin: str = "certbot"
    runner: CommandRunner = field(default_factory=CommandRunner)

    def is_installed(self) -> bool:
        """Return ``True`` when certbot is on ``PATH``."""
        return self.runner.which(self.certbot_bin) is not None

    def cert_paths(self, domain: str) -> CertPaths:
        """Return the live certificate paths certbot uses for *domain*."""
        base = self.live_dir / domain
        return CertPaths(domain, base / "fullchain.pem", base / "privkey.pem")

    def issue(self, domain: str, email: str, *, webroot: str | None = None) -> CertPaths:
        """Obtain a certificate, using webroot mode when a document root exists."""
        if not email:
            raise CertbotError("an email address is required", domain=domain, action="ssl install")
        args: list[str] = ["certonly"]
        if webroot:
            args.extend(["--webroot", "-w", webroot])
        else:
            args.append("--standalone")
        args.extend(["-d", domain, "--email", email, "--agree-tos", "--non-interactive"])
        self._run(args, domain=domain, action="ssl install")
        return self.cert_paths(domain)

    def renew(self, domain: str) -> CommandResult:
        """Renew the certificate named *domain*."""
        return self._run(
            ["renew", "--cert-name", domain, "--non-interactive"],
            domain=domain,
            action="ssl renew",
        )

    def renew_all(self) -> CommandResult:
        """Renew every certificate due for renewal."""
        return self._run(["renew", "--non-interactive"], action="ssl renew")

    def certificates(self) -> list[str]:
        """Return the certificate names certbot manages."""
        result = self._run(["certificates"], action="ssl status")
        names: list[str] = []
        for line in result.output.splitlines():
            if "Certificate Name:" in line:
                names.append(line.split(":", 1)[1].strip())
        return names

    def _run(
        self, args: list[str], *, action: str, domain: str | None = None
    ) -> CommandResult:
        if not self.is_installed():
            raise CertbotMissingError(
                "certbot is not installed. Install it with: apt install certbot",
                domain=domain,
                action=action,
            )
        result = self.runner.run([self.certbot_bin, *args])
        if not result.ok:
            raise CertbotError(
                "certbot failed", domain=domain, action=action, detail=result.output
            )
        return result


def certificate_expiry(path: Path) -> datetime:
    """Return the ``notAfter`` timestamp of the certificate at *path* (UTC)."""
    cert = _load_certificate(path)
    not_after = getattr(cert, "not_valid_after_utc", None)
    if isinstance(not_after, datetime):
        return not_after.astimezone(UTC)
    return _as_utc(cert.not_valid_after)


def days_remaining(expiry: datetime, *, now: datetime | None = None) -> int:
    """Return whole days until *expiry* (negative once expired)."""
    moment = now or datetime.now(UTC)
    return (expiry - moment).days


def _load_certificate(path: Path) -> x509.Certificate:
    data = path.read_bytes()
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        return x509.load_der_x509_certificate(data)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=UTC)
    return moment.astimezone(UTC)


__all__ = [
    "CertPaths",
    "CertbotError",
    "CertbotMissingError",
    "CertbotProvider",
    "certificate_expiry",
    "days_remaining",
]
