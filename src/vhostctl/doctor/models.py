"""Result types shared by the doctor engine, its probes and the CLI."""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal, get_args

from ..exit_codes import ExitCode

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..lifecycle import Lifecycle
    from ..providers.base import SiteDriver
    from ..providers.executor import CommandRunner
    from ..providers.systemd import SystemdProvider
    from ..state.registry import StateRegistry
    from ..tls import CertbotProvider


class ProbeStatus(str, Enum):
    """Traffic-light outcome of a single probe."""

    GREEN = "green"
    YELLOW = "yellow"
    RED = "red"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {ProbeStatus.GREEN: 0, ProbeStatus.YELLOW: 1, ProbeStatus.RED: 2}


class DoctorImpact(Enum):
    """Which exit code a failing probe forces on the doctor run."""

    OK = ExitCode.OK
    VALIDATION = ExitCode.VALIDATION
    ENVIRONMENT = ExitCode.ENVIRONMENT
    PROVIDER = ExitCode.PROVIDER

    @property
    def exit_code(self) -> int:
        return int(self.value)


ProbeCategory = Literal["env", "config", "state", "backend", "php", "tls", "vhost"]

PROBE_CATEGORY_VALUES: tuple[str, ...] = get_args(ProbeCategory)


@dataclass(slots=True, frozen=True)
class ProbeContext:
    """Everything a probe may inspect; probes never mutate it."""

    config: AppConfig
    registry: StateRegistry
    driver: SiteDriver
    lifecycle: Lifecycle
    runner: CommandRunner
    systemd: SystemdProvider
    certbot: CertbotProvider
    php_socket_dir: Path = Path("/run/php")


@dataclass(slots=True, frozen=True)
class ProbeResult:
    """Outcome of running a probe."""

    id: str
    category: ProbeCategory
    status: ProbeStatus
    impact: DoctorImpact
    message: str
    remediation: str | None = None
    duration_ms: int | None = None
    data: Mapping[str, Any] | None = None
    warnings: Sequence[str] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "category": self.category,
            "status": self.status.value,
            "impact": self.impact.name.lower(),
            "message": self.message,
            "remediation": self.remediation,
            "duration_ms": self.duration_ms,
            "data": dict(self.data) if self.data else None,
            "warnings": list(self.warnings),
        }


@dataclass(slots=True, frozen=True)
class ProbeDefinition:
    """A named, categorised probe callable."""

    id: str
    category: ProbeCategory
    run: Callable[[ProbeContext], ProbeResult]


@dataclass(slots=True, frozen=True)
class DoctorSummary:
    """Worst status and impact across a set of results."""

    status: ProbeStatus
    impact: DoctorImpact
    totals: Mapping[ProbeStatus, int]

    @property
    def exit_code(self) -> int:
        return self.impact.exit_code


@dataclass(slots=True, frozen=True)
class DoctorReport:
    """Results of a doctor run plus its summary and run metadata."""

    results: Sequence[ProbeResult]
    summary: DoctorSummary
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_results(
        cls,
        results: Sequence[ProbeResult],
        metadata: Mapping[str, Any] | None = None,
    ) -> DoctorReport:
        return cls(
            results=tuple(results),
            summary=aggregate_results(results),
            metadata=dict(metadata or {}),
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "summary": {
                "status": self.summary.status.value,
                "impact": self.summary.impact.name.lower(),
                "exit_code": self.summary.exit_code,
                "totals": {
                    status.value: self.summary.totals.get(status, 0) for status in ProbeStatus
                },
            },
            "results": [result.to_dict() for result in self.results],
            "metadata": dict(self.metadata),
        }


def aggregate_results(results: Iterable[ProbeResult]) -> DoctorSummary:
    """Summarise *results*; the most severe status and impact win independently."""
    results = list(results)
    totals = Counter({status: 0 for status in ProbeStatus})
    totals.update(result.status for result in results)
    status = max(
        (result.status for result in results),
        key=lambda s: s.rank,
        default=ProbeStatus.GREEN,
    )
    impact = max(
        (result.impact for result in results),
        key=lambda i: i.exit_code,
        default=DoctorImpact.OK,
    )
    return DoctorSummary(status=status, impact=impact, totals=dict(totals))
