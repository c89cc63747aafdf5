"""Sequential probe runner for ``vhostctl doctor``."""

from __future__ import annotations

import time
import traceback
from collections.abc import Mapping, Sequence
from dataclasses import replace

from .models import (
    DoctorImpact,
    DoctorReport,
    ProbeContext,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
)


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _crashed(probe: ProbeDefinition, exc: Exception, elapsed: int) -> ProbeResult:
    return ProbeResult(
        id=probe.id,
        category=probe.category,
        status=ProbeStatus.RED,
        impact=DoctorImpact.PROVIDER,
        message=f"Probe '{probe.id}' raised an unexpected error: {exc}",
        duration_ms=elapsed,
        data={"exception": repr(exc), "traceback": traceback.format_exc()},
        warnings=("unhandled-exception",),
    )


def run_probe(probe: ProbeDefinition, context: ProbeContext) -> ProbeResult:
    """Run one probe, pinning its id and category to the definition.

    A probe that raises is reported as a red provider failure instead of
    aborting the whole doctor run.
    """
    start = time.perf_counter()
    try:
        result = probe.run(context)
    except Exception as exc:  # noqa: BLE001
        return _crashed(probe, exc, _elapsed_ms(start))
    return replace(
        result,
        id=probe.id,
        category=probe.category,
        duration_ms=result.duration_ms if result.duration_ms is not None else _elapsed_ms(start),
    )


def run_probes(context: ProbeContext, probes: Sequence[ProbeDefinition]) -> list[ProbeResult]:
    """Execute probes one after another in declaration order."""
    return [run_probe(probe, context) for probe in probes]


class DoctorEngine:
    """Runs a probe selection against one backend and builds the report."""

    def __init__(self, context: ProbeContext) -> None:
        self._context = context

    def run(
        self,
        probes: Sequence[ProbeDefinition],
        *,
        metadata: Mapping[str, object] | None = None,
    ) -> DoctorReport:
        start = time.perf_counter()
        results = run_probes(self._context, probes)
        run_metadata: dict[str, object] = {
            "backend": self._context.driver.name,
            "probe_count": len(results),
            "duration_ms": _elapsed_ms(start),
            **(metadata or {}),
        }
        return DoctorReport.from_results(results, metadata=run_metadata)
