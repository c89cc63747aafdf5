"""Doctor command infrastructure."""

from __future__ import annotations

from .engine import DoctorEngine, run_probe, run_probes
from .models import (
    PROBE_CATEGORY_VALUES,
    DoctorImpact,
    DoctorReport,
    DoctorSummary,
    ProbeCategory,
    ProbeContext,
    ProbeDefinition,
    ProbeResult,
    ProbeStatus,
    aggregate_results,
)
from .probes import collect_probes

__all__ = [
    "DoctorEngine",
    "DoctorImpact",
    "DoctorReport",
    "DoctorSummary",
    "ProbeCategory",
    "PROBE_CATEGORY_VALUES",
    "ProbeContext",
    "ProbeDefinition",
    "ProbeResult",
    "ProbeStatus",
    "aggregate_results",
    "collect_probes",
    "run_probe",
    "run_probes",
]
