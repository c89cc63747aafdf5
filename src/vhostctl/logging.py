"""Structured operation logging for vhostctl.

Every CLI command runs inside :meth:`StructuredLogger.operation`. The scope
collects the steps performed and the final result, then appends one JSON line
to ``operations.jsonl`` in the configured logs directory. Logging never breaks
a command: when the directory cannot be created or a write fails the logger
disables itself and carries on silently.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path

_LOG = logging.getLogger(__name__)

OPERATIONS_LOG = "operations.jsonl"


def _sanitize(value: object) -> object:
    """Return a JSON-safe copy of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return _sanitize(value.value)
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(key): _sanitize(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitize(item) for item in value]
    return str(value)


def _as_list(values: Iterable[object] | None) -> list[object]:
    if values is None:
        return []
    return [_sanitize(item) for item in values]


class OperationScope:
    """Mutable record of a single CLI operation."""

    def __init__(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> None:
        """Initialise an empty scope for *command*."""
        self.command = command
        self.operation_id = uuid.uuid4().hex[:12]
        self.args = dict(args or {})
        self.target = dict(target or {})
        self.steps: list[dict[str, object]] = []
        self.result: dict[str, object] | None = None
        self._started = time.monotonic()
        self._started_at = datetime.now(UTC)

    def add_step(self, name: str, *, status: str = "success", detail: object = None) -> None:
        """Record a step performed by the command."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = _sanitize(detail)
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int | None = None,
        warnings: Iterable[object] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._set_result(
            "success",
            message,
            changed=changed,
            warnings=warnings,
            context=context,
        )

    def warning(
        self,
        message: str,
        *,
        warnings: Iterable[object] | None = None,
        errors: Iterable[object] | None = None,
        changed: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._set_result(
            "warning",
            message,
            changed=changed,
            warnings=warnings if warnings is not None else [message],
            errors=errors,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Iterable[object] | None = None,
        warnings: Iterable[object] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed."""
        self._set_result(
            "error",
            message,
            warnings=warnings,
            errors=errors if errors is not None else [message],
            rc=rc,
            context=context,
        )

    def _set_result(
        self,
        status: str,
        message: str,
        *,
        changed: int | None = None,
        warnings: Iterable[object] | None = None,
        errors: Iterable[object] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {"status": status, "message": message}
        if changed is not None:
            result["changed"] = changed
        if warnings is not None:
            result["warnings"] = _as_list(warnings)
        if errors is not None:
            result["errors"] = _as_list(errors)
        if rc is not None:
            result["rc"] = rc
        if context:
            result["context"] = _sanitize(context)
        self.result = result

    def to_record(self) -> dict[str, object]:
        """Return the JSON record for this operation."""
        return {
            "ts": self._started_at.isoformat(),
            "op_id": self.operation_id,
            "command": self.command,
            "args": _sanitize(self.args),
            "target": _sanitize(self.target),
            "steps": self.steps,
            "result": self.result or {"status": "unknown"},
            "duration_ms": int((time.monotonic() - self._started) * 1000),
        }


class StructuredLogger:
    """Append-only JSONL writer for operation records."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare *logs_dir*; disable logging when it cannot be created."""
        self.logs_dir = Path(logs_dir).expanduser()
        self._operations_log_path = self.logs_dir / OPERATIONS_LOG
        self._enabled = True
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _LOG.debug("operation logging disabled: %s", exc)
            self._enabled = False

    @property
    def enabled(self) -> bool:
        """Return ``True`` while records are being written."""
        return self._enabled

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Yield an :class:`OperationScope` and persist it on exit."""
        scope = OperationScope(command, args=args, target=target)
        try:
            yield scope
        except Exception as exc:
            if scope.result is None:
                scope.error(str(exc) or exc.__class__.__name__)
            raise
        finally:
            self._write(scope.to_record())

    def _write(self, record: Mapping[str, object]) -> None:
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, sort_keys=True) + "\n")
        except OSError as exc:
            _LOG.debug("operation logging disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
