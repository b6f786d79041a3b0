"""Structured operation logging.

Every CLI command runs inside :meth:`StructuredLogger.operation`. The scope
collects the steps performed and the final result, then appends a single
JSON record to ``operations.jsonl`` in the configured logs directory. Records
are mirrored to the stdlib ``esctl.operations`` logger at DEBUG level.

Logging must never break a command: if the directory cannot be created or a
write fails, the logger disables itself and subsequent operations are no-ops.
"""
from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

OPERATIONS_LOG_NAME = "operations.jsonl"

_log = logging.getLogger("esctl.operations")


def _sanitise(value: object) -> object:
    """Return a JSON-safe copy of *value*."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, Mapping):
        return {str(key): _sanitise(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_sanitise(item) for item in value]
    return str(value)


@dataclass(slots=True)
class OperationScope:
    """Mutable record for a single logged operation."""

    command: str
    args: dict[str, object]
    target: dict[str, object]
    op_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    steps: list[dict[str, object]] = field(default_factory=list)
    result: dict[str, object] | None = None

    def add_step(self, name: str, *, status: str = "success", detail: str | None = None) -> None:
        """Record a step performed while executing the operation."""
        step: dict[str, object] = {"name": name, "status": status}
        if detail is not None:
            step["detail"] = detail
        self.steps.append(step)

    def success(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as successful."""
        self._finish("success", message, changed=changed, warnings=warnings, context=context)

    def warning(
        self,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        backups: Sequence[str] | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as completed with warnings."""
        self._finish(
            "warning",
            message,
            changed=changed,
            warnings=warnings,
            errors=errors,
            backups=backups,
            context=context,
        )

    def error(
        self,
        message: str,
        *,
        errors: Sequence[str] | None = None,
        rc: int = 1,
        context: Mapping[str, object] | None = None,
    ) -> None:
        """Mark the operation as failed; *errors* defaults to ``[message]``."""
        self._finish(
            "error",
            message,
            errors=list(errors) if errors else [message],
            rc=rc,
            context=context,
        )

    def _finish(
        self,
        status: str,
        message: str,
        *,
        changed: int = 0,
        warnings: Sequence[str] | None = None,
        errors: Sequence[str] | None = None,
        backups: Sequence[str] | None = None,
        rc: int | None = None,
        context: Mapping[str, object] | None = None,
    ) -> None:
        result: dict[str, object] = {
            "status": status,
            "message": message,
            "changed": changed,
            "warnings": list(warnings or []),
            "errors": list(errors or []),
            "backups": list(backups or []),
            "context": _sanitise(dict(context or {})),
        }
        if rc is not None:
            result["rc"] = rc
        self.result = result


class StructuredLogger:
    """Append operation records to a JSON-lines log."""

    def __init__(self, logs_dir: Path) -> None:
        """Prepare *logs_dir*; disable logging when it cannot be created."""
        self.logs_dir = Path(logs_dir)
        self._operations_log_path = self.logs_dir / OPERATIONS_LOG_NAME
        self._enabled = True
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _log.warning("Operation log disabled; cannot create %s: %s", self.logs_dir, exc)
            self._enabled = False

    @property
    def operations_log_path(self) -> Path:
        """Return the path of the JSON-lines operations log."""
        return self._operations_log_path

    @contextmanager
    def operation(
        self,
        command: str,
        *,
        args: Mapping[str, object] | None = None,
        target: Mapping[str, object] | None = None,
    ) -> Iterator[OperationScope]:
        """Scope a logged operation, recording its outcome on exit."""
        scope = OperationScope(
            command=command,
            args=_sanitise(dict(args or {})),  # type: ignore[arg-type]
            target=_sanitise(dict(target or {})),  # type: ignore[arg-type]
        )
        started = time.monotonic()
        try:
            yield scope
        except BaseException as exc:
            if scope.result is None:
                scope.error(str(exc) or type(exc).__name__)
            raise
        finally:
            if scope.result is None:
                scope.success("Operation completed.")
            self._write(scope, duration_ms=int((time.monotonic() - started) * 1000))

    def _write(self, scope: OperationScope, *, duration_ms: int) -> None:
        record = {
            "id": scope.op_id,
            "ts": scope.started_at,
            "command": scope.command,
            "args": scope.args,
            "target": scope.target,
            "steps": scope.steps,
            "duration_ms": duration_ms,
            "result": scope.result,
        }
        line = json.dumps(record, sort_keys=True)
        _log.debug(line)
        if not self._enabled:
            return
        try:
            with self._operations_log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        except OSError as exc:
            _log.warning("Operation log disabled after write failure: %s", exc)
            self._enabled = False


__all__ = ["OperationScope", "StructuredLogger"]
