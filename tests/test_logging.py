"""Failure-mode tests for the structured logging subsystem."""
from __future__ import annotations

import json
from pathlib import Path

import pytest

from esctl.logging import StructuredLogger


def _records(logger: StructuredLogger) -> list[dict[str, object]]:
    text = logger.operations_log_path.read_text(encoding="utf-8")
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def test_structured_logger_disables_when_directory_unavailable(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Logger gracefully disables itself when log directory cannot be created."""
    log_dir = tmp_path / "logs"

    original_mkdir = Path.mkdir

    def fail_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        if self == log_dir:
            raise PermissionError("no access")
        original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fail_mkdir)

    logger = StructuredLogger(log_dir)
    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo", args={"foo": "bar"}) as op:
        op.success("done", changed=0)


def test_structured_logger_disables_after_write_failure(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Write failures mark the logger disabled so subsequent writes are skipped."""
    logger = StructuredLogger(tmp_path / "logs")
    operations_path = logger.operations_log_path

    original_open = Path.open

    def fail_once(self: Path, *args: object, **kwargs: object) -> object:
        if self == operations_path:
            raise OSError("disk full")
        return original_open(self, *args, **kwargs)

    monkeypatch.setattr(Path, "open", fail_once)

    with logger.operation("demo") as op:
        op.success("done", changed=0)

    assert logger._enabled is False  # type: ignore[attr-defined]

    with logger.operation("demo-2") as op:
        op.success("done", changed=0)


def test_operation_records_steps_and_target(tmp_path: Path) -> None:
    """Steps, args and target are written alongside the result."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation(
        "apply",
        args={"name": "es-01", "unit_template": Path("/tmp/unit.j2")},
        target={"kind": "instance", "name": "es-01"},
    ) as op:
        op.add_step("defaults_es-01", status="changed", detail="present /etc/default/x")
        op.add_step("systemd_reload_es-01", status="skipped")
        op.success("Instance applied.", changed=1)

    (record,) = _records(logger)
    assert record["command"] == "apply"
    assert record["args"] == {"name": "es-01", "unit_template": "/tmp/unit.j2"}
    assert record["target"] == {"kind": "instance", "name": "es-01"}
    assert record["steps"] == [
        {"name": "defaults_es-01", "status": "changed", "detail": "present /etc/default/x"},
        {"name": "systemd_reload_es-01", "status": "skipped"},
    ]
    assert record["result"]["status"] == "success"
    assert record["result"]["changed"] == 1
    assert isinstance(record["duration_ms"], int)


def test_operation_scope_warning_sanitises_context(tmp_path: Path) -> None:
    """Warnings should be recorded with JSON-safe context values."""
    logger = StructuredLogger(tmp_path / "logs")

    class Custom:
        def __str__(self) -> str:
            return "<custom>"

    with logger.operation("demo", args={"path": Path("foo")}) as op:
        op.warning(
            "warned",
            warnings=("note",),
            errors=("err",),
            changed=1,
            backups=["backup.tar"],
            context={"path": Path("/var/lib"), "obj": Custom()},
        )

    (record,) = _records(logger)
    result = record["result"]
    assert result["status"] == "warning"
    assert result["warnings"] == ["note"]
    assert result["errors"] == ["err"]
    assert result["backups"] == ["backup.tar"]
    assert result["context"] == {"path": "/var/lib", "obj": "<custom>"}


def test_operation_scope_error_defaults_error_list(tmp_path: Path) -> None:
    """Errors should default to the message when not provided."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("demo") as op:
        op.error("boom", errors=None, context={"value": {1, 2}})

    (record,) = _records(logger)
    result = record["result"]
    assert result["status"] == "error"
    assert result["errors"] == ["boom"]
    assert result["context"] == {"value": "{1, 2}"}


def test_unhandled_exception_is_recorded_and_propagates(tmp_path: Path) -> None:
    """Exceptions escaping the scope are logged as errors and re-raised."""
    logger = StructuredLogger(tmp_path / "logs")

    with pytest.raises(RuntimeError, match="kaboom"):
        with logger.operation("demo"):
            raise RuntimeError("kaboom")

    (record,) = _records(logger)
    assert record["result"]["status"] == "error"
    assert record["result"]["errors"] == ["kaboom"]


def test_operation_without_result_defaults_to_success(tmp_path: Path) -> None:
    """Scopes that never set a result are recorded as successful."""
    logger = StructuredLogger(tmp_path / "logs")

    with logger.operation("demo"):
        pass

    (record,) = _records(logger)
    assert record["result"]["status"] == "success"
