"""Tests for the systemd provider."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence

import pytest

from esctl.providers.systemd import SystemdError, SystemdProvider
from esctl.reconcile import RunState

UNIT = "elasticsearch-es-01.service"


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def _fake_systemctl(
    monkeypatch: pytest.MonkeyPatch,
    *,
    active: bool,
    enabled: bool,
) -> list[tuple[str, str | None, bool]]:
    """Patch ``_systemctl`` to report the given state and record mutations."""
    calls: list[tuple[str, str | None, bool]] = []

    def fake(
        self: SystemdProvider,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
        dry_run: bool = False,
    ) -> DummyResult:
        if command == "is-active":
            return DummyResult(returncode=0 if active else 3)
        if command == "is-enabled":
            return DummyResult(returncode=0 if enabled else 1)
        calls.append((command, unit, dry_run))
        return DummyResult(returncode=0)

    monkeypatch.setattr(SystemdProvider, "_systemctl", fake)
    return calls


@pytest.mark.parametrize(
    ("active", "enabled", "run_state", "boot_enabled", "expected"),
    [
        (False, False, RunState.RUNNING, True, ["enable", "start"]),
        (True, True, RunState.RUNNING, True, []),
        (True, True, RunState.STOPPED, False, ["stop", "disable"]),
        (True, True, RunState.RUNNING, False, ["disable"]),
        (False, False, RunState.STOPPED, False, []),
        (True, True, RunState.UNSET, False, ["disable"]),
        (False, True, RunState.UNSET, False, ["disable"]),
    ],
)
def test_apply_state_issues_minimal_commands(
    monkeypatch: pytest.MonkeyPatch,
    active: bool,
    enabled: bool,
    run_state: RunState,
    boot_enabled: bool,
    expected: list[str],
) -> None:
    """Only the commands needed to reach the target state are issued."""
    calls = _fake_systemctl(monkeypatch, active=active, enabled=enabled)
    provider = SystemdProvider()

    commands = provider.apply_state(UNIT, run_state, boot_enabled)

    assert commands == expected
    assert calls == [(command, UNIT, False) for command in expected]


def test_apply_state_dry_run_forwards_flag(monkeypatch: pytest.MonkeyPatch) -> None:
    """Dry runs still query state but mark mutations as dry."""
    calls = _fake_systemctl(monkeypatch, active=False, enabled=False)

    SystemdProvider().apply_state(UNIT, RunState.RUNNING, True, dry_run=True)

    assert calls == [("enable", UNIT, True), ("start", UNIT, True)]


def test_restart_falls_back_without_restart_support(monkeypatch: pytest.MonkeyPatch) -> None:
    """Units without restart support are stopped and started."""
    calls = _fake_systemctl(monkeypatch, active=True, enabled=True)
    provider = SystemdProvider()

    provider.restart(UNIT)
    provider.restart(UNIT, hasrestart=False)

    assert [command for command, _unit, _dry in calls] == ["restart", "stop", "start"]


def test_run_command_raises_on_failure(monkeypatch: pytest.MonkeyPatch) -> None:
    """Non-zero exits raise SystemdError with the captured stderr."""

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        return DummyResult(returncode=1, stderr="Access denied")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(SystemdError, match="Access denied"):
        SystemdProvider().run_command(["/bin/systemctl", "daemon-reload"])


def test_run_command_missing_binary(monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing executable is reported as SystemdError."""

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(SystemdError, match="not found"):
        SystemdProvider(systemctl_bin="/nope/systemctl").is_active(UNIT)


def test_run_command_dry_run_skips_subprocess(monkeypatch: pytest.MonkeyPatch) -> None:
    """Dry runs never spawn a process."""

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        raise AssertionError("subprocess should not run")

    monkeypatch.setattr(subprocess, "run", fake_run)

    result = SystemdProvider().run_command(["/bin/systemctl", "daemon-reload"], dry_run=True)

    assert result.returncode == 0
    assert result.args == ["/bin/systemctl", "daemon-reload"]
