"""Systemd provider applying service state for instance units."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass

from ..reconcile.models import RunState


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True, frozen=True)
class ServiceState:
    """Observed state of a unit."""

    active: bool
    enabled: bool


@dataclass(slots=True)
class SystemdProvider:
    """Query and change the state of systemd service units."""

    systemctl_bin: str = "systemctl"

    def is_active(self, unit: str) -> bool:
        """Return ``True`` when *unit* is currently active."""
        result = self._systemctl("is-active", unit, check=False)
        return result.returncode == 0

    def is_enabled(self, unit: str) -> bool:
        """Return ``True`` when *unit* is enabled at boot."""
        result = self._systemctl("is-enabled", unit, check=False)
        return result.returncode == 0

    def current_state(self, unit: str) -> ServiceState:
        """Return the observed state of *unit*."""
        return ServiceState(active=self.is_active(unit), enabled=self.is_enabled(unit))

    def apply_state(
        self,
        unit: str,
        run_state: RunState,
        boot_enabled: bool,
        *,
        dry_run: bool = False,
    ) -> list[str]:
        """Bring *unit* to the requested state and return the commands issued.

        ``RunState.UNSET`` leaves the run state untouched; boot enablement is
        always enforced.
        """
        current = self.current_state(unit)
        commands: list[str] = []

        if run_state is RunState.STOPPED and current.active:
            commands.append("stop")
        if boot_enabled and not current.enabled:
            commands.append("enable")
        elif not boot_enabled and current.enabled:
            commands.append("disable")
        if run_state is RunState.RUNNING and not current.active:
            commands.append("start")

        for command in commands:
            self._systemctl(command, unit, dry_run=dry_run)
        return commands

    def restart(self, unit: str, *, hasrestart: bool = True, dry_run: bool = False) -> None:
        """Restart *unit*, falling back to stop/start without restart support."""
        if hasrestart:
            self._systemctl("restart", unit, dry_run=dry_run)
            return
        self._systemctl("stop", unit, dry_run=dry_run)
        self._systemctl("start", unit, dry_run=dry_run)

    def run_command(
        self,
        command: Sequence[str],
        *,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        """Run an arbitrary command such as the daemon reload."""
        return self._run_command(
            command,
            check=True,
            error_prefix=" ".join(command),
            dry_run=dry_run,
        )

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        return self._run_command(
            args,
            check=check,
            error_prefix=f"{self.systemctl_bin} {command}",
            dry_run=dry_run,
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
        dry_run: bool,
    ) -> subprocess.CompletedProcess[str]:
        if dry_run:
            return subprocess.CompletedProcess(list(args), returncode=0, stdout="", stderr="")
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["ServiceState", "SystemdError", "SystemdProvider"]
