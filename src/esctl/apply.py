"""Execute an action graph against the file and systemd providers."""

from __future__ import annotations

import graphlib
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .providers.files import FileProvider, FileProviderError
from .providers.systemd import SystemdError, SystemdProvider
from .reconcile.models import (
    Action,
    ActionGraph,
    ExecSpec,
    FileSpec,
    RunState,
    ServiceSpec,
    UnitFileSpec,
)

CHANGED = "changed"
UNCHANGED = "unchanged"
SKIPPED = "skipped"
REFRESHED = "refreshed"
FAILED = "failed"


class ApplyError(RuntimeError):
    """Raised when an action fails; actions applied earlier stay applied."""

    def __init__(self, message: str, report: ApplyReport) -> None:
        """Attach the partial *report* collected before the failure."""
        super().__init__(message)
        self.report = report


@dataclass(slots=True, frozen=True)
class ActionOutcome:
    """Result of executing a single action."""

    name: str
    kind: str
    status: str
    detail: str | None = None
    duration_ms: int | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly representation."""
        return {
            "name": self.name,
            "kind": self.kind,
            "status": self.status,
            "detail": self.detail,
            "duration_ms": self.duration_ms,
        }


@dataclass(slots=True)
class ApplyReport:
    """Outcomes of applying a graph, in execution order."""

    instance: str
    dry_run: bool = False
    outcomes: list[ActionOutcome] = field(default_factory=list)

    @property
    def changed(self) -> int:
        """Return the number of actions that changed something."""
        return sum(1 for outcome in self.outcomes if outcome.status in {CHANGED, REFRESHED})

    def outcome(self, name: str) -> ActionOutcome:
        """Return the outcome recorded for *name*."""
        for outcome in self.outcomes:
            if outcome.name == name:
                return outcome
        raise KeyError(name)

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly representation."""
        return {
            "instance": self.instance,
            "dry_run": self.dry_run,
            "changed": self.changed,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


def execution_order(graph: ActionGraph) -> list[Action]:
    """Return the actions of *graph* in a deterministic topological order.

    Among actions that are ready at the same time, declaration order wins.
    """
    position = {action.name: index for index, action in enumerate(graph.actions)}
    sorter = graphlib.TopologicalSorter(graph.predecessors())
    sorter.prepare()
    ordered: list[Action] = []
    while sorter.is_active():
        ready = sorted(sorter.get_ready(), key=lambda name: position.get(name, len(position)))
        for name in ready:
            if name not in position:
                raise KeyError(f"Action graph references unknown action {name!r}.")
            ordered.append(graph.get(name))
            sorter.done(name)
    return ordered


@dataclass(slots=True)
class GraphRunner:
    """Apply an :class:`ActionGraph` with refresh-only and notify semantics."""

    files: FileProvider
    systemd: SystemdProvider
    on_outcome: Callable[[ActionOutcome], None] | None = None

    def run(self, graph: ActionGraph, *, dry_run: bool = False) -> ApplyReport:
        """Execute every action of *graph* and return the report."""
        report = ApplyReport(instance=graph.instance, dry_run=dry_run)
        try:
            ordered = execution_order(graph)
        except (graphlib.CycleError, KeyError) as exc:
            raise ApplyError(f"Invalid action graph for {graph.instance}: {exc}", report) from exc

        notifications = graph.notifications()
        notified: set[str] = set()

        for action in ordered:
            start = time.perf_counter()
            is_notified = action.name in notified
            try:
                status, detail = self._execute(action, graph.instance, is_notified, dry_run)
            except (FileProviderError, SystemdError) as exc:
                self._record(
                    report,
                    ActionOutcome(action.name, action.kind.value, FAILED, str(exc), _ms(start)),
                )
                raise ApplyError(f"Action {action.name} failed: {exc}", report) from exc

            self._record(
                report,
                ActionOutcome(action.name, action.kind.value, status, detail, _ms(start)),
            )
            if status in {CHANGED, REFRESHED}:
                notified.update(
                    target for source, target in notifications if source == action.name
                )
        return report

    def _record(self, report: ApplyReport, outcome: ActionOutcome) -> None:
        report.outcomes.append(outcome)
        if self.on_outcome is not None:
            self.on_outcome(outcome)

    def _execute(
        self,
        action: Action,
        instance: str,
        notified: bool,
        dry_run: bool,
    ) -> tuple[str, str | None]:
        if action.refresh_only and not notified:
            return SKIPPED, "refresh-only; not notified"

        payload = action.payload
        if isinstance(payload, FileSpec):
            changed = self.files.apply_defaults(payload, instance, dry_run=dry_run)
            return (CHANGED if changed else UNCHANGED), f"{payload.ensure.value} {payload.path}"
        if isinstance(payload, UnitFileSpec):
            changed = self.files.apply_unit(payload, dry_run=dry_run)
            return (CHANGED if changed else UNCHANGED), f"{payload.ensure.value} {payload.path}"
        if isinstance(payload, ExecSpec):
            self.systemd.run_command(payload.command, dry_run=dry_run)
            return CHANGED, " ".join(payload.command)
        return self._apply_service(payload, notified, dry_run)

    def _apply_service(
        self,
        spec: ServiceSpec,
        notified: bool,
        dry_run: bool,
    ) -> tuple[str, str | None]:
        commands = self.systemd.apply_state(
            spec.unit,
            spec.run_state,
            spec.boot_enabled,
            dry_run=dry_run,
        )
        # A unit started in this pass already runs on the new configuration.
        if notified and spec.run_state is RunState.RUNNING and "start" not in commands:
            self.systemd.restart(spec.unit, hasrestart=spec.hasrestart, dry_run=dry_run)
            return REFRESHED, " ".join([*commands, "restart"])
        if commands:
            return CHANGED, " ".join(commands)
        return UNCHANGED, None


def _ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


__all__ = [
    "ActionOutcome",
    "ApplyError",
    "ApplyReport",
    "GraphRunner",
    "execution_order",
]
