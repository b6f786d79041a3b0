"""Data models and errors for instance reconciliation."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class ReconcileError(ValueError):
    """Base class for failures that abort a reconciliation pass."""


class InvalidStatusError(ReconcileError):
    """Raised when a present instance declares an unknown service status."""

    def __init__(self, status: str) -> None:
        """Record the offending *status* literal."""
        super().__init__(f'"{status}" is an unknown service status value.')
        self.status = status


class ConflictingOwnerError(ReconcileError):
    """Raised when an ``ES_USER`` override disagrees with the configured owner."""

    def __init__(self, requested: str, configured: str) -> None:
        """Record both the requested and configured owner."""
        super().__init__(
            f"Found ES_USER={requested!r} in init defaults but the configured "
            f"elasticsearch user is {configured!r}. Use the elasticsearch_user "
            "setting instead."
        )
        self.requested = requested
        self.configured = configured


class Ensure(str, Enum):
    """Whether the instance should exist on the host."""

    PRESENT = "present"
    ABSENT = "absent"


class ServiceStatus(str, Enum):
    """Recognised service status values for a present instance."""

    ENABLED = "enabled"
    DISABLED = "disabled"
    RUNNING = "running"
    UNMANAGED = "unmanaged"


class RunState(str, Enum):
    """Run state handed to the service manager."""

    RUNNING = "running"
    STOPPED = "stopped"
    UNSET = "unset"

    @property
    def is_managed(self) -> bool:
        """Return ``True`` when the run state should be enforced."""
        return self is not RunState.UNSET


class ActionKind(str, Enum):
    """Tag identifying the payload carried by an :class:`Action`."""

    DEFAULTS_FILE = "defaults_file"
    UNIT_FILE = "unit_file"
    EXEC = "exec"
    SERVICE = "service"


@dataclass(slots=True, frozen=True)
class ServiceIntent:
    """Declared intent for an instance.

    ``status`` stays a plain string so unknown values can be reported; it is
    ignored entirely when ``ensure`` is :attr:`Ensure.ABSENT`.
    """

    ensure: Ensure = Ensure.PRESENT
    status: str = ServiceStatus.ENABLED.value


@dataclass(slots=True, frozen=True)
class ResolvedState:
    """Concrete directives derived from a :class:`ServiceIntent`."""

    run_state: RunState
    boot_enabled: bool


@dataclass(slots=True, frozen=True)
class ServiceOwner:
    """Process owner identity for the service."""

    user: str
    group: str


@dataclass(slots=True, frozen=True)
class InstallPaths:
    """Installation directories used when materialising an instance."""

    defaults_dir: Path = Path("/etc/default")
    systemd_dir: Path = Path("/lib/systemd/system")
    homedir: Path = Path("/usr/share/elasticsearch")
    pid_dir: Path = Path("/var/run/elasticsearch")


@dataclass(slots=True, frozen=True)
class ServiceHints:
    """Control-mechanism hints forwarded to the service executor."""

    hasstatus: bool = True
    hasrestart: bool = True
    pattern: str | None = None


@dataclass(slots=True, frozen=True)
class ServiceSettings:
    """Explicit configuration consumed by :func:`reconcile`."""

    owner: ServiceOwner
    package_name: str = "elasticsearch"
    paths: InstallPaths = field(default_factory=InstallPaths)
    hints: ServiceHints = field(default_factory=ServiceHints)
    restart_on_config_change: bool = False
    daemon_reload_command: tuple[str, ...] = ("/bin/systemctl", "daemon-reload")

    def defaults_path(self, instance: str) -> Path:
        """Return the defaults file path for *instance*."""
        return self.paths.defaults_dir / f"elasticsearch-{instance}"

    def unit_path(self, instance: str) -> Path:
        """Return the unit file path for *instance*."""
        return self.paths.systemd_dir / unit_name(instance)


def unit_name(instance: str) -> str:
    """Return the systemd unit name for *instance*."""
    return f"elasticsearch-{instance}.service"


@dataclass(slots=True, frozen=True)
class UnitDescriptor:
    """Values needed to render and write an instance unit file."""

    instance: str
    nofile: str
    memlock: str | None
    nproc: str
    content: bytes
    unit_path: Path
    defaults_path: Path
    paths: InstallPaths
    owner: ServiceOwner
    package_name: str

    def context(self) -> dict[str, object]:
        """Return the template context for rendering the unit file."""
        return {
            "instance_name": self.instance,
            "nofile": self.nofile,
            "memlock": self.memlock,
            "nproc": self.nproc,
            "defaults_location": str(self.paths.defaults_dir),
            "defaults_file": str(self.defaults_path),
            "homedir": str(self.paths.homedir),
            "pid_dir": str(self.paths.pid_dir),
            "user": self.owner.user,
            "group": self.owner.group,
            "package_name": self.package_name,
        }


@dataclass(slots=True, frozen=True)
class FileSpec:
    """Defaults file to write (from a source file or an overlay) or remove."""

    path: Path
    ensure: Ensure
    source: Path | None = None
    overlay: tuple[tuple[str, str], ...] | None = None
    owner: str = "root"
    group: str = "root"
    mode: int = 0o644

    def overlay_dict(self) -> dict[str, str]:
        """Return the overlay as an ordered dictionary."""
        return dict(self.overlay or ())


@dataclass(slots=True, frozen=True)
class UnitFileSpec:
    """Unit file to render from a descriptor or remove."""

    path: Path
    ensure: Ensure
    descriptor: UnitDescriptor | None = None
    mode: int = 0o644


@dataclass(slots=True, frozen=True)
class ExecSpec:
    """Command executed by the action runner."""

    command: tuple[str, ...]


@dataclass(slots=True, frozen=True)
class ServiceSpec:
    """Target state for the systemd service."""

    unit: str
    run_state: RunState
    boot_enabled: bool
    provider: str = "systemd"
    hasstatus: bool = True
    hasrestart: bool = True
    pattern: str | None = None


Payload = FileSpec | UnitFileSpec | ExecSpec | ServiceSpec


@dataclass(slots=True, frozen=True)
class Action:
    """Node in an :class:`ActionGraph`.

    ``before``/``notify`` point at actions that run after this one;
    ``require``/``subscribe`` point at actions that run before it. Notify and
    subscribe edges additionally propagate change notifications.
    """

    name: str
    kind: ActionKind
    payload: Payload
    before: tuple[str, ...] = ()
    require: tuple[str, ...] = ()
    notify: tuple[str, ...] = ()
    subscribe: tuple[str, ...] = ()
    refresh_only: bool = False

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly representation."""
        return {
            "name": self.name,
            "kind": self.kind.value,
            "refresh_only": self.refresh_only,
            "before": list(self.before),
            "require": list(self.require),
            "notify": list(self.notify),
            "subscribe": list(self.subscribe),
            "payload": _payload_to_dict(self.payload),
        }


@dataclass(slots=True, frozen=True)
class ActionGraph:
    """Immutable set of actions with ordering and notification edges."""

    instance: str
    actions: tuple[Action, ...]

    def __iter__(self) -> Iterator[Action]:
        return iter(self.actions)

    def __len__(self) -> int:
        return len(self.actions)

    def __contains__(self, name: object) -> bool:
        return any(action.name == name for action in self.actions)

    def get(self, name: str) -> Action:
        """Return the action called *name*."""
        for action in self.actions:
            if action.name == name:
                return action
        raise KeyError(name)

    def by_kind(self, kind: ActionKind) -> tuple[Action, ...]:
        """Return every action tagged with *kind*."""
        return tuple(action for action in self.actions if action.kind is kind)

    def happens_before(self) -> set[tuple[str, str]]:
        """Return ``(first, second)`` ordering pairs implied by all edge types."""
        pairs: set[tuple[str, str]] = set()
        for action in self.actions:
            for target in (*action.before, *action.notify):
                pairs.add((action.name, target))
            for source in (*action.require, *action.subscribe):
                pairs.add((source, action.name))
        return pairs

    def notifications(self) -> set[tuple[str, str]]:
        """Return ``(source, target)`` pairs along which changes propagate."""
        pairs: set[tuple[str, str]] = set()
        for action in self.actions:
            for target in action.notify:
                pairs.add((action.name, target))
            for source in action.subscribe:
                pairs.add((source, action.name))
        return pairs

    def predecessors(self) -> dict[str, set[str]]:
        """Return the prerequisite set of every action."""
        graph: dict[str, set[str]] = {action.name: set() for action in self.actions}
        for first, second in self.happens_before():
            graph.setdefault(second, set()).add(first)
            graph.setdefault(first, set())
        return graph

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-friendly representation."""
        return {
            "instance": self.instance,
            "actions": [action.to_dict() for action in self.actions],
        }


def _payload_to_dict(payload: Payload) -> dict[str, object]:
    if isinstance(payload, FileSpec):
        return {
            "path": str(payload.path),
            "ensure": payload.ensure.value,
            "source": str(payload.source) if payload.source is not None else None,
            "overlay": payload.overlay_dict() if payload.overlay is not None else None,
            "owner": payload.owner,
            "group": payload.group,
            "mode": f"{payload.mode:04o}",
        }
    if isinstance(payload, UnitFileSpec):
        descriptor = payload.descriptor
        return {
            "path": str(payload.path),
            "ensure": payload.ensure.value,
            "mode": f"{payload.mode:04o}",
            "nofile": descriptor.nofile if descriptor else None,
            "memlock": descriptor.memlock if descriptor else None,
            "nproc": descriptor.nproc if descriptor else None,
        }
    if isinstance(payload, ExecSpec):
        return {"command": list(payload.command)}
    return {
        "unit": payload.unit,
        "run_state": payload.run_state.value,
        "boot_enabled": payload.boot_enabled,
        "provider": payload.provider,
        "hasstatus": payload.hasstatus,
        "hasrestart": payload.hasrestart,
        "pattern": payload.pattern,
    }


def overlay_items(overlay: Mapping[str, str]) -> tuple[tuple[str, str], ...]:
    """Freeze *overlay* into an ordered tuple of pairs."""
    return tuple((str(key), str(value)) for key, value in overlay.items())
