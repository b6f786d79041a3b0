"""Assemble the action graph for a single instance."""
from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

from .defaults import build_unit_descriptor, merge_defaults
from .intent import resolve_intent
from .models import (
    Action,
    ActionGraph,
    ActionKind,
    Ensure,
    ExecSpec,
    FileSpec,
    ResolvedState,
    ServiceIntent,
    ServiceSettings,
    ServiceSpec,
    UnitDescriptor,
    UnitFileSpec,
    overlay_items,
    unit_name,
)


def service_action_name(instance: str) -> str:
    """Return the name of the service-state action for *instance*."""
    return f"elasticsearch-instance-{instance}"


def reload_action_name(instance: str) -> str:
    """Return the name of the daemon-reload action for *instance*."""
    return f"systemd_reload_{instance}"


def defaults_action_name(instance: str) -> str:
    """Return the name of the defaults file action for *instance*."""
    return f"defaults_{instance}"


def unit_action_name(instance: str) -> str:
    """Return the name of the unit file action for *instance*."""
    return f"unit_{instance}"


def reconcile(
    instance: str,
    intent: ServiceIntent,
    settings: ServiceSettings,
    *,
    init_defaults: Mapping[str, str] | None = None,
    init_defaults_file: Path | None = None,
    init_template: bytes | None = None,
) -> ActionGraph:
    """Compute the action graph bringing *instance* to *intent*.

    ``init_defaults`` and ``init_defaults_file`` are alternative sources for
    the defaults file; when both are given the file wins and the overlay is
    ignored. ``init_template`` is the raw unit template. Raises
    :class:`~esctl.reconcile.models.InvalidStatusError` or
    :class:`~esctl.reconcile.models.ConflictingOwnerError` before anything
    is built.
    """
    state = resolve_intent(intent)

    merged: dict[str, str] | None = None
    if intent.ensure is Ensure.PRESENT and init_defaults_file is None:
        merged = merge_defaults(
            init_defaults,
            user=settings.owner.user,
            group=settings.owner.group,
        )

    descriptor: UnitDescriptor | None = None
    if intent.ensure is Ensure.PRESENT and init_template is not None:
        descriptor = build_unit_descriptor(instance, settings, init_template, merged)

    return build_action_graph(
        instance,
        intent.ensure,
        state,
        settings,
        merged_defaults=merged,
        defaults_source=init_defaults_file,
        descriptor=descriptor,
    )


def build_action_graph(
    instance: str,
    ensure: Ensure,
    state: ResolvedState,
    settings: ServiceSettings,
    *,
    merged_defaults: Mapping[str, str] | None = None,
    defaults_source: Path | None = None,
    descriptor: UnitDescriptor | None = None,
) -> ActionGraph:
    """Build the graph from already-resolved inputs."""
    service_name = service_action_name(instance)
    reload_name = reload_action_name(instance)

    reload_action = Action(
        name=reload_name,
        kind=ActionKind.EXEC,
        payload=ExecSpec(command=settings.daemon_reload_command),
        refresh_only=True,
    )

    if ensure is Ensure.PRESENT:
        notify: tuple[str, ...] = (reload_name,)
        if settings.restart_on_config_change:
            notify = (reload_name, service_name)

        file_actions = [
            Action(
                name=defaults_action_name(instance),
                kind=ActionKind.DEFAULTS_FILE,
                payload=_defaults_spec(instance, settings, merged_defaults, defaults_source),
                before=(service_name,),
                notify=notify,
            )
        ]
        service_require: tuple[str, ...] = ()
        if descriptor is not None:
            file_actions.append(
                Action(
                    name=unit_action_name(instance),
                    kind=ActionKind.UNIT_FILE,
                    payload=UnitFileSpec(
                        path=descriptor.unit_path,
                        ensure=Ensure.PRESENT,
                        descriptor=descriptor,
                    ),
                    before=(service_name,),
                    notify=notify,
                )
            )
            service_require = (reload_name,)
    else:
        file_actions = [
            Action(
                name=defaults_action_name(instance),
                kind=ActionKind.DEFAULTS_FILE,
                payload=FileSpec(path=settings.defaults_path(instance), ensure=Ensure.ABSENT),
                subscribe=(service_name,),
                notify=(reload_name,),
            ),
            Action(
                name=unit_action_name(instance),
                kind=ActionKind.UNIT_FILE,
                payload=UnitFileSpec(path=settings.unit_path(instance), ensure=Ensure.ABSENT),
                subscribe=(service_name,),
                notify=(reload_name,),
            ),
        ]
        service_require = ()

    service_action = Action(
        name=service_name,
        kind=ActionKind.SERVICE,
        payload=ServiceSpec(
            unit=unit_name(instance),
            run_state=state.run_state,
            boot_enabled=state.boot_enabled,
            hasstatus=settings.hints.hasstatus,
            hasrestart=settings.hints.hasrestart,
            pattern=settings.hints.pattern,
        ),
        require=service_require,
    )

    return ActionGraph(
        instance=instance,
        actions=(*file_actions, reload_action, service_action),
    )


def _defaults_spec(
    instance: str,
    settings: ServiceSettings,
    merged: Mapping[str, str] | None,
    source: Path | None,
) -> FileSpec:
    path = settings.defaults_path(instance)
    if source is not None:
        return FileSpec(path=path, ensure=Ensure.PRESENT, source=source)
    return FileSpec(path=path, ensure=Ensure.PRESENT, overlay=overlay_items(merged or {}))


__all__ = [
    "build_action_graph",
    "defaults_action_name",
    "reconcile",
    "reload_action_name",
    "service_action_name",
    "unit_action_name",
]
