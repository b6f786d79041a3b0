"""Instance state resolution and action graph construction."""
from __future__ import annotations

from .defaults import build_unit_descriptor, builtin_defaults, merge_defaults
from .graph import (
    build_action_graph,
    defaults_action_name,
    reconcile,
    reload_action_name,
    service_action_name,
    unit_action_name,
)
from .intent import parse_status, resolve_intent
from .models import (
    Action,
    ActionGraph,
    ActionKind,
    ConflictingOwnerError,
    Ensure,
    ExecSpec,
    FileSpec,
    InstallPaths,
    InvalidStatusError,
    ReconcileError,
    ResolvedState,
    RunState,
    ServiceHints,
    ServiceIntent,
    ServiceOwner,
    ServiceSettings,
    ServiceSpec,
    ServiceStatus,
    UnitDescriptor,
    UnitFileSpec,
    unit_name,
)

__all__ = [
    "Action",
    "ActionGraph",
    "ActionKind",
    "ConflictingOwnerError",
    "Ensure",
    "ExecSpec",
    "FileSpec",
    "InstallPaths",
    "InvalidStatusError",
    "ReconcileError",
    "ResolvedState",
    "RunState",
    "ServiceHints",
    "ServiceIntent",
    "ServiceOwner",
    "ServiceSettings",
    "ServiceSpec",
    "ServiceStatus",
    "UnitDescriptor",
    "UnitFileSpec",
    "build_action_graph",
    "build_unit_descriptor",
    "builtin_defaults",
    "defaults_action_name",
    "merge_defaults",
    "parse_status",
    "reconcile",
    "reload_action_name",
    "resolve_intent",
    "service_action_name",
    "unit_action_name",
    "unit_name",
]
