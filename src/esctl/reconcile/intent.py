"""Map a declared intent onto service-manager directives."""
from __future__ import annotations

from .models import (
    Ensure,
    InvalidStatusError,
    ResolvedState,
    RunState,
    ServiceIntent,
    ServiceStatus,
)

_STATUS_TABLE: dict[ServiceStatus, ResolvedState] = {
    ServiceStatus.ENABLED: ResolvedState(RunState.RUNNING, True),
    ServiceStatus.DISABLED: ResolvedState(RunState.STOPPED, False),
    ServiceStatus.RUNNING: ResolvedState(RunState.RUNNING, False),
    ServiceStatus.UNMANAGED: ResolvedState(RunState.UNSET, False),
}

_ABSENT_STATE = ResolvedState(RunState.STOPPED, False)


def parse_status(status: str) -> ServiceStatus:
    """Return the :class:`ServiceStatus` for *status* or raise ``InvalidStatusError``."""
    try:
        return ServiceStatus(status)
    except ValueError:
        raise InvalidStatusError(status) from None


def resolve_intent(intent: ServiceIntent) -> ResolvedState:
    """Resolve *intent* into a run state and boot-enablement flag.

    Absent instances are always stopped and disabled so the package
    removal that follows never leaves a running or enabled unit behind.
    """
    if intent.ensure is Ensure.ABSENT:
        return _ABSENT_STATE
    return _STATUS_TABLE[parse_status(intent.status)]


__all__ = ["parse_status", "resolve_intent"]
