"""Process exit codes returned by ``esctl`` commands."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Exit status for each class of command failure."""

    OK = 0
    # Bad status literal, conflicting ES_USER, bad instance name or KEY=VALUE.
    VALIDATION = 2
    # Unreadable config or templates; defaults or unit files that cannot be written.
    ENVIRONMENT = 3
    # systemctl or the daemon reload command failed while applying a graph.
    PROVIDER = 4
