"""Provider interfaces for esctl."""
from __future__ import annotations

from .files import FileProvider, FileProviderError
from .systemd import ServiceState, SystemdError, SystemdProvider

__all__ = [
    "FileProvider",
    "FileProviderError",
    "ServiceState",
    "SystemdError",
    "SystemdProvider",
]
