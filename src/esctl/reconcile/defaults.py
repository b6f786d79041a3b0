"""Defaults overlay merging and unit descriptor derivation."""
from __future__ import annotations

from collections.abc import Mapping

from .models import ConflictingOwnerError, ServiceSettings, UnitDescriptor

DEFAULT_MAX_OPEN_FILES = "65536"
DEFAULT_MAX_THREADS = "4096"


def builtin_defaults(user: str, group: str) -> dict[str, str]:
    """Return the built-in defaults for an instance owned by *user*/*group*."""
    return {
        "ES_USER": user,
        "ES_GROUP": group,
        "MAX_OPEN_FILES": DEFAULT_MAX_OPEN_FILES,
        "MAX_THREADS": DEFAULT_MAX_THREADS,
    }


def validate_overlay(overlay: Mapping[str, str] | None, user: str) -> None:
    """Reject an overlay whose ``ES_USER`` diverges from the configured *user*."""
    if not overlay or "ES_USER" not in overlay:
        return
    requested = str(overlay["ES_USER"])
    if requested != user:
        raise ConflictingOwnerError(requested, user)


def merge_defaults(
    overlay: Mapping[str, str] | None,
    *,
    user: str,
    group: str,
) -> dict[str, str]:
    """Return a new mapping of the built-in defaults with *overlay* on top."""
    validate_overlay(overlay, user)
    merged = builtin_defaults(user, group)
    for key, value in (overlay or {}).items():
        merged[str(key)] = str(value)
    return merged


def build_unit_descriptor(
    instance: str,
    settings: ServiceSettings,
    content: bytes,
    merged: Mapping[str, str] | None,
) -> UnitDescriptor:
    """Derive unit file limits from *merged* defaults.

    *merged* is ``None`` when a raw defaults file is installed, in which case
    the literal fallbacks apply.
    """
    values = merged or {}
    return UnitDescriptor(
        instance=instance,
        nofile=values.get("MAX_OPEN_FILES", DEFAULT_MAX_OPEN_FILES),
        memlock=values.get("MAX_LOCKED_MEMORY"),
        nproc=values.get("MAX_THREADS", DEFAULT_MAX_THREADS),
        content=content,
        unit_path=settings.unit_path(instance),
        defaults_path=settings.defaults_path(instance),
        paths=settings.paths,
        owner=settings.owner,
        package_name=settings.package_name,
    )


__all__ = [
    "DEFAULT_MAX_OPEN_FILES",
    "DEFAULT_MAX_THREADS",
    "build_unit_descriptor",
    "builtin_defaults",
    "merge_defaults",
    "validate_overlay",
]
