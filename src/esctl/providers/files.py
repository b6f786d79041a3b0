"""File materialisation for instance defaults and unit files."""
from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from ..reconcile.models import Ensure, FileSpec, UnitFileSpec
from ..templates import (
    DEFAULTS_TEMPLATE,
    TemplateEngine,
    TemplateRenderError,
    write_bytes_if_changed,
)


class FileProviderError(RuntimeError):
    """Raised when a managed file cannot be written or removed."""


@dataclass(slots=True)
class FileProvider:
    """Write or remove the files described by graph actions.

    Every method returns ``True`` when the file on disk changed (or would
    change, for dry runs).
    """

    templates: TemplateEngine

    def apply_defaults(self, spec: FileSpec, instance: str, *, dry_run: bool = False) -> bool:
        """Materialise the defaults file described by *spec*."""
        if spec.ensure is Ensure.ABSENT:
            return self._remove(spec.path, dry_run=dry_run)
        content = self.render_defaults(spec, instance)
        changed = self._write(spec.path, content, mode=spec.mode, dry_run=dry_run)
        if not dry_run:
            _apply_ownership(spec.path, spec.owner, spec.group)
        return changed

    def apply_unit(self, spec: UnitFileSpec, *, dry_run: bool = False) -> bool:
        """Materialise the unit file described by *spec*."""
        if spec.ensure is Ensure.ABSENT:
            return self._remove(spec.path, dry_run=dry_run)
        if spec.descriptor is None:
            raise FileProviderError(f"No unit descriptor supplied for {spec.path}.")
        try:
            content = self.templates.render_string(
                spec.descriptor.content,
                spec.descriptor.context(),
            )
        except (TemplateRenderError, UnicodeDecodeError) as exc:
            raise FileProviderError(f"Cannot render unit file {spec.path}: {exc}") from exc
        return self._write(spec.path, content.encode("utf-8"), mode=spec.mode, dry_run=dry_run)

    def render_defaults(self, spec: FileSpec, instance: str) -> bytes:
        """Return the desired bytes of the defaults file.

        A source file is returned untouched; overlays are rendered as UTF-8.
        """
        if spec.source is not None:
            try:
                return spec.source.read_bytes()
            except OSError as exc:
                raise FileProviderError(
                    f"Cannot read defaults source {spec.source}: {exc}"
                ) from exc
        try:
            rendered = self.templates.render_to_string(
                DEFAULTS_TEMPLATE,
                {"instance_name": instance, "variables": spec.overlay_dict()},
            )
        except TemplateRenderError as exc:
            raise FileProviderError(f"Cannot render defaults for {spec.path}: {exc}") from exc
        return rendered.encode("utf-8")

    # ------------------------------------------------------------------
    def _write(self, path: Path, content: bytes, *, mode: int, dry_run: bool) -> bool:
        if dry_run:
            return _would_change(path, content, mode)
        try:
            return write_bytes_if_changed(path, content, mode=mode)
        except OSError as exc:
            raise FileProviderError(f"Cannot write {path}: {exc}") from exc

    def _remove(self, path: Path, *, dry_run: bool) -> bool:
        if not path.exists():
            return False
        if dry_run:
            return True
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise FileProviderError(f"Cannot remove {path}: {exc}") from exc
        return True


def _would_change(path: Path, content: bytes, mode: int) -> bool:
    if not path.exists():
        return True
    try:
        current = path.read_bytes()
    except OSError:
        return True
    return current != content or path.stat().st_mode & 0o777 != mode


def _apply_ownership(path: Path, owner: str, group: str) -> None:
    # Only root can hand files to another owner.
    if os.geteuid() != 0:
        return
    try:
        shutil.chown(path, user=owner, group=group)
    except (LookupError, OSError) as exc:
        raise FileProviderError(f"Cannot set ownership {owner}:{group} on {path}: {exc}") from exc


__all__ = ["FileProvider", "FileProviderError"]
