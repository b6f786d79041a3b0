"""Jinja2 template rendering with optional override directories."""
from __future__ import annotations

import os
import shlex
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, StrictUndefined, TemplateError

BUILTIN_TEMPLATES_DIR = Path(__file__).resolve().parent

DEFAULTS_TEMPLATE = "defaults/elasticsearch.j2"
UNIT_TEMPLATE = "systemd/elasticsearch.service.j2"


class TemplateRenderError(RuntimeError):
    """Raised when a template cannot be loaded or rendered."""


@dataclass(slots=True)
class TemplateEngine:
    """Render built-in or overridden templates."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine that prefers templates under *override_dir*."""
        loaders = []
        if override_dir is not None and Path(override_dir).is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(FileSystemLoader(str(BUILTIN_TEMPLATES_DIR)))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            trim_blocks=True,
            lstrip_blocks=True,
            autoescape=False,
        )
        environment.filters["shquote"] = shlex.quote
        return cls(environment=environment)

    def source_bytes(self, template_name: str) -> bytes:
        """Return the raw source of *template_name* as bytes."""
        loader = self.environment.loader
        if loader is None:  # pragma: no cover - always configured by with_overrides
            raise TemplateRenderError("Template loader is not configured.")
        try:
            source, _filename, _uptodate = loader.get_source(self.environment, template_name)
        except TemplateError as exc:
            raise TemplateRenderError(f"Template {template_name!r} not found: {exc}") from exc
        return source.encode("utf-8")

    def render_to_string(self, template_name: str, context: Mapping[str, object]) -> str:
        """Render *template_name* with *context*."""
        try:
            template = self.environment.get_template(template_name)
            return template.render(**context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to render {template_name}: {exc}") from exc

    def render_string(self, source: str | bytes, context: Mapping[str, object]) -> str:
        """Render an inline template *source* with *context*."""
        text = source.decode("utf-8") if isinstance(source, bytes) else source
        try:
            return self.environment.from_string(text).render(**context)
        except TemplateError as exc:
            raise TemplateRenderError(f"Failed to render inline template: {exc}") from exc

    def render_to_path(
        self,
        template_name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render *template_name* into *destination*; return ``True`` when it changed."""
        rendered = self.render_to_string(template_name, context)
        return write_if_changed(destination, rendered, mode=mode)


def write_if_changed(destination: Path, content: str, *, mode: int = 0o644) -> bool:
    """Atomically write *content* as UTF-8 to *destination* when it differs."""
    return write_bytes_if_changed(destination, content.encode("utf-8"), mode=mode)


def write_bytes_if_changed(destination: Path, content: bytes, *, mode: int = 0o644) -> bool:
    """Atomically write *content* to *destination* unless the bytes already match."""
    destination = Path(destination)
    if destination.exists():
        current = destination.read_bytes()
        if current == content:
            if destination.stat().st_mode & 0o777 != mode:
                destination.chmod(mode)
                return True
            return False

    destination.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=destination.parent, prefix=f".{destination.name}.")
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(content)
        tmp_path.chmod(mode)
        os.replace(tmp_path, destination)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return True


__all__ = [
    "DEFAULTS_TEMPLATE",
    "TemplateEngine",
    "TemplateRenderError",
    "UNIT_TEMPLATE",
    "write_bytes_if_changed",
    "write_if_changed",
]
