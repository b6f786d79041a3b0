"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest

from esctl.templates import (
    DEFAULTS_TEMPLATE,
    UNIT_TEMPLATE,
    TemplateEngine,
    TemplateRenderError,
)


def _unit_context(instance: str) -> dict[str, object]:
    return {
        "instance_name": instance,
        "nofile": "65536",
        "memlock": None,
        "nproc": "4096",
        "defaults_location": "/etc/default",
        "defaults_file": f"/etc/default/elasticsearch-{instance}",
        "homedir": "/usr/share/elasticsearch",
        "pid_dir": "/var/run/elasticsearch",
        "user": "elasticsearch",
        "group": "elasticsearch",
        "package_name": "elasticsearch",
    }


def test_render_builtin_unit_template() -> None:
    """The built-in unit template renders limits and owner."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string(UNIT_TEMPLATE, _unit_context("alpha"))

    assert "Description=Elasticsearch instance alpha" in output
    assert "EnvironmentFile=-/etc/default/elasticsearch-alpha" in output
    assert "LimitNOFILE=65536" in output
    assert "LimitNPROC=4096" in output
    assert "LimitMEMLOCK" not in output
    assert "User=elasticsearch" in output


def test_unit_template_includes_memlock_when_set() -> None:
    """A locked-memory limit adds LimitMEMLOCK."""
    engine = TemplateEngine.with_overrides(None)
    context = _unit_context("alpha")
    context["memlock"] = "infinity"

    output = engine.render_to_string(UNIT_TEMPLATE, context)

    assert "LimitMEMLOCK=infinity" in output


def test_defaults_template_quotes_values() -> None:
    """Shell-variable values are quoted only when needed."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string(
        DEFAULTS_TEMPLATE,
        {
            "instance_name": "alpha",
            "variables": {"MAX_OPEN_FILES": "65536", "ES_JAVA_OPTS": "-Xms1g -Xmx1g"},
        },
    )

    lines = [line for line in output.splitlines() if line and not line.startswith("#")]
    assert lines == ["MAX_OPEN_FILES=65536", "ES_JAVA_OPTS='-Xms1g -Xmx1g'"]


def test_strict_undefined_raises() -> None:
    """Missing variables raise TemplateRenderError."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(TemplateRenderError):
        engine.render_string(b"{{ missing }}", {})


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "nested" / "elasticsearch-beta.service"

    changed = engine.render_to_path(UNIT_TEMPLATE, destination, _unit_context("beta"), mode=0o600)

    assert changed is True
    assert destination.exists()
    assert oct(destination.stat().st_mode & 0o777) == "0o600"

    changed_again = engine.render_to_path(
        UNIT_TEMPLATE,
        destination,
        _unit_context("beta"),
        mode=0o600,
    )
    assert changed_again is False


def test_override_path_takes_precedence(tmp_path: Path) -> None:
    """Override templates shadow the built-in ones."""
    override_dir = tmp_path / "templates"
    override_template = override_dir / "systemd" / "elasticsearch.service.j2"
    override_template.parent.mkdir(parents=True, exist_ok=True)
    override_template.write_text("override {{ instance_name }}", encoding="utf-8")

    engine = TemplateEngine.with_overrides(override_dir)

    assert engine.render_to_string(UNIT_TEMPLATE, {"instance_name": "gamma"}) == "override gamma"
    assert engine.source_bytes(UNIT_TEMPLATE) == b"override {{ instance_name }}"


def test_source_bytes_for_unknown_template() -> None:
    """Unknown templates raise TemplateRenderError."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(TemplateRenderError):
        engine.source_bytes("missing/template.j2")
