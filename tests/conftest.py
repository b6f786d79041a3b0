"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from esctl.reconcile import InstallPaths, ServiceOwner, ServiceSettings


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture
def settings(tmp_path: Path) -> ServiceSettings:
    """Return service settings rooted in the temporary directory."""
    return ServiceSettings(
        owner=ServiceOwner(user="elasticsearch", group="elasticsearch"),
        package_name="elasticsearch",
        paths=InstallPaths(
            defaults_dir=tmp_path / "default",
            systemd_dir=tmp_path / "systemd",
            homedir=tmp_path / "home",
            pid_dir=tmp_path / "run",
        ),
    )
