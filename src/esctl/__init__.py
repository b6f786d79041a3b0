"""Reconcile Elasticsearch instances into systemd services.

:mod:`esctl.reconcile` computes the action graph for an instance and
:mod:`esctl.apply` executes it; :mod:`esctl.cli` wires both to the command line.
"""
from __future__ import annotations

__all__ = ["__version__"]

# Kept in sync with ``pyproject.toml``.
__version__ = "0.1.0a0"
