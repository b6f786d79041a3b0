"""Configuration loader for esctl.

Configuration values are read from multiple sources, later sources winning:

1. Built-in defaults.
2. ``/etc/esctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``ESCTL_``.
4. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export ESCTL_PATHS__DEFAULTS_DIR=/etc/sysconfig
    export ESCTL_RESTART_CONFIG_CHANGE=true

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. The resulting configuration is exposed as immutable
``dataclasses``; :meth:`AppConfig.service_settings` hands the subset needed by
the reconciler over explicitly so the core never looks anything up itself.
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path
from typing import cast

import yaml

from .reconcile.models import (
    Ensure,
    InstallPaths,
    ServiceHints,
    ServiceOwner,
    ServiceSettings,
    ServiceStatus,
)

ENV_PREFIX = "ESCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class PathsConfig:
    """Installation directories for instance artifacts."""

    defaults_dir: Path = Path("/etc/default")
    systemd_dir: Path = Path("/lib/systemd/system")
    homedir: Path = Path("/usr/share/elasticsearch")
    pid_dir: Path = Path("/var/run/elasticsearch")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "defaults_dir": str(self.defaults_dir),
            "systemd_dir": str(self.systemd_dir),
            "homedir": str(self.homedir),
            "pid_dir": str(self.pid_dir),
        }


@dataclass(frozen=True)
class ServiceConfig:
    """Hints forwarded to the service-state executor."""

    hasstatus: bool = True
    hasrestart: bool = True
    pattern: str | None = None

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "hasstatus": self.hasstatus,
            "hasrestart": self.hasrestart,
            "pattern": self.pattern,
        }


@dataclass(frozen=True)
class SystemdConfig:
    """Systemd integration configuration values."""

    systemctl_bin: str = "systemctl"
    daemon_reload_command: tuple[str, ...] = ("/bin/systemctl", "daemon-reload")

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "systemctl_bin": self.systemctl_bin,
            "daemon_reload_command": list(self.daemon_reload_command),
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for esctl."""

    config_file: Path
    logs_dir: Path
    templates_dir: Path
    ensure: Ensure
    status: str
    elasticsearch_user: str
    elasticsearch_group: str
    package_name: str
    restart_config_change: bool
    paths: PathsConfig
    service: ServiceConfig
    systemd: SystemdConfig

    def service_settings(self) -> ServiceSettings:
        """Return the explicit settings consumed by the reconciler."""
        return ServiceSettings(
            owner=ServiceOwner(user=self.elasticsearch_user, group=self.elasticsearch_group),
            package_name=self.package_name,
            paths=InstallPaths(
                defaults_dir=self.paths.defaults_dir,
                systemd_dir=self.paths.systemd_dir,
                homedir=self.paths.homedir,
                pid_dir=self.paths.pid_dir,
            ),
            hints=ServiceHints(
                hasstatus=self.service.hasstatus,
                hasrestart=self.service.hasrestart,
                pattern=self.service.pattern,
            ),
            restart_on_config_change=self.restart_config_change,
            daemon_reload_command=self.systemd.daemon_reload_command,
        )

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "logs_dir": str(self.logs_dir),
            "templates_dir": str(self.templates_dir),
            "ensure": self.ensure.value,
            "status": self.status,
            "elasticsearch_user": self.elasticsearch_user,
            "elasticsearch_group": self.elasticsearch_group,
            "package_name": self.package_name,
            "restart_config_change": self.restart_config_change,
            "paths": self.paths.to_dict(),
            "service": self.service.to_dict(),
            "systemd": self.systemd.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/esctl/config.yml",
    "logs_dir": "/var/log/esctl",
    "templates_dir": "/etc/esctl/templates",
    "ensure": "present",
    "status": "enabled",
    "elasticsearch_user": "elasticsearch",
    "elasticsearch_group": "elasticsearch",
    "package_name": "elasticsearch",
    "restart_config_change": False,
    "paths": {
        "defaults_dir": "/etc/default",
        "systemd_dir": "/lib/systemd/system",
        "homedir": "/usr/share/elasticsearch",
        "pid_dir": "/var/run/elasticsearch",
    },
    "service": {
        "hasstatus": True,
        "hasrestart": True,
        "pattern": None,
    },
    "systemd": {
        "systemctl_bin": "systemctl",
        "daemon_reload_command": ["/bin/systemctl", "daemon-reload"],
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_SECTION_KEYS: dict[str, set[str]] = {
    "paths": {"defaults_dir", "systemd_dir", "homedir", "pid_dir"},
    "service": {"hasstatus", "hasrestart", "pattern"},
    "systemd": {"systemctl_bin", "daemon_reload_command"},
}
ALLOWED_ENSURE = {member.value for member in Ensure}
ALLOWED_STATUS = {member.value for member in ServiceStatus}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in ALLOWED_SECTION_KEYS.items():
        section_map = _as_dict(raw.get(section), section)
        unknown = set(section_map.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    ensure = str(raw.get("ensure"))
    if ensure not in ALLOWED_ENSURE:
        allowed_values = ", ".join(sorted(ALLOWED_ENSURE))
        raise ConfigError(f"Unsupported ensure value '{ensure}'. Allowed: {allowed_values}.")

    status = str(raw.get("status"))
    if status not in ALLOWED_STATUS:
        allowed_values = ", ".join(sorted(ALLOWED_STATUS))
        raise ConfigError(f"Unsupported status value '{status}'. Allowed: {allowed_values}.")


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    paths_mapping = _as_dict(raw.get("paths"), "paths")
    default_paths = PathsConfig()
    paths = PathsConfig(
        defaults_dir=_to_path(paths_mapping.get("defaults_dir", default_paths.defaults_dir)),
        systemd_dir=_to_path(paths_mapping.get("systemd_dir", default_paths.systemd_dir)),
        homedir=_to_path(paths_mapping.get("homedir", default_paths.homedir)),
        pid_dir=_to_path(paths_mapping.get("pid_dir", default_paths.pid_dir)),
    )

    service_mapping = _as_dict(raw.get("service"), "service")
    pattern_value = service_mapping.get("pattern")
    service = ServiceConfig(
        hasstatus=_expect_bool(service_mapping.get("hasstatus"), "service.hasstatus", True),
        hasrestart=_expect_bool(service_mapping.get("hasrestart"), "service.hasrestart", True),
        pattern=str(pattern_value) if pattern_value not in (None, "") else None,
    )

    systemd_mapping = _as_dict(raw.get("systemd"), "systemd")
    reload_command = _expect_command(
        systemd_mapping.get("daemon_reload_command"),
        "systemd.daemon_reload_command",
    )
    systemd = SystemdConfig(
        systemctl_bin=str(systemd_mapping.get("systemctl_bin", "systemctl")),
        daemon_reload_command=reload_command,
    )

    user = _expect_str(raw.get("elasticsearch_user"), "elasticsearch_user").strip()
    if not user:
        raise ConfigError("elasticsearch_user must be a non-empty string.")
    group = _expect_str(raw.get("elasticsearch_group"), "elasticsearch_group").strip()
    if not group:
        raise ConfigError("elasticsearch_group must be a non-empty string.")

    return AppConfig(
        config_file=_to_path(raw.get("config_file")),
        logs_dir=_to_path(raw.get("logs_dir")),
        templates_dir=_to_path(raw.get("templates_dir")),
        ensure=Ensure(str(raw.get("ensure"))),
        status=str(raw.get("status")),
        elasticsearch_user=user,
        elasticsearch_group=group,
        package_name=str(raw.get("package_name", "elasticsearch")),
        restart_config_change=_expect_bool(
            raw.get("restart_config_change"),
            "restart_config_change",
            False,
        ),
        paths=paths,
        service=service,
        systemd=systemd,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_bool(value: object | None, label: str, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on", "1"}:
            return True
        if lowered in {"false", "no", "off", "0"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_command(value: object | None, label: str) -> tuple[str, ...]:
    if value is None:
        return SystemdConfig().daemon_reload_command
    if isinstance(value, str):
        parts = tuple(value.split())
    elif isinstance(value, (list, tuple)):
        parts = tuple(str(item) for item in value)
    else:
        raise ConfigError(f"Expected {label} to be a string or list. Got {type(value).__name__}.")
    if not parts:
        raise ConfigError(f"{label} must not be empty.")
    return parts


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "PathsConfig",
    "ServiceConfig",
    "SystemdConfig",
    "load_config",
]
