"""
Configuration Dataclasses

Type-safe parameter structures for each action kind.
Loaded once at startup from YAML; read-only to the action primitives.

Example config.yaml:
    settings:
      dry_run: false
    actions:
      restart-nginx:
        type: restart_service
        service: nginx.service
      cleanup:
        type: command
        command: "rm -rf /tmp/cache/*"
        user: www-data
        timeout_ms: 5000
"""

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import yaml

from .exceptions import ConfigError


class ActionType(str, Enum):
    """Supported action kinds"""
    REBOOT = "reboot"
    RESTART_SERVICE = "restart_service"
    COMMAND = "command"
    LOG = "log"
    METRICS = "metrics"


@dataclass
class CommandSpec:
    """Shell command, optionally run as another user"""
    command: str
    user: str | None = None


@dataclass
class LogTarget:
    """Append-only audit log file"""
    path: str
    header: str | None = None  # Written once, when the file is created
    owner: str | None = None   # Applied once, when the file is created


@dataclass
class MetricsEndpoint:
    """Line-protocol HTTP write endpoint (InfluxDB style)"""
    host: str
    port: int = 8086
    http_path: str = "/write"
    auth_token: str = ""
    timeout_seconds: float = 2.0


@dataclass
class ActionConfig:
    """One configured action"""
    name: str
    type: ActionType
    timeout_ms: int = 5000  # command actions only
    service: str | None = None
    command: CommandSpec | None = None
    log: LogTarget | None = None
    metrics: MetricsEndpoint | None = None


@dataclass
class DaemonSettings:
    """Daemon-wide settings"""
    dry_run: bool = False
    busctl_path: str = "busctl"
    log_level: str = "INFO"


@dataclass
class ReactdConfig:
    """Complete configuration"""
    settings: DaemonSettings = field(default_factory=DaemonSettings)
    actions: dict[str, ActionConfig] = field(default_factory=dict)

    def get_action(self, name: str) -> ActionConfig:
        """Get an action by name"""
        try:
            return self.actions[name]
        except KeyError:
            raise ConfigError(f"Unknown action: {name}") from None


def _require(data: dict, key: str, action_name: str):
    value = data.get(key)
    if value is None or value == "":
        raise ConfigError(f"Action {action_name}: missing required field '{key}'")
    return value


def _number(data: dict, key: str, default, convert, action_name: str):
    value = data.get(key, default)
    try:
        return convert(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Action {action_name}: invalid {key} '{value}'") from None


def _env_flag(name: str) -> bool | None:
    value = os.environ.get(name)
    if value is None:
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_action_config(name: str, data: dict) -> ActionConfig:
    """Load one ActionConfig from its dictionary form"""
    if not isinstance(data, dict):
        raise ConfigError(f"Action {name}: expected a mapping")

    try:
        action_type = ActionType(_require(data, "type", name))
    except ValueError:
        raise ConfigError(f"Action {name}: unknown type '{data.get('type')}'") from None

    action = ActionConfig(
        name=name,
        type=action_type,
        timeout_ms=_number(data, "timeout_ms", 5000, int, name),
    )

    if action_type == ActionType.RESTART_SERVICE:
        action.service = str(_require(data, "service", name))

    elif action_type == ActionType.COMMAND:
        action.command = CommandSpec(
            command=str(_require(data, "command", name)),
            user=data.get("user"),
        )
        if action.timeout_ms <= 0:
            raise ConfigError(f"Action {name}: timeout_ms must be positive")

    elif action_type == ActionType.LOG:
        action.log = LogTarget(
            path=str(_require(data, "path", name)),
            header=data.get("header"),
            owner=data.get("owner") or data.get("user"),
        )

    elif action_type == ActionType.METRICS:
        port = _number(data, "port", 8086, int, name)
        if not 0 < port < 65536:
            raise ConfigError(f"Action {name}: invalid port {port}")
        action.metrics = MetricsEndpoint(
            host=str(_require(data, "host", name)),
            port=port,
            http_path=data.get("endpoint", data.get("http_path", "/write")),
            auth_token=data.get("authorization", data.get("auth_token", "")),
            timeout_seconds=_number(
                data, "timeout" if "timeout" in data else "timeout_seconds", 2.0, float, name
            ),
        )
        if action.metrics.timeout_seconds <= 0:
            raise ConfigError(f"Action {name}: timeout must be positive")

    return action


def load_config(data: dict) -> ReactdConfig:
    """Load ReactdConfig from dictionary (e.g., from a YAML file)"""
    data = data or {}

    settings_data = data.get("settings", {}) or {}
    settings = DaemonSettings(
        dry_run=bool(settings_data.get("dry_run", False)),
        busctl_path=settings_data.get("busctl_path", "busctl"),
        log_level=settings_data.get("log_level", "INFO"),
    )

    # Environment overrides
    dry_run = _env_flag("REACTD_DRY_RUN")
    if dry_run is not None:
        settings.dry_run = dry_run
    settings.busctl_path = os.environ.get("REACTD_BUSCTL", settings.busctl_path)

    actions = {
        name: load_action_config(name, action_data)
        for name, action_data in (data.get("actions", {}) or {}).items()
    }

    return ReactdConfig(settings=settings, actions=actions)


def load_config_file(path: str | Path) -> ReactdConfig:
    """Load configuration from YAML file"""
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"Error parsing config {path}: {e}") from None

    if not isinstance(data, dict):
        raise ConfigError(f"Config {path}: top level must be a mapping")

    return load_config(data)
