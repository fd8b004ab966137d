"""
Common Utilities

Shared modules used by every action primitive:
- clock.py - Elapsed time and timeout budget
- config.py - Configuration dataclasses
- exceptions.py - Custom exception classes
- logging_setup.py - Structured logging setup
"""

from .clock import TimeoutBudget, elapsed_ms, now
from .config import (
    ActionConfig,
    ActionType,
    CommandSpec,
    DaemonSettings,
    LogTarget,
    MetricsEndpoint,
    ReactdConfig,
    load_action_config,
    load_config,
    load_config_file,
)
from .exceptions import (
    ReactdError,
    ConfigError,
    ActionError,
    BusError,
    MetricsError,
    MetricsTimeoutError,
)
from .logging_setup import (
    setup_logging,
    set_log_level,
    get_service_logger,
    LogContext,
    log_action_result,
)

__all__ = [
    # Clock
    "TimeoutBudget",
    "elapsed_ms",
    "now",
    # Config
    "ActionConfig",
    "ActionType",
    "CommandSpec",
    "DaemonSettings",
    "LogTarget",
    "MetricsEndpoint",
    "ReactdConfig",
    "load_action_config",
    "load_config",
    "load_config_file",
    # Exceptions
    "ReactdError",
    "ConfigError",
    "ActionError",
    "BusError",
    "MetricsError",
    "MetricsTimeoutError",
    # Logging
    "setup_logging",
    "set_log_level",
    "get_service_logger",
    "LogContext",
    "log_action_result",
]
