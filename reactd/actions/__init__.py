"""
Action Primitives

Each module performs exactly one kind of effect under an explicit deadline:
- system_control.py - Host reboot and unit restart via systemd
- process_runner.py - Shell commands with timeout and user switch
- metrics_sink.py - Line-protocol writes over a persistent connection
- audit_log.py - Append-only audit files
- dispatcher.py - Routes a configured action to its primitive
"""

from .audit_log import AuditLogger
from .dispatcher import ActionDispatcher, ActionResult
from .metrics_sink import MetricsSink
from .process_runner import ProcessRunner
from .system_control import SystemControlClient

__all__ = [
    "AuditLogger",
    "ActionDispatcher",
    "ActionResult",
    "MetricsSink",
    "ProcessRunner",
    "SystemControlClient",
]
