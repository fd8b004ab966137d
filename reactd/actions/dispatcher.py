"""
Action Dispatcher

Maps a configured action to the primitive that performs it and records
the outcome. The condition layer decides when to call execute(); this
module only carries the action out.
"""

from dataclasses import dataclass

from reactd.common import clock
from reactd.common.config import ActionConfig, ActionType, CommandSpec, DaemonSettings
from reactd.common.exceptions import ActionError
from reactd.common.logging_setup import LogContext, get_service_logger, log_action_result

from .audit_log import AuditLogger
from .metrics_sink import MetricsSink
from .process_runner import ProcessRunner
from .system_control import SystemControlClient

logger = get_service_logger("actions.dispatcher")


@dataclass
class ActionResult:
    """Outcome of one action execution"""
    action: str
    type: str
    success: bool
    duration_ms: int

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "type": self.type,
            "success": self.success,
            "duration_ms": self.duration_ms,
        }


class ActionDispatcher:
    """
    Executes actions one at a time.

    Holds one MetricsSink per metrics action so its connection is reused
    across executions.
    """

    def __init__(
        self,
        settings: DaemonSettings | None = None,
        system_control: SystemControlClient | None = None,
        process_runner: ProcessRunner | None = None,
        audit_logger: AuditLogger | None = None,
    ):
        self.settings = settings or DaemonSettings()
        self.system_control = system_control or SystemControlClient(
            busctl=self.settings.busctl_path,
            dry_run=self.settings.dry_run,
        )
        self.process_runner = process_runner or ProcessRunner()
        self.audit_logger = audit_logger or AuditLogger()

        self._sinks: dict[str, MetricsSink] = {}

    def get_sink(self, action: ActionConfig) -> MetricsSink:
        """Get or create the sink for a metrics action"""
        sink = self._sinks.get(action.name)
        if sink is None:
            sink = MetricsSink(action.metrics)
            self._sinks[action.name] = sink
        return sink

    async def execute(self, action: ActionConfig, text: str | None = None) -> ActionResult:
        """
        Execute one action.

        Args:
            action: Configured action
            text: Rendered command (command actions) or line (log/metrics actions)

        Returns:
            ActionResult with success flag and duration
        """
        start = clock.now()

        with LogContext(action=action.name):
            try:
                success = await self._run(action, text)
            except ActionError as e:
                logger.error(e.message)
                success = False

        result = ActionResult(
            action=action.name,
            type=action.type.value,
            success=success,
            duration_ms=clock.elapsed_ms(start, clock.now()),
        )
        log_action_result(logger, result.action, result.type, result.success, result.duration_ms)
        return result

    async def _run(self, action: ActionConfig, text: str | None) -> bool:
        if action.type == ActionType.REBOOT:
            return await self.system_control.reboot_host()

        if action.type == ActionType.RESTART_SERVICE:
            return await self.system_control.restart_unit(action.service)

        if action.type == ActionType.COMMAND:
            cmd = action.command
            if text is not None:
                cmd = CommandSpec(command=text, user=cmd.user)
            return await self.process_runner.run(cmd, action.timeout_ms)

        if text is None:
            raise ActionError(f"{action.type.value} action needs a line to write", action=action.name)

        if action.type == ActionType.LOG:
            return self.audit_logger.append(action.log, text)

        if action.type == ActionType.METRICS:
            return await self.get_sink(action).send_line(text)

        raise ActionError(f"Unsupported action type: {action.type}", action=action.name)

    def close(self) -> None:
        """Close all metrics connections"""
        for sink in self._sinks.values():
            sink.close()
        self._sinks.clear()
