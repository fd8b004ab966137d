"""
Process Runner

Runs a shell command under a wall-clock deadline:
1. Spawn /bin/sh -c <command> in its own session, output merged into one pipe
2. Optionally switch to another user inside the child, before exec
3. Poll the exit status every 100ms, draining output meanwhile so the
   child never blocks on a full pipe
4. On deadline: terminate the process group, reap it, report failure
"""

import asyncio
import os
import pwd
import signal
import subprocess
from typing import Callable

from reactd.common import clock
from reactd.common.config import CommandSpec
from reactd.common.logging_setup import get_service_logger

logger = get_service_logger("actions.command")


def _switch_user(username: str) -> Callable[[], None]:
    """Build a pre-exec hook that drops privileges to username"""

    def set_ids() -> None:
        # Runs in the child; an exception here aborts the exec
        account = pwd.getpwnam(username)
        os.setgid(account.pw_gid)
        os.setuid(account.pw_uid)

    return set_ids


class ProcessRunner:
    """
    Shell command runner with enforced timeout.

    Success means the command terminated within its budget without being
    killed. The exit code is logged but does not affect the result.
    """

    SHELL = "/bin/sh"
    POLL_INTERVAL_SECONDS = 0.1
    READ_CHUNK_BYTES = 1024
    KILL_GRACE_SECONDS = 1.0
    DRAIN_GRACE_SECONDS = 0.5

    async def run(self, cmd: CommandSpec, timeout_ms: int) -> bool:
        """
        Run a command and wait for it to finish.

        Args:
            cmd: Command and optional user
            timeout_ms: Wall-clock budget in milliseconds

        Returns:
            True if the command exited within timeout_ms
        """
        preexec_fn = _switch_user(cmd.user) if cmd.user else None
        start = clock.now()

        try:
            process = await asyncio.create_subprocess_exec(
                self.SHELL, "-c", cmd.command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                start_new_session=True,
                preexec_fn=preexec_fn,
            )
        except (OSError, subprocess.SubprocessError) as e:
            if cmd.user:
                logger.error(f"Unable to start command {cmd.command!r} as user {cmd.user}: {e}")
            else:
                logger.error(f"Unable to start command {cmd.command!r}: {e}")
            return False

        logger.debug(
            f"Started command {cmd.command!r} (PID: {process.pid})",
            extra={"pid": process.pid, "user": cmd.user},
        )

        output_task = asyncio.create_task(self._drain_output(process, cmd.command))

        try:
            exited = await self._wait_exit(process, timeout_ms / 1000)
            if not exited:
                elapsed = clock.elapsed_ms(start, clock.now())
                logger.error(
                    f"Command {cmd.command!r} took too long ({elapsed}ms). Killing it and continuing.",
                    extra={"pid": process.pid, "timeout_ms": timeout_ms},
                )
                await self._terminate(process)
                return False
        finally:
            await self._finish_output(output_task)

        elapsed = clock.elapsed_ms(start, clock.now())
        if process.returncode != 0:
            logger.warning(
                f"Command {cmd.command!r} exited with code {process.returncode} after {elapsed}ms",
                extra={"pid": process.pid, "returncode": process.returncode},
            )
        else:
            logger.debug(f"Command {cmd.command!r} finished in {elapsed}ms")

        return True

    async def _wait_exit(self, process: asyncio.subprocess.Process, timeout: float) -> bool:
        """
        Poll the child's exit status until it is reaped or timeout elapses.

        Only the shell's own exit counts; a background job still holding
        the output pipe does not keep the command running.
        """
        start = clock.now()
        timeout_ms = timeout * 1000
        while process.returncode is None:
            elapsed = clock.elapsed_ms(start, clock.now())
            if elapsed >= timeout_ms:
                return False
            await asyncio.sleep(min(self.POLL_INTERVAL_SECONDS, (timeout_ms - elapsed) / 1000))
        return True

    async def _drain_output(self, process: asyncio.subprocess.Process, command: str) -> None:
        """Log captured output until the pipe closes"""
        while True:
            chunk = await process.stdout.read(self.READ_CHUNK_BYTES)
            if not chunk:
                break
            text = chunk.decode(errors="replace").rstrip()
            if text:
                logger.debug(f"Command output: {text}", extra={"command": command})

    async def _finish_output(self, task: asyncio.Task) -> None:
        """Give the drain a short grace period, then stop it"""
        done, _ = await asyncio.wait({task}, timeout=self.DRAIN_GRACE_SECONDS)
        if not done:
            # A grandchild still holds the pipe open
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            return
        if task.exception() is not None:
            logger.debug(f"Output capture stopped: {task.exception()}")

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """Signal the command's process group and wait for the shell to be reaped"""
        if process.returncode is not None:
            return

        self._signal_group(process, signal.SIGTERM)
        if await self._wait_exit(process, self.KILL_GRACE_SECONDS):
            return

        logger.warning(f"PID {process.pid} ignored SIGTERM, sending SIGKILL")
        self._signal_group(process, signal.SIGKILL)
        if not await self._wait_exit(process, self.KILL_GRACE_SECONDS):
            logger.error(f"Unable to reap PID {process.pid} after SIGKILL")

    @staticmethod
    def _signal_group(process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        try:
            os.killpg(process.pid, sig)
        except ProcessLookupError:
            pass
