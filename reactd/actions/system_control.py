"""
System Control Client

Issues reboot and unit restart requests to systemd over the system bus.
Calls go through systemd's busctl client; each call spawns one client
process, which is always reaped before the call returns.
"""

import asyncio
import shlex
import subprocess

from reactd.common.exceptions import BusError
from reactd.common.logging_setup import get_service_logger

logger = get_service_logger("actions.system")

SYSTEMD_SERVICE = "org.freedesktop.systemd1"
MANAGER_PATH = "/org/freedesktop/systemd1"
MANAGER_INTERFACE = "org.freedesktop.systemd1.Manager"
UNIT_INTERFACE = "org.freedesktop.systemd1.Unit"
UNIT_PATH_PREFIX = "/org/freedesktop/systemd1/unit"

# Restart mode: fail if a conflicting job is already queued
RESTART_MODE = "fail"


def unit_object_path(name: str) -> str:
    """Bus object path of a unit"""
    return f"{UNIT_PATH_PREFIX}/{name}"


def parse_object_path(reply: str, required: bool = True) -> str | None:
    """
    Extract the object path from a busctl reply.

    busctl prints a reply as its signature followed by the values,
    e.g. 'o "/org/freedesktop/systemd1/job/1234"'.

    Args:
        reply: busctl standard output
        required: False accepts an empty reply (method with no return value)

    Returns:
        The object path, or None for an accepted empty reply

    Raises:
        BusError: Reply missing or not a single object path
    """
    reply = reply.strip()
    if not reply:
        if required:
            raise BusError("Failed to parse response message: empty reply")
        return None

    try:
        fields = shlex.split(reply)
    except ValueError as e:
        raise BusError(f"Failed to parse response message: {e}") from None

    if len(fields) != 2 or fields[0] != "o" or not fields[1].startswith("/"):
        raise BusError(f"Failed to parse response message: unexpected reply {reply!r}")

    return fields[1]


class SystemControlClient:
    """
    Client for systemd's manager and unit interfaces.

    Every failure is logged and reported as False; nothing is raised to
    the caller.
    """

    CALL_TIMEOUT_SECONDS = 25.0
    # Extra time allowed for busctl itself beyond the bus call timeout
    PROCESS_MARGIN_SECONDS = 5.0

    def __init__(
        self,
        busctl: str = "busctl",
        call_timeout: float = CALL_TIMEOUT_SECONDS,
        dry_run: bool = False,
    ):
        self.busctl = busctl
        self.call_timeout = call_timeout
        self.dry_run = dry_run

    async def reboot_host(self) -> bool:
        """Ask systemd to reboot the host"""
        if self.dry_run:
            logger.info("Dry run: host reboot skipped")
            return True

        try:
            reply = await self._call(MANAGER_PATH, MANAGER_INTERFACE, "Reboot")
            job = parse_object_path(reply, required=False)
        except BusError as e:
            logger.error(f"Reboot failed: {e.message}", extra={"method": "Reboot"})
            return False

        if job:
            logger.debug(f"Reboot queued as {job}")
        logger.info("Host reboot requested")
        return True

    async def restart_unit(self, name: str) -> bool:
        """
        Restart a systemd unit.

        Args:
            name: Unit name appended to the unit object path prefix

        Returns:
            True if systemd accepted the restart job
        """
        logger.debug(f"Restart unit: {name}")
        path = unit_object_path(name)
        logger.debug(f"Object path: {path}")

        try:
            reply = await self._call(path, UNIT_INTERFACE, "Restart", "s", RESTART_MODE)
            job = parse_object_path(reply)
        except BusError as e:
            logger.error(
                f"Restart of {name} failed: {e.message}",
                extra={"unit": name, "method": "Restart"},
            )
            return False

        logger.debug(f"Queued unit job as {job}", extra={"unit": name, "job": job})
        return True

    async def _call(self, path: str, interface: str, method: str, *args: str) -> str:
        """
        Call a method on the system bus and return the printed reply.

        Raises:
            BusError: Client could not start, call failed or timed out
        """
        argv = [
            self.busctl,
            "--system",
            f"--timeout={self.call_timeout:g}",
            "call",
            SYSTEMD_SERVICE,
            path,
            interface,
            method,
            *args,
        ]

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as e:
            raise BusError(f"Failed to connect to system bus: {e}", method) from None

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(),
                timeout=self.call_timeout + self.PROCESS_MARGIN_SECONDS,
            )
        except asyncio.TimeoutError:
            raise BusError(f"Method call {interface}.{method} timed out", method) from None
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip() or f"exit code {process.returncode}"
            raise BusError(f"Failed to issue method call: {detail}", method)

        return stdout.decode(errors="replace")
