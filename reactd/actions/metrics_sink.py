"""
Metrics Sink

Writes line-protocol records to an HTTP endpoint over one persistent,
non-blocking TCP connection.

Each send_line() call runs connect (only when no connection is open),
send headers, send body and read response strictly in sequence, all
charged against a single timeout budget. Any failure closes the
connection so the next call starts with a fresh connect.
"""

import asyncio
import ipaddress
import socket

from reactd.common import clock
from reactd.common.clock import TimeoutBudget
from reactd.common.config import MetricsEndpoint
from reactd.common.exceptions import MetricsError, MetricsTimeoutError
from reactd.common.logging_setup import get_service_logger

logger = get_service_logger("actions.metrics")


class MetricsSink:
    """
    Persistent-connection line-protocol writer for one endpoint.

    The live socket is session state owned by the sink. Calls on one sink
    are serialized by an internal lock.
    """

    CONNECT_TIMEOUT_SECONDS = 10.0
    SUCCESS_STATUS = b"HTTP/1.1 204 No Content"
    HEADER_END = b"\r\n\r\n"
    RECV_BYTES = 128

    def __init__(
        self,
        endpoint: MetricsEndpoint,
        connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
    ):
        self.endpoint = endpoint
        self.connect_timeout = connect_timeout
        self.connect_count = 0

        self._sock: socket.socket | None = None
        self._lock = asyncio.Lock()

    @property
    def connection(self) -> socket.socket | None:
        return self._sock

    @property
    def is_connected(self) -> bool:
        return self._sock is not None

    @property
    def _target(self) -> str:
        return f"{self.endpoint.host}:{self.endpoint.port}"

    def close(self) -> None:
        """Close the connection; the next send reconnects"""
        if self._sock is not None:
            self._sock.close()
            self._sock = None
            logger.debug(f"Disconnected from {self._target}")

    async def send_line(self, line: str) -> bool:
        """
        Send one metrics line.

        Args:
            line: Line-protocol record without trailing newline

        Returns:
            True if the endpoint answered 204 No Content
        """
        async with self._lock:
            budget = TimeoutBudget(self.endpoint.timeout_seconds)
            logger.debug(f"Sending to {self._target} with timeout {budget.total:.2f}s")

            try:
                if self._sock is None:
                    await self._connect(budget)
                await self._exchange(line, budget)
            except MetricsError as e:
                logger.error(
                    e.message,
                    extra={"host": self.endpoint.host, "port": self.endpoint.port},
                )
                self.close()
                return False

            logger.debug(f"Metrics line accepted by {self._target}")
            return True

    async def _resolve(self, deadline: TimeoutBudget) -> tuple[socket.AddressFamily, tuple]:
        """Address literal first, DNS lookup as fallback"""
        host, port = self.endpoint.host, self.endpoint.port

        try:
            address = ipaddress.ip_address(host)
        except ValueError:
            pass
        else:
            if address.version == 6:
                return socket.AF_INET6, (str(address), port, 0, 0)
            return socket.AF_INET, (str(address), port)

        loop = asyncio.get_running_loop()
        start = clock.now()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(host, port, type=socket.SOCK_STREAM),
                timeout=deadline.remaining,
            )
        except (OSError, asyncio.TimeoutError) as e:
            raise MetricsError(f"Unable to get an IP for: {host} ({e})", host, port) from None
        finally:
            deadline.charge_since(start)

        if not infos:
            raise MetricsError(f"Unable to get an IP for: {host}", host, port)

        family, _, _, _, sockaddr = infos[0]
        return family, sockaddr

    async def _connect(self, budget: TimeoutBudget) -> None:
        """
        Open a non-blocking connection.

        Resolution and connect share one connect_timeout deadline; the
        time spent is also charged to the request budget.
        """
        host, port = self.endpoint.host, self.endpoint.port
        start = clock.now()
        deadline = TimeoutBudget(self.connect_timeout)

        family, address = await self._resolve(deadline)
        if deadline.expired:
            raise MetricsTimeoutError(f"Unable to connect to {self._target}", host, port)

        try:
            sock = socket.socket(family, socket.SOCK_STREAM)
        except OSError as e:
            raise MetricsError(f"Unable to create socket: {e}", host, port) from None
        sock.setblocking(False)

        loop = asyncio.get_running_loop()
        try:
            await asyncio.wait_for(
                loop.sock_connect(sock, address),
                timeout=deadline.remaining,
            )
        except asyncio.TimeoutError:
            sock.close()
            raise MetricsTimeoutError(f"Unable to connect to {self._target}", host, port) from None
        except OSError as e:
            sock.close()
            raise MetricsError(f"Unable to connect to {self._target}: {e}", host, port) from None

        budget.charge_since(start)
        self._sock = sock
        self.connect_count += 1
        logger.debug(f"Connected to {self._target}")

    def _build_header(self, content_length: int) -> bytes:
        endpoint = self.endpoint
        return (
            f"POST {endpoint.http_path} HTTP/1.1\r\n"
            f"Host: {endpoint.host}:{endpoint.port}\r\n"
            f"Content-Length: {content_length}\r\n"
            f"Authorization: {endpoint.auth_token}\r\n"
            "\r\n"
        ).encode()

    async def _exchange(self, line: str, budget: TimeoutBudget) -> None:
        """Send the request, check the status line and consume the response"""
        body = f"{line}\n".encode()
        header = self._build_header(len(body))

        await self._send(header, budget, "headers")
        await self._send(body, budget, "body")

        answer = b""
        while len(answer) < len(self.SUCCESS_STATUS):
            answer += await self._recv(budget)

        if not answer.startswith(self.SUCCESS_STATUS):
            status = answer.split(b"\r\n", 1)[0].decode(errors="replace")
            raise MetricsError(
                f"Not successful writing to {self._target}. Received: {status}",
                self.endpoint.host,
                self.endpoint.port,
            )

        await self._finish_response(answer, budget)
        self._discard_buffered()

    async def _send(self, payload: bytes, budget: TimeoutBudget, phase: str) -> None:
        host, port = self.endpoint.host, self.endpoint.port
        if budget.expired:
            raise MetricsTimeoutError(f"Timeout for {self._target} before sending {phase}", host, port)

        loop = asyncio.get_running_loop()
        start = clock.now()
        try:
            await asyncio.wait_for(
                loop.sock_sendall(self._sock, payload),
                timeout=budget.remaining,
            )
        except asyncio.TimeoutError:
            raise MetricsTimeoutError(
                f"Timeout while sending {phase} to {self._target}", host, port
            ) from None
        except OSError as e:
            raise MetricsError(f"Unable to send {phase} to {self._target}: {e}", host, port) from None
        finally:
            budget.charge_since(start)

    async def _recv(self, budget: TimeoutBudget) -> bytes:
        """Receive the next chunk of the answer within the budget"""
        host, port = self.endpoint.host, self.endpoint.port
        if budget.expired:
            raise MetricsTimeoutError(f"Timeout for an answer from {self._target}", host, port)

        loop = asyncio.get_running_loop()
        start = clock.now()
        try:
            chunk = await asyncio.wait_for(
                loop.sock_recv(self._sock, self.RECV_BYTES),
                timeout=budget.remaining,
            )
        except asyncio.TimeoutError:
            raise MetricsTimeoutError(
                f"Timeout for an answer from {self._target}", host, port
            ) from None
        except OSError as e:
            raise MetricsError(
                f"Unable to receive answer from {self._target}: {e}", host, port
            ) from None
        finally:
            budget.charge_since(start)

        if not chunk:
            raise MetricsError(
                f"Connection closed by {self._target} before the answer was complete",
                host,
                port,
            )
        return chunk

    async def _finish_response(self, answer: bytes, budget: TimeoutBudget) -> None:
        """Read the rest of a 204 response (headers and any announced body)"""
        while self.HEADER_END not in answer:
            answer += await self._recv(budget)

        head, rest = answer.split(self.HEADER_END, 1)
        length = self._content_length(head)
        while len(rest) < length:
            rest += await self._recv(budget)

    def _content_length(self, head: bytes) -> int:
        for line in head.split(b"\r\n")[1:]:
            name, _, value = line.partition(b":")
            if name.strip().lower() != b"content-length":
                continue
            try:
                length = int(value.strip())
            except ValueError:
                length = -1
            if length < 0:
                raise MetricsError(
                    f"Invalid Content-Length from {self._target}: {value.strip().decode(errors='replace')}",
                    self.endpoint.host,
                    self.endpoint.port,
                )
            return length
        return 0

    def _discard_buffered(self) -> None:
        """Drop unexpected bytes after the response so the next exchange starts clean"""
        while True:
            try:
                chunk = self._sock.recv(4096)
            except (BlockingIOError, InterruptedError):
                return
            except OSError as e:
                logger.debug(f"Connection to {self._target} unusable after response: {e}")
                self.close()
                return

            if not chunk:
                logger.debug(f"{self._target} closed the connection after responding")
                self.close()
                return
