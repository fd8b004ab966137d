"""Shared test fixtures for all test modules."""

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path

import pytest
import pytest_asyncio

NO_CONTENT = b"HTTP/1.1 204 No Content\r\n\r\n"


class MockMetricsServer:
    """
    Minimal HTTP/1.1 endpoint that answers every request with a fixed response.

    Keeps connections open between requests and counts how many were accepted.
    An empty response closes the connection after reading the request;
    silent=True reads requests but never answers. With split_at set, the
    response is written in two parts separated by split_delay seconds.
    """

    def __init__(
        self,
        response: bytes = NO_CONTENT,
        silent: bool = False,
        split_at: int | None = None,
        split_delay: float = 0.05,
    ):
        self.response = response
        self.silent = silent
        self.split_at = split_at
        self.split_delay = split_delay
        self.connections = 0
        self.requests: list[tuple[bytes, bytes]] = []
        self.port: int | None = None
        self._server: asyncio.AbstractServer | None = None
        self._writers: set[asyncio.StreamWriter] = set()

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def stop(self) -> None:
        for writer in list(self._writers):
            writer.close()
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connections += 1
        self._writers.add(writer)
        try:
            while True:
                head = await reader.readuntil(b"\r\n\r\n")
                length = 0
                for line in head.split(b"\r\n"):
                    if line.lower().startswith(b"content-length:"):
                        length = int(line.split(b":", 1)[1])
                body = await reader.readexactly(length)
                self.requests.append((head, body))

                if self.silent:
                    continue
                if not self.response:
                    break
                if self.split_at is None:
                    writer.write(self.response)
                else:
                    writer.write(self.response[:self.split_at])
                    await writer.drain()
                    await asyncio.sleep(self.split_delay)
                    writer.write(self.response[self.split_at:])
                await writer.drain()
        except (asyncio.IncompleteReadError, ConnectionError):
            pass
        finally:
            self._writers.discard(writer)
            writer.close()


@pytest_asyncio.fixture
async def metrics_server():
    """Running mock metrics endpoint answering 204 No Content."""
    server = MockMetricsServer()
    await server.start()
    yield server
    await server.stop()


@dataclass
class FakeBusctl:
    """Executable stand-in for busctl that records its arguments."""
    path: Path
    args_file: Path

    @property
    def called(self) -> bool:
        return self.args_file.exists()

    def args(self) -> list[str]:
        return self.args_file.read_text().splitlines()


@pytest.fixture
def fake_busctl(tmp_path: Path):
    """Factory for a fake busctl printing a canned reply."""

    def make(stdout: str = "", stderr: str = "", exit_code: int = 0, hang: bool = False) -> FakeBusctl:
        args_file = tmp_path / "busctl.args"
        stdout_file = tmp_path / "busctl.stdout"
        stderr_file = tmp_path / "busctl.stderr"
        stdout_file.write_text(stdout)
        stderr_file.write_text(stderr)

        script = tmp_path / "busctl"
        lines = [
            "#!/bin/sh",
            f"printf '%s\\n' \"$@\" > '{args_file}'",
        ]
        if hang:
            lines.append("exec sleep 10")
        lines += [
            f"cat '{stdout_file}'",
            f"cat '{stderr_file}' >&2",
            f"exit {exit_code}",
        ]
        script.write_text("\n".join(lines) + "\n")
        os.chmod(script, 0o755)
        return FakeBusctl(path=script, args_file=args_file)

    return make
