"""Tests for the persistent-connection metrics sink."""

import asyncio
import socket

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from reactd.actions.metrics_sink import MetricsSink
from reactd.common.config import MetricsEndpoint

from .conftest import MockMetricsServer


def make_endpoint(port: int, **kwargs) -> MetricsEndpoint:
    params = {
        "host": "127.0.0.1",
        "port": port,
        "http_path": "/write?db=reactd",
        "auth_token": "Token s3cr3t",
        "timeout_seconds": 2.0,
    }
    params.update(kwargs)
    return MetricsEndpoint(**params)


def unused_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


class TestSuccessfulWrites:
    @pytest.mark.asyncio
    async def test_204_is_success_and_connection_stays_open(self, metrics_server) -> None:
        sink = MetricsSink(make_endpoint(metrics_server.port))
        try:
            assert await sink.send_line("cpu,host=a usage=0.5") is True
            assert sink.is_connected
            assert sink.connection is not None
        finally:
            sink.close()

    @pytest.mark.asyncio
    async def test_second_call_reuses_connection(self, metrics_server) -> None:
        sink = MetricsSink(make_endpoint(metrics_server.port))
        try:
            assert await sink.send_line("cpu usage=1")
            first = sink.connection
            assert await sink.send_line("cpu usage=2")

            assert sink.connection is first
            assert sink.connect_count == 1
            assert metrics_server.connections == 1
            assert len(metrics_server.requests) == 2
        finally:
            sink.close()

    @pytest.mark.asyncio
    async def test_request_format(self, metrics_server) -> None:
        sink = MetricsSink(make_endpoint(metrics_server.port))
        try:
            assert await sink.send_line("disk,mount=/var free=12")
        finally:
            sink.close()

        head, body = metrics_server.requests[0]
        lines = head.decode().split("\r\n")
        assert lines[0] == "POST /write?db=reactd HTTP/1.1"
        assert f"Host: 127.0.0.1:{metrics_server.port}" in lines
        assert "Authorization: Token s3cr3t" in lines
        assert f"Content-Length: {len(body)}" in lines
        assert body == b"disk,mount=/var free=12\n"

    @pytest.mark.asyncio
    async def test_content_length_counts_encoded_bytes(self, metrics_server) -> None:
        sink = MetricsSink(make_endpoint(metrics_server.port))
        try:
            assert await sink.send_line("temp,room=küche value=21")
        finally:
            sink.close()

        head, body = metrics_server.requests[0]
        assert f"Content-Length: {len(body)}".encode() in head
        assert body.decode() == "temp,room=küche value=21\n"

    @pytest.mark.asyncio
    async def test_hostname_is_resolved(self, metrics_server, monkeypatch) -> None:
        loop = asyncio.get_running_loop()
        lookups = []

        async def getaddrinfo(host, port, **kwargs):
            lookups.append(host)
            return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("127.0.0.1", port))]

        monkeypatch.setattr(loop, "getaddrinfo", getaddrinfo)

        sink = MetricsSink(make_endpoint(metrics_server.port, host="metrics.example"))
        try:
            assert await sink.send_line("cpu usage=1")
        finally:
            sink.close()

        assert lookups == ["metrics.example"]
        assert b"Host: metrics.example:" in metrics_server.requests[0][0]

    @pytest.mark.asyncio
    async def test_address_literal_skips_lookup(self, metrics_server, monkeypatch) -> None:
        loop = asyncio.get_running_loop()

        async def getaddrinfo(*args, **kwargs):
            raise AssertionError("literal address must not be looked up")

        monkeypatch.setattr(loop, "getaddrinfo", getaddrinfo)

        sink = MetricsSink(make_endpoint(metrics_server.port))
        try:
            assert await sink.send_line("cpu usage=1")
        finally:
            sink.close()

    @pytest.mark.asyncio
    async def test_against_http_server(self) -> None:
        received = []
        peers = set()

        async def write(request: web.Request) -> web.Response:
            received.append((request.headers["Authorization"], await request.text()))
            peers.add(request.transport.get_extra_info("peername"))
            return web.Response(status=204)

        app = web.Application()
        app.router.add_post("/api/v2/write", write)
        server = TestServer(app, host="127.0.0.1")
        await server.start_server()

        sink = MetricsSink(make_endpoint(server.port, http_path="/api/v2/write"))
        try:
            assert await sink.send_line("mem used=1")
            assert await sink.send_line("mem used=2")
            assert await sink.send_line("mem used=3")
        finally:
            sink.close()
            await server.close()

        assert received == [
            ("Token s3cr3t", "mem used=1\n"),
            ("Token s3cr3t", "mem used=2\n"),
            ("Token s3cr3t", "mem used=3\n"),
        ]
        assert len(peers) == 1
        assert sink.connect_count == 1


class TestResponseFraming:
    @pytest.mark.asyncio
    async def test_headers_arriving_late_are_consumed(self) -> None:
        status = b"HTTP/1.1 204 No Content\r\n"
        server = MockMetricsServer(
            response=status + b"X-Influxdb-Version: 1.8\r\n\r\n",
            split_at=len(status),
        )
        await server.start()
        sink = MetricsSink(make_endpoint(server.port))
        try:
            assert await sink.send_line("cpu usage=1") is True
            assert await sink.send_line("cpu usage=2") is True
            assert sink.connect_count == 1
            assert server.connections == 1
        finally:
            sink.close()
            await server.stop()

    @pytest.mark.asyncio
    async def test_announced_body_is_skipped(self) -> None:
        head = b"HTTP/1.1 204 No Content\r\nContent-Length: 5\r\n\r\n"
        server = MockMetricsServer(response=head + b"hello", split_at=len(head) + 2)
        await server.start()
        sink = MetricsSink(make_endpoint(server.port))
        try:
            assert await sink.send_line("cpu usage=1") is True
            assert await sink.send_line("cpu usage=2") is True
            assert sink.connect_count == 1
        finally:
            sink.close()
            await server.stop()

    @pytest.mark.asyncio
    async def test_unterminated_headers_time_out(self) -> None:
        server = MockMetricsServer(response=b"HTTP/1.1 204 No Content\r\nX-Partial: 1\r\n")
        await server.start()
        sink = MetricsSink(make_endpoint(server.port, timeout_seconds=0.3))
        try:
            assert await sink.send_line("cpu usage=1") is False
            assert sink.connection is None
        finally:
            sink.close()
            await server.stop()

    @pytest.mark.asyncio
    async def test_invalid_content_length_fails(self) -> None:
        server = MockMetricsServer(response=b"HTTP/1.1 204 No Content\r\nContent-Length: lots\r\n\r\n")
        await server.start()
        sink = MetricsSink(make_endpoint(server.port))
        try:
            assert await sink.send_line("cpu usage=1") is False
            assert sink.connection is None
        finally:
            sink.close()
            await server.stop()


class TestFailures:
    @pytest.mark.asyncio
    async def test_non_204_fails_and_forces_reconnect(self) -> None:
        server = MockMetricsServer(response=b"HTTP/1.1 400 Bad Request\r\nContent-Length: 0\r\n\r\n")
        await server.start()
        sink = MetricsSink(make_endpoint(server.port))
        try:
            assert await sink.send_line("cpu usage=1") is False
            assert sink.connection is None

            server.response = b"HTTP/1.1 204 No Content\r\n\r\n"
            assert await sink.send_line("cpu usage=1") is True
            assert sink.connect_count == 2
            assert server.connections == 2
        finally:
            sink.close()
            await server.stop()

    @pytest.mark.asyncio
    async def test_connect_never_completes(self, monkeypatch) -> None:
        loop = asyncio.get_running_loop()

        async def never_writable(sock, address):
            await asyncio.sleep(3600)

        monkeypatch.setattr(loop, "sock_connect", never_writable)

        sink = MetricsSink(make_endpoint(unused_port()), connect_timeout=0.2)
        assert await sink.send_line("cpu usage=1") is False
        assert sink.connection is None
        assert sink.connect_count == 0

    @pytest.mark.asyncio
    async def test_connection_refused(self) -> None:
        sink = MetricsSink(make_endpoint(unused_port()))
        assert await sink.send_line("cpu usage=1") is False
        assert sink.connection is None

    @pytest.mark.asyncio
    async def test_unresolvable_host(self) -> None:
        sink = MetricsSink(make_endpoint(8086, host="no-such-host.invalid"), connect_timeout=2.0)
        assert await sink.send_line("cpu usage=1") is False
        assert sink.connection is None

    @pytest.mark.asyncio
    async def test_no_answer_exhausts_budget(self) -> None:
        server = MockMetricsServer(silent=True)
        await server.start()
        sink = MetricsSink(make_endpoint(server.port, timeout_seconds=0.3))
        loop = asyncio.get_running_loop()
        try:
            start = loop.time()
            assert await sink.send_line("cpu usage=1") is False
            assert loop.time() - start < 2.0
            assert sink.connection is None
            assert len(server.requests) == 1
        finally:
            sink.close()
            await server.stop()

    @pytest.mark.asyncio
    async def test_connection_closed_before_answer(self) -> None:
        server = MockMetricsServer(response=b"")
        await server.start()
        sink = MetricsSink(make_endpoint(server.port))
        try:
            assert await sink.send_line("cpu usage=1") is False
            assert sink.connection is None
        finally:
            sink.close()
            await server.stop()

    @pytest.mark.asyncio
    async def test_incomplete_status_line_times_out(self) -> None:
        server = MockMetricsServer(response=b"HTTP/1.1 204")
        await server.start()
        sink = MetricsSink(make_endpoint(server.port, timeout_seconds=0.5))
        try:
            assert await sink.send_line("cpu usage=1") is False
            assert sink.connection is None
        finally:
            sink.close()
            await server.stop()

    @pytest.mark.asyncio
    async def test_zero_budget_fails_before_sending(self, metrics_server) -> None:
        sink = MetricsSink(make_endpoint(metrics_server.port, timeout_seconds=0))
        assert await sink.send_line("cpu usage=1") is False
        assert sink.connection is None
        assert metrics_server.requests == []

    @pytest.mark.asyncio
    async def test_lookup_and_connect_share_one_deadline(self, monkeypatch) -> None:
        loop = asyncio.get_running_loop()

        async def slow_lookup(host, port, **kwargs):
            await asyncio.sleep(0.4)
            return [(socket.AF_INET, socket.SOCK_STREAM, 6, "", ("127.0.0.1", port))]

        async def never_writable(sock, address):
            await asyncio.sleep(3600)

        monkeypatch.setattr(loop, "getaddrinfo", slow_lookup)
        monkeypatch.setattr(loop, "sock_connect", never_writable)

        sink = MetricsSink(
            make_endpoint(unused_port(), host="metrics.example", timeout_seconds=5.0),
            connect_timeout=0.5,
        )
        start = loop.time()
        assert await sink.send_line("cpu usage=1") is False
        assert loop.time() - start < 0.8
        assert sink.connect_count == 0
