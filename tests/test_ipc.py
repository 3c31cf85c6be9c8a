"""Tests for the IPC codec, socket server and controller client (shellcanvas/ipc.py)."""

import asyncio
import json
import stat

import pytest

from shellcanvas.config import socket_path
from shellcanvas.errors import ProtocolDecodeError
from shellcanvas.ipc import IPCServer, decode_message, encode_message, get_output, request, send


async def _wait_for(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


class TestCodec:
    def test_encode_is_one_compact_line(self):
        data = encode_message({"type": "getOutput", "lineCount": 2, "fromEnd": True})
        assert data == b'{"type":"getOutput","lineCount":2,"fromEnd":true}\n'

    def test_encode_keeps_unicode(self):
        assert encode_message({"type": "output", "chunk": "héllo"}) == '{"type":"output","chunk":"héllo"}\n'.encode()

    def test_decode_bytes_and_str(self):
        assert decode_message(b'{"type":"ping"}\n') == {"type": "ping"}
        assert decode_message('{"type":"ping"}') == {"type": "ping"}

    @pytest.mark.parametrize(
        "line",
        [
            b"not json",
            b"[1, 2]",
            b'{"command": "ls"}',
            b'{"type": 5}',
            b"\xff\xfe",
        ],
    )
    def test_decode_rejects_malformed(self, line):
        with pytest.raises(ProtocolDecodeError):
            decode_message(line)


class EchoHandler:
    """Records messages; answers ping with pong."""

    def __init__(self):
        self.received: list[dict] = []
        self.server: IPCServer | None = None

    async def __call__(self, message):
        self.received.append(message)
        if message["type"] == "ping":
            self.server.broadcast({"type": "pong"})
        elif message["type"] == "boom":
            raise RuntimeError("handler failure")


@pytest.fixture
async def server(runtime_dir):
    handler = EchoHandler()
    srv = IPCServer(socket_path("ipc"), handler)
    handler.server = srv
    await srv.start()
    yield srv
    await srv.stop()


async def _connect(server):
    reader, writer = await asyncio.open_unix_connection(str(server.path))
    return reader, writer


class TestServer:
    async def test_socket_is_private(self, server):
        assert stat.S_ISSOCK(server.path.stat().st_mode)
        assert stat.S_IMODE(server.path.stat().st_mode) == 0o600

    async def test_replaces_stale_socket_file(self, runtime_dir):
        path = socket_path("stale")
        path.write_text("left over")

        async def handler(message):
            pass

        srv = IPCServer(path, handler)
        await srv.start()
        try:
            assert stat.S_ISSOCK(path.stat().st_mode)
        finally:
            await srv.stop()

    async def test_stop_removes_socket(self, runtime_dir):
        async def handler(message):
            pass

        srv = IPCServer(socket_path("gone"), handler)
        await srv.start()
        await srv.stop()
        assert not socket_path("gone").exists()

    async def test_ping_pong(self, server):
        reader, writer = await _connect(server)
        writer.write(b'{"type":"ping"}\n')
        await writer.drain()
        line = await asyncio.wait_for(reader.readline(), 2)
        assert json.loads(line) == {"type": "pong"}
        writer.close()

    async def test_malformed_line_keeps_connection(self, server):
        reader, writer = await _connect(server)
        writer.write(b"this is not json\n")
        writer.write(b'{"no_type": true}\n')
        writer.write(b'{"type":"ping"}\n')
        await writer.drain()
        line = await asyncio.wait_for(reader.readline(), 2)
        assert json.loads(line) == {"type": "pong"}
        assert [m["type"] for m in server._handler.received] == ["ping"]
        writer.close()

    async def test_handler_exception_keeps_connection(self, server):
        reader, writer = await _connect(server)
        writer.write(b'{"type":"boom"}\n{"type":"ping"}\n')
        await writer.drain()
        line = await asyncio.wait_for(reader.readline(), 2)
        assert json.loads(line) == {"type": "pong"}
        writer.close()

    async def test_broadcast_reaches_every_client(self, server):
        r1, w1 = await _connect(server)
        r2, w2 = await _connect(server)
        await _wait_for(lambda: len(server.clients) == 2)

        server.broadcast({"type": "output", "chunk": "hi\n", "source": "stdout"})
        for reader in (r1, r2):
            line = await asyncio.wait_for(reader.readline(), 2)
            assert json.loads(line) == {"type": "output", "chunk": "hi\n", "source": "stdout"}
        w1.close()
        w2.close()

    async def test_broadcast_preserves_order(self, server):
        reader, writer = await _connect(server)
        await _wait_for(lambda: server.is_connected)
        for i in range(20):
            server.broadcast({"type": "output", "chunk": str(i), "source": "stdout"})
        chunks = [json.loads(await asyncio.wait_for(reader.readline(), 2))["chunk"] for _ in range(20)]
        assert chunks == [str(i) for i in range(20)]
        writer.close()

    async def test_disconnected_client_dropped(self, server):
        r1, w1 = await _connect(server)
        _, w2 = await _connect(server)
        await _wait_for(lambda: len(server.clients) == 2)

        w2.close()
        await _wait_for(lambda: len(server.clients) == 1)

        server.broadcast({"type": "pong"})
        line = await asyncio.wait_for(r1.readline(), 2)
        assert json.loads(line) == {"type": "pong"}
        w1.close()


class TestClient:
    async def test_request_returns_matching_event(self, server):
        seen = []
        reply = await request(
            "ipc",
            {"type": "ping"},
            lambda e: e["type"] == "pong",
            timeout=2,
            on_message=seen.append,
        )
        assert reply == {"type": "pong"}
        assert seen == [{"type": "pong"}]

    async def test_request_times_out_on_caller_side(self, server):
        with pytest.raises(asyncio.TimeoutError):
            await request("ipc", {"type": "update"}, lambda e: True, timeout=0.2)
        # The server is unaffected
        assert await request("ipc", {"type": "ping"}, lambda e: e["type"] == "pong", timeout=2)

    async def test_send_is_fire_and_forget(self, server):
        await send("ipc", {"type": "setStreaming", "enabled": True})
        await _wait_for(lambda: server._handler.received)
        assert server._handler.received == [{"type": "setStreaming", "enabled": True}]

    async def test_no_session_raises_oserror(self, runtime_dir):
        with pytest.raises(OSError):
            await send("nobody", {"type": "ping"})

    async def test_get_output_message_shape(self, runtime_dir):
        received = []
        srv: IPCServer

        async def handler(message):
            received.append(message)
            srv.broadcast({"type": "outputBuffer", "lines": [], "totalAvailable": 0})

        srv = IPCServer(socket_path("shape"), handler)
        await srv.start()
        try:
            reply = await get_output("shape", 2, timeout=2)
        finally:
            await srv.stop()
        assert received == [{"type": "getOutput", "fromEnd": True, "lineCount": 2}]
        assert reply["type"] == "outputBuffer"
