"""
Pytest configuration and shared fixtures.
"""
import asyncio
import json
from typing import Any, Dict, Optional

import pytest

from multipost.cdp.client import CDPClient


class FakeDevToolsServer:
    """In-process stand-in for a browser speaking newline-delimited CDP over TCP."""

    def __init__(self):
        self.port: Optional[int] = None
        self.commands: asyncio.Queue = asyncio.Queue()
        self.connected = asyncio.Event()
        self._server: Optional[asyncio.AbstractServer] = None
        self._writer: Optional[asyncio.StreamWriter] = None

    async def start(self):
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._writer = writer
        self.connected.set()
        buffer = b""
        try:
            while True:
                chunk = await reader.read(65536)
                if not chunk:
                    break
                buffer += chunk
                while b"\n" in buffer:
                    line, buffer = buffer.split(b"\n", 1)
                    if line.strip():
                        await self.commands.put(json.loads(line))
        except ConnectionError:
            pass
        finally:
            writer.close()

    async def next_command(self, timeout: float = 2.0) -> Dict[str, Any]:
        return await asyncio.wait_for(self.commands.get(), timeout)

    async def push_raw(self, data: bytes):
        await self.connected.wait()
        self._writer.write(data)
        await self._writer.drain()

    async def push(self, frame: Dict[str, Any]):
        await self.push_raw(json.dumps(frame).encode() + b"\n")

    async def reply(self, command: Dict[str, Any], result: Optional[Dict[str, Any]] = None,
                    error: Optional[Dict[str, Any]] = None):
        frame: Dict[str, Any] = {"id": command["id"]}
        if error is not None:
            frame["error"] = error
        else:
            frame["result"] = result if result is not None else {}
        if "sessionId" in command:
            frame["sessionId"] = command["sessionId"]
        await self.push(frame)

    async def emit(self, method: str, params: Optional[Dict[str, Any]] = None,
                   session_id: Optional[str] = None):
        frame: Dict[str, Any] = {"method": method, "params": params or {}}
        if session_id is not None:
            frame["sessionId"] = session_id
        await self.push(frame)

    async def drop(self):
        """Close the connection from the browser side."""
        await self.connected.wait()
        self._writer.close()

    async def stop(self):
        if self._writer is not None:
            self._writer.close()
        if self._server is not None:
            self._server.close()


@pytest.fixture
async def server():
    """A fake browser listening on an ephemeral port."""
    s = FakeDevToolsServer()
    await s.start()
    yield s
    await s.stop()


@pytest.fixture
async def client(server):
    """A client connected to the fake browser, with a short call timeout."""
    c = await CDPClient.connect_tcp("127.0.0.1", server.port, call_timeout=2.0)
    await server.connected.wait()
    yield c
    await c.close()


def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test (requires Chrome)"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )
