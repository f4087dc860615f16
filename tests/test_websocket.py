"""
Tests for CDPClient over the WebSocket transport, against an in-process
browser built on the websockets server.

Run with: pytest tests/test_websocket.py -v
"""
import asyncio
import json
from http import HTTPStatus
from typing import Any, Dict, Optional

import pytest
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed
from websockets.protocol import State

from multipost.cdp.client import CDPClient
from multipost.cdp.transport import WebSocketTransport
from multipost.core.config import ClientConfig
from multipost.core.errors import (
    CDPConnectionClosedError,
    CDPConnectionError,
    CDPProtocolError,
)


class FakeWebSocketBrowser:
    """Serves ``/json/version`` and one CDP WebSocket, like Chrome's debug port."""

    def __init__(self):
        self.port: Optional[int] = None
        self.commands: asyncio.Queue = asyncio.Queue()
        self.connected = asyncio.Event()
        self.connection = None
        self._server = None

    @property
    def ws_url(self) -> str:
        return f"ws://127.0.0.1:{self.port}/devtools/browser/fake"

    async def start(self):
        self._server = await serve(
            self._handle, "127.0.0.1", 0, process_request=self._process_request
        )
        self.port = self._server.sockets[0].getsockname()[1]

    def _process_request(self, connection, request):
        if request.path == "/json/version":
            body = json.dumps({"Browser": "FakeChrome/1.0", "webSocketDebuggerUrl": self.ws_url})
            return connection.respond(HTTPStatus.OK, body)
        return None

    async def _handle(self, connection):
        self.connection = connection
        self.connected.set()
        try:
            async for message in connection:
                await self.commands.put(json.loads(message))
        except ConnectionClosed:
            pass

    async def next_command(self, timeout: float = 2.0) -> Dict[str, Any]:
        return await asyncio.wait_for(self.commands.get(), timeout)

    async def send_text(self, text: str):
        await self.connected.wait()
        await self.connection.send(text)

    async def reply(self, command: Dict[str, Any], result: Optional[Dict[str, Any]] = None,
                    error: Optional[Dict[str, Any]] = None):
        frame: Dict[str, Any] = {"id": command["id"]}
        if error is not None:
            frame["error"] = error
        else:
            frame["result"] = result if result is not None else {}
        if "sessionId" in command:
            frame["sessionId"] = command["sessionId"]
        await self.send_text(json.dumps(frame))

    async def emit(self, method: str, params: Optional[Dict[str, Any]] = None,
                   session_id: Optional[str] = None):
        frame: Dict[str, Any] = {"method": method, "params": params or {}}
        if session_id is not None:
            frame["sessionId"] = session_id
        await self.send_text(json.dumps(frame))

    async def hang_up(self, code: int = 1000, reason: str = ""):
        await self.connected.wait()
        await self.connection.close(code, reason)

    async def stop(self):
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()


@pytest.fixture
async def browser():
    b = FakeWebSocketBrowser()
    await b.start()
    yield b
    await b.stop()


@pytest.fixture
async def ws_client(browser):
    c = await CDPClient.connect_websocket(browser.ws_url, call_timeout=2.0)
    await browser.connected.wait()
    yield c
    await c.close()


# =============================================================================
# Connecting
# =============================================================================

class TestConnect:
    """Tests for reaching the browser over WebSocket."""

    @pytest.mark.asyncio
    async def test_connect_discovers_ws_url(self, browser):
        client = await CDPClient.connect(ClientConfig(port=browser.port, call_timeout=2.0))
        try:
            assert isinstance(client.transport, WebSocketTransport)

            task = asyncio.create_task(client.send("Browser.getVersion"))
            command = await browser.next_command()
            assert command == {"id": 1, "method": "Browser.getVersion", "params": {}}
            await browser.reply(command, {"product": "FakeChrome/1.0"})
            assert await task == {"product": "FakeChrome/1.0"}
        finally:
            await client.close()

    @pytest.mark.asyncio
    async def test_connect_refused(self, browser):
        url = browser.ws_url
        await browser.stop()
        with pytest.raises(CDPConnectionError):
            await CDPClient.connect_websocket(url)


# =============================================================================
# Round trips
# =============================================================================

class TestRoundTrips:
    """Tests for commands and responses carried one per WebSocket message."""

    @pytest.mark.asyncio
    async def test_concurrent_calls_reach_own_caller(self, ws_client, browser):
        tasks = [
            asyncio.create_task(ws_client.send("Runtime.evaluate", {"expression": str(i)}))
            for i in range(3)
        ]
        commands = [await browser.next_command() for _ in range(3)]
        assert sorted(c["id"] for c in commands) == [1, 2, 3]

        for command in reversed(commands):
            await browser.reply(command, {"value": command["params"]["expression"]})

        results = await asyncio.gather(*tasks)
        assert results == [{"value": "0"}, {"value": "1"}, {"value": "2"}]

    @pytest.mark.asyncio
    async def test_session_id_round_trip(self, ws_client, browser):
        task = asyncio.create_task(ws_client.send("Page.enable", session_id="S1"))
        command = await browser.next_command()
        assert command["sessionId"] == "S1"
        await browser.reply(command)
        assert await task == {}

    @pytest.mark.asyncio
    async def test_protocol_error(self, ws_client, browser):
        task = asyncio.create_task(ws_client.send("Foo.bar"))
        command = await browser.next_command()
        await browser.reply(command, error={"code": -32601, "message": "no such method"})

        with pytest.raises(CDPProtocolError) as exc_info:
            await task
        assert exc_info.value.message == "no such method"
        assert exc_info.value.code == -32601
        assert exc_info.value.method == "Foo.bar"

    @pytest.mark.asyncio
    async def test_malformed_message_is_dropped(self, ws_client, browser):
        task = asyncio.create_task(ws_client.send("Page.enable"))
        command = await browser.next_command()
        await browser.send_text("{not json at all")
        await browser.send_text("[1, 2, 3]")
        await browser.reply(command, {"ok": True})

        assert await task == {"ok": True}
        assert ws_client.transport.dropped == 2
        assert not ws_client.closed


# =============================================================================
# Events
# =============================================================================

class TestEvents:
    """Tests for event dispatch over WebSocket."""

    @pytest.mark.asyncio
    async def test_event_between_garbage_and_response(self, ws_client, browser):
        received = asyncio.Queue()
        ws_client.on("Page.loadEventFired", received.put_nowait)

        task = asyncio.create_task(ws_client.send("Foo.bar"))
        command = await browser.next_command()
        await browser.send_text("garbage")
        await browser.emit("Page.loadEventFired", {"timestamp": 1.0}, session_id="S1")
        await browser.reply(command, error={"code": -32601, "message": "no such method"})

        with pytest.raises(CDPProtocolError):
            await task
        event = await asyncio.wait_for(received.get(), 1.0)
        assert event["params"] == {"timestamp": 1.0}
        assert event["sessionId"] == "S1"
        assert ws_client.transport.dropped == 1

    @pytest.mark.asyncio
    async def test_session_filter(self, ws_client, browser):
        received = asyncio.Queue()
        ws_client.on("Runtime.consoleAPICalled", received.put_nowait, session_id="S2")
        await browser.emit("Runtime.consoleAPICalled", {"type": "log"}, session_id="S1")
        await browser.emit("Runtime.consoleAPICalled", {"type": "warning"}, session_id="S2")

        event = await asyncio.wait_for(received.get(), 1.0)
        assert event["params"] == {"type": "warning"}
        assert received.empty()


# =============================================================================
# Browser-side close
# =============================================================================

class TestServerClose:
    """Tests for the browser closing the WebSocket."""

    @pytest.mark.parametrize("code, reason", [(1000, ""), (1011, "renderer crashed")])
    @pytest.mark.asyncio
    async def test_close_rejects_pending_and_later_sends(self, ws_client, browser, code, reason):
        task = asyncio.create_task(ws_client.send("Page.navigate", {"url": "https://example.com"}))
        await browser.next_command()
        await browser.hang_up(code, reason)

        with pytest.raises(CDPConnectionClosedError) as exc_info:
            await asyncio.wait_for(task, 1.0)
        assert exc_info.value.method == "Page.navigate"
        assert ws_client.closed

        with pytest.raises(CDPConnectionClosedError):
            await asyncio.wait_for(ws_client.send("Page.enable"), 1.0)

    @pytest.mark.asyncio
    async def test_close_releases_client_socket(self, ws_client, browser):
        await browser.hang_up()
        await asyncio.wait_for(ws_client.transport._reader_task, 1.0)

        assert ws_client.closed
        assert ws_client.transport.ws.state is State.CLOSED
