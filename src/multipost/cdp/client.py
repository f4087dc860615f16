"""
CDP Client - multiplexed Chrome DevTools Protocol RPC client.

One client owns one transport. Any number of coroutines may have commands
in flight at once; responses are matched back to callers by message id and
may arrive in any order.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from multipost.cdp.registry import CallRegistry
from multipost.cdp.transport import EventHandler, StreamTransport, Transport, WebSocketTransport
from multipost.core.config import DEFAULT_CALL_TIMEOUT, DEFAULT_MAX_FRAME_SIZE, ClientConfig
from multipost.core.errors import CDPConnectionClosedError, CDPConnectionError, CDPError

logger = logging.getLogger("multipost")

MAX_CALL_ID = 2 ** 53 - 1


def setup_logging(level: int = logging.INFO, debug: bool = False):
    """Configure logging for the multipost logger."""
    if debug:
        level = logging.DEBUG

    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)


async def get_browser_ws_url(host: str = "127.0.0.1", port: int = 9222,
                             http_client: Optional[httpx.AsyncClient] = None) -> str:
    """Read the browser-level WebSocket URL from ``/json/version``."""
    url = f"http://{host}:{port}/json/version"
    try:
        if http_client is None:
            async with httpx.AsyncClient() as client:
                response = await client.get(url)
        else:
            response = await http_client.get(url)
        response.raise_for_status()
        info = response.json()
    except (httpx.HTTPError, ValueError) as e:
        raise CDPConnectionError(
            f"Failed to query Chrome at {host}:{port}: {e}",
            method="get_browser_ws_url"
        ) from e

    ws_url = info.get("webSocketDebuggerUrl")
    if not ws_url:
        raise CDPConnectionError(
            f"No webSocketDebuggerUrl reported by {url}",
            method="get_browser_ws_url"
        )
    logger.debug(f"Found browser endpoint, ws_url={ws_url}")
    return ws_url


class CDPClient:
    """Chrome DevTools Protocol RPC client over a single connection."""

    max_call_id = MAX_CALL_ID

    def __init__(self, transport: Transport, call_timeout: float = DEFAULT_CALL_TIMEOUT,
                 debug: bool = False):
        self.transport = transport
        self.call_timeout = call_timeout
        self.debug = debug
        self._next_id = 1

    @property
    def registry(self) -> CallRegistry:
        return self.transport.registry

    @property
    def closed(self) -> bool:
        return self.transport.closed

    @classmethod
    async def connect_tcp(cls, host: str, port: int, call_timeout: float = DEFAULT_CALL_TIMEOUT,
                          max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
                          debug: bool = False) -> CDPClient:
        transport = await StreamTransport.open(host, port, max_frame_size=max_frame_size, debug=debug)
        return cls(transport, call_timeout=call_timeout, debug=debug)

    @classmethod
    async def connect_websocket(cls, ws_url: str, call_timeout: float = DEFAULT_CALL_TIMEOUT,
                                max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
                                debug: bool = False) -> CDPClient:
        transport = await WebSocketTransport.open(ws_url, max_frame_size=max_frame_size, debug=debug)
        return cls(transport, call_timeout=call_timeout, debug=debug)

    @classmethod
    async def connect(cls, config: Optional[ClientConfig] = None) -> CDPClient:
        """Connect to the debug endpoint described by ``config``."""
        config = config or ClientConfig()
        if config.transport == "tcp":
            return await cls.connect_tcp(
                config.host, config.port,
                call_timeout=config.call_timeout,
                max_frame_size=config.max_frame_size,
                debug=config.debug,
            )
        ws_url = await get_browser_ws_url(config.host, config.port)
        return await cls.connect_websocket(
            ws_url,
            call_timeout=config.call_timeout,
            max_frame_size=config.max_frame_size,
            debug=config.debug,
        )

    async def __aenter__(self) -> CDPClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _allocate_id(self) -> int:
        for _ in range(len(self.registry) + 1):
            call_id = self._next_id
            self._next_id = 1 if call_id >= self.max_call_id else call_id + 1
            if call_id not in self.registry:
                return call_id
        raise CDPError("No free call id: every id is pending", method="_allocate_id")

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None,
                   session_id: Optional[str] = None, timeout: Optional[float] = None) -> Any:
        """Send a CDP command and wait for its result.

        Args:
            method: Protocol method, e.g. ``"Target.getTargets"``.
            params: Command parameters.
            session_id: Route the command to an attached target's session.
            timeout: Per-call deadline in seconds; defaults to ``call_timeout``.

        Raises:
            CDPTimeoutError: no response before the deadline.
            CDPProtocolError: the browser answered with an error.
            CDPConnectionClosedError: the connection ended first.
        """
        if self.transport.closed:
            raise CDPConnectionClosedError(
                f"Connection is closed: {self.transport.close_reason}",
                session_id=session_id,
                method=method,
            )

        timeout = self.call_timeout if timeout is None else timeout
        msg_id = self._allocate_id()
        message = {"id": msg_id, "method": method, "params": params or {}}
        if session_id is not None:
            message["sessionId"] = session_id

        future = self.registry.register(msg_id, timeout, method=method, session_id=session_id)
        start_time = asyncio.get_running_loop().time()

        if self.debug:
            logger.debug(
                f"CDP command: {method}",
                extra={
                    "method": method,
                    "params": params,
                    "session_id": session_id,
                    "message_id": msg_id,
                }
            )

        try:
            await self.transport.send_frame(message)
        except BaseException:
            self.registry.discard(msg_id)
            # The transport may already have rejected it while closing.
            if future.done() and not future.cancelled():
                future.exception()
            else:
                future.cancel()
            raise

        try:
            result = await future
        finally:
            self.registry.discard(msg_id)

        if self.debug:
            duration = asyncio.get_running_loop().time() - start_time
            logger.debug(
                f"CDP response: {method} (duration={duration:.3f}s)",
                extra={
                    "method": method,
                    "session_id": session_id,
                    "message_id": msg_id,
                    "duration_ms": duration * 1000,
                }
            )
        return result

    def on(self, method: str, handler: EventHandler, session_id: Optional[str] = None):
        """Register an event handler; it receives the raw event frame."""
        self.transport.add_listener(method, handler, session_id=session_id)

    def off(self, method: str, handler: EventHandler, session_id: Optional[str] = None):
        self.transport.remove_listener(method, handler, session_id=session_id)

    async def close(self):
        """Close the connection, failing every pending call. Idempotent."""
        await self.transport.close()
