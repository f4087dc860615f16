"""
Transports - own the connection to the browser and route inbound frames.

Responses (frames with an ``id``) settle calls in the CallRegistry; events
(frames with a ``method`` and no ``id``) go to listeners registered per
method, optionally narrowed to one session.
"""
import asyncio
import inspect
import logging
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

import websockets
from websockets.asyncio.client import connect

from multipost.cdp.codec import Frame, FrameDecoder, encode_frame, encode_text, parse_frame
from multipost.cdp.registry import CallRegistry, PendingCall
from multipost.core.config import DEFAULT_MAX_FRAME_SIZE
from multipost.core.errors import (
    CDPConnectionClosedError,
    CDPConnectionError,
    CDPMalformedFrameError,
    CDPProtocolError,
)

logger = logging.getLogger("multipost")

EventHandler = Callable[[Frame], Union[None, Awaitable[None]]]

ANY_EVENT = "*"

READ_CHUNK_SIZE = 64 * 1024


class Transport:
    """Base transport: reader task, serialized writes, event dispatch.

    Subclasses provide ``_frames`` (decoded inbound frames, ending on EOF),
    ``_write`` and ``_close_stream``.
    """

    def __init__(self, registry: Optional[CallRegistry] = None, debug: bool = False):
        self.registry = registry if registry is not None else CallRegistry()
        self.debug = debug
        self.close_reason: Optional[str] = None
        self._listeners: Dict[str, List[Tuple[Optional[str], EventHandler]]] = {}
        self._write_lock = asyncio.Lock()
        self._reader_task: Optional[asyncio.Task] = None
        self._handler_tasks: Set[asyncio.Task] = set()
        self._closed = False
        self._stream_closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def start(self):
        """Start the reader task. Called once the stream is connected."""
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_loop())

    # ------------------------------------------------------------------
    # Subclass hooks
    # ------------------------------------------------------------------

    def _frames(self) -> AsyncIterator[Frame]:
        raise NotImplementedError

    async def _write(self, frame: Frame):
        raise NotImplementedError

    async def _close_stream(self):
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_frame(self, frame: Frame):
        """Write one frame. Concurrent callers never interleave on the wire."""
        if self._closed:
            raise CDPConnectionClosedError(
                f"Connection is closed: {self.close_reason}",
                session_id=frame.get("sessionId"),
                method=frame.get("method"),
            )
        async with self._write_lock:
            try:
                await self._write(frame)
            except (OSError, websockets.exceptions.ConnectionClosed) as e:
                reason = f"write failed: {e}"
                self._mark_closed(reason)
                raise CDPConnectionClosedError(
                    f"Connection is closed: {reason}",
                    session_id=frame.get("sessionId"),
                    method=frame.get("method"),
                ) from e

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _read_loop(self):
        reason = "stream closed by browser"
        try:
            async for frame in self._frames():
                self._route(frame)
        except asyncio.CancelledError:
            self._mark_closed("connection closed by client")
            raise
        except Exception as e:
            logger.error(f"Error in CDP read loop: {e}", exc_info=True)
            reason = f"read failed: {e}"
        self._mark_closed(reason)
        # The browser hung up; release our end of the socket as well.
        await self._shutdown_stream()

    def _route(self, frame: Frame):
        if "id" in frame:
            self._handle_response(frame)
        else:
            self._handle_event(frame)

    def _handle_response(self, frame: Frame):
        call_id = frame["id"]
        call = self.registry.get(call_id)
        if call is None:
            logger.debug(
                f"Discarding response for unknown call id {call_id}",
                extra={"message_id": call_id}
            )
            return

        if "error" in frame:
            error_data = frame["error"] if isinstance(frame["error"], dict) else {"message": str(frame["error"])}
            error_code = error_data.get("code")
            error_message = error_data.get("message", "Unknown CDP error")
            logger.error(
                f"CDP protocol error: {error_message}",
                extra={
                    "method": call.method,
                    "session_id": call.session_id,
                    "error_code": error_code,
                    "message_id": call_id,
                }
            )
            self.registry.reject(call_id, CDPProtocolError(
                error_message,
                code=error_code,
                cdp_error=error_data,
                session_id=call.session_id,
                method=call.method,
            ))
        else:
            self.registry.resolve(call_id, frame.get("result", {}))

    def _handle_event(self, frame: Frame):
        method = frame.get("method", "")
        session_id = frame.get("sessionId")

        if self.debug:
            logger.debug(
                f"CDP event: {method}",
                extra={"method": method, "session_id": session_id}
            )

        handlers = self._listeners.get(method, []) + self._listeners.get(ANY_EVENT, [])
        for wanted_session, handler in handlers:
            if wanted_session is not None and wanted_session != session_id:
                continue
            try:
                result = handler(frame)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._handler_tasks.add(task)
                    task.add_done_callback(self._handler_done)
            except Exception as e:
                logger.error(
                    f"Event handler for {method} failed: {e}",
                    exc_info=True,
                    extra={"method": method, "session_id": session_id}
                )

    def _handler_done(self, task: asyncio.Task):
        self._handler_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Async event handler failed: {task.exception()}")

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, method: str, handler: EventHandler, session_id: Optional[str] = None):
        """Subscribe to events named ``method`` ("*" for all events)."""
        self._listeners.setdefault(method, []).append((session_id, handler))

    def remove_listener(self, method: str, handler: EventHandler, session_id: Optional[str] = None):
        entries = self._listeners.get(method)
        if not entries:
            return
        try:
            entries.remove((session_id, handler))
        except ValueError:
            return
        if not entries:
            del self._listeners[method]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _mark_closed(self, reason: str):
        if self._closed:
            return
        self._closed = True
        self.close_reason = reason
        rejected = self.registry.reject_all(lambda call: self._closed_error(call, reason))
        logger.warning(
            f"CDP connection closed ({reason}); rejected {rejected} pending call(s)",
            extra={"pending": rejected}
        )

    @staticmethod
    def _closed_error(call: PendingCall, reason: str) -> CDPConnectionClosedError:
        return CDPConnectionClosedError(
            f"Connection closed before response: {reason}",
            session_id=call.session_id,
            method=call.method,
        )

    async def close(self):
        """Close the stream and fail pending calls. Safe to call repeatedly."""
        self._mark_closed("connection closed by client")

        reader = self._reader_task
        if reader is not None and not reader.done() and reader is not asyncio.current_task():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        await self._shutdown_stream()

    async def _shutdown_stream(self):
        if self._stream_closed:
            return
        self._stream_closed = True
        try:
            await self._close_stream()
        except (OSError, websockets.exceptions.WebSocketException) as e:
            logger.debug(f"Error while closing CDP stream: {e}")


class StreamTransport(Transport):
    """Newline-delimited JSON over a raw TCP stream."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
                 registry: Optional[CallRegistry] = None,
                 max_frame_size: int = DEFAULT_MAX_FRAME_SIZE, debug: bool = False):
        super().__init__(registry, debug=debug)
        self.reader = reader
        self.writer = writer
        self.decoder = FrameDecoder(max_frame_size=max_frame_size)

    @classmethod
    async def open(cls, host: str, port: int, registry: Optional[CallRegistry] = None,
                   max_frame_size: int = DEFAULT_MAX_FRAME_SIZE, debug: bool = False):
        """Connect to ``host:port`` and start reading."""
        logger.info(f"Connecting to CDP stream at {host}:{port}")
        try:
            reader, writer = await asyncio.open_connection(host, port)
        except OSError as e:
            raise CDPConnectionError(
                f"Failed to connect to {host}:{port}: {e}",
                method="connect"
            ) from e
        transport = cls(reader, writer, registry, max_frame_size=max_frame_size, debug=debug)
        transport.start()
        return transport

    async def _frames(self) -> AsyncIterator[Frame]:
        while True:
            chunk = await self.reader.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            for frame in self.decoder.feed(chunk):
                yield frame

    async def _write(self, frame: Frame):
        self.writer.write(encode_frame(frame))
        await self.writer.drain()

    async def _close_stream(self):
        self.writer.close()
        await self.writer.wait_closed()


class WebSocketTransport(Transport):
    """One JSON frame per WebSocket message (Chrome's native debug endpoint)."""

    def __init__(self, ws, registry: Optional[CallRegistry] = None, debug: bool = False):
        super().__init__(registry, debug=debug)
        self.ws = ws
        self.dropped = 0

    @classmethod
    async def open(cls, ws_url: str, registry: Optional[CallRegistry] = None,
                   max_frame_size: int = DEFAULT_MAX_FRAME_SIZE, debug: bool = False):
        """Connect to a DevTools WebSocket URL and start reading."""
        logger.info(f"Connecting to Chrome via WebSocket: {ws_url}")
        try:
            ws = await connect(ws_url, max_size=max_frame_size)
        except (OSError, websockets.exceptions.WebSocketException) as e:
            raise CDPConnectionError(
                f"Failed to connect to Chrome WebSocket: {e}",
                method="connect"
            ) from e
        transport = cls(ws, registry, debug=debug)
        transport.start()
        return transport

    async def _frames(self) -> AsyncIterator[Frame]:
        try:
            async for message in self.ws:
                try:
                    yield parse_frame(message)
                except CDPMalformedFrameError as e:
                    self.dropped += 1
                    logger.warning(f"Dropping malformed CDP frame: {e.message}")
        except websockets.exceptions.ConnectionClosedError as e:
            logger.warning(f"WebSocket connection closed: {e}")

    async def _write(self, frame: Frame):
        await self.ws.send(encode_text(frame))

    async def _close_stream(self):
        await self.ws.close()
