"""
multipost - Chrome DevTools Protocol core for multi-platform article publishing.

One connection carries many concurrent commands; attached tabs are
addressed through flattened sessions.

Usage:
    from multipost import CDPClient, ClientConfig, SessionManager

    async with await CDPClient.connect(ClientConfig(port=9222)) as client:
        sessions = SessionManager(client)
        session = await sessions.attach_by_domain("mp.toutiao.com")
        await session.send("Page.bringToFront")

Launching a browser with a persistent profile:
    from multipost import LaunchedBrowser

    async with LaunchedBrowser(url="https://baijiahao.baidu.com") as browser:
        targets = await browser.sessions.list_targets()
"""
from multipost.cdp.client import CDPClient, get_browser_ws_url, setup_logging
from multipost.cdp.codec import FrameDecoder, decode_frame, encode_frame, parse_frame
from multipost.cdp.registry import CallRegistry, PendingCall
from multipost.cdp.session import Session, SessionManager, SessionStatus, TargetInfo
from multipost.cdp.transport import StreamTransport, Transport, WebSocketTransport
from multipost.cdp.page import call_function, click_element, evaluate, insert_text, navigate
from multipost.core.config import ClientConfig, RetryPolicy
from multipost.core.errors import (
    CDPError,
    CDPConnectionError,
    CDPConnectionClosedError,
    CDPTimeoutError,
    CDPProtocolError,
    CDPMalformedFrameError,
    CDPDuplicateIdError,
    CDPSessionError,
    CDPTargetError,
    CDPTargetNotFoundError,
    CDPNoMatchingTargetError,
)
from multipost.launcher import LaunchedBrowser, find_free_debug_port, wait_for_debug_port
from multipost.utils.retry import retry

__version__ = "0.1.0"

__all__ = [
    # Client
    "CDPClient",
    "ClientConfig",
    "RetryPolicy",
    "get_browser_ws_url",
    "setup_logging",
    # Transport internals
    "FrameDecoder",
    "decode_frame",
    "encode_frame",
    "parse_frame",
    "CallRegistry",
    "PendingCall",
    "Transport",
    "StreamTransport",
    "WebSocketTransport",
    # Sessions
    "Session",
    "SessionManager",
    "SessionStatus",
    "TargetInfo",
    # Page helpers
    "call_function",
    "click_element",
    "evaluate",
    "insert_text",
    "navigate",
    # Launching
    "LaunchedBrowser",
    "find_free_debug_port",
    "wait_for_debug_port",
    "retry",
    # Errors
    "CDPError",
    "CDPConnectionError",
    "CDPConnectionClosedError",
    "CDPTimeoutError",
    "CDPProtocolError",
    "CDPMalformedFrameError",
    "CDPDuplicateIdError",
    "CDPSessionError",
    "CDPTargetError",
    "CDPTargetNotFoundError",
    "CDPNoMatchingTargetError",
    # Version
    "__version__",
]
