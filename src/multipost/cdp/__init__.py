"""
CDP Module - Chrome DevTools Protocol transport, client and session management.
"""
from multipost.cdp.client import CDPClient, get_browser_ws_url, setup_logging
from multipost.cdp.codec import FrameDecoder, decode_frame, encode_frame, parse_frame
from multipost.cdp.registry import CallRegistry, PendingCall
from multipost.cdp.session import Session, SessionManager, SessionStatus, TargetInfo
from multipost.cdp.transport import StreamTransport, Transport, WebSocketTransport

__all__ = [
    "CDPClient",
    "get_browser_ws_url",
    "setup_logging",
    "FrameDecoder",
    "decode_frame",
    "encode_frame",
    "parse_frame",
    "CallRegistry",
    "PendingCall",
    "Session",
    "SessionManager",
    "SessionStatus",
    "TargetInfo",
    "Transport",
    "StreamTransport",
    "WebSocketTransport",
]
