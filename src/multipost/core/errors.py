"""
CDP Error Taxonomy - Exception classes for the DevTools transport.

Every failure a caller can observe is a CDPError subclass, so publishing
scripts can tell a slow page (timeout) from a dead browser (connection
closed) from a command the browser refused (protocol error).
"""
from typing import Optional


class CDPError(Exception):
    """Base exception for all transport and session errors."""

    def __init__(self, message: str, session_id: Optional[str] = None,
                 target_id: Optional[str] = None, method: Optional[str] = None,
                 **context):
        super().__init__(message)
        self.message = message
        self.session_id = session_id
        self.target_id = target_id
        self.method = method
        self.context = context

    def __str__(self):
        parts = [self.message]
        if self.session_id:
            parts.append(f"session_id={self.session_id}")
        if self.target_id:
            parts.append(f"target_id={self.target_id}")
        if self.method:
            parts.append(f"method={self.method}")
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"context=({context_str})")
        return " | ".join(parts)


class CDPConnectionError(CDPError):
    """Raised when the debug endpoint cannot be reached."""
    pass


class CDPConnectionClosedError(CDPConnectionError):
    """Raised for calls that were pending (or issued) after the connection ended."""
    pass


class CDPTimeoutError(CDPError):
    """Raised when a command's deadline elapses before its response arrives."""

    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class CDPProtocolError(CDPError):
    """Raised when the browser answers a command with an error object.

    ``message`` is the browser's message verbatim.
    """

    def __init__(self, message: str, code: Optional[int] = None,
                 cdp_error: Optional[dict] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.code = code
        self.cdp_error = cdp_error


class CDPMalformedFrameError(CDPError):
    """Raised by the codec for a frame that is not a valid protocol message.

    Never delivered to a pending call; decoders log it and drop the frame.
    """

    def __init__(self, message: str, remaining: bytes = b"", **kwargs):
        super().__init__(message, **kwargs)
        self.remaining = remaining


class CDPDuplicateIdError(CDPError):
    """Raised when registering a call id that is already pending."""
    pass


class CDPSessionError(CDPError):
    """Raised when a detached or unknown session is used."""
    pass


class CDPTargetError(CDPError):
    """Raised when target-related operations fail."""
    pass


class CDPTargetNotFoundError(CDPTargetError):
    """Raised when the browser refuses to attach to a target."""
    pass


class CDPNoMatchingTargetError(CDPTargetError):
    """Raised when no discovered target matches a lookup."""
    pass
