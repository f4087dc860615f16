"""
Core module - Errors and configuration.
"""
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

__all__ = [
    "ClientConfig",
    "RetryPolicy",
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
]
