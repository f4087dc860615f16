"""
CDP Session Management - target discovery and flattened session attachment.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from multipost.core.errors import (
    CDPNoMatchingTargetError,
    CDPProtocolError,
    CDPSessionError,
    CDPTargetNotFoundError,
)

if TYPE_CHECKING:
    from multipost.cdp.client import CDPClient

logger = logging.getLogger("multipost")


class SessionStatus(Enum):
    ACTIVE = "active"
    DETACHED = "detached"


@dataclass
class TargetInfo:
    """Information about a CDP target."""
    target_id: str
    type: str
    url: str
    title: str = ""
    attached: bool = False
    browser_context_id: Optional[str] = None

    @classmethod
    def from_cdp(cls, data: Dict[str, Any]) -> TargetInfo:
        return cls(
            target_id=data["targetId"],
            type=data.get("type", "unknown"),
            url=data.get("url", ""),
            title=data.get("title", ""),
            attached=bool(data.get("attached", False)),
            browser_context_id=data.get("browserContextId"),
        )


@dataclass(eq=False)
class Session:
    """A flattened session attached to one target.

    The client reference is non-owning: closing a session never closes the
    connection.
    """
    session_id: str
    target_id: str
    client: CDPClient = field(repr=False)
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: float = field(default_factory=time.time)

    @property
    def active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None,
                   timeout: Optional[float] = None) -> Any:
        """Send a command scoped to this session."""
        if not self.active:
            raise CDPSessionError(
                f"Session {self.session_id} is detached",
                session_id=self.session_id,
                target_id=self.target_id,
                method=method,
            )
        return await self.client.send(method, params, session_id=self.session_id, timeout=timeout)


class SessionManager:
    """Discovers targets and hands out sessions on one client."""

    def __init__(self, client: CDPClient):
        self.client = client
        self.sessions: Dict[str, Session] = {}
        client.on("Target.detachedFromTarget", self._on_detached_from_target)
        client.on("Target.targetDestroyed", self._on_target_destroyed)

    async def list_targets(self) -> List[TargetInfo]:
        """Return every target the browser reports, in its order."""
        result = await self.client.send("Target.getTargets")
        targets = [TargetInfo.from_cdp(info) for info in result.get("targetInfos", [])]
        logger.debug(f"Found {len(targets)} targets")
        return targets

    async def find_page_by_domain(self, domain: str, target_type: Optional[str] = None) -> TargetInfo:
        """Return the first target whose URL contains ``domain``.

        Ties are broken by discovery order only.

        Raises:
            CDPNoMatchingTargetError: if no target matches.
        """
        for target in await self.list_targets():
            if target_type is not None and target.type != target_type:
                continue
            if domain in target.url:
                return target
        raise CDPNoMatchingTargetError(
            f"No target found for domain: {domain}",
            method="find_page_by_domain",
            domain=domain,
        )

    async def attach(self, target_id: str) -> Session:
        """Attach to a target and return its session.

        Raises:
            CDPTargetNotFoundError: if the browser rejects the attach.
        """
        try:
            res = await self.client.send("Target.attachToTarget", {
                "targetId": target_id,
                "flatten": True
            })
        except CDPProtocolError as e:
            raise CDPTargetNotFoundError(
                f"Failed to attach to target {target_id}: {e.message}",
                target_id=target_id,
                method="Target.attachToTarget"
            ) from e

        session = Session(session_id=res["sessionId"], target_id=target_id, client=self.client)
        self.sessions[session.session_id] = session
        logger.info(
            "Attached to target",
            extra={"session_id": session.session_id, "target_id": target_id}
        )
        return session

    async def attach_by_domain(self, domain: str) -> Session:
        """Find the first page for ``domain`` and attach to it."""
        target = await self.find_page_by_domain(domain)
        return await self.attach(target.target_id)

    async def detach(self, session: Session):
        """Detach a session. Detaching twice is a no-op."""
        if not session.active:
            return
        try:
            await self.client.send("Target.detachFromTarget", {"sessionId": session.session_id})
        finally:
            self._mark_detached(session.session_id)

    async def create_target(self, url: str = "about:blank") -> str:
        """Open a new page and return its target id."""
        res = await self.client.send("Target.createTarget", {"url": url})
        return res["targetId"]

    async def close_target(self, target_id: str) -> bool:
        res = await self.client.send("Target.closeTarget", {"targetId": target_id})
        return bool(res.get("success", True))

    def get_session(self, session_id: str) -> Optional[Session]:
        return self.sessions.get(session_id)

    def _mark_detached(self, session_id: str):
        session = self.sessions.get(session_id)
        if session and session.active:
            session.status = SessionStatus.DETACHED
            logger.info(
                "Session detached",
                extra={"session_id": session_id, "target_id": session.target_id}
            )

    def _on_detached_from_target(self, event: Dict[str, Any]):
        session_id = event.get("params", {}).get("sessionId")
        if session_id:
            self._mark_detached(session_id)

    def _on_target_destroyed(self, event: Dict[str, Any]):
        target_id = event.get("params", {}).get("targetId")
        for session in list(self.sessions.values()):
            if session.target_id == target_id:
                self._mark_detached(session.session_id)
