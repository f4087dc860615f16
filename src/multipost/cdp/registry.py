"""
Call registry - pending CDP commands keyed by message id.

Each entry owns its deadline timer. Every settlement path (resolve, reject,
expire, discard) starts by popping the entry from the table, and the event
loop runs one callback at a time, so whichever path pops first is the only
one with any effect.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from multipost.core.errors import CDPDuplicateIdError, CDPError, CDPTimeoutError

logger = logging.getLogger("multipost")


@dataclass
class PendingCall:
    """One outstanding command."""
    call_id: int
    method: str
    future: asyncio.Future
    timeout: float
    deadline: float
    session_id: Optional[str] = None
    timer: Optional[asyncio.TimerHandle] = None


class CallRegistry:
    """Maps outstanding call ids to the futures their callers await."""

    def __init__(self):
        self._pending: Dict[int, PendingCall] = {}

    def __contains__(self, call_id: int) -> bool:
        return call_id in self._pending

    def __len__(self) -> int:
        return len(self._pending)

    def pending_ids(self) -> List[int]:
        return list(self._pending)

    def get(self, call_id: int) -> Optional[PendingCall]:
        return self._pending.get(call_id)

    def register(self, call_id: int, timeout: float, method: str = "",
                 session_id: Optional[str] = None) -> asyncio.Future:
        """Add a pending entry and arm its deadline.

        Raises:
            CDPDuplicateIdError: if ``call_id`` is already pending.
        """
        if call_id in self._pending:
            raise CDPDuplicateIdError(
                f"Call id {call_id} is already pending",
                session_id=session_id,
                method=method,
            )

        loop = asyncio.get_running_loop()
        call = PendingCall(
            call_id=call_id,
            method=method,
            future=loop.create_future(),
            timeout=timeout,
            deadline=loop.time() + timeout,
            session_id=session_id,
        )
        call.timer = loop.call_later(timeout, self.expire, call_id)
        self._pending[call_id] = call
        return call.future

    def _take(self, call_id: int) -> Optional[PendingCall]:
        call = self._pending.pop(call_id, None)
        if call is None:
            return None
        if call.timer is not None:
            call.timer.cancel()
        if call.future.done():
            # The awaiting task was cancelled.
            return None
        return call

    def resolve(self, call_id: int, result: Any) -> bool:
        """Settle a call with its result. Returns False if nothing was pending."""
        call = self._take(call_id)
        if call is None:
            return False
        call.future.set_result(result)
        return True

    def reject(self, call_id: int, error: BaseException) -> bool:
        """Settle a call with an error. Returns False if nothing was pending."""
        call = self._take(call_id)
        if call is None:
            return False
        call.future.set_exception(error)
        return True

    def expire(self, call_id: int) -> bool:
        """Deadline callback: reject with CDPTimeoutError unless already settled."""
        call = self._take(call_id)
        if call is None:
            return False
        logger.error(
            f"CDP command timeout: {call.method} after {call.timeout:.3f}s",
            extra={
                "method": call.method,
                "session_id": call.session_id,
                "message_id": call_id,
            }
        )
        call.future.set_exception(CDPTimeoutError(
            f"CDP command {call.method} timed out after {call.timeout:.3f}s",
            timeout=call.timeout,
            session_id=call.session_id,
            method=call.method,
        ))
        return True

    def discard(self, call_id: int) -> bool:
        """Forget a call without settling it."""
        call = self._pending.pop(call_id, None)
        if call is None:
            return False
        if call.timer is not None:
            call.timer.cancel()
        return True

    def reject_all(self, error_factory: Callable[[PendingCall], CDPError]) -> int:
        """Reject every pending call, building each error from its entry."""
        rejected = 0
        for call_id in list(self._pending):
            call = self._pending.get(call_id)
            if call is not None and self.reject(call_id, error_factory(call)):
                rejected += 1
        return rejected
