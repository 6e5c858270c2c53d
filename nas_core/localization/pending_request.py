"""
Pending request slots.

A PendingRequest pairs a single-shot result future with a deadline. A slot
that times out, or is superseded by a newer request of the same kind,
resolves to None instead of raising, so a caller iterating over peers can
simply move on to the next one.
"""

import asyncio
import logging
from enum import Enum
from typing import Dict, Generic, Optional, TypeVar

from nas_core.metrics import MetricsCollector, get_metrics

logger = logging.getLogger(__name__)

R = TypeVar('R')


class RequestKind(Enum):
    """One outstanding request is allowed per kind."""

    CONNECT = "connect"
    GET_ANCHOR = "get_anchor"
    CREATE_ANCHOR = "create_anchor"
    GET_REMOTE_COORDINATES = "get_remote_coordinates"


class PendingRequest(Generic[R]):
    """
    Single-shot response slot with a deadline.

    The deadline starts when the request is armed (just before it is sent),
    or at the first wait() if it was never armed explicitly.
    """

    def __init__(self, kind: RequestKind, timeout_s: float,
                 loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        Initialize pending request.

        Args:
            kind: Request kind this slot belongs to
            timeout_s: Time allowed for the response once armed
            loop: Event loop (defaults to the running loop)
        """
        self.kind = kind
        self.timeout_s = timeout_s
        self._loop = loop or asyncio.get_running_loop()
        self._future: asyncio.Future = self._loop.create_future()
        self.armed_at: Optional[float] = None
        self.deadline: Optional[float] = None
        self.timed_out = False
        self.superseded = False
        self.cancelled = False

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def result(self) -> Optional[R]:
        """Resolved value (None while pending or after a timeout)."""
        return self._future.result() if self._future.done() else None

    def arm(self) -> None:
        """Start the deadline clock."""
        self.armed_at = self._loop.time()
        self.deadline = self.armed_at + self.timeout_s

    def resolve(self, value: Optional[R]) -> bool:
        """
        Resolve the slot.

        Returns:
            True if this call resolved it, False if it was already resolved
        """
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def supersede(self) -> bool:
        """Resolve to None because a newer request of the same kind replaced this one."""
        resolved = self.resolve(None)
        if resolved:
            self.superseded = True
        return resolved

    def cancel(self) -> bool:
        """Resolve to None because the session that issued the request ended."""
        resolved = self.resolve(None)
        if resolved:
            self.cancelled = True
        return resolved

    @property
    def abandoned(self) -> bool:
        """True if the slot was superseded or cancelled rather than answered or timed out."""
        return self.superseded or self.cancelled

    async def wait(self) -> Optional[R]:
        """
        Wait for the response or the deadline.

        Returns:
            The response, or None on timeout, supersession or cancellation
        """
        if self.deadline is None:
            self.arm()

        remaining = max(0.0, self.deadline - self._loop.time())
        try:
            return await asyncio.wait_for(asyncio.shield(self._future), timeout=remaining)
        except asyncio.TimeoutError:
            if not self._future.done():
                self.timed_out = True
                self._future.set_result(None)
            return self._future.result()

    def elapsed_ms(self) -> Optional[float]:
        """Time since the slot was armed, in milliseconds."""
        if self.armed_at is None:
            return None
        return (self._loop.time() - self.armed_at) * 1000.0


class PendingRequestTable:
    """
    At most one outstanding PendingRequest per RequestKind.

    Installing a request of a kind supersedes the prior one, whose awaiter
    sees None. A resolved slot is removed from the table, so a second
    response for the same kind finds nothing to resolve.
    """

    def __init__(self, metrics: Optional[MetricsCollector] = None):
        self.metrics = metrics or get_metrics()
        self._slots: Dict[RequestKind, PendingRequest] = {}

    def install(self, kind: RequestKind, timeout_s: float) -> PendingRequest:
        """
        Create the slot for a new request of this kind.

        Args:
            kind: Request kind
            timeout_s: Deadline once armed

        Returns:
            The new PendingRequest
        """
        prior = self._slots.get(kind)
        if prior is not None and prior.supersede():
            logger.debug(f"Superseded pending {kind.value} request")
            self.metrics.increment('requests_superseded')

        request = PendingRequest(kind, timeout_s)
        self._slots[kind] = request
        self.metrics.increment('requests_issued')
        return request

    def get(self, kind: RequestKind) -> Optional[PendingRequest]:
        return self._slots.get(kind)

    def resolve(self, kind: RequestKind, value) -> bool:
        """
        Resolve the outstanding slot of a kind with a response.

        Returns:
            True if a slot was waiting, False if the response is unsolicited
        """
        request = self._slots.get(kind)
        if request is None or request.done:
            return False
        del self._slots[kind]
        return request.resolve(value)

    def discard(self, request: PendingRequest) -> None:
        """Remove a finished slot if it is still the current one for its kind."""
        if self._slots.get(request.kind) is request:
            del self._slots[request.kind]

    def cancel_all(self) -> None:
        """Resolve every outstanding slot to None and clear the table."""
        for request in list(self._slots.values()):
            request.cancel()
        self._slots.clear()

    def __contains__(self, kind: RequestKind) -> bool:
        request = self._slots.get(kind)
        return request is not None and not request.done

    def __len__(self) -> int:
        return sum(1 for r in self._slots.values() if not r.done)
