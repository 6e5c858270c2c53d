"""
In-process transport connecting several services on one event loop.

Events are delivered with loop.call_soon, so a handler never runs inside
the send call that produced its input.
"""

import asyncio
import logging
from functools import partial
from typing import Callable, Dict, List, Optional, Set

from .routing import resolve_targets

logger = logging.getLogger(__name__)


class LoopbackHub:
    """
    Loopback broadcast channel.

    The earliest registered peer still present is the master.

    Usage:
        hub = LoopbackHub()
        hub.register(1, service_a)
        hub.register(2, service_b)
        await service_a.connect(1, provider_a)
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._services: Dict[int, object] = {}
        self._senders: Dict[int, Callable] = {}
        self._muted: Set[int] = set()
        self._in_flight = 0

        self.delivered = 0
        self.dropped = 0

    @property
    def peers(self) -> List[int]:
        return list(self._services)

    @property
    def master(self) -> Optional[int]:
        return next(iter(self._services), None)

    def register(self, peer_id: int, service) -> Callable:
        """
        Attach a service to the hub.

        Args:
            peer_id: Peer id the service will connect with
            service: NetworkAnchorService

        Returns:
            The send callable subscribed to the service's outbound hook
        """
        if peer_id in self._services:
            raise ValueError(f"Peer {peer_id} is already registered")
        send = partial(self._route, peer_id)
        self._services[peer_id] = service
        self._senders[peer_id] = send
        service.attach_transport(send)
        logger.debug(f"Registered peer {peer_id} on loopback hub")
        return send

    def unregister(self, peer_id: int) -> None:
        service = self._services.pop(peer_id, None)
        send = self._senders.pop(peer_id, None)
        if service is not None and send is not None:
            service.on_broadcast_network_event.unsubscribe(send)
        self._muted.discard(peer_id)

    def mute(self, peer_id: int) -> None:
        """Drop every event addressed to this peer."""
        self._muted.add(peer_id)

    def unmute(self, peer_id: int) -> None:
        self._muted.discard(peer_id)

    def _route(self, sender: int, code: int, json_data: str, targets: List[int]) -> None:
        loop = self._loop or asyncio.get_running_loop()
        for peer_id in resolve_targets(targets, sender, self._services, self.master):
            if peer_id in self._muted:
                self.dropped += 1
                continue
            self._in_flight += 1
            loop.call_soon(self._deliver, peer_id, code, json_data)

    def _deliver(self, peer_id: int, code: int, json_data: str) -> None:
        self._in_flight -= 1
        service = self._services.get(peer_id)
        if service is None or peer_id in self._muted:
            self.dropped += 1
            return
        self.delivered += 1
        service.process_network_event(code, json_data)

    async def flush(self, max_rounds: int = 1000) -> None:
        """Yield to the loop until no events are in flight."""
        rounds = 0
        while self._in_flight and rounds < max_rounds:
            await asyncio.sleep(0)
            rounds += 1
