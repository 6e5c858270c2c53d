"""
Pytest configuration and shared fixtures for the network anchor service tests.

This module provides reusable fixtures for geometry checks, multi-peer
loopback sessions, and a scripted remote peer that answers a single
service with canned replies.
"""

import sys
import math
import asyncio
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from nas_core.domain import Coordinate
from nas_core.geometry import Pose, quat_from_axis_angle, world_of
from nas_core.io import LoopbackHub
from nas_core.localization import NetworkAnchorService, ServiceConfig, reset_service
from nas_core.metrics import MetricsCollector, reset_metrics
from nas_core.proto import (
    EventCode,
    ResultCode,
    ConnectToServiceResponse,
    decode_message,
    encode_message,
)
from nas_core.providers import StaticCoordinateProvider


# =============================================================================
# Global State
# =============================================================================


@pytest.fixture(autouse=True)
def reset_singletons():
    """Give every test a fresh global metrics collector and service."""
    reset_metrics()
    reset_service()
    yield
    reset_metrics()
    reset_service()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Private metrics collector for one test."""
    return MetricsCollector()


@pytest.fixture
def fast_config() -> ServiceConfig:
    """
    Service configuration with short deadlines.

    Returns:
        ServiceConfig with 100 ms request and 500 ms coordinate timeouts.
    """
    return ServiceConfig(request_timeout_ms=100, coordinate_timeout_ms=500)


# =============================================================================
# Virtual Space Fixtures
# =============================================================================


def yaw(degrees: float):
    """Quaternion for a rotation about +Y."""
    return quat_from_axis_angle((0.0, 1.0, 0.0), math.radians(degrees))


@pytest.fixture
def shared_frames() -> Dict[str, Pose]:
    """
    Physical coordinate frames every peer can observe.

    Returns:
        Frame id -> pose in the shared physical space.
    """
    return {
        "pcf-a": Pose((2.0, 0.0, 3.0)),
        "pcf-b": Pose((-1.5, 0.0, 4.0), yaw(90.0)),
    }


@pytest.fixture
def peer_origins() -> Dict[int, Pose]:
    """
    Pose of the physical space in each peer's tracking space.

    Peer 1 tracks in the physical space itself; the others are offset
    and yawed.
    """
    return {
        1: Pose(),
        2: Pose((1.0, 0.0, -0.5), yaw(35.0)),
        3: Pose((-4.0, 1.0, 2.0), yaw(-120.0)),
        4: Pose((0.0, -2.0, 7.5), yaw(200.0)),
    }


@pytest.fixture
def observe(shared_frames) -> Callable:
    """
    Factory for the coordinates a peer observes.

    Usage:
        coordinates = observe(origin)                  # all frames
        coordinates = observe(origin, ["pcf-b"])       # a subset
    """
    def _observe(origin: Pose, frame_ids: Optional[List[str]] = None) -> List[Coordinate]:
        ids = frame_ids if frame_ids is not None else list(shared_frames)
        coordinates = []
        for frame_id in ids:
            pose = world_of(origin, shared_frames[frame_id])
            coordinates.append(Coordinate(frame_id, pose.position, pose.rotation))
        return coordinates

    return _observe


# =============================================================================
# Loopback Session
# =============================================================================


class PeerSession:
    """Several services connected through one LoopbackHub."""

    def __init__(self, config: ServiceConfig, metrics: MetricsCollector):
        self.config = config
        self.metrics = metrics
        self.hub = LoopbackHub()
        self.services: Dict[int, NetworkAnchorService] = {}
        self.providers: Dict[int, StaticCoordinateProvider] = {}

    def add_peer(self, peer_id: int, coordinates: List[Coordinate]) -> NetworkAnchorService:
        service = NetworkAnchorService(self.config, self.metrics)
        self.hub.register(peer_id, service)
        self.services[peer_id] = service
        self.providers[peer_id] = StaticCoordinateProvider(coordinates)
        return service

    async def connect(self, peer_id: int) -> ResultCode:
        result = await self.services[peer_id].connect(peer_id, self.providers[peer_id])
        await self.hub.flush()
        return result

    async def connect_all(self) -> None:
        for peer_id in self.services:
            assert await self.connect(peer_id) == ResultCode.SUCCESS

    async def close(self) -> None:
        await self.hub.flush()
        for service in self.services.values():
            await service.shutdown()


@pytest.fixture
def session(fast_config, metrics) -> PeerSession:
    """Empty loopback session; add peers with session.add_peer()."""
    return PeerSession(fast_config, metrics)


# =============================================================================
# Scripted Remote Peer
# =============================================================================


class ScriptedTransport:
    """
    Transport for a single service whose peers are scripted.

    Every outbound event is decoded and recorded. A responder registered
    for its code returns the messages to deliver back, which arrive on the
    next loop iteration.
    """

    def __init__(self, service: NetworkAnchorService, peers: List[int]):
        self.service = service
        self.peers = list(peers)
        self.sent = []
        self.responders: Dict[int, Callable] = {}
        service.attach_transport(self.send)
        self.on(EventCode.CONNECT_TO_SERVICE_REQUEST, self._answer_connect)

    def on(self, code: int, responder: Callable) -> None:
        """Register responder(message, targets) -> list of reply messages."""
        self.responders[int(code)] = responder

    def send(self, code, json_data, targets) -> None:
        message = decode_message(code, json_data)
        self.sent.append((int(code), message, list(targets)))
        responder = self.responders.get(int(code))
        if responder is None:
            return
        loop = asyncio.get_running_loop()
        for reply in responder(message, list(targets)) or []:
            reply_code, reply_json = encode_message(reply)
            loop.call_soon(self.service.process_network_event, reply_code, reply_json)

    def deliver(self, message) -> None:
        """Hand a message to the service immediately."""
        code, json_data = encode_message(message)
        self.service.process_network_event(code, json_data)

    def sent_codes(self) -> List[int]:
        return [code for code, _, _ in self.sent]

    def sent_messages(self, code: int) -> List:
        return [message for sent_code, message, _ in self.sent if sent_code == int(code)]

    def _answer_connect(self, message, targets):
        return [ConnectToServiceResponse(
            sender_id=self.peers[0],
            result_code=ResultCode.SUCCESS,
            connected_player_ids=self.peers,
        )]


@pytest.fixture
def scripted() -> Callable:
    """
    Factory attaching a ScriptedTransport to a service.

    Usage:
        transport = scripted(service, peers=[1, 2, 3])
    """
    def _scripted(service: NetworkAnchorService, peers: List[int]) -> ScriptedTransport:
        return ScriptedTransport(service, peers)

    return _scripted
