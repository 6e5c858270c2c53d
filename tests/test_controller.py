"""
Unit tests for the anchor session controller.

Tests cover:
- One orchestration at a time
- Forced creation cancelling a running discovery
- Placement through the pose sink and on_anchor_placed
- Create-or-get fallback
- Placing anchors authored by other peers
"""

import asyncio

import numpy as np
import pytest
import pytest_asyncio

from nas_core.domain import Coordinate, NetworkAnchor
from nas_core.geometry import IDENTITY_ROTATION
from nas_core.localization import AnchorSessionController, NetworkAnchorService, ServiceConfig
from nas_core.proto import (
    EventCode,
    ResultCode,
    CreateNetworkAnchorRequest,
    CreateNetworkAnchorResponse,
    GetNetworkAnchorResponse,
)
from nas_core.providers import StaticCoordinateProvider


LOCAL_X = Coordinate("X", (0.0, 0.0, 0.0))
REMOTE_X = Coordinate("X", (10.0, 0.0, 0.0))


def acknowledge_create(message, targets):
    return [CreateNetworkAnchorResponse(2, ResultCode.SUCCESS, message.network_anchor)]


def share_anchor(message, targets):
    anchor = NetworkAnchor.new_local("origin", REMOTE_X, (11.0, 0.0, 0.0), IDENTITY_ROTATION, owner_id=2)
    return [GetNetworkAnchorResponse(2, ResultCode.SUCCESS, [REMOTE_X], anchor)]


async def connected(service, scripted):
    transport = scripted(service, peers=[1, 2])
    assert await service.connect(1, StaticCoordinateProvider([LOCAL_X])) == ResultCode.SUCCESS
    return transport


class TestBusyGuard:
    """Tests for rejecting overlapping orchestrations."""

    @pytest.mark.asyncio
    async def test_create_rejected_while_locating(self, scripted, metrics):
        service = NetworkAnchorService(ServiceConfig(request_timeout_ms=1000), metrics)
        transport = await connected(service, scripted)
        transport.on(EventCode.CREATE_NETWORK_ANCHOR_REQUEST, acknowledge_create)
        controller = AnchorSessionController(service)

        locate = controller.locate_existing_anchor()
        await asyncio.sleep(0.01)

        assert controller.is_busy
        assert controller.create_network_anchor("origin", (0, 0, 0), IDENTITY_ROTATION) is None
        assert EventCode.CREATE_NETWORK_ANCHOR_REQUEST not in transport.sent_codes()

        create = controller.create_network_anchor("origin", (0, 0, 0), IDENTITY_ROTATION, force=True)
        result = await create

        assert result.result_code == ResultCode.SUCCESS
        assert locate.cancelled()
        assert EventCode.CREATE_NETWORK_ANCHOR_REQUEST in transport.sent_codes()
        assert not controller.is_busy

    @pytest.mark.asyncio
    async def test_second_locate_rejected(self, service_with_slow_peer):
        service, transport = service_with_slow_peer
        controller = AnchorSessionController(service)

        first = controller.locate_existing_anchor()

        assert controller.locate_existing_anchor() is None
        assert controller.create_or_get_anchor("origin", (0, 0, 0), IDENTITY_ROTATION) is None
        controller.cancel()
        await asyncio.gather(first, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_cancel_frees_the_controller(self, service_with_slow_peer):
        service, transport = service_with_slow_peer
        controller = AnchorSessionController(service)
        task = controller.locate_existing_anchor()
        await asyncio.sleep(0.01)

        controller.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert task.cancelled()
        assert not controller.is_busy
        again = controller.locate_existing_anchor()
        assert again is not None
        controller.cancel()
        await asyncio.gather(again, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_busy_clears_after_completion(self, service, scripted):
        await connected(service, scripted)
        controller = AnchorSessionController(service)

        result = await controller.locate_existing_anchor()

        assert result.result_code == ResultCode.NO_MATCHES_FOUND
        assert not controller.is_busy


class TestPlacement:
    """Tests for placing located or created anchors."""

    @pytest.mark.asyncio
    async def test_located_anchor_reaches_pose_sink(self, service, scripted):
        transport = await connected(service, scripted)
        transport.on(EventCode.GET_NETWORK_ANCHOR_REQUEST, share_anchor)
        poses = []
        placed = []
        controller = AnchorSessionController(service, pose_sink=poses.append)
        controller.on_anchor_placed.subscribe(lambda anchor, pose: placed.append(anchor))

        result = await controller.locate_existing_anchor()

        assert result.result_code == ResultCode.SUCCESS
        np.testing.assert_allclose(poses[0].position, (1.0, 0.0, 0.0), atol=1e-9)
        assert placed == [result.network_anchor]
        assert controller.placed_anchor == result.network_anchor

    @pytest.mark.asyncio
    async def test_failed_create_places_nothing(self, service, scripted):
        await connected(service, scripted)
        poses = []
        controller = AnchorSessionController(service, pose_sink=poses.append)

        result = await controller.create_network_anchor("origin", (0, 0, 0), IDENTITY_ROTATION)

        assert result.result_code == ResultCode.FAILED
        assert poses == []
        assert controller.placed_anchor is None

    @pytest.mark.asyncio
    async def test_settle_delay(self, service, scripted):
        await connected(service, scripted)
        controller = AnchorSessionController(service, settle_delay_s=0.05)
        loop = asyncio.get_running_loop()

        started = loop.time()
        await controller.locate_existing_anchor()

        assert loop.time() - started >= 0.05


class TestCreateOrGet:
    """Tests for create_or_get_anchor."""

    @pytest.mark.asyncio
    async def test_uses_existing_anchor(self, service, scripted):
        transport = await connected(service, scripted)
        transport.on(EventCode.GET_NETWORK_ANCHOR_REQUEST, share_anchor)
        controller = AnchorSessionController(service)

        result = await controller.create_or_get_anchor("mine", (5, 0, 0), IDENTITY_ROTATION)

        assert result.network_anchor.anchor_id == "origin"
        assert EventCode.CREATE_NETWORK_ANCHOR_REQUEST not in transport.sent_codes()

    @pytest.mark.asyncio
    async def test_creates_when_none_found(self, service, scripted):
        transport = await connected(service, scripted)
        transport.on(EventCode.CREATE_NETWORK_ANCHOR_REQUEST, acknowledge_create)
        placed = []
        controller = AnchorSessionController(service)
        controller.on_anchor_placed.subscribe(lambda anchor, pose: placed.append(pose))

        result = await controller.create_or_get_anchor("mine", (5, 0, 0), IDENTITY_ROTATION)

        assert result.result_code == ResultCode.SUCCESS
        assert result.network_anchor.anchor_id == "mine"
        assert transport.sent_codes().index(101) < transport.sent_codes().index(103)
        np.testing.assert_allclose(placed[0].position, (5.0, 0.0, 0.0), atol=1e-9)


class TestAlreadyPlaced:
    """Tests for refusing to author over a placed anchor."""

    @pytest.mark.asyncio
    async def test_create_rejected_once_placed(self, service, scripted):
        transport = await connected(service, scripted)
        transport.on(EventCode.GET_NETWORK_ANCHOR_REQUEST, share_anchor)
        transport.on(EventCode.CREATE_NETWORK_ANCHOR_REQUEST, acknowledge_create)
        controller = AnchorSessionController(service)
        await controller.locate_existing_anchor()

        assert controller.create_network_anchor("mine", (0, 0, 0), IDENTITY_ROTATION) is None
        assert EventCode.CREATE_NETWORK_ANCHOR_REQUEST not in transport.sent_codes()

        result = await controller.create_network_anchor(
            "mine", (0, 0, 0), IDENTITY_ROTATION, force=True
        )

        assert result.result_code == ResultCode.SUCCESS
        assert controller.placed_anchor.anchor_id == "mine"

    @pytest.mark.asyncio
    async def test_disconnect_allows_creating_again(self, service, scripted):
        transport = await connected(service, scripted)
        transport.on(EventCode.GET_NETWORK_ANCHOR_REQUEST, share_anchor)
        controller = AnchorSessionController(service)
        await controller.locate_existing_anchor()

        service.disconnect()

        assert controller.placed_anchor is None


class TestRemoteAuthor:
    """Tests for anchors another peer creates."""

    @pytest.mark.asyncio
    async def test_adopted_anchor_is_placed(self, service, scripted):
        transport = await connected(service, scripted)
        poses = []
        placed = []
        controller = AnchorSessionController(service, pose_sink=poses.append)
        controller.on_anchor_placed.subscribe(lambda anchor, pose: placed.append(anchor))
        anchor = NetworkAnchor.new_local(
            "origin", REMOTE_X, (11.0, 0.0, 0.0), IDENTITY_ROTATION, owner_id=2
        )

        transport.deliver(
            CreateNetworkAnchorRequest(sender_id=2, coordinates=[REMOTE_X], network_anchor=anchor)
        )
        await asyncio.sleep(0.01)

        assert placed == [service.local_network_anchor]
        assert controller.placed_anchor.owner_id == 2
        np.testing.assert_allclose(poses[0].position, (1.0, 0.0, 0.0), atol=1e-9)
        assert not controller.is_busy

    @pytest.mark.asyncio
    async def test_own_anchor_is_not_placed_twice(self, service, scripted):
        transport = await connected(service, scripted)
        transport.on(EventCode.CREATE_NETWORK_ANCHOR_REQUEST, acknowledge_create)
        placed = []
        controller = AnchorSessionController(service)
        controller.on_anchor_placed.subscribe(lambda anchor, pose: placed.append(anchor))

        await controller.create_network_anchor("mine", (5, 0, 0), IDENTITY_ROTATION)

        assert [anchor.anchor_id for anchor in placed] == ["mine"]

    @pytest.mark.asyncio
    async def test_anchor_located_by_workflow_is_placed_once(self, service, scripted):
        transport = await connected(service, scripted)
        transport.on(EventCode.GET_NETWORK_ANCHOR_REQUEST, share_anchor)
        placed = []
        controller = AnchorSessionController(service)
        controller.on_anchor_placed.subscribe(lambda anchor, pose: placed.append(anchor))

        await controller.locate_existing_anchor()

        assert len(placed) == 1


@pytest.fixture
def service(fast_config, metrics) -> NetworkAnchorService:
    return NetworkAnchorService(fast_config, metrics)


@pytest_asyncio.fixture
async def service_with_slow_peer(scripted, metrics):
    """Connected service whose peer never answers within the test."""
    service = NetworkAnchorService(ServiceConfig(request_timeout_ms=5000), metrics)
    transport = await connected(service, scripted)
    yield service, transport
    await service.shutdown()
