"""
Unit and integration tests for transports.

Tests cover:
- Target sentinel resolution
- Loopback delivery, muting and registration
- Length-prefixed framing (partial, corrupt, oversize frames)
- TCP relay end to end
"""

import asyncio
import json

import pytest

from nas_core.domain import Coordinate
from nas_core.geometry import IDENTITY_ROTATION
from nas_core.io import (
    HELLO_CODE,
    Envelope,
    FrameDecoder,
    FrameError,
    LoopbackHub,
    RelayServer,
    RelayTransport,
    encode_frame,
    resolve_targets,
)
from nas_core.localization import EventHook, NetworkAnchorService, ServiceConfig
from nas_core.proto import ResultCode
from nas_core.providers import StaticCoordinateProvider


class RecordingPeer:
    """Minimal service: records inbound events, emits outbound ones."""

    def __init__(self):
        self.on_broadcast_network_event = EventHook('on_broadcast_network_event')
        self.received = []

    def attach_transport(self, send):
        self.on_broadcast_network_event.subscribe(send)

    def process_network_event(self, code, json_data):
        self.received.append((code, json_data))

    def emit(self, code, targets):
        self.on_broadcast_network_event.emit(code, "{}", targets)


async def wait_until(predicate, timeout_s: float = 2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


# =============================================================================
# Routing
# =============================================================================


class TestResolveTargets:
    """Tests for resolve_targets."""

    def test_empty_means_everyone(self):
        assert resolve_targets([], 2, [1, 2, 3]) == [1, 2, 3]

    def test_master_is_earliest_peer(self):
        assert resolve_targets([-1], 3, [4, 1, 3]) == [4]
        assert resolve_targets([-1], 3, [4, 1, 3], master=1) == [1]

    def test_others_excludes_sender(self):
        assert resolve_targets([-2], 2, [1, 2, 3]) == [1, 3]

    def test_all_includes_sender(self):
        assert resolve_targets([-3], 2, [1, 2, 3]) == [1, 2, 3]

    def test_explicit_peers(self):
        assert resolve_targets([3, 9], 1, [1, 2, 3]) == [3]

    def test_no_duplicates(self):
        assert resolve_targets([2, -3, 2], 1, [1, 2]) == [2, 1]

    def test_unknown_sentinel_ignored(self):
        assert resolve_targets([-7], 1, [1, 2]) == []

    def test_no_peers(self):
        assert resolve_targets([-1], 1, []) == []


# =============================================================================
# Loopback
# =============================================================================


class TestLoopbackHub:
    """Tests for LoopbackHub."""

    @pytest.mark.asyncio
    async def test_delivery_is_deferred(self):
        hub = LoopbackHub()
        a, b = RecordingPeer(), RecordingPeer()
        hub.register(1, a)
        hub.register(2, b)

        a.emit(101, [2])
        assert b.received == []

        await hub.flush()
        assert b.received == [(101, "{}")]
        assert a.received == []
        assert hub.delivered == 1

    @pytest.mark.asyncio
    async def test_master_target(self):
        hub = LoopbackHub()
        peers = {peer_id: RecordingPeer() for peer_id in (5, 2, 9)}
        for peer_id, peer in peers.items():
            hub.register(peer_id, peer)

        peers[9].emit(105, [-1])
        await hub.flush()

        assert hub.master == 5
        assert len(peers[5].received) == 1
        assert peers[2].received == []

    @pytest.mark.asyncio
    async def test_muted_peer_drops_events(self):
        hub = LoopbackHub()
        a, b = RecordingPeer(), RecordingPeer()
        hub.register(1, a)
        hub.register(2, b)

        hub.mute(2)
        a.emit(101, [-2])
        await hub.flush()
        assert b.received == []
        assert hub.dropped == 1

        hub.unmute(2)
        a.emit(101, [-2])
        await hub.flush()
        assert len(b.received) == 1

    @pytest.mark.asyncio
    async def test_unregister(self):
        hub = LoopbackHub()
        a, b = RecordingPeer(), RecordingPeer()
        hub.register(1, a)
        hub.register(2, b)

        hub.unregister(1)
        a.emit(101, [2])
        await hub.flush()

        assert b.received == []
        assert hub.peers == [2]
        assert hub.master == 2

    def test_duplicate_registration(self):
        hub = LoopbackHub()
        hub.register(1, RecordingPeer())
        with pytest.raises(ValueError):
            hub.register(1, RecordingPeer())


# =============================================================================
# Framing
# =============================================================================


class TestFraming:
    """Tests for encode_frame / FrameDecoder."""

    def test_header_is_big_endian_length(self):
        frame = encode_frame(Envelope(101, [2], 1, '{"SenderId": 1}'))
        assert int.from_bytes(frame[:4], 'big') == len(frame) - 4
        assert json.loads(frame[4:])["targets"] == [2]

    def test_partial_frames_are_buffered(self):
        frame = encode_frame(Envelope(102, [-3], 4, "{}"))
        decoder = FrameDecoder()

        assert decoder.feed(frame[:3]) == []
        assert decoder.feed(frame[3:10]) == []
        envelopes = decoder.feed(frame[10:])

        assert envelopes == [Envelope(102, [-3], 4, "{}")]
        assert decoder.buffered == 0

    def test_several_frames_in_one_chunk(self):
        data = b"".join(encode_frame(Envelope(code, [], 1, "")) for code in (101, 103, 105))
        envelopes = FrameDecoder().feed(data)
        assert [e.code for e in envelopes] == [101, 103, 105]

    def test_corrupt_body_is_skipped(self):
        body = b"not json"
        corrupt = len(body).to_bytes(4, 'big') + body
        data = corrupt + encode_frame(Envelope(107, [], 1, ""))

        envelopes = FrameDecoder().feed(data)

        assert [e.code for e in envelopes] == [107]

    def test_oversize_length_raises(self):
        decoder = FrameDecoder(max_frame_size=16)
        with pytest.raises(FrameError):
            decoder.feed((1024).to_bytes(4, 'big') + b"x")

    def test_envelope_requires_code(self):
        with pytest.raises(ValueError):
            Envelope.from_dict({"targets": []})


# =============================================================================
# Relay
# =============================================================================


class TestRelay:
    """End-to-end tests over a local TCP relay."""

    @pytest.mark.asyncio
    async def test_create_anchor_across_processes(self, metrics):
        server = RelayServer(port=0)
        await server.start()
        config = ServiceConfig(request_timeout_ms=2000)
        services = {peer_id: NetworkAnchorService(config, metrics) for peer_id in (1, 2)}
        transports = {}
        try:
            for peer_id, service in services.items():
                transports[peer_id] = RelayTransport(service, peer_id, '127.0.0.1', server.port)
                await transports[peer_id].open()
                await wait_until(lambda: peer_id in server.peers)

            shared_a = [Coordinate("pcf", (0.0, 0.0, 0.0))]
            shared_b = [Coordinate("pcf", (4.0, 0.0, 0.0))]
            assert await services[1].connect(1, StaticCoordinateProvider(shared_a)) == ResultCode.SUCCESS
            assert await services[2].connect(2, StaticCoordinateProvider(shared_b)) == ResultCode.SUCCESS
            assert services[2].connected_peers == [1, 2]

            result = await services[1].request_create_network_anchor(
                "origin", (1.0, 0.0, 0.0), IDENTITY_ROTATION
            )

            assert result.result_code == ResultCode.SUCCESS
            assert services[2].local_network_anchor.world_position() == pytest.approx((5.0, 0.0, 0.0))
            assert server.routed > 0
        finally:
            for transport in transports.values():
                await transport.close()
            await server.stop()

    @pytest.mark.asyncio
    async def test_duplicate_hello_is_rejected(self):
        server = RelayServer(port=0)
        await server.start()
        hello = encode_frame(Envelope(HELLO_CODE, [], 3, ""))
        try:
            _, first = await asyncio.open_connection('127.0.0.1', server.port)
            first.write(hello)
            await wait_until(lambda: server.peers == [3])

            reader, second = await asyncio.open_connection('127.0.0.1', server.port)
            second.write(hello)

            assert await asyncio.wait_for(reader.read(), timeout=2.0) == b''
            assert server.peers == [3]
            first.close()
            second.close()
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_repeated_hello_keeps_first_registration(self):
        server = RelayServer(port=0)
        await server.start()
        try:
            _, writer = await asyncio.open_connection('127.0.0.1', server.port)
            writer.write(encode_frame(Envelope(HELLO_CODE, [], 3, "")))
            writer.write(encode_frame(Envelope(HELLO_CODE, [], 3, "")))
            writer.write(encode_frame(Envelope(HELLO_CODE, [], 8, "")))
            await writer.drain()
            await wait_until(lambda: server.peers == [3])
            await asyncio.sleep(0.05)
            assert server.peers == [3]

            writer.close()
            await wait_until(lambda: server.peers == [])
        finally:
            await server.stop()

    @pytest.mark.asyncio
    async def test_send_after_close_is_dropped(self, metrics):
        server = RelayServer(port=0)
        await server.start()
        service = NetworkAnchorService(ServiceConfig(), metrics)
        transport = RelayTransport(service, 1, '127.0.0.1', server.port)
        try:
            await transport.open()
            assert transport.is_open
            await transport.close()

            transport.send(101, "{}", [-3])
            assert not transport.is_open
        finally:
            await server.stop()
