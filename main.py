"""
Network anchor demo.

Runs a virtual session over the loopback hub, or over a local TCP relay
with --relay. Peer 1 connects and creates the shared anchor, the remaining
peers locate it, and each prints the world pose it resolved in its own
tracking space.
"""

import sys
import math
import asyncio
import logging
import argparse
from typing import Dict, List, Optional

import numpy as np

import config
from nas_core.domain import Coordinate
from nas_core.geometry import Pose, quat_from_axis_angle, relative_of, world_of
from nas_core.io import LoopbackHub, RelayServer, RelayTransport
from nas_core.localization import (
    AnchorSessionController,
    NetworkAnchorService,
    ServiceConfig,
)
from nas_core.metrics import get_metrics
from nas_core.proto import ResultCode
from nas_core.providers import StaticCoordinateProvider, create_virtual_coordinates

logging.basicConfig(
    level=getattr(logging, config.LOGGING_CONFIG["level"]),
    format=config.LOGGING_CONFIG["format"]
)
logger = logging.getLogger(__name__)


def peer_origin(peer_id: int, demo_config: Dict = config.DEMO_CONFIG) -> Pose:
    """Pose of the shared physical space in this peer's tracking space."""
    steps = peer_id - 1
    yaw = math.radians(demo_config["yaw_step_deg"] * steps)
    position = np.asarray(demo_config["offset_step"], dtype=float) * steps
    return Pose(position, quat_from_axis_angle((0.0, 1.0, 0.0), yaw))


def observed_coordinates(peer_id: int, demo_config: Dict = config.DEMO_CONFIG) -> List[Coordinate]:
    """Frames of the virtual space as this peer's tracking stack reports them."""
    origin = peer_origin(peer_id, demo_config)
    coordinates = []
    for frame in create_virtual_coordinates(demo_config["frames"]):
        pose = world_of(origin, frame.pose)
        coordinates.append(Coordinate(frame.coordinate_id, pose.position, pose.rotation))
    return coordinates


def expected_pose(peer_id: int, author_pose: Pose, demo_config: Dict = config.DEMO_CONFIG) -> Pose:
    """Where peer 1's anchor should appear in this peer's tracking space."""
    physical = relative_of(peer_origin(1, demo_config), author_pose)
    return world_of(peer_origin(peer_id, demo_config), physical)


async def _wait_for_relay_peer(server: RelayServer, peer_id: int, timeout_s: float = 5.0) -> None:
    """Wait until the relay has processed the hello of a peer."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while peer_id not in server.peers:
        if loop.time() > deadline:
            raise TimeoutError(f"Relay did not register peer {peer_id}")
        await asyncio.sleep(0.01)


async def run_demo(num_peers: int, service_config: ServiceConfig,
                   demo_config: Dict = config.DEMO_CONFIG,
                   relay_config: Optional[Dict] = None) -> Dict[int, Pose]:
    """
    Run the virtual session.

    Args:
        num_peers: Number of peers (at least 2)
        service_config: Configuration shared by every service
        demo_config: Virtual space layout
        relay_config: Route events through a local TCP relay with this
            host/port instead of the loopback hub

    Returns:
        Resolved anchor pose per peer id
    """
    hub = LoopbackHub()
    server = None
    transports: List[RelayTransport] = []
    placed: Dict[int, Pose] = {}
    sessions = {}

    if relay_config is not None:
        server = RelayServer(relay_config["host"], relay_config["port"])
        await server.start()

    try:
        for peer_id in range(1, num_peers + 1):
            service = NetworkAnchorService(service_config)
            if server is None:
                hub.register(peer_id, service)
            else:
                transport = RelayTransport(service, peer_id, server.host, server.port)
                await transport.open()
                transports.append(transport)
                # Registration order decides the master
                await _wait_for_relay_peer(server, peer_id)

            provider = StaticCoordinateProvider(observed_coordinates(peer_id, demo_config))
            controller = AnchorSessionController(service)
            controller.on_anchor_placed.subscribe(
                lambda anchor, pose, peer_id=peer_id: placed.__setitem__(peer_id, pose)
            )
            sessions[peer_id] = (service, provider, controller)

        for peer_id, (service, provider, _) in sessions.items():
            result = await service.connect(peer_id, provider)
            if result != ResultCode.SUCCESS:
                logger.error(f"Peer {peer_id} could not connect ({result.name})")

        _, _, author = sessions[1]
        result = await author.create_network_anchor(
            demo_config["anchor_id"],
            demo_config["anchor_position"],
            demo_config["anchor_rotation"],
        )
        if result.result_code != ResultCode.SUCCESS:
            logger.error(f"Anchor creation failed ({result.result_code.name})")
            return placed

        for peer_id, (_, _, controller) in sessions.items():
            if peer_id == 1:
                continue
            task = controller.locate_existing_anchor()
            if task is not None:
                await task

        await hub.flush()
        return placed

    finally:
        for service, _, _ in sessions.values():
            await service.shutdown()
        for transport in transports:
            await transport.close()
        if server is not None:
            await server.stop()


def print_results(placed: Dict[int, Pose], num_peers: int, demo_config: Dict = config.DEMO_CONFIG):
    print("\n" + "=" * 60)
    print("               Network Anchor Demo")
    print("=" * 60)

    author_pose = placed.get(1)
    for peer_id in range(1, num_peers + 1):
        pose = placed.get(peer_id)
        if pose is None:
            print(f"Peer {peer_id}: anchor not placed")
            continue
        line = f"Peer {peer_id}: position=({pose.position[0]:.3f}, {pose.position[1]:.3f}, {pose.position[2]:.3f})"
        if author_pose is not None:
            expected = expected_pose(peer_id, author_pose, demo_config)
            error = np.linalg.norm(pose.position_array - expected.position_array)
            line += f"  error={error * 1000:.3f} mm"
        print(line)
    print("=" * 60)


def main(argv=None) -> int:
    """Entry point."""
    parser = argparse.ArgumentParser(description='Network anchor virtual session demo')
    parser.add_argument('--peers', '-n', type=int, default=config.DEMO_CONFIG["peers"],
                        help='Number of peers in the session')
    parser.add_argument('--timeout-ms', '-t', type=int, default=None,
                        help='Request timeout in milliseconds')
    parser.add_argument('--debug', '-d', action='store_true',
                        help='Enable debug logging')
    parser.add_argument('--relay', '-r', action='store_true',
                        help='Route events through a local TCP relay')
    parser.add_argument('--port', '-p', type=int, default=config.RELAY_CONFIG["port"],
                        help='Relay port (0 picks a free port)')

    args = parser.parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    if args.peers < 2:
        parser.error("--peers must be at least 2")

    settings = dict(config.SERVICE_CONFIG)
    if args.timeout_ms:
        settings["request_timeout_ms"] = args.timeout_ms
    service_config = ServiceConfig.from_dict(settings)

    relay_config = None
    if args.relay:
        relay_config = dict(config.RELAY_CONFIG, port=args.port)

    placed = asyncio.run(run_demo(args.peers, service_config, relay_config=relay_config))
    print_results(placed, args.peers)
    get_metrics().print_summary()

    return 0 if len(placed) == args.peers else 1


if __name__ == "__main__":
    sys.exit(main())
