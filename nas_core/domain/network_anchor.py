"""
Network anchor: a labeled pose agreed upon by several peers.

The anchor stores its pose relative to one coordinate frame. That relative
pose is the same for every peer tracking the frame, so a peer can rebuild the
anchor in its own world from its own observation of the frame.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from nas_core.geometry import (
    Pose,
    IDENTITY_ROTATION,
    ZERO_VECTOR,
    relative_of,
    world_of,
)
from .coordinate import Coordinate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkAnchor:
    """
    Anchor pose expressed in the frame of a linked coordinate.

    Attributes:
        anchor_id: Author-assigned identifier (e.g., "origin")
        owner_id: Peer that authored the anchor, if known
        linked_coordinate: Coordinate chosen at construction
        relative_position: Position in the linked coordinate's frame
        relative_rotation: Orientation in the linked coordinate's frame

    Notes:
        - Build with new_local() or new_from_remote(); the relative pose is
          always computed, never copied from raw world values
        - The plain constructor exists for decoding received anchors, which
          may be incomplete; check is_valid() before use
    """

    anchor_id: str = ""
    owner_id: Optional[int] = None
    linked_coordinate: Optional[Coordinate] = None
    relative_position: Tuple[float, float, float] = ZERO_VECTOR
    relative_rotation: Tuple[float, float, float, float] = field(default=IDENTITY_ROTATION)

    def __post_init__(self):
        """Normalize the relative pose."""
        relative = Pose(self.relative_position, self.relative_rotation)
        object.__setattr__(self, 'relative_position', relative.position)
        object.__setattr__(self, 'relative_rotation', relative.rotation)

    @classmethod
    def new_local(
        cls,
        anchor_id: str,
        coordinate: Coordinate,
        world_position: Sequence[float],
        world_rotation: Sequence[float],
        owner_id: Optional[int] = None,
    ) -> 'NetworkAnchor':
        """
        Create an anchor from a world pose on the authoring peer.

        Args:
            anchor_id: Anchor identifier
            coordinate: Local coordinate to link the anchor to
            world_position: Anchor position in the local world
            world_rotation: Anchor rotation in the local world
            owner_id: Authoring peer

        Raises:
            ValueError: If anchor_id is empty or coordinate is missing
        """
        if not anchor_id:
            raise ValueError("Anchor id cannot be empty")
        if coordinate is None:
            raise ValueError("A linked coordinate is required")

        relative = relative_of(coordinate.pose, Pose(world_position, world_rotation))
        return cls(
            anchor_id=anchor_id,
            owner_id=owner_id,
            linked_coordinate=coordinate,
            relative_position=relative.position,
            relative_rotation=relative.rotation,
        )

    @classmethod
    def new_from_remote(
        cls,
        anchor_id: str,
        local_coordinate: Coordinate,
        remote_coordinate: Coordinate,
        remote_world_position: Sequence[float],
        remote_world_rotation: Sequence[float],
        owner_id: Optional[int] = None,
    ) -> 'NetworkAnchor':
        """
        Create an anchor from another peer's world pose (co-localization).

        The relative pose is computed against the remote peer's observation
        of the shared coordinate and stored against the local observation.

        Args:
            anchor_id: Anchor identifier
            local_coordinate: Local observation of the shared coordinate
            remote_coordinate: Remote observation of the same coordinate
            remote_world_position: Anchor position in the remote world
            remote_world_rotation: Anchor rotation in the remote world
            owner_id: Authoring peer

        Raises:
            ValueError: If anchor_id is empty, a coordinate is missing, or
                the two coordinates do not share an id
        """
        if not anchor_id:
            raise ValueError("Anchor id cannot be empty")
        if local_coordinate is None or remote_coordinate is None:
            raise ValueError("Both local and remote coordinates are required")
        if local_coordinate.coordinate_id != remote_coordinate.coordinate_id:
            raise ValueError(
                f"Coordinates do not match: {local_coordinate.coordinate_id} "
                f"!= {remote_coordinate.coordinate_id}"
            )

        relative = relative_of(
            remote_coordinate.pose,
            Pose(remote_world_position, remote_world_rotation),
        )
        return cls(
            anchor_id=anchor_id,
            owner_id=owner_id,
            linked_coordinate=local_coordinate,
            relative_position=relative.position,
            relative_rotation=relative.rotation,
        )

    @property
    def relative_pose(self) -> Pose:
        return Pose(self.relative_position, self.relative_rotation)

    def world_pose(self, coordinate: Optional[Coordinate] = None) -> Pose:
        """
        Anchor pose in world space.

        Args:
            coordinate: Current observation of the linked frame. Defaults to
                linked_coordinate, which is stale if tracking moved the frame
                since the anchor was built.

        Raises:
            ValueError: If no coordinate is available
        """
        reference = coordinate if coordinate is not None else self.linked_coordinate
        if reference is None:
            raise ValueError(f"Anchor {self.anchor_id!r} has no linked coordinate")
        return world_of(reference.pose, self.relative_pose)

    def world_position(self, coordinate: Optional[Coordinate] = None) -> Tuple[float, float, float]:
        """Anchor position in world space (see world_pose)."""
        return self.world_pose(coordinate).position

    def world_rotation(self, coordinate: Optional[Coordinate] = None) -> Tuple[float, float, float, float]:
        """Anchor rotation in world space (see world_pose)."""
        return self.world_pose(coordinate).rotation

    def is_valid(self) -> bool:
        """Check for a non-empty id and a linked coordinate with an id."""
        return is_valid(self)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            'anchor_id': self.anchor_id,
            'owner_id': self.owner_id,
            'linked_coordinate': self.linked_coordinate.to_dict() if self.linked_coordinate else None,
            'relative_position': self.relative_position,
            'relative_rotation': self.relative_rotation,
        }


def is_valid(anchor: Optional[NetworkAnchor]) -> bool:
    """
    Check if a network anchor is usable.

    Returns:
        True if the anchor is not None, has an id, and has a linked
        coordinate with a non-empty id
    """
    return (
        anchor is not None
        and bool(anchor.anchor_id)
        and anchor.linked_coordinate is not None
        and bool(anchor.linked_coordinate.coordinate_id)
    )


def find_shared_coordinate(
    local_coordinates: Sequence[Coordinate],
    remote_coordinates: Sequence[Coordinate],
) -> Optional[Tuple[Coordinate, Coordinate]]:
    """
    Find the first local coordinate whose id the remote peer also tracks.

    Local iteration order decides ties.

    Returns:
        (local_coordinate, remote_coordinate) pair, or None
    """
    remote_by_id = {}
    for remote in remote_coordinates:
        remote_by_id.setdefault(remote.coordinate_id, remote)

    for local in local_coordinates:
        remote = remote_by_id.get(local.coordinate_id)
        if remote is not None:
            return local, remote
    return None


def try_colocalize(
    local_coordinates: Sequence[Coordinate],
    remote_coordinates: Sequence[Coordinate],
    remote_anchor: Optional[NetworkAnchor],
) -> Optional[NetworkAnchor]:
    """
    Rebuild a remote peer's anchor in the local world.

    Args:
        local_coordinates: Local coordinate snapshot
        remote_coordinates: Remote peer's coordinate snapshot
        remote_anchor: Anchor as built by the remote peer

    Returns:
        Local NetworkAnchor, or None when the anchor is invalid or no
        coordinate is shared
    """
    if not is_valid(remote_anchor):
        return None

    shared = find_shared_coordinate(local_coordinates, remote_coordinates)
    if shared is None:
        return None

    local_shared, remote_shared = shared
    logger.debug(f"Co-localizing {remote_anchor.anchor_id} via {local_shared.coordinate_id}")

    remote_world = remote_anchor.world_pose()
    return NetworkAnchor.new_from_remote(
        remote_anchor.anchor_id,
        local_shared,
        remote_shared,
        remote_world.position,
        remote_world.rotation,
        owner_id=remote_anchor.owner_id,
    )
