"""
Coordinate frame references.

A Coordinate is a labeled pose observed by one peer. The coordinate_id is
globally unique across peers for the same physical frame, while the pose is
expressed in the observing peer's own world.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from nas_core.geometry import Pose, IDENTITY_ROTATION, ZERO_VECTOR


@dataclass(frozen=True)
class Coordinate:
    """
    Physically anchored coordinate frame, as seen by one peer.

    Attributes:
        coordinate_id: Frame identifier shared by every peer tracking it
        position: Frame origin in the observing peer's world (meters)
        rotation: Frame orientation, unit quaternion (x, y, z, w)

    Notes:
        - Immutable once handed out by a provider
        - rotation is normalized on construction
    """

    coordinate_id: str
    position: Tuple[float, float, float] = ZERO_VECTOR
    rotation: Tuple[float, float, float, float] = field(default=IDENTITY_ROTATION)

    def __post_init__(self):
        """Validate the identifier and normalize the pose."""
        if not self.coordinate_id:
            raise ValueError("Coordinate id cannot be empty")
        pose = Pose(self.position, self.rotation)
        object.__setattr__(self, 'position', pose.position)
        object.__setattr__(self, 'rotation', pose.rotation)

    @property
    def pose(self) -> Pose:
        """Pose of this frame in the observing peer's world."""
        return Pose(self.position, self.rotation)

    def to_dict(self) -> dict:
        """Convert to dictionary for logging."""
        return {
            'coordinate_id': self.coordinate_id,
            'position': self.position,
            'rotation': self.rotation,
        }


@dataclass
class PeerCoordinates:
    """
    Last coordinate snapshot reported by a peer.

    Attributes:
        peer_id: Peer that reported the snapshot
        coordinates: Ordered coordinates (may be empty)
    """

    peer_id: int
    coordinates: List[Coordinate] = field(default_factory=list)

    @property
    def coordinate_ids(self) -> List[str]:
        """Identifiers in snapshot order."""
        return [c.coordinate_id for c in self.coordinates]

    @property
    def is_empty(self) -> bool:
        return not self.coordinates

    def find(self, coordinate_id: str) -> Optional[Coordinate]:
        """
        Get the coordinate with the given id.

        Returns:
            Coordinate if found, None otherwise
        """
        for coordinate in self.coordinates:
            if coordinate.coordinate_id == coordinate_id:
                return coordinate
        return None
