"""
In-memory coordinate provider.

Serves a fixed (replaceable) coordinate set. Used for virtual sessions,
demos and tests where no tracking stack is present.
"""

import logging
from typing import Dict, Iterable, List, Optional

from nas_core.domain import Coordinate
from .base import CoordinateProvider

logger = logging.getLogger(__name__)


class StaticCoordinateProvider(CoordinateProvider):
    """
    Coordinate provider backed by a list.

    Usage:
        provider = StaticCoordinateProvider([Coordinate("pcf-1", (0, 0, 0))])
        service = NetworkAnchorService()
        await service.connect(1, provider)
    """

    def __init__(self, coordinates: Optional[Iterable[Coordinate]] = None,
                 available_when_disabled: bool = False):
        """
        Initialize provider.

        Args:
            coordinates: Initial coordinate set
            available_when_disabled: Serve coordinates before initialize()
                or after disable()
        """
        self._coordinates: List[Coordinate] = list(coordinates or [])
        self.available_when_disabled = available_when_disabled
        self.initialized = False
        self.initialize_calls = 0
        self.disable_calls = 0
        self.request_calls = 0

    def initialize(self) -> None:
        self.initialized = True
        self.initialize_calls += 1
        logger.debug(f"StaticCoordinateProvider initialized with {len(self._coordinates)} coordinates")

    def disable(self) -> None:
        self.initialized = False
        self.disable_calls += 1

    def set_coordinates(self, coordinates: Iterable[Coordinate]) -> None:
        """Replace the coordinate set wholesale."""
        self._coordinates = list(coordinates)

    async def request_coordinate_references(self, refresh: bool) -> List[Coordinate]:
        self.request_calls += 1
        if not self.initialized and not self.available_when_disabled:
            logger.warning("Coordinates requested while provider is disabled")
            return []
        return list(self._coordinates)


def create_virtual_coordinates(layout: Dict[str, Dict]) -> List[Coordinate]:
    """
    Create coordinates from a virtual layout.

    Args:
        layout: Coordinate id -> {"position": (x, y, z), "rotation": (x, y, z, w)}
            ("rotation" optional, defaults to identity)

    Returns:
        Coordinates in layout order
    """
    coordinates = []
    for coordinate_id, pose in layout.items():
        coordinates.append(Coordinate(
            coordinate_id=coordinate_id,
            position=tuple(pose.get("position", (0.0, 0.0, 0.0))),
            rotation=tuple(pose.get("rotation", (0.0, 0.0, 0.0, 1.0))),
        ))
    return coordinates
