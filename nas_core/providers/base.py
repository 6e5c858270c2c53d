"""
Coordinate provider interface.

A provider wraps whatever tracking stack produces coordinate frames
(persistent frames, fiducial images, mobile AR). The service only sees this
interface.
"""

from abc import ABC, abstractmethod
from typing import List

from nas_core.domain import Coordinate


class CoordinateProvider(ABC):
    """
    Source of coordinate frames for the local peer.

    All operations are idempotent.

    Attributes:
        tracks_frames: False for providers that borrow another peer's
            frames. Such a peer never fetches coordinates on demand to answer
            a remote request.
    """

    tracks_frames = True

    @abstractmethod
    def initialize(self) -> None:
        """Start the services required to query coordinates."""

    @abstractmethod
    def disable(self) -> None:
        """Release tracking resources. Safe to call repeatedly."""

    @abstractmethod
    async def request_coordinate_references(self, refresh: bool) -> List[Coordinate]:
        """
        Get the current coordinate set.

        Args:
            refresh: Re-query the tracking stack instead of returning a cache

        Returns:
            Coordinates ordered by preference; empty when tracking is
            unavailable. Must not raise.
        """
