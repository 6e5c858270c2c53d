"""
Remote coordinate provider for clients without a tracking stack.

A desktop client cannot observe coordinate frames itself. It downloads a
connected peer's coordinates and uses them as its own, which places it in
that peer's world.
"""

import asyncio
import logging
from typing import List, Optional

from nas_core.domain import Coordinate
from nas_core.proto import ResultCode
from .base import CoordinateProvider

logger = logging.getLogger(__name__)


class RemoteCoordinateProvider(CoordinateProvider):
    """
    Provider that adopts the coordinates of the first peer that answers.

    Attributes:
        REQUEST_TIMEOUT_MS: Default time to wait for the remote snapshot
    """

    REQUEST_TIMEOUT_MS = 2000

    tracks_frames = False

    def __init__(self, service=None, timeout_ms: int = REQUEST_TIMEOUT_MS):
        """
        Initialize provider.

        Args:
            service: NetworkAnchorService used to reach peers (defaults to the
                process-wide service)
            timeout_ms: Time to wait for a peer's snapshot
        """
        self._service = service
        self.timeout_ms = timeout_ms

    @property
    def service(self):
        if self._service is None:
            from nas_core.localization import get_service
            self._service = get_service()
        return self._service

    def initialize(self) -> None:
        # Nothing to start on a desktop client
        pass

    def disable(self) -> None:
        pass

    async def request_coordinate_references(self, refresh: bool) -> List[Coordinate]:
        try:
            result = await asyncio.wait_for(
                self.service.request_remote_coordinates(),
                timeout=self.timeout_ms / 1000.0,
            )
        except asyncio.TimeoutError:
            logger.error("Could not get coordinates from a remote peer (timeout)")
            return []

        if result.result_code != ResultCode.SUCCESS or not result.coordinates:
            logger.error(f"Could not download coordinates from remote peer: {result.result_code.name}")
            return []

        logger.info(f"Adopted {len(result.coordinates)} coordinates from a remote peer")
        return list(result.coordinates)
