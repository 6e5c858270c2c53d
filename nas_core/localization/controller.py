"""
Session controller: serializes user intents on top of the service.

Only one orchestration runs at a time. Starting a second one while the
first is in flight is rejected, unless create_network_anchor is forced,
which cancels the running orchestration first. Anchors that other peers
author and this peer adopts are placed as they arrive.
"""

import asyncio
import logging
from typing import Callable, Optional, Sequence

from nas_core.domain import NetworkAnchor
from nas_core.geometry import Pose
from nas_core.proto import ResultCode
from .anchor_service import NetworkAnchorResult, NetworkAnchorService
from .observers import EventHook

logger = logging.getLogger(__name__)


class AnchorSessionController:
    """
    Find-or-create workflows for one peer.

    Every public operation returns the asyncio.Task running the workflow,
    or None when it was rejected because another one is busy.

    Observers:
        on_anchor_placed(anchor: NetworkAnchor, pose: Pose)
    """

    def __init__(self, service: NetworkAnchorService,
                 pose_sink: Optional[Callable[[Pose], None]] = None,
                 settle_delay_s: Optional[float] = None):
        """
        Initialize controller.

        Args:
            service: Service whose primitives are orchestrated
            pose_sink: Optional callable receiving the world pose of a placed anchor
            settle_delay_s: Wait before discovery (defaults to the service config)
        """
        self.service = service
        self.pose_sink = pose_sink
        self.settle_delay_s = (service.config.settle_delay_s
                               if settle_delay_s is None else settle_delay_s)
        self.on_anchor_placed = EventHook('on_anchor_placed')

        self.placed_anchor: Optional[NetworkAnchor] = None
        self._busy = False
        self._task: Optional[asyncio.Task] = None

        service.on_network_anchor_changed.subscribe(self._on_network_anchor_changed)

    @property
    def is_busy(self) -> bool:
        return self._busy

    def locate_existing_anchor(self) -> Optional[asyncio.Task]:
        """Look for an anchor already shared by a peer and place it."""
        if self._busy:
            logger.warning("Another process is loading; ignoring locate request")
            return None
        return self._start(self._locate)

    def create_or_get_anchor(self, anchor_id: str, position: Sequence[float],
                             rotation: Sequence[float]) -> Optional[asyncio.Task]:
        """Place a peer's anchor if one is found, otherwise author a new one here."""
        if self._busy:
            logger.warning("Another process is loading; ignoring create-or-get request")
            return None
        return self._start(lambda: self._create_or_get(anchor_id, position, rotation))

    def create_network_anchor(self, anchor_id: str, position: Sequence[float],
                              rotation: Sequence[float], force: bool = False) -> Optional[asyncio.Task]:
        """
        Author a new anchor.

        Args:
            anchor_id: Id of the new anchor
            position: World position
            rotation: World rotation [x, y, z, w]
            force: Cancel a running orchestration, or replace an anchor
                that is already placed, instead of rejecting
        """
        if self._busy and not force:
            logger.warning("Another process is loading; use force to override")
            return None
        if self.placed_anchor is not None and not force:
            logger.error(f"Network anchor '{self.placed_anchor.anchor_id}' already placed; "
                         f"use force to replace it")
            return None
        self.cancel()
        return self._start(lambda: self._create(anchor_id, position, rotation))

    def cancel(self) -> None:
        """Cancel the running orchestration. Its pending request is left orphaned."""
        if self._task is not None and not self._task.done():
            logger.info("Cancelling running orchestration")
            self._task.cancel()
        self._task = None
        self._busy = False

    def _start(self, workflow: Callable) -> asyncio.Task:
        self._busy = True
        task = asyncio.ensure_future(self._run(workflow))
        self._task = task
        return task

    async def _run(self, workflow: Callable):
        try:
            return await workflow()
        finally:
            if self._task is asyncio.current_task():
                self._busy = False
                self._task = None

    async def _locate(self) -> NetworkAnchorResult:
        await asyncio.sleep(self.settle_delay_s)
        result = await self.service.request_network_anchor()
        if result.result_code == ResultCode.SUCCESS:
            self._place(result.network_anchor)
        else:
            logger.info(f"No existing network anchor located ({result.result_code.name})")
        return result

    async def _create_or_get(self, anchor_id, position, rotation) -> NetworkAnchorResult:
        result = await self.service.request_network_anchor()
        if result.result_code == ResultCode.SUCCESS:
            self._place(result.network_anchor)
            return result
        return await self._create(anchor_id, position, rotation)

    async def _create(self, anchor_id, position, rotation) -> NetworkAnchorResult:
        result = await self.service.request_create_network_anchor(anchor_id, position, rotation)
        if result.result_code == ResultCode.SUCCESS:
            self._place(result.network_anchor)
        else:
            logger.warning(f"Network anchor '{anchor_id}' was not created ({result.result_code.name})")
        return result

    def _on_network_anchor_changed(self, anchor: Optional[NetworkAnchor]) -> None:
        if anchor is None:
            self.placed_anchor = None
            return
        # Running workflows place their own result
        if self._busy or anchor.owner_id == self.service.local_peer_id:
            return
        logger.info(f"Peer {anchor.owner_id} authored network anchor '{anchor.anchor_id}'")
        self._place(anchor)

    def _place(self, anchor: NetworkAnchor) -> None:
        pose = anchor.world_pose()
        self.placed_anchor = anchor
        logger.info(f"Placed network anchor '{anchor.anchor_id}' at {pose.position}")
        if self.pose_sink is not None:
            self.pose_sink(pose)
        self.on_anchor_placed.emit(anchor, pose)
