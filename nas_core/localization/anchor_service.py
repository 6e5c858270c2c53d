"""
Network anchor service.

Each peer runs one NetworkAnchorService. It keeps the peer directory,
the local coordinate snapshot and the local network anchor, answers
inbound protocol events, and issues request/response exchanges with
other peers over whatever transport subscribes to
on_broadcast_network_event.

All state lives on a single asyncio loop. Handlers run to completion
between suspensions; the only suspensions are provider queries and
pending-request waits.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Set

from nas_core.domain import Coordinate, NetworkAnchor, is_valid, try_colocalize
from nas_core.metrics import MetricsCollector, get_metrics
from nas_core.proto import (
    EventCode,
    ResultCode,
    MalformedMessageError,
    UnknownEventError,
    GetNetworkAnchorRequest,
    GetNetworkAnchorResponse,
    CreateNetworkAnchorRequest,
    CreateNetworkAnchorResponse,
    ConnectToServiceRequest,
    DisconnectFromServiceRequest,
    ConnectToServiceResponse,
    GetRemoteCoordinatesRequest,
    GetRemoteCoordinatesResponse,
    encode_message,
    decode_message,
    to_master,
    to_others,
    to_all,
    to_peer,
)
from nas_core.providers import CoordinateProvider
from .config import AckPolicy, ServiceConfig
from .observers import EventHook
from .peer_directory import PeerDirectory
from .pending_request import PendingRequest, PendingRequestTable, RequestKind

logger = logging.getLogger(__name__)


@dataclass
class NetworkAnchorResult:
    """Outcome of a get or create anchor request."""

    result_code: ResultCode
    network_anchor: Optional[NetworkAnchor] = None

    @property
    def succeeded(self) -> bool:
        return self.result_code == ResultCode.SUCCESS


@dataclass
class RemoteCoordinatesResult:
    """Outcome of a remote coordinates download."""

    result_code: ResultCode
    coordinates: List[Coordinate] = field(default_factory=list)
    sender_id: Optional[int] = None


class NetworkAnchorService:
    """
    Per-peer localization service.

    Observers:
        on_connection_changed(connected: bool)
        on_network_anchor_changed(anchor: Optional[NetworkAnchor])
        on_broadcast_network_event(code: int, json_data: str, targets: List[int])
        on_debug_log_info(message: str, event_code: int)

    Usage:
        service = NetworkAnchorService()
        service.attach_transport(transport)
        result = await service.connect(peer_id, provider)
    """

    def __init__(self, config: Optional[ServiceConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        """
        Initialize service.

        Args:
            config: Service configuration (defaults to ServiceConfig())
            metrics: Metrics collector (defaults to the global collector)
        """
        self.config = config or ServiceConfig()
        self.metrics = metrics or get_metrics()

        self.on_connection_changed = EventHook('on_connection_changed')
        self.on_network_anchor_changed = EventHook('on_network_anchor_changed')
        self.on_broadcast_network_event = EventHook('on_broadcast_network_event')
        self.on_debug_log_info = EventHook('on_debug_log_info')

        self._local_peer_id: Optional[int] = None
        self._connected = False
        self._provider: Optional[CoordinateProvider] = None
        self._transport_send: Optional[Callable] = None
        self._directory = PeerDirectory()
        self._coordinates: List[Coordinate] = []
        self._network_anchor: Optional[NetworkAnchor] = None
        self._pending = PendingRequestTable(self.metrics)
        self._background: Set[asyncio.Task] = set()
        # Bumped whenever the local session ends
        self._session = 0

        self._handlers = {
            EventCode.GET_NETWORK_ANCHOR_REQUEST: self._on_get_network_anchor_request,
            EventCode.GET_NETWORK_ANCHOR_RESPONSE: self._on_get_network_anchor_response,
            EventCode.CREATE_NETWORK_ANCHOR_REQUEST: self._on_create_network_anchor_request,
            EventCode.CREATE_NETWORK_ANCHOR_RESPONSE: self._on_create_network_anchor_response,
            EventCode.CONNECT_TO_SERVICE_REQUEST: self._on_connect_request,
            EventCode.DISCONNECT_FROM_SERVICE_REQUEST: self._on_disconnect_request,
            EventCode.CONNECT_TO_SERVICE_RESPONSE: self._on_connect_response,
            EventCode.GET_REMOTE_COORDINATES_REQUEST: self._on_get_remote_coordinates_request,
            EventCode.GET_REMOTE_COORDINATES_RESPONSE: self._on_get_remote_coordinates_response,
        }

    # ========================================================================
    # State access
    # ========================================================================

    @property
    def local_peer_id(self) -> Optional[int]:
        return self._local_peer_id

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def connected_peers(self) -> List[int]:
        """Copy of the peer directory in connection order."""
        return self._directory.as_list()

    @property
    def coordinate_snapshot(self) -> List[Coordinate]:
        return list(self._coordinates)

    @property
    def local_network_anchor(self) -> Optional[NetworkAnchor]:
        return self._network_anchor

    @property
    def provider(self) -> Optional[CoordinateProvider]:
        return self._provider

    def attach_transport(self, send: Callable) -> None:
        """
        Route outbound events to a transport.

        Args:
            send: Callable (code, json_data, targets), usually transport.send
        """
        if self._transport_send is not None:
            self.on_broadcast_network_event.unsubscribe(self._transport_send)
        self._transport_send = send
        self.on_broadcast_network_event.subscribe(send)

    def _set_local_network_anchor(self, anchor: Optional[NetworkAnchor]) -> bool:
        """Store the anchor and notify observers iff it changed."""
        if anchor == self._network_anchor:
            return False
        self._network_anchor = anchor
        if anchor is None:
            logger.info(f"Peer {self._local_peer_id}: network anchor cleared")
        else:
            logger.info(f"Peer {self._local_peer_id}: network anchor '{anchor.anchor_id}' set")
        self.on_network_anchor_changed.emit(anchor)
        return True

    # ========================================================================
    # Connection
    # ========================================================================

    async def connect(self, peer_id: int, provider: Optional[CoordinateProvider],
                      transport: Optional[Callable] = None) -> ResultCode:
        """
        Join the session through the master.

        Args:
            peer_id: Local peer id assigned by the transport
            provider: Coordinate provider for this peer
            transport: Optional send callable to attach first

        Returns:
            SUCCESS, FAILED on timeout or bad arguments, or the master's code
        """
        if provider is None:
            logger.error("Cannot connect without a coordinate provider")
            return ResultCode.FAILED
        if not isinstance(peer_id, int) or peer_id <= 0:
            logger.error(f"Invalid peer id {peer_id!r}")
            return ResultCode.FAILED

        if transport is not None:
            self.attach_transport(transport)

        self._local_peer_id = peer_id
        self._provider = provider
        provider.initialize()

        pending = self._pending.install(RequestKind.CONNECT, self.config.request_timeout_s)
        pending.arm()
        self._send(ConnectToServiceRequest(sender_id=peer_id), to_master())
        response = await self._await_response(pending)

        if response is None:
            logger.warning(f"Peer {peer_id}: no answer from master to ConnectToServiceRequest")
            return ResultCode.FAILED
        if response.result_code != ResultCode.SUCCESS:
            logger.warning(f"Peer {peer_id}: master refused connection ({response.result_code.name})")
            return response.result_code

        if not self._connected:
            self._connected = True
            logger.info(f"Peer {peer_id}: connected, directory {self._directory.as_list()}")
            self.on_connection_changed.emit(True)
        return ResultCode.SUCCESS

    def disconnect(self, peer_id: Optional[int] = None) -> None:
        """
        Leave the session, or tell the master that another peer left.

        Args:
            peer_id: Peer to disconnect (defaults to the local peer)
        """
        if not self._connected:
            logger.debug("Ignoring disconnect: not connected")
            return

        target = self._local_peer_id if peer_id is None else peer_id
        self._send(DisconnectFromServiceRequest(sender_id=target), to_master())

        if target != self._local_peer_id:
            return

        if self._provider is not None:
            self._provider.disable()
        self._set_local_network_anchor(None)
        self._coordinates = []
        self._connected = False
        self._session += 1
        self._pending.cancel_all()
        logger.info(f"Peer {self._local_peer_id}: disconnected")
        self.on_connection_changed.emit(False)

    # ========================================================================
    # Requests
    # ========================================================================

    async def request_network_anchor(self) -> NetworkAnchorResult:
        """
        Co-localize with the first peer that shares a coordinate frame.

        Peers are asked one at a time in directory order. A peer that does
        not answer in time, refuses, or shares no frame is skipped. Discovery
        stops if the local peer disconnects or a newer discovery replaces it.

        Returns:
            SUCCESS with the localized anchor, NO_MATCHES_FOUND with the
            current local anchor, or FAILED without coordinates or once
            abandoned
        """
        if self._local_peer_id is None:
            logger.error("Cannot request a network anchor before connecting")
            return NetworkAnchorResult(ResultCode.FAILED)

        session = self._session
        coordinates = await self._acquire_coordinates(refresh=True)
        if session != self._session:
            logger.info("Network anchor discovery abandoned")
            return NetworkAnchorResult(ResultCode.FAILED)
        if not coordinates:
            logger.error("Coordinates could not be found")
            return NetworkAnchorResult(ResultCode.FAILED)
        self._coordinates = coordinates

        for peer_id in self._directory.others(self._local_peer_id):
            pending = self._pending.install(RequestKind.GET_ANCHOR, self.config.request_timeout_s)
            pending.arm()
            self._send(GetNetworkAnchorRequest(sender_id=self._local_peer_id), to_peer(peer_id))
            response = await self._await_response(pending)

            if pending.abandoned:
                logger.info("Network anchor discovery abandoned")
                return NetworkAnchorResult(ResultCode.FAILED)
            if response is None:
                logger.warning(f"Peer {peer_id} did not answer GetNetworkAnchorRequest")
                self.metrics.increment_drop('peer_timeout')
                continue
            if response.result_code != ResultCode.SUCCESS:
                logger.debug(f"Peer {peer_id} has no anchor to share ({response.result_code.name})")
                continue

            anchor = try_colocalize(coordinates, response.coordinates, response.network_anchor)
            if anchor is None:
                logger.debug(f"Peer {peer_id} shares no coordinate frame with us")
                self.metrics.increment_drop('no_shared_frame')
                continue

            self.metrics.increment('anchors_colocalized')
            self._set_local_network_anchor(anchor)
            return NetworkAnchorResult(ResultCode.SUCCESS, anchor)

        return NetworkAnchorResult(ResultCode.NO_MATCHES_FOUND, self._network_anchor)

    async def request_create_network_anchor(self, anchor_id: str, position: Sequence[float],
                                            rotation: Sequence[float]) -> NetworkAnchorResult:
        """
        Author a new anchor and offer it to the other peers.

        Args:
            anchor_id: Id of the new anchor
            position: World position of the anchor
            rotation: World rotation [x, y, z, w]

        Returns:
            The acknowledging peer's result code with the proposed anchor,
            or FAILED on timeout or without coordinates
        """
        if self._local_peer_id is None:
            logger.error("Cannot create a network anchor before connecting")
            return NetworkAnchorResult(ResultCode.FAILED)

        pending = self._pending.install(RequestKind.CREATE_ANCHOR, self.config.request_timeout_s)

        coordinates = await self._acquire_coordinates(refresh=True)
        if pending.abandoned:
            logger.info(f"Creation of network anchor '{anchor_id}' abandoned")
            return NetworkAnchorResult(ResultCode.FAILED)
        if not coordinates:
            logger.error("Coordinates could not be found")
            self._pending.discard(pending)
            return NetworkAnchorResult(ResultCode.FAILED)
        self._coordinates = coordinates

        try:
            anchor = NetworkAnchor.new_local(
                anchor_id, coordinates[0], position, rotation, owner_id=self._local_peer_id
            )
        except ValueError as e:
            logger.error(f"Cannot create network anchor: {e}")
            self._pending.discard(pending)
            return NetworkAnchorResult(ResultCode.FAILED)

        pending.arm()
        self._send(
            CreateNetworkAnchorRequest(
                sender_id=self._local_peer_id,
                coordinates=coordinates,
                network_anchor=anchor,
            ),
            to_others(),
        )
        response = await self._await_response(pending)

        if response is None:
            logger.warning(f"No peer acknowledged network anchor '{anchor_id}'")
            return NetworkAnchorResult(ResultCode.FAILED)

        if response.result_code == ResultCode.SUCCESS:
            self.metrics.increment('anchors_created')
            self._set_local_network_anchor(anchor)
        else:
            logger.info(f"Peer {response.sender_id} refused anchor '{anchor_id}' "
                        f"({response.result_code.name})")
        return NetworkAnchorResult(response.result_code, anchor)

    async def request_remote_coordinates(self) -> RemoteCoordinatesResult:
        """
        Download the coordinate snapshot of the first peer that has one.

        Returns:
            SUCCESS with the peer's coordinates, or FAILED
        """
        if self._local_peer_id is None:
            logger.error("Cannot request remote coordinates before connecting")
            return RemoteCoordinatesResult(ResultCode.FAILED)

        for peer_id in self._directory.others(self._local_peer_id):
            pending = self._pending.install(
                RequestKind.GET_REMOTE_COORDINATES, self.config.request_timeout_s
            )
            pending.arm()
            self._send(GetRemoteCoordinatesRequest(sender_id=self._local_peer_id), to_peer(peer_id))
            response = await self._await_response(pending)

            if pending.abandoned:
                logger.info("Remote coordinate download abandoned")
                return RemoteCoordinatesResult(ResultCode.FAILED)
            if response is None:
                logger.warning(f"Peer {peer_id} did not answer GetRemoteCoordinatesRequest")
                self.metrics.increment_drop('peer_timeout')
                continue
            if response.result_code == ResultCode.SUCCESS and response.coordinates:
                return RemoteCoordinatesResult(
                    ResultCode.SUCCESS, list(response.coordinates), response.sender_id
                )

        return RemoteCoordinatesResult(ResultCode.FAILED)

    async def _await_response(self, pending: PendingRequest):
        response = await pending.wait()
        self._pending.discard(pending)
        if pending.timed_out:
            self.metrics.increment('request_timeouts')
        elif response is not None:
            self.metrics.record_histogram('request_latency_ms', pending.elapsed_ms())
        return response

    async def _acquire_coordinates(self, refresh: bool) -> List[Coordinate]:
        """Query the provider under the coordinate deadline; empty on any failure."""
        if self._provider is None:
            return []

        try:
            coordinates = await asyncio.wait_for(
                self._provider.request_coordinate_references(refresh),
                timeout=self.config.coordinate_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning("Coordinate provider timed out")
            coordinates = None
        except Exception:
            logger.exception("Coordinate provider failed")
            coordinates = None

        if not coordinates:
            self.metrics.increment_drop('no_coordinates')
            return []
        return list(coordinates)

    # ========================================================================
    # Inbound events
    # ========================================================================

    def process_network_event(self, code: int, json_data) -> None:
        """
        Handle one inbound event from the transport.

        Unknown codes and malformed payloads are counted and dropped.

        Args:
            code: Event code
            json_data: JSON payload (str or bytes)
        """
        self.metrics.increment('events_in')
        try:
            message = decode_message(code, json_data)
        except UnknownEventError:
            logger.debug(f"Dropping event with unknown code {code}")
            self.metrics.increment_drop('unknown_event')
            return
        except MalformedMessageError as e:
            logger.warning(f"Dropping malformed event {code}: {e}")
            self.metrics.increment_drop('malformed')
            return

        self._debug(f"Received {type(message).__name__} from peer {message.sender_id}", code)
        self._handlers[message.EVENT_CODE](message)

    def _on_get_network_anchor_request(self, request: GetNetworkAnchorRequest) -> None:
        if is_valid(self._network_anchor) and self._coordinates:
            response = GetNetworkAnchorResponse(
                sender_id=self._local_peer_id,
                result_code=ResultCode.SUCCESS,
                coordinates=list(self._coordinates),
                network_anchor=self._network_anchor,
            )
        else:
            response = GetNetworkAnchorResponse(
                sender_id=self._local_peer_id,
                result_code=ResultCode.FAILED,
            )
        self._send(response, to_peer(request.sender_id))

    def _on_get_network_anchor_response(self, response: GetNetworkAnchorResponse) -> None:
        self._resolve(RequestKind.GET_ANCHOR, response)

    def _on_create_network_anchor_request(self, request: CreateNetworkAnchorRequest) -> None:
        self._with_coordinates(self._answer_create_request, request)

    def _answer_create_request(self, request: CreateNetworkAnchorRequest) -> None:
        anchor = try_colocalize(self._coordinates, request.coordinates, request.network_anchor)
        if anchor is not None:
            self.metrics.increment('anchors_colocalized')
            self._set_local_network_anchor(anchor)
            result_code = ResultCode.SUCCESS
        else:
            logger.info(f"Cannot localize anchor offered by peer {request.sender_id}")
            self.metrics.increment_drop('no_shared_frame')
            result_code = ResultCode.FAILED

        self._send(
            CreateNetworkAnchorResponse(
                sender_id=self._local_peer_id,
                result_code=result_code,
                network_anchor=request.network_anchor,
            ),
            to_peer(request.sender_id),
        )

    def _on_create_network_anchor_response(self, response: CreateNetworkAnchorResponse) -> None:
        if (self.config.create_ack_policy == AckPolicy.FIRST_SUCCESS
                and response.result_code != ResultCode.SUCCESS):
            logger.debug(f"Ignoring refusal from peer {response.sender_id}")
            return
        self._resolve(RequestKind.CREATE_ANCHOR, response)

    def _on_connect_request(self, request: ConnectToServiceRequest) -> None:
        if self._directory.add(request.sender_id):
            logger.info(f"Peer {request.sender_id} joined; directory {self._directory.as_list()}")
        self._broadcast_directory()

    def _on_disconnect_request(self, request: DisconnectFromServiceRequest) -> None:
        if self._directory.remove(request.sender_id):
            logger.info(f"Peer {request.sender_id} left; directory {self._directory.as_list()}")
        self._broadcast_directory()

    def _broadcast_directory(self) -> None:
        self._send(
            ConnectToServiceResponse(
                sender_id=self._local_peer_id,
                result_code=ResultCode.SUCCESS,
                connected_player_ids=self._directory.as_list(),
            ),
            to_all(),
        )

    def _on_connect_response(self, response: ConnectToServiceResponse) -> None:
        # Every peer mirrors the master's directory, solicited or not
        self._directory.replace(response.connected_player_ids)
        self._pending.resolve(RequestKind.CONNECT, response)

    def _on_get_remote_coordinates_request(self, request: GetRemoteCoordinatesRequest) -> None:
        self._with_coordinates(self._answer_remote_coordinates_request, request)

    def _answer_remote_coordinates_request(self, request: GetRemoteCoordinatesRequest) -> None:
        if self._coordinates:
            response = GetRemoteCoordinatesResponse(
                sender_id=self._local_peer_id,
                result_code=ResultCode.SUCCESS,
                coordinates=list(self._coordinates),
            )
        else:
            response = GetRemoteCoordinatesResponse(
                sender_id=self._local_peer_id,
                result_code=ResultCode.FAILED,
            )
        self._send(response, to_peer(request.sender_id))

    def _on_get_remote_coordinates_response(self, response: GetRemoteCoordinatesResponse) -> None:
        self._resolve(RequestKind.GET_REMOTE_COORDINATES, response)

    def _resolve(self, kind: RequestKind, response) -> None:
        if not self._pending.resolve(kind, response):
            logger.debug(f"Dropping unsolicited {type(response).__name__} from peer {response.sender_id}")
            self.metrics.increment_drop('unsolicited_response')

    def _with_coordinates(self, answer: Callable, request) -> None:
        """
        Answer a request, first loading the snapshot if it is still empty.

        The load runs as a background task, so the answer goes out after the
        provider returns rather than inside the inbound handler.
        """
        provider = self._provider
        if self._coordinates or provider is None or not provider.tracks_frames:
            answer(request)
            return

        task = asyncio.ensure_future(self._refresh_then_answer(answer, request))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh_then_answer(self, answer: Callable, request) -> None:
        session = self._session
        coordinates = await self._acquire_coordinates(refresh=False)
        if session != self._session:
            logger.debug(f"Dropping answer to peer {request.sender_id}: session ended")
            return
        if coordinates and not self._coordinates:
            self._coordinates = coordinates
        answer(request)

    # ========================================================================
    # Outbound
    # ========================================================================

    def _send(self, message, targets: List[int]) -> None:
        if self._local_peer_id is None:
            logger.debug(f"Not sending {type(message).__name__}: no local peer id")
            return
        code, json_data = encode_message(message)
        self.metrics.increment('events_out')
        self._debug(f"Sending {type(message).__name__} to {targets}", code)
        self.on_broadcast_network_event.emit(code, json_data, targets)

    def _debug(self, message: str, code: int) -> None:
        if not self.config.verbose_logging:
            return
        logger.debug(f"[{self._local_peer_id}] {message} ({int(code)})")
        self.on_debug_log_info.emit(message, int(code))

    async def shutdown(self) -> None:
        """Cancel background answers and outstanding requests."""
        self._session += 1
        self._pending.cancel_all()
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
