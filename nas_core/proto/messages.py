"""
Network Anchor Message Schemas.

One dataclass per network event. Each message converts to and from the
JSON-ready dictionary exchanged with peers. Field names on the wire
(SenderId, ResultCode, GenericCoordinates, NetworkAnchor,
ConnectedPlayerIds) are part of the protocol.

Vectors serialize as {x, y, z}, quaternions as {x, y, z, w}.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional

from nas_core.domain import Coordinate, NetworkAnchor
from .event_codes import EventCode, ResultCode


class MalformedMessageError(ValueError):
    """Raised when an inbound payload cannot be decoded."""


# =============================================================================
# Field helpers
# =============================================================================


def _require(payload: Dict[str, Any], key: str) -> Any:
    if key not in payload:
        raise MalformedMessageError(f"Missing field {key}")
    return payload[key]


def _peer_id(value: Any, key: str = 'SenderId') -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedMessageError(f"{key} must be an integer: {value!r}")
    if value <= 0:
        raise MalformedMessageError(f"{key} must be a positive peer id: {value}")
    return value


def vector_to_wire(values) -> Dict[str, float]:
    return {'x': float(values[0]), 'y': float(values[1]), 'z': float(values[2])}


def quaternion_to_wire(values) -> Dict[str, float]:
    return {
        'x': float(values[0]),
        'y': float(values[1]),
        'z': float(values[2]),
        'w': float(values[3]),
    }


def vector_from_wire(payload: Any) -> tuple:
    try:
        return (float(payload['x']), float(payload['y']), float(payload['z']))
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedMessageError(f"Invalid vector {payload!r}: {e}")


def quaternion_from_wire(payload: Any) -> tuple:
    try:
        return (
            float(payload['x']),
            float(payload['y']),
            float(payload['z']),
            float(payload['w']),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedMessageError(f"Invalid quaternion {payload!r}: {e}")


def coordinate_to_wire(coordinate: Coordinate) -> Dict[str, Any]:
    return {
        'CoordinateId': coordinate.coordinate_id,
        'Position': vector_to_wire(coordinate.position),
        'Rotation': quaternion_to_wire(coordinate.rotation),
    }


def coordinate_from_wire(payload: Any) -> Coordinate:
    """
    Decode a coordinate.

    Raises:
        MalformedMessageError: If the id is empty or the pose is invalid
    """
    if not isinstance(payload, dict):
        raise MalformedMessageError(f"Coordinate must be an object: {payload!r}")
    try:
        return Coordinate(
            coordinate_id=str(payload.get('CoordinateId') or ''),
            position=vector_from_wire(_require(payload, 'Position')),
            rotation=quaternion_from_wire(_require(payload, 'Rotation')),
        )
    except MalformedMessageError:
        raise
    except ValueError as e:
        raise MalformedMessageError(f"Invalid coordinate: {e}")


def coordinates_to_wire(coordinates: List[Coordinate]) -> List[Dict[str, Any]]:
    return [coordinate_to_wire(c) for c in coordinates]


def coordinates_from_wire(payload: Any) -> List[Coordinate]:
    if payload is None:
        return []
    if not isinstance(payload, list):
        raise MalformedMessageError(f"GenericCoordinates must be a list: {payload!r}")
    return [coordinate_from_wire(item) for item in payload]


def anchor_to_wire(anchor: Optional[NetworkAnchor]) -> Optional[Dict[str, Any]]:
    if anchor is None:
        return None
    return {
        'OwnerId': '' if anchor.owner_id is None else str(anchor.owner_id),
        'AnchorId': anchor.anchor_id,
        'LinkedCoordinate': (
            coordinate_to_wire(anchor.linked_coordinate)
            if anchor.linked_coordinate is not None else None
        ),
        'RelativePosition': vector_to_wire(anchor.relative_position),
        'RelativeRotation': quaternion_to_wire(anchor.relative_rotation),
    }


def anchor_from_wire(payload: Any) -> Optional[NetworkAnchor]:
    """
    Decode a network anchor.

    Incomplete anchors (empty id, empty linked coordinate) decode to an
    anchor that fails is_valid(); structurally broken ones raise.

    Raises:
        MalformedMessageError: If the payload is not an anchor object
    """
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise MalformedMessageError(f"NetworkAnchor must be an object: {payload!r}")

    owner_raw = payload.get('OwnerId')
    if owner_raw in (None, ''):
        owner_id = None
    else:
        try:
            owner_id = int(owner_raw)
        except (TypeError, ValueError):
            raise MalformedMessageError(f"OwnerId must be a peer id: {owner_raw!r}")

    linked_raw = payload.get('LinkedCoordinate')
    if isinstance(linked_raw, dict) and not linked_raw.get('CoordinateId'):
        # Serializers that cannot emit null send an empty object instead
        linked_raw = None
    linked = coordinate_from_wire(linked_raw) if linked_raw is not None else None

    try:
        return NetworkAnchor(
            anchor_id=str(payload.get('AnchorId') or ''),
            owner_id=owner_id,
            linked_coordinate=linked,
            relative_position=vector_from_wire(_require(payload, 'RelativePosition')),
            relative_rotation=quaternion_from_wire(_require(payload, 'RelativeRotation')),
        )
    except MalformedMessageError:
        raise
    except ValueError as e:
        raise MalformedMessageError(f"Invalid network anchor: {e}")


# =============================================================================
# Messages
# =============================================================================


@dataclass
class GetNetworkAnchorRequest:
    """Ask a peer for its network anchor and coordinate snapshot."""

    EVENT_CODE: ClassVar[EventCode] = EventCode.GET_NETWORK_ANCHOR_REQUEST

    sender_id: int

    def to_wire(self) -> Dict[str, Any]:
        return {'SenderId': self.sender_id}

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> 'GetNetworkAnchorRequest':
        return cls(sender_id=_peer_id(_require(payload, 'SenderId')))


@dataclass
class GetNetworkAnchorResponse:
    """
    Reply to GetNetworkAnchorRequest.

    Attributes:
        sender_id: Responding peer
        result_code: SUCCESS when an anchor and coordinates are included
        coordinates: Responder's coordinate snapshot
        network_anchor: Responder's local network anchor
    """

    EVENT_CODE: ClassVar[EventCode] = EventCode.GET_NETWORK_ANCHOR_RESPONSE

    sender_id: int
    result_code: ResultCode
    coordinates: List[Coordinate] = field(default_factory=list)
    network_anchor: Optional[NetworkAnchor] = None

    def to_wire(self) -> Dict[str, Any]:
        return {
            'SenderId': self.sender_id,
            'ResultCode': int(self.result_code),
            'GenericCoordinates': coordinates_to_wire(self.coordinates),
            'NetworkAnchor': anchor_to_wire(self.network_anchor),
        }

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> 'GetNetworkAnchorResponse':
        return cls(
            sender_id=_peer_id(_require(payload, 'SenderId')),
            result_code=_result_code(payload),
            coordinates=coordinates_from_wire(payload.get('GenericCoordinates')),
            network_anchor=anchor_from_wire(payload.get('NetworkAnchor')),
        )


@dataclass
class CreateNetworkAnchorRequest:
    """Announce a newly authored anchor with the author's coordinates."""

    EVENT_CODE: ClassVar[EventCode] = EventCode.CREATE_NETWORK_ANCHOR_REQUEST

    sender_id: int
    coordinates: List[Coordinate]
    network_anchor: Optional[NetworkAnchor]

    def to_wire(self) -> Dict[str, Any]:
        return {
            'SenderId': self.sender_id,
            'GenericCoordinates': coordinates_to_wire(self.coordinates),
            'NetworkAnchor': anchor_to_wire(self.network_anchor),
        }

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> 'CreateNetworkAnchorRequest':
        return cls(
            sender_id=_peer_id(_require(payload, 'SenderId')),
            coordinates=coordinates_from_wire(payload.get('GenericCoordinates')),
            network_anchor=anchor_from_wire(payload.get('NetworkAnchor')),
        )


@dataclass
class CreateNetworkAnchorResponse:
    """Acknowledge (or refuse) an announced anchor."""

    EVENT_CODE: ClassVar[EventCode] = EventCode.CREATE_NETWORK_ANCHOR_RESPONSE

    sender_id: int
    result_code: ResultCode
    network_anchor: Optional[NetworkAnchor] = None

    def to_wire(self) -> Dict[str, Any]:
        return {
            'SenderId': self.sender_id,
            'ResultCode': int(self.result_code),
            'NetworkAnchor': anchor_to_wire(self.network_anchor),
        }

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> 'CreateNetworkAnchorResponse':
        return cls(
            sender_id=_peer_id(_require(payload, 'SenderId')),
            result_code=_result_code(payload),
            network_anchor=anchor_from_wire(payload.get('NetworkAnchor')),
        )


@dataclass
class ConnectToServiceRequest:
    """Ask the master to add the sender to the peer directory."""

    EVENT_CODE: ClassVar[EventCode] = EventCode.CONNECT_TO_SERVICE_REQUEST

    sender_id: int

    def to_wire(self) -> Dict[str, Any]:
        return {'SenderId': self.sender_id}

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> 'ConnectToServiceRequest':
        return cls(sender_id=_peer_id(_require(payload, 'SenderId')))


@dataclass
class DisconnectFromServiceRequest:
    """Ask the master to remove the sender from the peer directory."""

    EVENT_CODE: ClassVar[EventCode] = EventCode.DISCONNECT_FROM_SERVICE_REQUEST

    sender_id: int

    def to_wire(self) -> Dict[str, Any]:
        return {'SenderId': self.sender_id}

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> 'DisconnectFromServiceRequest':
        return cls(sender_id=_peer_id(_require(payload, 'SenderId')))


@dataclass
class ConnectToServiceResponse:
    """Authoritative peer directory, broadcast by the master."""

    EVENT_CODE: ClassVar[EventCode] = EventCode.CONNECT_TO_SERVICE_RESPONSE

    sender_id: int
    result_code: ResultCode
    connected_player_ids: List[int] = field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return {
            'SenderId': self.sender_id,
            'ResultCode': int(self.result_code),
            'ConnectedPlayerIds': list(self.connected_player_ids),
        }

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> 'ConnectToServiceResponse':
        raw_ids = payload.get('ConnectedPlayerIds') or []
        if not isinstance(raw_ids, list):
            raise MalformedMessageError(f"ConnectedPlayerIds must be a list: {raw_ids!r}")
        return cls(
            sender_id=_peer_id(_require(payload, 'SenderId')),
            result_code=_result_code(payload),
            connected_player_ids=[_peer_id(p, 'ConnectedPlayerIds') for p in raw_ids],
        )


@dataclass
class GetRemoteCoordinatesRequest:
    """Ask a peer for its coordinate snapshot."""

    EVENT_CODE: ClassVar[EventCode] = EventCode.GET_REMOTE_COORDINATES_REQUEST

    sender_id: int

    def to_wire(self) -> Dict[str, Any]:
        return {'SenderId': self.sender_id}

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> 'GetRemoteCoordinatesRequest':
        return cls(sender_id=_peer_id(_require(payload, 'SenderId')))


@dataclass
class GetRemoteCoordinatesResponse:
    """Reply to GetRemoteCoordinatesRequest."""

    EVENT_CODE: ClassVar[EventCode] = EventCode.GET_REMOTE_COORDINATES_RESPONSE

    sender_id: int
    result_code: ResultCode
    coordinates: List[Coordinate] = field(default_factory=list)

    def to_wire(self) -> Dict[str, Any]:
        return {
            'SenderId': self.sender_id,
            'ResultCode': int(self.result_code),
            'GenericCoordinates': coordinates_to_wire(self.coordinates),
        }

    @classmethod
    def from_wire(cls, payload: Dict[str, Any]) -> 'GetRemoteCoordinatesResponse':
        return cls(
            sender_id=_peer_id(_require(payload, 'SenderId')),
            result_code=_result_code(payload),
            coordinates=coordinates_from_wire(payload.get('GenericCoordinates')),
        )


def _result_code(payload: Dict[str, Any]) -> ResultCode:
    try:
        return ResultCode.from_wire(_require(payload, 'ResultCode'))
    except MalformedMessageError:
        raise
    except ValueError as e:
        raise MalformedMessageError(str(e))
