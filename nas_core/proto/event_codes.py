"""
Network event codes, routing targets and result codes.

These numeric values are part of the external interface shared with every
peer and transport. They must not drift.
"""

from enum import IntEnum
from typing import List


class EventCode(IntEnum):
    """Numeric code carried with every network event."""

    GET_NETWORK_ANCHOR_REQUEST = 101
    GET_NETWORK_ANCHOR_RESPONSE = 102
    CREATE_NETWORK_ANCHOR_REQUEST = 103
    CREATE_NETWORK_ANCHOR_RESPONSE = 104
    CONNECT_TO_SERVICE_REQUEST = 105
    DISCONNECT_FROM_SERVICE_REQUEST = 106
    CONNECT_TO_SERVICE_RESPONSE = 107
    GET_REMOTE_COORDINATES_REQUEST = 108
    GET_REMOTE_COORDINATES_RESPONSE = 109


class Targets(IntEnum):
    """
    Routing sentinels for outbound events.

    Positive target ids address individual peers.
    """

    MASTER = -1   # Master client only
    OTHERS = -2   # Everyone except the sender
    ALL = -3      # Everyone, sender included


def to_master() -> List[int]:
    return [int(Targets.MASTER)]


def to_others() -> List[int]:
    return [int(Targets.OTHERS)]


def to_all() -> List[int]:
    return [int(Targets.ALL)]


def to_peer(peer_id: int) -> List[int]:
    """
    Target a single peer.

    Raises:
        ValueError: If peer_id is not a positive id
    """
    if peer_id <= 0:
        raise ValueError(f"Peer ids must be positive: {peer_id}")
    return [int(peer_id)]


class ResultCode(IntEnum):
    """
    Outcome of a request.

    Codes between NO_MATCHES_FOUND and FAILED are reserved for registry-style
    servers; the peer-to-peer protocol only produces SUCCESS,
    NO_MATCHES_FOUND and FAILED.
    """

    UNKNOWN = 0
    SUCCESS = 1
    NO_MATCHES_FOUND = 2

    # Reserved
    EXISTS = 3
    MISSING_INFORMATION = 4
    MISSING_ANCHOR = 5
    MISSING_SHARED_COORDINATE = 6
    MISSING_COORDINATES = 7

    FAILED = 100

    @classmethod
    def from_wire(cls, value) -> 'ResultCode':
        """
        Decode a wire value, mapping unrecognized numbers to UNKNOWN.

        Raises:
            ValueError: If the value is not an integer
        """
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Result code must be an integer: {value!r}")
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN
