"""
Event codec: numeric event code <-> message dataclass.

Decoding goes through a single registry lookup, so an unknown code is one
default branch instead of a cascade of comparisons.
"""

import json
from typing import Dict, Tuple, Type, Union

from .event_codes import EventCode
from .messages import (
    MalformedMessageError,
    GetNetworkAnchorRequest,
    GetNetworkAnchorResponse,
    CreateNetworkAnchorRequest,
    CreateNetworkAnchorResponse,
    ConnectToServiceRequest,
    DisconnectFromServiceRequest,
    ConnectToServiceResponse,
    GetRemoteCoordinatesRequest,
    GetRemoteCoordinatesResponse,
)


Message = Union[
    GetNetworkAnchorRequest,
    GetNetworkAnchorResponse,
    CreateNetworkAnchorRequest,
    CreateNetworkAnchorResponse,
    ConnectToServiceRequest,
    DisconnectFromServiceRequest,
    ConnectToServiceResponse,
    GetRemoteCoordinatesRequest,
    GetRemoteCoordinatesResponse,
]


MESSAGE_TYPES: Dict[EventCode, Type] = {
    message_type.EVENT_CODE: message_type
    for message_type in (
        GetNetworkAnchorRequest,
        GetNetworkAnchorResponse,
        CreateNetworkAnchorRequest,
        CreateNetworkAnchorResponse,
        ConnectToServiceRequest,
        DisconnectFromServiceRequest,
        ConnectToServiceResponse,
        GetRemoteCoordinatesRequest,
        GetRemoteCoordinatesResponse,
    )
}


class UnknownEventError(LookupError):
    """Raised when an event code has no registered message type."""


def message_type_for(code: int) -> Type:
    """
    Look up the message class for an event code.

    Raises:
        UnknownEventError: If the code is not part of the protocol
    """
    try:
        return MESSAGE_TYPES[EventCode(code)]
    except (ValueError, KeyError):
        raise UnknownEventError(f"Unknown event code: {code}")


def encode_message(message: Message) -> Tuple[int, str]:
    """
    Serialize a message for the transport.

    Returns:
        (event_code, json_data)
    """
    return int(message.EVENT_CODE), json.dumps(message.to_wire())


def decode_message(code: int, json_data: Union[str, bytes]) -> Message:
    """
    Parse an inbound event into its message dataclass.

    Args:
        code: Event code received with the payload
        json_data: JSON text of the payload

    Raises:
        UnknownEventError: If the code is not part of the protocol
        MalformedMessageError: If the payload cannot be decoded
    """
    message_type = message_type_for(code)

    try:
        payload = json.loads(json_data)
    except (TypeError, ValueError) as e:
        raise MalformedMessageError(f"Invalid JSON for event {code}: {e}")

    if not isinstance(payload, dict):
        raise MalformedMessageError(f"Event {code} payload must be an object")

    return message_type.from_wire(payload)
