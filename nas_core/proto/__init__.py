"""
Protocol Module: Event codes, message schemas and JSON codec.

Wire contract:
- Numeric event codes 101-109
- Routing sentinels: -1 master, -2 others, -3 all
- Result codes with reserved values for registry-style servers
- JSON field names matching the message schema (SenderId, ResultCode, ...)
"""

from .event_codes import (
    EventCode,
    Targets,
    ResultCode,
    to_master,
    to_others,
    to_all,
    to_peer,
)
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
from .codec import (
    Message,
    MESSAGE_TYPES,
    UnknownEventError,
    message_type_for,
    encode_message,
    decode_message,
)

__all__ = [
    'EventCode',
    'Targets',
    'ResultCode',
    'to_master',
    'to_others',
    'to_all',
    'to_peer',
    'MalformedMessageError',
    'GetNetworkAnchorRequest',
    'GetNetworkAnchorResponse',
    'CreateNetworkAnchorRequest',
    'CreateNetworkAnchorResponse',
    'ConnectToServiceRequest',
    'DisconnectFromServiceRequest',
    'ConnectToServiceResponse',
    'GetRemoteCoordinatesRequest',
    'GetRemoteCoordinatesResponse',
    'Message',
    'MESSAGE_TYPES',
    'UnknownEventError',
    'message_type_for',
    'encode_message',
    'decode_message',
]
