"""
Configuration for the network anchor service.
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Any, Dict


class AckPolicy(Enum):
    """
    How the author of a new anchor treats acknowledgements.

    FIRST_RESPONSE: The first reply from any peer decides the outcome.
    FIRST_SUCCESS: Refusals are ignored; the request waits for a SUCCESS
        reply or the deadline.
    """

    FIRST_RESPONSE = "first_response"
    FIRST_SUCCESS = "first_success"


@dataclass
class ServiceConfig:
    """
    Network anchor service configuration.

    Attributes:
        request_timeout_ms: Deadline for each pending request
        coordinate_timeout_ms: Deadline for a coordinate provider query
        verbose_logging: Emit the debug notification stream (no protocol effect)
        create_ack_policy: Acknowledgement policy for anchor creation
        settle_delay_s: Controller wait before discovery (0 = one loop tick)
    """

    request_timeout_ms: int = 3000
    coordinate_timeout_ms: int = 20000
    verbose_logging: bool = True
    create_ack_policy: AckPolicy = AckPolicy.FIRST_RESPONSE
    settle_delay_s: float = 0.0

    def __post_init__(self):
        """Validate configuration."""
        if isinstance(self.create_ack_policy, str):
            self.create_ack_policy = AckPolicy(self.create_ack_policy)
        assert self.request_timeout_ms > 0, "request_timeout_ms must be positive"
        assert self.coordinate_timeout_ms > 0, "coordinate_timeout_ms must be positive"
        assert self.settle_delay_s >= 0, "settle_delay_s cannot be negative"

    @property
    def request_timeout_s(self) -> float:
        return self.request_timeout_ms / 1000.0

    @property
    def coordinate_timeout_s(self) -> float:
        return self.coordinate_timeout_ms / 1000.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ServiceConfig':
        """
        Build a config from a plain dictionary, ignoring unknown keys.

        Args:
            data: Settings such as config.SERVICE_CONFIG
        """
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
