"""
Network anchor service configuration.
"""

# Service configuration (see nas_core.localization.ServiceConfig)
SERVICE_CONFIG = {
    "request_timeout_ms": 3000,       # per pending request
    "coordinate_timeout_ms": 20000,   # per coordinate provider query
    "verbose_logging": True,          # debug notification stream
    "create_ack_policy": "first_response",
    "settle_delay_s": 0.0,            # 0 = one loop tick before discovery
}

# TCP relay configuration
RELAY_CONFIG = {
    "host": "127.0.0.1",
    "port": 8765,
}

# Logging configuration
LOGGING_CONFIG = {
    "level": "INFO",
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
}

# Virtual session for the loopback demo
DEMO_CONFIG = {
    "peers": 3,
    "anchor_id": "origin",
    "anchor_position": (0.5, 0.0, 1.5),
    "anchor_rotation": (0.0, 0.0, 0.0, 1.0),
    # Frames every peer observes, in a shared physical space
    "frames": {
        "pcf-hall": {"position": (2.0, 0.0, 3.0)},
        "pcf-door": {"position": (-1.5, 0.0, 4.0), "rotation": (0.0, 0.7071068, 0.0, 0.7071068)},
    },
    # Each peer's tracking origin differs by this much per peer id
    "yaw_step_deg": 35.0,
    "offset_step": (1.0, 0.0, -0.5),
}
