"""
Network Anchor Service (NAS) Core Package.

Shared spatial anchors for multi-user AR: peers that observe the same
physical coordinate frames agree on the pose of a network anchor, each in
its own tracking space.

Package structure:
- geometry: Quaternion math and rigid transforms
- domain: Coordinates, network anchors, co-localization
- proto: Event codes, message schemas, JSON codec
- providers: Coordinate provider interface and implementations
- localization: Anchor discovery protocol, request tracking, controller
- io: Loopback hub, stream framing, TCP relay
- metrics: Counters, drop reasons, histograms
"""

__version__ = "0.1.0"
