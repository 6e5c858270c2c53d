"""
Geometry Module: Poses and frame changes.

Key functions:
- relative_of: World pose -> pose in a coordinate's oriented frame
- world_of: Frame-relative pose -> world pose
- co_localize: Remote world pose -> local world pose via a shared coordinate
"""

from .transforms import (
    Pose,
    IDENTITY_ROTATION,
    ZERO_VECTOR,
    NORM_TOLERANCE,
    as_vector,
    as_quaternion,
    quat_normalize,
    quat_multiply,
    quat_conjugate,
    quat_inverse,
    quat_rotate,
    quat_to_matrix,
    quat_from_axis_angle,
    is_unit_quaternion,
    trs_matrix,
    transform_point,
    relative_of,
    world_of,
    co_localize,
    compose,
    invert,
)

__all__ = [
    'Pose',
    'IDENTITY_ROTATION',
    'ZERO_VECTOR',
    'NORM_TOLERANCE',
    'as_vector',
    'as_quaternion',
    'quat_normalize',
    'quat_multiply',
    'quat_conjugate',
    'quat_inverse',
    'quat_rotate',
    'quat_to_matrix',
    'quat_from_axis_angle',
    'is_unit_quaternion',
    'trs_matrix',
    'transform_point',
    'relative_of',
    'world_of',
    'co_localize',
    'compose',
    'invert',
]
