"""
Rigid-body transforms between world frames.

Pure functions over 3D vectors, unit quaternions and poses. Used to express
an anchor pose relative to a coordinate frame and to re-express it in another
peer's world through that peer's observation of the same frame.

Quaternion Convention:
    Quaternions are stored as [x, y, z, w] float64 arrays, matching the
    {x, y, z, w} layout used on the wire. Identity is [0, 0, 0, 1].
"""

from dataclasses import dataclass, field
from typing import Sequence, Tuple
import numpy as np


# Renormalize a composed quaternion once | |q| - 1 | exceeds this
NORM_TOLERANCE = 1e-4

IDENTITY_ROTATION: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)
ZERO_VECTOR: Tuple[float, float, float] = (0.0, 0.0, 0.0)


def as_vector(values: Sequence[float]) -> np.ndarray:
    """
    Convert a 3-sequence to a float64 vector.

    Raises:
        ValueError: If the input is not 3 finite components.
    """
    vec = np.asarray(values, dtype=np.float64).reshape(-1)
    if vec.shape != (3,):
        raise ValueError(f"Vector must have 3 components, got {vec.shape}")
    if not np.all(np.isfinite(vec)):
        raise ValueError("Vector components must be finite")
    return vec


def as_quaternion(values: Sequence[float]) -> np.ndarray:
    """
    Convert a 4-sequence [x, y, z, w] to a float64 quaternion.

    Raises:
        ValueError: If the input is not 4 finite components.
    """
    quat = np.asarray(values, dtype=np.float64).reshape(-1)
    if quat.shape != (4,):
        raise ValueError(f"Quaternion must have 4 components, got {quat.shape}")
    if not np.all(np.isfinite(quat)):
        raise ValueError("Quaternion components must be finite")
    return quat


def quat_normalize(q: Sequence[float]) -> np.ndarray:
    """
    Normalize a quaternion to unit length.

    Raises:
        ValueError: If the quaternion has (near) zero length.
    """
    quat = as_quaternion(q)
    norm = np.linalg.norm(quat)
    if norm < 1e-12:
        raise ValueError("Cannot normalize a zero-length quaternion")
    return quat / norm


def is_unit_quaternion(q: Sequence[float], tolerance: float = NORM_TOLERANCE) -> bool:
    """Check that | |q| - 1 | is within tolerance."""
    return abs(float(np.linalg.norm(as_quaternion(q))) - 1.0) <= tolerance


def _renormalize_if_drifted(q: np.ndarray) -> np.ndarray:
    if abs(float(np.linalg.norm(q)) - 1.0) > NORM_TOLERANCE:
        return quat_normalize(q)
    return q


def quat_multiply(q1: Sequence[float], q2: Sequence[float]) -> np.ndarray:
    """
    Hamilton product q1 * q2 (apply q2 first, then q1).

    Args:
        q1: Left quaternion [x, y, z, w]
        q2: Right quaternion [x, y, z, w]

    Returns:
        Product quaternion [x, y, z, w], renormalized if it drifted
    """
    x1, y1, z1, w1 = as_quaternion(q1)
    x2, y2, z2, w2 = as_quaternion(q2)
    product = np.array([
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
    ])
    return _renormalize_if_drifted(product)


def quat_conjugate(q: Sequence[float]) -> np.ndarray:
    """Conjugate [-x, -y, -z, w]."""
    x, y, z, w = as_quaternion(q)
    return np.array([-x, -y, -z, w])


def quat_inverse(q: Sequence[float]) -> np.ndarray:
    """
    Inverse of a unit quaternion.

    For unit quaternions the inverse is the conjugate; the input is
    normalized first so a slightly drifted rotation still inverts cleanly.
    """
    return quat_conjugate(quat_normalize(q))


def quat_to_matrix(q: Sequence[float]) -> np.ndarray:
    """Convert a quaternion [x, y, z, w] to a 3x3 rotation matrix."""
    x, y, z, w = quat_normalize(q)
    return np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
        [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
        [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
    ])


def quat_rotate(q: Sequence[float], v: Sequence[float]) -> np.ndarray:
    """Rotate vector v by quaternion q."""
    return quat_to_matrix(q) @ as_vector(v)


def quat_from_axis_angle(axis: Sequence[float], angle_rad: float) -> np.ndarray:
    """
    Create a quaternion from a rotation axis and an angle in radians.

    Raises:
        ValueError: If the axis has zero length.
    """
    axis_vec = as_vector(axis)
    axis_norm = np.linalg.norm(axis_vec)
    if axis_norm < 1e-12:
        raise ValueError("Rotation axis must be non-zero")
    s = np.sin(angle_rad / 2.0)
    xyz = axis_vec / axis_norm * s
    return np.array([xyz[0], xyz[1], xyz[2], np.cos(angle_rad / 2.0)])


def trs_matrix(position: Sequence[float], rotation: Sequence[float]) -> np.ndarray:
    """
    Build the 4x4 homogeneous matrix M = T(position) * R(rotation).

    Scale is always one; coordinate frames are rigid.
    """
    matrix = np.eye(4)
    matrix[:3, :3] = quat_to_matrix(rotation)
    matrix[:3, 3] = as_vector(position)
    return matrix


def transform_point(matrix: np.ndarray, point: Sequence[float]) -> np.ndarray:
    """Apply a 4x4 transform to a point (homogeneous w = 1)."""
    homogeneous = np.append(as_vector(point), 1.0)
    return (matrix @ homogeneous)[:3]


@dataclass(frozen=True)
class Pose:
    """
    Position and orientation in some frame.

    Attributes:
        position: (x, y, z) in meters
        rotation: Unit quaternion (x, y, z, w)

    Notes:
        - Stored as tuples so poses compare and hash by value
        - rotation is renormalized on construction once it drifts past
          NORM_TOLERANCE, so decoded poses keep their exact values
    """

    position: Tuple[float, float, float] = ZERO_VECTOR
    rotation: Tuple[float, float, float, float] = field(default=IDENTITY_ROTATION)

    def __post_init__(self):
        """Coerce to float tuples and normalize the rotation."""
        rotation = _renormalize_if_drifted(as_quaternion(self.rotation))
        object.__setattr__(self, 'position', tuple(float(v) for v in as_vector(self.position)))
        object.__setattr__(self, 'rotation', tuple(float(v) for v in rotation))

    @property
    def position_array(self) -> np.ndarray:
        return np.array(self.position)

    @property
    def rotation_array(self) -> np.ndarray:
        return np.array(self.rotation)

    def matrix(self) -> np.ndarray:
        """4x4 homogeneous matrix of this pose."""
        return trs_matrix(self.position, self.rotation)

    def is_close(self, other: 'Pose', atol: float = 1e-5) -> bool:
        """
        Compare two poses within tolerance.

        Quaternions q and -q describe the same rotation, so both signs
        are accepted.
        """
        if not np.allclose(self.position, other.position, atol=atol):
            return False
        q1 = self.rotation_array
        q2 = other.rotation_array
        return bool(np.allclose(q1, q2, atol=atol) or np.allclose(q1, -q2, atol=atol))


def relative_of(frame: Pose, world_pose: Pose) -> Pose:
    """
    Express a world pose in the oriented local frame of a coordinate.

    Let M = T(frame.position) * R(frame.rotation). The relative rotation is
    R(frame)^-1 * world.rotation and the relative position is
    M^-1 * world.position, transformed as a point. Plain subtraction of
    positions would ignore the frame's orientation.

    Args:
        frame: Pose of the coordinate frame in world space
        world_pose: Pose to express in the frame

    Returns:
        Pose relative to the frame
    """
    rotation = quat_multiply(quat_inverse(frame.rotation), world_pose.rotation)
    position = transform_point(np.linalg.inv(frame.matrix()), world_pose.position)
    return Pose(position=position, rotation=rotation)


def world_of(frame: Pose, local_pose: Pose) -> Pose:
    """
    Inverse of relative_of: map a frame-relative pose into world space.

    Returns:
        (frame.rotation * local.rotation, M * local.position)
    """
    rotation = quat_multiply(frame.rotation, local_pose.rotation)
    position = transform_point(frame.matrix(), local_pose.position)
    return Pose(position=position, rotation=rotation)


def co_localize(local_frame: Pose, remote_frame: Pose, remote_world_pose: Pose) -> Pose:
    """
    Re-express a remote peer's world pose in the local world.

    Both frames are observations of the same physical coordinate, one by
    each peer. The pose relative to that coordinate is identical for every
    peer, so it is computed against the remote observation and mapped back
    out through the local one.

    Args:
        local_frame: Local peer's pose of the shared coordinate
        remote_frame: Remote peer's pose of the same coordinate
        remote_world_pose: Pose in the remote peer's world

    Returns:
        The same physical pose in the local peer's world
    """
    return world_of(local_frame, relative_of(remote_frame, remote_world_pose))


def compose(first: Pose, second: Pose) -> Pose:
    """Compose two rigid transforms: first * second."""
    return world_of(first, second)


def invert(pose: Pose) -> Pose:
    """Inverse rigid transform, so that compose(pose, invert(pose)) is identity."""
    return relative_of(pose, Pose())
