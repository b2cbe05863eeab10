"""SO(3) rotation-group operations in JAX.

Rotations are stored as ``(..., 3, 3)`` matrices. Spherical joints read their
input as unit quaternions in ``(w, x, y, z)`` order, axial rotation joints as
an angle about a fixed unit axis. All functions are pure and JIT-able.
"""

import jax
import jax.numpy as jnp
from typing import Tuple

Array = jax.Array

IDENTITY_QUATERNION = (1.0, 0.0, 0.0, 0.0)


def skew_symmetric(v: Array) -> Array:
    """
    Convert 3D vector to skew-symmetric (cross-product) matrix.

    Args:
        v: (..., 3) vector

    Returns:
        (..., 3, 3) matrix K such that K @ u == cross(v, u)
    """
    zeros = jnp.zeros(v.shape[:-1], dtype=v.dtype)

    return jnp.stack([
        jnp.stack([zeros, -v[..., 2], v[..., 1]], axis=-1),
        jnp.stack([v[..., 2], zeros, -v[..., 0]], axis=-1),
        jnp.stack([-v[..., 1], v[..., 0], zeros], axis=-1)
    ], axis=-2)


def vee(K: Array) -> Array:
    """Inverse of :func:`skew_symmetric`, using the antisymmetric part of K."""
    return 0.5 * jnp.stack([
        K[..., 2, 1] - K[..., 1, 2],
        K[..., 0, 2] - K[..., 2, 0],
        K[..., 1, 0] - K[..., 0, 1]
    ], axis=-1)


def from_axis_angle(axis: Array, angle: Array) -> Array:
    """
    Rotation of ``angle`` radians about a unit ``axis`` (Rodrigues' formula).

    The axis is assumed normalized; no small-angle branch is needed since
    ``sin`` and ``cos`` are evaluated directly.

    Args:
        axis: (..., 3) unit rotation axis
        angle: (...) rotation angle in radians

    Returns:
        (..., 3, 3) rotation matrix
    """
    angle = jnp.asarray(angle, dtype=axis.dtype)
    K = skew_symmetric(axis)
    I = jnp.broadcast_to(jnp.eye(3, dtype=axis.dtype), K.shape)
    s = jnp.sin(angle)[..., None, None]
    c = jnp.cos(angle)[..., None, None]
    return I + s * K + (1.0 - c) * jnp.matmul(K, K)


def exp(log_r: Array) -> Array:
    """
    SO(3) exponential map: rotation vector to rotation matrix.

    Args:
        log_r: (..., 3) rotation vectors (axis times angle)

    Returns:
        (..., 3, 3) rotation matrices
    """
    angle = jnp.linalg.norm(log_r, axis=-1)
    is_zero = angle < 1e-12
    safe_angle = jnp.where(is_zero, 1.0, angle)
    axis = log_r / safe_angle[..., None]
    R = from_axis_angle(axis, angle)
    return jnp.where(is_zero[..., None, None], jnp.eye(3, dtype=log_r.dtype), R)


def multiply(R1: Array, R2: Array) -> Array:
    """Compose two rotations, ``R1 @ R2``."""
    return jnp.matmul(R1, R2)


def inverse(R: Array) -> Array:
    """Inverse of a rotation matrix, i.e. its transpose."""
    return jnp.swapaxes(R, -1, -2)


def apply(R: Array, v: Array) -> Array:
    """
    Rotate vector(s).

    Args:
        R: (..., 3, 3) rotation matrix
        v: (..., 3) vector

    Returns:
        (..., 3) rotated vector
    """
    return jnp.einsum('...ij,...j->...i', R, v)


def normalize_quaternion(q: Array, eps: float) -> Tuple[Array, Array]:
    """
    Normalize a quaternion, falling back to identity when it is degenerate.

    Args:
        q: (..., 4) quaternion in (w, x, y, z) format, any norm
        eps: norms at or below this value are treated as degenerate

    Returns:
        (unit quaternion of shape (..., 4), boolean degeneracy flag of shape (...))
    """
    norm = jnp.linalg.norm(q, axis=-1)
    degenerate = norm <= eps
    safe_norm = jnp.where(degenerate, 1.0, norm)
    identity = jnp.broadcast_to(jnp.asarray(IDENTITY_QUATERNION, dtype=q.dtype), q.shape)
    unit = jnp.where(degenerate[..., None], identity, q / safe_norm[..., None])
    return unit, degenerate


def from_quaternion(q: Array) -> Array:
    """
    Convert unit quaternions to rotation matrices.

    The quaternion is used as given; callers normalize beforehand with
    :func:`normalize_quaternion`.

    Args:
        q: (..., 4) unit quaternion in (w, x, y, z) format

    Returns:
        (..., 3, 3) rotation matrix
    """
    w, x, y, z = jnp.moveaxis(q, -1, 0)

    xx, yy, zz = x * x, y * y, z * z
    wx, wy, wz = w * x, w * y, w * z
    xy, xz, yz = x * y, x * z, y * z

    return jnp.stack([
        jnp.stack([1 - 2 * (yy + zz), 2 * (xy - wz), 2 * (xz + wy)], axis=-1),
        jnp.stack([2 * (xy + wz), 1 - 2 * (xx + zz), 2 * (yz - wx)], axis=-1),
        jnp.stack([2 * (xz - wy), 2 * (yz + wx), 1 - 2 * (xx + yy)], axis=-1)
    ], axis=-2)


def to_quaternion(R: Array) -> Array:
    """
    Convert rotation matrices to unit quaternions.

    Each of the four classic branches (largest of trace, R00, R11, R22) is
    evaluated for the whole batch and the best conditioned one is selected.

    Args:
        R: (..., 3, 3) rotation matrix

    Returns:
        (..., 4) unit quaternion in (w, x, y, z) format, sign unspecified
    """
    m00, m11, m22 = R[..., 0, 0], R[..., 1, 1], R[..., 2, 2]
    trace = m00 + m11 + m22
    eps = jnp.finfo(R.dtype).eps

    d21 = R[..., 2, 1] - R[..., 1, 2]
    d02 = R[..., 0, 2] - R[..., 2, 0]
    d10 = R[..., 1, 0] - R[..., 0, 1]
    s01 = R[..., 0, 1] + R[..., 1, 0]
    s02 = R[..., 0, 2] + R[..., 2, 0]
    s12 = R[..., 1, 2] + R[..., 2, 1]

    candidates = [
        (1.0 + trace, jnp.stack([1.0 + trace, d21, d02, d10], axis=-1)),
        (1.0 + m00 - m11 - m22, jnp.stack([d21, 1.0 + m00 - m11 - m22, s01, s02], axis=-1)),
        (1.0 + m11 - m00 - m22, jnp.stack([d02, s01, 1.0 + m11 - m00 - m22, s12], axis=-1)),
        (1.0 + m22 - m00 - m11, jnp.stack([d10, s02, s12, 1.0 + m22 - m00 - m11], axis=-1)),
    ]
    scaled = [q * (0.5 / jnp.sqrt(jnp.maximum(t, eps)))[..., None] for t, q in candidates]

    pick = jnp.argmax(jnp.stack([t for t, _ in candidates], axis=-1), axis=-1)
    q = jnp.take_along_axis(jnp.stack(scaled, axis=-2), pick[..., None, None], axis=-2)[..., 0, :]
    return q / jnp.linalg.norm(q, axis=-1, keepdims=True)


def quaternion_multiply(q1: Array, q2: Array) -> Array:
    """Hamilton product ``q1 * q2`` of (w, x, y, z) quaternions."""
    w1, x1, y1, z1 = jnp.moveaxis(q1, -1, 0)
    w2, x2, y2, z2 = jnp.moveaxis(q2, -1, 0)
    return jnp.stack([
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2
    ], axis=-1)


def quaternion_from_axis_angle(axis: Array, angle: Array) -> Array:
    """Unit quaternion of a rotation of ``angle`` about unit ``axis``."""
    half = 0.5 * jnp.asarray(angle, dtype=axis.dtype)
    return jnp.concatenate([jnp.cos(half)[..., None], jnp.sin(half)[..., None] * axis], axis=-1)
