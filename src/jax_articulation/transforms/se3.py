"""SE(3) rigid-body transforms in JAX.

Transforms are homogeneous ``(..., 4, 4)`` matrices. Spatial motion vectors
follow the joint Jacobian convention: angular part first, linear part second.
All functions are pure, JIT-able, and operate on JAX arrays.
"""


import jax
import jax.numpy as jnp

from . import so3

Array = jax.Array


def identity(dtype=jnp.float64) -> Array:
    """Identity transform."""
    return jnp.eye(4, dtype=dtype)


def from_position_and_rotation(p: Array, R: Array) -> Array:
    """
    Construct SE(3) transform from position and rotation.

    Args:
        p: (..., 3) position vector
        R: (..., 3, 3) rotation matrix

    Returns:
        (..., 4, 4) homogeneous transformation matrix
    """
    batch_shape = jnp.broadcast_shapes(p.shape[:-1], R.shape[:-2])
    p = jnp.broadcast_to(p, batch_shape + (3,))
    R = jnp.broadcast_to(R, batch_shape + (3, 3))

    T = jnp.zeros(batch_shape + (4, 4), dtype=p.dtype)
    T = T.at[..., :3, :3].set(R)
    T = T.at[..., :3, 3].set(p)
    T = T.at[..., 3, 3].set(1.0)

    return T


def from_rotation(R: Array) -> Array:
    """Pure rotation transform."""
    return from_position_and_rotation(jnp.zeros(R.shape[:-2] + (3,), dtype=R.dtype), R)


def from_translation(p: Array) -> Array:
    """Pure translation transform."""
    R = jnp.broadcast_to(jnp.eye(3, dtype=p.dtype), p.shape[:-1] + (3, 3))
    return from_position_and_rotation(p, R)


def multiply(T1: Array, T2: Array) -> Array:
    """
    Compose two transforms: the pose of frame 2 in frame 0, given frame 1 in
    frame 0 (``T1``) and frame 2 in frame 1 (``T2``).
    """
    return jnp.matmul(T1, T2)


def inverse(T: Array) -> Array:
    """
    Compute inverse of SE(3) transformation matrix.

    Uses the block structure: T^-1 = [[R^T, -R^T @ t], [0, 1]]
    """
    R_inv = so3.inverse(get_rotation(T))
    t_inv = -so3.apply(R_inv, get_position(T))
    return from_position_and_rotation(t_inv, R_inv)


def apply(T: Array, points: Array) -> Array:
    """
    Apply SE(3) transformation to points.

    Args:
        T: (..., 4, 4) transformation matrix
        points: (..., 3) or (..., N, 3) points to transform

    Returns:
        (..., 3) or (..., N, 3) transformed points
    """
    ones = jnp.ones_like(points[..., 0:1])
    points_h = jnp.concatenate([points, ones], axis=-1)
    if points.ndim == T.ndim - 1:
        transformed_h = jnp.einsum("...ij,...j->...i", T, points_h)
    else:
        transformed_h = jnp.einsum("...ij,...nj->...ni", T, points_h)
    return transformed_h[..., :3]


def get_position(T: Array) -> Array:
    """(..., 3) translation part of a transform."""
    return T[..., :3, 3]


def get_rotation(T: Array) -> Array:
    """(..., 3, 3) rotation part of a transform."""
    return T[..., :3, :3]


def adjoint(T: Array) -> Array:
    """
    Adjoint matrix of an SE(3) transform acting on ``[angular; linear]``
    motion vectors.

    A motion ``[w; v]`` expressed at the origin of frame B maps to
    ``[R w; p x (R w) + R v]`` at the origin of frame A, where ``T`` is the
    pose of B in A.

    Args:
        T: (..., 4, 4) transformation matrix

    Returns:
        (..., 6, 6) adjoint matrix [[R, 0], [[p]_x R, R]]
    """
    R = get_rotation(T)
    p_skew = so3.skew_symmetric(get_position(T))
    zeros = jnp.zeros_like(R)

    top = jnp.concatenate([R, zeros], axis=-1)
    bottom = jnp.concatenate([jnp.matmul(p_skew, R), R], axis=-1)

    return jnp.concatenate([top, bottom], axis=-2)
