"""Per-kind joint rules as exhaustive dispatch tables.

Every joint kind supplies three pure functions:

- ``motion(q_slice, axis) -> (T, degenerate)``: transform produced by the
  joint input, applied after the joint's initial position.
- ``motion_subspace(T_world, axis) -> S``: (6, MAX_DOF) world-frame spatial
  velocity of the joint frame origin per unit velocity of each of its degrees
  of freedom, angular rows first. Unused columns are zero.
- ``com_subjacobian(T_world, axis, mass, mass_com, inv_total_mass) -> C``:
  (3, MAX_DOF) contribution of the joint's degrees of freedom to the velocity
  of the whole-body center of mass, given the aggregate ``mass`` and
  ``mass_com`` (mass times center of mass) of its subtree.

Tables are tuples indexed by :class:`JointKind` and used with
:func:`jax.lax.switch`. Building them raises ``KeyError`` at import if a kind
has no rule.
"""

import jax
import jax.numpy as jnp

from .joint import JointKind, MAX_DOF, MAX_CONFIG_SIZE
from ..transforms import se3, so3

Array = jax.Array

# Quaternion norms at or below this are not normalized; identity is used instead.
QUATERNION_EPSILON = 1e-12


def transport_motion_subspace(subspace: Array, offset: Array) -> Array:
    """
    Express a motion subspace at a point displaced by ``offset``.

    Angular rows are unchanged; linear rows gain ``w x offset`` for each
    column's angular part ``w``.

    Args:
        subspace: (..., 6, k) motion subspace, angular rows first
        offset: (..., 3) vector from the subspace origin to the new point

    Returns:
        (..., 6, k) transported subspace
    """
    angular = subspace[..., :3, :]
    linear = subspace[..., 3:, :] - jnp.matmul(so3.skew_symmetric(offset), angular)
    angular = jnp.broadcast_to(angular, linear.shape)
    return jnp.concatenate([angular, linear], axis=-2)


def _cross_columns(columns: Array, v: Array) -> Array:
    """``cross(columns[:, k], v)`` for every column k."""
    return -jnp.matmul(so3.skew_symmetric(v), columns)


def _world_axis(T_world: Array, axis: Array) -> Array:
    return so3.apply(se3.get_rotation(T_world), axis)


# Anchor
def _anchor_motion(q_slice, axis):
    return se3.identity(axis.dtype), jnp.array(False)


def _anchor_motion_subspace(T_world, axis):
    return jnp.zeros((6, MAX_DOF), dtype=T_world.dtype)


def _anchor_com_subjacobian(T_world, axis, mass, mass_com, inv_total_mass):
    return jnp.zeros((3, MAX_DOF), dtype=T_world.dtype)


# Spherical
def _spherical_motion(q_slice, axis):
    q, degenerate = so3.normalize_quaternion(q_slice[:4], QUATERNION_EPSILON)
    return se3.from_rotation(so3.from_quaternion(q)), degenerate


def _spherical_motion_subspace(T_world, axis):
    # Velocities are angular velocities in the joint frame: column k is the
    # joint frame's k-th axis expressed in the world frame.
    R = se3.get_rotation(T_world)
    return jnp.concatenate([R, jnp.zeros_like(R)], axis=0)


def _spherical_com_subjacobian(T_world, axis, mass, mass_com, inv_total_mass):
    R = se3.get_rotation(T_world)
    lever = mass_com - mass * se3.get_position(T_world)
    return _cross_columns(R, lever) * inv_total_mass


# Rotation
def _rotation_motion(q_slice, axis):
    angle = q_slice[0]
    return se3.from_rotation(so3.from_axis_angle(axis, angle)), jnp.array(False)


def _rotation_motion_subspace(T_world, axis):
    S = jnp.zeros((6, MAX_DOF), dtype=T_world.dtype)
    return S.at[:3, 0].set(_world_axis(T_world, axis))


def _rotation_com_subjacobian(T_world, axis, mass, mass_com, inv_total_mass):
    w = _world_axis(T_world, axis)
    lever = mass_com - mass * se3.get_position(T_world)
    C = jnp.zeros((3, MAX_DOF), dtype=T_world.dtype)
    return C.at[:, 0].set(jnp.cross(w, lever) * inv_total_mass)


# Translation
def _translation_motion(q_slice, axis):
    length = q_slice[0]
    return se3.from_translation(axis * length), jnp.array(False)


def _translation_motion_subspace(T_world, axis):
    S = jnp.zeros((6, MAX_DOF), dtype=T_world.dtype)
    return S.at[3:, 0].set(_world_axis(T_world, axis))


def _translation_com_subjacobian(T_world, axis, mass, mass_com, inv_total_mass):
    C = jnp.zeros((3, MAX_DOF), dtype=T_world.dtype)
    return C.at[:, 0].set(_world_axis(T_world, axis) * mass * inv_total_mass)


_MOTIONS = {
    JointKind.ANCHOR: _anchor_motion,
    JointKind.SPHERICAL: _spherical_motion,
    JointKind.ROTATION: _rotation_motion,
    JointKind.TRANSLATION: _translation_motion,
}

_MOTION_SUBSPACES = {
    JointKind.ANCHOR: _anchor_motion_subspace,
    JointKind.SPHERICAL: _spherical_motion_subspace,
    JointKind.ROTATION: _rotation_motion_subspace,
    JointKind.TRANSLATION: _translation_motion_subspace,
}

_COM_SUBJACOBIANS = {
    JointKind.ANCHOR: _anchor_com_subjacobian,
    JointKind.SPHERICAL: _spherical_com_subjacobian,
    JointKind.ROTATION: _rotation_com_subjacobian,
    JointKind.TRANSLATION: _translation_com_subjacobian,
}

MOTION_TABLE = tuple(_MOTIONS[kind] for kind in JointKind)
MOTION_SUBSPACE_TABLE = tuple(_MOTION_SUBSPACES[kind] for kind in JointKind)
COM_SUBJACOBIAN_TABLE = tuple(_COM_SUBJACOBIANS[kind] for kind in JointKind)


def joint_motion(kind: Array, q_slice: Array, axis: Array):
    """
    Transform produced by a joint input.

    Args:
        kind: integer joint kind
        q_slice: (MAX_CONFIG_SIZE,) configuration slice starting at the joint
            rank, zero padded past the joint's config size
        axis: (3,) joint axis

    Returns:
        ((4, 4) transform, degeneracy flag)
    """
    return jax.lax.switch(kind, MOTION_TABLE, q_slice[:MAX_CONFIG_SIZE], axis)


def motion_subspace(kind: Array, T_world: Array, axis: Array) -> Array:
    """(6, MAX_DOF) world motion subspace of a joint at its current pose."""
    return jax.lax.switch(kind, MOTION_SUBSPACE_TABLE, T_world, axis)


def com_subjacobian(kind: Array, T_world: Array, axis: Array, mass: Array,
                    mass_com: Array, inv_total_mass: Array) -> Array:
    """(3, MAX_DOF) whole-body center-of-mass Jacobian columns of a joint."""
    return jax.lax.switch(kind, COM_SUBJACOBIAN_TABLE, T_world, axis, mass,
                          mass_com, inv_total_mass)
