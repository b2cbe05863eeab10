"""Core kinematics passes over a joint tree.

The three propagation passes run in a fixed order:

1. :func:`compute_positions` composes joint transforms top-down and returns a
   :class:`Positions` value.
2. :func:`compute_jacobians` needs that value: every joint writes its columns
   into the Jacobian of each joint of its subtree.
3. :func:`compute_masses` aggregates mass and mass times center of mass
   bottom-up, then :func:`com_jacobian` weights each joint's columns by its
   subtree mass.

:func:`compute_kinematics` runs all of them in that order. Every function is
pure and JIT-compilable; per-call intermediates are recomputed from the
configuration each time.
"""

from typing import Dict

import numpy as np
import jax
import jax.numpy as jnp
from jax import Array
from flax import struct

from .core.skeleton_model import SkeletonModel
from .core import joint_kinds
from .core.joint import JointKind, MAX_CONFIG_SIZE
from .transforms import se3


@struct.dataclass
class Positions:
    """Result of the top-down position pass.

    Attributes:
        transforms: Array of shape (n, 4, 4) of joint poses in the world frame.
        degenerate: Boolean array of shape (n,); True where a spherical joint
                    input could not be normalized and identity was used.
    """
    transforms: Array
    degenerate: Array


@struct.dataclass
class MassDistribution:
    """Result of the bottom-up mass pass, in the world frame.

    Attributes:
        mass: Array of shape (n,) of subtree masses.
        mass_times_com: Array of shape (n, 3) of subtree mass times center of mass.
        total_mass: Sum of the masses of all trees.
        total_mass_times_com: Sum of ``mass_times_com`` over all roots.
    """
    mass: Array
    mass_times_com: Array
    total_mass: Array
    total_mass_times_com: Array

    @property
    def center_of_mass(self) -> Array:
        """Whole-body center of mass, zero when the skeleton has no mass."""
        has_mass = self.total_mass > 0.0
        safe_mass = jnp.where(has_mass, self.total_mass, 1.0)
        return jnp.where(has_mass, self.total_mass_times_com / safe_mass, 0.0)


@struct.dataclass
class KinematicsState:
    """Every cached quantity for one configuration.

    Attributes:
        configuration: Array of shape (nq,).
        positions: Top-down pass result.
        jacobians: Array of shape (n, 6, nv); angular rows first.
        masses: Bottom-up pass result.
        com_jacobian: Array of shape (3, nv).
    """
    configuration: Array
    positions: Positions
    jacobians: Array
    masses: MassDistribution
    com_jacobian: Array


def _as_configuration(model: SkeletonModel, q: Array) -> Array:
    q = jnp.asarray(q, dtype=model.initial_positions.dtype)
    if q.shape != (model.nq,):
        raise ValueError(f"Configuration must have shape ({model.nq},), got {q.shape}")
    return q


def compute_positions(model: SkeletonModel, q: Array) -> Positions:
    """Compute the world pose of every joint.

    Args:
        model: SkeletonModel describing the joint tree
        q: Configuration vector of shape (nq,)

    Returns:
        Positions with the world transform of every joint
    """
    q = _as_configuration(model, q)
    dtype = q.dtype

    # Padding lets every joint read a fixed-size slice.
    q_padded = jnp.concatenate([q, jnp.zeros(MAX_CONFIG_SIZE, dtype=dtype)])

    num_joints = model.num_joints
    transforms = jnp.broadcast_to(jnp.eye(4, dtype=dtype), (num_joints, 4, 4))

    def scan_body(carry, i):
        """Processes joint `i` using its parent's world pose from `carry`."""
        parent = model.parent_indices[i]
        T_world_to_parent = jnp.where(parent == i, jnp.eye(4, dtype=dtype), carry[parent])

        q_slice = jax.lax.dynamic_slice(
            q_padded, (model.rank_in_configuration[i],), (MAX_CONFIG_SIZE,))
        # Entries past the joint's own slice belong to later joints.
        q_slice = jnp.where(jnp.arange(MAX_CONFIG_SIZE) < model.config_sizes[i], q_slice, 0.0)
        T_motion, degenerate = joint_kinds.joint_motion(model.kinds[i], q_slice, model.axes[i])

        T_parent_to_joint = se3.multiply(model.initial_positions[i], T_motion)
        carry = carry.at[i].set(se3.multiply(T_world_to_parent, T_parent_to_joint))
        return carry, degenerate

    # Traversal order puts parents first, so a single forward scan suffices.
    transforms, degenerate = jax.lax.scan(scan_body, transforms, jnp.arange(num_joints))
    return Positions(transforms=transforms, degenerate=degenerate)


def compute_jacobians(model: SkeletonModel, positions: Positions) -> Array:
    """Assemble the geometric Jacobian of every joint frame.

    Joint ``j`` writes, into the Jacobian of each joint ``d`` of its subtree
    (``j`` included), the columns of its own degrees of freedom: its motion
    subspace transported from its origin to the origin of ``d``.

    Args:
        model: SkeletonModel describing the joint tree
        positions: Result of :func:`compute_positions` for the configuration

    Returns:
        Array of shape (n, 6, nv), angular rows first, expressed in the world
        frame at each joint origin
    """
    T = positions.transforms
    subspaces = jax.vmap(joint_kinds.motion_subspace)(model.kinds, T, model.axes)

    p = se3.get_position(T)
    # offsets[d, j] = p_d - p_j
    offsets = p[:, None, :] - p[None, :, :]
    blocks = joint_kinds.transport_motion_subspace(subspaces[None], offsets)

    return jnp.einsum("dj,djrk,jkc->drc", model.ancestor_mask, blocks, model.velocity_selector)


def compute_masses(model: SkeletonModel, positions: Positions) -> MassDistribution:
    """Aggregate mass and mass times center of mass from the leaves up.

    Args:
        model: SkeletonModel describing the joint tree
        positions: Result of :func:`compute_positions` for the configuration

    Returns:
        MassDistribution expressed in the world frame
    """
    own_mass = model.body_masses
    own_com = se3.apply(positions.transforms, model.body_local_coms)
    own_mass_com = own_mass[:, None] * own_com

    num_joints = model.num_joints
    indices = jnp.arange(num_joints)

    def scan_body(carry, i):
        """Adds the finished subtree of joint `i` to its parent."""
        mass, mass_com = carry
        parent = model.parent_indices[i]
        is_child = parent != i
        mass = mass.at[parent].add(jnp.where(is_child, mass[i], 0.0))
        mass_com = mass_com.at[parent].add(jnp.where(is_child, mass_com[i], 0.0))
        return (mass, mass_com), None

    # Children always follow their parent in traversal order.
    (mass, mass_com), _ = jax.lax.scan(scan_body, (own_mass, own_mass_com), indices, reverse=True)

    is_root = model.parent_indices == indices
    total_mass = jnp.sum(jnp.where(is_root, mass, 0.0))
    total_mass_com = jnp.sum(jnp.where(is_root[:, None], mass_com, 0.0), axis=0)

    return MassDistribution(
        mass=mass,
        mass_times_com=mass_com,
        total_mass=total_mass,
        total_mass_times_com=total_mass_com,
    )


def com_jacobian(model: SkeletonModel, positions: Positions, masses: MassDistribution) -> Array:
    """Jacobian of the whole-body center of mass.

    Args:
        model: SkeletonModel describing the joint tree
        positions: Result of :func:`compute_positions`
        masses: Result of :func:`compute_masses` for the same positions

    Returns:
        Array of shape (3, nv); zero when the skeleton has no mass
    """
    has_mass = masses.total_mass > 0.0
    inv_total_mass = jnp.where(has_mass, 1.0 / jnp.where(has_mass, masses.total_mass, 1.0), 0.0)

    blocks = jax.vmap(joint_kinds.com_subjacobian, in_axes=(0, 0, 0, 0, 0, None))(
        model.kinds, positions.transforms, model.axes,
        masses.mass, masses.mass_times_com, inv_total_mass)

    return jnp.einsum("jrk,jkc->rc", blocks, model.velocity_selector)


def compute_kinematics(model: SkeletonModel, q: Array) -> KinematicsState:
    """Run positions, Jacobians, masses and the center-of-mass Jacobian in order.

    Args:
        model: SkeletonModel describing the joint tree
        q: Configuration vector of shape (nq,)

    Returns:
        KinematicsState holding every computed quantity
    """
    q = _as_configuration(model, q)
    positions = compute_positions(model, q)
    jacobians = compute_jacobians(model, positions)
    masses = compute_masses(model, positions)
    return KinematicsState(
        configuration=q,
        positions=positions,
        jacobians=jacobians,
        masses=masses,
        com_jacobian=com_jacobian(model, positions, masses),
    )


def zero_state(model: SkeletonModel) -> KinematicsState:
    """Placeholder state for a skeleton whose kinematics were never computed.

    Transforms are identity; configuration, Jacobians and mass data are zero.
    These values do not correspond to any configuration.
    """
    num_joints = model.num_joints
    dtype = model.initial_positions.dtype
    return KinematicsState(
        configuration=jnp.zeros(model.nq, dtype=dtype),
        positions=Positions(
            transforms=jnp.broadcast_to(jnp.eye(4, dtype=dtype), (num_joints, 4, 4)),
            degenerate=jnp.zeros(num_joints, dtype=bool),
        ),
        jacobians=jnp.zeros((num_joints, 6, model.nv), dtype=dtype),
        masses=MassDistribution(
            mass=jnp.zeros(num_joints, dtype=dtype),
            mass_times_com=jnp.zeros((num_joints, 3), dtype=dtype),
            total_mass=jnp.zeros((), dtype=dtype),
            total_mass_times_com=jnp.zeros(3, dtype=dtype),
        ),
        com_jacobian=jnp.zeros((3, model.nv), dtype=dtype),
    )


def forward_kinematics(model: SkeletonModel, q: Array) -> Dict[str, Array]:
    """Compute forward kinematics for all joints.

    Args:
        model: SkeletonModel describing the joint tree
        q: Configuration vector of shape (nq,)

    Returns:
        Dictionary mapping joint names to their 4x4 SE(3) world poses
    """
    transforms = compute_positions(model, q).transforms
    return {name: transforms[i] for i, name in enumerate(model.joint_names)}


def jacobian(model: SkeletonModel, q: Array, joint_name: str) -> Array:
    """Compute the 6D geometric Jacobian of one joint frame.

    Args:
        model: SkeletonModel describing the joint tree
        q: Configuration vector of shape (nq,)
        joint_name: Name of the target joint

    Returns:
        6x(nv) Jacobian, angular rows first
    """
    index = model.index(joint_name)
    return compute_jacobians(model, compute_positions(model, q))[index]


def center_of_mass(model: SkeletonModel, q: Array) -> Array:
    """World position of the whole-body center of mass."""
    return compute_masses(model, compute_positions(model, q)).center_of_mass


def neutral_configuration(model: SkeletonModel) -> Array:
    """Configuration placing every joint at its identity element.

    Zero for rotation and translation joints, the unit quaternion
    (1, 0, 0, 0) for spherical joints.
    """
    q = np.zeros(model.nq)
    kinds = np.asarray(model.kinds)
    ranks = np.asarray(model.rank_in_configuration)
    q[ranks[kinds == JointKind.SPHERICAL]] = 1.0
    return jnp.asarray(q)
