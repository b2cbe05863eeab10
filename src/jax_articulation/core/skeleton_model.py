"""SkeletonModel PyTree: the assembled, immutable form of a joint tree.

This module defines the data structure consumed by the propagation passes of
:mod:`jax_articulation.chain`. A model is produced by
:attr:`jax_articulation.core.skeleton.Skeleton.model`; the arena of joints is
flattened in depth-first pre-order so that every parent index is smaller than
the indices of its children.
"""

from jax import Array
from flax import struct
from typing import Tuple


@struct.dataclass
class SkeletonModel:
    """Immutable PyTree representation of a kinematic tree.

    Joints are stored in traversal order: roots in creation order, each
    followed by its subtree with children in attach order.

    Attributes:
        joint_names: Tuple of all joint names in traversal order.
                     Marked as a static field for JIT compilation.
        nq: Size of the configuration vector. Static.
        nv: Size of the velocity vector (number of Jacobian columns). Static.
        kinds: Array of shape (n,) of ``JointKind`` values.
        parent_indices: Array of shape (n,); a root parents itself.
        initial_positions: Array of shape (n, 4, 4) of poses relative to the
                           parent joint at zero configuration.
        axes: Array of shape (n, 3) of unit motion axes.
        rank_in_configuration: Array of shape (n,) of configuration offsets.
        rank_in_velocity: Array of shape (n,) of velocity offsets.
        config_sizes: Array of shape (n,); number of configuration entries
                      each joint reads from its rank on.
        ancestor_mask: Array of shape (n, n); ``ancestor_mask[d, j]`` is 1 if
                       joint ``j`` is ``d`` or one of its ancestors.
        velocity_selector: Array of shape (n, MAX_DOF, nv); one-hot map from a
                           joint's local degree of freedom to its column.
        body_masses: Array of shape (n,) of attached body masses, 0 if none.
        body_local_coms: Array of shape (n, 3) of body centers of mass in the
                         joint frame.
        bounded: Boolean array of shape (n, MAX_DOF).
        lower_bounds: Array of shape (n, MAX_DOF), meaningful where bounded.
        upper_bounds: Array of shape (n, MAX_DOF), meaningful where bounded.
    """
    joint_names: Tuple[str, ...] = struct.field(pytree_node=False)
    nq: int = struct.field(pytree_node=False)
    nv: int = struct.field(pytree_node=False)
    kinds: Array
    parent_indices: Array
    initial_positions: Array
    axes: Array
    rank_in_configuration: Array
    rank_in_velocity: Array
    config_sizes: Array
    ancestor_mask: Array
    velocity_selector: Array
    body_masses: Array
    body_local_coms: Array
    bounded: Array
    lower_bounds: Array
    upper_bounds: Array

    @property
    def num_joints(self) -> int:
        return len(self.joint_names)

    def index(self, joint_name: str) -> int:
        """Traversal index of a joint."""
        try:
            return self.joint_names.index(joint_name)
        except ValueError:
            raise ValueError(f"Joint '{joint_name}' not found in skeleton model")
