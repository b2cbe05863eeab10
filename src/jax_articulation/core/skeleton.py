"""Arena of joints with a narrow tree-mutation API.

The :class:`Skeleton` owns every joint of one or more kinematic trees and
addresses them by stable integer handles. It assigns configuration and
velocity ranks when it assembles its :class:`SkeletonModel` and caches the
:class:`~jax_articulation.chain.KinematicsState` of the last configuration.
"""

from logging import getLogger
from typing import List, Optional

import numpy as np
import jax
import jax.numpy as jnp

from .joint import Body, Joint, MAX_DOF
from .skeleton_model import SkeletonModel
from ..chain import compute_kinematics, neutral_configuration, zero_state
from ..errors import InvalidTreeError, JointIndexError, StaleCacheError

logger = getLogger(__name__)

_compute_kinematics_jit = jax.jit(compute_kinematics)


class Skeleton:
    """Owner of a forest of joints.

    Joints are registered with :meth:`add_joint` and linked with
    :meth:`add_child_joint`. Handles are indices into the arena in creation
    order and stay valid for the lifetime of the skeleton.

    Tree mutations invalidate the assembled model, the joint ranks and the
    cached kinematic state. Cached quantities (transforms, Jacobians, masses)
    are undefined until :meth:`set_configuration` has run: readers then
    return identity transforms and zeros. With ``strict=True`` they raise
    :class:`~jax_articulation.errors.StaleCacheError` instead.

    Bodies and bounds are read from the joints again whenever the model is
    accessed, so editing a :class:`Body` or a bound in place is seen by the
    next :meth:`set_configuration`.
    """

    def __init__(self, name: str = "skeleton", strict: bool = False):
        self.name = name
        self.strict = strict
        self._joints: List[Joint] = []
        self._parents: List[Optional[int]] = []
        self._children: List[List[int]] = []
        self._by_name = {}
        self._model: Optional[SkeletonModel] = None
        self._order: Optional[List[int]] = None
        self._index_of: Optional[dict] = None
        self._payload: Optional[dict] = None
        self._state = None

    def __len__(self):
        return len(self._joints)

    # Arena
    def add_joint(self, joint: Joint) -> int:
        """Register a parentless joint and return its handle."""
        if any(joint is other for other in self._joints):
            raise InvalidTreeError(f"Joint '{joint.name}' is already in skeleton '{self.name}'")
        if joint.name in self._by_name:
            raise InvalidTreeError(f"Skeleton '{self.name}' already has a joint named '{joint.name}'")
        handle = len(self._joints)
        self._joints.append(joint)
        self._parents.append(None)
        self._children.append([])
        self._by_name[joint.name] = handle
        self._invalidate()
        return handle

    def _check_handle(self, handle: int):
        if not isinstance(handle, (int, np.integer)) or not 0 <= handle < len(self._joints):
            raise JointIndexError(f"No joint with handle {handle} in skeleton '{self.name}'")

    def joint(self, handle: int) -> Joint:
        self._check_handle(handle)
        return self._joints[handle]

    def handle(self, name: str) -> int:
        try:
            return self._by_name[name]
        except KeyError:
            raise JointIndexError(f"No joint named '{name}' in skeleton '{self.name}'")

    # Kinematic tree
    def add_child_joint(self, parent: int, child: int):
        """Append ``child`` to the children of ``parent``.

        Raises:
            InvalidTreeError: if ``child`` already has a parent, is ``parent``
                itself, or is an ancestor of ``parent``. Nothing is modified.
        """
        self._check_handle(parent)
        self._check_handle(child)
        child_name = self._joints[child].name
        if self._parents[child] is not None:
            raise InvalidTreeError(
                f"Joint '{child_name}' already has parent "
                f"'{self._joints[self._parents[child]].name}'")
        ancestor = parent
        while ancestor is not None:
            if ancestor == child:
                raise InvalidTreeError(
                    f"Attaching '{child_name}' under '{self._joints[parent].name}' would create a cycle")
            ancestor = self._parents[ancestor]
        self._children[parent].append(child)
        self._parents[child] = parent
        self._invalidate()

    def detach(self, handle: int):
        """Detach a joint from its parent.

        The joint keeps its subtree and becomes a root of this skeleton.
        Detaching a root does nothing.
        """
        self._check_handle(handle)
        parent = self._parents[handle]
        if parent is None:
            return
        self._children[parent].remove(handle)
        self._parents[handle] = None
        self._invalidate()

    def parent_joint(self, handle: int) -> Optional[int]:
        self._check_handle(handle)
        return self._parents[handle]

    def number_child_joints(self, handle: int) -> int:
        self._check_handle(handle)
        return len(self._children[handle])

    def child_joint(self, handle: int, rank: int) -> int:
        self._check_handle(handle)
        children = self._children[handle]
        if not 0 <= rank < len(children):
            raise JointIndexError(
                f"Joint '{self._joints[handle].name}' has {len(children)} children, got rank {rank}")
        return children[rank]

    def rank_in_parent(self, handle: int) -> Optional[int]:
        """Position of a joint among its parent's children, None for a root."""
        parent = self.parent_joint(handle)
        if parent is None:
            return None
        return self._children[parent].index(handle)

    def roots(self) -> List[int]:
        return [h for h, parent in enumerate(self._parents) if parent is None]

    def subtree(self, handle: int) -> List[int]:
        """Handles of ``handle`` and its descendants in depth-first pre-order."""
        self._check_handle(handle)
        order = []
        stack = [handle]
        while stack:
            current = stack.pop()
            order.append(current)
            stack.extend(reversed(self._children[current]))
        return order

    # Body
    def set_linked_body(self, handle: int, body: Optional[Body]):
        self.joint(handle).set_linked_body(body)
        self._invalidate()

    def linked_body(self, handle: int) -> Optional[Body]:
        return self.joint(handle).linked_body

    # Assembly
    def _invalidate(self):
        if self._model is not None:
            for joint in self._joints:
                joint._assign_ranks(None, None)
        self._model = None
        self._order = None
        self._index_of = None
        self._payload = None
        self._state = None

    @property
    def model(self) -> SkeletonModel:
        """Assembled model, rebuilt after any tree mutation.

        Body and bound arrays are refreshed from the joints on every access.
        The model object is replaced only when one of them changed.
        """
        if self._model is None:
            self._model = self._assemble()
            return self._model

        payload = self._read_payload()
        if any(not np.array_equal(payload[key], self._payload[key]) for key in payload):
            logger.debug("Skeleton '%s': bodies or bounds changed, refreshing model", self.name)
            self._payload = payload
            self._model = self._model.replace(
                **{key: jnp.asarray(value) for key, value in payload.items()})
        return self._model

    def invalidate(self):
        """Drop the assembled model and cached state."""
        self._invalidate()

    def _read_payload(self) -> dict:
        """Body and bound arrays of the joints, in traversal order."""
        num_joints = len(self._order)
        body_masses = np.zeros(num_joints)
        body_local_coms = np.zeros((num_joints, 3))
        bounded = np.zeros((num_joints, MAX_DOF), dtype=bool)
        lower = np.zeros((num_joints, MAX_DOF))
        upper = np.zeros((num_joints, MAX_DOF))

        for i, h in enumerate(self._order):
            joint = self._joints[h]
            body = joint.linked_body
            if body is not None:
                if body.mass < 0.0:
                    raise ValueError(f"Body '{body.name}' has negative mass {body.mass}")
                body_masses[i] = body.mass
                body_local_coms[i] = body.local_com

            for k in range(joint.number_dof):
                bounded[i, k] = joint.is_bounded(k)
                if bounded[i, k]:
                    lower[i, k] = joint.lower_bound(k)
                    upper[i, k] = joint.upper_bound(k)

        return {
            "body_masses": body_masses,
            "body_local_coms": body_local_coms,
            "bounded": bounded,
            "lower_bounds": lower,
            "upper_bounds": upper,
        }

    def _assemble(self) -> SkeletonModel:
        order = [h for root in self.roots() for h in self.subtree(root)]
        index_of = {h: i for i, h in enumerate(order)}
        num_joints = len(order)

        kinds = np.zeros(num_joints, dtype=np.int32)
        parent_indices = np.zeros(num_joints, dtype=np.int32)
        initial_positions = np.zeros((num_joints, 4, 4))
        axes = np.zeros((num_joints, 3))
        rank_q = np.zeros(num_joints, dtype=np.int32)
        rank_v = np.zeros(num_joints, dtype=np.int32)
        config_sizes = np.zeros(num_joints, dtype=np.int32)
        dofs = np.zeros(num_joints, dtype=np.int32)

        nq = 0
        nv = 0
        for i, h in enumerate(order):
            joint = self._joints[h]
            parent = self._parents[h]
            kinds[i] = int(joint.kind)
            parent_indices[i] = i if parent is None else index_of[parent]
            initial_positions[i] = joint.initial_position
            axes[i] = joint.axis
            rank_q[i] = nq
            rank_v[i] = nv
            config_sizes[i] = joint.config_size
            dofs[i] = joint.number_dof
            joint._assign_ranks(nq, nv)
            nq += joint.config_size
            nv += joint.number_dof

        ancestor_mask = np.zeros((num_joints, num_joints))
        for d in range(num_joints):
            j = d
            while True:
                ancestor_mask[d, j] = 1.0
                if parent_indices[j] == j:
                    break
                j = parent_indices[j]

        velocity_selector = np.zeros((num_joints, MAX_DOF, nv))
        for i in range(num_joints):
            for k in range(dofs[i]):
                velocity_selector[i, k, rank_v[i] + k] = 1.0

        logger.debug("Assembled skeleton '%s': %d joints, nq=%d, nv=%d",
                     self.name, num_joints, nq, nv)

        self._order = order
        self._index_of = index_of
        self._payload = self._read_payload()
        return SkeletonModel(
            joint_names=tuple(self._joints[h].name for h in order),
            nq=nq,
            nv=nv,
            kinds=jnp.asarray(kinds),
            parent_indices=jnp.asarray(parent_indices),
            initial_positions=jnp.asarray(initial_positions),
            axes=jnp.asarray(axes),
            rank_in_configuration=jnp.asarray(rank_q),
            rank_in_velocity=jnp.asarray(rank_v),
            config_sizes=jnp.asarray(config_sizes),
            ancestor_mask=jnp.asarray(ancestor_mask),
            velocity_selector=jnp.asarray(velocity_selector),
            **{key: jnp.asarray(value) for key, value in self._payload.items()},
        )

    def model_index(self, handle: int) -> int:
        """Index of a joint in the arrays of :attr:`model`."""
        self._check_handle(handle)
        if self._model is None:
            self._model = self._assemble()
        return self._index_of[handle]

    @property
    def config_size(self) -> int:
        return self.model.nq

    @property
    def number_dof(self) -> int:
        return self.model.nv

    def neutral_configuration(self) -> jax.Array:
        return neutral_configuration(self.model)

    # Cached kinematics
    def set_configuration(self, q):
        """Recompute positions, Jacobians and mass data for ``q``."""
        model = self.model
        q = jnp.asarray(q, dtype=jnp.float64)
        if q.shape != (model.nq,):
            raise ValueError(f"Configuration must have shape ({model.nq},), got {q.shape}")
        state = _compute_kinematics_jit(model, q)
        degenerate = np.asarray(state.positions.degenerate)
        for i in np.flatnonzero(degenerate):
            logger.warning(
                "Joint '%s': configuration slice has near-zero norm, using identity rotation",
                model.joint_names[i])
        self._state = state

    def _cached_state(self):
        """Last computed state, or the placeholder state while undefined."""
        if self._state is None:
            if self.strict:
                raise StaleCacheError(
                    f"Kinematics of skeleton '{self.name}' not computed, call set_configuration first")
            logger.debug("Skeleton '%s': reading kinematics before set_configuration", self.name)
            return zero_state(self.model)
        return self._state

    @property
    def is_computed(self) -> bool:
        """Whether cached quantities reflect a configuration."""
        return self._state is not None

    @property
    def configuration(self) -> jax.Array:
        return self._cached_state().configuration

    def current_transformation(self, handle: int) -> jax.Array:
        """World pose of a joint at the last configuration."""
        index = self.model_index(handle)
        return self._cached_state().positions.transforms[index]

    def jacobian(self, handle: int) -> jax.Array:
        """6 x nv Jacobian of a joint frame, angular rows first."""
        index = self.model_index(handle)
        return self._cached_state().jacobians[index]

    def mass(self, handle: int) -> float:
        """Mass of a joint's body and all its descendants' bodies."""
        index = self.model_index(handle)
        return float(self._cached_state().masses.mass[index])

    def mass_times_center_of_mass(self, handle: int) -> jax.Array:
        index = self.model_index(handle)
        return self._cached_state().masses.mass_times_com[index]

    def total_mass(self) -> float:
        return float(self._cached_state().masses.total_mass)

    def center_of_mass(self) -> jax.Array:
        return self._cached_state().masses.center_of_mass

    def com_jacobian(self) -> jax.Array:
        return self._cached_state().com_jacobian

    def display(self, handle: int) -> str:
        """Name, kind and current transform of a joint, for diagnostics."""
        joint = self.joint(handle)
        lines = [f"Joint {joint.name} ({joint.kind.name.lower()})"]
        if self._state is None:
            lines.append("  current transformation: not computed")
        else:
            T = np.asarray(self.current_transformation(handle))
            lines.append("  current transformation:")
            lines.extend("    " + " ".join(f"{v: .6f}" for v in row) for row in T)
        return "\n".join(lines)

    def __repr__(self):
        return f"Skeleton(name={self.name!r}, joints={len(self._joints)})"
