"""Host-side joint description.

A :class:`Joint` maps a slice of the configuration vector to a rigid
transform relative to its parent joint. The mapping itself is evaluated by the
pure functions of :mod:`jax_articulation.core.joint_kinds`; this module only
stores the static data the skeleton packs into a
:class:`~jax_articulation.core.skeleton_model.SkeletonModel`.
"""

import enum
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from ..errors import DofIndexError, UnboundedDofError


class JointKind(enum.IntEnum):
    """Closed set of joint kinds.

    The integer value indexes the dispatch tables of
    :mod:`jax_articulation.core.joint_kinds`.
    """
    ANCHOR = 0
    SPHERICAL = 1
    ROTATION = 2
    TRANSLATION = 3

    @property
    def config_size(self) -> int:
        return _CONFIG_SIZES[self]

    @property
    def number_dof(self) -> int:
        return _NUMBER_DOF[self]


_CONFIG_SIZES = {
    JointKind.ANCHOR: 0,
    JointKind.SPHERICAL: 4,
    JointKind.ROTATION: 1,
    JointKind.TRANSLATION: 1,
}

_NUMBER_DOF = {
    JointKind.ANCHOR: 0,
    JointKind.SPHERICAL: 3,
    JointKind.ROTATION: 1,
    JointKind.TRANSLATION: 1,
}

# Upper bound of number_dof over all kinds; model arrays are padded to it.
MAX_DOF = max(_NUMBER_DOF.values())
MAX_CONFIG_SIZE = max(_CONFIG_SIZES.values())


@dataclass
class Body:
    """Mass payload attached to a joint.

    Attributes:
        name: Body name, usually the link name.
        mass: Mass in kilograms.
        local_com: Center of mass expressed in the joint frame.
    """
    name: str
    mass: float = 0.0
    local_com: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        if self.mass < 0.0:
            raise ValueError(f"Body '{self.name}' has negative mass {self.mass}")
        self.local_com = np.asarray(self.local_com, dtype=np.float64).reshape(3)


class Joint:
    """Static description of one joint of a kinematic tree.

    Ranks in the configuration and velocity vectors are assigned by the owning
    :class:`~jax_articulation.core.skeleton.Skeleton` when it assembles its
    model; they are ``None`` until then.

    Args:
        name: Unique joint name.
        kind: Joint kind.
        initial_position: 4x4 pose relative to the parent joint frame when the
            joint input is the identity element.
        axis: Motion axis for rotation and translation joints, expressed in
            the joint frame at zero configuration. Normalized on construction.
    """

    def __init__(self, name: str, kind: JointKind,
                 initial_position: Optional[np.ndarray] = None,
                 axis: Sequence[float] = (1.0, 0.0, 0.0)):
        self.name = name
        self.kind = JointKind(kind)
        if initial_position is None:
            initial_position = np.eye(4)
        initial_position = np.asarray(initial_position, dtype=np.float64)
        if initial_position.shape != (4, 4):
            raise ValueError(f"initial_position must have shape (4, 4), got {initial_position.shape}")
        self.initial_position = initial_position

        axis = np.asarray(axis, dtype=np.float64).reshape(3)
        norm = np.linalg.norm(axis)
        if self.kind in (JointKind.ROTATION, JointKind.TRANSLATION) and norm < 1e-12:
            raise ValueError(f"Joint '{name}' needs a non-zero axis")
        self.axis = axis / norm if norm > 0.0 else axis

        dof = self.number_dof
        self._bounded = np.zeros(dof, dtype=bool)
        self._lower = np.zeros(dof)
        self._upper = np.zeros(dof)

        self._linked_body: Optional[Body] = None
        self._rank_in_configuration: Optional[int] = None
        self._rank_in_velocity: Optional[int] = None

    # Constructors
    @classmethod
    def anchor(cls, name: str, initial_position=None) -> "Joint":
        """Joint without degree of freedom, a fixed frame in the chain."""
        return cls(name, JointKind.ANCHOR, initial_position)

    @classmethod
    def spherical(cls, name: str, initial_position=None) -> "Joint":
        """Joint mapping a unit quaternion (w, x, y, z) to a rotation."""
        return cls(name, JointKind.SPHERICAL, initial_position)

    @classmethod
    def rotation(cls, name: str, initial_position=None, axis=(1.0, 0.0, 0.0),
                 bounds=None) -> "Joint":
        """Joint mapping an angle to a rotation about ``axis``.

        Without ``bounds`` the joint is circular (unbounded).
        """
        joint = cls(name, JointKind.ROTATION, initial_position, axis)
        if bounds is not None:
            joint.set_bounds(0, *bounds)
        return joint

    @classmethod
    def translation(cls, name: str, initial_position=None, axis=(1.0, 0.0, 0.0),
                    bounds=None) -> "Joint":
        """Joint mapping a length to a translation along ``axis``."""
        joint = cls(name, JointKind.TRANSLATION, initial_position, axis)
        if bounds is not None:
            joint.set_bounds(0, *bounds)
        return joint

    # Shape
    @property
    def config_size(self) -> int:
        return self.kind.config_size

    @property
    def number_dof(self) -> int:
        return self.kind.number_dof

    @property
    def rank_in_configuration(self) -> Optional[int]:
        return self._rank_in_configuration

    @property
    def rank_in_velocity(self) -> Optional[int]:
        return self._rank_in_velocity

    @property
    def configuration_range(self) -> Optional[slice]:
        """Slice of the configuration vector read by this joint."""
        if self._rank_in_configuration is None:
            return None
        return slice(self._rank_in_configuration,
                     self._rank_in_configuration + self.config_size)

    @property
    def velocity_range(self) -> Optional[slice]:
        """Slice of the velocity vector (Jacobian columns) owned by this joint."""
        if self._rank_in_velocity is None:
            return None
        return slice(self._rank_in_velocity, self._rank_in_velocity + self.number_dof)

    def _assign_ranks(self, rank_in_configuration: Optional[int],
                      rank_in_velocity: Optional[int]):
        self._rank_in_configuration = rank_in_configuration
        self._rank_in_velocity = rank_in_velocity

    # Body
    @property
    def linked_body(self) -> Optional[Body]:
        return self._linked_body

    def set_linked_body(self, body: Optional[Body]):
        self._linked_body = body

    # Bounds
    def _check_rank(self, rank: int):
        if not 0 <= rank < self.number_dof:
            raise DofIndexError(
                f"Joint '{self.name}' has {self.number_dof} degrees of freedom, "
                f"got rank {rank}")

    def is_bounded(self, rank: int) -> bool:
        self._check_rank(rank)
        return bool(self._bounded[rank])

    def set_bounded(self, rank: int, bounded: bool):
        self._check_rank(rank)
        self._bounded[rank] = bool(bounded)

    def lower_bound(self, rank: int) -> float:
        self._check_rank(rank)
        if not self._bounded[rank]:
            raise UnboundedDofError(
                f"Degree of freedom {rank} of joint '{self.name}' is not bounded")
        return float(self._lower[rank])

    def upper_bound(self, rank: int) -> float:
        self._check_rank(rank)
        if not self._bounded[rank]:
            raise UnboundedDofError(
                f"Degree of freedom {rank} of joint '{self.name}' is not bounded")
        return float(self._upper[rank])

    def set_lower_bound(self, rank: int, value: float):
        self._check_rank(rank)
        self._lower[rank] = float(value)

    def set_upper_bound(self, rank: int, value: float):
        self._check_rank(rank)
        self._upper[rank] = float(value)

    def set_bounds(self, rank: int, lower: float, upper: float):
        """Flag ``rank`` as bounded and set both of its bounds."""
        self.set_bounded(rank, True)
        self.set_lower_bound(rank, lower)
        self.set_upper_bound(rank, upper)

    def __repr__(self):
        return f"Joint(name={self.name!r}, kind={self.kind.name})"
