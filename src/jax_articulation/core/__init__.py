"""Joint tree data structures for JAX Articulation.

This module provides the host-side joint description, the per-kind joint
rules, the immutable model consumed by the propagation passes, and the
skeleton that assembles it.
"""

from .joint import Body, Joint, JointKind
from .skeleton_model import SkeletonModel
from .skeleton import Skeleton

__all__ = ["Body", "Joint", "JointKind", "SkeletonModel", "Skeleton"]
