"""
JAX Articulation: kinematic trees of joints for robotics.

This library propagates joint transforms, geometric Jacobians and
mass / center-of-mass data through a tree of joints, using JIT-compilable
JAX implementations.
"""

import jax
jax.config.update("jax_enable_x64", True)

from . import transforms
from . import core
from . import chain
from . import io
from .core import Body, Joint, JointKind, Skeleton, SkeletonModel
from .errors import (
    DofIndexError,
    InvalidTreeError,
    JointIndexError,
    KinematicsError,
    StaleCacheError,
    UnboundedDofError,
)

__version__ = "0.1.0"
__all__ = [
    "transforms",
    "core",
    "chain",
    "io",
    "Body",
    "Joint",
    "JointKind",
    "Skeleton",
    "SkeletonModel",
    "KinematicsError",
    "JointIndexError",
    "DofIndexError",
    "InvalidTreeError",
    "UnboundedDofError",
    "StaleCacheError",
]
