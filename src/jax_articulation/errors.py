"""Exceptions raised on joint and skeleton contract violations."""


class KinematicsError(Exception):
    """Base class of every error raised by jax_articulation."""


class JointIndexError(KinematicsError, IndexError):
    """A joint handle or child rank outside the valid range."""


class DofIndexError(KinematicsError, IndexError):
    """A degree-of-freedom rank outside 0..number_dof-1."""


class InvalidTreeError(KinematicsError, ValueError):
    """A tree mutation that would re-parent a joint or create a cycle."""


class UnboundedDofError(KinematicsError, ValueError):
    """A bound value was read for a degree of freedom that is not bounded."""


class StaleCacheError(KinematicsError, RuntimeError):
    """Cached kinematic quantities were read before being computed."""
