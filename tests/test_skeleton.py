"""Tests for the Skeleton arena, joint bounds and cached kinematics."""

import logging

import jax.numpy as jnp
import numpy as np
import pytest

from jax_articulation import (
    Body,
    DofIndexError,
    InvalidTreeError,
    Joint,
    JointIndexError,
    JointKind,
    Skeleton,
    StaleCacheError,
    UnboundedDofError,
)


def _chain(*joints):
    """Skeleton with the given joints attached in a single chain."""
    skeleton = Skeleton()
    handles = [skeleton.add_joint(joint) for joint in joints]
    for parent, child in zip(handles, handles[1:]):
        skeleton.add_child_joint(parent, child)
    return skeleton, handles


# Joint shape
@pytest.mark.parametrize("factory, kind, config_size, number_dof", [
    (Joint.anchor, JointKind.ANCHOR, 0, 0),
    (Joint.spherical, JointKind.SPHERICAL, 4, 3),
    (Joint.rotation, JointKind.ROTATION, 1, 1),
    (Joint.translation, JointKind.TRANSLATION, 1, 1),
])
def test_joint_shape(factory, kind, config_size, number_dof):
    """Each kind consumes a fixed slice of the configuration and velocity vectors."""
    joint = factory("joint")
    assert joint.kind == kind
    assert joint.config_size == config_size
    assert joint.number_dof == number_dof
    np.testing.assert_array_equal(joint.initial_position, np.eye(4))
    assert joint.rank_in_configuration is None
    assert joint.configuration_range is None


def test_axis_is_normalized():
    joint = Joint.rotation("joint", axis=(0.0, 3.0, 4.0))
    np.testing.assert_allclose(joint.axis, [0.0, 0.6, 0.8])


def test_zero_axis_is_rejected():
    with pytest.raises(ValueError, match="non-zero axis"):
        Joint.translation("joint", axis=(0.0, 0.0, 0.0))


def test_bad_initial_position_is_rejected():
    with pytest.raises(ValueError, match="initial_position"):
        Joint.anchor("joint", np.eye(3))


# Bounds
def test_bounds_round_trip():
    """Bounds read back as set once the degree of freedom is flagged."""
    joint = Joint.spherical("joint")
    joint.set_bounded(1, True)
    joint.set_lower_bound(1, -0.5)
    joint.set_upper_bound(1, 0.25)

    assert joint.is_bounded(1)
    assert joint.lower_bound(1) == -0.5
    assert joint.upper_bound(1) == 0.25
    assert not joint.is_bounded(0)
    assert not joint.is_bounded(2)


def test_bounds_from_constructor():
    joint = Joint.translation("slider", bounds=(0.0, 2.0))
    assert joint.is_bounded(0)
    assert joint.lower_bound(0) == 0.0
    assert joint.upper_bound(0) == 2.0


def test_rotation_joint_is_unbounded_by_default():
    joint = Joint.rotation("wheel")
    assert not joint.is_bounded(0)


def test_reading_unbounded_dof_fails():
    joint = Joint.rotation("wheel")
    with pytest.raises(UnboundedDofError):
        joint.lower_bound(0)
    with pytest.raises(UnboundedDofError):
        joint.upper_bound(0)


def test_unflagging_hides_bounds():
    """Clearing the flag makes stored values unreadable again."""
    joint = Joint.translation("slider", bounds=(0.0, 2.0))
    joint.set_bounded(0, False)
    with pytest.raises(UnboundedDofError):
        joint.lower_bound(0)


@pytest.mark.parametrize("rank", [-1, 1, 5])
def test_bound_rank_out_of_range(rank):
    joint = Joint.rotation("joint")
    with pytest.raises(DofIndexError):
        joint.is_bounded(rank)
    with pytest.raises(DofIndexError):
        joint.set_bounded(rank, True)
    with pytest.raises(DofIndexError):
        joint.set_lower_bound(rank, 0.0)


def test_anchor_has_no_bounds():
    with pytest.raises(DofIndexError):
        Joint.anchor("anchor").is_bounded(0)


def test_bounds_in_model():
    skeleton, handles = _chain(Joint.rotation("a", bounds=(-1.0, 1.0)), Joint.spherical("b"))
    skeleton.joint(handles[1]).set_bounds(2, -0.3, 0.3)
    skeleton.invalidate()
    model = skeleton.model

    np.testing.assert_array_equal(model.bounded, [[True, False, False], [False, False, True]])
    np.testing.assert_allclose(model.lower_bounds[0, 0], -1.0)
    np.testing.assert_allclose(model.upper_bounds[1, 2], 0.3)


# Kinematic tree
def test_children_in_attach_order():
    skeleton = Skeleton()
    root = skeleton.add_joint(Joint.anchor("root"))
    children = [skeleton.add_joint(Joint.rotation(f"child{i}")) for i in range(3)]
    for child in reversed(children):
        skeleton.add_child_joint(root, child)

    assert skeleton.number_child_joints(root) == 3
    assert [skeleton.child_joint(root, rank) for rank in range(3)] == list(reversed(children))
    for rank, child in enumerate(reversed(children)):
        assert skeleton.parent_joint(child) == root
        assert skeleton.rank_in_parent(child) == rank
    assert skeleton.parent_joint(root) is None
    assert skeleton.rank_in_parent(root) is None
    assert skeleton.roots() == [root]


def test_child_rank_out_of_range():
    skeleton, handles = _chain(Joint.anchor("root"), Joint.rotation("child"))
    with pytest.raises(JointIndexError):
        skeleton.child_joint(handles[0], 1)
    with pytest.raises(JointIndexError):
        skeleton.child_joint(handles[1], 0)


def test_unknown_handle():
    skeleton, _ = _chain(Joint.anchor("root"))
    with pytest.raises(JointIndexError):
        skeleton.parent_joint(3)
    with pytest.raises(JointIndexError):
        skeleton.add_child_joint(0, 3)
    with pytest.raises(JointIndexError):
        skeleton.handle("missing")


def test_attaching_parented_joint_fails_without_mutation():
    skeleton = Skeleton()
    a = skeleton.add_joint(Joint.anchor("a"))
    b = skeleton.add_joint(Joint.anchor("b"))
    c = skeleton.add_joint(Joint.rotation("c"))
    skeleton.add_child_joint(a, c)

    with pytest.raises(InvalidTreeError, match="already has parent"):
        skeleton.add_child_joint(b, c)

    assert skeleton.parent_joint(c) == a
    assert skeleton.number_child_joints(a) == 1
    assert skeleton.number_child_joints(b) == 0


def test_cycles_are_refused():
    skeleton, (a, b, c) = _chain(Joint.anchor("a"), Joint.rotation("b"), Joint.rotation("c"))
    with pytest.raises(InvalidTreeError, match="cycle"):
        skeleton.add_child_joint(c, a)
    with pytest.raises(InvalidTreeError, match="cycle"):
        skeleton.add_child_joint(a, a)
    assert skeleton.number_child_joints(c) == 0
    assert skeleton.roots() == [a]


def test_joint_added_twice_is_refused():
    skeleton = Skeleton()
    joint = Joint.anchor("a")
    skeleton.add_joint(joint)
    with pytest.raises(InvalidTreeError):
        skeleton.add_joint(joint)
    with pytest.raises(InvalidTreeError, match="already has a joint named"):
        skeleton.add_joint(Joint.rotation("a"))


def test_detach_keeps_subtree():
    skeleton, (a, b, c) = _chain(Joint.anchor("a"), Joint.rotation("b"), Joint.rotation("c"))
    skeleton.detach(b)

    assert skeleton.parent_joint(b) is None
    assert skeleton.number_child_joints(a) == 0
    assert skeleton.child_joint(b, 0) == c
    assert skeleton.roots() == [a, b]

    # A detached joint can be attached again
    skeleton.add_child_joint(a, b)
    assert skeleton.parent_joint(b) == a
    skeleton.detach(a)
    assert skeleton.roots() == [a]


# Assembly
def test_ranks_follow_depth_first_order():
    skeleton = Skeleton()
    base = skeleton.add_joint(Joint.anchor("base"))
    ball = skeleton.add_joint(Joint.spherical("ball"))
    left = skeleton.add_joint(Joint.rotation("left"))
    right = skeleton.add_joint(Joint.translation("right"))
    tip = skeleton.add_joint(Joint.rotation("tip"))
    skeleton.add_child_joint(base, ball)
    skeleton.add_child_joint(ball, right)
    skeleton.add_child_joint(ball, left)
    skeleton.add_child_joint(right, tip)

    model = skeleton.model
    assert model.joint_names == ("base", "ball", "right", "tip", "left")
    assert model.nq == 7
    assert model.nv == 6
    np.testing.assert_array_equal(model.parent_indices, [0, 0, 1, 2, 1])

    expected = {"base": (0, 0), "ball": (0, 0), "right": (4, 3), "tip": (5, 4), "left": (6, 5)}
    for name, (rank_q, rank_v) in expected.items():
        joint = skeleton.joint(skeleton.handle(name))
        assert (joint.rank_in_configuration, joint.rank_in_velocity) == (rank_q, rank_v)
    assert skeleton.joint(ball).configuration_range == slice(0, 4)
    assert skeleton.joint(right).velocity_range == slice(3, 4)
    assert skeleton.config_size == 7
    assert skeleton.number_dof == 6

    np.testing.assert_array_equal(model.ancestor_mask[3], [1, 1, 1, 1, 0])
    np.testing.assert_array_equal(model.ancestor_mask[4], [1, 1, 0, 0, 1])


def test_mutation_reassigns_ranks():
    skeleton, (a, b) = _chain(Joint.rotation("a"), Joint.rotation("b"))
    skeleton.model
    c = skeleton.add_joint(Joint.rotation("c"))
    assert skeleton.joint(a).rank_in_configuration is None
    skeleton.add_child_joint(a, c)
    skeleton.model
    assert skeleton.joint(b).rank_in_velocity == 1
    assert skeleton.joint(c).rank_in_velocity == 2

    skeleton.detach(b)
    skeleton.model
    assert skeleton.joint(c).rank_in_velocity == 1
    assert skeleton.joint(b).rank_in_velocity == 2
    assert skeleton.model.joint_names == ("a", "c", "b")


def test_model_is_cached_until_mutation():
    skeleton, (a,) = _chain(Joint.rotation("a"))
    assert skeleton.model is skeleton.model
    model = skeleton.model
    skeleton.add_child_joint(a, skeleton.add_joint(Joint.anchor("b")))
    assert skeleton.model is not model


# Cached kinematics
def test_cache_reads_before_computation_are_placeholders():
    """Before any pass, readers return identity transforms and zeros."""
    skeleton, (a, b) = _chain(Joint.rotation("a"), Joint.translation("b"))
    skeleton.set_linked_body(b, Body("slider", 1.0))

    assert not skeleton.is_computed
    np.testing.assert_array_equal(skeleton.current_transformation(b), np.eye(4))
    np.testing.assert_array_equal(skeleton.jacobian(b), np.zeros((6, 2)))
    assert skeleton.mass(a) == 0.0
    assert skeleton.total_mass() == 0.0
    np.testing.assert_array_equal(skeleton.center_of_mass(), np.zeros(3))
    np.testing.assert_array_equal(skeleton.com_jacobian(), np.zeros((3, 2)))
    np.testing.assert_array_equal(skeleton.configuration, np.zeros(2))


def test_strict_cache_reads_before_computation_fail():
    skeleton = Skeleton(strict=True)
    a = skeleton.add_joint(Joint.rotation("a"))
    b = skeleton.add_joint(Joint.translation("b"))
    skeleton.add_child_joint(a, b)
    with pytest.raises(StaleCacheError):
        skeleton.current_transformation(b)
    with pytest.raises(StaleCacheError):
        skeleton.jacobian(b)
    with pytest.raises(StaleCacheError):
        skeleton.mass(a)
    with pytest.raises(StaleCacheError):
        skeleton.com_jacobian()

    skeleton.set_configuration(jnp.zeros(2))
    skeleton.detach(b)
    with pytest.raises(StaleCacheError):
        skeleton.current_transformation(b)


def test_mutation_invalidates_cache():
    skeleton, (a, b) = _chain(Joint.rotation("a"), Joint.translation("b", axis=(0, 0, 1)))
    skeleton.set_configuration(jnp.array([0.0, 0.5]))
    np.testing.assert_allclose(skeleton.current_transformation(b)[:3, 3], [0.0, 0.0, 0.5])
    assert skeleton.is_computed

    skeleton.detach(b)
    assert not skeleton.is_computed
    np.testing.assert_array_equal(skeleton.current_transformation(b), np.eye(4))


def test_body_linked_through_joint_is_seen():
    """Attaching a body directly on the Joint after a pass is picked up."""
    skeleton, (a,) = _chain(Joint.rotation("a"))
    skeleton.set_configuration(jnp.zeros(1))
    assert skeleton.total_mass() == 0.0

    skeleton.joint(a).set_linked_body(Body("link", 2.0, [0.0, 0.0, 1.0]))
    skeleton.set_configuration(jnp.zeros(1))

    assert skeleton.total_mass() == pytest.approx(2.0)
    np.testing.assert_allclose(skeleton.center_of_mass(), [0.0, 0.0, 1.0])


def test_body_edited_in_place_is_seen():
    """Changing a Body's mass or center of mass after assembly is picked up."""
    skeleton, (a, b) = _chain(Joint.rotation("a", axis=(0, 0, 1)), Joint.translation("b"))
    body = Body("link", 2.0)
    skeleton.set_linked_body(b, body)
    skeleton.set_configuration(jnp.zeros(2))
    assert skeleton.total_mass() == pytest.approx(2.0)

    body.mass = 5.0
    body.local_com = np.array([1.0, 0.0, 0.0])
    skeleton.set_configuration(jnp.zeros(2))

    assert skeleton.total_mass() == pytest.approx(5.0)
    assert skeleton.mass(a) == pytest.approx(5.0)
    np.testing.assert_allclose(skeleton.center_of_mass(), [1.0, 0.0, 0.0])
    np.testing.assert_allclose(skeleton.com_jacobian(), [[0.0, 1.0], [1.0, 0.0], [0.0, 0.0]], atol=1e-12)


def test_negative_mass_edit_is_rejected():
    skeleton, (a,) = _chain(Joint.rotation("a"))
    body = Body("link", 1.0)
    skeleton.set_linked_body(a, body)
    skeleton.model
    body.mass = -1.0
    with pytest.raises(ValueError, match="negative mass"):
        skeleton.set_configuration(jnp.zeros(1))


def test_bound_edits_reach_model_without_invalidate():
    skeleton, (a,) = _chain(Joint.translation("a"))
    assert not bool(skeleton.model.bounded[0, 0])
    skeleton.joint(a).set_bounds(0, -0.1, 0.4)
    assert bool(skeleton.model.bounded[0, 0])
    np.testing.assert_allclose(skeleton.model.upper_bounds[0, 0], 0.4)


def test_model_unchanged_without_edits():
    skeleton, (a,) = _chain(Joint.rotation("a"))
    skeleton.set_linked_body(a, Body("link", 1.0))
    model = skeleton.model
    assert skeleton.model is model
    assert skeleton.model.config_sizes.tolist() == [1]



def test_set_configuration():
    """Cached quantities match the two-joint scenario."""
    skeleton, (root, child) = _chain(Joint.rotation("root", axis=(0, 0, 1)),
                                     Joint.translation("child", axis=(1, 0, 0)))
    skeleton.set_linked_body(root, Body("disc", 2.0))
    skeleton.set_linked_body(child, Body("slider", 1.0, [0.0, 0.0, 0.5]))
    skeleton.set_configuration(np.array([np.pi / 2, 1.0]))

    np.testing.assert_allclose(skeleton.configuration, [np.pi / 2, 1.0])
    T = skeleton.current_transformation(child)
    np.testing.assert_allclose(T[:3, 3], [0.0, 1.0, 0.0], atol=1e-12)
    np.testing.assert_allclose(skeleton.jacobian(child)[:, 0], [0.0, 0.0, 1.0, -1.0, 0.0, 0.0], atol=1e-12)

    assert skeleton.mass(child) == pytest.approx(1.0)
    assert skeleton.mass(root) == pytest.approx(3.0)
    assert skeleton.total_mass() == pytest.approx(3.0)
    np.testing.assert_allclose(skeleton.mass_times_center_of_mass(root), [0.0, 1.0, 0.5], atol=1e-12)
    np.testing.assert_allclose(skeleton.center_of_mass(), [0.0, 1.0 / 3.0, 0.5 / 3.0], atol=1e-12)
    np.testing.assert_allclose(skeleton.com_jacobian(), [[-1.0 / 3.0, 0.0], [0.0, 1.0 / 3.0], [0.0, 0.0]],
                               atol=1e-12)


def test_set_configuration_checks_size():
    skeleton, _ = _chain(Joint.spherical("ball"))
    with pytest.raises(ValueError, match="Configuration must have shape"):
        skeleton.set_configuration(np.zeros(3))


def test_neutral_configuration():
    skeleton, _ = _chain(Joint.rotation("a"), Joint.spherical("b"), Joint.translation("c"))
    np.testing.assert_array_equal(skeleton.neutral_configuration(), [0.0, 1.0, 0.0, 0.0, 0.0, 0.0])


def test_degenerate_quaternion_is_logged(caplog):
    skeleton, (ball, arm) = _chain(Joint.spherical("ball"), Joint.translation("arm", axis=(0, 0, 1)))
    with caplog.at_level(logging.WARNING, logger="jax_articulation"):
        skeleton.set_configuration(np.array([0.0, 0.0, 0.0, 0.0, 0.5]))

    assert "ball" in caplog.text
    np.testing.assert_allclose(skeleton.current_transformation(arm)[:3, 3], [0.0, 0.0, 0.5])


def test_linked_body():
    skeleton, (a,) = _chain(Joint.rotation("a"))
    assert skeleton.linked_body(a) is None
    body = Body("link", 1.0)
    skeleton.set_linked_body(a, body)
    assert skeleton.linked_body(a) is body


def test_negative_body_mass_is_rejected():
    with pytest.raises(ValueError, match="negative mass"):
        Body("link", -1.0)


def test_display():
    skeleton, (a, b) = _chain(Joint.rotation("shoulder"), Joint.translation("slider"))
    assert "not computed" in skeleton.display(b)
    skeleton.set_configuration(np.array([0.0, 0.25]))
    text = skeleton.display(b)
    assert text.startswith("Joint slider (translation)")
    assert "0.250000" in text
