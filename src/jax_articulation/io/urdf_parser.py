"""URDF parser building a Skeleton of joints.

Each URDF joint becomes one :class:`~jax_articulation.core.Joint`; the root
link becomes an anchor joint named after it. The inertial data of a link is
attached as a :class:`~jax_articulation.core.Body` to the joint that moves it.
"""

from collections import deque
from logging import getLogger
from typing import Dict, Optional

import numpy as np
from lxml import etree

from jax_articulation.core import Body, Joint, JointKind, Skeleton

logger = getLogger(__name__)

_JOINT_KINDS = {
    'revolute': JointKind.ROTATION,
    'continuous': JointKind.ROTATION,
    'prismatic': JointKind.TRANSLATION,
    'fixed': JointKind.ANCHOR,
    # Not part of the URDF standard, accepted by several exporters.
    'spherical': JointKind.SPHERICAL,
    'ball': JointKind.SPHERICAL,
}

_BOUNDED_TYPES = ('revolute', 'prismatic')


def load_urdf(urdf_path: str) -> Skeleton:
    """Load a URDF file into a Skeleton.

    Args:
        urdf_path: Path to the URDF file to load.

    Returns:
        Skeleton: joints attached in breadth-first order from the root link.

    Raises:
        ValueError: if the file has no single root link or uses a joint type
            without a joint kind (``floating``, ``planar``), or if the root
            link name is also used by a joint.
    """
    tree = etree.parse(urdf_path)
    root = tree.getroot()

    links: Dict[str, etree._Element] = {}
    for link in root.findall('link'):
        links[link.get('name')] = link

    # Collect joints and build parent-child relationships
    joints_by_parent: Dict[str, list] = {}
    child_links = set()
    for joint in root.findall('joint'):
        parent_elem = joint.find('parent')
        child_elem = joint.find('child')
        if parent_elem is None or child_elem is None:
            logger.warning("Skipping joint '%s' without parent or child link", joint.get('name'))
            continue
        joints_by_parent.setdefault(parent_elem.get('link'), []).append(joint)
        child_links.add(child_elem.get('link'))

    root_links = set(links) - child_links
    if len(root_links) != 1:
        raise ValueError(f"Expected exactly one root link, found: {root_links}")
    root_link = root_links.pop()

    # The root anchor is named after the root link and shares the joint namespace.
    if any(joint.get('name') == root_link for joint in root.findall('joint')):
        raise ValueError(
            f"Root link '{root_link}' has the same name as a joint; "
            f"the root anchor joint would clash with it")

    skeleton = Skeleton(name=root.get('name', root_link))
    root_joint = Joint.anchor(root_link)
    root_joint.set_linked_body(_parse_body(root_link, links.get(root_link)))
    root_handle = skeleton.add_joint(root_joint)

    # handle of the joint that moves each link
    link_handles = {root_link: root_handle}
    queue = deque([root_link])
    while queue:
        current_link = queue.popleft()
        for joint_elem in joints_by_parent.get(current_link, []):
            child_link = joint_elem.find('child').get('link')
            joint = _parse_joint(joint_elem)
            joint.set_linked_body(_parse_body(child_link, links.get(child_link)))
            handle = skeleton.add_joint(joint)
            skeleton.add_child_joint(link_handles[current_link], handle)
            link_handles[child_link] = handle
            queue.append(child_link)

    logger.debug("Loaded '%s': %d joints from %s", skeleton.name, len(skeleton), urdf_path)
    return skeleton


def _parse_joint(joint_elem) -> Joint:
    name = joint_elem.get('name')
    joint_type = joint_elem.get('type')
    if joint_type not in _JOINT_KINDS:
        raise ValueError(f"Joint '{name}' has unsupported type '{joint_type}'")

    initial_position = _parse_origin(joint_elem.find('origin'))

    axis_elem = joint_elem.find('axis')
    axis = _parse_vector(axis_elem.get('xyz') if axis_elem is not None else None, '1 0 0')

    joint = Joint(name, _JOINT_KINDS[joint_type], initial_position, axis)

    if joint_type in _BOUNDED_TYPES:
        limit_elem = joint_elem.find('limit')
        if limit_elem is None:
            logger.warning("Joint '%s' of type %s has no limit element, left unbounded",
                           name, joint_type)
        else:
            joint.set_bounds(0, float(limit_elem.get('lower', 0.0)),
                             float(limit_elem.get('upper', 0.0)))
    return joint


def _parse_body(link_name: str, link_elem) -> Optional[Body]:
    if link_elem is None:
        return None
    inertial = link_elem.find('inertial')
    if inertial is None:
        return None
    mass_elem = inertial.find('mass')
    mass = float(mass_elem.get('value', 0.0)) if mass_elem is not None else 0.0
    origin = inertial.find('origin')
    local_com = _parse_vector(origin.get('xyz') if origin is not None else None, '0 0 0')
    return Body(link_name, mass, local_com)


def _parse_vector(text: Optional[str], default: str) -> np.ndarray:
    return np.array([float(x) for x in (text or default).split()])


def _parse_origin(origin_elem) -> np.ndarray:
    """4x4 transform of an ``origin`` element, identity when absent."""
    transform = np.eye(4)
    if origin_elem is None:
        return transform
    transform[:3, :3] = _rpy_to_rotation_matrix(_parse_vector(origin_elem.get('rpy'), '0 0 0'))
    transform[:3, 3] = _parse_vector(origin_elem.get('xyz'), '0 0 0')
    return transform


def _rpy_to_rotation_matrix(rpy: np.ndarray) -> np.ndarray:
    """Convert roll-pitch-yaw angles to rotation matrix.

    Args:
        rpy: Array of [roll, pitch, yaw] angles in radians.

    Returns:
        3x3 rotation matrix R = R_z(yaw) @ R_y(pitch) @ R_x(roll).
    """
    roll, pitch, yaw = rpy
    cr, sr = np.cos(roll), np.sin(roll)
    cp, sp = np.cos(pitch), np.sin(pitch)
    cy, sy = np.cos(yaw), np.sin(yaw)

    R_x = np.array([[1, 0, 0], [0, cr, -sr], [0, sr, cr]])
    R_y = np.array([[cp, 0, sp], [0, 1, 0], [-sp, 0, cp]])
    R_z = np.array([[cy, -sy, 0], [sy, cy, 0], [0, 0, 1]])

    return R_z @ R_y @ R_x
