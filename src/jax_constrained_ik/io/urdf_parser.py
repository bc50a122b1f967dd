"""URDF loader producing chain descriptions.

This module turns a URDF document into a ``ChainDescription`` (joint types,
origins, axes and position limits) and, for convenience, straight into a
``ChainModel`` between two links.
"""

import logging
from typing import List, Optional

import jax.numpy as jnp
import numpy as np
from lxml import etree

from jax_constrained_ik.core.chain_model import (
    ChainDescription,
    ChainModel,
    JointDescription,
    build_chain,
)
from jax_constrained_ik.errors import InvalidChainError
from jax_constrained_ik.transforms import se3

logger = logging.getLogger(__name__)


def _floats(text: Optional[str], default: str) -> np.ndarray:
    return np.array([float(x) for x in (text or default).split()])


def _origin(joint_elem) -> np.ndarray:
    origin_elem = joint_elem.find('origin')
    if origin_elem is None:
        return np.eye(4)
    xyz = _floats(origin_elem.get('xyz'), '0 0 0')
    rpy = _floats(origin_elem.get('rpy'), '0 0 0')
    return np.asarray(se3.from_xyz_rpy(jnp.asarray(xyz), jnp.asarray(rpy)))


def _limit(limit_elem, attribute: str) -> Optional[float]:
    if limit_elem is None or limit_elem.get(attribute) is None:
        return None
    return float(limit_elem.get(attribute))


def parse_urdf(root) -> ChainDescription:
    """Build a ``ChainDescription`` from a parsed URDF ``<robot>`` element."""
    link_names = [link.get('name') for link in root.findall('link')]
    if not link_names:
        raise InvalidChainError("Invalid URDF: no <link> elements")

    joints: List[JointDescription] = []
    child_links = set()
    for joint in root.findall('joint'):
        parent_elem = joint.find('parent')
        child_elem = joint.find('child')
        if parent_elem is None or child_elem is None:
            raise InvalidChainError(f"Joint '{joint.get('name')}' is missing a parent or child link")

        joint_type = joint.get('type')
        axis_elem = joint.find('axis')
        axis = _floats(None if axis_elem is None else axis_elem.get('xyz'), '1 0 0')
        limit_elem = joint.find('limit')

        lower, upper = _limit(limit_elem, 'lower'), _limit(limit_elem, 'upper')
        # URDF lets revolute/prismatic limits default to zero once <limit> is present.
        if limit_elem is not None and joint_type != 'continuous':
            lower = 0.0 if lower is None else lower
            upper = 0.0 if upper is None else upper

        child_links.add(child_elem.get('link'))
        joints.append(JointDescription(
            name=joint.get('name'),
            joint_type=joint_type,
            parent=parent_elem.get('link'),
            child=child_elem.get('link'),
            origin=_origin(joint),
            axis=axis,
            lower=lower,
            upper=upper,
        ))

    # Find root link (not a child of any joint)
    root_links = [name for name in link_names if name not in child_links]
    if len(root_links) != 1:
        raise InvalidChainError(f"Expected exactly one root link, found: {root_links}")

    return ChainDescription(root=root_links[0], joints=tuple(joints))


def load_urdf(urdf_path: str) -> ChainDescription:
    """Load a URDF file into a ``ChainDescription``.

    Args:
        urdf_path: Path to the URDF file to load.

    Returns:
        ChainDescription: Root link plus every joint of the robot.
    """
    try:
        tree = etree.parse(urdf_path)
    except (OSError, etree.XMLSyntaxError) as exc:
        logger.error("Failed to read URDF '%s': %s", urdf_path, exc)
        raise InvalidChainError(f"Failed to read URDF '{urdf_path}': {exc}") from exc
    return parse_urdf(tree.getroot())


def load_chain(urdf_path: str, base_name: str, tip_name: str) -> ChainModel:
    """Load a URDF file and build the chain between ``base_name`` and ``tip_name``."""
    return build_chain(load_urdf(urdf_path), base_name, tip_name)
