"""ChainModel PyTree and the chain-description types it is built from.

A ``ChainDescription`` is the resolved robot structure handed over by a
description loader (see :mod:`jax_constrained_ik.io`). ``build_chain`` walks it
from a base link to a tip link and freezes the serial chain into an immutable
``ChainModel`` whose arrays can be passed straight into jitted code.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

import jax.numpy as jnp
import numpy as np
from flax import struct
from jax import Array

from jax_constrained_ik.errors import InvalidChainError

logger = logging.getLogger(__name__)

REVOLUTE = "revolute"
CONTINUOUS = "continuous"
PRISMATIC = "prismatic"
FIXED = "fixed"
JOINT_TYPES = (REVOLUTE, CONTINUOUS, PRISMATIC, FIXED)


@dataclass(frozen=True)
class JointDescription:
    """One joint of a robot description.

    Attributes:
        name: Joint name.
        joint_type: One of ``revolute``, ``continuous``, ``prismatic``, ``fixed``.
        parent: Parent link name.
        child: Child link name.
        origin: 4x4 transform from the parent link frame to the joint frame.
        axis: Joint axis expressed in the joint frame.
        lower: Lower position bound, ``None`` when the description has none.
        upper: Upper position bound, ``None`` when the description has none.
    """
    name: str
    joint_type: str
    parent: str
    child: str
    origin: np.ndarray
    axis: np.ndarray
    lower: Optional[float] = None
    upper: Optional[float] = None


@dataclass(frozen=True)
class ChainDescription:
    """A resolved robot structure: a root link and the joints hanging off it."""
    root: Optional[str]
    joints: Tuple[JointDescription, ...] = ()

    @property
    def link_names(self) -> Tuple[str, ...]:
        names = [] if self.root is None else [self.root]
        for joint in self.joints:
            for link in (joint.parent, joint.child):
                if link not in names:
                    names.append(link)
        return tuple(names)


@struct.dataclass
class ChainModel:
    """Immutable numeric model of a serial chain from ``base_name`` to ``tip_name``.

    The chain is stored per segment (one segment per joint on the path, fixed
    joints included) so that forward kinematics is a single left-to-right
    composition.

    Attributes:
        base_name: Base link of the chain. Static field.
        tip_name: Tip link of the chain. Static field.
        joint_names: Names of the actuated joints in chain order. Static field.
        segment_transforms: (num_segments, 4, 4) joint origin transforms.
        segment_axes: (num_segments, 6) unit twists ``[v, w]``; zero for fixed joints.
        segment_joint_indices: (num_segments,) index into the joint vector; fixed
            segments point at ``joint_count``, a padding slot that is always zero.
        lower_limits: (joint_count,) lower bounds.
        upper_limits: (joint_count,) upper bounds.
    """
    base_name: str = struct.field(pytree_node=False)
    tip_name: str = struct.field(pytree_node=False)
    joint_names: Tuple[str, ...] = struct.field(pytree_node=False)
    segment_transforms: Array
    segment_axes: Array
    segment_joint_indices: Array
    lower_limits: Array
    upper_limits: Array

    @property
    def joint_count(self) -> int:
        return len(self.joint_names)

    @property
    def limits(self) -> Tuple[Tuple[float, float], ...]:
        """``(lower, upper)`` per actuated joint, index-aligned with the joint vector."""
        lower = np.asarray(self.lower_limits, dtype=float)
        upper = np.asarray(self.upper_limits, dtype=float)
        return tuple((float(lo), float(hi)) for lo, hi in zip(lower, upper))


def _fail(message: str) -> InvalidChainError:
    logger.error(message)
    return InvalidChainError(message)


def _resolve_path(description: ChainDescription, base_name: str, tip_name: str) -> Tuple[JointDescription, ...]:
    """Joints from ``base_name`` down to ``tip_name``, in base-to-tip order."""
    joint_by_child: Dict[str, JointDescription] = {}
    for joint in description.joints:
        if joint.child in joint_by_child:
            raise _fail(f"Link '{joint.child}' has more than one parent joint")
        joint_by_child[joint.child] = joint

    path = []
    link = tip_name
    visited = set()
    while link != base_name:
        joint = joint_by_child.get(link)
        if joint is None or link in visited:
            raise _fail(f"Failed to resolve a chain between links: '{base_name}' and '{tip_name}'")
        visited.add(link)
        path.append(joint)
        link = joint.parent
    path.reverse()
    return tuple(path)


def _joint_bounds(joint: JointDescription) -> Tuple[float, float]:
    if joint.lower is None or joint.upper is None:
        if joint.joint_type == CONTINUOUS:
            return -np.inf, np.inf
        raise _fail(f"Joint '{joint.name}' has no limit metadata")
    lower, upper = float(joint.lower), float(joint.upper)
    if lower > upper:
        raise _fail(f"Joint '{joint.name}' has lower bound {lower:g} above upper bound {upper:g}")
    return lower, upper


def build_chain(description: Optional[ChainDescription], base_name: str, tip_name: str) -> ChainModel:
    """Build a ``ChainModel`` for the serial chain between two links.

    Args:
        description: Resolved robot structure.
        base_name: Link the chain starts from; poses are expressed in its frame.
        tip_name: Link the chain ends at (the tool or end-effector link).

    Returns:
        ChainModel: Immutable chain with per-joint bounds.

    Raises:
        InvalidChainError: if the description has no root, either link is
            unknown, the tip does not descend from the base, a joint type is
            unsupported or an actuated joint lacks bounds.
    """
    if description is None or not description.root:
        raise _fail("Invalid chain description: no root link")

    known_links = description.link_names
    for link in (base_name, tip_name):
        if link not in known_links:
            raise _fail(f"Link '{link}' not found in chain description")

    path = _resolve_path(description, base_name, tip_name)

    transforms, axes, joint_slots = [], [], []
    joint_names, lower_limits, upper_limits = [], [], []
    for joint in path:
        if joint.joint_type not in JOINT_TYPES:
            raise _fail(f"Joint '{joint.name}' has unsupported type '{joint.joint_type}'")

        origin = np.asarray(joint.origin, dtype=float)
        if origin.shape != (4, 4) or not np.all(np.isfinite(origin)):
            raise _fail(f"Joint '{joint.name}' has an invalid origin transform")
        transforms.append(origin)

        if joint.joint_type == FIXED:
            axes.append(np.zeros(6))
            joint_slots.append(-1)
            continue

        axis = np.asarray(joint.axis, dtype=float)
        norm = np.linalg.norm(axis) if axis.shape == (3,) else 0.0
        if not np.isfinite(norm) or norm < 1e-12:
            raise _fail(f"Joint '{joint.name}' has an invalid axis {joint.axis}")
        axis = axis / norm

        if joint.joint_type == PRISMATIC:
            axes.append(np.concatenate([axis, np.zeros(3)]))
        else:
            axes.append(np.concatenate([np.zeros(3), axis]))

        lower, upper = _joint_bounds(joint)
        joint_slots.append(len(joint_names))
        joint_names.append(joint.name)
        lower_limits.append(lower)
        upper_limits.append(upper)

    # Fixed segments read the padding slot appended after the actuated joints.
    num_joints = len(joint_names)
    joint_slots = [num_joints if slot < 0 else slot for slot in joint_slots]

    logger.debug("Built chain '%s' -> '%s' with %d segments and %d joints",
                 base_name, tip_name, len(path), num_joints)

    return ChainModel(
        base_name=base_name,
        tip_name=tip_name,
        joint_names=tuple(joint_names),
        segment_transforms=jnp.asarray(np.array(transforms).reshape(-1, 4, 4)),
        segment_axes=jnp.asarray(np.array(axes).reshape(-1, 6)),
        segment_joint_indices=jnp.asarray(np.array(joint_slots, dtype=np.int32)),
        lower_limits=jnp.asarray(np.array(lower_limits, dtype=float)),
        upper_limits=jnp.asarray(np.array(upper_limits, dtype=float)),
    )
