"""Forward kinematics and geometric Jacobian of a serial chain.

The public functions validate their joint vector against the chain (size and
per-joint bounds) on the host and then run the jitted array code. The
``*_frames`` / ``geometric_jacobian`` variants skip validation so they can be
traced inside other jitted functions.
"""

import logging

import jax
import jax.numpy as jnp
import numpy as np
from jax import Array

from .core import ChainModel
from .errors import (
    JointLimitError,
    JointLimitViolation,
    SizeMismatchError,
    SolverFailureError,
    UninitializedError,
)
from .transforms import se3, so3

logger = logging.getLogger(__name__)


def check_joints(chain: ChainModel, q) -> np.ndarray:
    """Validate a joint vector against the chain.

    Args:
        chain: ChainModel the joint vector belongs to
        q: Joint values of shape (joint_count,)

    Returns:
        The joint vector as a float numpy array

    Raises:
        UninitializedError: if ``chain`` is None
        SizeMismatchError: if the length does not match ``chain.joint_count``
        JointLimitError: if any value lies outside its bounds (all offenders reported)
    """
    if chain is None:
        logger.error("Kinematics used before a chain was built")
        raise UninitializedError("Chain has not been built")

    q = np.asarray(q, dtype=float)
    if q.ndim != 1 or q.shape[0] != chain.joint_count:
        logger.error("Number of joint angles (%s) don't match chain (%d)", q.shape, chain.joint_count)
        raise SizeMismatchError(
            f"Expected {chain.joint_count} joint values, got array of shape {q.shape}"
        )

    lower = np.asarray(chain.lower_limits)
    upper = np.asarray(chain.upper_limits)
    bad = np.flatnonzero(~np.isfinite(q) | (q < lower) | (q > upper))
    if bad.size:
        violations = [
            JointLimitViolation(int(i), chain.joint_names[i], float(lower[i]), float(q[i]), float(upper[i]))
            for i in bad
        ]
        for violation in violations:
            logger.error("%s", violation)
        raise JointLimitError(violations)
    return q


def clamp_to_limits(chain: ChainModel, q: Array) -> Array:
    """Clip each joint value into ``[lower, upper]``."""
    return jnp.clip(q, chain.lower_limits, chain.upper_limits)


def forward_kinematics_frames(chain: ChainModel, q: Array):
    """Compose the chain from base to tip.

    Args:
        chain: ChainModel describing the serial chain
        q: Joint values of shape (joint_count,)

    Returns:
        Tuple ``(joint_frames, tip)``: the (num_segments, 4, 4) base-frame pose
        of every joint frame before its own motion is applied, and the (4, 4)
        base-to-tip pose.
    """
    dtype = chain.segment_transforms.dtype
    # Fixed segments index the trailing zero.
    q_padded = jnp.concatenate([jnp.asarray(q, dtype=dtype), jnp.zeros(1, dtype=dtype)])
    q_segments = q_padded[chain.segment_joint_indices]

    def scan_body(T_base_to_parent, segment):
        T_origin, axis, value = segment
        T_joint = T_base_to_parent @ T_origin
        return T_joint @ se3.exp(axis * value), T_joint

    tip, joint_frames = jax.lax.scan(
        scan_body,
        jnp.eye(4, dtype=dtype),
        (chain.segment_transforms, chain.segment_axes, q_segments),
    )
    return joint_frames, tip


def geometric_jacobian(chain: ChainModel, q: Array) -> Array:
    """Unchecked 6 x joint_count geometric Jacobian in the base frame."""
    joint_frames, tip = forward_kinematics_frames(chain, q)
    R = se3.get_rotation(joint_frames)
    p = se3.get_position(joint_frames)

    # Revolute segments carry an angular axis, prismatic ones a linear axis.
    w = jnp.einsum("sij,sj->si", R, chain.segment_axes[:, 3:])
    v = jnp.einsum("sij,sj->si", R, chain.segment_axes[:, :3])
    linear = jnp.cross(w, se3.get_position(tip) - p) + v
    columns = jnp.concatenate([linear, w], axis=-1)

    # Fixed segments land in the padding row, which is dropped.
    J = jnp.zeros((chain.joint_count + 1, 6), dtype=columns.dtype)
    J = J.at[chain.segment_joint_indices].add(columns)
    return J[:-1].T


_forward_kinematics_frames = jax.jit(forward_kinematics_frames)
_geometric_jacobian = jax.jit(geometric_jacobian)


def forward_kinematics(chain: ChainModel, q) -> Array:
    """End-effector pose for a joint configuration.

    Args:
        chain: ChainModel describing the serial chain
        q: Joint values of shape (joint_count,), within the chain's bounds

    Returns:
        (4, 4) homogeneous transform from the chain base frame to the tip frame

    Raises:
        UninitializedError, SizeMismatchError, JointLimitError: see :func:`check_joints`
        SolverFailureError: if the composition is not a valid rigid transform
    """
    q = check_joints(chain, q)
    _, tip = _forward_kinematics_frames(chain, jnp.asarray(q))
    if not bool(se3.is_valid(tip)):
        logger.error("Failed to calculate FK for chain '%s' -> '%s'", chain.base_name, chain.tip_name)
        raise SolverFailureError("Forward kinematics produced an invalid transform")
    return tip


def jacobian(chain: ChainModel, q) -> Array:
    """Geometric Jacobian of the chain tip.

    Rows 0-2 map joint rates to linear velocity of the tip, rows 3-5 to
    angular velocity, both expressed in the base frame. For a revolute joint
    the column is ``[z x (p_tip - p_joint); z]``, for a prismatic joint
    ``[z; 0]``, where ``z`` is the joint axis in the base frame.

    Args:
        chain: ChainModel describing the serial chain
        q: Joint values of shape (joint_count,), within the chain's bounds

    Returns:
        (6, joint_count) Jacobian matrix
    """
    q = check_joints(chain, q)
    J = _geometric_jacobian(chain, jnp.asarray(q))
    if not bool(jnp.all(jnp.isfinite(J))):
        logger.error("Failed to calculate Jacobian for chain '%s' -> '%s'", chain.base_name, chain.tip_name)
        raise SolverFailureError("Jacobian contains non-finite entries")
    return J


def pose_error(target: Array, current: Array) -> Array:
    """6-vector error that moves ``current`` onto ``target``.

    Args:
        target: (4, 4) goal pose
        current: (4, 4) current pose, same reference frame as ``target``

    Returns:
        (6,) ``[dp, dw]``: translation difference and the axis-angle of the
        rotation ``R_target @ R_current^T``, both in the reference frame.
    """
    dp = se3.get_position(target) - se3.get_position(current)
    dw = so3.log(se3.get_rotation(target) @ so3.inverse(se3.get_rotation(current)))
    return jnp.concatenate([dp, dw], axis=-1)
