"""SE(3) rigid-body transforms as 4x4 homogeneous matrices.

Twists are 6-vectors ordered ``[vx, vy, vz, wx, wy, wz]`` (linear first),
matching the row order of the geometric Jacobian.
"""

import jax
import jax.numpy as jnp

from . import so3

Array = jax.Array


def from_position_and_rotation(p: Array, R: Array) -> Array:
    """
    Assemble homogeneous transform(s) from a translation and a rotation.

    Args:
        p: (..., 3) position vector
        R: (..., 3, 3) rotation matrix

    Returns:
        (..., 4, 4) homogeneous transformation matrix
    """
    batch_shape = jnp.broadcast_shapes(p.shape[:-1], R.shape[:-2])
    p = jnp.broadcast_to(p, batch_shape + (3,))
    R = jnp.broadcast_to(R, batch_shape + (3, 3))
    top = jnp.concatenate([R, p[..., None]], axis=-1)
    bottom = jnp.broadcast_to(jnp.array([0.0, 0.0, 0.0, 1.0], dtype=top.dtype), batch_shape + (1, 4))
    return jnp.concatenate([top, bottom], axis=-2)


def from_xyz_rpy(xyz: Array, rpy: Array) -> Array:
    """URDF ``<origin xyz rpy>`` to homogeneous transform."""
    return from_position_and_rotation(xyz, so3.from_rpy(rpy))


def exp(twist: Array) -> Array:
    """
    SE(3) exponential map: twist to transformation matrix.

    A joint moving by ``q`` along the unit twist ``S`` has local motion
    ``exp(S * q)``: a pure rotation for revolute joints and a pure translation
    for prismatic ones.

    Args:
        twist: (..., 6) twist ``[v, w]``

    Returns:
        (..., 4, 4) transformation matrix
    """
    v, w = twist[..., :3], twist[..., 3:]
    theta_sq = jnp.sum(w * w, axis=-1)
    theta = jnp.sqrt(theta_sq)
    small = theta < 1e-6
    safe_theta = jnp.where(small, 1.0, theta)

    # Left Jacobian of SO(3): V = I + b*K + c*K^2
    b = jnp.where(small, 0.5 - theta_sq / 24.0, (1.0 - jnp.cos(safe_theta)) / safe_theta**2)
    c = jnp.where(small, 1.0 / 6.0 - theta_sq / 120.0, (safe_theta - jnp.sin(safe_theta)) / safe_theta**3)

    K = so3.skew_symmetric(w)
    eye = jnp.broadcast_to(jnp.eye(3, dtype=twist.dtype), K.shape)
    V = eye + b[..., None, None] * K + c[..., None, None] * (K @ K)

    return from_position_and_rotation(jnp.einsum("...ij,...j->...i", V, v), so3.exp(w))


def inverse(T: Array) -> Array:
    """Inverse using the block structure ``[[R^T, -R^T t], [0, 1]]``."""
    R_inv = so3.inverse(get_rotation(T))
    return from_position_and_rotation(-jnp.einsum("...ij,...j->...i", R_inv, get_position(T)), R_inv)


def get_position(T: Array) -> Array:
    return T[..., :3, 3]


def get_rotation(T: Array) -> Array:
    return T[..., :3, :3]


def is_valid(T: Array, atol: float = 1e-6) -> Array:
    """True where T is finite with an orthonormal rotation block and a [0,0,0,1] bottom row."""
    R = get_rotation(T)
    eye = jnp.eye(3, dtype=T.dtype)
    orthonormal = jnp.all(jnp.abs(R @ so3.inverse(R) - eye) < atol, axis=(-2, -1))
    bottom = jnp.all(jnp.abs(T[..., 3, :] - jnp.array([0.0, 0.0, 0.0, 1.0], dtype=T.dtype)) < atol, axis=-1)
    return jnp.all(jnp.isfinite(T), axis=(-2, -1)) & orthonormal & bottom
