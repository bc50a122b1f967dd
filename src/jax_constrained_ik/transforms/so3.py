"""SO(3) rotation utilities in JAX.

Rotations are 3x3 matrices, tangent vectors are axis-angle 3-vectors. All
functions accept arbitrary leading batch dimensions and are JIT-able.
"""

import jax
import jax.numpy as jnp

Array = jax.Array

# Below this angle the Taylor expansions of the Rodrigues coefficients are used.
_SMALL_ANGLE = 1e-8
# Within this distance of pi the axis is recovered from the symmetric part.
_NEAR_PI = 1e-6


def skew_symmetric(v: Array) -> Array:
    """Cross-product matrix ``[v]_x`` such that ``[v]_x @ u == cross(v, u)``.

    Args:
        v: (..., 3) vector

    Returns:
        (..., 3, 3) skew-symmetric matrix
    """
    x, y, z = v[..., 0], v[..., 1], v[..., 2]
    o = jnp.zeros_like(x)
    rows = [
        jnp.stack([o, -z, y], axis=-1),
        jnp.stack([z, o, -x], axis=-1),
        jnp.stack([-y, x, o], axis=-1),
    ]
    return jnp.stack(rows, axis=-2)


def vee(K: Array) -> Array:
    """Inverse of :func:`skew_symmetric` applied to the antisymmetric part of K."""
    return 0.5 * jnp.stack([
        K[..., 2, 1] - K[..., 1, 2],
        K[..., 0, 2] - K[..., 2, 0],
        K[..., 1, 0] - K[..., 0, 1],
    ], axis=-1)


def exp(w: Array) -> Array:
    """Rodrigues' formula: axis-angle vector to rotation matrix.

    Args:
        w: (..., 3) axis-angle vector, angle = ``|w|``

    Returns:
        (..., 3, 3) rotation matrix
    """
    theta_sq = jnp.sum(w * w, axis=-1)
    theta = jnp.sqrt(theta_sq)
    small = theta < _SMALL_ANGLE
    safe_theta = jnp.where(small, 1.0, theta)

    # R = I + a*K + b*K^2 with K = [w]_x (unnormalised axis)
    a = jnp.where(small, 1.0 - theta_sq / 6.0, jnp.sin(safe_theta) / safe_theta)
    b = jnp.where(small, 0.5 - theta_sq / 24.0, (1.0 - jnp.cos(safe_theta)) / (safe_theta * safe_theta))

    K = skew_symmetric(w)
    eye = jnp.broadcast_to(jnp.eye(3, dtype=w.dtype), K.shape)
    return eye + a[..., None, None] * K + b[..., None, None] * (K @ K)


def log(R: Array) -> Array:
    """Axis-angle vector of a rotation matrix, the inverse of :func:`exp`.

    Used to express orientation errors. The returned angle lies in ``[0, pi]``.

    Args:
        R: (..., 3, 3) rotation matrix

    Returns:
        (..., 3) axis-angle vector
    """
    cos_theta = jnp.clip((jnp.trace(R, axis1=-2, axis2=-1) - 1.0) / 2.0, -1.0, 1.0)
    theta = jnp.arccos(cos_theta)
    axis_sin = vee(R)  # = sin(theta) * axis

    small = theta < _SMALL_ANGLE
    near_pi = theta > jnp.pi - _NEAR_PI
    safe_sin = jnp.where(small | near_pi, 1.0, jnp.sin(theta))
    w_general = (theta / safe_sin)[..., None] * axis_sin

    # At theta ~ pi, R + I = 2 * a a^T; take the best-conditioned column.
    S = 0.5 * (R + jnp.swapaxes(R, -1, -2)) + jnp.eye(3, dtype=R.dtype)
    col = jnp.argmax(jnp.diagonal(S, axis1=-2, axis2=-1), axis=-1)
    a = jnp.take_along_axis(S, col[..., None, None], axis=-1)[..., 0]
    a = a / jnp.linalg.norm(a, axis=-1, keepdims=True)
    sign = jnp.where(jnp.sum(a * axis_sin, axis=-1) < 0.0, -1.0, 1.0)
    w_pi = (sign * theta)[..., None] * a

    return jnp.where(small[..., None], axis_sin, jnp.where(near_pi[..., None], w_pi, w_general))


def from_rpy(rpy: Array) -> Array:
    """Fixed-axis roll/pitch/yaw (URDF convention) to rotation matrix.

    ``R = Rz(yaw) @ Ry(pitch) @ Rx(roll)``.
    """
    cr, sr = jnp.cos(rpy[..., 0]), jnp.sin(rpy[..., 0])
    cp, sp = jnp.cos(rpy[..., 1]), jnp.sin(rpy[..., 1])
    cy, sy = jnp.cos(rpy[..., 2]), jnp.sin(rpy[..., 2])
    rows = [
        jnp.stack([cy * cp, cy * sp * sr - sy * cr, cy * sp * cr + sy * sr], axis=-1),
        jnp.stack([sy * cp, sy * sp * sr + cy * cr, sy * sp * cr - cy * sr], axis=-1),
        jnp.stack([-sp, cp * sr, cp * cr], axis=-1),
    ]
    return jnp.stack(rows, axis=-2)


def from_quaternion(quaternions: Array) -> Array:
    """Unit quaternion(s) in (w, x, y, z) order to rotation matrices."""
    q = quaternions / jnp.linalg.norm(quaternions, axis=-1, keepdims=True)
    w, x, y, z = jnp.moveaxis(q, -1, 0)
    rows = [
        jnp.stack([1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)], axis=-1),
        jnp.stack([2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)], axis=-1),
        jnp.stack([2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)], axis=-1),
    ]
    return jnp.stack(rows, axis=-2)


def inverse(R: Array) -> Array:
    """Rotation inverse (transpose)."""
    return jnp.swapaxes(R, -1, -2)
