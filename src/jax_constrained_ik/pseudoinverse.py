"""Damped least-squares pseudoinverse via singular value decomposition.

For ``A = U S V^T`` each singular value ``s`` above ``epsilon`` contributes
``1 / s``; smaller ones contribute the damped reciprocal
``s / (s^2 + damping^2)``, which stays below ``1 / (2 * damping)`` and falls to
zero for an exactly singular direction. The threshold is absolute, not
relative to the largest singular value; pass a different ``epsilon`` to tune it.
"""

import logging

import jax
import jax.numpy as jnp
from jax import Array

from .errors import EmptyMatrixError, SizeMismatchError

logger = logging.getLogger(__name__)

DEFAULT_EPSILON = 1e-5
DEFAULT_DAMPING = 0.01


def damped_reciprocal(s: Array, epsilon: float = DEFAULT_EPSILON, damping: float = DEFAULT_DAMPING) -> Array:
    """Reciprocal of singular values, damped at or below ``epsilon``."""
    well_conditioned = jnp.abs(s) > epsilon
    safe_s = jnp.where(well_conditioned, s, 1.0)
    return jnp.where(well_conditioned, 1.0 / safe_s, s / (s * s + damping * damping))


@jax.jit
def _pinv(A: Array, epsilon: float, damping: float) -> Array:
    U, s, Vt = jnp.linalg.svd(A, full_matrices=False)
    return (Vt.T * damped_reciprocal(s, epsilon, damping)) @ U.T


def _check_matrix(A: Array) -> Array:
    A = jnp.asarray(A, dtype=float)
    if A.ndim != 2 or A.shape[0] == 0 or A.shape[1] == 0:
        logger.error("Empty matrices not supported: A%s", A.shape)
        raise EmptyMatrixError(f"Matrix must be 2-D and non-empty, got shape {A.shape}")
    return A


def damped_pseudoinverse(A, *, epsilon: float = DEFAULT_EPSILON, damping: float = DEFAULT_DAMPING) -> Array:
    """Damped pseudoinverse of a matrix.

    Args:
        A: (m, n) matrix, m and n non-zero
        epsilon: singular values at or below this are damped
        damping: damping constant lambda

    Returns:
        (n, m) matrix ``V diag(inv_s) U^T``
    """
    A = _check_matrix(A)
    return _pinv(A, epsilon, damping)


def solve(A, b, *, epsilon: float = DEFAULT_EPSILON, damping: float = DEFAULT_DAMPING) -> Array:
    """Least-squares, minimum-norm solution of ``A x = b`` with damping.

    Args:
        A: (m, n) matrix, m and n non-zero
        b: (m,) right-hand side
        epsilon: singular values at or below this are damped
        damping: damping constant lambda

    Returns:
        (n,) solution vector

    Raises:
        EmptyMatrixError: if A has zero rows or columns
        SizeMismatchError: if ``len(b) != m``
    """
    A = _check_matrix(A)
    b = jnp.asarray(b, dtype=A.dtype)
    if b.ndim != 1 or b.shape[0] != A.shape[0]:
        logger.error("Matrix size mismatch: A%s, b%s", A.shape, b.shape)
        raise SizeMismatchError(f"Matrix size mismatch: A{A.shape}, b{b.shape}")

    if logger.isEnabledFor(logging.DEBUG):
        s = jnp.linalg.svd(A, compute_uv=False)
        damped = int(jnp.sum(jnp.abs(s) <= epsilon))
        if damped:
            logger.debug("Damping %d of %d singular directions (min sigma %.3g)", damped, s.shape[0], float(s.min()))

    return _pinv(A, epsilon, damping) @ b
