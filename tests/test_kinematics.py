"""Tests for forward kinematics and Jacobian computation."""

import itertools
from pathlib import Path

import jax
import jax.numpy as jnp
import jax.random as jrandom
import numpy as np
import pytest

from jax_constrained_ik.core import ChainModel
from jax_constrained_ik.errors import (
    JointLimitError,
    SizeMismatchError,
    SolverFailureError,
    UninitializedError,
)
from jax_constrained_ik.io import load_chain
from jax_constrained_ik.kinematics import (
    check_joints,
    clamp_to_limits,
    forward_kinematics,
    forward_kinematics_frames,
    geometric_jacobian,
    jacobian,
    pose_error,
)
from jax_constrained_ik.transforms import se3, so3

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def planar_chain():
    return load_chain(str(FIXTURES / "planar_arm.urdf"), "base_link", "tool0")


@pytest.fixture
def spatial_chain():
    return load_chain(str(FIXTURES / "spatial_arm.urdf"), "world", "tool0")


def _random_configs(chain, n_samples, seed=0):
    lower = jnp.maximum(chain.lower_limits, -jnp.pi)
    upper = jnp.minimum(chain.upper_limits, jnp.pi)
    key = jrandom.PRNGKey(seed)  # Deterministic for CI/caching
    return jrandom.uniform(key, (n_samples, chain.joint_count), minval=lower, maxval=upper)


def test_fk_planar_home_pose(planar_chain):
    """All-zero joints put the planar tool at (2, 0, 0) with identity orientation."""
    T = forward_kinematics(planar_chain, jnp.zeros(2))
    assert T.shape == (4, 4)
    np.testing.assert_allclose(se3.get_position(T), [2.0, 0.0, 0.0], atol=1e-12)
    np.testing.assert_allclose(se3.get_rotation(T), jnp.eye(3), atol=1e-12)


def test_fk_spatial_home_pose(spatial_chain):
    """Regression fixture: the spatial arm stands straight up at home."""
    T = forward_kinematics(spatial_chain, jnp.zeros(6))
    np.testing.assert_allclose(se3.get_position(T), [0.0, 0.0, 1.25], atol=1e-12)
    np.testing.assert_allclose(se3.get_rotation(T), jnp.eye(3), atol=1e-12)


def test_fk_planar_closed_form(planar_chain):
    """FK of the planar arm matches the textbook two-link formula."""
    for a, b in [(0.3, -0.7), (np.pi / 4, 0.0), (-2.0, 1.5)]:
        T = forward_kinematics(planar_chain, jnp.array([a, b]))
        expected = [np.cos(a) + np.cos(a + b), np.sin(a) + np.sin(a + b), 0.0]
        np.testing.assert_allclose(se3.get_position(T), expected, atol=1e-12)
        np.testing.assert_allclose(so3.log(se3.get_rotation(T)), [0.0, 0.0, a + b], atol=1e-10)


def test_fk_prismatic_extension(spatial_chain):
    q = jnp.array([0.0, 0.0, 0.0, 0.2, 0.0, 0.0])
    T = forward_kinematics(spatial_chain, q)
    np.testing.assert_allclose(se3.get_position(T), [0.0, 0.0, 1.45], atol=1e-12)


def test_fk_returns_valid_transforms(spatial_chain):
    """FK always yields a proper rigid transform."""
    for q in _random_configs(spatial_chain, 10):
        T = forward_kinematics(spatial_chain, q)
        np.testing.assert_allclose(T[3, :], jnp.array([0, 0, 0, 1]), rtol=1e-6, atol=1e-6)
        R = T[:3, :3]
        np.testing.assert_allclose(jnp.matmul(R, R.T), jnp.eye(3), rtol=1e-10, atol=1e-10)


def test_fk_jit_compatibility(spatial_chain):
    """The unchecked composition is JIT-compilable."""

    @jax.jit
    def jit_fk(q):
        return forward_kinematics_frames(spatial_chain, q)

    q = jnp.array([0.1, -0.2, 0.3, 0.1, 0.5, -0.6])
    joint_frames, tip = jit_fk(q)
    assert joint_frames.shape == (8, 4, 4)
    np.testing.assert_allclose(tip, forward_kinematics(spatial_chain, q), atol=1e-12)


def test_fk_empty_chain():
    chain = load_chain(str(FIXTURES / "planar_arm.urdf"), "link1", "link1")
    np.testing.assert_allclose(forward_kinematics(chain, jnp.zeros(0)), jnp.eye(4))
    assert jacobian(chain, jnp.zeros(0)).shape == (6, 0)


def test_check_joints_size_mismatch(planar_chain):
    with pytest.raises(SizeMismatchError, match="Expected 2 joint values"):
        forward_kinematics(planar_chain, jnp.zeros(3))
    with pytest.raises(SizeMismatchError):
        jacobian(planar_chain, jnp.zeros((2, 1)))


def test_check_joints_reports_every_violation(spatial_chain):
    """Out-of-bounds joints are reported per joint, with bound and value."""
    q = jnp.array([3.0, 0.0, 0.0, 0.5, 0.0, 100.0])
    with pytest.raises(JointLimitError) as excinfo:
        forward_kinematics(spatial_chain, q)

    violations = excinfo.value.violations
    assert [v.index for v in violations] == [0, 3]
    assert violations[0].name == "joint1"
    assert (violations[0].lower, violations[0].value, violations[0].upper) == (-2.9, 3.0, 2.9)
    assert violations[1].value == 0.5
    assert "joint4" in str(excinfo.value)
    # bounds failures are still size/validation failures
    assert isinstance(excinfo.value, SizeMismatchError)


def test_check_joints_rejects_nan(planar_chain):
    with pytest.raises(JointLimitError):
        check_joints(planar_chain, jnp.array([jnp.nan, 0.0]))


def test_uninitialized_chain():
    with pytest.raises(UninitializedError):
        forward_kinematics(None, jnp.zeros(2))
    with pytest.raises(UninitializedError):
        jacobian(None, jnp.zeros(2))


def test_degenerate_chain_is_a_solver_failure():
    """A chain whose composition is not rigid cannot produce a pose."""
    chain = ChainModel(
        base_name="base",
        tip_name="tip",
        joint_names=("j1",),
        segment_transforms=(2.0 * jnp.eye(4))[None],
        segment_axes=jnp.array([[0.0, 0.0, 0.0, 0.0, 0.0, 1.0]]),
        segment_joint_indices=jnp.array([0], dtype=jnp.int32),
        lower_limits=jnp.array([-1.0]),
        upper_limits=jnp.array([1.0]),
    )
    with pytest.raises(SolverFailureError):
        forward_kinematics(chain, jnp.zeros(1))


def test_clamp_to_limits(spatial_chain):
    q = clamp_to_limits(spatial_chain, jnp.array([5.0, -5.0, 0.0, 1.0, 0.0, 50.0]))
    np.testing.assert_allclose(q, [2.9, -2.0, 0.0, 0.3, 0.0, 50.0])


def test_jacobian_planar_closed_form(planar_chain):
    """Jacobian of the planar arm matches the analytic two-link Jacobian."""
    a, b = 0.4, 0.9
    J = jacobian(planar_chain, jnp.array([a, b]))
    assert J.shape == (6, 2)
    expected = np.zeros((6, 2))
    expected[0] = [-np.sin(a) - np.sin(a + b), -np.sin(a + b)]
    expected[1] = [np.cos(a) + np.cos(a + b), np.cos(a + b)]
    expected[5] = [1.0, 1.0]
    np.testing.assert_allclose(J, expected, atol=1e-12)


def test_jacobian_prismatic_column(spatial_chain):
    """A prismatic column has a linear part along its axis and no angular part."""
    J = jacobian(spatial_chain, jnp.zeros(6))
    np.testing.assert_allclose(J[:, 3], [0.0, 0.0, 1.0, 0.0, 0.0, 0.0], atol=1e-12)
    # joint1 spins about the base z axis through the tool
    np.testing.assert_allclose(J[:, 0], [0.0, 0.0, 0.0, 0.0, 0.0, 1.0], atol=1e-12)


def test_jacobian_numerical_verification(spatial_chain):
    """Verify the geometric Jacobian against automatic differentiation of FK."""
    q = jnp.array([0.1, -0.2, 0.3, 0.1, 0.5, -0.6])
    J = jacobian(spatial_chain, q)

    def tip_pose(joint_angles):
        return forward_kinematics_frames(spatial_chain, joint_angles)[1]

    T = tip_pose(q)
    dT = jax.jacfwd(tip_pose)(q)  # (4, 4, num_dof)

    # linear rows: derivative of the tip position
    np.testing.assert_allclose(J[:3], dT[:3, 3, :], rtol=1e-10, atol=1e-10)

    # angular rows: vee(dR/dq_j R^T)
    R = se3.get_rotation(T)
    for j in range(spatial_chain.joint_count):
        omega = so3.vee(dT[:3, :3, j] @ R.T)
        np.testing.assert_allclose(J[3:, j], omega, rtol=1e-10, atol=1e-10)


def test_jacobian_jit_compatibility(spatial_chain):
    J = jax.jit(geometric_jacobian)(spatial_chain, jnp.array([0.1, -0.2, 0.3, 0.1, 0.5, -0.6]))
    assert J.shape == (6, 6)
    assert jnp.sum(jnp.abs(J)) > 1e-6, "Jacobian should have non-zero entries"


def test_jacobian_random_configs(spatial_chain):
    """Property test: Jacobian is finite and varies across random configurations."""
    Js = [jacobian(spatial_chain, q) for q in _random_configs(spatial_chain, 10)]

    for i, J in enumerate(Js):
        assert jnp.isfinite(J).all(), f"Jacobian {i} contains NaN/Inf"
        assert J.shape == (6, spatial_chain.joint_count)

    varied = any(jnp.linalg.norm(J_a - J_b) > 1e-6 for J_a, J_b in itertools.combinations(Js, 2))
    assert varied, "Jacobian did not change across random configurations"


def test_pose_error():
    """Translation difference plus the rotation taking current onto target."""
    current = se3.from_position_and_rotation(jnp.array([1.0, 0.0, 0.0]), jnp.eye(3))
    target = se3.from_position_and_rotation(jnp.array([1.0, 2.0, -1.0]), so3.exp(jnp.array([0.0, 0.0, 0.5])))
    np.testing.assert_allclose(pose_error(target, current), [0.0, 2.0, -1.0, 0.0, 0.0, 0.5], atol=1e-12)
    np.testing.assert_allclose(pose_error(target, target), jnp.zeros(6), atol=1e-12)
