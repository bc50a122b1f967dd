"""Cartesian goal update filter.

Pulls the terminal configuration of a trajectory onto a Cartesian tool goal
with resolved-rate corrections: the masked pose error is mapped through the
damped pseudoinverse of the Jacobian, scaled per joint and clamped to the
joint bounds, until every enforced axis is within its threshold or the
iteration budget runs out. Only the last timestep is touched; smoothing the
rest of the trajectory towards it is left to the caller.
"""

import logging
from typing import Any, Mapping, NamedTuple, Optional, Sequence

import jax.numpy as jnp
import numpy as np
from flax import struct
from jax import Array

from ..core import ChainModel
from ..errors import ConfigurationError, DimensionMismatchError, UninitializedError
from ..kinematics import clamp_to_limits, forward_kinematics, jacobian, pose_error
from ..pseudoinverse import solve
from ..transforms import se3
from .base import UpdateFilter

logger = logging.getLogger(__name__)

CARTESIAN_DOF = 6

# Configuration keys
CONSTRAINED_DOFS = "constrained_dofs"
CARTESIAN_CONVERGENCE = "cartesian_convergence"
JOINT_UPDATE_RATES = "joint_update_rates"
MAX_IK_ITERATIONS = "max_ik_iterations"


def _invalid(message: str) -> ConfigurationError:
    logger.error(message)
    return ConfigurationError(message)


def _vector(name: str, values, length: Optional[int]) -> np.ndarray:
    try:
        array = np.asarray(values, dtype=float)
    except (TypeError, ValueError) as exc:
        raise _invalid(f"'{name}' must be a sequence of numbers") from exc
    if array.ndim != 1 or (length is not None and array.shape[0] != length):
        raise _invalid(f"'{name}' must hold {length} values, got shape {array.shape}")
    if not np.all(np.isfinite(array)):
        raise _invalid(f"'{name}' must be finite")
    return array


def _axis_mask(values) -> np.ndarray:
    mask = _vector(CONSTRAINED_DOFS, values, CARTESIAN_DOF)
    if not np.all((mask == 0.0) | (mask == 1.0)):
        raise _invalid(f"'{CONSTRAINED_DOFS}' entries must be 0 or 1, got {mask.tolist()}")
    return mask


def _thresholds(values) -> np.ndarray:
    thresholds = _vector(CARTESIAN_CONVERGENCE, values, CARTESIAN_DOF)
    if np.any(thresholds <= 0.0):
        raise _invalid(f"'{CARTESIAN_CONVERGENCE}' entries must be positive")
    return thresholds


def _max_iterations(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)) or value <= 0:
        raise _invalid(f"'{MAX_IK_ITERATIONS}' must be a positive integer, got {value!r}")
    return int(value)


@struct.dataclass
class CartesianGoalConfig:
    """Parsed filter configuration, independent of any planning request.

    Attributes:
        axis_mask: (6,) 1 for every enforced axis ``[x, y, z, rx, ry, rz]``.
        convergence_thresholds: (6,) error magnitude per axis below which it is met.
        update_rates: (joint_count,) per-joint scale applied to each correction.
        max_iterations: Correction budget per call. Static field.
    """
    axis_mask: Array
    convergence_thresholds: Array
    update_rates: Array
    max_iterations: int = struct.field(pytree_node=False)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any], joint_count: int) -> "CartesianGoalConfig":
        """Read the ``constrained_dofs``, ``cartesian_convergence``,
        ``joint_update_rates`` and ``max_ik_iterations`` entries of a
        configuration block.
        """
        missing = [key for key in (CONSTRAINED_DOFS, CARTESIAN_CONVERGENCE, JOINT_UPDATE_RATES, MAX_IK_ITERATIONS)
                   if key not in config]
        if missing:
            raise _invalid(f"Missing configuration entries: {missing}")

        return cls(
            axis_mask=jnp.asarray(_axis_mask(config[CONSTRAINED_DOFS])),
            convergence_thresholds=jnp.asarray(_thresholds(config[CARTESIAN_CONVERGENCE])),
            update_rates=jnp.asarray(_vector(JOINT_UPDATE_RATES, config[JOINT_UPDATE_RATES], joint_count)),
            max_iterations=_max_iterations(config[MAX_IK_ITERATIONS]),
        )


@struct.dataclass
class GoalProjectionState:
    """Goal of one planning request; discarded when the request completes.

    Attributes:
        target_pose: (4, 4) tool goal in the chain base frame.
        update_rates: (joint_count,) per-joint step scale.
        axis_mask: (6,) enforced axes.
        convergence_thresholds: (6,) per-axis tolerances.
        max_iterations: Correction budget per call. Static field.
    """
    target_pose: Array
    update_rates: Array
    axis_mask: Array
    convergence_thresholds: Array
    max_iterations: int = struct.field(pytree_node=False)

    @classmethod
    def create(
        cls,
        target_pose,
        update_rates: Sequence[float],
        axis_mask: Sequence[int] = (1, 1, 1, 1, 1, 1),
        convergence_thresholds: Sequence[float] = (1e-3, 1e-3, 1e-3, 1e-3, 1e-3, 1e-3),
        max_iterations: int = 100,
    ) -> "GoalProjectionState":
        target_pose = jnp.asarray(target_pose, dtype=float)
        if target_pose.shape != (4, 4) or not bool(se3.is_valid(target_pose)):
            raise _invalid("target_pose must be a valid 4x4 rigid transform")
        return cls(
            target_pose=target_pose,
            update_rates=jnp.asarray(_vector(JOINT_UPDATE_RATES, update_rates, None)),
            axis_mask=jnp.asarray(_axis_mask(axis_mask)),
            convergence_thresholds=jnp.asarray(_thresholds(convergence_thresholds)),
            max_iterations=_max_iterations(max_iterations),
        )

    @classmethod
    def from_config(cls, target_pose, config: CartesianGoalConfig) -> "GoalProjectionState":
        return cls.create(
            target_pose,
            update_rates=np.asarray(config.update_rates),
            axis_mask=np.asarray(config.axis_mask),
            convergence_thresholds=np.asarray(config.convergence_thresholds),
            max_iterations=config.max_iterations,
        )


class ProjectionResult(NamedTuple):
    """Outcome of :func:`project`.

    ``filtered`` is True when the terminal configuration was changed.
    ``converged`` is False when the budget ran out first; the trajectory then
    holds the best-effort configuration and ``error`` the remaining masked error.
    """
    trajectory: np.ndarray
    filtered: bool
    converged: bool
    iterations: int
    error: np.ndarray


def _check_trajectory(chain: ChainModel, state: GoalProjectionState, trajectory, in_place: bool) -> np.ndarray:
    if in_place:
        if not isinstance(trajectory, np.ndarray) or not np.issubdtype(trajectory.dtype, np.floating):
            logger.error("In-place projection needs a floating point numpy array, got %s", type(trajectory).__name__)
            raise TypeError("In-place projection needs a floating point numpy array")
        values = trajectory
    else:
        values = np.array(trajectory, dtype=float)

    if values.ndim != 2 or values.shape[0] != chain.joint_count or values.shape[1] == 0:
        logger.error("Trajectory of shape %s does not match %d joints", values.shape, chain.joint_count)
        raise DimensionMismatchError(
            f"Expected trajectory of shape ({chain.joint_count}, timesteps >= 1), got {values.shape}"
        )
    if state.update_rates.shape != (chain.joint_count,):
        logger.error("Got %d joint update rates for %d joints", state.update_rates.shape[0], chain.joint_count)
        raise DimensionMismatchError(
            f"Expected {chain.joint_count} joint update rates, got {state.update_rates.shape[0]}"
        )
    return values


def project(chain: ChainModel, state: GoalProjectionState, trajectory, *, in_place: bool = False) -> ProjectionResult:
    """Move the terminal configuration of a trajectory towards the goal.

    Args:
        chain: ChainModel the trajectory rows belong to
        state: Goal of the current planning request
        trajectory: (joint_count, timesteps) joint trajectory
        in_place: Write into ``trajectory`` instead of a copy

    Returns:
        ProjectionResult

    Raises:
        UninitializedError: if the chain or the goal state is missing
        DimensionMismatchError: if the trajectory or update rates do not fit the chain
    """
    if chain is None:
        logger.error("Goal projection requested before a chain was built")
        raise UninitializedError("Chain has not been built")
    if state is None:
        logger.error("Goal projection requested without a goal")
        raise UninitializedError("No goal set for the current planning request")
    values = _check_trajectory(chain, state, trajectory, in_place)

    mask = state.axis_mask
    enforced = mask > 0.0
    start = np.array(values[:, -1])
    q = clamp_to_limits(chain, jnp.asarray(start))
    clamped = not np.array_equal(np.asarray(q), start)
    if clamped:
        logger.warning("Terminal configuration %s is out of bounds; clamped to %s", start, np.asarray(q))
    iterations = 0

    while True:
        error = pose_error(state.target_pose, forward_kinematics(chain, q)) * mask
        if bool(jnp.all(~enforced | (jnp.abs(error) < state.convergence_thresholds))):
            converged = True
            break
        if iterations >= state.max_iterations or chain.joint_count == 0:
            converged = False
            break

        J = jacobian(chain, q) * mask[:, None]
        dq = solve(J, error) * state.update_rates
        q = clamp_to_limits(chain, q + dq)
        iterations += 1
        logger.debug("Goal projection iteration %d: error norm %.6g", iterations, float(jnp.linalg.norm(error)))

    if converged:
        logger.debug("Goal projection converged after %d iterations", iterations)
    else:
        logger.warning("Goal projection stopped after %d iterations with error norm %.6g; keeping best effort",
                       iterations, float(jnp.linalg.norm(error)))

    filtered = iterations > 0 or clamped
    if filtered:
        values[:, -1] = np.asarray(q)
    return ProjectionResult(values, filtered, converged, iterations, np.asarray(error))


class ConstrainedCartesianGoal(UpdateFilter):
    """Update filter forcing the trajectory's last waypoint onto a tool goal.

    Usage::

        goal_filter = ConstrainedCartesianGoal(chain, "manipulator")
        goal_filter.configure({
            "constrained_dofs": [1, 1, 1, 0, 0, 0],
            "cartesian_convergence": [0.005, 0.005, 0.005, 0.01, 0.01, 0.01],
            "joint_update_rates": [0.5] * chain.joint_count,
            "max_ik_iterations": 100,
        })
        goal_filter.set_goal(tool_goal_pose)
        trajectory, filtered = goal_filter.apply(trajectory)
    """

    def __init__(self, chain: ChainModel, group_name: str = "manipulator"):
        if chain is None:
            logger.error("Cartesian goal filter created without a chain")
            raise UninitializedError("Chain has not been built")
        self._chain = chain
        self._group_name = group_name
        self._config: Optional[CartesianGoalConfig] = None
        self._state: Optional[GoalProjectionState] = None

    @property
    def name(self) -> str:
        return f"{type(self).__name__}/{self._group_name}"

    @property
    def group_name(self) -> str:
        return self._group_name

    @property
    def chain(self) -> ChainModel:
        return self._chain

    @property
    def config(self) -> Optional[CartesianGoalConfig]:
        return self._config

    @property
    def state(self) -> Optional[GoalProjectionState]:
        return self._state

    def configure(self, config: Mapping[str, Any]) -> None:
        self._config = CartesianGoalConfig.from_mapping(config, self._chain.joint_count)
        logger.info("%s configured: mask %s, %d max iterations", self.name,
                    np.asarray(self._config.axis_mask).astype(int).tolist(), self._config.max_iterations)

    def set_goal(self, target_pose) -> None:
        """Start a planning request with ``target_pose`` as the tool goal."""
        if self._config is None:
            logger.error("%s received a goal before configure()", self.name)
            raise UninitializedError(f"{self.name} must be configured before a goal is set")
        self._state = GoalProjectionState.from_config(target_pose, self._config)
        logger.info("%s goal set at position %s", self.name, np.asarray(se3.get_position(self._state.target_pose)))

    def clear_goal(self) -> None:
        """Discard the state of the finished planning request."""
        self._state = None

    def project(self, trajectory, *, in_place: bool = False) -> ProjectionResult:
        return project(self._chain, self._state, trajectory, in_place=in_place)

    def apply(self, trajectory):
        result = self.project(trajectory)
        return result.trajectory, result.filtered

    def filter_updates(self, parameters, updates):
        """Adjust optimiser updates so that ``parameters + updates`` ends on the goal.

        Args:
            parameters: (joint_count, timesteps) current trajectory
            updates: (joint_count, timesteps) proposed updates

        Returns:
            ``(updates, filtered)``: a copy of ``updates`` whose last column is
            rewritten when the projection changed the terminal configuration.
        """
        parameters = np.asarray(parameters, dtype=float)
        updates = np.array(updates, dtype=float)
        if parameters.shape != updates.shape:
            logger.error("Parameters %s and updates %s differ in shape", parameters.shape, updates.shape)
            raise DimensionMismatchError(
                f"Parameters {parameters.shape} and updates {updates.shape} differ in shape"
            )
        if parameters.ndim != 2 or parameters.shape[1] == 0:
            logger.error("Expected a (joints, timesteps) matrix, got %s", parameters.shape)
            raise DimensionMismatchError(f"Expected a (joints, timesteps) matrix, got {parameters.shape}")

        result = self.project(parameters[:, -1:] + updates[:, -1:], in_place=True)
        if result.filtered:
            updates[:, -1] = result.trajectory[:, -1] - parameters[:, -1]
        return updates, result.filtered
