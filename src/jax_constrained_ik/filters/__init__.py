"""Trajectory update filters built on the kinematics core."""

from .base import UpdateFilter
from .cartesian_goal import (
    CartesianGoalConfig,
    ConstrainedCartesianGoal,
    GoalProjectionState,
    ProjectionResult,
    project,
)

__all__ = [
    "CartesianGoalConfig",
    "ConstrainedCartesianGoal",
    "GoalProjectionState",
    "ProjectionResult",
    "UpdateFilter",
    "project",
]
