"""Strategy interface for trajectory update filters.

An external optimiser owns the filter lifecycle: it configures a filter once,
sets a goal per planning request and then calls ``apply`` once per outer
iteration. Registration and plugin loading are the optimiser's business.
"""

import abc
from typing import Any, Mapping, Tuple

import numpy as np


class UpdateFilter(abc.ABC):
    """A filter that adjusts a (joint_count, timesteps) trajectory."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Identifier of the filter instance."""

    @abc.abstractmethod
    def configure(self, config: Mapping[str, Any]) -> None:
        """Load the filter parameters from a parsed configuration block."""

    @abc.abstractmethod
    def set_goal(self, *args, **kwargs) -> None:
        """Fix the goal for the current planning request."""

    @abc.abstractmethod
    def apply(self, trajectory: np.ndarray) -> Tuple[np.ndarray, bool]:
        """Filter a trajectory.

        Returns:
            ``(trajectory, filtered)``: the possibly modified copy and whether
            any modification occurred.
        """
