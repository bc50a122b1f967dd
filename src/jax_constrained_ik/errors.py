"""Exception hierarchy for jax_constrained_ik.

Configuration errors (an invalid chain, a component used before it was set
up) and input-validation errors (wrong sizes, empty matrices, joints outside
their bounds) are raised immediately and never retried inside the library.
"""

from typing import NamedTuple, Optional, Sequence, Tuple


class KinematicsError(Exception):
    """Base class for all errors raised by this package."""


class InvalidChainError(KinematicsError, ValueError):
    """The chain description cannot be resolved into a usable chain."""


class UninitializedError(KinematicsError, RuntimeError):
    """A component was used before it was successfully constructed."""


class ConfigurationError(KinematicsError, ValueError):
    """A filter configuration block is missing keys or holds bad values."""


class SizeMismatchError(KinematicsError, ValueError):
    """Per-call input has the wrong size."""


class DimensionMismatchError(SizeMismatchError):
    """A trajectory matrix does not have the expected shape."""


class EmptyMatrixError(KinematicsError, ValueError):
    """A matrix with zero rows or zero columns was supplied."""


class SolverFailureError(KinematicsError, ArithmeticError):
    """Chain composition did not produce a numerically valid transform."""


class JointLimitViolation(NamedTuple):
    """A single joint value found outside its ``[lower, upper]`` interval."""

    index: int
    name: Optional[str]
    lower: float
    value: float
    upper: float

    def __str__(self) -> str:
        label = f"Joint {self.index}" if self.name is None else f"Joint {self.index} ('{self.name}')"
        return f"{label} is out-of-range ({self.lower:g} < {self.value:g} < {self.upper:g})"


class JointLimitError(SizeMismatchError):
    """One or more joint values lie outside their bounds.

    Attributes:
        violations: Every offending joint, in chain order.
    """

    def __init__(self, violations: Sequence[JointLimitViolation]):
        self.violations: Tuple[JointLimitViolation, ...] = tuple(violations)
        super().__init__("; ".join(str(v) for v in self.violations))
