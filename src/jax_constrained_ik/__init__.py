"""
jax_constrained_ik: velocity-resolved inverse kinematics core in JAX.

Chain model, forward kinematics, geometric Jacobian, damped least-squares
pseudoinverse and the Cartesian goal update filter that composes them.
"""

import jax
jax.config.update("jax_enable_x64", True)

# Import core modules
from . import transforms
from . import core
from . import io
from . import kinematics
from . import pseudoinverse
from . import filters
from .errors import KinematicsError

__version__ = "0.1.0"
__all__ = ["transforms", "core", "io", "kinematics", "pseudoinverse", "filters", "KinematicsError"]
