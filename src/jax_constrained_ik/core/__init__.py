"""Core chain data structures for jax_constrained_ik.

This module provides the immutable chain model and the description types it
is built from.
"""

from .chain_model import ChainDescription, ChainModel, JointDescription, build_chain

__all__ = ["ChainDescription", "ChainModel", "JointDescription", "build_chain"]
