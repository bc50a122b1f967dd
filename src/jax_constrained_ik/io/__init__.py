"""I/O utilities for loading chain descriptions.

This module parses standard robot description files into the chain
description consumed by :func:`jax_constrained_ik.core.build_chain`.
"""

from .urdf_parser import load_chain, load_urdf, parse_urdf

__all__ = ["load_chain", "load_urdf", "parse_urdf"]
