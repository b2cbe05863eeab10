"""I/O utilities for loading joint trees from robot description files.

This module provides functions for parsing standard robotics file formats
and converting them to skeletons of joints.
"""

from .urdf_parser import load_urdf

__all__ = ["load_urdf"]
