"""
Propagation Path Builders

Each builder turns the geometry between one source and one receiver into
PropagationPath objects:

- compute_free_field: direct path, split on ground points by the Rayleigh criterion
- compute_h_edge_diffraction: path over the obstacle tops (upper convex hull)
- compute_v_edge_diffraction: path around the obstacles on the left or right
- ReflectionSearch: specular reflections by the method of images
"""

from .segments import (
    UnfoldedProfile,
    compute_segment,
    path_differences,
    sub_plane,
    to_curve,
    unfold_profile,
)
from .free_field import compute_free_field
from .horizontal_diffraction import compute_h_edge_diffraction, upper_hull
from .vertical_diffraction import LEFT, RIGHT, compute_side_hull, compute_v_edge_diffraction
from .reflection import ReflectionSearch

__all__ = [
    # Segment geometry
    'UnfoldedProfile',
    'compute_segment',
    'path_differences',
    'sub_plane',
    'to_curve',
    'unfold_profile',
    # Builders
    'compute_free_field',
    'compute_h_edge_diffraction',
    'upper_hull',
    'LEFT',
    'RIGHT',
    'compute_side_hull',
    'compute_v_edge_diffraction',
    'ReflectionSearch',
]
