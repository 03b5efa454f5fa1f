"""
Manifold primitives used by rotation averaging.

Available components:
    - SO(n) operations for any n: hat/vee, compose, inverse, Cayley
      retraction, local coordinates, Haar sampling, projection to SO(n)
    - SO(2)/SO(3) conversions (planar angle, quaternion, axis-angle)
    - Pinhole calibrations Cal3_S2 and Cal3_S2Stereo
"""

from shonan.geometry.calibration import Cal3_S2, Cal3_S2Stereo
from shonan.geometry.rotations import (
    axis_angle_to_rotation_matrix,
    cayley,
    chordal_distance,
    closest_rotation,
    compose,
    hat,
    inverse,
    is_rotation,
    lift_rotation,
    local_coordinates,
    pair_index,
    quat_to_rotation_matrix,
    random_rotation,
    retract,
    rot2,
    rot2_angle,
    rotation_matrix_to_quat,
    so_dimension,
    so_generators,
    vee,
    wrap_angle,
)

__all__ = [
    # SO(n)
    "so_dimension",
    "so_generators",
    "pair_index",
    "hat",
    "vee",
    "cayley",
    "compose",
    "inverse",
    "retract",
    "local_coordinates",
    "random_rotation",
    "closest_rotation",
    "lift_rotation",
    "is_rotation",
    "chordal_distance",
    # SO(2) / SO(3) conversions
    "wrap_angle",
    "rot2",
    "rot2_angle",
    "axis_angle_to_rotation_matrix",
    "quat_to_rotation_matrix",
    "rotation_matrix_to_quat",
    # Calibration
    "Cal3_S2",
    "Cal3_S2Stereo",
]
