"""
Physical and Numerical Constants for the Path Finder

This module contains the constants shared by the propagation path
construction algorithms (CNOSSOS-EU / NMPB 2008 conventions).
"""

import numpy as np

# Octave band centre frequencies used by the Rayleigh criterion (Hz)
OCTAVE_BANDS_HZ = (63, 125, 250, 500, 1000, 2000, 4000, 8000)
NUM_BANDS = len(OCTAVE_BANDS_HZ)

# Speed of sound used for wavelength in the diffraction criterion (m/s)
SOUND_SPEED = 340.0

# Default wall absorption spectrum (fully reflective facade)
DEFAULT_WALL_ALPHA = np.full(NUM_BANDS, 0.1)

# Curvature coefficient for favourable propagation (1/m)
ALPHA0 = 2e-4

# Mean-plane height correction factor for favourable conditions
DELTA_ZT_FACTOR = 6e-3

# Minimum radius of curvature used by the curved path length (m)
MIN_CURVATURE_RADIUS = 1000.0
CURVATURE_RADIUS_FACTOR = 8.0

# Rayleigh criterion test form threshold denominator
TEST_FORM_FACTOR = 30.0

# Reflection point translation off the wall (m)
WIDE_ANGLE_TRANSLATION_EPSILON = 0.01

# Geometric tolerance (m)
EPSILON = 1e-7

# Lateral diffraction is abandoned when the hull exceeds this ratio of the direct path
MAX_RATIO_HULL_DIRECT_PATH = 4.0

# Allowance for a perfectly reflective ground when ranking sources (dB)
REFLECTIVE_GROUND_ALLOWANCE_DB = 3.0

# Geometric divergence: ADiv = 20 log10(d) + 11 (dB)
A_DIV_CONSTANT_DB = 11.0

# Smallest source/receiver distance used by the divergence term (m)
MIN_DIVERGENCE_DISTANCE = 1e-7

# Line sources are split into segments at least this long (m)
MIN_SEGMENT_SIZE = 1.0
