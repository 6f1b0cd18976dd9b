"""
Energetic helpers: conversions between dB and linear power.
"""

import math
from typing import Sequence, Union

import numpy as np

from common.constants import A_DIV_CONSTANT_DB, MIN_DIVERGENCE_DISTANCE

ArrayLike = Union[float, Sequence[float], np.ndarray]


def dba_to_w(dba: ArrayLike) -> Union[float, np.ndarray]:
    """Convert decibels to linear power."""
    if np.isscalar(dba):
        return 10.0 ** (float(dba) / 10.0)
    return np.power(10.0, np.asarray(dba, dtype=float) / 10.0)


def w_to_dba(w: ArrayLike) -> Union[float, np.ndarray]:
    """Convert linear power to decibels; zero power maps to -inf."""
    with np.errstate(divide='ignore'):
        result = 10.0 * np.log10(np.asarray(w, dtype=float))
    if np.ndim(result) == 0:
        return float(result)
    return result


def sum_array(values: ArrayLike) -> float:
    return float(np.sum(np.asarray(values, dtype=float)))


def energetic_sum(levels_db: ArrayLike) -> float:
    """Sum of decibel levels in the energy domain, returned in dB."""
    levels = np.asarray(levels_db, dtype=float)
    if levels.size == 0:
        return float('-inf')
    return w_to_dba(np.sum(dba_to_w(levels)))


def get_a_div(distance: float) -> float:
    """Geometric divergence attenuation of a point source at distance (m)."""
    return 20.0 * math.log10(max(distance, MIN_DIVERGENCE_DISTANCE)) + A_DIV_CONSTANT_DB
