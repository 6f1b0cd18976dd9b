"""
Geometry Primitives for Path Construction

Planar and profile-plane geometry used by the path builders:

    - Coordinate: 3D position, z may be NaN when the elevation is unknown
    - LineSegment: 2D segment operations (orientation, projection,
      intersection) matching the conventions of the profile plane where
      x is the distance travelled and y the altitude
    - Mean ground plane: continuous least-squares fit of a piecewise
      linear ground profile
    - Orientation: yaw/pitch/roll of a directive source

Segment-to-segment distances and nearest points on polylines are
delegated to shapely.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import LineString, Point

from common.constants import EPSILON


@dataclass
class Coordinate:
    """
    A position in the horizontal plane with an optional elevation.

    In the profile plane the same structure is reused with x the distance
    along the path and y the altitude (z left as NaN).
    """
    x: float
    y: float
    z: float = float('nan')

    def copy(self) -> 'Coordinate':
        return Coordinate(self.x, self.y, self.z)

    def distance(self, other: 'Coordinate') -> float:
        """Planar distance, elevation ignored."""
        return math.hypot(other.x - self.x, other.y - self.y)

    def distance_3d(self, other: 'Coordinate') -> float:
        """3D distance, falls back to the planar distance when any z is NaN."""
        if math.isnan(self.z) or math.isnan(other.z):
            return self.distance(other)
        return math.sqrt((other.x - self.x) ** 2 + (other.y - self.y) ** 2 + (other.z - self.z) ** 2)

    def equals_2d(self, other: 'Coordinate', tolerance: float = 0.0) -> bool:
        return abs(self.x - other.x) <= tolerance and abs(self.y - other.y) <= tolerance

    def to_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)

    def to_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])

    @classmethod
    def from_sequence(cls, values: Sequence[float]) -> 'Coordinate':
        if len(values) > 2:
            return cls(float(values[0]), float(values[1]), float(values[2]))
        return cls(float(values[0]), float(values[1]))


class LineSegment:
    """Directed segment p0 -> p1, all operations in the (x, y) plane."""

    def __init__(self, p0: Coordinate, p1: Coordinate):
        self.p0 = p0
        self.p1 = p1

    def __repr__(self) -> str:
        return f"LineSegment({self.p0.x:.3f},{self.p0.y:.3f} -> {self.p1.x:.3f},{self.p1.y:.3f})"

    @property
    def length(self) -> float:
        return self.p0.distance(self.p1)

    def orientation_index(self, p: Coordinate) -> int:
        """
        Side of p relative to the segment direction.

        Returns:
            1 if p is on the left (counter-clockwise), -1 on the right, 0 collinear
        """
        cross = ((self.p1.x - self.p0.x) * (p.y - self.p0.y)
                 - (self.p1.y - self.p0.y) * (p.x - self.p0.x))
        if cross > 0:
            return 1
        if cross < 0:
            return -1
        return 0

    def projection_factor(self, p: Coordinate) -> float:
        """Position of the orthogonal projection of p on the infinite line (0 at p0, 1 at p1)."""
        dx = self.p1.x - self.p0.x
        dy = self.p1.y - self.p0.y
        len2 = dx * dx + dy * dy
        if len2 == 0.0:
            return 0.0
        return ((p.x - self.p0.x) * dx + (p.y - self.p0.y) * dy) / len2

    def segment_fraction(self, p: Coordinate) -> float:
        """Projection factor clamped to the segment."""
        return min(1.0, max(0.0, self.projection_factor(p)))

    def point_along(self, fraction: float) -> Coordinate:
        return Coordinate(
            self.p0.x + fraction * (self.p1.x - self.p0.x),
            self.p0.y + fraction * (self.p1.y - self.p0.y),
        )

    def project(self, p: Coordinate) -> Coordinate:
        """Orthogonal projection of p on the infinite line."""
        return self.point_along(self.projection_factor(p))

    def z_at(self, fraction: float) -> float:
        """Linear interpolation of the endpoint elevations."""
        return self.p0.z + fraction * (self.p1.z - self.p0.z)

    def intersection(self, other: 'LineSegment') -> Optional[Coordinate]:
        """
        Intersection point of two segments.

        Parallel and collinear segments return None; the caller treats them
        as a non-intersecting degeneracy.
        """
        rx = self.p1.x - self.p0.x
        ry = self.p1.y - self.p0.y
        sx = other.p1.x - other.p0.x
        sy = other.p1.y - other.p0.y
        denom = rx * sy - ry * sx
        if abs(denom) <= EPSILON * max(1.0, abs(rx * sy), abs(ry * sx)):
            return None
        qpx = other.p0.x - self.p0.x
        qpy = other.p0.y - self.p0.y
        t = (qpx * sy - qpy * sx) / denom
        u = (qpx * ry - qpy * rx) / denom
        if t < -EPSILON or t > 1 + EPSILON or u < -EPSILON or u > 1 + EPSILON:
            return None
        t = min(1.0, max(0.0, t))
        return Coordinate(self.p0.x + t * rx, self.p0.y + t * ry)

    def to_linestring(self) -> LineString:
        return LineString([(self.p0.x, self.p0.y), (self.p1.x, self.p1.y)])

    def distance(self, other: 'LineSegment') -> float:
        """Minimum planar distance between two segments."""
        return self.to_linestring().distance(other.to_linestring())


def new_coordinate_system(coordinates: List[Coordinate]) -> List[Coordinate]:
    """
    Unfold a 3D polyline into profile coordinates.

    Each point becomes (cumulative planar distance from the first point, z).
    """
    pts: List[Coordinate] = []
    travelled = 0.0
    for i, c in enumerate(coordinates):
        if i > 0:
            travelled += coordinates[i - 1].distance(c)
        pts.append(Coordinate(travelled, c.z))
    return pts


def mean_plane_coefficients(coordinates: Sequence[Coordinate]) -> Tuple[float, float]:
    """
    Least-squares mean ground line z = a*x + b of a profile.

    The profile is integrated as a continuous piecewise linear function,
    which makes the fit independent of the traversal direction and of
    redundant points inserted along a straight stretch.

    Args:
        coordinates: Profile points (x = distance, y = ground altitude)

    Returns:
        (a, b) slope and intercept
    """
    n = len(coordinates)
    if n == 0:
        return 0.0, 0.0
    if n == 1:
        return 0.0, coordinates[0].y

    x0 = coordinates[0].x
    xn = coordinates[-1].x
    span = xn - x0
    if span == 0.0:
        return 0.0, float(np.mean([c.y for c in coordinates]))

    # Integrals of x*z and z over each linear piece
    int_xz = 0.0
    int_z = 0.0
    for c1, c2 in zip(coordinates[:-1], coordinates[1:]):
        dx = c2.x - c1.x
        if dx == 0.0:
            continue
        ai = (c2.y - c1.y) / dx
        bi = c1.y - ai * c1.x
        int_xz += ai / 3.0 * (c2.x ** 3 - c1.x ** 3) + bi / 2.0 * (c2.x ** 2 - c1.x ** 2)
        int_z += ai / 2.0 * (c2.x ** 2 - c1.x ** 2) + bi * dx

    int_x = (xn ** 2 - x0 ** 2) / 2.0
    int_x2 = (xn ** 3 - x0 ** 3) / 3.0

    system = np.array([[int_x2, int_x], [int_x, span]])
    rhs = np.array([int_xz, int_z])
    try:
        a, b = np.linalg.solve(system, rhs)
    except np.linalg.LinAlgError:
        return 0.0, int_z / span
    return float(a), float(b)


def project_point_on_line(c: Coordinate, a: float, b: float) -> Coordinate:
    """Orthogonal projection of a profile point on the line y = a*x + b."""
    x = (c.x + a * c.y - a * b) / (1.0 + a * a)
    return Coordinate(x, a * x + b)


def mirror_point(c: Coordinate, projection: Coordinate) -> Coordinate:
    """Image of c through its projection (keeps the elevation of c)."""
    return Coordinate(2.0 * projection.x - c.x, 2.0 * projection.y - c.y, c.z)


def interpolate_z(p: Coordinate, p0: Coordinate, p1: Coordinate) -> float:
    """Elevation at p along the segment p0 -> p1, by planar distance ratio."""
    total = p0.distance(p1)
    if total == 0.0:
        return p0.z
    return p0.z + (p1.z - p0.z) * (p0.distance(p) / total)


def nearest_point(line: LineString, c: Coordinate) -> Coordinate:
    """Closest point of a (possibly 3D) linestring to c."""
    projected = line.interpolate(line.project(Point(c.x, c.y)))
    return Coordinate.from_sequence(projected.coords[0])


@dataclass
class Orientation:
    """
    Emission orientation of a source in degrees.

    yaw is counter-clockwise from the x axis in the horizontal plane,
    pitch is positive upward and roll turns around the emission axis.
    """
    yaw: float = 0.0
    pitch: float = 0.0
    roll: float = 0.0

    @staticmethod
    def from_vector(vector: np.ndarray, roll: float = 0.0) -> 'Orientation':
        """Orientation whose emission axis points along vector."""
        v = np.asarray(vector, dtype=float)
        norm = np.linalg.norm(v)
        if norm == 0.0:
            return Orientation(0.0, 0.0, roll)
        v = v / norm
        yaw = math.degrees(math.atan2(v[1], v[0]))
        pitch = math.degrees(math.asin(max(-1.0, min(1.0, v[2]))))
        return Orientation(yaw, pitch, roll)

    @staticmethod
    def rotate(orientation: 'Orientation', vector: np.ndarray) -> np.ndarray:
        """Rotate vector by the yaw then pitch of orientation."""
        yaw = math.radians(orientation.yaw)
        pitch = math.radians(orientation.pitch)
        rz = np.array([
            [math.cos(yaw), -math.sin(yaw), 0.0],
            [math.sin(yaw), math.cos(yaw), 0.0],
            [0.0, 0.0, 1.0],
        ])
        # Rotation about y by -pitch lifts the x axis upward
        ry = np.array([
            [math.cos(pitch), 0.0, -math.sin(pitch)],
            [0.0, 1.0, 0.0],
            [math.sin(pitch), 0.0, math.cos(pitch)],
        ])
        return rz @ ry @ np.asarray(vector, dtype=float)
