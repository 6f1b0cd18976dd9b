"""
Vertical Edge (Lateral) Diffraction Builder

Path going around the obstacles on one side of the direct line. The
horizontal trace hugs the obstacles: whenever a leg is blocked, the end
of the first blocking wall lying on the requested side becomes a new
vertex and both halves are searched again. The trace is then unfolded
into the profile plane and reduced to source, first corner and receiver.
"""

import logging
import math
from typing import List, Optional

import numpy as np

from common.constants import MAX_RATIO_HULL_DIRECT_PATH, WIDE_ANGLE_TRANSLATION_EPSILON
from ..geometry import Coordinate, LineSegment, mean_plane_coefficients, new_coordinate_system
from ..path_model import PointPath, PointType, PropagationPath
from ..profile import IntersectionType, ProfileBuilder
from .segments import compute_segment

logger = logging.getLogger(__name__)

LEFT = True
RIGHT = False

# Upper bound on profile queries of one side search
MAX_HULL_QUERIES = 64


class _SideHull:
    """Recursive obstacle hugging on one side of a line."""

    def __init__(self, builder: ProfileBuilder, left: bool):
        self.builder = builder
        self.side = 1 if left else -1
        self.remaining = MAX_HULL_QUERIES

    def blocking_wall(self, p1: Coordinate, p2: Coordinate):
        profile = self.builder.get_profile(p1, p2)
        if profile.is_free_field():
            return None
        total = profile.length
        for cut in profile.cut_points:
            if cut.type not in (IntersectionType.BUILDING, IntersectionType.WALL):
                continue
            z1 = 0.0 if math.isnan(p1.z) else p1.z
            z2 = 0.0 if math.isnan(p2.z) else p2.z
            ray_z = z1 + (z2 - z1) * cut.distance / total
            if cut.coordinate.z > ray_z:
                return self.builder.get_wall(cut.wall_id)
        return None

    def hug(self, p1: Coordinate, p2: Coordinate) -> Optional[List[Coordinate]]:
        if p1.equals_2d(p2):
            return [p1]
        if self.remaining <= 0:
            return None
        self.remaining -= 1

        wall = self.blocking_wall(p1, p2)
        if wall is None:
            return [p1, p2]

        line = LineSegment(p1, p2)
        if line.orientation_index(wall.line.p0) == self.side:
            corner, other = wall.line.p0, wall.line.p1
        else:
            corner, other = wall.line.p1, wall.line.p0

        # Step off the wall end so the corner does not touch the wall itself
        length = corner.distance(other)
        ux = (corner.x - other.x) / length
        uy = (corner.y - other.y) / length
        fraction = line.segment_fraction(corner)
        vertex = Coordinate(corner.x + ux * WIDE_ANGLE_TRANSLATION_EPSILON,
                            corner.y + uy * WIDE_ANGLE_TRANSLATION_EPSILON,
                            p1.z + (p2.z - p1.z) * fraction)

        first = self.hug(p1, vertex)
        if first is None:
            return None
        second = self.hug(vertex, p2)
        if second is None:
            return None
        return first[:-1] + second


def _known_z(p: Coordinate) -> Coordinate:
    if not math.isnan(p.z):
        return p
    return Coordinate(p.x, p.y, 0.0)


def compute_side_hull(left: bool, p1: Coordinate, p2: Coordinate, builder: ProfileBuilder) -> List[Coordinate]:
    """
    Horizontal trace from p1 to p2 around the obstacles on one side.

    Unknown endpoint elevations are taken as 0.

    Args:
        left: Go around by the left of p1 -> p2
        p1: Start point
        p2: End point
        builder: Obstacle model

    Returns:
        Trace from p1 to p2 with interpolated altitudes, empty when the
        search fails or the detour exceeds MAX_RATIO_HULL_DIRECT_PATH times
        the direct distance
    """
    p1 = _known_z(p1)
    p2 = _known_z(p2)
    coords = _SideHull(builder, left).hug(p1, p2)
    if not coords or len(coords) < 2:
        return []

    total = sum(a.distance(b) for a, b in zip(coords[:-1], coords[1:]))
    direct = p1.distance(p2)
    if direct == 0.0 or total / direct > MAX_RATIO_HULL_DIRECT_PATH:
        return []

    z0 = coords[0].z
    delta = coords[-1].z - z0
    travelled = 0.0
    hull = [coords[0]]
    for i in range(1, len(coords) - 1):
        travelled += coords[i - 1].distance(coords[i])
        c = coords[i].copy()
        c.z = z0 + delta * (travelled / total)
        hull.append(c)
    hull.append(coords[-1])
    return hull


def compute_v_edge_diffraction(src: Coordinate, rcv: Coordinate, builder: ProfileBuilder,
                               g_s: float, left: bool) -> Optional[PropagationPath]:
    """
    Lateral diffraction path on one side, None when the direct line is clear.

    The path keeps three points (source, first corner, receiver) in the
    unfolded plane and carries the length-weighted ground coefficient of
    the hugging legs.
    """
    coords = compute_side_hull(left, src, rcv, builder)
    if len(coords) < 3:
        return None

    unfolded = new_coordinate_system(coords)
    ground = [Coordinate(u.x, builder.get_z_ground(c)) for u, c in zip(unfolded, coords)]

    weighted = 0.0
    length = 0.0
    for i in range(len(coords) - 1):
        leg = unfolded[i].distance(unfolded[i + 1])
        weighted += builder.get_profile(coords[i], coords[i + 1], g_s).get_g_path() * leg
        length += leg
    g = weighted / length if length > 0 else g_s

    mean_plane = mean_plane_coefficients(ground)
    points = [
        PointPath(unfolded[0], ground[0].y, g_s, np.zeros(0), PointType.SOURCE, position=coords[0]),
        PointPath(unfolded[1], ground[1].y, g_s, np.zeros(0), PointType.DIFFRACTION_V, position=coords[1]),
        PointPath(unfolded[-1], ground[-1].y, g_s, np.zeros(0), PointType.RECEIVER, position=coords[-1]),
    ]
    sr_seg = compute_segment(unfolded[0], unfolded[-1], mean_plane, g, g_s)
    sr_seg.dc = coords[0].distance_3d(coords[-1])
    segments = [
        compute_segment(unfolded[0], unfolded[1], mean_plane, g, g_s),
        compute_segment(unfolded[1], unfolded[-1], mean_plane, g, g_s),
    ]
    points[1].delta_h = segments[0].d + segments[1].d - sr_seg.dc

    logger.debug(f"{'Left' if left else 'Right'} lateral path around {len(coords) - 2} corners, "
                 f"deltaH={points[1].delta_h:.3f}")
    return PropagationPath(
        favorable=False,
        point_list=points,
        segment_list=segments,
        sr_segment=sr_seg,
        dif_v_points=[1],
    )

