"""
Horizontal Edge Diffraction Builder

Path over the tops of the obstacles cutting the direct line. The
diffraction edges are the vertices of the upper convex hull of the
unfolded profile (x = distance, y = obstacle top or ground altitude):
the path is stretched over the obstacles like a string.

Each edge receives its homogeneous path differences (deltaH and the
image variants) and the favourable ones computed on curved rays.
"""

import logging
from typing import List, Sequence

from ..geometry import Coordinate, LineSegment, mean_plane_coefficients
from ..path_model import PointPath, PointType, PropagationPath
from ..profile import CutProfile, IntersectionType, ProfileBuilder
from .segments import compute_segment, path_differences, sub_plane, to_curve, unfold_profile

logger = logging.getLogger(__name__)


def upper_hull(pts: Sequence[Coordinate]) -> List[int]:
    """
    Indices of the upper convex hull of points sorted by increasing x.

    Collinear points are dropped; the first and last points are always kept.
    """
    hull: List[int] = []
    for i, p in enumerate(pts):
        while len(hull) >= 2:
            o = pts[hull[-2]]
            a = pts[hull[-1]]
            cross = (a.x - o.x) * (p.y - o.y) - (a.y - o.y) * (p.x - o.x)
            if cross < 0:
                break
            hull.pop()
        hull.append(i)
    return hull


def compute_h_edge_diffraction(profile: CutProfile, builder: ProfileBuilder) -> PropagationPath:
    """
    Build the diffracted path of an obstructed profile.

    Args:
        profile: Cut profile between source and receiver
        builder: Obstacle model, for the absorption and height of the edges

    Returns:
        Favourable path whose interior vertices are DIFH edges
    """
    unfolded = unfold_profile(profile)
    pts = unfolded.pts
    src = pts[0]
    rcv = pts[-1]

    sr_seg = compute_segment(src, rcv, mean_plane_coefficients(unfolded.ground),
                             profile.get_g_path(), profile.source.g_coef)

    hull = upper_hull(pts)
    points: List[PointPath] = []
    segments = []
    for k, index in enumerate(hull):
        cut = unfolded.cuts[index]
        if k == 0:
            point_type = PointType.SOURCE
        elif k == len(hull) - 1:
            point_type = PointType.RECEIVER
        else:
            point_type = PointType.DIFFRACTION_H
        point = PointPath(pts[index], cut.z_ground, cut.g_coef, cut.wall_alpha, point_type,
                          building_id=cut.building_id, wall_id=cut.wall_id, position=cut.coordinate)

        if point_type == PointType.DIFFRACTION_H:
            if cut.building_id != -1:
                building = builder.get_building(cut.building_id)
                point.alpha_wall = building.alphas
                point.building_height = building.height
            elif cut.wall_id != -1 and cut.type == IntersectionType.WALL:
                wall = builder.get_wall(cut.wall_id)
                point.alpha_wall = wall.alphas
                point.building_height = wall.height
        points.append(point)

        if k > 0:
            previous = hull[k - 1]
            segments.append(compute_segment(
                pts[previous], pts[index], sub_plane(unfolded.ground, previous, index),
                profile.get_g_path(unfolded.cuts[previous], cut), unfolded.cuts[previous].g_coef,
            ))

    path = PropagationPath(favorable=True, point_list=points, segment_list=segments, sr_segment=sr_seg)

    direct = LineSegment(src, rcv)
    for i in range(1, len(points) - 1):
        vertex = points[i]
        o = vertex.coordinate
        seg1 = segments[i - 1]
        seg2 = segments[i]
        src_prime, rcv_prime = path_differences(vertex, src, rcv, sr_seg, seg1, seg2)
        d_so = src.distance(o)
        d_or = o.distance(rcv)

        s_prime_r = src_prime.distance(rcv)
        vertex.delta_s_prime_r_f = (to_curve(src_prime.distance(o), s_prime_r) + to_curve(d_or, s_prime_r)
                                    - to_curve(s_prime_r, s_prime_r))
        s_r_prime = src.distance(rcv_prime)
        vertex.delta_s_r_prime_f = (to_curve(d_so, s_r_prime) + to_curve(o.distance(rcv_prime), s_r_prime)
                                    - to_curve(s_r_prime, s_r_prime))

        if direct.orientation_index(o) == 1:
            vertex.delta_f = to_curve(d_so, sr_seg.d) + to_curve(d_or, sr_seg.d) - to_curve(sr_seg.d, sr_seg.d)
        else:
            pa = direct.point_along((o.x - src_prime.x) / (rcv_prime.x - src_prime.x))
            vertex.delta_f = (2 * to_curve(src_prime.distance(pa), sr_seg.d_prime)
                              + 2 * to_curve(pa.distance(rcv_prime), sr_seg.d_prime)
                              - to_curve(seg1.d_prime, sr_seg.d_prime) - to_curve(seg2.d_prime, sr_seg.d_prime)
                              - to_curve(sr_seg.d_prime, sr_seg.d_prime))
        path.dif_h_points.append(i)

    logger.debug(f"Horizontal diffraction path with {len(path.dif_h_points)} edges")
    return path
