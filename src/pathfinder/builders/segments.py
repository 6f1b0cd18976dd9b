"""
Segment Geometry Shared by the Path Builders

Mean ground plane projection, ground images and the Rayleigh test forms
of one straight sub-segment, plus the unfolding of a cut profile into the
profile plane (x = distance from the source, y = altitude).

Favourable (curved ray) corrections:
    deltaZT = 6e-3 * dp / (zs + zr)
    deltaZS = ALPHA0 * (zs / (zs + zr))^2 * dp^2 / 2
    zsF = zs + deltaZS + deltaZT
"""

import math
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from common.constants import (
    ALPHA0,
    CURVATURE_RADIUS_FACTOR,
    DELTA_ZT_FACTOR,
    MIN_CURVATURE_RADIUS,
    TEST_FORM_FACTOR,
)
from ..geometry import (
    Coordinate,
    LineSegment,
    mean_plane_coefficients,
    mirror_point,
    new_coordinate_system,
    project_point_on_line,
)
from ..path_model import PointPath, SegmentPath
from ..profile import CutPoint, CutProfile, IntersectionType


def to_curve(mn: float, d: float) -> float:
    """Length of the arc of chord mn on the curved ray of a path of length d."""
    radius = max(MIN_CURVATURE_RADIUS, CURVATURE_RADIUS_FACTOR * d)
    ratio = max(-1.0, min(1.0, mn / (2.0 * radius)))
    return 2.0 * radius * math.asin(ratio)


def compute_segment(src: Coordinate, rcv: Coordinate, mean_plane: Tuple[float, float],
                    g_path: float, g_s: float) -> SegmentPath:
    """
    Geometry of the segment src -> rcv over the mean plane y = a*x + b.

    Args:
        src: Segment start (profile plane)
        rcv: Segment end (profile plane)
        mean_plane: (a, b) coefficients of the mean ground line
        g_path: Ground coefficient along the segment
        g_s: Ground coefficient at the source

    Returns:
        SegmentPath with d_prime left unset
    """
    a, b = mean_plane
    s_mean = project_point_on_line(src, a, b)
    r_mean = project_point_on_line(rcv, a, b)

    d = src.distance(rcv)
    dp = s_mean.distance(r_mean)
    zs_h = src.distance(s_mean)
    zr_h = rcv.distance(r_mean)
    heights = zs_h + zr_h

    if heights > 0.0:
        test_form_h = dp / (TEST_FORM_FACTOR * heights)
        delta_zt = DELTA_ZT_FACTOR * dp / heights
        delta_zs = ALPHA0 * (zs_h / heights) ** 2 * (dp * dp / 2.0)
        delta_zr = ALPHA0 * (zr_h / heights) ** 2 * (dp * dp / 2.0)
        zs_f = zs_h + delta_zs + delta_zt
        zr_f = zr_h + delta_zr + delta_zt
        test_form_f = dp / (TEST_FORM_FACTOR * (zs_f + zr_f))
    else:
        # Both ends on the mean plane
        test_form_h = math.inf
        zs_f = zs_h
        zr_f = zr_h
        test_form_f = math.inf

    if test_form_h <= 1.0:
        g_path_prime = g_path * test_form_h + g_s * (1.0 - test_form_h)
    else:
        g_path_prime = g_path

    return SegmentPath(
        s=src,
        r=rcv,
        s_mean_plane=s_mean,
        r_mean_plane=r_mean,
        s_prime=mirror_point(src, s_mean),
        r_prime=mirror_point(rcv, r_mean),
        d=d,
        dp=dp,
        zs_h=zs_h,
        zr_h=zr_h,
        zs_f=zs_f,
        zr_f=zr_f,
        a=a,
        b=b,
        test_form_h=test_form_h,
        test_form_f=test_form_f,
        g_path=g_path,
        g_path_prime=g_path_prime,
    )


@dataclass
class UnfoldedProfile:
    """
    Cut points of a profile without ground effect boundaries, in the profile plane.

    Attributes:
        cuts: Kept cut points
        pts: (distance, top altitude) of each cut point
        ground: (distance, ground altitude) of each cut point
    """
    cuts: List[CutPoint]
    pts: List[Coordinate]
    ground: List[Coordinate]

    def __len__(self) -> int:
        return len(self.cuts)


def unfold_profile(profile: CutProfile) -> UnfoldedProfile:
    """
    Unfold a cut profile, dropping points sharing the distance of their predecessor.

    The receiver is always kept; a point coinciding with it is dropped instead.
    """
    cuts = [c for c in profile.cut_points if c.type != IntersectionType.GROUND_EFFECT]
    pts = new_coordinate_system([c.coordinate for c in cuts])
    ground = [Coordinate(p.x, c.z_ground) for p, c in zip(pts, cuts)]

    kept = [0]
    for i in range(1, len(cuts)):
        if pts[i].x == pts[kept[-1]].x:
            if i == len(cuts) - 1 and len(kept) > 1:
                kept[-1] = i
            continue
        kept.append(i)
    if len(kept) == 1 and len(cuts) > 1:
        kept.append(len(cuts) - 1)

    return UnfoldedProfile(
        cuts=[cuts[i] for i in kept],
        pts=[pts[i] for i in kept],
        ground=[ground[i] for i in kept],
    )


def sub_plane(ground: Sequence[Coordinate], start: int, end: int) -> Tuple[float, float]:
    """Mean plane over ground[start..end] inclusive."""
    return mean_plane_coefficients(ground[start:end + 1])


def path_differences(vertex: PointPath, src: Coordinate, rcv: Coordinate, sr: SegmentPath,
                     seg_before: SegmentPath, seg_after: SegmentPath) -> Tuple[Coordinate, Coordinate]:
    """
    Homogeneous path differences at a diffraction vertex.

    Sets delta_h, delta_s_prime_r_h, delta_s_r_prime_h and delta_prime_h on
    the vertex, and d_prime on the three segments. The source image is taken
    through the mean plane of the segment arriving at the vertex, the
    receiver image through the plane of the segment leaving it.

    Returns:
        (source image, receiver image)
    """
    o = vertex.coordinate
    d_so = src.distance(o)
    d_or = o.distance(rcv)
    vertex.delta_h = LineSegment(src, rcv).orientation_index(o) * (d_so + d_or - sr.d)

    src_prime = mirror_point(src, project_point_on_line(src, seg_before.a, seg_before.b))
    rcv_prime = mirror_point(rcv, project_point_on_line(rcv, seg_after.a, seg_after.b))

    s_prime_r = LineSegment(src_prime, rcv)
    vertex.delta_s_prime_r_h = s_prime_r.orientation_index(o) * (src_prime.distance(o) + d_or - s_prime_r.length)
    s_r_prime = LineSegment(src, rcv_prime)
    vertex.delta_s_r_prime_h = s_r_prime.orientation_index(o) * (d_so + o.distance(rcv_prime) - s_r_prime.length)

    images = LineSegment(src_prime, rcv_prime)
    sr.d_prime = images.length
    seg_before.d_prime = src_prime.distance(o)
    seg_after.d_prime = o.distance(rcv_prime)
    vertex.delta_prime_h = images.orientation_index(o) * (seg_before.d_prime + seg_after.d_prime - sr.d_prime)
    return src_prime, rcv_prime
