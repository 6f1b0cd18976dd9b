"""
Free Field Path Builder

Direct path over an unobstructed profile. When diffraction is enabled,
ground points close enough to the ray to disturb it (Rayleigh criterion)
become DIFH_RCRIT vertices and split the path into sub-segments with
their own mean planes.

A ground point O is kept when, for at least one octave band f:
    deltaH > -(c / f) / 20
and, with the image corrected difference deltaPrimeH:
    deltaH > (c / f) / 4 - deltaPrimeH
"""

import logging
from typing import List

from common.constants import OCTAVE_BANDS_HZ, SOUND_SPEED
from ..geometry import LineSegment, mean_plane_coefficients
from ..path_model import PointPath, PointType, PropagationPath, SegmentPath
from ..profile import CutProfile
from .segments import compute_segment, path_differences, sub_plane, to_curve, unfold_profile

logger = logging.getLogger(__name__)


def _any_band(predicate) -> bool:
    return any(predicate(SOUND_SPEED / f) for f in OCTAVE_BANDS_HZ)


def compute_free_field(profile: CutProfile, compute_diffraction: bool = True) -> PropagationPath:
    """
    Build the path of an unobstructed profile.

    Args:
        profile: Free field cut profile
        compute_diffraction: Test ground points against the Rayleigh criterion

    Returns:
        Homogeneous (favorable=False) path, a single segment when no ground
        point qualifies
    """
    unfolded = unfold_profile(profile)
    src_cut = profile.source
    rcv_cut = profile.receiver
    last = len(unfolded) - 1

    src = unfolded.pts[0].copy()
    src.y = src_cut.coordinate.z
    rcv = unfolded.pts[last].copy()
    rcv.y = rcv_cut.coordinate.z
    g_s = src_cut.g_coef

    mean_plane = mean_plane_coefficients(unfolded.ground)
    sr_seg = compute_segment(src, rcv, mean_plane, profile.get_g_path(src_cut, rcv_cut), g_s)
    direct = LineSegment(src, rcv)

    source_point = PointPath(src, src_cut.z_ground, g_s, src_cut.wall_alpha, PointType.SOURCE,
                             building_id=src_cut.building_id, wall_id=src_cut.wall_id,
                             position=src_cut.coordinate)
    receiver_point = PointPath(rcv, rcv_cut.z_ground, rcv_cut.g_coef, rcv_cut.wall_alpha, PointType.RECEIVER,
                               building_id=rcv_cut.building_id, wall_id=rcv_cut.wall_id,
                               position=rcv_cut.coordinate)

    diffraction_points: List[PointPath] = []
    diffraction_indices: List[int] = []
    if compute_diffraction:
        for i in range(1, last):
            o = unfolded.ground[i]
            d_so = src.distance(o)
            d_or = o.distance(rcv)
            orientation = direct.orientation_index(o)
            delta_h = orientation * (d_so + d_or - sr_seg.d)
            if not _any_band(lambda wavelength: delta_h > -wavelength / 20.0):
                continue

            cut = unfolded.cuts[i]
            candidate = PointPath(o, o.y, g_s, cut.wall_alpha, PointType.DIFFRACTION_H_RAYLEIGH,
                                  position=cut.coordinate)
            if orientation == 1:
                candidate.delta_f = to_curve(d_so, sr_seg.d) + to_curve(d_or, sr_seg.d) - to_curve(sr_seg.d, sr_seg.d)
            else:
                pa = direct.point_along((o.x - src.x) / (rcv.x - src.x))
                candidate.delta_f = (2 * to_curve(src.distance(pa), sr_seg.d)
                                     + 2 * to_curve(pa.distance(rcv), sr_seg.d)
                                     - to_curve(d_so, sr_seg.d) - to_curve(d_or, sr_seg.d)
                                     - to_curve(sr_seg.d, sr_seg.d))

            seg1 = compute_segment(src, o, sub_plane(unfolded.ground, 0, i),
                                   profile.get_g_path(src_cut, cut), g_s)
            seg2 = compute_segment(o, rcv, sub_plane(unfolded.ground, i, last),
                                   profile.get_g_path(cut, rcv_cut), g_s)
            path_differences(candidate, src, rcv, sr_seg, seg1, seg2)

            if _any_band(lambda wavelength: candidate.delta_h > wavelength / 4.0 - candidate.delta_prime_h):
                diffraction_points.append(candidate)
                diffraction_indices.append(i)

    segments: List[SegmentPath] = []
    if diffraction_indices:
        chain = [0] + diffraction_indices + [last]
        vertices = [src] + [p.coordinate for p in diffraction_points] + [rcv]
        for k in range(1, len(chain)):
            i0, i1 = chain[k - 1], chain[k]
            seg = compute_segment(vertices[k - 1], vertices[k], sub_plane(unfolded.ground, i0, i1),
                                  profile.get_g_path(unfolded.cuts[i0], unfolded.cuts[i1]), g_s)
            segments.append(seg)
        # Image lengths follow the final chained segments
        for k, point in enumerate(diffraction_points):
            path_differences(point, src, rcv, sr_seg, segments[k], segments[k + 1])
        logger.debug(f"Free field path with {len(diffraction_points)} ground diffraction points")
    else:
        segments.append(sr_seg)

    points = [source_point] + diffraction_points + [receiver_point]
    return PropagationPath(
        favorable=False,
        point_list=points,
        segment_list=segments,
        sr_segment=sr_seg,
        dif_h_points=list(range(1, len(diffraction_points) + 1)),
    )
