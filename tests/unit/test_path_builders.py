"""
Unit Tests for the Path Builders

Tests cover:
- Segment geometry, test forms and curved lengths
- Upper convex hull of a profile
- Free field paths
- Horizontal edge diffraction over walls and buildings
- Vertical edge (lateral) diffraction around buildings
"""

import math
import sys
from pathlib import Path

import numpy as np
import pytest
from shapely.geometry import LineString, box

sys.path.insert(0, str(Path(__file__).parent.parent.parent / 'src'))

from pathfinder.builders import (
    LEFT,
    RIGHT,
    compute_free_field,
    compute_h_edge_diffraction,
    compute_segment,
    compute_side_hull,
    compute_v_edge_diffraction,
    to_curve,
    unfold_profile,
    upper_hull,
)
from pathfinder.geometry import Coordinate
from pathfinder.path_model import PointType
from pathfinder.profile import IntersectionType, ProfileBuilder

SRC = Coordinate(0, 0, 1)
RCV = Coordinate(100, 0, 2)


def _builder(**kwargs):
    builder = ProfileBuilder(**kwargs)
    return builder


@pytest.fixture
def empty_builder():
    builder = _builder()
    builder.finish_feeding()
    return builder


@pytest.fixture
def wall_builder():
    builder = _builder()
    builder.add_wall(LineString([(50, -5), (50, 5)]), height=3, alphas=[0.3] * 8)
    builder.finish_feeding()
    return builder


@pytest.fixture
def building_builder():
    builder = _builder()
    builder.add_building(box(40, -5, 60, 5), height=10, alphas=[0.2] * 8)
    builder.finish_feeding()
    return builder


class TestSegmentGeometry:
    """Tests for compute_segment and to_curve"""

    def test_flat_segment(self):
        """Heights and lengths over a flat mean plane"""
        seg = compute_segment(Coordinate(0, 1), Coordinate(100, 2), (0.0, 0.0), 0.5, 0.0)
        assert seg.d == pytest.approx(math.sqrt(100 ** 2 + 1))
        assert seg.dp == pytest.approx(100.0)
        assert seg.zs_h == pytest.approx(1.0)
        assert seg.zr_h == pytest.approx(2.0)
        assert seg.test_form_h == pytest.approx(100.0 / 90.0)
        assert seg.zs_f > seg.zs_h
        assert seg.test_form_f < seg.test_form_h
        assert math.isnan(seg.d_prime)

    def test_images_through_mean_plane(self):
        seg = compute_segment(Coordinate(0, 1), Coordinate(100, 2), (0.0, 0.0), 0.5, 0.0)
        assert seg.s_prime.y == pytest.approx(-1.0)
        assert seg.r_prime.y == pytest.approx(-2.0)
        assert seg.s_mean_plane.x == pytest.approx(0.0)

    def test_g_path_prime_near_ground(self):
        """Below test form 1 the path coefficient is blended with the source one"""
        seg = compute_segment(Coordinate(0, 5), Coordinate(100, 5), (0.0, 0.0), 1.0, 0.0)
        assert seg.test_form_h == pytest.approx(1.0 / 3.0)
        assert seg.g_path_prime == pytest.approx(1.0 / 3.0)

    def test_g_path_prime_far_from_ground(self):
        seg = compute_segment(Coordinate(0, 1), Coordinate(100, 2), (0.0, 0.0), 0.8, 0.1)
        assert seg.g_path_prime == 0.8

    def test_zero_height_segment(self):
        """Both ends on the mean plane give infinite test forms"""
        seg = compute_segment(Coordinate(0, 0), Coordinate(10, 0), (0.0, 0.0), 0.5, 0.0)
        assert seg.test_form_h == math.inf
        assert seg.test_form_f == math.inf
        assert seg.g_path_prime == 0.5

    def test_to_curve(self):
        """Arc length is slightly longer than the chord"""
        curved = to_curve(100.0, 10.0)
        assert curved == pytest.approx(2000.0 * math.asin(0.05))
        assert 100.0 < curved < 100.1

    def test_to_curve_large_distance(self):
        """The radius grows with the path length"""
        assert to_curve(1000.0, 1000.0) == pytest.approx(16000.0 * math.asin(1000.0 / 16000.0))


class TestUpperHull:
    """Tests for the upper convex hull"""

    def test_peak_kept(self):
        pts = [Coordinate(0, 1), Coordinate(50, 3), Coordinate(100, 2)]
        assert upper_hull(pts) == [0, 1, 2]

    def test_valley_dropped(self):
        pts = [Coordinate(0, 1), Coordinate(50, 0), Coordinate(100, 2)]
        assert upper_hull(pts) == [0, 2]

    def test_collinear_dropped(self):
        pts = [Coordinate(0, 0), Coordinate(5, 5), Coordinate(10, 10)]
        assert upper_hull(pts) == [0, 2]

    def test_hidden_edge_dropped(self):
        """A lower edge between two higher ones is not a diffraction edge"""
        pts = [Coordinate(0, 0), Coordinate(30, 10), Coordinate(50, 5), Coordinate(70, 10), Coordinate(100, 0)]
        assert upper_hull(pts) == [0, 1, 3, 4]


class TestUnfoldProfile:
    """Tests for profile unfolding"""

    def test_ground_effect_cuts_dropped(self):
        builder = _builder()
        builder.add_ground_effect(box(25, -10, 75, 10), g=1.0)
        builder.finish_feeding()
        profile = builder.get_profile(SRC, RCV)
        unfolded = unfold_profile(profile)
        assert len(unfolded) == 2
        assert all(c.type != IntersectionType.GROUND_EFFECT for c in unfolded.cuts)
        assert unfolded.pts[-1].x == pytest.approx(100.0)


class TestFreeField:
    """Tests for the direct free field path"""

    def test_single_segment(self, empty_builder):
        path = compute_free_field(empty_builder.get_profile(SRC, RCV))
        assert path.is_consistent()
        assert not path.favorable
        assert [p.type for p in path.point_list] == [PointType.SOURCE, PointType.RECEIVER]
        assert len(path.segment_list) == 1
        assert path.segment_list[0].d == pytest.approx(math.sqrt(100 ** 2 + 1))
        assert path.sr_segment.d == pytest.approx(path.segment_list[0].d)
        assert path.dif_h_points == []

    def test_flat_terrain_has_no_ground_diffraction(self):
        """Ground points far below the ray fail the Rayleigh criterion"""
        builder = _builder(terrain=lambda x, y: 0.0, topography_step=10)
        builder.finish_feeding()
        profile = builder.get_profile(SRC, RCV)
        assert profile.is_free_field()
        path = compute_free_field(profile)
        assert len(path.point_list) == 2
        assert len(path.segment_list) == 1

    def test_point_altitudes(self, empty_builder):
        """Vertices carry the ray altitude and the ground altitude"""
        path = compute_free_field(empty_builder.get_profile(SRC, RCV))
        assert path.point_list[0].coordinate.y == 1.0
        assert path.point_list[-1].coordinate.y == 2.0
        assert path.point_list[0].altitude == 0.0


class TestHorizontalDiffraction:
    """Tests for diffraction over obstacle tops"""

    def test_single_wall(self, wall_builder):
        profile = wall_builder.get_profile(SRC, RCV)
        assert not profile.is_free_field()
        path = compute_h_edge_diffraction(profile, wall_builder)

        assert path.favorable
        assert path.is_consistent()
        assert [p.type for p in path.point_list] == [PointType.SOURCE, PointType.DIFFRACTION_H, PointType.RECEIVER]
        assert path.dif_h_points == [1]

        edge = path.point_list[1]
        expected = math.hypot(50, 2) + math.hypot(50, 1) - math.hypot(100, 1)
        assert edge.delta_h == pytest.approx(expected)
        assert edge.building_height == 3.0
        np.testing.assert_allclose(edge.alpha_wall, [0.3] * 8)
        assert edge.coordinate.x == pytest.approx(50.0)
        assert edge.coordinate.y == pytest.approx(3.0)

    def test_image_path_differences(self, wall_builder):
        """Image lengths are set on the vertex and the segments"""
        path = compute_h_edge_diffraction(wall_builder.get_profile(SRC, RCV), wall_builder)
        edge = path.point_list[1]
        for value in (edge.delta_prime_h, edge.delta_s_prime_r_h, edge.delta_s_r_prime_h,
                      edge.delta_f, edge.delta_s_prime_r_f, edge.delta_s_r_prime_f):
            assert math.isfinite(value)
        assert edge.delta_prime_h > edge.delta_h
        assert all(math.isfinite(s.d_prime) for s in path.segment_list)
        assert math.isfinite(path.sr_segment.d_prime)

    def test_building_gives_two_edges(self, building_builder):
        """Both roof edges of a flat building are diffraction edges"""
        path = compute_h_edge_diffraction(building_builder.get_profile(SRC, RCV), building_builder)
        assert path.dif_h_points == [1, 2]
        assert len(path.segment_list) == 3
        for edge in path.point_list[1:3]:
            assert edge.building_id == 0
            assert edge.building_height == 10.0
            assert edge.delta_h > 0
            np.testing.assert_allclose(edge.alpha_wall, [0.2] * 8)
        assert [p.coordinate.x for p in path.point_list] == pytest.approx([0.0, 40.0, 60.0, 100.0])


class TestVerticalDiffraction:
    """Tests for lateral paths around buildings"""

    def test_clear_line_has_no_lateral_path(self, empty_builder):
        assert compute_v_edge_diffraction(SRC, RCV, empty_builder, 0.0, LEFT) is None

    def test_left_path(self, building_builder):
        path = compute_v_edge_diffraction(SRC, RCV, building_builder, 0.0, LEFT)
        assert path is not None
        assert path.is_consistent()
        assert [p.type for p in path.point_list] == [PointType.SOURCE, PointType.DIFFRACTION_V, PointType.RECEIVER]
        assert path.dif_v_points == [1]
        corner = path.point_list[1].position
        assert corner.x == pytest.approx(40.0)
        assert corner.y > 5.0
        assert path.point_list[1].delta_h > 0
        assert path.sr_segment.dc == pytest.approx(SRC.distance_3d(RCV))

    def test_right_path_mirrors_left(self, building_builder):
        """The building is symmetric about the direct line"""
        left = compute_v_edge_diffraction(SRC, RCV, building_builder, 0.0, LEFT)
        right = compute_v_edge_diffraction(SRC, RCV, building_builder, 0.0, RIGHT)
        assert right.point_list[1].position.y < -5.0
        assert right.point_list[1].delta_h == pytest.approx(left.point_list[1].delta_h)

    def test_side_hull_detour(self, building_builder):
        """The trace goes around both corners of the facing side"""
        hull = compute_side_hull(LEFT, SRC, RCV, building_builder)
        assert len(hull) == 4
        assert hull[0] is SRC
        assert hull[-1] is RCV
        assert all(p.y > 5.0 - 1e-9 for p in hull[1:-1])
        assert hull[1].z == pytest.approx(1.0 + (hull[0].distance(hull[1]) / sum(
            a.distance(b) for a, b in zip(hull[:-1], hull[1:]))))

    def test_unknown_receiver_elevation(self, building_builder):
        """A receiver without z is taken at altitude 0"""
        path = compute_v_edge_diffraction(SRC, Coordinate(100, 0), building_builder, 0.0, LEFT)
        assert path is not None
        assert not any(math.isnan(p.coordinate.y) for p in path.point_list)
        assert path.point_list[-1].coordinate.y == 0.0
        assert not math.isnan(path.point_list[1].delta_h)
        assert all(not math.isnan(s.d) for s in path.segment_list)
        assert path.sr_segment.dc == pytest.approx(SRC.distance_3d(Coordinate(100, 0, 0)))

    def test_detour_too_long(self):
        """A wall much longer than the direct path gives no lateral path"""
        builder = _builder()
        builder.add_building(box(4, -500, 6, 500), height=10)
        builder.finish_feeding()
        src = Coordinate(0, 0, 1)
        rcv = Coordinate(10, 0, 1)
        assert compute_side_hull(LEFT, src, rcv, builder) == []
        assert compute_v_edge_diffraction(src, rcv, builder, 0.0, LEFT) is None
