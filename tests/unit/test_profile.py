"""
Unit Tests for the Profile Builder

Tests cover:
- Feeding lifecycle
- Building and wall decomposition
- Profile cut points and obstruction tests
- Ground effect zones and terrain sampling
"""

import sys
from pathlib import Path

import numpy as np
import pytest
from shapely.geometry import LineString, Polygon, box

sys.path.insert(0, str(Path(__file__).parent.parent.parent / 'src'))

from common.constants import DEFAULT_WALL_ALPHA
from pathfinder.geometry import Coordinate, LineSegment
from pathfinder.profile import IntersectionType, ProfileBuilder

SRC = Coordinate(0, 0, 1)
RCV = Coordinate(100, 0, 2)


@pytest.fixture
def building_builder():
    builder = ProfileBuilder()
    builder.add_building(box(40, -5, 60, 5), height=10, alphas=[0.2] * 8)
    builder.finish_feeding()
    return builder


class TestFeeding:
    """Tests for the builder lifecycle"""

    def test_profile_before_finish_raises(self):
        with pytest.raises(RuntimeError):
            ProfileBuilder().get_profile(SRC, RCV)

    def test_feeding_after_finish_raises(self):
        builder = ProfileBuilder()
        builder.finish_feeding()
        with pytest.raises(RuntimeError):
            builder.add_wall(LineString([(0, 0), (1, 0)]), height=2)

    def test_invalid_obstacles(self):
        builder = ProfileBuilder()
        with pytest.raises(ValueError):
            builder.add_building(box(0, 0, 1, 1), height=0)
        with pytest.raises(ValueError):
            builder.add_ground_effect(box(0, 0, 1, 1), g=2.0)
        with pytest.raises(ValueError):
            ProfileBuilder(topography_step=0)


class TestWalls:
    """Tests for obstacle decomposition"""

    def test_building_walls(self, building_builder):
        """One wall per footprint edge, top at ground + height"""
        walls = building_builder.processed_walls
        assert len(walls) == 4
        assert all(w.type == IntersectionType.BUILDING for w in walls)
        assert all(w.origin_id == 0 for w in walls)
        assert all(w.line.p0.z == 10.0 and w.line.p1.z == 10.0 for w in walls)
        assert building_builder.get_building(0).z_top == 10.0
        assert [w.id for w in walls] == [0, 1, 2, 3]

    def test_free_wall(self):
        """Free walls keep their own absorption and follow the ground"""
        builder = ProfileBuilder(ground_z=2.0)
        builder.add_wall(LineString([(0, 0), (10, 0), (10, 10)]), height=3)
        builder.finish_feeding()
        walls = builder.processed_walls
        assert len(walls) == 2
        assert all(w.type == IntersectionType.WALL for w in walls)
        np.testing.assert_allclose(walls[0].alphas, DEFAULT_WALL_ALPHA)
        assert walls[0].line.p0.z == 5.0
        assert builder.obstacle_top_z(walls[1]) == 5.0

    def test_walls_near(self, building_builder):
        """Only walls closer than the distance are returned"""
        line = LineSegment(Coordinate(0, 20), Coordinate(100, 20))
        near = building_builder.walls_near(line, 16.0)
        assert [w.id for w in near] == [0, 1, 2]
        assert len(building_builder.walls_near(line, 30.0)) == 4
        assert building_builder.walls_near(line, 10.0) == []


class TestProfiles:
    """Tests for profile cuts"""

    def test_free_field(self):
        builder = ProfileBuilder()
        builder.finish_feeding()
        profile = builder.get_profile(SRC, RCV)
        assert profile.is_free_field()
        assert [c.type for c in profile.cut_points] == [IntersectionType.SOURCE, IntersectionType.RECEIVER]
        assert profile.length == pytest.approx(100.0)
        assert profile.source.coordinate.z == 1.0

    def test_building_cut(self, building_builder):
        """Both facades are cut, ordered by distance, at roof altitude"""
        profile = building_builder.get_profile(SRC, RCV)
        assert not profile.is_free_field()
        assert profile.intersect_building()
        assert not profile.intersect_topography()
        inner = profile.cut_points[1:-1]
        assert [c.type for c in inner] == [IntersectionType.BUILDING, IntersectionType.BUILDING]
        assert [c.distance for c in inner] == pytest.approx([40.0, 60.0])
        assert all(c.coordinate.z == 10.0 for c in inner)
        assert all(c.building_id == 0 for c in inner)
        np.testing.assert_allclose(inner[0].wall_alpha, [0.2] * 8)

    def test_ray_above_wall_is_free(self):
        """A wall cut below the ray is recorded but does not obstruct"""
        builder = ProfileBuilder()
        builder.add_wall(LineString([(50, -5), (50, 5)]), height=1)
        builder.finish_feeding()
        profile = builder.get_profile(Coordinate(0, 0, 5), Coordinate(100, 0, 5))
        assert profile.is_free_field()
        assert [c.type for c in profile.cut_points].count(IntersectionType.WALL) == 1

    def test_endpoint_on_wall_not_cut(self, building_builder):
        """A receiver lying on a facade does not cut its own wall"""
        profile = building_builder.get_profile(Coordinate(0, 0, 1), Coordinate(40, 0, 2))
        assert profile.is_free_field()

    def test_ground_effect_zone(self):
        """G is averaged over the length, g_s outside the zones"""
        builder = ProfileBuilder()
        builder.add_ground_effect(box(25, -10, 75, 10), g=1.0)
        builder.finish_feeding()
        profile = builder.get_profile(SRC, RCV, g_s=0.0)
        assert profile.get_g_path() == pytest.approx(0.5)
        ground_cuts = [c for c in profile.cut_points if c.type == IntersectionType.GROUND_EFFECT]
        assert [c.distance for c in ground_cuts] == pytest.approx([25.0, 75.0])
        assert profile.get_g_path(ground_cuts[0], ground_cuts[1]) == pytest.approx(1.0)

    def test_ground_coefficient_at_endpoints(self):
        builder = ProfileBuilder()
        builder.add_ground_effect(box(-10, -10, 10, 10), g=0.7)
        builder.finish_feeding()
        profile = builder.get_profile(SRC, RCV, g_s=0.2)
        assert profile.source.g_coef == 0.7
        assert profile.receiver.g_coef == 0.2

    def test_terrain_obstruction(self):
        """A hill higher than the ray obstructs the profile"""
        builder = ProfileBuilder(terrain=lambda x, y: 20.0 if 40 <= x <= 60 else 0.0, topography_step=10)
        builder.finish_feeding()
        profile = builder.get_profile(SRC, RCV)
        assert profile.intersect_topography()
        assert not profile.intersect_building()
        topo = [c for c in profile.cut_points if c.type == IntersectionType.TOPOGRAPHY]
        assert len(topo) == 9
        assert builder.get_z_ground(Coordinate(50, 0)) == 20.0
        assert builder.get_z_ground(topo[4]) == 20.0

    def test_building_on_terrain(self):
        """Roof altitude is measured from the ground under the footprint"""
        builder = ProfileBuilder(terrain=lambda x, y: 3.0)
        builder.add_building(box(40, -5, 60, 5), height=10)
        builder.finish_feeding()
        assert builder.get_building(0).z_top == 13.0
