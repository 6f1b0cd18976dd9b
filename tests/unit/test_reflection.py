"""
Unit Tests for the Reflection Search

Tests cover:
- Receiver image tree (first and second order)
- Occlusion by other walls of the same building
- Reflection path assembly and validity checks
- Cancellation and diagnostics counters
"""

import sys
from pathlib import Path

import numpy as np
import pytest
from shapely.geometry import LineString, Polygon

sys.path.insert(0, str(Path(__file__).parent.parent.parent / 'src'))

from common.config import PropagationConfig
from pathfinder.builders import ReflectionSearch, compute_free_field
from pathfinder.geometry import Coordinate
from pathfinder.output import RayCounters
from pathfinder.path_model import PointType
from pathfinder.profile import ProfileBuilder
from pathfinder.progress import ProgressVisitor

SRC = Coordinate(0, 0, 1)
RCV = Coordinate(100, 0, 2)

NORTH_BLOCK = Polygon([(20, 20), (80, 20), (80, 25), (20, 25)])
SOUTH_BLOCK = Polygon([(20, -25), (80, -25), (80, -20), (20, -20)])


def _search(builder, **config):
    config.setdefault('thread_count', 1)

    def leg_paths(p0, p1):
        profile = builder.get_profile(p0, p1)
        return [compute_free_field(profile)] if profile.is_free_field() else []

    return ReflectionSearch(builder, PropagationConfig(**config), leg_paths)


def _builder(*footprints, height=10.0):
    builder = ProfileBuilder()
    for footprint in footprints:
        builder.add_building(footprint, height=height, alphas=[0.5] * 8)
    builder.finish_feeding()
    return builder


class TestMirrorReceivers:
    """Tests for the receiver image tree"""

    def test_single_facade(self):
        """Only the facade facing the line produces an image"""
        builder = _builder(NORTH_BLOCK)
        search = _search(builder)
        tree = search.mirror_receivers(search.candidate_walls(SRC, RCV), SRC, RCV)
        assert len(tree) == 1
        image = tree[0]
        assert image.is_root
        assert image.wall_id == 0
        assert image.building_id == 0
        assert image.receiver_pos.x == pytest.approx(100.0)
        assert image.receiver_pos.y == pytest.approx(40.0)
        assert image.receiver_pos.z == 2

    def test_second_order(self):
        """Facing buildings give images of images, never through the parent wall"""
        builder = _builder(NORTH_BLOCK, SOUTH_BLOCK)
        search = _search(builder, reflection_order=2)
        tree = search.mirror_receivers(search.candidate_walls(SRC, RCV), SRC, RCV)
        assert len(tree) == 4
        assert sorted(tree.depth(i) for i in range(len(tree))) == [1, 1, 2, 2]
        for node in tree:
            if not node.is_root:
                assert node.wall_id != tree[node.parent_index].wall_id
                assert node.building_id != tree[node.parent_index].building_id

    def test_image_beyond_search_distance(self):
        builder = _builder(NORTH_BLOCK)
        search = _search(builder, max_src_dist=100.0)
        tree = search.mirror_receivers(search.candidate_walls(SRC, RCV), SRC, RCV)
        assert len(tree) == 0

    def test_free_walls_do_not_reflect(self):
        builder = ProfileBuilder()
        builder.add_wall(LineString([(20, 20), (80, 20)]), height=10)
        builder.finish_feeding()
        search = _search(builder)
        assert search.candidate_walls(SRC, RCV) == []
        assert search.compute_reflection(RCV, SRC) == []


class TestComputeReflection:
    """Tests for complete reflection paths"""

    def test_first_order_path(self):
        builder = _builder(NORTH_BLOCK)
        counters = RayCounters()
        paths = _search(builder).compute_reflection(RCV, SRC, counters=counters)

        assert len(paths) == 1
        path = paths[0]
        assert path.is_consistent()
        assert not path.favorable
        assert [p.type for p in path.point_list] == [PointType.SOURCE, PointType.REFLECTION, PointType.RECEIVER]
        assert path.reflection_count == 1
        assert path.dif_h_points == []

        reflection = path.point_list[1]
        assert reflection.wall_id == 0
        assert reflection.building_id == 0
        np.testing.assert_allclose(reflection.alpha_wall, [0.5] * 8)
        assert reflection.position.x == pytest.approx(50.0, abs=0.05)
        assert reflection.position.y == pytest.approx(20.0, abs=0.05)
        assert 1.0 < reflection.coordinate.y < 2.0

        # Unfolded length is the distance to the receiver image
        assert path.point_list[-1].coordinate.x == pytest.approx(np.hypot(100, 40), abs=0.05)
        assert path.sr_segment.d == pytest.approx(np.hypot(np.hypot(100, 40), 1), abs=0.05)

        assert counters.image_receivers == 1
        assert counters.reflection_paths == 1

    def test_reflection_above_roof_rejected(self):
        """The reflection point must lie below the top of the facade"""
        builder = _builder(NORTH_BLOCK, height=1.0)
        assert _search(builder).compute_reflection(RCV, SRC) == []

    def test_reflection_below_ground_rejected(self):
        builder = ProfileBuilder(ground_z=5.0)
        builder.add_building(NORTH_BLOCK, height=10)
        builder.finish_feeding()
        assert _search(builder).compute_reflection(RCV, SRC) == []

    def test_cancelled_search(self):
        builder = _builder(NORTH_BLOCK)
        progress = ProgressVisitor()
        progress.cancel()
        assert _search(builder).compute_reflection(RCV, SRC, progress=progress) == []

    def test_favorable_flag_propagated(self):
        builder = _builder(NORTH_BLOCK)
        paths = _search(builder).compute_reflection(RCV, SRC, favorable=True)
        assert all(p.favorable for p in paths)

    def test_second_order_paths_alternate_buildings(self):
        """Second order paths bounce between the two blocks"""
        builder = _builder(NORTH_BLOCK, SOUTH_BLOCK)
        counters = RayCounters()
        paths = _search(builder, reflection_order=2).compute_reflection(RCV, SRC, counters=counters)
        assert counters.image_receivers == 4
        for path in paths:
            assert path.is_consistent()
            reflections = [p for p in path.point_list if p.type == PointType.REFLECTION]
            assert 1 <= len(reflections) <= 2
            if len(reflections) == 2:
                assert reflections[0].building_id != reflections[1].building_id
        assert sum(1 for p in paths if p.reflection_count == 1) == 2
