"""
Unit Tests for the Output Sinks

Tests cover:
- Path storage and counters of the shared sink
- Worker sub-sinks flushed at receiver finalization
- Primary key remapping
- Concurrent merges
"""

import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import numpy as np
from shapely.geometry import Point

sys.path.insert(0, str(Path(__file__).parent.parent.parent / 'src'))

from pathfinder.data import PropagationData
from pathfinder.geometry import Coordinate
from pathfinder.output import ComputeRaysOut, RayCounters, ThreadRaysOut
from pathfinder.path_model import PropagationPath
from pathfinder.profile import ProfileBuilder


def _path(id_source=0, id_receiver=0):
    return PropagationPath(favorable=False, point_list=[], segment_list=[], sr_segment=None,
                           id_source=id_source, id_receiver=id_receiver)


class TestRayCounters:
    """Tests for diagnostics counters"""

    def test_merge(self):
        a = RayCounters(ray_count=2, obstruction_tests=5)
        a.merge(RayCounters(ray_count=3, image_receivers=1, cells_computed=1))
        assert a.ray_count == 5
        assert a.obstruction_tests == 5
        assert a.image_receivers == 1
        assert a.cells_computed == 1

    def test_to_dict(self):
        assert RayCounters(reflection_paths=4).to_dict()['reflection_paths'] == 4


class TestComputeRaysOut:
    """Tests for the shared sink"""

    def test_keeps_paths(self):
        out = ComputeRaysOut()
        levels = out.add_propagation_paths(0, 1.0, 0, [_path(), _path()])
        assert len(out.get_propagation_paths()) == 2
        assert out.counters.ray_count == 2
        assert isinstance(levels, np.ndarray) and levels.size == 0

    def test_keep_rays_disabled(self):
        """Paths are counted but not stored"""
        out = ComputeRaysOut(keep_rays=False)
        out.add_propagation_paths(0, 1.0, 0, [_path()])
        assert out.get_propagation_paths() == []
        assert out.counters.ray_count == 1

    def test_clear(self):
        out = ComputeRaysOut()
        out.add_propagation_paths(0, 1.0, 0, [_path()])
        out.clear_propagation_paths()
        assert out.propagation_paths == []


class TestThreadRaysOut:
    """Tests for worker sub-sinks"""

    def test_buffer_flushed_at_finalize(self):
        """Nothing reaches the parent before the receiver is finalized"""
        out = ComputeRaysOut()
        sub = out.sub_process(0, 10)
        assert isinstance(sub, ThreadRaysOut)

        sub.add_propagation_paths(0, 1.0, 3, [_path(0, 3)])
        sub.counters.obstruction_tests += 2
        assert out.propagation_paths == []

        sub.finalize_receiver(3)
        assert len(out.propagation_paths) == 1
        assert out.counters.ray_count == 1
        assert out.counters.obstruction_tests == 2
        assert out.cells_computed == 1
        assert sub.propagation_paths == []
        assert sub.counters == RayCounters()

    def test_primary_key_remapping(self):
        """Flushed paths are addressed by the caller primary keys"""
        builder = ProfileBuilder()
        builder.finish_feeding()
        data = PropagationData(builder)
        data.add_receiver(Coordinate(0, 0, 1), pk=100)
        data.add_source(Point(10, 0, 1), pk=7)

        out = ComputeRaysOut(input_data=data)
        sub = out.sub_process(0, 1)
        original = _path(0, 0)
        sub.add_propagation_paths(0, 1.0, 0, [original])
        sub.finalize_receiver(0)

        stored = out.propagation_paths[0]
        assert (stored.id_source, stored.id_receiver) == (7, 100)
        assert (original.id_source, original.id_receiver) == (0, 0)

    def test_finalize_hook_called(self):
        """The parent hook sees every finalized receiver"""
        class HookOut(ComputeRaysOut):
            def __init__(self):
                super().__init__()
                self.finalized = []

            def finalize_receiver(self, receiver_id):
                self.finalized.append(receiver_id)

        out = HookOut()
        sub = out.sub_process(0, 2)
        sub.finalize_receiver(0)
        sub.finalize_receiver(1)
        assert out.finalized == [0, 1]

    def test_concurrent_merges(self):
        """Workers flushing concurrently lose no path"""
        out = ComputeRaysOut()

        def worker(start):
            sub = out.sub_process(start, start + 50)
            for receiver_id in range(start, start + 50):
                sub.add_propagation_paths(0, 1.0, receiver_id, [_path(0, receiver_id)])
                sub.finalize_receiver(receiver_id)

        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(worker, range(0, 400, 50)))

        assert len(out.propagation_paths) == 400
        assert out.counters.ray_count == 400
        assert out.cells_computed == 400
        assert sorted(p.id_receiver for p in out.propagation_paths) == list(range(400))
