"""
Receiver Engine and Batch Dispatcher

For every receiver:
    1. Discover and rank the sources in range (sources.discover_sources)
    2. For each source, loudest first, build the direct path (free field,
       horizontal and lateral diffraction) and the reflection paths, and
       hand them to the output sink
    3. Stop early once the power not yet evaluated cannot raise the level
       by maximum_error dB, or on cancellation
    4. Finalize the receiver in the sink, exactly once

Receivers are split into contiguous ranges, one task per range, run on a
ThreadPoolExecutor sized to the configured thread count. Each task owns
a private sub-sink merged into the shared one at every finalized receiver.
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import List, Optional, Tuple

import numpy as np
import shapely

from common.config import PropagationConfig
from common.logging_config import MetricsLogger
from .builders.free_field import compute_free_field
from .builders.horizontal_diffraction import compute_h_edge_diffraction
from .builders.reflection import ReflectionSearch
from .builders.vertical_diffraction import LEFT, RIGHT, compute_v_edge_diffraction
from .data import PropagationData
from .exceptions import ComputationError
from .geometry import Coordinate, Orientation
from .output import IComputeRaysOut, RayCounters
from .path_model import PropagationPath
from .power_utils import dba_to_w, sum_array, w_to_dba
from .progress import ProgressVisitor
from .sources import ReceiverPointInfo, SourcePointInfo, discover_sources

logger = logging.getLogger(__name__)


def partition_receivers(receiver_count: int, thread_count: int) -> List[Tuple[int, int]]:
    """
    Split [0, receiver_count) into at most thread_count contiguous ranges.

    All ranges have the same size except the last one, which holds what
    remains; no range is empty.
    """
    if receiver_count <= 0:
        return []
    batch = int(math.ceil(receiver_count / float(max(1, thread_count))))
    return [(start, min(start + batch, receiver_count)) for start in range(0, receiver_count, batch)]


class RangeReceiversComputation:
    """Task computing the receivers [start, end) with its own sub-sink."""

    def __init__(self, start: int, end: int, engine: 'ComputeRays',
                 progress: ProgressVisitor, data_out: IComputeRaysOut):
        self.start = start
        self.end = end
        self.engine = engine
        self.progress = progress
        self.data_out = data_out.sub_process(start, end)

    def run(self) -> None:
        receivers = self.engine.data.receivers
        receiver_range = (self.start, self.end)
        started = time.time()
        try:
            for receiver_id in range(self.start, self.end):
                if self.progress.is_canceled():
                    logger.info(f"Range [{self.start}, {self.end}) cancelled at receiver {receiver_id}",
                                extra={"receiver_range": receiver_range})
                    break
                rcv = ReceiverPointInfo(receiver_id, receivers[receiver_id])
                self.engine.compute_rays_at_position(rcv, self.data_out, self.progress)
                self.progress.end_step()
        except Exception as e:
            logger.error(f"Receiver range [{self.start}, {self.end}) failed: {e}", exc_info=True,
                         extra={"receiver_range": receiver_range})
            self.progress.cancel()
            raise
        self.engine.metrics.log_duration("receiver_range", time.time() - started,
                                         labels={"range": f"{self.start}-{self.end}"})


class ComputeRays:
    """
    Path finding over all receivers of a PropagationData.

    Example:
        data = PropagationData(builder, PropagationConfig(reflection_order=1))
        data.add_receiver(Coordinate(100, 0, 2))
        data.add_source(Point(0, 0, 1), power=[1e-3] * 8)

        out = ComputeRaysOut(keep_rays=True)
        ComputeRays(data).run(out)
        out.propagation_paths
    """

    def __init__(self, data: PropagationData, config: Optional[PropagationConfig] = None):
        self.data = data
        self.config = config or data.config
        self.builder = data.profile_builder
        self.thread_count = self.config.thread_count
        self.reflection = ReflectionSearch(self.builder, self.config, self._leg_paths)
        self.metrics = MetricsLogger("pathfinder")

    def set_thread_count(self, thread_count: int) -> None:
        if thread_count < 1:
            raise ValueError(f"thread_count must be >= 1, got {thread_count}")
        self.thread_count = thread_count

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def run(self, data_out: IComputeRaysOut, progress: Optional[ProgressVisitor] = None) -> None:
        """
        Compute every receiver and store the paths in data_out.

        Args:
            data_out: Shared output sink
            progress: Cancellation token and progress counter

        Raises:
            ComputationError: A receiver range failed; raised once every
                submitted range has ended
        """
        if progress is None:
            progress = ProgressVisitor()
        receiver_count = len(self.data.receivers)
        if progress.total_steps == 0:
            progress.total_steps = receiver_count

        self.data.build_sources_index()
        ranges = partition_receivers(receiver_count, self.thread_count)
        start_time = time.time()
        logger.info(f"Path finding: {receiver_count} receivers, {len(self.data.source_geometries)} sources, "
                    f"{len(ranges)} ranges on {self.thread_count} threads")

        failures: List[Tuple[Tuple[int, int], BaseException]] = []
        if self.thread_count == 1:
            for start, end in ranges:
                if progress.is_canceled():
                    break
                try:
                    RangeReceiversComputation(start, end, self, progress, data_out).run()
                except Exception as e:
                    failures.append(((start, end), e))
        else:
            failures = self._run_pool(ranges, data_out, progress)

        self._log_counters(data_out.counters, time.time() - start_time, progress)

        if failures:
            raise ComputationError(
                f"{len(failures)} receiver range(s) failed, first error: {failures[0][1]}",
                failed_ranges=[r for r, _ in failures],
            ) from failures[0][1]

    def _run_pool(self, ranges: List[Tuple[int, int]], data_out: IComputeRaysOut,
                  progress: ProgressVisitor) -> List[Tuple[Tuple[int, int], BaseException]]:
        executor = ThreadPoolExecutor(max_workers=self.thread_count, thread_name_prefix="pathfinder")
        futures = {}
        not_done = set()
        try:
            for start, end in ranges:
                if progress.is_canceled():
                    logger.info(f"Cancelled before dispatching range [{start}, {end})")
                    break
                task = RangeReceiversComputation(start, end, self, progress, data_out)
                futures[executor.submit(task.run)] = (start, end)

            done, not_done = wait(futures, timeout=self.config.pool_timeout_s)
            if not_done:
                logger.warning(f"Timeout elapsed before termination of {len(not_done)} receiver ranges")
        finally:
            executor.shutdown(wait=not not_done)

        failures = []
        for future in done:
            error = future.exception()
            if error is not None:
                failures.append((futures[future], error))
        return failures

    def _log_counters(self, counters: RayCounters, elapsed: float, progress: ProgressVisitor) -> None:
        for name, value in counters.to_dict().items():
            self.metrics.log_counter(name, value)
        self.metrics.log_gauge("computation_time_s", elapsed)
        logger.info(f"Path finding complete: {progress.steps_done} receivers, "
                    f"{counters.ray_count} paths in {elapsed:.1f}s")

    # ------------------------------------------------------------------
    # Receiver engine
    # ------------------------------------------------------------------

    def compute_rays_at_position(self, rcv: ReceiverPointInfo, data_out: IComputeRaysOut,
                                 progress: Optional[ProgressVisitor] = None) -> None:
        """Evaluate the ranked sources of one receiver, then finalize it."""
        sources, total_power_remaining = discover_sources(self.data, rcv, self.config.max_src_dist)
        maximum_error = self.config.maximum_error
        early_termination = self.config.early_termination_enabled
        power_at_source = 0.0

        for src in sources:
            power = self.rcv_src_propagation(src, src.li, rcv, data_out, progress)
            total_power_remaining -= src.global_wj
            if len(power) > 0:
                power_at_source += sum_array(dba_to_w(power))
            else:
                power_at_source += src.global_wj
            total_power_remaining = max(0.0, total_power_remaining)

            if progress is not None and progress.is_canceled():
                break
            if early_termination and (w_to_dba(power_at_source + total_power_remaining)
                                      - w_to_dba(power_at_source)) < maximum_error:
                logger.debug(f"Receiver {rcv.id}: remaining sources below {maximum_error} dB, stopping")
                break

        data_out.finalize_receiver(rcv.id)

    def rcv_src_propagation(self, src: SourcePointInfo, src_li: float, rcv: ReceiverPointInfo,
                            data_out: IComputeRaysOut,
                            progress: Optional[ProgressVisitor] = None) -> np.ndarray:
        """
        Paths of one source/receiver couple, registered in data_out.

        Returns:
            Received level per band in dB from the sink, empty when unknown
        """
        counters = data_out.counters
        counters.receiver_source_couples += 1
        paths: List[PropagationPath] = []

        if src.position.distance(rcv.position) < self.config.max_src_dist:
            paths.extend(self.direct_path(src.position, src.id, src.orientation,
                                          rcv.position, rcv.id, counters))
            if self.config.reflection_order > 0:
                for path in self.reflection.compute_reflection(rcv.position, src.position, False,
                                                               progress, counters):
                    path.id_source = src.id
                    path.id_receiver = rcv.id
                    path.source_orientation = src.orientation
                    paths.append(path)

        if paths:
            return data_out.add_propagation_paths(src.id, src_li, rcv.id, paths)
        return np.zeros(0)

    def direct_path(self, src: Coordinate, src_id: int, orientation: Optional[Orientation],
                    rcv: Coordinate, rcv_id: int,
                    counters: Optional[RayCounters] = None) -> List[PropagationPath]:
        """
        Free field or diffracted paths of the straight line src -> rcv.

        Returns:
            One free field path when the line is clear; otherwise the
            enabled diffraction paths, possibly none
        """
        profile = self.builder.get_profile(src, rcv, self.config.g_s)
        if counters is not None:
            counters.obstruction_tests += 1

        paths: List[PropagationPath] = []
        if profile.is_free_field():
            paths.append(compute_free_field(profile, self.config.compute_diffraction))
        elif self.config.compute_diffraction:
            if self.config.compute_h_edge_diffraction:
                paths.append(compute_h_edge_diffraction(profile, self.builder))
            if self.config.compute_v_edge_diffraction:
                for side in (LEFT, RIGHT):
                    path = compute_v_edge_diffraction(src, rcv, self.builder, self.config.g_s, side)
                    if path is not None:
                        paths.append(path)
            if counters is not None:
                counters.diffraction_paths += len(paths)

        for path in paths:
            path.id_source = src_id
            path.id_receiver = rcv_id
            path.source_orientation = orientation or Orientation()
        return paths

    def _leg_paths(self, p0: Coordinate, p1: Coordinate) -> List[PropagationPath]:
        return self.direct_path(p0, -1, None, p1, -1)

    # ------------------------------------------------------------------
    # Ground leveling
    # ------------------------------------------------------------------

    def _absolute_z(self, x, y, z=None):
        xs = np.atleast_1d(np.asarray(x, dtype=float))
        ys = np.atleast_1d(np.asarray(y, dtype=float))
        zs = np.full(xs.shape, np.nan) if z is None else np.atleast_1d(np.asarray(z, dtype=float))
        ground = np.array([self.builder.get_z_ground(Coordinate(a, b)) for a, b in zip(xs, ys)])
        leveled = np.where(np.isnan(ground), zs, ground + np.nan_to_num(zs, nan=0.0))
        return xs, ys, leveled

    def _level_coords(self, coords: np.ndarray) -> np.ndarray:
        # coords is (N, 3); z is NaN for 2D geometries
        return np.column_stack(self._absolute_z(coords[:, 0], coords[:, 1], coords[:, 2]))

    def make_source_relative_z_to_absolute(self) -> None:
        """Add the ground altitude to the z of every source vertex."""
        self.data.source_geometries = [shapely.transform(geom, self._level_coords, include_z=True)
                                       for geom in self.data.source_geometries]
        self.data.sources_index = None

    def make_receiver_relative_z_to_absolute(self) -> None:
        """Add the ground altitude to the z of every receiver."""
        receivers = self.data.receivers
        if not receivers:
            return
        xs, ys, zs = self._absolute_z([r.x for r in receivers], [r.y for r in receivers],
                                      [r.z for r in receivers])
        self.data.receivers = [Coordinate(float(x), float(y), float(z)) for x, y, z in zip(xs, ys, zs)]

    def make_relative_z_to_absolute(self) -> None:
        self.make_source_relative_z_to_absolute()
        self.make_receiver_relative_z_to_absolute()
