"""
Output Sinks

Destination of the produced paths:

    - ComputeRaysOut: thread-safe sink shared by a whole run, keeps the
      paths (optionally) and the diagnostic counters
    - ThreadRaysOut: single-threaded buffer owned by one worker, flushed
      into its parent when a receiver is finalized

A sink returns the per-band power received through the paths it is
given; an empty array tells the receiver engine to fall back on the
maximal power estimate of the source.
"""

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional

import numpy as np

from .path_model import PropagationPath

logger = logging.getLogger(__name__)


@dataclass
class RayCounters:
    """Diagnostics of a run."""
    ray_count: int = 0
    receiver_source_couples: int = 0
    obstruction_tests: int = 0
    image_receivers: int = 0
    reflection_paths: int = 0
    diffraction_paths: int = 0
    cells_computed: int = 0

    def merge(self, other: 'RayCounters') -> None:
        self.ray_count += other.ray_count
        self.receiver_source_couples += other.receiver_source_couples
        self.obstruction_tests += other.obstruction_tests
        self.image_receivers += other.image_receivers
        self.reflection_paths += other.reflection_paths
        self.diffraction_paths += other.diffraction_paths
        self.cells_computed += other.cells_computed

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


class IComputeRaysOut(ABC):
    """Sink contract used by the receiver engine."""

    counters: RayCounters

    @abstractmethod
    def add_propagation_paths(self, source_id: int, source_li: float, receiver_id: int,
                              paths: List[PropagationPath]) -> np.ndarray:
        """
        Receive the paths of one source/receiver couple.

        Returns:
            Per-band received level in dB, empty when unknown
        """

    @abstractmethod
    def finalize_receiver(self, receiver_id: int) -> None:
        """Called once when the evaluation of a receiver ends."""

    @abstractmethod
    def sub_process(self, receiver_start: int, receiver_end: int) -> 'IComputeRaysOut':
        """Sink for a worker computing receivers [receiver_start, receiver_end)."""


class ComputeRaysOut(IComputeRaysOut):
    """
    Shared sink of a run.

    Args:
        keep_rays: Store the received paths in propagation_paths
        input_data: When given, paths flushed by worker sinks are addressed
            by the source/receiver primary keys instead of list indices
    """

    def __init__(self, keep_rays: bool = True, input_data=None):
        self.keep_rays = keep_rays
        self.input_data = input_data
        self.propagation_paths: List[PropagationPath] = []
        self.counters = RayCounters()
        self._lock = threading.Lock()

    def add_propagation_paths(self, source_id: int, source_li: float, receiver_id: int,
                              paths: List[PropagationPath]) -> np.ndarray:
        with self._lock:
            self.counters.ray_count += len(paths)
            if self.keep_rays:
                self.propagation_paths.extend(paths)
        return np.zeros(0)

    def finalize_receiver(self, receiver_id: int) -> None:
        """Hook for subclasses; worker sinks merge their buffers before calling it."""

    def sub_process(self, receiver_start: int, receiver_end: int) -> 'ThreadRaysOut':
        return ThreadRaysOut(self)

    def merge(self, paths: List[PropagationPath], counters: RayCounters) -> None:
        """Append a worker buffer; the only point where workers contend."""
        with self._lock:
            if self.keep_rays:
                self.propagation_paths.extend(paths)
            self.counters.merge(counters)

    def get_propagation_paths(self) -> List[PropagationPath]:
        with self._lock:
            return list(self.propagation_paths)

    def clear_propagation_paths(self) -> None:
        with self._lock:
            self.propagation_paths.clear()

    @property
    def cells_computed(self) -> int:
        with self._lock:
            return self.counters.cells_computed


class ThreadRaysOut(IComputeRaysOut):
    """Per-worker buffer of a ComputeRaysOut."""

    def __init__(self, parent: ComputeRaysOut):
        self.parent = parent
        self.propagation_paths: List[PropagationPath] = []
        self.counters = RayCounters()

    def _primary_keys(self, source_id: int, receiver_id: int) -> Optional[tuple]:
        data = self.parent.input_data
        if data is None:
            return None
        if source_id < len(data.sources_pk) and receiver_id < len(data.receivers_pk):
            return data.sources_pk[source_id], data.receivers_pk[receiver_id]
        return None

    def add_propagation_paths(self, source_id: int, source_li: float, receiver_id: int,
                              paths: List[PropagationPath]) -> np.ndarray:
        self.counters.ray_count += len(paths)
        if self.parent.keep_rays:
            keys = self._primary_keys(source_id, receiver_id)
            if keys is None:
                self.propagation_paths.extend(paths)
            else:
                # Copies keep the original indices of the caller's paths intact
                self.propagation_paths.extend(p.with_ids(keys[0], keys[1]) for p in paths)
        return np.zeros(0)

    def finalize_receiver(self, receiver_id: int) -> None:
        self.counters.cells_computed += 1
        self.parent.merge(self.propagation_paths, self.counters)
        self.propagation_paths = []
        self.counters = RayCounters()
        self.parent.finalize_receiver(receiver_id)

    def sub_process(self, receiver_start: int, receiver_end: int) -> 'ThreadRaysOut':
        return self.parent.sub_process(receiver_start, receiver_end)
