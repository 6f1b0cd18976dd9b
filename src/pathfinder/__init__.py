"""
Outdoor Sound Propagation Path Finder

Builds the propagation paths (direct, diffracted over and around
obstacles, reflected on facades) between sound sources and receivers,
following the CNOSSOS-EU geometric conventions, and dispatches the
receivers over a thread pool.

Main entry points:
- ProfileBuilder: terrain, buildings, walls and ground zones
- PropagationData: receivers and sources of a run
- ComputeRays: receiver engine and batch dispatcher
- ComputeRaysOut: thread-safe output sink
"""

__version__ = "0.1.0"

from .exceptions import ComputationError, PathfinderError, UnsupportedGeometryError
from .geometry import Coordinate, LineSegment, Orientation
from .path_model import (
    MirrorReceiverTree,
    PointPath,
    PointType,
    PropagationPath,
    SegmentPath,
)
from .profile import CutPoint, CutProfile, IntersectionType, ProfileBuilder
from .data import PropagationData
from .sources import ReceiverPointInfo, SourcePointInfo, discover_sources
from .progress import ProgressVisitor
from .output import ComputeRaysOut, IComputeRaysOut, RayCounters, ThreadRaysOut
from .engine import ComputeRays, RangeReceiversComputation, partition_receivers

__all__ = [
    # Errors
    'PathfinderError',
    'UnsupportedGeometryError',
    'ComputationError',
    # Geometry
    'Coordinate',
    'LineSegment',
    'Orientation',
    # Paths
    'PointType',
    'PointPath',
    'SegmentPath',
    'PropagationPath',
    'MirrorReceiverTree',
    # Model
    'IntersectionType',
    'CutPoint',
    'CutProfile',
    'ProfileBuilder',
    'PropagationData',
    'ReceiverPointInfo',
    'SourcePointInfo',
    'discover_sources',
    # Run
    'ProgressVisitor',
    'IComputeRaysOut',
    'ComputeRaysOut',
    'ThreadRaysOut',
    'RayCounters',
    'ComputeRays',
    'RangeReceiversComputation',
    'partition_receivers',
]
