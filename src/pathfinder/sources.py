"""
Source Discovery and Ranking

For one receiver, collects the sound sources within the search distance,
discretizes line sources into weighted point sources, and estimates the
maximal power each point can bring to the receiver:

    W_max = W * li * 10^(-ADiv(d)/10) * 10^(3/10)

ADiv is the geometric divergence of a point source and the +3 dB term
accounts for a fully reflective ground. Points are ranked by descending
total W_max (ties by ascending source id) so that the receiver engine can
stop once the remaining power cannot change the result.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import numpy as np
from shapely.geometry import LineString, MultiLineString, Point

from common.constants import MIN_SEGMENT_SIZE, REFLECTIVE_GROUND_ALLOWANCE_DB
from .data import PropagationData
from .exceptions import UnsupportedGeometryError
from .geometry import Coordinate, Orientation, nearest_point
from .power_utils import dba_to_w, get_a_div, sum_array

logger = logging.getLogger(__name__)


@dataclass
class ReceiverPointInfo:
    id: int
    position: Coordinate


@dataclass
class SourcePointInfo:
    """
    A discretized emission point.

    Attributes:
        id: Index of the owning source geometry
        position: Emission position (NaN z replaced by 0)
        wj: Per-band maximal power received in direct field (W)
        li: Length represented by the point (1 for point sources)
        orientation: Emission orientation
        global_wj: Sum of wj over the bands
    """
    id: int
    position: Coordinate
    wj: np.ndarray
    li: float
    orientation: Orientation = field(default_factory=Orientation)
    global_wj: float = field(init=False)

    def __post_init__(self):
        if math.isnan(self.position.z):
            self.position = Coordinate(self.position.x, self.position.y, 0.0)
        self.global_wj = sum_array(self.wj)

    @property
    def sort_key(self) -> Tuple[float, int]:
        return (-self.global_wj, self.id)


def split_line_string_into_points(line: LineString, segment_size_constraint: float) -> Tuple[List[Coordinate], float]:
    """
    Resample a line into equally weighted representative points.

    Lengths are planar: a sloped line is weighted by its length in the
    (x, y) plane, z only follows along in the interpolated points.

    A line shorter than the constraint becomes its midpoint weighted by the
    whole length. Otherwise it is cut into ceil(length / constraint) pieces
    of equal length and each piece is represented by its midpoint.

    Args:
        line: Source line
        segment_size_constraint: Maximal piece length (m)

    Returns:
        (points, li) with li the length represented by each point;
        len(points) * li equals the line length
    """
    length = line.length
    if length < segment_size_constraint:
        return [_coordinate(line.interpolate(length / 2.0))], length

    count = int(math.ceil(length / segment_size_constraint))
    target = length / count
    points = [_coordinate(line.interpolate((i + 0.5) * target)) for i in range(count)]
    return points, target


def _coordinate(point: Point) -> Coordinate:
    return Coordinate.from_sequence(point.coords[0])


def insert_pt_source(position: Coordinate, receiver: Coordinate, source_id: int,
                     wj: np.ndarray, li: float, orientation: Orientation) -> SourcePointInfo:
    """Build a ranked source point with its maximal received power."""
    info = SourcePointInfo(id=source_id, position=position, wj=np.zeros(0), li=li,
                           orientation=orientation)
    attenuation = dba_to_w(-get_a_div(info.position.distance_3d(receiver))) * dba_to_w(REFLECTIVE_GROUND_ALLOWANCE_DB)
    info.wj = np.asarray(wj, dtype=float) * li * attenuation
    info.global_wj = sum_array(info.wj)
    return info


def _direction(p0: Coordinate, p1: Coordinate) -> np.ndarray:
    v = np.array([p1.x - p0.x, p1.y - p0.y,
                  0.0 if math.isnan(p1.z) or math.isnan(p0.z) else p1.z - p0.z])
    norm = np.linalg.norm(v)
    return v / norm if norm > 0 else v


def add_line_source(line: LineString, receiver: Coordinate, source_id: int, wj: np.ndarray,
                    max_src_dist: float, base_orientation: Optional[Orientation]) -> List[SourcePointInfo]:
    """
    Discretize one line source for a receiver.

    Points farther than max_src_dist from the receiver are dropped. Each
    point is oriented along the local line direction, turned by the base
    orientation of the source when one is registered.
    """
    nearest = nearest_point(line, receiver)
    constraint = max(MIN_SEGMENT_SIZE, receiver.distance_3d(nearest) / 2.0)
    points, li = split_line_string_into_points(line, constraint)

    first = Coordinate.from_sequence(line.coords[0])
    inserted = []
    for i, pt in enumerate(points):
        if pt.distance(receiver) >= max_src_dist:
            continue
        v = _direction(first if i == 0 else points[i - 1], pt)
        if base_orientation is not None:
            turned = Orientation.rotate(Orientation(base_orientation.yaw, base_orientation.pitch, 0.0), v)
            orientation = Orientation.from_vector(turned, base_orientation.roll)
        else:
            orientation = Orientation.from_vector(v, 0.0)
        inserted.append(insert_pt_source(pt, receiver, source_id, wj, li, orientation))
    return inserted


def discover_sources(data: PropagationData, receiver: ReceiverPointInfo,
                     max_src_dist: Optional[float] = None) -> Tuple[List[SourcePointInfo], float]:
    """
    Ranked emission points around a receiver.

    Args:
        data: Sources and their index
        receiver: Receiver to rank the sources for
        max_src_dist: Search radius (m), data.config.max_src_dist when None

    Returns:
        (sources sorted by descending power then ascending id, total maximal power W)

    Raises:
        UnsupportedGeometryError: A source is neither a point nor a (multi)line
    """
    if max_src_dist is None:
        max_src_dist = data.config.max_src_dist
    rcv = receiver.position
    sources: List[SourcePointInfo] = []

    for index in data.sources_around(rcv, max_src_dist):
        geometry = data.source_geometries[index]
        wj = data.max_source_power(index)
        base_orientation = data.get_source_orientation(index)

        if isinstance(geometry, Point):
            position = Coordinate.from_sequence(geometry.coords[0])
            if position.distance(rcv) < max_src_dist:
                sources.append(insert_pt_source(position, rcv, index, wj, 1.0,
                                                base_orientation or Orientation()))
        elif isinstance(geometry, LineString):
            sources.extend(add_line_source(geometry, rcv, index, wj, max_src_dist, base_orientation))
        elif isinstance(geometry, MultiLineString):
            for part in geometry.geoms:
                sources.extend(add_line_source(part, rcv, index, wj, max_src_dist, base_orientation))
        else:
            raise UnsupportedGeometryError(geometry.geom_type)

    sources.sort(key=lambda s: s.sort_key)
    total_power = sum(s.global_wj for s in sources)
    logger.debug(f"Receiver {receiver.id}: {len(sources)} source points in range")
    return sources, total_power
