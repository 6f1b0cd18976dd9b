"""
In-Memory Profile Builder

Terrain and obstacle model queried by the path builders:

    - Flat base ground, optionally replaced by a terrain callable
      z = terrain(x, y) sampled every topography_step metres along a cut
    - Buildings: polygon footprints with a height and an absorption
      spectrum, decomposed into one wall per footprint edge
    - Free-standing walls: linestrings with a height and an absorption
      spectrum
    - Ground effect zones: polygons carrying a ground absorption
      coefficient G

A profile is the ordered list of intersections (cut points) of a
straight 3D line with this model. Walls and zones are indexed with
shapely's STRtree once feeding is finished; the builder is read-only
afterwards and is shared between worker threads.

Altitude conventions:
    - Wall lines carry the altitude of the wall top in their z
    - BUILDING / WALL cut points carry the obstacle top altitude
    - TOPOGRAPHY cut points carry the ground altitude
    - SOURCE / RECEIVER cut points carry the queried endpoint altitude
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np
from shapely.geometry import LineString, Point, Polygon
from shapely.strtree import STRtree

from common.constants import DEFAULT_WALL_ALPHA, EPSILON
from .geometry import Coordinate, LineSegment

logger = logging.getLogger(__name__)

TerrainFunction = Callable[[float, float], float]


class IntersectionType(Enum):
    """Kind of cut point along a profile."""
    SOURCE = "SOURCE"
    RECEIVER = "RECEIVER"
    BUILDING = "BUILDING"
    WALL = "WALL"
    TOPOGRAPHY = "TOPOGRAPHY"
    GROUND_EFFECT = "GROUND_EFFECT"


@dataclass
class Building:
    """Building footprint with its roof altitude."""
    id: int
    footprint: Polygon
    height: float
    alphas: np.ndarray
    z_top: float = float('nan')
    pk: int = -1


@dataclass
class Wall:
    """
    One vertical reflecting/diffracting surface.

    Attributes:
        id: Index in ProfileBuilder.processed_walls
        line: Horizontal trace, z of both ends = top altitude
        height: Height above ground
        alphas: Per-band absorption coefficients
        origin_id: Owning building id for BUILDING walls, free wall index for WALL
        type: BUILDING or WALL
    """
    id: int
    line: LineSegment
    height: float
    alphas: np.ndarray
    origin_id: int
    type: IntersectionType

    def to_linestring(self) -> LineString:
        return self.line.to_linestring()


@dataclass
class GroundEffectZone:
    polygon: Polygon
    g: float


@dataclass
class CutPoint:
    """
    One intersection of a profile line with the model.

    Attributes:
        coordinate: World position, z according to the cut type
        type: Cut kind
        distance: Planar distance from the profile start
        z_ground: Ground altitude under the point
        g_coef: Ground absorption coefficient at the point
        wall_alpha: Absorption spectrum of the intersected wall (empty if none)
        building_id: Intersected building, -1 if none
        wall_id: Intersected wall, -1 if none
    """
    coordinate: Coordinate
    type: IntersectionType
    distance: float
    z_ground: float
    g_coef: float
    wall_alpha: np.ndarray = field(default_factory=lambda: np.zeros(0))
    building_id: int = -1
    wall_id: int = -1


class CutProfile:
    """Ordered cut points between a source and a receiver."""

    def __init__(
        self,
        cut_points: List[CutPoint],
        g_intervals: List[Tuple[float, float, float]],
        g_s: float,
        intersects_building: bool,
        intersects_topography: bool,
    ):
        self.cut_points = cut_points
        self._g_intervals = g_intervals
        self.g_s = g_s
        self._intersects_building = intersects_building
        self._intersects_topography = intersects_topography

    def __repr__(self) -> str:
        return (f"CutProfile(cuts={len(self.cut_points)}, "
                f"free_field={self.is_free_field()})")

    @property
    def source(self) -> CutPoint:
        return self.cut_points[0]

    @property
    def receiver(self) -> CutPoint:
        return self.cut_points[-1]

    @property
    def length(self) -> float:
        return self.receiver.distance

    def is_free_field(self) -> bool:
        return not (self._intersects_building or self._intersects_topography)

    def intersect_building(self) -> bool:
        return self._intersects_building

    def intersect_topography(self) -> bool:
        return self._intersects_topography

    def get_g_path(self, start: Optional[CutPoint] = None, end: Optional[CutPoint] = None) -> float:
        """
        Length-weighted ground coefficient between two cut points.

        Args:
            start: First cut point (default: source)
            end: Last cut point (default: receiver)

        Returns:
            Average G; the ground coefficient at start when both points coincide
        """
        start = start if start is not None else self.source
        end = end if end is not None else self.receiver
        d0, d1 = sorted((start.distance, end.distance))
        span = d1 - d0
        if span <= 0.0:
            return start.g_coef

        covered = 0.0
        weighted = 0.0
        for z0, z1, g in self._g_intervals:
            overlap = min(d1, z1) - max(d0, z0)
            if overlap > 0.0:
                covered += overlap
                weighted += overlap * g
        weighted += max(0.0, span - covered) * self.g_s
        return weighted / span


class ProfileBuilder:
    """
    Terrain, buildings, walls and ground zones with profile queries.

    Example:
        builder = ProfileBuilder()
        builder.add_building(Polygon([(40, -5), (60, -5), (60, 5), (40, 5)]), height=10)
        builder.add_wall(LineString([(0, 20), (100, 20)]), height=4)
        builder.finish_feeding()

        profile = builder.get_profile(Coordinate(0, 0, 1), Coordinate(100, 0, 2))
        profile.is_free_field()
    """

    def __init__(
        self,
        ground_z: float = 0.0,
        terrain: Optional[TerrainFunction] = None,
        topography_step: float = 10.0,
    ):
        if topography_step <= 0:
            raise ValueError(f"topography_step must be positive, got {topography_step}")
        self.ground_z = ground_z
        self.terrain = terrain
        self.topography_step = topography_step

        self.buildings: List[Building] = []
        self._free_walls: List[Tuple[LineString, float, np.ndarray, int]] = []
        self.ground_zones: List[GroundEffectZone] = []

        self._walls: List[Wall] = []
        self._wall_tree: Optional[STRtree] = None
        self._zone_tree: Optional[STRtree] = None
        self._finished = False

    # ------------------------------------------------------------------
    # Feeding
    # ------------------------------------------------------------------

    def _check_feeding(self):
        if self._finished:
            raise RuntimeError("ProfileBuilder is read-only after finish_feeding()")

    def add_building(self, footprint: Polygon, height: float,
                     alphas: Optional[Sequence[float]] = None, pk: int = -1) -> int:
        """Register a building footprint, returns its id."""
        self._check_feeding()
        if footprint.is_empty or height <= 0:
            raise ValueError("Buildings need a non-empty footprint and a positive height")
        building_id = len(self.buildings)
        self.buildings.append(Building(
            id=building_id,
            footprint=footprint,
            height=float(height),
            alphas=self._alphas(alphas),
            pk=pk,
        ))
        return building_id

    def add_wall(self, line: LineString, height: float,
                 alphas: Optional[Sequence[float]] = None, pk: int = -1) -> int:
        """Register a free-standing wall, returns its index among free walls."""
        self._check_feeding()
        if line.length == 0 or height <= 0:
            raise ValueError("Walls need a non-zero length and a positive height")
        self._free_walls.append((line, float(height), self._alphas(alphas), pk))
        return len(self._free_walls) - 1

    def add_ground_effect(self, polygon: Polygon, g: float) -> None:
        self._check_feeding()
        if not 0.0 <= g <= 1.0:
            raise ValueError(f"Ground coefficient must be within [0, 1], got {g}")
        self.ground_zones.append(GroundEffectZone(polygon, float(g)))

    @staticmethod
    def _alphas(alphas: Optional[Sequence[float]]) -> np.ndarray:
        if alphas is None:
            return DEFAULT_WALL_ALPHA.copy()
        return np.asarray(alphas, dtype=float)

    def finish_feeding(self) -> None:
        """Decompose obstacles into walls and build the spatial indices."""
        self._check_feeding()
        walls: List[Wall] = []

        for building in self.buildings:
            centroid = building.footprint.centroid
            building.z_top = self.get_z_ground(Coordinate(centroid.x, centroid.y)) + building.height
            ring = list(building.footprint.exterior.coords)
            for (x0, y0, *_), (x1, y1, *_) in zip(ring[:-1], ring[1:]):
                if x0 == x1 and y0 == y1:
                    continue
                walls.append(Wall(
                    id=len(walls),
                    line=LineSegment(Coordinate(x0, y0, building.z_top), Coordinate(x1, y1, building.z_top)),
                    height=building.height,
                    alphas=building.alphas,
                    origin_id=building.id,
                    type=IntersectionType.BUILDING,
                ))

        for wall_index, (line, height, alphas, _pk) in enumerate(self._free_walls):
            coords = list(line.coords)
            for (x0, y0, *_), (x1, y1, *_) in zip(coords[:-1], coords[1:]):
                if x0 == x1 and y0 == y1:
                    continue
                z0 = self.get_z_ground(Coordinate(x0, y0)) + height
                z1 = self.get_z_ground(Coordinate(x1, y1)) + height
                walls.append(Wall(
                    id=len(walls),
                    line=LineSegment(Coordinate(x0, y0, z0), Coordinate(x1, y1, z1)),
                    height=height,
                    alphas=alphas,
                    origin_id=wall_index,
                    type=IntersectionType.WALL,
                ))

        self._walls = walls
        self._wall_tree = STRtree([w.to_linestring() for w in walls]) if walls else None
        self._zone_tree = STRtree([z.polygon for z in self.ground_zones]) if self.ground_zones else None
        self._finished = True

        logger.info(f"Profile builder ready: {len(self.buildings)} buildings, "
                    f"{len(self._free_walls)} free walls, {len(walls)} wall segments, "
                    f"{len(self.ground_zones)} ground zones")

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @property
    def processed_walls(self) -> List[Wall]:
        return self._walls

    def get_wall(self, wall_id: int) -> Wall:
        return self._walls[wall_id]

    def get_building(self, building_id: int) -> Building:
        return self.buildings[building_id]

    def get_z_ground(self, point: Union[Coordinate, CutPoint]) -> float:
        """Ground altitude under a coordinate or cut point."""
        if isinstance(point, CutPoint):
            return point.z_ground
        if self.terrain is None:
            return self.ground_z
        return float(self.terrain(point.x, point.y))

    def obstacle_top_z(self, wall: Wall) -> float:
        """Altitude of the top of the obstacle owning a wall."""
        if wall.type == IntersectionType.BUILDING:
            return self.buildings[wall.origin_id].z_top
        return max(wall.line.p0.z, wall.line.p1.z)

    def ground_coefficient(self, point: Coordinate, g_s: float) -> float:
        if self._zone_tree is None:
            return g_s
        p = Point(point.x, point.y)
        for idx in self._zone_tree.query(p, predicate="intersects"):
            return self.ground_zones[int(idx)].g
        return g_s

    def walls_near(self, line: LineSegment, distance: float) -> List[Wall]:
        """Walls whose planar distance to line is below distance, by wall id."""
        if self._wall_tree is None:
            return []
        geom = line.to_linestring()
        candidates = self._wall_tree.query(geom, predicate="dwithin", distance=distance)
        walls = [self._walls[int(i)] for i in sorted(candidates)]
        return [w for w in walls if w.line.distance(line) < distance]

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def get_profile(self, a: Coordinate, b: Coordinate, g_s: float = 0.0) -> CutProfile:
        """
        Cut the model along the straight line a -> b.

        Args:
            a: Start point (source side)
            b: End point (receiver side)
            g_s: Ground coefficient outside of ground effect zones

        Returns:
            CutProfile ordered by distance from a
        """
        if not self._finished:
            raise RuntimeError("finish_feeding() must be called before querying profiles")

        total = a.distance(b)
        path = LineSegment(a, b)
        za = 0.0 if math.isnan(a.z) else a.z
        zb = 0.0 if math.isnan(b.z) else b.z

        def ray_z(distance: float) -> float:
            if total == 0.0:
                return za
            return za + (zb - za) * distance / total

        cuts: List[CutPoint] = []
        intersects_building = False
        intersects_topography = False

        source_ground = self.get_z_ground(a)
        receiver_ground = self.get_z_ground(b)
        source_cut = CutPoint(
            coordinate=Coordinate(a.x, a.y, za),
            type=IntersectionType.SOURCE,
            distance=0.0,
            z_ground=source_ground,
            g_coef=self.ground_coefficient(a, g_s),
        )
        receiver_cut = CutPoint(
            coordinate=Coordinate(b.x, b.y, zb),
            type=IntersectionType.RECEIVER,
            distance=total,
            z_ground=receiver_ground,
            g_coef=self.ground_coefficient(b, g_s),
        )

        if total > 0.0 and self._wall_tree is not None:
            for idx in self._wall_tree.query(path.to_linestring(), predicate="intersects"):
                wall = self._walls[int(idx)]
                inter = path.intersection(wall.line)
                if inter is None:
                    continue
                distance = a.distance(inter)
                # Obstacles touching an endpoint do not cut the profile
                if distance <= EPSILON or total - distance <= EPSILON:
                    continue
                top = wall.line.z_at(wall.line.segment_fraction(inter))
                inter.z = top
                cuts.append(CutPoint(
                    coordinate=inter,
                    type=wall.type,
                    distance=distance,
                    z_ground=self.get_z_ground(inter),
                    g_coef=self.ground_coefficient(inter, g_s),
                    wall_alpha=wall.alphas,
                    building_id=wall.origin_id if wall.type == IntersectionType.BUILDING else -1,
                    wall_id=wall.id,
                ))
                if ray_z(distance) < top:
                    intersects_building = True

        if total > 0.0 and self.terrain is not None:
            steps = int(math.floor(total / self.topography_step))
            for i in range(1, steps + 1):
                distance = i * self.topography_step
                if total - distance <= EPSILON:
                    break
                pos = path.point_along(distance / total)
                z_ground = self.get_z_ground(pos)
                pos.z = z_ground
                cuts.append(CutPoint(
                    coordinate=pos,
                    type=IntersectionType.TOPOGRAPHY,
                    distance=distance,
                    z_ground=z_ground,
                    g_coef=self.ground_coefficient(pos, g_s),
                ))
                if z_ground > ray_z(distance):
                    intersects_topography = True

        g_intervals = self._ground_intervals(path, total, cuts, g_s)

        cuts.sort(key=lambda c: c.distance)
        profile = CutProfile(
            cut_points=[source_cut] + cuts + [receiver_cut],
            g_intervals=g_intervals,
            g_s=g_s,
            intersects_building=intersects_building,
            intersects_topography=intersects_topography,
        )
        logger.debug(f"Profile ({a.x:.1f},{a.y:.1f}) -> ({b.x:.1f},{b.y:.1f}): {profile}")
        return profile

    def _ground_intervals(self, path: LineSegment, total: float,
                          cuts: List[CutPoint], g_s: float) -> List[Tuple[float, float, float]]:
        """Stretches of the path lying in ground zones; appends their boundary cut points."""
        if self._zone_tree is None or total == 0.0:
            return []
        intervals = []
        line = path.to_linestring()
        for idx in self._zone_tree.query(line, predicate="intersects"):
            zone = self.ground_zones[int(idx)]
            inside = line.intersection(zone.polygon)
            parts = getattr(inside, "geoms", [inside])
            for part in parts:
                if part.is_empty or part.geom_type != "LineString":
                    continue
                coords = list(part.coords)
                d0 = path.p0.distance(Coordinate.from_sequence(coords[0][:2]))
                d1 = path.p0.distance(Coordinate.from_sequence(coords[-1][:2]))
                d0, d1 = sorted((d0, d1))
                intervals.append((d0, d1, zone.g))
                for distance in (d0, d1):
                    if distance <= EPSILON or total - distance <= EPSILON:
                        continue
                    pos = path.point_along(distance / total)
                    pos.z = self.get_z_ground(pos)
                    cuts.append(CutPoint(
                        coordinate=pos,
                        type=IntersectionType.GROUND_EFFECT,
                        distance=distance,
                        z_ground=pos.z,
                        g_coef=zone.g if distance == d0 else g_s,
                    ))
        return intervals
