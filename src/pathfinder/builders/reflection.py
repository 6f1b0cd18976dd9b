"""
Specular Reflection Builder (Method of Images)

The receiver is mirrored through every building wall near the direct
line, then each image again through the other walls, up to the
reflection order. Each image chain is walked back from the source: the
line from the current point to the image hits the image wall at the
reflection point, which becomes the next current point, until the image
of the true receiver is reached.

Rejected chains:
    - an image farther than max_src_dist from the source
    - a reflection point hidden by another wall of the same building
    - a reflection point above the roof or below the ground
    - a leg between two reflection points blocked by terrain or obstacles

Valid chains are assembled from the direct sub-paths of their legs,
unfolded one after the other along the travelled distance.
"""

import logging
import math
from typing import Callable, List, Optional

from common.config import PropagationConfig
from common.constants import WIDE_ANGLE_TRANSLATION_EPSILON
from ..geometry import Coordinate, LineSegment, interpolate_z, mean_plane_coefficients
from ..output import RayCounters
from ..path_model import (
    HORIZONTAL_DIFFRACTION_TYPES,
    ROOT_MIRROR,
    MirrorReceiverResult,
    MirrorReceiverTree,
    PointPath,
    PointType,
    PropagationPath,
    SegmentPath,
)
from ..profile import IntersectionType, ProfileBuilder, Wall
from ..progress import ProgressVisitor
from .segments import compute_segment

logger = logging.getLogger(__name__)

# Direct path builder used for the legs: (p0, p1) -> paths
LegBuilder = Callable[[Coordinate, Coordinate], List[PropagationPath]]


class ReflectionSearch:
    """
    Reflection paths between one source and one receiver.

    Example:
        search = ReflectionSearch(builder, config, leg_builder)
        paths = search.compute_reflection(rcv, src, favorable=False)
    """

    def __init__(self, builder: ProfileBuilder, config: PropagationConfig, leg_builder: LegBuilder):
        self.builder = builder
        self.config = config
        self.leg_builder = leg_builder

    def candidate_walls(self, src: Coordinate, rcv: Coordinate) -> List[Wall]:
        """Building walls closer than max_ref_dist to the direct line."""
        walls = self.builder.walls_near(LineSegment(src, rcv), self.config.max_ref_dist)
        return [w for w in walls if w.type == IntersectionType.BUILDING]

    def mirror_receivers(self, walls: List[Wall], src: Coordinate, rcv: Coordinate,
                         tree: Optional[MirrorReceiverTree] = None,
                         parent: int = ROOT_MIRROR, depth: int = 1) -> MirrorReceiverTree:
        """
        Grow the tree of receiver images.

        Args:
            walls: Candidate reflecting walls
            src: Source position
            rcv: Receiver, or parent image when recursing
            tree: Tree to extend (a new one when None)
            parent: Index of the image rcv stands for
            depth: Reflection order of the images produced by this call

        Returns:
            The tree, with images of every order up to reflection_order
        """
        if tree is None:
            tree = MirrorReceiverTree()
        parent_wall = tree[parent].wall_id if parent != ROOT_MIRROR else -1

        for wall in walls:
            if wall.id == parent_wall:
                continue
            proj = wall.line.project(rcv)
            mirror = Coordinate(2 * proj.x - rcv.x, 2 * proj.y - rcv.y, rcv.z)
            if src.distance(mirror) > self.config.max_src_dist:
                continue

            src_mirror_line = LineSegment(src, mirror)
            inter = src_mirror_line.intersection(wall.line)
            if inter is None:
                continue
            inter.z = wall.line.z_at(wall.line.segment_fraction(inter))

            if self._hidden_by_other_wall(walls, wall, src, src_mirror_line, inter):
                continue

            index = tree.add(mirror, parent, wall.id, wall.origin_id)
            if self.config.reflection_order > depth:
                self.mirror_receivers(walls, src, mirror, tree, index, depth + 1)
        return tree

    @staticmethod
    def _hidden_by_other_wall(walls: List[Wall], wall: Wall, src: Coordinate,
                              src_mirror_line: LineSegment, inter: Coordinate) -> bool:
        """Whether a wall of the same building stands in front of the reflection point."""
        dist = src.distance(inter)
        d1 = src_mirror_line.segment_fraction(inter)
        if d1 <= 0.0:
            return False
        for other in walls:
            if other.origin_id != wall.origin_id or other.id == wall.id:
                continue
            other_inter = src_mirror_line.intersection(other.line)
            if other_inter is None:
                continue
            other_z = other.line.z_at(other.line.segment_fraction(other_inter))
            d2 = src_mirror_line.segment_fraction(other_inter)
            if other_z > d2 * inter.z / d1 and src.distance(other_inter) < dist:
                return True
        return False

    def _reflection_chain(self, tree: MirrorReceiverTree, index: int,
                          src: Coordinate) -> Optional[List[MirrorReceiverResult]]:
        """Reflection points of one image chain, ordered from the source, None if invalid."""
        chain: List[MirrorReceiverResult] = []
        cursor = index
        destination = src.copy()
        while True:
            node = tree[cursor]
            wall = self.builder.get_wall(node.wall_id)
            inter = wall.line.intersection(LineSegment(node.receiver_pos, destination))
            if inter is None or inter.equals_2d(destination):
                return None

            length = inter.distance(destination)
            reflection = Coordinate(
                inter.x - (inter.x - destination.x) / length * WIDE_ANGLE_TRANSLATION_EPSILON,
                inter.y - (inter.y - destination.y) / length * WIDE_ANGLE_TRANSLATION_EPSILON,
            )
            reflection.z = interpolate_z(inter, node.receiver_pos, destination)

            if not self._valid_reflection_height(node, reflection, destination):
                return None
            chain.append(MirrorReceiverResult(reflection, node.parent_index, node.wall_id, node.building_id))
            if node.is_root:
                return chain
            destination = reflection
            cursor = node.parent_index

    def _valid_reflection_height(self, node: MirrorReceiverResult, reflection: Coordinate,
                                 destination: Coordinate) -> bool:
        if math.isnan(node.receiver_pos.z) or math.isnan(reflection.z) or math.isnan(destination.z):
            return True
        top = self.builder.obstacle_top_z(self.builder.get_wall(node.wall_id))
        return (self.builder.get_z_ground(reflection) < reflection.z < top
                and destination.z >= self.builder.get_z_ground(destination))

    def compute_reflection(
        self,
        rcv: Coordinate,
        src: Coordinate,
        favorable: bool = False,
        progress: Optional[ProgressVisitor] = None,
        counters: Optional[RayCounters] = None,
    ) -> List[PropagationPath]:
        """
        All valid reflection paths from src to rcv.

        Args:
            rcv: Receiver position
            src: Source position
            favorable: Flag given to the produced paths
            progress: Cancellation token, checked before the search starts
            counters: Diagnostics to update

        Returns:
            Paths with at least one REFLECTION vertex
        """
        if progress is not None and progress.is_canceled():
            return []
        walls = self.candidate_walls(src, rcv)
        if not walls:
            return []

        tree = self.mirror_receivers(walls, src, rcv)
        if counters is not None:
            counters.image_receivers += len(tree)

        paths = []
        for index in range(len(tree)):
            chain = self._reflection_chain(tree, index, src)
            if not chain:
                continue
            if not self._legs_clear(chain, counters):
                continue
            path = self._assemble(src, rcv, chain, favorable)
            if path is not None:
                paths.append(path)

        if counters is not None:
            counters.reflection_paths += len(paths)
        logger.debug(f"Reflection search: {len(walls)} walls, {len(tree)} images, {len(paths)} paths")
        return paths

    def _legs_clear(self, chain: List[MirrorReceiverResult], counters: Optional[RayCounters]) -> bool:
        for first, second in zip(chain[:-1], chain[1:]):
            profile = self.builder.get_profile(first.receiver_pos, second.receiver_pos, self.config.g_s)
            if counters is not None:
                counters.obstruction_tests += 1
            if profile.intersect_topography() or profile.intersect_building():
                return False
        return True

    def _assemble(self, src: Coordinate, rcv: Coordinate, chain: List[MirrorReceiverResult],
                  favorable: bool) -> Optional[PropagationPath]:
        """Concatenate the direct paths of every leg into one unfolded path."""
        stops = [src] + [node.receiver_pos for node in chain] + [rcv]
        points: List[PointPath] = []
        segments: List[SegmentPath] = []
        travelled = 0.0
        weighted_g = 0.0

        for leg, (p0, p1) in enumerate(zip(stops[:-1], stops[1:])):
            leg_paths = self.leg_builder(p0, p1)
            if not leg_paths:
                return None
            leg_path = leg_paths[0]
            leg_points = [p.shifted(travelled) for p in leg_path.point_list]
            if leg > 0:
                leg_points = leg_points[1:]
            points.extend(leg_points)
            segments.extend(leg_path.segment_list)
            leg_length = p0.distance(p1)
            if leg_path.sr_segment is not None:
                weighted_g += leg_path.sr_segment.g_path * leg_length
            travelled += leg_length

            if leg < len(chain):
                node = chain[leg]
                junction = points[-1]
                junction.type = PointType.REFLECTION
                junction.building_id = node.building_id
                junction.wall_id = node.wall_id
                junction.alpha_wall = self.builder.get_building(node.building_id).alphas
                junction.position = node.receiver_pos

        for i in range(1, len(points)):
            point = points[i]
            if point.type != PointType.REFLECTION:
                continue
            if i == len(points) - 1:
                logger.warning("Reflection point found at the end of a path, path dropped")
                return None
            # A diffraction on a leg may change the height seen at the reflection
            before = points[i - 1].coordinate
            after = points[i + 1].coordinate
            span = after.x - before.x
            ratio = (point.coordinate.x - before.x) / span if span > 0 else 0.0
            point.coordinate.y = before.y + (after.y - before.y) * ratio
            top = self.builder.get_building(point.building_id).z_top
            if point.coordinate.y > top or point.coordinate.y <= point.altitude:
                return None

        if len(points) <= 2:
            return None

        ground = [Coordinate(p.coordinate.x, p.altitude) for p in points]
        sr_seg = compute_segment(points[0].coordinate, points[-1].coordinate,
                                 mean_plane_coefficients(ground),
                                 weighted_g / travelled if travelled > 0 else self.config.g_s,
                                 points[0].g_coef)
        return PropagationPath(
            favorable=favorable,
            point_list=points,
            segment_list=segments,
            sr_segment=sr_seg,
            dif_h_points=[i for i, p in enumerate(points) if p.type in HORIZONTAL_DIFFRACTION_TYPES],
        )
