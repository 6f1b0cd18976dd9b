"""
Propagation Path Data Model

Structures shared by all path builders and consumed by the attenuation
stage:

    - PointPath: one vertex of a path (source, receiver, diffraction edge
      or reflection point)
    - SegmentPath: one straight sub-segment with its mean ground plane,
      image points and Rayleigh test forms
    - PropagationPath: ordered vertices and the segments joining them
    - MirrorReceiverTree: arena of mirrored receivers built by the
      reflection search

Path coordinates live in the unfolded profile plane: x is the distance
travelled from the source and y the altitude.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator, List, Optional

import numpy as np

from .geometry import Coordinate, Orientation


class PointType(Enum):
    """Role of a path vertex."""
    SOURCE = "SRCE"
    RECEIVER = "RECV"
    DIFFRACTION_H = "DIFH"            # Horizontal edge (roof, wall top, terrain ridge)
    DIFFRACTION_H_RAYLEIGH = "DIFH_RCRIT"  # Ground point kept by the Rayleigh criterion
    DIFFRACTION_V = "DIFV"            # Vertical edge (building corner)
    REFLECTION = "REFL"


HORIZONTAL_DIFFRACTION_TYPES = (PointType.DIFFRACTION_H, PointType.DIFFRACTION_H_RAYLEIGH)


@dataclass
class PointPath:
    """
    One vertex of a propagation path.

    Attributes:
        coordinate: Profile coordinate (x = distance travelled, y = altitude)
        altitude: Ground altitude under the vertex
        g_coef: Ground absorption coefficient at the vertex
        alpha_wall: Per-band absorption of the wall or building (empty if none)
        type: Vertex role
        building_id: Building the vertex belongs to, -1 if none
        wall_id: Wall the vertex belongs to, -1 if none
        building_height: Obstacle height for diffraction edges
        position: World position when known
        delta_h: Path difference in homogeneous conditions
        delta_f: Path difference in favourable (curved) conditions
        delta_prime_h: Path difference between the ground images
        delta_s_prime_r_h / delta_s_r_prime_h: Path differences with one image
        delta_s_prime_r_f / delta_s_r_prime_f: Curved variants
    """
    coordinate: Coordinate
    altitude: float
    g_coef: float
    alpha_wall: np.ndarray
    type: PointType
    building_id: int = -1
    wall_id: int = -1
    building_height: float = float('nan')
    position: Optional[Coordinate] = None
    delta_h: float = float('nan')
    delta_f: float = float('nan')
    delta_prime_h: float = float('nan')
    delta_s_prime_r_h: float = float('nan')
    delta_s_r_prime_h: float = float('nan')
    delta_s_prime_r_f: float = float('nan')
    delta_s_r_prime_f: float = float('nan')

    def shifted(self, dx: float) -> 'PointPath':
        """Copy translated along the profile axis."""
        moved = PointPath(
            coordinate=Coordinate(self.coordinate.x + dx, self.coordinate.y),
            altitude=self.altitude,
            g_coef=self.g_coef,
            alpha_wall=self.alpha_wall,
            type=self.type,
            building_id=self.building_id,
            wall_id=self.wall_id,
            building_height=self.building_height,
            position=self.position,
        )
        moved.delta_h = self.delta_h
        moved.delta_f = self.delta_f
        moved.delta_prime_h = self.delta_prime_h
        moved.delta_s_prime_r_h = self.delta_s_prime_r_h
        moved.delta_s_r_prime_h = self.delta_s_r_prime_h
        moved.delta_s_prime_r_f = self.delta_s_prime_r_f
        moved.delta_s_r_prime_f = self.delta_s_r_prime_f
        return moved


@dataclass
class SegmentPath:
    """
    Geometry of one straight sub-segment of a path.

    Built in two phases: compute_segment() fills the geometry, then the
    diffraction builders set d_prime once the image points of the whole
    path are known.

    Attributes:
        s, r: Segment endpoints (profile plane)
        s_mean_plane, r_mean_plane: Projections on the mean ground plane
        s_prime, r_prime: Images of the endpoints through the mean plane
        d: Direct length
        dp: Length projected on the mean plane
        d_prime: Length between the image points (diffraction paths)
        dc: Straight length of a lateral path before unfolding
        zs_h, zr_h: Heights above the mean plane (homogeneous)
        zs_f, zr_f: Corrected heights (favourable)
        a, b: Mean plane slope and intercept
        test_form_h, test_form_f: dp / (30 (zs + zr)) Rayleigh test forms
        g_path: Path-averaged ground coefficient
        g_path_prime: Ground coefficient corrected for near-ground paths
    """
    s: Coordinate
    r: Coordinate
    s_mean_plane: Coordinate
    r_mean_plane: Coordinate
    s_prime: Coordinate
    r_prime: Coordinate
    d: float
    dp: float
    zs_h: float
    zr_h: float
    zs_f: float
    zr_f: float
    a: float
    b: float
    test_form_h: float
    test_form_f: float
    g_path: float
    g_path_prime: float
    d_prime: float = float('nan')
    dc: float = float('nan')


@dataclass
class PropagationPath:
    """
    A complete source to receiver path.

    Invariant: len(point_list) == len(segment_list) + 1, the first point is
    the source and the last one the receiver.
    """
    favorable: bool
    point_list: List[PointPath]
    segment_list: List[SegmentPath]
    sr_segment: Optional[SegmentPath]
    id_source: int = -1
    id_receiver: int = -1
    source_orientation: Orientation = field(default_factory=Orientation)
    compute_vertical_diffraction: bool = False
    dif_h_points: List[int] = field(default_factory=list)
    dif_v_points: List[int] = field(default_factory=list)

    @property
    def reflection_count(self) -> int:
        return sum(1 for p in self.point_list if p.type == PointType.REFLECTION)

    @property
    def has_diffraction(self) -> bool:
        return bool(self.dif_h_points or self.dif_v_points)

    def is_consistent(self) -> bool:
        """Check the structural invariant of the path."""
        if not self.point_list:
            return False
        return (len(self.point_list) == len(self.segment_list) + 1
                and self.point_list[0].type == PointType.SOURCE
                and self.point_list[-1].type == PointType.RECEIVER)

    def with_ids(self, id_source: int, id_receiver: int) -> 'PropagationPath':
        """Shallow copy addressed by other identifiers."""
        return PropagationPath(
            favorable=self.favorable,
            point_list=self.point_list,
            segment_list=self.segment_list,
            sr_segment=self.sr_segment,
            id_source=id_source,
            id_receiver=id_receiver,
            source_orientation=self.source_orientation,
            compute_vertical_diffraction=self.compute_vertical_diffraction,
            dif_h_points=list(self.dif_h_points),
            dif_v_points=list(self.dif_v_points),
        )

    def __repr__(self) -> str:
        types = "-".join(p.type.value for p in self.point_list)
        return (f"PropagationPath(src={self.id_source}, rcv={self.id_receiver}, "
                f"points={types}, favorable={self.favorable})")


ROOT_MIRROR = -1


@dataclass
class MirrorReceiverResult:
    """
    A receiver image produced by mirroring through a wall.

    Attributes:
        receiver_pos: Mirrored receiver position (or validated reflection
            point once copied into a reflection chain)
        parent_index: Index of the parent image in the tree, ROOT_MIRROR
            when the image was mirrored from the true receiver
        wall_id: Wall that produced the image
        building_id: Building (or wall group) owning the wall
    """
    receiver_pos: Coordinate
    parent_index: int
    wall_id: int
    building_id: int

    @property
    def is_root(self) -> bool:
        return self.parent_index == ROOT_MIRROR


class MirrorReceiverTree:
    """
    Arena of receiver images.

    Nodes are only appended; children reference their parent by index.
    """

    def __init__(self):
        self._nodes: List[MirrorReceiverResult] = []

    def __len__(self) -> int:
        return len(self._nodes)

    def __iter__(self) -> Iterator[MirrorReceiverResult]:
        return iter(self._nodes)

    def __getitem__(self, index: int) -> MirrorReceiverResult:
        return self._nodes[index]

    def add(self, receiver_pos: Coordinate, parent_index: int, wall_id: int, building_id: int) -> int:
        self._nodes.append(MirrorReceiverResult(receiver_pos, parent_index, wall_id, building_id))
        return len(self._nodes) - 1

    def depth(self, index: int) -> int:
        """Number of reflections of the chain ending at index."""
        depth = 0
        while index != ROOT_MIRROR:
            depth += 1
            index = self._nodes[index].parent_index
        return depth

    def chain(self, index: int) -> List[MirrorReceiverResult]:
        """Nodes from index up to the image of the true receiver."""
        nodes = []
        while index != ROOT_MIRROR:
            node = self._nodes[index]
            nodes.append(node)
            index = node.parent_index
        return nodes
