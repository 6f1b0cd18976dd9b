"""
Input bundle of a path finding run: receivers, sources and the obstacle model.
"""

import logging
from typing import Dict, List, Optional, Sequence

import numpy as np
from shapely.geometry import box
from shapely.geometry.base import BaseGeometry
from shapely.strtree import STRtree

from common.config import PropagationConfig
from .geometry import Coordinate, Orientation
from .profile import ProfileBuilder

logger = logging.getLogger(__name__)


class PropagationData:
    """
    Receivers, sound sources and the shared ProfileBuilder.

    Sources are shapely geometries (Point, LineString or MultiLineString)
    with an optional per-band maximal power in W and an optional base
    orientation. Identifiers handed to the output sink are the zero-based
    positions in the receiver/source lists; primary keys map them back to
    caller identities.
    """

    def __init__(self, profile_builder: ProfileBuilder, config: Optional[PropagationConfig] = None):
        self.profile_builder = profile_builder
        self.config = config or PropagationConfig()

        self.receivers: List[Coordinate] = []
        self.receivers_pk: List[int] = []

        self.source_geometries: List[BaseGeometry] = []
        self.sources_pk: List[int] = []
        self.source_power: List[np.ndarray] = []
        self.source_orientation: Dict[int, Orientation] = {}

        self.sources_index: Optional[STRtree] = None

    def add_receiver(self, position: Coordinate, pk: Optional[int] = None) -> int:
        self.receivers.append(position)
        self.receivers_pk.append(len(self.receivers_pk) if pk is None else pk)
        return len(self.receivers) - 1

    def add_source(
        self,
        geometry: BaseGeometry,
        pk: Optional[int] = None,
        power: Optional[Sequence[float]] = None,
        orientation: Optional[Orientation] = None,
    ) -> int:
        """
        Register a sound source.

        Args:
            geometry: Source geometry
            pk: Primary key (defaults to the source position in the list)
            power: Maximal emitted power per band in W (empty if unknown)
            orientation: Base emission orientation

        Returns:
            Zero-based source index
        """
        index = len(self.source_geometries)
        pk = index if pk is None else pk
        self.source_geometries.append(geometry)
        self.sources_pk.append(pk)
        self.source_power.append(np.zeros(0) if power is None else np.asarray(power, dtype=float))
        if orientation is not None:
            self.source_orientation[pk] = orientation
        self.sources_index = None
        return index

    def build_sources_index(self) -> None:
        """Index source geometries; called once before dispatch."""
        self.sources_index = STRtree(self.source_geometries) if self.source_geometries else None
        logger.debug(f"Indexed {len(self.source_geometries)} sources")

    def sources_around(self, position: Coordinate, distance: float) -> List[int]:
        """Indices of sources whose envelope meets the square of half side distance around position."""
        if self.sources_index is None:
            if not self.source_geometries:
                return []
            self.build_sources_index()
        region = box(position.x - distance, position.y - distance,
                     position.x + distance, position.y + distance)
        return sorted(int(i) for i in self.sources_index.query(region))

    def max_source_power(self, index: int) -> np.ndarray:
        return self.source_power[index]

    def get_source_orientation(self, index: int) -> Optional[Orientation]:
        if index < len(self.sources_pk):
            return self.source_orientation.get(self.sources_pk[index])
        return None
