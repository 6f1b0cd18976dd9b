"""Exceptions raised by the path finder."""


class PathfinderError(Exception):
    """Base class for path finder errors."""


class UnsupportedGeometryError(PathfinderError, ValueError):
    """A sound source geometry is neither a point, a line nor a multi-line."""

    def __init__(self, geometry_type: str):
        self.geometry_type = geometry_type
        super().__init__(f"Sound source {geometry_type} geometry are not supported")


class ComputationError(PathfinderError):
    """At least one receiver range failed during a batch run."""

    def __init__(self, message: str, failed_ranges=None):
        super().__init__(message)
        self.failed_ranges = failed_ranges or []
