"""
Exception hierarchy for depth map estimation.

Configuration problems (bad tile metadata, invalid tile sizes) and device
memory problems are raised as errors; missing data (no tiles, no overlapping
cameras) is never an error and is only logged by the caller.
"""

from pathlib import Path
from typing import Optional, Union


class DepthMapError(Exception):
    """Base class for all depth map estimation errors."""


class TileConfigurationError(DepthMapError):
    """Invalid or missing tile/ROI metadata, or invalid tile dimensions."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        self.path = Path(path) if path is not None else None
        if self.path is not None:
            message = f"{message}: {self.path}"
        super().__init__(message)


class DeviceMemoryError(DepthMapError):
    """Allocation above the device memory budget, unrecoverable for the tile."""


class CameraParameterError(DepthMapError):
    """Camera projection parameters are missing or inconsistent."""


class MapRecordError(DepthMapError):
    """A map record file cannot be opened or decoded."""

    def __init__(self, message: str, path: Union[str, Path]):
        self.path = Path(path)
        super().__init__(f"{message}: {self.path}")
