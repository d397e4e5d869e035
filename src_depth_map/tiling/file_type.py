"""
Depth map file types and file naming convention.

File names encode the reference camera view id, the map type, the scale,
an optional custom suffix and, for tiles, the tile origin in full
resolution coordinates:

    {viewId}_{type}[_scale{scale}][{suffix}][_{x}_{y}].npz
"""

import re
from enum import Enum
from pathlib import Path
from typing import Optional

import numpy as np

MAP_FILE_EXTENSION = ".npz"


class EFileType(Enum):
    """Closed set of persisted map types."""

    DEPTH_MAP = "depthMap"
    SIM_MAP = "simMap"
    NORMAL_MAP = "normalMap"

    @property
    def storage_dtype(self):
        # similarity maps are stored at half precision
        return np.float16 if self is EFileType.SIM_MAP else np.float32

    @property
    def nb_channels(self) -> int:
        return 3 if self is EFileType.NORMAL_MAP else 1

    @property
    def label(self) -> str:
        return {
            EFileType.DEPTH_MAP: "depth map",
            EFileType.SIM_MAP: "similarity map",
            EFileType.NORMAL_MAP: "normal map",
        }[self]


def get_file_name_from_view_id(
    folder: Path,
    view_id: int,
    file_type: EFileType,
    scale: int = 0,
    custom_suffix: str = "",
    tile_begin_x: Optional[int] = None,
    tile_begin_y: Optional[int] = None
) -> Path:
    stem = f"{view_id}_{file_type.value}"
    if scale > 1:
        stem += f"_scale{scale}"
    stem += custom_suffix
    if tile_begin_x is not None and tile_begin_y is not None:
        stem += f"_{int(tile_begin_x)}_{int(tile_begin_y)}"
    return Path(folder) / f"{stem}{MAP_FILE_EXTENSION}"


def get_file_name_from_index(
    mp,
    rc: int,
    file_type: EFileType,
    scale: int = 0,
    custom_suffix: str = "",
    tile_begin_x: Optional[int] = None,
    tile_begin_y: Optional[int] = None
) -> Path:
    """
    Path of a map file of the R camera ``rc``.

    Args:
        mp: Camera parameter context (provides view ids and output folder)
        rc: Reference camera index
        file_type: Map type
        scale: Downscale factor of the map
        custom_suffix: Optional filename suffix
        tile_begin_x, tile_begin_y: Tile origin for tiled maps

    Returns:
        Path: Map file path
    """
    return get_file_name_from_view_id(mp.output_folder, mp.get_view_id(rc), file_type, scale,
                                      custom_suffix, tile_begin_x, tile_begin_y)


def tile_file_pattern(map_path: Path) -> "re.Pattern":
    """Regular expression matching the tile file names of a full size map path."""
    return re.compile(re.escape(map_path.stem) + r"_(\d+)_(\d+)" + re.escape(map_path.suffix) + r"$")
