"""
Tiling module for depth map estimation.

This module contains the map file naming and records, the tile border
weighting, the depth/sim map file manager and the tile orchestrator.
"""

from .file_type import EFileType, get_file_name_from_index, get_file_name_from_view_id
from .map_record import get_roi_from_metadata, get_tile_params_from_metadata, read_map_record, write_map_record
from .tile_weighting import TileMapAccumulator, add_tile_map_weighted, merge_tile_maps, weight_tile_border
from .depth_sim_map_io import DepthSimMapFileManager
from .tile_orchestrator import TileOrchestrator

__all__ = [
    'EFileType',
    'get_file_name_from_index',
    'get_file_name_from_view_id',
    'get_roi_from_metadata',
    'get_tile_params_from_metadata',
    'read_map_record',
    'write_map_record',
    'TileMapAccumulator',
    'add_tile_map_weighted',
    'merge_tile_maps',
    'weight_tile_border',
    'DepthSimMapFileManager',
    'TileOrchestrator'
]
