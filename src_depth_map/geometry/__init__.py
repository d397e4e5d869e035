"""
Geometry utilities: regions of interest and tile layout.
"""

from .roi import Range, ROI, intersect, downscale_roi, upscale_roi, divide_round_up
from .tile_params import TileParams, get_tile_roi_list

__all__ = [
    'Range',
    'ROI',
    'intersect',
    'downscale_roi',
    'upscale_roi',
    'divide_round_up',
    'TileParams',
    'get_tile_roi_list'
]
