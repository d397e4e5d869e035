"""
Semi-Global Matching depth map estimation module.

This module contains the plane sweep similarity volume builder, the SGM
volume optimizer, the best depth extractor and the engine chaining them.
"""

from .sgm_params import SgmParams
from .depth_list import SgmDepthList
from .device_memory import DeviceMemoryPool
from .similarity_volume import SimilarityVolumeBuilder, TSIM_INVALID, TSIM_MAX
from .volume_optimizer import VolumeOptimizer
from .depth_extractor import DepthExtractor, DepthSimMap, compute_normal_map, DEPTH_INVALID, SIM_INVALID
from .sgm_engine import SgmEngine

__all__ = [
    'SgmParams',
    'SgmDepthList',
    'DeviceMemoryPool',
    'SimilarityVolumeBuilder',
    'VolumeOptimizer',
    'DepthExtractor',
    'DepthSimMap',
    'compute_normal_map',
    'SgmEngine',
    'TSIM_INVALID',
    'TSIM_MAX',
    'DEPTH_INVALID',
    'SIM_INVALID'
]
