"""
SGM (Semi-Global Matching) engine for multi-view depth map estimation.

This module chains the similarity volume construction, the volume
optimization and the best depth retrieval for a single tile. All working
volumes are scoped to one ``sgm_rc`` call.
"""

from typing import Any, Dict, Optional, Sequence

import numpy as np

from .depth_extractor import DepthExtractor, DepthSimMap, compute_normal_map
from .depth_list import SgmDepthList
from .device_memory import DeviceMemoryPool
from .similarity_volume import SimilarityVolumeBuilder, TSIM_DTYPE
from .sgm_params import SgmParams
from .volume_optimizer import ACC_DTYPE, VolumeOptimizer
from ..camera.multi_view_params import MultiViewParams
from ..geometry.roi import ROI, downscale_roi
from utils.logger_config import get_logger

_MB = 1024.0 * 1024.0


class SgmEngine:
    """Core SGM depth map estimation engine for one reference camera tile."""

    def __init__(
        self,
        mp: MultiViewParams,
        sgm_params: SgmParams,
        memory_pool: Optional[DeviceMemoryPool] = None
    ):
        """
        Initialize SGM engine.

        Args:
            mp: Camera parameter context
            sgm_params: SGM parameters
            memory_pool: Memory budget shared with other engines, a private
                pool built from ``sgm_params.device_memory_mb`` otherwise
        """
        self.mp = mp
        self.sgm_params = sgm_params
        self.memory_pool = memory_pool or DeviceMemoryPool(sgm_params.device_memory_mb)
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

        self.volume_builder = SimilarityVolumeBuilder(mp, sgm_params)
        self.volume_optimizer = VolumeOptimizer(sgm_params)
        self.depth_extractor = DepthExtractor()

    def _volume_shape(self, tile_roi: ROI, nb_depths: int):
        droi = downscale_roi(tile_roi, self.sgm_params.scale_step)
        return (nb_depths, droi.height, droi.width)

    def _optimizer_working_bytes(self, volume_shape) -> int:
        nb_voxels = int(np.prod(volume_shape, dtype=np.int64))
        # cost copy, path accumulation, path cost and invalid mask
        return nb_voxels * (3 * np.dtype(ACC_DTYPE).itemsize + 1)

    def _tile_working_bytes(self, volume_shape) -> int:
        nb_voxels = int(np.prod(volume_shape, dtype=np.int64))
        # best, second best and filtered volumes
        volumes = 3 * nb_voxels * np.dtype(TSIM_DTYPE).itemsize
        return volumes + self._optimizer_working_bytes(volume_shape)

    def get_device_memory_consumption(self, tile_roi: ROI, nb_depths: int) -> float:
        """
        Peak working memory of one tile.

        Returns:
            float: Memory consumption in MB
        """
        return self._tile_working_bytes(self._volume_shape(tile_roi, nb_depths)) / _MB

    def sgm_rc(
        self,
        rc: int,
        tc_list: Sequence[int],
        tile_roi: ROI,
        depth_list: SgmDepthList,
        wait_for_memory: bool = False
    ) -> DepthSimMap:
        """
        Compute the SGM depth/sim map of a tile.

        Args:
            rc: Reference camera index
            tc_list: Target camera indexes
            tile_roi: Tile region in full resolution coordinates
            depth_list: Depth hypotheses of the tile
            wait_for_memory: Block until other tiles release enough memory

        Returns:
            DepthSimMap: Map at the tile resolution ``1 / (scale * step)``

        Raises:
            DeviceMemoryError: If the tile volumes do not fit in the budget
        """
        shape = self._volume_shape(tile_roi, len(depth_list))
        self.logger.info(f"SGM rc {rc}, tile {tile_roi}: volume {shape[2]}x{shape[1]}x{shape[0]} "
                         f"({self.get_device_memory_consumption(tile_roi, len(depth_list)):.1f} MB)")

        # the whole working set is reserved at once so that waiting tiles hold no memory
        with self.memory_pool.sub_pool(self._tile_working_bytes(shape), wait_for_memory) as tile_pool, \
                self.volume_builder.build(rc, tc_list, tile_roi, depth_list, tile_pool) as (best, _, nb_contributing):
            if nb_contributing == 0:
                return DepthSimMap.invalid(shape[1], shape[2])

            with tile_pool.allocate(shape, TSIM_DTYPE) as filtered:
                with tile_pool.reserve(self._optimizer_working_bytes(shape)):
                    guide = self._guide_image(rc, tile_roi)
                    self.volume_optimizer.optimize(best, out_filtered=filtered, guide=guide)

                depth_sim_map = self.depth_extractor.extract(filtered, depth_list)

        if self.sgm_params.compute_normal_map:
            depth_sim_map.normal = compute_normal_map(depth_sim_map, self.mp, rc, tile_roi,
                                                      self.sgm_params.scale_step)

        self.logger.info(f"SGM rc {rc}, tile {tile_roi}: "
                         f"{depth_sim_map.nb_valid}/{depth_sim_map.depth.size} valid depths")
        return depth_sim_map

    def _guide_image(self, rc: int, tile_roi: ROI) -> Optional[np.ndarray]:
        if not self.sgm_params.p2_gradient_sigma:
            return None
        image = self.mp.get_image(rc, self.sgm_params.scale_step)
        droi = downscale_roi(tile_roi, self.sgm_params.scale_step)
        return image[droi.slices()]

    def get_configuration_info(self) -> Dict[str, Any]:
        """
        Get current SGM configuration information.

        Returns:
            Dict[str, Any]: Configuration information
        """
        return {
            'parameters': self.sgm_params.to_dict(),
            'filtering_directions': len(self.volume_optimizer.directions()),
            'memory_budget_mb': (None if self.memory_pool.budget_bytes is None
                                 else self.memory_pool.budget_bytes / _MB)
        }
