"""
Tiled depth map estimation of one reference camera.

The image is split into overlapping tiles, each tile is computed by the SGM
engine and written as its own set of map records. Tiles are independent and
may run concurrently; the shared memory pool bounds how many tile volumes
are resident at once. Merging the written tiles into full size maps is a
barrier run after all tiles completed.
"""

import threading
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .depth_sim_map_io import DepthSimMapFileManager
from ..camera.multi_view_params import MultiViewParams
from ..geometry.roi import ROI
from ..geometry.tile_params import TileParams, get_tile_roi_list
from ..sgm.depth_list import SgmDepthList
from ..sgm.device_memory import DeviceMemoryPool
from ..sgm.sgm_engine import SgmEngine
from ..sgm.sgm_params import SgmParams
from utils.logger_config import get_logger


class TileOrchestrator:
    """Runs the SGM engine over the tiles of a reference camera."""

    def __init__(
        self,
        mp: MultiViewParams,
        tile_params: TileParams,
        sgm_params: SgmParams,
        file_manager: Optional[DepthSimMapFileManager] = None,
        max_workers: int = 1,
        memory_pool: Optional[DeviceMemoryPool] = None,
        custom_suffix: str = ""
    ):
        """
        Initialize tile orchestrator.

        Args:
            mp: Camera parameter context
            tile_params: Tile workflow parameters
            sgm_params: SGM parameters
            file_manager: Map file manager, one writing in ``mp.output_folder`` otherwise
            max_workers: Number of tiles computed concurrently
            memory_pool: Memory budget shared by the tile workers, one built
                from ``sgm_params.device_memory_mb`` otherwise
            custom_suffix: Filename suffix of the written maps
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")

        self.mp = mp
        self.tile_params = tile_params
        self.sgm_params = sgm_params
        self.file_manager = file_manager or DepthSimMapFileManager(mp)
        self.max_workers = max_workers
        self.memory_pool = memory_pool or DeviceMemoryPool(sgm_params.device_memory_mb)
        self.custom_suffix = custom_suffix
        self.engine = SgmEngine(mp, sgm_params, self.memory_pool)
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

    def get_tile_rois(self, rc: int) -> List[ROI]:
        """Tile regions of an R camera, every tile aligned on the SGM downscaled grid."""
        return get_tile_roi_list(self.tile_params, self.mp.get_width(rc), self.mp.get_height(rc),
                                 self.sgm_params.scale_step)

    def process(
        self,
        rc: int,
        tc_list: Sequence[int],
        depth_list: Optional[SgmDepthList] = None,
        cancel_event: Optional[threading.Event] = None,
        merge_tiles: bool = False,
        delete_tiles: bool = False
    ) -> Dict[str, Any]:
        """
        Compute and write the depth/sim maps of all tiles of an R camera.

        Args:
            rc: Reference camera index
            tc_list: Target camera indexes
            depth_list: Depth hypotheses, built from the SGM parameters otherwise
            cancel_event: Checked before each tile; tiles already written stay valid
            merge_tiles: Write full size maps merged from the tiles
            delete_tiles: Delete the tile files once merged

        Returns:
            Dict[str, Any]: Processing summary

        Raises:
            DeviceMemoryError: If a tile does not fit in the memory budget,
                the remaining tiles are not started
        """
        if depth_list is None:
            depth_list = SgmDepthList.from_params(self.sgm_params)
        tile_rois = self.get_tile_rois(rc)
        cancel_event = cancel_event or threading.Event()
        self.file_manager.setup_output_directory()

        largest = max(tile_rois, key=lambda roi: roi.width * roi.height)
        self.logger.info(f"Depth map estimation (rc: {rc}, tc: {list(tc_list)}): {len(tile_rois)} tiles, "
                         f"{len(depth_list)} depths, {self.max_workers} workers, "
                         f"{self.engine.get_device_memory_consumption(largest, len(depth_list)):.1f} MB per tile")

        written: List[Path] = []
        written_lock = threading.Lock()
        abort_event = threading.Event()

        def run_tile(tile_roi: ROI) -> bool:
            if cancel_event.is_set() or abort_event.is_set():
                return False
            paths = self._process_tile(rc, tc_list, tile_roi, depth_list)
            with written_lock:
                written.extend(paths)
            return True

        if self.max_workers == 1:
            nb_processed = sum(1 for tile_roi in tile_rois if run_tile(tile_roi))
        else:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                futures = [executor.submit(run_tile, tile_roi) for tile_roi in tile_rois]
                done, _ = wait(futures, return_when=FIRST_EXCEPTION)
                for future in done:
                    if future.exception() is not None:
                        abort_event.set()
                        for pending in futures:
                            pending.cancel()
                        raise future.exception()
                nb_processed = sum(1 for future in futures if future.result())

        cancelled = nb_processed < len(tile_rois)
        if cancelled:
            self.logger.info(f"Depth map estimation cancelled (rc: {rc}): "
                             f"{nb_processed}/{len(tile_rois)} tiles written")

        merged = False
        if merge_tiles and not cancelled and len(tile_rois) > 1:
            self.merge(rc, delete_tiles)
            merged = True

        return {
            'rc': rc,
            'nb_tiles': len(tile_rois),
            'nb_processed': nb_processed,
            'cancelled': cancelled,
            'merged': merged,
            'written_files': written,
            'peak_memory_mb': self.memory_pool.peak_mb,
        }

    def _process_tile(self, rc: int, tc_list: Sequence[int], tile_roi: ROI, depth_list: SgmDepthList) -> List[Path]:
        depth_sim_map = self.engine.sgm_rc(rc, tc_list, tile_roi, depth_list,
                                           wait_for_memory=self.max_workers > 1)
        return self.file_manager.write_depth_sim_map(
            rc, self.tile_params, tile_roi, depth_sim_map.depth, depth_sim_map.sim,
            self.sgm_params.scale, self.sgm_params.step_xy, self.custom_suffix, depth_sim_map.normal)

    def merge(self, rc: int, delete_tiles: bool = False) -> List[Path]:
        """
        Merge the tiles of an R camera into full size maps.

        Returns:
            List[Path]: Written full size files
        """
        scale, step = self.sgm_params.scale, self.sgm_params.step_xy
        depth_map, sim_map = self.file_manager.read_depth_sim_map(rc, scale, step, self.custom_suffix)
        normal_map = None
        if self.sgm_params.compute_normal_map:
            normal_map = self.file_manager.read_normal_map(rc, scale, step, self.custom_suffix)

        paths = self.file_manager.write_full_depth_sim_map(rc, depth_map, sim_map, scale, step,
                                                           self.custom_suffix, normal_map)
        self.logger.info(f"Merged tiles into full size maps (rc: {rc})")

        if delete_tiles:
            self.file_manager.delete_depth_sim_map_tiles(rc, scale, self.custom_suffix)
        return paths
