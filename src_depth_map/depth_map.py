"""
Config driven depth map estimation.

This module runs the tiled SGM depth map estimation over the reference
views of a scene and writes the depth, similarity and (optionally) normal
maps of every view.
"""

import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import numpy as np

from .base import BaseProcessor
from .camera.multi_view_params import MultiViewParams, load_multi_view_params
from .geometry.tile_params import TileParams
from .sgm.depth_list import SgmDepthList
from .sgm.device_memory import DeviceMemoryPool
from .sgm.sgm_params import SgmParams
from .tiling.depth_sim_map_io import DepthSimMapFileManager
from .tiling.tile_orchestrator import TileOrchestrator

from utils.file_operations import DataSaver, PathManager


class DepthMapEstimator(BaseProcessor):
    """
    Main depth map estimation coordinator class.

    This class orchestrates the tiled SGM estimation of every reference view
    using the camera context, the tile orchestrator and the map file manager.
    """

    def __init__(self, config, mp: Optional[MultiViewParams] = None,
                 cancel_event: Optional[threading.Event] = None):
        """
        Initialize depth map estimator with configuration.

        Args:
            config: Configuration object with tile and SGM parameters
            mp: Camera context, loaded from ``config.scene_file`` otherwise
            cancel_event: Set to stop the estimation between tiles
        """
        super().__init__(config, "depth_map")

        self.mp = mp if mp is not None else self._load_cameras()
        self.cancel_event = cancel_event or threading.Event()

        self.tile_params = TileParams.from_config(config)
        self.sgm_params = SgmParams.from_config(config)
        self.depth_list = SgmDepthList.from_params(self.sgm_params)
        self.merge_tiles = getattr(config, 'merge_tiles', 'True') == "True"
        self.delete_tiles = getattr(config, 'delete_tiles', 'False') == "True"
        self.custom_suffix = getattr(config, 'custom_suffix', "")

        self.file_manager = DepthSimMapFileManager(self.mp)
        self.orchestrator = TileOrchestrator(
            self.mp,
            self.tile_params,
            self.sgm_params,
            file_manager=self.file_manager,
            max_workers=int(getattr(config, 'max_workers', 1)),
            memory_pool=DeviceMemoryPool(self.sgm_params.device_memory_mb),
            custom_suffix=self.custom_suffix,
        )

        self.logger.info(f"DepthMapEstimator initialized: {self.mp.nb_cameras} cameras, "
                         f"{len(self.depth_list)} depths, tiles {self.tile_params}")

    def _load_cameras(self) -> MultiViewParams:
        """Load the scene cameras, maps are written in the result folder."""
        scene_file = PathManager.resolve(self.config.config_path.parent, self.config.scene_file)
        return load_multi_view_params(scene_file, self.output_folder)

    def create_depth_maps(self) -> Dict[int, Dict[str, Any]]:
        """
        Main entry point for processing all reference views.

        Returns:
            Dict[int, Dict[str, Any]]: Processing results per reference view
        """
        return self.process_all_views()

    def _get_views_to_process(self) -> List[int]:
        reference_views = getattr(self.config, 'reference_views', None)
        if reference_views is None:
            return list(range(self.mp.nb_cameras))
        return [int(rc) for rc in reference_views]

    def get_target_views(self, rc: int) -> List[int]:
        """
        T cameras of a reference view, nearest camera centers first.

        Args:
            rc: Reference camera index

        Returns:
            List[int]: Target camera indexes
        """
        rc_center = self.mp.camera(rc).center
        candidates = [tc for tc in range(self.mp.nb_cameras) if tc != rc]
        candidates.sort(key=lambda tc: float(np.linalg.norm(self.mp.camera(tc).center - rc_center)))
        return candidates[:self.sgm_params.max_tc_per_tile]

    def _execute_processing_pipeline(self, rc: int) -> Dict[str, Any]:
        """
        Execute the tiled depth map estimation of a single view.

        Args:
            rc: Reference camera index

        Returns:
            Dict[str, Any]: Processing results
        """
        tc_list = self.get_target_views(rc)
        if not tc_list:
            self.logger.info(f"No T camera for view {rc}, writing an empty depth map")

        summary = self.orchestrator.process(rc, tc_list, self.depth_list, self.cancel_event,
                                            merge_tiles=self.merge_tiles, delete_tiles=self.delete_tiles)
        summary['view_id'] = self.mp.get_view_id(rc)
        summary['tc_list'] = tc_list
        summary['written_files'] = [str(path) for path in summary['written_files']]

        if summary['merged'] or summary['nb_tiles'] == 1:
            summary['nb_depth_values'] = self.file_manager.get_nb_depth_values_from_depth_map(
                rc, self.sgm_params.scale, self.sgm_params.step_xy, self.custom_suffix)
        return summary

    def _save_processing_results(self, processing_results: Dict[str, Any], rc: int) -> None:
        metadata = self._create_comprehensive_metadata(processing_results)
        filename = f"processing_summary_{self.mp.get_view_id(rc)}"
        if not DataSaver.save_json_data(metadata, self.output_folder, filename):
            self.logger.warning(f"Processing summary of view {rc} was not saved")

    def _get_processor_specific_config(self) -> Dict[str, Any]:
        """Get depth map specific configuration parameters."""
        return {
            'tile_params': self.tile_params.to_metadata(),
            'sgm': self.orchestrator.engine.get_configuration_info(),
            'map_folder': self.file_manager.get_folder_name(),
            'merge_tiles': self.merge_tiles,
            'delete_tiles': self.delete_tiles,
            'custom_suffix': self.custom_suffix,
            'max_workers': self.orchestrator.max_workers
        }

    def _is_processing_ready(self) -> bool:
        """Check if depth map estimator is ready for processing."""
        return self.mp.nb_cameras > 1 and self.orchestrator is not None

    def get_output_folder(self) -> Path:
        return self.mp.output_folder
