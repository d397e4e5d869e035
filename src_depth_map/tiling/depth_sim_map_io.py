"""
Depth / similarity map input and output.

Maps are written either as one full size record per map type or, when the
work is tiled, as one record per tile. Tile records carry their ROI and the
tile parameters in their metadata so that the full map can be rebuilt from
the files alone by weighted blending of the tile borders.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from .file_type import EFileType, get_file_name_from_index, tile_file_pattern
from .map_record import (
    read_map_metadata,
    read_map_record,
    roi_from_metadata,
    tile_params_from_metadata,
    write_map_record,
)
from .tile_weighting import TileMapAccumulator, add_tile_map_weighted
from ..base.file_manager import BaseFileManager
from ..camera.multi_view_params import MultiViewParams
from ..errors import MapRecordError, TileConfigurationError
from ..geometry.roi import ROI, divide_round_up, downscale_roi, intersect
from ..geometry.tile_params import TileParams


def get_scale_step(scale: int, step: int) -> int:
    """Downscale factor of a map computed at ``scale`` with a pixel ``step``."""
    return max(scale, 1) * step


class DepthSimMapFileManager(BaseFileManager):
    """Manages depth, similarity and normal map files of the R cameras."""

    def __init__(self, mp: MultiViewParams):
        """
        Initialize depth/sim map file manager.

        Args:
            mp: Camera parameter context, its output folder holds the maps
        """
        super().__init__(mp.output_folder)
        self.mp = mp

    def get_folder_name(self) -> str:
        """Get the folder holding the map files."""
        return str(self.base_output_path)

    def get_map_size(self, rc: int, scale: int = 0, step: int = 1) -> Tuple[int, int]:
        """
        Size of the full map of an R camera.

        Returns:
            Tuple[int, int]: (width, height) at ``1 / (scale * step)`` resolution
        """
        scale_step = get_scale_step(scale, step)
        return (divide_round_up(self.mp.get_width(rc), scale_step),
                divide_round_up(self.mp.get_height(rc), scale_step))

    def get_tile_path_list(self, rc: int, file_type: EFileType, scale: int = 0, custom_suffix: str = "") -> List[Path]:
        """
        Tile files of a map, sorted by name.

        Args:
            rc: Reference camera index
            file_type: Map type
            scale: Downscale factor of the map
            custom_suffix: Optional filename suffix

        Returns:
            List[Path]: Tile paths, empty if the map was not tiled

        Raises:
            TileConfigurationError: If the map folder does not exist
        """
        map_path = get_file_name_from_index(self.mp, rc, file_type, scale, custom_suffix)
        folder = map_path.parent

        if not folder.is_dir():
            self.logger.error(f"Cannot find map folder (rc: {rc}): {folder}")
            raise TileConfigurationError("Cannot find the map folder", folder)

        pattern = tile_file_pattern(map_path)
        return sorted(path for path in folder.iterdir() if path.is_file() and pattern.match(path.name))

    def read_map_from_tiles(
        self,
        rc: int,
        file_type: EFileType,
        scale: int = 0,
        step: int = 1,
        custom_suffix: str = ""
    ) -> np.ndarray:
        """
        Rebuild a full map from its tile files.

        Each tile is weighted at its borders so that overlapping tiles blend
        seamlessly, then added at its downscaled ROI offset.
        Tile parameters come from the first readable tile. A tile that cannot
        be read is logged and left out of the map.

        Args:
            rc: Reference camera index
            file_type: Map type
            scale: Downscale factor of the map
            step: Pixel step of the map
            custom_suffix: Optional filename suffix

        Returns:
            np.ndarray: Full map, zeros if no tile file exists

        Raises:
            TileConfigurationError: If the folder is missing or a tile carries
                invalid ROI or tile parameters metadata
        """
        image_width = self.mp.get_width(rc)
        image_height = self.mp.get_height(rc)
        image_roi = ROI.from_size(image_width, image_height)
        scale_step = get_scale_step(scale, step)
        width, height = self.get_map_size(rc, scale, step)

        tile_paths = self.get_tile_path_list(rc, file_type, scale, custom_suffix)
        accumulator = TileMapAccumulator(width, height, file_type.nb_channels)

        if not tile_paths:
            self.logger.info(f"Cannot find any {file_type.label} tile file (rc: {rc})")
            return accumulator.result()

        tile_params = None
        for tile_path in tile_paths:
            try:
                tile_map, metadata = read_map_record(tile_path)
            except MapRecordError as e:
                self.record_operation(False)
                self.logger.warning(f"Cannot read {file_type.label} tile (rc: {rc}): {e}")
                continue

            if tile_params is None:
                tile_params = tile_params_from_metadata(metadata, tile_path)
            roi = intersect(roi_from_metadata(metadata, tile_path), image_roi)
            if roi.is_empty():
                continue

            try:
                add_tile_map_weighted(tile_params, roi, image_width, image_height, scale_step,
                                      tile_map, accumulator,
                                      check_invalid=file_type is not EFileType.NORMAL_MAP)
            except ValueError as e:
                self.record_operation(False)
                self.logger.warning(f"Cannot read {file_type.label} tile (rc: {rc}): {tile_path} ({e})")
                continue
            self.record_operation(True)

        self.logger.debug(f"Merged {accumulator.nb_tiles}/{len(tile_paths)} {file_type.label} tiles (rc: {rc})")
        return accumulator.result()

    def _build_metadata(
        self,
        rc: int,
        tile_params: TileParams,
        roi: ROI,
        scale_step: int,
        depth_map: np.ndarray
    ) -> Dict[str, Any]:
        P, C, iCam = self.mp.camera(rc).scaled(scale_step)
        valid_depths = depth_map[depth_map > 0.0] if depth_map.size else depth_map

        metadata = self.mp.get_metadata(rc)
        metadata.update({
            'downscale': int(self.mp.get_downscale_factor(rc) * scale_step),
            'roiBeginX': int(roi.x.begin),
            'roiBeginY': int(roi.y.begin),
            'roiEndX': int(roi.x.end),
            'roiEndY': int(roi.y.end),
            'P': P,
            'CArr': C,
            'iCamArr': iCam,
            'nbDepthValues': int(valid_depths.size),
        })
        metadata.update(tile_params.resolved(self.mp.get_width(rc), self.mp.get_height(rc)).to_metadata())
        if valid_depths.size:
            metadata['minDepth'] = float(valid_depths.min())
            metadata['maxDepth'] = float(valid_depths.max())
        return metadata

    def write_depth_sim_map(
        self,
        rc: int,
        tile_params: TileParams,
        roi: ROI,
        depth_map: np.ndarray,
        sim_map: np.ndarray,
        scale: int = 0,
        step: int = 1,
        custom_suffix: str = "",
        normal_map: Optional[np.ndarray] = None
    ) -> List[Path]:
        """
        Write the depth, similarity and normal maps of a tile or a full image.

        Tile file names are used when the downscaled ROI does not cover the
        full downscaled image. Empty maps are not written.

        Args:
            rc: Reference camera index
            tile_params: Tile parameters of the run
            roi: Region of the maps in full resolution coordinates
            depth_map: Depth map at ``1 / (scale * step)`` resolution
            sim_map: Similarity map, same size as the depth map
            scale: Downscale factor of the maps
            step: Pixel step of the maps
            custom_suffix: Optional filename suffix
            normal_map: Optional normal map (height, width, 3)

        Returns:
            List[Path]: Written files
        """
        scale_step = get_scale_step(scale, step)
        depth_map = np.asarray(depth_map, dtype=np.float32)
        sim_map = np.asarray(sim_map, dtype=np.float32)

        downscaled_roi = downscale_roi(roi, scale_step)
        is_tile = downscaled_roi.shape != self.get_map_size(rc, scale, step)[::-1]
        tile_x = roi.x.begin if is_tile else None
        tile_y = roi.y.begin if is_tile else None

        metadata = self._build_metadata(rc, tile_params, roi, scale_step, depth_map)

        written = []
        for file_type, data in ((EFileType.DEPTH_MAP, depth_map),
                                (EFileType.SIM_MAP, sim_map),
                                (EFileType.NORMAL_MAP, normal_map)):
            if data is None or np.asarray(data).size == 0:
                continue
            path = get_file_name_from_index(self.mp, rc, file_type, scale, custom_suffix, tile_x, tile_y)
            try:
                written.append(write_map_record(path, data, file_type, metadata))
                self.record_operation(True)
            except OSError as e:
                self.record_operation(False)
                self.logger.error(f"Cannot write {file_type.label} (rc: {rc}): {path} ({e})")
                raise

        self.logger.debug(f"Wrote {len(written)} maps of {'tile ' + str(roi) if is_tile else 'full image'} "
                          f"(rc: {rc})")
        return written

    def write_full_depth_sim_map(
        self,
        rc: int,
        depth_map: np.ndarray,
        sim_map: np.ndarray,
        scale: int = 0,
        step: int = 1,
        custom_suffix: str = "",
        normal_map: Optional[np.ndarray] = None
    ) -> List[Path]:
        """Write full size depth/sim maps (no tiling)."""
        roi = ROI.from_size(self.mp.get_width(rc), self.mp.get_height(rc))
        return self.write_depth_sim_map(rc, TileParams(), roi, depth_map, sim_map, scale, step,
                                        custom_suffix, normal_map)

    def write_depth_map(
        self,
        rc: int,
        depth_map: np.ndarray,
        scale: int = 0,
        step: int = 1,
        custom_suffix: str = ""
    ) -> List[Path]:
        """Write a full size depth map alone."""
        empty_sim_map = np.empty((0, 0), dtype=np.float32)
        return self.write_full_depth_sim_map(rc, depth_map, empty_sim_map, scale, step, custom_suffix)

    def _read_map(self, rc: int, file_type: EFileType, scale: int, step: int, custom_suffix: str) -> np.ndarray:
        path = get_file_name_from_index(self.mp, rc, file_type, scale, custom_suffix)
        if path.exists():
            data, _ = read_map_record(path)
            self.record_operation(True)
            return data
        return self.read_map_from_tiles(rc, file_type, scale, step, custom_suffix)

    def read_depth_sim_map(
        self,
        rc: int,
        scale: int = 0,
        step: int = 1,
        custom_suffix: str = ""
    ) -> Tuple[np.ndarray, np.ndarray]:
        """
        Read the depth and similarity maps of an R camera.

        The full size file is used when it exists, the tiles are merged otherwise.

        Returns:
            Tuple of (depth map, similarity map)
        """
        return (self._read_map(rc, EFileType.DEPTH_MAP, scale, step, custom_suffix),
                self._read_map(rc, EFileType.SIM_MAP, scale, step, custom_suffix))

    def read_depth_map(self, rc: int, scale: int = 0, step: int = 1, custom_suffix: str = "") -> np.ndarray:
        return self._read_map(rc, EFileType.DEPTH_MAP, scale, step, custom_suffix)

    def read_sim_map(self, rc: int, scale: int = 0, step: int = 1, custom_suffix: str = "") -> np.ndarray:
        return self._read_map(rc, EFileType.SIM_MAP, scale, step, custom_suffix)

    def read_normal_map(self, rc: int, scale: int = 0, step: int = 1, custom_suffix: str = "") -> np.ndarray:
        return self._read_map(rc, EFileType.NORMAL_MAP, scale, step, custom_suffix)

    def get_nb_depth_values_from_depth_map(
        self,
        rc: int,
        scale: int = 0,
        step: int = 1,
        custom_suffix: str = ""
    ) -> int:
        """
        Number of valid depth values of a depth map.

        Read from the metadata of the full size file, or summed over the
        tiles. When the full size file has no count, valid values are
        counted in the map itself.

        Returns:
            int: Number of valid depths, -1 if the depth map does not exist

        Raises:
            TileConfigurationError: If a tile has no depth value count
        """
        depth_map_path = get_file_name_from_index(self.mp, rc, EFileType.DEPTH_MAP, scale, custom_suffix)

        if depth_map_path.exists():
            nb_depth_values = read_map_metadata(depth_map_path).get('nbDepthValues', -1)
            if isinstance(nb_depth_values, int) and nb_depth_values >= 0:
                return nb_depth_values
            self.logger.warning(f"Cannot find depth value count metadata in depth map file (rc: {rc}), "
                                f"counting valid depths")
            depth_map = self.read_depth_map(rc, scale, step, custom_suffix)
            return int(np.count_nonzero(depth_map > 0.0))

        tile_paths = self.get_tile_path_list(rc, EFileType.DEPTH_MAP, scale, custom_suffix)
        if not tile_paths:
            self.logger.warning(f"Cannot find depth map file or tile files (rc: {rc})")
            return -1

        nb_depth_values = 0
        for tile_path in tile_paths:
            nb_tile_depth_values = read_map_metadata(tile_path).get('nbDepthValues', -1)
            if not isinstance(nb_tile_depth_values, int) or nb_tile_depth_values < 0:
                self.logger.error(f"Invalid depth value count metadata in depth map tile (rc: {rc})")
                raise TileConfigurationError("Cannot find depth value count in depth map tile", tile_path)
            nb_depth_values += nb_tile_depth_values
        return nb_depth_values

    def delete_depth_sim_map_tiles(self, rc: int, scale: int = 0, custom_suffix: str = "") -> int:
        """
        Delete the depth, similarity and normal map tiles of an R camera.

        Returns:
            int: Number of deleted files
        """
        deleted = 0
        for file_type in EFileType:
            tile_paths = self.get_tile_path_list(rc, file_type, scale, custom_suffix)
            deleted += self.delete_files(tile_paths)
        self.logger.info(f"Deleted {deleted} map tiles (rc: {rc})")
        return deleted
