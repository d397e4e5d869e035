import os
from pathlib import Path
from typing import Dict, Any

from utils.file_operations import ConfigurationManager, PathManager
from utils.logger_config import get_logger

logger = get_logger(__name__)

# Below this padding the tile border ramps lose their 2 pixel margins
MIN_SMOOTH_TILE_PADDING = 5


class Config:
    def __init__(self, config_path: str, create_folders: bool = True):
        self.config_path = Path(config_path)
        self.config_data = self._load_config(self.config_path)
        self._init_depth_map_defaults()
        self._validate_tile_config()
        self._validate_sgm_config()
        if create_folders:
            self._check_folder(self.config_data["save_path_result"])

    def _load_config(self, config_path: Path) -> Dict[str, Any]:
        config_data = ConfigurationManager.load_config_file(config_path)

        # Process string formatting for paths that contain {case_name}
        self._process_string_formatting(config_data)
        return config_data

    def _process_string_formatting(self, config_data: Dict[str, Any]) -> None:
        """Process string formatting in config values, replacing {case_name} with actual value."""
        case_name = config_data.get("case_name", "")

        for key, value in config_data.items():
            if isinstance(value, str) and "{case_name}" in value:
                try:
                    config_data[key] = value.format(case_name=case_name)
                except (KeyError, ValueError) as e:
                    # Keep original value if formatting fails
                    logger.warning(f"Could not format value for key '{key}': {e}")

    def _init_depth_map_defaults(self) -> None:
        """Initialize default parameters of the tiled depth map estimation.

        Config values (if present) take precedence over these defaults.
        """
        defaults = {
            # Output
            "result_root": "result",
            "save_path_result": "depth_map",
            "custom_suffix": "",
            # Tiling (buffer <= 0 disables tiling along that axis)
            "tile_buffer_width": 1024,
            "tile_buffer_height": 1024,
            "tile_padding": 128,
            "max_workers": 1,
            "merge_tiles": "True",
            "delete_tiles": "False",
            # SGM
            "sgm_scale": 2,
            "sgm_step_xy": 2,
            "sgm_nb_depths": 64,
            "sgm_min_depth": 1.0,
            "sgm_max_depth": 100.0,
            "sgm_patch_half_size": 2,
            "sgm_max_tc_per_tile": 4,
            "sgm_p1": 10.0,
            "sgm_p2": 100.0,
            "sgm_p2_gradient_sigma": None,
            "sgm_filtering_axes": "YX",
            "sgm_compute_normal_map": "False",
            "sgm_device_memory_mb": None,
            # Logging
            "log_level": "INFO",
            "log_file": None
        }

        for k, v in defaults.items():
            self.config_data.setdefault(k, v)

    def _validate_tile_config(self) -> None:
        """Validate tile parameters."""
        padding = self.config_data.get("tile_padding")
        if not isinstance(padding, int) or isinstance(padding, bool) or padding < 0:
            raise ValueError("tile_padding must be a non-negative integer")

        if 0 < padding < MIN_SMOOTH_TILE_PADDING:
            logger.warning(f"tile_padding ({padding}) is below {MIN_SMOOTH_TILE_PADDING} pixels: "
                           f"tile border ramps will be shortened to fit the overlap")

        for key in ("tile_buffer_width", "tile_buffer_height"):
            buffer_size = self.config_data.get(key)
            if not isinstance(buffer_size, int) or isinstance(buffer_size, bool):
                raise ValueError(f"{key} must be an integer")
            if 0 < buffer_size <= padding:
                raise ValueError(f"{key} ({buffer_size}) must be larger than tile_padding ({padding})")

        max_workers = self.config_data.get("max_workers")
        if not isinstance(max_workers, int) or max_workers < 1:
            raise ValueError("max_workers must be a positive integer")

    def _validate_sgm_config(self) -> None:
        """Validate SGM parameters."""
        for key in ("sgm_scale", "sgm_step_xy", "sgm_nb_depths", "sgm_patch_half_size", "sgm_max_tc_per_tile"):
            value = self.config_data.get(key)
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                raise ValueError(f"{key} must be a positive integer")

        min_depth = self.config_data.get("sgm_min_depth")
        max_depth = self.config_data.get("sgm_max_depth")
        if not isinstance(min_depth, (int, float)) or not isinstance(max_depth, (int, float)):
            raise ValueError("sgm_min_depth and sgm_max_depth must be numbers")
        if not 0 < min_depth < max_depth:
            raise ValueError(f"Invalid depth range: [{min_depth}, {max_depth}]")

        axes = self.config_data.get("sgm_filtering_axes")
        if not isinstance(axes, str) or not axes or set(axes) - set("XYD"):
            raise ValueError("sgm_filtering_axes must combine 'X', 'Y' and 'D'")

        memory = self.config_data.get("sgm_device_memory_mb")
        if memory is not None and (not isinstance(memory, (int, float)) or memory <= 0):
            raise ValueError("sgm_device_memory_mb must be a positive number")

    def _check_folder(self, folder_name):
        counter = 1
        result_root = PathManager.resolve(self.config_path.parent, self.config_data["result_root"])
        new_path = result_root / folder_name
        while os.path.exists(new_path):
            new_path = result_root / f"{folder_name}({counter})"
            counter += 1
        PathManager.ensure_directory_exists(new_path)
        self.config_data["save_path_result"] = str(new_path)

    def get_tile_config_summary(self) -> str:
        """Get a summary of the current tile configuration."""
        if not self.is_tiling_enabled():
            return "No tiling"
        return (f"Tiles: {self.config_data['tile_buffer_width']}x{self.config_data['tile_buffer_height']}, "
                f"padding {self.config_data['tile_padding']}")

    def is_tiling_enabled(self) -> bool:
        """Check if the depth map estimation is tiled."""
        return self.config_data["tile_buffer_width"] > 0 or self.config_data["tile_buffer_height"] > 0

    def __getattr__(self, name: str) -> Any:
        if name in self.config_data:
            return self.config_data[name]
        raise AttributeError(f"'{self.__class__.__name__}' object has no attribute '{name}'")
