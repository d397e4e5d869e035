"""
Path handling, JSON summaries and configuration file loading.
"""

import json
from pathlib import Path
from typing import Any, Dict

import numpy as np

from utils.logger_config import get_logger

logger = get_logger(__name__)


class PathManager:
    """Output folders and config relative paths."""

    @staticmethod
    def ensure_directory_exists(path: Path) -> Path:
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Output directory ready: {path}")
        return path

    @staticmethod
    def resolve(base_path: Path, path: str) -> Path:
        """Resolve ``path`` against ``base_path`` unless it is absolute."""
        path = Path(path)
        return path if path.is_absolute() else Path(base_path) / path


def _to_json_compatible(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


class DataSaver:
    """Processing summaries written next to the maps."""

    @staticmethod
    def save_json_data(data: Dict[str, Any], output_path: Path, filename: str, indent: int = 2) -> bool:
        """
        Write ``data`` to ``output_path/filename.json``.

        Numpy arrays, numpy scalars and paths are converted to JSON types.

        Returns:
            bool: False when the file could not be written, the error is logged
        """
        full_path = Path(output_path) / f"{filename}.json"
        try:
            full_path.parent.mkdir(parents=True, exist_ok=True)
            with open(full_path, 'w', encoding='utf-8') as f:
                json.dump(data, f, ensure_ascii=False, indent=indent, default=_to_json_compatible)
        except (OSError, TypeError) as e:
            logger.error(f"Cannot write summary {full_path}: {e}")
            return False

        logger.debug(f"Summary written: {full_path}")
        return True


class ConfigurationManager:
    """JSON configuration files."""

    @staticmethod
    def load_config_file(config_path: Path) -> Dict[str, Any]:
        """
        Read a JSON configuration file holding one object.

        Raises:
            FileNotFoundError: The file does not exist
            ValueError: The file is not valid JSON or not an object
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, 'r', encoding='utf-8') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in config file {config_path}: {e}") from e

        if not isinstance(config, dict):
            raise ValueError(f"Config file {config_path} must contain a JSON object")
        return config
