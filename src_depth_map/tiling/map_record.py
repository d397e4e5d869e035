"""
Persisted map records.

A record is a ``.npz`` archive holding the pixel payload of one map (depth,
similarity or normal) and a JSON encoded metadata dictionary. Metadata is the
only source of a tile's ROI and tile parameters at read time.
"""

import json
import os
import zipfile
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import numpy as np

from .file_type import EFileType
from ..errors import MapRecordError, TileConfigurationError
from ..geometry.roi import ROI
from ..geometry.tile_params import TileParams
from utils.logger_config import get_logger

logger = get_logger(__name__)

_PAYLOAD_KEY = "map"
_METADATA_KEY = "metadata"

# np.load failures of missing, truncated or foreign files
_UNREADABLE_RECORD_ERRORS = (OSError, EOFError, ValueError, KeyError, zipfile.BadZipFile)


def _to_json_value(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    return value


def write_map_record(path: Path, data: np.ndarray, file_type: EFileType, metadata: Dict[str, Any]) -> Path:
    """
    Write a map record.

    The archive is written next to its final location and moved in place so
    that an interrupted write never leaves a partial record behind.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = np.ascontiguousarray(data, dtype=file_type.storage_dtype)
    encoded = json.dumps({key: _to_json_value(value) for key, value in metadata.items()})

    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        with open(tmp_path, 'wb') as f:
            np.savez(f, **{_PAYLOAD_KEY: payload, _METADATA_KEY: np.array(encoded)})
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()

    logger.debug(f"Wrote {file_type.label} {payload.shape} to {path}")
    return path


def _load_record(path: Path, with_payload: bool) -> Tuple[Optional[np.ndarray], Dict[str, Any]]:
    try:
        with np.load(path, allow_pickle=False) as archive:
            data = archive[_PAYLOAD_KEY].astype(np.float32) if with_payload else None
            metadata = json.loads(str(archive[_METADATA_KEY]))
    except _UNREADABLE_RECORD_ERRORS as e:
        raise MapRecordError(f"Cannot read map record ({type(e).__name__}: {e})", path) from e
    if not isinstance(metadata, dict):
        raise MapRecordError("Map record metadata is not a dictionary", path)
    return data, metadata


def read_map_metadata(path: Path) -> Dict[str, Any]:
    """
    Read the metadata of a record without decoding its payload.

    Raises:
        MapRecordError: If the file is missing, truncated or not a map record
    """
    return _load_record(path, with_payload=False)[1]


def read_map_record(path: Path) -> Tuple[np.ndarray, Dict[str, Any]]:
    """
    Read a map record.

    Returns:
        Tuple of (float32 payload, metadata)

    Raises:
        MapRecordError: If the file is missing, truncated or not a map record
    """
    return _load_record(path, with_payload=True)


def _get_int(metadata: Dict[str, Any], key: str, default: int) -> int:
    value = metadata.get(key)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return default


def roi_from_metadata(metadata: Dict[str, Any], path: Optional[Path] = None) -> ROI:
    """
    Tile ROI stored in record metadata.

    Raises:
        TileConfigurationError: If the ROI is missing or invalid
    """
    begin_x = _get_int(metadata, 'roiBeginX', -1)
    begin_y = _get_int(metadata, 'roiBeginY', -1)
    end_x = _get_int(metadata, 'roiEndX', -1)
    end_y = _get_int(metadata, 'roiEndY', -1)

    if begin_x < 0 or begin_y < 0 or end_x <= 0 or end_y <= 0 or begin_x > end_x or begin_y > end_y:
        logger.error(f"Invalid ROI metadata in {path}")
        raise TileConfigurationError("Cannot find ROI information in file", path)

    return ROI.from_bounds(begin_x, end_x, begin_y, end_y)


def tile_params_from_metadata(metadata: Dict[str, Any], path: Optional[Path] = None) -> TileParams:
    """
    Tile parameters stored in record metadata.

    Raises:
        TileConfigurationError: If the parameters are missing or invalid
    """
    tile_params = TileParams(
        buffer_width=_get_int(metadata, 'tileBufferWidth', -1),
        buffer_height=_get_int(metadata, 'tileBufferHeight', -1),
        padding=_get_int(metadata, 'tilePadding', -1),
    )
    try:
        tile_params.validate(path)
    except TileConfigurationError:
        logger.error(f"Invalid tile parameters metadata in {path}")
        raise
    return tile_params


def get_roi_from_metadata(path: Path) -> ROI:
    return roi_from_metadata(read_map_metadata(path), path)


def get_tile_params_from_metadata(path: Path) -> TileParams:
    return tile_params_from_metadata(read_map_metadata(path), path)
