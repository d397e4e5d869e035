"""
Tile workflow parameters and tile layout computation.

A tile is a rectangular part of the image processed independently by the
SGM engine. Adjacent tiles overlap by exactly ``padding`` pixels so their
results can be blended back together without seams.
"""

from dataclasses import dataclass
from typing import Any, Dict, List

from .roi import ROI, divide_round_up
from ..errors import TileConfigurationError


@dataclass(frozen=True)
class TileParams:
    """
    Tile workflow parameters.

    Attributes:
        buffer_width: Tile interior width in full resolution pixels
            (<= 0 means no tiling along X)
        buffer_height: Tile interior height in full resolution pixels
            (<= 0 means no tiling along Y)
        padding: Overlap in full resolution pixels added on interior sides
    """

    buffer_width: int = -1
    buffer_height: int = -1
    padding: int = 0

    @classmethod
    def from_config(cls, config) -> "TileParams":
        return cls(
            buffer_width=int(getattr(config, 'tile_buffer_width', -1)),
            buffer_height=int(getattr(config, 'tile_buffer_height', -1)),
            padding=int(getattr(config, 'tile_padding', 0)),
        )

    def is_tiled(self) -> bool:
        return self.buffer_width > 0 or self.buffer_height > 0

    def resolved(self, width: int, height: int) -> "TileParams":
        """Parameters with "no tiling" buffer sizes replaced by the image size."""
        return TileParams(
            buffer_width=self.buffer_width if self.buffer_width > 0 else width,
            buffer_height=self.buffer_height if self.buffer_height > 0 else height,
            padding=self.padding,
        )

    def validate(self, path=None) -> None:
        """
        Check parameters read back from a tile record.

        Raises:
            TileConfigurationError: If buffer sizes are not positive or padding is negative
        """
        if self.buffer_width <= 0 or self.buffer_height <= 0 or self.padding < 0:
            raise TileConfigurationError("Cannot find tile parameters in file", path)

    def to_metadata(self) -> Dict[str, Any]:
        return {
            'tileBufferWidth': int(self.buffer_width),
            'tileBufferHeight': int(self.buffer_height),
            'tilePadding': int(self.padding),
        }


def _tile_ranges(size: int, buffer_size: int, padding: int, max_downscale: int) -> List[tuple]:
    if buffer_size <= 0 or buffer_size >= size:
        return [(0, size)]

    aligned_buffer_size = max(buffer_size // max_downscale * max_downscale, max_downscale)
    nb_tiles = divide_round_up(size, aligned_buffer_size)
    effective_size = divide_round_up(divide_round_up(size, nb_tiles), max_downscale) * max_downscale

    ranges = []
    for i in range(nb_tiles):
        begin = i * effective_size
        if begin >= size:
            break
        end = min((i + 1) * effective_size + padding, size)
        ranges.append((begin, end))
    return ranges


def get_tile_roi_list(tile_params: TileParams, width: int, height: int, max_downscale: int = 1) -> List[ROI]:
    """
    Compute the tile ROI list covering a full resolution image.

    Tiles are ordered row by row. The interior size of a tile is a multiple
    of ``max_downscale`` so that every tile begins on a pixel of each
    downscaled grid, and never exceeds the buffer size unless the buffer is
    smaller than ``max_downscale``. Tiles are extended by ``padding`` on
    their right and bottom sides only: two adjacent tiles overlap by exactly
    ``padding`` pixels (``ceil(padding / downscale)`` on a downscaled grid)
    and sides lying on the image border carry no overlap.

    Args:
        tile_params: Tile workflow parameters
        width: Full resolution image width
        height: Full resolution image height
        max_downscale: Largest scale * step factor used on the tiles

    Returns:
        List[ROI]: Tile regions in full resolution coordinates
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Image size must be positive, got {width}x{height}")
    if max_downscale <= 0:
        raise ValueError(f"max_downscale must be positive, got {max_downscale}")
    if tile_params.padding < 0:
        raise ValueError(f"Tile padding must be non-negative, got {tile_params.padding}")

    ranges_x = _tile_ranges(width, tile_params.buffer_width, tile_params.padding, max_downscale)
    ranges_y = _tile_ranges(height, tile_params.buffer_height, tile_params.padding, max_downscale)

    return [ROI.from_bounds(x_begin, x_end, y_begin, y_end)
            for (y_begin, y_end) in ranges_y
            for (x_begin, x_end) in ranges_x]
