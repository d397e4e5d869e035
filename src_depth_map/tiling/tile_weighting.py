"""
Border weighting and additive compositing of map tiles.

When merging tiles there are 8 intersection areas per tile:

* 4 corners (intersection of 4 tiles, or 2 tiles when the tile lies on an
  image edge)
* 4 edges (intersection of 2 tiles)

Each area is weighted by a bilinear interpolation of 4 coefficients, one per
area corner, equal to 1 where the tile owns the corner and 0 where a
neighbouring tile takes over. The ramps leave a 2 pixel margin at both ends
of every area, less on bands shorter than 5 pixels. The band of a tile is
its downscaled overlap ``ceil(padding / downscale)``, so the weights of all
tiles covering a pixel sum to 1.
"""

from dataclasses import dataclass
from typing import List

import numpy as np

from ..geometry.roi import ROI, divide_round_up, downscale_roi
from ..geometry.tile_params import TileParams

# pixels at both ends of a border area where the ramp is clamped
BORDER_MARGIN = 2.0

# values at or below this threshold are invalid (depth / similarity sentinel)
INVALID_THRESHOLD = -1.0


@dataclass(frozen=True)
class TilePosition:
    """Sides of a tile lying on the image border."""

    first_column: bool
    last_column: bool
    first_row: bool
    last_row: bool

    @classmethod
    def from_roi(cls, roi: ROI, image_width: int, image_height: int) -> "TilePosition":
        return cls(first_column=roi.x.begin == 0,
                   last_column=roi.x.end == image_width,
                   first_row=roi.y.begin == 0,
                   last_row=roi.y.end == image_height)


@dataclass(frozen=True)
class BorderArea:
    """
    One weighted area of a tile.

    Coefficients follow the area corners: ``a`` top-left, ``b`` top-right,
    ``c`` bottom-right, ``d`` bottom-left.
    """

    name: str
    a: int
    b: int
    c: int
    d: int
    left: int
    top: int
    width: int
    height: int


def border_areas(position: TilePosition, tile_width: int, tile_height: int, padding: int) -> List[BorderArea]:
    """
    The weighted areas of a tile, in application order.

    Table of the 8 areas, ``(skipped when, coefficients, origin, size)``:

    ============  =======================  ================================  ==========================
    area          skipped when             (a, b, c, d)                      origin / size
    ============  =======================  ================================  ==========================
    top-left      first column & first row (0, first_row, 1, first_column)   (0, 0) / p x p
    bottom-left   first column & last row  (first_column, 1, last_row, 0)    (0, h-p) / p x p
    top-right     last column & first row  (first_row, 0, last_column, 1)   (w-p, 0) / p x p
    bottom-right  last column & last row   (1, last_column, 0, last_row)     (w-p, h-p) / p x p
    top           first row                (0, 0, 1, 1)                      (p, 0) / (w-2p) x p
    bottom        last row                 (1, 1, 0, 0)                      (p, h-p) / (w-2p) x p
    left          first column             (0, 1, 1, 0)                      (0, p) / p x (h-2p)
    right         last column              (1, 0, 0, 1)                      (w-p, p) / p x (h-2p)
    ============  =======================  ================================  ==========================
    """
    fc, lc = int(position.first_column), int(position.last_column)
    fr, lr = int(position.first_row), int(position.last_row)
    w, h, p = tile_width, tile_height, padding

    table = [
        (fc and fr, BorderArea("top-left", 0, fr, 1, fc, 0, 0, p, p)),
        (fc and lr, BorderArea("bottom-left", fc, 1, lr, 0, 0, h - p, p, p)),
        (lc and fr, BorderArea("top-right", fr, 0, lc, 1, w - p, 0, p, p)),
        (lc and lr, BorderArea("bottom-right", 1, lc, 0, lr, w - p, h - p, p, p)),
        (fr, BorderArea("top", 0, 0, 1, 1, p, 0, w - 2 * p, p)),
        (lr, BorderArea("bottom", 1, 1, 0, 0, p, h - p, w - 2 * p, p)),
        (fc, BorderArea("left", 0, 1, 1, 0, 0, p, p, h - 2 * p)),
        (lc, BorderArea("right", 1, 0, 0, 1, w - p, p, p, h - 2 * p)),
    ]
    return [area for skipped, area in table if not skipped]


def _ramp_margin(band: int) -> float:
    # bands shorter than 5 pixels keep at least one ramp pixel
    return min(BORDER_MARGIN, (band - 1) / 2.0)


def weight_tile_border(area: BorderArea, tile_map: np.ndarray) -> None:
    """
    Multiply one border area of a tile map in place by its bilinear weight.

    Args:
        area: Border area in tile coordinates
        tile_map: Tile map (height, width) or (height, width, channels)
    """
    map_height, map_width = tile_map.shape[:2]
    right = area.left + area.width
    bottom = area.top + area.height

    begin_x, end_x = max(area.left, 0), min(right, map_width)
    begin_y, end_y = max(area.top, 0), min(bottom, map_height)
    if begin_x >= end_x or begin_y >= end_y:
        return

    margin_x = _ramp_margin(area.width)
    margin_y = _ramp_margin(area.height)
    lu_x, lu_y = area.left + margin_x, area.top + margin_y
    rd_x, rd_y = right - margin_x, bottom - margin_y
    width_m = area.width - 2.0 * margin_x
    height_m = area.height - 2.0 * margin_y

    xs = np.arange(begin_x, end_x, dtype=np.float64)
    ys = np.arange(begin_y, end_y, dtype=np.float64)

    r_x = np.clip((rd_x - xs) / width_m, 0.0, 1.0).astype(np.float32)[None, :]
    l_x = np.clip((xs - lu_x) / width_m, 0.0, 1.0).astype(np.float32)[None, :]
    r_y = np.clip((rd_y - ys) / height_m, 0.0, 1.0).astype(np.float32)[:, None]
    l_y = np.clip((ys - lu_y) / height_m, 0.0, 1.0).astype(np.float32)[:, None]

    a, b, c, d = (np.float32(v) for v in (area.a, area.b, area.c, area.d))
    weight = r_y * (r_x * a + l_x * b) + l_y * (r_x * d + l_x * c)

    block = tile_map[begin_y:end_y, begin_x:end_x]
    if block.ndim == 3:
        weight = weight[:, :, None]
    block *= weight


def compute_tile_weight_map(position: TilePosition, tile_width: int, tile_height: int, padding: int) -> np.ndarray:
    """Per-pixel blending weight of a tile, 1 in its interior."""
    weights = np.ones((tile_height, tile_width), dtype=np.float32)
    if padding <= 0:
        return weights
    for area in border_areas(position, tile_width, tile_height, padding):
        weight_tile_border(area, weights)
    return weights


class TileMapAccumulator:
    """
    Additive full resolution map built from weighted tiles.

    Sums are kept in float64: the weighted float32 tile values add exactly,
    so the result does not depend on the order in which tiles are added.
    Invalid tile values (<= -1) are neither weighted nor accumulated; a
    pixel with invalid contributions is renormalized by the weight of its
    valid contributions, and set to ``invalid_value`` if it has none.
    """

    def __init__(self, width: int, height: int, nb_channels: int = 1, invalid_value: float = INVALID_THRESHOLD):
        shape = (height, width) if nb_channels == 1 else (height, width, nb_channels)
        self.width = width
        self.height = height
        self.invalid_value = invalid_value
        self._values = np.zeros(shape, dtype=np.float64)
        self._valid_weight = np.zeros((height, width), dtype=np.float64)
        self._invalid_hit = np.zeros((height, width), dtype=bool)
        self.nb_tiles = 0

    def add(self, tile_map: np.ndarray, weights: np.ndarray, downscaled_roi: ROI,
            check_invalid: bool = True) -> None:
        """
        Weight a tile in place and add it at its downscaled ROI offset.

        Args:
            tile_map: Tile values, at least the size of ``downscaled_roi``
            weights: Tile blending weights (height, width)
            downscaled_roi: Tile region in the accumulator grid
            check_invalid: Apply the invalid value policy
        """
        roi = downscaled_roi
        if tile_map.shape[0] < roi.height or tile_map.shape[1] < roi.width:
            raise ValueError(f"Tile map shape {tile_map.shape[:2]} is smaller than its ROI {roi.shape}")
        tile_map = tile_map[:roi.height, :roi.width]
        weights = weights[:roi.height, :roi.width]
        target = roi.slices()

        if check_invalid and tile_map.ndim == 2:
            invalid = tile_map <= INVALID_THRESHOLD
            tile_map[invalid] = 0.0
            self._invalid_hit[target] |= invalid & (weights > 0)
            self._valid_weight[target] += np.where(invalid, 0.0, weights)
        else:
            self._valid_weight[target] += weights

        tile_map *= weights if tile_map.ndim == 2 else weights[:, :, None]
        self._values[target] += tile_map
        self.nb_tiles += 1

    def result(self) -> np.ndarray:
        values = self._values.copy()
        if np.any(self._invalid_hit):
            hit = self._invalid_hit
            has_valid = hit & (self._valid_weight > 0)
            values[has_valid] = self._values[has_valid] / self._valid_weight[has_valid]
            values[hit & ~has_valid] = self.invalid_value
        return values.astype(np.float32)


def add_tile_map_weighted(
    tile_params: TileParams,
    roi: ROI,
    image_width: int,
    image_height: int,
    downscale: int,
    tile_map: np.ndarray,
    accumulator: TileMapAccumulator,
    check_invalid: bool = True
) -> None:
    """
    Weight a tile map according to its position and add it to the full map.

    Args:
        tile_params: Tile parameters of the run
        roi: Tile ROI in full resolution coordinates, inside the image
        image_width, image_height: Full resolution image size
        downscale: Scale * step factor of the maps
        tile_map: Tile map at the downscaled resolution, modified in place
        accumulator: Full map accumulator at the downscaled resolution
        check_invalid: Apply the invalid value policy
    """
    downscaled_roi = downscale_roi(roi, downscale)
    # downscaled overlap of adjacent tiles
    tile_padding = divide_round_up(tile_params.padding, downscale)
    position = TilePosition.from_roi(roi, image_width, image_height)

    weights = compute_tile_weight_map(position, downscaled_roi.width, downscaled_roi.height, tile_padding)
    accumulator.add(tile_map, weights, downscaled_roi, check_invalid)


def merge_tile_maps(tiles, tile_params: TileParams, image_width: int, image_height: int, downscale: int,
                    check_invalid: bool = True) -> np.ndarray:
    """
    Merge in-memory tiles, ``tiles`` being ``(roi, tile_map)`` pairs.

    Returns:
        np.ndarray: Full map at the downscaled resolution
    """
    width = -(-image_width // downscale)
    height = -(-image_height // downscale)
    accumulator = TileMapAccumulator(width, height)
    for roi, tile_map in tiles:
        add_tile_map_weighted(tile_params, roi, image_width, image_height, downscale,
                              np.array(tile_map, dtype=np.float32), accumulator,
                              check_invalid=check_invalid)
    return accumulator.result()
