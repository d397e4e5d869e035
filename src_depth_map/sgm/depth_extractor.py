"""
Best depth retrieval from a filtered similarity volume.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np

from .depth_list import SgmDepthList
from .similarity_volume import TSIM_INVALID, TSIM_MAX
from ..camera.multi_view_params import MultiViewParams
from ..geometry.roi import ROI, downscale_roi
from utils.logger_config import get_logger
from utils.stereo_math import StereoMath

DEPTH_INVALID = -1.0
SIM_INVALID = -1.0


def is_valid_depth(depth: np.ndarray) -> np.ndarray:
    return depth > DEPTH_INVALID


@dataclass
class DepthSimMap:
    """
    Depth and similarity maps of a tile or of a full image.

    ``sim`` holds a confidence in [0, 1] (higher is better) for valid
    pixels. Invalid pixels have depth and sim equal to -1 and a zero normal.
    """

    depth: np.ndarray
    sim: np.ndarray
    normal: Optional[np.ndarray] = None

    def __post_init__(self):
        if self.depth.shape != self.sim.shape:
            raise ValueError(f"Depth and sim shapes differ: {self.depth.shape} vs {self.sim.shape}")
        if self.normal is not None and self.normal.shape != self.depth.shape + (3,):
            raise ValueError(f"Normal map shape {self.normal.shape} does not match {self.depth.shape}")

    @classmethod
    def invalid(cls, height: int, width: int) -> "DepthSimMap":
        return cls(np.full((height, width), DEPTH_INVALID, dtype=np.float32),
                   np.full((height, width), SIM_INVALID, dtype=np.float32))

    @property
    def shape(self):
        return self.depth.shape

    @property
    def valid_mask(self) -> np.ndarray:
        return is_valid_depth(self.depth)

    @property
    def nb_valid(self) -> int:
        return int(np.count_nonzero(self.valid_mask))


class DepthExtractor:
    """Selects the minimal cost hypothesis of every pixel."""

    def __init__(self):
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

    def extract(self, filtered_volume: np.ndarray, depth_list: SgmDepthList) -> DepthSimMap:
        """
        Extract the depth/sim map from a filtered volume.

        The confidence of a pixel is the gap between its smallest and second
        smallest filtered cost, normalized to [0, 1]. Ties select the first
        hypothesis.

        The second best volume of the similarity volume builder is not an
        input: both costs are taken from the filtered best volume.

        Args:
            filtered_volume: Filtered similarity volume (depths, height, width)
            depth_list: Depth hypotheses matching the first volume axis

        Returns:
            DepthSimMap: Map at the volume resolution
        """
        nb_depths, height, width = filtered_volume.shape
        if nb_depths != len(depth_list):
            raise ValueError(f"Volume has {nb_depths} hypotheses but depth list has {len(depth_list)}")

        best_index = np.argmin(filtered_volume, axis=0)
        best_cost = np.take_along_axis(filtered_volume, best_index[None], axis=0)[0]

        if nb_depths > 1:
            second_cost = np.partition(filtered_volume, 1, axis=0)[1]
        else:
            second_cost = np.full_like(best_cost, TSIM_INVALID)

        valid = best_cost != TSIM_INVALID
        # an invalid second best counts as the worst valid cost
        second_cost = np.minimum(second_cost.astype(np.float32), TSIM_MAX)
        confidence = (second_cost - best_cost.astype(np.float32)) / TSIM_MAX

        depth = np.where(valid, depth_list.depths[best_index], DEPTH_INVALID).astype(np.float32)
        sim = np.where(valid, np.clip(confidence, 0.0, 1.0), SIM_INVALID).astype(np.float32)

        nb_valid = int(np.count_nonzero(valid))
        if nb_valid == 0:
            self.logger.info(f"No valid depth in volume {filtered_volume.shape}")
        else:
            self.logger.debug(f"Extracted {nb_valid}/{height * width} valid depths")

        return DepthSimMap(depth, sim)


def compute_normal_map(depth_sim_map: DepthSimMap, mp: MultiViewParams, rc: int,
                       tile_roi: ROI, scale_step: int) -> np.ndarray:
    """
    Estimate per-pixel normals from the depth map.

    Points are back-projected with the R camera, the normal is the
    normalized cross product of the horizontal and vertical point
    differences, oriented towards the camera. Pixels with an invalid depth
    or an invalid 4-neighbour get a zero normal.

    Returns:
        np.ndarray: Normal map (height, width, 3) float32
    """
    depth = depth_sim_map.depth
    height, width = depth.shape
    normals = np.zeros((height, width, 3), dtype=np.float32)

    if height < 3 or width < 3:
        return normals

    droi = downscale_roi(tile_roi, scale_step)
    xs, ys = np.meshgrid(np.arange(droi.x.begin, droi.x.begin + width, dtype=np.float64),
                         np.arange(droi.y.begin, droi.y.begin + height, dtype=np.float64))
    camera = mp.camera(rc)
    points = camera.back_project(xs, ys, depth, scale_step)

    valid = is_valid_depth(depth)
    neighbours_valid = np.zeros_like(valid)
    neighbours_valid[1:-1, 1:-1] = (valid[1:-1, 1:-1] & valid[:-2, 1:-1] & valid[2:, 1:-1]
                                    & valid[1:-1, :-2] & valid[1:-1, 2:])

    dx = points[1:-1, 2:] - points[1:-1, :-2]
    dy = points[2:, 1:-1] - points[:-2, 1:-1]
    n = np.cross(dx, dy)

    # orient towards the camera center
    to_camera = camera.center - points[1:-1, 1:-1]
    flip = np.sum(n * to_camera, axis=-1, keepdims=True) < 0
    n = np.where(flip, -n, n)

    n = StereoMath.normalize_vectors(n)

    inner = normals[1:-1, 1:-1]
    inner[...] = np.where(neighbours_valid[1:-1, 1:-1, None], n, 0.0)
    return normals
