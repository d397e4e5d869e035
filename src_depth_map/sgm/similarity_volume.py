"""
Plane sweep similarity volume construction.

For every depth hypothesis the reference (R) tile is swept through a
fronto-parallel plane, each target (T) camera image is resampled at the
reprojected positions and compared to the R image with a patch ZNCC. The
best and second best similarities across T cameras are kept per voxel.
"""

from contextlib import contextmanager
from typing import Iterator, Sequence, Tuple

import cv2
import numpy as np

from .depth_list import SgmDepthList
from .device_memory import DeviceMemoryPool
from .sgm_params import SgmParams
from ..camera.multi_view_params import MultiViewParams
from ..geometry.roi import ROI, downscale_roi, intersect
from utils.logger_config import get_logger

# Fixed precision similarity storage: [-1, 1] -> [0, TSIM_MAX], lower is better
TSIM_DTYPE = np.uint8
TSIM_MAX = 254
TSIM_INVALID = 255

_EPSILON = 1e-6
_MIN_VARIANCE = 1e-4


def sim_to_tsim(sim: np.ndarray) -> np.ndarray:
    """Quantize similarities in [-1, 1] to the volume storage type."""
    scaled = np.rint((np.clip(sim, -1.0, 1.0) + 1.0) * 0.5 * TSIM_MAX)
    return scaled.astype(TSIM_DTYPE)


def tsim_to_sim(tsim: np.ndarray) -> np.ndarray:
    """Inverse of ``sim_to_tsim`` for valid cells, invalid cells map to NaN."""
    tsim = np.asarray(tsim)
    sim = tsim.astype(np.float32) / TSIM_MAX * 2.0 - 1.0
    return np.where(tsim == TSIM_INVALID, np.nan, sim).astype(np.float32)


def merge_best_second_best(best: np.ndarray, second_best: np.ndarray, candidate: np.ndarray) -> None:
    """
    In-place multi-view merge of one candidate slice.

    ``best`` keeps the minimum and ``second_best`` the second minimum of all
    candidates seen so far; invalid candidates are the maximum value and
    never displace a valid one.
    """
    np.minimum(second_best, np.maximum(best, candidate), out=second_best)
    np.minimum(best, candidate, out=best)


class SimilarityVolumeBuilder:
    """Fills best / second best similarity volumes for one tile."""

    def __init__(self, mp: MultiViewParams, sgm_params: SgmParams):
        self.mp = mp
        self.sgm_params = sgm_params
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

    def volume_shape(self, tile_roi: ROI, depth_list: SgmDepthList):
        droi = downscale_roi(tile_roi, self.sgm_params.scale_step)
        return (len(depth_list), droi.height, droi.width)

    def compute(
        self,
        rc: int,
        tc_list: Sequence[int],
        tile_roi: ROI,
        depth_list: SgmDepthList,
        out_best: np.ndarray,
        out_second_best: np.ndarray
    ) -> int:
        """
        Compute the similarity volumes of a tile.

        Args:
            rc: Reference camera index
            tc_list: Target camera indexes
            tile_roi: Tile region in full resolution coordinates
            depth_list: Depth hypotheses
            out_best: Best similarity volume (depths, height, width), overwritten
            out_second_best: Second best similarity volume, overwritten

        Returns:
            int: Number of T cameras that contributed at least one voxel
        """
        scale_step = self.sgm_params.scale_step
        half = self.sgm_params.patch_half_size
        expected_shape = self.volume_shape(tile_roi, depth_list)

        if out_best.shape != expected_shape or out_second_best.shape != expected_shape:
            raise ValueError(f"Volume shape mismatch: expected {expected_shape}, "
                             f"got {out_best.shape} and {out_second_best.shape}")

        out_best.fill(TSIM_INVALID)
        out_second_best.fill(TSIM_INVALID)

        ref_image = self.mp.get_image(rc, scale_step)
        image_roi = ROI.from_size(ref_image.shape[1], ref_image.shape[0])
        droi = downscale_roi(tile_roi, scale_step)

        # tile extended by the patch half size so that border patches are complete
        ext_roi = intersect(
            ROI.from_bounds(droi.x.begin - half, droi.x.end + half, droi.y.begin - half, droi.y.end + half),
            image_roi)
        crop = (slice(droi.y.begin - ext_roi.y.begin, droi.y.end - ext_roi.y.begin),
                slice(droi.x.begin - ext_roi.x.begin, droi.x.end - ext_roi.x.begin))

        ref = ref_image[ext_roi.slices()].astype(np.float32)
        ksize = (2 * half + 1, 2 * half + 1)
        ref_mean = cv2.boxFilter(ref, -1, ksize, borderType=cv2.BORDER_REFLECT)
        ref_var = cv2.boxFilter(ref * ref, -1, ksize, borderType=cv2.BORDER_REFLECT) - ref_mean * ref_mean

        xs, ys = np.meshgrid(np.arange(ext_roi.x.begin, ext_roi.x.end, dtype=np.float64),
                             np.arange(ext_roi.y.begin, ext_roi.y.end, dtype=np.float64))

        rc_camera = self.mp.camera(rc)
        used_tcs = [tc for tc in tc_list if tc != rc][:self.sgm_params.max_tc_per_tile]
        contributing = set()

        for d, depth in enumerate(depth_list.depths):
            points = rc_camera.back_project(xs, ys, float(depth), scale_step)

            for tc in used_tcs:
                tsim = self._compute_slice(tc, points, ref, ref_mean, ref_var, ksize, scale_step)[crop]
                if tsim.min() != TSIM_INVALID:
                    contributing.add(tc)
                merge_best_second_best(out_best[d], out_second_best[d], tsim)

        if not contributing:
            self.logger.info(f"No T camera overlaps tile {tile_roi} (rc: {rc}), "
                             f"similarity volume is fully invalid")
        else:
            self.logger.debug(f"Tile {tile_roi} (rc: {rc}): {len(contributing)}/{len(used_tcs)} T cameras contributed")

        return len(contributing)

    @contextmanager
    def build(
        self,
        rc: int,
        tc_list: Sequence[int],
        tile_roi: ROI,
        depth_list: SgmDepthList,
        memory_pool: DeviceMemoryPool,
        wait_for_memory: bool = False
    ) -> Iterator[Tuple[np.ndarray, np.ndarray, int]]:
        """
        Allocate the two volumes from ``memory_pool`` and compute them.

        The volumes are released when the context exits.

        Yields:
            Tuple of (best volume, second best volume, number of contributing T cameras)
        """
        shape = self.volume_shape(tile_roi, depth_list)
        with memory_pool.allocate(shape, TSIM_DTYPE, TSIM_INVALID, wait_for_memory) as best, \
                memory_pool.allocate(shape, TSIM_DTYPE, TSIM_INVALID, wait_for_memory) as second_best:
            nb_contributing = self.compute(rc, tc_list, tile_roi, depth_list, best, second_best)
            yield best, second_best, nb_contributing

    def _compute_slice(
        self,
        tc: int,
        points: np.ndarray,
        ref: np.ndarray,
        ref_mean: np.ndarray,
        ref_var: np.ndarray,
        ksize,
        scale_step: int
    ) -> np.ndarray:
        """Quantized ZNCC similarity slice of one T camera at one depth."""
        tc_camera = self.mp.camera(tc)
        tc_image = self.mp.get_image(tc, scale_step)
        height, width = tc_image.shape

        u, v, z = tc_camera.project(points, scale_step)
        inside = (z > _EPSILON) & (u >= 0) & (u <= width - 1) & (v >= 0) & (v <= height - 1)

        if not np.any(inside):
            return np.full(ref.shape, TSIM_INVALID, dtype=TSIM_DTYPE)

        map_x = np.where(inside, u, -1).astype(np.float32)
        map_y = np.where(inside, v, -1).astype(np.float32)
        warped = cv2.remap(tc_image, map_x, map_y, interpolation=cv2.INTER_LINEAR,
                           borderMode=cv2.BORDER_CONSTANT, borderValue=0)

        tc_mean = cv2.boxFilter(warped, -1, ksize, borderType=cv2.BORDER_REFLECT)
        tc_var = cv2.boxFilter(warped * warped, -1, ksize, borderType=cv2.BORDER_REFLECT) - tc_mean * tc_mean
        cross = cv2.boxFilter(ref * warped, -1, ksize, borderType=cv2.BORDER_REFLECT) - ref_mean * tc_mean
        coverage = cv2.boxFilter(inside.astype(np.float32), -1, ksize, borderType=cv2.BORDER_REFLECT)

        valid = (coverage > 1.0 - _EPSILON) & (ref_var > _MIN_VARIANCE) & (tc_var > _MIN_VARIANCE)

        with np.errstate(divide='ignore', invalid='ignore'):
            zncc = cross / np.sqrt(np.maximum(ref_var * tc_var, _EPSILON))

        tsim = sim_to_tsim(-zncc)
        tsim[~valid] = TSIM_INVALID
        return tsim
