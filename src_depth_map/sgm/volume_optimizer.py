"""
Semi-global cost aggregation of a similarity volume.

The volume is viewed as a stack of 2D cost slices (one per depth
hypothesis). Costs are aggregated along 1D paths crossing the image in
several directions with the classic SGM recurrence:

    L(p, d) = C(p, d) + min(L(p-1, d),
                            L(p-1, d-1) + P1,
                            L(p-1, d+1) + P1,
                            min_k L(p-1, k) + P2) - min_k L(p-1, k)

and the path costs are summed. A low cost that is not supported by its
neighbourhood is raised relative to minima shared by neighbouring pixels.
"""

from typing import List, Optional, Tuple

import numpy as np

from .similarity_volume import TSIM_DTYPE, TSIM_INVALID, TSIM_MAX
from .sgm_params import SgmParams
from utils.logger_config import get_logger

# accumulator type, wider than the uint8 storage to avoid saturation
ACC_DTYPE = np.float32

# (dx, dy) steps swept along X; Y paths are swept on the transposed volume
_AXIS_DIRECTIONS = {
    'X': [((1, 0), False), ((-1, 0), False)],
    'Y': [((1, 0), True), ((-1, 0), True)],
    'D': [((1, 1), False), ((-1, -1), False), ((1, -1), False), ((-1, 1), False)],
}


class VolumeOptimizer:
    """Multi-directional SGM aggregation."""

    def __init__(self, sgm_params: SgmParams):
        self.sgm_params = sgm_params
        self.logger = get_logger(f"{__name__}.{self.__class__.__name__}")

    def directions(self) -> List[Tuple[Tuple[int, int], bool]]:
        directions = []
        for axis in self.sgm_params.filtering_axes:
            for direction in _AXIS_DIRECTIONS[axis]:
                if direction not in directions:
                    directions.append(direction)
        return directions

    def optimize(
        self,
        volume: np.ndarray,
        out_filtered: Optional[np.ndarray] = None,
        guide: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """
        Aggregate a similarity volume.

        Args:
            volume: Best similarity volume (depths, height, width), uint8
            out_filtered: Optional output buffer of the same shape and type
            guide: Optional reference image (height, width) used to lower P2
                across intensity edges

        Returns:
            np.ndarray: Filtered volume, invalid input voxels stay invalid
        """
        if volume.ndim != 3:
            raise ValueError(f"Similarity volume must be 3D, got shape {volume.shape}")
        if out_filtered is None:
            out_filtered = np.empty_like(volume)
        elif out_filtered.shape != volume.shape:
            raise ValueError(f"Output shape {out_filtered.shape} differs from volume shape {volume.shape}")
        if guide is not None and guide.shape != volume.shape[1:]:
            raise ValueError(f"Guide shape {guide.shape} differs from slice shape {volume.shape[1:]}")

        invalid = volume == TSIM_INVALID
        cost = volume.astype(ACC_DTYPE)
        cost[invalid] = TSIM_MAX

        directions = self.directions()
        accumulated = np.zeros(volume.shape, dtype=ACC_DTYPE)

        for (dx, dy), transposed in directions:
            if transposed:
                path_cost = self._aggregate(cost.transpose(0, 2, 1), dx, dy,
                                            None if guide is None else guide.T)
                accumulated += path_cost.transpose(0, 2, 1)
            else:
                accumulated += self._aggregate(cost, dx, dy, guide)

        accumulated /= len(directions)
        np.clip(np.rint(accumulated), 0, TSIM_MAX, out=accumulated)
        out_filtered[...] = accumulated.astype(TSIM_DTYPE)
        out_filtered[invalid] = TSIM_INVALID

        self.logger.debug(f"Aggregated volume {volume.shape} along {len(directions)} paths")
        return out_filtered

    def _aggregate(self, cost: np.ndarray, dx: int, dy: int, guide: Optional[np.ndarray]) -> np.ndarray:
        """Path cost of a single direction, swept column by column."""
        nb_depths, height, width = cost.shape
        p1 = ACC_DTYPE(self.sgm_params.p1)
        p2 = ACC_DTYPE(self.sgm_params.p2)

        path = np.empty_like(cost)
        columns = range(width) if dx > 0 else range(width - 1, -1, -1)
        rows = np.arange(height)

        prev_x = None
        for x in columns:
            current = cost[:, :, x]
            if prev_x is None:
                path[:, :, x] = current
                prev_x = x
                continue

            # predecessor of row y is row y - dy of the previous column
            src_rows = rows - dy
            has_prev = (src_rows >= 0) & (src_rows < height)
            src_rows = np.clip(src_rows, 0, height - 1)

            prev = path[:, src_rows, prev_x]
            prev_min = prev.min(axis=0)

            if guide is not None and self.sgm_params.p2_gradient_sigma:
                gradient = np.abs(guide[:, x].astype(ACC_DTYPE) - guide[src_rows, prev_x].astype(ACC_DTYPE))
                p2_local = np.maximum(p2 / (1.0 + gradient / ACC_DTYPE(self.sgm_params.p2_gradient_sigma)), p1)
            else:
                p2_local = p2

            candidates = prev.copy()
            if nb_depths > 1:
                np.minimum(candidates[1:], prev[:-1] + p1, out=candidates[1:])
                np.minimum(candidates[:-1], prev[1:] + p1, out=candidates[:-1])
            np.minimum(candidates, prev_min + p2_local, out=candidates)

            aggregated = current + candidates - prev_min
            path[:, :, x] = np.where(has_prev, aggregated, current)
            prev_x = x

        return path
