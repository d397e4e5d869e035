"""
Depth hypotheses of the plane sweep.
"""

import numpy as np

from .sgm_params import SgmParams


class SgmDepthList:
    """
    Ordered, strictly monotonic list of depth hypotheses.

    Hypotheses are sampled uniformly in inverse depth so that the image
    displacement between consecutive planes stays roughly constant.
    """

    def __init__(self, depths):
        depths = np.asarray(depths, dtype=np.float32).ravel()
        if depths.size == 0:
            raise ValueError("Depth list cannot be empty")
        if np.any(depths <= 0):
            raise ValueError("Depth hypotheses must be positive")
        if depths.size > 1:
            steps = np.diff(depths)
            if not (np.all(steps > 0) or np.all(steps < 0)):
                raise ValueError("Depth hypotheses must be strictly monotonic")
        self.depths = depths

    @classmethod
    def from_range(cls, min_depth: float, max_depth: float, nb_depths: int) -> "SgmDepthList":
        if nb_depths == 1:
            return cls([min_depth])
        inverse = np.linspace(1.0 / min_depth, 1.0 / max_depth, nb_depths)
        return cls(1.0 / inverse)

    @classmethod
    def from_params(cls, sgm_params: SgmParams) -> "SgmDepthList":
        return cls.from_range(sgm_params.min_depth, sgm_params.max_depth, sgm_params.nb_depths)

    def __len__(self) -> int:
        return int(self.depths.size)

    def __getitem__(self, index):
        return self.depths[index]

    @property
    def depth_range(self):
        return float(self.depths.min()), float(self.depths.max())
