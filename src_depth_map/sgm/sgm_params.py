"""
Semi-Global Matching parameters.
"""

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from utils.logger_config import get_logger

logger = get_logger(__name__)

_VALID_AXES = set("XYD")


@dataclass(frozen=True)
class SgmParams:
    """
    Parameters of the SGM depth map estimation.

    Attributes:
        scale: Downscale factor applied to the input images
        step_xy: Pixel step on top of the downscale
        nb_depths: Number of depth hypotheses
        min_depth: Nearest depth hypothesis
        max_depth: Farthest depth hypothesis
        patch_half_size: Half size of the ZNCC patch
        max_tc_per_tile: Maximum number of T cameras used per tile
        p1: Penalty for a depth index change of one between neighbours
        p2: Penalty for larger depth index changes
        p2_gradient_sigma: If set, P2 is lowered on strong image gradients
            as ``p2 / (1 + |grad| / sigma)``
        filtering_axes: Aggregation axes, any of "X", "Y" and "D" (diagonals)
        compute_normal_map: Estimate a normal map from the depth map
        device_memory_mb: Memory budget for tile volumes, None for no limit
    """

    scale: int = 2
    step_xy: int = 2
    nb_depths: int = 64
    min_depth: float = 1.0
    max_depth: float = 100.0
    patch_half_size: int = 2
    max_tc_per_tile: int = 4
    p1: float = 10.0
    p2: float = 100.0
    p2_gradient_sigma: Optional[float] = None
    filtering_axes: str = "YX"
    compute_normal_map: bool = False
    device_memory_mb: Optional[float] = None

    def __post_init__(self):
        if self.scale < 1 or self.step_xy < 1:
            raise ValueError(f"scale and step_xy must be >= 1, got {self.scale} and {self.step_xy}")
        if self.nb_depths < 1:
            raise ValueError(f"nb_depths must be positive, got {self.nb_depths}")
        if not 0 < self.min_depth < self.max_depth:
            raise ValueError(f"Invalid depth range: [{self.min_depth}, {self.max_depth}]")
        if self.patch_half_size < 1:
            raise ValueError(f"patch_half_size must be positive, got {self.patch_half_size}")
        if self.p1 < 0 or self.p2 < self.p1:
            raise ValueError(f"Penalties must satisfy 0 <= p1 <= p2, got p1={self.p1}, p2={self.p2}")
        if not self.filtering_axes or not set(self.filtering_axes) <= _VALID_AXES:
            raise ValueError(f"filtering_axes must use letters of 'XYD', got '{self.filtering_axes}'")

    @property
    def scale_step(self) -> int:
        return self.scale * self.step_xy

    @classmethod
    def from_config(cls, config) -> "SgmParams":
        """Read SGM parameters from a Config object, falling back on defaults."""
        defaults = cls()
        values: Dict[str, Any] = {}
        for name, default in asdict(defaults).items():
            values[name] = getattr(config, f"sgm_{name}", default)

        # JSON configs store booleans as strings like the rest of the toolkit
        if isinstance(values['compute_normal_map'], str):
            values['compute_normal_map'] = values['compute_normal_map'] == "True"

        params = cls(**values)
        logger.info(f"SGM parameters: scale={params.scale}, step={params.step_xy}, "
                    f"depths={params.nb_depths} in [{params.min_depth}, {params.max_depth}], "
                    f"axes={params.filtering_axes}")
        return params

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
