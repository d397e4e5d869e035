"""
Camera parameter context shared by the SGM engine and the map I/O layer.

The context is immutable: it is built once per run and passed explicitly to
every component that needs reprojection, image access or output paths.
"""

import json
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence, Tuple

import cv2
import numpy as np

from ..errors import CameraParameterError
from utils.stereo_math import StereoMath
from utils.logger_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, eq=False)
class CameraParams:
    """
    Pinhole camera with its grayscale image.

    Projection is ``x ~ K (R X + t)``; depth values used throughout the
    pipeline are Z coordinates in the camera frame.
    """

    view_id: int
    K: np.ndarray
    R: np.ndarray
    t: np.ndarray
    image: np.ndarray
    downscale_factor: int = 1
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        K = np.asarray(self.K, dtype=np.float64)
        R = np.asarray(self.R, dtype=np.float64)
        t = np.asarray(self.t, dtype=np.float64).reshape(-1)
        try:
            StereoMath.validate_camera_matrix(K, f"K[{self.view_id}]")
            StereoMath.validate_rotation_matrix(R, f"R[{self.view_id}]")
            StereoMath.validate_translation_vector(t, f"t[{self.view_id}]")
        except ValueError as e:
            raise CameraParameterError(f"Invalid parameters of camera {self.view_id}: {e}") from e
        if self.image is None or np.asarray(self.image).ndim != 2:
            raise CameraParameterError(f"Camera {self.view_id} needs a single channel image")
        object.__setattr__(self, 'K', K)
        object.__setattr__(self, 'R', R)
        object.__setattr__(self, 't', t)
        object.__setattr__(self, 'image', np.asarray(self.image, dtype=np.float32))

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

    @property
    def P(self) -> np.ndarray:
        """3x4 projection matrix."""
        return self.K @ np.hstack([self.R, self.t.reshape(3, 1)])

    @property
    def center(self) -> np.ndarray:
        """Camera center in world coordinates."""
        return -self.R.T @ self.t

    def scaled(self, scale_step: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Projection data at ``1 / scale_step`` resolution.

        Returns:
            Tuple of (P, camera center, inverse camera matrix) where the first
            two rows of P are divided by ``scale_step``.
        """
        K = self.K.copy()
        if scale_step > 1:
            K[:2, :] /= float(scale_step)
        P = K @ np.hstack([self.R, self.t.reshape(3, 1)])
        iCam = self.R.T @ np.linalg.inv(K)
        return P, self.center, iCam

    def back_project(self, xs: np.ndarray, ys: np.ndarray, depth, scale_step: int = 1) -> np.ndarray:
        """
        3D world points of pixels at the given depth.

        Args:
            xs, ys: Pixel coordinates at ``1 / scale_step`` resolution
            depth: Scalar or array broadcastable with xs
            scale_step: Resolution of the pixel coordinates

        Returns:
            np.ndarray: Points with shape ``xs.shape + (3,)``
        """
        _, C, iCam = self.scaled(scale_step)
        pix = np.stack([xs, ys, np.ones_like(xs)], axis=-1).astype(np.float64)
        rays = pix @ iCam.T
        return C + rays * np.asarray(depth, dtype=np.float64)[..., None]

    def project(self, points: np.ndarray, scale_step: int = 1) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Project world points into this camera.

        Returns:
            Tuple of (u, v, z) arrays, z being the depth in the camera frame
        """
        P, _, _ = self.scaled(scale_step)
        proj = points @ P[:, :3].T + P[:, 3]
        z = proj[..., 2]
        with np.errstate(divide='ignore', invalid='ignore'):
            u = proj[..., 0] / z
            v = proj[..., 1] / z
        return u, v, z


class MultiViewParams:
    """
    Immutable set of cameras addressed by index (``rc`` / ``tc``).

    Downscaled images are cached on first use; the cache is the only
    internal state and is protected for concurrent tile workers.
    """

    def __init__(self, cameras: Sequence[CameraParams], output_folder: Path):
        if not cameras:
            raise CameraParameterError("MultiViewParams needs at least one camera")
        self._cameras: Tuple[CameraParams, ...] = tuple(cameras)
        self._output_folder = Path(output_folder)
        self._image_cache: Dict[Tuple[int, int], np.ndarray] = {}
        self._cache_lock = threading.Lock()

    @property
    def nb_cameras(self) -> int:
        return len(self._cameras)

    @property
    def output_folder(self) -> Path:
        return self._output_folder

    def camera(self, index: int) -> CameraParams:
        try:
            return self._cameras[index]
        except IndexError:
            raise CameraParameterError(f"Unknown camera index: {index}")

    def get_view_id(self, index: int) -> int:
        return self.camera(index).view_id

    def get_width(self, index: int) -> int:
        return self.camera(index).width

    def get_height(self, index: int) -> int:
        return self.camera(index).height

    def get_downscale_factor(self, index: int) -> int:
        return self.camera(index).downscale_factor

    def get_metadata(self, index: int) -> Dict[str, Any]:
        return dict(self.camera(index).metadata)

    def get_image(self, index: int, scale_step: int = 1) -> np.ndarray:
        """Grayscale float32 image at ``1 / scale_step`` resolution."""
        key = (index, scale_step)
        with self._cache_lock:
            cached = self._image_cache.get(key)
        if cached is not None:
            return cached

        image = self.camera(index).image
        if scale_step > 1:
            width = -(-image.shape[1] // scale_step)
            height = -(-image.shape[0] // scale_step)
            image = cv2.resize(image, (width, height), interpolation=cv2.INTER_AREA)

        with self._cache_lock:
            self._image_cache[key] = image
        return image


def load_multi_view_params(scene_path: Path, output_folder: Path) -> MultiViewParams:
    """
    Load cameras from a JSON scene description.

    Expected layout::

        {"cameras": [{"view_id": 1, "image": "img1.png",
                      "K": [[...]], "R": [[...]], "t": [...]}, ...]}

    Image paths are relative to the scene file.
    """
    scene_path = Path(scene_path)
    if not scene_path.exists():
        raise FileNotFoundError(f"Scene file not found: {scene_path}")

    with open(scene_path, 'r', encoding='utf-8') as f:
        scene = json.load(f)

    cameras: List[CameraParams] = []
    for entry in scene.get('cameras', []):
        image_path = scene_path.parent / entry['image']
        image = cv2.imread(str(image_path), cv2.IMREAD_GRAYSCALE)
        if image is None:
            raise CameraParameterError(f"Cannot read image of view {entry.get('view_id')}: {image_path}")
        cameras.append(CameraParams(
            view_id=int(entry['view_id']),
            K=np.array(entry['K']),
            R=np.array(entry['R']),
            t=np.array(entry['t']),
            image=image.astype(np.float32),
            downscale_factor=int(entry.get('downscale_factor', 1)),
            metadata=entry.get('metadata', {}),
        ))

    logger.info(f"Loaded {len(cameras)} cameras from {scene_path}")
    return MultiViewParams(cameras, output_folder)
