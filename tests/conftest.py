"""
Shared fixtures: a synthetic scene of cameras looking at a textured
fronto-parallel plane.
"""

import json
import logging

import cv2
import numpy as np
import pytest

from src_depth_map.camera.multi_view_params import CameraParams, MultiViewParams

IMAGE_SIZE = 48
FOCAL = 100.0
PLANE_DEPTH = 10.0
BASELINE = 1.0

_TEXTURE_SIZE = 256


def make_texture(seed: int = 7) -> np.ndarray:
    rng = np.random.default_rng(seed)
    noise = rng.uniform(0.0, 255.0, (_TEXTURE_SIZE, _TEXTURE_SIZE)).astype(np.float32)
    return cv2.GaussianBlur(noise, (0, 0), 1.0)


def make_intrinsics(size: int = IMAGE_SIZE) -> np.ndarray:
    return np.array([[FOCAL, 0.0, size / 2.0],
                     [0.0, FOCAL, size / 2.0],
                     [0.0, 0.0, 1.0]])


def render_plane(texture: np.ndarray, K: np.ndarray, R: np.ndarray, center: np.ndarray,
                 size: int = IMAGE_SIZE, depth: float = PLANE_DEPTH) -> np.ndarray:
    """Image of the plane Z = depth seen by a camera with identity-like orientation."""
    us, vs = np.meshgrid(np.arange(size, dtype=np.float64), np.arange(size, dtype=np.float64))
    pix = np.stack([us, vs, np.ones_like(us)], axis=-1)
    rays = pix @ (R.T @ np.linalg.inv(K)).T
    with np.errstate(divide='ignore', invalid='ignore'):
        scale = (depth - center[2]) / rays[..., 2]
    points = center + rays * scale[..., None]

    # one texture pixel per image pixel of the first camera
    map_x = (points[..., 0] * FOCAL / depth + _TEXTURE_SIZE / 2.0).astype(np.float32)
    map_y = (points[..., 1] * FOCAL / depth + _TEXTURE_SIZE / 2.0).astype(np.float32)
    image = cv2.remap(texture, map_x, map_y, interpolation=cv2.INTER_LINEAR,
                      borderMode=cv2.BORDER_REFLECT)
    image[~(scale > 0)] = 0.0
    return image


def make_camera(view_id: int, center, R=None, texture=None, size: int = IMAGE_SIZE) -> CameraParams:
    R = np.eye(3) if R is None else np.asarray(R, dtype=np.float64)
    center = np.asarray(center, dtype=np.float64)
    K = make_intrinsics(size)
    texture = make_texture() if texture is None else texture
    image = render_plane(texture, K, R, center, size)
    return CameraParams(view_id=view_id, K=K, R=R, t=-R @ center, image=image)


def write_scene(folder, cameras):
    """Scene JSON and PNG images of the given cameras."""
    entries = []
    for camera in cameras:
        image_name = f"view_{camera.view_id}.png"
        cv2.imwrite(str(folder / image_name), np.clip(camera.image, 0, 255).astype(np.uint8))
        entries.append({'view_id': camera.view_id, 'image': image_name,
                        'K': camera.K.tolist(), 'R': camera.R.tolist(), 't': camera.t.tolist(),
                        'metadata': {'sensor': 'synthetic'}})
    scene_path = folder / "scene.json"
    scene_path.write_text(json.dumps({'cameras': entries}), encoding='utf-8')
    return scene_path


@pytest.fixture
def texture():
    return make_texture()


@pytest.fixture
def plane_scene(tmp_path, texture):
    """Two cameras with a horizontal baseline looking at the plane Z = 10."""
    cameras = [
        make_camera(100, [0.0, 0.0, 0.0], texture=texture),
        make_camera(101, [BASELINE, 0.0, 0.0], texture=texture),
    ]
    return MultiViewParams(cameras, tmp_path / "maps")


@pytest.fixture
def scene_with_backward_camera(tmp_path, texture):
    """Reference camera and a camera looking away from the plane."""
    backward = np.diag([-1.0, 1.0, -1.0])
    cameras = [
        make_camera(200, [0.0, 0.0, 0.0], texture=texture),
        CameraParams(view_id=201, K=make_intrinsics(), R=backward, t=np.zeros(3),
                     image=np.full((IMAGE_SIZE, IMAGE_SIZE), 128.0, dtype=np.float32)),
    ]
    return MultiViewParams(cameras, tmp_path / "maps")


@pytest.fixture
def blank_scene(tmp_path):
    """Single 100x100 camera, used for map file tests."""
    camera = CameraParams(view_id=7, K=make_intrinsics(100), R=np.eye(3), t=np.zeros(3),
                          image=np.zeros((100, 100), dtype=np.float32))
    mp = MultiViewParams([camera], tmp_path / "maps")
    mp.output_folder.mkdir(parents=True)
    return mp


@pytest.fixture
def toolkit_caplog(caplog):
    """caplog attached to the toolkit root logger, which does not propagate."""
    logger = logging.getLogger("depth_map_toolkit")
    logger.addHandler(caplog.handler)
    yield caplog
    logger.removeHandler(caplog.handler)
