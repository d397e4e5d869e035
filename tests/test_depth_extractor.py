import numpy as np
import pytest

from src_depth_map.geometry.roi import ROI
from src_depth_map.sgm.depth_extractor import DepthExtractor, DepthSimMap, compute_normal_map
from src_depth_map.sgm.depth_list import SgmDepthList
from src_depth_map.sgm.similarity_volume import TSIM_INVALID, TSIM_MAX

from conftest import IMAGE_SIZE, PLANE_DEPTH

_DEPTHS = SgmDepthList(np.linspace(2.0, 20.0, 10))


def test_best_depth_and_confidence():
    volume = np.full((10, 3, 3), TSIM_MAX, dtype=np.uint8)
    volume[3] = 25
    volume[7] = 229

    depth_sim_map = DepthExtractor().extract(volume, _DEPTHS)

    assert np.all(depth_sim_map.depth == pytest.approx(_DEPTHS[3]))
    assert np.all(depth_sim_map.sim == pytest.approx((229 - 25) / TSIM_MAX, abs=1e-6))
    assert depth_sim_map.sim[0, 0] == pytest.approx(0.8, abs=0.01)


def test_fully_invalid_pixel_gets_sentinels():
    volume = np.full((10, 2, 2), 100, dtype=np.uint8)
    volume[:, 1, 1] = TSIM_INVALID

    depth_sim_map = DepthExtractor().extract(volume, _DEPTHS)

    assert depth_sim_map.depth[1, 1] == -1.0
    assert depth_sim_map.sim[1, 1] == -1.0
    assert depth_sim_map.nb_valid == 3


def test_ties_select_first_hypothesis_with_zero_confidence():
    volume = np.full((10, 1, 1), 50, dtype=np.uint8)
    depth_sim_map = DepthExtractor().extract(volume, _DEPTHS)
    assert depth_sim_map.depth[0, 0] == pytest.approx(_DEPTHS[0])
    assert depth_sim_map.sim[0, 0] == 0.0


def test_single_valid_hypothesis_is_fully_confident():
    volume = np.full((10, 1, 1), TSIM_INVALID, dtype=np.uint8)
    volume[5] = 0
    depth_sim_map = DepthExtractor().extract(volume, _DEPTHS)
    assert depth_sim_map.depth[0, 0] == pytest.approx(_DEPTHS[5])
    assert depth_sim_map.sim[0, 0] == pytest.approx(1.0)


def test_depth_count_mismatch():
    with pytest.raises(ValueError):
        DepthExtractor().extract(np.zeros((3, 2, 2), dtype=np.uint8), _DEPTHS)


def test_depth_sim_map_shapes_must_match():
    with pytest.raises(ValueError):
        DepthSimMap(np.zeros((2, 2), dtype=np.float32), np.zeros((2, 3), dtype=np.float32))


def test_normals_of_fronto_parallel_plane(plane_scene):
    depth = np.full((IMAGE_SIZE, IMAGE_SIZE), PLANE_DEPTH, dtype=np.float32)
    depth[10, 10] = -1.0
    depth_sim_map = DepthSimMap(depth, np.ones_like(depth))

    normals = compute_normal_map(depth_sim_map, plane_scene, 0, ROI.from_size(IMAGE_SIZE, IMAGE_SIZE), 1)

    assert normals.shape == (IMAGE_SIZE, IMAGE_SIZE, 3)
    # facing the camera which looks along +Z
    np.testing.assert_allclose(normals[20, 20], [0.0, 0.0, -1.0], atol=1e-5)
    # invalid pixel, its 4-neighbours and the image border have no normal
    assert np.all(normals[10, 10] == 0.0)
    assert np.all(normals[10, 11] == 0.0)
    assert np.all(normals[0, :] == 0.0)
