import numpy as np
import pytest

from src_depth_map.camera.multi_view_params import MultiViewParams
from src_depth_map.errors import MapRecordError, TileConfigurationError
from src_depth_map.geometry.roi import downscale_roi
from src_depth_map.geometry.tile_params import TileParams, get_tile_roi_list
from src_depth_map.tiling.depth_sim_map_io import DepthSimMapFileManager
from src_depth_map.tiling.file_type import EFileType, get_file_name_from_index
from src_depth_map.tiling.map_record import (
    get_roi_from_metadata,
    get_tile_params_from_metadata,
    read_map_metadata,
    read_map_record,
    write_map_record,
)

_PARAMS = TileParams(50, 50, 10)


def _write_tiles(file_manager, value_of=lambda index: 1.0, scale=0, step=1, with_normals=False):
    scale_step = max(scale, 1) * step
    rois = get_tile_roi_list(_PARAMS, 100, 100, scale_step)
    written = []
    for index, roi in enumerate(rois):
        shape = downscale_roi(roi, scale_step).shape
        depth = np.full(shape, value_of(index), dtype=np.float32)
        sim = np.full(shape, value_of(index), dtype=np.float32)
        normal = np.ones(shape + (3,), dtype=np.float32) if with_normals else None
        written += file_manager.write_depth_sim_map(0, _PARAMS, roi, depth, sim, scale, step, normal_map=normal)
    return rois, written


@pytest.fixture
def file_manager(blank_scene):
    return DepthSimMapFileManager(blank_scene)


def test_tiles_of_ones_merge_to_ones(file_manager):
    _, written = _write_tiles(file_manager)
    assert len(written) == 8

    depth_map = file_manager.read_map_from_tiles(0, EFileType.DEPTH_MAP)
    sim_map = file_manager.read_map_from_tiles(0, EFileType.SIM_MAP)

    assert depth_map.shape == (100, 100)
    np.testing.assert_allclose(depth_map, 1.0, atol=1e-5)
    np.testing.assert_allclose(sim_map, 1.0, atol=1e-3)


def test_downscaled_tiles_merge_to_downscaled_map(file_manager):
    _write_tiles(file_manager, scale=2)

    depth_map = file_manager.read_map_from_tiles(0, EFileType.DEPTH_MAP, scale=2)

    assert depth_map.shape == (50, 50)
    np.testing.assert_allclose(depth_map, 1.0, atol=1e-5)


def test_tile_file_names_encode_origin(file_manager, blank_scene):
    rois, _ = _write_tiles(file_manager)
    names = [path.name for path in file_manager.get_tile_path_list(0, EFileType.DEPTH_MAP)]

    assert names == sorted(f"7_depthMap_{roi.x.begin}_{roi.y.begin}.npz" for roi in rois)
    assert not get_file_name_from_index(blank_scene, 0, EFileType.DEPTH_MAP).exists()


def test_no_tile_gives_zero_map(file_manager, toolkit_caplog):
    toolkit_caplog.set_level("INFO")

    depth_map = file_manager.read_map_from_tiles(0, EFileType.DEPTH_MAP)

    assert depth_map.shape == (100, 100)
    assert not depth_map.any()
    assert "Cannot find any depth map tile file" in toolkit_caplog.text


def test_missing_folder_is_a_configuration_error(blank_scene, tmp_path):
    mp = MultiViewParams([blank_scene.camera(0)], tmp_path / "missing")
    with pytest.raises(TileConfigurationError):
        DepthSimMapFileManager(mp).read_map_from_tiles(0, EFileType.DEPTH_MAP)


def test_tile_metadata(file_manager):
    rois = get_tile_roi_list(_PARAMS, 100, 100)
    depth = np.full(rois[1].shape, 5.0, dtype=np.float32)
    depth[:10] = -1.0
    depth[10, :3] = 7.0
    path, _ = file_manager.write_depth_sim_map(0, _PARAMS, rois[1], depth, np.zeros_like(depth))

    metadata = read_map_metadata(path)

    assert (metadata['roiBeginX'], metadata['roiEndX']) == (50, 100)
    assert (metadata['roiBeginY'], metadata['roiEndY']) == (0, 60)
    assert (metadata['tileBufferWidth'], metadata['tileBufferHeight'], metadata['tilePadding']) == (50, 50, 10)
    assert np.array(metadata['P']).shape == (3, 4)
    assert metadata['nbDepthValues'] == 50 * 50
    assert metadata['minDepth'] == 5.0
    assert metadata['maxDepth'] == 7.0
    assert metadata['downscale'] == 1
    assert get_roi_from_metadata(path) == rois[1]
    assert get_tile_params_from_metadata(path) == _PARAMS


def test_full_map_metadata_has_resolved_tile_params(file_manager):
    path, _ = file_manager.write_full_depth_sim_map(0, np.ones((100, 100)), np.ones((100, 100)))

    metadata = read_map_metadata(path)

    assert path.name == "7_depthMap.npz"
    assert (metadata['tileBufferWidth'], metadata['tileBufferHeight'], metadata['tilePadding']) == (100, 100, 0)


def test_missing_roi_metadata_raises(file_manager, blank_scene):
    path = get_file_name_from_index(blank_scene, 0, EFileType.DEPTH_MAP, tile_begin_x=0, tile_begin_y=0)
    write_map_record(path, np.ones((60, 60)), EFileType.DEPTH_MAP, {'tileBufferWidth': 50})

    with pytest.raises(TileConfigurationError):
        file_manager.read_map_from_tiles(0, EFileType.DEPTH_MAP)


def test_corrupt_tile_is_skipped(file_manager, toolkit_caplog):
    _, written = _write_tiles(file_manager)
    last_depth_tile = [path for path in written if "depthMap" in path.name][-1]
    _, metadata = read_map_record(last_depth_tile)
    write_map_record(last_depth_tile, np.ones((10, 10)), EFileType.DEPTH_MAP, metadata)

    depth_map = file_manager.read_map_from_tiles(0, EFileType.DEPTH_MAP)

    assert depth_map[99, 99] == 0.0
    assert depth_map[10, 10] == pytest.approx(1.0)
    assert "Cannot read depth map tile" in toolkit_caplog.text
    assert file_manager.get_processing_statistics()['failed_operations'] == 1


def test_truncated_tile_is_skipped(file_manager, toolkit_caplog):
    _, written = _write_tiles(file_manager)
    last_depth_tile = [path for path in written if "depthMap" in path.name][-1]
    content = last_depth_tile.read_bytes()
    last_depth_tile.write_bytes(content[:len(content) // 2])

    depth_map = file_manager.read_map_from_tiles(0, EFileType.DEPTH_MAP)

    assert depth_map[99, 99] == 0.0
    assert depth_map[10, 10] == pytest.approx(1.0)
    assert "Cannot read depth map tile" in toolkit_caplog.text
    assert file_manager.get_processing_statistics()['failed_operations'] == 1
    with pytest.raises(MapRecordError):
        read_map_record(last_depth_tile)


def test_tile_params_come_from_first_readable_tile(file_manager):
    _, written = _write_tiles(file_manager)
    first_depth_tile = [path for path in written if "depthMap" in path.name][0]
    first_depth_tile.write_bytes(b"not a map record")

    depth_map = file_manager.read_map_from_tiles(0, EFileType.DEPTH_MAP)

    assert depth_map[5, 5] == 0.0
    assert depth_map[95, 95] == pytest.approx(1.0)


def test_invalid_tile_values_are_not_blended(file_manager):
    _write_tiles(file_manager, value_of=lambda index: -1.0 if index == 0 else 1.0)

    depth_map = file_manager.read_depth_map(0)

    assert depth_map[5, 5] == -1.0
    assert depth_map[5, 55] == pytest.approx(1.0)
    assert depth_map[55, 55] == pytest.approx(1.0)


def test_nb_depth_values_summed_over_tiles(file_manager):
    _write_tiles(file_manager)
    assert file_manager.get_nb_depth_values_from_depth_map(0) == 60 * 60 + 50 * 60 + 60 * 50 + 50 * 50


def test_nb_depth_values_counted_when_full_map_has_no_count(file_manager, blank_scene, toolkit_caplog):
    depth = np.zeros((100, 100), dtype=np.float32)
    depth[:20, :10] = 3.0
    write_map_record(get_file_name_from_index(blank_scene, 0, EFileType.DEPTH_MAP), depth,
                     EFileType.DEPTH_MAP, {})

    assert file_manager.get_nb_depth_values_from_depth_map(0) == 200
    assert "counting valid depths" in toolkit_caplog.text


def test_nb_depth_values_of_tile_without_count_raises(file_manager, blank_scene):
    _, written = _write_tiles(file_manager)
    first_depth_tile = [path for path in written if "depthMap" in path.name][0]
    data, metadata = read_map_record(first_depth_tile)
    del metadata['nbDepthValues']
    write_map_record(first_depth_tile, data, EFileType.DEPTH_MAP, metadata)

    with pytest.raises(TileConfigurationError):
        file_manager.get_nb_depth_values_from_depth_map(0)


def test_nb_depth_values_without_map(file_manager):
    assert file_manager.get_nb_depth_values_from_depth_map(0) == -1


def test_delete_tiles_removes_every_map_type(file_manager, blank_scene):
    file_manager.write_full_depth_sim_map(0, np.ones((100, 100)), np.ones((100, 100)))
    _write_tiles(file_manager, with_normals=True)

    assert file_manager.delete_depth_sim_map_tiles(0) == 12

    for file_type in EFileType:
        assert file_manager.get_tile_path_list(0, file_type) == []
    assert get_file_name_from_index(blank_scene, 0, EFileType.DEPTH_MAP).exists()


def test_full_map_is_preferred_over_tiles(file_manager):
    _write_tiles(file_manager)
    file_manager.write_full_depth_sim_map(0, np.full((100, 100), 2.0), np.full((100, 100), 0.5))

    depth_map, sim_map = file_manager.read_depth_sim_map(0)

    assert np.all(depth_map == 2.0)
    assert np.all(sim_map == 0.5)


def test_write_depth_map_alone(file_manager, blank_scene):
    written = file_manager.write_depth_map(0, np.ones((100, 100)))

    assert written == [get_file_name_from_index(blank_scene, 0, EFileType.DEPTH_MAP)]
    assert not get_file_name_from_index(blank_scene, 0, EFileType.SIM_MAP).exists()


def test_normal_tiles_are_blended_per_channel(file_manager):
    _write_tiles(file_manager, with_normals=True)

    normal_map = file_manager.read_normal_map(0)

    assert normal_map.shape == (100, 100, 3)
    np.testing.assert_allclose(normal_map, 1.0, atol=1e-5)


def test_read_sim_map_merges_sim_tiles(file_manager):
    _write_tiles(file_manager, value_of=lambda index: 0.25 * (index + 1))

    sim_map = file_manager.read_sim_map(0)

    assert sim_map[5, 5] == 0.25
    assert sim_map[95, 95] == 1.0
    assert 0.25 <= sim_map[55, 55] <= 1.0


def test_processing_statistics(file_manager):
    _write_tiles(file_manager)
    stats = file_manager.get_processing_statistics()
    assert stats['successful_operations'] == 8
    assert stats['success_rate'] == 1.0

    file_manager.reset_processing_statistics()
    assert file_manager.get_processing_statistics()['total_operations'] == 0
