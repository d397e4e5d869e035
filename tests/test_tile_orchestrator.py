import threading

import numpy as np
import pytest

from src_depth_map.errors import DeviceMemoryError
from src_depth_map.geometry.tile_params import TileParams
from src_depth_map.sgm.depth_list import SgmDepthList
from src_depth_map.sgm.device_memory import DeviceMemoryPool
from src_depth_map.sgm.sgm_params import SgmParams
from src_depth_map.tiling.depth_sim_map_io import DepthSimMapFileManager
from src_depth_map.tiling.file_type import EFileType, get_file_name_from_index
from src_depth_map.tiling.tile_orchestrator import TileOrchestrator

from conftest import PLANE_DEPTH

_SGM_PARAMS = SgmParams(scale=1, step_xy=1, nb_depths=9, min_depth=6.0, max_depth=14.0)
_DEPTHS = SgmDepthList(np.arange(6.0, 15.0))
_TILES = TileParams(24, 24, 8)


class CancellingFileManager(DepthSimMapFileManager):
    """Sets the cancel event once the first tile is written."""

    def __init__(self, mp, cancel_event):
        super().__init__(mp)
        self.cancel_event = cancel_event

    def write_depth_sim_map(self, *args, **kwargs):
        written = super().write_depth_sim_map(*args, **kwargs)
        self.cancel_event.set()
        return written


def test_tiles_are_written_merged_and_deleted(plane_scene):
    orchestrator = TileOrchestrator(plane_scene, _TILES, _SGM_PARAMS)
    assert len(orchestrator.get_tile_rois(0)) == 4

    summary = orchestrator.process(0, [1], _DEPTHS, merge_tiles=True, delete_tiles=True)

    assert summary['nb_tiles'] == 4
    assert summary['nb_processed'] == 4
    assert summary['merged'] and not summary['cancelled']
    assert len(summary['written_files']) == 8

    depth_path = get_file_name_from_index(plane_scene, 0, EFileType.DEPTH_MAP)
    assert depth_path.exists()
    assert orchestrator.file_manager.get_tile_path_list(0, EFileType.DEPTH_MAP) == []

    depth_map, sim_map = orchestrator.file_manager.read_depth_sim_map(0)
    assert depth_map.shape == sim_map.shape == (48, 48)
    valid = depth_map > 0
    assert valid.mean() > 0.5
    assert np.median(depth_map[valid]) == pytest.approx(PLANE_DEPTH, abs=0.5)
    assert np.all(sim_map[valid] >= 0.0)


def test_tiles_are_kept_without_merge(plane_scene):
    orchestrator = TileOrchestrator(plane_scene, _TILES, _SGM_PARAMS)

    summary = orchestrator.process(0, [1], _DEPTHS)

    assert not summary['merged']
    assert not get_file_name_from_index(plane_scene, 0, EFileType.DEPTH_MAP).exists()
    assert len(orchestrator.file_manager.get_tile_path_list(0, EFileType.SIM_MAP)) == 4


def test_single_tile_is_written_as_full_map(plane_scene):
    orchestrator = TileOrchestrator(plane_scene, TileParams(), _SGM_PARAMS)

    summary = orchestrator.process(0, [1], _DEPTHS, merge_tiles=True)

    assert summary['nb_tiles'] == 1
    assert not summary['merged']
    assert get_file_name_from_index(plane_scene, 0, EFileType.DEPTH_MAP).exists()


def test_cancel_before_start_writes_nothing(plane_scene):
    cancel_event = threading.Event()
    cancel_event.set()
    orchestrator = TileOrchestrator(plane_scene, _TILES, _SGM_PARAMS)

    summary = orchestrator.process(0, [1], _DEPTHS, cancel_event, merge_tiles=True)

    assert summary['cancelled']
    assert summary['nb_processed'] == 0
    assert summary['written_files'] == []
    assert list(plane_scene.output_folder.iterdir()) == []


def test_cancel_after_first_tile_keeps_written_tile(plane_scene):
    cancel_event = threading.Event()
    file_manager = CancellingFileManager(plane_scene, cancel_event)
    orchestrator = TileOrchestrator(plane_scene, _TILES, _SGM_PARAMS, file_manager=file_manager)

    summary = orchestrator.process(0, [1], _DEPTHS, cancel_event, merge_tiles=True)

    assert summary['cancelled']
    assert summary['nb_processed'] == 1
    assert not summary['merged']
    tiles = file_manager.get_tile_path_list(0, EFileType.DEPTH_MAP)
    assert [path.name for path in tiles] == ["100_depthMap_0_0.npz"]
    assert not get_file_name_from_index(plane_scene, 0, EFileType.DEPTH_MAP).exists()


def test_tile_larger_than_budget_fails(plane_scene):
    orchestrator = TileOrchestrator(plane_scene, _TILES, _SGM_PARAMS, memory_pool=DeviceMemoryPool(0.01))

    with pytest.raises(DeviceMemoryError):
        orchestrator.process(0, [1], _DEPTHS)
    assert orchestrator.memory_pool.used_mb == 0.0


def test_concurrent_tiles_stay_within_budget(plane_scene):
    budget_mb = 0.3
    orchestrator = TileOrchestrator(plane_scene, _TILES, _SGM_PARAMS, max_workers=2,
                                    memory_pool=DeviceMemoryPool(budget_mb))
    per_tile_mb = orchestrator.engine.get_device_memory_consumption(orchestrator.get_tile_rois(0)[0], len(_DEPTHS))
    assert 2 * per_tile_mb <= budget_mb

    summary = orchestrator.process(0, [1], _DEPTHS, merge_tiles=True)

    assert summary['nb_processed'] == 4
    assert summary['merged']
    assert 0.0 < summary['peak_memory_mb'] <= budget_mb
    assert orchestrator.memory_pool.used_mb == 0.0


def test_concurrent_and_sequential_runs_agree(plane_scene):
    sequential = TileOrchestrator(plane_scene, _TILES, _SGM_PARAMS)
    sequential.process(0, [1], _DEPTHS, merge_tiles=True)
    expected = sequential.file_manager.read_depth_map(0)
    sequential.file_manager.delete_files([get_file_name_from_index(plane_scene, 0, file_type)
                                          for file_type in (EFileType.DEPTH_MAP, EFileType.SIM_MAP)])

    concurrent = TileOrchestrator(plane_scene, _TILES, _SGM_PARAMS, max_workers=3)
    concurrent.process(0, [1], _DEPTHS, merge_tiles=True)

    np.testing.assert_array_equal(concurrent.file_manager.read_depth_map(0), expected)


def test_invalid_worker_count():
    with pytest.raises(ValueError):
        TileOrchestrator(None, _TILES, _SGM_PARAMS, max_workers=0)
