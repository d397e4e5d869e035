import json
from pathlib import Path

import pytest

from config.config import Config
from src_depth_map.geometry.tile_params import TileParams
from src_depth_map.sgm.sgm_params import SgmParams


def _write_config(tmp_path, **values):
    values.setdefault("result_root", str(tmp_path / "result"))
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps(values), encoding='utf-8')
    return config_path


def test_defaults_are_applied(tmp_path):
    config = Config(_write_config(tmp_path))

    assert config.tile_buffer_width == 1024
    assert config.tile_padding == 128
    assert config.sgm_filtering_axes == "YX"
    assert config.merge_tiles == "True"
    assert config.log_file is None
    assert config.is_tiling_enabled()
    assert Path(config.save_path_result) == tmp_path / "result" / "depth_map"
    assert Path(config.save_path_result).is_dir()


def test_case_name_is_formatted(tmp_path):
    config = Config(_write_config(tmp_path, case_name="bridge", save_path_result="maps_{case_name}"))
    assert Path(config.save_path_result).name == "maps_bridge"


def test_existing_result_folder_gets_a_counter(tmp_path):
    config_path = _write_config(tmp_path)
    first = Config(config_path)
    second = Config(config_path)

    assert Path(first.save_path_result).name == "depth_map"
    assert Path(second.save_path_result).name == "depth_map(1)"


def test_relative_result_root_is_resolved_against_config_folder(tmp_path):
    config = Config(_write_config(tmp_path, result_root="out"))
    assert Path(config.save_path_result) == tmp_path / "out" / "depth_map"


def test_small_padding_warns(tmp_path, toolkit_caplog):
    config = Config(_write_config(tmp_path, tile_padding=3), create_folders=False)

    assert config.tile_padding == 3
    assert "ramps will be shortened" in toolkit_caplog.text


@pytest.mark.parametrize("values", [
    {"tile_padding": -1},
    {"tile_padding": 2.5},
    {"tile_buffer_width": 64, "tile_padding": 64},
    {"tile_buffer_height": "512"},
    {"max_workers": 0},
    {"sgm_min_depth": 10.0, "sgm_max_depth": 5.0},
    {"sgm_nb_depths": 0},
    {"sgm_filtering_axes": "XZ"},
    {"sgm_device_memory_mb": 0},
])
def test_invalid_values_are_rejected(tmp_path, values):
    with pytest.raises(ValueError):
        Config(_write_config(tmp_path, **values), create_folders=False)


def test_no_tiling_summary(tmp_path):
    config = Config(_write_config(tmp_path, tile_buffer_width=-1, tile_buffer_height=0), create_folders=False)

    assert not config.is_tiling_enabled()
    assert config.get_tile_config_summary() == "No tiling"
    assert not TileParams.from_config(config).is_tiled()


def test_parameters_from_config(tmp_path):
    config = Config(_write_config(tmp_path, tile_buffer_width=256, tile_buffer_height=128, tile_padding=16,
                                  sgm_scale=1, sgm_nb_depths=32, sgm_compute_normal_map="True"),
                    create_folders=False)

    assert TileParams.from_config(config) == TileParams(256, 128, 16)
    sgm_params = SgmParams.from_config(config)
    assert sgm_params.scale == 1
    assert sgm_params.nb_depths == 32
    assert sgm_params.compute_normal_map is True
    assert sgm_params.device_memory_mb is None


def test_string_false_disables_normal_map(tmp_path):
    config = Config(_write_config(tmp_path, sgm_compute_normal_map="False"), create_folders=False)
    assert SgmParams.from_config(config).compute_normal_map is False


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        Config(tmp_path / "missing.json")


def test_unknown_attribute(tmp_path):
    config = Config(_write_config(tmp_path), create_folders=False)
    with pytest.raises(AttributeError):
        config.not_a_parameter
