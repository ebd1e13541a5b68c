import json

import pytest

from pbdcloth import ClothConfigError, ClothSettings


def test_defaults_are_valid():
    s = ClothSettings()
    assert s.iteration_count == 2
    assert s.gravity == (0.0, -9.8, 0.0)


@pytest.mark.parametrize("overrides", [
    {"density": -1.0},
    {"density": 0.0},
    {"density": float("nan")},
    {"iteration_count": 0},
    {"iteration_count": -3},
    {"iteration_count": 2.5},
    {"iteration_count": True},
    {"compress_stiffness": 1.5},
    {"stretch_stiffness": -0.1},
    {"bend_stiffness": float("inf")},
    {"pin_stiffness": 2.0},
    {"damper": -0.5},
    {"gravity": (0.0, -9.8)},
    {"gravity": (0.0, float("nan"), 0.0)},
    {"gravity": "down"},
])
def test_out_of_range_values_are_rejected(overrides):
    with pytest.raises(ClothConfigError):
        ClothSettings(**overrides)


def test_gravity_is_stored_as_a_float_tuple():
    s = ClothSettings(gravity=[0, -1, 0])
    assert s.gravity == (0.0, -1.0, 0.0)


def test_from_dict_rejects_unknown_keys():
    with pytest.raises(ClothConfigError, match="stiffnes"):
        ClothSettings.from_dict({"stiffnes": 1.0})


def test_round_trip_through_json(tmp_path):
    path = tmp_path / "cloth.json"
    path.write_text(json.dumps({"density": 0.3, "iteration_count": 5, "gravity": [0, 0, -9.8]}))
    s = ClothSettings.from_json(str(path))
    assert s.density == 0.3
    assert s.iteration_count == 5
    assert s.gravity == (0.0, 0.0, -9.8)
    assert ClothSettings.from_dict(s.to_dict()) == s


def test_json_must_hold_an_object(tmp_path):
    path = tmp_path / "cloth.json"
    path.write_text("[1, 2]")
    with pytest.raises(ClothConfigError):
        ClothSettings.from_json(str(path))
