from __future__ import annotations

import json

import pytest

from biomech.vision.exercises import (
    BUILTIN_EXERCISES,
    DEFAULT_EXERCISE,
    load_exercise_configs,
    normalize_exercise_name,
    resolve_exercise,
)


@pytest.mark.parametrize(
    "name,key",
    [
        ("squat", "squat"),
        ("Goblet Squat", "squat"),
        ("walking_lunge", "lunge"),
        ("knee-extension", "knee_extension"),
        ("KneeExtension", "knee_extension"),
        ("Lateral Raise", "arm_raise"),
        ("jumping jacks", DEFAULT_EXERCISE),
        (None, DEFAULT_EXERCISE),
    ],
)
def test_resolve_exercise(name, key):
    resolved, config = resolve_exercise(name, BUILTIN_EXERCISES)
    assert resolved == key
    assert config is BUILTIN_EXERCISES[key]


def test_normalize_exercise_name():
    assert normalize_exercise_name("  Single-Leg_Squat ") == "single leg squat"
    assert normalize_exercise_name(None) == ""


def test_builtin_squat_config():
    squat = BUILTIN_EXERCISES["squat"]
    assert squat.primary_joints == ["left_knee", "right_knee", "left_hip", "right_hip"]
    assert squat.target_rom == 90
    assert squat.depth_weight == 0.9


def test_config_file_adds_entries(tmp_path):
    path = tmp_path / "exercises.json"
    path.write_text(json.dumps({
        "Hip Thrust": {
            "primary_joints": ["left_hip", "right_hip"],
            "target_rom": 60,
            "ideal_tempo": 2.0,
            "tempo_tolerance": 0.5,
            "symmetry_weight": 0.9,
            "depth_weight": 0.5,
        }
    }))
    table = load_exercise_configs(str(path))
    assert "hip_thrust" in table
    assert "squat" in table
    key, config = resolve_exercise("hip thrust", table)
    assert key == "hip_thrust"
    assert config.target_rom == 60


def test_invalid_config_file_falls_back_to_builtins(tmp_path):
    path = tmp_path / "bad.json"
    path.write_text(json.dumps({"squat": {"primary_joints": ["left_knee"], "target_rom": 0}}))
    assert load_exercise_configs(str(path)) == BUILTIN_EXERCISES
    assert load_exercise_configs(str(tmp_path / "missing.json")) == BUILTIN_EXERCISES
    assert load_exercise_configs(None) == BUILTIN_EXERCISES
