from __future__ import annotations

import pytest

from biomech.vision.calibration import (
    CalibrationProfile,
    Calibrator,
    ThresholdCalculator,
    default_profile,
)
from biomech.vision.landmarks import PoseLandmark as P


def test_add_frame_returns_none_when_not_running(standing_pose):
    cal = Calibrator(target_frames=3, required_consecutive=1)
    assert cal.add_frame(standing_pose) is None
    assert cal.accepted_frames == 0


def test_frames_only_accepted_after_consecutive_streak(standing_pose):
    cal = Calibrator(target_frames=3, required_consecutive=5, min_visibility=0.5)
    cal.start()
    for _ in range(4):
        assert cal.add_frame(standing_pose) == 0.0
    assert cal.accepted_frames == 0
    assert cal.add_frame(standing_pose) == pytest.approx(1 / 3)
    assert cal.accepted_frames == 1


def test_occluded_frame_resets_streak(pose, standing_pose):
    cal = Calibrator(target_frames=10, required_consecutive=3, min_visibility=0.5)
    cal.start()
    for _ in range(3):
        cal.add_frame(standing_pose)
    assert cal.accepted_frames == 1

    occluded = pose(visibility_overrides={P.LEFT_KNEE: 0.2})
    cal.add_frame(occluded)
    cal.add_frame(standing_pose)
    cal.add_frame(standing_pose)
    assert cal.accepted_frames == 1
    cal.add_frame(standing_pose)
    assert cal.accepted_frames == 2


def test_short_frame_is_rejected_without_error(standing_pose):
    cal = Calibrator(target_frames=3, required_consecutive=1)
    cal.start()
    assert cal.add_frame(standing_pose[:10]) == 0.0
    assert cal.add_frame(None) == 0.0
    assert cal.in_progress


def test_profile_is_mean_of_accepted_frames(pose):
    frames = [pose({P.NOSE: (0.50, y, 0.0)}) for y in (0.14, 0.15, 0.16)]
    cal = Calibrator(target_frames=3, required_consecutive=1)
    cal.start()
    results = [cal.add_frame(f) for f in frames]
    assert results[-1] == 1.0
    assert not cal.in_progress
    assert cal.add_frame(frames[0]) is None

    profile = cal.profile
    assert profile is not None
    assert profile.is_default is False
    heights = [0.76, 0.75, 0.74]
    assert min(heights) - 1e-9 <= profile.standing_height <= max(heights) + 1e-9
    assert profile.standing_height == pytest.approx(0.75)
    assert profile.shoulder_width == pytest.approx(0.2)
    assert profile.neutral_joint_angles["left_knee"] == pytest.approx(180.0, abs=1e-3)
    assert set(profile.neutral_joint_angles) == {
        "left_elbow", "right_elbow", "left_shoulder", "right_shoulder",
        "left_hip", "right_hip", "left_knee", "right_knee",
    }


def test_cancel_and_reset_fall_back_to_default(standing_pose):
    cal = Calibrator(target_frames=1, required_consecutive=1)
    cal.start()
    cal.add_frame(standing_pose)
    assert cal.profile is not None

    cal.start()
    cal.cancel()
    assert not cal.in_progress
    assert cal.profile is not None

    cal.reset()
    assert cal.profile is None
    fallback = cal.profile_or_default()
    assert fallback.is_default
    assert fallback.standing_height == 0.6
    assert fallback.shoulder_width == 0.25


def test_profile_dict_round_trip():
    profile = CalibrationProfile(0.7, 0.22, 0.41, 0.52, {"left_knee": 178.0}, captured_at="2024-05-01T10:00:00+00:00")
    restored = CalibrationProfile.from_dict(profile.to_dict())
    assert restored == profile


def test_default_profile_neutral_angles():
    profile = default_profile()
    assert profile.neutral("left_elbow", "right_elbow") == 170.0
    assert profile.neutral("left_knee", "right_knee") == 175.0
    assert profile.neutral("missing", fallback=12.0) == 12.0


def test_threshold_calculator_squat_uses_neutral_knee():
    t = ThresholdCalculator().get_thresholds("Squat")
    assert (t.start_angle, t.bottom_angle, t.turn_tolerance, t.asymmetry_threshold) == (170.0, 85.0, 10.0, 15.0)
    assert t.descending

    stiff = CalibrationProfile(0.6, 0.25, 0.4, 0.5, {"left_knee": 160.0, "right_knee": 162.0})
    assert ThresholdCalculator(stiff).get_thresholds("goblet squat").start_angle == pytest.approx(161.0)


def test_threshold_calculator_other_exercises():
    calc = ThresholdCalculator()
    lunge = calc.get_thresholds("walking_lunge")
    assert (lunge.bottom_angle, lunge.asymmetry_threshold) == (90.0, 20.0)

    raise_ = calc.get_thresholds("arm raise")
    assert not raise_.descending
    assert (raise_.start_angle, raise_.bottom_angle) == (30.0, 170.0)

    ext = calc.get_thresholds("knee-extension")
    assert not ext.descending
    assert (ext.start_angle, ext.bottom_angle) == (90.0, 170.0)

    fallback = calc.get_thresholds("burpee")
    assert (fallback.start_angle, fallback.bottom_angle, fallback.turn_tolerance, fallback.asymmetry_threshold) == (
        170.0, 90.0, 15.0, 20.0,
    )


def test_threshold_calculator_only_arm_names_ascend():
    calc = ThresholdCalculator()
    for name in ("calf raise", "front raise", "shoulder shrug", "default"):
        t = calc.get_thresholds(name)
        assert t.descending
        assert (t.start_angle, t.bottom_angle) == (170.0, 90.0)
    assert not calc.get_thresholds("arm_raise").descending
