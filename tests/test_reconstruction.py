from __future__ import annotations

import pytest

from biomech.vision.landmarks import PoseLandmark as P
from biomech.vision.models import Plane, Side
from biomech.vision.reconstruction import JointAngle, PoseReconstructor, calculate_symmetry


def test_standing_pose_angles(standing_pose):
    angles = PoseReconstructor(smoothing_window=5).calculate_joint_angles(standing_pose)
    assert angles["left_knee"].angle == pytest.approx(180.0, abs=1e-3)
    assert angles["right_knee"].angle == pytest.approx(180.0, abs=1e-3)
    assert angles["left_ankle"].angle == pytest.approx(90.0, abs=1e-3)
    assert angles["left_hip"].angle == pytest.approx(172.4, abs=0.1)
    assert angles["trunk_lean"].angle == pytest.approx(0.0, abs=1e-3)
    assert angles["left_knee_valgus"].angle == pytest.approx(0.0, abs=1e-6)
    assert angles["left_knee"].confidence == pytest.approx(0.95)
    assert angles["left_knee"].plane is Plane.SAGITTAL
    assert angles["left_shoulder_abduction"].plane is Plane.FRONTAL
    assert 0.0 <= angles["left_shoulder_abduction"].angle <= 30.0


def test_insufficient_landmarks_return_empty(standing_pose):
    rec = PoseReconstructor()
    assert rec.calculate_joint_angles(standing_pose[:20]) == {}
    assert rec.calculate_joint_angles(None) == {}


def test_implausible_pose_returns_empty(pose):
    # Hips drawn above the shoulders
    upside_down = pose({P.LEFT_HIP: (0.56, 0.10, 0.0), P.RIGHT_HIP: (0.44, 0.10, 0.0)})
    assert PoseReconstructor().calculate_joint_angles(upside_down) == {}

    collapsed = pose({P.LEFT_SHOULDER: (0.51, 0.30, 0.0), P.RIGHT_SHOULDER: (0.49, 0.30, 0.0)})
    assert PoseReconstructor().calculate_joint_angles(collapsed) == {}


def test_smoothing_converges_to_raw_angle(pose, standing_pose):
    rec = PoseReconstructor(smoothing_window=5)
    bent = pose({P.LEFT_KNEE: (0.62, 0.75, 0.0)})
    first = rec.calculate_joint_angles(bent)["left_knee"].angle
    assert first < 170.0

    errors = []
    for _ in range(5):
        angle = rec.calculate_joint_angles(standing_pose)["left_knee"].angle
        errors.append(abs(angle - 180.0))
    assert errors[0] > 1.0
    assert all(later <= earlier + 1e-9 for earlier, later in zip(errors, errors[1:]))
    assert errors[-1] == pytest.approx(0.0, abs=1e-3)


def test_reset_smoothing_drops_history(pose, standing_pose):
    rec = PoseReconstructor(smoothing_window=5)
    rec.calculate_joint_angles(pose({P.LEFT_KNEE: (0.62, 0.75, 0.0)}))
    rec.reset_smoothing()
    assert rec.calculate_joint_angles(standing_pose)["left_knee"].angle == pytest.approx(180.0, abs=1e-3)


@pytest.mark.parametrize("diff,expected", [(0.0, 100.0), (15.0, 50.0), (30.0, 0.0), (45.0, 0.0)])
def test_symmetry_scale(diff, expected):
    assert calculate_symmetry({"left_knee": 120.0, "right_knee": 120.0 + diff}) == pytest.approx(expected)


def test_symmetry_monotonic_and_defaults():
    scores = [calculate_symmetry({"left_hip": 150.0, "right_hip": 150.0 - d}) for d in (0, 5, 10, 20, 29)]
    assert all(b < a for a, b in zip(scores, scores[1:]))
    assert calculate_symmetry({}) == 100.0
    mixed = {
        "left_knee": JointAngle("left_knee", 100.0, 0.9, Plane.SAGITTAL),
        "right_knee": 100.0,
    }
    assert calculate_symmetry(mixed) == 100.0


def test_knee_valgus_sign_for_medial_knees(pose):
    rec = PoseReconstructor(smoothing_window=1)
    knock_kneed = pose({P.LEFT_KNEE: (0.54, 0.75, 0.0), P.RIGHT_KNEE: (0.46, 0.75, 0.0)})
    angles = rec.calculate_joint_angles(knock_kneed)
    assert angles["left_knee_valgus"].angle < 0
    assert angles["right_knee_valgus"].angle < 0
    assert angles["left_knee_valgus"].angle == pytest.approx(angles["right_knee_valgus"].angle)

    bow_legged = pose({P.LEFT_KNEE: (0.58, 0.75, 0.0)})
    assert rec.calculate_joint_angles(bow_legged)["left_knee_valgus"].angle > 0


def test_knee_valgus_pseudo_angle_is_clamped(pose):
    rec = PoseReconstructor(smoothing_window=1, valgus_scale=50.0)
    angles = rec.calculate_joint_angles(pose({P.LEFT_KNEE: (0.45, 0.75, 0.0)}))
    assert angles["left_knee_valgus"].angle == pytest.approx(-30.0)


def test_q_angle_straight_leg_is_zero(standing_pose):
    from biomech.vision.landmarks import parse_landmarks

    points = parse_landmarks(standing_pose)
    assert PoseReconstructor().q_angle(points, Side.LEFT) == pytest.approx(0.0, abs=1e-6)


def test_extended_angles(standing_pose):
    angles = PoseReconstructor().calculate_joint_angles_extended(standing_pose)
    for name in ("left_ankle_inversion", "right_shoulder_rotation", "lumbar_flexion", "thoracic_rotation"):
        assert name in angles
    assert angles["lumbar_flexion"].angle == pytest.approx(0.0, abs=1e-6)
    assert angles["thoracic_rotation"].angle == pytest.approx(0.0, abs=1e-6)
    assert angles["left_ankle_inversion"].angle == pytest.approx(0.0, abs=1e-6)
    assert PoseReconstructor().calculate_joint_angles_extended(standing_pose[:5]) == {}


def test_angular_velocity():
    rec = PoseReconstructor()
    assert rec.calculate_angular_velocity("left_knee", 170.0, 0.0) == 0.0
    assert rec.calculate_angular_velocity("left_knee", 160.0, 0.5) == pytest.approx(-20.0)
    assert rec.calculate_angular_velocity("left_knee", 150.0, 0.5001) == 0.0
    rec.reset_velocity_tracking()
    assert rec.calculate_angular_velocity("left_knee", 100.0, 1.0) == 0.0
