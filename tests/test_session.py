from __future__ import annotations

import pytest

from biomech.vision.calibration import CalibrationProfile, Calibrator, default_profile
from biomech.vision.kinetic_chain import AffectedChain, DysfunctionType
from biomech.vision.landmarks import PoseLandmark as P
from biomech.vision.models import ExerciseCategory, FrameStatus, RepPhase
from biomech.vision.session import MovementSession, SessionRegistry


def make_session(**kwargs) -> MovementSession:
    kwargs.setdefault("message_seed", 1)
    return MovementSession("client-1", "squat", **kwargs)


def test_standing_frame_is_ok(standing_pose):
    session = make_session()
    result = session.process_frame(standing_pose, 0.0)
    assert result.status is FrameStatus.OK
    assert result.phase is RepPhase.START
    assert result.compensations == []
    assert result.symmetry == pytest.approx(100.0, abs=1e-6)
    assert result.validation_confidence == 1.0
    assert "left_knee" in result.angles
    assert result.to_dict()["status"] == "ok"
    assert session.frames_processed == 1


def test_unusable_frame_reports_insufficient_data(standing_pose):
    session = make_session()
    result = session.process_frame(standing_pose[:10], 0.0)
    assert result.status is FrameStatus.INSUFFICIENT_DATA
    assert result.angles == {}
    assert session.process_frame(None, 0.1).status is FrameStatus.INSUFFICIENT_DATA


def test_implausible_pose_is_flagged_and_corrected(tiptoe_pose):
    session = make_session()
    result = session.process_frame(tiptoe_pose, 0.0)
    assert result.status is FrameStatus.IMPLAUSIBLE_POSE
    assert result.validation_confidence == pytest.approx(0.6)
    assert result.angles["left_knee"].confidence == pytest.approx(0.95 * 0.6)


def test_calibration_flow(standing_pose):
    session = make_session(calibrator=Calibrator(target_frames=3, required_consecutive=1))
    session.start_calibration()
    statuses = [session.process_frame(standing_pose, t * 0.1) for t in range(3)]
    assert all(r.status is FrameStatus.CALIBRATING for r in statuses)
    assert statuses[-1].calibration_progress == 1.0
    assert session.calibration.is_default is False
    assert session.summary()["calibrated"] is True
    assert session.scorer.thresholds.start_angle == pytest.approx(170.0)

    # Next frame goes through the normal pipeline
    assert session.process_frame(standing_pose, 0.5).status is FrameStatus.OK

    session.reset_calibration()
    assert session.calibration.is_default
    assert session.summary()["calibrated"] is False


def test_load_stored_profile():
    session = make_session()
    profile = CalibrationProfile(0.7, 0.22, 0.41, 0.52, {"left_knee": 160.0, "right_knee": 160.0})
    session.load_calibration(profile)
    assert session.calibration == profile
    assert session.scorer.thresholds.start_angle == pytest.approx(160.0)
    assert session.reconstructor.calibration == profile


def test_cancelled_calibration_keeps_processing(standing_pose):
    session = make_session(calibrator=Calibrator(target_frames=30, required_consecutive=1))
    session.start_calibration()
    session.process_frame(standing_pose, 0.0)
    session.cancel_calibration()
    assert session.process_frame(standing_pose, 0.1).status is FrameStatus.OK
    assert session.calibration.is_default


def test_switching_exercise_clears_history(pose, standing_pose):
    session = make_session()
    session.process_frame(pose({P.NOSE: (0.50, 0.15, -0.20)}), 0.0)
    assert len(session.history) == 1
    session.set_exercise("overhead press")
    assert session.exercise == "overhead press"
    assert session.category is ExerciseCategory.UPPER
    assert len(session.history) == 0
    assert session.last_angles == {}


def test_kinetic_chain_from_session_history(pose):
    session = make_session()
    forward_head = pose({P.NOSE: (0.50, 0.15, -0.20)})
    for i in range(5):
        session.process_frame(forward_head, i * 0.1)
    analysis = session.analyze_kinetic_chain()
    assert analysis.primary_dysfunction is DysfunctionType.FORWARD_HEAD_POSTURE
    assert analysis.affected_chain is AffectedChain.UPPER
    assert analysis.constraint_validation is not None
    assert analysis.root_cause.confidence == pytest.approx(0.65)

    unvalidated = session.analyze_kinetic_chain(validate=False)
    assert unvalidated.constraint_validation is None


def test_summary_fields(standing_pose):
    session = make_session()
    session.process_frame(standing_pose, 0.0)
    summary = session.summary()
    assert summary == {
        "key": "client-1",
        "exercise": "squat",
        "category": "LEGS",
        "phase": "START",
        "rep_count": 0,
        "average_score": 0.0,
        "frames_processed": 1,
        "calibrating": False,
        "calibrated": False,
    }


def test_registry_create_replace_remove():
    registry = SessionRegistry()
    first = registry.create("b")
    registry.create("a", "lunge", calibrate=True)
    assert registry.keys() == ["a", "b"]
    assert "a" in registry and len(registry) == 2
    assert registry.get("a").calibrator.in_progress

    replacement = registry.create("b", "arm raise")
    assert registry.get("b") is replacement
    assert replacement is not first

    assert registry.remove("a") is True
    assert registry.remove("a") is False
    assert registry.get("a") is None
    assert len(registry) == 1


def test_calibration_changes_keep_rep_history():
    session = make_session()
    t = 0.0
    for value in [170, 150, 120, 90, 85, 95, 130, 160, 172]:
        for _ in range(3):
            session.scorer.process_frame({"left_knee": float(value), "right_knee": float(value)}, 100.0, t)
            t += 0.2
    assert session.scorer.rep_count == 1
    first = session.scorer.completed_reps[0]

    session.load_calibration(default_profile())
    assert session.scorer.rep_count == 1
    session.reset_calibration()
    assert session.scorer.completed_reps == [first]
    assert session.summary()["rep_count"] == 1
