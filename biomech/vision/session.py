"""Per-session orchestration of the analysis pipeline.

A :class:`MovementSession` owns exactly one Calibrator, PoseReconstructor and
RepScorer plus a rolling compensation history. Sessions are never shared;
:class:`SessionRegistry` hands out one per session key.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from loguru import logger

from biomech.core.config import get_settings
from biomech.vision.calibration import CalibrationProfile, Calibrator
from biomech.vision.compensation import (
    CompensationHistory,
    CompensationPattern,
    detect_compensations,
    get_exercise_category,
    get_top_compensations,
)
from biomech.vision.constraints import ConstraintValidator, apply_corrections, clinical_angles
from biomech.vision.kinetic_chain import (
    KineticChainAnalysis,
    analyze_kinetic_chain,
    analyze_kinetic_chain_with_validation,
)
from biomech.vision.messages import MessagePicker
from biomech.vision.models import FrameStatus, RepPhase
from biomech.vision.reconstruction import JointAngle, PoseReconstructor
from biomech.vision.scoring import FeedbackItem, RepScore, RepScorer


@dataclass
class FrameAnalysis:
    status: FrameStatus
    timestamp: float
    angles: Dict[str, JointAngle] = field(default_factory=dict)
    symmetry: Optional[float] = None
    compensations: List[CompensationPattern] = field(default_factory=list)
    phase: RepPhase = RepPhase.START
    rep_count: int = 0
    rep_progress: float = 0.0
    feedback: Optional[FeedbackItem] = None
    completed_rep: Optional[RepScore] = None
    calibration_progress: Optional[float] = None
    validation_confidence: float = 1.0
    velocities: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "angles": {name: joint.to_dict() for name, joint in self.angles.items()},
            "symmetry": None if self.symmetry is None else round(self.symmetry, 1),
            "compensations": [c.to_dict() for c in self.compensations],
            "phase": self.phase.value,
            "rep_count": self.rep_count,
            "rep_progress": round(self.rep_progress, 3),
            "feedback": self.feedback.to_dict() if self.feedback else None,
            "completed_rep": self.completed_rep.to_dict() if self.completed_rep else None,
            "calibration_progress": self.calibration_progress,
            "validation_confidence": round(self.validation_confidence, 3),
            "velocities": {name: round(v, 2) for name, v in self.velocities.items()},
        }


class MovementSession:
    """Pipeline state for one user performing one exercise at a time."""

    def __init__(
        self,
        key: str,
        exercise: str = "squat",
        *,
        calibrator: Optional[Calibrator] = None,
        reconstructor: Optional[PoseReconstructor] = None,
        scorer: Optional[RepScorer] = None,
        validator: Optional[ConstraintValidator] = None,
        history: Optional[CompensationHistory] = None,
        message_seed: Optional[int] = None,
    ) -> None:
        self.key = key
        self.calibrator = calibrator or Calibrator()
        self.reconstructor = reconstructor or PoseReconstructor()
        self.scorer = scorer or RepScorer(exercise, picker=MessagePicker(message_seed))
        self.validator = validator or ConstraintValidator()
        self.history = history or CompensationHistory()
        self.last_angles: Dict[str, JointAngle] = {}
        self.frames_processed = 0
        if scorer is not None and scorer.exercise != exercise:
            self.scorer.set_exercise(exercise)
        self.category = get_exercise_category(exercise)
        logger.info("Session {} created for {}", key, exercise)

    # --- Calibration ----------------------------------------------------

    def start_calibration(self) -> None:
        self.calibrator.start()

    def cancel_calibration(self) -> None:
        self.calibrator.cancel()

    def load_calibration(self, profile: CalibrationProfile) -> None:
        """Install a stored profile as if it had just been captured."""
        self.calibrator.load(profile)
        self._apply_calibration(profile)

    def reset_calibration(self) -> None:
        """Forget the captured profile; the default profile applies again."""
        self.calibrator.reset()
        self.reconstructor.set_calibration(None)
        self.scorer.set_calibration(None)

    @property
    def calibration(self) -> CalibrationProfile:
        return self.calibrator.profile_or_default()

    # --- Exercise -------------------------------------------------------

    @property
    def exercise(self) -> str:
        return self.scorer.exercise

    def set_exercise(self, exercise: str) -> None:
        """Switch exercise; no smoothing, velocity or compensation state carries over."""
        self.scorer.set_exercise(exercise)
        self.category = get_exercise_category(exercise)
        self.reconstructor.reset_smoothing()
        self.reconstructor.reset_velocity_tracking()
        self.history.clear()
        self.last_angles = {}
        logger.info("Session {} switched to {} ({})", self.key, exercise, self.category.value)

    # --- Per-frame ------------------------------------------------------

    def process_frame(self, landmarks: Any, timestamp: float) -> FrameAnalysis:
        """Run one landmark frame through the pipeline.

        Never raises on bad frame data: unusable frames report
        ``insufficient_data`` and still reach the rep scorer as empty input.
        """
        self.frames_processed += 1
        if self.calibrator.in_progress:
            progress = self.calibrator.add_frame(landmarks)
            if not self.calibrator.in_progress and self.calibrator.profile is not None:
                self._apply_calibration(self.calibrator.profile)
            return self._snapshot(FrameStatus.CALIBRATING, timestamp, calibration_progress=progress)

        angles = self.reconstructor.calculate_joint_angles_extended(landmarks)
        if not angles:
            self.scorer.process_frame({}, 100.0, timestamp)
            return self._snapshot(FrameStatus.INSUFFICIENT_DATA, timestamp)

        status = FrameStatus.OK
        validation_confidence = 1.0
        clinical = clinical_angles(angles)
        quick = self.validator.quick_validate_joints(clinical)
        if not quick.valid:
            validation = self.validator.validate_joint_combination(clinical)
            validation_confidence = validation.confidence
            angles = apply_corrections(angles, clinical, validation.adjusted_angles, validation.confidence)
            status = FrameStatus.IMPLAUSIBLE_POSE
            logger.debug("Session {} implausible pose: {}", self.key, quick.issue)

        symmetry = self.reconstructor.calculate_symmetry(angles)
        compensations = detect_compensations(
            landmarks, angles, self.category, valgus_scale=self.reconstructor.valgus_scale
        )
        self.history.append(compensations)
        velocities = self.reconstructor.joint_velocities(angles, timestamp)

        reps_before = self.scorer.rep_count
        feedback = self.scorer.process_frame(angles, symmetry, timestamp, compensations)
        completed = self.scorer.completed_reps[-1] if self.scorer.rep_count > reps_before else None
        if feedback is None and self.scorer.current_phase is not RepPhase.START:
            feedback = self.scorer.realtime_feedback(angles, symmetry, timestamp)

        self.last_angles = angles
        return self._snapshot(
            status,
            timestamp,
            angles=angles,
            symmetry=symmetry,
            compensations=get_top_compensations(compensations),
            feedback=feedback,
            completed_rep=completed,
            validation_confidence=validation_confidence,
            velocities=velocities,
        )

    # --- Reporting ------------------------------------------------------

    def analyze_kinetic_chain(self, frames: Optional[int] = None, validate: bool = True) -> KineticChainAnalysis:
        """Diagnose from the worst recent compensations and the last good angles."""
        compensations = self.history.dominant(frames)
        if validate and self.last_angles:
            return analyze_kinetic_chain_with_validation(compensations, self.last_angles, self.validator)
        return analyze_kinetic_chain(compensations, self.last_angles)

    def summary(self) -> dict:
        return {
            "key": self.key,
            "exercise": self.exercise,
            "category": self.category.value,
            "phase": self.scorer.current_phase.value,
            "rep_count": self.scorer.rep_count,
            "average_score": round(self.scorer.average_score(), 1),
            "frames_processed": self.frames_processed,
            "calibrating": self.calibrator.in_progress,
            "calibrated": self.calibrator.profile is not None,
        }

    # --- Internal helpers -----------------------------------------------

    def _apply_calibration(self, profile: CalibrationProfile) -> None:
        self.reconstructor.set_calibration(profile)
        self.scorer.set_calibration(profile)
        logger.info("Session {} calibrated (height={:.3f})", self.key, profile.standing_height)

    def _snapshot(self, status: FrameStatus, timestamp: float, **fields: Any) -> FrameAnalysis:
        return FrameAnalysis(
            status=status,
            timestamp=timestamp,
            phase=self.scorer.current_phase,
            rep_count=self.scorer.rep_count,
            rep_progress=self.scorer.rep_progress(),
            **fields,
        )


class SessionRegistry:
    """Maps session keys to their :class:`MovementSession`."""

    def __init__(self) -> None:
        self._sessions: Dict[str, MovementSession] = {}
        self._lock = threading.Lock()

    def create(self, key: str, exercise: str = "squat", calibrate: bool = False) -> MovementSession:
        """Create (or replace) the session for ``key``."""
        session = MovementSession(key, exercise, message_seed=get_settings().message_seed)
        if calibrate:
            session.start_calibration()
        with self._lock:
            replaced = key in self._sessions
            self._sessions[key] = session
        if replaced:
            logger.info("Session {} replaced", key)
        return session

    def get(self, key: str) -> Optional[MovementSession]:
        with self._lock:
            return self._sessions.get(key)

    def remove(self, key: str) -> bool:
        with self._lock:
            session = self._sessions.pop(key, None)
        if session is not None:
            logger.info("Session {} closed after {} frames", key, session.frames_processed)
        return session is not None

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._sessions)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
