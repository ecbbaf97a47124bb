"""Per-user calibration: body proportions and neutral joint angles.

The calibrator accumulates measurements from a short stable standing capture
and averages them into an immutable :class:`CalibrationProfile`. Until a
session completes calibration, :func:`default_profile` stands in.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from biomech.core.config import get_settings
from biomech.vision.landmarks import (
    KEY_JOINTS,
    Landmark,
    PoseLandmark as P,
    angle_between,
    distance_2d,
    distance_3d,
    parse_landmarks,
)

# Neutral angles captured during calibration: name -> (a, vertex, c)
NEUTRAL_ANGLE_JOINTS: Dict[str, Tuple[P, P, P]] = {
    "left_elbow": (P.LEFT_SHOULDER, P.LEFT_ELBOW, P.LEFT_WRIST),
    "right_elbow": (P.RIGHT_SHOULDER, P.RIGHT_ELBOW, P.RIGHT_WRIST),
    "left_shoulder": (P.LEFT_HIP, P.LEFT_SHOULDER, P.LEFT_ELBOW),
    "right_shoulder": (P.RIGHT_HIP, P.RIGHT_SHOULDER, P.RIGHT_ELBOW),
    "left_hip": (P.LEFT_SHOULDER, P.LEFT_HIP, P.LEFT_KNEE),
    "right_hip": (P.RIGHT_SHOULDER, P.RIGHT_HIP, P.RIGHT_KNEE),
    "left_knee": (P.LEFT_HIP, P.LEFT_KNEE, P.LEFT_ANKLE),
    "right_knee": (P.RIGHT_HIP, P.RIGHT_KNEE, P.RIGHT_ANKLE),
}

DEFAULT_NEUTRAL_ANGLES: Dict[str, float] = {
    "left_elbow": 170.0,
    "right_elbow": 170.0,
    "left_shoulder": 30.0,
    "right_shoulder": 30.0,
    "left_hip": 175.0,
    "right_hip": 175.0,
    "left_knee": 175.0,
    "right_knee": 175.0,
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class CalibrationProfile:
    standing_height: float
    shoulder_width: float
    arm_length: float
    leg_length: float
    neutral_joint_angles: Dict[str, float] = field(default_factory=dict)
    captured_at: str = field(default_factory=_now_iso)
    is_default: bool = False

    def neutral(self, *names: str, fallback: float = 0.0) -> float:
        """Mean neutral angle over ``names`` that the profile knows about."""
        values = [self.neutral_joint_angles[n] for n in names if n in self.neutral_joint_angles]
        if not values:
            return fallback
        return float(sum(values) / len(values))

    def to_dict(self) -> dict:
        return {
            "standing_height": self.standing_height,
            "shoulder_width": self.shoulder_width,
            "arm_length": self.arm_length,
            "leg_length": self.leg_length,
            "neutral_joint_angles": dict(self.neutral_joint_angles),
            "captured_at": self.captured_at,
            "is_default": self.is_default,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CalibrationProfile":
        return cls(
            standing_height=float(data["standing_height"]),
            shoulder_width=float(data["shoulder_width"]),
            arm_length=float(data["arm_length"]),
            leg_length=float(data["leg_length"]),
            neutral_joint_angles={k: float(v) for k, v in dict(data.get("neutral_joint_angles") or {}).items()},
            captured_at=str(data.get("captured_at") or _now_iso()),
            is_default=bool(data.get("is_default", False)),
        )


def default_profile() -> CalibrationProfile:
    """Documented fallback used whenever no session calibration exists."""
    return CalibrationProfile(
        standing_height=0.6,
        shoulder_width=0.25,
        arm_length=0.4,
        leg_length=0.5,
        neutral_joint_angles=dict(DEFAULT_NEUTRAL_ANGLES),
        captured_at="1970-01-01T00:00:00+00:00",
        is_default=True,
    )


def measure_frame(landmarks: Sequence[Landmark]) -> Dict[str, float]:
    """Body measurements of one frame, keyed like the profile fields."""
    lm = landmarks
    ankle_y = (lm[P.LEFT_ANKLE].y + lm[P.RIGHT_ANKLE].y) / 2.0
    left_arm = distance_3d(lm[P.LEFT_SHOULDER], lm[P.LEFT_ELBOW]) + distance_3d(lm[P.LEFT_ELBOW], lm[P.LEFT_WRIST])
    right_arm = distance_3d(lm[P.RIGHT_SHOULDER], lm[P.RIGHT_ELBOW]) + distance_3d(lm[P.RIGHT_ELBOW], lm[P.RIGHT_WRIST])
    left_leg = distance_3d(lm[P.LEFT_HIP], lm[P.LEFT_KNEE]) + distance_3d(lm[P.LEFT_KNEE], lm[P.LEFT_ANKLE])
    right_leg = distance_3d(lm[P.RIGHT_HIP], lm[P.RIGHT_KNEE]) + distance_3d(lm[P.RIGHT_KNEE], lm[P.RIGHT_ANKLE])
    out = {
        "standing_height": abs(ankle_y - lm[P.NOSE].y),
        "shoulder_width": distance_2d(lm[P.LEFT_SHOULDER], lm[P.RIGHT_SHOULDER]),
        "arm_length": (left_arm + right_arm) / 2.0,
        "leg_length": (left_leg + right_leg) / 2.0,
    }
    for name, (a, b, c) in NEUTRAL_ANGLE_JOINTS.items():
        out[name] = angle_between(lm[a], lm[b], lm[c])
    return out


class Calibrator:
    """Collects stable standing frames and produces a :class:`CalibrationProfile`.

    A frame only counts once ``required_consecutive`` valid frames have been
    seen in a row; any frame with a key joint below ``min_visibility`` resets
    that streak.
    """

    def __init__(
        self,
        target_frames: Optional[int] = None,
        required_consecutive: Optional[int] = None,
        min_visibility: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.target_frames = max(1, int(target_frames or settings.calibration_target_frames))
        self.required_consecutive = max(1, int(required_consecutive or settings.calibration_consecutive_frames))
        self.min_visibility = float(settings.calibration_min_visibility if min_visibility is None else min_visibility)
        self._samples: List[Dict[str, float]] = []
        self._consecutive_valid = 0
        self._running = False
        self._profile: Optional[CalibrationProfile] = None

    # --- Public API -----------------------------------------------------

    def start(self) -> None:
        self._samples.clear()
        self._consecutive_valid = 0
        self._running = True
        logger.info("Calibration started (target={} frames)", self.target_frames)

    def add_frame(self, landmarks: Any) -> Optional[float]:
        """Feed one frame; returns progress in [0, 1] or None when not calibrating."""
        if not self._running:
            return None
        points = parse_landmarks(landmarks)
        if points is None or not self._is_valid(points):
            self._consecutive_valid = 0
            return self.progress

        self._consecutive_valid += 1
        if self._consecutive_valid < self.required_consecutive:
            return self.progress

        self._samples.append(measure_frame(points))
        if len(self._samples) >= self.target_frames:
            self._finish()
            return 1.0
        return self.progress

    @property
    def progress(self) -> float:
        return min(1.0, len(self._samples) / float(self.target_frames))

    @property
    def accepted_frames(self) -> int:
        return len(self._samples)

    @property
    def in_progress(self) -> bool:
        return self._running

    @property
    def profile(self) -> Optional[CalibrationProfile]:
        return self._profile

    def profile_or_default(self) -> CalibrationProfile:
        if self._profile is None:
            logger.debug("No calibration captured; using default profile")
            return default_profile()
        return self._profile

    def cancel(self) -> None:
        if self._running:
            logger.info("Calibration cancelled after {} accepted frames", len(self._samples))
        self._running = False
        self._samples.clear()
        self._consecutive_valid = 0

    def reset(self) -> None:
        self.cancel()
        self._profile = None

    def load(self, profile: CalibrationProfile) -> None:
        """Restore a previously captured profile."""
        self._profile = profile

    # --- Internal helpers -----------------------------------------------

    def _is_valid(self, landmarks: Sequence[Landmark]) -> bool:
        return all(landmarks[int(idx)].visibility >= self.min_visibility for idx in KEY_JOINTS)

    def _finish(self) -> None:
        means = {key: float(np.mean([s[key] for s in self._samples])) for key in self._samples[0]}
        self._profile = CalibrationProfile(
            standing_height=means.pop("standing_height"),
            shoulder_width=means.pop("shoulder_width"),
            arm_length=means.pop("arm_length"),
            leg_length=means.pop("leg_length"),
            neutral_joint_angles=means,
        )
        self._running = False
        logger.info(
            "Calibration complete height={:.3f} shoulders={:.3f} frames={}",
            self._profile.standing_height,
            self._profile.shoulder_width,
            len(self._samples),
        )


@dataclass(frozen=True)
class RepThresholds:
    """Phase thresholds for the rep state machine.

    For descending movements (squat) the angle closes from ``start_angle``
    towards ``bottom_angle``; ascending movements (arm raise) open towards it.
    """

    start_angle: float
    bottom_angle: float
    turn_tolerance: float
    asymmetry_threshold: float
    descending: bool = True


class ThresholdCalculator:
    """Derives calibration-adjusted thresholds for an exercise."""

    def __init__(self, profile: Optional[CalibrationProfile] = None) -> None:
        self.profile = profile or default_profile()

    def get_thresholds(self, exercise_name: str) -> RepThresholds:
        name = (exercise_name or "").lower().replace("_", " ").replace("-", " ")
        knee = self.profile.neutral("left_knee", "right_knee", fallback=175.0)
        if "squat" in name:
            return RepThresholds(min(170.0, knee), 85.0, 10.0, 15.0)
        if "lunge" in name:
            return RepThresholds(min(170.0, knee), 90.0, 10.0, 20.0)
        if "arm" in name:
            shoulder = self.profile.neutral("left_shoulder", "right_shoulder", fallback=30.0)
            return RepThresholds(shoulder, 170.0, 10.0, 15.0, descending=False)
        if "knee extension" in name or "kneeextension" in name:
            return RepThresholds(90.0, 170.0, 10.0, 15.0, descending=False)
        return RepThresholds(170.0, 90.0, 15.0, 20.0)
