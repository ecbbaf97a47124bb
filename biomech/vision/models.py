"""Shared enums and small value types for the analysis pipeline."""
from __future__ import annotations

from enum import Enum


class Plane(str, Enum):
    SAGITTAL = "sagittal"
    FRONTAL = "frontal"
    TRANSVERSE = "transverse"


class Side(str, Enum):
    LEFT = "left"
    RIGHT = "right"
    BILATERAL = "bilateral"


class Severity(str, Enum):
    """Compensation severity, ordered mild < moderate < severe."""

    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.MILD: 1, Severity.MODERATE: 2, Severity.SEVERE: 3}


class ExerciseCategory(str, Enum):
    LEGS = "LEGS"
    UPPER = "UPPER"
    CORE = "CORE"
    BALANCE = "BALANCE"
    GENERAL = "GENERAL"


class CompensationType(str, Enum):
    TRUNK_LEAN = "trunk_lean"
    KNEE_VALGUS = "knee_valgus"
    WEIGHT_SHIFT = "weight_shift"
    SHOULDER_HIKE = "shoulder_hike"
    HIP_DROP = "hip_drop"
    FORWARD_HEAD = "forward_head"
    LUMBAR_FLEXION = "lumbar_flexion"


class RepPhase(str, Enum):
    START = "START"
    ECCENTRIC = "ECCENTRIC"
    TURN = "TURN"
    CONCENTRIC = "CONCENTRIC"


class FeedbackPriority(str, Enum):
    CRITICAL = "critical"
    CORRECTIVE = "corrective"
    ENCOURAGEMENT = "encouragement"


class FrameStatus(str, Enum):
    """Outcome of one frame through a movement session."""

    OK = "ok"
    CALIBRATING = "calibrating"
    INSUFFICIENT_DATA = "insufficient_data"
    IMPLAUSIBLE_POSE = "implausible_pose"
