"""Movement compensation detectors.

Each detector reduces one frame to a single deviation metric and grades it
against three ordered thresholds. Detectors are pure functions; the rolling
:class:`CompensationHistory` is owned by the session that feeds it.
"""
from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from biomech.core.config import get_settings
from biomech.vision.landmarks import (
    LANDMARK_COUNT,
    Landmark,
    PoseLandmark as P,
    angle_from_vertical,
    distance_2d,
    midpoint,
    parse_landmarks,
)
from biomech.vision.models import CompensationType, ExerciseCategory, Severity, Side
from biomech.vision.reconstruction import angle_value


@dataclass(frozen=True)
class CompensationPattern:
    type: CompensationType
    severity: Severity
    value: float
    threshold: float
    correction: str
    side: Optional[Side] = None

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "side": self.side.value if self.side else None,
            "value": round(self.value, 2),
            "threshold": self.threshold,
            "correction": self.correction,
        }


# (mild, moderate, severe)
THRESHOLDS: Dict[CompensationType, Tuple[float, float, float]] = {
    CompensationType.TRUNK_LEAN: (15.0, 30.0, 45.0),
    CompensationType.KNEE_VALGUS: (5.0, 10.0, 15.0),
    CompensationType.WEIGHT_SHIFT: (10.0, 20.0, 30.0),
    CompensationType.SHOULDER_HIKE: (5.0, 10.0, 15.0),
    CompensationType.HIP_DROP: (3.0, 6.0, 10.0),
    CompensationType.FORWARD_HEAD: (5.0, 10.0, 15.0),
    CompensationType.LUMBAR_FLEXION: (20.0, 35.0, 50.0),
}

CORRECTIONS: Dict[CompensationType, Dict[Severity, str]] = {
    CompensationType.TRUNK_LEAN: {
        Severity.SEVERE: "Keep your trunk upright! Use support if you need it",
        Severity.MODERATE: "Try to keep your trunk more upright",
        Severity.MILD: "Good! Just a little straighter through the trunk",
    },
    CompensationType.KNEE_VALGUS: {
        Severity.SEVERE: "Push your {side} knee out, it is collapsing inwards",
        Severity.MODERATE: "Keep your {side} knee in line with your toes",
        Severity.MILD: "Think about pressing your knees out",
    },
    CompensationType.WEIGHT_SHIFT: {
        Severity.SEVERE: "Centre your weight! You are leaning heavily to the {side}",
        Severity.MODERATE: "Shift some weight back towards the middle",
        Severity.MILD: "Spread your weight evenly over both feet",
    },
    CompensationType.SHOULDER_HIKE: {
        Severity.SEVERE: "Drop your {side} shoulder away from your ear",
        Severity.MODERATE: "Relax your {side} shoulder down",
        Severity.MILD: "Keep both shoulders low and relaxed",
    },
    CompensationType.HIP_DROP: {
        Severity.SEVERE: "Your {side} hip is dropping, squeeze the glute on the standing side",
        Severity.MODERATE: "Keep your pelvis level",
        Severity.MILD: "Think about keeping your hips level",
    },
    CompensationType.FORWARD_HEAD: {
        Severity.SEVERE: "Tuck your chin! Keep your head over your shoulders",
        Severity.MODERATE: "Think about keeping your head neutral",
        Severity.MILD: "Think about keeping your head neutral",
    },
    CompensationType.LUMBAR_FLEXION: {
        Severity.SEVERE: "Stop rounding your lower back, hinge from the hips",
        Severity.MODERATE: "Brace your core and keep your back neutral",
        Severity.MILD: "Keep a long, neutral spine",
    },
}


def grade(value: float, thresholds: Tuple[float, float, float]) -> Optional[Severity]:
    """Map a deviation onto mild/moderate/severe, or None below the mild threshold."""
    mild, moderate, severe = thresholds
    magnitude = abs(value)
    if magnitude >= severe:
        return Severity.SEVERE
    if magnitude >= moderate:
        return Severity.MODERATE
    if magnitude >= mild:
        return Severity.MILD
    return None


def _pattern(
    kind: CompensationType, value: float, side: Optional[Side] = None
) -> Optional[CompensationPattern]:
    thresholds = THRESHOLDS[kind]
    severity = grade(value, thresholds)
    if severity is None:
        return None
    text = CORRECTIONS[kind][severity].format(side=side.value if side else "")
    return CompensationPattern(kind, severity, float(value), thresholds[0], text, side)


def build_pattern(
    kind: CompensationType, severity: Severity, value: Optional[float] = None, side: Optional[Side] = None
) -> CompensationPattern:
    """Pattern for an externally reported compensation; ``value`` defaults to the severity's threshold."""
    thresholds = THRESHOLDS[kind]
    measured = thresholds[severity.rank - 1] if value is None else float(value)
    text = CORRECTIONS[kind][severity].format(side=side.value if side else "")
    return CompensationPattern(kind, severity, measured, thresholds[0], text, side)


# --- Detectors ------------------------------------------------------------


def detect_trunk_lean(landmarks: Sequence[Landmark], angles: Mapping[str, Any], **_: Any) -> Optional[CompensationPattern]:
    shoulders = midpoint(landmarks[P.LEFT_SHOULDER], landmarks[P.RIGHT_SHOULDER])
    hips = midpoint(landmarks[P.LEFT_HIP], landmarks[P.RIGHT_HIP])
    return _pattern(CompensationType.TRUNK_LEAN, angle_from_vertical(hips, shoulders))


def detect_knee_valgus(
    landmarks: Sequence[Landmark], angles: Mapping[str, Any], valgus_scale: float = 1.5, **_: Any
) -> Optional[CompensationPattern]:
    left = angle_value(angles, "left_knee_valgus")
    right = angle_value(angles, "right_knee_valgus")
    if left is None and right is None:
        return None
    # Convert the pseudo-angle back into millimetres of knee offset
    left_mm = (left or 0.0) / valgus_scale
    right_mm = (right or 0.0) / valgus_scale
    worst = Side.LEFT if abs(left_mm) >= abs(right_mm) else Side.RIGHT
    value = left_mm if worst is Side.LEFT else right_mm
    mild = THRESHOLDS[CompensationType.KNEE_VALGUS][0]
    side = Side.BILATERAL if abs(left_mm) > mild and abs(right_mm) > mild else worst
    pattern = _pattern(CompensationType.KNEE_VALGUS, value, worst)
    if pattern is None or side is worst:
        return pattern
    return CompensationPattern(pattern.type, pattern.severity, pattern.value, pattern.threshold, pattern.correction, side)


def detect_weight_shift(landmarks: Sequence[Landmark], angles: Mapping[str, Any], **_: Any) -> Optional[CompensationPattern]:
    hips = midpoint(landmarks[P.LEFT_HIP], landmarks[P.RIGHT_HIP])
    ankles = midpoint(landmarks[P.LEFT_ANKLE], landmarks[P.RIGHT_ANKLE])
    shift = (hips.x - ankles.x) * 100.0
    # Subject's left is at larger image x
    return _pattern(CompensationType.WEIGHT_SHIFT, shift, Side.LEFT if shift > 0 else Side.RIGHT)


def detect_shoulder_hike(landmarks: Sequence[Landmark], angles: Mapping[str, Any], **_: Any) -> Optional[CompensationPattern]:
    left = distance_2d(landmarks[P.LEFT_SHOULDER], landmarks[P.LEFT_EAR])
    right = distance_2d(landmarks[P.RIGHT_SHOULDER], landmarks[P.RIGHT_EAR])
    side = Side.LEFT if left < right else Side.RIGHT
    return _pattern(CompensationType.SHOULDER_HIKE, abs(left - right) * 100.0, side)


def detect_hip_drop(landmarks: Sequence[Landmark], angles: Mapping[str, Any], **_: Any) -> Optional[CompensationPattern]:
    tilt = (landmarks[P.LEFT_HIP].y - landmarks[P.RIGHT_HIP].y) * 100.0
    # Image y grows downwards, so the larger y is the lower hip
    return _pattern(CompensationType.HIP_DROP, tilt, Side.LEFT if tilt > 0 else Side.RIGHT)


def detect_forward_head(landmarks: Sequence[Landmark], angles: Mapping[str, Any], **_: Any) -> Optional[CompensationPattern]:
    shoulders = midpoint(landmarks[P.LEFT_SHOULDER], landmarks[P.RIGHT_SHOULDER])
    # Negative z is towards the camera; only a head ahead of the shoulders counts
    forward = (shoulders.z - landmarks[P.NOSE].z) * 100.0
    if forward <= 0:
        return None
    return _pattern(CompensationType.FORWARD_HEAD, forward)


def detect_lumbar_flexion(landmarks: Sequence[Landmark], angles: Mapping[str, Any], **_: Any) -> Optional[CompensationPattern]:
    flexion = angle_value(angles, "lumbar_flexion")
    if flexion is None or flexion <= 0:
        return None
    return _pattern(CompensationType.LUMBAR_FLEXION, flexion)


_ALL = frozenset(ExerciseCategory)
_C = ExerciseCategory

Detector = Callable[..., Optional[CompensationPattern]]

DETECTORS: Tuple[Tuple[Detector, frozenset], ...] = (
    (detect_trunk_lean, frozenset({_C.LEGS, _C.CORE, _C.GENERAL})),
    (detect_knee_valgus, frozenset({_C.LEGS, _C.GENERAL})),
    (detect_weight_shift, _ALL),
    (detect_shoulder_hike, frozenset({_C.UPPER, _C.GENERAL})),
    (detect_hip_drop, frozenset({_C.BALANCE, _C.GENERAL})),
    (detect_forward_head, _ALL),
    (detect_lumbar_flexion, frozenset({_C.LEGS, _C.CORE, _C.GENERAL})),
)


def detect_compensations(
    landmarks: Any,
    angles: Mapping[str, Any],
    category: ExerciseCategory = ExerciseCategory.GENERAL,
    valgus_scale: Optional[float] = None,
) -> List[CompensationPattern]:
    """Run every detector scoped to ``category``; results are sorted severe first."""
    points = parse_landmarks(landmarks)
    if points is None or len(points) < LANDMARK_COUNT:
        return []
    scale = get_settings().knee_valgus_scale if valgus_scale is None else valgus_scale
    found = []
    for detector, categories in DETECTORS:
        if category not in categories:
            continue
        pattern = detector(points, angles, valgus_scale=scale)
        if pattern is not None:
            found.append(pattern)
    found.sort(key=lambda p: p.severity.rank, reverse=True)
    return found


def get_top_compensations(compensations: Sequence[CompensationPattern], max_count: Optional[int] = None) -> List[CompensationPattern]:
    limit = get_settings().top_compensations if max_count is None else max_count
    ordered = sorted(compensations, key=lambda p: p.severity.rank, reverse=True)
    return ordered[: max(0, limit)]


_CATEGORY_KEYWORDS: Tuple[Tuple[ExerciseCategory, Tuple[str, ...]], ...] = (
    (ExerciseCategory.LEGS, ("squat", "lunge", "deadlift", "leg")),
    (ExerciseCategory.UPPER, ("arm", "shoulder", "push", "press", "row")),
    (ExerciseCategory.CORE, ("plank", "bridge", "core")),
    (ExerciseCategory.BALANCE, ("balance", "single leg", "standing")),
)


def get_exercise_category(name: Optional[str]) -> ExerciseCategory:
    """Keyword classification of a free-text exercise name."""
    text = (name or "").lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(word in text for word in keywords):
            return category
    return ExerciseCategory.GENERAL


class CompensationHistory:
    """Rolling window of per-frame compensation lists."""

    def __init__(self, size: Optional[int] = None) -> None:
        self._frames: Deque[List[CompensationPattern]] = deque(
            maxlen=max(1, int(size or get_settings().compensation_history_size))
        )

    def append(self, compensations: Iterable[CompensationPattern]) -> None:
        self._frames.append(list(compensations))

    def clear(self) -> None:
        self._frames.clear()

    def __len__(self) -> int:
        return len(self._frames)

    def recent(self, frames: Optional[int] = None) -> List[CompensationPattern]:
        """Flattened patterns from the last ``frames`` frames (all kept frames by default)."""
        window = list(self._frames)[-frames:] if frames else list(self._frames)
        return [p for frame in window for p in frame]

    def dominant(self, frames: Optional[int] = None) -> List[CompensationPattern]:
        """Worst observation of each compensation type in the window, severe first."""
        worst: Dict[CompensationType, CompensationPattern] = {}
        for pattern in self.recent(frames):
            current = worst.get(pattern.type)
            if current is None or pattern.severity.rank > current.severity.rank:
                worst[pattern.type] = pattern
        return sorted(worst.values(), key=lambda p: p.severity.rank, reverse=True)
