"""Anatomical plausibility checks for joint angle combinations.

Rules encode coupled-motion and joint-centration constraints; each rule that
fires lowers the validation confidence by a fixed per-severity penalty.
Angle maps here are plain ``{name: degrees}`` dicts, see :func:`clinical_angles`.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from loguru import logger

from biomech.vision.reconstruction import JointAngle, angle_value

Angles = Mapping[str, float]


class ConstraintSeverity(str, Enum):
    IMPOSSIBLE = "impossible"
    HIGHLY_UNLIKELY = "highly_unlikely"
    UNUSUAL = "unusual"


SEVERITY_PENALTY: Dict[ConstraintSeverity, float] = {
    ConstraintSeverity.IMPOSSIBLE: 0.4,
    ConstraintSeverity.HIGHLY_UNLIKELY: 0.2,
    ConstraintSeverity.UNUSUAL: 0.1,
}


@dataclass(frozen=True)
class ConstraintRule:
    id: str
    description: str
    severity: ConstraintSeverity
    affected_joints: Tuple[str, ...]
    check: Callable[[Angles], bool]
    correction: str


@dataclass
class ConstraintViolation:
    type: str
    joints: Tuple[str, ...]
    detected_angles: Dict[str, float]
    description: str
    severity: ConstraintSeverity
    suggested_correction: str

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "joints": list(self.joints),
            "detected_angles": dict(self.detected_angles),
            "description": self.description,
            "severity": self.severity.value,
            "suggested_correction": self.suggested_correction,
        }


@dataclass
class ConstraintValidation:
    is_anatomically_possible: bool
    violations: List[ConstraintViolation] = field(default_factory=list)
    adjusted_angles: Optional[Dict[str, float]] = None
    confidence: float = 1.0

    def to_dict(self) -> dict:
        return {
            "is_anatomically_possible": self.is_anatomically_possible,
            "violations": [v.to_dict() for v in self.violations],
            "adjusted_angles": self.adjusted_angles,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class QuickValidation:
    valid: bool
    issue: Optional[str] = None


def _get(angles: Angles, name: str, default: float) -> float:
    value = angles.get(name)
    return default if value is None else float(value)


def _both(angles: Angles, name: str, default: float, predicate: Callable[[float], bool]) -> bool:
    return predicate(_get(angles, f"left_{name}", default)) and predicate(_get(angles, f"right_{name}", default))


def _either(angles: Angles, name: str, default: float, predicate: Callable[[float], bool]) -> bool:
    return predicate(_get(angles, f"left_{name}", default)) or predicate(_get(angles, f"right_{name}", default))


def _simultaneous_extreme_extension(a: Angles) -> bool:
    return (
        _both(a, "hip_flexion", 180.0, lambda v: v < 10)
        and _both(a, "knee", 0.0, lambda v: v > 175)
        and _both(a, "ankle_dorsiflexion", 0.0, lambda v: v < -40)
    )


def _knee_hyperextension_with_hip_flexion(a: Angles) -> bool:
    return any(
        _get(a, f"{side}_knee", 0.0) > 185 and _get(a, f"{side}_hip_flexion", 0.0) > 100
        for side in ("left", "right")
    )


def _ankle_inversion_with_knee_valgus(a: Angles) -> bool:
    return any(
        _get(a, f"{side}_ankle_inversion", 0.0) > 30 and abs(_get(a, f"{side}_knee_valgus", 0.0)) > 20
        for side in ("left", "right")
    )


def _shoulder_rotation_with_high_abduction(a: Angles) -> bool:
    return any(
        _get(a, f"{side}_shoulder_abduction", 0.0) > 120 and _get(a, f"{side}_shoulder_internal_rotation", 0.0) > 60
        for side in ("left", "right")
    )


def _coupled_motion_violation(a: Angles) -> bool:
    # Only judged when scapular rotation was actually measured
    if "left_scapular_upward_rotation" not in a and "right_scapular_upward_rotation" not in a:
        return False
    high_abduction = _either(a, "shoulder_abduction", 0.0, lambda v: v > 60)
    no_scapular = _both(a, "scapular_upward_rotation", 0.0, lambda v: v < 10)
    return high_abduction and no_scapular


def _lumbar_rotation_with_extreme_flexion(a: Angles) -> bool:
    return _get(a, "lumbar_flexion", 0.0) > 50 and abs(_get(a, "lumbar_rotation", 0.0)) > 30


def _joint_centration_violation(a: Angles) -> bool:
    valgus = _either(a, "knee_valgus", 0.0, lambda v: abs(v) > 25)
    return valgus and abs(_get(a, "trunk_lateral_lean", 0.0)) > 20


JOINT_CONSTRAINT_RULES: Tuple[ConstraintRule, ...] = (
    ConstraintRule(
        "simultaneous_extreme_extension",
        "Full hip, knee and ankle extension on both legs at once",
        ConstraintSeverity.IMPOSSIBLE,
        ("hip", "knee", "ankle"),
        _simultaneous_extreme_extension,
        "Check camera position and lighting; full extension of every joint at once is most likely a detection error.",
    ),
    ConstraintRule(
        "knee_hyperextension_with_hip_flexion",
        "Knee hyperextension with deep hip flexion",
        ConstraintSeverity.IMPOSSIBLE,
        ("knee", "hip"),
        _knee_hyperextension_with_hip_flexion,
        "Check the knee position; hyperextension together with deep hip flexion cannot happen.",
    ),
    ConstraintRule(
        "ankle_inversion_with_knee_valgus",
        "Marked ankle inversion with knee valgus",
        ConstraintSeverity.HIGHLY_UNLIKELY,
        ("ankle", "knee"),
        _ankle_inversion_with_knee_valgus,
        "Check foot and knee position; inversion normally drives the knee into varus, not valgus.",
    ),
    ConstraintRule(
        "shoulder_rotation_with_high_abduction",
        "Shoulder internal rotation above 60 degrees during high abduction",
        ConstraintSeverity.IMPOSSIBLE,
        ("shoulder",),
        _shoulder_rotation_with_high_abduction,
        "Verify the shoulder position; at high abduction the arm should be externally rotated.",
    ),
    ConstraintRule(
        "coupled_motion_violation",
        "Scapulohumeral rhythm broken",
        ConstraintSeverity.UNUSUAL,
        ("shoulder", "scapular"),
        _coupled_motion_violation,
        "Check the shoulder blade; high abduction needs scapular upward rotation.",
    ),
    ConstraintRule(
        "lumbar_rotation_with_extreme_flexion",
        "Lumbar rotation above 30 degrees with extreme flexion",
        ConstraintSeverity.HIGHLY_UNLIKELY,
        ("lumbar",),
        _lumbar_rotation_with_extreme_flexion,
        "Verify the back position; lumbar rotation is limited in deep flexion.",
    ),
    ConstraintRule(
        "joint_centration_violation",
        "Poor joint centration under load",
        ConstraintSeverity.UNUSUAL,
        ("knee", "trunk"),
        _joint_centration_violation,
        "Check the whole body position; extreme valgus with trunk lean suggests misdetection or heavy compensation.",
    ),
)

# Clamp ranges applied when correcting a flagged frame
MAX_ANGLES: Dict[str, Tuple[float, float]] = {
    "left_knee": (0.0, 180.0),
    "right_knee": (0.0, 180.0),
    "left_hip_flexion": (-30.0, 140.0),
    "right_hip_flexion": (-30.0, 140.0),
    "left_shoulder_abduction": (0.0, 180.0),
    "right_shoulder_abduction": (0.0, 180.0),
    "left_shoulder_internal_rotation": (0.0, 70.0),
    "right_shoulder_internal_rotation": (0.0, 70.0),
    "left_shoulder_external_rotation": (0.0, 90.0),
    "right_shoulder_external_rotation": (0.0, 90.0),
    "lumbar_flexion": (0.0, 60.0),
    "lumbar_rotation": (-30.0, 30.0),
    "left_ankle_inversion": (0.0, 35.0),
    "right_ankle_inversion": (0.0, 35.0),
    "left_knee_valgus": (-20.0, 20.0),
    "right_knee_valgus": (-20.0, 20.0),
}


class ConstraintValidator:
    """Stateless validator over a rule set; safe to share between sessions."""

    def __init__(self, rules: Sequence[ConstraintRule] = JOINT_CONSTRAINT_RULES) -> None:
        self.rules = tuple(rules)

    def validate_joint_combination(self, angles: Angles) -> ConstraintValidation:
        violations = [self._violation(rule, angles) for rule in self.rules if rule.check(angles)]
        counts = {sev: sum(1 for v in violations if v.severity is sev) for sev in ConstraintSeverity}
        confidence = 1.0 - sum(SEVERITY_PENALTY[sev] * n for sev, n in counts.items())
        confidence = max(0.0, min(1.0, confidence))
        validation = ConstraintValidation(
            is_anatomically_possible=counts[ConstraintSeverity.IMPOSSIBLE] == 0,
            violations=violations,
            adjusted_angles=self._correct(angles, violations) if violations else None,
            confidence=confidence,
        )
        if violations:
            logger.debug(
                "Constraint violations {} confidence={:.2f}", [v.type for v in violations], confidence
            )
        return validation

    def quick_validate_joints(self, angles: Angles) -> QuickValidation:
        """Cheap per-frame gate: fails fast on any impossible rule."""
        for rule in self.rules:
            if rule.severity is ConstraintSeverity.IMPOSSIBLE and rule.check(angles):
                return QuickValidation(False, rule.description)
        validation = self.validate_joint_combination(angles)
        if not validation.violations or validation.confidence > 0.7:
            return QuickValidation(True)
        return QuickValidation(False, validation.violations[0].description)

    @staticmethod
    def _violation(rule: ConstraintRule, angles: Angles) -> ConstraintViolation:
        detected = {
            key: float(value)
            for key, value in angles.items()
            if any(joint in key for joint in rule.affected_joints)
        }
        return ConstraintViolation(
            type=rule.id,
            joints=rule.affected_joints,
            detected_angles=detected,
            description=rule.description,
            severity=rule.severity,
            suggested_correction=rule.correction,
        )

    @staticmethod
    def _correct(angles: Angles, violations: Sequence[ConstraintViolation]) -> Dict[str, float]:
        corrected = {key: float(value) for key, value in angles.items()}
        for key, (low, high) in MAX_ANGLES.items():
            if key in corrected:
                corrected[key] = max(low, min(high, corrected[key]))
        fired = {v.type for v in violations}
        if "shoulder_rotation_with_high_abduction" in fired:
            for side in ("left", "right"):
                if corrected.get(f"{side}_shoulder_abduction", 0.0) > 120:
                    key = f"{side}_shoulder_internal_rotation"
                    corrected[key] = min(corrected.get(key, 0.0), 30.0)
        if "lumbar_rotation_with_extreme_flexion" in fired and corrected.get("lumbar_flexion", 0.0) > 50:
            corrected["lumbar_rotation"] = max(-15.0, min(15.0, corrected.get("lumbar_rotation", 0.0)))
        return corrected


def clinical_angles(joint_angles: Mapping[str, object]) -> Dict[str, float]:
    """Flatten reconstructed angles and derive the clinical measures the rules use.

    Hip flexion is 180 minus the shoulder-hip-knee angle, ankle dorsiflexion is
    90 minus the knee-ankle-toe angle, internal rotation is the negative part of
    shoulder rotation and ankle inversion the positive part of inversion/eversion.
    Without a measured lumbar rotation the thoracic rotation stands in for it.
    """
    values: Dict[str, float] = {}
    for name in joint_angles:
        value = angle_value(joint_angles, name)
        if value is not None:
            values[name] = value
    for side in ("left", "right"):
        hip = values.get(f"{side}_hip")
        if hip is not None:
            values[f"{side}_hip_flexion"] = 180.0 - hip
        ankle = values.get(f"{side}_ankle")
        if ankle is not None:
            values[f"{side}_ankle_dorsiflexion"] = 90.0 - ankle
        rotation = values.get(f"{side}_shoulder_rotation")
        if rotation is not None:
            values[f"{side}_shoulder_internal_rotation"] = max(0.0, -rotation)
            values[f"{side}_shoulder_external_rotation"] = max(0.0, rotation)
        inversion = values.get(f"{side}_ankle_inversion")
        if inversion is not None:
            values[f"{side}_ankle_inversion"] = max(0.0, inversion)
    if "lumbar_rotation" not in values and "thoracic_rotation" in values:
        values["lumbar_rotation"] = values["thoracic_rotation"]
    return values


def apply_corrections(
    joint_angles: Mapping[str, Any],
    clinical: Mapping[str, float],
    adjusted: Optional[Mapping[str, float]],
    confidence: float = 1.0,
) -> Dict[str, Any]:
    """Write corrected clinical values back onto reconstructed angles.

    Only values the correction actually changed are mapped back; derived
    measures are converted to their source angle (hip flexion to the hip
    angle, internal/external rotation to signed shoulder rotation).
    Confidence of every :class:`JointAngle` is scaled by ``confidence``;
    plain float maps are corrected in place of their values.
    """
    out: Dict[str, Any] = dict(joint_angles)
    for key, value in (adjusted or {}).items():
        if key not in clinical or abs(clinical[key] - value) < 1e-9:
            continue
        if key.endswith("_hip_flexion"):
            target, raw = key[: -len("_flexion")], 180.0 - value
        elif key.endswith("_shoulder_internal_rotation"):
            target, raw = key.replace("_internal_rotation", "_rotation"), -value
        elif key.endswith("_shoulder_external_rotation"):
            target, raw = key.replace("_external_rotation", "_rotation"), value
        elif key == "lumbar_rotation" and key not in out:
            target, raw = "thoracic_rotation", value
        else:
            target, raw = key, value
        joint = out.get(target)
        if isinstance(joint, JointAngle):
            out[target] = replace(joint, angle=raw)
        elif joint is not None:
            out[target] = raw
    if confidence < 1.0:
        scale = max(0.0, confidence)
        out = {
            name: replace(joint, confidence=joint.confidence * scale) if isinstance(joint, JointAngle) else joint
            for name, joint in out.items()
        }
    return out


# --- Range-of-motion limits ---------------------------------------------


@dataclass(frozen=True)
class RomLimit:
    max: float
    warning: float
    hypermobility: float


ANATOMICAL_ROM_LIMITS: Dict[str, RomLimit] = {
    "elbow_flexion": RomLimit(150, 145, 160),
    "elbow_extension": RomLimit(10, 5, 15),
    "shoulder_flexion": RomLimit(180, 170, 190),
    "shoulder_extension": RomLimit(60, 55, 70),
    "shoulder_abduction": RomLimit(180, 170, 190),
    "shoulder_adduction": RomLimit(50, 45, 60),
    "shoulder_internal_rotation": RomLimit(70, 65, 85),
    "shoulder_external_rotation": RomLimit(90, 85, 100),
    "hip_flexion": RomLimit(130, 120, 145),
    "hip_extension": RomLimit(30, 25, 40),
    "hip_abduction": RomLimit(45, 40, 55),
    "hip_adduction": RomLimit(30, 25, 40),
    "knee_flexion": RomLimit(140, 135, 155),
    "knee_extension": RomLimit(10, 5, 15),
    "ankle_dorsiflexion": RomLimit(25, 20, 30),
    "ankle_plantarflexion": RomLimit(50, 45, 60),
    "ankle_inversion": RomLimit(35, 30, 45),
    "ankle_eversion": RomLimit(20, 15, 25),
    "lumbar_flexion": RomLimit(60, 55, 75),
    "lumbar_extension": RomLimit(25, 20, 35),
    "lumbar_rotation": RomLimit(10, 8, 15),
    "thoracic_rotation": RomLimit(35, 30, 45),
    "cervical_rotation": RomLimit(80, 75, 90),
}


@dataclass(frozen=True)
class RomCheck:
    movement: str
    angle: float
    valid: bool
    severity: Optional[str] = None
    warning: Optional[str] = None
    corrected_angle: Optional[float] = None


def validate_joint_angle(movement: str, angle: float) -> RomCheck:
    """Compare a clinical angle against the movement's normal range."""
    limits = ANATOMICAL_ROM_LIMITS.get(movement)
    if limits is None:
        return RomCheck(movement, angle, True)
    magnitude = abs(angle)
    if magnitude > limits.hypermobility:
        return RomCheck(
            movement, angle, False, "severe",
            f"{movement} suggests hypermobility ({magnitude:.1f} > {limits.hypermobility:g})", limits.max,
        )
    if magnitude > limits.max:
        return RomCheck(
            movement, angle, False, "moderate",
            f"{movement} exceeds the anatomical limit ({magnitude:.1f} > {limits.max:g})", limits.max,
        )
    if magnitude > limits.warning:
        return RomCheck(movement, angle, True, "mild", f"{movement} near end range ({magnitude:.1f})")
    return RomCheck(movement, angle, True)


# Clinical angle name -> ROM movement
_ROM_MOVEMENTS = {
    "hip_flexion": "hip_flexion",
    "ankle_dorsiflexion": "ankle_dorsiflexion",
    "shoulder_abduction": "shoulder_abduction",
    "shoulder_internal_rotation": "shoulder_internal_rotation",
    "shoulder_external_rotation": "shoulder_external_rotation",
    "ankle_inversion": "ankle_inversion",
    "lumbar_flexion": "lumbar_flexion",
    "thoracic_rotation": "thoracic_rotation",
}


def validate_rom(angles: Angles) -> List[RomCheck]:
    """ROM checks for every clinical angle that has a known limit; only flagged results are returned."""
    results = []
    for name, value in angles.items():
        movement = _ROM_MOVEMENTS.get(name.replace("left_", "").replace("right_", ""))
        if movement is None:
            continue
        if movement == "ankle_dorsiflexion" and value < 0:
            movement = "ankle_plantarflexion"
        check = validate_joint_angle(movement, float(value))
        if check.severity is not None:
            results.append(check)
    return results
