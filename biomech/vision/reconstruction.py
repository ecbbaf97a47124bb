"""Plane-aware joint angle reconstruction with temporal smoothing."""
from __future__ import annotations

import math
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Deque, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from biomech.core.config import get_settings
from biomech.vision.calibration import CalibrationProfile, default_profile
from biomech.vision.landmarks import (
    Landmark,
    PoseLandmark as P,
    angle_between,
    midpoint,
    min_visibility,
    parse_landmarks,
)
from biomech.vision.models import Plane, Side


@dataclass(frozen=True)
class JointAngle:
    name: str
    angle: float
    confidence: float
    plane: Plane

    def to_dict(self) -> dict:
        data = asdict(self)
        data["plane"] = self.plane.value
        return data


# Three-point angles: name -> (a, vertex, c, plane)
THREE_POINT_JOINTS: Dict[str, Tuple[P, P, P, Plane]] = {
    "left_elbow": (P.LEFT_SHOULDER, P.LEFT_ELBOW, P.LEFT_WRIST, Plane.SAGITTAL),
    "right_elbow": (P.RIGHT_SHOULDER, P.RIGHT_ELBOW, P.RIGHT_WRIST, Plane.SAGITTAL),
    "left_shoulder_flexion": (P.LEFT_HIP, P.LEFT_SHOULDER, P.LEFT_ELBOW, Plane.SAGITTAL),
    "right_shoulder_flexion": (P.RIGHT_HIP, P.RIGHT_SHOULDER, P.RIGHT_ELBOW, Plane.SAGITTAL),
    "left_hip": (P.LEFT_SHOULDER, P.LEFT_HIP, P.LEFT_KNEE, Plane.SAGITTAL),
    "right_hip": (P.RIGHT_SHOULDER, P.RIGHT_HIP, P.RIGHT_KNEE, Plane.SAGITTAL),
    "left_knee": (P.LEFT_HIP, P.LEFT_KNEE, P.LEFT_ANKLE, Plane.SAGITTAL),
    "right_knee": (P.RIGHT_HIP, P.RIGHT_KNEE, P.RIGHT_ANKLE, Plane.SAGITTAL),
    "left_ankle": (P.LEFT_KNEE, P.LEFT_ANKLE, P.LEFT_FOOT_INDEX, Plane.SAGITTAL),
    "right_ankle": (P.RIGHT_KNEE, P.RIGHT_ANKLE, P.RIGHT_FOOT_INDEX, Plane.SAGITTAL),
}

SYMMETRY_PAIRS: Tuple[Tuple[str, str], ...] = (
    ("left_elbow", "right_elbow"),
    ("left_shoulder_flexion", "right_shoulder_flexion"),
    ("left_hip", "right_hip"),
    ("left_knee", "right_knee"),
    ("left_ankle", "right_ankle"),
)

_SIDE_INDICES = {
    Side.LEFT: {
        "shoulder": P.LEFT_SHOULDER, "elbow": P.LEFT_ELBOW, "wrist": P.LEFT_WRIST, "hip": P.LEFT_HIP,
        "knee": P.LEFT_KNEE, "ankle": P.LEFT_ANKLE, "heel": P.LEFT_HEEL, "foot": P.LEFT_FOOT_INDEX,
    },
    Side.RIGHT: {
        "shoulder": P.RIGHT_SHOULDER, "elbow": P.RIGHT_ELBOW, "wrist": P.RIGHT_WRIST, "hip": P.RIGHT_HIP,
        "knee": P.RIGHT_KNEE, "ankle": P.RIGHT_ANKLE, "heel": P.RIGHT_HEEL, "foot": P.RIGHT_FOOT_INDEX,
    },
}

# Approximate knee width as a fraction of standing height, used to turn offsets into millimetres
KNEE_WIDTH_RATIO = 0.059
VALGUS_LIMIT = 30.0
Q_ANGLE_BOOST_THRESHOLD = 15.0
Q_ANGLE_BOOST = 1.2


def angle_value(angles: Mapping[str, Any], name: str) -> Optional[float]:
    """Plain float for ``name`` whether the map holds JointAngle objects or numbers."""
    value = angles.get(name)
    if value is None:
        return None
    if isinstance(value, JointAngle):
        return value.angle
    return float(value)


def calculate_symmetry(angles: Mapping[str, Any]) -> float:
    """Left/right symmetry 0-100 averaged over the canonical joint pairs.

    A pair scores 100 when identical and 0 at a difference of 30 degrees or more.
    Returns 100 when no pair is present.
    """
    scores = []
    for left, right in SYMMETRY_PAIRS:
        lv, rv = angle_value(angles, left), angle_value(angles, right)
        if lv is None or rv is None:
            continue
        diff = abs(lv - rv)
        scores.append(max(0.0, 100.0 - (diff / 30.0) * 100.0))
    if not scores:
        return 100.0
    return float(sum(scores) / len(scores))


class PoseReconstructor:
    """Turns landmark frames into smoothed joint angles.

    Holds per-joint smoothing buffers, so one instance belongs to one session.
    """

    def __init__(
        self,
        calibration: Optional[CalibrationProfile] = None,
        smoothing_window: Optional[int] = None,
        valgus_scale: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.calibration = calibration or default_profile()
        self.smoothing_window = max(1, int(smoothing_window or settings.smoothing_window))
        self.valgus_scale = float(settings.knee_valgus_scale if valgus_scale is None else valgus_scale)
        self._history: Dict[str, Deque[float]] = {}
        self._previous: Dict[str, Tuple[float, float]] = {}

    def set_calibration(self, profile: Optional[CalibrationProfile]) -> None:
        self.calibration = profile or default_profile()

    # --- Public API -----------------------------------------------------

    def calculate_joint_angles(self, landmarks: Any) -> Dict[str, JointAngle]:
        """Smoothed joint angles for one frame; empty when the frame is unusable."""
        points = parse_landmarks(landmarks)
        if points is None:
            logger.debug("Skipping frame: fewer than 33 landmarks")
            return {}
        if not self._is_plausible(points):
            logger.debug("Skipping frame: pose failed sanity check")
            return {}

        angles: Dict[str, JointAngle] = {}
        for name, (a, b, c, plane) in THREE_POINT_JOINTS.items():
            raw = angle_between(points[a], points[b], points[c])
            angles[name] = self._joint(name, raw, min_visibility(points, (a, b, c)), plane)

        for side in (Side.LEFT, Side.RIGHT):
            idx = _SIDE_INDICES[side]
            name = f"{side.value}_shoulder_abduction"
            conf = min_visibility(points, (idx["shoulder"], idx["elbow"], idx["hip"]))
            angles[name] = self._joint(name, self._shoulder_abduction(points, side), conf, Plane.FRONTAL)

        conf = min_visibility(points, (P.LEFT_SHOULDER, P.RIGHT_SHOULDER, P.LEFT_HIP, P.RIGHT_HIP))
        angles["trunk_lean"] = self._joint("trunk_lean", self._trunk_lean(points), conf, Plane.SAGITTAL)

        for side in (Side.LEFT, Side.RIGHT):
            idx = _SIDE_INDICES[side]
            name = f"{side.value}_knee_valgus"
            conf = min_visibility(points, (idx["hip"], idx["knee"], idx["ankle"]))
            angles[name] = self._joint(name, self._knee_valgus(points, side), conf, Plane.FRONTAL)
        return angles

    def calculate_joint_angles_extended(self, landmarks: Any) -> Dict[str, JointAngle]:
        """Core angles plus ankle inversion/eversion, shoulder rotation, lumbar flexion and thoracic rotation."""
        angles = self.calculate_joint_angles(landmarks)
        if not angles:
            return angles
        points = parse_landmarks(landmarks)
        assert points is not None
        for side in (Side.LEFT, Side.RIGHT):
            idx = _SIDE_INDICES[side]
            name = f"{side.value}_ankle_inversion"
            conf = min_visibility(points, (idx["heel"], idx["foot"], idx["ankle"]))
            angles[name] = self._joint(name, self._ankle_inversion(points, side), conf, Plane.FRONTAL)

            name = f"{side.value}_shoulder_rotation"
            conf = min_visibility(points, (idx["shoulder"], idx["elbow"], idx["wrist"]))
            angles[name] = self._joint(name, self._shoulder_rotation(points, side), conf, Plane.TRANSVERSE)

        trunk = (P.LEFT_SHOULDER, P.RIGHT_SHOULDER, P.LEFT_HIP, P.RIGHT_HIP)
        angles["lumbar_flexion"] = self._joint(
            "lumbar_flexion", self._lumbar_flexion(points), min_visibility(points, trunk), Plane.SAGITTAL
        )
        angles["thoracic_rotation"] = self._joint(
            "thoracic_rotation", self._thoracic_rotation(points), min_visibility(points, trunk), Plane.TRANSVERSE
        )
        return angles

    def calculate_symmetry(self, angles: Mapping[str, Any]) -> float:
        return calculate_symmetry(angles)

    def q_angle(self, landmarks: Sequence[Landmark], side: Side) -> float:
        """Approximate frontal-plane Q-angle (degrees) for one leg."""
        idx = _SIDE_INDICES[side]
        hip, knee, ankle = landmarks[idx["hip"]], landmarks[idx["knee"]], landmarks[idx["ankle"]]
        # ASIS sits slightly above and in front of the hip landmark
        asis_x, asis_y = hip.x, hip.y - 0.03
        tibial_x = knee.x + (ankle.x - knee.x) * 0.1
        tibial_y = knee.y + (ankle.y - knee.y) * 0.1
        quad = math.atan2(knee.y - asis_y, knee.x - asis_x)
        patellar = math.atan2(tibial_y - knee.y, tibial_x - knee.x)
        q = abs(quad - patellar) * 180.0 / math.pi
        return 360.0 - q if q > 180.0 else q

    def calculate_angular_velocity(self, name: str, angle: float, timestamp: float) -> float:
        """Degrees per second since the previous sample of ``name`` (0 for the first sample)."""
        previous = self._previous.get(name)
        self._previous[name] = (angle, timestamp)
        if previous is None:
            return 0.0
        dt = timestamp - previous[1]
        if dt < 0.001:
            return 0.0
        return (angle - previous[0]) / dt

    def joint_velocities(self, angles: Mapping[str, JointAngle], timestamp: float) -> Dict[str, float]:
        return {name: self.calculate_angular_velocity(name, ja.angle, timestamp) for name, ja in angles.items()}

    def reset_smoothing(self) -> None:
        self._history.clear()

    def reset_velocity_tracking(self) -> None:
        self._previous.clear()

    # --- Internal helpers -----------------------------------------------

    def _joint(self, name: str, raw: float, confidence: float, plane: Plane) -> JointAngle:
        return JointAngle(name, self._smooth(name, raw), min(1.0, max(0.0, confidence)), plane)

    def _smooth(self, name: str, value: float) -> float:
        buf = self._history.get(name)
        if buf is None:
            buf = deque(maxlen=self.smoothing_window)
            self._history[name] = buf
        buf.append(float(value))
        weights = np.arange(1, len(buf) + 1, dtype=float)
        return float(np.dot(weights, np.asarray(buf, dtype=float)) / weights.sum())

    @staticmethod
    def _is_plausible(points: Sequence[Landmark]) -> bool:
        ls, rs = points[P.LEFT_SHOULDER], points[P.RIGHT_SHOULDER]
        lh, rh = points[P.LEFT_HIP], points[P.RIGHT_HIP]
        if abs(rs.x - ls.x) < 0.05:
            return False
        # Image y grows downwards
        return (lh.y + rh.y) / 2.0 >= (ls.y + rs.y) / 2.0

    @staticmethod
    def _shoulder_abduction(points: Sequence[Landmark], side: Side) -> float:
        idx = _SIDE_INDICES[side]
        shoulder, elbow, hip = points[idx["shoulder"]], points[idx["elbow"]], points[idx["hip"]]
        arm = math.atan2(elbow.y - shoulder.y, elbow.x - shoulder.x)
        torso = math.atan2(hip.y - shoulder.y, hip.x - shoulder.x)
        deg = math.degrees(arm - torso) % 360.0
        if side is Side.RIGHT:
            deg = 360.0 - deg
        if deg > 180.0:
            deg = 360.0 - deg
        return max(0.0, min(180.0, deg))

    @staticmethod
    def _trunk_lean(points: Sequence[Landmark]) -> float:
        shoulders = midpoint(points[P.LEFT_SHOULDER], points[P.RIGHT_SHOULDER]).vec
        hips = midpoint(points[P.LEFT_HIP], points[P.RIGHT_HIP]).vec
        trunk = shoulders - hips
        norm = np.linalg.norm(trunk)
        if norm == 0:
            return 0.0
        cos = np.clip(np.dot(trunk / norm, np.array([0.0, -1.0, 0.0])), -1.0, 1.0)
        return math.degrees(math.acos(cos))

    def _knee_valgus(self, points: Sequence[Landmark], side: Side) -> float:
        """Signed frontal-plane knee pseudo-angle; negative is valgus, positive varus."""
        idx = _SIDE_INDICES[side]
        hip, knee, ankle = points[idx["hip"]].vec, points[idx["knee"]].vec, points[idx["ankle"]].vec
        line = ankle - hip
        length_sq = float(np.dot(line, line))
        deviation_mm = 0.0
        if length_sq > 1e-4:
            t = float(np.dot(knee - hip, line)) / length_sq
            projected = hip + line * t
            knee_width = self.calibration.standing_height * KNEE_WIDTH_RATIO
            deviation_mm = (knee[0] - projected[0]) * knee_width * 1000.0
        sign = 1.0 if side is Side.LEFT else -1.0
        valgus = deviation_mm * sign * self.valgus_scale
        if self.q_angle(points, side) > Q_ANGLE_BOOST_THRESHOLD:
            valgus *= Q_ANGLE_BOOST
        return max(-VALGUS_LIMIT, min(VALGUS_LIMIT, valgus))

    @staticmethod
    def _ankle_inversion(points: Sequence[Landmark], side: Side) -> float:
        idx = _SIDE_INDICES[side]
        heel, foot = points[idx["heel"]], points[idx["foot"]]
        lateral = foot.x - heel.x if side is Side.LEFT else heel.x - foot.x
        length = float(np.linalg.norm(foot.vec - heel.vec))
        angle = 0.0
        if length > 0.01:
            angle = math.degrees(math.asin(max(-1.0, min(1.0, lateral / length))))
        return max(-25.0, min(35.0, angle))

    @staticmethod
    def _shoulder_rotation(points: Sequence[Landmark], side: Side) -> float:
        """Forearm rotation about the upper arm; negative is internal rotation."""
        idx = _SIDE_INDICES[side]
        shoulder, elbow, wrist = points[idx["shoulder"]].vec, points[idx["elbow"]].vec, points[idx["wrist"]].vec
        upper = elbow - shoulder
        upper_len = np.linalg.norm(upper)
        if upper_len < 1e-6:
            return 0.0
        axis = upper / upper_len
        forearm = wrist - elbow
        forearm_p = forearm - axis * np.dot(forearm, axis)
        vertical = np.array([0.0, 1.0, 0.0])
        vertical_p = vertical - axis * np.dot(vertical, axis)
        f_norm = np.linalg.norm(forearm_p)
        v_norm = np.linalg.norm(vertical_p)
        f_dir = forearm_p / f_norm if f_norm > 1e-3 else np.array([0.0, 0.0, 1.0])
        v_dir = vertical_p / v_norm if v_norm > 1e-3 else vertical
        rotation = math.degrees(math.acos(float(np.clip(np.dot(f_dir, v_dir), -1.0, 1.0))))
        positive = float(np.dot(np.cross(f_dir, v_dir), axis)) > 0
        if side is Side.LEFT:
            rotation = -rotation if positive else rotation
        else:
            rotation = rotation if positive else -rotation
        return max(-70.0, min(90.0, rotation))

    @staticmethod
    def _lumbar_flexion(points: Sequence[Landmark]) -> float:
        shoulders = midpoint(points[P.LEFT_SHOULDER], points[P.RIGHT_SHOULDER])
        hips = midpoint(points[P.LEFT_HIP], points[P.RIGHT_HIP])
        # Thoracolumbar junction sits ~40% of the way from hips to shoulders
        dx = (shoulders.x - hips.x) * 0.4
        dy = (shoulders.y - hips.y) * 0.4
        flexion = math.degrees(math.atan2(dx, -dy))
        return max(-25.0, min(60.0, flexion))

    @staticmethod
    def _thoracic_rotation(points: Sequence[Landmark]) -> float:
        ls, rs = points[P.LEFT_SHOULDER], points[P.RIGHT_SHOULDER]
        lh, rh = points[P.LEFT_HIP], points[P.RIGHT_HIP]
        shoulder_line = math.atan2(rs.z - ls.z, rs.x - ls.x)
        hip_line = math.atan2(rh.z - lh.z, rh.x - lh.x)
        rotation = (shoulder_line - hip_line + math.pi) % (2 * math.pi) - math.pi
        return max(-45.0, min(45.0, math.degrees(rotation)))
