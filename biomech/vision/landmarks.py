"""Body landmark model and geometry helpers.

Landmarks arrive in normalized image space (x right, y down, z towards the
camera is negative) with a visibility confidence per point.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Iterable, List, Optional, Sequence

import numpy as np

LANDMARK_COUNT = 33


class PoseLandmark(IntEnum):
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


# Shoulders, hips and knees must be visible for calibration
KEY_JOINTS = (
    PoseLandmark.LEFT_SHOULDER,
    PoseLandmark.RIGHT_SHOULDER,
    PoseLandmark.LEFT_HIP,
    PoseLandmark.RIGHT_HIP,
    PoseLandmark.LEFT_KNEE,
    PoseLandmark.RIGHT_KNEE,
)


@dataclass(frozen=True)
class Landmark:
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0

    @property
    def vec(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=float)

    @classmethod
    def from_any(cls, raw: Any) -> "Landmark":
        """Build a landmark from a dict, a (x, y, z[, visibility]) sequence or an object with attributes."""
        if isinstance(raw, Landmark):
            return raw
        if isinstance(raw, dict):
            x, y = raw["x"], raw["y"]
            z = raw.get("z", 0.0)
            vis = raw.get("visibility", 1.0)
        elif isinstance(raw, (list, tuple)):
            x, y = raw[0], raw[1]
            z = raw[2] if len(raw) > 2 else 0.0
            vis = raw[3] if len(raw) > 3 else 1.0
        else:
            x, y = raw.x, raw.y
            z = getattr(raw, "z", 0.0)
            vis = getattr(raw, "visibility", 1.0)
        vis = 1.0 if vis is None else float(vis)
        return cls(float(x), float(y), float(z or 0.0), min(1.0, max(0.0, vis)))


def parse_landmarks(raw: Optional[Iterable[Any]]) -> Optional[List[Landmark]]:
    """Normalize a landmark frame; returns None when fewer than 33 points are supplied."""
    if raw is None:
        return None
    points = [Landmark.from_any(item) for item in raw]
    if len(points) < LANDMARK_COUNT:
        return None
    return points


def midpoint(a: Landmark, b: Landmark) -> Landmark:
    return Landmark(
        (a.x + b.x) / 2.0,
        (a.y + b.y) / 2.0,
        (a.z + b.z) / 2.0,
        min(a.visibility, b.visibility),
    )


def distance_2d(a: Landmark, b: Landmark) -> float:
    return float(math.hypot(a.x - b.x, a.y - b.y))


def distance_3d(a: Landmark, b: Landmark) -> float:
    return float(np.linalg.norm(a.vec - b.vec))


def angle_between(a: Landmark, b: Landmark, c: Landmark) -> float:
    """Angle at ``b`` (degrees) formed by the segments b->a and b->c."""
    v1 = a.vec - b.vec
    v2 = c.vec - b.vec
    norm = np.linalg.norm(v1) * np.linalg.norm(v2)
    if norm == 0:
        return 0.0
    cos = np.clip(np.dot(v1, v2) / norm, -1.0, 1.0)
    return math.degrees(math.acos(cos))


def angle_from_vertical(lower: Landmark, upper: Landmark) -> float:
    """Inclination (degrees) of the lower->upper segment from vertical in the image plane."""
    dx = upper.x - lower.x
    dy = upper.y - lower.y
    return math.degrees(math.atan2(abs(dx), abs(dy) + 1e-6))


def min_visibility(landmarks: Sequence[Landmark], indices: Iterable[int]) -> float:
    return float(min(landmarks[int(i)].visibility for i in indices))
