from __future__ import annotations

from typing import Dict, Optional, Tuple

import pytest

from biomech.vision.landmarks import LANDMARK_COUNT, PoseLandmark as P

# Upright, front-facing subject; the subject's left is at larger image x
STANDING: Dict[int, Tuple[float, float, float]] = {
    P.NOSE: (0.50, 0.15, 0.0),
    P.LEFT_EAR: (0.54, 0.16, 0.0),
    P.RIGHT_EAR: (0.46, 0.16, 0.0),
    P.LEFT_SHOULDER: (0.60, 0.30, 0.0),
    P.RIGHT_SHOULDER: (0.40, 0.30, 0.0),
    P.LEFT_ELBOW: (0.62, 0.45, 0.0),
    P.RIGHT_ELBOW: (0.38, 0.45, 0.0),
    P.LEFT_WRIST: (0.63, 0.58, 0.0),
    P.RIGHT_WRIST: (0.37, 0.58, 0.0),
    P.LEFT_HIP: (0.56, 0.60, 0.0),
    P.RIGHT_HIP: (0.44, 0.60, 0.0),
    P.LEFT_KNEE: (0.56, 0.75, 0.0),
    P.RIGHT_KNEE: (0.44, 0.75, 0.0),
    P.LEFT_ANKLE: (0.56, 0.90, 0.0),
    P.RIGHT_ANKLE: (0.44, 0.90, 0.0),
    P.LEFT_HEEL: (0.56, 0.91, 0.02),
    P.RIGHT_HEEL: (0.44, 0.91, 0.02),
    P.LEFT_FOOT_INDEX: (0.56, 0.90, -0.08),
    P.RIGHT_FOOT_INDEX: (0.44, 0.90, -0.08),
}

# Up on the toes: foot points down and away from the shin
TIPTOE = {
    P.LEFT_FOOT_INDEX: (0.56, 0.96, -0.05),
    P.RIGHT_FOOT_INDEX: (0.44, 0.96, -0.05),
}


def build_pose(
    overrides: Optional[Dict[int, Tuple[float, float, float]]] = None,
    visibility: float = 0.95,
    visibility_overrides: Optional[Dict[int, float]] = None,
) -> list[dict]:
    """33 landmark dicts; unlisted points sit at the nose."""
    coords = dict(STANDING)
    coords.update(overrides or {})
    vis = visibility_overrides or {}
    frame = []
    for idx in range(LANDMARK_COUNT):
        x, y, z = coords.get(idx, STANDING[P.NOSE])
        frame.append({"x": x, "y": y, "z": z, "visibility": vis.get(idx, visibility)})
    return frame


@pytest.fixture
def pose():
    return build_pose


@pytest.fixture
def standing_pose():
    return build_pose()


@pytest.fixture
def tiptoe_pose():
    return build_pose(TIPTOE)
