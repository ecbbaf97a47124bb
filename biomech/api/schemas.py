"""Pydantic schemas for request/response payloads.

All endpoints use a standardized JSON envelope: {"success": bool, "data": any, "error": str|None}
"""
from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from biomech.vision.models import CompensationType, Severity, Side


class Envelope(BaseModel):
    success: bool = True
    data: Optional[dict] = None
    error: Optional[str] = None


class LandmarkInput(BaseModel):
    x: float
    y: float
    z: float = 0.0
    visibility: float = Field(ge=0.0, le=1.0, default=1.0)


class SessionCreateInput(BaseModel):
    exercise: str = "squat"
    calibrate: bool = False


class FrameInput(BaseModel):
    # Fewer than 33 landmarks is accepted and reported as insufficient data
    landmarks: List[LandmarkInput] = Field(default_factory=list)
    timestamp: Optional[float] = None


class ExerciseInput(BaseModel):
    exercise: str


class CalibrationProfileInput(BaseModel):
    standing_height: float = Field(gt=0.0)
    shoulder_width: float = Field(gt=0.0)
    arm_length: float = Field(gt=0.0)
    leg_length: float = Field(gt=0.0)
    neutral_joint_angles: Dict[str, float] = Field(default_factory=dict)
    captured_at: Optional[str] = None


class CalibrationInput(BaseModel):
    action: Literal["start", "cancel", "reset", "load"] = "start"
    profile: Optional[CalibrationProfileInput] = None


class AnglesInput(BaseModel):
    angles: Dict[str, float] = Field(default_factory=dict)


class CompensationInput(BaseModel):
    type: CompensationType
    severity: Severity
    value: Optional[float] = None
    side: Optional[Side] = None


class KineticChainInput(BaseModel):
    compensations: List[CompensationInput] = Field(default_factory=list)
    angles: Dict[str, float] = Field(default_factory=dict)
    validate_angles: bool = False
