"""Vision package exports."""

from .calibration import CalibrationProfile, Calibrator, RepThresholds, ThresholdCalculator, default_profile
from .compensation import CompensationHistory, CompensationPattern, detect_compensations, get_exercise_category
from .constraints import ConstraintValidation, ConstraintValidator
from .kinetic_chain import KineticChainAnalysis, analyze_kinetic_chain, analyze_kinetic_chain_with_validation
from .reconstruction import JointAngle, PoseReconstructor
from .scoring import RepScore, RepScorer
from .session import FrameAnalysis, MovementSession, SessionRegistry

__all__ = [
    "CalibrationProfile",
    "Calibrator",
    "RepThresholds",
    "ThresholdCalculator",
    "default_profile",
    "PoseReconstructor",
    "JointAngle",
    "ConstraintValidator",
    "ConstraintValidation",
    "CompensationPattern",
    "CompensationHistory",
    "detect_compensations",
    "get_exercise_category",
    "RepScorer",
    "RepScore",
    "KineticChainAnalysis",
    "analyze_kinetic_chain",
    "analyze_kinetic_chain_with_validation",
    "MovementSession",
    "SessionRegistry",
    "FrameAnalysis",
]
