"""Repetition state machine and rep quality scoring.

A rep moves START -> ECCENTRIC -> TURN -> CONCENTRIC -> START. Transitions are
driven by the averaged primary-joint angle against calibration-adjusted
thresholds and only commit after ``confirm_frames`` consecutive frames agree.
Timestamps are seconds supplied by the caller.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from biomech.core.config import get_settings
from biomech.vision.calibration import CalibrationProfile, RepThresholds, ThresholdCalculator
from biomech.vision.compensation import CompensationPattern
from biomech.vision.exercises import resolve_exercise
from biomech.vision.messages import MessageKind, MessagePicker
from biomech.vision.models import CompensationType, FeedbackPriority, RepPhase, Severity
from biomech.vision.reconstruction import JointAngle, angle_value

# Rep validity window
MIN_ROM_RATIO = 0.5
MIN_REP_SECONDS = 0.5
MAX_REP_SECONDS = 10.0

# Phase tempo guidelines, seconds
ECCENTRIC_MIN, ECCENTRIC_OPTIMAL, ECCENTRIC_MAX = 1.5, 2.5, 5.0
CONCENTRIC_MIN = 1.0
RATIO_MIN, RATIO_OPTIMAL, RATIO_MAX = 1.5, 2.0, 4.0


class IssueType(str, Enum):
    VALGUS = "valgus"
    ASYMMETRY = "asymmetry"
    ALIGNMENT = "alignment"
    DEPTH = "depth"
    TEMPO = "tempo"
    COMPENSATION = "compensation"
    INCOMPLETE = "incomplete"


class IssueSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class FormIssue:
    joint: str
    issue: IssueType
    severity: IssueSeverity
    message: str

    def to_dict(self) -> dict:
        return {"joint": self.joint, "issue": self.issue.value, "severity": self.severity.value, "message": self.message}


@dataclass(frozen=True)
class ScoreBreakdown:
    rom: float = 0.0
    tempo: float = 0.0
    symmetry: float = 0.0
    stability: float = 0.0
    depth: float = 0.0


@dataclass(frozen=True)
class RepScore:
    overall: float
    breakdown: ScoreBreakdown
    issues: Tuple[FormIssue, ...]
    timestamp: float
    duration: float = 0.0
    rom: float = 0.0
    valid: bool = True

    def to_dict(self) -> dict:
        return {
            "overall": round(self.overall, 1),
            "breakdown": {k: round(v, 1) for k, v in asdict(self.breakdown).items()},
            "issues": [i.to_dict() for i in self.issues],
            "timestamp": self.timestamp,
            "duration": round(self.duration, 3),
            "rom": round(self.rom, 1),
            "valid": self.valid,
        }


@dataclass(frozen=True)
class FeedbackItem:
    text: str
    priority: FeedbackPriority
    timestamp: float

    def to_dict(self) -> dict:
        return {"text": self.text, "priority": self.priority.value, "timestamp": self.timestamp}


@dataclass(frozen=True)
class PhaseTiming:
    eccentric: float
    concentric: float
    pause_at_bottom: float
    ratio: float
    quality: str
    feedback: str


@dataclass
class RepState:
    phase: RepPhase
    start_time: float
    min_angle: float
    max_angle: float
    eccentric_start: Optional[float] = None
    turn_time: Optional[float] = None
    concentric_start: Optional[float] = None
    end_time: Optional[float] = None
    angle_history: List[float] = field(default_factory=list)
    symmetry_history: List[float] = field(default_factory=list)
    issues: List[FormIssue] = field(default_factory=list)
    pending_phase: Optional[RepPhase] = None
    confirmations: int = 0


_COMPENSATION_ISSUES: Dict[CompensationType, Tuple[str, IssueType]] = {
    CompensationType.TRUNK_LEAN: ("spine", IssueType.ALIGNMENT),
    CompensationType.KNEE_VALGUS: ("knee", IssueType.VALGUS),
    CompensationType.WEIGHT_SHIFT: ("pelvis", IssueType.ASYMMETRY),
    CompensationType.SHOULDER_HIKE: ("shoulder", IssueType.COMPENSATION),
    CompensationType.HIP_DROP: ("hip", IssueType.COMPENSATION),
    CompensationType.FORWARD_HEAD: ("neck", IssueType.ALIGNMENT),
    CompensationType.LUMBAR_FLEXION: ("lumbar_spine", IssueType.ALIGNMENT),
}

_SEVERITY_TO_ISSUE = {
    Severity.MILD: IssueSeverity.LOW,
    Severity.MODERATE: IssueSeverity.MEDIUM,
    Severity.SEVERE: IssueSeverity.HIGH,
}

_ISSUE_RANK = {IssueSeverity.LOW: 1, IssueSeverity.MEDIUM: 2, IssueSeverity.HIGH: 3}


def _span(begin: Optional[float], end: Optional[float]) -> float:
    if begin is None or end is None:
        return 0.0
    return end - begin


class RepScorer:
    """Tracks reps for one exercise in one session and scores each completed rep."""

    def __init__(
        self,
        exercise: str = "squat",
        calibration: Optional[CalibrationProfile] = None,
        *,
        thresholds: Optional[RepThresholds] = None,
        picker: Optional[MessagePicker] = None,
        confirm_frames: Optional[int] = None,
        min_joint_confidence: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self.calibration = calibration
        self.picker = picker or MessagePicker()
        self.confirm_frames = max(1, int(confirm_frames or settings.rep_confirm_frames))
        self.min_joint_confidence = float(
            settings.primary_joint_min_confidence if min_joint_confidence is None else min_joint_confidence
        )
        self._threshold_override = thresholds
        self.completed_reps: List[RepScore] = []
        self.last_phase_timing: Optional[PhaseTiming] = None
        self._rep: Optional[RepState] = None
        self.set_exercise(exercise)

    # --- Configuration --------------------------------------------------

    def set_exercise(self, exercise: str) -> None:
        """Bind to ``exercise`` and drop all state from the previous one."""
        self.exercise = exercise
        self.exercise_key, self.config = resolve_exercise(exercise)
        self.thresholds = self._thresholds_for_key()
        self.reset()
        logger.info(
            "RepScorer bound to {} (config={}, start={:.1f}, bottom={:.1f})",
            exercise,
            self.exercise_key,
            self.thresholds.start_angle,
            self.thresholds.bottom_angle,
        )

    def set_calibration(self, profile: Optional[CalibrationProfile]) -> None:
        """Re-derive thresholds for the new profile; completed reps are kept, the live rep restarts."""
        self.calibration = profile
        self.thresholds = self._thresholds_for_key()
        self._rep = None
        logger.debug("RepScorer thresholds recalibrated: start={:.1f}", self.thresholds.start_angle)

    def reset(self) -> None:
        self._rep = None
        self.completed_reps = []
        self.last_phase_timing = None

    # --- Per-frame ------------------------------------------------------

    def process_frame(
        self,
        angles: Mapping[str, Any],
        symmetry: float,
        timestamp: float,
        compensations: Sequence[CompensationPattern] = (),
    ) -> Optional[FeedbackItem]:
        """Advance the state machine; returns feedback when a rep completes."""
        angle = self.primary_angle(angles)
        if angle is None:
            return None
        if self._rep is None:
            self._rep = self._new_rep(angle, timestamp)
            return None

        rep = self._rep
        rep.min_angle = min(rep.min_angle, angle)
        rep.max_angle = max(rep.max_angle, angle)
        rep.angle_history.append(angle)
        rep.symmetry_history.append(float(symmetry))
        rep.issues.extend(self.detect_form_issues(angles, symmetry))
        rep.issues.extend(self.issues_from_compensations(compensations))

        target = self._candidate_phase(rep, angle)
        if target is None:
            rep.pending_phase = None
            rep.confirmations = 0
            return None
        if target is not rep.pending_phase:
            rep.pending_phase = target
            rep.confirmations = 1
        else:
            rep.confirmations += 1
        if rep.confirmations < self.confirm_frames:
            return None

        rep.pending_phase = None
        rep.confirmations = 0
        if target is RepPhase.START:
            rep.end_time = timestamp
            self.last_phase_timing = self.analyze_phase_timing(rep)
            score = self.calculate_rep_score(rep)
            self.completed_reps.append(score)
            self._rep = self._new_rep(angle, timestamp)
            logger.info(
                "Rep {} complete: overall={:.1f} rom={:.1f} valid={}",
                len(self.completed_reps),
                score.overall,
                score.rom,
                score.valid,
            )
            return self.completion_feedback(score)

        rep.phase = target
        if target is RepPhase.ECCENTRIC:
            rep.eccentric_start = timestamp
        elif target is RepPhase.TURN:
            rep.turn_time = timestamp
        elif target is RepPhase.CONCENTRIC:
            rep.concentric_start = timestamp
        logger.debug("Phase -> {} at {:.1f} deg", target.value, angle)
        return None

    def primary_angle(self, angles: Mapping[str, Any]) -> Optional[float]:
        """Mean of the exercise's primary joints that are confidently tracked."""
        values = []
        for name in self.config.primary_joints:
            joint = angles.get(name)
            if joint is None:
                continue
            if isinstance(joint, JointAngle) and joint.confidence <= self.min_joint_confidence:
                continue
            values.append(angle_value(angles, name))
        if not values:
            return None
        return float(sum(values) / len(values))

    # --- Accessors ------------------------------------------------------

    @property
    def current_phase(self) -> RepPhase:
        return self._rep.phase if self._rep else RepPhase.START

    @property
    def rep_count(self) -> int:
        return len(self.completed_reps)

    def average_score(self) -> float:
        if not self.completed_reps:
            return 0.0
        return float(sum(r.overall for r in self.completed_reps) / len(self.completed_reps))

    def rep_progress(self) -> float:
        """Fraction of the way from the start angle to the bottom threshold for the live rep."""
        if not self._rep or not self._rep.angle_history:
            return 0.0
        t = self.thresholds
        span = abs(t.start_angle - t.bottom_angle)
        if span == 0:
            return 0.0
        travelled = abs(t.start_angle - self._rep.angle_history[-1])
        return max(0.0, min(1.0, travelled / span))

    # --- Scoring --------------------------------------------------------

    def calculate_rep_score(self, rep: RepState) -> RepScore:
        cfg = self.config
        rom = rep.max_angle - rep.min_angle
        # Idle time in START before the descent is not part of the rep
        began = rep.eccentric_start if rep.eccentric_start is not None else rep.start_time
        timestamp = rep.end_time if rep.end_time is not None else rep.start_time
        duration = timestamp - began

        if rom < cfg.target_rom * MIN_ROM_RATIO or not (MIN_REP_SECONDS <= duration <= MAX_REP_SECONDS):
            issue = FormIssue("general", IssueType.INCOMPLETE, IssueSeverity.MEDIUM, self.picker.pick(MessageKind.INCOMPLETE))
            logger.debug("Rep rejected: rom={:.1f} duration={:.2f}s", rom, duration)
            return RepScore(0.0, ScoreBreakdown(), (issue,), timestamp, duration, rom, valid=False)

        breakdown = ScoreBreakdown(
            rom=min(100.0, rom / cfg.target_rom * 100.0),
            tempo=max(0.0, 100.0 - abs(duration - cfg.ideal_tempo) / cfg.tempo_tolerance * 50.0),
            symmetry=float(np.mean(rep.symmetry_history)) if rep.symmetry_history else 100.0,
            stability=max(0.0, 100.0 - float(np.std(rep.angle_history)) * 2.0) if rep.angle_history else 100.0,
            depth=self._depth_score(rep),
        )
        weights = (0.25, 0.15, 0.2 * cfg.symmetry_weight, 0.15, 0.25 * cfg.depth_weight)
        parts = (breakdown.rom, breakdown.tempo, breakdown.symmetry, breakdown.stability, breakdown.depth)
        overall = sum(w * p for w, p in zip(weights, parts)) / sum(weights)
        return RepScore(
            overall=max(0.0, min(100.0, overall)),
            breakdown=breakdown,
            issues=self._dedupe(rep.issues),
            timestamp=timestamp,
            duration=duration,
            rom=rom,
        )

    def analyze_phase_timing(self, rep: RepState) -> PhaseTiming:
        eccentric = _span(rep.eccentric_start, rep.turn_time)
        concentric = _span(rep.concentric_start, rep.end_time)
        pause = _span(rep.turn_time, rep.concentric_start)
        ratio = eccentric / concentric if concentric > 0 else 0.0

        if eccentric < ECCENTRIC_MIN:
            quality, text = "too_fast", "Slow the lowering phase down; controlled eccentrics build strength."
        elif eccentric > ECCENTRIC_MAX:
            quality, text = "too_slow", "You can lower a little faster."
        elif concentric < CONCENTRIC_MIN:
            quality, text = "uncontrolled", "Control the lift better; the way up is too fast."
        elif ratio < RATIO_MIN:
            quality, text = "uncontrolled", "Lower more slowly for better control (2:1 tempo)."
        elif ratio > RATIO_MAX:
            quality, text = "too_slow", "Add a little speed on the way up."
        elif ECCENTRIC_OPTIMAL - 0.5 <= eccentric <= ECCENTRIC_OPTIMAL + 1.0 and RATIO_OPTIMAL - 0.5 <= ratio <= RATIO_OPTIMAL + 1.0:
            quality, text = "optimal", "Perfect tempo, excellent control."
        else:
            quality, text = "good", "Good tempo, keep it up."
        return PhaseTiming(eccentric, concentric, pause, ratio, quality, text)

    # --- Issues and feedback -------------------------------------------

    def detect_form_issues(self, angles: Mapping[str, Any], symmetry: float) -> List[FormIssue]:
        issues: List[FormIssue] = []
        for side in ("left", "right"):
            valgus = angle_value(angles, f"{side}_knee_valgus")
            if valgus is not None and abs(valgus) > 10:
                severity = IssueSeverity.HIGH if abs(valgus) > 20 else IssueSeverity.MEDIUM
                issues.append(FormIssue(f"{side}_knee", IssueType.VALGUS, severity, self.picker.pick(MessageKind.VALGUS)))
        if symmetry < 80:
            if symmetry < 60:
                severity = IssueSeverity.HIGH
            elif symmetry < 70:
                severity = IssueSeverity.MEDIUM
            else:
                severity = IssueSeverity.LOW
            issues.append(FormIssue("bilateral", IssueType.ASYMMETRY, severity, self.picker.pick(MessageKind.ASYMMETRY)))
        lean = angle_value(angles, "trunk_lean")
        if lean is not None and lean > 45:
            severity = IssueSeverity.HIGH if lean > 60 else IssueSeverity.MEDIUM
            issues.append(FormIssue("spine", IssueType.ALIGNMENT, severity, self.picker.pick(MessageKind.TRUNK_LEAN)))
        return issues

    @staticmethod
    def issues_from_compensations(compensations: Sequence[CompensationPattern]) -> List[FormIssue]:
        issues = []
        for comp in compensations:
            joint, kind = _COMPENSATION_ISSUES[comp.type]
            if comp.side is not None and joint in ("knee", "shoulder", "hip"):
                joint = f"{comp.side.value}_{joint}"
            issues.append(FormIssue(joint, kind, _SEVERITY_TO_ISSUE[comp.severity], comp.correction))
        return issues

    def completion_feedback(self, score: RepScore) -> FeedbackItem:
        critical = next((i for i in score.issues if i.severity is IssueSeverity.HIGH), None)
        if critical is not None:
            return FeedbackItem(critical.message, FeedbackPriority.CRITICAL, score.timestamp)
        if score.overall >= 85:
            return FeedbackItem(self.picker.pick(MessageKind.EXCELLENT), FeedbackPriority.ENCOURAGEMENT, score.timestamp)
        if score.overall >= 60:
            return FeedbackItem(self.picker.pick(MessageKind.GOOD), FeedbackPriority.ENCOURAGEMENT, score.timestamp)
        first = score.issues[0].message if score.issues else self.picker.pick(MessageKind.NEEDS_WORK)
        return FeedbackItem(first, FeedbackPriority.CORRECTIVE, score.timestamp)

    def realtime_feedback(self, angles: Mapping[str, Any], symmetry: float, timestamp: float) -> Optional[FeedbackItem]:
        """In-rep cue: always for high severity, occasionally for medium."""
        issues = self.detect_form_issues(angles, symmetry)
        high = next((i for i in issues if i.severity is IssueSeverity.HIGH), None)
        if high is not None:
            return FeedbackItem(high.message, FeedbackPriority.CRITICAL, timestamp)
        medium = next((i for i in issues if i.severity is IssueSeverity.MEDIUM), None)
        if medium is not None and self.picker.chance(0.1):
            return FeedbackItem(medium.message, FeedbackPriority.CORRECTIVE, timestamp)
        return None

    # --- Internal helpers -----------------------------------------------

    def _thresholds_for_key(self) -> RepThresholds:
        if self._threshold_override is not None:
            return self._threshold_override
        return ThresholdCalculator(self.calibration).get_thresholds(self.exercise_key)

    def _new_rep(self, angle: float, timestamp: float) -> RepState:
        return RepState(phase=RepPhase.START, start_time=timestamp, min_angle=angle, max_angle=angle)

    def _candidate_phase(self, rep: RepState, angle: float) -> Optional[RepPhase]:
        """Phase the angle points to, or None to stay; ascending movements mirror the comparisons."""
        t = self.thresholds
        s = 1.0 if t.descending else -1.0
        a, start, bottom = s * angle, s * t.start_angle, s * t.bottom_angle
        peak = s * (rep.min_angle if t.descending else rep.max_angle)
        if rep.phase is RepPhase.START and a < start - 10:
            return RepPhase.ECCENTRIC
        if rep.phase is RepPhase.ECCENTRIC and a <= bottom + t.turn_tolerance:
            return RepPhase.TURN
        if rep.phase is RepPhase.TURN and a > peak + 10:
            return RepPhase.CONCENTRIC
        if rep.phase is RepPhase.CONCENTRIC and a >= start - 15:
            return RepPhase.START
        return None

    def _depth_score(self, rep: RepState) -> float:
        t = self.thresholds
        if t.descending:
            shortfall = rep.min_angle - t.bottom_angle
        else:
            shortfall = t.bottom_angle - rep.max_angle
        if shortfall <= 0:
            return 100.0
        return max(0.0, 100.0 - shortfall * 2.0)

    @staticmethod
    def _dedupe(issues: Sequence[FormIssue]) -> Tuple[FormIssue, ...]:
        seen: Dict[Tuple[str, IssueType], FormIssue] = {}
        for issue in issues:
            key = (issue.joint, issue.issue)
            if key not in seen or _ISSUE_RANK[issue.severity] > _ISSUE_RANK[seen[key].severity]:
                seen[key] = issue
        return tuple(seen.values())
