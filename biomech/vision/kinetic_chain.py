"""Kinetic chain root-cause analysis.

Scores a fixed set of dysfunction hypotheses from observed compensations and
joint angles, then explains the winner with static clinical knowledge tables.
Every table is keyed by a closed enum and checked for completeness at import.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Sequence, Tuple

from loguru import logger

from biomech.vision.compensation import CompensationPattern
from biomech.vision.constraints import (
    ConstraintSeverity,
    ConstraintValidation,
    ConstraintValidator,
    apply_corrections,
    clinical_angles,
)
from biomech.vision.models import CompensationType, Severity
from biomech.vision.reconstruction import angle_value


class DysfunctionType(str, Enum):
    ANKLE_DORSIFLEXION_LIMITED = "ankle_dorsiflexion_limited"
    KNEE_VALGUS = "knee_valgus"
    HIP_FLEXOR_TIGHT = "hip_flexor_tight"
    GLUTE_WEAKNESS = "glute_weakness"
    CORE_INSTABILITY = "core_instability"
    THORACIC_HYPOMOBILITY = "thoracic_hypomobility"
    SCAPULAR_DYSKINESIS = "scapular_dyskinesis"
    FORWARD_HEAD_POSTURE = "forward_head_posture"
    NONE = "none"


class AffectedChain(str, Enum):
    LOWER = "lower"
    UPPER = "upper"
    CORE = "core"
    FULL_BODY = "full_body"


class ChainJoint(str, Enum):
    ANKLE = "ankle"
    KNEE = "knee"
    HIP = "hip"
    LUMBAR_SPINE = "lumbar_spine"
    THORACIC_SPINE = "thoracic_spine"
    CERVICAL_SPINE = "cervical_spine"
    SHOULDER = "shoulder"


D = DysfunctionType
J = ChainJoint


@dataclass(frozen=True)
class ChainKnowledge:
    affected_joints: Tuple[ChainJoint, ...]
    compensations: Tuple[Tuple[str, str], ...]  # (short type, description)
    root_cause: str
    explanation: str
    clinical_considerations: Tuple[str, ...]


KINETIC_CHAIN_MAP: Dict[DysfunctionType, ChainKnowledge] = {
    D.ANKLE_DORSIFLEXION_LIMITED: ChainKnowledge(
        (J.KNEE, J.HIP, J.LUMBAR_SPINE),
        (
            ("valgus", "Knee valgus during squats to make up for limited ankle mobility"),
            ("external_rotation", "Hip external rotation, feet turned out to get deeper"),
            ("trunk_lean", "Excessive forward trunk lean"),
            ("heel_rise", "Heels lifting off the floor"),
        ),
        "Limited ankle dorsiflexion (often tight gastrocnemius/soleus)",
        "Limited ankle mobility forces the body to compensate further up the chain. "
        "Knee and hip take over to reach the desired depth.",
        ("Check for previous ankle injuries (sprain, fracture)", "Consider footwear", "Screen for Achilles tendinopathy"),
    ),
    D.KNEE_VALGUS: ChainKnowledge(
        (J.HIP, J.ANKLE, J.LUMBAR_SPINE),
        (
            ("weakness", "Weak gluteus medius/maximus"),
            ("tightness", "Tight iliotibial band"),
            ("pronation", "Poor foot placement (pronation)"),
            ("dominance", "Hip adductor dominance"),
        ),
        "Gluteus medius weakness or hip adductor dominance",
        "Weak hip abduction and/or tight adductors let the knee collapse inwards under load.",
        ("Increased ACL injury risk", "Evaluate patellofemoral pain", "Check the Q-angle"),
    ),
    D.HIP_FLEXOR_TIGHT: ChainKnowledge(
        (J.LUMBAR_SPINE, J.HIP, J.THORACIC_SPINE),
        (
            ("pelvic_tilt", "Anterior pelvic tilt"),
            ("hyperlordosis", "Lumbar hyperlordosis"),
            ("hamstring_tension", "Hamstrings feel tight from compensatory lengthening"),
            ("glute_inhibition", "Difficulty activating the glutes in hip extension"),
        ),
        "Shortened iliopsoas, often from prolonged sitting",
        "Shortened hip flexors tilt the pelvis forward and increase lumbar lordosis, which affects the whole posture.",
        ("Common with sedentary work", "Can mask gluteal inhibition", "Screen for anterior pelvic tilt"),
    ),
    D.GLUTE_WEAKNESS: ChainKnowledge(
        (J.HIP, J.KNEE, J.LUMBAR_SPINE),
        (
            ("hamstring_dominance", "Hamstring dominance in hip extension"),
            ("hyperextension", "Lumbar hyperextension during standing hip extension"),
            ("trendelenburg", "Trendelenburg pattern, hip drops in single-leg stance"),
            ("valgus", "Knee valgus under load"),
        ),
        "Gluteal inhibition (often from sitting or injury)",
        "Inactive glutes force other muscles to compensate for hip extension and stability.",
        ("May overload the hamstrings", "Correlates with low back pain", "Check Trendelenburg in single-leg stance"),
    ),
    D.CORE_INSTABILITY: ChainKnowledge(
        (J.LUMBAR_SPINE, J.HIP, J.SHOULDER),
        (
            ("hyperextension", "Lumbar hyperextension when raising the arms"),
            ("bracing", "Excessive intra-abdominal pressure when lifting"),
            ("shoulder_hike", "Shoulder hiking during arm movements"),
            ("hip_flexor_overuse", "Hip flexor overcompensation"),
        ),
        "Weak transversus abdominis and/or multifidus",
        "Weak deep core muscles lead to over-reliance on superficial muscles and poor movement control.",
        ("Screen for diastasis recti", "Evaluate breathing pattern", "Check pelvic floor function"),
    ),
    D.THORACIC_HYPOMOBILITY: ChainKnowledge(
        (J.SHOULDER, J.CERVICAL_SPINE, J.LUMBAR_SPINE),
        (
            ("scapular_control", "Scapular dyskinesis"),
            ("impingement", "Shoulder impingement risk from extra glenohumeral motion"),
            ("neck_extension", "Neck hyperextension"),
            ("hyperlordosis", "Lumbar hyperlordosis"),
        ),
        "Limited thoracic rotation and extension",
        "Limited thoracic mobility forces the neck and lower back to compensate with excess motion.",
        ("Common with office work", "Can contribute to neck pain", "Correlates with shoulder problems"),
    ),
    D.SCAPULAR_DYSKINESIS: ChainKnowledge(
        (J.SHOULDER, J.CERVICAL_SPINE),
        (
            ("winging", "Altered shoulder abduction with a winged scapula"),
            ("rotator_cuff", "Overloaded rotator cuff"),
            ("shoulder_hike", "Shoulder hiking (upper trapezius dominance)"),
            ("rounded_shoulders", "Rounded shoulders"),
        ),
        "Weak serratus anterior and/or lower trapezius",
        "Poor scapular control changes the position and function of the shoulder.",
        ("Screen for rotator cuff pathology", "Evaluate thoracic outlet syndrome", "Check for shoulder instability"),
    ),
    D.FORWARD_HEAD_POSTURE: ChainKnowledge(
        (J.CERVICAL_SPINE, J.THORACIC_SPINE, J.SHOULDER),
        (
            ("suboccipital_tension", "Suboccipital muscle tension"),
            ("neck_flexor_weakness", "Weak deep neck flexors"),
            ("kyphosis", "Thoracic kyphosis"),
            ("rounded_shoulders", "Rounded shoulders"),
        ),
        "Imbalance between deep neck flexors and suboccipital muscles",
        "A forward head overloads the neck muscles and changes thoracic posture.",
        ("Screen for cervicogenic headache", "Evaluate vision and workstation ergonomics", "May affect the jaw joint"),
    ),
    D.NONE: ChainKnowledge(
        (),
        (),
        "No clear dysfunction identified",
        "No clear dysfunction identified. The movement pattern looks good.",
        (),
    ),
}

PATTERN_CORRECTIONS: Dict[DysfunctionType, Dict[ChainJoint, str]] = {
    D.ANKLE_DORSIFLEXION_LIMITED: {
        J.KNEE: "Practise ankle dorsiflexion stretches and calf raises",
        J.HIP: "Improve ankle mobility before working on hip mobility",
        J.LUMBAR_SPINE: "Strengthen the core and improve ankle range of motion",
    },
    D.KNEE_VALGUS: {
        J.HIP: "Strengthen gluteus medius with clamshells and side-lying leg raises",
        J.ANKLE: "Check foot placement and shoe support",
        J.LUMBAR_SPINE: "Prioritise hip stability before spinal stability",
    },
    D.HIP_FLEXOR_TIGHT: {
        J.LUMBAR_SPINE: "Stretch the hip flexors and practise posterior pelvic tilts",
        J.HIP: "Half-kneeling hip flexor stretch with glute squeeze",
        J.THORACIC_SPINE: "Add thoracic extension work to offset the lordosis",
    },
    D.GLUTE_WEAKNESS: {
        J.HIP: "Activate the glutes before training (bridges, clamshells)",
        J.KNEE: "Squat with a 'knees out' cue",
        J.LUMBAR_SPINE: "Avoid lumbar hyperextension by driving the movement with the glutes",
    },
    D.CORE_INSTABILITY: {
        J.LUMBAR_SPINE: "Strengthen transversus abdominis with dead bugs and Pallof presses",
        J.HIP: "Integrate core activation into hip exercises",
        J.SHOULDER: "Brace the core before arm movements",
    },
    D.THORACIC_HYPOMOBILITY: {
        J.SHOULDER: "Improve thoracic mobility before shoulder exercises",
        J.CERVICAL_SPINE: "Focus on thoracic extension with a foam roller",
        J.LUMBAR_SPINE: "Improve thoracic rotation to offload the lower back",
    },
    D.SCAPULAR_DYSKINESIS: {
        J.SHOULDER: "Strengthen serratus anterior with wall slides and push-up plus",
        J.CERVICAL_SPINE: "Reduce upper trapezius dominance with scapular depression drills",
    },
    D.FORWARD_HEAD_POSTURE: {
        J.CERVICAL_SPINE: "Practise chin tucks to train the deep neck flexors",
        J.THORACIC_SPINE: "Mobilise thoracic extension over a foam roller",
        J.SHOULDER: "Open the chest with doorway stretches",
    },
    D.NONE: {},
}

DEFAULT_CORRECTION = "See a physiotherapist for an individual assessment"

CHAIN_RECOMMENDATIONS: Dict[AffectedChain, Tuple[str, ...]] = {
    AffectedChain.LOWER: (
        "Start with ankle and hip mobility",
        "Include glute activation in the warm-up",
        "Use a mirror or video to check squat form",
    ),
    AffectedChain.UPPER: (
        "Focus on thoracic mobility",
        "Include scapular stabilisation",
        "Watch your neck position during exercises",
    ),
    AffectedChain.CORE: (
        "Start with diaphragmatic breathing",
        "Progress from static to dynamic core exercises",
        "Integrate core activation into every exercise",
    ),
    AffectedChain.FULL_BODY: (
        "Take a whole-body approach, starting with the core",
        "Treat the most symptomatic area first",
        "Consider a professional assessment",
    ),
}

DYSFUNCTION_RECOMMENDATIONS: Dict[DysfunctionType, Tuple[str, ...]] = {
    D.ANKLE_DORSIFLEXION_LIMITED: (
        "Self-massage the calves before training",
        "Use a temporary heel lift during squats",
    ),
    D.KNEE_VALGUS: (
        "Use a mini band around the knees for awareness",
        "Cue 'push the knees out' during every squat",
    ),
    D.HIP_FLEXOR_TIGHT: ("Break up long periods of sitting", "Stretch the hip flexors after training"),
    D.GLUTE_WEAKNESS: (
        "Activate the glutes every day, rest days included",
        "Prioritise hip thrusts and Romanian deadlifts",
    ),
    D.CORE_INSTABILITY: ("Practise bracing before every lift",),
    D.THORACIC_HYPOMOBILITY: ("Add daily thoracic rotation drills",),
    D.SCAPULAR_DYSKINESIS: ("Train scapular control with light resistance first",),
    D.FORWARD_HEAD_POSTURE: ("Review workstation ergonomics",),
    D.NONE: (),
}

CHAIN_NAMES: Dict[AffectedChain, str] = {
    AffectedChain.LOWER: "lower extremity",
    AffectedChain.UPPER: "upper extremity",
    AffectedChain.CORE: "core/trunk",
    AffectedChain.FULL_BODY: "whole body",
}

# Points a compensation adds to each hypothesis: (dysfunction, severe, moderate, mild)
SCORE_CONTRIBUTIONS: Dict[CompensationType, Tuple[Tuple[DysfunctionType, int, int, int], ...]] = {
    CompensationType.KNEE_VALGUS: ((D.KNEE_VALGUS, 3, 2, 1), (D.GLUTE_WEAKNESS, 2, 1, 1)),
    CompensationType.TRUNK_LEAN: (
        (D.ANKLE_DORSIFLEXION_LIMITED, 2, 1, 1),
        (D.HIP_FLEXOR_TIGHT, 1, 1, 1),
        (D.CORE_INSTABILITY, 1, 1, 1),
    ),
    CompensationType.WEIGHT_SHIFT: ((D.GLUTE_WEAKNESS, 2, 1, 1), (D.CORE_INSTABILITY, 1, 1, 1)),
    CompensationType.SHOULDER_HIKE: ((D.SCAPULAR_DYSKINESIS, 2, 1, 1), (D.THORACIC_HYPOMOBILITY, 1, 1, 1)),
    CompensationType.HIP_DROP: ((D.GLUTE_WEAKNESS, 3, 2, 2),),
    CompensationType.FORWARD_HEAD: ((D.FORWARD_HEAD_POSTURE, 3, 2, 2), (D.THORACIC_HYPOMOBILITY, 1, 1, 1)),
    CompensationType.LUMBAR_FLEXION: ((D.CORE_INSTABILITY, 2, 1, 1), (D.HIP_FLEXOR_TIGHT, 1, 1, 1)),
}

DYSFUNCTION_CHAIN: Dict[DysfunctionType, Optional[AffectedChain]] = {
    D.ANKLE_DORSIFLEXION_LIMITED: AffectedChain.LOWER,
    D.KNEE_VALGUS: AffectedChain.LOWER,
    D.GLUTE_WEAKNESS: AffectedChain.LOWER,
    D.THORACIC_HYPOMOBILITY: AffectedChain.UPPER,
    D.SCAPULAR_DYSKINESIS: AffectedChain.UPPER,
    D.FORWARD_HEAD_POSTURE: AffectedChain.UPPER,
    D.CORE_INSTABILITY: AffectedChain.CORE,
    D.HIP_FLEXOR_TIGHT: AffectedChain.CORE,
    D.NONE: None,
}

COMPENSATION_CHAIN: Dict[CompensationType, Optional[AffectedChain]] = {
    CompensationType.KNEE_VALGUS: AffectedChain.LOWER,
    CompensationType.HIP_DROP: AffectedChain.LOWER,
    CompensationType.SHOULDER_HIKE: AffectedChain.UPPER,
    CompensationType.TRUNK_LEAN: AffectedChain.CORE,
    CompensationType.LUMBAR_FLEXION: AffectedChain.CORE,
    CompensationType.WEIGHT_SHIFT: None,
    CompensationType.FORWARD_HEAD: None,
}

for _table in (KINETIC_CHAIN_MAP, PATTERN_CORRECTIONS, DYSFUNCTION_RECOMMENDATIONS, DYSFUNCTION_CHAIN):
    assert set(_table) == set(DysfunctionType), "kinetic chain table must cover every DysfunctionType"
for _table in (SCORE_CONTRIBUTIONS, COMPENSATION_CHAIN):
    assert set(_table) == set(CompensationType), "kinetic chain table must cover every CompensationType"
assert set(CHAIN_RECOMMENDATIONS) == set(AffectedChain) == set(CHAIN_NAMES)

MIN_DIAGNOSIS_SCORE = 2
ANKLE_DORSIFLEXION_LIMIT = 15.0
# Dorsiflexion is only judged while the knee is loaded in flexion
LOADED_KNEE_ANGLE = 120.0


@dataclass(frozen=True)
class CompensatoryPattern:
    affected_joint: str
    compensation_type: str
    severity: Severity
    description: str
    correction: str

    def to_dict(self) -> dict:
        return {
            "affected_joint": self.affected_joint,
            "compensation_type": self.compensation_type,
            "severity": self.severity.value,
            "description": self.description,
            "correction": self.correction,
        }


@dataclass(frozen=True)
class RootCauseAnalysis:
    likely_source: str
    confidence: float
    explanation: str
    clinical_considerations: Tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "likely_source": self.likely_source,
            "confidence": round(self.confidence, 3),
            "explanation": self.explanation,
            "clinical_considerations": list(self.clinical_considerations),
        }


@dataclass(frozen=True)
class KineticChainAnalysis:
    primary_dysfunction: DysfunctionType
    affected_chain: AffectedChain
    compensatory_patterns: Tuple[CompensatoryPattern, ...]
    root_cause: RootCauseAnalysis
    recommendations: Tuple[str, ...]
    scores: Dict[DysfunctionType, int] = field(default_factory=dict)
    constraint_validation: Optional[ConstraintValidation] = None

    def to_dict(self) -> dict:
        data = {
            "primary_dysfunction": self.primary_dysfunction.value,
            "affected_chain": self.affected_chain.value,
            "compensatory_patterns": [p.to_dict() for p in self.compensatory_patterns],
            "root_cause": self.root_cause.to_dict(),
            "recommendations": list(self.recommendations),
            "scores": {k.value: v for k, v in self.scores.items()},
        }
        if self.constraint_validation is not None:
            data["constraint_validation"] = self.constraint_validation.to_dict()
        return data


def score_dysfunctions(
    compensations: Sequence[CompensationPattern], angles: Mapping[str, Any]
) -> Dict[DysfunctionType, int]:
    scores = {d: 0 for d in DysfunctionType}
    for comp in compensations:
        for dysfunction, severe, moderate, mild in SCORE_CONTRIBUTIONS[comp.type]:
            if comp.severity is Severity.SEVERE:
                scores[dysfunction] += severe
            elif comp.severity is Severity.MODERATE:
                scores[dysfunction] += moderate
            else:
                scores[dysfunction] += mild
    for side in ("left", "right"):
        ankle = angle_value(angles, f"{side}_ankle")
        knee = angle_value(angles, f"{side}_knee")
        if ankle is None or knee is None or knee >= LOADED_KNEE_ANGLE:
            continue
        if 90.0 - ankle < ANKLE_DORSIFLEXION_LIMIT:
            scores[D.ANKLE_DORSIFLEXION_LIMITED] += 2
    return scores


def identify_primary_dysfunction(scores: Mapping[DysfunctionType, int]) -> DysfunctionType:
    """Highest score wins (first in enum order on ties); below 2 points there is no diagnosis."""
    best, best_score = D.NONE, 0
    for dysfunction in DysfunctionType:
        if scores.get(dysfunction, 0) > best_score:
            best, best_score = dysfunction, scores[dysfunction]
    if best_score < MIN_DIAGNOSIS_SCORE:
        return D.NONE
    return best


def determine_affected_chain(
    dysfunction: DysfunctionType, compensations: Sequence[CompensationPattern]
) -> AffectedChain:
    votes = {chain: 0 for chain in (AffectedChain.LOWER, AffectedChain.UPPER, AffectedChain.CORE)}
    primary = DYSFUNCTION_CHAIN[dysfunction]
    if primary is not None:
        votes[primary] += 2
    for comp in compensations:
        chain = COMPENSATION_CHAIN[comp.type]
        if chain is not None:
            votes[chain] += 1
    if votes[AffectedChain.LOWER] >= 2 and votes[AffectedChain.UPPER] >= 2:
        return AffectedChain.FULL_BODY
    best = max(votes.values())
    for chain in (AffectedChain.LOWER, AffectedChain.UPPER, AffectedChain.CORE):
        if votes[chain] == best:
            return chain
    return AffectedChain.LOWER


def compensatory_patterns(
    dysfunction: DysfunctionType, compensations: Sequence[CompensationPattern]
) -> Tuple[CompensatoryPattern, ...]:
    info = KINETIC_CHAIN_MAP[dysfunction]
    severity = Severity.MODERATE if any(c.severity is Severity.SEVERE for c in compensations) else Severity.MILD
    patterns = []
    for index, (kind, description) in enumerate(info.compensations[:4]):
        joint = info.affected_joints[min(index, len(info.affected_joints) - 1)]
        correction = PATTERN_CORRECTIONS[dysfunction].get(joint, DEFAULT_CORRECTION)
        patterns.append(CompensatoryPattern(joint.value, kind, severity, description, correction))
    return tuple(patterns)


def root_cause(dysfunction: DysfunctionType, compensations: Sequence[CompensationPattern]) -> RootCauseAnalysis:
    info = KINETIC_CHAIN_MAP[dysfunction]
    severe = sum(1 for c in compensations if c.severity is Severity.SEVERE)
    confidence = min(0.9, 0.5 + 0.1 * severe + min(0.05 * len(compensations), 0.2))
    return RootCauseAnalysis(info.root_cause, confidence, info.explanation, info.clinical_considerations)


def analyze_kinetic_chain(
    compensations: Sequence[CompensationPattern], angles: Optional[Mapping[str, Any]] = None
) -> KineticChainAnalysis:
    """Root-cause hypothesis for a set of compensations and joint angles."""
    angles = angles or {}
    scores = score_dysfunctions(compensations, angles)
    dysfunction = identify_primary_dysfunction(scores)
    chain = determine_affected_chain(dysfunction, compensations)
    recommendations = CHAIN_RECOMMENDATIONS[chain] + DYSFUNCTION_RECOMMENDATIONS[dysfunction]
    analysis = KineticChainAnalysis(
        primary_dysfunction=dysfunction,
        affected_chain=chain,
        compensatory_patterns=compensatory_patterns(dysfunction, compensations),
        root_cause=root_cause(dysfunction, compensations),
        recommendations=recommendations,
        scores={d: s for d, s in scores.items() if s > 0},
    )
    logger.debug(
        "Kinetic chain: {} ({}) from {} compensations",
        dysfunction.value,
        chain.value,
        len(compensations),
    )
    return analysis


def analyze_kinetic_chain_with_validation(
    compensations: Sequence[CompensationPattern],
    angles: Mapping[str, Any],
    validator: Optional[ConstraintValidator] = None,
) -> KineticChainAnalysis:
    """Validate the angles first; corrected angles feed the analysis and the confidence is discounted."""
    validator = validator or ConstraintValidator()
    clinical = clinical_angles(angles)
    validation = validator.validate_joint_combination(clinical)
    analyzed: Mapping[str, Any] = angles
    if not validation.is_anatomically_possible:
        analyzed = apply_corrections(angles, clinical, validation.adjusted_angles)
    base = analyze_kinetic_chain(compensations, analyzed)
    warnings = tuple(
        v.suggested_correction for v in validation.violations if v.severity is not ConstraintSeverity.UNUSUAL
    )
    cause = replace(base.root_cause, confidence=base.root_cause.confidence * validation.confidence)
    return replace(
        base,
        root_cause=cause,
        recommendations=warnings + base.recommendations,
        constraint_validation=validation,
    )


def kinetic_chain_summary(analysis: KineticChainAnalysis) -> str:
    if analysis.primary_dysfunction is D.NONE:
        return "Good movement pattern! No clear compensations."
    return f"Primary involvement in the {CHAIN_NAMES[analysis.affected_chain]}: {analysis.root_cause.likely_source}"
