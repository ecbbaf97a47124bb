"""Stateless analysis endpoints: angle validation and kinetic chain diagnosis."""
from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter

from biomech.api.schemas import AnglesInput, Envelope, KineticChainInput
from biomech.vision.compensation import build_pattern
from biomech.vision.constraints import ConstraintValidator, clinical_angles, validate_rom
from biomech.vision.kinetic_chain import (
    analyze_kinetic_chain,
    analyze_kinetic_chain_with_validation,
    kinetic_chain_summary,
)

router = APIRouter()

validator = ConstraintValidator()


@router.post("/analysis/validate", response_model=Envelope)
async def validate_angles(payload: AnglesInput) -> Envelope:
    angles = clinical_angles(payload.angles)
    validation = validator.validate_joint_combination(angles)
    quick = validator.quick_validate_joints(angles)
    data = validation.to_dict()
    data["quick"] = {"valid": quick.valid, "issue": quick.issue}
    data["rom"] = [asdict(check) for check in validate_rom(angles)]
    return Envelope(success=True, data=data)


@router.post("/analysis/kinetic-chain", response_model=Envelope)
async def kinetic_chain(payload: KineticChainInput) -> Envelope:
    compensations = [build_pattern(c.type, c.severity, c.value, c.side) for c in payload.compensations]
    if payload.validate_angles:
        analysis = analyze_kinetic_chain_with_validation(compensations, payload.angles, validator)
    else:
        analysis = analyze_kinetic_chain(compensations, payload.angles)
    data = analysis.to_dict()
    data["summary"] = kinetic_chain_summary(analysis)
    return Envelope(success=True, data=data)
