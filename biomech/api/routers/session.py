"""Movement session endpoints.

Each session key owns its own calibration, reconstruction and rep state;
frames are posted one at a time in capture order.
"""
from __future__ import annotations

import time
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger

from biomech.api.schemas import (
    CalibrationInput,
    Envelope,
    ExerciseInput,
    FrameInput,
    SessionCreateInput,
)
from biomech.vision.calibration import CalibrationProfile
from biomech.vision.kinetic_chain import kinetic_chain_summary
from biomech.vision.session import MovementSession, SessionRegistry

router = APIRouter()


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def _session(key: str, registry: SessionRegistry) -> MovementSession:
    session = registry.get(key)
    if session is None:
        raise HTTPException(status_code=404, detail="session_not_found")
    return session


def _calibration_state(session: MovementSession) -> dict:
    calibrator = session.calibrator
    return {
        "in_progress": calibrator.in_progress,
        "progress": calibrator.progress,
        "accepted_frames": calibrator.accepted_frames,
        "target_frames": calibrator.target_frames,
        "profile": session.calibration.to_dict(),
    }


@router.post("/sessions/{key}", response_model=Envelope)
def create_session(
    key: str,
    payload: Optional[SessionCreateInput] = None,
    registry: SessionRegistry = Depends(get_registry),
) -> Envelope:
    data = payload or SessionCreateInput()
    session = registry.create(key, exercise=data.exercise, calibrate=data.calibrate)
    return Envelope(success=True, data=session.summary())


@router.delete("/sessions/{key}", response_model=Envelope)
def delete_session(key: str, registry: SessionRegistry = Depends(get_registry)) -> Envelope:
    session = _session(key, registry)
    summary = session.summary()
    registry.remove(key)
    return Envelope(success=True, data=summary)


@router.post("/sessions/{key}/frames", response_model=Envelope)
def post_frame(key: str, payload: FrameInput, registry: SessionRegistry = Depends(get_registry)) -> Envelope:
    session = _session(key, registry)
    timestamp = payload.timestamp if payload.timestamp is not None else time.time()
    analysis = session.process_frame([lm.model_dump() for lm in payload.landmarks], timestamp)
    return Envelope(success=True, data=analysis.to_dict())


@router.post("/sessions/{key}/exercise", response_model=Envelope)
def set_exercise(key: str, payload: ExerciseInput, registry: SessionRegistry = Depends(get_registry)) -> Envelope:
    session = _session(key, registry)
    session.set_exercise(payload.exercise)
    return Envelope(success=True, data=session.summary())


@router.post("/sessions/{key}/calibration", response_model=Envelope)
def calibration_control(
    key: str,
    payload: Optional[CalibrationInput] = None,
    registry: SessionRegistry = Depends(get_registry),
) -> Envelope:
    session = _session(key, registry)
    data = payload or CalibrationInput()
    if data.action == "start":
        session.start_calibration()
    elif data.action == "cancel":
        session.cancel_calibration()
    elif data.action == "reset":
        session.reset_calibration()
    else:
        if data.profile is None:
            return Envelope(success=False, error="profile_required")
        session.load_calibration(CalibrationProfile.from_dict(data.profile.model_dump(exclude_none=True)))
    logger.info("Session {} calibration action: {}", key, data.action)
    return Envelope(success=True, data=_calibration_state(session))


@router.get("/sessions/{key}/calibration", response_model=Envelope)
def get_calibration(key: str, registry: SessionRegistry = Depends(get_registry)) -> Envelope:
    return Envelope(success=True, data=_calibration_state(_session(key, registry)))


@router.get("/sessions/{key}/reps", response_model=Envelope)
def get_reps(key: str, registry: SessionRegistry = Depends(get_registry)) -> Envelope:
    session = _session(key, registry)
    scorer = session.scorer
    timing = scorer.last_phase_timing
    return Envelope(
        success=True,
        data={
            "exercise": session.exercise,
            "rep_count": scorer.rep_count,
            "average_score": round(scorer.average_score(), 1),
            "phase": scorer.current_phase.value,
            "reps": [rep.to_dict() for rep in scorer.completed_reps],
            "last_phase_timing": asdict(timing) if timing else None,
        },
    )


@router.get("/sessions/{key}/kinetic-chain", response_model=Envelope)
def get_kinetic_chain(
    key: str,
    frames: Optional[int] = Query(default=None, ge=1),
    validate_angles: bool = Query(default=True),
    registry: SessionRegistry = Depends(get_registry),
) -> Envelope:
    session = _session(key, registry)
    analysis = session.analyze_kinetic_chain(frames=frames, validate=validate_angles)
    data = analysis.to_dict()
    data["summary"] = kinetic_chain_summary(analysis)
    return Envelope(success=True, data=data)
