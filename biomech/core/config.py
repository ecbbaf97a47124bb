"""Core configuration and constants.

Uses environment variables for tunables. Follows PEP8 and Google style docstrings.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional
import os

from pydantic import BaseModel


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


def _optional_int(name: str) -> Optional[int]:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw.lstrip("-").isdigit() else None


class Settings(BaseModel):
    """Application settings loaded from environment variables.

    Attributes:
        app_name: App display name.
        environment: Runtime environment.
        api_host: Host for FastAPI server.
        api_port: Port for FastAPI server.
        log_level: Logging level string.
        log_to_file: Whether the API adds a rotating file sink.
        calibration_target_frames: Accepted frames needed to finish calibration.
        calibration_consecutive_frames: Valid frames in a row before frames are accepted.
        calibration_min_visibility: Minimum visibility of the key joints.
        smoothing_window: Per-joint moving average window.
        knee_valgus_scale: Pseudo-degrees per millimetre of knee offset.
        rep_confirm_frames: Frames that must agree before a phase change commits.
        primary_joint_min_confidence: Joints below this are ignored by the rep scorer.
        top_compensations: Compensations surfaced per frame.
        compensation_history_size: Frames of compensation history kept per session.
        message_seed: Seed for coaching message selection (None = unseeded).
        exercise_config_path: Optional JSON file overriding the exercise table.
    """

    app_name: str = "Biomech Movement Core"
    environment: Literal["dev", "prod", "test"] = "dev"

    api_host: str = os.getenv("API_HOST", "0.0.0.0")
    api_port: int = int(os.getenv("API_PORT", "8000"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_to_file: bool = _flag("LOG_TO_FILE", "1")

    # CORS
    exposed_origins: list[str] = (
        os.getenv("EXPOSED_ORIGINS", "*").split(",") if os.getenv("EXPOSED_ORIGINS") else ["*"]
    )

    # Calibration
    calibration_target_frames: int = int(os.getenv("CALIBRATION_TARGET_FRAMES", "30"))
    calibration_consecutive_frames: int = int(os.getenv("CALIBRATION_CONSECUTIVE_FRAMES", "5"))
    calibration_min_visibility: float = float(os.getenv("CALIBRATION_MIN_VISIBILITY", "0.5"))

    # Reconstruction
    smoothing_window: int = int(os.getenv("SMOOTHING_WINDOW", "5"))
    knee_valgus_scale: float = float(os.getenv("KNEE_VALGUS_SCALE", "1.5"))

    # Rep scoring
    rep_confirm_frames: int = int(os.getenv("REP_CONFIRM_FRAMES", "3"))
    primary_joint_min_confidence: float = float(os.getenv("PRIMARY_JOINT_MIN_CONFIDENCE", "0.5"))
    message_seed: Optional[int] = _optional_int("MESSAGE_SEED")
    exercise_config_path: Optional[str] = os.getenv("EXERCISE_CONFIG_PATH")

    # Compensations
    top_compensations: int = int(os.getenv("TOP_COMPENSATIONS", "2"))
    compensation_history_size: int = int(os.getenv("COMPENSATION_HISTORY_SIZE", "90"))


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()
